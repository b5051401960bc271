# ephemera/api/deps.py

import logging

from fastapi import HTTPException, Request

from ephemera.core.errors import InvalidDuration, StorageError
from ephemera.services.lifecycle import LifecycleManager

logger = logging.getLogger(__name__)


def get_manager(request: Request) -> LifecycleManager:
    """
    FastAPI dependency handing routes the manager built at startup.
    Usage:
        def my_route(manager: LifecycleManager = Depends(get_manager)):
            ...
    """
    return request.app.state.manager


def to_http_error(e: Exception, action: str) -> HTTPException:
    if isinstance(e, InvalidDuration):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, StorageError):
        logger.error("❌ ERROR in %s: %s", action, e, exc_info=True)
        return HTTPException(status_code=503, detail="Storage unavailable")

    logger.error("❌ ERROR in %s: %s", action, e, exc_info=True)
    return HTTPException(status_code=500, detail=str(e))
