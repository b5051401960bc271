# ephemera/main.py

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from ephemera.api import events, messages
from ephemera.core.store import RecordStore
from ephemera.infra.database import (
    check_connection,
    create_db_engine,
    create_session_factory,
    init_db,
)
from ephemera.services.lifecycle import LifecycleManager
from ephemera.utils.logger import setup_logger

logger = logging.getLogger(__name__)

PORT = int(os.getenv("PORT", "8000"))


def create_app(database_url: Optional[str] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = create_db_engine(database_url)
        init_db(engine)

        manager = LifecycleManager(RecordStore(create_session_factory(engine)))
        # Overdue records go before the first request is served
        manager.recover()

        app.state.engine = engine
        app.state.manager = manager
        logger.info("✅ Ephemera ready (%s)", engine.url.render_as_string(hide_password=True))

        try:
            yield
        finally:
            manager.shutdown()
            engine.dispose()

    app = FastAPI(
        title="Ephemera",
        version="1.0.0",
        description="Self-destructing events and messages",
        lifespan=lifespan
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_logger()

    # Register routers
    app.include_router(events.router, tags=["Events"])
    app.include_router(messages.router, tags=["Messages"])

    @app.get("/health")
    def health_check(request: Request):
        return {"status": "ok", "database": check_connection(request.app.state.engine)}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=PORT)
