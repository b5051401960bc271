import logging
import os
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from ephemera.models.base import Base

logger = logging.getLogger(__name__)

# =========================
# CONFIGURATION
# =========================

# DATABASE_URL wins; DB_HOST alone switches to PostgreSQL
DB_USER = os.getenv("DB_USER", "ephemera")
DB_PASS = os.getenv("DB_PASS", "")
DB_HOST = os.getenv("DB_HOST")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "ephemera")
DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"


def _default_database_url() -> str:
    if os.getenv("DATABASE_URL"):
        return os.environ["DATABASE_URL"]
    if DB_HOST:
        return f"postgresql://{DB_USER}:{DB_PASS}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
    return "sqlite:///./ephemera.db"


DATABASE_URL = _default_database_url()

# =========================
# ENGINE CONFIGURATION
# =========================


def create_db_engine(url: Optional[str] = None) -> Engine:
    url = url or DATABASE_URL

    if url.startswith("sqlite"):
        # Timer callbacks delete from worker threads
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=DB_ECHO
        )

    return create_engine(
        url,
        pool_pre_ping=True,  # Check connections before using them
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,
        echo=DB_ECHO
    )

# =========================
# SESSION CONFIGURATION
# =========================


def create_session_factory(engine: Engine) -> sessionmaker:
    # Records handed back to callers must stay readable once the session closes
    return sessionmaker(
        autoflush=False,
        expire_on_commit=False,
        bind=engine
    )

# =========================
# DATABASE FUNCTIONS
# =========================


@contextmanager
def db_session(session_factory: sessionmaker):
    """
    Context manager for one unit of work.
    Usage:
        with db_session(SessionLocal) as db:
            db.add(record)
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine):
    """
    Create all tables based on registered models.
    """
    # Register the models with Base before create_all
    import ephemera.models.record  # noqa: F401

    Base.metadata.create_all(bind=engine)


def check_connection(engine: Engine) -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            return True
    except Exception as e:
        logger.warning("❌ Database connection failed: %s", e)
        return False
