"""
Shared fixtures: a throwaway SQLite file per test, plus the store and
manager built on top of it.
"""

import time

import pytest

from ephemera.core.store import RecordStore
from ephemera.infra.database import create_db_engine, create_session_factory, init_db
from ephemera.services.lifecycle import LifecycleManager


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'ephemera.db'}"


@pytest.fixture
def engine(database_url):
    engine = create_db_engine(database_url)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return RecordStore(create_session_factory(engine))


@pytest.fixture
def manager(store):
    manager = LifecycleManager(store)
    manager.recover()
    yield manager
    manager.shutdown()


@pytest.fixture
def wait_until():
    """Poll until predicate() is truthy; False on timeout."""
    return _wait_until


def _wait_until(predicate, timeout=3.0, interval=0.02):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())
