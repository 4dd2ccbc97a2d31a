"""Pytest configuration and shared fixtures."""

import logging
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Fresh settings per test, never read from a developer's .env."""
    from clustermeter.settings import get_settings

    for var in ("CLUSTERMETER_ENCRYPTED_PRICES_FILE", "CLUSTERMETER_PRICE_ENCRYPTION_KEY",
                "CLUSTERMETER_DATABASE_URL", "CLUSTERMETER_PRICE_FETCH_TIMEOUT",
                "CLUSTERMETER_LOG_LEVEL", "CLUSTERMETER_LOG_FORMAT"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(project_root / "tests")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def restore_root_logger():
    """configure_logging() replaces root handlers; put them back after each test."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def engine():
    """In-memory SQLite engine with the metering tables created."""
    from clustermeter.db import init_db

    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    from clustermeter.db import get_session_factory

    return get_session_factory(engine)


@pytest.fixture
def session(session_factory):
    with session_factory() as s:
        yield s
