"""Database engine and session factory."""

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from clustermeter.settings import get_settings

_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """Get or create the database engine from settings."""
    global _engine
    if _engine is None:
        _engine = create_engine(get_settings().database_url, pool_pre_ping=True)
    return _engine


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    return sessionmaker(bind=engine or get_engine(), expire_on_commit=False)


def init_db(engine: Optional[Engine] = None) -> None:
    """Create the metering tables if they do not exist."""
    from clustermeter.db import models  # noqa: F401  (registers tables)
    from clustermeter.db.base import Base

    Base.metadata.create_all(engine or get_engine())
