"""Database package for metering records."""

from clustermeter.db.base import Base
from clustermeter.db.engine import get_engine, get_session_factory, init_db
from clustermeter.db.models import BillingRecord, MeteringRecord, MonitorRecord, PriceRecord

__all__ = [
    "Base",
    "get_engine",
    "get_session_factory",
    "init_db",
    "BillingRecord",
    "MeteringRecord",
    "MonitorRecord",
    "PriceRecord",
]
