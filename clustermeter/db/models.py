"""SQLAlchemy ORM models for metering records.

Tables:
- prices: current unit price per property
- monitor: raw usage samples, unique per (category, name, property, time)
- metering: priced hourly buckets, unique per (category, property, time)
- billing: ledger entries keyed by order id

Enum-keyed usage maps and payment/transfer sub-records are stored as JSON
text.
"""

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from clustermeter.db.base import Base
from clustermeter.resources.config import (
    BILLING_COLLECTION,
    METERING_COLLECTION,
    MONITOR_COLLECTION,
    PRICES_COLLECTION,
)


class PriceRecord(Base):
    """Unit price of a property (1_000_000 = 1 currency unit)."""

    __tablename__ = PRICES_COLLECTION

    id = Column(Integer, primary_key=True, autoincrement=True)
    property = Column(String(64), unique=True, nullable=False)
    price = Column(BigInteger, nullable=False)
    detail = Column(String(255), default="")


class MonitorRecord(Base):
    """Raw usage sample."""

    __tablename__ = MONITOR_COLLECTION

    id = Column(Integer, primary_key=True, autoincrement=True)
    time = Column(DateTime(timezone=True), nullable=False, index=True)
    category = Column(String(128), nullable=False)
    type = Column(Integer, default=0)
    name = Column(String(255), nullable=False, default="")
    property = Column(String(64), nullable=False, default="")
    used = Column(Text)  # JSON: {enum: amount}

    __table_args__ = (
        UniqueConstraint("category", "name", "property", "time", name="uq_monitor_sample"),
    )


class MeteringRecord(Base):
    """Priced usage bucket."""

    __tablename__ = METERING_COLLECTION

    id = Column(Integer, primary_key=True, autoincrement=True)
    category = Column(String(128), nullable=False)
    property = Column(String(64), nullable=False)
    time = Column(DateTime(timezone=True), nullable=False, index=True)
    value = Column(BigInteger, nullable=False)
    amount = Column(BigInteger, nullable=False)
    detail = Column(String(255), default="")
    computed_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("category", "property", "time", name="uq_metering_bucket"),
    )


class BillingRecord(Base):
    """Ledger entry."""

    __tablename__ = BILLING_COLLECTION

    order_id = Column(String(64), primary_key=True)
    time = Column(DateTime(timezone=True), nullable=False, index=True)
    type = Column(Integer, nullable=False)
    namespace = Column(String(128), nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)
    owner = Column(String(128), default="")
    status = Column(Integer, nullable=False, default=0, index=True)
    app_type = Column(Integer, default=0)
    app_costs = Column(Text)  # JSON array of app costs
    payment = Column(Text)  # JSON object
    transfer = Column(Text)  # JSON object
