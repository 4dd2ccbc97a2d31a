"""Metering persistence.

Saves and loads monitor samples, metering buckets, billing entries and the
price list. Writes are keyed: writing the same monitor sample or metering
bucket again overwrites it, and billing writes go through the ledger merge
rules so a retried write never duplicates or un-settles an entry.
"""

import json
import logging
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clustermeter.db.models import BillingRecord, MeteringRecord, MonitorRecord, PriceRecord
from clustermeter.exceptions import LedgerValidationError, PriceQueryError
from clustermeter.logging_config.context import MeteringContext
from clustermeter.logging_config.performance import log_performance
from clustermeter.resources.config import BillingStatus
from clustermeter.resources.ledger import Billing, merge_billing
from clustermeter.resources.records import Metering, Monitor, to_utc
from clustermeter.resources.registry import Price
from clustermeter.settings import get_settings

logger = logging.getLogger(__name__)


def _dump_used(used) -> str:
    return json.dumps({str(k): v for k, v in used.items()}, sort_keys=True)


_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _upsert(session: Session, model, key_columns: Sequence[str], values: Dict[str, Any]) -> None:
    """INSERT ... ON CONFLICT (key_columns) DO UPDATE in one statement."""
    dialect = session.get_bind().dialect.name
    insert = _DIALECT_INSERTS.get(dialect)
    if insert is None:
        raise NotImplementedError(f"keyed upsert is not supported on {dialect}")
    stmt = insert(model.__table__).values(**values).on_conflict_do_update(
        index_elements=list(key_columns),
        set_={k: v for k, v in values.items() if k not in key_columns},
    )
    session.execute(stmt)


# ── Prices ────────────────────────────────────────────────────────────


def save_price(session: Session, price: Price) -> None:
    """Insert or update the price of a property."""
    rec = session.query(PriceRecord).filter(PriceRecord.property == price.property).one_or_none()
    if rec is None:
        session.add(PriceRecord(property=price.property, price=price.price, detail=price.detail))
    else:
        rec.price = price.price
        rec.detail = price.detail
    session.flush()


def _query_prices(session_factory: Callable[[], Session]) -> List[Price]:
    with session_factory() as session:
        rows = session.query(PriceRecord).order_by(PriceRecord.property).all()
        return [Price(property=r.property, price=r.price, detail=r.detail or "") for r in rows]


@log_performance(threshold_ms=1000)
def fetch_prices(
    session_factory: Callable[[], Session],
    timeout: Optional[float] = None,
) -> List[Price]:
    """Read the full price list within ``timeout`` seconds.

    Raises:
        PriceQueryError: the query failed or did not finish in time.
    """
    if timeout is None:
        timeout = get_settings().price_fetch_timeout
    future: Future = Future()

    def run() -> None:
        future.set_running_or_notify_cancel()
        try:
            future.set_result(_query_prices(session_factory))
        except Exception as exc:
            future.set_exception(exc)

    # Daemon: a hung query must not hold up interpreter shutdown.
    threading.Thread(target=run, name="price-fetch", daemon=True).start()
    try:
        return future.result(timeout=timeout)
    except FuturesTimeoutError as exc:
        raise PriceQueryError(f"get all prices timed out after {timeout}s") from exc
    except SQLAlchemyError as exc:
        raise PriceQueryError(f"get all prices error: {exc}") from exc


# ── Monitor samples ───────────────────────────────────────────────────


def save_monitor(session: Session, monitor: Monitor) -> None:
    """Persist a monitor sample, overwriting a sample with the same key."""
    _upsert(
        session,
        MonitorRecord,
        ("category", "name", "property", "time"),
        {
            "category": monitor.category,
            "name": monitor.name,
            "property": monitor.property,
            "time": monitor.time,
            "type": monitor.app_type,
            "used": _dump_used(monitor.used),
        },
    )


def get_monitors(
    session: Session,
    category: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[Monitor]:
    """Monitor samples of a category in [start, end), oldest first."""
    query = session.query(MonitorRecord).filter(MonitorRecord.category == category)
    if start is not None:
        query = query.filter(MonitorRecord.time >= to_utc(start))
    if end is not None:
        query = query.filter(MonitorRecord.time < to_utc(end))
    return [
        Monitor(
            time=r.time,
            category=r.category,
            name=r.name,
            property=r.property,
            used=json.loads(r.used or "{}"),
            app_type=r.type or 0,
        )
        for r in query.order_by(MonitorRecord.time).populate_existing().all()
    ]


# ── Metering ──────────────────────────────────────────────────────────


def save_metering(session: Session, metering: Metering) -> None:
    """Persist a metering bucket, overwriting the bucket with the same key."""
    _upsert(
        session,
        MeteringRecord,
        ("category", "property", "time"),
        {
            "category": metering.category,
            "property": metering.property,
            "time": metering.time,
            "value": metering.value,
            "amount": metering.amount,
            "detail": metering.detail,
        },
    )


def get_metering(
    session: Session,
    category: str,
    property_name: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[Metering]:
    """Metering buckets of a category in [start, end), oldest first."""
    query = session.query(MeteringRecord).filter(MeteringRecord.category == category)
    if property_name:
        query = query.filter(MeteringRecord.property == property_name)
    if start is not None:
        query = query.filter(MeteringRecord.time >= to_utc(start))
    if end is not None:
        query = query.filter(MeteringRecord.time < to_utc(end))
    return [
        Metering(
            category=r.category,
            property=r.property,
            time=r.time,
            value=r.value,
            amount=r.amount,
            detail=r.detail or "",
        )
        for r in query.order_by(MeteringRecord.time, MeteringRecord.property).populate_existing().all()
    ]


# ── Billing ───────────────────────────────────────────────────────────


def _billing_from_record(rec: BillingRecord) -> Billing:
    return Billing.from_document({
        "time": rec.time,
        "order_id": rec.order_id,
        "type": rec.type,
        "namespace": rec.namespace,
        "amount": rec.amount,
        "owner": rec.owner,
        "status": rec.status,
        "app_type": rec.app_type,
        "app_costs": json.loads(rec.app_costs) if rec.app_costs else [],
        "payment": json.loads(rec.payment) if rec.payment else None,
        "transfer": json.loads(rec.transfer) if rec.transfer else None,
    })


def _write_billing(rec: BillingRecord, billing: Billing) -> None:
    doc = billing.to_document()
    rec.time = billing.time
    rec.type = int(billing.type)
    rec.namespace = billing.namespace
    rec.amount = billing.amount
    rec.owner = billing.owner
    rec.status = int(billing.status)
    rec.app_type = billing.app_type
    rec.app_costs = json.dumps(doc["app_costs"], sort_keys=True) if "app_costs" in doc else None
    rec.payment = json.dumps(doc["payment"], sort_keys=True) if "payment" in doc else None
    rec.transfer = json.dumps(doc["transfer"], sort_keys=True) if "transfer" in doc else None


def save_billing(session: Session, billing: Billing) -> Billing:
    """Persist a billing entry under its order id; returns the stored entry."""
    with MeteringContext(category=billing.namespace, order_id=billing.order_id):
        rec = session.get(BillingRecord, billing.order_id)
        existing = _billing_from_record(rec) if rec is not None else None
        stored = merge_billing(existing, billing)
        if stored is existing:
            return stored
        if rec is None:
            rec = BillingRecord(order_id=billing.order_id)
            session.add(rec)
        _write_billing(rec, stored)
        session.flush()
        logger.info("Billing %s stored", stored.order_id, extra={"amount": stored.amount})
        return stored


def get_billing(session: Session, order_id: str) -> Optional[Billing]:
    rec = session.get(BillingRecord, order_id)
    return _billing_from_record(rec) if rec is not None else None


def list_billing(
    session: Session,
    namespace: Optional[str] = None,
    status: Optional[BillingStatus] = None,
    limit: int = 100,
) -> List[Billing]:
    """Billing entries, newest first."""
    query = session.query(BillingRecord)
    if namespace:
        query = query.filter(BillingRecord.namespace == namespace)
    if status is not None:
        query = query.filter(BillingRecord.status == int(status))
    rows = query.order_by(BillingRecord.time.desc()).limit(limit).all()
    return [_billing_from_record(r) for r in rows]


def settle_billing(session: Session, order_id: str) -> Billing:
    """Mark a stored entry SETTLED; settling twice leaves it unchanged."""
    with MeteringContext(order_id=order_id):
        rec = session.get(BillingRecord, order_id)
        if rec is None:
            raise LedgerValidationError(f"Billing not found: {order_id}", order_id=order_id)
        billing = _billing_from_record(rec)
        if billing.is_settled:
            logger.warning("Billing %s is already settled", order_id)
            return billing
        rec.status = int(BillingStatus.SETTLED)
        session.flush()
        logger.info("Billing %s settled", order_id, extra={"amount": billing.amount})
        return billing.settled()
