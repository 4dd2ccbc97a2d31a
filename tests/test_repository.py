"""Tests for metering persistence on an in-memory SQLite database."""

import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine

from clustermeter.db.models import BillingRecord, MeteringRecord, MonitorRecord
from clustermeter.exceptions import LedgerValidationError, PriceQueryError
from clustermeter.resources.config import BillingStatus
from clustermeter.resources.ledger import AppCost, Payment, create_consumption_billing
from clustermeter.resources.records import Metering, Monitor, meter_monitor
from clustermeter.resources.registry import DEFAULT_REGISTRY, Price
from clustermeter.resources.repository import (
    fetch_prices,
    get_billing,
    get_metering,
    get_monitors,
    list_billing,
    save_billing,
    save_metering,
    save_monitor,
    save_price,
    settle_billing,
)

T0 = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)


def _billing(order_id="ord-1", namespace="ns-alice", time=T0):
    cost = AppCost.compute("web", {0: 1000, 1: 500}, DEFAULT_REGISTRY)
    return create_consumption_billing(
        namespace=namespace, owner="alice", app_costs=[cost],
        payment=Payment(method="balance", user_id="user-1"),
        time=time, order_id=order_id,
    )


class TestPrices:
    def test_save_and_fetch(self, session_factory):
        with session_factory() as session:
            save_price(session, Price("memory", 33, "Mebibytes unit"))
            save_price(session, Price("cpu", 67, "mCore unit"))
            save_price(session, Price("cpu", 70, "mCore unit"))
            session.commit()
        assert fetch_prices(session_factory, timeout=5) == [
            Price("cpu", 70, "mCore unit"),
            Price("memory", 33, "Mebibytes unit"),
        ]

    def test_fetch_timeout(self):
        release = threading.Event()

        def hung_factory():
            release.wait(5)
            raise RuntimeError("released")

        try:
            with pytest.raises(PriceQueryError, match="timed out"):
                fetch_prices(hung_factory, timeout=0.05)
            workers = [t for t in threading.enumerate() if t.name == "price-fetch"]
            assert workers
            assert all(t.daemon for t in workers)
        finally:
            release.set()

    def test_fetch_uses_settings_timeout(self, monkeypatch, session_factory):
        from clustermeter.settings import get_settings

        monkeypatch.setenv("CLUSTERMETER_PRICE_FETCH_TIMEOUT", "2.5")
        get_settings.cache_clear()
        assert get_settings().price_fetch_timeout == 2.5
        assert fetch_prices(session_factory) == []


@pytest.fixture
def file_sessions(tmp_path):
    """Session factory over a file database, one connection per session."""
    from clustermeter.db import get_session_factory, init_db

    eng = create_engine(f"sqlite:///{tmp_path / 'meter.db'}")
    init_db(eng)
    yield get_session_factory(eng)
    eng.dispose()


class TestMonitors:
    def test_save_overwrites_same_key(self, session):
        save_monitor(session, Monitor(time=T0, category="ns", name="web", property="app", used={0: 1}))
        save_monitor(session, Monitor(time=T0, category="ns", name="web", property="app", used={0: 2}))
        assert session.query(MonitorRecord).count() == 1
        (monitor,) = get_monitors(session, "ns")
        assert dict(monitor.used) == {0: 2}
        assert monitor.time == T0

    def test_distinct_names_kept(self, session):
        save_monitor(session, Monitor(time=T0, category="ns", name="web", property="app", used={0: 1}))
        save_monitor(session, Monitor(time=T0, category="ns", name="db", property="app", used={0: 1}, app_type=1))
        assert len(get_monitors(session, "ns")) == 2

    def test_time_range_half_open(self, session):
        for i in range(3):
            save_monitor(session, Monitor(time=T0 + i * HOUR, category="ns", name="web", property="app"))
        monitors = get_monitors(session, "ns", start=T0, end=T0 + 2 * HOUR)
        assert [m.time for m in monitors] == [T0, T0 + HOUR]

    def test_concurrent_writers_keep_one_row(self, file_sessions):
        with file_sessions() as late, file_sessions() as early:
            assert get_monitors(late, "ns") == []
            save_monitor(early, Monitor(time=T0, category="ns", name="web", property="app", used={0: 1}))
            early.commit()
            save_monitor(late, Monitor(time=T0, category="ns", name="web", property="app", used={0: 2}))
            late.commit()
        with file_sessions() as check:
            assert check.query(MonitorRecord).count() == 1
            (monitor,) = get_monitors(check, "ns")
            assert dict(monitor.used) == {0: 2}


class TestMetering:
    def test_save_overwrites_same_bucket(self, session):
        monitor = Monitor(time=T0, category="ns", name="web", property="app", used={0: 1000, 1: 500})
        for entry in meter_monitor(monitor, DEFAULT_REGISTRY):
            save_metering(session, entry)
        for entry in meter_monitor(monitor, DEFAULT_REGISTRY):
            save_metering(session, entry)
        assert session.query(MeteringRecord).count() == 2
        entries = get_metering(session, "ns")
        assert sum(e.amount for e in entries) == 83500

    def test_filters(self, session):
        save_metering(session, Metering("ns", "cpu", T0, 10, 670))
        save_metering(session, Metering("ns", "cpu", T0 + HOUR, 20, 1340))
        save_metering(session, Metering("ns", "memory", T0, 10, 330))
        save_metering(session, Metering("other", "cpu", T0, 10, 670))
        cpu = get_metering(session, "ns", property_name="cpu")
        assert [(e.time, e.value) for e in cpu] == [(T0, 10), (T0 + HOUR, 20)]
        assert len(get_metering(session, "ns", start=T0 + HOUR)) == 1
        assert len(get_metering(session, "ns", end=T0 + HOUR)) == 2

    def test_concurrent_writers_keep_one_row(self, file_sessions):
        with file_sessions() as late, file_sessions() as early:
            assert get_metering(late, "ns") == []
            save_metering(early, Metering("ns", "cpu", T0, 10, 670))
            early.commit()
            save_metering(late, Metering("ns", "cpu", T0, 20, 1340))
            late.commit()
        with file_sessions() as check:
            assert check.query(MeteringRecord).count() == 1
            (entry,) = get_metering(check, "ns")
            assert (entry.value, entry.amount) == (20, 1340)


class TestBilling:
    def test_save_and_get(self, session):
        stored = save_billing(session, _billing())
        assert get_billing(session, "ord-1") == stored == _billing()
        assert get_billing(session, "missing") is None

    def test_retry_is_idempotent(self, session):
        save_billing(session, _billing())
        save_billing(session, _billing())
        assert session.query(BillingRecord).count() == 1

    def test_conflicting_rewrite(self, session):
        save_billing(session, _billing())
        with pytest.raises(LedgerValidationError, match="differs"):
            save_billing(session, _billing(namespace="ns-other"))

    def test_settle(self, session):
        save_billing(session, _billing())
        settled = settle_billing(session, "ord-1")
        assert settled.status == BillingStatus.SETTLED
        assert get_billing(session, "ord-1").is_settled

    def test_settle_twice(self, session):
        save_billing(session, _billing())
        settle_billing(session, "ord-1")
        assert settle_billing(session, "ord-1").is_settled

    def test_settle_unknown(self, session):
        with pytest.raises(LedgerValidationError, match="not found"):
            settle_billing(session, "nope")

    def test_settled_never_reverts(self, session):
        save_billing(session, _billing())
        settle_billing(session, "ord-1")
        assert save_billing(session, _billing()).is_settled
        assert get_billing(session, "ord-1").is_settled

    def test_save_settled_twin(self, session):
        save_billing(session, _billing())
        save_billing(session, _billing().settled())
        assert get_billing(session, "ord-1").is_settled

    def test_list_billing(self, session):
        save_billing(session, _billing("a", time=T0))
        save_billing(session, _billing("b", time=T0 + HOUR))
        save_billing(session, _billing("c", namespace="ns-bob"))
        settle_billing(session, "a")
        assert [b.order_id for b in list_billing(session, namespace="ns-alice")] == ["b", "a"]
        assert [b.order_id for b in list_billing(session, status=BillingStatus.UNSETTLED)] == ["b", "c"]
        assert len(list_billing(session, limit=1)) == 1
