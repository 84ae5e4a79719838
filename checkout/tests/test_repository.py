"""Integration tests for the SQLAlchemy order store and audit log.

These tests run against a SQLite file per test so the repositories are
exercised through a real engine and real sessions.
"""
from decimal import Decimal

import pytest

from checkout.domain import AuditEvent, AuditEventType, Order, OrderStatus, PaymentResult, RetryPolicy
from checkout.orchestrator import PaymentOrchestrator
from checkout.adapters import FraudScreenStub
from checkout.repository import SqlAuditLog, SqlOrderStore, create_schema, make_engine


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'checkout.db'}")
    create_schema(eng)
    yield eng
    eng.dispose()


def test_find_unknown_order_returns_none(engine):
    assert SqlOrderStore(engine).find_by_id("nope") is None


def test_save_and_reload_order(engine):
    store = SqlOrderStore(engine)
    store.save(Order(id="ord-1", total=Decimal("19.99")))

    loaded = store.find_by_id("ord-1")
    assert loaded.total == Decimal("19.99")
    assert loaded.status == OrderStatus.PENDING
    assert loaded.transaction_reference is None


def test_save_is_an_upsert(engine):
    store = SqlOrderStore(engine)
    order = Order(id="ord-1", total=Decimal("19.99"))
    store.save(order)
    store.save(order.mark_paid("tx-9"))

    loaded = store.find_by_id("ord-1")
    assert loaded.status == OrderStatus.PAID
    assert loaded.transaction_reference == "tx-9"


def test_save_rejects_sub_cent_total(engine):
    store = SqlOrderStore(engine)
    with pytest.raises(ValueError, match="TOTAL_PRECISION"):
        store.save(Order(id="ord-1", total=Decimal("10.005")))
    assert store.find_by_id("ord-1") is None


def test_save_accepts_trailing_zeros(engine):
    store = SqlOrderStore(engine)
    store.save(Order(id="ord-1", total=Decimal("10.500")))
    assert store.find_by_id("ord-1").total == Decimal("10.50")


def test_audit_entries_are_appended_in_order(engine):
    log = SqlAuditLog(engine)
    log.append("ord-1", AuditEvent(AuditEventType.PAYMENT_FAILED, {"attempts": 3}))
    log.append("ord-2", AuditEvent(AuditEventType.PAYMENT_SUCCEEDED, {}))
    log.append("ord-1", AuditEvent(AuditEventType.PAYMENT_CANCELLED, {"attempts": 1}))

    events = log.entries_for("ord-1")
    assert [e.type for e in events] == [AuditEventType.PAYMENT_FAILED, AuditEventType.PAYMENT_CANCELLED]
    assert events[0].data == {"attempts": 3}


def test_orchestrator_against_sql_stores(engine, card):
    class Gateway:
        def charge(self, amount, details): return PaymentResult.approved("tx-sql")
        def refund(self, ref, amount): raise AssertionError("not called")

    store = SqlOrderStore(engine)
    audit = SqlAuditLog(engine)
    store.save(Order(id="ord-1", total=Decimal("42.00")))
    service = PaymentOrchestrator(store, FraudScreenStub(), Gateway(), audit, RetryPolicy(max_attempts=1))

    service.process_payment("ord-1", card)

    assert store.find_by_id("ord-1").status == OrderStatus.PAID
    [event] = audit.entries_for("ord-1")
    assert event.type == AuditEventType.PAYMENT_SUCCEEDED
    assert event.data["amount"] == "42.00"
