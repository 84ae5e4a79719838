"""SQLAlchemy repositories for orders and the audit trail.

This module persists order snapshots and audit entries with SQLAlchemy. It
provides an ``orders`` table holding the fields the orchestrator reads and
writes (total, status, transaction reference) and an append-only
``audit_entries`` table with a JSON payload per event.

The engine is created from a URL (``CHECKOUT_DATABASE_URL`` by default) so
the same code runs against PostgreSQL in deployment and SQLite in tests.
"""

from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Iterator, List, Optional

from sqlalchemy import JSON, DateTime, Engine, Integer, Numeric, String, create_engine, select
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from .domain import AuditEvent, AuditEventType, AuditLog, Order, OrderStatus, OrderStore

CENT = Decimal("0.01")


class Base(DeclarativeBase):
    pass


class OrderRow(Base):
    """SQLAlchemy model representing an order.

    Attributes:
        id: External order identifier.
        total: Order total, fixed-point with two decimal places.
        status: OrderStatus value.
        transaction_reference: Gateway transaction id once charged.
    """

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=OrderStatus.PENDING.value)
    transaction_reference: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)


class AuditEntryRow(Base):
    """Append-only audit record.

    Attributes:
        id: Surrogate key; insertion order.
        order_id: Order the event belongs to.
        event_type: AuditEventType value.
        payload: Event data as JSON.
        occurred_at: When the event happened (UTC).
    """

    __tablename__ = "audit_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def make_engine(url: str) -> Engine:
    return create_engine(url, pool_pre_ping=True)


def create_schema(engine: Engine) -> None:
    Base.metadata.create_all(engine)


@contextmanager
def _session(engine: Engine) -> Iterator[Session]:
    with Session(engine) as s:
        yield s


def _to_domain(row: OrderRow) -> Order:
    return Order(
        id=row.id,
        total=Decimal(row.total),
        status=OrderStatus(row.status),
        transaction_reference=row.transaction_reference,
    )


class SqlOrderStore(OrderStore):
    """``OrderStore`` backed by the ``orders`` table."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def find_by_id(self, order_id: str) -> Optional[Order]:
        with _session(self.engine) as s:
            row = s.get(OrderRow, order_id)
            return _to_domain(row) if row else None

    def save(self, order: Order) -> None:
        """Upsert the snapshot in its own transaction.

        Raises:
            ValueError: TOTAL_PRECISION if the total has more than two
                decimal places; the column would round it silently.
        """
        if order.total != order.total.quantize(CENT):
            raise ValueError("TOTAL_PRECISION")
        with _session(self.engine) as s:
            s.merge(
                OrderRow(
                    id=order.id,
                    total=order.total,
                    status=order.status.value,
                    transaction_reference=order.transaction_reference,
                )
            )
            s.commit()


class SqlAuditLog(AuditLog):
    """``AuditLog`` backed by the ``audit_entries`` table."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def append(self, order_id: str, event: AuditEvent) -> None:
        with _session(self.engine) as s:
            s.add(
                AuditEntryRow(
                    order_id=order_id,
                    event_type=event.type.value,
                    payload=event.data,
                    occurred_at=event.occurred_at,
                )
            )
            s.commit()

    def entries_for(self, order_id: str) -> List[AuditEvent]:
        with _session(self.engine) as s:
            rows = s.execute(
                select(AuditEntryRow)
                .where(AuditEntryRow.order_id == order_id)
                .order_by(AuditEntryRow.id)
            ).scalars().all()
            return [
                AuditEvent(type=AuditEventType(r.event_type), data=dict(r.payload), occurred_at=r.occurred_at)
                for r in rows
            ]
