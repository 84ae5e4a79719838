"""In-process adapters for the checkout domain ports.

These adapters implement ``OrderStore``, ``FraudScreen``, ``ChargeGateway``
and ``AuditLog`` without any network or database access. They are intended
for unit tests and local development where deterministic behavior is
useful and external services are not required.
"""

import threading
import uuid
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from .domain import (
    AuditEvent,
    AuditLog,
    ChargeGateway,
    FraudCheckResult,
    FraudScreen,
    GatewayError,
    GatewayFailureKind,
    Order,
    OrderStore,
    PaymentDetails,
    PaymentResult,
    RefundResult,
)


class InMemoryOrderStore(OrderStore):
    """Dict-backed ``OrderStore``.

    Orders are frozen snapshots, so storing and returning the same object
    is safe. A lock guards the dict for concurrent callers.
    """

    def __init__(self, orders: Iterable[Order] = ()):
        self._lock = threading.Lock()
        self._orders: Dict[str, Order] = {o.id: o for o in orders}

    def find_by_id(self, order_id: str) -> Optional[Order]:
        with self._lock:
            return self._orders.get(order_id)

    def save(self, order: Order) -> None:
        with self._lock:
            self._orders[order.id] = order


class FraudScreenStub(FraudScreen):
    """Stub implementation of ``FraudScreen``.

    Rejects charges above ``max_amount`` and charges from instruments listed
    in ``blocked_instruments``. Everything else is accepted.
    """

    def __init__(self, max_amount: Decimal = Decimal("10000"), blocked_instruments: Iterable[str] = ()):
        self.max_amount = max_amount
        self.blocked_instruments = set(blocked_instruments)

    def check(self, instrument_id: str, amount: Decimal) -> FraudCheckResult:
        """Score a proposed charge.

        Args:
            instrument_id: Card/account number or token.
            amount: Amount about to be charged.

        Returns:
            FraudCheckResult: ``rejected=True`` with a reason code for a
            blocked instrument or an amount over the limit.
        """
        if instrument_id in self.blocked_instruments:
            return FraudCheckResult(rejected=True, reason="BLOCKED_INSTRUMENT")
        if amount > self.max_amount:
            return FraudCheckResult(rejected=True, reason="AMOUNT_OVER_LIMIT")
        return FraudCheckResult(rejected=False)


class ChargeGatewayStub(ChargeGateway):
    """Stub implementation of ``ChargeGateway``.

    Approves charges with a positive amount and returns a generated UUID as
    the transaction id. Instruments ending in ``0002`` are declined, the
    conventional test-card behaviour of most gateways. Refunds of a known
    transaction are approved as long as the cumulative refunded amount does
    not exceed what was charged.
    """

    DECLINE_SUFFIX = "0002"

    def __init__(self):
        self._lock = threading.Lock()
        self._charges: Dict[str, Decimal] = {}
        self._refunded: Dict[str, Decimal] = {}

    def charge(self, amount: Decimal, details: PaymentDetails) -> PaymentResult:
        """Charge a mock payment.

        Raises:
            GatewayError: DECLINED for a declining test instrument, ERROR for
                a non-positive amount.
        """
        if amount <= 0:
            raise GatewayError(GatewayFailureKind.ERROR, "INVALID_AMOUNT")
        if details.instrument_id.endswith(self.DECLINE_SUFFIX):
            raise GatewayError(GatewayFailureKind.DECLINED, "CARD_DECLINED")
        tx = str(uuid.uuid4())
        with self._lock:
            self._charges[tx] = amount
        return PaymentResult.approved(tx)

    def refund(self, transaction_reference: str, amount: Decimal) -> RefundResult:
        with self._lock:
            charged = self._charges.get(transaction_reference)
            if charged is None:
                return RefundResult(success=False, failure_reason="UNKNOWN_TRANSACTION")
            already = self._refunded.get(transaction_reference, Decimal("0"))
            if already + amount > charged:
                return RefundResult(success=False, failure_reason="REFUND_EXCEEDS_CHARGE")
            self._refunded[transaction_reference] = already + amount
        return RefundResult(success=True, refund_reference=f"re_{uuid.uuid4().hex}")


class InMemoryAuditLog(AuditLog):
    """Append-only list of ``(order_id, event)`` pairs."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: List[Tuple[str, AuditEvent]] = []

    def append(self, order_id: str, event: AuditEvent) -> None:
        with self._lock:
            self._entries.append((order_id, event))

    @property
    def entries(self) -> List[Tuple[str, AuditEvent]]:
        with self._lock:
            return list(self._entries)

    def entries_for(self, order_id: str) -> List[AuditEvent]:
        return [e for oid, e in self.entries if oid == order_id]
