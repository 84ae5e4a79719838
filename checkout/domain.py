"""Domain models, ports and errors for payment processing.

This module contains immutable dataclasses used as value objects for
orders and payments, protocol definitions (ports) for the external
collaborators the orchestrator depends on (order storage, fraud screening,
the charge gateway and the audit log), and the exception hierarchy raised
by the orchestration workflows.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Protocol


# ---- Enums ----
class OrderStatus(str, Enum):
    """Enumeration of the possible order statuses.

    PENDING is the only status from which a payment may be processed.
    """

    PENDING = "PENDING"
    PAID = "PAID"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    FRAUD_SUSPECTED = "FRAUD_SUSPECTED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"


# Statuses that require a transaction reference on the order.
CHARGED_STATUSES = frozenset(
    {OrderStatus.PAID, OrderStatus.PARTIALLY_REFUNDED, OrderStatus.REFUNDED}
)


class GatewayFailureKind(str, Enum):
    """Classification of a failed gateway call.

    Only TIMEOUT is transient; DECLINED and ERROR are deterministic for the
    attempt that produced them and are never retried.
    """

    TIMEOUT = "TIMEOUT"
    DECLINED = "DECLINED"
    ERROR = "ERROR"

    @property
    def is_retryable(self) -> bool:
        return self is GatewayFailureKind.TIMEOUT


class AuditEventType(str, Enum):
    PAYMENT_REJECTED = "PAYMENT_REJECTED"
    PAYMENT_SUCCEEDED = "PAYMENT_SUCCEEDED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_CANCELLED = "PAYMENT_CANCELLED"
    REFUND_SUCCEEDED = "REFUND_SUCCEEDED"
    REFUND_FAILED = "REFUND_FAILED"


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class Order:
    """Snapshot of an order as seen by the orchestrator.

    Attributes:
        id: Opaque identifier assigned by the order store.
        total: Order total as a fixed-point Decimal, never negative.
        status: Current OrderStatus.
        transaction_reference: Gateway transaction id, present only once
            the order has been charged.

    The dataclass is frozen: transitions return a new snapshot which the
    caller persists through ``OrderStore.save``.
    """

    id: str
    total: Decimal
    status: OrderStatus = OrderStatus.PENDING
    transaction_reference: Optional[str] = None

    def __post_init__(self):
        if self.total < 0:
            raise ValueError("NEGATIVE_TOTAL")
        charged = self.status in CHARGED_STATUSES
        if charged != bool(self.transaction_reference):
            raise ValueError(
                f"transaction_reference must be set iff status is charged (status={self.status.value})"
            )

    @property
    def is_payable(self) -> bool:
        return self.status is OrderStatus.PENDING

    @property
    def is_refundable(self) -> bool:
        return bool(self.transaction_reference)

    def mark_paid(self, transaction_reference: str) -> "Order":
        return replace(self, status=OrderStatus.PAID, transaction_reference=transaction_reference)

    def mark_payment_failed(self) -> "Order":
        return replace(self, status=OrderStatus.PAYMENT_FAILED, transaction_reference=None)

    def mark_fraud_suspected(self) -> "Order":
        return replace(self, status=OrderStatus.FRAUD_SUSPECTED, transaction_reference=None)

    def mark_refunded(self, amount: Decimal) -> "Order":
        """Return the snapshot after a successful refund of ``amount``.

        A refund equal to the order total (exact Decimal comparison) fully
        refunds the order; any smaller amount is a partial refund. REFUNDED
        is terminal: later refunds never move the order back to
        PARTIALLY_REFUNDED.
        """
        if self.status is OrderStatus.REFUNDED or amount == self.total:
            status = OrderStatus.REFUNDED
        else:
            status = OrderStatus.PARTIALLY_REFUNDED
        return replace(self, status=status)


@dataclass(frozen=True)
class PaymentDetails:
    """Payment instrument supplied by the caller for a single charge.

    Attributes:
        instrument_id: Card/account number or a gateway token.
        expiry: Expiry in ``MM/YY`` form.
        verification_code: Card verification code.

    Instances are never persisted and their repr never exposes the full
    instrument or the verification code.
    """

    instrument_id: str
    expiry: str
    verification_code: str = field(repr=False)

    @property
    def masked_instrument(self) -> str:
        return "*" * max(len(self.instrument_id) - 4, 0) + self.instrument_id[-4:]

    def __repr__(self) -> str:
        return f"PaymentDetails(instrument_id={self.masked_instrument!r}, expiry={self.expiry!r})"


@dataclass(frozen=True)
class FraudCheckResult:
    rejected: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of a charge.

    Attributes:
        success: Whether the gateway approved the charge.
        transaction_id: Gateway transaction id, required iff ``success``.
        failure_reason: Reason reported for a failed charge, required iff
            not ``success``.
    """

    success: bool
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None

    def __post_init__(self):
        if self.success and not self.transaction_id:
            raise ValueError("transaction_id is required for a successful payment")
        if not self.success and not self.failure_reason:
            raise ValueError("failure_reason is required for a failed payment")

    @classmethod
    def approved(cls, transaction_id: str) -> "PaymentResult":
        return cls(success=True, transaction_id=transaction_id)

    @classmethod
    def failed(cls, reason: str) -> "PaymentResult":
        return cls(success=False, failure_reason=reason)


@dataclass(frozen=True)
class RefundResult:
    success: bool
    refund_reference: Optional[str] = None
    failure_reason: Optional[str] = None


@dataclass(frozen=True)
class RetryPolicy:
    """Bounds for the charge retry loop.

    Attributes:
        max_attempts: Total gateway calls allowed, at least 1.
        delay: Seconds to wait between attempts, at least 0.
    """

    max_attempts: int = 3
    delay: float = 0.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay < 0:
            raise ValueError("delay must be >= 0")


@dataclass(frozen=True)
class AuditEvent:
    type: AuditEventType
    data: dict = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ---- Errors ----
class GatewayError(Exception):
    """Failure reported by (or while talking to) the charge gateway.

    Attributes:
        kind: GatewayFailureKind used by the retry loop to decide whether
            another attempt is allowed.
        detail: Short machine-readable detail, e.g. ``CARD_DECLINED``.
    """

    def __init__(self, kind: GatewayFailureKind, detail: str = ""):
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail or kind.value


class CheckoutError(ValueError):
    """Base class for orchestration errors. ``code`` is stable."""

    code = "CHECKOUT_ERROR"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)


class OrderNotFound(CheckoutError):
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        super().__init__(f"{self.code}: {order_id}")
        self.order_id = order_id


class InvalidOrderState(CheckoutError):
    code = "INVALID_ORDER_STATE"

    def __init__(self, order_id: str, status: OrderStatus):
        super().__init__(f"{self.code}: order {order_id} is {status.value}")
        self.order_id = order_id
        self.status = status


class FraudDetected(CheckoutError):
    code = "FRAUD_DETECTED"

    def __init__(self, order_id: str, reason: Optional[str]):
        super().__init__(f"{self.code}: {reason or 'unspecified'}")
        self.order_id = order_id
        self.reason = reason


class PaymentProcessingExhausted(CheckoutError):
    """Raised when the charge loop is abandoned.

    Attributes:
        attempts: Number of gateway calls made.
        last_failure: The GatewayError (or failed PaymentResult) that ended
            the loop.
    """

    code = "PAYMENT_FAILED"

    def __init__(self, order_id: str, attempts: int, last_failure):
        super().__init__(f"{self.code}: order {order_id} after {attempts} attempt(s): {_describe(last_failure)}")
        self.order_id = order_id
        self.attempts = attempts
        self.last_failure = last_failure


class PaymentCancelled(CheckoutError):
    code = "PAYMENT_CANCELLED"

    def __init__(self, order_id: str, attempts: int):
        super().__init__(f"{self.code}: order {order_id} after {attempts} attempt(s)")
        self.order_id = order_id
        self.attempts = attempts


class InvalidOperation(CheckoutError):
    code = "INVALID_OPERATION"


def _describe(failure) -> str:
    if isinstance(failure, PaymentResult):
        return failure.failure_reason or "declined"
    return str(failure)


# ---- Ports (DIP) ----
class OrderStore(Protocol):
    """Port describing order persistence."""

    def find_by_id(self, order_id: str) -> Optional[Order]:
        """Return the order snapshot, or None when the id is unknown."""
        raise NotImplementedError()

    def save(self, order: Order) -> None:
        """Durably upsert the order snapshot."""
        raise NotImplementedError()


class FraudScreen(Protocol):
    """Port describing the fraud scoring service. Pure query."""

    def check(self, instrument_id: str, amount: Decimal) -> FraudCheckResult:
        raise NotImplementedError()


class ChargeGateway(Protocol):
    """Port describing the payment network integration.

    ``charge`` may move money. Failures are raised as GatewayError tagged
    with a GatewayFailureKind so callers can branch on the kind.
    """

    def charge(self, amount: Decimal, details: PaymentDetails) -> PaymentResult:
        raise NotImplementedError()

    def refund(self, transaction_reference: str, amount: Decimal) -> RefundResult:
        raise NotImplementedError()


class AuditLog(Protocol):
    """Port describing the append-only audit record of outcomes."""

    def append(self, order_id: str, event: AuditEvent) -> None:
        raise NotImplementedError()
