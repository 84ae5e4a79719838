"""Payment orchestration service.

``PaymentOrchestrator`` composes the domain ports into the two workflows
exposed by this package: charging a pending order (with fraud screening
and a bounded retry loop against the gateway) and refunding a charged
order. It holds no state between calls; every transition produces a new
``Order`` snapshot that is persisted through the order store.
"""

import logging
import threading
from decimal import Decimal
from typing import Optional

from .context import request_scope
from .domain import (
    AuditEvent,
    AuditEventType,
    AuditLog,
    ChargeGateway,
    FraudDetected,
    FraudScreen,
    GatewayError,
    InvalidOperation,
    InvalidOrderState,
    Order,
    OrderNotFound,
    OrderStore,
    PaymentCancelled,
    PaymentDetails,
    PaymentProcessingExhausted,
    PaymentResult,
    RefundResult,
    RetryPolicy,
)

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("checkout.audit")


class PaymentOrchestrator:
    """Domain service responsible for charging and refunding orders.

    The service orchestrates the steps required to take payment for an
    order using the provided ports. It does not implement locking: two
    concurrent calls for the same order are resolved by the order store
    (last write wins).
    """

    def __init__(
        self,
        orders: OrderStore,
        fraud_screen: FraudScreen,
        gateway: ChargeGateway,
        audit_log: AuditLog,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """Initialize the service with required dependencies.

        Args:
            orders: OrderStore used to load and save order snapshots.
            fraud_screen: FraudScreen consulted before any money moves.
            gateway: ChargeGateway used to charge and refund.
            audit_log: AuditLog receiving every outcome.
            retry_policy: Bounds for the charge retry loop.
        """
        self.orders = orders
        self.fraud_screen = fraud_screen
        self.gateway = gateway
        self.audit_log = audit_log
        self.retry_policy = retry_policy or RetryPolicy()

    # ---- Charge ----
    def process_payment(
        self,
        order_id: str,
        details: PaymentDetails,
        cancel: Optional[threading.Event] = None,
        request_id: Optional[str] = None,
    ) -> PaymentResult:
        """Charge a pending order: screen for fraud, charge, record.

        The order is saved exactly once per call after fraud screening,
        and every outcome is written to the audit log before this method
        returns or raises, including when that save itself fails.

        Args:
            order_id: Identifier of an existing order.
            details: Payment instrument for this charge.
            cancel: Optional event; when set during an inter-attempt delay
                the retry loop stops and PaymentCancelled is raised.
            request_id: Optional correlation id for logs and HTTP calls.

        Returns:
            PaymentResult: The successful gateway result.

        Raises:
            OrderNotFound: If the order does not exist.
            InvalidOrderState: If the order is not PENDING. No
                collaborator other than the order store is called.
            FraudDetected: If the fraud screen rejects the charge; the
                order is saved as FRAUD_SUSPECTED first.
            PaymentProcessingExhausted: If the charge loop is abandoned;
                the order is saved as PAYMENT_FAILED first.
            PaymentCancelled: If ``cancel`` is set during a retry delay;
                the order is left PENDING.
        """
        with request_scope(request_id):
            order = self._load(order_id)
            if not order.is_payable:
                logger.info("payment refused", extra={"order_id": order_id, "status": order.status.value})
                raise InvalidOrderState(order_id, order.status)

            # 1) Fraud screen
            verdict = self.fraud_screen.check(details.instrument_id, order.total)
            if verdict.rejected:
                try:
                    self.orders.save(order.mark_fraud_suspected())
                finally:
                    self._audit(
                        order_id,
                        AuditEventType.PAYMENT_REJECTED,
                        amount=str(order.total),
                        reason=verdict.reason,
                    )
                logger.warning("fraud screen rejected charge", extra={"order_id": order_id, "reason": verdict.reason})
                raise FraudDetected(order_id, verdict.reason)

            # 2) Charge with bounded retry
            try:
                result = self._charge_with_retry(order, details, cancel)
            except PaymentProcessingExhausted as exc:
                try:
                    self.orders.save(order.mark_payment_failed())
                finally:
                    self._audit(
                        order_id,
                        AuditEventType.PAYMENT_FAILED,
                        amount=str(order.total),
                        attempts=exc.attempts,
                        reason=_failure_detail(exc.last_failure),
                    )
                logger.warning("payment failed", extra={"order_id": order_id, "attempts": exc.attempts})
                raise

            # 3) Confirm (audited even if the save fails)
            try:
                self.orders.save(order.mark_paid(result.transaction_id))
            finally:
                self._audit(
                    order_id,
                    AuditEventType.PAYMENT_SUCCEEDED,
                    amount=str(order.total),
                    transaction_id=result.transaction_id,
                )
            logger.info("payment succeeded", extra={"order_id": order_id})
            return result

    def _charge_with_retry(
        self, order: Order, details: PaymentDetails, cancel: Optional[threading.Event]
    ) -> PaymentResult:
        """Call the gateway until success, a non-retryable failure, or the
        attempt budget runs out.

        Only TIMEOUT failures consume an attempt and trigger another call;
        declines and other errors abandon the loop at once.
        """
        policy = self.retry_policy
        attempts = 0
        while True:
            attempts += 1
            try:
                result = self.gateway.charge(order.total, details)
            except GatewayError as e:
                failure = e
                logger.warning(
                    "charge attempt failed",
                    extra={"order_id": order.id, "attempt": attempts, "kind": e.kind.value},
                )
                if not e.kind.is_retryable or attempts >= policy.max_attempts:
                    raise PaymentProcessingExhausted(order.id, attempts, failure) from e
            else:
                if result.success:
                    return result
                logger.warning("charge declined", extra={"order_id": order.id, "attempt": attempts})
                raise PaymentProcessingExhausted(order.id, attempts, result)

            if self._wait(policy.delay, cancel):
                self._audit(
                    order.id,
                    AuditEventType.PAYMENT_CANCELLED,
                    amount=str(order.total),
                    attempts=attempts,
                    reason=_failure_detail(failure),
                )
                logger.info("payment cancelled", extra={"order_id": order.id, "attempts": attempts})
                raise PaymentCancelled(order.id, attempts) from failure

    @staticmethod
    def _wait(delay: float, cancel: Optional[threading.Event]) -> bool:
        """Pause between attempts. Returns True if cancellation was requested."""
        if cancel is None:
            if delay > 0:
                threading.Event().wait(delay)
            return False
        if cancel.is_set():
            return True
        return cancel.wait(delay) if delay > 0 else cancel.is_set()

    # ---- Refund ----
    def refund_payment(
        self, order_id: str, amount: Decimal, reason: str, request_id: Optional[str] = None
    ) -> RefundResult:
        """Refund all or part of a charged order.

        The refund is attempted once. A failed refund is a normal outcome:
        it is audited and returned, and the order is left untouched.

        Args:
            order_id: Identifier of an existing order.
            amount: Amount to refund; compared exactly against the total.
            reason: Free-text reason recorded in the audit log.
            request_id: Optional correlation id for logs and HTTP calls.

        Returns:
            RefundResult: Success or failure as reported by the gateway.

        Raises:
            OrderNotFound: If the order does not exist.
            InvalidOperation: If there is no payment to refund, the amount
                is not positive, or it exceeds the order total.
        """
        with request_scope(request_id):
            order = self._load(order_id)
            if not order.is_refundable:
                raise InvalidOperation("no payment to refund")
            if amount <= 0:
                raise InvalidOperation("refund amount must be positive")
            if amount > order.total:
                raise InvalidOperation("refund exceeds total")

            try:
                result = self.gateway.refund(order.transaction_reference, amount)
            except GatewayError as e:
                logger.warning("refund call failed", extra={"order_id": order_id, "kind": e.kind.value})
                result = RefundResult(success=False, failure_reason=e.detail)

            event_type = AuditEventType.REFUND_SUCCEEDED if result.success else AuditEventType.REFUND_FAILED
            try:
                if result.success:
                    self.orders.save(order.mark_refunded(amount))
            finally:
                self._audit(
                    order_id,
                    event_type,
                    amount=str(amount),
                    reason=reason,
                    refund_reference=result.refund_reference,
                    failure_reason=result.failure_reason,
                )
            logger.info("refund processed", extra={"order_id": order_id, "success": result.success})
            return result

    # ---- Helpers ----
    def _load(self, order_id: str) -> Order:
        order = self.orders.find_by_id(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def _audit(self, order_id: str, event_type: AuditEventType, **data) -> None:
        """Append an audit entry. Failures are logged, never raised."""
        try:
            self.audit_log.append(order_id, AuditEvent(type=event_type, data=data))
        except Exception:
            audit_logger.exception(
                "audit append failed", extra={"order_id": order_id, "event": event_type.value}
            )


def _failure_detail(failure) -> str:
    if isinstance(failure, GatewayError):
        return f"{failure.kind.value}:{failure.detail}"
    if isinstance(failure, PaymentResult):
        return f"DECLINED:{failure.failure_reason}"
    return str(failure)
