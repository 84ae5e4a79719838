"""HTTP adapter clients with retries, circuit breakers, and context headers.

This module implements concrete HTTP clients for the fraud screen and the
charge gateway ports using ``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set
    by ``checkout.context.request_scope``.
- Circuit breaker per downstream service (fraud, gateway) to avoid
    hammering unhealthy dependencies, with HALF_OPEN probing after a timeout.
- Retry with exponential backoff for the fraud screen only (a pure query).
    The gateway client never retries: charge retries are decided by the
    orchestrator from the tagged ``GatewayError`` it raises.
- Idempotency: gateway calls carry an ``Idempotency-Key`` derived from the
    request id, so every attempt made for one payment sends the same key.
"""

import logging
import threading
import time
import uuid
from decimal import Decimal
from enum import Enum
from typing import Optional

import httpx

from .context import REQUEST_ID_CTX
from .domain import (
    ChargeGateway,
    FraudCheckResult,
    FraudScreen,
    GatewayError,
    GatewayFailureKind,
    PaymentDetails,
    PaymentResult,
    RefundResult,
)
from .settings import CheckoutSettings, get_settings

logger = logging.getLogger(__name__)


# ---------------- Circuit Breaker ---------------- #

class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(RuntimeError):
    """Raised by ``CircuitBreaker.before_call`` when calls are not allowed."""


class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful trial call; only one trial call may
      be in flight; back to OPEN on failure.

    This implementation is thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = CircuitState.CLOSED
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        """Current breaker state with time-based transition handling."""
        with self._lock:
            if self._state is CircuitState.OPEN and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = False
            return self._state

    def before_call(self) -> CircuitState:
        """Check and update state before a protected call.

        Raises:
            CircuitOpenError: If the circuit is OPEN or a HALF_OPEN trial
                call is already in flight.
        """
        with self._lock:
            st = self.state
            if st is CircuitState.OPEN:
                raise CircuitOpenError(f"{self.name}: CIRCUIT_OPEN")
            if st is CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpenError(f"{self.name}: CIRCUIT_HALF_OPEN_BUSY")
                self._trial_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = CircuitState.CLOSED
            self._trial_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state is CircuitState.HALF_OPEN or (
                self._failures >= self.fail_threshold and self._state is not CircuitState.OPEN
            ):
                if self._state is not CircuitState.OPEN:
                    logger.warning("circuit opened", extra={"circuit": self.name})
                self._state = CircuitState.OPEN
                self._opened_at = time.monotonic()
                self._trial_in_flight = False

    def on_finish(self):
        """Release any HALF_OPEN trial flag after a call finishes."""
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._trial_in_flight = False


_breakers: dict[str, CircuitBreaker] = {}
_breakers_lock = threading.Lock()


def get_breaker(name: str, settings: Optional[CheckoutSettings] = None) -> CircuitBreaker:
    """Return the process-wide breaker for a downstream service."""
    settings = settings or get_settings()
    with _breakers_lock:
        cb = _breakers.get(name)
        if cb is None:
            cb = _breakers[name] = CircuitBreaker(
                name, settings.circuit_fail_threshold, settings.circuit_reset_timeout
            )
        return cb


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _idempotency_key(operation: str) -> str:
    """Key shared by every attempt made within the current request scope.

    Outside a scope there is nothing to tie attempts together, so a random
    key is used.
    """
    rid = REQUEST_ID_CTX.get()
    if not rid or rid == "-":
        rid = str(uuid.uuid4())
    return f"{rid}:{operation}"


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry only on transport errors or HTTP 5xx."""
    if exc is not None:
        return True
    return resp is not None and 500 <= resp.status_code < 600


def _status_error(resp: httpx.Response) -> httpx.HTTPStatusError:
    return httpx.HTTPStatusError(f"UNEXPECTED_STATUS_{resp.status_code}", request=None, response=resp)


def _json_body(resp: httpx.Response) -> dict:
    """Decode a gateway response body.

    Raises:
        GatewayError: ERROR/MALFORMED_RESPONSE when the body is not a JSON
            object.
    """
    try:
        data = resp.json()
    except ValueError as e:
        raise GatewayError(GatewayFailureKind.ERROR, "MALFORMED_RESPONSE") from e
    if not isinstance(data, dict):
        raise GatewayError(GatewayFailureKind.ERROR, "MALFORMED_RESPONSE")
    return data


# ---------------- Fraud Screen Adapter ---------------- #

class HttpFraudScreen(FraudScreen):
    """HTTP client for the fraud scoring service with retry and circuit breaker."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        settings: Optional[CheckoutSettings] = None,
    ):
        self.settings = settings or get_settings()
        self.base_url = base_url or self.settings.fraud_base_url
        self.timeout = timeout or self.settings.http_timeout_secs
        self.breaker = get_breaker("fraud", self.settings)

    def check(self, instrument_id: str, amount: Decimal) -> FraudCheckResult:
        """Score a charge attempt.

        Retries transport errors and HTTP 5xx with capped exponential
        backoff. Maps 200 → ``FraudCheckResult`` from the body; any other
        status is an error.

        Raises:
            CircuitOpenError: If the fraud circuit is open.
            httpx.RequestError: For transport errors after retries.
            httpx.HTTPStatusError: For non-200 responses that are not
                retried, or 5xx once retries are used up.
        """
        payload = {"instrument_id": instrument_id, "amount": str(amount)}
        max_retries = self.settings.http_retry_max
        backoff = self.settings.http_retry_backoff_base
        tries = 0

        state = self.breaker.before_call()
        headers = _request_headers({"X-Circuit-State": state.value, "X-Retry-Count": "0"})

        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.post(f"{self.base_url}/check", json=payload, headers=headers)
                        if resp.status_code == 200:
                            self.breaker.on_success()
                            data = resp.json()
                            return FraudCheckResult(
                                rejected=bool(data.get("rejected", False)),
                                reason=data.get("reason"),
                            )
                        if not _should_retry(resp, None):
                            self.breaker.on_success()  # service answered, nothing to retry
                            raise _status_error(resp)
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)

                    if tries > max_retries:
                        self.breaker.on_failure()
                        if exc:
                            raise exc
                        raise _status_error(resp)

                    sleep_s = backoff * (2 ** (tries - 1))
                    time.sleep(min(sleep_s, self.settings.http_retry_max_sleep))
        finally:
            self.breaker.on_finish()


# ---------------- Charge Gateway Adapter ---------------- #

class HttpChargeGateway(ChargeGateway):
    """HTTP client for the payment gateway with a circuit breaker.

    Failures are raised as ``GatewayError`` tagged with a kind:
    - ``httpx.TimeoutException`` or HTTP 504 → TIMEOUT (retryable upstream)
    - 402 or 422 → DECLINED
    - anything else (transport errors, other statuses, malformed bodies,
      open circuit) → ERROR
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        settings: Optional[CheckoutSettings] = None,
    ):
        self.settings = settings or get_settings()
        self.base_url = base_url or self.settings.gateway_base_url
        self.timeout = timeout or self.settings.http_timeout_secs
        self.breaker = get_breaker("gateway", self.settings)

    def _post(self, path: str, payload: dict, idempotency_key: str) -> httpx.Response:
        """POST once through the breaker, translating transport failures."""
        try:
            state = self.breaker.before_call()
        except CircuitOpenError as e:
            raise GatewayError(GatewayFailureKind.ERROR, "CIRCUIT_OPEN") from e
        headers = _request_headers(
            {"Idempotency-Key": idempotency_key, "X-Circuit-State": state.value}
        )
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(f"{self.base_url}{path}", json=payload, headers=headers)
        except httpx.TimeoutException as e:
            self.breaker.on_failure()
            raise GatewayError(GatewayFailureKind.TIMEOUT, "GATEWAY_TIMEOUT") from e
        except httpx.RequestError as e:
            self.breaker.on_failure()
            raise GatewayError(GatewayFailureKind.ERROR, "GATEWAY_UNREACHABLE") from e
        finally:
            self.breaker.on_finish()

        if resp.status_code >= 500:
            self.breaker.on_failure()
        else:
            self.breaker.on_success()  # business outcomes are not circuit failures
        return resp

    def charge(self, amount: Decimal, details: PaymentDetails) -> PaymentResult:
        """Charge the instrument once.

        Returns:
            PaymentResult: Approved result with the gateway transaction id.

        Raises:
            GatewayError: Tagged TIMEOUT, DECLINED or ERROR.
        """
        payload = {
            "amount": str(amount),
            "instrument_id": details.instrument_id,
            "expiry": details.expiry,
            "verification_code": details.verification_code,
        }
        resp = self._post("/charge", payload, _idempotency_key("charge"))
        if resp.status_code == 200:
            tx = _json_body(resp).get("transaction_id")
            if not tx:
                raise GatewayError(GatewayFailureKind.ERROR, "MISSING_TRANSACTION_ID")
            return PaymentResult.approved(str(tx))
        if resp.status_code in (402, 422):
            raise GatewayError(GatewayFailureKind.DECLINED, _detail(resp, "CARD_DECLINED"))
        if resp.status_code == 504:
            raise GatewayError(GatewayFailureKind.TIMEOUT, "GATEWAY_TIMEOUT")
        raise GatewayError(GatewayFailureKind.ERROR, f"HTTP_{resp.status_code}")

    def refund(self, transaction_reference: str, amount: Decimal) -> RefundResult:
        """Refund part or all of a transaction once.

        Business refusals (402, 409, 422) come back as a failed
        ``RefundResult``; anything else raises ``GatewayError``.
        """
        payload = {"transaction_id": transaction_reference, "amount": str(amount)}
        resp = self._post("/refund", payload, _idempotency_key("refund"))
        if resp.status_code == 200:
            return RefundResult(success=True, refund_reference=_json_body(resp).get("refund_id"))
        if resp.status_code in (402, 409, 422):
            return RefundResult(success=False, failure_reason=_detail(resp, "REFUND_REJECTED"))
        if resp.status_code == 504:
            raise GatewayError(GatewayFailureKind.TIMEOUT, "GATEWAY_TIMEOUT")
        raise GatewayError(GatewayFailureKind.ERROR, f"HTTP_{resp.status_code}")


def _detail(resp: httpx.Response, default: str) -> str:
    try:
        body = resp.json()
    except ValueError:
        return default
    detail = body.get("detail") if isinstance(body, dict) else None
    return detail if isinstance(detail, str) and detail else default
