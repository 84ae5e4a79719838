"""Unit tests for HTTP adapters to the fraud screen and the gateway.

These tests verify that the HTTP clients map success, business failures
and network errors correctly by monkeypatching ``httpx.Client.post`` and
asserting the adapter behavior.
"""
from decimal import Decimal

import httpx
import pytest

from checkout.adapters import FraudScreenStub
from checkout.context import request_scope
from checkout.domain import (
    AuditEventType,
    GatewayError,
    GatewayFailureKind,
    OrderStatus,
    PaymentDetails,
    PaymentProcessingExhausted,
    RetryPolicy,
)
from checkout.http_adapters import HttpChargeGateway, HttpFraudScreen
from checkout.orchestrator import PaymentOrchestrator

CARD = PaymentDetails(instrument_id="4242424242424242", expiry="12/30", verification_code="123")


class DummyResp:
    """Minimal httpx-like response stub for adapter tests.

    Args:
        status_code (int): HTTP status code to simulate.
        json_data (dict | None): JSON body to return from ``json()``.
    """
    def __init__(self, status_code=200, json_data=None):
        self.status_code = status_code
        self._json = json_data or {}
    def raise_for_status(self):
        if self.status_code >= 400:
            raise httpx.HTTPStatusError("err", request=None, response=None)
    def json(self): return self._json


def patch_post(monkeypatch, resp=None, exc=None, seen=None):
    def fake_post(self, url, json=None, headers=None, **kw):
        if seen is not None:
            seen.append({"url": url, "json": json, "headers": headers})
        if exc is not None:
            raise exc
        return resp
    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)


def test_fraud_check_accept(monkeypatch):
    """Fraud adapter returns an accepting result on 200 with rejected=False."""
    seen = []
    patch_post(monkeypatch, DummyResp(200, {"rejected": False}), seen=seen)
    result = HttpFraudScreen(base_url="http://fraud").check("4242", Decimal("12.50"))
    assert result.rejected is False
    assert seen[0]["url"] == "http://fraud/check"
    assert seen[0]["json"] == {"instrument_id": "4242", "amount": "12.50"}


def test_fraud_check_reject_with_reason(monkeypatch):
    patch_post(monkeypatch, DummyResp(200, {"rejected": True, "reason": "VELOCITY"}))
    result = HttpFraudScreen(base_url="http://fraud").check("4242", Decimal("1"))
    assert result.rejected is True and result.reason == "VELOCITY"


def test_fraud_check_client_error_raises(monkeypatch):
    patch_post(monkeypatch, DummyResp(400))
    with pytest.raises(httpx.HTTPStatusError):
        HttpFraudScreen(base_url="http://fraud").check("4242", Decimal("1"))


def test_charge_ok(monkeypatch):
    """Gateway adapter returns an approved result on 200 with a transaction id."""
    seen = []
    patch_post(monkeypatch, DummyResp(200, {"transaction_id": "tx-123"}), seen=seen)
    result = HttpChargeGateway(base_url="http://gw").charge(Decimal("10.00"), CARD)
    assert result.success and result.transaction_id == "tx-123"
    assert seen[0]["url"] == "http://gw/charge"
    assert seen[0]["json"]["amount"] == "10.00"
    assert seen[0]["headers"]["Idempotency-Key"]


def test_charge_propagates_request_id(monkeypatch):
    seen = []
    patch_post(monkeypatch, DummyResp(200, {"transaction_id": "tx"}), seen=seen)
    with request_scope("req-42"):
        HttpChargeGateway(base_url="http://gw").charge(Decimal("1"), CARD)
    assert seen[0]["headers"]["X-Request-ID"] == "req-42"


@pytest.mark.parametrize("status", [402, 422])
def test_charge_decline_maps_to_declined(monkeypatch, status):
    patch_post(monkeypatch, DummyResp(status, {"detail": "INSUFFICIENT_FUNDS"}))
    with pytest.raises(GatewayError) as e:
        HttpChargeGateway(base_url="http://gw").charge(Decimal("1"), CARD)
    assert e.value.kind is GatewayFailureKind.DECLINED
    assert e.value.detail == "INSUFFICIENT_FUNDS"


def test_charge_timeout_maps_to_timeout(monkeypatch):
    patch_post(monkeypatch, exc=httpx.ReadTimeout("slow"))
    with pytest.raises(GatewayError) as e:
        HttpChargeGateway(base_url="http://gw").charge(Decimal("1"), CARD)
    assert e.value.kind is GatewayFailureKind.TIMEOUT


def test_charge_504_maps_to_timeout(monkeypatch):
    patch_post(monkeypatch, DummyResp(504))
    with pytest.raises(GatewayError) as e:
        HttpChargeGateway(base_url="http://gw").charge(Decimal("1"), CARD)
    assert e.value.kind is GatewayFailureKind.TIMEOUT


def test_charge_network_error_maps_to_error(monkeypatch):
    """Connection failures are not retryable timeouts."""
    patch_post(monkeypatch, exc=httpx.ConnectError("boom"))
    with pytest.raises(GatewayError) as e:
        HttpChargeGateway(base_url="http://gw").charge(Decimal("1"), CARD)
    assert e.value.kind is GatewayFailureKind.ERROR
    assert isinstance(e.value.__cause__, httpx.ConnectError)


def test_charge_missing_transaction_id_is_error(monkeypatch):
    patch_post(monkeypatch, DummyResp(200, {}))
    with pytest.raises(GatewayError) as e:
        HttpChargeGateway(base_url="http://gw").charge(Decimal("1"), CARD)
    assert e.value.detail == "MISSING_TRANSACTION_ID"


def test_refund_ok(monkeypatch):
    seen = []
    patch_post(monkeypatch, DummyResp(200, {"refund_id": "re_1"}), seen=seen)
    result = HttpChargeGateway(base_url="http://gw").refund("tx-1", Decimal("5"))
    assert result.success and result.refund_reference == "re_1"
    assert seen[0]["json"] == {"transaction_id": "tx-1", "amount": "5"}


@pytest.mark.parametrize("status", [402, 409, 422])
def test_refund_business_refusal_is_failed_result(monkeypatch, status):
    patch_post(monkeypatch, DummyResp(status))
    result = HttpChargeGateway(base_url="http://gw").refund("tx-1", Decimal("5"))
    assert result.success is False
    assert result.failure_reason == "REFUND_REJECTED"


def test_refund_server_error_raises(monkeypatch):
    patch_post(monkeypatch, DummyResp(500))
    with pytest.raises(GatewayError) as e:
        HttpChargeGateway(base_url="http://gw").refund("tx-1", Decimal("5"))
    assert e.value.kind is GatewayFailureKind.ERROR


class HtmlResp(DummyResp):
    """Response whose body is not JSON, e.g. a proxy error page."""
    def json(self): raise ValueError("Expecting value: line 1 column 1 (char 0)")


def test_fraud_check_no_content_raises_once(monkeypatch):
    """A 2xx other than 200 is not retried."""
    seen = []
    patch_post(monkeypatch, DummyResp(204), seen=seen)
    with pytest.raises(httpx.HTTPStatusError):
        HttpFraudScreen(base_url="http://fraud").check("4242", Decimal("1"))
    assert len(seen) == 1


def test_charge_malformed_body_is_error(monkeypatch):
    patch_post(monkeypatch, HtmlResp(200))
    with pytest.raises(GatewayError) as e:
        HttpChargeGateway(base_url="http://gw").charge(Decimal("1"), CARD)
    assert e.value.kind is GatewayFailureKind.ERROR
    assert e.value.detail == "MALFORMED_RESPONSE"


def test_charge_non_object_body_is_error(monkeypatch):
    patch_post(monkeypatch, DummyResp(200, ["tx-1"]))
    with pytest.raises(GatewayError) as e:
        HttpChargeGateway(base_url="http://gw").charge(Decimal("1"), CARD)
    assert e.value.detail == "MALFORMED_RESPONSE"


def test_charge_decline_with_non_json_body_uses_default_detail(monkeypatch):
    patch_post(monkeypatch, HtmlResp(402))
    with pytest.raises(GatewayError) as e:
        HttpChargeGateway(base_url="http://gw").charge(Decimal("1"), CARD)
    assert e.value.detail == "CARD_DECLINED"


def test_charge_idempotency_key_follows_request_id(monkeypatch):
    seen = []
    patch_post(monkeypatch, DummyResp(200, {"transaction_id": "tx"}), seen=seen)
    gateway = HttpChargeGateway(base_url="http://gw")
    with request_scope("req-7"):
        gateway.charge(Decimal("1"), CARD)
        gateway.refund("tx", Decimal("1"))
    assert seen[0]["headers"]["Idempotency-Key"] == "req-7:charge"
    assert seen[1]["headers"]["Idempotency-Key"] == "req-7:refund"


def test_retried_charge_reuses_idempotency_key(monkeypatch, store, audit):
    """A timed-out charge may have gone through; the retry must carry the same key."""
    seen = []
    outcomes = [httpx.ReadTimeout("slow"), DummyResp(200, {"transaction_id": "tx-1"})]

    def fake_post(self, url, json=None, headers=None, **kw):
        seen.append(headers)
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    service = PaymentOrchestrator(
        orders=store,
        fraud_screen=FraudScreenStub(),
        gateway=HttpChargeGateway(base_url="http://gw"),
        audit_log=audit,
        retry_policy=RetryPolicy(max_attempts=3, delay=0.0),
    )

    result = service.process_payment("ord-1", CARD, request_id="req-7")

    assert result.transaction_id == "tx-1"
    assert [h["Idempotency-Key"] for h in seen] == ["req-7:charge", "req-7:charge"]


def test_retried_charges_share_generated_request_key(monkeypatch, store, audit):
    seen = []
    outcomes = [httpx.ReadTimeout("slow"), httpx.ReadTimeout("slow"), DummyResp(200, {"transaction_id": "tx-1"})]

    def fake_post(self, url, json=None, headers=None, **kw):
        seen.append(headers["Idempotency-Key"])
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    service = PaymentOrchestrator(
        orders=store,
        fraud_screen=FraudScreenStub(),
        gateway=HttpChargeGateway(base_url="http://gw"),
        audit_log=audit,
        retry_policy=RetryPolicy(max_attempts=3, delay=0.0),
    )

    service.process_payment("ord-1", CARD)

    assert len(seen) == 3
    assert len(set(seen)) == 1


def test_malformed_charge_response_fails_payment(monkeypatch, store, audit):
    patch_post(monkeypatch, HtmlResp(200))
    service = PaymentOrchestrator(
        orders=store,
        fraud_screen=FraudScreenStub(),
        gateway=HttpChargeGateway(base_url="http://gw"),
        audit_log=audit,
        retry_policy=RetryPolicy(max_attempts=3, delay=0.0),
    )

    with pytest.raises(PaymentProcessingExhausted) as e:
        service.process_payment("ord-1", CARD)

    assert e.value.attempts == 1
    assert store.find_by_id("ord-1").status == OrderStatus.PAYMENT_FAILED
    (entry,) = audit.entries_for("ord-1")
    assert entry.type == AuditEventType.PAYMENT_FAILED
    assert entry.data["reason"] == "ERROR:MALFORMED_RESPONSE"
