import logging
import os
from decimal import Decimal

import pytest

from checkout import http_adapters
from checkout.adapters import InMemoryAuditLog, InMemoryOrderStore
from checkout.domain import Order, PaymentDetails
from checkout.settings import get_settings


@pytest.fixture(autouse=True)
def isolated_process_state(monkeypatch):
    # settings are cached, breakers are per process and the wiring configures
    # the package logger; none of it may leak between tests
    for name in list(os.environ):
        if name.startswith("CHECKOUT_"):
            monkeypatch.delenv(name)
    get_settings.cache_clear()
    http_adapters._breakers.clear()
    package_logger = logging.getLogger("checkout")
    level, handlers = package_logger.level, list(package_logger.handlers)
    yield
    get_settings.cache_clear()
    http_adapters._breakers.clear()
    package_logger.setLevel(level)
    package_logger.handlers[:] = handlers


@pytest.fixture
def pending_order():
    return Order(id="ord-1", total=Decimal("100.00"))


@pytest.fixture
def store(pending_order):
    return InMemoryOrderStore([pending_order])


@pytest.fixture
def audit():
    return InMemoryAuditLog()


@pytest.fixture
def card():
    return PaymentDetails(instrument_id="4242424242424242", expiry="12/30", verification_code="123")
