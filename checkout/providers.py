"""Service provider helpers for wiring PaymentOrchestrator with ports.

This module exposes a small factory function `get_payment_orchestrator`
that returns a configured `PaymentOrchestrator`. Settings decide between
the HTTP adapters and the in-process stubs for the fraud screen and the
gateway, and between the SQL and in-memory stores for orders and the
audit log. Explicit keyword arguments always win over settings, which is
how tests inject their own collaborators. The package logger is set up
with the JSON handler at ``settings.log_level``.
"""

from typing import Optional

from .adapters import ChargeGatewayStub, FraudScreenStub, InMemoryAuditLog, InMemoryOrderStore
from .domain import AuditLog, ChargeGateway, FraudScreen, OrderStore, RetryPolicy
from .http_adapters import HttpChargeGateway, HttpFraudScreen
from .logging_filters import configure_logging
from .orchestrator import PaymentOrchestrator
from .repository import SqlAuditLog, SqlOrderStore, create_schema, make_engine
from .settings import CheckoutSettings, get_settings


def get_payment_orchestrator(
    settings: Optional[CheckoutSettings] = None,
    *,
    orders: Optional[OrderStore] = None,
    fraud_screen: Optional[FraudScreen] = None,
    gateway: Optional[ChargeGateway] = None,
    audit_log: Optional[AuditLog] = None,
    retry_policy: Optional[RetryPolicy] = None,
) -> PaymentOrchestrator:
    """Return a configured PaymentOrchestrator instance.

    Args:
        settings: Settings to wire from; defaults to ``get_settings()``.
        orders, fraud_screen, gateway, audit_log, retry_policy: Optional
            overrides for individual collaborators.

    Returns:
        PaymentOrchestrator: A service instance with appropriate ports.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    if orders is None or audit_log is None:
        if settings.database_url:
            engine = make_engine(settings.database_url)
            create_schema(engine)
            orders = orders or SqlOrderStore(engine)
            audit_log = audit_log or SqlAuditLog(engine)
        else:
            orders = orders or InMemoryOrderStore()
            audit_log = audit_log or InMemoryAuditLog()

    if settings.use_http_adapters:
        fraud_screen = fraud_screen or HttpFraudScreen(settings=settings)
        gateway = gateway or HttpChargeGateway(settings=settings)
    else:
        fraud_screen = fraud_screen or FraudScreenStub()
        gateway = gateway or ChargeGatewayStub()

    return PaymentOrchestrator(
        orders=orders,
        fraud_screen=fraud_screen,
        gateway=gateway,
        audit_log=audit_log,
        retry_policy=retry_policy or settings.retry_policy(),
    )
