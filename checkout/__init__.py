"""Payment orchestration core: charge and refund orders through pluggable ports."""

from .domain import (
    CheckoutError,
    FraudDetected,
    InvalidOperation,
    InvalidOrderState,
    Order,
    OrderNotFound,
    OrderStatus,
    PaymentCancelled,
    PaymentDetails,
    PaymentProcessingExhausted,
    PaymentResult,
    RefundResult,
    RetryPolicy,
)
from .orchestrator import PaymentOrchestrator

__version__ = "0.1.0"
