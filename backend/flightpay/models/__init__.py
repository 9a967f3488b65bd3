"""
Pydantic models for payment intents, records and gateway callbacks.
"""
from .payments import (
    PAYMENT_STATUSES,
    AuthSession,
    BillingData,
    IntentResult,
    LineItem,
    PaymentEvent,
    PaymentIntent,
    PaymentRecord,
    PaymentStatus,
    RefundResult,
    TransactionDetails,
)
from .callbacks import CallbackEnvelope, CallbackResult

__all__ = [
    "PAYMENT_STATUSES",
    "AuthSession",
    "BillingData",
    "IntentResult",
    "LineItem",
    "PaymentEvent",
    "PaymentIntent",
    "PaymentRecord",
    "PaymentStatus",
    "RefundResult",
    "TransactionDetails",
    "CallbackEnvelope",
    "CallbackResult",
]
