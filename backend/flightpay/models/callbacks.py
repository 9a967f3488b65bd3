"""
Callback Models

Shapes for Paymob's asynchronous webhook deliveries and the processor's
classification of each delivery.
"""
from typing import Optional, Literal, Dict, Any
from pydantic import BaseModel

from .payments import PaymentStatus


CallbackClassification = Literal[
    "applied",
    "pending",
    "duplicate",
    "ignored",
    "invalid_signature",
    "unknown_order",
    "malformed",
    "order_event",
    "error",
]


class CallbackEnvelope(BaseModel):
    """
    Outer webhook body: {"type": "TRANSACTION" | "ORDER", "obj": {...}}.

    The signature normally arrives as ?hmac= on the query string; some
    deliveries carry it in the body instead.
    """
    type: Optional[str] = None
    obj: Optional[Dict[str, Any]] = None
    hmac: Optional[str] = None

    model_config = {"extra": "allow"}


class CallbackResult(BaseModel):
    """Outcome of processing one callback delivery."""
    classification: CallbackClassification
    payment_id: Optional[str] = None
    gateway_order_id: Optional[int] = None
    gateway_transaction_id: Optional[int] = None
    status: Optional[PaymentStatus] = None
    error_code: Optional[str] = None
    message: Optional[str] = None

    @property
    def success(self) -> bool:
        """Whether the delivery was accepted as genuine and handled."""
        return self.classification in ("applied", "pending", "duplicate", "ignored", "order_event")

    def acknowledgement(self) -> Dict[str, Any]:
        """Body returned to the gateway. Always paired with HTTP 200."""
        return {"success": self.success, "received": True}
