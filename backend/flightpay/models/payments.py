"""
Pydantic Payment Models

PaymentIntent (request-scoped input), AuthSession (cached gateway credential)
and PaymentRecord (the durable state machine). All amounts are integer minor
units (piastres, cents).
"""
from datetime import datetime, timedelta
from typing import Optional, Literal, List, Dict, Any
from pydantic import BaseModel, Field, field_validator


PaymentStatus = Literal["pending", "paid", "failed", "refunded"]

PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")


# ==================== Billing ====================

# Paymob rejects payment-key requests with any of these fields missing
BILLING_DEFAULTS: Dict[str, str] = {
    "apartment": "NA",
    "email": "customer@example.com",
    "floor": "NA",
    "first_name": "Customer",
    "last_name": "User",
    "street": "NA",
    "building": "NA",
    "phone_number": "+201000000000",
    "shipping_method": "NA",
    "postal_code": "00000",
    "city": "Cairo",
    "country": "EG",
    "state": "Cairo",
}


class BillingData(BaseModel):
    """
    Customer billing details. Every field is optional on input; absent
    fields are replaced by BILLING_DEFAULTS when sent to the gateway.

    Accepts both the frontend's camelCase names and the gateway's snake_case.
    """
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    email: Optional[str] = None
    phone_number: Optional[str] = Field(default=None, alias="phone")
    apartment: Optional[str] = None
    floor: Optional[str] = None
    street: Optional[str] = None
    building: Optional[str] = None
    postal_code: Optional[str] = Field(default=None, alias="postalCode")
    city: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "ignore"}

    def to_gateway(self) -> Dict[str, str]:
        """Gateway billing_data with fallbacks applied for absent fields."""
        provided = self.model_dump(by_alias=False)
        billing = {}
        for field_name, fallback in BILLING_DEFAULTS.items():
            value = provided.get(field_name)
            billing[field_name] = value if value else fallback
        return billing


class LineItem(BaseModel):
    """Order line item as registered with the gateway."""
    name: str
    amount_cents: int = Field(gt=0)
    description: str = ""
    quantity: int = Field(default=1, gt=0)


# ==================== Intent ====================

class PaymentIntent(BaseModel):
    """
    Input to the orchestrator. Constructed per request, never persisted.
    """
    booking_id: str = Field(min_length=1)
    amount_cents: int = Field(gt=0)
    currency: str = "EGP"
    billing_data: BillingData = Field(default_factory=BillingData)
    items: List[LineItem] = Field(default_factory=list)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        if len(value) != 3 or not value.isalpha():
            raise ValueError(f"Invalid ISO 4217 currency code: {value}")
        return value.upper()

    def line_items(self) -> List[LineItem]:
        """Items to register; a single booking line when none were given."""
        if self.items:
            return self.items
        return [
            LineItem(
                name="Flight Booking",
                amount_cents=self.amount_cents,
                description=f"Booking #{self.booking_id}",
                quantity=1,
            )
        ]


class IntentResult(BaseModel):
    """Output of a successful intent creation."""
    payment_id: str
    checkout_url: str
    gateway_order_id: int
    payment_key_token: str
    amount_cents: int
    currency: str


# ==================== Auth Session ====================

class AuthSession(BaseModel):
    """
    Cached gateway bearer token.

    expires_at is the refresh deadline, set earlier than the gateway's real
    expiry so a token is never used late.
    """
    token: str
    expires_at: datetime

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return now < self.expires_at

    @classmethod
    def issued(cls, token: str, lifetime_seconds: int, now: Optional[datetime] = None) -> "AuthSession":
        now = now or datetime.utcnow()
        return cls(token=token, expires_at=now + timedelta(seconds=lifetime_seconds))


# ==================== Payment Record ====================

class PaymentRecord(BaseModel):
    """
    Durable record of one payment attempt.

    Invariants:
    - gateway_order_id set once at creation, never changed
    - gateway_transaction_id set once, by the first verified callback
    - status follows the transition table in payment_lifecycle
    """
    id: str = Field(pattern="^pay_")
    booking_id: str
    gateway_order_id: Optional[int] = None
    merchant_order_id: Optional[str] = None
    gateway_transaction_id: Optional[int] = None
    amount_cents: int = Field(gt=0)
    currency: str = "EGP"
    status: PaymentStatus = "pending"
    payment_method: Optional[str] = None
    gateway_response: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime

    def to_api(self) -> Dict[str, Any]:
        """Public representation for status endpoints."""
        return {
            "paymentId": self.id,
            "bookingId": self.booking_id,
            "orderId": self.gateway_order_id,
            "transactionId": self.gateway_transaction_id,
            "amountCents": self.amount_cents,
            "currency": self.currency,
            "status": self.status,
            "paymentMethod": self.payment_method,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


class PaymentEvent(BaseModel):
    """Append-only audit entry. Every callback received is recorded."""
    id: int
    payment_id: Optional[str] = None
    gateway_order_id: Optional[int] = None
    gateway_transaction_id: Optional[int] = None
    event_type: str
    classification: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    created_at: datetime


# ==================== Gateway Results ====================

class TransactionDetails(BaseModel):
    """Transaction as reported by the gateway's verification endpoint."""
    id: int
    success: bool = False
    pending: bool = False
    error_occured: bool = False
    amount_cents: int = 0
    currency: Optional[str] = None
    order_id: Optional[int] = None
    created_at: Optional[str] = None
    is_3d_secure: Optional[bool] = None
    payment_method: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_gateway(cls, data: Dict[str, Any]) -> "TransactionDetails":
        order = data.get("order") or {}
        source_data = data.get("source_data") or {}
        return cls(
            id=data["id"],
            success=bool(data.get("success")),
            pending=bool(data.get("pending")),
            error_occured=bool(data.get("error_occured")),
            amount_cents=data.get("amount_cents") or 0,
            currency=data.get("currency"),
            order_id=order.get("id") if isinstance(order, dict) else order,
            created_at=data.get("created_at"),
            is_3d_secure=data.get("is_3d_secure"),
            payment_method=source_data.get("type"),
            raw=data,
        )


class RefundResult(BaseModel):
    """Gateway refund confirmation."""
    refund_id: int
    transaction_id: int
    amount_cents: int
    refunded_at: Optional[str] = None


# ==================== HTTP Request Bodies ====================

class CreateIntentRequest(BaseModel):
    """Body of POST /api/payment/create-intent."""
    amount: int = Field(gt=0, description="Amount in minor units")
    currency: Optional[str] = None
    booking_id: str = Field(alias="bookingId", min_length=1)
    billing_data: Optional[BillingData] = Field(default=None, alias="billingData")
    items: List[LineItem] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class RefundRequest(BaseModel):
    """Body of POST /api/payment/refund."""
    payment_id: str = Field(alias="paymentId")
    amount_cents: Optional[int] = Field(default=None, alias="amountCents", gt=0)

    model_config = {"populate_by_name": True}


class StatusUpdateRequest(BaseModel):
    """Body of POST /api/payment/status/update."""
    booking_id: str = Field(alias="bookingId")
    status: PaymentStatus
    additional_data: Dict[str, Any] = Field(default_factory=dict, alias="additionalData")

    model_config = {"populate_by_name": True}
