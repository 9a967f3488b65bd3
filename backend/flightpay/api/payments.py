"""
Payment API Endpoints

HTTP adapters over the payment services. Mounted under /api/payment.

Gateway-facing routes:
- POST /callback            server-to-server webhook, always acknowledged 200
- GET  /callback-redirect   browser return from the hosted checkout

Booking-backend routes:
- POST /create-intent, GET /status/{order_id}, GET /booking/{booking_id}
- GET /verify/{transaction_id}, POST /refund, POST /status/update
- GET /methods, GET /config, GET /health
"""
from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import RedirectResponse
from typing import Any, Dict, Optional
from urllib.parse import urlencode
import logging

from ..config import Settings
from ..exceptions import PaymentIntentError
from ..models.payments import (
    BillingData,
    CreateIntentRequest,
    PaymentIntent,
    RefundRequest,
    StatusUpdateRequest,
)
from ..services.callback_service import CallbackProcessor
from ..services.orchestrator import PaymentOrchestrator
from ..services.payment_lifecycle import PaymentLifecycle
from ..services.payment_store import PaymentRecordStore
from ..services.paymob_client import PaymobClient
from ..services.reconciliation import Reconciler

logger = logging.getLogger(__name__)

router = APIRouter()

INTENT_FAILURE_MESSAGE = "Payment service unavailable, please try again"


# ============================================================================
# Service Access
# ============================================================================
# Services are built once in the application lifespan and kept on app.state.

def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _store(request: Request) -> PaymentRecordStore:
    return request.app.state.store


def _client(request: Request) -> PaymobClient:
    return request.app.state.client


def _orchestrator(request: Request) -> PaymentOrchestrator:
    return request.app.state.orchestrator


def _processor(request: Request) -> CallbackProcessor:
    return request.app.state.callback_processor


def _lifecycle(request: Request) -> PaymentLifecycle:
    return request.app.state.lifecycle


def _reconciler(request: Request) -> Reconciler:
    return request.app.state.reconciler


def _format_major_amount(amount_cents: Optional[str]) -> Optional[str]:
    """Minor units to a display amount: "15000" -> "150", "15050" -> "150.5"."""
    try:
        value = int(amount_cents) / 100
    except (TypeError, ValueError):
        return None
    return str(int(value)) if value.is_integer() else str(value)


# ============================================================================
# Intent
# ============================================================================

@router.post("/create-intent")
async def create_intent_endpoint(body: CreateIntentRequest, request: Request) -> Any:
    """
    Create a payment intent for a booking.

    Request Body:
        {
            "amount": int,          # minor units (piastres, cents)
            "currency": str,        # optional, defaults to EGP
            "bookingId": str,
            "billingData": {...},   # optional, gaps filled with defaults
            "items": [...]          # optional, defaults to one booking line
        }

    Returns:
        {
            "success": true,
            "data": {
                "paymentKey": str,
                "orderId": int,
                "iframeUrl": str,
                "amount": int,
                "currency": str,
                "paymentId": str
            }
        }

    Errors:
        400 validation_error for amounts below the minimum or unsupported
        currencies; 503 (400 when the gateway rejected the request) with a
        generic message when any gateway step fails.

    Example:
        POST /api/payment/create-intent
        {"amount": 150000, "currency": "EGP", "bookingId": "BK123"}
    """
    settings = _settings(request)
    currency = (body.currency or settings.default_currency).upper()

    if currency not in settings.supported_currencies:
        raise ValueError(
            f"Unsupported currency {currency}; expected one of {', '.join(settings.supported_currencies)}"
        )
    if body.amount < settings.minimum_amount_cents:
        raise ValueError(
            f"Amount {body.amount} is below the minimum of {settings.minimum_amount_cents}"
        )

    intent = PaymentIntent(
        booking_id=body.booking_id,
        amount_cents=body.amount,
        currency=currency,
        billing_data=body.billing_data or BillingData(),
        items=body.items,
    )

    try:
        result = await _orchestrator(request).create_payment_intent(intent)
    except PaymentIntentError as e:
        # Cause stays in logs and details; the caller gets the generic message
        raise HTTPException(
            status_code=e.http_status,
            detail={
                "success": False,
                "error_code": e.error_code,
                "message": INTENT_FAILURE_MESSAGE,
                "details": {"step": e.step, "payment_id": e.payment_id},
            }
        ) from e

    return {
        "success": True,
        "data": {
            "paymentKey": result.payment_key_token,
            "orderId": result.gateway_order_id,
            "iframeUrl": result.checkout_url,
            "amount": result.amount_cents,
            "currency": result.currency,
            "paymentId": result.payment_id,
        }
    }


# ============================================================================
# Status Queries
# ============================================================================

@router.get("/status/{order_id}")
async def get_status_endpoint(order_id: int, request: Request) -> Dict[str, Any]:
    """
    Get the payment status for a gateway order.

    Path Parameters:
        order_id: Gateway order id returned by create-intent

    Returns:
        {"success": true, "data": {...PaymentRecord...}}

    Example:
        GET /api/payment/status/987654
    """
    record = await _store(request).find_by_gateway_order_id(order_id)

    if not record:
        raise HTTPException(
            status_code=404,
            detail={
                "error_code": "payment:not_found",
                "message": f"No payment found for order: {order_id}"
            }
        )

    return {"success": True, "data": record.to_api()}


@router.get("/booking/{booking_id}")
async def get_booking_payments_endpoint(booking_id: str, request: Request) -> Dict[str, Any]:
    """
    List every payment attempt for a booking, most recent first.

    Example:
        GET /api/payment/booking/BK123
    """
    records = await _store(request).find_by_booking_id(booking_id)
    return {
        "success": True,
        "data": {
            "bookingId": booking_id,
            "payments": [record.to_api() for record in records],
            "count": len(records),
        }
    }


# ============================================================================
# Gateway Callbacks
# ============================================================================

@router.post("/callback")
async def callback_endpoint(
    request: Request,
    hmac: Optional[str] = Query(None, description="Gateway HMAC signature")
) -> Dict[str, Any]:
    """
    Paymob transaction webhook.

    Always answers 200 so the gateway does not retry indefinitely. Rejected
    deliveries (bad signature, unknown order, malformed body) are logged and
    audited by the processor, and reported as success=false.

    Query Parameters:
        hmac: HMAC-SHA512 signature over the transaction obj

    Returns:
        {"success": bool, "received": true}
    """
    try:
        body = await request.json()
    except ValueError:
        logger.error("Callback body is not valid JSON")
        body = None

    result = await _processor(request).process(body, query_hmac=hmac)
    return result.acknowledgement()


@router.get("/callback-redirect")
async def callback_redirect_endpoint(
    request: Request,
    success: Optional[str] = Query(None),
    txn_response_code: Optional[str] = Query(None),
    order_id: Optional[str] = Query(None),
    amount_cents: Optional[str] = Query(None)
) -> RedirectResponse:
    """
    Browser return from the hosted checkout.

    Redirects to the frontend confirmation page. This route is display-only:
    the query string is unsigned, so payment state is changed by callbacks
    and reconciliation, never here.

    Example:
        GET /api/payment/callback-redirect?success=true&txn_response_code=APPROVED&order_id=1&amount_cents=15000
        -> 302 {frontend_url}/booking/confirmation?orderId=1&status=success&amount=150
    """
    settings = _settings(request)
    is_success = success == "true" and txn_response_code == "APPROVED"

    params: Dict[str, str] = {"orderId": order_id or ""}
    if is_success:
        params["status"] = "success"
        amount = _format_major_amount(amount_cents)
        if amount is not None:
            params["amount"] = amount
    else:
        params["status"] = "failed"

    logger.info(f"Checkout redirect: order={order_id}, status={params['status']}")
    target = f"{settings.frontend_url.rstrip('/')}/booking/confirmation?{urlencode(params)}"
    return RedirectResponse(url=target, status_code=302)


# ============================================================================
# Reconciliation and Administration
# ============================================================================

@router.get("/verify/{transaction_id}")
async def verify_transaction_endpoint(transaction_id: int, request: Request) -> Dict[str, Any]:
    """
    Verify a transaction directly with the gateway and settle its record.

    Returns:
        {"success": true, "data": {"transaction": {...}, "payment": {...} | null,
                                   "classification": str}}
    """
    result = await _reconciler(request).reconcile_transaction(transaction_id)
    return {"success": True, "data": result}


@router.post("/refund")
async def refund_endpoint(body: RefundRequest, request: Request) -> Dict[str, Any]:
    """
    Refund a paid payment, fully or partially.

    Request Body:
        {"paymentId": str, "amountCents": int | null}
    """
    result = await _lifecycle(request).refund(body.payment_id, body.amount_cents)
    return {
        "success": True,
        "data": {
            "refundId": result.refund_id,
            "transactionId": result.transaction_id,
            "amountCents": result.amount_cents,
            "refundedAt": result.refunded_at,
        }
    }


@router.post("/status/update")
async def update_status_endpoint(body: StatusUpdateRequest, request: Request) -> Dict[str, Any]:
    """
    Administrative status change on a booking's latest payment.

    Request Body:
        {"bookingId": str, "status": "paid" | "failed" | "refunded", "additionalData": {...}}

    Errors:
        404 when the booking has no payment, 409 for an illegal transition
    """
    record = await _lifecycle(request).update_status(
        body.booking_id,
        body.status,
        body.additional_data,
    )
    return {"success": True, "data": record.to_api()}


@router.get("/methods")
async def payment_methods_endpoint(request: Request) -> Dict[str, Any]:
    """Payment methods enabled on the merchant account."""
    methods = await _client(request).list_payment_methods()
    return {"success": True, "data": methods}


@router.get("/config")
async def payment_config_endpoint(request: Request) -> Dict[str, Any]:
    """Client-safe payment configuration. Never includes secrets."""
    return {"success": True, "data": _settings(request).public_config()}


@router.get("/health")
async def payment_health_endpoint(request: Request) -> Dict[str, Any]:
    settings = _settings(request)
    credentials = settings.active_credentials()
    session = _client(request).auth_session
    return {
        "success": True,
        "status": "healthy",
        "mode": settings.paymob_mode,
        "configured": bool(credentials.api_key and credentials.hmac_secret),
        "authenticated": bool(session and session.is_valid()),
    }
