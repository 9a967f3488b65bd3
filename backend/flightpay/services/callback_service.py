"""
Callback / Webhook Processor

Consumes Paymob's asynchronous notifications:

1. Missing obj -> malformed, acknowledged, logged
2. HMAC mismatch -> invalid_signature, no state change
3. Unknown gateway order -> unknown_order, acknowledged, logged
4. Transaction id already recorded -> duplicate, no side effects
5-6. Classify and apply the transition through PaymentLifecycle
7. Always acknowledge; the HTTP layer returns 200 regardless

Every delivery, including rejected and duplicate ones, is appended to
payment_events.
"""
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..exceptions import (
    PaymentError,
    InvalidSignatureError,
    MalformedCallbackError,
    UnknownOrderError,
)
from ..models.callbacks import CallbackEnvelope, CallbackResult
from .hmac_service import verify_callback_hmac
from .payment_lifecycle import PaymentLifecycle
from .payment_store import PaymentRecordStore

logger = logging.getLogger(__name__)


_CLASSIFICATION_BY_ERROR = {
    InvalidSignatureError: "invalid_signature",
    MalformedCallbackError: "malformed",
    UnknownOrderError: "unknown_order",
}


def extract_order_id(obj: Dict[str, Any]) -> Optional[int]:
    """Gateway order id from a transaction obj; `order` may be a dict or a bare id."""
    order = obj.get("order")
    if isinstance(order, dict):
        order = order.get("id")
    try:
        return int(order) if order is not None else None
    except (TypeError, ValueError):
        return None


def _extract_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class CallbackProcessor:
    """
    Verifies and applies gateway callbacks. Never raises for a bad delivery;
    each outcome is returned as a CallbackResult.
    """

    def __init__(
        self,
        store: PaymentRecordStore,
        lifecycle: PaymentLifecycle,
        hmac_secret: str
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.hmac_secret = hmac_secret

    async def process(self, body: Any, query_hmac: Optional[str] = None) -> CallbackResult:
        """
        Process one inbound callback delivery.

        Args:
            body: Parsed JSON body {"type": ..., "obj": {...}}
            query_hmac: Signature from the ?hmac= query parameter

        Returns:
            CallbackResult describing what happened
        """
        raw = body if isinstance(body, dict) else {"body": body}
        obj = raw.get("obj") if isinstance(raw.get("obj"), dict) else None
        order_id = extract_order_id(obj) if obj else None
        transaction_id = _extract_int(obj.get("id")) if obj else None

        try:
            result = await self._handle(raw, query_hmac)
        except tuple(_CLASSIFICATION_BY_ERROR) as e:
            result = CallbackResult(
                classification=_CLASSIFICATION_BY_ERROR[type(e)],
                gateway_order_id=order_id,
                gateway_transaction_id=transaction_id,
                error_code=e.error_code,
                message=e.message,
            )
            if isinstance(e, InvalidSignatureError):
                logger.error(
                    f"SECURITY: invalid callback signature rejected "
                    f"(order={order_id}, transaction={transaction_id})"
                )
            else:
                logger.error(f"Callback dropped: {e.error_code}: {e.message}")
        except Exception as e:
            # The gateway still gets its 200; the failure lives in logs
            logger.error(
                f"Callback processing error (order={order_id}, transaction={transaction_id}): {e}",
                exc_info=True
            )
            result = CallbackResult(
                classification="error",
                gateway_order_id=order_id,
                gateway_transaction_id=transaction_id,
                error_code=e.error_code if isinstance(e, PaymentError) else "internal_error",
                message=str(e),
            )

        await self._record(result, raw)
        return result

    async def _handle(self, raw: Dict[str, Any], query_hmac: Optional[str]) -> CallbackResult:
        try:
            envelope = CallbackEnvelope.model_validate(raw)
        except ValidationError as e:
            raise MalformedCallbackError(
                "Callback body does not match the webhook envelope",
                details={"errors": e.errors(include_url=False)}
            ) from e
        obj = envelope.obj
        if not obj:
            raise MalformedCallbackError("Callback body has no obj payload")

        received_hmac = query_hmac or envelope.hmac
        if not verify_callback_hmac(obj, received_hmac, self.hmac_secret):
            raise InvalidSignatureError("Callback HMAC does not match payload")

        callback_type = (envelope.type or "TRANSACTION").upper()
        order_id = extract_order_id(obj)

        if callback_type == "ORDER":
            order_id = order_id or _extract_int(obj.get("id"))
            logger.info(f"Order callback received for order {order_id}")
            return CallbackResult(classification="order_event", gateway_order_id=order_id)

        if callback_type != "TRANSACTION":
            logger.warning(f"Unknown callback type {envelope.type}; acknowledging without changes")
            return CallbackResult(classification="ignored", gateway_order_id=order_id)

        transaction_id = _extract_int(obj.get("id"))
        if order_id is None or transaction_id is None:
            raise MalformedCallbackError(
                "Transaction callback missing order or transaction id",
                details={"order_id": order_id, "transaction_id": transaction_id}
            )

        record = await self.store.find_by_gateway_order_id(order_id)
        if record is None:
            raise UnknownOrderError(
                f"No payment record for gateway order {order_id}",
                details={"order_id": order_id, "transaction_id": transaction_id}
            )

        outcome = await self.lifecycle.apply_gateway_transaction(record, obj)
        return CallbackResult(
            classification=outcome.classification,
            payment_id=outcome.record.id,
            gateway_order_id=order_id,
            gateway_transaction_id=transaction_id,
            status=outcome.status,
        )

    async def _record(self, result: CallbackResult, raw: Dict[str, Any]) -> None:
        try:
            await self.store.append_event(
                "callback",
                payment_id=result.payment_id,
                gateway_order_id=result.gateway_order_id,
                gateway_transaction_id=result.gateway_transaction_id,
                classification=result.classification,
                payload=raw,
            )
        except Exception as e:
            logger.error(f"Failed to record callback event: {e}", exc_info=True)
