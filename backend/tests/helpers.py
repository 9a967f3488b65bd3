"""Builders for gateway payloads shared across tests."""
from typing import Any, Dict, Tuple

from flightpay.services.hmac_service import compute_callback_hmac

PAYMOB_BASE_URL = "https://accept.paymob.com/api"
HMAC_SECRET = "test_hmac_secret"
INTEGRATION_ID = 4321
IFRAME_ID = 876

ORDER_ID = 9870001
TRANSACTION_ID = 5550001


def make_transaction(
    transaction_id: int = TRANSACTION_ID,
    order_id: int = ORDER_ID,
    success: bool = True,
    pending: bool = False,
    amount_cents: int = 150000,
) -> Dict[str, Any]:
    """Transaction obj shaped like a Paymob TRANSACTION callback."""
    return {
        "id": transaction_id,
        "pending": pending,
        "amount_cents": amount_cents,
        "success": success,
        "is_auth": False,
        "is_capture": False,
        "is_standalone_payment": True,
        "is_voided": False,
        "is_refunded": False,
        "is_3d_secure": True,
        "integration_id": INTEGRATION_ID,
        "has_parent_transaction": False,
        "order": {"id": order_id, "merchant_order_id": "BK1_1_abc123"},
        "created_at": "2026-10-17T10:00:00.000000",
        "currency": "EGP",
        "error_occured": not success and not pending,
        "owner": 302,
        "source_data": {"pan": "2346", "type": "card", "sub_type": "MasterCard"},
    }


def signed_callback(
    obj: Dict[str, Any],
    secret: str = HMAC_SECRET,
    callback_type: str = "TRANSACTION",
) -> Tuple[Dict[str, Any], str]:
    """Callback body plus the signature the gateway would send with it."""
    return {"type": callback_type, "obj": obj}, compute_callback_hmac(obj, secret)
