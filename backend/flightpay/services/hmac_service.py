"""
Callback HMAC Verification

Implements Paymob's HMAC-SHA512 check for transaction callbacks.

Wire Contract:
- A fixed, ordered list of fields is read from the callback's `obj`
- Their string forms are concatenated with no separator
- HMAC-SHA512 keyed with the merchant HMAC secret, hex-encoded
- Reordering or dropping a field breaks verification against the gateway
"""
import hmac
import hashlib
import logging
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


# Ordered field paths. Dotted entries read nested objects.
HMAC_FIELDS: Tuple[str, ...] = (
    "amount_cents",
    "created_at",
    "currency",
    "error_occured",
    "has_parent_transaction",
    "id",
    "integration_id",
    "is_3d_secure",
    "is_auth",
    "is_capture",
    "is_refunded",
    "is_standalone_payment",
    "is_voided",
    "order.id",
    "owner",
    "pending",
    "source_data.pan",
    "source_data.sub_type",
    "source_data.type",
    "success",
)


def _lookup(payload: Dict[str, Any], path: str) -> Any:
    """Resolve a dotted path; a scalar `order` stands for its own id."""
    value: Any = payload
    for part in path.split("."):
        if isinstance(value, dict):
            value = value.get(part)
        elif part == "id" and value is not None and not isinstance(value, (list, tuple)):
            continue
        else:
            return None
    return value


def _stringify(value: Any) -> str:
    """
    Render a value the way the gateway does when it signs.

    Booleans are lowercase, missing values are empty and integral floats
    drop their fractional part.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_hmac_message(payload: Dict[str, Any]) -> str:
    """
    Concatenate the signed fields of a callback `obj` in wire order.

    Args:
        payload: The callback's `obj` dictionary

    Returns:
        Concatenated string that the gateway signed
    """
    return "".join(_stringify(_lookup(payload, path)) for path in HMAC_FIELDS)


def compute_callback_hmac(payload: Dict[str, Any], secret: str) -> str:
    """
    Compute the hex HMAC-SHA512 for a callback `obj`.

    Args:
        payload: The callback's `obj` dictionary
        secret: Merchant HMAC secret

    Returns:
        Lowercase hexadecimal digest
    """
    message = build_hmac_message(payload)
    return hmac.new(
        secret.encode('utf-8'),
        message.encode('utf-8'),
        hashlib.sha512
    ).hexdigest()


def verify_callback_hmac(
    payload: Optional[Dict[str, Any]],
    received_hmac: Optional[str],
    secret: str
) -> bool:
    """
    Verify a callback signature using constant-time comparison.

    Args:
        payload: The callback's `obj` dictionary
        received_hmac: Signature sent by the gateway
        secret: Merchant HMAC secret

    Returns:
        True if the signature matches, False otherwise. Never raises.
    """
    if not payload or not received_hmac or not secret:
        logger.debug("HMAC verification skipped: missing payload, signature or secret")
        return False

    try:
        expected = compute_callback_hmac(payload, secret)
        # compare_digest rejects non-ASCII str input with TypeError
        is_valid = hmac.compare_digest(expected, received_hmac.strip().lower())
    except (TypeError, ValueError, AttributeError) as e:
        logger.error(f"HMAC verification failed: {e}")
        return False

    logger.debug(
        f"HMAC verification: valid={is_valid}, "
        f"computed_length={len(expected)}, received_length={len(received_hmac)}"
    )
    return is_valid
