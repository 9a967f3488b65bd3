"""
Payment Exception Hierarchy

Error codes shared by the gateway client, the orchestrator and the HTTP layer.
All errors use the payment: prefix so clients can switch on error_code.
"""
from typing import Optional, Dict, Any


class PaymentError(Exception):
    """
    Base exception for all payment errors.

    Subclasses set:
    - http_status: status returned to the booking backend's own clients
    - retryable: whether the retry utility may attempt the call again
    """

    http_status: int = 400
    retryable: bool = False

    def __init__(
        self,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API error response format."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }


# ============================================================================
# Gateway Errors (outbound calls)
# ============================================================================

class AuthenticationFailureError(PaymentError):
    """
    Gateway rejected the API key.

    Retried under the uniform policy: a transient auth-service hiccup looks
    the same as a bad key from the outside.
    """

    http_status = 502
    retryable = True

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("payment:gateway:auth_failed", message, details)


class NetworkFailureError(PaymentError):
    """
    Timeout, connection reset or any other transport-level failure.
    """

    http_status = 503
    retryable = True

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("payment:gateway:network", message, details)


class GatewayRejectedError(PaymentError):
    """
    Gateway answered 4xx with a business error body.

    Examples:
    - Invalid amount
    - Unknown integration id
    - Refund exceeding captured amount
    """

    http_status = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("payment:gateway:rejected", message, details)


class GatewayUnavailableError(PaymentError):
    """
    Gateway answered 5xx.
    """

    http_status = 503
    retryable = True

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("payment:gateway:unavailable", message, details)


class PaymentIntentError(PaymentError):
    """
    Intent creation failed at one of its steps.

    Details carry the failing step, the cause's error code and, when the
    gateway order was already registered, the local payment id left pending.
    """

    http_status = 503

    def __init__(
        self,
        message: str,
        step: str,
        cause: Optional[PaymentError] = None,
        payment_id: Optional[str] = None
    ):
        details: Dict[str, Any] = {"step": step}
        if cause is not None:
            details["cause"] = cause.error_code
            details["cause_message"] = cause.message
        if payment_id is not None:
            details["payment_id"] = payment_id
        super().__init__("payment:intent:failed", message, details)
        self.step = step
        self.cause = cause
        self.payment_id = payment_id
        if isinstance(cause, GatewayRejectedError):
            self.http_status = 400


# ============================================================================
# Callback Errors (inbound webhooks)
# ============================================================================
# These never reach the gateway as an HTTP error: the callback endpoint
# always acknowledges with 200.

class InvalidSignatureError(PaymentError):
    """Callback HMAC did not match the payload."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("payment:callback:invalid_signature", message, details)


class UnknownOrderError(PaymentError):
    """Callback references a gateway order with no local PaymentRecord."""

    http_status = 404

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("payment:callback:unknown_order", message, details)


class MalformedCallbackError(PaymentError):
    """Callback body is missing required fields."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("payment:callback:malformed", message, details)


# ============================================================================
# Lifecycle Errors
# ============================================================================

class IllegalTransitionError(PaymentError):
    """
    Requested status change is not in the transition table.

    Examples:
    - paid -> pending
    - failed -> paid
    """

    http_status = 409

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("payment:status:illegal_transition", message, details)


class PaymentNotFoundError(PaymentError):
    """No PaymentRecord matches the given identifier."""

    http_status = 404

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("payment:not_found", message, details)
