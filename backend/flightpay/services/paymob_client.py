"""
Paymob Gateway Client

Thin async HTTP client for Paymob Accept. Owns the cached AuthSession and
applies the retry policy to every network call.

Endpoints:
- POST /auth/tokens                      authenticate
- POST /ecommerce/orders                 register_order
- POST /acceptance/payment_keys          request_payment_key
- GET  /acceptance/transactions/{id}     verify_transaction
- POST /acceptance/refund                refund
- GET  /acceptance/payment_methods       list_payment_methods
"""
import asyncio
import logging
import secrets
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx

from ..config import Settings, PaymobCredentials
from ..exceptions import (
    AuthenticationFailureError,
    NetworkFailureError,
    GatewayRejectedError,
    GatewayUnavailableError,
)
from ..models.payments import (
    AuthSession,
    BillingData,
    LineItem,
    RefundResult,
    TransactionDetails,
)
from .retry import SleepFunc, with_retry

logger = logging.getLogger(__name__)


def make_merchant_order_id(booking_id: str) -> str:
    """
    Derive a gateway-unique merchant order id for a booking.

    Paymob refuses to reuse a merchant_order_id, and one booking may be paid
    for more than once (retries after a failed attempt).
    """
    return f"{booking_id}_{time.time_ns()}_{secrets.token_hex(3)}"


class PaymobClient:
    """
    Gateway client with a process-wide token cache.

    The AuthSession is guarded by an asyncio.Lock so concurrent intents
    share one authentication round-trip.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Optional[SleepFunc] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.settings = settings
        self.credentials: PaymobCredentials = settings.active_credentials()
        self.base_url = settings.paymob_base_url.rstrip("/")
        self.max_attempts = settings.paymob_retry_attempts
        self.base_delay = settings.paymob_retry_base_delay_seconds
        self._http = http_client or httpx.AsyncClient(timeout=settings.paymob_timeout_seconds)
        self._owns_http = http_client is None
        self._sleep = sleep
        self._clock = clock or datetime.utcnow
        self._auth_session: Optional[AuthSession] = None
        self._auth_lock = asyncio.Lock()

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()

    # ========================================================================
    # Transport
    # ========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        bearer: Optional[str] = None,
        is_auth_call: bool = False
    ) -> Any:
        """
        Perform a single HTTP call and map failures to typed errors.

        Raises:
            NetworkFailureError: timeout or transport failure
            AuthenticationFailureError: API key rejected, or bearer expired
            GatewayRejectedError: 4xx with a business error body
            GatewayUnavailableError: 5xx or unreadable body
        """
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"

        try:
            response = await self._http.request(method, url, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise NetworkFailureError(
                f"Timeout calling {path}",
                details={"path": path, "error": str(e)}
            ) from e
        except httpx.TransportError as e:
            raise NetworkFailureError(
                f"Network error calling {path}: {e}",
                details={"path": path, "error": str(e)}
            ) from e

        status = response.status_code
        if status >= 500:
            raise GatewayUnavailableError(
                f"Gateway returned {status} for {path}",
                details={"path": path, "status": status}
            )
        if status >= 400:
            body = _safe_json(response)
            details = {"path": path, "status": status, "body": body}
            if is_auth_call:
                raise AuthenticationFailureError("Gateway rejected the API key", details=details)
            if status == 401:
                # Stale bearer: next authenticate() fetches a fresh token
                self.invalidate_session()
                raise AuthenticationFailureError(f"Gateway rejected credentials for {path}", details=details)
            raise GatewayRejectedError(_error_message(body, path), details=details)

        try:
            return response.json()
        except ValueError as e:
            raise GatewayUnavailableError(
                f"Unreadable response body from {path}",
                details={"path": path, "status": status}
            ) from e

    async def _call(self, label: str, operation) -> Any:
        return await with_retry(
            operation,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            sleep=self._sleep,
            label=label,
        )

    async def _call_with_token(self, label: str, auth_token: Optional[str], send) -> Any:
        """
        Retry a call that carries auth_token in its body.

        The caller's token is used first. Once the gateway rejects it, the
        next attempt authenticates again and sends the fresh token.
        """
        token = auth_token

        async def attempt():
            nonlocal token
            if token is None:
                token = (await self.authenticate()).token
            try:
                return await send(token)
            except AuthenticationFailureError:
                token = None
                raise

        return await self._call(label, attempt)

    # ========================================================================
    # Authentication
    # ========================================================================

    def invalidate_session(self) -> None:
        self._auth_session = None

    @property
    def auth_session(self) -> Optional[AuthSession]:
        return self._auth_session

    async def authenticate(self) -> AuthSession:
        """
        Return a valid AuthSession, fetching a new token only when needed.

        The token is refreshed early: lifetime is the smaller of the configured
        refresh window and the gateway's expires_in minus a minute.
        """
        session = self._auth_session
        if session and session.is_valid(self._clock()):
            return session

        async with self._auth_lock:
            # Another coroutine may have refreshed while we waited
            session = self._auth_session
            if session and session.is_valid(self._clock()):
                return session

            logger.info(f"Authenticating with Paymob (mode={self.settings.paymob_mode})")
            data = await self._call(
                "authenticate",
                lambda: self._request(
                    "POST",
                    "/auth/tokens",
                    json={"api_key": self.credentials.api_key},
                    is_auth_call=True,
                ),
            )

            token = data.get("token") if isinstance(data, dict) else None
            if not token:
                raise AuthenticationFailureError("Gateway returned no auth token")

            expires_in = int(data.get("expires_in") or 3600)
            lifetime = min(self.settings.paymob_token_refresh_seconds, max(expires_in - 60, 1))
            self._auth_session = AuthSession.issued(token, lifetime, now=self._clock())
            logger.info(f"Paymob authentication successful (refresh in {lifetime}s)")
            return self._auth_session

    # ========================================================================
    # Intent Steps
    # ========================================================================

    async def register_order(
        self,
        auth_token: str,
        amount_cents: int,
        currency: str,
        merchant_order_id: str,
        items: Optional[List[LineItem]] = None
    ) -> Dict[str, Any]:
        """
        Register an order with the gateway.

        Args:
            auth_token: Bearer token from authenticate()
            amount_cents: Order total in minor units
            currency: ISO 4217 code
            merchant_order_id: Caller's reference, typically the booking id
            items: Line items; defaults to one line for the whole amount

        Returns:
            {"gateway_order_id": int, "merchant_order_id": str, "created_at": str}

        The merchant order id sent to the gateway is disambiguated once per
        call and reused across retries of that call.
        """
        unique_order_id = make_merchant_order_id(merchant_order_id)
        line_items = items or [
            LineItem(
                name="Flight Booking",
                amount_cents=amount_cents,
                description=f"Booking #{merchant_order_id}",
            )
        ]
        payload = {
            "delivery_needed": False,
            "amount_cents": amount_cents,
            "currency": currency,
            "merchant_order_id": unique_order_id,
            "items": [item.model_dump() for item in line_items],
        }

        logger.info(f"Registering Paymob order: booking={merchant_order_id}, amount={amount_cents} {currency}")
        data = await self._call_with_token(
            "register_order",
            auth_token,
            lambda token: self._request(
                "POST", "/ecommerce/orders", json={"auth_token": token, **payload}
            ),
        )

        if not isinstance(data, dict) or data.get("id") is None:
            raise GatewayRejectedError("Order registration returned no order id", details={"body": data})

        logger.info(f"Paymob order registered: {data['id']} (merchant_order_id={unique_order_id})")
        return {
            "gateway_order_id": int(data["id"]),
            "merchant_order_id": unique_order_id,
            "created_at": data.get("created_at"),
        }

    async def request_payment_key(
        self,
        auth_token: str,
        gateway_order_id: int,
        amount_cents: int,
        currency: str,
        billing_data: Optional[BillingData] = None
    ) -> str:
        """
        Request a payment key for the hosted checkout.

        Absent billing fields are filled with placeholder defaults because the
        gateway rejects incomplete billing_data.

        Returns:
            Payment key token
        """
        billing = (billing_data or BillingData()).to_gateway()
        payload = {
            "amount_cents": amount_cents,
            "expiration": self.settings.paymob_payment_key_expiration,
            "order_id": gateway_order_id,
            "billing_data": billing,
            "currency": currency,
            "integration_id": self.credentials.integration_id,
            "lock_order_when_paid": True,
        }

        data = await self._call_with_token(
            "request_payment_key",
            auth_token,
            lambda token: self._request(
                "POST", "/acceptance/payment_keys", json={"auth_token": token, **payload}
            ),
        )

        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise GatewayRejectedError("Payment key request returned no token", details={"body": data})

        logger.info(f"Paymob payment key obtained for order {gateway_order_id}")
        return token

    def build_checkout_url(self, payment_key_token: str) -> str:
        """Hosted checkout iframe URL. Pure string composition."""
        if not payment_key_token:
            raise ValueError("payment_key_token is required")
        base = self.settings.paymob_iframe_base_url.rstrip("/")
        return f"{base}/{self.credentials.iframe_id}?payment_token={payment_key_token}"

    # ========================================================================
    # Reconciliation and Refunds
    # ========================================================================

    async def verify_transaction(self, transaction_id: int) -> TransactionDetails:
        """
        Fetch a transaction directly from the gateway, independent of callbacks.
        """
        async def attempt():
            session = await self.authenticate()
            return await self._request(
                "GET",
                f"/acceptance/transactions/{transaction_id}",
                bearer=session.token,
            )

        logger.info(f"Verifying transaction {transaction_id}")
        data = await self._call("verify_transaction", attempt)
        if not isinstance(data, dict) or data.get("id") is None:
            raise GatewayRejectedError(
                f"Transaction {transaction_id} lookup returned no transaction",
                details={"body": data}
            )
        return TransactionDetails.from_gateway(data)

    async def refund(self, transaction_id: int, amount_cents: int) -> RefundResult:
        """
        Refund a captured transaction, fully or partially.
        """
        async def attempt():
            session = await self.authenticate()
            return await self._request(
                "POST",
                "/acceptance/refund",
                json={
                    "auth_token": session.token,
                    "transaction_id": transaction_id,
                    "amount_cents": amount_cents,
                },
            )

        logger.info(f"Processing refund: transaction={transaction_id}, amount={amount_cents}")
        data = await self._call("refund", attempt)
        if not isinstance(data, dict) or data.get("id") is None:
            raise GatewayRejectedError("Refund returned no refund id", details={"body": data})

        logger.info(f"Refund processed: refund_id={data['id']}, transaction={transaction_id}")
        return RefundResult(
            refund_id=int(data["id"]),
            transaction_id=transaction_id,
            amount_cents=amount_cents,
            refunded_at=data.get("created_at"),
        )

    async def list_payment_methods(self) -> List[Dict[str, Any]]:
        """Payment methods enabled for this merchant."""
        async def attempt():
            session = await self.authenticate()
            return await self._request("GET", "/acceptance/payment_methods", bearer=session.token)

        data = await self._call("list_payment_methods", attempt)
        if isinstance(data, dict):
            data = data.get("results", [])
        logger.info(f"Payment methods retrieved: {len(data)}")
        return list(data)


# ============================================================================
# Helpers
# ============================================================================

def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _error_message(body: Any, path: str) -> str:
    """Pick a readable message out of a gateway error body."""
    if isinstance(body, dict):
        for key in ("message", "detail", "error"):
            if body.get(key):
                return str(body[key])
    return f"Gateway rejected request to {path}"
