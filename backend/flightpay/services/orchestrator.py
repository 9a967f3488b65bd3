"""
Payment Intent Orchestrator

Runs the gateway handshake that turns a PaymentIntent into a hosted
checkout URL:

    1. authenticate()          cached AuthSession
    2. register_order()        PaymentRecord created here, status pending
    3. request_payment_key()
    4. build_checkout_url()

Steps are strictly sequential. Any failure surfaces as one
PaymentIntentError. A failure after step 2 leaves the pending record in
place (the gateway order exists too); the caller retries the whole flow,
which registers a fresh gateway order.
"""
import logging

from ..exceptions import PaymentError, PaymentIntentError
from ..models.payments import IntentResult, PaymentIntent
from .payment_store import PaymentRecordStore
from .paymob_client import PaymobClient

logger = logging.getLogger(__name__)


class PaymentOrchestrator:
    """Creates payment intents against one gateway client and store."""

    def __init__(self, client: PaymobClient, store: PaymentRecordStore):
        self.client = client
        self.store = store

    async def create_payment_intent(self, intent: PaymentIntent) -> IntentResult:
        """
        Execute the handshake for one intent.

        Args:
            intent: Booking reference, amount in minor units, currency, billing

        Returns:
            IntentResult with checkout URL, gateway order id and payment key

        Raises:
            PaymentIntentError: any step failed; details name the step
        """
        logger.info(
            f"Starting payment intent: booking={intent.booking_id}, "
            f"amount={intent.amount_cents} {intent.currency}"
        )

        step = "authenticate"
        payment_id = None
        try:
            session = await self.client.authenticate()

            step = "register_order"
            order = await self.client.register_order(
                session.token,
                intent.amount_cents,
                intent.currency,
                intent.booking_id,
                intent.line_items(),
            )
            gateway_order_id = order["gateway_order_id"]

            record = await self.store.create(
                booking_id=intent.booking_id,
                amount_cents=intent.amount_cents,
                currency=intent.currency,
                gateway_order_id=gateway_order_id,
                merchant_order_id=order["merchant_order_id"],
            )
            payment_id = record.id
            await self.store.append_event(
                "initiation",
                payment_id=record.id,
                gateway_order_id=gateway_order_id,
                classification="pending",
                payload={
                    "booking_id": intent.booking_id,
                    "merchant_order_id": order["merchant_order_id"],
                    "amount_cents": intent.amount_cents,
                    "currency": intent.currency,
                },
            )

            step = "request_payment_key"
            payment_key = await self.client.request_payment_key(
                session.token,
                gateway_order_id,
                intent.amount_cents,
                intent.currency,
                intent.billing_data,
            )

            step = "build_checkout_url"
            checkout_url = self.client.build_checkout_url(payment_key)

        except PaymentError as e:
            logger.error(
                f"Payment intent failed at {step}: booking={intent.booking_id}, "
                f"payment={payment_id}, cause={e.error_code}: {e.message}"
            )
            raise PaymentIntentError(
                f"Payment intent creation failed at {step}",
                step=step,
                cause=e,
                payment_id=payment_id,
            ) from e
        except ValueError as e:
            logger.error(f"Payment intent failed at {step}: booking={intent.booking_id}: {e}")
            raise PaymentIntentError(
                f"Payment intent creation failed at {step}",
                step=step,
                payment_id=payment_id,
            ) from e

        logger.info(
            f"Payment intent ready: booking={intent.booking_id}, payment={payment_id}, "
            f"order={gateway_order_id}"
        )
        return IntentResult(
            payment_id=payment_id,
            checkout_url=checkout_url,
            gateway_order_id=gateway_order_id,
            payment_key_token=payment_key,
            amount_cents=intent.amount_cents,
            currency=intent.currency,
        )
