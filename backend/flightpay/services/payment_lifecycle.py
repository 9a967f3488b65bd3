"""
Payment Record Lifecycle

State machine for PaymentRecord.status:

    pending -> paid       verified transaction, success and not pending
    pending -> failed     verified transaction, anything else settled
    paid    -> refunded   administrative refund

failed and refunded are terminal. A new attempt is a new PaymentRecord.
Callbacks, reconciliation and manual updates all go through this module so
the transition table is enforced in one place.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from ..exceptions import IllegalTransitionError, PaymentNotFoundError
from ..models.payments import PaymentRecord, PaymentStatus, RefundResult
from .payment_store import PaymentRecordStore

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[str, frozenset] = {
    "pending": frozenset({"paid", "failed"}),
    "paid": frozenset({"refunded"}),
    "failed": frozenset(),
    "refunded": frozenset(),
}

PaidHook = Callable[[PaymentRecord], Awaitable[None]]


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


def as_bool(value: Any) -> bool:
    """Gateway flags arrive as JSON booleans, or as strings on redirects."""
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def classify_transaction(transaction: Dict[str, Any]) -> PaymentStatus:
    """
    Map a gateway transaction to the status it implies.

    success and not pending -> paid; pending -> pending; otherwise failed.
    """
    success = as_bool(transaction.get("success"))
    pending = as_bool(transaction.get("pending"))
    if success and not pending:
        return "paid"
    if pending:
        return "pending"
    return "failed"


@dataclass
class TransitionOutcome:
    """Result of applying one gateway transaction to a record."""
    classification: str  # applied | pending | duplicate | ignored
    record: PaymentRecord
    status: PaymentStatus


class PaymentLifecycle:
    """
    Applies status transitions and fires the paid hook exactly once per
    applied pending -> paid transition.
    """

    def __init__(
        self,
        store: PaymentRecordStore,
        client=None,
        on_paid: Optional[PaidHook] = None
    ):
        self.store = store
        self.client = client
        self.on_paid = on_paid
        # Payment ids with a gateway refund underway on this lifecycle
        self._refunds_in_flight: set = set()

    async def apply_gateway_transaction(
        self,
        record: PaymentRecord,
        transaction: Dict[str, Any]
    ) -> TransitionOutcome:
        """
        Apply a verified gateway transaction to its PaymentRecord.

        Args:
            record: Record resolved from the transaction's order id
            transaction: Transaction fields (callback obj or verified details)

        Returns:
            TransitionOutcome; callers record the audit event
        """
        transaction_id = int(transaction["id"])

        if record.gateway_transaction_id == transaction_id:
            logger.info(f"Duplicate transaction {transaction_id} for payment {record.id}; no changes applied")
            return TransitionOutcome("duplicate", record, record.status)

        target = classify_transaction(transaction)

        if target == "pending":
            logger.info(f"Transaction {transaction_id} still pending for payment {record.id}")
            return TransitionOutcome("pending", record, record.status)

        if not can_transition(record.status, target):
            logger.warning(
                f"Ignoring transaction {transaction_id}: payment {record.id} is {record.status}, "
                f"transition to {target} not allowed"
            )
            return TransitionOutcome("ignored", record, record.status)

        source_data = transaction.get("source_data") or {}
        payment_method = source_data.get("type") if isinstance(source_data, dict) else None

        updated = await self.store.apply_transaction(
            record.id,
            new_status=target,
            gateway_transaction_id=transaction_id,
            payment_method=payment_method or "card",
            gateway_response=transaction,
        )

        if updated is None:
            # Lost a race with a concurrent delivery for the same order
            current = await self.store.get(record.id) or record
            if current.gateway_transaction_id == transaction_id:
                logger.info(f"Concurrent duplicate of transaction {transaction_id} for payment {record.id}")
                return TransitionOutcome("duplicate", current, current.status)
            logger.warning(
                f"Transaction {transaction_id} not applied: payment {record.id} "
                f"already settled as {current.status}"
            )
            return TransitionOutcome("ignored", current, current.status)

        logger.info(f"Payment {record.id}: pending -> {target} (transaction {transaction_id})")
        if target == "paid":
            await self._fire_paid(updated)
        return TransitionOutcome("applied", updated, target)

    async def update_status(
        self,
        booking_id: str,
        new_status: PaymentStatus,
        additional_data: Optional[Dict[str, Any]] = None
    ) -> PaymentRecord:
        """
        Manual / administrative status change on a booking's latest payment.

        Raises:
            PaymentNotFoundError: booking has no payments
            IllegalTransitionError: transition not in the table, or the record
                changed underneath us
        """
        additional_data = additional_data or {}
        records = await self.store.find_by_booking_id(booking_id)
        if not records:
            raise PaymentNotFoundError(
                f"No payment found for booking {booking_id}",
                details={"booking_id": booking_id}
            )
        record = records[0]
        old_status = record.status

        if not can_transition(old_status, new_status):
            raise IllegalTransitionError(
                f"Cannot move payment {record.id} from {old_status} to {new_status}",
                details={"payment_id": record.id, "from": old_status, "to": new_status}
            )

        updated = await self.store.update_status(
            record.id,
            expected_status=old_status,
            new_status=new_status,
            payment_method=additional_data.get("payment_method"),
            gateway_transaction_id=additional_data.get("transaction_id"),
        )
        if updated is None:
            raise IllegalTransitionError(
                f"Payment {record.id} changed concurrently; status update rejected",
                details={"payment_id": record.id, "from": old_status, "to": new_status}
            )

        await self.store.append_event(
            "status_change",
            payment_id=record.id,
            gateway_order_id=record.gateway_order_id,
            gateway_transaction_id=updated.gateway_transaction_id,
            classification="applied",
            payload={"old_status": old_status, "new_status": new_status, "data": additional_data},
        )
        logger.info(f"Payment status updated: {record.id} booking={booking_id} {old_status} -> {new_status}")

        if new_status == "paid":
            await self._fire_paid(updated)
        return updated

    async def refund(self, payment_id: str, amount_cents: Optional[int] = None) -> RefundResult:
        """
        Refund a paid payment through the gateway and mark it refunded.

        Args:
            payment_id: Local payment identifier
            amount_cents: Partial amount; defaults to the full amount

        Raises:
            PaymentNotFoundError: unknown payment
            IllegalTransitionError: payment is not paid or has no transaction;
                also raised while another refund of the payment is underway
            ValueError: refund amount exceeds the paid amount
        """
        if self.client is None:
            raise RuntimeError("PaymentLifecycle has no gateway client for refunds")
        if payment_id in self._refunds_in_flight:
            raise IllegalTransitionError(
                f"Refund already in progress for payment {payment_id}",
                details={"payment_id": payment_id, "from": "paid", "to": "refunded"}
            )
        self._refunds_in_flight.add(payment_id)
        try:
            return await self._refund(payment_id, amount_cents)
        finally:
            self._refunds_in_flight.discard(payment_id)

    async def _refund(self, payment_id: str, amount_cents: Optional[int]) -> RefundResult:
        record = await self.store.get(payment_id)
        if record is None:
            raise PaymentNotFoundError(f"Payment {payment_id} not found", details={"payment_id": payment_id})

        if record.status != "paid" or record.gateway_transaction_id is None:
            raise IllegalTransitionError(
                f"Payment {payment_id} is {record.status}; only paid payments can be refunded",
                details={"payment_id": payment_id, "from": record.status, "to": "refunded"}
            )

        amount = amount_cents or record.amount_cents
        if amount > record.amount_cents:
            raise ValueError(
                f"Refund amount {amount} exceeds paid amount {record.amount_cents}"
            )

        result = await self.client.refund(record.gateway_transaction_id, amount)

        updated = await self.store.update_status(payment_id, expected_status="paid", new_status="refunded")
        if updated is None:
            logger.error(f"Refund {result.refund_id} succeeded but payment {payment_id} was no longer paid")

        await self.store.append_event(
            "refund",
            payment_id=payment_id,
            gateway_order_id=record.gateway_order_id,
            gateway_transaction_id=record.gateway_transaction_id,
            classification="applied" if updated else "ignored",
            payload=result.model_dump(),
        )
        logger.info(f"Payment {payment_id} refunded: {amount} {record.currency} (refund {result.refund_id})")
        return result

    async def _fire_paid(self, record: PaymentRecord) -> None:
        if self.on_paid is None:
            return
        try:
            await self.on_paid(record)
        except Exception as e:
            # Payment is settled; a failed notification must not undo it
            logger.error(f"Paid hook failed for payment {record.id}: {e}", exc_info=True)
