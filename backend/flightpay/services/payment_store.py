"""
Payment Record Store

Persistence boundary for PaymentRecords and the payment_events audit log.

Concurrency:
- Status changes are conditional updates keyed on the expected prior status,
  so two near-simultaneous callbacks for one order cannot both apply
- gateway_order_id carries a unique constraint
"""
import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..db.models import PaymentModel, PaymentEventModel
from ..models.payments import PaymentEvent, PaymentRecord, PaymentStatus

logger = logging.getLogger(__name__)


class PaymentRecordStore(ABC):
    """Abstract store used by the orchestrator, callback processor and lifecycle."""

    @abstractmethod
    async def create(
        self,
        booking_id: str,
        amount_cents: int,
        currency: str,
        gateway_order_id: int,
        merchant_order_id: Optional[str] = None
    ) -> PaymentRecord:
        ...

    @abstractmethod
    async def get(self, payment_id: str) -> Optional[PaymentRecord]:
        ...

    @abstractmethod
    async def find_by_gateway_order_id(self, gateway_order_id: int) -> Optional[PaymentRecord]:
        ...

    @abstractmethod
    async def find_by_booking_id(self, booking_id: str) -> List[PaymentRecord]:
        ...

    @abstractmethod
    async def update_status(
        self,
        payment_id: str,
        expected_status: PaymentStatus,
        new_status: PaymentStatus,
        **fields: Any
    ) -> Optional[PaymentRecord]:
        """Move status only if it still equals expected_status. None if it did not."""

    @abstractmethod
    async def apply_transaction(
        self,
        payment_id: str,
        new_status: PaymentStatus,
        gateway_transaction_id: int,
        payment_method: Optional[str],
        gateway_response: Optional[Dict[str, Any]]
    ) -> Optional[PaymentRecord]:
        """Record the first transaction on a pending record. None if one already landed."""

    @abstractmethod
    async def append_event(
        self,
        event_type: str,
        payment_id: Optional[str] = None,
        gateway_order_id: Optional[int] = None,
        gateway_transaction_id: Optional[int] = None,
        classification: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None
    ) -> PaymentEvent:
        ...

    @abstractmethod
    async def list_events(
        self,
        payment_id: Optional[str] = None,
        gateway_order_id: Optional[int] = None,
        event_type: Optional[str] = None
    ) -> List[PaymentEvent]:
        ...

    @abstractmethod
    async def find_stale_pending(self, older_than: datetime) -> List[PaymentRecord]:
        ...


class SqlAlchemyPaymentStore(PaymentRecordStore):
    """
    PaymentRecordStore over an async SQLAlchemy session factory.

    Each operation opens its own session and commits before returning.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def create(
        self,
        booking_id: str,
        amount_cents: int,
        currency: str,
        gateway_order_id: int,
        merchant_order_id: Optional[str] = None
    ) -> PaymentRecord:
        payment_id = f"pay_{uuid.uuid4().hex[:16]}"
        now = datetime.utcnow()

        db_payment = PaymentModel(
            id=payment_id,
            booking_id=booking_id,
            gateway_order_id=gateway_order_id,
            merchant_order_id=merchant_order_id,
            amount_cents=amount_cents,
            currency=currency,
            status="pending",
            created_at=now,
            updated_at=now,
        )

        async with self._session_factory() as session:
            session.add(db_payment)
            await session.commit()
            await session.refresh(db_payment)

        logger.info(
            f"Created payment record: {payment_id}, booking={booking_id}, "
            f"order={gateway_order_id}, amount={amount_cents} {currency}"
        )
        return _to_record(db_payment)

    async def get(self, payment_id: str) -> Optional[PaymentRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PaymentModel).where(PaymentModel.id == payment_id)
            )
            db_payment = result.scalar_one_or_none()
        return _to_record(db_payment) if db_payment else None

    async def find_by_gateway_order_id(self, gateway_order_id: int) -> Optional[PaymentRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PaymentModel).where(PaymentModel.gateway_order_id == gateway_order_id)
            )
            db_payment = result.scalar_one_or_none()
        return _to_record(db_payment) if db_payment else None

    async def find_by_booking_id(self, booking_id: str) -> List[PaymentRecord]:
        """All attempts for a booking, most recent first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(PaymentModel)
                .where(PaymentModel.booking_id == booking_id)
                .order_by(PaymentModel.created_at.desc())
            )
            rows = result.scalars().all()
        return [_to_record(row) for row in rows]

    async def update_status(
        self,
        payment_id: str,
        expected_status: PaymentStatus,
        new_status: PaymentStatus,
        **fields: Any
    ) -> Optional[PaymentRecord]:
        values: Dict[str, Any] = {"status": new_status, "updated_at": datetime.utcnow()}
        for key in ("payment_method", "gateway_transaction_id"):
            if fields.get(key) is not None:
                values[key] = fields[key]
        if fields.get("gateway_response") is not None:
            values["gateway_response"] = _dump(fields["gateway_response"])

        stmt = (
            update(PaymentModel)
            .where(PaymentModel.id == payment_id, PaymentModel.status == expected_status)
            .values(**values)
        )
        if "gateway_transaction_id" in values:
            # Set once: never overwrite a transaction id already recorded
            stmt = stmt.where(PaymentModel.gateway_transaction_id.is_(None))

        return await self._conditional_update(stmt, payment_id)

    async def apply_transaction(
        self,
        payment_id: str,
        new_status: PaymentStatus,
        gateway_transaction_id: int,
        payment_method: Optional[str],
        gateway_response: Optional[Dict[str, Any]]
    ) -> Optional[PaymentRecord]:
        stmt = (
            update(PaymentModel)
            .where(
                PaymentModel.id == payment_id,
                PaymentModel.status == "pending",
                PaymentModel.gateway_transaction_id.is_(None),
            )
            .values(
                status=new_status,
                gateway_transaction_id=gateway_transaction_id,
                payment_method=payment_method,
                gateway_response=_dump(gateway_response),
                updated_at=datetime.utcnow(),
            )
        )
        return await self._conditional_update(stmt, payment_id)

    async def _conditional_update(self, stmt, payment_id: str) -> Optional[PaymentRecord]:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            if result.rowcount != 1:
                logger.debug(f"Conditional update matched no row for {payment_id}")
                return None
            fetched = await session.execute(
                select(PaymentModel)
                .where(PaymentModel.id == payment_id)
                .execution_options(populate_existing=True)
            )
            return _to_record(fetched.scalar_one())

    async def append_event(
        self,
        event_type: str,
        payment_id: Optional[str] = None,
        gateway_order_id: Optional[int] = None,
        gateway_transaction_id: Optional[int] = None,
        classification: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None
    ) -> PaymentEvent:
        db_event = PaymentEventModel(
            payment_id=payment_id,
            gateway_order_id=gateway_order_id,
            gateway_transaction_id=gateway_transaction_id,
            event_type=event_type,
            classification=classification,
            payload=_dump(payload),
            created_at=datetime.utcnow(),
        )
        async with self._session_factory() as session:
            session.add(db_event)
            await session.commit()
            await session.refresh(db_event)

        logger.debug(f"Logged payment event: {event_type}/{classification} payment={payment_id}")
        return _to_event(db_event)

    async def list_events(
        self,
        payment_id: Optional[str] = None,
        gateway_order_id: Optional[int] = None,
        event_type: Optional[str] = None
    ) -> List[PaymentEvent]:
        query = select(PaymentEventModel).order_by(PaymentEventModel.id)
        if payment_id is not None:
            query = query.where(PaymentEventModel.payment_id == payment_id)
        if gateway_order_id is not None:
            query = query.where(PaymentEventModel.gateway_order_id == gateway_order_id)
        if event_type is not None:
            query = query.where(PaymentEventModel.event_type == event_type)

        async with self._session_factory() as session:
            result = await session.execute(query)
            rows = result.scalars().all()
        return [_to_event(row) for row in rows]

    async def find_stale_pending(self, older_than: datetime) -> List[PaymentRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PaymentModel)
                .where(PaymentModel.status == "pending", PaymentModel.created_at < older_than)
                .order_by(PaymentModel.created_at)
            )
            rows = result.scalars().all()
        return [_to_record(row) for row in rows]


# ============================================================================
# Row Conversion
# ============================================================================

def _dump(data: Optional[Dict[str, Any]]) -> Optional[str]:
    return json.dumps(data, default=str) if data is not None else None


def _load(blob: Optional[str]) -> Optional[Dict[str, Any]]:
    return json.loads(blob) if blob else None


def _to_record(row: PaymentModel) -> PaymentRecord:
    return PaymentRecord(
        id=row.id,
        booking_id=row.booking_id,
        gateway_order_id=row.gateway_order_id,
        merchant_order_id=row.merchant_order_id,
        gateway_transaction_id=row.gateway_transaction_id,
        amount_cents=row.amount_cents,
        currency=row.currency,
        status=row.status,
        payment_method=row.payment_method,
        gateway_response=_load(row.gateway_response),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_event(row: PaymentEventModel) -> PaymentEvent:
    return PaymentEvent(
        id=row.id,
        payment_id=row.payment_id,
        gateway_order_id=row.gateway_order_id,
        gateway_transaction_id=row.gateway_transaction_id,
        event_type=row.event_type,
        classification=row.classification,
        payload=_load(row.payload),
        created_at=row.created_at,
    )
