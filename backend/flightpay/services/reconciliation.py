"""
Payment Reconciliation

Two paths for catching discrepancies that callbacks missed:

- reconcile_transaction(): out-of-band verification of one transaction via
  the gateway's transaction endpoint, applying the same transition a
  callback would
- sweep_stale_pending(): periodic APScheduler job flagging pending records
  older than the configured window. It alerts only; status never changes
  without a verified transaction.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import Settings
from ..models.payments import PaymentRecord
from .payment_lifecycle import PaymentLifecycle
from .payment_store import PaymentRecordStore
from .paymob_client import PaymobClient

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "stale_pending_sweep"


class Reconciler:
    """Reconciles local PaymentRecords with the gateway's view."""

    def __init__(
        self,
        client: PaymobClient,
        store: PaymentRecordStore,
        lifecycle: PaymentLifecycle,
        stale_after_minutes: int = 60
    ):
        self.client = client
        self.store = store
        self.lifecycle = lifecycle
        self.stale_after = timedelta(minutes=stale_after_minutes)

    async def reconcile_transaction(self, transaction_id: int) -> Dict[str, Any]:
        """
        Verify a transaction with the gateway and settle its local record.

        Args:
            transaction_id: Gateway transaction id

        Returns:
            {"transaction": {...}, "payment": {...} | None, "classification": str}

        Raises:
            Gateway errors from verify_transaction (already retried)
        """
        details = await self.client.verify_transaction(transaction_id)
        transaction_view = details.model_dump(exclude={"raw"})
        transaction_view["status"] = "paid" if details.success and not details.pending else (
            "pending" if details.pending else "failed"
        )

        if details.order_id is None:
            logger.warning(f"Transaction {transaction_id} has no order; nothing to reconcile")
            return {"transaction": transaction_view, "payment": None, "classification": "unknown_order"}

        record = await self.store.find_by_gateway_order_id(details.order_id)
        if record is None:
            logger.warning(f"Transaction {transaction_id} references unknown order {details.order_id}")
            return {"transaction": transaction_view, "payment": None, "classification": "unknown_order"}

        outcome = await self.lifecycle.apply_gateway_transaction(record, details.raw)
        await self.store.append_event(
            "reconciliation",
            payment_id=record.id,
            gateway_order_id=details.order_id,
            gateway_transaction_id=transaction_id,
            classification=outcome.classification,
            payload=transaction_view,
        )
        logger.info(
            f"Reconciled transaction {transaction_id}: payment={record.id}, "
            f"classification={outcome.classification}, status={outcome.status}"
        )
        return {
            "transaction": transaction_view,
            "payment": outcome.record.to_api(),
            "classification": outcome.classification,
        }

    async def sweep_stale_pending(self, now: Optional[datetime] = None) -> List[PaymentRecord]:
        """
        Flag pending records older than the stale window.

        Each record is flagged once: records already carrying a stale_pending
        event are skipped.

        Returns:
            Records flagged by this run
        """
        now = now or datetime.utcnow()
        candidates = await self.store.find_stale_pending(now - self.stale_after)
        flagged: List[PaymentRecord] = []

        for record in candidates:
            existing = await self.store.list_events(payment_id=record.id, event_type="stale_pending")
            if existing:
                continue
            age_minutes = int((now - record.created_at).total_seconds() // 60)
            await self.store.append_event(
                "stale_pending",
                payment_id=record.id,
                gateway_order_id=record.gateway_order_id,
                classification="pending",
                payload={"booking_id": record.booking_id, "age_minutes": age_minutes},
            )
            logger.warning(
                f"Stale pending payment {record.id}: booking={record.booking_id}, "
                f"order={record.gateway_order_id}, age={age_minutes}min"
            )
            flagged.append(record)

        if flagged:
            logger.warning(f"Stale pending sweep flagged {len(flagged)} payment(s) for reconciliation")
        return flagged


class ReconciliationScheduler:
    """
    APScheduler wrapper running the stale-pending sweep on an interval.

    Started and stopped from the FastAPI lifespan.
    """

    def __init__(self, reconciler: Reconciler, settings: Settings):
        self.reconciler = reconciler
        self.interval_minutes = settings.reconciliation_interval_minutes
        self._scheduler = AsyncIOScheduler(
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,
                'misfire_grace_time': 300
            },
            timezone='UTC'
        )

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if self._scheduler.running:
            logger.warning("Reconciliation scheduler already running")
            return
        self._scheduler.add_job(
            self._run_sweep,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=SWEEP_JOB_ID,
            name="Stale pending payment sweep",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(f"Reconciliation scheduler started (every {self.interval_minutes}min)")

    def shutdown(self, wait: bool = True) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info(f"Reconciliation scheduler shutdown (wait={wait})")

    def get_job(self):
        return self._scheduler.get_job(SWEEP_JOB_ID)

    async def _run_sweep(self) -> None:
        try:
            await self.reconciler.sweep_stale_pending()
        except Exception as e:
            logger.error(f"Stale pending sweep failed: {e}", exc_info=True)
