"""
Payment services: gateway client, orchestration, callbacks and reconciliation.
"""
from .callback_service import CallbackProcessor
from .orchestrator import PaymentOrchestrator
from .payment_lifecycle import PaymentLifecycle
from .payment_store import PaymentRecordStore, SqlAlchemyPaymentStore
from .paymob_client import PaymobClient
from .reconciliation import Reconciler, ReconciliationScheduler

__all__ = [
    "CallbackProcessor",
    "PaymentOrchestrator",
    "PaymentLifecycle",
    "PaymentRecordStore",
    "SqlAlchemyPaymentStore",
    "PaymobClient",
    "Reconciler",
    "ReconciliationScheduler",
]
