"""
FlightPay Backend - FastAPI Application

Paymob payment service for the flight-booking backend: intent creation,
callback verification, status queries, refunds and reconciliation.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
import logging

from .config import Settings, settings as default_settings
from .exceptions import PaymentError
from .db.init_db import create_engine_for_path, create_session_factory, initialize_database
from .services.callback_service import CallbackProcessor
from .services.orchestrator import PaymentOrchestrator
from .services.payment_lifecycle import PaidHook, PaymentLifecycle
from .services.payment_store import PaymentRecordStore, SqlAlchemyPaymentStore
from .services.paymob_client import PaymobClient
from .services.reconciliation import Reconciler, ReconciliationScheduler
from .api.payments import router as payments_router


# Configure logging
logging.basicConfig(
    level=getattr(logging, default_settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    client: Optional[PaymobClient] = None,
    store: Optional[PaymentRecordStore] = None,
    on_paid: Optional[PaidHook] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use; defaults to the environment-loaded instance
        client: Pre-built gateway client (tests inject one over a mock transport)
        store: Pre-built payment store; defaults to SQLite at database_path
        on_paid: Hook called once per payment that becomes paid
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Handles startup and shutdown events:
        - Startup: Initialize database, build services, start reconciliation
        - Shutdown: Stop scheduler, close gateway connections
        """
        # Startup
        logger.info("Starting FlightPay backend server...")
        logger.info(f"Paymob mode: {settings.paymob_mode}")

        engine = None
        payment_store = store
        if payment_store is None:
            try:
                engine = create_engine_for_path(settings.database_path)
                await initialize_database(engine)
                payment_store = SqlAlchemyPaymentStore(create_session_factory(engine))
                logger.info("Database initialized successfully")
            except Exception as e:
                logger.error(f"Failed to initialize database: {e}")
                raise

        credentials = settings.active_credentials()
        if not credentials.api_key or not credentials.hmac_secret:
            logger.warning(f"Paymob {settings.paymob_mode} credentials are incomplete")

        gateway_client = client or PaymobClient(settings)
        lifecycle = PaymentLifecycle(payment_store, client=gateway_client, on_paid=on_paid)
        reconciler = Reconciler(
            gateway_client,
            payment_store,
            lifecycle,
            stale_after_minutes=settings.stale_pending_minutes,
        )

        app.state.settings = settings
        app.state.store = payment_store
        app.state.client = gateway_client
        app.state.lifecycle = lifecycle
        app.state.orchestrator = PaymentOrchestrator(gateway_client, payment_store)
        app.state.callback_processor = CallbackProcessor(
            payment_store, lifecycle, credentials.hmac_secret
        )
        app.state.reconciler = reconciler

        # Start APScheduler for the stale pending sweep
        scheduler = None
        if settings.reconciliation_enabled:
            try:
                scheduler = ReconciliationScheduler(reconciler, settings)
                scheduler.start()
            except Exception as e:
                logger.error(f"Failed to start reconciliation scheduler: {e}")
                scheduler = None
        app.state.scheduler = scheduler

        logger.info("Server startup complete")

        yield

        # Shutdown
        logger.info("Shutting down FlightPay backend server...")

        if scheduler is not None:
            try:
                scheduler.shutdown(wait=True)
            except Exception as e:
                logger.error(f"Error during scheduler shutdown: {e}")

        if client is None:
            await gateway_client.close()
        if engine is not None:
            await engine.dispose()

    app = FastAPI(
        title="FlightPay API",
        description="Paymob payment intents and callback verification for flight bookings",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Configure CORS middleware for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, exc: PaymentError):
        """
        Handle payment errors with standardized response format.

        Status comes from the error class (404 not found, 409 illegal
        transition, 503 gateway unavailable, ...).
        """
        logger.warning(
            f"Payment error: {exc.error_code} - {exc.message}",
            extra={"details": exc.details}
        )

        return JSONResponse(
            status_code=exc.http_status,
            content={"success": False, **exc.to_dict()},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        """
        Handle validation errors with user-friendly messages.

        Used for input validation failures not caught by Pydantic.
        """
        logger.warning(f"Validation error: {str(exc)}")

        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error_code": "validation_error",
                "message": str(exc),
                "details": {}
            },
        )

    @app.exception_handler(Exception)
    async def general_error_handler(request: Request, exc: Exception):
        """
        Catch-all handler for unexpected errors.

        Logs full exception for debugging but returns generic message to client.
        """
        logger.error(f"Unexpected error: {str(exc)}", exc_info=True)

        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error_code": "internal_error",
                "message": "An unexpected error occurred",
                "details": {"error_type": type(exc).__name__} if settings.is_test_mode else {}
            },
        )

    # Health check endpoint
    @app.get("/api/health")
    async def health_check():
        """
        Health check endpoint for monitoring and load balancers.

        Returns:
            Server status and version information
        """
        return {
            "status": "healthy",
            "version": "0.1.0",
            "paymob_mode": settings.paymob_mode,
        }

    # Include API routers
    app.include_router(payments_router, prefix="/api/payment", tags=["Payments"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "flightpay.main:app",
        host=default_settings.host,
        port=default_settings.port,
        log_level=default_settings.log_level.lower()
    )
