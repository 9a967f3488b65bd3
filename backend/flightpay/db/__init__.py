"""
Database package for FlightPay.

Exports engine/session setup and ORM models.
"""
from .init_db import (
    create_engine_for_path,
    create_session_factory,
    initialize_database,
)
from .models import Base, PaymentModel, PaymentEventModel

__all__ = [
    "create_engine_for_path",
    "create_session_factory",
    "initialize_database",
    "Base",
    "PaymentModel",
    "PaymentEventModel",
]
