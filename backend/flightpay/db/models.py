"""
SQLAlchemy ORM Models for FlightPay

payments: one row per payment attempt (financial record, never deleted)
payment_events: append-only audit log, one row per callback and status change
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, BigInteger, DateTime, Text, CheckConstraint, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class PaymentModel(Base):
    """
    ORM model for payments table.

    gateway_order_id is unique: one gateway order maps to exactly one record.
    """
    __tablename__ = "payments"

    id = Column(String, primary_key=True)
    booking_id = Column(String, nullable=False, index=True)
    gateway_order_id = Column(BigInteger, unique=True)
    merchant_order_id = Column(String)
    gateway_transaction_id = Column(BigInteger)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="EGP")
    status = Column(String, nullable=False, default="pending", index=True)
    payment_method = Column(String)
    gateway_response = Column(Text)  # JSON blob
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'paid', 'failed', 'refunded')", name="payment_status_check"),
        CheckConstraint("amount_cents > 0", name="payment_amount_check"),
    )


class PaymentEventModel(Base):
    """
    ORM model for payment_events table.

    Rows are only ever inserted. Rejected and duplicate callbacks are
    recorded too, with payment_id left empty when no record matched.
    """
    __tablename__ = "payment_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_id = Column(String, index=True)
    gateway_order_id = Column(BigInteger)
    gateway_transaction_id = Column(BigInteger)
    event_type = Column(String, nullable=False)
    classification = Column(String)
    payload = Column(Text)  # JSON blob
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index("idx_payment_events_order", "gateway_order_id"),
    )
