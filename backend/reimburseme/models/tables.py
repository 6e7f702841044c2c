"""SQLAlchemy ORM models for the ReimburseMe backend.

These models define the relational database schema used by the
application.  Enumerated fields are stored using SQLAlchemy's native
Enum type.  The per-file records of a batch session live in a JSON
column; SQLAlchemy only notices changes to that column when a *new*
list is assigned, so writers must never mutate ``files`` in place.

Call the ``init_db`` helper during development to create the tables.
"""

from __future__ import annotations

import datetime as dt

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from reimburseme.core.database import Base
from .enums import BatchStatus, PlanType, ReceiptStatus


class User(Base):
    """User account representing an individual using the service."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False)
    # Stripe customer reference for checkout sessions (e.g., "cus_...")
    stripe_customer_id = Column(String, unique=True, nullable=True)
    name = Column(String, nullable=False)
    plan = Column(Enum(PlanType), nullable=False, default=PlanType.FREE)
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow, nullable=False)

    receipts = relationship("Receipt", back_populates="owner")
    batch_sessions = relationship("BatchSession", back_populates="owner")


class Receipt(Base):
    """Single-file receipt and its extraction result."""

    __tablename__ = "receipts"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(Enum(ReceiptStatus), default=ReceiptStatus.PENDING, nullable=False)
    merchant_name = Column(String, nullable=False, default="Processing...")
    amount = Column(Float, nullable=False, default=0.0)
    currency = Column(String(8), nullable=False, default="USD")
    category = Column(String, nullable=False, default="Other")
    receipt_date = Column(Date, nullable=False, default=dt.date.today)
    confidence = Column(Float, nullable=True)
    needs_review = Column(Boolean, nullable=False, default=False)
    is_duplicate = Column(Boolean, nullable=False, default=False)
    file_url = Column(String, nullable=False)
    file_name = Column(String, nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow, nullable=False)

    owner = relationship("User", back_populates="receipts")


class BatchSession(Base):
    """Multi-file OCR job.

    ``files`` is an ordered list of file records (see
    ``reimburseme.models.schemas.FileRecord``); a record's position is the
    join key used by worker tasks.  ``status`` is derived from the file
    statuses and is only rewritten by the session aggregator.
    """

    __tablename__ = "batch_sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(36), unique=True, nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(Enum(BatchStatus), default=BatchStatus.PROCESSING, nullable=False)
    files = Column(JSON, nullable=False, default=list)
    payment_id = Column(String, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow, nullable=False)

    owner = relationship("User", back_populates="batch_sessions")


class SubscriptionUsage(Base):
    """Monthly usage counter for a metered feature."""

    __tablename__ = "subscription_usage"
    __table_args__ = (UniqueConstraint("user_id", "feature", "reset_day", name="uq_usage_user_feature_day"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    feature = Column(String, nullable=False)
    # First day of the month the counter applies to
    reset_day = Column(Date, nullable=False)
    usage_count = Column(Integer, nullable=False, default=0)
