import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, Text, Index, CheckConstraint, Uuid
from sqlalchemy.sql import func
from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"
    # uid from the identity token
    id = Column(String(128), primary_key=True)

    plan = Column(String(16), nullable=False, default="free")
    credits_balance = Column(Integer, nullable=False, default=0)
    monthly_credits_allowance = Column(Integer, nullable=False, default=0)
    subscription_status = Column(String(32))
    current_period_end = Column(DateTime(timezone=True))
    last_granted_period_end = Column(DateTime(timezone=True))
    daily_credits_used = Column(Integer, nullable=False, default=0)
    last_daily_reset_date = Column(String(10))  # YYYY-MM-DD, UTC

    # Set together, once
    tron_deposit_address = Column(String(64), unique=True)
    tron_deposit_priv_enc = Column(Text)
    tron_deposit_created_at = Column(DateTime(timezone=True))
    tron_last_checked_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("credits_balance >= 0", name="ck_users_credits_balance_non_negative"),
        CheckConstraint("daily_credits_used >= 0", name="ck_users_daily_credits_used_non_negative"),
    )


class Payment(Base):
    """One row per on-chain transaction ever settled. Existence means already processed."""
    __tablename__ = "payments"

    # "{chain}_{txid}", see services.settlement.payment_identity
    id = Column(String(160), primary_key=True)
    user_id = Column(String(128), ForeignKey("users.id"), nullable=False, index=True)
    chain = Column(String(16), nullable=False)
    token = Column(String(16), nullable=False, default="USDT")
    amount_usdt = Column(String(32), nullable=False)
    amount_base_units = Column(String(80), nullable=False)
    to_address = Column(String(64), nullable=False)
    from_address = Column(String(64))
    txid = Column(String(128), nullable=False)
    block_number = Column(Integer)
    status = Column(String(16), nullable=False, default="confirmed")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_payments_chain_created", "chain", "created_at"),
    )


class CreditLedgerEntry(Base):
    """Append-only audit trail of balance mutations; never read for balance computation."""
    __tablename__ = "credit_ledger"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(128), ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(16), nullable=False)  # grant | spend
    amount = Column(Integer, nullable=False)
    reason = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_credit_ledger_amount_positive"),
    )
