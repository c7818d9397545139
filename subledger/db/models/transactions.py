from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from subledger.db.models.base import Base, UTCDateTime
from subledger.db.models.users import BALANCE_NUMERIC

TRANSACTION_TYPE_PURCHASE = "purchase"
TRANSACTION_TYPE_RENEWAL = "renewal"


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("type IN ('purchase','renewal')", name="type"),
        CheckConstraint("final_price >= 0", name="final_price_non_negative"),
        CheckConstraint("discount_amount >= 0", name="discount_non_negative"),
        CheckConstraint("balance_after >= 0", name="balance_after_non_negative"),
        Index("idx_transactions_user", "user_id"),
        Index("idx_transactions_created", "created_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    idempotency_key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    subscription_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("subscriptions.id"),
        nullable=False,
    )
    plan_id: Mapped[str] = mapped_column(String(64), nullable=False)
    plan_title: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[Decimal] = mapped_column(BALANCE_NUMERIC, nullable=False)
    final_price: Mapped[Decimal] = mapped_column(BALANCE_NUMERIC, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(BALANCE_NUMERIC, nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(BALANCE_NUMERIC, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(BALANCE_NUMERIC, nullable=False)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
