from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    false,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from subledger.db.models.base import Base, UTCDateTime
from subledger.db.models.users import BALANCE_NUMERIC

SUBSCRIPTION_STATUS_ACTIVE = "active"
SUBSCRIPTION_STATUS_EXPIRED = "expired"


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint("status IN ('active','expired')", name="status"),
        CheckConstraint("duration_days > 0", name="duration_positive"),
        CheckConstraint("renewal_count >= 0", name="renewal_count_non_negative"),
        CheckConstraint("total_paid >= 0", name="total_paid_non_negative"),
        Index("idx_subscriptions_user", "user_id"),
        Index("idx_subscriptions_expires", "expires_at"),
        Index("idx_subscriptions_status", "status"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    plan_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    granted_role_id: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expired_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    original_price: Mapped[Decimal] = mapped_column(BALANCE_NUMERIC, nullable=False)
    paid_price: Mapped[Decimal] = mapped_column(BALANCE_NUMERIC, nullable=False)
    total_paid: Mapped[Decimal] = mapped_column(BALANCE_NUMERIC, nullable=False)
    discount_applied: Mapped[dict[str, object] | None] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=True,
    )

    renewal_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    last_renewed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_renewal_plan_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_renewal_amount: Mapped[Decimal | None] = mapped_column(BALANCE_NUMERIC, nullable=True)

    warning_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=false())
    warning_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
