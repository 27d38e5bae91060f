"""Referral model - attribution of an order to an affiliate."""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, String, Numeric, ForeignKey, Text, TIMESTAMP, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from database.base import Base, BigIntPK, utcnow

if TYPE_CHECKING:
    from database.models.affiliate import Affiliate


class ReferralStatus(str, Enum):
    """Referral status enum."""
    PENDING = "pending"  # Attributed, waiting for review
    APPROVED = "approved"  # Commission counts towards earnings
    REJECTED = "rejected"  # Terminal
    PAID = "paid"  # Terminal, commission settled


class ConversionType(str, Enum):
    """What the referred customer did."""
    SIGNUP = "signup"
    PURCHASE = "purchase"
    SUBSCRIPTION = "subscription"


# Statuses whose commission counts as earned
EARNING_STATUSES = (ReferralStatus.APPROVED.value, ReferralStatus.PAID.value)


class Referral(Base):
    """Referral tracking model with a frozen commission snapshot."""

    __tablename__ = "affiliate_referrals"
    __table_args__ = (
        UniqueConstraint("affiliate_id", "order_id", name="uq_affiliate_referrals_affiliate_order"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    affiliate_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("affiliates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Affiliate who referred"
    )
    order_id: Mapped[str] = mapped_column(String(255), nullable=False, comment="External order identifier")
    referred_account_id: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Account of the referred customer, if known"
    )

    # Commission snapshot, immutable after insert
    order_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        comment="Affiliate rate at attribution time"
    )
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ReferralStatus.PENDING.value,
        server_default=ReferralStatus.PENDING.value,
        index=True,
        comment="pending/approved/rejected/paid"
    )
    conversion_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ConversionType.PURCHASE.value,
        server_default=ConversionType.PURCHASE.value
    )

    # Review
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True, comment="Admin account ID")
    reviewed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False
    )

    affiliate: Mapped["Affiliate"] = relationship(
        "Affiliate",
        back_populates="referrals",
        lazy="raise",
    )

    def __repr__(self) -> str:
        return (
            f"<Referral(id={self.id}, affiliate={self.affiliate_id}, order='{self.order_id}', "
            f"status='{self.status}')>"
        )
