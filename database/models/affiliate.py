"""Affiliate model - a partner who earns commission on referred orders."""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, CheckConstraint, Integer, Numeric, String, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from database.base import Base, BigIntPK, utcnow

if TYPE_CHECKING:
    from database.models.referral import Referral
    from database.models.visit import Visit
    from database.models.withdrawal import Withdrawal


class AffiliateStatus(str, Enum):
    """Affiliate status enum."""
    PENDING = "pending"  # Registered, waiting for admin approval
    ACTIVE = "active"  # Code resolves, earns commission
    SUSPENDED = "suspended"
    REJECTED = "rejected"


class PayoutMethod(str, Enum):
    """How an affiliate is paid."""
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"
    CRYPTO = "crypto"


class Affiliate(Base):
    """Affiliate account with its commission rate and derived totals."""

    __tablename__ = "affiliates"
    __table_args__ = (
        CheckConstraint("total_earnings >= 0", name="ck_affiliates_earnings_non_negative"),
        CheckConstraint(
            "commission_rate >= 0 AND commission_rate <= 100",
            name="ck_affiliates_commission_rate_range",
        ),
    )

    # Primary key
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    # Identity store reference (account that owns this affiliate profile)
    owner_account_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)

    # Referral code
    affiliate_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AffiliateStatus.PENDING.value,
        server_default=AffiliateStatus.PENDING.value,
        index=True,
        comment="pending/active/suspended/rejected"
    )

    # Applies to referrals attributed from now on; existing referrals keep their snapshot
    commission_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        default=Decimal("10.00"),
        server_default="10.00",
        comment="Commission percentage"
    )

    # Derived totals, maintained by the stats aggregator and withdrawal processor
    total_earnings: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        server_default="0.00",
        comment="Approved/paid commission minus completed withdrawals"
    )
    total_referrals: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_visits: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # Payout
    payout_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payout_method: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PayoutMethod.PAYPAL.value,
        server_default=PayoutMethod.PAYPAL.value
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False
    )

    # Relationships
    referrals: Mapped[list["Referral"]] = relationship(
        "Referral",
        back_populates="affiliate",
        cascade="all, delete-orphan",
        lazy="raise",
    )
    visits: Mapped[list["Visit"]] = relationship(
        "Visit",
        back_populates="affiliate",
        lazy="raise",
    )
    withdrawals: Mapped[list["Withdrawal"]] = relationship(
        "Withdrawal",
        back_populates="affiliate",
        cascade="all, delete-orphan",
        lazy="raise",
    )

    @property
    def is_active(self) -> bool:
        return self.status == AffiliateStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<Affiliate(id={self.id}, code='{self.affiliate_code}', status='{self.status}')>"
