"""Withdrawal model - affiliate payout request."""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Numeric, String, Text, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from database.base import Base, BigIntPK, utcnow

if TYPE_CHECKING:
    from database.models.affiliate import Affiliate


class WithdrawalStatus(str, Enum):
    """Withdrawal status enum."""
    PENDING = "pending"  # Requested, amount reserved
    PROCESSING = "processing"  # Admin started the payout
    COMPLETED = "completed"  # Paid, earnings decremented
    FAILED = "failed"  # Reservation released


# Statuses that hold a reservation against the available balance
IN_FLIGHT_STATUSES = (WithdrawalStatus.PENDING.value, WithdrawalStatus.PROCESSING.value)


class Withdrawal(Base):
    """Payout request model."""

    __tablename__ = "affiliate_withdrawals"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_affiliate_withdrawals_amount_positive"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    affiliate_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("affiliates.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False, comment="paypal/bank_transfer/crypto")
    payout_destination: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="PayPal email, IBAN or wallet address"
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=WithdrawalStatus.PENDING.value,
        server_default=WithdrawalStatus.PENDING.value,
        index=True,
        comment="pending/processing/completed/failed"
    )
    transaction_ref: Mapped[str | None] = mapped_column(String(255), nullable=True, comment="Set on completion")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True, comment="Admin account ID")

    # Timestamps
    requested_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
    processed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    affiliate: Mapped["Affiliate"] = relationship(
        "Affiliate",
        back_populates="withdrawals",
        lazy="raise",
    )

    def __repr__(self) -> str:
        return (
            f"<Withdrawal(id={self.id}, affiliate={self.affiliate_id}, amount={self.amount}, "
            f"status='{self.status}')>"
        )
