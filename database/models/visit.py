"""Visit model - a hit against a referral link."""
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, Boolean, ForeignKey, String, Text, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from database.base import Base, BigIntPK, utcnow

if TYPE_CHECKING:
    from database.models.affiliate import Affiliate


class Visit(Base):
    """Append-only visit record; only `converted` changes after insert."""

    __tablename__ = "affiliate_visits"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    # NULL when the code did not resolve to an active affiliate
    affiliate_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("affiliates.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    affiliate_code: Mapped[str | None] = mapped_column(String(64), nullable=True, comment="Code as submitted")

    # Context
    page_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    referrer: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    country: Mapped[str | None] = mapped_column(String(64), nullable=True)
    device_type: Mapped[str | None] = mapped_column(String(20), nullable=True, comment="mobile/desktop")
    browser: Mapped[str | None] = mapped_column(String(50), nullable=True)

    converted: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
        index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )

    affiliate: Mapped["Affiliate | None"] = relationship(
        "Affiliate",
        back_populates="visits",
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<Visit(id={self.id}, affiliate={self.affiliate_id}, converted={self.converted})>"
