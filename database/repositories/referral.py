"""Referral repository for database operations."""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict

from sqlalchemy import select, func, and_, case

from database.models import Referral, ReferralStatus, ConversionType, EARNING_STATUSES
from database.repositories.base import BaseRepository


@dataclass
class ReferralTotals:
    """Aggregates over an affiliate's referrals."""
    count: int
    earned: Decimal
    pending: Decimal


class ReferralRepository(BaseRepository[Referral]):
    """Repository for Referral model operations."""

    model_class = Referral

    async def create(
        self,
        affiliate_id: int,
        order_id: str,
        order_amount: Decimal,
        commission_rate: Decimal,
        commission_amount: Decimal,
        conversion_type: ConversionType = ConversionType.PURCHASE,
        referred_account_id: Optional[int] = None,
    ) -> Referral:
        """Create new pending referral record."""
        referral = Referral(
            affiliate_id=affiliate_id,
            order_id=order_id,
            order_amount=order_amount,
            commission_rate=commission_rate,
            commission_amount=commission_amount,
            conversion_type=conversion_type.value,
            referred_account_id=referred_account_id,
            status=ReferralStatus.PENDING.value,
        )
        self.session.add(referral)
        await self.session.flush()
        return referral

    async def get_by_affiliate_and_order(self, affiliate_id: int, order_id: str) -> Optional[Referral]:
        """Get the referral for an (affiliate, order) pair."""
        result = await self.session.execute(
            select(Referral).where(
                and_(
                    Referral.affiliate_id == affiliate_id,
                    Referral.order_id == order_id
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_all_by_affiliate(
        self,
        affiliate_id: int,
        status: Optional[ReferralStatus] = None
    ) -> List[Referral]:
        """Get all referrals of an affiliate, optionally filtered by status."""
        query = select(Referral).where(Referral.affiliate_id == affiliate_id)

        if status:
            query = query.where(Referral.status == status.value)

        query = query.order_by(Referral.created_at.desc(), Referral.id.desc())

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_totals(self, affiliate_id: int, since: Optional[datetime] = None) -> ReferralTotals:
        """Count referrals and sum earned/pending commission for an affiliate."""
        query = select(
            func.count(Referral.id),
            func.coalesce(
                func.sum(
                    case(
                        (Referral.status.in_(EARNING_STATUSES), Referral.commission_amount),
                        else_=0
                    )
                ),
                0
            ),
            func.coalesce(
                func.sum(
                    case(
                        (Referral.status == ReferralStatus.PENDING.value, Referral.commission_amount),
                        else_=0
                    )
                ),
                0
            ),
        ).where(Referral.affiliate_id == affiliate_id)

        if since is not None:
            query = query.where(Referral.created_at >= since)

        result = await self.session.execute(query)
        count, earned, pending = result.one()
        return ReferralTotals(
            count=count or 0,
            earned=Decimal(str(earned or 0)),
            pending=Decimal(str(pending or 0)),
        )

    async def get_totals_by_affiliates(self, since: Optional[datetime] = None) -> Dict[int, ReferralTotals]:
        """Per-affiliate referral aggregates, optionally limited to a window."""
        query = select(
            Referral.affiliate_id,
            func.count(Referral.id),
            func.coalesce(
                func.sum(
                    case(
                        (Referral.status.in_(EARNING_STATUSES), Referral.commission_amount),
                        else_=0
                    )
                ),
                0
            ),
            func.coalesce(
                func.sum(
                    case(
                        (Referral.status == ReferralStatus.PENDING.value, Referral.commission_amount),
                        else_=0
                    )
                ),
                0
            ),
        ).group_by(Referral.affiliate_id)

        if since is not None:
            query = query.where(Referral.created_at >= since)

        result = await self.session.execute(query)
        return {
            affiliate_id: ReferralTotals(
                count=count or 0,
                earned=Decimal(str(earned or 0)),
                pending=Decimal(str(pending or 0)),
            )
            for affiliate_id, count, earned, pending in result
        }

    async def get_status_counts(self, affiliate_id: int) -> Dict[str, int]:
        """Count referrals by status."""
        result = await self.session.execute(
            select(
                Referral.status,
                func.count(Referral.id).label('count')
            ).where(
                Referral.affiliate_id == affiliate_id
            ).group_by(Referral.status)
        )

        stats = {status.value: 0 for status in ReferralStatus}
        for status, count in result:
            stats[status] = count
        return stats
