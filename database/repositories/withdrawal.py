"""Withdrawal repository for database operations."""
from decimal import Decimal
from typing import Optional, List, Sequence

from sqlalchemy import select, func, and_

from database.models import Withdrawal, WithdrawalStatus, PayoutMethod
from database.repositories.base import BaseRepository


class WithdrawalRepository(BaseRepository[Withdrawal]):
    """Repository for Withdrawal model operations."""

    model_class = Withdrawal

    async def create(
        self,
        affiliate_id: int,
        amount: Decimal,
        method: PayoutMethod,
        payout_destination: str,
    ) -> Withdrawal:
        """Create new pending withdrawal."""
        withdrawal = Withdrawal(
            affiliate_id=affiliate_id,
            amount=amount,
            method=method.value,
            payout_destination=payout_destination,
            status=WithdrawalStatus.PENDING.value,
        )
        self.session.add(withdrawal)
        await self.session.flush()
        return withdrawal

    async def sum_amount(self, affiliate_id: int, statuses: Sequence[str]) -> Decimal:
        """Sum withdrawal amounts of an affiliate in the given statuses."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(Withdrawal.amount), 0)).where(
                and_(
                    Withdrawal.affiliate_id == affiliate_id,
                    Withdrawal.status.in_(list(statuses))
                )
            )
        )
        return Decimal(str(result.scalar() or 0))

    async def get_filtered(
        self,
        affiliate_id: Optional[int] = None,
        status: Optional[WithdrawalStatus] = None,
        limit: Optional[int] = None,
    ) -> List[Withdrawal]:
        """Withdrawals newest first, optionally by affiliate and/or status."""
        query = select(Withdrawal)
        if affiliate_id is not None:
            query = query.where(Withdrawal.affiliate_id == affiliate_id)
        if status is not None:
            query = query.where(Withdrawal.status == status.value)
        query = query.order_by(Withdrawal.requested_at.desc(), Withdrawal.id.desc())
        if limit:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())
