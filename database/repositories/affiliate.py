"""Affiliate repository for database operations."""
from decimal import Decimal
from typing import Optional, List
import secrets
import string

from sqlalchemy import select

from database.models import Affiliate, AffiliateStatus, PayoutMethod
from database.repositories.base import BaseRepository


def normalize_code(code: str) -> str:
    """Referral codes are case-insensitive and stored upper-case."""
    return code.strip().upper()


class AffiliateRepository(BaseRepository[Affiliate]):
    """Repository for Affiliate model operations."""

    model_class = Affiliate

    CODE_LENGTH = 8

    async def get_by_code(self, code: str, active_only: bool = False) -> Optional[Affiliate]:
        """Get affiliate by referral code."""
        query = select(Affiliate).where(Affiliate.affiliate_code == normalize_code(code))
        if active_only:
            query = query.where(Affiliate.status == AffiliateStatus.ACTIVE.value)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_owner(self, owner_account_id: int) -> Optional[Affiliate]:
        """Get affiliate profile owned by an account."""
        result = await self.session.execute(
            select(Affiliate).where(Affiliate.owner_account_id == owner_account_id)
        )
        return result.scalar_one_or_none()

    async def get_active(self) -> List[Affiliate]:
        """Get all active affiliates."""
        result = await self.session.execute(
            select(Affiliate)
            .where(Affiliate.status == AffiliateStatus.ACTIVE.value)
            .order_by(Affiliate.id)
        )
        return list(result.scalars().all())

    async def create(
        self,
        owner_account_id: int,
        email: str,
        commission_rate: Decimal,
        payout_method: PayoutMethod = PayoutMethod.PAYPAL,
        payout_email: Optional[str] = None,
        affiliate_code: Optional[str] = None,
        status: AffiliateStatus = AffiliateStatus.PENDING,
    ) -> Affiliate:
        """Create new affiliate with a unique referral code."""
        if affiliate_code:
            affiliate_code = normalize_code(affiliate_code)
        else:
            affiliate_code = self._generate_code()
            while await self.get_by_code(affiliate_code):
                affiliate_code = self._generate_code()

        affiliate = Affiliate(
            owner_account_id=owner_account_id,
            email=email,
            affiliate_code=affiliate_code,
            status=status.value,
            commission_rate=commission_rate,
            total_earnings=Decimal("0.00"),
            total_referrals=0,
            total_visits=0,
            payout_email=payout_email,
            payout_method=payout_method.value,
        )
        self.session.add(affiliate)
        await self.session.flush()
        return affiliate

    def _generate_code(self, length: int = CODE_LENGTH) -> str:
        """Generate random referral code."""
        alphabet = string.ascii_uppercase + string.digits
        return ''.join(secrets.choice(alphabet) for _ in range(length))
