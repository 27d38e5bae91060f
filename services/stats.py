"""Affiliate totals: in-transaction recompute and the stats read model."""
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import update, select, func
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import AffiliateNotFoundError
from database.base import utcnow
from database.models import Affiliate, Visit, WithdrawalStatus, IN_FLIGHT_STATUSES
from database.repositories import (
    AffiliateRepository,
    ReferralRepository,
    VisitRepository,
    WithdrawalRepository,
)
from services.authorization import Actor, Authorizer
from services.commission import to_money

logger = logging.getLogger(__name__)


class StatsAggregator:
    """
    Recomputes an affiliate's derived totals from the source rows.

    Always a full recompute scoped to one affiliate, never an incremental
    counter. Runs inside the caller's transaction and flushes but does not
    commit, so the totals land atomically with the write that triggered them.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.affiliate_repo = AffiliateRepository(session)
        self.referral_repo = ReferralRepository(session)
        self.visit_repo = VisitRepository(session)
        self.withdrawal_repo = WithdrawalRepository(session)

    async def recompute(self, affiliate_id: int) -> Affiliate:
        """
        Recalculate total_referrals, total_earnings and total_visits.

        Takes the affiliate row lock (a no-op if the caller already holds it).

        Raises:
            AffiliateNotFoundError: If the affiliate does not exist
        """
        affiliate = await self.affiliate_repo.get_for_update(affiliate_id)
        if not affiliate:
            raise AffiliateNotFoundError(affiliate_id)

        totals = await self.referral_repo.get_totals(affiliate_id)
        withdrawn = await self.withdrawal_repo.sum_amount(
            affiliate_id, [WithdrawalStatus.COMPLETED.value]
        )
        visits = await self.visit_repo.count_by_affiliate(affiliate_id)

        affiliate.total_referrals = totals.count
        affiliate.total_earnings = to_money(totals.earned - withdrawn)
        affiliate.total_visits = visits
        await self.session.flush()

        logger.debug(
            f"Recomputed stats for affiliate {affiliate_id}: "
            f"earnings={affiliate.total_earnings}, referrals={totals.count}, visits={visits}"
        )
        return affiliate

    async def refresh_visit_totals(self) -> int:
        """
        Bring every drifted `total_visits` up to date in one statement.

        Visit recording never touches the affiliate row, so the stored count
        only moves here and in `recompute`. Returns the number of rows updated.
        """
        visit_count = (
            select(func.count(Visit.id))
            .where(Visit.affiliate_id == Affiliate.id)
            .correlate(Affiliate)
            .scalar_subquery()
        )
        result = await self.session.execute(
            update(Affiliate)
            .where(Affiliate.total_visits != visit_count)
            .values(total_visits=visit_count)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


@dataclass
class AffiliateStats:
    """Stats view for an affiliate dashboard."""
    affiliate_id: int
    affiliate_code: str
    status: str
    commission_rate: Decimal
    total_earnings: Decimal
    lifetime_earnings: Decimal
    withdrawn_total: Decimal
    reserved_balance: Decimal
    available_balance: Decimal
    pending_commissions: Decimal
    total_referrals: int
    referrals_by_status: Dict[str, int]
    total_visits: int
    conversion_rate: Decimal
    this_month_earnings: Decimal
    this_month_referrals: int
    this_month_visits: int
    period_start: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Decimal):
                data[key] = str(value)
            elif isinstance(value, datetime):
                data[key] = value.isoformat()
        return data


def conversion_rate(referrals: int, visits: int) -> Decimal:
    """Referrals per visit as a percentage, 2 dp."""
    if visits <= 0:
        return Decimal("0.00")
    return to_money(Decimal(referrals) * 100 / Decimal(visits))


def month_start(now: Optional[datetime] = None) -> datetime:
    now = now or utcnow()
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class AffiliateStatsService:
    """Read-only stats for the affiliate (owner) or an admin."""

    def __init__(self, session: AsyncSession, authorizer: Authorizer):
        self.session = session
        self.authorizer = authorizer
        self.affiliate_repo = AffiliateRepository(session)
        self.referral_repo = ReferralRepository(session)
        self.visit_repo = VisitRepository(session)
        self.withdrawal_repo = WithdrawalRepository(session)

    async def get_affiliate_stats(
        self,
        actor: Actor,
        affiliate_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> AffiliateStats:
        """
        Get totals, balances, per-status referral counts, conversion rate
        and this month's breakdown.

        Args:
            actor: Caller
            affiliate_id: Affiliate to report on; defaults to the caller's own
            now: Reference time for the monthly window

        Raises:
            AffiliateNotFoundError: No such affiliate (or caller has none)
            PermissionDeniedError: Caller is neither admin nor owner
        """
        if affiliate_id is None:
            affiliate = await self.affiliate_repo.get_by_owner(actor.account_id)
            if not affiliate:
                raise AffiliateNotFoundError()
        else:
            affiliate = await self.affiliate_repo.get_by_id(affiliate_id)
            if not affiliate:
                raise AffiliateNotFoundError(affiliate_id)

        self.authorizer.require(
            self.authorizer.can_view_affiliate(actor, affiliate),
            "view affiliate stats"
        )

        since = month_start(now)
        lifetime = await self.referral_repo.get_totals(affiliate.id)
        this_month = await self.referral_repo.get_totals(affiliate.id, since=since)
        month_visits = await self.visit_repo.count_by_affiliate(affiliate.id, since=since)
        withdrawn = await self.withdrawal_repo.sum_amount(
            affiliate.id, [WithdrawalStatus.COMPLETED.value]
        )
        reserved = await self.withdrawal_repo.sum_amount(affiliate.id, IN_FLIGHT_STATUSES)
        by_status = await self.referral_repo.get_status_counts(affiliate.id)
        # Live count; the stored total lags until the next recompute or sync
        visits = await self.visit_repo.count_by_affiliate(affiliate.id)

        balance = to_money(affiliate.total_earnings)
        return AffiliateStats(
            affiliate_id=affiliate.id,
            affiliate_code=affiliate.affiliate_code,
            status=affiliate.status,
            commission_rate=to_money(affiliate.commission_rate),
            total_earnings=balance,
            lifetime_earnings=to_money(lifetime.earned),
            withdrawn_total=to_money(withdrawn),
            reserved_balance=to_money(reserved),
            available_balance=max(to_money(balance - reserved), Decimal("0.00")),
            pending_commissions=to_money(lifetime.pending),
            total_referrals=affiliate.total_referrals,
            referrals_by_status=by_status,
            total_visits=visits,
            conversion_rate=conversion_rate(affiliate.total_referrals, visits),
            this_month_earnings=to_money(this_month.earned),
            this_month_referrals=this_month.count,
            this_month_visits=month_visits,
            period_start=since,
        )
