"""Leaderboard: ranked affiliate snapshots."""
import logging
from dataclasses import dataclass, asdict, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from core.dto import validate_dto, LeaderboardPeriod, LeaderboardMetric, LeaderboardQueryDTO
from database.base import utcnow
from database.repositories import AffiliateRepository, ReferralRepository, VisitRepository
from server.config import settings
from services.commission import to_money
from services.stats import conversion_rate

logger = logging.getLogger(__name__)


PERIOD_DAYS = {
    LeaderboardPeriod.MONTH: 30,
    LeaderboardPeriod.QUARTER: 90,
}


@dataclass
class RankedAffiliate:
    """One leaderboard row. `earnings` is None when redacted."""
    rank: int
    affiliate_id: int
    affiliate_code: str
    referrals: int
    visits: int
    conversion_rate: Decimal
    earnings: Optional[Decimal]

    def redacted(self) -> "RankedAffiliate":
        return replace(self, earnings=None)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["conversion_rate"] = str(self.conversion_rate)
        data["earnings"] = str(self.earnings) if self.earnings is not None else None
        return data


METRIC_KEYS: Dict[LeaderboardMetric, Callable[[RankedAffiliate], Any]] = {
    LeaderboardMetric.EARNINGS: lambda row: row.earnings,
    LeaderboardMetric.REFERRALS: lambda row: row.referrals,
    LeaderboardMetric.CONVERSION: lambda row: row.conversion_rate,
}


def assign_dense_ranks(rows: List[RankedAffiliate], metric: LeaderboardMetric) -> List[RankedAffiliate]:
    """Sort descending by metric and assign dense ranks (ties share a rank, no gaps)."""
    key = METRIC_KEYS[metric]
    ordered = sorted(rows, key=lambda row: (-key(row), row.affiliate_id))

    rank = 0
    previous = None
    for row in ordered:
        value = key(row)
        if value != previous:
            rank += 1
            previous = value
        row.rank = rank
    return ordered


class LeaderboardService:
    """Read-only ranking of active affiliates."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.affiliate_repo = AffiliateRepository(session)
        self.referral_repo = ReferralRepository(session)
        self.visit_repo = VisitRepository(session)

    async def rank(
        self,
        period: LeaderboardPeriod = LeaderboardPeriod.ALL,
        limit: int = 10,
        metric: LeaderboardMetric = LeaderboardMetric.EARNINGS,
        reveal_earnings: bool = False,
        now: Optional[datetime] = None,
    ) -> List[RankedAffiliate]:
        """
        Rank active affiliates by `metric` over `period`.

        Args:
            period: all (stored totals), month (30 days) or quarter (90 days)
            limit: Number of rows to return
            metric: earnings, referrals or conversion
            reveal_earnings: Include earnings figures; redacted otherwise
            now: Reference time for windowed periods

        Returns:
            Rows in rank order
        """
        query = validate_dto(
            LeaderboardQueryDTO,
            period=period,
            limit=limit,
            metric=metric,
            reveal_earnings=reveal_earnings,
        )

        affiliates = await self.affiliate_repo.get_active()
        if query.period == LeaderboardPeriod.ALL:
            visits = await self.visit_repo.count_by_affiliates()
            rows = [
                RankedAffiliate(
                    rank=0,
                    affiliate_id=a.id,
                    affiliate_code=a.affiliate_code,
                    referrals=a.total_referrals,
                    visits=visits.get(a.id, 0),
                    conversion_rate=conversion_rate(a.total_referrals, visits.get(a.id, 0)),
                    earnings=to_money(a.total_earnings),
                )
                for a in affiliates
            ]
        else:
            since = (now or utcnow()) - timedelta(days=PERIOD_DAYS[query.period])
            totals = await self.referral_repo.get_totals_by_affiliates(since=since)
            visits = await self.visit_repo.count_by_affiliates(since=since)
            rows = []
            for a in affiliates:
                t = totals.get(a.id)
                referrals = t.count if t else 0
                visit_count = visits.get(a.id, 0)
                rows.append(RankedAffiliate(
                    rank=0,
                    affiliate_id=a.id,
                    affiliate_code=a.affiliate_code,
                    referrals=referrals,
                    visits=visit_count,
                    conversion_rate=conversion_rate(referrals, visit_count),
                    earnings=to_money(t.earned) if t else Decimal("0.00"),
                ))

        ranked = assign_dense_ranks(rows, query.metric)[:query.limit]
        if not query.reveal_earnings:
            ranked = [row.redacted() for row in ranked]
        return ranked


@dataclass
class LeaderboardSnapshot:
    """Point-in-time ranking held by the cache (earnings unredacted)."""
    period: LeaderboardPeriod
    metric: LeaderboardMetric
    entries: List[RankedAffiliate]
    generated_at: datetime


@dataclass
class LeaderboardView:
    """What callers get back: rows plus how old they are."""
    period: LeaderboardPeriod
    metric: LeaderboardMetric
    entries: List[RankedAffiliate]
    generated_at: datetime
    age_seconds: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period.value,
            "metric": self.metric.value,
            "generated_at": self.generated_at.isoformat(),
            "age_seconds": round(self.age_seconds, 3),
            "entries": [row.to_dict() for row in self.entries],
        }


class LeaderboardCache:
    """
    Periodically refreshed leaderboard snapshots.

    One snapshot per (period, metric), ranked up to `max_limit` rows.
    Reads slice and redact a snapshot; a missing snapshot is built on demand.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession], max_limit: Optional[int] = None):
        self.session_factory = session_factory
        self.max_limit = max_limit or settings.leaderboard_max_limit
        self._snapshots: Dict[Tuple[LeaderboardPeriod, LeaderboardMetric], LeaderboardSnapshot] = {}

    async def refresh(
        self,
        period: Optional[LeaderboardPeriod] = None,
        metric: Optional[LeaderboardMetric] = None,
    ) -> int:
        """Rebuild snapshots (all of them, or one). Returns number rebuilt."""
        periods = [period] if period else list(LeaderboardPeriod)
        metrics = [metric] if metric else list(LeaderboardMetric)

        async with self.session_factory() as session:
            service = LeaderboardService(session)
            for p in periods:
                for m in metrics:
                    entries = await service.rank(p, self.max_limit, m, reveal_earnings=True)
                    self._snapshots[(p, m)] = LeaderboardSnapshot(
                        period=p,
                        metric=m,
                        entries=entries,
                        generated_at=utcnow(),
                    )

        rebuilt = len(periods) * len(metrics)
        logger.debug(f"Refreshed {rebuilt} leaderboard snapshot(s)")
        return rebuilt

    async def get(
        self,
        period: LeaderboardPeriod = LeaderboardPeriod.ALL,
        limit: int = 10,
        metric: LeaderboardMetric = LeaderboardMetric.EARNINGS,
        reveal_earnings: bool = False,
        now: Optional[datetime] = None,
    ) -> LeaderboardView:
        """Serve a ranking from the snapshot, with its age."""
        query = validate_dto(
            LeaderboardQueryDTO,
            period=period,
            limit=limit,
            metric=metric,
            reveal_earnings=reveal_earnings,
        )
        key = (query.period, query.metric)
        if key not in self._snapshots:
            await self.refresh(query.period, query.metric)

        snapshot = self._snapshots[key]
        entries = snapshot.entries[:min(query.limit, self.max_limit)]
        if not query.reveal_earnings:
            entries = [row.redacted() for row in entries]

        age = ((now or utcnow()) - snapshot.generated_at).total_seconds()
        return LeaderboardView(
            period=snapshot.period,
            metric=snapshot.metric,
            entries=entries,
            generated_at=snapshot.generated_at,
            age_seconds=max(age, 0.0),
        )
