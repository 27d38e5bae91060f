"""Visit repository for database operations."""
from datetime import datetime
from typing import Optional

from sqlalchemy import select, func, and_

from database.models import Visit
from database.repositories.base import BaseRepository


class VisitRepository(BaseRepository[Visit]):
    """Repository for Visit model operations."""

    model_class = Visit

    async def create(
        self,
        affiliate_id: Optional[int],
        affiliate_code: Optional[str] = None,
        page_url: Optional[str] = None,
        referrer: Optional[str] = None,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        country: Optional[str] = None,
        device_type: Optional[str] = None,
        browser: Optional[str] = None,
    ) -> Visit:
        """Create new visit record."""
        visit = Visit(
            affiliate_id=affiliate_id,
            affiliate_code=affiliate_code,
            page_url=page_url,
            referrer=referrer,
            user_agent=user_agent,
            ip_address=ip_address,
            country=country,
            device_type=device_type,
            browser=browser,
            converted=False,
        )
        self.session.add(visit)
        await self.session.flush()
        return visit

    async def get_latest_unconverted(self, affiliate_id: int) -> Optional[Visit]:
        """Most recent visit for the affiliate that has not converted yet."""
        result = await self.session.execute(
            select(Visit)
            .where(
                and_(
                    Visit.affiliate_id == affiliate_id,
                    Visit.converted.is_(False)
                )
            )
            .order_by(Visit.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def count_by_affiliate(self, affiliate_id: int, since: Optional[datetime] = None) -> int:
        """Count visits for an affiliate, optionally since a moment."""
        query = select(func.count(Visit.id)).where(Visit.affiliate_id == affiliate_id)
        if since is not None:
            query = query.where(Visit.created_at >= since)
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def count_by_affiliates(self, since: Optional[datetime] = None) -> dict[int, int]:
        """Visit counts grouped by affiliate."""
        query = (
            select(Visit.affiliate_id, func.count(Visit.id))
            .where(Visit.affiliate_id.is_not(None))
            .group_by(Visit.affiliate_id)
        )
        if since is not None:
            query = query.where(Visit.created_at >= since)
        result = await self.session.execute(query)
        return {affiliate_id: count for affiliate_id, count in result}
