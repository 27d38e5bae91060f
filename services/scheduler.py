"""Background jobs."""
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from server.config import settings
from services.leaderboard import LeaderboardCache
from services.stats import StatsAggregator

logger = logging.getLogger(__name__)


async def refresh_leaderboard(cache: LeaderboardCache):
    """Background task to rebuild leaderboard snapshots."""
    try:
        await cache.refresh()
    except Exception as e:
        logger.error(f"Error refreshing leaderboard: {e}", exc_info=True)


async def sync_visit_totals(session_factory):
    """Background task to copy live visit counts into `Affiliate.total_visits`."""
    try:
        async with session_factory() as session:
            updated = await StatsAggregator(session).refresh_visit_totals()
            await session.commit()
    except Exception as e:
        logger.error(f"Error syncing visit totals: {e}", exc_info=True)
        return

    if updated:
        logger.info(f"Synced visit totals for {updated} affiliate(s)")


def start_scheduler(cache: LeaderboardCache, minutes: Optional[int] = None) -> AsyncIOScheduler:
    """Start the job scheduler. Must be called from inside the running event loop."""
    minutes = minutes or settings.leaderboard_refresh_minutes
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        refresh_leaderboard,
        'interval',
        minutes=minutes,
        args=[cache],
        id='leaderboard_refresh',
        replace_existing=True
    )
    scheduler.add_job(
        sync_visit_totals,
        'interval',
        minutes=minutes,
        args=[cache.session_factory],
        id='visit_totals_sync',
        replace_existing=True
    )
    scheduler.start()
    logger.info(f"Leaderboard refresh and visit-total sync scheduled every {minutes} min")
    return scheduler
