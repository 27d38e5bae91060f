"""Typed aiohttp application keys for shared dependencies."""
from typing import Callable, Optional

from aiohttp import web
from sqlalchemy.ext.asyncio import AsyncSession

from services.authorization import Authorizer
from services.leaderboard import LeaderboardCache
from services.notifications import AffiliateNotifier

SESSION_FACTORY = web.AppKey("session_factory", Callable[[], AsyncSession])
AUTHORIZER = web.AppKey("authorizer", Authorizer)
NOTIFIER = web.AppKey("notifier", Optional[AffiliateNotifier])
LEADERBOARD_CACHE = web.AppKey("leaderboard_cache", LeaderboardCache)
