"""Affiliate ledger HTTP service entry point."""
import asyncio
import logging
from typing import Callable, Optional

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiohttp import web
from sqlalchemy.ext.asyncio import AsyncSession

from database import async_session_maker, init_db, close_db
from server.config import settings
from server.handlers.api import setup_routes
from server.keys import AUTHORIZER, LEADERBOARD_CACHE, NOTIFIER, SESSION_FACTORY
from server.logging_config import setup_logging
from server.middlewares import MIDDLEWARES
from services.authorization import Authorizer, SettingsAuthorizer
from services.leaderboard import LeaderboardCache
from services.notifications import AffiliateNotifier
from services.scheduler import start_scheduler

logger = logging.getLogger(__name__)


def build_app(
    session_factory: Optional[Callable[[], AsyncSession]] = None,
    authorizer: Optional[Authorizer] = None,
    notifier: Optional[AffiliateNotifier] = None,
    leaderboard_cache: Optional[LeaderboardCache] = None,
) -> web.Application:
    """Assemble the aiohttp application with its dependencies."""
    session_factory = session_factory or async_session_maker

    app = web.Application(middlewares=MIDDLEWARES)
    app[SESSION_FACTORY] = session_factory
    app[AUTHORIZER] = authorizer or SettingsAuthorizer(settings.admin_account_ids)
    app[NOTIFIER] = notifier
    app[LEADERBOARD_CACHE] = leaderboard_cache or LeaderboardCache(session_factory)
    setup_routes(app)
    return app


def create_bot() -> Optional[Bot]:
    """Telegram bot used for affiliate notifications, if a token is configured."""
    if not settings.bot_token:
        logger.warning("BOT_TOKEN not set, affiliate notifications are disabled")
        return None
    return Bot(
        token=settings.bot_token,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML)
    )


async def main():
    setup_logging()
    await init_db()

    bot = create_bot()
    cache = LeaderboardCache(async_session_maker)
    app = build_app(notifier=AffiliateNotifier(bot), leaderboard_cache=cache)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, settings.api_host, settings.api_port)
    await site.start()
    logger.info(f"Affiliate ledger listening on {settings.api_host}:{settings.api_port}")

    await cache.refresh()
    scheduler = start_scheduler(cache)

    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)
        await runner.cleanup()
        if bot:
            await bot.session.close()
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
