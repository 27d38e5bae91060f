"""Caller identity for aiohttp: Telegram WebApp initData and the internal API key."""
import hashlib
import hmac
import json
import logging
from typing import Callable, Optional
from urllib.parse import parse_qsl

from aiohttp import web

from server.config import settings
from services.authorization import Actor

logger = logging.getLogger(__name__)

INIT_DATA_HEADER = 'X-Telegram-Init-Data'
DEV_ACCOUNT_HEADER = 'X-Account-Id'
API_KEY_HEADER = 'X-Api-Key'


def verify_telegram_webapp_data(init_data: str, bot_token: str) -> dict | None:
    """Verify Telegram WebApp initData signature.

    Args:
        init_data: Raw initData string from Telegram WebApp
        bot_token: Bot token for HMAC verification

    Returns:
        dict: Parsed user data if valid, None otherwise
    """
    try:
        parsed_data = dict(parse_qsl(init_data))

        received_hash = parsed_data.pop('hash', None)
        if not received_hash:
            logger.warning("No hash in initData")
            return None

        data_check_string = '\n'.join(f"{k}={v}" for k, v in sorted(parsed_data.items()))

        secret_key = hmac.new(
            key=b"WebAppData",
            msg=bot_token.encode(),
            digestmod=hashlib.sha256
        ).digest()
        calculated_hash = hmac.new(
            key=secret_key,
            msg=data_check_string.encode(),
            digestmod=hashlib.sha256
        ).hexdigest()

        if not hmac.compare_digest(calculated_hash, received_hash):
            logger.warning("Invalid initData hash")
            return None

        user_data = parsed_data.get('user')
        if not user_data:
            logger.warning("No user data in initData")
            return None
        return json.loads(user_data)

    except (ValueError, TypeError) as e:
        logger.error(f"Error verifying initData: {e}", exc_info=True)
        return None


def _actor_from_dev_header(request: web.Request) -> Optional[Actor]:
    raw = request.headers.get(DEV_ACCOUNT_HEADER)
    if not raw:
        return None
    try:
        return Actor(account_id=int(raw))
    except ValueError:
        return None


@web.middleware
async def actor_middleware(request: web.Request, handler: Callable):
    """Resolve the caller into `request['actor']` (None for anonymous callers).

    A present but invalid initData is rejected with 401; routes that need an
    identity check `request['actor']` themselves.
    """
    request['actor'] = None
    init_data = request.headers.get(INIT_DATA_HEADER) or request.query.get('_auth')

    if init_data:
        if not settings.bot_token:
            logger.error("initData received but BOT_TOKEN is not configured")
            return web.json_response({"error": "Authentication is not configured"}, status=503)

        user = verify_telegram_webapp_data(init_data, settings.bot_token)
        if not user or not user.get('id'):
            logger.warning(f"Invalid initData for {request.path}")
            return web.json_response({"error": "Invalid authentication data"}, status=401)

        request['actor'] = Actor(account_id=int(user['id']), username=user.get('username'))
    elif not settings.webapp_auth_required:
        # Local development without Telegram
        request['actor'] = _actor_from_dev_header(request)

    return await handler(request)


@web.middleware
async def internal_api_key_middleware(request: web.Request, handler: Callable):
    """Protect /api/internal/* (order backend) with a shared API key."""
    if not request.path.startswith('/api/internal/'):
        return await handler(request)

    if not settings.internal_api_key:
        logger.error("INTERNAL_API_KEY is not configured, rejecting internal call")
        return web.json_response({"error": "Internal API is disabled"}, status=503)

    provided = request.headers.get(API_KEY_HEADER, '')
    if not hmac.compare_digest(provided.encode(), settings.internal_api_key.encode()):
        logger.warning(f"Internal API access with bad key: {request.path} from {request.remote}")
        return web.json_response({"error": "Invalid API key"}, status=401)

    return await handler(request)
