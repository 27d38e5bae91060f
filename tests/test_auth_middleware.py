"""Tests for caller identity, internal API key and error middlewares."""
from decimal import Decimal
from unittest.mock import patch

from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase

from core.exceptions import InsufficientBalanceError, PermissionDeniedError
from server.config import settings
from server.middlewares import MIDDLEWARES
from server.middlewares.auth import verify_telegram_webapp_data


class TestCallerIdentity(AioHTTPTestCase):
    """Test WebApp identity resolution and the internal key guard."""

    async def get_application(self):
        app = web.Application(middlewares=MIDDLEWARES)

        async def whoami(request):
            actor = request['actor']
            return web.json_response({"account_id": actor.account_id if actor else None})

        async def internal(request):
            return web.json_response({"status": "internal"})

        async def denied(request):
            raise PermissionDeniedError()

        async def broke(request):
            raise InsufficientBalanceError(available=Decimal("5.00"), requested=Decimal("10.00"))

        async def crashed(request):
            raise RuntimeError("boom")

        app.router.add_get('/api/whoami', whoami)
        app.router.add_get('/api/internal/ping', internal)
        app.router.add_get('/api/denied', denied)
        app.router.add_get('/api/broke', broke)
        app.router.add_get('/api/crashed', crashed)
        return app

    async def test_anonymous_caller(self):
        resp = await self.client.get('/api/whoami')
        assert resp.status == 200
        assert (await resp.json())["account_id"] is None

    async def test_valid_init_data_sets_actor(self):
        with patch('server.middlewares.auth.verify_telegram_webapp_data') as mock_verify:
            mock_verify.return_value = {'id': 123, 'username': 'partner'}
            resp = await self.client.get('/api/whoami', headers={'X-Telegram-Init-Data': 'signed'})

        assert resp.status == 200
        assert (await resp.json())["account_id"] == 123

    async def test_init_data_from_query(self):
        with patch('server.middlewares.auth.verify_telegram_webapp_data') as mock_verify:
            mock_verify.return_value = {'id': 77}
            resp = await self.client.get('/api/whoami?_auth=signed')

        assert (await resp.json())["account_id"] == 77

    async def test_invalid_init_data_rejected(self):
        resp = await self.client.get('/api/whoami', headers={'X-Telegram-Init-Data': 'invalid_data'})
        assert resp.status == 401
        assert 'error' in await resp.json()

    async def test_dev_header_only_without_webapp_auth(self):
        resp = await self.client.get('/api/whoami', headers={'X-Account-Id': '42'})
        assert (await resp.json())["account_id"] is None

        with patch.object(settings, 'webapp_auth_required', False):
            resp = await self.client.get('/api/whoami', headers={'X-Account-Id': '42'})
        assert (await resp.json())["account_id"] == 42

    async def test_internal_key(self):
        resp = await self.client.get('/api/internal/ping')
        assert resp.status == 401

        resp = await self.client.get('/api/internal/ping', headers={'X-Api-Key': 'nope'})
        assert resp.status == 401

        resp = await self.client.get('/api/internal/ping', headers={'X-Api-Key': settings.internal_api_key})
        assert resp.status == 200

        with patch.object(settings, 'internal_api_key', None):
            resp = await self.client.get('/api/internal/ping', headers={'X-Api-Key': 'anything'})
        assert resp.status == 503

    async def test_ledger_errors_mapped(self):
        resp = await self.client.get('/api/denied')
        assert resp.status == 403
        assert (await resp.json())["code"] == "PermissionDeniedError"

        resp = await self.client.get('/api/broke')
        assert resp.status == 409
        data = await resp.json()
        assert data["available"] == "5.00"
        assert data["requested"] == "10.00"

    async def test_unexpected_errors_become_500(self):
        resp = await self.client.get('/api/crashed')
        assert resp.status == 500
        assert (await resp.json())["error"] == "Internal server error"


def test_verify_webapp_data_structure():
    """Test the structure of verified webapp data."""
    init_data = 'auth_date=1234567890&user={"id":123,"first_name":"Test","username":"testuser"}&hash=abc123'

    with patch('server.middlewares.auth.hmac.compare_digest', return_value=True):
        user = verify_telegram_webapp_data(init_data, 'token')
        assert user is not None
        assert user['id'] == 123
        assert user['username'] == 'testuser'


def test_verify_webapp_data_rejects_bad_hash_and_missing_hash():
    init_data = 'user={"id":123}&hash=abc123'
    assert verify_telegram_webapp_data(init_data, 'token') is None
    assert verify_telegram_webapp_data('user={"id":123}', 'token') is None


def test_verify_webapp_data_malformed():
    """Test handling of malformed initData."""
    init_data = 'user={invalid_json}&hash=abc123'
    with patch('server.middlewares.auth.hmac.compare_digest', return_value=True):
        assert verify_telegram_webapp_data(init_data, 'token') is None
