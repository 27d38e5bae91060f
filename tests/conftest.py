import hashlib
import hmac
import json
import os
import sys
from decimal import Decimal
from typing import AsyncGenerator
from urllib.parse import urlencode

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./affiliate_ledger_dev.db")
os.environ.setdefault("BOT_TOKEN", "123456:TEST-TOKEN")
os.environ.setdefault("ADMIN_ACCOUNT_IDS", "1")
os.environ.setdefault("INTERNAL_API_KEY", "test-internal-key")
os.environ.setdefault("LOG_DIR", "logs")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

# Ensure project root is on sys.path so `import services` works
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from database.base import Base
from database.models import Affiliate, AffiliateStatus, PayoutMethod
from database.repositories import AffiliateRepository
from server.config import settings
from services.authorization import Actor, SettingsAuthorizer


# Set TEST_DATABASE_URL to a PostgreSQL URL to run the row-locking tests
TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")
IS_POSTGRES = bool(TEST_DATABASE_URL and TEST_DATABASE_URL.startswith("postgresql"))

ADMIN_ID = 1
OWNER_ID = 100
STRANGER_ID = 999


def sign_init_data(user: dict, bot_token: str = None) -> str:
    """Build Telegram WebApp initData signed the way Telegram signs it."""
    bot_token = bot_token or settings.bot_token
    fields = {"auth_date": "1700000000", "user": json.dumps(user, separators=(",", ":"))}
    data_check_string = "\n".join(f"{k}={v}" for k, v in sorted(fields.items()))
    secret_key = hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()
    fields["hash"] = hmac.new(secret_key, data_check_string.encode(), hashlib.sha256).hexdigest()
    return urlencode(fields)


@pytest.fixture
def auth_headers():
    """Headers carrying signed initData: `auth_headers(account_id)`."""
    def _headers(account_id: int, username: str = "tester") -> dict:
        return {"X-Telegram-Init-Data": sign_init_data({"id": account_id, "username": username})}
    return _headers


@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path):
    """Create async engine for tests."""
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'ledger_test.db'}"
    engine = create_async_engine(
        url,
        echo=False,
        poolclass=NullPool,  # Disable pooling for tests
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def admin() -> Actor:
    return Actor(account_id=ADMIN_ID, username="admin")


@pytest.fixture
def owner() -> Actor:
    return Actor(account_id=OWNER_ID, username="acme")


@pytest.fixture
def stranger() -> Actor:
    return Actor(account_id=STRANGER_ID)


@pytest.fixture
def authorizer() -> SettingsAuthorizer:
    return SettingsAuthorizer([ADMIN_ID])


async def create_affiliate(
    session: AsyncSession,
    owner_account_id: int = OWNER_ID,
    code: str = "ACME10",
    rate: Decimal = Decimal("10.00"),
    status: AffiliateStatus = AffiliateStatus.ACTIVE,
) -> Affiliate:
    affiliate = await AffiliateRepository(session).create(
        owner_account_id=owner_account_id,
        email=f"affiliate{owner_account_id}@example.com",
        commission_rate=rate,
        payout_method=PayoutMethod.PAYPAL,
        payout_email=f"affiliate{owner_account_id}@example.com",
        affiliate_code=code,
        status=status,
    )
    await session.commit()
    return affiliate


@pytest_asyncio.fixture
async def affiliate(db_session: AsyncSession) -> Affiliate:
    """Active affiliate ACME10 at 10%."""
    return await create_affiliate(db_session)


@pytest.fixture
def make_affiliate(db_session: AsyncSession):
    """Factory for extra affiliates: `await make_affiliate(owner_account_id=..., code=...)`."""
    async def _make(**kwargs) -> Affiliate:
        return await create_affiliate(db_session, **kwargs)
    return _make
