"""Shared fixtures for the referral workflow tests"""

from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.database import configure_sqlite_locking, create_schema
from app.services.directory import MemberProfile, StaticMemberDirectory
from app.services.finance_gateway import VerificationGatewayClient
from app.services.notification import RecordingNotifier
from app.services.referral import ReferralService
from app.services.vault import SensitiveDataVault

TEST_SECRET = "test-referral-secret"
BONUS_RATE = Decimal("0.05")


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite so that separate sessions really are separate connections"""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'referrals.db'}",
        poolclass=NullPool,
    )
    configure_sqlite_locking(test_engine)
    await create_schema(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def directory():
    return StaticMemberDirectory([
        MemberProfile(id="alice", name="Alice Chen", company="Chen Trading"),
        MemberProfile(id="bob", name="Bob Lin", company="Lin Logistics"),
        MemberProfile(id="carol", name="Carol Wu", company="Wu Design"),
        MemberProfile(id="dave", name="Dave Ho", company="Ho Foods", status="suspended"),
        MemberProfile(id="coach", name="Coach Kao", company="Chapter", role="coach"),
    ])


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def vault():
    return SensitiveDataVault(TEST_SECRET)


@pytest.fixture
def stub_gateway():
    return VerificationGatewayClient(base_url="", stub_mode=True)


@pytest.fixture
def make_service(directory, vault, stub_gateway, notifier):
    """Build a ReferralService bound to the given session"""

    def _make(session, gateway=None, bonus_rate=BONUS_RATE):
        return ReferralService(
            session,
            directory,
            vault=vault,
            gateway=gateway or stub_gateway,
            notifier=notifier,
            bonus_rate=bonus_rate,
        )

    return _make


@pytest.fixture
def service(db, make_service):
    return make_service(db)
