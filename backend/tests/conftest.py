"""Pytest configuration and fixtures."""
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models import User, Campaign, CampaignType, UniqueView
from app.services.currency import FxRateCache
from app.services.earnings_calculator import EarningsCalculator
from app.services.earnings_ledger import EarningsLedger
from app.services.payment_rail import StripePayoutRail, TransferResult
from app.services.payout_executor import PayoutExecutor
from app.services.payout_scheduler import PayoutScheduler
from app.services.view_aggregator import ViewAggregator

# Fixed "now" used by every service under test: early April 2026, so March
# is the most recent closed billing period.
NOW = datetime(2026, 4, 2, 9, 0, 0)
# Default timestamp for recorded views, inside March.
VIEW_TIME = datetime(2026, 3, 15, 12, 0, 0)


def fixed_clock():
    return NOW


@pytest.fixture
async def engine():
    """In-memory database shared by every session in a test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory):
    """Create test database."""
    async with session_factory() as session:
        yield session


async def create_user(db, name="Promoter", email=None, used_currency="USD", stripe_account="acct_promoter", role="promoter"):
    user = User(
        name=name,
        email=email or f"{name.lower().replace(' ', '.')}@example.com",
        user_role=role,
        used_currency=used_currency,
        stripe_connect_account_id=stripe_account,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def create_campaign(db, advertiser, title="Spring Launch", cpv_cents=200, currency="USD",
                          campaign_type=CampaignType.VISIBILITY):
    campaign = Campaign(
        title=title,
        advertiser_id=advertiser.uuid,
        campaign_type=campaign_type,
        cpv_cents=cpv_cents,
        currency=currency,
    )
    db.add(campaign)
    await db.commit()
    await db.refresh(campaign)
    return campaign


async def add_views(db, campaign, promoter, count, when=VIEW_TIME):
    """Record ``count`` distinct views, spaced a second apart starting at ``when``."""
    for i in range(count):
        db.add(UniqueView(
            campaign_id=campaign.uuid,
            promoter_id=promoter.uuid,
            fingerprint=f"fp-{promoter.uuid}-{when.isoformat()}-{i}",
            created_at=when + timedelta(seconds=i),
        ))
    await db.commit()


@pytest.fixture
async def advertiser(test_db):
    return await create_user(test_db, name="Advertiser", role="advertiser", stripe_account=None)


@pytest.fixture
async def promoter(test_db):
    return await create_user(test_db, name="Promoter One")


@pytest.fixture
async def campaign(test_db, advertiser):
    return await create_campaign(test_db, advertiser)


@pytest.fixture
def ledger():
    return EarningsLedger()


@pytest.fixture
def calculator(session_factory, ledger):
    return EarningsCalculator(
        session_factory,
        aggregator=ViewAggregator(),
        ledger=ledger,
        fee_rate=0.20,
        minimum_payout_cents=500,
        views_per_rate_unit=100,
        period_offset_months=1,
        clock=fixed_clock,
    )


@pytest.fixture
def rate_source():
    source = MagicMock()
    source.fetch_rate = AsyncMock(return_value=1.25)
    return source


@pytest.fixture
def fx_cache(rate_source):
    return FxRateCache(source=rate_source, ttl=timedelta(hours=24), clock=fixed_clock)


@pytest.fixture
def rail():
    """Payment rail with Stripe replaced by mocks; every account is payout-capable."""
    rail = MagicMock(spec=StripePayoutRail)
    rail.resolve_destination_ref.side_effect = lambda promoter: StripePayoutRail().resolve_destination_ref(promoter)
    rail.is_payout_capable = AsyncMock(return_value=True)
    rail.transfer = AsyncMock(return_value=TransferResult(transfer_ref="tr_123", status="succeeded"))
    return rail


@pytest.fixture
def notifier():
    notifier = MagicMock()
    notifier.notify = AsyncMock()
    return notifier


@pytest.fixture
def executor(ledger, rail, fx_cache, notifier):
    return PayoutExecutor(ledger, rail, fx_cache, notifier=notifier, clock=fixed_clock)


@pytest.fixture
def payout_scheduler(session_factory, calculator, ledger, executor):
    return PayoutScheduler(session_factory, calculator, ledger, executor, alert_threshold=3)
