"""Wires the payout services together for the app and the scheduler."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.database import AsyncSessionLocal
from app.services.currency import FALLBACK_RATES, ExchangeRateHostSource, FxRateCache, RateSource
from app.services.earnings_calculator import EarningsCalculator
from app.services.earnings_ledger import EarningsLedger
from app.services.notifications import NotificationService
from app.services.payment_rail import StripePayoutRail
from app.services.payout_executor import PayoutExecutor
from app.services.payout_scheduler import PayoutScheduler
from app.services.view_aggregator import ViewAggregator


@dataclass
class PayoutServices:
    session_factory: async_sessionmaker
    fx_cache: FxRateCache
    aggregator: ViewAggregator
    ledger: EarningsLedger
    calculator: EarningsCalculator
    rail: StripePayoutRail
    notifier: NotificationService
    executor: PayoutExecutor
    scheduler: PayoutScheduler


def build_payout_services(
    session_factory: async_sessionmaker = AsyncSessionLocal,
    rate_source: Optional[RateSource] = None,
    rail: Optional[StripePayoutRail] = None,
    notifier: Optional[NotificationService] = None,
    clock: Callable[[], datetime] = datetime.utcnow,
) -> PayoutServices:
    """Build one set of payout services sharing a single FX cache and ledger."""
    fx_cache = FxRateCache(
        source=rate_source or ExchangeRateHostSource(),
        ttl=timedelta(hours=settings.FX_CACHE_TTL_HOURS),
        fallback_rates=FALLBACK_RATES,
        clock=clock,
    )
    aggregator = ViewAggregator()
    ledger = EarningsLedger()
    calculator = EarningsCalculator(session_factory, aggregator=aggregator, ledger=ledger, clock=clock)
    rail = rail or StripePayoutRail()
    notifier = notifier or NotificationService(session_factory)
    executor = PayoutExecutor(ledger, rail, fx_cache, notifier=notifier, clock=clock)
    scheduler = PayoutScheduler(session_factory, calculator, ledger, executor)

    return PayoutServices(
        session_factory=session_factory,
        fx_cache=fx_cache,
        aggregator=aggregator,
        ledger=ledger,
        calculator=calculator,
        rail=rail,
        notifier=notifier,
        executor=executor,
        scheduler=scheduler,
    )
