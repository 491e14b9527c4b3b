"""Turns aggregated views into earnings ledger records.

Earnings formula (all integer cents, one half-up rounding per derived step)
---------------------------------------------------------------------------
1. ``gross = round(views * cpv_cents / VIEWS_PER_RATE_UNIT)``
2. ``fee = round(gross * PLATFORM_FEE_RATE)``
3. ``net = gross - fee``
4. ``qualifies = net >= MINIMUM_PAYOUT_THRESHOLD_CENTS``

A record is written at most once per promoter, campaign and month. Running
the calculation again for a period that already has a record is a no-op, so
amounts that may already have been paid are never rewritten.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.models.earnings_record import CampaignEarningsRecord
from app.services.billing_period import BillingPeriod
from app.services.currency import round_half_up
from app.services.earnings_ledger import EarningsLedger
from app.services.exceptions import LedgerConflictError, LedgerUnavailableError, OpenPeriodError
from app.services.view_aggregator import ViewAggregator, ViewTally

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EarningsBreakdown:
    gross_earnings_cents: int
    platform_fee_cents: int
    net_earnings_cents: int
    qualifies_for_payout: bool


def compute_earnings(
    view_count: int,
    cpv_cents: int,
    fee_rate: float,
    minimum_payout_cents: int,
    views_per_rate_unit: int = 100,
) -> EarningsBreakdown:
    """Gross, platform fee and net earnings for ``view_count`` views at ``cpv_cents`` per unit."""
    if view_count < 0:
        raise ValueError(f"view_count must be >= 0, got {view_count}")
    if cpv_cents < 0:
        raise ValueError(f"cpv_cents must be >= 0, got {cpv_cents}")

    gross = round_half_up(Decimal(view_count * cpv_cents) / Decimal(views_per_rate_unit))
    fee = round_half_up(Decimal(gross) * Decimal(str(fee_rate)))
    net = gross - fee

    return EarningsBreakdown(
        gross_earnings_cents=gross,
        platform_fee_cents=fee,
        net_earnings_cents=net,
        qualifies_for_payout=net >= minimum_payout_cents,
    )


class CalculationOutcome(str, Enum):
    CREATED = "created"
    SKIPPED_EXISTING = "skipped_existing"
    CONFLICT = "conflict"


@dataclass
class CalculationSummary:
    month: int
    year: int
    campaign_id: Optional[str] = None
    processed: int = 0
    created: int = 0
    skipped: int = 0
    conflicts: int = 0
    failed: int = 0
    qualifying: int = 0
    failures: list = field(default_factory=list)


class EarningsCalculator:
    """Calculates and records promoter earnings for a billing period."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        aggregator: Optional[ViewAggregator] = None,
        ledger: Optional[EarningsLedger] = None,
        fee_rate: Optional[float] = None,
        minimum_payout_cents: Optional[int] = None,
        views_per_rate_unit: Optional[int] = None,
        period_offset_months: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_factory = session_factory
        self.aggregator = aggregator or ViewAggregator()
        self.ledger = ledger or EarningsLedger()
        self.fee_rate = settings.PLATFORM_FEE_RATE if fee_rate is None else fee_rate
        self.minimum_payout_cents = (
            settings.MINIMUM_PAYOUT_THRESHOLD_CENTS if minimum_payout_cents is None else minimum_payout_cents
        )
        self.views_per_rate_unit = views_per_rate_unit or settings.VIEWS_PER_RATE_UNIT
        self.period_offset_months = (
            settings.EARNINGS_PERIOD_OFFSET_MONTHS if period_offset_months is None else period_offset_months
        )
        if self.period_offset_months < 1:
            raise ValueError("period_offset_months must be at least 1; an open month cannot be calculated")
        self._clock = clock

    def current_period(self, now: Optional[datetime] = None) -> BillingPeriod:
        """Most recent closed billing period as of ``now``, for scheduled and default runs."""
        return BillingPeriod.current(now or self._clock(), self.period_offset_months)

    def require_closed(self, month: int, year: int) -> BillingPeriod:
        """Reject a period that has not ended; its rows would freeze partial view counts."""
        period = BillingPeriod(month, year)
        if not period.is_closed(self._clock()):
            raise OpenPeriodError(month, year)
        return period

    def compute(self, view_count: int, cpv_cents: int) -> EarningsBreakdown:
        return compute_earnings(
            view_count,
            cpv_cents,
            fee_rate=self.fee_rate,
            minimum_payout_cents=self.minimum_payout_cents,
            views_per_rate_unit=self.views_per_rate_unit,
        )

    async def has_calculations_for_period(self, month: int, year: int) -> bool:
        async with self.session_factory() as db:
            return await self.ledger.has_records_for_period(db, month, year)

    async def calculate_for_period(
        self,
        month: int,
        year: int,
        campaign_id: Optional[str] = None,
    ) -> CalculationSummary:
        """Create ledger records for every promoter/campaign pair with views in the period.

        A failing pair is logged and skipped; the rest of the batch continues.
        ``LedgerUnavailableError`` aborts the whole run.
        """
        period = BillingPeriod(month, year)
        scope = f" (campaign {campaign_id})" if campaign_id else ""
        logger.info(f"Starting earnings calculation for {period}{scope}")

        summary = CalculationSummary(month=period.month, year=period.year, campaign_id=campaign_id)

        async with self.session_factory() as db:
            async for tally in self.aggregator.query_views_for_period(db, period.month, period.year, campaign_id):
                summary.processed += 1
                try:
                    outcome, record = await self.calculate_individual(db, tally)
                except LedgerUnavailableError:
                    logger.error(f"Earnings ledger unavailable during calculation for {period}; aborting run")
                    raise
                except Exception as e:
                    await db.rollback()
                    summary.failed += 1
                    summary.failures.append(
                        {"promoter_id": tally.promoter_id, "campaign_id": tally.campaign_id, "error": str(e)}
                    )
                    logger.error(
                        f"Failed to calculate earnings for promoter {tally.promoter_id} "
                        f"in campaign {tally.campaign_id} for {period}: {e}",
                        exc_info=True,
                    )
                    continue

                if outcome == CalculationOutcome.CREATED:
                    summary.created += 1
                    if record.qualifies_for_payout:
                        summary.qualifying += 1
                elif outcome == CalculationOutcome.CONFLICT:
                    summary.conflicts += 1
                else:
                    summary.skipped += 1

        logger.info(
            f"Earnings calculation completed for {period}{scope}: {summary.processed} pairs, "
            f"{summary.created} created ({summary.qualifying} qualifying), {summary.skipped} already calculated, "
            f"{summary.conflicts} conflicts, {summary.failed} failed"
        )
        return summary

    async def calculate_individual(
        self,
        db: AsyncSession,
        tally: ViewTally,
    ) -> tuple[CalculationOutcome, Optional[CampaignEarningsRecord]]:
        period = BillingPeriod(tally.month, tally.year)

        existing = await self.ledger.find_existing(
            db, tally.promoter_id, tally.campaign_id, tally.month, tally.year
        )
        if existing is not None:
            logger.info(
                f"Earnings record already exists for promoter {tally.promoter_id} in campaign "
                f"{tally.campaign_id} for {period}. Skipping calculation."
            )
            return CalculationOutcome.SKIPPED_EXISTING, existing

        breakdown = self.compute(tally.view_count, tally.cpv_cents)
        record = CampaignEarningsRecord(
            promoter_id=tally.promoter_id,
            campaign_id=tally.campaign_id,
            earnings_month=tally.month,
            earnings_year=tally.year,
            views_generated=tally.view_count,
            cpv_cents=tally.cpv_cents,
            gross_earnings_cents=breakdown.gross_earnings_cents,
            platform_fee_cents=breakdown.platform_fee_cents,
            net_earnings_cents=breakdown.net_earnings_cents,
            qualifies_for_payout=breakdown.qualifies_for_payout,
            payout_executed=False,
            payout_attempts=0,
        )

        try:
            await self.ledger.insert_if_absent(db, record)
        except LedgerConflictError:
            logger.warning(
                f"Duplicate earnings record detected for promoter {tally.promoter_id} in campaign "
                f"{tally.campaign_id} for {period}; a concurrent run created it first. Skipping."
            )
            return CalculationOutcome.CONFLICT, None

        logger.info(
            f"Earnings calculated for {period}: promoter {tally.promoter_id}, campaign {tally.campaign_id}, "
            f"views {tally.view_count}, gross {breakdown.gross_earnings_cents}c, "
            f"fee {breakdown.platform_fee_cents}c, net {breakdown.net_earnings_cents}c, "
            f"qualifies {breakdown.qualifies_for_payout}"
        )
        return CalculationOutcome.CREATED, record

    async def calculate_for_campaign(
        self,
        campaign_id: str,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> CalculationSummary:
        """Manual trigger: calculate one campaign's promoters for a period (default: last closed month)."""
        if month is None or year is None:
            period = self.current_period()
            month, year = period.month, period.year
        else:
            self.require_closed(month, year)
        return await self.calculate_for_period(month, year, campaign_id=campaign_id)

    async def calculate_previous_month(self) -> CalculationSummary:
        period = BillingPeriod.current(self._clock(), 1)
        logger.info(f"Calculating earnings for previous month: {period}")
        return await self.calculate_for_period(period.month, period.year)
