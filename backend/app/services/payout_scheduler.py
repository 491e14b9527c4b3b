"""Periodic earnings calculation and payout cycle.

Each cycle moves through ``CALCULATING_EARNINGS -> SELECTING_ELIGIBLE ->
PAYING_OUT -> IDLE``. Rows are paid one at a time, each in its own session,
so one promoter's failure never rolls back another promoter's payout. Rows
that fail stay unpaid and are picked up again by the next cycle.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.services.earnings_calculator import CalculationSummary, EarningsCalculator
from app.services.earnings_ledger import EarningsLedger
from app.services.exceptions import LedgerUnavailableError, PayoutError
from app.services.payout_executor import PayoutExecutor, PayoutOutcome

logger = logging.getLogger(__name__)


class PayoutCycleState(str, Enum):
    IDLE = "idle"
    CALCULATING_EARNINGS = "calculating_earnings"
    SELECTING_ELIGIBLE = "selecting_eligible"
    PAYING_OUT = "paying_out"


@dataclass
class PayoutRunSummary:
    promoter_id: Optional[str] = None
    eligible: int = 0
    paid: int = 0
    failed: int = 0
    skipped: int = 0
    paid_cents: int = 0
    outcomes: List[PayoutOutcome] = field(default_factory=list)


@dataclass
class PayoutCycleSummary:
    month: int
    year: int
    calculation_skipped: bool = False
    calculation_error: Optional[str] = None
    calculation: Optional[CalculationSummary] = None
    payouts: Optional[PayoutRunSummary] = None


class PayoutScheduler:
    """Runs the calculate-then-pay cycle and the manual admin triggers."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        calculator: EarningsCalculator,
        ledger: EarningsLedger,
        executor: PayoutExecutor,
        alert_threshold: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.calculator = calculator
        self.ledger = ledger
        self.executor = executor
        self.alert_threshold = alert_threshold or settings.PAYOUT_ATTEMPT_ALERT_THRESHOLD
        self.state = PayoutCycleState.IDLE

    async def run_cycle(self, now: Optional[datetime] = None) -> PayoutCycleSummary:
        """One scheduled run: calculate the last closed period if needed, then pay every eligible row.

        Raises:
            LedgerUnavailableError: storage went away; the run is abandoned
                and the next tick starts over.
        """
        period = self.calculator.current_period(now)
        summary = PayoutCycleSummary(month=period.month, year=period.year)
        logger.info(f"Starting campaign payout processing cycle for {period}")

        try:
            self.state = PayoutCycleState.CALCULATING_EARNINGS
            try:
                if await self.calculator.has_calculations_for_period(period.month, period.year):
                    summary.calculation_skipped = True
                    logger.info(f"Earnings already calculated for {period}, skipping calculation")
                else:
                    summary.calculation = await self.calculator.calculate_for_period(period.month, period.year)
            except LedgerUnavailableError:
                raise
            except Exception as e:
                # Rows from earlier periods can still be paid.
                summary.calculation_error = str(e)
                logger.error(f"Earnings calculation failed for {period}: {e}", exc_info=True)

            self.state = PayoutCycleState.SELECTING_ELIGIBLE
            record_ids = await self._select_eligible()

            self.state = PayoutCycleState.PAYING_OUT
            summary.payouts = await self._pay_records(record_ids)
        finally:
            self.state = PayoutCycleState.IDLE

        logger.info(
            f"Campaign payout processing cycle completed for {period}: "
            f"{summary.payouts.paid}/{summary.payouts.eligible} paid, {summary.payouts.failed} failed"
        )
        return summary

    async def run_payouts(self, promoter_id: Optional[str] = None) -> PayoutRunSummary:
        """Pay every eligible row, optionally only ``promoter_id``'s."""
        record_ids = await self._select_eligible(promoter_id)
        return await self._pay_records(record_ids, promoter_id)

    async def trigger_calculation_for_campaign(self, campaign_id: str) -> CalculationSummary:
        logger.info(f"Manual earnings calculation triggered for campaign {campaign_id}")
        return await self.calculator.calculate_for_campaign(campaign_id)

    async def trigger_payouts_for_promoter(self, promoter_id: str) -> PayoutRunSummary:
        logger.info(f"Manual payout triggered for promoter {promoter_id}")
        return await self.run_payouts(promoter_id)

    async def run_calculation_now(self, month: int, year: int) -> CalculationSummary:
        """Manual calculation of a closed period.

        Raises:
            OpenPeriodError: the month has not ended yet.
        """
        self.calculator.require_closed(month, year)
        logger.info(f"Manual earnings calculation triggered for {month:02d}/{year}")
        return await self.calculator.calculate_for_period(month, year)

    async def run_payouts_now(self, promoter_id: Optional[str] = None) -> PayoutRunSummary:
        logger.info("Manual payout processing triggered")
        return await self.run_payouts(promoter_id)

    async def _select_eligible(self, promoter_id: Optional[str] = None) -> List[str]:
        async with self.session_factory() as db:
            record_ids = await self.ledger.select_eligible_ids(db, promoter_id)
        scope = f" for promoter {promoter_id}" if promoter_id else ""
        logger.info(f"Found {len(record_ids)} earnings records eligible for payout{scope}")
        return record_ids

    async def _pay_records(self, record_ids: List[str], promoter_id: Optional[str] = None) -> PayoutRunSummary:
        run = PayoutRunSummary(promoter_id=promoter_id, eligible=len(record_ids))

        for record_id in record_ids:
            try:
                outcome = await self._pay_one(record_id)
            except PayoutError as e:
                run.failed += 1
                logger.warning(f"Payout for earnings record {record_id} failed, will retry next run: {e}")
                continue
            except Exception as e:
                run.failed += 1
                logger.error(f"Unexpected error paying earnings record {record_id}: {e}", exc_info=True)
                continue

            if outcome is None or not outcome.paid:
                run.skipped += 1
                continue
            run.paid += 1
            run.paid_cents += outcome.ledger_amount_cents
            run.outcomes.append(outcome)

        return run

    async def _pay_one(self, record_id: str) -> Optional[PayoutOutcome]:
        async with self.session_factory() as db:
            record = await self.ledger.load_for_payout(db, record_id)
            if record is None:
                logger.info(f"Earnings record {record_id} is no longer eligible for payout, skipping")
                return None

            if record.payout_attempts >= self.alert_threshold:
                logger.error(
                    f"Earnings record {record.uuid} for promoter {record.promoter_id} has failed "
                    f"{record.payout_attempts} payout attempts (last: [{record.last_payout_error_category}] "
                    f"{record.last_payout_error}); manual intervention required"
                )

            return await self.executor.execute(db, record)
