"""Pays out a single eligible earnings record through the payment rail."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.earnings_record import CampaignEarningsRecord
from app.models.payout_attempt import PayoutAttempt
from app.schemas.payouts import (
    PayoutActionRequiredMetadata,
    PayoutProcessedMetadata,
    TransferMetadata,
)
from app.services.currency import FxRateCache, convert_with_rate, format_cents
from app.services.earnings_ledger import EarningsLedger
from app.services.exceptions import (
    LedgerError,
    PayoutAccountMissingError,
    PayoutError,
    TransferKeyConflictError,
    TransferRejectedError,
)
from app.services.notifications import NotificationService, NotificationType
from app.services.payment_rail import StripePayoutRail, VERIFY_ACCOUNT_MESSAGE

logger = logging.getLogger(__name__)


@dataclass
class PayoutOutcome:
    record_id: str
    promoter_id: str
    campaign_id: str
    paid: bool
    ledger_amount_cents: int
    ledger_currency: str
    transfer_amount_cents: int
    transfer_currency: str
    exchange_rate: float
    transfer_ref: Optional[str] = None


class PayoutExecutor:
    """Executes the transfer for one ledger row and flips it to paid.

    The stored ``payout_amount_cents`` is always the net earnings in the
    campaign's currency; only the transfer itself is converted into the
    promoter's settlement currency.
    """

    def __init__(
        self,
        ledger: EarningsLedger,
        rail: StripePayoutRail,
        fx_cache: FxRateCache,
        notifier: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.ledger = ledger
        self.rail = rail
        self.fx_cache = fx_cache
        self.notifier = notifier
        self._clock = clock

    async def execute(self, db: AsyncSession, record: CampaignEarningsRecord) -> PayoutOutcome:
        """Pay ``record``.

        The converted amount is pinned on the row before the first transfer
        and every later attempt resends it under the same idempotency key, so
        the rail returns the original transfer instead of creating another.

        Raises:
            PayoutError: the row could not be paid; it stays unpaid and is
                retried on the next run.
        """
        promoter = record.promoter
        campaign = record.campaign
        context = f"promoter {record.promoter_id} in campaign {record.campaign_id} for {record.period_label}"

        ledger_currency = campaign.currency.upper()
        net_cents = record.net_earnings_cents
        outcome = PayoutOutcome(
            record_id=record.uuid,
            promoter_id=record.promoter_id,
            campaign_id=record.campaign_id,
            paid=False,
            ledger_amount_cents=net_cents,
            ledger_currency=ledger_currency,
            transfer_amount_cents=net_cents,
            transfer_currency=ledger_currency,
            exchange_rate=1.0,
        )

        try:
            destination = self.rail.resolve_destination_ref(promoter)
            if not await self.rail.is_payout_capable(promoter):
                raise PayoutAccountMissingError(
                    f"Stripe account {destination} for promoter {promoter.uuid} is not payout-capable",
                    user_message=VERIFY_ACCOUNT_MESSAGE,
                )

            if record.pending_transfer_amount_cents is None:
                await self._pin_transfer(db, record, context)
                if record.payout_executed:
                    logger.info(f"Earnings record {record.uuid} was paid by another run, skipping")
                    return outcome
            else:
                logger.info(
                    f"Resending pinned transfer for {context}: "
                    f"{format_cents(record.pending_transfer_amount_cents, record.pending_transfer_currency)} "
                    f"(key {record.transfer_idempotency_key})"
                )
            outcome.transfer_amount_cents = record.pending_transfer_amount_cents
            outcome.transfer_currency = record.pending_transfer_currency
            outcome.exchange_rate = record.pending_exchange_rate

            result = await self.rail.transfer(
                destination=destination,
                amount_minor_units=outcome.transfer_amount_cents,
                currency=outcome.transfer_currency,
                description=(
                    f'Campaign earnings payout for "{campaign.title}" - '
                    f"{record.views_generated} views generated ({record.period_label})"
                ),
                metadata=TransferMetadata(
                    earnings_record_id=record.uuid,
                    promoter_id=record.promoter_id,
                    campaign_id=record.campaign_id,
                    earnings_month=record.earnings_month,
                    earnings_year=record.earnings_year,
                    ledger_amount_cents=net_cents,
                    ledger_currency=ledger_currency,
                ),
                idempotency_key=record.transfer_idempotency_key,
            )
        except PayoutError as e:
            if isinstance(e, TransferKeyConflictError):
                logger.critical(
                    f"Key {record.transfer_idempotency_key} was refused for {context}; "
                    f"reconcile with the payment rail before this row can be paid: {e}"
                )
            else:
                logger.error(f"Failed to process campaign payout for {context}: [{e.category}] {e}")
            await self._record_failure(db, record, outcome, e)
            raise
        except LedgerError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error paying out {context}: {e}", exc_info=True)
            error = PayoutError(f"Unexpected payout error: {e}")
            await self._record_failure(db, record, outcome, error)
            raise error from e

        paid_at = self._clock()
        attempt = PayoutAttempt(
            earnings_record_id=record.uuid,
            status="succeeded",
            amount_cents=net_cents,
            currency=ledger_currency,
            transfer_amount_cents=outcome.transfer_amount_cents,
            transfer_currency=outcome.transfer_currency,
            exchange_rate=outcome.exchange_rate,
            transfer_ref=result.transfer_ref,
            created_at=paid_at,
        )
        try:
            flipped = await self.ledger.mark_payout_executed(
                db, record, net_cents, result.transfer_ref, paid_at, attempt
            )
        except LedgerError:
            logger.critical(
                f"Transfer {result.transfer_ref} succeeded for {context} but the ledger could not be updated; "
                f"the next run resends the pinned transfer under key {record.transfer_idempotency_key}, "
                f"which returns this transfer instead of creating a new one"
            )
            raise

        outcome.paid = flipped
        outcome.transfer_ref = result.transfer_ref
        if flipped:
            logger.info(
                f"Successfully processed campaign payout for {context}: "
                f"{format_cents(net_cents, ledger_currency)} (transfer {result.transfer_ref})"
            )
            await self._notify_processed(record, outcome, paid_at)
        return outcome

    async def _pin_transfer(self, db: AsyncSession, record: CampaignEarningsRecord, context: str) -> None:
        """Convert the net earnings into the settlement currency and pin the result on the row."""
        ledger_currency = record.campaign.currency.upper()
        settlement_currency = (record.promoter.used_currency or ledger_currency).upper()
        net_cents = record.net_earnings_cents

        if settlement_currency != ledger_currency:
            rate = await self.fx_cache.get_rate(ledger_currency, settlement_currency)
            transfer_cents = convert_with_rate(net_cents, rate)
            logger.info(
                f"Converting payout for {context}: {format_cents(net_cents, ledger_currency)} -> "
                f"{format_cents(transfer_cents, settlement_currency)} at rate {rate}"
            )
        else:
            rate = 1.0
            transfer_cents = net_cents

        await self.ledger.pin_transfer(db, record, transfer_cents, settlement_currency, rate)

    async def _record_failure(
        self,
        db: AsyncSession,
        record: CampaignEarningsRecord,
        outcome: PayoutOutcome,
        error: PayoutError,
    ) -> None:
        previous_category = record.last_payout_error_category
        attempt = PayoutAttempt(
            earnings_record_id=record.uuid,
            status="failed",
            error_category=error.category,
            error_message=str(error),
            amount_cents=outcome.ledger_amount_cents,
            currency=outcome.ledger_currency,
            transfer_amount_cents=outcome.transfer_amount_cents,
            transfer_currency=outcome.transfer_currency,
            exchange_rate=outcome.exchange_rate,
            created_at=self._clock(),
        )
        # Only a refused transfer proves no money moved under the current key.
        release_transfer = isinstance(error, TransferRejectedError)
        try:
            await self.ledger.record_payout_attempt(db, record, attempt, release_transfer=release_transfer)
        except LedgerError as e:
            logger.error(f"Could not record failed payout attempt for earnings record {record.uuid}: {e}")
            return

        # Tell the promoter once per distinct problem, not on every retry.
        needs_action = isinstance(error, (TransferRejectedError, PayoutAccountMissingError))
        if needs_action and previous_category != error.category:
            await self._notify_action_required(record, outcome, error)

    async def _notify_processed(self, record: CampaignEarningsRecord, outcome: PayoutOutcome, paid_at: datetime) -> None:
        if self.notifier is None:
            return
        amount = format_cents(outcome.ledger_amount_cents, outcome.ledger_currency)
        try:
            await self.notifier.notify(
                user_id=record.promoter_id,
                notification_type=NotificationType.PAYOUT_PROCESSED,
                title="Campaign Earnings Payout Processed",
                message=(
                    f'Your campaign earnings payout of {amount} has been processed for campaign '
                    f'"{record.campaign.title}". You generated {record.views_generated} views during '
                    f"{record.period_label}. The payment has been sent to your connected payment account "
                    f"and should arrive within 2-7 business days."
                ),
                metadata=PayoutProcessedMetadata(
                    earnings_record_id=record.uuid,
                    campaign_id=record.campaign_id,
                    campaign_title=record.campaign.title,
                    campaign_currency=outcome.ledger_currency,
                    payout_amount_cents=outcome.ledger_amount_cents,
                    transfer_amount_cents=outcome.transfer_amount_cents,
                    transfer_currency=outcome.transfer_currency,
                    transfer_ref=outcome.transfer_ref,
                    views_generated=record.views_generated,
                    gross_earnings_cents=record.gross_earnings_cents,
                    platform_fee_cents=record.platform_fee_cents,
                    net_earnings_cents=record.net_earnings_cents,
                    earnings_month=record.earnings_month,
                    earnings_year=record.earnings_year,
                    processed_at=paid_at,
                ),
                campaign_id=record.campaign_id,
            )
        except Exception as e:
            # Payment already went through; the notification is informational.
            logger.error(f"Failed to send payout processed notification to promoter {record.promoter_id}: {e}")

    async def _notify_action_required(
        self,
        record: CampaignEarningsRecord,
        outcome: PayoutOutcome,
        error: PayoutError,
    ) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.notify(
                user_id=record.promoter_id,
                notification_type=NotificationType.PAYOUT_ACTION_REQUIRED,
                title="Action Needed to Receive Your Earnings",
                message=error.user_message or VERIFY_ACCOUNT_MESSAGE,
                metadata=PayoutActionRequiredMetadata(
                    earnings_record_id=record.uuid,
                    campaign_id=record.campaign_id,
                    error_category=error.category,
                    net_earnings_cents=outcome.ledger_amount_cents,
                    campaign_currency=outcome.ledger_currency,
                    earnings_month=record.earnings_month,
                    earnings_year=record.earnings_year,
                ),
                campaign_id=record.campaign_id,
            )
        except Exception as e:
            logger.error(f"Failed to send payout action notification to promoter {record.promoter_id}: {e}")
