"""Persistence for campaign earnings records.

The ledger is the single source of truth for whether a period has been
calculated and whether a row has been paid. Two storage-level guarantees
carry the accounting invariants:

* the ``uq_earnings_promoter_campaign_period`` unique constraint, surfaced as
  ``LedgerConflictError`` by ``insert_if_absent``;
* the conditional ``UPDATE ... WHERE payout_executed = false`` in
  ``mark_payout_executed``, which is the only write that flips a row to paid.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.earnings_record import CampaignEarningsRecord
from app.models.payout_attempt import PayoutAttempt
from app.services.exceptions import LedgerConflictError, LedgerUnavailableError

logger = logging.getLogger(__name__)

_AUDIT_FIELDS = [
    "payout_executed",
    "payout_amount_cents",
    "payout_date",
    "payout_transaction_ref",
    "payout_attempts",
    "last_payout_attempt_at",
    "last_payout_error",
    "last_payout_error_category",
    "pending_transfer_amount_cents",
    "pending_transfer_currency",
    "pending_exchange_rate",
    "transfer_sequence",
]


class EarningsLedger:
    """Repository for ``CampaignEarningsRecord`` rows. Stateless; callers own the session."""

    async def _execute(self, db: AsyncSession, statement):
        try:
            return await db.execute(statement)
        except IntegrityError:
            raise
        except (DBAPIError, OSError) as e:
            raise LedgerUnavailableError(f"Earnings ledger unavailable: {e}") from e

    async def _commit(self, db: AsyncSession) -> None:
        try:
            await db.commit()
        except IntegrityError:
            raise
        except (DBAPIError, OSError) as e:
            await self._rollback(db)
            raise LedgerUnavailableError(f"Earnings ledger unavailable: {e}") from e

    async def _rollback(self, db: AsyncSession) -> None:
        try:
            await db.rollback()
        except (DBAPIError, OSError) as e:
            logger.error(f"Rollback failed on earnings ledger session: {e}")

    async def find_existing(
        self,
        db: AsyncSession,
        promoter_id: str,
        campaign_id: str,
        month: int,
        year: int,
    ) -> Optional[CampaignEarningsRecord]:
        result = await self._execute(
            db,
            select(CampaignEarningsRecord).where(
                CampaignEarningsRecord.promoter_id == promoter_id,
                CampaignEarningsRecord.campaign_id == campaign_id,
                CampaignEarningsRecord.earnings_month == month,
                CampaignEarningsRecord.earnings_year == year,
            )
        )
        return result.scalar_one_or_none()

    async def insert_if_absent(self, db: AsyncSession, record: CampaignEarningsRecord) -> CampaignEarningsRecord:
        """Insert and commit ``record``.

        Raises:
            LedgerConflictError: a row for the same promoter, campaign and
                period already exists (another run inserted it first).
            LedgerUnavailableError: storage could not be reached.
        """
        db.add(record)
        try:
            await self._commit(db)
        except IntegrityError as e:
            await self._rollback(db)
            # Distinguish the uniqueness violation from other integrity errors
            # by looking for the winning row instead of parsing driver messages.
            existing = await self.find_existing(
                db, record.promoter_id, record.campaign_id, record.earnings_month, record.earnings_year
            )
            if existing is not None:
                raise LedgerConflictError(
                    record.promoter_id, record.campaign_id, record.earnings_month, record.earnings_year
                ) from e
            raise
        return record

    async def has_records_for_period(self, db: AsyncSession, month: int, year: int) -> bool:
        result = await self._execute(
            db,
            select(func.count(CampaignEarningsRecord.uuid)).where(
                CampaignEarningsRecord.earnings_month == month,
                CampaignEarningsRecord.earnings_year == year,
            )
        )
        return (result.scalar() or 0) > 0

    async def list_for_period(self, db: AsyncSession, month: int, year: int) -> List[CampaignEarningsRecord]:
        result = await self._execute(
            db,
            select(CampaignEarningsRecord)
            .where(
                CampaignEarningsRecord.earnings_month == month,
                CampaignEarningsRecord.earnings_year == year,
            )
            .order_by(CampaignEarningsRecord.created_at)
        )
        return list(result.scalars().all())

    async def list_for_promoter(self, db: AsyncSession, promoter_id: str) -> List[CampaignEarningsRecord]:
        result = await self._execute(
            db,
            select(CampaignEarningsRecord)
            .where(CampaignEarningsRecord.promoter_id == promoter_id)
            .order_by(CampaignEarningsRecord.earnings_year.desc(), CampaignEarningsRecord.earnings_month.desc())
        )
        return list(result.scalars().all())

    async def select_eligible_ids(self, db: AsyncSession, promoter_id: Optional[str] = None) -> List[str]:
        """Ids of rows that qualify for payout and have not been paid.

        ``promoter_id`` narrows the set for the manual per-promoter trigger;
        the scheduled run never passes it.
        """
        query = select(CampaignEarningsRecord.uuid).where(
            CampaignEarningsRecord.qualifies_for_payout.is_(True),
            CampaignEarningsRecord.payout_executed.is_(False),
        )
        if promoter_id is not None:
            query = query.where(CampaignEarningsRecord.promoter_id == promoter_id)
        query = query.order_by(CampaignEarningsRecord.created_at)

        result = await self._execute(db, query)
        return list(result.scalars().all())

    async def load_for_payout(self, db: AsyncSession, record_id: str) -> Optional[CampaignEarningsRecord]:
        """Eligible row with promoter and campaign loaded, or None if it was paid meanwhile."""
        result = await self._execute(
            db,
            select(CampaignEarningsRecord)
            .options(
                selectinload(CampaignEarningsRecord.promoter),
                selectinload(CampaignEarningsRecord.campaign),
            )
            .where(
                CampaignEarningsRecord.uuid == record_id,
                CampaignEarningsRecord.qualifies_for_payout.is_(True),
                CampaignEarningsRecord.payout_executed.is_(False),
            )
        )
        return result.scalar_one_or_none()

    async def mark_payout_executed(
        self,
        db: AsyncSession,
        record: CampaignEarningsRecord,
        payout_amount_cents: int,
        transfer_ref: str,
        paid_at: datetime,
        attempt: Optional[PayoutAttempt] = None,
    ) -> bool:
        """Flip ``record`` to paid. Returns False if another run already did."""
        result = await self._execute(
            db,
            update(CampaignEarningsRecord)
            .where(
                CampaignEarningsRecord.uuid == record.uuid,
                CampaignEarningsRecord.payout_executed.is_(False),
            )
            .values(
                payout_executed=True,
                payout_amount_cents=payout_amount_cents,
                payout_date=paid_at,
                payout_transaction_ref=transfer_ref,
                updated_at=paid_at,
            )
            .execution_options(synchronize_session=False)
        )
        if attempt is not None:
            db.add(attempt)
        await self._commit(db)
        await db.refresh(record, attribute_names=_AUDIT_FIELDS)

        flipped = result.rowcount == 1
        if flipped:
            logger.info(f"Marked payout as executed for earnings record {record.uuid} (ref {transfer_ref})")
        else:
            logger.warning(f"Earnings record {record.uuid} was already marked paid; left unchanged")
        return flipped

    async def pin_transfer(
        self,
        db: AsyncSession,
        record: CampaignEarningsRecord,
        amount_cents: int,
        currency: str,
        exchange_rate: float,
    ) -> CampaignEarningsRecord:
        """Store the converted transfer before it is first sent to the rail.

        Only an unpaid row without a pinned transfer is written. If another run
        pinned it first, the refreshed ``record`` carries that run's values.
        """
        await self._execute(
            db,
            update(CampaignEarningsRecord)
            .where(
                CampaignEarningsRecord.uuid == record.uuid,
                CampaignEarningsRecord.payout_executed.is_(False),
                CampaignEarningsRecord.pending_transfer_amount_cents.is_(None),
            )
            .values(
                pending_transfer_amount_cents=amount_cents,
                pending_transfer_currency=currency,
                pending_exchange_rate=exchange_rate,
            )
            .execution_options(synchronize_session=False)
        )
        await self._commit(db)
        await db.refresh(record, attribute_names=_AUDIT_FIELDS)
        return record

    async def record_payout_attempt(
        self,
        db: AsyncSession,
        record: CampaignEarningsRecord,
        attempt: PayoutAttempt,
        release_transfer: bool = False,
    ) -> int:
        """Append a failed attempt to the audit trail. Returns the row's attempt count.

        ``release_transfer`` is for failures where the rail certainly moved no
        money: the pinned transfer is cleared and the key sequence advances, so
        the next attempt is converted afresh under a new idempotency key.
        """
        values = dict(
            payout_attempts=CampaignEarningsRecord.payout_attempts + 1,
            last_payout_attempt_at=attempt.created_at,
            last_payout_error=attempt.error_message,
            last_payout_error_category=attempt.error_category,
            updated_at=attempt.created_at,
        )
        if release_transfer:
            values.update(
                pending_transfer_amount_cents=None,
                pending_transfer_currency=None,
                pending_exchange_rate=None,
                transfer_sequence=CampaignEarningsRecord.transfer_sequence + 1,
            )
        await self._execute(
            db,
            update(CampaignEarningsRecord)
            .where(
                CampaignEarningsRecord.uuid == record.uuid,
                CampaignEarningsRecord.payout_executed.is_(False),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.add(attempt)
        await self._commit(db)
        await db.refresh(record, attribute_names=_AUDIT_FIELDS)
        return record.payout_attempts
