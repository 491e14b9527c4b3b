"""Tests for earnings ledger storage guarantees."""
from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from app.models.earnings_record import CampaignEarningsRecord
from app.models.payout_attempt import PayoutAttempt
from app.services.exceptions import LedgerConflictError, LedgerImmutableError
from conftest import create_user

PAID_AT = datetime(2026, 3, 15, 12, 0, 0)


def make_record(promoter, campaign, net=640, qualifies=True, month=3, year=2026):
    return CampaignEarningsRecord(
        promoter_id=promoter.uuid,
        campaign_id=campaign.uuid,
        earnings_month=month,
        earnings_year=year,
        views_generated=400,
        cpv_cents=200,
        gross_earnings_cents=800,
        platform_fee_cents=160,
        net_earnings_cents=net,
        qualifies_for_payout=qualifies,
        payout_executed=False,
        payout_attempts=0,
    )


@pytest.mark.asyncio
async def test_unique_constraint_rejects_duplicate_period(test_db, promoter, campaign):
    test_db.add(make_record(promoter, campaign))
    await test_db.commit()

    test_db.add(make_record(promoter, campaign))
    with pytest.raises(IntegrityError):
        await test_db.commit()
    await test_db.rollback()


@pytest.mark.asyncio
async def test_insert_if_absent_raises_conflict(ledger, session_factory, promoter, campaign):
    async with session_factory() as db:
        await ledger.insert_if_absent(db, make_record(promoter, campaign))

    async with session_factory() as db:
        with pytest.raises(LedgerConflictError) as exc_info:
            await ledger.insert_if_absent(db, make_record(promoter, campaign))

    assert exc_info.value.promoter_id == promoter.uuid
    assert (exc_info.value.month, exc_info.value.year) == (3, 2026)


@pytest.mark.asyncio
async def test_other_periods_are_independent(ledger, session_factory, promoter, campaign):
    async with session_factory() as db:
        await ledger.insert_if_absent(db, make_record(promoter, campaign, month=3))
        await ledger.insert_if_absent(db, make_record(promoter, campaign, month=4))

        assert await ledger.has_records_for_period(db, 3, 2026)
        assert await ledger.has_records_for_period(db, 4, 2026)
        assert len(await ledger.list_for_promoter(db, promoter.uuid)) == 2


@pytest.mark.asyncio
async def test_select_eligible_ids(ledger, session_factory, test_db, promoter, campaign):
    other = await create_user(test_db, name="Other Promoter")
    async with session_factory() as db:
        eligible = await ledger.insert_if_absent(db, make_record(promoter, campaign))
        await ledger.insert_if_absent(db, make_record(promoter, campaign, net=400, qualifies=False, month=2))
        other_record = await ledger.insert_if_absent(db, make_record(other, campaign))

        assert set(await ledger.select_eligible_ids(db)) == {eligible.uuid, other_record.uuid}
        assert await ledger.select_eligible_ids(db, promoter_id=promoter.uuid) == [eligible.uuid]


@pytest.mark.asyncio
async def test_mark_payout_executed_flips_once(ledger, session_factory, promoter, campaign):
    async with session_factory() as db:
        record = await ledger.insert_if_absent(db, make_record(promoter, campaign))

        first = await ledger.mark_payout_executed(db, record, 640, "tr_1", PAID_AT)
        second = await ledger.mark_payout_executed(db, record, 640, "tr_2", PAID_AT)

        assert first is True
        assert second is False
        assert record.payout_executed is True
        assert record.payout_transaction_ref == "tr_1"
        assert record.payout_amount_cents == 640
        assert await ledger.select_eligible_ids(db) == []
        assert await ledger.load_for_payout(db, record.uuid) is None


@pytest.mark.asyncio
async def test_record_payout_attempt_counts_failures(ledger, session_factory, promoter, campaign):
    async with session_factory() as db:
        record = await ledger.insert_if_absent(db, make_record(promoter, campaign))

        for expected in (1, 2):
            attempt = PayoutAttempt(
                earnings_record_id=record.uuid,
                status="failed",
                error_category="transient",
                error_message="network down",
                amount_cents=640,
                currency="USD",
                created_at=PAID_AT,
            )
            assert await ledger.record_payout_attempt(db, record, attempt) == expected

        assert record.payout_executed is False
        assert record.last_payout_error_category == "transient"
        assert await ledger.select_eligible_ids(db) == [record.uuid]


@pytest.mark.asyncio
async def test_calculated_amounts_are_immutable(ledger, session_factory, promoter, campaign):
    async with session_factory() as db:
        record = await ledger.insert_if_absent(db, make_record(promoter, campaign))

        record.net_earnings_cents = 10_000
        with pytest.raises(LedgerImmutableError):
            await db.commit()
        await db.rollback()


@pytest.mark.asyncio
async def test_paid_records_are_immutable(ledger, session_factory, promoter, campaign):
    async with session_factory() as db:
        record = await ledger.insert_if_absent(db, make_record(promoter, campaign))
        await ledger.mark_payout_executed(db, record, 640, "tr_1", PAID_AT)

        record.payout_executed = False
        with pytest.raises(LedgerImmutableError):
            await db.commit()
        await db.rollback()


@pytest.mark.asyncio
async def test_pinned_transfer_is_kept_until_released(ledger, session_factory, promoter, campaign):
    async with session_factory() as db:
        record = await ledger.insert_if_absent(db, make_record(promoter, campaign))
        assert record.transfer_idempotency_key == f"earnings-payout-{record.uuid}-0"

        await ledger.pin_transfer(db, record, 800, "CAD", 1.25)
        # A second pin never overwrites the first
        await ledger.pin_transfer(db, record, 832, "CAD", 1.30)
        assert (record.pending_transfer_amount_cents, record.pending_exchange_rate) == (800, 1.25)

        transient = PayoutAttempt(
            earnings_record_id=record.uuid,
            status="failed",
            error_category="transient",
            error_message="timed out",
            amount_cents=640,
            currency="USD",
            created_at=PAID_AT,
        )
        await ledger.record_payout_attempt(db, record, transient)
        assert record.pending_transfer_amount_cents == 800
        assert record.transfer_sequence == 0

        rejected = PayoutAttempt(
            earnings_record_id=record.uuid,
            status="failed",
            error_category="rejected",
            error_message="insufficient balance",
            amount_cents=640,
            currency="USD",
            created_at=PAID_AT,
        )
        await ledger.record_payout_attempt(db, record, rejected, release_transfer=True)
        assert record.pending_transfer_amount_cents is None
        assert record.pending_transfer_currency is None
        assert record.transfer_sequence == 1
        assert record.transfer_idempotency_key == f"earnings-payout-{record.uuid}-1"
