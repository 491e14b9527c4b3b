"""Admin endpoints for manual earnings calculation and payout runs."""
import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.schemas.payouts import (
    CalculationRequest,
    CalculationSummaryResponse,
    EarningsRecordListResponse,
    EarningsRecordResponse,
    PayoutCycleSummaryResponse,
    PayoutRunRequest,
    PayoutRunSummaryResponse,
)
from app.services.container import PayoutServices
from app.services.exceptions import LedgerUnavailableError, OpenPeriodError

logger = logging.getLogger(__name__)

router = APIRouter()


async def admin_api_key_required(x_admin_api_key: Optional[str] = Header(None)) -> None:
    """Guard for the manual trigger surface."""
    if not settings.ADMIN_API_KEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Manual payout triggers are disabled"
        )
    if not x_admin_api_key or not secrets.compare_digest(x_admin_api_key, settings.ADMIN_API_KEY):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin API key"
        )


def get_payout_services(request: Request) -> PayoutServices:
    return request.app.state.payout_services


def _ledger_unavailable(e: LedgerUnavailableError) -> HTTPException:
    logger.error(f"Earnings ledger unavailable: {e}")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Earnings ledger is temporarily unavailable"
    )


def _records_response(records) -> EarningsRecordListResponse:
    return EarningsRecordListResponse(
        records=[EarningsRecordResponse.model_validate(r) for r in records],
        total=len(records),
        total_net_cents=sum(r.net_earnings_cents for r in records),
    )


@router.post("/calculate", response_model=CalculationSummaryResponse, dependencies=[Depends(admin_api_key_required)])
async def calculate_period(
    request_data: CalculationRequest,
    services: PayoutServices = Depends(get_payout_services)
):
    """
    Calculate earnings for every promoter with views in a billing period.

    - Existing records for the period are left untouched
    - The month must have ended (409 otherwise)
    """
    try:
        summary = await services.scheduler.run_calculation_now(request_data.month, request_data.year)
    except OpenPeriodError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except LedgerUnavailableError as e:
        raise _ledger_unavailable(e)
    return CalculationSummaryResponse.model_validate(summary)


@router.post(
    "/campaigns/{campaign_id}/calculate",
    response_model=CalculationSummaryResponse,
    dependencies=[Depends(admin_api_key_required)]
)
async def calculate_campaign(
    campaign_id: str,
    services: PayoutServices = Depends(get_payout_services)
):
    """Calculate the last closed period's earnings for one campaign."""
    try:
        summary = await services.scheduler.trigger_calculation_for_campaign(campaign_id)
    except LedgerUnavailableError as e:
        raise _ledger_unavailable(e)
    return CalculationSummaryResponse.model_validate(summary)


@router.post("/run", response_model=PayoutRunSummaryResponse, dependencies=[Depends(admin_api_key_required)])
async def run_payouts(
    request_data: PayoutRunRequest,
    services: PayoutServices = Depends(get_payout_services)
):
    """
    Pay every eligible earnings record now.

    - Pass promoter_id to pay a single promoter's records
    - Failed rows stay unpaid and are retried by the scheduler
    """
    try:
        if request_data.promoter_id:
            summary = await services.scheduler.trigger_payouts_for_promoter(request_data.promoter_id)
        else:
            summary = await services.scheduler.run_payouts_now()
    except LedgerUnavailableError as e:
        raise _ledger_unavailable(e)
    return PayoutRunSummaryResponse.model_validate(summary)


@router.post("/cycle", response_model=PayoutCycleSummaryResponse, dependencies=[Depends(admin_api_key_required)])
async def run_cycle(services: PayoutServices = Depends(get_payout_services)):
    """Run one full calculate-then-pay cycle, as the scheduler would."""
    try:
        summary = await services.scheduler.run_cycle()
    except LedgerUnavailableError as e:
        raise _ledger_unavailable(e)
    return PayoutCycleSummaryResponse.model_validate(summary)


@router.get("/earnings", response_model=EarningsRecordListResponse, dependencies=[Depends(admin_api_key_required)])
async def list_period_earnings(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=2000, le=2100),
    services: PayoutServices = Depends(get_payout_services),
    db: AsyncSession = Depends(get_db)
):
    """List ledger records for a billing period."""
    try:
        records = await services.ledger.list_for_period(db, month, year)
    except LedgerUnavailableError as e:
        raise _ledger_unavailable(e)
    return _records_response(records)


@router.get(
    "/promoters/{promoter_id}/earnings",
    response_model=EarningsRecordListResponse,
    dependencies=[Depends(admin_api_key_required)]
)
async def list_promoter_earnings(
    promoter_id: str,
    services: PayoutServices = Depends(get_payout_services),
    db: AsyncSession = Depends(get_db)
):
    """List every ledger record for a promoter, newest period first."""
    try:
        records = await services.ledger.list_for_promoter(db, promoter_id)
    except LedgerUnavailableError as e:
        raise _ledger_unavailable(e)
    return _records_response(records)
