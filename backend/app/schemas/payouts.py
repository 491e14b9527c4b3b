"""Schemas for the earnings ledger and payout trigger endpoints."""
from datetime import datetime
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ── Transfer / notification metadata variants ────────────────────────────────

class TransferMetadata(BaseModel):
    """Metadata attached to a campaign earnings transfer on the payment rail."""

    kind: Literal["campaign_earnings_payout"] = "campaign_earnings_payout"
    earnings_record_id: str
    promoter_id: str
    campaign_id: str
    earnings_month: int
    earnings_year: int
    ledger_amount_cents: int
    ledger_currency: str

    def to_stripe(self) -> Dict[str, str]:
        """Stripe metadata values must be strings."""
        return {key: str(value) for key, value in self.model_dump().items()}


class PayoutProcessedMetadata(BaseModel):
    kind: Literal["payout_processed"] = "payout_processed"
    earnings_record_id: str
    campaign_id: str
    campaign_title: str
    campaign_currency: str
    payout_amount_cents: int
    transfer_amount_cents: int
    transfer_currency: str
    transfer_ref: str
    views_generated: int
    gross_earnings_cents: int
    platform_fee_cents: int
    net_earnings_cents: int
    earnings_month: int
    earnings_year: int
    processed_at: datetime


class PayoutActionRequiredMetadata(BaseModel):
    kind: Literal["payout_action_required"] = "payout_action_required"
    earnings_record_id: str
    campaign_id: str
    error_category: str
    net_earnings_cents: int
    campaign_currency: str
    earnings_month: int
    earnings_year: int


NotificationMetadata = Union[PayoutProcessedMetadata, PayoutActionRequiredMetadata]


# ── Trigger requests ──────────────────────────────────────────────────────────

class CalculationRequest(BaseModel):
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)


class PayoutRunRequest(BaseModel):
    promoter_id: Optional[str] = Field(None, description="Only pay this promoter's eligible rows")


# ── Responses ─────────────────────────────────────────────────────────────────

class CalculationSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    month: int
    year: int
    campaign_id: Optional[str] = None
    processed: int
    created: int
    skipped: int
    conflicts: int
    failed: int
    qualifying: int


class PayoutRunSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    promoter_id: Optional[str] = None
    eligible: int
    paid: int
    failed: int
    skipped: int
    paid_cents: int


class PayoutCycleSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    month: int
    year: int
    calculation_skipped: bool
    calculation_error: Optional[str] = None
    calculation: Optional[CalculationSummaryResponse] = None
    payouts: Optional[PayoutRunSummaryResponse] = None


class EarningsRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    uuid: str
    promoter_id: str
    campaign_id: str
    earnings_month: int
    earnings_year: int
    views_generated: int
    cpv_cents: int
    gross_earnings_cents: int
    platform_fee_cents: int
    net_earnings_cents: int
    qualifies_for_payout: bool
    payout_executed: bool
    payout_amount_cents: Optional[int] = None
    payout_date: Optional[datetime] = None
    payout_transaction_ref: Optional[str] = None
    payout_attempts: int
    created_at: datetime


class EarningsRecordListResponse(BaseModel):
    records: List[EarningsRecordResponse]
    total: int
    total_net_cents: int
