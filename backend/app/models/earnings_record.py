"""Campaign earnings ledger: one row per promoter, campaign and billing period."""
from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    String, Integer, Boolean, DateTime, Float, Text, ForeignKey, Index, UniqueConstraint, event, inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.services.exceptions import LedgerImmutableError


class CampaignEarningsRecord(Base):
    """Earnings a promoter generated on one campaign in one calendar month.

    Created once by the earnings calculator and never deleted. All amounts are
    integer cents in the campaign's currency, including ``payout_amount_cents``
    even when the transfer itself was sent in another currency.
    """
    __tablename__ = "campaign_earnings_records"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    promoter_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False)
    campaign_id: Mapped[str] = mapped_column(String(36), ForeignKey("campaigns.uuid"), nullable=False)
    earnings_month: Mapped[int] = mapped_column(Integer, nullable=False)
    earnings_year: Mapped[int] = mapped_column(Integer, nullable=False)

    # Calculation snapshot
    views_generated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cpv_cents: Mapped[int] = mapped_column(Integer, nullable=False)  # per 100 views, at calculation time
    gross_earnings_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    platform_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    net_earnings_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    qualifies_for_payout: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Payout tracking
    payout_executed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payout_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payout_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    payout_transaction_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Audit of unsuccessful attempts
    payout_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_payout_attempt_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_payout_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_payout_error_category: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Transfer pinned before the first rail call. Replays send exactly these
    # parameters under the same key until the rail definitively refuses them.
    pending_transfer_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pending_transfer_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    pending_exchange_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    transfer_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    promoter = relationship("User", foreign_keys=[promoter_id])
    campaign = relationship("Campaign", foreign_keys=[campaign_id])
    attempts = relationship(
        "PayoutAttempt",
        back_populates="earnings_record",
        order_by="PayoutAttempt.created_at",
    )

    __table_args__ = (
        UniqueConstraint(
            "promoter_id", "campaign_id", "earnings_month", "earnings_year",
            name="uq_earnings_promoter_campaign_period",
        ),
        Index("idx_earnings_payout_eligibility", "qualifies_for_payout", "payout_executed"),
        Index("idx_earnings_period", "earnings_year", "earnings_month"),
        Index("idx_earnings_promoter_id", "promoter_id"),
    )

    @property
    def transfer_idempotency_key(self) -> str:
        return f"earnings-payout-{self.uuid}-{self.transfer_sequence}"

    @property
    def period_label(self) -> str:
        return f"{self.earnings_month:02d}/{self.earnings_year}"

    @property
    def gross_earnings_dollars(self) -> float:
        return self.gross_earnings_cents / 100

    @property
    def platform_fee_dollars(self) -> float:
        return self.platform_fee_cents / 100

    @property
    def net_earnings_dollars(self) -> float:
        return self.net_earnings_cents / 100

    @property
    def payout_amount_dollars(self) -> float | None:
        if self.payout_amount_cents is None:
            return None
        return self.payout_amount_cents / 100

    def __repr__(self) -> str:
        return (
            f"<CampaignEarningsRecord(uuid={self.uuid}, promoter_id={self.promoter_id}, "
            f"campaign_id={self.campaign_id}, period={self.earnings_month}/{self.earnings_year})>"
        )


CALCULATION_FIELDS = (
    "promoter_id",
    "campaign_id",
    "earnings_month",
    "earnings_year",
    "views_generated",
    "cpv_cents",
    "gross_earnings_cents",
    "platform_fee_cents",
    "net_earnings_cents",
    "qualifies_for_payout",
)

PAYOUT_FIELDS = (
    "payout_executed",
    "payout_amount_cents",
    "payout_date",
    "payout_transaction_ref",
    "payout_attempts",
    "last_payout_error",
    "last_payout_error_category",
)


@event.listens_for(CampaignEarningsRecord, "before_update")
def _guard_ledger_immutability(mapper, connection, target):
    """Reject ORM edits to calculated amounts, and to payout state once paid."""
    state = inspect(target)

    changed = [name for name in CALCULATION_FIELDS if state.attrs[name].history.has_changes()]
    if changed:
        raise LedgerImmutableError(target.uuid, changed)

    paid_history = state.attrs.payout_executed.history
    if paid_history.deleted:
        was_paid = bool(paid_history.deleted[0])
    else:
        was_paid = bool(target.payout_executed) and not paid_history.added
    if was_paid:
        changed = [name for name in PAYOUT_FIELDS if state.attrs[name].history.has_changes()]
        if changed:
            raise LedgerImmutableError(target.uuid, changed)
