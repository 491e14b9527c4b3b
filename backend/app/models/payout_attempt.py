"""Append-only audit trail of payout attempts against ledger rows."""
from datetime import datetime
from uuid import uuid4

from sqlalchemy import String, Integer, Float, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class PayoutAttempt(Base):
    """One attempt to pay out a ``CampaignEarningsRecord``.

    ``amount_cents``/``currency`` are the ledger values (campaign currency);
    ``transfer_amount_cents``/``transfer_currency`` are what was sent to the
    payment rail after conversion.
    """
    __tablename__ = "payout_attempts"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    earnings_record_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("campaign_earnings_records.uuid"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # "succeeded", "failed"
    error_category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    transfer_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    transfer_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    exchange_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    transfer_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    earnings_record = relationship("CampaignEarningsRecord", back_populates="attempts")

    __table_args__ = (
        Index("idx_payout_attempt_record_id", "earnings_record_id"),
    )

    def __repr__(self) -> str:
        return f"<PayoutAttempt(uuid={self.uuid}, record={self.earnings_record_id}, status={self.status})>"
