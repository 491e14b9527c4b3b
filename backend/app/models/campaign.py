"""Campaign model (rate card and ledger currency)."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Integer, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.database import Base


class CampaignType:
    VISIBILITY = "VISIBILITY"
    CONSULTANT = "CONSULTANT"
    SELLER = "SELLER"
    SALESMAN = "SALESMAN"


class Campaign(Base):
    """Advertiser campaign.

    Only ``VISIBILITY`` campaigns are billed per view. ``cpv_cents`` is the
    rate per 100 views in the campaign's ``currency``.
    """

    __tablename__ = "campaigns"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    advertiser_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False)
    campaign_type: Mapped[str] = mapped_column(String(50), nullable=False, default=CampaignType.VISIBILITY)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="active")
    cpv_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    advertiser = relationship("User", foreign_keys=[advertiser_id])

    __table_args__ = (
        Index("idx_campaign_advertiser_id", "advertiser_id"),
        Index("idx_campaign_type", "campaign_type"),
    )

    def __repr__(self) -> str:
        return f"<Campaign(uuid={self.uuid}, title={self.title}, type={self.campaign_type})>"
