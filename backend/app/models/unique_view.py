"""Unique view events recorded by promoter tracking links."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Text, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class UniqueView(Base):
    """One deduplicated visitor view attributed to a promoter on a campaign."""

    __tablename__ = "unique_views"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    campaign_id: Mapped[str] = mapped_column(String(36), ForeignKey("campaigns.uuid"), nullable=False)
    promoter_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(255), nullable=False)
    ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("campaign_id", "promoter_id", "fingerprint", name="uq_unique_view_fingerprint"),
        Index("idx_unique_view_campaign_id", "campaign_id"),
        Index("idx_unique_view_promoter_id", "promoter_id"),
        Index("idx_unique_view_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<UniqueView(uuid={self.uuid}, campaign_id={self.campaign_id}, promoter_id={self.promoter_id})>"
