"""Read-only aggregation of unique views into per-promoter, per-campaign tallies."""
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.campaign import Campaign, CampaignType
from app.models.unique_view import UniqueView
from app.services.billing_period import BillingPeriod


@dataclass(frozen=True)
class ViewTally:
    promoter_id: str
    campaign_id: str
    view_count: int
    cpv_cents: int  # campaign rate at query time, per 100 views
    month: int
    year: int


class ViewAggregator:
    """Counts unique views per (promoter, campaign) for views-billed campaigns.

    Views are counted as stored; deduplication happens when they are recorded.
    """

    def _build_query(self, period: BillingPeriod, campaign_id: Optional[str] = None):
        start, end = period.bounds()
        query = (
            select(
                UniqueView.promoter_id,
                UniqueView.campaign_id,
                func.count(UniqueView.uuid).label("view_count"),
                Campaign.cpv_cents,
            )
            .join(Campaign, Campaign.uuid == UniqueView.campaign_id)
            .where(
                Campaign.campaign_type == CampaignType.VISIBILITY,
                Campaign.cpv_cents.is_not(None),
                UniqueView.created_at >= start,
                UniqueView.created_at < end,
            )
            .group_by(UniqueView.promoter_id, UniqueView.campaign_id, Campaign.cpv_cents)
            .order_by(UniqueView.campaign_id, UniqueView.promoter_id)
        )
        if campaign_id is not None:
            query = query.where(UniqueView.campaign_id == campaign_id)
        return query

    async def query_views_for_period(
        self,
        db: AsyncSession,
        month: int,
        year: int,
        campaign_id: Optional[str] = None,
    ) -> AsyncIterator[ViewTally]:
        """Yield one ``ViewTally`` per pair with at least one view in the period."""
        period = BillingPeriod(month, year)
        result = await db.execute(self._build_query(period, campaign_id))

        for row in result:
            yield ViewTally(
                promoter_id=row.promoter_id,
                campaign_id=row.campaign_id,
                view_count=int(row.view_count),
                cpv_cents=int(row.cpv_cents),
                month=period.month,
                year=period.year,
            )
