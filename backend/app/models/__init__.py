"""Database models for the promoter payout ledger."""
from app.models.user import User
from app.models.campaign import Campaign, CampaignType
from app.models.unique_view import UniqueView
from app.models.earnings_record import CampaignEarningsRecord
from app.models.payout_attempt import PayoutAttempt
from app.models.notification import Notification

__all__ = [
    "User",
    "Campaign",
    "CampaignType",
    "UniqueView",
    "CampaignEarningsRecord",
    "PayoutAttempt",
    "Notification",
]
