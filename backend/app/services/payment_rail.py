"""Stripe Connect funds-transfer rail for promoter payouts."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import stripe

from app.config import settings
from app.models.user import User
from app.schemas.payouts import TransferMetadata
from app.services.exceptions import (
    PayoutAccountMissingError,
    PayoutError,
    TransferKeyConflictError,
    TransferRejectedError,
    TransientTransferError,
)

logger = logging.getLogger(__name__)

# Configure Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY

VERIFY_ACCOUNT_MESSAGE = "Your payout could not be sent. Please verify your payout account setup."

# Errors the provider will keep returning until someone fixes the account or request.
_REJECTED_ERRORS = (
    stripe.InvalidRequestError,
    stripe.PermissionError,
    stripe.AuthenticationError,
    stripe.CardError,
)

# Errors worth retrying on the next scheduled run.
_TRANSIENT_ERRORS = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)


@dataclass(frozen=True)
class TransferResult:
    transfer_ref: str
    status: str


def categorize_stripe_error(error: stripe.StripeError) -> PayoutError:
    """Map a provider error onto the retry-vs-fatal payout taxonomy."""
    if isinstance(error, stripe.IdempotencyError):
        return TransferKeyConflictError(f"Idempotency key reused with different parameters: {error}")
    if isinstance(error, _REJECTED_ERRORS):
        return TransferRejectedError(
            f"Transfer failed: {getattr(error, 'user_message', None) or error}",
            user_message=VERIFY_ACCOUNT_MESSAGE,
        )
    if isinstance(error, _TRANSIENT_ERRORS):
        return TransientTransferError(f"Transient Stripe error: {error}")
    return TransientTransferError(f"Unexpected Stripe error: {error}")


class StripePayoutRail:
    """Account capability lookup and transfers on Stripe Connect.

    Stripe's client is blocking, so each call runs in a worker thread with
    its own timeout; a timeout counts as a transient failure for the row.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout or settings.STRIPE_REQUEST_TIMEOUT_SECONDS

    async def _call(self, func, *args, **kwargs):
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args, **kwargs), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise TransientTransferError(f"Stripe request timed out after {self.timeout}s") from e

    def resolve_destination_ref(self, promoter: User) -> str:
        if not promoter.stripe_connect_account_id:
            raise PayoutAccountMissingError(
                f"Promoter {promoter.uuid} does not have a Stripe account configured",
                user_message="Connect a payout account to receive your campaign earnings.",
            )
        return promoter.stripe_connect_account_id

    async def is_payout_capable(self, promoter: User) -> bool:
        """True when the promoter's Connect account can receive transfers and pay out."""
        if not promoter.stripe_connect_account_id:
            return False

        try:
            account = await self._call(stripe.Account.retrieve, promoter.stripe_connect_account_id)
        except _REJECTED_ERRORS as e:
            logger.warning(
                f"Stripe account {promoter.stripe_connect_account_id} for promoter {promoter.uuid} "
                f"could not be retrieved: {e}"
            )
            return False
        except stripe.StripeError as e:
            raise categorize_stripe_error(e) from e

        capabilities = account.get("capabilities") or {}
        return bool(account.get("payouts_enabled")) and capabilities.get("transfers") == "active"

    async def transfer(
        self,
        destination: str,
        amount_minor_units: int,
        currency: str,
        description: str,
        metadata: TransferMetadata,
        idempotency_key: Optional[str] = None,
    ) -> TransferResult:
        if amount_minor_units <= 0:
            raise TransferRejectedError(f"Transfer amount must be positive, got {amount_minor_units}")

        try:
            transfer = await self._call(
                stripe.Transfer.create,
                amount=amount_minor_units,
                currency=currency.lower(),
                destination=destination,
                description=description,
                metadata=metadata.to_stripe(),
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            raise categorize_stripe_error(e) from e

        status = "reversed" if transfer.get("reversed") else "succeeded"
        logger.info(
            f"Created Stripe transfer {transfer['id']} of {amount_minor_units} {currency.upper()} to {destination}"
        )
        return TransferResult(transfer_ref=transfer["id"], status=status)
