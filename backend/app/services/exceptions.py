"""Exceptions raised by the earnings ledger and payout pipeline."""
from typing import Iterable


class LedgerError(Exception):
    """Base class for earnings ledger errors."""


class LedgerConflictError(LedgerError):
    """An earnings record for this promoter, campaign and period already exists.

    Raised by the ledger's insert-if-absent when a concurrent calculation won
    the race. Callers treat it as success.
    """

    def __init__(self, promoter_id: str, campaign_id: str, month: int, year: int):
        self.promoter_id = promoter_id
        self.campaign_id = campaign_id
        self.month = month
        self.year = year
        super().__init__(
            f"Earnings record already exists for promoter {promoter_id} "
            f"in campaign {campaign_id} for {month}/{year}"
        )


class LedgerUnavailableError(LedgerError):
    """The ledger storage could not be reached. Fatal for the current run."""


class LedgerImmutableError(LedgerError):
    """Attempted to change fields of an earnings record that are frozen."""

    def __init__(self, record_id: str, fields: Iterable[str]):
        self.record_id = record_id
        self.fields = list(fields)
        super().__init__(
            f"Earnings record {record_id} is immutable; refused change to {', '.join(self.fields)}"
        )


class FxRateUnavailableError(Exception):
    """The upstream currency rate source failed to return a usable rate."""


class PayoutError(Exception):
    """A single ledger row could not be paid out. The row stays eligible."""

    category = "unexpected"

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(message)
        self.user_message = user_message


class PayoutAccountMissingError(PayoutError):
    """Promoter has no payout-capable external account."""

    category = "account_missing"


class TransferRejectedError(PayoutError):
    """The payment rail refused the transfer; needs action before a retry can succeed."""

    category = "rejected"


class TransientTransferError(PayoutError):
    """Connectivity, rate limit, provider outage or timeout. Retried next run."""

    category = "transient"


class TransferKeyConflictError(PayoutError):
    """The rail saw this idempotency key with different parameters.

    The earlier request under the key may have moved money, so the row keeps
    its pinned transfer and waits for manual review.
    """

    category = "key_conflict"


class OpenPeriodError(ValueError):
    """A billing period that has not ended yet cannot be calculated."""

    def __init__(self, month: int, year: int):
        self.month = month
        self.year = year
        super().__init__(f"Billing period {month:02d}/{year} is still open")
