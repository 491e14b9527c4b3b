"""Calendar-month billing periods."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple


@dataclass(frozen=True)
class BillingPeriod:
    month: int
    year: int

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be between 1 and 12, got {self.month}")
        if self.year < 1970:
            raise ValueError(f"year out of range: {self.year}")

    @classmethod
    def containing(cls, moment: datetime, offset_months: int = 0) -> "BillingPeriod":
        """Period holding ``moment``, shifted back by ``offset_months``."""
        index = moment.year * 12 + (moment.month - 1) - offset_months
        return cls(month=index % 12 + 1, year=index // 12)

    @classmethod
    def current(cls, now: Optional[datetime] = None, offset_months: int = 0) -> "BillingPeriod":
        return cls.containing(now or datetime.utcnow(), offset_months)

    def previous(self) -> "BillingPeriod":
        return BillingPeriod.containing(datetime(self.year, self.month, 1), 1)

    def next(self) -> "BillingPeriod":
        return BillingPeriod.containing(datetime(self.year, self.month, 1), -1)

    def bounds(self) -> Tuple[datetime, datetime]:
        """Half-open ``[start, end)`` UTC range of the month."""
        following = self.next()
        return datetime(self.year, self.month, 1), datetime(following.year, following.month, 1)

    def is_closed(self, now: datetime) -> bool:
        """True once ``now`` is past the end of the month."""
        return self.bounds()[1] <= now

    def __str__(self) -> str:
        return f"{self.month:02d}/{self.year}"
