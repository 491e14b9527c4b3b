"""Currency helpers and the process-wide FX rate cache.

Money is handled as integer minor units (cents) everywhere in the ledger.
Conversions go through ``FxRateCache.convert`` which rounds half-up once on
the exact product; dollar formatting only happens at presentation boundaries
via ``format_cents``.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from itertools import permutations
from typing import Callable, Dict, Iterable, Optional, Protocol, Tuple

import httpx

from app.config import settings
from app.services.exceptions import FxRateUnavailableError

logger = logging.getLogger(__name__)

# Used when the upstream source is down or has never answered for a pair.
FALLBACK_RATES: Dict[Tuple[str, str], float] = {
    ("USD", "CAD"): 1.38,
    ("CAD", "USD"): 1 / 1.38,
}


def round_half_up(value: Decimal) -> int:
    """Round an exact decimal amount of cents to the nearest whole cent."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_cents(amount_cents: int, currency: str) -> str:
    """Render integer cents for humans, e.g. ``format_cents(640, "USD") == "6.40 USD"``."""
    return f"{Decimal(amount_cents) / 100:.2f} {currency.upper()}"


@dataclass
class ExchangeRateCacheEntry:
    rate: float
    expires_at: datetime

    def is_fresh(self, now: datetime) -> bool:
        return self.expires_at > now


class RateSource(Protocol):
    async def fetch_rate(self, from_currency: str, to_currency: str) -> float:
        ...


class ExchangeRateHostSource:
    """Fetches conversion rates from an exchangerate.host compatible ``/convert`` API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = base_url or settings.FX_RATE_API_URL
        self.api_key = api_key if api_key is not None else settings.FX_RATE_API_KEY
        self.timeout = timeout or settings.FX_REQUEST_TIMEOUT_SECONDS

    async def fetch_rate(self, from_currency: str, to_currency: str) -> float:
        params = {"from": from_currency, "to": to_currency, "amount": 1}
        if self.api_key:
            params["access_key"] = self.api_key

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.base_url, params=params)
        except httpx.HTTPError as e:
            raise FxRateUnavailableError(f"FX rate request failed: {e}") from e

        if response.status_code != 200:
            raise FxRateUnavailableError(f"Failed to fetch FX rate: HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise FxRateUnavailableError("FX rate response was not valid JSON") from e

        result = data.get("result") if isinstance(data, dict) else None
        if not result:
            raise FxRateUnavailableError("No FX rate found in response")
        return float(result)


class FxRateCache:
    """TTL cache of conversion rates keyed by ordered currency pair.

    Owned by the service container; one instance per process. ``rate()`` never
    raises, ``refresh()`` surfaces upstream failures.
    """

    def __init__(
        self,
        source: RateSource,
        ttl: Optional[timedelta] = None,
        fallback_rates: Optional[Dict[Tuple[str, str], float]] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.source = source
        self.ttl = ttl or timedelta(hours=settings.FX_CACHE_TTL_HOURS)
        self.fallback_rates = dict(FALLBACK_RATES if fallback_rates is None else fallback_rates)
        self._clock = clock
        self._entries: Dict[Tuple[str, str], ExchangeRateCacheEntry] = {}

    @staticmethod
    def _pair(from_currency: str, to_currency: str) -> Tuple[str, str]:
        return from_currency.upper(), to_currency.upper()

    def entry(self, from_currency: str, to_currency: str) -> Optional[ExchangeRateCacheEntry]:
        return self._entries.get(self._pair(from_currency, to_currency))

    def is_fresh(self, from_currency: str, to_currency: str) -> bool:
        cached = self.entry(from_currency, to_currency)
        return cached is not None and cached.is_fresh(self._clock())

    def rate(self, from_currency: str, to_currency: str) -> float:
        """Cached rate, or the static fallback when the cache is cold or expired."""
        pair = self._pair(from_currency, to_currency)
        if pair[0] == pair[1]:
            return 1.0

        cached = self._entries.get(pair)
        if cached and cached.is_fresh(self._clock()):
            return cached.rate

        fallback = self.fallback_rates.get(pair)
        if fallback is None:
            logger.warning(f"No FX rate available for {pair[0]}->{pair[1]}, using 1.0")
            return 1.0
        return fallback

    async def refresh(self, from_currency: str, to_currency: str) -> float:
        """Fetch a fresh rate from upstream and cache it.

        On failure the existing entry (or the fallback) is left in place and
        ``FxRateUnavailableError`` is raised.
        """
        pair = self._pair(from_currency, to_currency)
        if pair[0] == pair[1]:
            return 1.0

        try:
            rate = await self.source.fetch_rate(*pair)
        except FxRateUnavailableError:
            raise
        except Exception as e:
            raise FxRateUnavailableError(f"FX rate source failed for {pair[0]}->{pair[1]}: {e}") from e

        if rate <= 0:
            raise FxRateUnavailableError(f"FX rate source returned non-positive rate {rate} for {pair[0]}->{pair[1]}")

        self._entries[pair] = ExchangeRateCacheEntry(rate=rate, expires_at=self._clock() + self.ttl)
        logger.info(f"Cached FX rate {pair[0]}->{pair[1]} = {rate}")
        return rate

    async def get_rate(self, from_currency: str, to_currency: str) -> float:
        """Rate for a conversion about to happen: refresh if stale, never raise."""
        pair = self._pair(from_currency, to_currency)
        if pair[0] != pair[1] and not self.is_fresh(*pair):
            try:
                await self.refresh(*pair)
            except FxRateUnavailableError as e:
                logger.warning(f"Using cached/fallback FX rate for {pair[0]}->{pair[1]}: {e}")
        return self.rate(*pair)

    async def initialize(self, currencies: Iterable[str]) -> None:
        """Pre-warm every ordered pair; install fallback entries for pairs that fail."""
        now = self._clock()
        for from_currency, to_currency in permutations(sorted({c.upper() for c in currencies}), 2):
            try:
                await self.refresh(from_currency, to_currency)
            except FxRateUnavailableError as e:
                logger.error(f"Failed to initialize FX rate {from_currency}->{to_currency}, using fallback: {e}")
                fallback = self.fallback_rates.get((from_currency, to_currency))
                if fallback is not None:
                    self._entries[(from_currency, to_currency)] = ExchangeRateCacheEntry(
                        rate=fallback, expires_at=now + self.ttl
                    )

    def convert(self, amount_cents: int, from_currency: str, to_currency: str) -> int:
        if from_currency.upper() == to_currency.upper():
            return amount_cents
        return convert_with_rate(amount_cents, self.rate(from_currency, to_currency))


def convert_with_rate(amount_cents: int, rate: float) -> int:
    return round_half_up(Decimal(amount_cents) * Decimal(str(rate)))
