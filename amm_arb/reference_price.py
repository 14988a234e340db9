"""
Reference price of the settlement asset in quote currency (USD).

Used only to display net profit in quote currency. A missing or stale
reference never blocks opportunity detection.
"""

import asyncio
import time
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

import aiohttp

from .config import ReferencePriceSettings
from .utils import get_logger

logger = get_logger(__name__)

COINGECKO_SIMPLE_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"


class ReferencePriceFeed:
    """
    Fetches and caches the settlement asset's quote-currency price.

    Static sources always return the configured price. CoinGecko sources are
    refreshed at most once per ``ttl_sec``; when a refresh fails the last
    known price is kept and reported as stale.
    """

    def __init__(
        self,
        settings: ReferencePriceSettings,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self._clock = clock
        self._price: Optional[Decimal] = settings.static_price
        self._fetched_at: Optional[float] = None
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def price(self) -> Optional[Decimal]:
        return self._price

    @property
    def age(self) -> Optional[float]:
        if self._fetched_at is None:
            return None
        return self._clock() - self._fetched_at

    @property
    def is_stale(self) -> bool:
        if self.settings.source == "static":
            return False
        age = self.age
        return age is None or age >= self.settings.ttl_sec

    async def refresh(self) -> Optional[Decimal]:
        """
        Refresh the price if the cached one has expired.

        Returns:
            The current (possibly stale) price, or None if never fetched
        """
        if self.settings.source == "static" or not self.is_stale:
            return self._price

        try:
            price = await self._fetch_coingecko()
        except (
            aiohttp.ClientError,
            asyncio.TimeoutError,
            InvalidOperation,
            KeyError,
            TypeError,
            ValueError,
        ) as e:
            if self._price is not None:
                logger.warning(
                    f"Reference price refresh failed, keeping stale value {self._price}: {e}"
                )
            else:
                logger.warning(f"Reference price unavailable: {e}")
            return self._price

        self._price = price
        self._fetched_at = self._clock()
        logger.debug(
            f"Reference price {self.settings.coingecko_id}="
            f"{price} {self.settings.vs_currency}"
        )
        return price

    async def _fetch_coingecko(self) -> Decimal:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.timeout_sec)
            )
        params = {
            "ids": self.settings.coingecko_id,
            "vs_currencies": self.settings.vs_currency,
        }
        async with self._session.get(COINGECKO_SIMPLE_PRICE_URL, params=params) as resp:
            resp.raise_for_status()
            data = await resp.json()

        value = data[self.settings.coingecko_id][self.settings.vs_currency]
        price = Decimal(str(value))
        if price <= 0:
            raise ValueError(f"Non-positive reference price: {value}")
        return price

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
