"""
Live exchange rates.

Groups in realtime-rate mode use the current USD->THB rate instead of
the rate stored in their settings. The rate comes from the public
exchangerate-api.com endpoint and is cached for a few minutes so a busy
group does not fetch on every message.
"""

import time
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

import httpx

from ledger_bot.config import get_settings
from ledger_bot.telegram_bot.logging_config import bot_logger as logger

TIMEOUT_SECONDS = 10.0


class ExchangeRateClient:
    """THB per USD from exchangerate-api.com, cached."""

    def __init__(
        self,
        api_url: str,
        cache_seconds: int = 300,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_url = api_url
        self.cache_seconds = cache_seconds
        self.transport = transport
        self.clock = clock
        self._cached: Optional[Decimal] = None
        self._fetched_at: Optional[float] = None

    async def usd_thb(self) -> Optional[Decimal]:
        """
        Current THB per USD.

        Never raises: a failed fetch is logged and returns None so the
        caller keeps the group's stored rate.
        """
        now = self.clock()
        if self._cached is not None and now - self._fetched_at < self.cache_seconds:
            return self._cached

        try:
            async with httpx.AsyncClient(timeout=TIMEOUT_SECONDS, transport=self.transport) as client:
                response = await client.get(self.api_url)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Exchange rate fetch failed: {e}")
            return None

        try:
            rate = Decimal(str(data["rates"]["THB"]))
        except (KeyError, TypeError, InvalidOperation) as e:
            logger.warning(f"Exchange rate response has no THB rate: {e}")
            return None
        if rate <= 0:
            logger.warning(f"Exchange rate response has non-positive THB rate: {rate}")
            return None

        logger.info(f"Live exchange rate: 1 USD = {rate} THB")
        self._cached = rate
        self._fetched_at = now
        return rate


# Singleton instance
_exchange_rate_client: Optional[ExchangeRateClient] = None


def get_exchange_rate_client() -> ExchangeRateClient:
    global _exchange_rate_client
    if _exchange_rate_client is None:
        settings = get_settings()
        _exchange_rate_client = ExchangeRateClient(
            api_url=settings.exchange_rate_api_url,
            cache_seconds=settings.exchange_rate_cache_seconds,
        )
    return _exchange_rate_client
