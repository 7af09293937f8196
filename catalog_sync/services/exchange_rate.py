"""Exchange rate lookup with a TTL cache and a static fallback."""
import time
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

import httpx
import structlog

from catalog_sync.config import PricingSettings
from catalog_sync.errors import ConfigurationError

logger = structlog.get_logger(__name__)


class ExchangeRateProvider:
    """Provides the source -> destination currency rate.

    When a rate URL is configured the rate is fetched from it (a JSON body of
    the form {"rates": {"USD": 0.00075}}) and cached for the configured TTL.
    On fetch failure, or when no URL is set, the static configured rate is
    used. With neither available, ConfigurationError is raised.
    """

    def __init__(
        self,
        settings: PricingSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self._http = http_client
        self._clock = clock
        self._cached_rate: Optional[Decimal] = None
        self._cached_at: float = 0.0
        self._log = logger.bind(rate_key=settings.exchange_rate_key)

    def _static_rate(self) -> Decimal:
        if self.settings.exchange_rate is None:
            raise ConfigurationError(
                "No exchange rate available: set PRICING_EXCHANGE_RATE or PRICING_EXCHANGE_RATE_URL"
            )
        return Decimal(str(self.settings.exchange_rate))

    async def _fetch_rate(self) -> Decimal:
        url = self.settings.exchange_rate_url
        if self._http is not None:
            response = await self._http.get(url, timeout=10.0)
        else:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(url)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected rate response type {type(data).__name__}")
        rates = data.get("rates")
        if not isinstance(rates, dict):
            raise ValueError("Rate response has no \"rates\" object")
        raw = rates.get(self.settings.exchange_rate_key)
        if raw is None:
            raise ValueError(f"Rate key {self.settings.exchange_rate_key!r} missing from response")
        rate = Decimal(str(raw))
        if not rate.is_finite() or rate <= 0:
            raise ValueError(f"Invalid rate value {raw!r}")
        return rate

    async def get_rate(self) -> Decimal:
        """Return the current rate.

        Raises:
            ConfigurationError: If no URL and no static rate are configured,
                or the fetch fails with no static rate to fall back on
        """
        if not self.settings.exchange_rate_url:
            return self._static_rate()

        now = self._clock()
        if (
            self._cached_rate is not None
            and now - self._cached_at < self.settings.exchange_rate_ttl_seconds
        ):
            return self._cached_rate

        try:
            rate = await self._fetch_rate()
        except (httpx.HTTPError, ValueError, InvalidOperation) as e:
            self._log.warning("exchange_rate_fetch_failed", error=str(e))
            if self._cached_rate is not None:
                return self._cached_rate
            return self._static_rate()

        self._cached_rate = rate
        self._cached_at = now
        self._log.info("exchange_rate_refreshed", rate=str(rate))
        return rate
