"""
USD/THB exchange rate service.

Rates come from a prioritized list of sources behind a TTL cache:
fresh cache, then each source in turn, then the last cached value even if
expired, then a fixed fallback. get_current_rate never raises.
The rate is a display multiplier; stored transactions keep the rate they
were recorded with.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Generic, Iterable, List, Optional, TypeVar

import httpx
import yfinance as yf
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from config import get_settings
from models import CurrencyRate
from repositories import CurrencyRateRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TTLCache(Generic[T]):
    """
    Single-value cache with a time-to-live.

    The clock is injectable so expiry can be tested without sleeping.
    An expired value is still available through get_stale().
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._value: Optional[T] = None
        self._stored_at: Optional[float] = None

    def get(self) -> Optional[T]:
        """Return the value if it has not expired."""
        with self._lock:
            if self._stored_at is None:
                return None
            if self._clock() - self._stored_at >= self.ttl_seconds:
                return None
            return self._value

    def get_stale(self) -> Optional[T]:
        """Return the last value regardless of age."""
        with self._lock:
            return self._value

    def set(self, value: T) -> None:
        with self._lock:
            self._value = value
            self._stored_at = self._clock()

    def clear(self) -> None:
        with self._lock:
            self._value = None
            self._stored_at = None


@dataclass
class RateQuote:
    """A USD->THB rate and where it came from."""
    usd_thb: float
    last_updated: datetime = field(default_factory=datetime.now)
    source: str = ""
    is_fallback: bool = False


class RateSource(ABC):
    """One upstream for the USD/THB rate."""

    name: str = "source"

    @abstractmethod
    def fetch(self) -> Optional[RateQuote]:
        """Return the current rate, or None if the source had nothing usable."""


class _HttpRateSource(RateSource):
    URL = ""

    def __init__(self, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.timeout = timeout
        self._client = client

    def _get_json(self) -> Any:
        if self._client is not None:
            response = self._client.get(self.URL, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
            response = client.get(self.URL)
            response.raise_for_status()
            return response.json()


class OpenErApiRateSource(_HttpRateSource):
    """ExchangeRate-API open endpoint (no key)."""

    name = "open.er-api"
    URL = "https://open.er-api.com/v6/latest/USD"

    def fetch(self) -> Optional[RateQuote]:
        data = self._get_json()
        if data.get("result") != "success":
            return None
        rate = (data.get("rates") or {}).get("THB")
        if not rate or rate <= 0:
            return None
        return RateQuote(usd_thb=float(rate), source=self.name)


class FloatRatesRateSource(_HttpRateSource):
    """floatrates.com daily USD feed."""

    name = "floatrates"
    URL = "https://www.floatrates.com/daily/usd.json"

    def fetch(self) -> Optional[RateQuote]:
        data = self._get_json()
        rate = (data.get("thb") or {}).get("rate")
        if not rate or rate <= 0:
            return None
        return RateQuote(usd_thb=float(rate), source=self.name)


class YFinanceRateSource(RateSource):
    """Yahoo Finance FX ticker USDTHB=X."""

    name = "yfinance"
    TICKER = "USDTHB=X"

    @staticmethod
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(Exception),
        reraise=True
    )
    def _fetch_close(ticker_symbol: str) -> Optional[float]:
        """Fetch the last close with retry logic."""
        hist = yf.Ticker(ticker_symbol).history(period="1d")
        if hist.empty:
            return None
        return float(hist['Close'].iloc[-1])

    def fetch(self) -> Optional[RateQuote]:
        rate = self._fetch_close(self.TICKER)
        if not rate or rate <= 0:
            return None
        return RateQuote(usd_thb=rate, source=self.name)


def default_rate_sources(client: Optional[httpx.Client] = None) -> List[RateSource]:
    timeout = get_settings().http_timeout_seconds
    return [
        OpenErApiRateSource(timeout, client),
        FloatRatesRateSource(timeout, client),
        YFinanceRateSource(),
    ]


class ExchangeRateService:
    """Resolves the current USD/THB rate through sources, cache and fallback."""

    def __init__(
        self,
        sources: Optional[Iterable[RateSource]] = None,
        cache: Optional[TTLCache] = None,
        fallback_rate: Optional[float] = None
    ):
        settings = get_settings()
        self.sources: List[RateSource] = list(sources) if sources is not None else default_rate_sources()
        self.cache: TTLCache = cache if cache is not None else TTLCache(settings.rate_cache_ttl_seconds)
        self.fallback_rate = fallback_rate if fallback_rate is not None else settings.fallback_usd_thb_rate

    def get_current_rate(self) -> RateQuote:
        """
        Get the USD->THB rate.

        Returns:
            RateQuote from cache or a live source; a stale cached rate when all
            sources fail; the fallback constant when nothing was ever fetched
        """
        cached = self.cache.get()
        if cached is not None:
            return cached

        for source in self.sources:
            try:
                quote = source.fetch()
            except Exception as e:
                logger.warning(f"Exchange rate source {source.name} failed: {e}")
                continue
            if quote is not None:
                self.cache.set(quote)
                logger.info(f"USD/THB {quote.usd_thb:.4f} from {source.name}")
                return quote

        stale = self.cache.get_stale()
        if stale is not None:
            logger.warning("All exchange rate sources failed, using cached rate")
            return stale

        logger.error(f"All exchange rate sources failed, using fallback rate {self.fallback_rate}")
        return RateQuote(usd_thb=self.fallback_rate, source="fallback", is_fallback=True)


class CurrencyService:
    """
    Display-side currency handling.
    A manual override stored in CurrencyRate takes precedence over fetched rates.
    """

    def __init__(self, rate_service: Optional[ExchangeRateService] = None):
        self.rate_service = rate_service or ExchangeRateService()

    def get_rate(self) -> float:
        """Current display rate: the manual override if set, else the live rate."""
        stored = CurrencyRateRepository.get()
        if stored is not None and stored.is_manual:
            return stored.usd_thb
        return self.rate_service.get_current_rate().usd_thb

    def refresh(self) -> Optional[CurrencyRate]:
        """
        Fetch the live rate and persist it.

        Returns:
            The stored CurrencyRate, or None if a manual override is active or
            only the fallback constant was available
        """
        stored = CurrencyRateRepository.get()
        if stored is not None and stored.is_manual:
            logger.info("Manual USD/THB override active, skipping refresh")
            return None
        quote = self.rate_service.get_current_rate()
        if quote.is_fallback:
            return None
        return CurrencyRateRepository.save(quote.usd_thb, last_updated=quote.last_updated, is_manual=False)

    def set_manual_rate(self, usd_thb: float) -> CurrencyRate:
        if usd_thb <= 0:
            raise ValueError("Exchange rate must be positive")
        logger.info(f"Manual USD/THB override set to {usd_thb}")
        return CurrencyRateRepository.save(usd_thb, is_manual=True)

    def clear_manual_rate(self) -> Optional[CurrencyRate]:
        """Drop the override and store the live rate instead."""
        stored = CurrencyRateRepository.get()
        if stored is not None and stored.is_manual:
            CurrencyRateRepository.save(stored.usd_thb, last_updated=stored.last_updated, is_manual=False)
        return self.refresh()

    @staticmethod
    def convert_to_thb(usd: float, rate: float) -> float:
        return usd * rate

    @staticmethod
    def convert_to_usd(thb: float, rate: float) -> float:
        return thb / rate if rate else 0.0
