"""
Stock quote providers.

Each data source is wrapped in a QuoteProvider adapter. A QuoteProviderChain
tries adapters in priority order and the first one that returns a quote wins,
so which sources are available is decided once when the chain is built.
Enhanced with tenacity for retry logic on yfinance calls.
"""

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import httpx
import yfinance as yf
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class Quote:
    """Latest market data for one symbol (USD)."""
    symbol: str
    current_price: float
    company_name: str = ""
    change: float = 0.0
    change_percent: float = 0.0
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    previous_close: float = 0.0
    volume: float = 0.0
    last_updated: datetime = field(default_factory=datetime.now)
    source: str = ""


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value) if value is not None and value != "" else default
    except (TypeError, ValueError):
        return default


class QuoteProvider(ABC):
    """A single quote source."""

    name: str = "provider"

    @abstractmethod
    def get_quote(self, symbol: str) -> Optional[Quote]:
        """Return a quote, or None when the source has no price for the symbol."""


class YFinanceQuoteProvider(QuoteProvider):
    """Quotes from Yahoo Finance through yfinance."""

    name = "yfinance"

    @staticmethod
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(Exception),
        reraise=True
    )
    def _fetch_ticker_info(symbol: str) -> Dict:
        """Fetch ticker info with retry logic."""
        ticker = yf.Ticker(symbol)
        return ticker.info

    def get_quote(self, symbol: str) -> Optional[Quote]:
        info = self._fetch_ticker_info(symbol)
        price = info.get('currentPrice') or info.get('regularMarketPrice') or info.get('lastPrice')
        if not price:
            return None

        price = float(price)
        previous_close = _to_float(info.get('previousClose') or info.get('regularMarketPreviousClose'), price)
        change = price - previous_close
        return Quote(
            symbol=symbol,
            company_name=info.get('longName') or info.get('shortName') or symbol,
            current_price=price,
            change=change,
            change_percent=(change / previous_close * 100) if previous_close > 0 else 0.0,
            open=_to_float(info.get('open') or info.get('regularMarketOpen'), previous_close),
            high=_to_float(info.get('dayHigh') or info.get('regularMarketDayHigh')),
            low=_to_float(info.get('dayLow') or info.get('regularMarketDayLow')),
            previous_close=previous_close,
            volume=_to_float(info.get('volume') or info.get('regularMarketVolume')),
            source=self.name,
        )


class _HttpQuoteProvider(QuoteProvider):
    """Shared plumbing for key-authenticated JSON APIs."""

    BASE_URL = ""

    def __init__(self, api_key: str, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        if not api_key:
            raise ValueError(f"{self.name} requires an API key")
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        if self._client is not None:
            response = self._client.get(f"{self.BASE_URL}{path}", params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        with httpx.Client(timeout=self.timeout) as client:
            response = client.get(f"{self.BASE_URL}{path}", params=params)
            response.raise_for_status()
            return response.json()


class FinnhubQuoteProvider(_HttpQuoteProvider):
    """Quotes from the Finnhub /quote endpoint."""

    name = "finnhub"
    BASE_URL = "https://finnhub.io/api/v1"

    def get_quote(self, symbol: str) -> Optional[Quote]:
        data = self._get_json("/quote", {"symbol": symbol, "token": self.api_key})
        # Finnhub answers unknown symbols with an all-zero payload
        price = _to_float((data or {}).get("c"))
        if price <= 0:
            return None
        return Quote(
            symbol=symbol,
            current_price=price,
            change=_to_float(data.get("d")),
            change_percent=_to_float(data.get("dp")),
            open=_to_float(data.get("o")),
            high=_to_float(data.get("h")),
            low=_to_float(data.get("l")),
            previous_close=_to_float(data.get("pc")),
            source=self.name,
        )


class AlphaVantageQuoteProvider(_HttpQuoteProvider):
    """Quotes from the Alpha Vantage GLOBAL_QUOTE function."""

    name = "alpha_vantage"
    BASE_URL = "https://www.alphavantage.co"

    def get_quote(self, symbol: str) -> Optional[Quote]:
        data = self._get_json("/query", {"function": "GLOBAL_QUOTE", "symbol": symbol, "apikey": self.api_key})
        quote = (data or {}).get("Global Quote") or {}
        price = _to_float(quote.get("05. price"))
        if price <= 0:
            return None
        return Quote(
            symbol=symbol,
            current_price=price,
            change=_to_float(quote.get("09. change")),
            change_percent=_to_float(str(quote.get("10. change percent", "")).rstrip("%")),
            open=_to_float(quote.get("02. open")),
            high=_to_float(quote.get("03. high")),
            low=_to_float(quote.get("04. low")),
            previous_close=_to_float(quote.get("08. previous close")),
            volume=_to_float(quote.get("06. volume")),
            source=self.name,
        )


class QuoteProviderChain(QuoteProvider):
    """
    Tries providers in order; the first quote returned wins.
    Provider errors are logged and the next provider is tried.
    """

    name = "chain"

    def __init__(self, providers: Iterable[QuoteProvider]):
        self.providers: List[QuoteProvider] = list(providers)

    def get_quote(self, symbol: str) -> Optional[Quote]:
        symbol = symbol.strip().upper()
        for provider in self.providers:
            try:
                quote = provider.get_quote(symbol)
            except Exception as e:
                logger.warning(f"{provider.name} failed for {symbol}: {e}")
                continue
            if quote is not None:
                return quote
        logger.error(f"No quote available for {symbol}")
        return None


def build_quote_chain(settings: Optional[Settings] = None, client: Optional[httpx.Client] = None) -> QuoteProviderChain:
    """Assemble the provider chain from whichever API keys are configured."""
    settings = settings or get_settings()
    providers: List[QuoteProvider] = []
    if settings.is_finnhub_configured:
        providers.append(FinnhubQuoteProvider(settings.finnhub_api_key, settings.http_timeout_seconds, client))
    if settings.is_alpha_vantage_configured:
        providers.append(AlphaVantageQuoteProvider(settings.alpha_vantage_api_key, settings.http_timeout_seconds, client))
    providers.append(YFinanceQuoteProvider())
    logger.info(f"Quote providers: {', '.join(p.name for p in providers)}")
    return QuoteProviderChain(providers)


def get_multiple_quotes(
    provider: QuoteProvider,
    symbols: Iterable[str],
    batch_size: Optional[int] = None
) -> Dict[str, Quote]:
    """
    Fetch quotes for many symbols, a batch at a time.

    Args:
        provider: Provider or chain to query
        symbols: Ticker symbols (duplicates are fetched once)
        batch_size: Concurrent requests per batch (defaults to settings)

    Returns:
        Map of symbol to quote; symbols that failed are absent
    """
    batch_size = max(1, batch_size or get_settings().quote_batch_size)
    unique = list(dict.fromkeys(s.strip().upper() for s in symbols if s and s.strip()))
    results: Dict[str, Quote] = {}

    for start in range(0, len(unique), batch_size):
        batch = unique[start:start + batch_size]
        with ThreadPoolExecutor(max_workers=len(batch)) as executor:
            future_to_symbol = {executor.submit(provider.get_quote, symbol): symbol for symbol in batch}
            for future in as_completed(future_to_symbol):
                symbol = future_to_symbol[future]
                try:
                    quote = future.result()
                except Exception as e:
                    logger.warning(f"Quote fetch failed for {symbol}: {e}")
                    continue
                if quote is not None:
                    results[symbol] = quote

    return results


class QuoteBoard:
    """
    Latest-wins quote cache.

    Every refresh of a symbol gets a larger request id. A response is
    applied only if no later request for that symbol has already been
    applied, so a slow response can never overwrite a newer price.
    """

    def __init__(self, provider: QuoteProvider):
        self.provider = provider
        self._lock = threading.Lock()
        self._next_request_id = 0
        self._applied: Dict[str, int] = {}
        self._quotes: Dict[str, Quote] = {}

    def begin(self, symbol: str) -> int:
        """Reserve a request id for a refresh of symbol."""
        with self._lock:
            self._next_request_id += 1
            return self._next_request_id

    def apply(self, symbol: str, request_id: int, quote: Optional[Quote]) -> bool:
        """Store a response unless a later one is already in place. Returns True if stored."""
        if quote is None:
            return False
        symbol = symbol.upper()
        with self._lock:
            if request_id <= self._applied.get(symbol, 0):
                logger.debug(f"Discarding stale quote for {symbol} (request {request_id})")
                return False
            self._applied[symbol] = request_id
            self._quotes[symbol] = quote
            return True

    def refresh(self, symbols: Iterable[str], batch_size: Optional[int] = None) -> Dict[str, Quote]:
        """Fetch and apply quotes; returns the quotes that were applied."""
        symbols = list(dict.fromkeys(s.strip().upper() for s in symbols if s and s.strip()))
        request_ids = {symbol: self.begin(symbol) for symbol in symbols}
        fetched = get_multiple_quotes(self.provider, symbols, batch_size)
        applied = {}
        for symbol, request_id in request_ids.items():
            quote = fetched.get(symbol)
            if quote is not None and self.apply(symbol, request_id, quote):
                applied[symbol] = quote
        return applied

    def get(self, symbol: str) -> Optional[Quote]:
        with self._lock:
            return self._quotes.get(symbol.upper())

    def snapshot(self) -> Dict[str, Quote]:
        with self._lock:
            return dict(self._quotes)
