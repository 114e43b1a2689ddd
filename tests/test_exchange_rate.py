"""Tests for services/exchange_rate.py."""

from typing import List, Optional

import httpx
import pytest

from repositories import CurrencyRateRepository
from services.exchange_rate import (
    CurrencyService,
    ExchangeRateService,
    FloatRatesRateSource,
    OpenErApiRateSource,
    RateQuote,
    RateSource,
    TTLCache,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class ScriptedSource(RateSource):
    """Returns the queued results in order; exceptions are raised."""

    def __init__(self, name: str, results: List):
        self.name = name
        self.results = list(results)
        self.calls = 0

    def fetch(self) -> Optional[RateQuote]:
        self.calls += 1
        result = self.results.pop(0) if self.results else None
        if isinstance(result, Exception):
            raise result
        if result is None:
            return None
        return RateQuote(usd_thb=result, source=self.name)


def _client(payload, status: int = 200) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(status, json=payload)))


class TestTTLCache:

    def test_expires_after_ttl(self) -> None:
        clock = FakeClock()
        cache = TTLCache(60, clock=clock)
        cache.set("value")

        clock.now += 59
        assert cache.get() == "value"

        clock.now += 1
        assert cache.get() is None
        assert cache.get_stale() == "value"

    def test_clear(self) -> None:
        cache = TTLCache(60, clock=FakeClock())
        cache.set(1)
        cache.clear()

        assert cache.get() is None
        assert cache.get_stale() is None


class TestExchangeRateService:

    def test_first_working_source_wins_and_is_cached(self) -> None:
        first = ScriptedSource("first", [RuntimeError("timeout")])
        second = ScriptedSource("second", [36.2])
        third = ScriptedSource("third", [99.0])
        service = ExchangeRateService([first, second, third], cache=TTLCache(3600, clock=FakeClock()))

        quote = service.get_current_rate()
        again = service.get_current_rate()

        assert quote.usd_thb == 36.2
        assert quote.source == "second"
        assert again is quote
        assert (first.calls, second.calls, third.calls) == (1, 1, 0)

    def test_refetches_after_expiry(self) -> None:
        clock = FakeClock()
        source = ScriptedSource("only", [36.0, 36.5])
        service = ExchangeRateService([source], cache=TTLCache(3600, clock=clock))

        assert service.get_current_rate().usd_thb == 36.0
        clock.now += 3600
        assert service.get_current_rate().usd_thb == 36.5

    def test_stale_cache_beats_fallback(self) -> None:
        clock = FakeClock()
        source = ScriptedSource("only", [36.0, RuntimeError("down")])
        service = ExchangeRateService([source], cache=TTLCache(60, clock=clock))
        service.get_current_rate()
        clock.now += 120

        quote = service.get_current_rate()

        assert quote.usd_thb == 36.0
        assert not quote.is_fallback

    def test_fallback_when_nothing_was_ever_fetched(self) -> None:
        service = ExchangeRateService([ScriptedSource("dead", [RuntimeError("down")])], cache=TTLCache(60))

        quote = service.get_current_rate()

        assert quote.usd_thb == 34.5
        assert quote.is_fallback
        assert quote.source == "fallback"


class TestHttpSources:

    def test_open_er_api(self) -> None:
        client = _client({"result": "success", "rates": {"THB": 32.41, "EUR": 0.86}})

        quote = OpenErApiRateSource(client=client).fetch()

        assert quote.usd_thb == 32.41
        assert quote.source == "open.er-api"

    def test_open_er_api_error_result(self) -> None:
        client = _client({"result": "error", "error-type": "unsupported-code"})

        assert OpenErApiRateSource(client=client).fetch() is None

    def test_floatrates(self) -> None:
        client = _client({"thb": {"code": "THB", "rate": 32.5}})

        assert FloatRatesRateSource(client=client).fetch().usd_thb == 32.5

    def test_http_failure_raises(self) -> None:
        with pytest.raises(httpx.HTTPStatusError):
            FloatRatesRateSource(client=_client({}, status=503)).fetch()


class TestCurrencyService:

    def _service(self, *rates) -> CurrencyService:
        source = ScriptedSource("static", list(rates))
        return CurrencyService(ExchangeRateService([source], cache=TTLCache(0)))

    def test_live_rate_without_override(self) -> None:
        assert self._service(36.1).get_rate() == 36.1

    def test_manual_override_wins(self) -> None:
        service = self._service(36.1, 36.1)
        service.set_manual_rate(33.0)

        assert service.get_rate() == 33.0
        assert service.refresh() is None
        assert CurrencyRateRepository.get().usd_thb == 33.0

    def test_refresh_persists_live_rate(self) -> None:
        stored = self._service(36.4).refresh()

        assert stored.usd_thb == 36.4
        assert stored.is_manual is False
        assert CurrencyRateRepository.get().usd_thb == 36.4

    def test_refresh_does_not_store_fallback(self) -> None:
        assert self._service(RuntimeError("down")).refresh() is None
        assert CurrencyRateRepository.get() is None

    def test_clear_manual_rate(self) -> None:
        service = self._service(36.8)
        service.set_manual_rate(33.0)

        stored = service.clear_manual_rate()

        assert stored.usd_thb == 36.8
        assert CurrencyRateRepository.get().is_manual is False

    def test_manual_rate_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            self._service().set_manual_rate(0)

    def test_conversions(self) -> None:
        assert CurrencyService.convert_to_thb(100.0, 35.0) == 3500.0
        assert CurrencyService.convert_to_usd(3500.0, 35.0) == 100.0
        assert CurrencyService.convert_to_usd(1.0, 0) == 0.0
