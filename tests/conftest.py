"""Pytest configuration.

Every test gets its own SQLite file and fresh settings, so tests never
share database state. No test touches the network: providers are faked or
driven through httpx.MockTransport.
"""

import pytest

from config import reload_settings
from db_engine import init_db, reset_engine
from services.portfolio import PortfolioService


@pytest.fixture(autouse=True)
def isolated_database(tmp_path, monkeypatch):
    """Point the engine at a temporary database for the duration of a test."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    monkeypatch.delenv("FINNHUB_API_KEY", raising=False)
    monkeypatch.delenv("ALPHA_VANTAGE_API_KEY", raising=False)
    monkeypatch.delenv("DEFAULT_EXCHANGE_RATE", raising=False)
    reset_engine()
    reload_settings()
    init_db()
    yield
    reset_engine()


@pytest.fixture
def portfolio():
    return PortfolioService.create_portfolio("Main", "Long-term US stocks")
