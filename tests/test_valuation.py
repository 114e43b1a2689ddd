"""Tests for services/valuation.py."""

from datetime import date

import pytest

from models import Holding
from services.quotes import Quote
from services.valuation import (
    realized_by_symbol,
    realized_currency_pnl,
    realized_frame,
    summarize_realized,
    valuation_frame,
    value_holding,
    value_portfolio,
)
from tests.factories import buy, sell


def _holding(symbol: str, shares: float, avg_cost: float, rate: float) -> Holding:
    return Holding(portfolio_id="p1", symbol=symbol, shares=shares, avg_cost=avg_cost, avg_exchange_rate=rate)


class TestValueHolding:

    def test_splits_stock_and_currency_pnl(self) -> None:
        row = value_holding(_holding("NVDA", 10, 100.0, 35.0), current_price=120.0, current_rate=36.0)

        assert row.cost_usd == pytest.approx(1000.0)
        assert row.cost_thb == pytest.approx(35000.0)
        assert row.value_usd == pytest.approx(1200.0)
        assert row.value_thb == pytest.approx(43200.0)
        assert row.stock_pnl_usd == pytest.approx(200.0)
        assert row.stock_pnl_thb == pytest.approx(7200.0)
        assert row.currency_pnl_thb == pytest.approx(1000.0)
        assert row.total_pnl_thb == pytest.approx(8200.0)
        assert row.stock_pnl_percent == pytest.approx(20.0)

    def test_currency_loss_when_baht_strengthens(self) -> None:
        row = value_holding(_holding("NVDA", 10, 100.0, 35.0), current_price=100.0, current_rate=33.0)

        assert row.stock_pnl_usd == 0
        assert row.currency_pnl_thb == pytest.approx(-2000.0)
        assert row.total_pnl_thb == pytest.approx(-2000.0)


class TestValuePortfolio:

    def test_totals_and_missing_quote(self) -> None:
        holdings = [
            _holding("NVDA", 10, 100.0, 35.0),
            _holding("AAPL", 2, 200.0, 34.0),
            _holding("GONE", 0, 0.0, 35.0),
        ]
        quotes = {"NVDA": Quote(symbol="NVDA", current_price=120.0, change=2.0)}

        valuation = value_portfolio(holdings, quotes, current_rate=36.0)

        assert [row.symbol for row in valuation.holdings] == ["NVDA", "AAPL"]
        aapl = valuation.holdings[1]
        assert aapl.current_price_usd == 200.0
        assert valuation.total_cost_usd == pytest.approx(1400.0)
        assert valuation.total_value_usd == pytest.approx(1600.0)
        assert valuation.total_cost_thb == pytest.approx(35000.0 + 13600.0)
        assert valuation.total_value_thb == pytest.approx(1600.0 * 36.0)
        assert valuation.total_pnl_thb == pytest.approx(57600.0 - 48600.0)
        assert valuation.today_change_usd == pytest.approx(20.0)
        assert valuation.today_change_thb == pytest.approx(720.0)

    def test_empty_portfolio(self) -> None:
        valuation = value_portfolio([], {}, current_rate=35.0)

        assert valuation.holdings == []
        assert valuation.total_pnl_percent == 0.0

    def test_frame_is_sorted_by_value(self) -> None:
        valuation = value_portfolio(
            [_holding("AAPL", 1, 200.0, 35.0), _holding("NVDA", 10, 100.0, 35.0)],
            {},
            current_rate=35.0,
        )

        df = valuation_frame(valuation)

        assert list(df.index) == ["NVDA", "AAPL"]
        assert df["weight_percent"].sum() == pytest.approx(100.0)
        assert df.loc["NVDA", "weight_percent"] == pytest.approx(1000 / 1200 * 100)

    def test_empty_frame(self) -> None:
        df = valuation_frame(value_portfolio([], {}, current_rate=35.0))

        assert df.empty
        assert "value_thb" in df.columns


class TestRealizedPnl:

    def test_realized_trade(self) -> None:
        lot = buy(10, 100.0, date(2025, 1, 1), rate=35.0)
        out = sell(4, 120.0, date(2025, 2, 1), rate=36.0)

        trades = realized_currency_pnl([lot, out])

        assert len(trades) == 1
        trade = trades[0]
        assert trade.trade_id == f"{out.id}-{lot.id}"
        assert trade.shares == 4
        assert trade.sell_date == date(2025, 2, 1)
        assert trade.stock_pnl_usd == pytest.approx(80.0)
        assert trade.stock_pnl_thb == pytest.approx(2880.0)
        assert trade.currency_pnl_thb == pytest.approx(400.0)
        assert trade.total_pnl_thb == pytest.approx(3280.0)

    def test_sell_across_lots_gives_one_trade_per_lot(self) -> None:
        trades = realized_currency_pnl([
            buy(2, 100.0, date(2025, 1, 1), rate=34.0),
            buy(2, 110.0, date(2025, 1, 2), rate=35.0),
            sell(3, 120.0, date(2025, 1, 3), rate=36.0),
        ])

        assert [t.shares for t in trades] == [2, 1]
        assert [t.buy_rate for t in trades] == [34.0, 35.0]

    def test_summary_and_frames(self) -> None:
        trades = realized_currency_pnl([
            buy(10, 100.0, date(2025, 1, 1), rate=35.0),
            sell(4, 120.0, date(2025, 2, 1), rate=36.0),
            buy(5, 50.0, date(2025, 1, 1), rate=36.0, symbol="AAPL"),
            sell(5, 40.0, date(2025, 2, 1), rate=34.0, symbol="AAPL"),
        ])

        summary = summarize_realized(trades)

        assert summary.trade_count == 2
        assert summary.best_currency_trade.symbol == "NVDA"
        assert summary.worst_currency_trade.symbol == "AAPL"
        # AAPL: (40 - 50) x 5 x 34 = -1700 stock, 250 x (34 - 36) = -500 currency
        assert realized_by_symbol(trades) == {
            "AAPL": pytest.approx(-2200.0),
            "NVDA": pytest.approx(3280.0),
        }
        assert len(realized_frame(trades)) == 2

    def test_no_trades(self) -> None:
        assert summarize_realized([]).trade_count == 0
        assert realized_by_symbol([]) == {}
        assert realized_frame([]).empty
