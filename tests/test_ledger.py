"""Tests for services/ledger.py FIFO lot matching."""

from datetime import date, datetime
from itertools import permutations

import pytest

from services.ledger import compute_position, group_by_pair
from tests.factories import buy, sell


class TestFifoMatching:
    """Sells consume the oldest lots first."""

    def test_partial_sell_from_oldest_lot(self) -> None:
        transactions = [
            buy(10, 150.0, date(2025, 1, 10), rate=35.0),
            buy(5, 160.0, date(2025, 2, 10), rate=36.0),
            sell(3, 170.0, date(2025, 3, 10), rate=37.0),
        ]

        position = compute_position(transactions)

        assert position.shares == pytest.approx(12)
        # (7 x 150 + 5 x 160) / 12
        assert position.avg_cost == pytest.approx(1850 / 12)
        # (7 x 150 x 35 + 5 x 160 x 36) / 1850
        assert position.avg_exchange_rate == pytest.approx(65550 / 1850)

    def test_sell_spans_several_lots(self) -> None:
        transactions = [
            buy(4, 100.0, date(2025, 1, 1)),
            buy(4, 110.0, date(2025, 1, 2)),
            buy(4, 120.0, date(2025, 1, 3)),
            sell(6, 130.0, date(2025, 1, 4)),
        ]

        position = compute_position(transactions)

        assert position.shares == pytest.approx(6)
        assert [lot.remaining_shares for lot in position.lots] == pytest.approx([0, 2, 4])
        assert position.avg_cost == pytest.approx((2 * 110 + 4 * 120) / 6)

    def test_matches_record_each_lot_pairing(self) -> None:
        first = buy(4, 100.0, date(2025, 1, 1), rate=34.0)
        second = buy(4, 110.0, date(2025, 1, 2), rate=35.0)
        out = sell(6, 130.0, date(2025, 1, 4), rate=36.0)

        position = compute_position([first, second, out])

        assert [(m.buy_transaction_id, m.shares) for m in position.matches] == [
            (first.id, 4),
            (second.id, 2),
        ]
        assert all(m.sell_transaction_id == out.id for m in position.matches)
        assert position.matches[0].buy_rate == 34.0
        assert position.matches[0].sell_rate == 36.0

    def test_lots_are_rebuilt_with_remaining_shares(self) -> None:
        lot_buy = buy(10, 100.0, date(2025, 1, 1))
        position = compute_position([lot_buy, sell(10, 120.0, date(2025, 1, 2))])

        assert len(position.lots) == 1
        lot = position.lots[0].to_dict()
        assert lot["transaction_id"] == lot_buy.id
        assert lot["shares"] == 10
        assert lot["remaining_shares"] == 0
        assert lot["date"] == "2025-01-01"

    def test_fractional_shares(self) -> None:
        position = compute_position([
            buy(0.5, 172.12, date(2025, 11, 25)),
            sell(0.25, 180.0, date(2025, 11, 28)),
        ])

        assert position.shares == pytest.approx(0.25)
        assert position.avg_cost == pytest.approx(172.12)

    def test_empty_history(self) -> None:
        position = compute_position([], default_rate=35.0)

        assert position.shares == 0
        assert position.avg_cost == 0
        assert position.avg_exchange_rate == 35.0
        assert position.lots == []


class TestDeterminism:
    """The result depends only on the transaction set, not on input order."""

    def test_every_permutation_gives_the_same_position(self) -> None:
        transactions = [
            buy(10, 150.0, date(2025, 1, 10), rate=35.0),
            buy(5, 160.0, date(2025, 1, 10), rate=36.0),
            sell(3, 170.0, date(2025, 2, 1), rate=37.0),
            buy(2, 140.0, date(2025, 3, 1), rate=34.0),
        ]
        expected = compute_position(transactions)

        for ordering in permutations(transactions):
            position = compute_position(list(ordering))
            assert position.shares == expected.shares
            assert position.avg_cost == expected.avg_cost
            assert position.avg_exchange_rate == expected.avg_exchange_rate

    def test_same_day_ties_follow_insertion_time(self) -> None:
        """A SELL entered before a same-day BUY is processed first."""
        day = date(2025, 5, 1)
        early_sell = sell(5, 100.0, day, created_at=datetime(2025, 5, 1, 9, 0))
        later_buy = buy(5, 90.0, day, created_at=datetime(2025, 5, 1, 10, 0))

        position = compute_position([later_buy, early_sell])

        assert position.unmatched_sell_shares == pytest.approx(5)
        assert position.shares == pytest.approx(5)


class TestOversold:
    """Selling more than is held clamps to zero instead of failing."""

    def test_oversold_clamps_to_zero(self) -> None:
        position = compute_position([
            buy(10, 100.0, date(2025, 1, 1)),
            sell(15, 120.0, date(2025, 1, 2)),
        ], default_rate=35.0)

        assert position.shares == 0
        assert position.avg_cost == 0
        assert position.avg_exchange_rate == 35.0
        assert position.unmatched_sell_shares == pytest.approx(5)
        assert position.is_oversold

    def test_oversold_uses_given_default_rate(self) -> None:
        position = compute_position([sell(1, 10.0, date(2025, 1, 1))], default_rate=33.3)

        assert position.avg_exchange_rate == 33.3

    def test_later_buys_are_not_consumed_by_earlier_excess(self) -> None:
        position = compute_position([
            buy(1, 100.0, date(2025, 1, 1)),
            sell(3, 100.0, date(2025, 1, 2)),
            buy(4, 50.0, date(2025, 1, 3)),
        ])

        assert position.shares == pytest.approx(4)
        assert position.avg_cost == pytest.approx(50.0)


class TestGroupByPair:

    def test_groups_by_portfolio_and_symbol(self) -> None:
        a = buy(1, 10.0, date(2025, 1, 1), symbol="AAPL", portfolio_id="p1")
        b = buy(1, 10.0, date(2025, 1, 1), symbol="NVDA", portfolio_id="p1")
        c = buy(1, 10.0, date(2025, 1, 1), symbol="AAPL", portfolio_id="p2")
        d = sell(1, 10.0, date(2025, 1, 2), symbol="AAPL", portfolio_id="p1")

        groups = group_by_pair([a, b, c, d])

        assert list(groups) == [("p1", "AAPL"), ("p1", "NVDA"), ("p2", "AAPL")]
        assert groups[("p1", "AAPL")] == [a, d]
