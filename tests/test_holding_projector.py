"""Tests for services/holding_projector.py."""

from datetime import date

import pytest

from models import Holding
from services.holding_projector import project_holding
from services.ledger import compute_position
from tests.factories import buy, sell


def _derived(holding: Holding) -> dict:
    return holding.model_dump(include={"shares", "avg_cost", "avg_exchange_rate", "lots", "symbol", "company_name"})


class TestProjectHolding:

    def test_creates_holding_for_open_position(self) -> None:
        position = compute_position([buy(10, 100.0, date(2025, 1, 1), rate=35.0)])

        holding = project_holding(None, "p1", "NVDA", "NVIDIA CORPORATION", position, default_rate=35.0)

        assert holding is not None
        assert holding.portfolio_id == "p1"
        assert holding.symbol == "NVDA"
        assert holding.company_name == "NVIDIA CORPORATION"
        assert holding.shares == 10
        assert holding.avg_cost == pytest.approx(100.0)
        assert len(holding.lots) == 1

    def test_nothing_to_create_for_closed_position(self) -> None:
        position = compute_position([
            buy(10, 100.0, date(2025, 1, 1)),
            sell(10, 110.0, date(2025, 1, 2)),
        ])

        assert project_holding(None, "p1", "NVDA", "", position) is None

    def test_closed_position_resets_cost_and_keeps_lot_history(self) -> None:
        existing = project_holding(
            None, "p1", "NVDA", "NVIDIA", compute_position([buy(10, 100.0, date(2025, 1, 1), rate=36.0)])
        )
        closed = compute_position([
            buy(10, 100.0, date(2025, 1, 1), rate=36.0),
            sell(10, 110.0, date(2025, 1, 2), rate=36.0),
        ])

        holding = project_holding(existing, "p1", "NVDA", "NVIDIA", closed, default_rate=35.0)

        assert holding is existing
        assert holding.shares == 0
        assert holding.avg_cost == 0
        assert holding.avg_exchange_rate == 35.0
        assert len(holding.lots) == 1
        assert holding.lots[0]["remaining_shares"] == 0

    def test_reprojection_is_idempotent(self) -> None:
        position = compute_position([
            buy(10, 150.0, date(2025, 1, 10), rate=35.0),
            buy(5, 160.0, date(2025, 2, 10), rate=36.0),
            sell(3, 170.0, date(2025, 3, 10), rate=37.0),
        ])
        holding = project_holding(None, "p1", "NVDA", "NVIDIA", position)
        first = _derived(holding)

        project_holding(holding, "p1", "NVDA", "NVIDIA", position)

        assert _derived(holding) == first

    def test_overwrites_rather_than_accumulates(self) -> None:
        holding = project_holding(None, "p1", "NVDA", "", compute_position([buy(10, 100.0, date(2025, 1, 1))]))
        smaller = compute_position([buy(4, 80.0, date(2025, 1, 1))])

        project_holding(holding, "p1", "NVDA", "", smaller)

        assert holding.shares == 4
        assert holding.avg_cost == pytest.approx(80.0)
        assert len(holding.lots) == 1

    def test_keeps_existing_name_when_none_given(self) -> None:
        holding = project_holding(None, "p1", "NVDA", "NVIDIA", compute_position([buy(1, 1.0, date(2025, 1, 1))]))

        project_holding(holding, "p1", "NVDA", "", compute_position([buy(2, 1.0, date(2025, 1, 1))]))

        assert holding.company_name == "NVIDIA"
