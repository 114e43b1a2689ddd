"""Tests for services/backup.py."""

import json
from datetime import date, datetime

import pytest

from repositories import (
    AppSettingsRepository,
    CurrencyRateRepository,
    HoldingRepository,
    PortfolioRepository,
    TransactionRepository,
)
from services.backup import (
    BACKUP_VERSION,
    BackupValidationError,
    backup_to_json,
    create_backup,
    get_backup_file_name,
    get_backup_summary,
    parse_backup,
    restore_backup,
    validate_backup,
)
from services.ledger_service import LedgerService
from services.portfolio import PortfolioService
from tests.factories import trade


def _without_timestamp(backup: dict) -> dict:
    return {key: value for key, value in backup.items() if key != "exportedAt"}


@pytest.fixture
def populated(portfolio):
    LedgerService.add_transaction(trade(portfolio.id, "BUY", 10, 150.0, date(2025, 1, 10), exchange_rate=35.0))
    LedgerService.add_transaction(trade(portfolio.id, "BUY", 5, 160.0, date(2025, 2, 10), exchange_rate=36.0))
    LedgerService.add_transaction(trade(portfolio.id, "SELL", 3, 170.0, date(2025, 3, 10), exchange_rate=37.0))
    LedgerService.add_transaction(
        trade(portfolio.id, "BUY", 2, 220.0, date(2025, 3, 11), symbol="AAPL", company_name="APPLE INC")
    )
    AppSettingsRepository.save(default_portfolio_id=portfolio.id, show_in_thb=True)
    CurrencyRateRepository.save(34.1, datetime(2025, 11, 1, 9, 0), is_manual=True)
    return portfolio


def _v1_backup() -> dict:
    return {
        "version": "1.0.0",
        "exportedAt": "2024-03-01T00:00:00.000Z",
        "data": {
            "portfolios": [{"id": "legacy", "name": "Old", "createdAt": "2024-01-01T00:00:00.000Z"}],
            "holdings": [{
                "id": "h1",
                "portfolioId": "legacy",
                "symbol": "NVDA",
                "companyName": "NVIDIA",
                "shares": 99,
                "avgCost": 1,
                "lots": [],
            }],
            "transactions": [
                {
                    "id": "t1", "portfolioId": "legacy", "symbol": "NVDA", "type": "BUY",
                    "shares": 10, "price": 100, "date": "2024-01-02T00:00:00.000Z",
                },
                {
                    "id": "t2", "portfolioId": "legacy", "symbol": "NVDA", "type": "SELL",
                    "shares": 4, "price": 120, "date": "2024-02-01", "commission": -1.5,
                },
            ],
            "settings": {"defaultPortfolioId": "legacy", "showInTHB": True},
            "currencyRate": {"usdThb": 34.2, "lastUpdated": "2024-03-01T00:00:00Z", "isManual": True},
        },
    }


class TestCreateBackup:

    def test_contains_every_collection(self, populated) -> None:
        backup = create_backup()

        assert backup["version"] == BACKUP_VERSION
        assert backup["exportedAt"]
        assert [p["name"] for p in backup["portfolios"]] == ["Main"]
        assert {h["symbol"] for h in backup["holdings"]} == {"NVDA", "AAPL"}
        assert len(backup["transactions"]) == 4
        assert backup["settings"]["show_in_thb"] is True
        assert backup["currencyRate"]["usd_thb"] == 34.1

    def test_serialises_to_json(self, populated) -> None:
        decoded = json.loads(backup_to_json(create_backup()))

        assert decoded["transactions"][0]["transaction_date"] == "2025-01-10"

    def test_file_name(self) -> None:
        name = get_backup_file_name(datetime(2025, 11, 25, 10, 5, 9))

        assert name == "portfolio-backup-2025-11-25-10-05-09.json"


class TestRoundTrip:

    def test_restore_reproduces_the_backup(self, populated) -> None:
        original = create_backup()
        text = backup_to_json(original)

        LedgerService.add_transaction(trade(populated.id, "SELL", 12, 200.0, date(2025, 4, 1)))
        PortfolioService.create_portfolio("Scratch")
        AppSettingsRepository.save(show_in_thb=False, dark_mode=True)
        CurrencyRateRepository.save(30.0)

        result = restore_backup(parse_backup(text))

        assert result.success, result.error
        assert _without_timestamp(create_backup()) == _without_timestamp(original)

    def test_same_backup_restores_twice(self, populated) -> None:
        backup = parse_backup(backup_to_json(create_backup()))

        assert restore_backup(backup).success
        assert restore_backup(backup).success
        assert len(TransactionRepository.get_all()) == 4

    def test_restore_replaces_rather_than_merges(self, populated) -> None:
        text = backup_to_json(create_backup())
        PortfolioService.create_portfolio("Added later")

        restore_backup(parse_backup(text))

        assert [p.name for p in PortfolioRepository.get_all()] == ["Main"]

    def test_restore_accepts_a_decoded_dict(self, populated) -> None:
        result = restore_backup(json.loads(backup_to_json(create_backup())))

        assert result.success
        assert result.summary.transaction_count == 4
        assert result.summary.holding_count == 2


class TestLegacyBackup:

    def test_v1_is_upgraded_and_holdings_reprojected(self, portfolio) -> None:
        backup = parse_backup(json.dumps(_v1_backup()))

        assert backup.upgraded_from == "1.0.0"
        assert backup.version == BACKUP_VERSION

        result = restore_backup(backup)

        assert result.success, result.error
        assert [p.id for p in PortfolioRepository.get_all()] == ["legacy"]
        holding = HoldingRepository.get_by_pair("legacy", "NVDA")
        assert holding.id == "h1"
        assert holding.shares == pytest.approx(6)
        assert holding.avg_cost == pytest.approx(100.0)
        assert holding.avg_exchange_rate == pytest.approx(35.0)

    def test_v1_fields_are_mapped(self) -> None:
        backup = parse_backup(json.dumps(_v1_backup()))

        sell = next(t for t in backup.transactions if t.id == "t2")
        assert sell.transaction_date == date(2024, 2, 1)
        assert sell.commission == 1.5
        assert sell.exchange_rate == 35.0
        assert backup.settings.default_portfolio_id == "legacy"
        assert backup.settings.show_in_thb is True
        assert backup.currency_rate.usd_thb == 34.2
        assert backup.currency_rate.is_manual is True

    def test_v1_restore_keeps_settings_and_rate(self) -> None:
        restore_backup(parse_backup(json.dumps(_v1_backup())))

        assert AppSettingsRepository.get().default_portfolio_id == "legacy"
        assert CurrencyRateRepository.get().usd_thb == 34.2


class TestValidation:

    @pytest.mark.parametrize("obj, message", [
        ([], "Invalid backup file: not a valid JSON object"),
        ({}, "Invalid backup file: missing version"),
        ({"version": "1.0.0"}, "Invalid backup file: missing data"),
        ({"version": "2.0.0", "portfolios": []}, "Invalid backup file: holdings must be an array"),
        (
            {"version": "2.0.0", "portfolios": [], "holdings": [], "transactions": [], "settings": 3},
            "Invalid backup file: settings must be an object",
        ),
    ])
    def test_structural_errors(self, obj, message) -> None:
        assert validate_backup(obj) == message

    def test_invalid_json(self) -> None:
        with pytest.raises(BackupValidationError) as exc_info:
            parse_backup("{not json")

        assert str(exc_info.value) == "Failed to parse backup file: invalid JSON"

    def test_invalid_record(self) -> None:
        obj = {
            "version": "2.0.0",
            "portfolios": [],
            "holdings": [],
            "transactions": [{"id": "t1", "symbol": "NVDA"}],
        }

        with pytest.raises(BackupValidationError):
            parse_backup(json.dumps(obj))

    def test_failed_restore_leaves_data_untouched(self, populated) -> None:
        result = restore_backup({"version": "2.0.0", "portfolios": []})

        assert not result.success
        assert "must be an array" in result.error
        assert len(TransactionRepository.get_all()) == 4

    def test_summary(self) -> None:
        summary = get_backup_summary(parse_backup(json.dumps(_v1_backup())))

        assert summary.portfolio_count == 1
        assert summary.holding_count == 1
        assert summary.transaction_count == 2
        assert summary.exported_at == "2024-03-01T00:00:00.000Z"
