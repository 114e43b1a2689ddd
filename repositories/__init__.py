"""
Repositories package for BahtLedger.
Provides data access layer for all database operations.
"""

from repositories.portfolio_repository import PortfolioRepository
from repositories.transaction_repository import TransactionRepository
from repositories.holding_repository import HoldingRepository
from repositories.app_settings_repository import AppSettingsRepository
from repositories.currency_rate_repository import CurrencyRateRepository

__all__ = [
    'PortfolioRepository',
    'TransactionRepository',
    'HoldingRepository',
    'AppSettingsRepository',
    'CurrencyRateRepository',
]
