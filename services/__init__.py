"""
Services package for BahtLedger.
Provides core business logic separated from the data layer.
"""

from services.ledger import Lot, LotMatch, Position, compute_position, group_by_pair
from services.holding_projector import project_holding
from services.csv_import import (
    CsvValidationError,
    ImportPreview,
    ParsedCsvRow,
    filter_duplicate_rows,
    parse_csv,
    preview_holdings,
    validate_csv,
)
from services.ledger_service import LedgerService, LedgerResult
from services.backup import (
    BackupData,
    BackupResult,
    BackupValidationError,
    create_backup,
    parse_backup,
    restore_backup,
)
from services.quotes import (
    Quote,
    QuoteBoard,
    QuoteProvider,
    QuoteProviderChain,
    build_quote_chain,
    get_multiple_quotes,
)
from services.exchange_rate import CurrencyService, ExchangeRateService, RateQuote, TTLCache
from services.valuation import (
    HoldingValuation,
    PortfolioValuation,
    RealizedTrade,
    realized_currency_pnl,
    summarize_realized,
    value_holding,
    value_portfolio,
)
from services.performance import (
    CompletedTrade,
    PerformanceStats,
    calculate_trading_performance,
    monthly_performance,
    symbol_performance,
)
from services.portfolio import PortfolioService

__all__ = [
    # Ledger core
    'Lot',
    'LotMatch',
    'Position',
    'compute_position',
    'group_by_pair',
    'project_holding',
    'LedgerService',
    'LedgerResult',
    # CSV import
    'CsvValidationError',
    'ImportPreview',
    'ParsedCsvRow',
    'filter_duplicate_rows',
    'parse_csv',
    'preview_holdings',
    'validate_csv',
    # Backup
    'BackupData',
    'BackupResult',
    'BackupValidationError',
    'create_backup',
    'parse_backup',
    'restore_backup',
    # Market data
    'Quote',
    'QuoteBoard',
    'QuoteProvider',
    'QuoteProviderChain',
    'build_quote_chain',
    'get_multiple_quotes',
    'CurrencyService',
    'ExchangeRateService',
    'RateQuote',
    'TTLCache',
    # Valuation
    'HoldingValuation',
    'PortfolioValuation',
    'RealizedTrade',
    'realized_currency_pnl',
    'summarize_realized',
    'value_holding',
    'value_portfolio',
    # Trading performance
    'CompletedTrade',
    'PerformanceStats',
    'calculate_trading_performance',
    'monthly_performance',
    'symbol_performance',
    'PortfolioService',
]
