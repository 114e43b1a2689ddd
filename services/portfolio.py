"""
Portfolio service for managing portfolios and valuing their holdings.
Valuation converts USD positions to THB and splits P&L into stock and currency parts.
"""

import logging
from typing import Dict, List, Mapping, Optional

from db_engine import get_session
from models import Holding, Portfolio
from repositories import (
    AppSettingsRepository,
    HoldingRepository,
    PortfolioRepository,
    TransactionRepository,
)
from services.exchange_rate import CurrencyService
from services.ledger_service import portfolio_locks
from services.performance import PerformanceStats, calculate_trading_performance
from services.quotes import Quote, QuoteBoard, QuoteProvider, build_quote_chain, get_multiple_quotes
from services.valuation import PortfolioValuation, value_portfolio

logger = logging.getLogger(__name__)


class PortfolioService:
    """
    Service for portfolio lifecycle and valuation.
    Holdings themselves are only changed through LedgerService.
    """

    @staticmethod
    def create_portfolio(name: str, description: Optional[str] = None) -> Portfolio:
        """
        Create a new portfolio.

        Args:
            name: Display name (required)
            description: Optional free text

        Returns:
            Created Portfolio object
        """
        name = (name or "").strip()
        if not name:
            raise ValueError("Portfolio name is required")
        portfolio = PortfolioRepository.add(name, description)
        logger.info(f"Created portfolio {portfolio.id} ({name})")
        return portfolio

    @staticmethod
    def rename_portfolio(
        portfolio_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None
    ) -> Optional[Portfolio]:
        """Change a portfolio's name and/or description. Returns None if it does not exist."""
        if name is not None:
            name = name.strip()
            if not name:
                raise ValueError("Portfolio name is required")
        return PortfolioRepository.update(portfolio_id, name=name, description=description)

    @staticmethod
    def delete_portfolio(portfolio_id: str) -> bool:
        """
        Delete a portfolio with all of its holdings and transactions.
        Runs as one database transaction.

        Returns:
            True if the portfolio existed and was removed
        """
        with portfolio_locks([portfolio_id]):
            with get_session() as session:
                try:
                    if PortfolioRepository.get_by_id(portfolio_id, session=session) is None:
                        return False
                    holdings = HoldingRepository.delete_by_portfolio(portfolio_id, session=session)
                    transactions = TransactionRepository.delete_by_portfolio(portfolio_id, session=session)
                    PortfolioRepository.delete(portfolio_id, session=session)

                    settings = AppSettingsRepository.get(session=session)
                    if settings.default_portfolio_id == portfolio_id:
                        settings.default_portfolio_id = None
                        session.add(settings)

                    session.commit()
                except Exception as e:
                    session.rollback()
                    logger.error(f"Error deleting portfolio {portfolio_id}: {e}")
                    raise

        logger.info(
            f"Deleted portfolio {portfolio_id} with {holdings} holdings and {transactions} transactions"
        )
        return True

    @staticmethod
    def list_portfolios() -> List[Portfolio]:
        return PortfolioRepository.get_all()

    @staticmethod
    def get_holdings(portfolio_id: str, include_closed: bool = False) -> List[Holding]:
        """Holdings of a portfolio; closed positions (0 shares) only on request."""
        holdings = HoldingRepository.get_all(portfolio_id)
        if include_closed:
            return holdings
        return [h for h in holdings if h.shares > 0]

    @staticmethod
    def _resolve_quotes(
        symbols: List[str],
        quote_provider: Optional[QuoteProvider] = None,
        quote_board: Optional[QuoteBoard] = None
    ) -> Dict[str, Quote]:
        """
        Quotes for the given symbols.
        A board answers from its cache and only fetches the symbols it lacks.
        """
        if not symbols:
            return {}
        if quote_board is not None:
            cached = quote_board.snapshot()
            missing = [s for s in symbols if s not in cached]
            if missing:
                quote_board.refresh(missing)
            return quote_board.snapshot()
        provider = quote_provider or build_quote_chain()
        return get_multiple_quotes(provider, symbols)

    @staticmethod
    def get_portfolio_valuation(
        portfolio_id: str,
        quote_provider: Optional[QuoteProvider] = None,
        currency_service: Optional[CurrencyService] = None,
        quotes: Optional[Mapping[str, Quote]] = None,
        quote_board: Optional[QuoteBoard] = None
    ) -> PortfolioValuation:
        """
        Value a portfolio at current prices and the current display rate.

        Args:
            portfolio_id: Portfolio to value
            quote_provider: Provider or chain for live prices (built from settings if omitted)
            currency_service: Source of the USD->THB rate
            quotes: Pre-fetched quotes; skips fetching when given
            quote_board: Shared quote cache, used instead of quote_provider when given

        Returns:
            PortfolioValuation; holdings without a quote are valued at average cost
        """
        holdings = PortfolioService.get_holdings(portfolio_id)
        if quotes is None:
            quotes = PortfolioService._resolve_quotes([h.symbol for h in holdings], quote_provider, quote_board)
        currency_service = currency_service or CurrencyService()
        rate = currency_service.get_rate()
        return value_portfolio(holdings, quotes, rate)

    @staticmethod
    def get_trading_performance(
        portfolio_id: str,
        quotes: Optional[Mapping[str, Quote]] = None,
        quote_board: Optional[QuoteBoard] = None
    ) -> PerformanceStats:
        """Win/loss statistics of a portfolio; open positions use the board's cached quotes."""
        transactions = TransactionRepository.get_all(portfolio_id)
        if quotes is None and quote_board is not None:
            quotes = quote_board.snapshot()
        return calculate_trading_performance(transactions, quotes)

    @staticmethod
    def calculate_net_worth(
        quote_provider: Optional[QuoteProvider] = None,
        currency_service: Optional[CurrencyService] = None,
        quote_board: Optional[QuoteBoard] = None
    ) -> Dict:
        """
        Total net worth across all portfolios.
        Quotes are resolved once for every held symbol.

        Returns:
            Dictionary with THB/USD totals and one summary per portfolio
        """
        portfolios = PortfolioRepository.get_all()
        symbols = sorted({h.symbol for h in HoldingRepository.get_all() if h.shares > 0})
        quotes = PortfolioService._resolve_quotes(symbols, quote_provider, quote_board)
        currency_service = currency_service or CurrencyService()

        summaries = []
        total_value_usd = 0.0
        total_value_thb = 0.0
        total_cost_thb = 0.0
        for portfolio in portfolios:
            valuation = PortfolioService.get_portfolio_valuation(
                portfolio.id, currency_service=currency_service, quotes=quotes
            )
            total_value_usd += valuation.total_value_usd
            total_value_thb += valuation.total_value_thb
            total_cost_thb += valuation.total_cost_thb
            summaries.append({
                'portfolio_id': portfolio.id,
                'name': portfolio.name,
                'total_value_usd': round(valuation.total_value_usd, 2),
                'total_value_thb': round(valuation.total_value_thb, 2),
                'total_pnl_thb': round(valuation.total_pnl_thb, 2),
                'total_pnl_percent': round(valuation.total_pnl_percent, 2),
                'holdings': len(valuation.holdings),
            })

        total_pnl_thb = total_value_thb - total_cost_thb
        return {
            'total_value_usd': round(total_value_usd, 2),
            'total_value_thb': round(total_value_thb, 2),
            'total_cost_thb': round(total_cost_thb, 2),
            'total_pnl_thb': round(total_pnl_thb, 2),
            'total_pnl_percent': round(total_pnl_thb / total_cost_thb * 100, 2) if total_cost_thb > 0 else 0.0,
            'portfolios': summaries,
        }
