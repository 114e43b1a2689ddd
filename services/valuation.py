"""
Valuation of holdings in USD and THB.

Splits profit into the stock move (price change) and the currency move
(USD/THB change since purchase). Display only; nothing here is persisted.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional

import pandas as pd

from models import Holding, Transaction
from services.ledger import compute_position, group_by_pair
from services.quotes import Quote

logger = logging.getLogger(__name__)


@dataclass
class HoldingValuation:
    """Cost, value and P&L of one holding."""
    symbol: str
    company_name: str
    shares: float
    cost_usd: float
    cost_thb: float
    avg_purchase_rate: float
    current_rate: float
    current_price_usd: float
    value_usd: float
    value_thb: float
    stock_pnl_usd: float
    stock_pnl_thb: float
    stock_pnl_percent: float
    currency_pnl_thb: float
    currency_pnl_percent: float
    total_pnl_thb: float
    total_pnl_percent: float


@dataclass
class PortfolioValuation:
    """Totals over the active holdings of a portfolio."""
    total_cost_usd: float = 0.0
    total_cost_thb: float = 0.0
    total_value_usd: float = 0.0
    total_value_thb: float = 0.0
    total_stock_pnl_usd: float = 0.0
    total_stock_pnl_thb: float = 0.0
    total_stock_pnl_percent: float = 0.0
    total_currency_pnl_thb: float = 0.0
    total_currency_pnl_percent: float = 0.0
    total_pnl_thb: float = 0.0
    total_pnl_percent: float = 0.0
    today_change_usd: float = 0.0
    today_change_thb: float = 0.0
    current_rate: float = 0.0
    holdings: List[HoldingValuation] = field(default_factory=list)


@dataclass
class RealizedTrade:
    """P&L of the shares of one SELL matched against one BUY lot."""
    trade_id: str
    symbol: str
    sell_date: date
    shares: float
    buy_price_usd: float
    sell_price_usd: float
    buy_rate: float
    sell_rate: float
    stock_pnl_usd: float
    stock_pnl_thb: float
    currency_pnl_thb: float
    total_pnl_thb: float


@dataclass
class RealizedSummary:
    total_stock_pnl_usd: float = 0.0
    total_stock_pnl_thb: float = 0.0
    total_currency_pnl_thb: float = 0.0
    total_pnl_thb: float = 0.0
    trade_count: int = 0
    best_currency_trade: Optional[RealizedTrade] = None
    worst_currency_trade: Optional[RealizedTrade] = None


def _percent(part: float, whole: float) -> float:
    return part / whole * 100 if whole > 0 else 0.0


def value_holding(holding: Holding, current_price: float, current_rate: float) -> HoldingValuation:
    """
    Value one holding at the given price and rate.

    Currency P&L is cost_usd x (current_rate - avg_exchange_rate): what the
    same dollar cost is worth in baht now versus when it was bought.
    """
    cost_usd = holding.shares * holding.avg_cost
    cost_thb = cost_usd * holding.avg_exchange_rate
    value_usd = holding.shares * current_price
    value_thb = value_usd * current_rate

    stock_pnl_usd = value_usd - cost_usd
    currency_pnl_thb = cost_usd * (current_rate - holding.avg_exchange_rate)
    total_pnl_thb = value_thb - cost_thb

    return HoldingValuation(
        symbol=holding.symbol,
        company_name=holding.company_name,
        shares=holding.shares,
        cost_usd=cost_usd,
        cost_thb=cost_thb,
        avg_purchase_rate=holding.avg_exchange_rate,
        current_rate=current_rate,
        current_price_usd=current_price,
        value_usd=value_usd,
        value_thb=value_thb,
        stock_pnl_usd=stock_pnl_usd,
        stock_pnl_thb=stock_pnl_usd * current_rate,
        stock_pnl_percent=_percent(stock_pnl_usd, cost_usd),
        currency_pnl_thb=currency_pnl_thb,
        currency_pnl_percent=_percent(currency_pnl_thb, cost_thb),
        total_pnl_thb=total_pnl_thb,
        total_pnl_percent=_percent(total_pnl_thb, cost_thb),
    )


def value_portfolio(
    holdings: Iterable[Holding],
    quotes: Mapping[str, Quote],
    current_rate: float
) -> PortfolioValuation:
    """
    Value every holding with shares.

    Args:
        holdings: Holdings of one portfolio
        quotes: Latest quotes by symbol; a missing quote values the holding at avg_cost
        current_rate: USD->THB display rate

    Returns:
        PortfolioValuation with per-holding rows and totals
    """
    active = [h for h in holdings if h.shares > 0]
    result = PortfolioValuation(current_rate=current_rate)

    for holding in active:
        quote = quotes.get(holding.symbol)
        price = quote.current_price if quote is not None and quote.current_price else holding.avg_cost
        if quote is None:
            logger.debug(f"No quote for {holding.symbol}, valuing at average cost")
        else:
            result.today_change_usd += quote.change * holding.shares
        result.holdings.append(value_holding(holding, price, current_rate))

    for row in result.holdings:
        result.total_cost_usd += row.cost_usd
        result.total_cost_thb += row.cost_thb
        result.total_value_usd += row.value_usd
        result.total_value_thb += row.value_thb
        result.total_stock_pnl_usd += row.stock_pnl_usd
        result.total_stock_pnl_thb += row.stock_pnl_thb
        result.total_currency_pnl_thb += row.currency_pnl_thb

    result.total_stock_pnl_percent = _percent(result.total_stock_pnl_usd, result.total_cost_usd)
    result.total_currency_pnl_percent = _percent(result.total_currency_pnl_thb, result.total_cost_thb)
    result.total_pnl_thb = result.total_value_thb - result.total_cost_thb
    result.total_pnl_percent = _percent(result.total_pnl_thb, result.total_cost_thb)
    result.today_change_thb = result.today_change_usd * current_rate
    return result


def realized_currency_pnl(transactions: Iterable[Transaction]) -> List[RealizedTrade]:
    """
    Realized P&L per FIFO match, using the same lot matching as the holdings.
    Stock P&L is converted at the sell rate; currency P&L is the buy cost times
    the rate change between buy and sell.
    """
    trades: List[RealizedTrade] = []
    for (_, symbol), pair_transactions in group_by_pair(transactions).items():
        position = compute_position(pair_transactions)
        for match in position.matches:
            stock_pnl_usd = (match.sell_price - match.buy_price) * match.shares
            stock_pnl_thb = stock_pnl_usd * match.sell_rate
            currency_pnl_thb = match.buy_price * match.shares * (match.sell_rate - match.buy_rate)
            trades.append(RealizedTrade(
                trade_id=f"{match.sell_transaction_id}-{match.buy_transaction_id}",
                symbol=symbol,
                sell_date=match.sell_date,
                shares=match.shares,
                buy_price_usd=match.buy_price,
                sell_price_usd=match.sell_price,
                buy_rate=match.buy_rate,
                sell_rate=match.sell_rate,
                stock_pnl_usd=stock_pnl_usd,
                stock_pnl_thb=stock_pnl_thb,
                currency_pnl_thb=currency_pnl_thb,
                total_pnl_thb=stock_pnl_thb + currency_pnl_thb,
            ))
    return trades


def summarize_realized(trades: List[RealizedTrade]) -> RealizedSummary:
    if not trades:
        return RealizedSummary()
    by_currency = sorted(trades, key=lambda t: t.currency_pnl_thb, reverse=True)
    return RealizedSummary(
        total_stock_pnl_usd=sum(t.stock_pnl_usd for t in trades),
        total_stock_pnl_thb=sum(t.stock_pnl_thb for t in trades),
        total_currency_pnl_thb=sum(t.currency_pnl_thb for t in trades),
        total_pnl_thb=sum(t.total_pnl_thb for t in trades),
        trade_count=len(trades),
        best_currency_trade=by_currency[0],
        worst_currency_trade=by_currency[-1],
    )


def valuation_frame(valuation: PortfolioValuation) -> pd.DataFrame:
    """Per-holding valuation as a DataFrame indexed by symbol, largest THB value first."""
    if not valuation.holdings:
        return pd.DataFrame(columns=[f for f in HoldingValuation.__dataclass_fields__ if f != "symbol"])
    df = pd.DataFrame([asdict(h) for h in valuation.holdings]).set_index("symbol")
    df["weight_percent"] = df["value_thb"] / df["value_thb"].sum() * 100 if valuation.total_value_thb > 0 else 0.0
    return df.sort_values("value_thb", ascending=False)


def realized_frame(trades: List[RealizedTrade]) -> pd.DataFrame:
    """Realized trades as a DataFrame, with per-symbol totals available via groupby."""
    return pd.DataFrame([asdict(t) for t in trades], columns=list(RealizedTrade.__dataclass_fields__))


def realized_by_symbol(trades: List[RealizedTrade]) -> Dict[str, float]:
    """Total realized THB P&L per symbol."""
    if not trades:
        return {}
    totals = realized_frame(trades).groupby("symbol")["total_pnl_thb"].sum()
    return {symbol: float(total) for symbol, total in totals.items()}
