"""
Trading performance statistics.

Completed trades are the ledger's FIFO matches (one per SELL and BUY lot
pairing), so the statistics always agree with the holdings. Amounts are in
USD; currency effects are reported separately by services/valuation.py.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import date
from typing import Iterable, List, Mapping, Optional

import pandas as pd

from models import Transaction
from services.ledger import SHARE_EPSILON, compute_position, group_by_pair, sort_key
from services.quotes import Quote

logger = logging.getLogger(__name__)


@dataclass
class CompletedTrade:
    """Shares of one SELL matched against one BUY lot."""
    symbol: str
    company_name: str
    buy_transaction_id: str
    sell_transaction_id: str
    buy_date: date
    sell_date: date
    shares: float
    buy_price: float
    sell_price: float
    buy_cost: float
    sell_proceeds: float
    realized_pnl: float
    realized_pnl_percent: float
    holding_days: int

    @property
    def is_win(self) -> bool:
        return self.realized_pnl > 0

    @property
    def is_loss(self) -> bool:
        return self.realized_pnl < 0


@dataclass
class OpenPosition:
    symbol: str
    company_name: str
    shares: float
    avg_cost: float
    total_cost: float
    current_price: float
    current_value: float
    unrealized_pnl: float
    unrealized_pnl_percent: float
    buy_dates: List[date] = field(default_factory=list)


@dataclass
class PerformanceStats:
    """Win/loss, P&L and risk figures over a set of completed trades."""
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    break_even_trades: int = 0
    win_rate: float = 0.0
    loss_rate: float = 0.0
    total_profit: float = 0.0
    total_loss: float = 0.0
    net_realized_pnl: float = 0.0
    net_unrealized_pnl: float = 0.0
    total_pnl: float = 0.0
    avg_gain: float = 0.0
    avg_loss: float = 0.0
    avg_trade_return: float = 0.0
    avg_holding_days: float = 0.0
    profit_factor: float = 0.0
    risk_reward_ratio: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0
    expectancy: float = 0.0
    completed_trades: List[CompletedTrade] = field(default_factory=list)
    open_positions: List[OpenPosition] = field(default_factory=list)


def _latest_company_name(transactions: List[Transaction]) -> str:
    for tx in sorted(transactions, key=sort_key, reverse=True):
        if tx.company_name:
            return tx.company_name
    return ""


def _ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator, infinite when only the denominator is zero."""
    if denominator > 0:
        return numerator / denominator
    return float("inf") if numerator > 0 else 0.0


def completed_trades(transactions: Iterable[Transaction]) -> List[CompletedTrade]:
    """Every FIFO match of the given transactions, ordered by sell date."""
    trades: List[CompletedTrade] = []
    for (_, symbol), pair_transactions in group_by_pair(transactions).items():
        company_name = _latest_company_name(pair_transactions)
        for match in compute_position(pair_transactions).matches:
            buy_cost = match.shares * match.buy_price
            sell_proceeds = match.shares * match.sell_price
            pnl = sell_proceeds - buy_cost
            trades.append(CompletedTrade(
                symbol=symbol,
                company_name=company_name,
                buy_transaction_id=match.buy_transaction_id,
                sell_transaction_id=match.sell_transaction_id,
                buy_date=match.buy_date,
                sell_date=match.sell_date,
                shares=match.shares,
                buy_price=match.buy_price,
                sell_price=match.sell_price,
                buy_cost=buy_cost,
                sell_proceeds=sell_proceeds,
                realized_pnl=pnl,
                realized_pnl_percent=pnl / buy_cost * 100 if buy_cost > 0 else 0.0,
                holding_days=abs((match.sell_date - match.buy_date).days),
            ))
    return sorted(trades, key=lambda t: t.sell_date)


def open_positions(
    transactions: Iterable[Transaction],
    quotes: Optional[Mapping[str, Quote]] = None
) -> List[OpenPosition]:
    """Lots still held per pair, valued at the quote or at average cost."""
    quotes = quotes or {}
    positions: List[OpenPosition] = []
    for (_, symbol), pair_transactions in group_by_pair(transactions).items():
        position = compute_position(pair_transactions)
        remaining = [lot for lot in position.lots if lot.remaining_shares > SHARE_EPSILON]
        if not remaining:
            continue
        total_cost = sum(lot.remaining_shares * lot.price for lot in remaining)
        quote = quotes.get(symbol)
        price = quote.current_price if quote is not None and quote.current_price else position.avg_cost
        value = position.shares * price
        unrealized = value - total_cost
        positions.append(OpenPosition(
            symbol=symbol,
            company_name=_latest_company_name(pair_transactions),
            shares=position.shares,
            avg_cost=position.avg_cost,
            total_cost=total_cost,
            current_price=price,
            current_value=value,
            unrealized_pnl=unrealized,
            unrealized_pnl_percent=unrealized / total_cost * 100 if total_cost > 0 else 0.0,
            buy_dates=[lot.date for lot in remaining],
        ))
    return positions


def calculate_trading_performance(
    transactions: Iterable[Transaction],
    quotes: Optional[Mapping[str, Quote]] = None
) -> PerformanceStats:
    """
    Performance statistics over a transaction history.

    Args:
        transactions: Transactions of one or more portfolios
        quotes: Latest quotes for valuing open positions; missing quotes value at cost

    Returns:
        PerformanceStats with completed trades sorted by sell date
    """
    transactions = list(transactions)
    trades = completed_trades(transactions)
    positions = open_positions(transactions, quotes)

    wins = [t for t in trades if t.is_win]
    losses = [t for t in trades if t.is_loss]
    total = len(trades)
    logger.debug(f"Performance over {total} completed trade(s), {len(positions)} open position(s)")

    total_profit = sum(t.realized_pnl for t in wins)
    total_loss = abs(sum(t.realized_pnl for t in losses))
    net_realized = total_profit - total_loss
    net_unrealized = sum(p.unrealized_pnl for p in positions)

    win_rate = len(wins) / total * 100 if total else 0.0
    loss_rate = len(losses) / total * 100 if total else 0.0
    avg_gain = total_profit / len(wins) if wins else 0.0
    avg_loss = total_loss / len(losses) if losses else 0.0

    max_wins = max_losses = win_streak = loss_streak = 0
    for trade in trades:
        if trade.is_win:
            win_streak, loss_streak = win_streak + 1, 0
        elif trade.is_loss:
            win_streak, loss_streak = 0, loss_streak + 1
        else:
            win_streak = loss_streak = 0
        max_wins = max(max_wins, win_streak)
        max_losses = max(max_losses, loss_streak)

    return PerformanceStats(
        total_trades=total,
        winning_trades=len(wins),
        losing_trades=len(losses),
        break_even_trades=total - len(wins) - len(losses),
        win_rate=win_rate,
        loss_rate=loss_rate,
        total_profit=total_profit,
        total_loss=total_loss,
        net_realized_pnl=net_realized,
        net_unrealized_pnl=net_unrealized,
        total_pnl=net_realized + net_unrealized,
        avg_gain=avg_gain,
        avg_loss=avg_loss,
        avg_trade_return=net_realized / total if total else 0.0,
        avg_holding_days=sum(t.holding_days for t in trades) / total if total else 0.0,
        profit_factor=_ratio(total_profit, total_loss),
        risk_reward_ratio=_ratio(avg_gain, avg_loss),
        largest_win=max((t.realized_pnl for t in wins), default=0.0),
        largest_loss=max((abs(t.realized_pnl) for t in losses), default=0.0),
        max_consecutive_wins=max_wins,
        max_consecutive_losses=max_losses,
        expectancy=win_rate / 100 * avg_gain - loss_rate / 100 * avg_loss,
        completed_trades=trades,
        open_positions=positions,
    )


def trades_frame(trades: List[CompletedTrade]) -> pd.DataFrame:
    columns = list(CompletedTrade.__dataclass_fields__) + ["is_win", "is_loss"]
    rows = [dict(asdict(t), is_win=t.is_win, is_loss=t.is_loss) for t in trades]
    return pd.DataFrame(rows, columns=columns)


def _grouped_performance(trades: List[CompletedTrade], key: str, with_return: bool) -> pd.DataFrame:
    # Break-even trades add to P&L but count as neither win nor loss
    columns = ["trades", "pnl", "win_rate"] + (["avg_return"] if with_return else [])
    if not trades:
        return pd.DataFrame(columns=columns)

    df = trades_frame(trades)
    df["month"] = pd.to_datetime(df["sell_date"]).dt.strftime("%Y-%m")
    grouped = df.groupby(key).agg(
        pnl=("realized_pnl", "sum"),
        wins=("is_win", "sum"),
        losses=("is_loss", "sum"),
        total_return=("realized_pnl_percent", "sum"),
    )
    decided = (grouped["wins"] + grouped["losses"]).astype(int)
    result = pd.DataFrame({
        "trades": decided,
        "pnl": grouped["pnl"],
        "win_rate": (grouped["wins"] / decided.where(decided > 0) * 100).fillna(0.0),
    })
    if with_return:
        result["avg_return"] = (grouped["total_return"] / decided.where(decided > 0)).fillna(0.0)
    return result


def monthly_performance(trades: List[CompletedTrade]) -> pd.DataFrame:
    """Trades, P&L and win rate per sell month (index "YYYY-MM")."""
    return _grouped_performance(trades, "month", with_return=False)


def symbol_performance(trades: List[CompletedTrade]) -> pd.DataFrame:
    """Trades, P&L, win rate and average return percent per symbol."""
    return _grouped_performance(trades, "symbol", with_return=True)

