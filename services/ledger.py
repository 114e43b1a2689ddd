"""
Lot ledger - derives a position from a symbol's transaction history.

Uses FIFO lot matching: every BUY opens a lot, every SELL consumes the
oldest lots with shares remaining. The ledger is a pure function of its
input and holds no state, so it is safe to call from any thread.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from config import get_settings
from models.transaction import Transaction, TransactionType

logger = logging.getLogger(__name__)

# Shares below this are treated as zero (float noise from fractional trades)
SHARE_EPSILON = 1e-9


@dataclass
class Lot:
    """One BUY acquisition and how much of it is still held."""
    transaction_id: str
    shares: float
    remaining_shares: float
    price: float
    date: date
    commission: float
    exchange_rate: float

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        return data


@dataclass
class LotMatch:
    """A SELL attributed to one BUY lot."""
    sell_transaction_id: str
    buy_transaction_id: str
    shares: float
    buy_price: float
    sell_price: float
    buy_rate: float
    sell_rate: float
    buy_date: date
    sell_date: date


@dataclass
class Position:
    """Derived (shares, avg_cost, avg_exchange_rate) for one symbol."""
    shares: float = 0.0
    avg_cost: float = 0.0
    avg_exchange_rate: float = 35.0
    lots: List[Lot] = field(default_factory=list)
    matches: List[LotMatch] = field(default_factory=list)
    unmatched_sell_shares: float = 0.0

    @property
    def is_oversold(self) -> bool:
        return self.unmatched_sell_shares > SHARE_EPSILON


def sort_key(tx: Transaction) -> Tuple[date, datetime, str]:
    """Trade date first, then insertion time, then id."""
    return (tx.transaction_date, tx.created_at or datetime.min, tx.id or "")


def compute_position(
    transactions: Iterable[Transaction],
    default_rate: Optional[float] = None
) -> Position:
    """
    Run FIFO lot matching over one (portfolio, symbol) transaction set.

    Oversold positions are clamped: SELL quantity with no lot left to
    consume is dropped and reported in ``unmatched_sell_shares``.

    Args:
        transactions: All transactions of a single pair, in any order
        default_rate: Rate used when no cost basis remains (defaults to settings)

    Returns:
        Position with shares, avg_cost, avg_exchange_rate, lots and matches
    """
    if default_rate is None:
        default_rate = get_settings().default_exchange_rate

    ordered = sorted(transactions, key=sort_key)
    lots: List[Lot] = []
    matches: List[LotMatch] = []
    unmatched = 0.0
    cursor = 0  # index of the oldest lot that may still have shares

    for tx in ordered:
        rate = tx.exchange_rate if tx.exchange_rate else default_rate
        if tx.transaction_type == TransactionType.BUY:
            lots.append(Lot(
                transaction_id=tx.id,
                shares=tx.shares,
                remaining_shares=tx.shares,
                price=tx.price,
                date=tx.transaction_date,
                commission=tx.commission,
                exchange_rate=rate,
            ))
            continue

        to_sell = tx.shares
        while to_sell > SHARE_EPSILON and cursor < len(lots):
            lot = lots[cursor]
            if lot.remaining_shares <= SHARE_EPSILON:
                cursor += 1
                continue
            taken = min(lot.remaining_shares, to_sell)
            lot.remaining_shares -= taken
            to_sell -= taken
            matches.append(LotMatch(
                sell_transaction_id=tx.id,
                buy_transaction_id=lot.transaction_id,
                shares=taken,
                buy_price=lot.price,
                sell_price=tx.price,
                buy_rate=lot.exchange_rate,
                sell_rate=rate,
                buy_date=lot.date,
                sell_date=tx.transaction_date,
            ))
            if lot.remaining_shares <= SHARE_EPSILON:
                lot.remaining_shares = 0.0
                cursor += 1

        if to_sell > SHARE_EPSILON:
            unmatched += to_sell
            logger.warning(
                f"Oversold {tx.symbol}: SELL {tx.id} exceeds held shares by {to_sell}; excess dropped"
            )

    shares = sum(lot.remaining_shares for lot in lots)
    if shares <= SHARE_EPSILON:
        shares = 0.0

    cost_usd = sum(lot.remaining_shares * lot.price for lot in lots)
    cost_thb = sum(lot.remaining_shares * lot.price * lot.exchange_rate for lot in lots)

    avg_cost = cost_usd / shares if shares > 0 else 0.0
    avg_exchange_rate = cost_thb / cost_usd if cost_usd > 0 else default_rate

    return Position(
        shares=shares,
        avg_cost=avg_cost,
        avg_exchange_rate=avg_exchange_rate,
        lots=lots,
        matches=matches,
        unmatched_sell_shares=unmatched,
    )


def group_by_pair(transactions: Iterable[Transaction]) -> "OrderedDict[Tuple[str, str], List[Transaction]]":
    """Group transactions by (portfolio_id, symbol), keeping first-seen order."""
    groups: "OrderedDict[Tuple[str, str], List[Transaction]]" = OrderedDict()
    for tx in transactions:
        groups.setdefault((tx.portfolio_id, tx.symbol), []).append(tx)
    return groups
