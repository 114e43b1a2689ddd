"""
Holding projector - writes a computed Position onto the stored Holding.
"""

import logging
from datetime import datetime
from typing import Optional

from config import get_settings
from models import Holding
from services.ledger import Position

logger = logging.getLogger(__name__)


def project_holding(
    existing: Optional[Holding],
    portfolio_id: str,
    symbol: str,
    company_name: str,
    position: Position,
    default_rate: Optional[float] = None
) -> Optional[Holding]:
    """
    Overwrite a holding's derived fields from a ledger position.

    This is the only place shares, avg_cost, avg_exchange_rate and lots
    are assigned. Projecting the same position twice gives the same holding.

    Args:
        existing: Stored holding for the pair, or None
        portfolio_id: Owning portfolio
        symbol: Ticker symbol
        company_name: Name to keep on the holding
        position: Output of compute_position for the pair
        default_rate: Rate to use once the position is closed

    Returns:
        The updated or newly created Holding, or None when there is nothing
        to hold and no holding existed
    """
    if default_rate is None:
        default_rate = get_settings().default_exchange_rate

    if existing is None and position.shares <= 0:
        return None

    holding = existing
    if holding is None:
        holding = Holding(portfolio_id=portfolio_id, symbol=symbol, company_name=company_name or "")
        logger.info(f"Created holding {symbol} in portfolio {portfolio_id}")
    elif company_name:
        holding.company_name = company_name

    if position.shares <= 0:
        holding.shares = 0.0
        holding.avg_cost = 0.0
        holding.avg_exchange_rate = default_rate
    else:
        holding.shares = position.shares
        holding.avg_cost = position.avg_cost
        holding.avg_exchange_rate = position.avg_exchange_rate

    # Fresh list so the JSON column is flagged dirty
    holding.lots = [lot.to_dict() for lot in position.lots]
    holding.updated_at = datetime.now()
    return holding
