"""
Holding model - cached position summary for one (portfolio, symbol) pair.
"""

from typing import Any, Dict, List
from datetime import datetime

from sqlalchemy import Column, JSON, UniqueConstraint
from sqlmodel import SQLModel, Field

from models.common import generate_id


class Holding(SQLModel, table=True):
    """
    Derived position for a symbol within a portfolio.
    shares/avg_cost/avg_exchange_rate/lots are rebuilt from the transaction
    history by the holding projector and never edited directly.
    """
    __table_args__ = (UniqueConstraint("portfolio_id", "symbol"),)

    id: str = Field(default_factory=generate_id, primary_key=True)
    portfolio_id: str = Field(foreign_key="portfolio.id", index=True)
    symbol: str = Field(index=True)
    company_name: str = Field(default="")
    shares: float = Field(default=0.0)
    avg_cost: float = Field(default=0.0)  # USD per remaining share
    avg_exchange_rate: float = Field(default=35.0)  # Cost-weighted USD->THB of remaining shares
    # One entry per BUY: transaction_id, shares, remaining_shares, price, date, commission, exchange_rate
    lots: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
