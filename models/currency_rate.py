"""
CurrencyRate model - the cached USD/THB display rate.
"""

from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field


class CurrencyRate(SQLModel, table=True):
    """
    Process-wide USD/THB rate (singleton row).
    Display multiplier only; the ledger never reads it.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    usd_thb: float
    last_updated: datetime = Field(default_factory=datetime.now)
    is_manual: bool = Field(default=False)  # Manual override blocks automatic refresh
