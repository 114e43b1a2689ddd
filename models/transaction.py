"""
Transaction model - represents a buy/sell trade recorded in a portfolio.
"""

from enum import Enum
from typing import Optional
from datetime import date, datetime

from pydantic import field_validator
from sqlmodel import SQLModel, Field

from models.common import generate_id


class TransactionType(str, Enum):
    """Supported trade directions."""
    BUY = "BUY"
    SELL = "SELL"


class TransactionBase(SQLModel):
    """Fields shared by the table model and the create payload."""
    portfolio_id: str = Field(foreign_key="portfolio.id", index=True)
    symbol: str = Field(index=True)  # Upper-case ticker, e.g. "NVDA"
    company_name: str = Field(default="")
    transaction_type: TransactionType
    shares: float = Field(gt=0)  # Fractional shares allowed
    price: float = Field(ge=0)  # Per share, USD
    transaction_date: date = Field(index=True)
    settlement_date: Optional[date] = Field(default=None)
    commission: float = Field(default=0.0, ge=0)
    vat: float = Field(default=0.0, ge=0)
    notes: Optional[str] = Field(default=None)

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("symbol is required")
        return value


class Transaction(TransactionBase, table=True):
    """Represents a recorded buy/sell transaction."""
    id: str = Field(default_factory=generate_id, primary_key=True)
    gross_amount: float = Field(default=0.0)
    net_amount: float = Field(default=0.0)
    exchange_rate: float = Field(default=35.0)  # USD->THB at trade time
    created_at: datetime = Field(default_factory=datetime.now)  # Tie-break for same-day trades


class TransactionCreate(TransactionBase):
    """
    Validated payload for recording a new transaction.
    Amounts are derived from shares/price/fees when not supplied,
    and exchange_rate falls back to the configured default.
    """
    exchange_rate: Optional[float] = Field(default=None, gt=0)
    gross_amount: Optional[float] = Field(default=None)
    net_amount: Optional[float] = Field(default=None)
    created_at: Optional[datetime] = Field(default=None)


class TransactionUpdate(SQLModel):
    """Partial update for an existing transaction; unset fields are left alone."""
    portfolio_id: Optional[str] = None
    symbol: Optional[str] = None
    company_name: Optional[str] = None
    transaction_type: Optional[TransactionType] = None
    shares: Optional[float] = Field(default=None, gt=0)
    price: Optional[float] = Field(default=None, ge=0)
    transaction_date: Optional[date] = None
    settlement_date: Optional[date] = None
    commission: Optional[float] = Field(default=None, ge=0)
    vat: Optional[float] = Field(default=None, ge=0)
    exchange_rate: Optional[float] = Field(default=None, gt=0)
    notes: Optional[str] = None

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip().upper()
        if not value:
            raise ValueError("symbol is required")
        return value


def compute_amounts(
    transaction_type: TransactionType,
    shares: float,
    price: float,
    commission: float = 0.0,
    vat: float = 0.0
) -> tuple:
    """
    Derive (gross_amount, net_amount) for a trade.

    BUY:  net = gross + commission + vat
    SELL: net = gross - commission - vat
    """
    gross = shares * price
    fees = commission + vat
    if transaction_type == TransactionType.BUY:
        return gross, gross + fees
    return gross, gross - fees
