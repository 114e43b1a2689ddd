"""
Database models for BahtLedger.
All SQLModel table definitions are centralized here.
"""

from models.portfolio import Portfolio
from models.holding import Holding
from models.transaction import Transaction, TransactionCreate, TransactionUpdate, TransactionType
from models.app_settings import AppSettings
from models.currency_rate import CurrencyRate

__all__ = [
    'Portfolio',
    'Holding',
    'Transaction',
    'TransactionCreate',
    'TransactionUpdate',
    'TransactionType',
    'AppSettings',
    'CurrencyRate',
]
