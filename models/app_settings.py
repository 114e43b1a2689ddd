"""
AppSettings model - stores user preferences and display settings.
"""

from typing import Optional
from sqlmodel import SQLModel, Field


class AppSettings(SQLModel, table=True):
    """Stores user preferences and settings (singleton row)."""
    id: Optional[int] = Field(default=None, primary_key=True)
    default_portfolio_id: Optional[str] = Field(default=None)
    show_in_thb: bool = Field(default=False)
    dark_mode: bool = Field(default=False)
