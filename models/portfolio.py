"""
Portfolio model - a named grouping that owns holdings and transactions.
"""

from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field

from models.common import generate_id


class Portfolio(SQLModel, table=True):
    """Represents a named portfolio."""
    id: str = Field(default_factory=generate_id, primary_key=True)
    name: str = Field(index=True)
    description: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.now)
