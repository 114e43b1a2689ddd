"""
CurrencyRate Repository - data access layer for the cached USD/THB rate.
"""

from typing import Optional
from datetime import datetime
from sqlmodel import Session, select

from db_engine import get_engine
from models import CurrencyRate


class CurrencyRateRepository:
    """Repository for the singleton CurrencyRate row."""

    @staticmethod
    def get(session: Optional[Session] = None) -> Optional[CurrencyRate]:
        """Retrieve the stored rate, or None if nothing was saved yet."""
        def _get(sess: Session) -> Optional[CurrencyRate]:
            return sess.exec(select(CurrencyRate)).first()

        if session is not None:
            return _get(session)
        with Session(get_engine()) as session:
            return _get(session)

    @staticmethod
    def save(
        usd_thb: float,
        last_updated: Optional[datetime] = None,
        is_manual: bool = False,
        session: Optional[Session] = None
    ) -> CurrencyRate:
        """Save or update the stored rate."""
        def _save(sess: Session) -> CurrencyRate:
            rate = sess.exec(select(CurrencyRate)).first()
            if rate is None:
                rate = CurrencyRate(usd_thb=usd_thb)
            rate.usd_thb = usd_thb
            rate.last_updated = last_updated or datetime.now()
            rate.is_manual = is_manual
            sess.add(rate)
            sess.flush()
            return rate

        if session is not None:
            return _save(session)
        with Session(get_engine()) as session:
            result = _save(session)
            session.commit()
            session.refresh(result)
            return result

    @staticmethod
    def replace(rate: Optional[CurrencyRate], session: Session) -> Optional[CurrencyRate]:
        """Replace the stored rate wholesale (used by restore)."""
        for existing in session.exec(select(CurrencyRate)).all():
            session.delete(existing)
        session.flush()
        if rate is not None:
            session.add(rate)
            session.flush()
        return rate
