"""
Holding Repository - data access layer for Holding model.
"""

from typing import List, Optional
from sqlmodel import Session, select

from db_engine import get_engine
from models import Holding


class HoldingRepository:
    """Repository for Holding persistence. Derived fields are written only via save()."""

    @staticmethod
    def get_by_pair(portfolio_id: str, symbol: str, session: Optional[Session] = None) -> Optional[Holding]:
        """
        Retrieve the holding for one (portfolio, symbol) pair.

        Args:
            portfolio_id: Owning portfolio
            symbol: Ticker symbol
            session: Optional existing session for transaction reuse

        Returns:
            Holding object or None if not found
        """
        def _get_by_pair(sess: Session) -> Optional[Holding]:
            statement = select(Holding).where(
                Holding.portfolio_id == portfolio_id,
                Holding.symbol == symbol.upper()
            )
            return sess.exec(statement).first()

        if session is not None:
            return _get_by_pair(session)
        with Session(get_engine()) as session:
            return _get_by_pair(session)

    @staticmethod
    def get_all(portfolio_id: Optional[str] = None, session: Optional[Session] = None) -> List[Holding]:
        """Retrieve all holdings, optionally limited to one portfolio."""
        def _get_all(sess: Session) -> List[Holding]:
            statement = select(Holding)
            if portfolio_id is not None:
                statement = statement.where(Holding.portfolio_id == portfolio_id)
            statement = statement.order_by(Holding.created_at, Holding.id)
            return list(sess.exec(statement).all())

        if session is not None:
            return _get_all(session)
        with Session(get_engine()) as session:
            return _get_all(session)

    @staticmethod
    def save(holding: Holding, session: Optional[Session] = None) -> Holding:
        """Insert or update a holding."""
        def _save(sess: Session) -> Holding:
            sess.add(holding)
            sess.flush()
            return holding

        if session is not None:
            return _save(session)
        with Session(get_engine()) as session:
            result = _save(session)
            session.commit()
            session.refresh(result)
            return result

    @staticmethod
    def delete_by_portfolio(portfolio_id: str, session: Optional[Session] = None) -> int:
        """Delete all holdings of a portfolio. Returns the number removed."""
        def _delete_by_portfolio(sess: Session) -> int:
            statement = select(Holding).where(Holding.portfolio_id == portfolio_id)
            count = 0
            for holding in sess.exec(statement).all():
                sess.delete(holding)
                count += 1
            sess.flush()
            return count

        if session is not None:
            return _delete_by_portfolio(session)
        with Session(get_engine()) as session:
            count = _delete_by_portfolio(session)
            session.commit()
            return count
