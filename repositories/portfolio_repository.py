"""
Portfolio Repository - data access layer for Portfolio model.
"""

from typing import List, Optional
from sqlmodel import Session, select

from db_engine import get_engine
from models import Portfolio


class PortfolioRepository:
    """Repository for Portfolio CRUD operations."""

    @staticmethod
    def add(name: str, description: Optional[str] = None, session: Optional[Session] = None) -> Portfolio:
        """
        Add a new portfolio to the database.

        Args:
            name: Display name
            description: Optional free text
            session: Optional existing session for transaction reuse

        Returns:
            Created Portfolio object
        """
        def _create_portfolio(sess: Session) -> Portfolio:
            portfolio = Portfolio(name=name, description=description)
            sess.add(portfolio)
            sess.flush()
            return portfolio

        if session is not None:
            return _create_portfolio(session)
        with Session(get_engine()) as session:
            result = _create_portfolio(session)
            session.commit()
            session.refresh(result)
            return result

    @staticmethod
    def get_all(session: Optional[Session] = None) -> List[Portfolio]:
        """Retrieve all portfolios in creation order."""
        def _get_all(sess: Session) -> List[Portfolio]:
            statement = select(Portfolio).order_by(Portfolio.created_at, Portfolio.id)
            return list(sess.exec(statement).all())

        if session is not None:
            return _get_all(session)
        with Session(get_engine()) as session:
            return _get_all(session)

    @staticmethod
    def get_by_id(portfolio_id: str, session: Optional[Session] = None) -> Optional[Portfolio]:
        """Retrieve a portfolio by its ID."""
        def _get_by_id(sess: Session) -> Optional[Portfolio]:
            return sess.get(Portfolio, portfolio_id)

        if session is not None:
            return _get_by_id(session)
        with Session(get_engine()) as session:
            return _get_by_id(session)

    @staticmethod
    def update(
        portfolio_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        session: Optional[Session] = None
    ) -> Optional[Portfolio]:
        """
        Rename a portfolio or change its description.

        Returns:
            Updated Portfolio object or None if not found
        """
        def _update(sess: Session) -> Optional[Portfolio]:
            portfolio = sess.get(Portfolio, portfolio_id)
            if portfolio is None:
                return None
            if name is not None:
                portfolio.name = name
            if description is not None:
                portfolio.description = description
            sess.add(portfolio)
            sess.flush()
            return portfolio

        if session is not None:
            return _update(session)
        with Session(get_engine()) as session:
            result = _update(session)
            session.commit()
            if result is not None:
                session.refresh(result)
            return result

    @staticmethod
    def delete(portfolio_id: str, session: Optional[Session] = None) -> bool:
        """
        Delete a portfolio row.
        Holdings and transactions must be removed first (see PortfolioService).

        Returns:
            True if a row was deleted
        """
        def _delete(sess: Session) -> bool:
            portfolio = sess.get(Portfolio, portfolio_id)
            if portfolio is None:
                return False
            sess.delete(portfolio)
            sess.flush()
            return True

        if session is not None:
            return _delete(session)
        with Session(get_engine()) as session:
            try:
                deleted = _delete(session)
                session.commit()
                return deleted
            except Exception:
                session.rollback()
                raise
