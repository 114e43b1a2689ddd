"""
Transaction Repository - data access layer for Transaction model.
Every method takes an optional session; writes inside a caller's session are
flushed but not committed so the caller controls the unit of work.
"""

from typing import Any, Dict, Iterable, List, Optional
from sqlmodel import Session, select

from db_engine import get_engine
from models import Transaction


class TransactionRepository:
    """Repository for Transaction CRUD operations."""

    @staticmethod
    def add(transaction: Transaction, session: Optional[Session] = None) -> Transaction:
        """
        Add a new transaction to the database.

        Args:
            transaction: Transaction to persist
            session: Optional existing session for transaction reuse

        Returns:
            Persisted Transaction object
        """
        def _add(sess: Session) -> Transaction:
            sess.add(transaction)
            sess.flush()
            return transaction

        if session is not None:
            return _add(session)
        with Session(get_engine()) as session:
            result = _add(session)
            session.commit()
            session.refresh(result)
            return result

    @staticmethod
    def add_many(transactions: List[Transaction], session: Optional[Session] = None) -> List[Transaction]:
        """Add several transactions as one write."""
        def _add_many(sess: Session) -> List[Transaction]:
            sess.add_all(transactions)
            sess.flush()
            return transactions

        if session is not None:
            return _add_many(session)
        with Session(get_engine()) as session:
            result = _add_many(session)
            session.commit()
            for tx in result:
                session.refresh(tx)
            return result

    @staticmethod
    def get_by_id(transaction_id: str, session: Optional[Session] = None) -> Optional[Transaction]:
        """
        Retrieve a transaction by its ID.

        Args:
            transaction_id: Transaction ID to look up
            session: Optional existing session for transaction reuse

        Returns:
            Transaction object or None if not found
        """
        def _get_by_id(sess: Session) -> Optional[Transaction]:
            return sess.get(Transaction, transaction_id)

        if session is not None:
            return _get_by_id(session)
        with Session(get_engine()) as session:
            return _get_by_id(session)

    @staticmethod
    def get_by_ids(transaction_ids: Iterable[str], session: Optional[Session] = None) -> List[Transaction]:
        """Retrieve every transaction whose id is in transaction_ids."""
        ids = list(transaction_ids)

        def _get_by_ids(sess: Session) -> List[Transaction]:
            if not ids:
                return []
            statement = select(Transaction).where(Transaction.id.in_(ids))
            return list(sess.exec(statement).all())

        if session is not None:
            return _get_by_ids(session)
        with Session(get_engine()) as session:
            return _get_by_ids(session)

    @staticmethod
    def get_all(portfolio_id: Optional[str] = None, session: Optional[Session] = None) -> List[Transaction]:
        """
        Retrieve all transactions, optionally limited to one portfolio.
        Ordered by insertion time.
        """
        def _get_all(sess: Session) -> List[Transaction]:
            statement = select(Transaction)
            if portfolio_id is not None:
                statement = statement.where(Transaction.portfolio_id == portfolio_id)
            statement = statement.order_by(Transaction.created_at, Transaction.id)
            return list(sess.exec(statement).all())

        if session is not None:
            return _get_all(session)
        with Session(get_engine()) as session:
            return _get_all(session)

    @staticmethod
    def get_by_pair(portfolio_id: str, symbol: str, session: Optional[Session] = None) -> List[Transaction]:
        """
        Retrieve all transactions for one (portfolio, symbol) pair.

        Args:
            portfolio_id: Owning portfolio
            symbol: Ticker symbol
            session: Optional existing session for transaction reuse

        Returns:
            List of Transaction objects
        """
        def _get_by_pair(sess: Session) -> List[Transaction]:
            statement = select(Transaction).where(
                Transaction.portfolio_id == portfolio_id,
                Transaction.symbol == symbol.upper()
            )
            return list(sess.exec(statement).all())

        if session is not None:
            return _get_by_pair(session)
        with Session(get_engine()) as session:
            return _get_by_pair(session)

    @staticmethod
    def update(
        transaction_id: str,
        updates: Dict[str, Any],
        session: Optional[Session] = None
    ) -> Optional[Transaction]:
        """
        Update an existing transaction.
        Only the keys present in updates are written.

        Returns:
            Updated Transaction object or None if not found
        """
        def _update(sess: Session) -> Optional[Transaction]:
            transaction = sess.get(Transaction, transaction_id)
            if transaction is None:
                return None
            transaction.sqlmodel_update(updates)
            sess.add(transaction)
            sess.flush()
            return transaction

        if session is not None:
            return _update(session)
        with Session(get_engine()) as session:
            result = _update(session)
            session.commit()
            if result is not None:
                session.refresh(result)
            return result

    @staticmethod
    def delete_many(transaction_ids: Iterable[str], session: Optional[Session] = None) -> List[Transaction]:
        """
        Delete transactions by id in a single write.

        Returns:
            The deleted Transaction objects (unknown ids are ignored)
        """
        ids = list(transaction_ids)

        def _delete_many(sess: Session) -> List[Transaction]:
            transactions = TransactionRepository.get_by_ids(ids, session=sess)
            for tx in transactions:
                sess.delete(tx)
            sess.flush()
            return transactions

        if session is not None:
            return _delete_many(session)
        with Session(get_engine(), expire_on_commit=False) as session:
            try:
                result = _delete_many(session)
                session.commit()
                return result
            except Exception:
                session.rollback()
                raise

    @staticmethod
    def delete_by_portfolio(portfolio_id: str, session: Optional[Session] = None) -> int:
        """
        Delete all transactions for a specific portfolio.

        Returns:
            Number of transactions deleted
        """
        def _delete_by_portfolio(sess: Session) -> int:
            statement = select(Transaction).where(Transaction.portfolio_id == portfolio_id)
            count = 0
            for tx in sess.exec(statement).all():
                sess.delete(tx)
                count += 1
            sess.flush()
            return count

        if session is not None:
            return _delete_by_portfolio(session)
        with Session(get_engine()) as session:
            count = _delete_by_portfolio(session)
            session.commit()
            return count
