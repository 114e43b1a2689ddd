"""
Ledger service - the single entry point for every transaction-affecting change.

Each operation writes the transaction store, recomputes the affected
(portfolio, symbol) positions through the lot ledger and reprojects the
holdings inside one database session. The session commits once at the end;
any failure rolls the whole operation back, so holdings never drift from
the transactions they are derived from.
"""

import logging
import threading
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from config import get_settings
from db_engine import get_session
from models import Holding, Transaction, TransactionCreate, TransactionUpdate
from models.transaction import compute_amounts
from repositories import HoldingRepository, PortfolioRepository, TransactionRepository
from services.csv_import import ParsedCsvRow, duplicate_key, filter_duplicate_rows
from services.holding_projector import project_holding
from services.ledger import compute_position, sort_key

logger = logging.getLogger(__name__)

# Fields whose change invalidates the stored gross/net amounts
_AMOUNT_FIELDS = {"transaction_type", "shares", "price", "commission", "vat"}

_locks_guard = threading.Lock()
_portfolio_locks: Dict[str, threading.Lock] = {}


def _portfolio_lock(portfolio_id: str) -> threading.Lock:
    with _locks_guard:
        lock = _portfolio_locks.get(portfolio_id)
        if lock is None:
            lock = threading.Lock()
            _portfolio_locks[portfolio_id] = lock
        return lock


@contextmanager
def portfolio_locks(portfolio_ids: Iterable[str]) -> Iterator[None]:
    """Hold the write locks of several portfolios, acquired in sorted order."""
    with ExitStack() as stack:
        for portfolio_id in sorted(set(portfolio_ids)):
            stack.enter_context(_portfolio_lock(portfolio_id))
        yield


def _format_validation_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


@dataclass
class LedgerResult:
    """Outcome of a ledger operation."""
    success: bool
    error: Optional[str] = None
    transactions: List[Transaction] = field(default_factory=list)
    holdings: List[Holding] = field(default_factory=list)
    skipped_duplicates: int = 0

    @classmethod
    def failure(cls, error: str) -> "LedgerResult":
        return cls(success=False, error=error)


class LedgerService:
    """
    Coordinates transaction writes with holding reprojection.
    Writers are serialised per portfolio.
    """

    @staticmethod
    def _open_session() -> Session:
        # Returned objects stay readable after commit
        return get_session(expire_on_commit=False)

    @staticmethod
    def _build_transaction(data: TransactionCreate, default_rate: float) -> Transaction:
        """Turn a validated payload into a table row, deriving missing amounts."""
        gross, net = compute_amounts(
            data.transaction_type, data.shares, data.price, data.commission, data.vat
        )
        values = data.model_dump(exclude={"exchange_rate", "gross_amount", "net_amount", "created_at"})
        transaction = Transaction(
            **values,
            exchange_rate=data.exchange_rate or default_rate,
            gross_amount=data.gross_amount if data.gross_amount is not None else gross,
            net_amount=data.net_amount if data.net_amount is not None else net,
        )
        if data.created_at is not None:
            transaction.created_at = data.created_at
        return transaction

    @staticmethod
    def _recompute_pair(session: Session, portfolio_id: str, symbol: str) -> Optional[Holding]:
        """Run the lot ledger over one pair's full history and reproject its holding."""
        default_rate = get_settings().default_exchange_rate
        transactions = TransactionRepository.get_by_pair(portfolio_id, symbol, session=session)
        position = compute_position(transactions, default_rate)
        existing = HoldingRepository.get_by_pair(portfolio_id, symbol, session=session)

        company_name = ""
        for tx in sorted(transactions, key=sort_key, reverse=True):
            if tx.company_name:
                company_name = tx.company_name
                break
        if not company_name and existing is not None:
            company_name = existing.company_name

        holding = project_holding(existing, portfolio_id, symbol, company_name, position, default_rate)
        if holding is None:
            return None
        return HoldingRepository.save(holding, session=session)

    @staticmethod
    def reproject_pairs(session: Session, pairs: Iterable[Tuple[str, str]]) -> List[Holding]:
        """Recompute several pairs inside a unit of work the caller owns (no commit)."""
        holdings = []
        for portfolio_id, symbol in pairs:
            holding = LedgerService._recompute_pair(session, portfolio_id, symbol)
            if holding is not None:
                holdings.append(holding)
        return holdings

    @staticmethod
    def _run(operation: str, work) -> LedgerResult:
        """Run work(session) in one unit of work, committing once or rolling back."""
        session = LedgerService._open_session()
        try:
            result = work(session)
            if result.success:
                session.commit()
            else:
                session.rollback()
            return result
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"{operation} failed, rolled back: {e}")
            return LedgerResult.failure(f"Database error during {operation}: {e}")
        except Exception as e:
            session.rollback()
            logger.error(f"{operation} failed, rolled back: {e}")
            return LedgerResult.failure(f"{operation} failed: {e}")
        finally:
            session.close()

    @staticmethod
    def add_transaction(data: Union[TransactionCreate, Dict[str, Any]]) -> LedgerResult:
        """
        Record a new transaction and reproject its holding.

        Args:
            data: TransactionCreate payload or a dict of its fields

        Returns:
            LedgerResult with the stored transaction and the updated holding
        """
        try:
            payload = data if isinstance(data, TransactionCreate) else TransactionCreate.model_validate(data)
        except ValidationError as e:
            return LedgerResult.failure(_format_validation_error(e))

        def _add(session: Session) -> LedgerResult:
            if PortfolioRepository.get_by_id(payload.portfolio_id, session=session) is None:
                return LedgerResult.failure(f"Portfolio {payload.portfolio_id} not found")
            transaction = LedgerService._build_transaction(payload, get_settings().default_exchange_rate)
            TransactionRepository.add(transaction, session=session)
            holdings = LedgerService.reproject_pairs(session, [(transaction.portfolio_id, transaction.symbol)])
            logger.info(
                f"Added {transaction.transaction_type.value} {transaction.shares} {transaction.symbol} "
                f"to portfolio {transaction.portfolio_id}"
            )
            return LedgerResult(success=True, transactions=[transaction], holdings=holdings)

        with portfolio_locks([payload.portfolio_id]):
            return LedgerService._run("add transaction", _add)

    @staticmethod
    def edit_transaction(
        transaction_id: str,
        updates: Union[TransactionUpdate, Dict[str, Any]]
    ) -> LedgerResult:
        """
        Apply a partial update to a transaction.

        The holding of the transaction's pair is recomputed from the post-edit
        history. When the edit moves the transaction to another symbol or
        portfolio, both the old and the new pair are recomputed.
        """
        try:
            payload = updates if isinstance(updates, TransactionUpdate) else TransactionUpdate.model_validate(updates)
        except ValidationError as e:
            return LedgerResult.failure(_format_validation_error(e))

        changes = payload.model_dump(exclude_unset=True)
        # None is not a valid value for the required columns
        changes = {
            key: value for key, value in changes.items()
            if value is not None or key in ("settlement_date", "notes")
        }

        current = TransactionRepository.get_by_id(transaction_id)
        if current is None:
            return LedgerResult.failure(f"Transaction {transaction_id} not found")
        lock_ids = {current.portfolio_id, changes.get("portfolio_id", current.portfolio_id)}

        def _edit(session: Session) -> LedgerResult:
            transaction = TransactionRepository.get_by_id(transaction_id, session=session)
            if transaction is None:
                return LedgerResult.failure(f"Transaction {transaction_id} not found")
            new_portfolio = changes.get("portfolio_id", transaction.portfolio_id)
            if new_portfolio not in lock_ids:
                return LedgerResult.failure(f"Transaction {transaction_id} changed during edit, retry")
            if PortfolioRepository.get_by_id(new_portfolio, session=session) is None:
                return LedgerResult.failure(f"Portfolio {new_portfolio} not found")

            old_pair = (transaction.portfolio_id, transaction.symbol)
            values = dict(changes)
            if _AMOUNT_FIELDS & values.keys():
                merged = {name: values.get(name, getattr(transaction, name)) for name in _AMOUNT_FIELDS}
                values["gross_amount"], values["net_amount"] = compute_amounts(
                    merged["transaction_type"], merged["shares"], merged["price"],
                    merged["commission"], merged["vat"]
                )
            transaction = TransactionRepository.update(transaction_id, values, session=session)
            new_pair = (transaction.portfolio_id, transaction.symbol)

            pairs = [old_pair] if old_pair == new_pair else [old_pair, new_pair]
            holdings = LedgerService.reproject_pairs(session, pairs)
            logger.info(f"Edited transaction {transaction_id}; recomputed {len(pairs)} holding(s)")
            return LedgerResult(success=True, transactions=[transaction], holdings=holdings)

        with portfolio_locks(lock_ids):
            return LedgerService._run("edit transaction", _edit)

    @staticmethod
    def delete_transaction(transaction_id: str) -> LedgerResult:
        """Delete one transaction and reproject its holding."""
        result = LedgerService.delete_multiple_transactions([transaction_id])
        if result.success and not result.transactions:
            return LedgerResult.failure(f"Transaction {transaction_id} not found")
        return result

    @staticmethod
    def delete_multiple_transactions(transaction_ids: Iterable[str]) -> LedgerResult:
        """
        Delete several transactions as one store mutation.

        Each distinct (portfolio, symbol) pair touched is recomputed exactly
        once. Unknown ids are ignored.
        """
        ids = list(dict.fromkeys(transaction_ids))
        if not ids:
            return LedgerResult(success=True)

        targets = TransactionRepository.get_by_ids(ids)
        portfolio_ids = {tx.portfolio_id for tx in targets}

        def _delete(session: Session) -> LedgerResult:
            deleted = TransactionRepository.delete_many(ids, session=session)
            if any(tx.portfolio_id not in portfolio_ids for tx in deleted):
                return LedgerResult.failure("Transactions changed during delete, retry")
            pairs: List[Tuple[str, str]] = []
            seen: Set[Tuple[str, str]] = set()
            for tx in deleted:
                pair = (tx.portfolio_id, tx.symbol)
                if pair not in seen:
                    seen.add(pair)
                    pairs.append(pair)
            holdings = LedgerService.reproject_pairs(session, pairs)
            logger.info(f"Deleted {len(deleted)} transaction(s); recomputed {len(pairs)} holding(s)")
            return LedgerResult(success=True, transactions=deleted, holdings=holdings)

        with portfolio_locks(portfolio_ids):
            return LedgerService._run("delete transactions", _delete)

    @staticmethod
    def import_transactions(
        portfolio_id: str,
        rows: List[ParsedCsvRow],
        skip_duplicates: bool = True,
        exchange_rate: Optional[float] = None
    ) -> LedgerResult:
        """
        Commit parsed CSV rows to a portfolio.

        Rows are inserted in file order, then every symbol they touch is
        recomputed over its full merged history.

        Args:
            portfolio_id: Target portfolio
            rows: Output of parse_csv
            skip_duplicates: Drop rows already present in the portfolio or repeated in the file
            exchange_rate: USD->THB applied to every row (defaults to settings)

        Returns:
            LedgerResult with inserted transactions, updated holdings and the
            number of skipped duplicates
        """
        rate = exchange_rate or get_settings().default_exchange_rate

        def _import(session: Session) -> LedgerResult:
            if PortfolioRepository.get_by_id(portfolio_id, session=session) is None:
                return LedgerResult.failure(f"Portfolio {portfolio_id} not found")

            to_insert = list(rows)
            skipped = 0
            if skip_duplicates:
                existing_keys = {
                    duplicate_key(tx.symbol, tx.transaction_date, tx.transaction_type, tx.shares, tx.price)
                    for tx in TransactionRepository.get_all(portfolio_id, session=session)
                }
                to_insert, duplicates = filter_duplicate_rows(to_insert, existing_keys)
                skipped = len(duplicates)

            # Spread creation times so same-day rows keep their file order
            batch_start = datetime.now()
            transactions = [
                row.to_transaction(portfolio_id, batch_start + timedelta(microseconds=index), rate)
                for index, row in enumerate(to_insert)
            ]
            TransactionRepository.add_many(transactions, session=session)

            symbols = list(dict.fromkeys(tx.symbol for tx in transactions))
            holdings = LedgerService.reproject_pairs(session, [(portfolio_id, s) for s in symbols])
            logger.info(
                f"Imported {len(transactions)} transaction(s) into portfolio {portfolio_id}, "
                f"skipped {skipped} duplicate(s)"
            )
            return LedgerResult(
                success=True,
                transactions=transactions,
                holdings=holdings,
                skipped_duplicates=skipped,
            )

        with portfolio_locks([portfolio_id]):
            return LedgerService._run("import transactions", _import)

    @staticmethod
    def recalculate_holding(portfolio_id: str, symbol: str) -> LedgerResult:
        """Recompute and reproject one holding from its stored transactions."""
        symbol = symbol.strip().upper()

        def _recalculate(session: Session) -> LedgerResult:
            holdings = LedgerService.reproject_pairs(session, [(portfolio_id, symbol)])
            return LedgerResult(success=True, holdings=holdings)

        with portfolio_locks([portfolio_id]):
            return LedgerService._run("recalculate holding", _recalculate)

    @staticmethod
    def recalculate_portfolio(portfolio_id: str) -> LedgerResult:
        """Recompute every holding of a portfolio, including symbols with no transactions left."""
        def _recalculate(session: Session) -> LedgerResult:
            symbols = [tx.symbol for tx in TransactionRepository.get_all(portfolio_id, session=session)]
            symbols += [h.symbol for h in HoldingRepository.get_all(portfolio_id, session=session)]
            pairs = [(portfolio_id, s) for s in dict.fromkeys(symbols)]
            holdings = LedgerService.reproject_pairs(session, pairs)
            return LedgerResult(success=True, holdings=holdings)

        with portfolio_locks([portfolio_id]):
            return LedgerService._run("recalculate portfolio", _recalculate)
