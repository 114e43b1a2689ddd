"""
CSV import for broker monthly statements.

Expected dialect, one header row and one row per executed trade:

    Symbol & Name,Trade Date,Settlement Date,Buy/Sell,Quantity,Traded Price,Gross Amount,Comm/Fee/Tax,VAT,Net Amount
    NVDA NVIDIA CORPORATION,25/11/2025,26/11/2025,BUY,0.5,172.12,86.06,-0.09,-0.01,86.16

Parsing stops at the first bad row with a single CsvValidationError.
Nothing is written here; committing goes through LedgerService.import_transactions.
"""

import csv
import io
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from config import get_settings
from models.transaction import Transaction, TransactionType
from services.ledger import compute_position

logger = logging.getLogger(__name__)

HEADER_MARKER = "Symbol & Name"
EXPECTED_COLUMNS = 10
GROSS_TOLERANCE = 0.01
# Statement sections that carry no trades
SKIPPED_PREFIXES = ('""', "Options", "Currency")

_NUMBER_PATTERN = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)$")


class CsvValidationError(ValueError):
    """Raised when a statement cannot be parsed."""


@dataclass
class ParsedCsvRow:
    """One trade read from a statement."""
    symbol: str
    company_name: str
    trade_date: date
    settlement_date: date
    transaction_type: TransactionType
    quantity: float
    traded_price: float
    gross_amount: float
    commission: float
    vat: float
    net_amount: float

    def to_transaction(
        self,
        portfolio_id: str,
        created_at: Optional[datetime] = None,
        exchange_rate: Optional[float] = None
    ) -> Transaction:
        """Build a Transaction row; amounts are taken from the statement as-is."""
        transaction = Transaction(
            portfolio_id=portfolio_id,
            symbol=self.symbol,
            company_name=self.company_name,
            transaction_type=self.transaction_type,
            shares=self.quantity,
            price=self.traded_price,
            transaction_date=self.trade_date,
            settlement_date=self.settlement_date,
            gross_amount=self.gross_amount,
            commission=self.commission,
            vat=self.vat,
            net_amount=self.net_amount,
            exchange_rate=exchange_rate or get_settings().default_exchange_rate,
        )
        if created_at is not None:
            transaction.created_at = created_at
        return transaction


@dataclass
class ImportPreview:
    """Resulting position per symbol if the batch were the only history."""
    symbol: str
    company_name: str
    shares: float
    avg_cost: float
    avg_exchange_rate: float


def parse_number(value: str) -> float:
    """
    Parse a statement amount.

    Accepts thousands separators, a leading minus and accounting
    parentheses: "1,234.56", "-0.09", "(0.09)". Blank means 0.
    """
    text = value.strip().replace(",", "")
    if not text:
        return 0.0
    negative = text.startswith("(") and text.endswith(")")
    if negative:
        text = text[1:-1].strip()
    if not _NUMBER_PATTERN.match(text):
        raise ValueError(f"not a number: {value!r}")
    number = float(text)
    return -number if negative else number


def parse_date(value: str) -> date:
    """Parse DD/MM/YYYY."""
    return datetime.strptime(value.strip(), "%d/%m/%Y").date()


def split_symbol_and_name(combined: str) -> Tuple[str, str]:
    """First token is the ticker, the rest is the company name."""
    parts = combined.strip().split(None, 1)
    if not parts:
        return "", ""
    symbol = parts[0].upper()
    company_name = parts[1].strip() if len(parts) > 1 else ""
    return symbol, company_name


def _find_header(lines: List[str]) -> int:
    for index, line in enumerate(lines):
        if HEADER_MARKER in line:
            return index
    raise CsvValidationError(f'CSV header not found. Expected "{HEADER_MARKER}" column.')


def _parse_row(fields: List[str], line_number: int) -> ParsedCsvRow:
    if len(fields) < EXPECTED_COLUMNS:
        raise CsvValidationError(
            f"Line {line_number}: expected {EXPECTED_COLUMNS} columns, found {len(fields)}"
        )
    fields = [f.strip() for f in fields]
    # Trailing empty cells are export padding; anything else is a shifted row
    if any(fields[EXPECTED_COLUMNS:]):
        raise CsvValidationError(
            f"Line {line_number}: expected {EXPECTED_COLUMNS} columns, found {len(fields)}"
        )

    symbol, company_name = split_symbol_and_name(fields[0])
    if not symbol:
        raise CsvValidationError(f"Line {line_number}: missing symbol")

    side = fields[3].upper()
    if side not in (TransactionType.BUY.value, TransactionType.SELL.value):
        raise CsvValidationError(f"Line {line_number}: invalid Buy/Sell value {fields[3]!r}")

    try:
        trade_date = parse_date(fields[1])
    except ValueError:
        raise CsvValidationError(f"Line {line_number}: invalid trade date {fields[1]!r}")
    try:
        settlement_date = parse_date(fields[2]) if fields[2] else trade_date
    except ValueError:
        raise CsvValidationError(f"Line {line_number}: invalid settlement date {fields[2]!r}")

    try:
        quantity = parse_number(fields[4])
        price = parse_number(fields[5])
        gross = parse_number(fields[6])
        commission = parse_number(fields[7])
        vat = parse_number(fields[8])
        net = parse_number(fields[9])
    except ValueError as e:
        raise CsvValidationError(f"Line {line_number}: {e}")

    if quantity <= 0:
        raise CsvValidationError(f"Line {line_number}: quantity must be positive")
    if price < 0:
        raise CsvValidationError(f"Line {line_number}: traded price must not be negative")
    expected_gross = quantity * price
    if fields[6] and abs(gross - expected_gross) > max(GROSS_TOLERANCE, 1e-4 * abs(expected_gross)):
        raise CsvValidationError(
            f"Line {line_number}: gross amount {gross:,.2f} does not match quantity x price ({expected_gross:,.2f})"
        )

    return ParsedCsvRow(
        symbol=symbol,
        company_name=company_name,
        trade_date=trade_date,
        settlement_date=settlement_date,
        transaction_type=TransactionType(side),
        quantity=quantity,
        traded_price=price,
        gross_amount=gross,
        commission=abs(commission),
        vat=abs(vat),
        net_amount=net,
    )


def parse_csv(content: str) -> List[ParsedCsvRow]:
    """
    Parse a statement into trade rows.

    Args:
        content: Full CSV text

    Returns:
        Parsed rows in file order

    Raises:
        CsvValidationError: On the first structural or value error
    """
    if not content or not content.strip():
        raise CsvValidationError("CSV content is empty")

    lines = content.splitlines()
    header_index = _find_header(lines)

    rows: List[ParsedCsvRow] = []
    for offset, line in enumerate(lines[header_index + 1:], start=header_index + 2):
        stripped = line.strip()
        if not stripped or stripped.startswith(SKIPPED_PREFIXES):
            continue
        fields = next(csv.reader(io.StringIO(stripped), skipinitialspace=True))
        rows.append(_parse_row(fields, offset))

    if not rows:
        raise CsvValidationError("No valid transactions found in CSV")
    logger.info(f"Parsed {len(rows)} trade(s) from CSV")
    return rows


def validate_csv(content: str) -> Optional[str]:
    """Return the first validation error message, or None if the statement parses."""
    try:
        parse_csv(content)
    except CsvValidationError as e:
        return str(e)
    return None


def preview_holdings(
    rows: Iterable[ParsedCsvRow],
    default_rate: Optional[float] = None
) -> Dict[str, ImportPreview]:
    """
    Run the lot ledger per symbol over the batch alone.
    Symbols that end with no shares are left out.
    """
    by_symbol: Dict[str, List[Transaction]] = {}
    names: Dict[str, str] = {}
    for index, row in enumerate(rows):
        tx = row.to_transaction("preview", exchange_rate=default_rate)
        tx.id = f"row-{index:06d}"
        tx.created_at = datetime.min
        by_symbol.setdefault(row.symbol, []).append(tx)
        if row.company_name:
            names[row.symbol] = row.company_name

    previews: Dict[str, ImportPreview] = {}
    for symbol, transactions in by_symbol.items():
        position = compute_position(transactions, default_rate)
        if position.shares <= 0:
            continue
        previews[symbol] = ImportPreview(
            symbol=symbol,
            company_name=names.get(symbol, ""),
            shares=position.shares,
            avg_cost=position.avg_cost,
            avg_exchange_rate=position.avg_exchange_rate,
        )
    return previews


def duplicate_key(
    symbol: str,
    trade_date: date,
    transaction_type: TransactionType,
    quantity: float,
    price: float
) -> str:
    """Identity of a trade for duplicate detection: symbol|date|type|quantity|price."""
    side = transaction_type.value if isinstance(transaction_type, TransactionType) else str(transaction_type)
    return f"{symbol.upper()}|{trade_date.isoformat()}|{side}|{float(quantity)!r}|{float(price)!r}"


def row_key(row: ParsedCsvRow) -> str:
    return duplicate_key(row.symbol, row.trade_date, row.transaction_type, row.quantity, row.traded_price)


def filter_duplicate_rows(
    rows: Iterable[ParsedCsvRow],
    existing_keys: Set[str]
) -> Tuple[List[ParsedCsvRow], List[ParsedCsvRow]]:
    """
    Split rows into (unique, duplicates).
    A row repeated within the same file counts as a duplicate after its first occurrence.
    """
    seen = set(existing_keys)
    unique: List[ParsedCsvRow] = []
    duplicates: List[ParsedCsvRow] = []
    for row in rows:
        key = row_key(row)
        if key in seen:
            duplicates.append(row)
        else:
            unique.append(row)
            seen.add(key)
    return unique, duplicates
