"""
Backup service - full JSON export and wholesale restore.

File layout (version 2.x):

    {
      "version": "2.0.0",
      "exportedAt": "2025-11-25T10:00:00+00:00",
      "portfolios": [...], "holdings": [...], "transactions": [...],
      "settings": {...}, "currencyRate": {...}
    }

Version 1.x files nest the collections under "data" with camelCase fields
and no exchange rates; they are upgraded on read.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from config import get_settings
from db_engine import get_session
from models import AppSettings, CurrencyRate, Holding, Portfolio, Transaction
from repositories import (
    AppSettingsRepository,
    CurrencyRateRepository,
    HoldingRepository,
    PortfolioRepository,
    TransactionRepository,
)

logger = logging.getLogger(__name__)

BACKUP_VERSION = "2.0.0"
COLLECTIONS = ("portfolios", "holdings", "transactions")


class BackupValidationError(ValueError):
    """Raised when a backup file cannot be read."""


@dataclass
class BackupData:
    """A parsed backup, already converted to model instances."""
    version: str
    exported_at: str
    portfolios: List[Portfolio] = field(default_factory=list)
    holdings: List[Holding] = field(default_factory=list)
    transactions: List[Transaction] = field(default_factory=list)
    settings: Optional[AppSettings] = None
    currency_rate: Optional[CurrencyRate] = None
    upgraded_from: Optional[str] = None


@dataclass
class BackupSummary:
    portfolio_count: int
    holding_count: int
    transaction_count: int
    exported_at: str
    version: str


@dataclass
class BackupResult:
    """Outcome of a restore."""
    success: bool
    error: Optional[str] = None
    summary: Optional[BackupSummary] = None


def create_backup(session: Optional[Session] = None) -> Dict[str, Any]:
    """
    Export every collection as a JSON-ready dict.

    Args:
        session: Optional existing session for transaction reuse

    Returns:
        Backup dict in the current format
    """
    def _create(sess: Session) -> Dict[str, Any]:
        settings = AppSettingsRepository.get(session=sess)
        rate = CurrencyRateRepository.get(session=sess)
        return {
            "version": BACKUP_VERSION,
            "exportedAt": datetime.now(timezone.utc).isoformat(),
            "portfolios": [p.model_dump(mode="json") for p in PortfolioRepository.get_all(session=sess)],
            "holdings": [h.model_dump(mode="json") for h in HoldingRepository.get_all(session=sess)],
            "transactions": [t.model_dump(mode="json") for t in TransactionRepository.get_all(session=sess)],
            "settings": settings.model_dump(mode="json"),
            "currencyRate": rate.model_dump(mode="json") if rate is not None else None,
        }

    if session is not None:
        backup = _create(session)
    else:
        with get_session() as session:
            backup = _create(session)
    logger.info(
        f"Backup created: {len(backup['portfolios'])} portfolios, "
        f"{len(backup['holdings'])} holdings, {len(backup['transactions'])} transactions"
    )
    return backup


def backup_to_json(backup: Dict[str, Any]) -> str:
    return json.dumps(backup, indent=2, ensure_ascii=False)


def get_backup_file_name(now: Optional[datetime] = None) -> str:
    """portfolio-backup-YYYY-MM-DD-HH-MM-SS.json"""
    now = now or datetime.now()
    return f"portfolio-backup-{now.strftime('%Y-%m-%d-%H-%M-%S')}.json"


def _is_legacy(version: str) -> bool:
    return version.split(".", 1)[0] == "1"


def validate_backup(obj: Any) -> Optional[str]:
    """Structural check of a decoded backup. Returns an error message or None."""
    if not isinstance(obj, dict):
        return "Invalid backup file: not a valid JSON object"

    version = obj.get("version")
    if not version or not isinstance(version, str):
        return "Invalid backup file: missing version"

    if _is_legacy(version):
        container = obj.get("data")
        if not isinstance(container, dict):
            return "Invalid backup file: missing data"
    else:
        container = obj

    for name in COLLECTIONS:
        if not isinstance(container.get(name), list):
            return f"Invalid backup file: {name} must be an array"
    for name in ("settings", "currencyRate"):
        value = container.get(name)
        if value is not None and not isinstance(value, dict):
            return f"Invalid backup file: {name} must be an object"
    return None


def _naive_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp into naive local time, as stored by the app."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _iso_date(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)[:10]


def _upgrade_v1(container: Dict[str, Any]) -> Dict[str, Any]:
    """Map a 1.x backup's camelCase records onto current field names."""
    default_rate = get_settings().default_exchange_rate

    portfolios = [
        {
            "id": p["id"],
            "name": p.get("name", ""),
            "description": p.get("description"),
            "created_at": _naive_datetime(p.get("createdAt")) or datetime.now(),
        }
        for p in container["portfolios"]
    ]

    transactions = []
    for index, t in enumerate(container["transactions"]):
        trade_date = _iso_date(t.get("date"))
        created_at = _naive_datetime(t.get("createdAt"))
        if created_at is None:
            # Keep file order for trades on the same day
            created_at = datetime.combine(date.fromisoformat(trade_date), time()) + timedelta(microseconds=index)
        transactions.append({
            "id": t["id"],
            "portfolio_id": t["portfolioId"],
            "symbol": t["symbol"],
            "company_name": t.get("companyName") or "",
            "transaction_type": t["type"],
            "shares": t["shares"],
            "price": t["price"],
            "transaction_date": trade_date,
            "settlement_date": _iso_date(t.get("settlementDate")),
            "gross_amount": t.get("grossAmount", t["shares"] * t["price"]),
            "commission": abs(t.get("commission") or 0.0),
            "vat": abs(t.get("vat") or 0.0),
            "net_amount": t.get("netAmount", t["shares"] * t["price"]),
            "exchange_rate": t.get("exchangeRate") or default_rate,
            "notes": t.get("notes"),
            "created_at": created_at,
        })

    holdings = []
    for h in container["holdings"]:
        lots = [
            {
                "transaction_id": lot.get("id", ""),
                "shares": lot.get("shares", 0.0),
                "remaining_shares": lot.get("shares", 0.0),
                "price": lot.get("price", 0.0),
                "date": _iso_date(lot.get("date")),
                "commission": lot.get("commission", 0.0),
                "exchange_rate": lot.get("exchangeRate") or default_rate,
            }
            for lot in h.get("lots") or []
        ]
        holdings.append({
            "id": h["id"],
            "portfolio_id": h["portfolioId"],
            "symbol": h["symbol"],
            "company_name": h.get("companyName") or "",
            "shares": h.get("shares", 0.0),
            "avg_cost": h.get("avgCost", 0.0),
            "avg_exchange_rate": h.get("avgExchangeRate") or default_rate,
            "lots": lots,
            "created_at": _naive_datetime(h.get("createdAt")) or datetime.now(),
            "updated_at": _naive_datetime(h.get("updatedAt")) or datetime.now(),
        })

    settings = container.get("settings")
    if settings is not None:
        settings = {
            "default_portfolio_id": settings.get("defaultPortfolioId"),
            "show_in_thb": bool(settings.get("showInTHB", False)),
            "dark_mode": bool(settings.get("darkMode", False)),
        }

    rate = container.get("currencyRate")
    if rate is not None and rate.get("usdThb") is not None:
        rate = {
            "usd_thb": rate["usdThb"],
            "last_updated": _naive_datetime(rate.get("lastUpdated")) or datetime.now(),
            "is_manual": bool(rate.get("isManual", False)),
        }
    else:
        rate = None

    return {
        "portfolios": portfolios,
        "holdings": holdings,
        "transactions": transactions,
        "settings": settings,
        "currencyRate": rate,
    }


def load_backup(obj: Dict[str, Any]) -> BackupData:
    """
    Convert a decoded backup dict into model instances.

    Raises:
        BackupValidationError: If the structure or any record is invalid
    """
    error = validate_backup(obj)
    if error:
        raise BackupValidationError(error)

    version = obj["version"]
    upgraded_from = None
    if _is_legacy(version):
        try:
            container = _upgrade_v1(obj["data"])
        except (KeyError, TypeError, ValueError) as e:
            raise BackupValidationError(f"Invalid backup file: cannot upgrade version {version}: {e}")
        upgraded_from = version
        logger.info(f"Upgrading backup from version {version}")
    else:
        container = obj

    try:
        settings = container.get("settings")
        rate = container.get("currencyRate")
        return BackupData(
            version=BACKUP_VERSION if upgraded_from else version,
            exported_at=str(obj.get("exportedAt", "")),
            portfolios=[Portfolio.model_validate(p) for p in container["portfolios"]],
            holdings=[Holding.model_validate(h) for h in container["holdings"]],
            transactions=[Transaction.model_validate(t) for t in container["transactions"]],
            settings=AppSettings.model_validate(settings) if settings is not None else None,
            currency_rate=CurrencyRate.model_validate(rate) if rate is not None else None,
            upgraded_from=upgraded_from,
        )
    except ValidationError as e:
        raise BackupValidationError(f"Invalid backup file: {e.errors()[0].get('msg', 'invalid record')}")


def parse_backup(text: str) -> BackupData:
    """Decode and validate a backup JSON string."""
    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        raise BackupValidationError("Failed to parse backup file: invalid JSON")
    return load_backup(obj)


def _fresh(records: List[Any]) -> List[Any]:
    """Unattached copies, so one BackupData can be restored more than once."""
    return [type(record).model_validate(record.model_dump()) for record in records]


def get_backup_summary(backup: BackupData) -> BackupSummary:
    return BackupSummary(
        portfolio_count=len(backup.portfolios),
        holding_count=len(backup.holdings),
        transaction_count=len(backup.transactions),
        exported_at=backup.exported_at,
        version=backup.version,
    )


def restore_backup(backup: Union[BackupData, Dict[str, Any]]) -> BackupResult:
    """
    Replace every collection with the backup's contents in one transaction.

    There is no merge: existing portfolios, holdings, transactions, settings
    and the stored rate are removed first. Holdings from an upgraded 1.x
    file are reprojected from the restored transactions.

    Returns:
        BackupResult with a summary of what was restored
    """
    if not isinstance(backup, BackupData):
        try:
            backup = load_backup(backup)
        except BackupValidationError as e:
            return BackupResult(success=False, error=str(e))

    # Imported here to keep the module importable from the ledger service
    from services.ledger_service import LedgerService

    with get_session() as session:
        try:
            for model in (Holding, Transaction, Portfolio):
                session.execute(delete(model))
            session.flush()

            session.add_all(_fresh(backup.portfolios))
            session.flush()
            session.add_all(_fresh(backup.transactions))
            session.add_all(_fresh(backup.holdings))
            session.flush()

            settings = _fresh([backup.settings])[0] if backup.settings is not None else AppSettings()
            rate = _fresh([backup.currency_rate])[0] if backup.currency_rate is not None else None
            AppSettingsRepository.replace(settings, session)
            CurrencyRateRepository.replace(rate, session)

            if backup.upgraded_from:
                pairs = list(dict.fromkeys((t.portfolio_id, t.symbol) for t in backup.transactions))
                LedgerService.reproject_pairs(session, pairs)

            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Restore failed, rolled back: {e}")
            return BackupResult(success=False, error=f"Database error during restore: {e}")
        except Exception as e:
            session.rollback()
            logger.error(f"Restore failed, rolled back: {e}")
            return BackupResult(success=False, error=f"Restore failed: {e}")

    summary = get_backup_summary(backup)
    logger.info(
        f"Restored backup {summary.version}: {summary.portfolio_count} portfolios, "
        f"{summary.holding_count} holdings, {summary.transaction_count} transactions"
    )
    return BackupResult(success=True, summary=summary)
