"""
Background refresh script using APScheduler.
Periodically refreshes the stored USD/THB rate and the quotes of held symbols.
"""

import logging
import time
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from db_engine import init_db
from repositories import HoldingRepository
from services.exchange_rate import CurrencyService
from services.portfolio import PortfolioService
from services.quotes import QuoteBoard, build_quote_chain

logger = logging.getLogger(__name__)


class RefreshMonitor:
    """Holds the long-lived caches the scheduled jobs write into."""

    def __init__(
        self,
        currency_service: Optional[CurrencyService] = None,
        quote_board: Optional[QuoteBoard] = None
    ):
        self.currency_service = currency_service or CurrencyService()
        self.quote_board = quote_board or QuoteBoard(build_quote_chain())

    def refresh_exchange_rate(self) -> None:
        """Fetch and store the USD/THB rate unless a manual override is active."""
        try:
            stored = self.currency_service.refresh()
            if stored is not None:
                logger.info(f"USD/THB refreshed: {stored.usd_thb:.4f}")
        except Exception as e:
            logger.error(f"Exchange rate refresh failed: {e}")

    def refresh_quotes(self) -> int:
        """Refresh quotes for every symbol with shares held. Returns the number updated."""
        symbols = sorted({h.symbol for h in HoldingRepository.get_all() if h.shares > 0})
        if not symbols:
            logger.debug("No open holdings, skipping quote refresh")
            return 0
        applied = self.quote_board.refresh(symbols)
        missing = set(symbols) - set(applied)
        if missing:
            logger.warning(f"No quote for: {', '.join(sorted(missing))}")
        logger.info(f"Quotes refreshed: {len(applied)}/{len(symbols)}")
        self.log_net_worth()
        return len(applied)

    def log_net_worth(self) -> Optional[dict]:
        """Value every portfolio from the board's cached quotes."""
        try:
            net_worth = PortfolioService.calculate_net_worth(
                currency_service=self.currency_service, quote_board=self.quote_board
            )
        except Exception as e:
            logger.error(f"Net worth calculation failed: {e}")
            return None
        logger.info(
            f"Net worth: {net_worth['total_value_thb']:,.2f} THB "
            f"({net_worth['total_pnl_percent']:+.2f}%)"
        )
        return net_worth


def start_monitor_scheduler(monitor: Optional[RefreshMonitor] = None) -> BackgroundScheduler:
    """
    Start the background scheduler.
    Intervals come from settings (rate_refresh_minutes, quote_refresh_minutes).
    """
    settings = get_settings()
    monitor = monitor or RefreshMonitor()
    scheduler = BackgroundScheduler()

    scheduler.add_job(
        monitor.refresh_exchange_rate,
        trigger=IntervalTrigger(minutes=settings.rate_refresh_minutes),
        id='exchange_rate_refresh',
        name='Exchange Rate Refresh',
        replace_existing=True
    )
    scheduler.add_job(
        monitor.refresh_quotes,
        trigger=IntervalTrigger(minutes=settings.quote_refresh_minutes),
        id='quote_refresh',
        name='Quote Refresh',
        replace_existing=True
    )

    logger.info("Running initial refresh on startup...")
    monitor.refresh_exchange_rate()
    monitor.refresh_quotes()

    scheduler.start()
    logger.info(
        f"Refresh scheduler started: rate every {settings.rate_refresh_minutes} min, "
        f"quotes every {settings.quote_refresh_minutes} min."
    )
    return scheduler


def run_one_time_check() -> None:
    """Run a single refresh (useful for testing)."""
    monitor = RefreshMonitor()
    monitor.refresh_exchange_rate()
    monitor.refresh_quotes()


if __name__ == "__main__":
    import sys

    logging.basicConfig(
        level=get_settings().log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    init_db()

    if len(sys.argv) > 1 and sys.argv[1] == "--once":
        run_one_time_check()
    else:
        scheduler = start_monitor_scheduler()
        print("\n" + "=" * 60)
        print("BahtLedger refresh monitor is running...")
        print("Press Ctrl+C to stop.")
        print("=" * 60 + "\n")
        try:
            while True:
                time.sleep(1)
        except (KeyboardInterrupt, SystemExit):
            logger.info("Shutting down refresh monitor...")
            scheduler.shutdown()
            logger.info("Refresh monitor stopped.")
