"""
Main application entry point.
"""

import logging
import signal
import threading
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from alertengine.alerts.notifications import NotificationEnqueuer
from alertengine.alerts.processor import AlertProcessor
from alertengine.config import AppConfig
from alertengine.database.connection import Database
from alertengine.database.repository import (
    AlertHistoryRepository,
    AlertRepository,
    IndicatorRepository,
    NewsRepository,
    NotificationQueueRepository,
    PriceRepository,
    StockRepository,
    UserPreferenceRepository,
)
from alertengine.indicators.job import IndicatorCalculationJob
from alertengine.market_hours import MarketHours
from alertengine.rules.engine import ConditionEvaluator
from alertengine.scheduling.scheduler import AlertScheduler

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO", debug: bool = False) -> None:
    log_level = logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=log_level, format=LOG_FORMAT)


class AlertEngineApp:
    """Wires the stores, evaluator, jobs and scheduler together."""

    def __init__(self, db: Database, config: Optional[AppConfig] = None):
        """
        Initialize the app.

        Args:
            db: Initialized database
            config: Application config, defaults apply when omitted
        """
        self.db = db
        self.config = config or AppConfig()

        # Initialize repositories
        self.stock_repo = StockRepository(db)
        self.price_repo = PriceRepository(db)
        self.indicator_repo = IndicatorRepository(db)
        self.alert_repo = AlertRepository(db)
        self.history_repo = AlertHistoryRepository(db)
        self.queue_repo = NotificationQueueRepository(db)
        self.preference_repo = UserPreferenceRepository(db)
        self.news_repo = NewsRepository(db)

        market = self.config.market
        self.market_hours = MarketHours(
            start_hour=market.start_hour,
            start_minute=market.start_minute,
            end_hour=market.end_hour,
            end_minute=market.end_minute,
            tz=market.timezone,
        )

        # Initialize services
        self.evaluator = ConditionEvaluator(
            self.price_repo, self.indicator_repo, self.news_repo
        )
        self.enqueuer = NotificationEnqueuer(
            self.queue_repo, self.preference_repo, self.stock_repo
        )
        alerts = self.config.alerts
        self.processor = AlertProcessor(
            alerts=self.alert_repo,
            history=self.history_repo,
            prices=self.price_repo,
            evaluator=self.evaluator,
            enqueuer=self.enqueuer,
            market_hours=self.market_hours,
            default_cooldown_minutes=alerts.default_cooldown_minutes,
            max_workers=alerts.max_workers,
            evaluation_timeout_seconds=alerts.evaluation_timeout_seconds,
        )
        self.indicator_job = IndicatorCalculationJob(
            self.stock_repo,
            self.price_repo,
            self.indicator_repo,
            history_days=self.config.data_source.history_days,
        )

        schedule = self.config.schedule
        self.scheduler = AlertScheduler(
            processor=self.processor,
            indicator_job=self.indicator_job,
            market_hours=self.market_hours,
            alert_cron=schedule.alert_check.cron,
            indicator_cron=schedule.indicator_calculation.cron,
            alert_market_hours_only=schedule.alert_check.market_hours_only,
            price_only=schedule.alert_check.price_only,
            retention_days=self.config.indicators.retention_days,
            cleanup_weekday=self.config.indicators.cleanup_weekday,
        )

    def serve(self, stop_event: Optional[threading.Event] = None) -> None:
        """Start the scheduler and block until interrupted."""
        stop_event = stop_event or threading.Event()

        def _stop(signum, frame):
            logger.info(f"Received signal {signum}, shutting down")
            stop_event.set()

        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, _stop)
            signal.signal(signal.SIGTERM, _stop)

        self.scheduler.start()
        try:
            stop_event.wait()
        finally:
            self.scheduler.stop()


def main():
    """Service entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Market Alert Engine")
    parser.add_argument(
        "--config", default="config.yaml", help="Path to config file"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--once", action="store_true", help="Run one alert batch and exit"
    )

    args = parser.parse_args()

    # Load config
    from alertengine.config import load_config

    config = load_config(args.config)
    setup_logging(config.advanced.log_level, args.debug)

    # Initialize database
    db = Database(config.database.path)
    db.initialize()

    app = AlertEngineApp(db=db, config=config)
    try:
        if args.once:
            app.scheduler.run_alert_job()
        else:
            app.serve()
    finally:
        db.close()


if __name__ == "__main__":
    main()
