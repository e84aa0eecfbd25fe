"""
Cron scheduling for the alert and indicator jobs.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from alertengine.alerts.processor import AlertProcessor, BatchResult
from alertengine.indicators.job import IndicatorCalculationJob
from alertengine.market_hours import MarketHours
from alertengine.rules.types import TriggerType
from .single_flight import JobRun, SingleFlight

logger = logging.getLogger(__name__)

ALERT_JOB_ID = "alert_evaluation"
INDICATOR_JOB_ID = "indicator_calculation"


class AlertScheduler:
    """Owns the alert evaluation and indicator calculation cron jobs."""

    def __init__(
        self,
        processor: AlertProcessor,
        indicator_job: IndicatorCalculationJob,
        market_hours: Optional[MarketHours] = None,
        alert_cron: str = "* * * * *",
        indicator_cron: str = "0 16 * * mon-fri",
        alert_market_hours_only: bool = True,
        price_only: bool = False,
        retention_days: int = 365,
        cleanup_weekday: int = 4,
        misfire_grace_seconds: int = 30,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Initialize the scheduler.

        Args:
            processor: Alert batch processor
            indicator_job: Daily indicator job
            market_hours: Trading window, defaults to NSE hours
            alert_cron: Crontab for alert evaluation
            indicator_cron: Crontab for indicator calculation
            alert_market_hours_only: Skip alert runs while the market is closed
            price_only: Only evaluate price alerts on scheduled runs
            retention_days: Indicator retention for the weekly cleanup
            cleanup_weekday: Weekday (Monday is 0) the cleanup runs on
            misfire_grace_seconds: How late a fire may start before it is dropped
            clock: Returns the current aware datetime
        """
        self.processor = processor
        self.indicator_job = indicator_job
        self.market_hours = market_hours or MarketHours()
        self.timezone = self.market_hours.timezone_name
        self.alert_cron = alert_cron
        self.indicator_cron = indicator_cron
        self.alert_market_hours_only = alert_market_hours_only
        self.price_only = price_only
        self.retention_days = retention_days
        self.cleanup_weekday = cleanup_weekday
        self.misfire_grace_seconds = misfire_grace_seconds
        self.clock = clock

        self.alert_flight = SingleFlight(ALERT_JOB_ID)
        self.indicator_flight = SingleFlight(INDICATOR_JOB_ID)
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Register both jobs and start firing them."""
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        scheduler = BackgroundScheduler(
            timezone=self.timezone,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": self.misfire_grace_seconds,
            },
        )
        scheduler.add_job(
            self.run_alert_job,
            trigger=CronTrigger.from_crontab(self.alert_cron, timezone=self.timezone),
            id=ALERT_JOB_ID,
            name="Alert Evaluation",
            replace_existing=True,
        )
        scheduler.add_job(
            self.run_indicator_job,
            trigger=CronTrigger.from_crontab(
                self.indicator_cron, timezone=self.timezone
            ),
            id=INDICATOR_JOB_ID,
            name="Indicator Calculation",
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler

        logger.info(
            f"Scheduler started ({self.timezone}): alerts '{self.alert_cron}', "
            f"indicators '{self.indicator_cron}'"
        )

    def stop(self) -> None:
        """Stop firing jobs. Runs already in progress finish on their own."""
        if not self.is_running:
            logger.debug("Scheduler is not running")
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Scheduler stopped")

    def restart(self) -> None:
        self.stop()
        self.start()

    def run_alert_job(self, price_only: Optional[bool] = None) -> JobRun:
        """
        Run one alert batch through the single-flight guard.

        Args:
            price_only: Only evaluate price alerts, defaults to the configured value
        """
        if price_only is None:
            price_only = self.price_only
        return self.alert_flight.run(self._alert_job_body, price_only)

    def _alert_job_body(self, price_only: bool) -> Optional[BatchResult]:
        if self.alert_market_hours_only and not self.market_hours.is_open(self.clock()):
            logger.debug("Market closed, skipping alert evaluation")
            return None

        trigger_type = TriggerType.PRICE.value if price_only else None
        return self.processor.run_alert_batch(trigger_type)

    def run_indicator_job(self) -> JobRun:
        """Run the daily indicator calculation through the single-flight guard."""
        return self.indicator_flight.run(self._indicator_job_body)

    def _indicator_job_body(self) -> Optional[dict[str, Any]]:
        local = self.market_hours.local_time(self.clock())
        if local.weekday() >= 5:
            logger.info("Weekend, skipping indicator calculation")
            return None

        on = local.date()
        result = self.indicator_job.run(on)
        summary = self.indicator_job.calculation_summary(on)
        for row in summary:
            logger.info(f"  {row.indicator_type}({row.period}): {row.count} values")

        deleted = None
        if local.weekday() == self.cleanup_weekday:
            deleted = self.indicator_job.cleanup_old_indicators(self.retention_days, on)

        return {"run": result, "summary": summary, "deleted": deleted}

    def get_status(self) -> dict[str, Any]:
        """Scheduler, market and per-job status."""
        market = self.market_hours.status(self.clock())
        jobs = {}
        for job_id, flight in (
            (ALERT_JOB_ID, self.alert_flight),
            (INDICATOR_JOB_ID, self.indicator_flight),
        ):
            next_run = None
            if self.is_running:
                job = self._scheduler.get_job(job_id)
                if job is not None and job.next_run_time is not None:
                    next_run = job.next_run_time.isoformat()
            last = flight.last_run
            jobs[job_id] = {
                "state": flight.state.value,
                "next_run": next_run,
                "last_run": (
                    {
                        "status": last.status.value,
                        "started_at": last.started_at.isoformat(),
                        "duration_seconds": round(last.duration_seconds, 2),
                        "reason": last.reason,
                    }
                    if last
                    else None
                ),
            }

        return {
            "running": self.is_running,
            "timezone": self.timezone,
            "market": {
                "is_open": market.is_open,
                "current_time": market.current_time.isoformat(),
                "hours": self.market_hours.describe(),
                "next_open": market.next_open.isoformat() if market.next_open else None,
                "next_close": market.next_close.isoformat() if market.next_close else None,
            },
            "jobs": jobs,
        }
