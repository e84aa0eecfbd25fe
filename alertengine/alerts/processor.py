"""
Alert batch processing.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from alertengine.database.models import Alert, AlertHistory, MarketContext
from alertengine.database.repository import (
    AlertHistoryRepository,
    AlertRepository,
    PriceRepository,
)
from alertengine.market_hours import MarketHours
from alertengine.rules.engine import ConditionEvaluator, Deadline, EvaluationResult
from .notifications import NotificationEnqueuer

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AlertStatus(str, Enum):
    TRIGGERED = "triggered"
    NOT_TRIGGERED = "not_triggered"
    SKIPPED_COOLDOWN = "skipped_cooldown"
    SKIPPED_MARKET_CLOSED = "skipped_market_closed"
    FAILED = "failed"


@dataclass
class AlertOutcome:
    """What happened to one alert in a batch."""

    alert_id: int
    status: AlertStatus
    message: str = ""
    error: Optional[str] = None


@dataclass
class BatchResult:
    """Counters for one alert batch."""

    processed_count: int = 0
    triggered_count: int = 0
    failed_count: int = 0
    outcomes: list[AlertOutcome] = field(default_factory=list)

    def add(self, outcome: AlertOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status == AlertStatus.TRIGGERED:
            self.triggered_count += 1
        elif outcome.status == AlertStatus.FAILED:
            self.failed_count += 1


class AlertProcessor:
    """Evaluates active alerts and records the ones that fire."""

    def __init__(
        self,
        alerts: AlertRepository,
        history: AlertHistoryRepository,
        prices: PriceRepository,
        evaluator: ConditionEvaluator,
        enqueuer: NotificationEnqueuer,
        market_hours: Optional[MarketHours] = None,
        default_cooldown_minutes: int = 60,
        max_workers: int = 1,
        evaluation_timeout_seconds: Optional[float] = 30,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the processor.

        Args:
            alerts: Alert store
            history: Alert history sink
            prices: Price store, used for the history snapshot
            evaluator: Condition evaluator
            enqueuer: Notification fan-out
            market_hours: Trading window, defaults to NSE hours
            default_cooldown_minutes: Cooldown for alerts without their own
            max_workers: Alerts evaluated concurrently; 1 means sequential
            evaluation_timeout_seconds: Per-alert budget, 0 or None disables
            clock: Returns the current aware datetime
        """
        self.alerts = alerts
        self.history = history
        self.prices = prices
        self.evaluator = evaluator
        self.enqueuer = enqueuer
        self.market_hours = market_hours or MarketHours()
        self.default_cooldown_minutes = default_cooldown_minutes
        self.max_workers = max(1, max_workers)
        self.evaluation_timeout_seconds = evaluation_timeout_seconds or None
        self.clock = clock

    def run_alert_batch(self, trigger_type: Optional[str] = None) -> BatchResult:
        """
        Evaluate every active alert once.

        A failing alert is logged and counted; it never stops the batch.

        Args:
            trigger_type: Only process alerts of this trigger type

        Returns:
            BatchResult with per-alert outcomes
        """
        started = time.monotonic()
        alerts = self.alerts.list_active(trigger_type)
        result = BatchResult(processed_count=len(alerts))

        if self.max_workers > 1 and len(alerts) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                for outcome in executor.map(self.process_alert, alerts):
                    result.add(outcome)
        else:
            for alert in alerts:
                result.add(self.process_alert(alert))

        logger.info(
            f"Alert batch done in {time.monotonic() - started:.2f}s: "
            f"{result.processed_count} processed, {result.triggered_count} triggered, "
            f"{result.failed_count} failed"
        )
        return result

    def process_alert(self, alert: Alert) -> AlertOutcome:
        """Run one alert through the gates and evaluation. Never raises."""
        now = self.clock()
        try:
            if self.in_cooldown(alert, now):
                return AlertOutcome(alert.id, AlertStatus.SKIPPED_COOLDOWN)

            market_open = self.market_hours.is_open(now)
            if alert.market_hours_only and not market_open:
                logger.debug(f"Market closed, skipping alert {alert.id}")
                return AlertOutcome(alert.id, AlertStatus.SKIPPED_MARKET_CLOSED)

            deadline = Deadline(self.evaluation_timeout_seconds)
            evaluation = self.evaluator.evaluate(alert, now, deadline)
            if not evaluation.triggered:
                return AlertOutcome(
                    alert.id, AlertStatus.NOT_TRIGGERED, evaluation.message
                )

            self.record_trigger(alert, evaluation, now, market_open)
            logger.info(f"Alert {alert.id} triggered: {evaluation.message}")
            return AlertOutcome(alert.id, AlertStatus.TRIGGERED, evaluation.message)

        except Exception as e:
            logger.error(f"Error processing alert {alert.id}: {e}")
            return AlertOutcome(alert.id, AlertStatus.FAILED, error=str(e))

    def in_cooldown(self, alert: Alert, now: datetime) -> bool:
        if alert.last_triggered is None:
            return False
        cooldown = alert.cooldown_minutes
        if cooldown is None:
            cooldown = self.default_cooldown_minutes
        return now - alert.last_triggered < timedelta(minutes=cooldown)

    def record_trigger(
        self,
        alert: Alert,
        evaluation: EvaluationResult,
        now: datetime,
        market_open: bool,
    ) -> AlertHistory:
        """
        Write the history snapshot, queue notifications and stamp the alert.

        The three writes commit together; a failure leaves none of them.
        """
        current_price = evaluation.current_price
        current_volume = evaluation.current_volume
        if current_price is None:
            latest = self.prices.get_latest_bar(alert.stock_id)
            if latest is not None:
                current_price = latest.close
                current_volume = latest.volume

        price_change = None
        price_change_percent = None
        if alert.baseline_price and current_price is not None:
            price_change = round(current_price - alert.baseline_price, 2)
            price_change_percent = round(price_change / alert.baseline_price * 100, 2)

        created = alert.baseline_timestamp or alert.created_at
        age_minutes = int((now - created).total_seconds() // 60) if created else None

        with self.history.db.transaction():
            record = self.history.create(
                AlertHistory(
                    alert_id=alert.id,
                    user_id=alert.user_id,
                    stock_id=alert.stock_id,
                    triggered_at=now,
                    trigger_value=evaluation.trigger_value,
                    threshold_value=alert.threshold,
                    baseline_price=alert.baseline_price,
                    price_change=price_change,
                    price_change_percent=price_change_percent,
                    trigger_volume=current_volume,
                    market_context=MarketContext(
                        is_market_hours=market_open,
                        alert_age_minutes=age_minutes,
                        trigger_type=alert.trigger_type,
                        condition=alert.condition,
                    ),
                    message=evaluation.message,
                )
            )
            self.enqueuer.enqueue(alert, evaluation, now)
            self.alerts.update_last_triggered(alert.id, now)
        return record
