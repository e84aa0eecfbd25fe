"""
Notification fan-out for triggered alerts.

Only enqueueing happens here; delivery is done by a separate dispatcher
reading the notification queue.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum

from alertengine.database.models import Alert, NotificationTask, UserPreference
from alertengine.database.repository import (
    NotificationQueueRepository,
    StockRepository,
    UserPreferenceRepository,
)
from alertengine.rules.engine import EvaluationResult
from alertengine.rules.types import TriggerType, parse_trigger_type

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


class NotificationMethod(IntEnum):
    EMAIL = 1
    SMS = 2
    PUSH = 3


class PriorityLevel(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3


@dataclass(frozen=True)
class Channel:
    """Queue target for one notification method."""

    method: NotificationMethod
    priority: PriorityLevel


EMAIL_CHANNEL = Channel(NotificationMethod.EMAIL, PriorityLevel.MEDIUM)
SMS_CHANNEL = Channel(NotificationMethod.SMS, PriorityLevel.HIGH)
PUSH_CHANNEL = Channel(NotificationMethod.PUSH, PriorityLevel.HIGH)


class NotificationEnqueuer:
    """Queues one task per enabled channel plus a mandatory push task."""

    def __init__(
        self,
        queue: NotificationQueueRepository,
        preferences: UserPreferenceRepository,
        stocks: StockRepository,
    ):
        self.queue = queue
        self.preferences = preferences
        self.stocks = stocks

    def channels_for(self, preference: UserPreference) -> list[Channel]:
        """Channels to notify, in queue order."""
        channels = []
        if preference.email_enabled:
            channels.append(EMAIL_CHANNEL)
        if preference.sms_enabled:
            channels.append(SMS_CHANNEL)
        channels.append(PUSH_CHANNEL)
        return channels

    def enqueue(
        self, alert: Alert, result: EvaluationResult, now: datetime
    ) -> list[NotificationTask]:
        """
        Queue notifications for a triggered alert.

        Args:
            alert: The alert that fired
            result: Evaluation result that triggered it
            now: Scheduling time for the tasks

        Returns:
            Created notification tasks
        """
        preference = self.preferences.get(alert.user_id)
        if preference is None:
            logger.warning(
                f"No notification preferences for user {alert.user_id}, "
                f"queueing push only for alert {alert.id}"
            )
            preference = UserPreference(user_id=alert.user_id)

        content = self.format_content(alert, result)
        tasks = []
        for channel in self.channels_for(preference):
            task = NotificationTask(
                user_id=alert.user_id,
                alert_id=alert.id,
                content=content,
                notification_method_id=int(channel.method),
                priority_id=int(channel.priority),
                status="pending",
                attempts=0,
                max_attempts=MAX_ATTEMPTS,
                scheduled_at=now,
            )
            tasks.append(self.queue.create(task))

        logger.debug(f"Queued {len(tasks)} notifications for alert {alert.id}")
        return tasks

    def format_content(self, alert: Alert, result: EvaluationResult) -> str:
        """Human-readable notification text."""
        stock = self.stocks.get_by_id(alert.stock_id)
        symbol = stock.symbol if stock else f"Stock {alert.stock_id}"
        trigger_type = parse_trigger_type(alert.trigger_type)

        if trigger_type == TriggerType.PRICE:
            return (
                f"{symbol} price alert: Current price {result.current_price} is "
                f"{alert.condition} your threshold of {alert.threshold}"
            )
        if trigger_type == TriggerType.VOLUME:
            return (
                f"{symbol} volume alert: Unusual trading activity detected "
                f"({result.message})"
            )
        if trigger_type == TriggerType.INDICATOR:
            return f"{symbol} {alert.indicator_type} alert: {result.message}"

        sentiment = f"{alert.sentiment} " if alert.sentiment else ""
        return f"{symbol} news alert: New {sentiment}news article detected"
