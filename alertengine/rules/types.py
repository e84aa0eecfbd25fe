"""
Alert condition types and rule implementations.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional, Type, TypeVar

from alertengine.database.models import Alert, PriceBar
from alertengine.database.repository import (
    IndicatorRepository,
    NewsRepository,
    PriceRepository,
)
from alertengine.errors import AlertTimeoutError, UnsupportedConditionError
from alertengine.indicators.calculator import IndicatorType

VOLUME_LOOKBACK_DAYS = 30
VOLUME_CONFIRMATION_MULTIPLIER = 1.5
VOLUME_SPIKE_MULTIPLIER = 2.0
NEWS_LOOKBACK_HOURS = 24


class TriggerType(str, Enum):
    """What an alert watches."""

    PRICE = "price"
    VOLUME = "volume"
    INDICATOR = "indicator"
    NEWS = "news"


class PriceCondition(str, Enum):
    ABOVE = "above"
    BELOW = "below"
    CROSSES_ABOVE = "crosses_above"
    CROSSES_BELOW = "crosses_below"


class VolumeCondition(str, Enum):
    ABOVE_AVERAGE = "above_average"
    BELOW_AVERAGE = "below_average"
    SPIKE = "spike"


class IndicatorCondition(str, Enum):
    ABOVE = "above"
    BELOW = "below"
    CROSSOVER = "crossover"
    CROSSUNDER = "crossunder"


class ConditionLogic(str, Enum):
    AND = "AND"
    OR = "OR"


# Names used by the legacy management API
TRIGGER_TYPE_ALIASES = {
    "stock_price": TriggerType.PRICE,
    "technical_indicator": TriggerType.INDICATOR,
}

E = TypeVar("E", bound=Enum)


def parse_condition(enum_cls: Type[E], value: Optional[str], what: str) -> E:
    """
    Resolve a stored condition name into its enum member.

    Raises:
        UnsupportedConditionError: If the name is not a member of ``enum_cls``
    """
    if value is not None:
        for member in enum_cls:
            if member.value.lower() == str(value).lower():
                return member
    raise UnsupportedConditionError(f"Unsupported {what}: {value}")


def parse_trigger_type(value: Optional[str]) -> TriggerType:
    """Resolve a trigger type, accepting legacy aliases."""
    if value in TRIGGER_TYPE_ALIASES:
        return TRIGGER_TYPE_ALIASES[value]
    return parse_condition(TriggerType, value, "alert trigger type")


@dataclass
class EvaluationResult:
    """Outcome of evaluating one alert condition."""

    triggered: bool
    message: str
    trigger_value: Optional[float] = None
    current_price: Optional[float] = None
    current_volume: Optional[int] = None


class Deadline:
    """Time budget for one alert evaluation, checked between store reads."""

    def __init__(
        self,
        seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.seconds = seconds
        self._clock = clock
        self._expires_at = clock() + seconds if seconds else None

    @classmethod
    def unlimited(cls) -> "Deadline":
        return cls(None)

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def check(self, stage: str) -> None:
        """
        Raises:
            AlertTimeoutError: If the budget is spent
        """
        if self.expired:
            raise AlertTimeoutError(
                f"Evaluation exceeded {self.seconds}s before {stage}"
            )


def trailing_average_volume(
    prices: PriceRepository, latest: PriceBar
) -> Optional[float]:
    """Average volume over the bars in the 30 days before ``latest``."""
    history = prices.get_price_bars(
        latest.stock_id,
        start=latest.date - timedelta(days=VOLUME_LOOKBACK_DAYS),
        end=latest.date,
    )
    if not history:
        return None
    return sum(bar.volume or 0 for bar in history) / len(history)


class Rule(ABC):
    """Base class for alert conditions."""

    @abstractmethod
    def evaluate(
        self, alert: Alert, now: datetime, deadline: Deadline
    ) -> EvaluationResult:
        """
        Evaluate the condition for an alert.

        Args:
            alert: Alert being evaluated
            now: Evaluation time
            deadline: Budget checked before each store read

        Returns:
            EvaluationResult with the verdict and a diagnostic message
        """
        pass


class PriceRule(Rule):
    """Latest close against a threshold, or a crossing relative to the baseline.

    Crossings compare the baseline captured at alert creation with the current
    price, not the previous bar.
    """

    def __init__(self, prices: PriceRepository, condition: PriceCondition):
        self.prices = prices
        self.condition = condition

    def evaluate(
        self, alert: Alert, now: datetime, deadline: Deadline
    ) -> EvaluationResult:
        if alert.threshold is None:
            raise UnsupportedConditionError(f"Price alert {alert.id} has no threshold")

        deadline.check("latest price lookup")
        latest = self.prices.get_latest_bar(alert.stock_id)
        if latest is None:
            return EvaluationResult(triggered=False, message="No price data available")

        price = latest.close
        threshold = alert.threshold
        baseline = alert.baseline_price

        if self.condition == PriceCondition.ABOVE:
            triggered = price > threshold
            verb = "is above" if triggered else "is not above"
        elif self.condition == PriceCondition.BELOW:
            triggered = price < threshold
            verb = "is below" if triggered else "is not below"
        else:
            if baseline is None:
                return EvaluationResult(
                    triggered=False,
                    message="No baseline price recorded for crossing condition",
                    trigger_value=price,
                    current_price=price,
                    current_volume=latest.volume,
                )
            if self.condition == PriceCondition.CROSSES_ABOVE:
                triggered = baseline <= threshold and price > threshold
                verb = "crossed above" if triggered else "has not crossed above"
            else:
                triggered = baseline >= threshold and price < threshold
                verb = "crossed below" if triggered else "has not crossed below"

        message = f"Price ({price}) {verb} {threshold}"
        if baseline is not None and self.condition in (
            PriceCondition.CROSSES_ABOVE,
            PriceCondition.CROSSES_BELOW,
        ):
            message += f" (baseline {baseline})"

        if triggered and alert.volume_confirmation:
            deadline.check("volume history lookup")
            average = trailing_average_volume(self.prices, latest)
            required = (
                average * VOLUME_CONFIRMATION_MULTIPLIER if average is not None else None
            )
            if required is None or latest.volume <= required:
                triggered = False
                message += (
                    f", but volume {latest.volume} is not above "
                    f"{VOLUME_CONFIRMATION_MULTIPLIER}x the 30-day average"
                )
            else:
                message += f" with volume confirmation ({latest.volume})"

        return EvaluationResult(
            triggered=triggered,
            message=message,
            trigger_value=price,
            current_price=price,
            current_volume=latest.volume,
        )


class VolumeRule(Rule):
    """Latest volume against the trailing 30-day average."""

    def __init__(self, prices: PriceRepository, condition: VolumeCondition):
        self.prices = prices
        self.condition = condition

    def evaluate(
        self, alert: Alert, now: datetime, deadline: Deadline
    ) -> EvaluationResult:
        deadline.check("latest volume lookup")
        latest = self.prices.get_latest_bar(alert.stock_id)
        if latest is None or not latest.volume:
            return EvaluationResult(triggered=False, message="No volume data available")

        deadline.check("volume history lookup")
        average = trailing_average_volume(self.prices, latest)
        if average is None:
            return EvaluationResult(
                triggered=False,
                message="Not enough volume history",
                trigger_value=latest.volume,
                current_price=latest.close,
                current_volume=latest.volume,
            )

        volume = latest.volume
        if self.condition == VolumeCondition.ABOVE_AVERAGE:
            triggered = volume > average
            verb = "is above" if triggered else "is not above"
            reference = f"average {average:.0f}"
        elif self.condition == VolumeCondition.BELOW_AVERAGE:
            triggered = volume < average
            verb = "is below" if triggered else "is not below"
            reference = f"average {average:.0f}"
        else:
            triggered = volume > average * VOLUME_SPIKE_MULTIPLIER
            verb = "spiked above" if triggered else "did not spike above"
            reference = f"{VOLUME_SPIKE_MULTIPLIER}x average {average:.0f}"

        return EvaluationResult(
            triggered=triggered,
            message=f"Volume ({volume}) {verb} {reference}",
            trigger_value=volume,
            current_price=latest.close,
            current_volume=volume,
        )


class IndicatorRule(Rule):
    """Stored indicator value against a threshold or a second indicator.

    Crossovers compare the last two stored samples of both indicators.
    """

    def __init__(
        self,
        indicators: IndicatorRepository,
        indicator_type: IndicatorType,
        period: int,
        condition: IndicatorCondition,
        threshold: Optional[float] = None,
        compare_type: Optional[IndicatorType] = None,
        compare_period: Optional[int] = None,
    ):
        if condition in (IndicatorCondition.ABOVE, IndicatorCondition.BELOW):
            if threshold is None:
                raise UnsupportedConditionError(
                    f"Indicator condition '{condition.value}' needs a threshold"
                )
        elif compare_type is None:
            raise UnsupportedConditionError(
                f"Indicator condition '{condition.value}' needs a compare indicator"
            )

        self.indicators = indicators
        self.indicator_type = indicator_type
        self.period = period
        self.condition = condition
        self.threshold = threshold
        self.compare_type = compare_type
        self.compare_period = compare_period or period

    @property
    def label(self) -> str:
        return f"{self.indicator_type.value}({self.period})"

    @property
    def compare_label(self) -> str:
        return f"{self.compare_type.value}({self.compare_period})"

    def evaluate(
        self, alert: Alert, now: datetime, deadline: Deadline
    ) -> EvaluationResult:
        if self.condition in (IndicatorCondition.CROSSOVER, IndicatorCondition.CROSSUNDER):
            return self._evaluate_cross(alert.stock_id, deadline)

        deadline.check(f"{self.label} lookup")
        latest = self.indicators.get_latest(
            alert.stock_id, self.indicator_type.value, self.period
        )
        if latest is None:
            return EvaluationResult(
                triggered=False,
                message=f"No {self.indicator_type.value} data available",
            )

        value = latest.value
        if self.condition == IndicatorCondition.ABOVE:
            triggered = value > self.threshold
            verb = "is above" if triggered else "is not above"
        else:
            triggered = value < self.threshold
            verb = "is below" if triggered else "is not below"

        return EvaluationResult(
            triggered=triggered,
            message=f"{self.label} ({value}) {verb} {self.threshold}",
            trigger_value=value,
        )

    def _evaluate_cross(self, stock_id: int, deadline: Deadline) -> EvaluationResult:
        deadline.check(f"{self.label} history lookup")
        primary = self.indicators.get_history(
            stock_id, self.indicator_type.value, self.period, limit=2
        )
        deadline.check(f"{self.compare_label} history lookup")
        compare = self.indicators.get_history(
            stock_id, self.compare_type.value, self.compare_period, limit=2
        )

        if len(primary) < 2 or len(compare) < 2:
            return EvaluationResult(
                triggered=False,
                message=f"Not enough data for {self.condition.value} analysis",
            )

        current, previous = primary[0].value, primary[1].value
        compare_current, compare_previous = compare[0].value, compare[1].value

        if self.condition == IndicatorCondition.CROSSOVER:
            triggered = previous <= compare_previous and current > compare_current
            verb = "crossed above" if triggered else "did not cross above"
        else:
            triggered = previous >= compare_previous and current < compare_current
            verb = "crossed below" if triggered else "did not cross below"

        return EvaluationResult(
            triggered=triggered,
            message=(
                f"{self.label} ({current}) {verb} "
                f"{self.compare_label} ({compare_current})"
            ),
            trigger_value=current,
        )


class NewsRule(Rule):
    """Any news mention since the last trigger, or within the last 24 hours."""

    def __init__(self, news: NewsRepository, sentiment: Optional[str] = None):
        self.news = news
        self.sentiment = sentiment

    def evaluate(
        self, alert: Alert, now: datetime, deadline: Deadline
    ) -> EvaluationResult:
        since = now - timedelta(hours=NEWS_LOOKBACK_HOURS)
        if alert.last_triggered is not None and alert.last_triggered > since:
            since = alert.last_triggered

        deadline.check("news lookup")
        mention = self.news.get_latest_since(alert.stock_id, since, self.sentiment)
        kind = f"{self.sentiment} " if self.sentiment else ""
        if mention is None:
            return EvaluationResult(
                triggered=False,
                message=f"No new {kind}news since {since.isoformat()}",
            )

        return EvaluationResult(
            triggered=True,
            message=f"New {kind}news: {mention.headline}",
        )
