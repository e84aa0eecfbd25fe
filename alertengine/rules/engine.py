"""
Rule evaluation engine.
"""

from datetime import datetime
from typing import Callable, Optional

from alertengine.database.models import Alert
from alertengine.database.repository import (
    IndicatorRepository,
    NewsRepository,
    PriceRepository,
)
from alertengine.errors import UnsupportedConditionError
from alertengine.indicators.calculator import parse_indicator_type
from .types import (
    ConditionLogic,
    Deadline,
    EvaluationResult,
    IndicatorCondition,
    IndicatorRule,
    NewsRule,
    PriceCondition,
    PriceRule,
    Rule,
    TriggerType,
    VolumeCondition,
    VolumeRule,
    parse_condition,
    parse_trigger_type,
)

__all__ = ["ConditionEvaluator", "EvaluationResult", "Deadline", "combine_results"]

DEFAULT_INDICATOR_PERIOD = 14


def combine_results(
    primary: EvaluationResult,
    secondary: Optional[EvaluationResult],
    logic: ConditionLogic,
) -> EvaluationResult:
    """
    Combine primary and secondary results with AND/OR.

    The combined trigger value is always the primary's.
    """
    if secondary is None:
        return primary

    if logic == ConditionLogic.AND:
        triggered = primary.triggered and secondary.triggered
    else:
        triggered = primary.triggered or secondary.triggered

    return EvaluationResult(
        triggered=triggered,
        message=f"{primary.message} {logic.value} {secondary.message}",
        trigger_value=primary.trigger_value,
        current_price=primary.current_price,
        current_volume=primary.current_volume,
    )


class ConditionEvaluator:
    """Builds the rule for an alert's trigger type and evaluates it."""

    def __init__(
        self,
        prices: PriceRepository,
        indicators: IndicatorRepository,
        news: NewsRepository,
    ):
        self.prices = prices
        self.indicators = indicators
        self.news = news
        self._builders: dict[TriggerType, Callable[[Alert], Rule]] = {
            TriggerType.PRICE: self._build_price_rule,
            TriggerType.VOLUME: self._build_volume_rule,
            TriggerType.INDICATOR: self._build_indicator_rule,
            TriggerType.NEWS: self._build_news_rule,
        }

    def evaluate(
        self,
        alert: Alert,
        now: datetime,
        deadline: Optional[Deadline] = None,
    ) -> EvaluationResult:
        """
        Evaluate an alert, including its secondary condition if any.

        Args:
            alert: Alert to evaluate
            now: Evaluation time
            deadline: Optional evaluation budget

        Returns:
            Combined EvaluationResult

        Raises:
            UnsupportedConditionError: If the alert names an unknown condition
            UnknownIndicatorTypeError: If the alert names an unknown indicator
            AlertTimeoutError: If the deadline expires
        """
        deadline = deadline or Deadline.unlimited()

        rule = self.create_rule(alert)
        secondary_rule = self.create_secondary_rule(alert)
        logic = parse_condition(
            ConditionLogic, alert.condition_logic or "AND", "condition logic"
        )

        primary = rule.evaluate(alert, now, deadline)
        secondary = (
            secondary_rule.evaluate(alert, now, deadline) if secondary_rule else None
        )
        return combine_results(primary, secondary, logic)

    def create_rule(self, alert: Alert) -> Rule:
        """
        Create the primary Rule for an alert.

        Raises:
            UnsupportedConditionError: If the trigger type or condition is unknown
        """
        trigger_type = parse_trigger_type(alert.trigger_type)
        return self._builders[trigger_type](alert)

    def create_secondary_rule(self, alert: Alert) -> Optional[IndicatorRule]:
        """
        Create the secondary indicator rule, or None if not configured.

        Raises:
            UnsupportedConditionError: If the secondary condition is a crossing,
                which has no compare indicator to cross
        """
        if not alert.secondary_indicator_type:
            return None
        condition = parse_condition(
            IndicatorCondition, alert.secondary_condition, "indicator condition"
        )
        if condition not in (IndicatorCondition.ABOVE, IndicatorCondition.BELOW):
            raise UnsupportedConditionError(
                f"Secondary condition '{condition.value}' is not supported, "
                f"use 'above' or 'below' with a secondary threshold"
            )
        return IndicatorRule(
            indicators=self.indicators,
            indicator_type=parse_indicator_type(alert.secondary_indicator_type),
            period=alert.secondary_indicator_period or DEFAULT_INDICATOR_PERIOD,
            condition=condition,
            threshold=alert.secondary_threshold,
        )

    def _build_price_rule(self, alert: Alert) -> Rule:
        condition = parse_condition(PriceCondition, alert.condition, "price condition")
        return PriceRule(self.prices, condition)

    def _build_volume_rule(self, alert: Alert) -> Rule:
        condition = parse_condition(VolumeCondition, alert.condition, "volume condition")
        return VolumeRule(self.prices, condition)

    def _build_indicator_rule(self, alert: Alert) -> Rule:
        condition = parse_condition(
            IndicatorCondition, alert.condition, "indicator condition"
        )
        compare_type = (
            parse_indicator_type(alert.compare_indicator_type)
            if alert.compare_indicator_type
            else None
        )
        return IndicatorRule(
            indicators=self.indicators,
            indicator_type=parse_indicator_type(alert.indicator_type),
            period=alert.indicator_period or DEFAULT_INDICATOR_PERIOD,
            condition=condition,
            threshold=alert.threshold,
            compare_type=compare_type,
            compare_period=alert.compare_indicator_period,
        )

    def _build_news_rule(self, alert: Alert) -> Rule:
        sentiment = alert.sentiment
        if sentiment and sentiment.lower() == "any":
            sentiment = None
        return NewsRule(self.news, sentiment)
