"""
Condition evaluator tests.
Tests for price, volume, indicator and news rules.
"""

import pytest
from datetime import date, timedelta

from alertengine.database.models import Alert, IndicatorValue, NewsMention
from alertengine.errors import (
    AlertTimeoutError,
    UnknownIndicatorTypeError,
    UnsupportedConditionError,
)
from alertengine.rules.engine import ConditionEvaluator, combine_results
from alertengine.rules.types import (
    ConditionLogic,
    Deadline,
    EvaluationResult,
    PriceCondition,
    PriceRule,
    TriggerType,
    parse_trigger_type,
)


@pytest.fixture
def evaluator(repos):
    return ConditionEvaluator(repos["price"], repos["indicator"], repos["news"])


def price_alert(stock, condition="above", threshold=105.0, **kwargs):
    return Alert(
        user_id=1,
        stock_id=stock.id,
        trigger_type="price",
        condition=condition,
        threshold=threshold,
        **kwargs,
    )


def store_indicator(repos, stock, indicator_type, period, values, end=date(2024, 6, 12)):
    """Store one value per day, oldest first, ending on ``end``."""
    start = end - timedelta(days=len(values) - 1)
    for i, value in enumerate(values):
        repos["indicator"].upsert(
            IndicatorValue(
                stock_id=stock.id,
                indicator_type=indicator_type,
                period=period,
                value=value,
                calculation_date=start + timedelta(days=i),
            )
        )


class TestPriceRule:
    """Test price threshold and crossing conditions."""

    def test_above_triggers(self, evaluator, stock, add_bars, market_open_time):
        """Should trigger when the latest close is above the threshold."""
        add_bars(stock.id, [100, 106])
        result = evaluator.evaluate(price_alert(stock), market_open_time)
        assert result.triggered
        assert result.trigger_value == 106
        assert "106" in result.message

    def test_above_not_triggered(self, evaluator, stock, add_bars, market_open_time):
        add_bars(stock.id, [100, 104])
        result = evaluator.evaluate(price_alert(stock), market_open_time)
        assert not result.triggered

    def test_below_triggers(self, evaluator, stock, add_bars, market_open_time):
        add_bars(stock.id, [100, 95])
        alert = price_alert(stock, condition="below", threshold=96)
        assert evaluator.evaluate(alert, market_open_time).triggered

    def test_no_price_data(self, evaluator, stock, market_open_time):
        """Should not trigger without any bars."""
        result = evaluator.evaluate(price_alert(stock), market_open_time)
        assert not result.triggered
        assert result.message == "No price data available"

    def test_crosses_above_uses_baseline(self, evaluator, stock, add_bars, market_open_time):
        """Should compare the baseline with the current price, not the previous bar."""
        alert = price_alert(stock, condition="crosses_above", baseline_price=100.0)

        add_bars(stock.id, [102])
        assert not evaluator.evaluate(alert, market_open_time).triggered

        add_bars(stock.id, [106])
        assert evaluator.evaluate(alert, market_open_time).triggered

    def test_crosses_above_keeps_triggering(self, evaluator, stock, add_bars, market_open_time):
        """Should trigger on every evaluation while the baseline is unchanged."""
        alert = price_alert(stock, condition="crosses_above", baseline_price=100.0)
        add_bars(stock.id, [106, 107])
        assert evaluator.evaluate(alert, market_open_time).triggered
        assert evaluator.evaluate(alert, market_open_time).triggered

    def test_crosses_above_baseline_already_above(
        self, evaluator, stock, add_bars, market_open_time
    ):
        alert = price_alert(stock, condition="crosses_above", baseline_price=110.0)
        add_bars(stock.id, [112])
        assert not evaluator.evaluate(alert, market_open_time).triggered

    def test_crosses_below(self, evaluator, stock, add_bars, market_open_time):
        alert = price_alert(
            stock, condition="crosses_below", threshold=95.0, baseline_price=100.0
        )
        add_bars(stock.id, [94])
        assert evaluator.evaluate(alert, market_open_time).triggered

    def test_crossing_without_baseline(self, evaluator, stock, add_bars, market_open_time):
        alert = price_alert(stock, condition="crosses_above")
        add_bars(stock.id, [106])
        result = evaluator.evaluate(alert, market_open_time)
        assert not result.triggered
        assert "baseline" in result.message

    def test_volume_confirmation_suppresses(
        self, evaluator, stock, add_bars, market_open_time
    ):
        """Should not trigger when volume is not 1.5x the 30-day average."""
        add_bars(stock.id, [100] * 30 + [106], volumes=[100_000] * 30 + [120_000])
        alert = price_alert(stock, volume_confirmation=True)
        result = evaluator.evaluate(alert, market_open_time)
        assert not result.triggered

    def test_volume_confirmation_passes(
        self, evaluator, stock, add_bars, market_open_time
    ):
        add_bars(stock.id, [100] * 30 + [106], volumes=[100_000] * 30 + [200_000])
        alert = price_alert(stock, volume_confirmation=True)
        result = evaluator.evaluate(alert, market_open_time)
        assert result.triggered
        assert result.current_volume == 200_000

    def test_missing_threshold_raises(self, repos, stock, add_bars, market_open_time):
        add_bars(stock.id, [100])
        rule = PriceRule(repos["price"], PriceCondition.ABOVE)
        with pytest.raises(UnsupportedConditionError):
            rule.evaluate(price_alert(stock, threshold=None), market_open_time, Deadline())


class TestVolumeRule:
    """Test volume conditions against the trailing average."""

    def volume_alert(self, stock, condition):
        return Alert(user_id=1, stock_id=stock.id, trigger_type="volume", condition=condition)

    def test_spike(self, evaluator, stock, add_bars, market_open_time):
        """Should trigger on volume above twice the average."""
        add_bars(stock.id, [100] * 31, volumes=[100_000] * 30 + [250_000])
        result = evaluator.evaluate(self.volume_alert(stock, "spike"), market_open_time)
        assert result.triggered
        assert result.trigger_value == 250_000

    def test_no_spike(self, evaluator, stock, add_bars, market_open_time):
        add_bars(stock.id, [100] * 31, volumes=[100_000] * 30 + [150_000])
        result = evaluator.evaluate(self.volume_alert(stock, "spike"), market_open_time)
        assert not result.triggered

    def test_above_and_below_average(self, evaluator, stock, add_bars, market_open_time):
        add_bars(stock.id, [100] * 31, volumes=[100_000] * 30 + [150_000])
        assert evaluator.evaluate(
            self.volume_alert(stock, "above_average"), market_open_time
        ).triggered
        assert not evaluator.evaluate(
            self.volume_alert(stock, "below_average"), market_open_time
        ).triggered

    def test_no_history(self, evaluator, stock, add_bars, market_open_time):
        add_bars(stock.id, [100], volumes=[250_000])
        result = evaluator.evaluate(self.volume_alert(stock, "spike"), market_open_time)
        assert not result.triggered
        assert result.message == "Not enough volume history"

    def test_no_volume_data(self, evaluator, stock, market_open_time):
        result = evaluator.evaluate(self.volume_alert(stock, "spike"), market_open_time)
        assert result.message == "No volume data available"


class TestIndicatorRule:
    """Test indicator thresholds and crossovers."""

    def indicator_alert(self, stock, condition, **kwargs):
        kwargs.setdefault("indicator_type", "RSI")
        kwargs.setdefault("indicator_period", 14)
        return Alert(
            user_id=1,
            stock_id=stock.id,
            trigger_type="indicator",
            condition=condition,
            **kwargs,
        )

    def test_rsi_below(self, evaluator, repos, stock, market_open_time):
        store_indicator(repos, stock, "RSI", 14, [45.0, 25.0])
        alert = self.indicator_alert(stock, "below", threshold=30)
        result = evaluator.evaluate(alert, market_open_time)
        assert result.triggered
        assert result.trigger_value == 25.0
        assert result.message.startswith("RSI(14)")

    def test_rsi_above_not_triggered(self, evaluator, repos, stock, market_open_time):
        store_indicator(repos, stock, "RSI", 14, [65.0])
        alert = self.indicator_alert(stock, "above", threshold=70)
        assert not evaluator.evaluate(alert, market_open_time).triggered

    def test_no_indicator_data(self, evaluator, stock, market_open_time):
        alert = self.indicator_alert(stock, "above", threshold=70)
        result = evaluator.evaluate(alert, market_open_time)
        assert not result.triggered
        assert result.message == "No RSI data available"

    def test_crossover(self, evaluator, repos, stock, market_open_time):
        """Should trigger when the primary moves from at/below to above."""
        store_indicator(repos, stock, "SMA", 20, [99.0, 102.0])
        store_indicator(repos, stock, "SMA", 50, [100.0, 101.0])
        alert = self.indicator_alert(
            stock,
            "crossover",
            indicator_type="SMA",
            indicator_period=20,
            compare_indicator_type="SMA",
            compare_indicator_period=50,
        )
        assert evaluator.evaluate(alert, market_open_time).triggered

    def test_crossover_from_equal(self, evaluator, repos, stock, market_open_time):
        store_indicator(repos, stock, "SMA", 20, [100.0, 102.0])
        store_indicator(repos, stock, "SMA", 50, [100.0, 101.0])
        alert = self.indicator_alert(
            stock,
            "crossover",
            indicator_type="SMA",
            indicator_period=20,
            compare_indicator_type="SMA",
            compare_indicator_period=50,
        )
        assert evaluator.evaluate(alert, market_open_time).triggered

    def test_crossunder(self, evaluator, repos, stock, market_open_time):
        store_indicator(repos, stock, "EMA", 12, [102.0, 99.0])
        store_indicator(repos, stock, "EMA", 26, [100.0, 100.0])
        alert = self.indicator_alert(
            stock,
            "crossunder",
            indicator_type="EMA",
            indicator_period=12,
            compare_indicator_type="EMA",
            compare_indicator_period=26,
        )
        assert evaluator.evaluate(alert, market_open_time).triggered

    def test_crossover_needs_two_samples(self, evaluator, repos, stock, market_open_time):
        """Should report insufficient data with a single compare sample."""
        store_indicator(repos, stock, "SMA", 20, [99.0, 102.0])
        store_indicator(repos, stock, "SMA", 50, [101.0])
        alert = self.indicator_alert(
            stock,
            "crossover",
            indicator_type="SMA",
            indicator_period=20,
            compare_indicator_type="SMA",
            compare_indicator_period=50,
        )
        result = evaluator.evaluate(alert, market_open_time)
        assert not result.triggered
        assert result.message == "Not enough data for crossover analysis"

    def test_crossover_without_compare_raises(self, evaluator, stock, market_open_time):
        alert = self.indicator_alert(stock, "crossover")
        with pytest.raises(UnsupportedConditionError):
            evaluator.evaluate(alert, market_open_time)

    def test_unknown_indicator_raises(self, evaluator, stock, market_open_time):
        alert = self.indicator_alert(stock, "above", threshold=1, indicator_type="STOCH")
        with pytest.raises(UnknownIndicatorTypeError):
            evaluator.evaluate(alert, market_open_time)


class TestNewsRule:
    """Test news mention conditions."""

    def news_alert(self, stock, sentiment=None, last_triggered=None):
        return Alert(
            user_id=1,
            stock_id=stock.id,
            trigger_type="news",
            condition="new_mention",
            sentiment=sentiment,
            last_triggered=last_triggered,
        )

    def test_recent_mention_triggers(self, evaluator, repos, stock, market_open_time):
        repos["news"].create(
            NewsMention(
                stock_id=stock.id,
                headline="Reliance announces results",
                published_at=market_open_time - timedelta(hours=2),
                sentiment="positive",
            )
        )
        result = evaluator.evaluate(self.news_alert(stock), market_open_time)
        assert result.triggered
        assert "Reliance announces results" in result.message

    def test_old_mention_ignored(self, evaluator, repos, stock, market_open_time):
        repos["news"].create(
            NewsMention(
                stock_id=stock.id,
                headline="Old news",
                published_at=market_open_time - timedelta(hours=30),
            )
        )
        assert not evaluator.evaluate(self.news_alert(stock), market_open_time).triggered

    def test_mention_before_last_trigger_ignored(
        self, evaluator, repos, stock, market_open_time
    ):
        repos["news"].create(
            NewsMention(
                stock_id=stock.id,
                headline="Already notified",
                published_at=market_open_time - timedelta(hours=3),
            )
        )
        alert = self.news_alert(
            stock, last_triggered=market_open_time - timedelta(hours=1)
        )
        assert not evaluator.evaluate(alert, market_open_time).triggered

    def test_sentiment_filter(self, evaluator, repos, stock, market_open_time):
        repos["news"].create(
            NewsMention(
                stock_id=stock.id,
                headline="Downgrade",
                published_at=market_open_time - timedelta(hours=1),
                sentiment="negative",
            )
        )
        assert not evaluator.evaluate(
            self.news_alert(stock, sentiment="positive"), market_open_time
        ).triggered
        assert evaluator.evaluate(
            self.news_alert(stock, sentiment="any"), market_open_time
        ).triggered


class TestConditionEvaluator:
    """Test rule construction and combination."""

    def test_unsupported_condition_raises(self, evaluator, stock, market_open_time):
        with pytest.raises(UnsupportedConditionError):
            evaluator.evaluate(price_alert(stock, condition="sideways"), market_open_time)

    def test_unknown_trigger_type_raises(self, evaluator, stock):
        alert = price_alert(stock)
        alert.trigger_type = "earnings"
        with pytest.raises(UnsupportedConditionError):
            evaluator.create_rule(alert)

    def test_trigger_type_aliases(self):
        assert parse_trigger_type("stock_price") == TriggerType.PRICE
        assert parse_trigger_type("technical_indicator") == TriggerType.INDICATOR

    def test_secondary_and(self, evaluator, repos, stock, add_bars, market_open_time):
        """Should require both conditions with AND."""
        add_bars(stock.id, [100, 106])
        store_indicator(repos, stock, "RSI", 14, [45.0])
        alert = price_alert(
            stock,
            secondary_indicator_type="RSI",
            secondary_indicator_period=14,
            secondary_condition="below",
            secondary_threshold=30,
        )
        result = evaluator.evaluate(alert, market_open_time)
        assert not result.triggered
        assert " AND " in result.message
        assert result.trigger_value == 106

    def test_secondary_crossing_rejected(self, evaluator, stock):
        """Should reject a secondary crossover, which has nothing to cross."""
        alert = price_alert(
            stock,
            secondary_indicator_type="SMA",
            secondary_indicator_period=20,
            secondary_condition="crossover",
        )
        with pytest.raises(UnsupportedConditionError, match="Secondary condition 'crossover'"):
            evaluator.create_secondary_rule(alert)

    def test_secondary_or(self, evaluator, repos, stock, add_bars, market_open_time):
        add_bars(stock.id, [100, 106])
        store_indicator(repos, stock, "RSI", 14, [45.0])
        alert = price_alert(
            stock,
            secondary_indicator_type="RSI",
            secondary_indicator_period=14,
            secondary_condition="below",
            secondary_threshold=30,
            condition_logic="OR",
        )
        result = evaluator.evaluate(alert, market_open_time)
        assert result.triggered
        assert " OR " in result.message

    def test_combine_results_keeps_primary_value(self):
        primary = EvaluationResult(triggered=True, message="p", trigger_value=1.0)
        secondary = EvaluationResult(triggered=True, message="s", trigger_value=2.0)
        combined = combine_results(primary, secondary, ConditionLogic.AND)
        assert combined.triggered
        assert combined.message == "p AND s"
        assert combined.trigger_value == 1.0

    def test_expired_deadline_raises(self, evaluator, stock, add_bars, market_open_time):
        """Should stop before the next store read once the budget is spent."""
        add_bars(stock.id, [106])
        ticks = [0.0]
        deadline = Deadline(5, clock=lambda: ticks[0])
        ticks[0] = 10.0
        with pytest.raises(AlertTimeoutError):
            evaluator.evaluate(price_alert(stock), market_open_time, deadline)


class TestDeadline:
    """Test the evaluation budget."""

    def test_unlimited_never_expires(self):
        deadline = Deadline.unlimited()
        assert not deadline.expired
        assert deadline.remaining() is None
        deadline.check("anything")

    def test_remaining(self):
        ticks = [100.0]
        deadline = Deadline(30, clock=lambda: ticks[0])
        ticks[0] = 110.0
        assert deadline.remaining() == 20.0
        assert not deadline.expired
