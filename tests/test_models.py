"""
Data model tests.
Tests for dataclass models and their defaults.
"""

from datetime import date

from alertengine.database.models import (
    Alert,
    IndicatorValue,
    MarketContext,
    NotificationTask,
    Stock,
    UserPreference,
)


class TestStockModel:
    """Test Stock model."""

    def test_create_stock(self):
        """Should default to an active NSE stock."""
        stock = Stock(symbol="TCS", name="Tata Consultancy Services")
        assert stock.exchange == "NSE"
        assert stock.is_active is True
        assert stock.id is None


class TestAlertModel:
    """Test Alert model."""

    def test_defaults(self):
        """Should default to market-hours-only AND logic without volume confirmation."""
        alert = Alert(user_id=1, stock_id=2, trigger_type="price", condition="above")
        assert alert.market_hours_only is True
        assert alert.volume_confirmation is False
        assert alert.condition_logic == "AND"
        assert alert.cooldown_minutes is None
        assert alert.last_triggered is None


class TestIndicatorValueModel:
    """Test IndicatorValue model."""

    def test_optional_metadata(self):
        value = IndicatorValue(
            stock_id=1,
            indicator_type="SMA",
            period=20,
            value=101.5,
            calculation_date=date(2024, 6, 12),
        )
        assert value.upper_band is None
        assert value.fast_period is None


class TestMarketContext:
    """Test MarketContext serialization."""

    def test_to_dict(self):
        context = MarketContext(
            is_market_hours=False,
            alert_age_minutes=None,
            trigger_type="news",
            condition="new_mention",
        )
        assert context.to_dict() == {
            "is_market_hours": False,
            "alert_age_minutes": None,
            "trigger_type": "news",
            "condition": "new_mention",
        }


class TestNotificationModels:
    """Test notification task and preference defaults."""

    def test_task_defaults(self, market_open_time):
        task = NotificationTask(
            user_id=1,
            alert_id=2,
            content="x",
            notification_method_id=3,
            priority_id=3,
            scheduled_at=market_open_time,
        )
        assert task.status == "pending"
        assert task.attempts == 0
        assert task.max_attempts == 3

    def test_preference_defaults(self):
        pref = UserPreference(user_id=1)
        assert pref.email_enabled is False
        assert pref.sms_enabled is False
        assert pref.push_enabled is True
