"""
Data models for the alert engine.
"""

from dataclasses import dataclass, asdict
from datetime import date, datetime
from typing import Optional, Any


@dataclass
class Stock:
    """Tradable stock."""

    symbol: str
    name: str
    exchange: str = "NSE"
    is_active: bool = True
    id: Optional[int] = None


@dataclass
class PriceBar:
    """Daily OHLCV bar. One bar per stock and date."""

    stock_id: int
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: int
    id: Optional[int] = None


@dataclass
class IndicatorValue:
    """Calculated indicator value for one stock, type, period and day."""

    stock_id: int
    indicator_type: str  # "RSI", "SMA", "EMA", "MACD", "bollinger_bands"
    period: int
    value: float
    calculation_date: date
    fast_period: Optional[int] = None
    slow_period: Optional[int] = None
    signal_period: Optional[int] = None
    upper_band: Optional[float] = None
    lower_band: Optional[float] = None
    std_dev_multiplier: Optional[float] = None
    id: Optional[int] = None


@dataclass
class Alert:
    """User alert configuration.

    ``baseline_price`` and ``baseline_timestamp`` are captured when the alert
    is created and are never touched by evaluation. The processor only ever
    writes ``last_triggered``.
    """

    user_id: int
    stock_id: int
    trigger_type: str  # "price", "volume", "indicator", "news"
    condition: str
    name: str = ""
    threshold: Optional[float] = None
    baseline_price: Optional[float] = None
    baseline_timestamp: Optional[datetime] = None
    cooldown_minutes: Optional[int] = None
    last_triggered: Optional[datetime] = None
    market_hours_only: bool = True
    volume_confirmation: bool = False
    is_active: bool = True
    indicator_type: Optional[str] = None
    indicator_period: Optional[int] = None
    compare_indicator_type: Optional[str] = None
    compare_indicator_period: Optional[int] = None
    sentiment: Optional[str] = None
    secondary_indicator_type: Optional[str] = None
    secondary_indicator_period: Optional[int] = None
    secondary_condition: Optional[str] = None
    secondary_threshold: Optional[float] = None
    condition_logic: str = "AND"
    created_at: Optional[datetime] = None
    id: Optional[int] = None


@dataclass
class MarketContext:
    """Market snapshot recorded with a triggered alert."""

    is_market_hours: bool
    alert_age_minutes: Optional[int]
    trigger_type: str
    condition: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AlertHistory:
    """Snapshot written each time an alert fires."""

    alert_id: int
    user_id: int
    stock_id: int
    triggered_at: datetime
    trigger_value: Optional[float] = None
    threshold_value: Optional[float] = None
    baseline_price: Optional[float] = None
    price_change: Optional[float] = None
    price_change_percent: Optional[float] = None
    trigger_volume: Optional[int] = None
    market_context: Optional[MarketContext] = None
    message: str = ""
    id: Optional[int] = None


@dataclass
class NotificationTask:
    """Queued notification, consumed by an external dispatcher."""

    user_id: int
    alert_id: int
    content: str
    notification_method_id: int
    priority_id: int
    scheduled_at: datetime
    status: str = "pending"
    attempts: int = 0
    max_attempts: int = 3
    id: Optional[int] = None


@dataclass
class UserPreference:
    """Notification channel preferences for a user."""

    user_id: int
    email_enabled: bool = False
    sms_enabled: bool = False
    push_enabled: bool = True


@dataclass
class NewsMention:
    """News article mentioning a stock."""

    stock_id: int
    headline: str
    published_at: datetime
    sentiment: Optional[str] = None  # "positive", "negative", "neutral"
    id: Optional[int] = None


@dataclass
class IndicatorSummary:
    """Count of indicator rows for one (type, period) on a given day."""

    indicator_type: str
    period: int
    count: int = 0
