"""
Pytest configuration and shared fixtures.
"""

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from alertengine.database.connection import Database
from alertengine.database.models import PriceBar, Stock
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

IST = ZoneInfo("Asia/Kolkata")


@pytest.fixture
def db():
    """Create in-memory database with schema."""
    db = Database(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def repos(db):
    """Create all repositories."""
    return {
        "stock": StockRepository(db),
        "price": PriceRepository(db),
        "indicator": IndicatorRepository(db),
        "alert": AlertRepository(db),
        "history": AlertHistoryRepository(db),
        "queue": NotificationQueueRepository(db),
        "preference": UserPreferenceRepository(db),
        "news": NewsRepository(db),
    }


@pytest.fixture
def stock(repos):
    """A stored NSE stock."""
    return repos["stock"].create(Stock(symbol="RELIANCE", name="Reliance Industries"))


@pytest.fixture
def ist():
    """Build an aware datetime in market time."""

    def _ist(year, month, day, hour=0, minute=0):
        return datetime(year, month, day, hour, minute, tzinfo=IST)

    return _ist


@pytest.fixture
def market_open_time(ist):
    """Wednesday 2024-06-12 11:00 IST."""
    return ist(2024, 6, 12, 11, 0)


@pytest.fixture
def add_bars(repos):
    """Store consecutive daily bars ending on ``end``."""

    def _add_bars(stock_id, closes, volumes=None, end=date(2024, 6, 12)):
        volumes = volumes or [100_000] * len(closes)
        start = end - timedelta(days=len(closes) - 1)
        bars = [
            PriceBar(
                stock_id=stock_id,
                date=start + timedelta(days=i),
                open=close,
                high=close,
                low=close,
                close=close,
                volume=volume,
            )
            for i, (close, volume) in enumerate(zip(closes, volumes))
        ]
        repos["price"].bulk_upsert(bars)
        return bars

    return _add_bars
