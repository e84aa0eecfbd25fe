"""
Price feed tests.
Tests for Yahoo Finance integration.
"""

import pytest
from unittest.mock import MagicMock, patch
from datetime import date, datetime

from alertengine.data.fetcher import PriceFeed
from alertengine.database.models import Stock


def history_frame(rows):
    """Stand-in for the DataFrame returned by Ticker.history()."""
    hist = MagicMock()
    hist.empty = not rows
    hist.iterrows.return_value = rows
    return hist


def ohlcv(close, volume=1_000_000):
    return {"Open": close - 1, "High": close + 1, "Low": close - 2, "Close": close, "Volume": volume}


@pytest.fixture
def reliance():
    return Stock(id=5, symbol="RELIANCE", name="Reliance Industries")


class TestPriceFeed:
    """Test daily bar fetching."""

    def test_ticker_suffix(self, reliance):
        feed = PriceFeed()
        assert feed.ticker_for(reliance) == "RELIANCE.NS"
        assert feed.ticker_for(Stock(symbol="TCS.NS", name="TCS")) == "TCS.NS"
        assert PriceFeed(symbol_suffix="").ticker_for(reliance) == "RELIANCE"

    def test_converts_rows_to_bars(self, reliance):
        """Should build PriceBars for the stock, oldest first."""
        mock_ticker = MagicMock()
        mock_ticker.history.return_value = history_frame([
            (datetime(2024, 6, 11), ohlcv(2901.456, 5_000_000)),
            (datetime(2024, 6, 12), ohlcv(2950.0, 6_000_000)),
        ])

        with patch("yfinance.Ticker", return_value=mock_ticker) as ticker_cls:
            bars = PriceFeed().get_daily_bars(reliance, days=30, end=date(2024, 6, 12))

        ticker_cls.assert_called_once_with("RELIANCE.NS")
        kwargs = mock_ticker.history.call_args.kwargs
        assert kwargs["start"] == "2024-05-13"
        assert kwargs["end"] == "2024-06-13"
        assert kwargs["interval"] == "1d"

        assert [b.date for b in bars] == [date(2024, 6, 11), date(2024, 6, 12)]
        assert bars[0].stock_id == 5
        assert bars[0].close == 2901.46
        assert bars[1].volume == 6_000_000

    def test_skips_nan_rows(self, reliance):
        mock_ticker = MagicMock()
        mock_ticker.history.return_value = history_frame([
            (datetime(2024, 6, 11), ohlcv(float("nan"))),
            (datetime(2024, 6, 12), ohlcv(2950.0)),
        ])

        with patch("yfinance.Ticker", return_value=mock_ticker):
            bars = PriceFeed().get_daily_bars(reliance)

        assert len(bars) == 1

    def test_retries_on_empty(self, reliance):
        """Should retry empty responses and then succeed."""
        mock_ticker = MagicMock()
        mock_ticker.history.side_effect = [
            history_frame([]),
            history_frame([(datetime(2024, 6, 12), ohlcv(2950.0))]),
        ]

        with patch("yfinance.Ticker", return_value=mock_ticker), patch(
            "alertengine.data.fetcher.time.sleep"
        ) as sleep:
            bars = PriceFeed(max_retries=3, retry_delay=2).get_daily_bars(reliance)

        assert len(bars) == 1
        sleep.assert_called_once_with(2)

    def test_raises_after_retries(self, reliance):
        mock_ticker = MagicMock()
        mock_ticker.history.return_value = history_frame([])

        with patch("yfinance.Ticker", return_value=mock_ticker), patch(
            "alertengine.data.fetcher.time.sleep"
        ):
            with pytest.raises(ValueError, match="RELIANCE.NS"):
                PriceFeed(max_retries=2).get_daily_bars(reliance)

        assert mock_ticker.history.call_count == 2
