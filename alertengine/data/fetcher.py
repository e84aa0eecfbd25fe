"""
Yahoo Finance daily price feed.
"""

import logging
import time
from datetime import date, timedelta
from typing import Optional

import yfinance as yf

from alertengine.database.models import PriceBar, Stock

logger = logging.getLogger(__name__)


class PriceFeed:
    """Fetches daily OHLCV bars from Yahoo Finance."""

    def __init__(
        self,
        symbol_suffix: str = ".NS",
        max_retries: int = 3,
        retry_delay: float = 5.0,
    ):
        self.symbol_suffix = symbol_suffix
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def ticker_for(self, stock: Stock) -> str:
        """Yahoo ticker for a stock, e.g. "RELIANCE" -> "RELIANCE.NS"."""
        symbol = stock.symbol.upper()
        if self.symbol_suffix and not symbol.endswith(self.symbol_suffix):
            symbol += self.symbol_suffix
        return symbol

    def get_daily_bars(
        self,
        stock: Stock,
        days: int = 400,
        end: Optional[date] = None,
    ) -> list[PriceBar]:
        """
        Fetch daily bars for a stock.

        Args:
            stock: Stock with its database ID
            days: Calendar days of history to fetch
            end: Last day to include, defaults to today

        Returns:
            PriceBars ordered oldest first

        Raises:
            ValueError: If no data is returned after all retries
        """
        ticker = self.ticker_for(stock)
        end = end or date.today()
        start = end - timedelta(days=days)

        for attempt in range(1, self.max_retries + 1):
            hist = yf.Ticker(ticker).history(
                start=start.isoformat(),
                end=(end + timedelta(days=1)).isoformat(),
                interval="1d",
                auto_adjust=False,
            )
            if not hist.empty:
                return self._to_bars(stock, hist)

            logger.warning(
                f"No data for {ticker} (attempt {attempt}/{self.max_retries})"
            )
            if attempt < self.max_retries:
                time.sleep(self.retry_delay)

        raise ValueError(f"No historical data available: {ticker}")

    def _to_bars(self, stock: Stock, hist) -> list[PriceBar]:
        bars = []
        for index, row in hist.iterrows():
            if row["Close"] != row["Close"]:  # NaN
                continue
            bars.append(
                PriceBar(
                    stock_id=stock.id,
                    date=index.date(),
                    open=round(float(row["Open"]), 2),
                    high=round(float(row["High"]), 2),
                    low=round(float(row["Low"]), 2),
                    close=round(float(row["Close"]), 2),
                    volume=int(row["Volume"]),
                )
            )
        return bars
