"""
Daily indicator calculation over every active stock.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from alertengine.database.models import IndicatorSummary, IndicatorValue, Stock
from alertengine.database.repository import (
    IndicatorRepository,
    PriceRepository,
    StockRepository,
)
from . import calculator
from .calculator import IndicatorType

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_DAYS = 400
DEFAULT_RETENTION_DAYS = 365


@dataclass(frozen=True)
class IndicatorSpec:
    """One entry of the daily catalogue."""

    indicator_type: IndicatorType
    period: int
    fast_period: Optional[int] = None
    slow_period: Optional[int] = None
    signal_period: Optional[int] = None
    std_dev_multiplier: Optional[float] = None

    @property
    def label(self) -> str:
        if self.indicator_type == IndicatorType.MACD:
            return f"MACD({self.fast_period},{self.slow_period},{self.signal_period})"
        return f"{self.indicator_type.value}({self.period})"


# MACD is stored under its fast period, Bollinger under its window
DEFAULT_CATALOGUE = (
    IndicatorSpec(IndicatorType.RSI, 14),
    IndicatorSpec(IndicatorType.SMA, 20),
    IndicatorSpec(IndicatorType.SMA, 50),
    IndicatorSpec(IndicatorType.SMA, 200),
    IndicatorSpec(IndicatorType.EMA, 12),
    IndicatorSpec(IndicatorType.EMA, 20),
    IndicatorSpec(IndicatorType.EMA, 26),
    IndicatorSpec(IndicatorType.EMA, 50),
    IndicatorSpec(
        IndicatorType.MACD, 12, fast_period=12, slow_period=26, signal_period=9
    ),
    IndicatorSpec(IndicatorType.BOLLINGER_BANDS, 20, std_dev_multiplier=2.0),
)


@dataclass
class StockRunResult:
    """Per-stock counters."""

    stock_id: int
    symbol: str
    calculated: int = 0
    skipped: int = 0
    failed: int = 0


@dataclass
class IndicatorRunResult:
    """Counters for one indicator run."""

    processed_stocks: int = 0
    successful_calculations: int = 0
    failed_calculations: int = 0
    skipped_calculations: int = 0
    stock_results: list[StockRunResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class InsufficientDataError(Exception):
    """Not enough closes for a calculation."""


def compute(spec: IndicatorSpec, closes: list[float]) -> Optional[IndicatorValue]:
    """
    Calculate one catalogue entry from closes, oldest first.

    Returns:
        Unsaved IndicatorValue without stock or date, or None on short input
    """
    kind = spec.indicator_type
    if kind == IndicatorType.RSI:
        value = calculator.rsi(closes, spec.period)
    elif kind == IndicatorType.SMA:
        value = calculator.sma(closes, spec.period)
    elif kind == IndicatorType.EMA:
        value = calculator.ema(closes, spec.period)
    elif kind == IndicatorType.MACD:
        result = calculator.macd(
            closes, spec.fast_period, spec.slow_period, spec.signal_period
        )
        if result is None:
            return None
        return IndicatorValue(
            stock_id=0,
            indicator_type=kind.value,
            period=spec.period,
            value=result.line,
            calculation_date=date.min,
            fast_period=result.fast_period,
            slow_period=result.slow_period,
            signal_period=result.signal_period,
        )
    else:
        bands = calculator.bollinger_bands(
            closes, spec.period, spec.std_dev_multiplier
        )
        if bands is None:
            return None
        return IndicatorValue(
            stock_id=0,
            indicator_type=kind.value,
            period=spec.period,
            value=bands.middle,
            calculation_date=date.min,
            upper_band=bands.upper,
            lower_band=bands.lower,
            std_dev_multiplier=bands.std_dev_multiplier,
        )

    if value is None:
        return None
    return IndicatorValue(
        stock_id=0,
        indicator_type=kind.value,
        period=spec.period,
        value=value,
        calculation_date=date.min,
    )


class IndicatorCalculationJob:
    """Calculates and stores the daily indicator catalogue."""

    def __init__(
        self,
        stocks: StockRepository,
        prices: PriceRepository,
        indicators: IndicatorRepository,
        history_days: int = DEFAULT_HISTORY_DAYS,
        catalogue: tuple[IndicatorSpec, ...] = DEFAULT_CATALOGUE,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.stocks = stocks
        self.prices = prices
        self.indicators = indicators
        self.history_days = history_days
        self.catalogue = catalogue
        self.clock = clock

    def today(self) -> date:
        return self.clock().date()

    def run(self, on: Optional[date] = None) -> IndicatorRunResult:
        """
        Calculate every catalogue entry for every active stock with prices.

        Values already stored for the day are skipped. Failures are recorded
        per stock and per indicator and never stop the run.

        Args:
            on: Calculation date, defaults to today

        Returns:
            IndicatorRunResult with counters and error messages
        """
        on = on or self.today()
        started = time.monotonic()
        result = IndicatorRunResult()

        stocks = self.stocks.list_active_with_prices()
        logger.info(f"Calculating indicators for {len(stocks)} stocks on {on}")

        for stock in stocks:
            result.processed_stocks += 1
            stock_result = StockRunResult(stock_id=stock.id, symbol=stock.symbol)
            result.stock_results.append(stock_result)
            try:
                self._run_stock(stock, on, stock_result, result)
            except Exception as e:
                message = f"{stock.symbol}: {e}"
                logger.error(f"Error calculating indicators for {message}")
                result.errors.append(message)
                stock_result.failed += 1
                result.failed_calculations += 1

        logger.info(
            f"Indicator run done in {time.monotonic() - started:.2f}s: "
            f"{result.successful_calculations} calculated, "
            f"{result.skipped_calculations} skipped, "
            f"{result.failed_calculations} failed"
        )
        return result

    def _run_stock(
        self,
        stock: Stock,
        on: date,
        stock_result: StockRunResult,
        result: IndicatorRunResult,
    ) -> None:
        bars = self.prices.get_price_bars(
            stock.id,
            start=on - timedelta(days=self.history_days),
            end=on + timedelta(days=1),
        )
        closes = [bar.close for bar in bars]

        for spec in self.catalogue:
            kind = spec.indicator_type.value
            try:
                if self.indicators.exists_for_date(stock.id, kind, spec.period, on):
                    stock_result.skipped += 1
                    result.skipped_calculations += 1
                    continue

                value = compute(spec, closes)
                if value is None:
                    raise InsufficientDataError(
                        f"Not enough price data for {spec.label} calculation"
                    )

                value.stock_id = stock.id
                value.calculation_date = on
                self.indicators.upsert(value)
                stock_result.calculated += 1
                result.successful_calculations += 1

            except InsufficientDataError as e:
                logger.debug(f"{stock.symbol}: {e}")
                result.errors.append(f"{stock.symbol}: {e}")
                stock_result.failed += 1
                result.failed_calculations += 1
            except Exception as e:
                logger.error(f"Error calculating {spec.label} for {stock.symbol}: {e}")
                result.errors.append(f"{stock.symbol} {spec.label}: {e}")
                stock_result.failed += 1
                result.failed_calculations += 1

    def cleanup_old_indicators(
        self, retention_days: int = DEFAULT_RETENTION_DAYS, on: Optional[date] = None
    ) -> int:
        """Delete values older than the retention window. Returns rows deleted."""
        cutoff = (on or self.today()) - timedelta(days=retention_days)
        deleted = self.indicators.delete_older_than(cutoff)
        logger.info(f"Deleted {deleted} indicator values older than {cutoff}")
        return deleted

    def calculation_summary(self, on: Optional[date] = None) -> list[IndicatorSummary]:
        """Stored value counts per (indicator, period) for a day."""
        return self.indicators.summary_for_date(on or self.today())
