"""
Repository classes for CRUD operations.
"""

import json
from datetime import date, datetime, timezone
from typing import Any, Optional

from .connection import Database
from .models import (
    Alert,
    AlertHistory,
    IndicatorSummary,
    IndicatorValue,
    MarketContext,
    NewsMention,
    NotificationTask,
    PriceBar,
    Stock,
    UserPreference,
)


def _to_db(value: Optional[datetime]) -> Optional[str]:
    """Store datetimes as UTC ISO strings so they compare lexically."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_db(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware datetime."""
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class StockRepository:
    """CRUD operations for stocks."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, stock: Stock) -> Stock:
        """Create a new stock."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO stocks (symbol, name, exchange, is_active)
            VALUES (?, ?, ?, ?)
            """,
            (stock.symbol, stock.name, stock.exchange, 1 if stock.is_active else 0),
        )
        self.db.commit()
        stock.id = cursor.lastrowid
        return stock

    def get_by_id(self, stock_id: int) -> Optional[Stock]:
        """Get stock by ID."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM stocks WHERE id = ?", (stock_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_stock(row)

    def get_by_symbol(self, symbol: str) -> Optional[Stock]:
        """Get stock by symbol."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM stocks WHERE symbol = ?", (symbol,))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_stock(row)

    def list_all(self) -> list[Stock]:
        """List all stocks."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM stocks ORDER BY symbol")
        return [self._row_to_stock(row) for row in cursor.fetchall()]

    def list_active_with_prices(self) -> list[Stock]:
        """List active stocks that have at least one price bar."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT s.* FROM stocks s
            WHERE s.is_active = 1
              AND EXISTS (SELECT 1 FROM price_bars p WHERE p.stock_id = s.id)
            ORDER BY s.symbol
            """
        )
        return [self._row_to_stock(row) for row in cursor.fetchall()]

    def _row_to_stock(self, row) -> Stock:
        """Convert database row to Stock."""
        return Stock(
            id=row["id"],
            symbol=row["symbol"],
            name=row["name"],
            exchange=row["exchange"],
            is_active=bool(row["is_active"]),
        )


class PriceRepository:
    """Read and write daily price bars."""

    def __init__(self, db: Database):
        self.db = db

    _UPSERT_SQL = """
        INSERT INTO price_bars (stock_id, date, open, high, low, close, volume)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(stock_id, date) DO UPDATE SET
            open = excluded.open,
            high = excluded.high,
            low = excluded.low,
            close = excluded.close,
            volume = excluded.volume
    """

    def upsert(self, bar: PriceBar) -> PriceBar:
        """Insert a bar, or correct the existing bar for the same date."""
        cursor = self.db.connection.cursor()
        cursor.execute(self._UPSERT_SQL, self._bar_params(bar))
        self.db.commit()
        return bar

    def bulk_upsert(self, bars: list[PriceBar]) -> int:
        """Upsert many bars in one transaction."""
        cursor = self.db.connection.cursor()
        cursor.executemany(self._UPSERT_SQL, [self._bar_params(b) for b in bars])
        self.db.commit()
        return len(bars)

    def get_price_bars(
        self,
        stock_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> list[PriceBar]:
        """
        Get bars for a stock in ascending date order.

        Args:
            stock_id: Stock ID
            start: Inclusive lower date bound
            end: Exclusive upper date bound
            limit: Keep only the most recent ``limit`` bars

        Returns:
            Bars ordered oldest first
        """
        clauses = ["stock_id = ?"]
        params: list[Any] = [stock_id]
        if start is not None:
            clauses.append("date >= ?")
            params.append(start.isoformat())
        if end is not None:
            clauses.append("date < ?")
            params.append(end.isoformat())

        sql = f"SELECT * FROM price_bars WHERE {' AND '.join(clauses)} ORDER BY date DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        cursor = self.db.connection.cursor()
        cursor.execute(sql, params)
        bars = [self._row_to_bar(row) for row in cursor.fetchall()]
        bars.reverse()
        return bars

    def get_latest_bar(self, stock_id: int) -> Optional[PriceBar]:
        """Get the most recent bar for a stock."""
        bars = self.get_price_bars(stock_id, limit=1)
        return bars[0] if bars else None

    def _bar_params(self, bar: PriceBar) -> tuple:
        return (
            bar.stock_id,
            bar.date.isoformat(),
            bar.open,
            bar.high,
            bar.low,
            bar.close,
            int(bar.volume),
        )

    def _row_to_bar(self, row) -> PriceBar:
        """Convert database row to PriceBar."""
        return PriceBar(
            id=row["id"],
            stock_id=row["stock_id"],
            date=date.fromisoformat(row["date"]),
            open=row["open"],
            high=row["high"],
            low=row["low"],
            close=row["close"],
            volume=row["volume"],
        )


class IndicatorRepository:
    """Persist and read calculated indicator values."""

    def __init__(self, db: Database):
        self.db = db

    def upsert(self, value: IndicatorValue) -> IndicatorValue:
        """Store a value; a second write for the same day overwrites the first."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO indicator_values
            (stock_id, indicator_type, period, value, calculation_date,
             fast_period, slow_period, signal_period,
             upper_band, lower_band, std_dev_multiplier)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(stock_id, indicator_type, period, calculation_date)
            DO UPDATE SET
                value = excluded.value,
                fast_period = excluded.fast_period,
                slow_period = excluded.slow_period,
                signal_period = excluded.signal_period,
                upper_band = excluded.upper_band,
                lower_band = excluded.lower_band,
                std_dev_multiplier = excluded.std_dev_multiplier
            """,
            (
                value.stock_id,
                value.indicator_type,
                value.period,
                value.value,
                value.calculation_date.isoformat(),
                value.fast_period,
                value.slow_period,
                value.signal_period,
                value.upper_band,
                value.lower_band,
                value.std_dev_multiplier,
            ),
        )
        self.db.commit()

        cursor.execute(
            """
            SELECT id FROM indicator_values
            WHERE stock_id = ? AND indicator_type = ? AND period = ?
              AND calculation_date = ?
            """,
            (
                value.stock_id,
                value.indicator_type,
                value.period,
                value.calculation_date.isoformat(),
            ),
        )
        value.id = cursor.fetchone()["id"]
        return value

    def get_latest(
        self, stock_id: int, indicator_type: str, period: int
    ) -> Optional[IndicatorValue]:
        """Get the most recent value for a stock/type/period."""
        history = self.get_history(stock_id, indicator_type, period, limit=1)
        return history[0] if history else None

    def get_history(
        self, stock_id: int, indicator_type: str, period: int, limit: int = 2
    ) -> list[IndicatorValue]:
        """Get the latest ``limit`` values, newest first."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT * FROM indicator_values
            WHERE stock_id = ? AND indicator_type = ? AND period = ?
            ORDER BY calculation_date DESC
            LIMIT ?
            """,
            (stock_id, indicator_type, period, limit),
        )
        return [self._row_to_value(row) for row in cursor.fetchall()]

    def exists_for_date(
        self, stock_id: int, indicator_type: str, period: int, on: date
    ) -> bool:
        """Check whether a value was already calculated on a given day."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT 1 FROM indicator_values
            WHERE stock_id = ? AND indicator_type = ? AND period = ?
              AND calculation_date = ?
            """,
            (stock_id, indicator_type, period, on.isoformat()),
        )
        return cursor.fetchone() is not None

    def delete_older_than(self, cutoff: date) -> int:
        """Delete values calculated before ``cutoff``. Returns rows deleted."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            "DELETE FROM indicator_values WHERE calculation_date < ?",
            (cutoff.isoformat(),),
        )
        self.db.commit()
        return cursor.rowcount

    def summary_for_date(self, on: date) -> list[IndicatorSummary]:
        """Count stored values per (type, period) for a day."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT indicator_type, period, COUNT(*) AS count
            FROM indicator_values
            WHERE calculation_date = ?
            GROUP BY indicator_type, period
            ORDER BY indicator_type, period
            """,
            (on.isoformat(),),
        )
        return [
            IndicatorSummary(
                indicator_type=row["indicator_type"],
                period=row["period"],
                count=row["count"],
            )
            for row in cursor.fetchall()
        ]

    def _row_to_value(self, row) -> IndicatorValue:
        """Convert database row to IndicatorValue."""
        return IndicatorValue(
            id=row["id"],
            stock_id=row["stock_id"],
            indicator_type=row["indicator_type"],
            period=row["period"],
            value=row["value"],
            calculation_date=date.fromisoformat(row["calculation_date"]),
            fast_period=row["fast_period"],
            slow_period=row["slow_period"],
            signal_period=row["signal_period"],
            upper_band=row["upper_band"],
            lower_band=row["lower_band"],
            std_dev_multiplier=row["std_dev_multiplier"],
        )


class AlertRepository:
    """CRUD operations for alerts."""

    # Columns the management surface may patch; baselines are fixed at creation
    UPDATABLE_FIELDS = {
        "name",
        "condition",
        "threshold",
        "cooldown_minutes",
        "last_triggered",
        "market_hours_only",
        "volume_confirmation",
        "is_active",
        "indicator_type",
        "indicator_period",
        "compare_indicator_type",
        "compare_indicator_period",
        "sentiment",
        "secondary_indicator_type",
        "secondary_indicator_period",
        "secondary_condition",
        "secondary_threshold",
        "condition_logic",
    }

    def __init__(self, db: Database):
        self.db = db

    def create(self, alert: Alert) -> Alert:
        """Create a new alert."""
        if alert.created_at is None:
            alert.created_at = datetime.now(timezone.utc)
        if alert.baseline_timestamp is None and alert.baseline_price is not None:
            alert.baseline_timestamp = alert.created_at

        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO alerts
            (user_id, stock_id, name, trigger_type, condition, threshold,
             baseline_price, baseline_timestamp, cooldown_minutes, last_triggered,
             market_hours_only, volume_confirmation, is_active,
             indicator_type, indicator_period,
             compare_indicator_type, compare_indicator_period, sentiment,
             secondary_indicator_type, secondary_indicator_period,
             secondary_condition, secondary_threshold, condition_logic, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                alert.user_id,
                alert.stock_id,
                alert.name,
                alert.trigger_type,
                alert.condition,
                alert.threshold,
                alert.baseline_price,
                _to_db(alert.baseline_timestamp),
                alert.cooldown_minutes,
                _to_db(alert.last_triggered),
                1 if alert.market_hours_only else 0,
                1 if alert.volume_confirmation else 0,
                1 if alert.is_active else 0,
                alert.indicator_type,
                alert.indicator_period,
                alert.compare_indicator_type,
                alert.compare_indicator_period,
                alert.sentiment,
                alert.secondary_indicator_type,
                alert.secondary_indicator_period,
                alert.secondary_condition,
                alert.secondary_threshold,
                alert.condition_logic,
                _to_db(alert.created_at),
            ),
        )
        self.db.commit()
        alert.id = cursor.lastrowid
        return alert

    def get_by_id(self, alert_id: int) -> Optional[Alert]:
        """Get alert by ID."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM alerts WHERE id = ?", (alert_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_alert(row)

    def list_active(self, trigger_type: Optional[str] = None) -> list[Alert]:
        """List active alerts, optionally for one trigger type."""
        cursor = self.db.connection.cursor()
        if trigger_type is None:
            cursor.execute("SELECT * FROM alerts WHERE is_active = 1 ORDER BY id")
        else:
            cursor.execute(
                """
                SELECT * FROM alerts
                WHERE is_active = 1 AND trigger_type = ?
                ORDER BY id
                """,
                (trigger_type,),
            )
        return [self._row_to_alert(row) for row in cursor.fetchall()]

    def update(self, alert_id: int, patch: dict[str, Any]) -> None:
        """
        Apply a partial update.

        Raises:
            ValueError: If the patch names a column that cannot be updated
        """
        unknown = set(patch) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update alert fields: {sorted(unknown)}")
        if not patch:
            return

        assignments = ", ".join(f"{column} = ?" for column in patch)
        values = []
        for value in patch.values():
            if isinstance(value, datetime):
                value = _to_db(value)
            elif isinstance(value, bool):
                value = 1 if value else 0
            values.append(value)
        values.append(alert_id)

        cursor = self.db.connection.cursor()
        cursor.execute(f"UPDATE alerts SET {assignments} WHERE id = ?", values)
        self.db.commit()

    def update_last_triggered(self, alert_id: int, triggered_at: datetime) -> None:
        """Record when an alert last fired."""
        self.update(alert_id, {"last_triggered": triggered_at})

    def delete(self, alert_id: int) -> None:
        """Delete an alert."""
        cursor = self.db.connection.cursor()
        cursor.execute("DELETE FROM alerts WHERE id = ?", (alert_id,))
        self.db.commit()

    def _row_to_alert(self, row) -> Alert:
        """Convert database row to Alert."""
        return Alert(
            id=row["id"],
            user_id=row["user_id"],
            stock_id=row["stock_id"],
            name=row["name"],
            trigger_type=row["trigger_type"],
            condition=row["condition"],
            threshold=row["threshold"],
            baseline_price=row["baseline_price"],
            baseline_timestamp=_from_db(row["baseline_timestamp"]),
            cooldown_minutes=row["cooldown_minutes"],
            last_triggered=_from_db(row["last_triggered"]),
            market_hours_only=bool(row["market_hours_only"]),
            volume_confirmation=bool(row["volume_confirmation"]),
            is_active=bool(row["is_active"]),
            indicator_type=row["indicator_type"],
            indicator_period=row["indicator_period"],
            compare_indicator_type=row["compare_indicator_type"],
            compare_indicator_period=row["compare_indicator_period"],
            sentiment=row["sentiment"],
            secondary_indicator_type=row["secondary_indicator_type"],
            secondary_indicator_period=row["secondary_indicator_period"],
            secondary_condition=row["secondary_condition"],
            secondary_threshold=row["secondary_threshold"],
            condition_logic=row["condition_logic"],
            created_at=_from_db(row["created_at"]),
        )


class AlertHistoryRepository:
    """Append-only alert history."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, record: AlertHistory) -> AlertHistory:
        """Create a new alert history entry."""
        context = (
            json.dumps(record.market_context.to_dict())
            if record.market_context
            else None
        )
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO alert_history
            (alert_id, user_id, stock_id, triggered_at, trigger_value,
             threshold_value, baseline_price, price_change, price_change_percent,
             trigger_volume, market_context, message)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.alert_id,
                record.user_id,
                record.stock_id,
                _to_db(record.triggered_at),
                record.trigger_value,
                record.threshold_value,
                record.baseline_price,
                record.price_change,
                record.price_change_percent,
                record.trigger_volume,
                context,
                record.message,
            ),
        )
        self.db.commit()
        record.id = cursor.lastrowid
        return record

    def list_for_alert(self, alert_id: int, limit: int = 50) -> list[AlertHistory]:
        """Get history for an alert, newest first."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT * FROM alert_history
            WHERE alert_id = ?
            ORDER BY triggered_at DESC, id DESC
            LIMIT ?
            """,
            (alert_id, limit),
        )
        return [self._row_to_history(row) for row in cursor.fetchall()]

    def _row_to_history(self, row) -> AlertHistory:
        """Convert database row to AlertHistory."""
        context = None
        if row["market_context"]:
            context = MarketContext(**json.loads(row["market_context"]))
        return AlertHistory(
            id=row["id"],
            alert_id=row["alert_id"],
            user_id=row["user_id"],
            stock_id=row["stock_id"],
            triggered_at=_from_db(row["triggered_at"]),
            trigger_value=row["trigger_value"],
            threshold_value=row["threshold_value"],
            baseline_price=row["baseline_price"],
            price_change=row["price_change"],
            price_change_percent=row["price_change_percent"],
            trigger_volume=row["trigger_volume"],
            market_context=context,
            message=row["message"],
        )


class NotificationQueueRepository:
    """Notification task sink."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, task: NotificationTask) -> NotificationTask:
        """Queue a notification task."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO notification_queue
            (user_id, alert_id, content, notification_method_id, priority_id,
             status, attempts, max_attempts, scheduled_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.user_id,
                task.alert_id,
                task.content,
                task.notification_method_id,
                task.priority_id,
                task.status,
                task.attempts,
                task.max_attempts,
                _to_db(task.scheduled_at),
            ),
        )
        self.db.commit()
        task.id = cursor.lastrowid
        return task

    def list_for_alert(self, alert_id: int) -> list[NotificationTask]:
        """Get queued tasks for an alert."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT * FROM notification_queue WHERE alert_id = ? ORDER BY id",
            (alert_id,),
        )
        return [self._row_to_task(row) for row in cursor.fetchall()]

    def list_pending(self, limit: int = 100) -> list[NotificationTask]:
        """Get pending tasks, oldest first."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT * FROM notification_queue
            WHERE status = 'pending'
            ORDER BY scheduled_at, id
            LIMIT ?
            """,
            (limit,),
        )
        return [self._row_to_task(row) for row in cursor.fetchall()]

    def _row_to_task(self, row) -> NotificationTask:
        """Convert database row to NotificationTask."""
        return NotificationTask(
            id=row["id"],
            user_id=row["user_id"],
            alert_id=row["alert_id"],
            content=row["content"],
            notification_method_id=row["notification_method_id"],
            priority_id=row["priority_id"],
            status=row["status"],
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            scheduled_at=_from_db(row["scheduled_at"]),
        )


class UserPreferenceRepository:
    """Notification preferences per user."""

    def __init__(self, db: Database):
        self.db = db

    def get(self, user_id: int) -> Optional[UserPreference]:
        """Get preferences for a user."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM user_preferences WHERE user_id = ?", (user_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return UserPreference(
            user_id=row["user_id"],
            email_enabled=bool(row["email_enabled"]),
            sms_enabled=bool(row["sms_enabled"]),
            push_enabled=bool(row["push_enabled"]),
        )

    def upsert(self, preference: UserPreference) -> UserPreference:
        """Create or replace preferences for a user."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO user_preferences (user_id, email_enabled, sms_enabled, push_enabled)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                email_enabled = excluded.email_enabled,
                sms_enabled = excluded.sms_enabled,
                push_enabled = excluded.push_enabled
            """,
            (
                preference.user_id,
                1 if preference.email_enabled else 0,
                1 if preference.sms_enabled else 0,
                1 if preference.push_enabled else 0,
            ),
        )
        self.db.commit()
        return preference


class NewsRepository:
    """News mentions per stock."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, mention: NewsMention) -> NewsMention:
        """Store a news mention."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO news_mentions (stock_id, headline, sentiment, published_at)
            VALUES (?, ?, ?, ?)
            """,
            (
                mention.stock_id,
                mention.headline,
                mention.sentiment,
                _to_db(mention.published_at),
            ),
        )
        self.db.commit()
        mention.id = cursor.lastrowid
        return mention

    def get_latest_since(
        self,
        stock_id: int,
        since: datetime,
        sentiment: Optional[str] = None,
    ) -> Optional[NewsMention]:
        """Get the newest mention published after ``since``."""
        sql = """
            SELECT * FROM news_mentions
            WHERE stock_id = ? AND published_at > ?
        """
        params: list[Any] = [stock_id, _to_db(since)]
        if sentiment:
            sql += " AND sentiment = ?"
            params.append(sentiment)
        sql += " ORDER BY published_at DESC LIMIT 1"

        cursor = self.db.connection.cursor()
        cursor.execute(sql, params)
        row = cursor.fetchone()
        if row is None:
            return None
        return NewsMention(
            id=row["id"],
            stock_id=row["stock_id"],
            headline=row["headline"],
            sentiment=row["sentiment"],
            published_at=_from_db(row["published_at"]),
        )
