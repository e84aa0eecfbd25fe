"""
CLI commands for the alert engine.
"""

import argparse
import json
import logging
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from alertengine.config import AppConfig, DatabaseConfig, load_config
from alertengine.data.fetcher import PriceFeed
from alertengine.database.connection import Database
from alertengine.database.models import Alert, NewsMention, Stock, UserPreference
from alertengine.healthcheck import run_healthcheck
from alertengine.main import AlertEngineApp, setup_logging
from alertengine.rules.types import parse_trigger_type

logger = logging.getLogger(__name__)


def add_stock(app: AlertEngineApp, symbol: str, name: str, exchange: str = "NSE") -> Stock:
    """Add a stock, or return the existing one with the same symbol."""
    existing = app.stock_repo.get_by_symbol(symbol.upper())
    if existing:
        return existing
    return app.stock_repo.create(Stock(symbol=symbol.upper(), name=name, exchange=exchange))


def add_alert(
    app: AlertEngineApp,
    user_id: int,
    symbol: str,
    trigger_type: str,
    condition: str,
    threshold: Optional[float] = None,
    options: Optional[dict] = None,
) -> Alert:
    """
    Create an alert, capturing the latest close as its baseline.

    Raises:
        ValueError: If the stock does not exist
        UnsupportedConditionError: If the trigger type or condition is unknown
    """
    stock = app.stock_repo.get_by_symbol(symbol.upper())
    if stock is None:
        raise ValueError(f"Unknown stock: {symbol}")

    alert = Alert(
        user_id=user_id,
        stock_id=stock.id,
        trigger_type=parse_trigger_type(trigger_type).value,
        condition=condition,
        threshold=threshold,
        **(options or {}),
    )
    # Validate the condition before storing it
    app.evaluator.create_rule(alert)
    app.evaluator.create_secondary_rule(alert)

    latest = app.price_repo.get_latest_bar(stock.id)
    if latest is not None and alert.baseline_price is None:
        alert.baseline_price = latest.close
    return app.alert_repo.create(alert)


def sync_prices(
    app: AlertEngineApp, symbols: Optional[list[str]] = None, feed: Optional[PriceFeed] = None
) -> dict:
    """Fetch daily bars for stocks and upsert them."""
    config = app.config
    feed = feed or PriceFeed(
        symbol_suffix=config.data_source.symbol_suffix,
        max_retries=config.advanced.max_retries,
        retry_delay=config.advanced.retry_delay_seconds,
    )

    if symbols:
        stocks = [app.stock_repo.get_by_symbol(s.upper()) for s in symbols]
        stocks = [s for s in stocks if s is not None]
    else:
        stocks = [s for s in app.stock_repo.list_all() if s.is_active]

    synced = {}
    failed = []
    for stock in stocks:
        try:
            bars = feed.get_daily_bars(stock, days=config.data_source.history_days)
            synced[stock.symbol] = app.price_repo.bulk_upsert(bars)
        except ValueError as e:
            logger.error(f"Price sync failed for {stock.symbol}: {e}")
            failed.append(stock.symbol)

    return {"synced": synced, "failed": failed}


def _load_app_config(config_path: str, db_path: Optional[str]) -> AppConfig:
    if Path(config_path).exists():
        config = load_config(config_path)
    else:
        config = AppConfig()
    if db_path:
        config = replace(config, database=DatabaseConfig(path=db_path))
    return config


def main(argv: Optional[list[str]] = None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Market Alert Engine CLI")
    parser.add_argument("--config", default="config.yaml", help="Path to config file")
    parser.add_argument("--db", help="Database path (overrides config)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # DB commands
    db_parser = subparsers.add_parser("db", help="Database management")
    db_subparsers = db_parser.add_subparsers(dest="action")
    db_subparsers.add_parser("init", help="Create the schema")

    # Stock commands
    stocks_parser = subparsers.add_parser("stocks", help="Stock management")
    stocks_subparsers = stocks_parser.add_subparsers(dest="action")

    add_stock_parser = stocks_subparsers.add_parser("add", help="Add stock")
    add_stock_parser.add_argument("--symbol", required=True, help="Exchange symbol")
    add_stock_parser.add_argument("--name", required=True, help="Company name")
    add_stock_parser.add_argument("--exchange", default="NSE", help="Exchange")

    stocks_subparsers.add_parser("list", help="List stocks")

    # Alert commands
    alerts_parser = subparsers.add_parser("alerts", help="Alert management")
    alerts_subparsers = alerts_parser.add_subparsers(dest="action")

    add_alert_parser = alerts_subparsers.add_parser("add", help="Add alert")
    add_alert_parser.add_argument("--user", type=int, required=True, help="User ID")
    add_alert_parser.add_argument("--symbol", required=True, help="Stock symbol")
    add_alert_parser.add_argument(
        "--type", required=True, help="price, volume, indicator or news"
    )
    add_alert_parser.add_argument("--condition", required=True, help="Condition name")
    add_alert_parser.add_argument("--threshold", type=float, help="Threshold value")
    add_alert_parser.add_argument(
        "--options", default="{}", help="JSON of extra alert fields"
    )

    list_alerts_parser = alerts_subparsers.add_parser("list", help="List active alerts")
    list_alerts_parser.add_argument("--type", help="Trigger type filter")

    history_parser = alerts_subparsers.add_parser("history", help="Show alert history")
    history_parser.add_argument("--alert", type=int, required=True, help="Alert ID")

    # Preference commands
    prefs_parser = subparsers.add_parser("prefs", help="Notification preferences")
    prefs_subparsers = prefs_parser.add_subparsers(dest="action")

    set_prefs_parser = prefs_subparsers.add_parser("set", help="Set preferences")
    set_prefs_parser.add_argument("--user", type=int, required=True, help="User ID")
    set_prefs_parser.add_argument("--email", action="store_true", help="Enable email")
    set_prefs_parser.add_argument("--sms", action="store_true", help="Enable SMS")

    # News commands
    news_parser = subparsers.add_parser("news", help="News mentions")
    news_subparsers = news_parser.add_subparsers(dest="action")

    add_news_parser = news_subparsers.add_parser("add", help="Record a news mention")
    add_news_parser.add_argument("--symbol", required=True, help="Stock symbol")
    add_news_parser.add_argument("--headline", required=True, help="Headline")
    add_news_parser.add_argument(
        "--sentiment", choices=["positive", "negative", "neutral"], help="Sentiment"
    )

    # Price commands
    prices_parser = subparsers.add_parser("prices", help="Price data")
    prices_subparsers = prices_parser.add_subparsers(dest="action")

    sync_parser = prices_subparsers.add_parser("sync", help="Fetch daily bars")
    sync_parser.add_argument("--symbols", help="Comma-separated symbols")

    # Job commands
    run_parser = subparsers.add_parser("run", help="Run a job once")
    run_subparsers = run_parser.add_subparsers(dest="action")

    run_alerts_parser = run_subparsers.add_parser("alerts", help="Evaluate alerts")
    run_alerts_parser.add_argument(
        "--price-only", action="store_true", help="Only evaluate price alerts"
    )
    run_subparsers.add_parser("indicators", help="Calculate indicators")
    run_subparsers.add_parser("cleanup", help="Delete old indicator values")

    subparsers.add_parser("status", help="Show scheduler and market status")
    subparsers.add_parser("healthcheck", help="Post status to the ops webhook")
    subparsers.add_parser("serve", help="Run the scheduler")

    args = parser.parse_args(argv)

    config = _load_app_config(args.config, args.db)
    setup_logging(config.advanced.log_level, args.debug)

    # Initialize database
    db = Database(config.database.path)
    db.initialize()
    app = AlertEngineApp(db=db, config=config)

    # Handle commands
    if args.command == "db":
        if args.action == "init":
            print(f"Database initialized at {config.database.path}")

    elif args.command == "stocks":
        if args.action == "add":
            stock = add_stock(app, args.symbol, args.name, args.exchange)
            print(f"Stock {stock.symbol} has ID: {stock.id}")
        elif args.action == "list":
            for s in app.stock_repo.list_all():
                status = "active" if s.is_active else "inactive"
                print(f"{s.id}: {s.symbol} - {s.name} ({s.exchange}, {status})")

    elif args.command == "alerts":
        if args.action == "add":
            alert = add_alert(
                app,
                user_id=args.user,
                symbol=args.symbol,
                trigger_type=args.type,
                condition=args.condition,
                threshold=args.threshold,
                options=json.loads(args.options),
            )
            print(f"Created alert with ID: {alert.id} (baseline {alert.baseline_price})")
        elif args.action == "list":
            for a in app.alert_repo.list_active(args.type):
                print(
                    f"{a.id}: stock {a.stock_id} {a.trigger_type} {a.condition} "
                    f"{a.threshold} (last triggered {a.last_triggered})"
                )
        elif args.action == "history":
            for h in app.history_repo.list_for_alert(args.alert):
                print(f"{h.triggered_at.isoformat()}: {h.message}")

    elif args.command == "prefs":
        if args.action == "set":
            app.preference_repo.upsert(
                UserPreference(
                    user_id=args.user, email_enabled=args.email, sms_enabled=args.sms
                )
            )
            print(f"Preferences saved for user {args.user}")

    elif args.command == "news":
        if args.action == "add":
            stock = app.stock_repo.get_by_symbol(args.symbol.upper())
            if stock is None:
                parser.error(f"Unknown stock: {args.symbol}")
            mention = app.news_repo.create(
                NewsMention(
                    stock_id=stock.id,
                    headline=args.headline,
                    sentiment=args.sentiment,
                    published_at=datetime.now(timezone.utc),
                )
            )
            print(f"Recorded news mention {mention.id}")

    elif args.command == "prices":
        if args.action == "sync":
            symbols = [s.strip() for s in args.symbols.split(",")] if args.symbols else None
            result = sync_prices(app, symbols)
            for symbol, count in result["synced"].items():
                print(f"{symbol}: {count} bars")
            if result["failed"]:
                print(f"Failed: {result['failed']}")

    elif args.command == "run":
        if args.action == "alerts":
            trigger_type = "price" if args.price_only else None
            result = app.processor.run_alert_batch(trigger_type)
            print(
                f"Processed {result.processed_count}, triggered "
                f"{result.triggered_count}, failed {result.failed_count}"
            )
        elif args.action == "indicators":
            result = app.indicator_job.run()
            print(
                f"Stocks {result.processed_stocks}: {result.successful_calculations} "
                f"calculated, {result.skipped_calculations} skipped, "
                f"{result.failed_calculations} failed"
            )
            for error in result.errors:
                print(f"  {error}")
        elif args.action == "cleanup":
            deleted = app.indicator_job.cleanup_old_indicators(
                config.indicators.retention_days
            )
            print(f"Deleted {deleted} indicator values")

    elif args.command == "status":
        print(json.dumps(app.scheduler.get_status(), indent=2))

    elif args.command == "healthcheck":
        run_healthcheck(app)

    elif args.command == "serve":
        app.serve()

    else:
        parser.print_help()

    db.close()


if __name__ == "__main__":
    main()
