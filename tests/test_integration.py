"""
Integration tests.
End-to-end tests for the indicator and alert flow.
"""

import pytest
from unittest.mock import MagicMock, patch
from datetime import date

from alertengine import cli
from alertengine.alerts.notifications import NotificationMethod
from alertengine.alerts.processor import AlertStatus
from alertengine.database.connection import Database
from alertengine.database.models import UserPreference
from alertengine.healthcheck import run_healthcheck
from alertengine.main import AlertEngineApp
from alertengine.errors import UnsupportedConditionError


class TestFullAlertFlow:
    """Test the flow from price bars to queued notifications."""

    @pytest.fixture
    def app(self, db):
        return AlertEngineApp(db)

    @pytest.fixture
    def reliance(self, app):
        return cli.add_stock(app, "reliance", "Reliance Industries")

    def test_indicator_alert_end_to_end(self, app, reliance, add_bars):
        """Should calculate RSI, trigger an RSI alert and queue notifications."""
        run_date = date(2024, 6, 12)
        add_bars(reliance.id, [100.0 + i for i in range(60)], end=run_date)
        app.preference_repo.upsert(UserPreference(user_id=9, sms_enabled=True))

        indicator_run = app.indicator_job.run(run_date)
        assert indicator_run.failed_calculations == 1  # SMA(200) needs 200 closes
        assert app.indicator_repo.get_latest(reliance.id, "RSI", 14).value == 100.0

        alert = cli.add_alert(
            app,
            user_id=9,
            symbol="RELIANCE",
            trigger_type="technical_indicator",
            condition="above",
            threshold=70,
            options={"indicator_type": "RSI", "indicator_period": 14, "market_hours_only": False},
        )
        assert alert.trigger_type == "indicator"
        assert alert.baseline_price == 159.0

        result = app.processor.run_alert_batch()

        assert result.triggered_count == 1
        assert result.outcomes[0].status == AlertStatus.TRIGGERED
        history = app.history_repo.list_for_alert(alert.id)
        assert history[0].trigger_value == 100.0
        tasks = app.queue_repo.list_for_alert(alert.id)
        assert [t.notification_method_id for t in tasks] == [
            NotificationMethod.SMS,
            NotificationMethod.PUSH,
        ]
        assert tasks[0].content.startswith("RELIANCE RSI alert")

        # Cooldown blocks the immediate re-run
        second = app.processor.run_alert_batch()
        assert second.outcomes[0].status == AlertStatus.SKIPPED_COOLDOWN

    def test_add_alert_validates_condition(self, app, reliance):
        with pytest.raises(UnsupportedConditionError):
            cli.add_alert(app, 1, "RELIANCE", "price", "sideways", 100.0)
        assert app.alert_repo.list_active() == []

    def test_add_alert_rejects_secondary_crossing(self, app, reliance):
        with pytest.raises(UnsupportedConditionError, match="use 'above' or 'below'"):
            cli.add_alert(
                app, 1, "RELIANCE", "price", "above", 100.0,
                options={"secondary_indicator_type": "RSI", "secondary_condition": "crossunder"},
            )
        assert app.alert_repo.list_active() == []

    def test_add_alert_unknown_stock(self, app):
        with pytest.raises(ValueError):
            cli.add_alert(app, 1, "NOPE", "price", "above", 100.0)

    def test_sync_prices(self, app, reliance):
        feed = MagicMock()
        feed.get_daily_bars.side_effect = lambda stock, days: []
        result = cli.sync_prices(app, feed=feed)
        assert result == {"synced": {"RELIANCE": 0}, "failed": []}

    def test_healthcheck_posts_status(self, app, reliance):
        response = MagicMock(status_code=204)
        with patch("alertengine.healthcheck.requests.post", return_value=response) as post:
            status = run_healthcheck(app, webhook_url="https://example.com/hook")

        assert status == 204
        payload = post.call_args.kwargs["json"]
        fields = {f["name"]: f["value"] for f in payload["embeds"][0]["fields"]}
        assert fields["Stocks"] == "1"
        assert fields["Scheduler"] == "stopped"

    def test_healthcheck_without_webhook(self, app, monkeypatch):
        monkeypatch.delenv("OPS_WEBHOOK_URL", raising=False)
        with patch("alertengine.healthcheck.requests.post") as post:
            assert run_healthcheck(app) is None
        post.assert_not_called()


class TestCli:
    """Test CLI commands against a file database."""

    @pytest.fixture
    def run(self, tmp_path):
        db_path = str(tmp_path / "engine.db")
        config_path = str(tmp_path / "missing.yaml")

        def _run(*argv):
            cli.main(["--config", config_path, "--db", db_path, *argv])
            return db_path

        return _run

    def test_stock_and_alert_commands(self, run, capsys):
        run("db", "init")
        run("stocks", "add", "--symbol", "tcs", "--name", "Tata Consultancy Services")
        run("alerts", "add", "--user", "1", "--symbol", "TCS", "--type", "price",
            "--condition", "above", "--threshold", "4000")
        db_path = run("stocks", "list")

        out = capsys.readouterr().out
        assert "TCS - Tata Consultancy Services" in out
        assert "Created alert with ID: 1" in out

        db = Database(db_path)
        app = AlertEngineApp(db)
        assert len(app.alert_repo.list_active("price")) == 1
        db.close()

    def test_run_alerts_command(self, run, capsys):
        run("run", "alerts", "--price-only")
        assert "Processed 0, triggered 0, failed 0" in capsys.readouterr().out

    def test_status_command(self, run, capsys):
        run("status")
        assert '"timezone": "Asia/Kolkata"' in capsys.readouterr().out
