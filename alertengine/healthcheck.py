"""
Operational health check - posts scheduler status to a webhook.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Optional

import requests

logger = logging.getLogger(__name__)

GREEN = 0x2ECC71
ORANGE = 0xE67E22


def build_payload(status: dict, active_alerts: int, stocks: int) -> dict:
    """Discord-style embed describing the engine status."""
    market = status["market"]
    jobs = status["jobs"]

    job_lines = []
    failed = False
    for job_id, job in jobs.items():
        last = job["last_run"]
        if last is None:
            job_lines.append(f"{job_id}: never run")
            continue
        if last["status"] == "failed":
            failed = True
        job_lines.append(
            f"{job_id}: {last['status']} at {last['started_at']} "
            f"({last['duration_seconds']}s)"
        )

    if market["is_open"]:
        market_value = f"Open until {market['next_close']}"
    else:
        market_value = f"Closed, opens {market['next_open']}"

    return {
        "embeds": [{
            "title": "Alert Engine Health Check",
            "description": (
                "Last job run failed." if failed else "System is running normally."
            ),
            "color": ORANGE if failed or not status["running"] else GREEN,
            "fields": [
                {"name": "Scheduler", "value": "running" if status["running"] else "stopped", "inline": True},
                {"name": "Active alerts", "value": str(active_alerts), "inline": True},
                {"name": "Stocks", "value": str(stocks), "inline": True},
                {"name": "Market", "value": market_value, "inline": False},
                {"name": "Jobs", "value": "\n".join(job_lines) or "None", "inline": False},
            ],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }]
    }


def run_healthcheck(app, webhook_url: Optional[str] = None) -> Optional[int]:
    """Send the engine status to OPS_WEBHOOK_URL.

    Args:
        app: AlertEngineApp instance

    Returns:
        HTTP status code, or None when no webhook is configured
    """
    webhook_url = webhook_url or os.getenv("OPS_WEBHOOK_URL")
    if not webhook_url:
        logger.info("OPS_WEBHOOK_URL not set, skipping health check")
        return None

    payload = build_payload(
        app.scheduler.get_status(),
        active_alerts=len(app.alert_repo.list_active()),
        stocks=len(app.stock_repo.list_all()),
    )
    response = requests.post(webhook_url, json=payload, timeout=10)
    logger.info(f"Health check sent (status: {response.status_code})")
    return response.status_code
