"""
Pack Status Cron Job: Opens and closes packs on schedule.

This module runs as a scheduled job (via cron or similar) and performs
one scheduler tick per invocation; the HTTP trigger at
POST /jobs/pack-status does the same work.

Typical cron schedule: */5 * * * * (every five minutes)
"""

import asyncio
import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from ..core.config import Settings, get_settings
from ..services.notification_service import NotificationDispatcher, build_transport
from ..services.pack_scheduler import PackScheduler, SchedulerConfig, TickResult
from ..services.sms_conversation import SmsConversationEngine


logger = logging.getLogger(__name__)


# =============================================================================
# ALERTING
# =============================================================================


@dataclass
class JobAlert:
    """Something an operator should look at after a tick."""
    title: str
    message: str
    severity: str = "error"
    packs: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    def slack_payload(self) -> dict[str, Any]:
        color = "#dc2626" if self.severity == "critical" else "#f59e0b"
        lines = [f"• *{k}*: {v}" for k, v in self.details.items()]
        if self.packs:
            lines.append("• *packs*: " + ", ".join(f"`{p}`" for p in self.packs))

        blocks: list[dict[str, Any]] = [
            {"type": "header", "text": {"type": "plain_text", "text": self.title}},
            {"type": "section", "text": {"type": "mrkdwn", "text": self.message}},
        ]
        if lines:
            blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": "\n".join(lines)}})
        return {"attachments": [{"color": color, "blocks": blocks}]}

    def webhook_payload(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "message": self.message,
            "severity": self.severity,
            "source": "take-settlement-pack-status",
            "packs": self.packs,
            "details": self.details,
        }


def crash_alert(error: Exception, started_at: str) -> JobAlert:
    return JobAlert(
        title="Pack Status Job Failed",
        message="The pack open/close tick crashed; no announcements were sent after the failure.",
        severity="critical",
        details={
            "error": str(error),
            "started_at": started_at,
            "traceback": traceback.format_exc()[-500:],
        },
    )


def notification_failure_alert(tick: TickResult) -> JobAlert | None:
    """Warn about opened packs whose announcements partly failed."""
    failing = [p for p in tick.opened if p.failed]
    if not failing:
        return None

    return JobAlert(
        title="Pack Announcements Failed",
        message=f"{tick.failed} of {tick.notified + tick.failed} pack-open messages failed to send.",
        severity="warning",
        packs=[f"{p.pack_url} ({p.failed}/{p.recipients} failed)" for p in failing],
        details={"opened": tick.opened_count, "closed": tick.live_count},
    )


async def send_alert(
    alert: JobAlert,
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
) -> None:
    """Log the alert and post it to the configured Slack and generic webhooks."""
    settings = settings or get_settings()

    log_message = f"[PACK STATUS ALERT] {alert.title}: {alert.message}"
    if alert.packs:
        log_message += f" | packs={alert.packs}"
    logger.log(logging.CRITICAL if alert.severity == "critical" else logging.ERROR, log_message)

    targets = []
    if settings.slack_alerts_webhook_url:
        targets.append(("Slack", settings.slack_alerts_webhook_url, alert.slack_payload()))
    if settings.alert_webhook_url:
        targets.append(("webhook", settings.alert_webhook_url, alert.webhook_payload()))
    if not targets:
        return

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=10)
    try:
        for channel, url, payload in targets:
            try:
                response = await client.post(url, json=payload)
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error(f"Failed to send {channel} alert: {e}")
    finally:
        if owns_client:
            await client.aclose()


# =============================================================================
# JOB
# =============================================================================


async def run_pack_status_job(
    database_url: str,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Main entry point for the pack status cron job.

    This function:
    1. Opens packs whose window has started and announces them
    2. Closes packs whose window has ended
    3. Alerts on crashes and on partial notification failures

    Returns:
        Job result summary
    """
    settings = settings or get_settings()
    start_time = datetime.now(timezone.utc)
    logger.info(f"Starting pack status job at {start_time.isoformat()}")

    engine = create_async_engine(database_url.replace("postgresql://", "postgresql+asyncpg://"))
    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    dispatcher = NotificationDispatcher(
        build_transport(settings), concurrency=settings.notification_concurrency
    )

    results: dict[str, Any] = {
        "started_at": start_time.isoformat(),
        "completed_at": None,
        "opened_count": 0,
        "live_count": 0,
        "notifications_sent": 0,
        "notifications_failed": 0,
        "sessions_seeded": 0,
        "opened_packs": [],
        "closed_pack_ids": [],
    }

    try:
        conversation = SmsConversationEngine(
            session_factory, dispatcher, settings.public_base_url
        )
        scheduler = PackScheduler(
            session_factory,
            dispatcher,
            conversation,
            SchedulerConfig(
                public_base_url=settings.public_base_url,
                default_pack_open_template=settings.default_pack_open_template,
            ),
        )
        tick = await scheduler.tick(now=now)

        results["opened_count"] = tick.opened_count
        results["live_count"] = tick.live_count
        results["notifications_sent"] = tick.notified
        results["notifications_failed"] = tick.failed
        results["sessions_seeded"] = tick.sessions_seeded
        results["opened_packs"] = [p.pack_url for p in tick.opened]
        results["closed_pack_ids"] = [str(pack_id) for pack_id in tick.closed_pack_ids]

    except Exception as e:
        logger.error(f"Pack status job failed: {e}")

        await send_alert(crash_alert(e, results["started_at"]), settings)
        raise

    finally:
        await dispatcher.close()
        await engine.dispose()

    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"Pack status job completed in {results['duration_seconds']:.2f}s: "
        f"{results['opened_count']} opened, {results['live_count']} closed, "
        f"{results['notifications_sent']} notifications sent"
    )

    warning = notification_failure_alert(tick)
    if warning is not None:
        await send_alert(warning, settings)

    return results


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the pack status job."""
    import argparse
    import sys

    settings = get_settings()

    parser = argparse.ArgumentParser(description="Open and close packs that are due")
    parser.add_argument(
        "--database-url",
        default=settings.database_url_async,
        help="Database connection string (defaults to DATABASE_URL)",
    )
    parser.add_argument(
        "--now",
        type=datetime.fromisoformat,
        default=None,
        help="Evaluate schedules as of this ISO-8601 time instead of the current time",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    now = args.now
    if now is not None and now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    try:
        results = asyncio.run(run_pack_status_job(args.database_url, settings, now=now))
        logger.info(f"Job completed: {results}")
    except Exception as e:
        logger.error(f"Job failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
