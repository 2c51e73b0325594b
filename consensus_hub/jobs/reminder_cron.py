"""
Reminder Cron Job: closes expired discussions and delivers due reminders.

This module runs on an interval (cron, a container loop, or the
POST /jobs/scheduled-notifications trigger) independently of request
handling. Every step is idempotent, so overlapping runs are safe:

1. Claim and dispatch due scheduled reminders
2. Close open discussions whose deadline has passed or whose participants
   have all responded

Typical cron schedule: * * * * * (every minute)
"""

import argparse
import asyncio
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import get_settings
from ..core.database import build_engine, get_session_context
from ..services.consensus_analyzer import AnalysisConfig, ConsensusAnalyzerService
from ..services.lifecycle_engine import LifecycleEngine
from ..services.notifications import NotificationDispatcher
from ..services.reminder_sweep import ReminderSweep, SweepConfig

logger = logging.getLogger(__name__)


# =============================================================================
# ALERTING
# =============================================================================


async def send_alert(
    title: str,
    message: str,
    severity: str = "error",
    details: dict | None = None,
    webhook_url: str | None = None,
) -> None:
    """
    Send an alert when the job fails.

    Always logs; also posts to ALERT_WEBHOOK_URL (PagerDuty, Opsgenie,
    custom) when one is configured.
    """
    log_message = f"[CRON ALERT] {title}: {message}"
    if details:
        log_message += f" | Details: {details}"

    if severity == "critical":
        logger.critical(log_message)
    else:
        logger.error(log_message)

    webhook_url = webhook_url or get_settings().alert_webhook_url
    if not webhook_url:
        return

    payload = {
        "title": title,
        "message": message,
        "severity": severity,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": "consensus-hub-reminders",
        "details": details or {},
    }
    try:
        async with httpx.AsyncClient() as client:
            await client.post(webhook_url, json=payload, timeout=10)
    except httpx.HTTPError as e:
        logger.error(f"Failed to send webhook alert: {e}")


# =============================================================================
# JOB
# =============================================================================


async def run_scheduled_notifications(
    session: AsyncSession,
    analyzer: ConsensusAnalyzerService | None = None,
    sweep_config: SweepConfig | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    """
    One pass of scheduled work inside the caller's transaction.

    Used by the HTTP trigger. run_reminder_job() does the same work with a
    transaction per closure.

    Returns counts of discussions closed and reminders dispatched/skipped.
    """
    now = now or datetime.now(timezone.utc)
    dispatcher = NotificationDispatcher(session)

    lifecycle = LifecycleEngine(session, analyzer=analyzer, dispatcher=dispatcher)
    closed = await lifecycle.close_expired_discussions(now=now)

    sweep = ReminderSweep(session, dispatcher=dispatcher, config=sweep_config or SweepConfig())
    outcome = await sweep.run(now=now)

    return {
        "discussions_closed": len(closed),
        "reminders_dispatched": outcome.dispatched,
        "reminders_skipped": outcome.skipped,
    }


async def close_due_discussions(
    session_factory: async_sessionmaker[AsyncSession],
    analyzer: ConsensusAnalyzerService | None = None,
    now: datetime | None = None,
) -> tuple[int, int]:
    """
    Close every due discussion, each in its own transaction.

    A slow analysis call holds only its own discussion's row, and a failed
    closure does not roll back the others.

    Returns (closed, failed).
    """
    now = now or datetime.now(timezone.utc)
    async with get_session_context(session_factory) as session:
        due_ids = await LifecycleEngine(session).due_for_closure(now)

    closed = failed = 0
    for discussion_id in due_ids:
        try:
            async with get_session_context(session_factory) as session:
                outcome = await LifecycleEngine(session, analyzer=analyzer).evaluate_closure(
                    discussion_id, now=now
                )
        except Exception:
            logger.exception(f"Failed to close discussion {discussion_id}")
            failed += 1
            continue
        if outcome.closed:
            closed += 1
    return closed, failed


async def run_reminder_job(
    database_url: str,
    sweep_config: SweepConfig | None = None,
    analysis_config: AnalysisConfig | None = None,
) -> dict[str, Any]:
    """
    Main entry point for the reminder job.

    The reminder sweep commits first in its own transaction so closures
    waiting on analysis never delay reminders. Reminders for discussions
    past their deadline are skipped by the sweep itself.

    Args:
        database_url: Async database connection string
        sweep_config: Reminder batch configuration
        analysis_config: Consensus analysis for deadline closures

    Returns:
        Job result summary
    """
    start_time = datetime.now(timezone.utc)
    logger.info(f"Starting reminder job at {start_time.isoformat()}")

    engine = build_engine(database_url)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    analysis_config = analysis_config or AnalysisConfig.from_settings(get_settings())
    analyzer = ConsensusAnalyzerService(analysis_config)

    results: dict[str, Any] = {
        "started_at": start_time.isoformat(),
        "completed_at": None,
        "discussions_closed": 0,
        "closures_failed": 0,
        "reminders_dispatched": 0,
        "reminders_skipped": 0,
    }

    try:
        async with get_session_context(session_factory) as session:
            sweep = ReminderSweep(session, config=sweep_config or SweepConfig())
            outcome = await sweep.run(now=start_time)
        results["reminders_dispatched"] = outcome.dispatched
        results["reminders_skipped"] = outcome.skipped

        closed, failed = await close_due_discussions(
            session_factory, analyzer=analyzer, now=start_time
        )
        results["discussions_closed"] = closed
        results["closures_failed"] = failed

    except Exception as e:
        logger.error(f"Reminder job failed: {e}")

        await send_alert(
            title="Reminder Job Failed",
            message="The scheduled reminder job crashed unexpectedly.",
            severity="critical",
            details={
                "error": str(e),
                "traceback": traceback.format_exc()[-500:],
                "started_at": results["started_at"],
            },
        )
        raise

    finally:
        await engine.dispose()

    if results["closures_failed"]:
        await send_alert(
            title="Discussion Closures Failed",
            message=f"{results['closures_failed']} due discussions could not be closed.",
            details={"started_at": results["started_at"]},
        )

    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"Reminder job completed in {results['duration_seconds']:.2f}s: "
        f"{results['discussions_closed']} closed, "
        f"{results['reminders_dispatched']} reminders sent"
    )
    return results


async def _run_forever(database_url: str, interval: int, sweep_config: SweepConfig) -> None:
    while True:
        try:
            await run_reminder_job(database_url, sweep_config=sweep_config)
        except Exception:
            # Already alerted; keep the loop alive for the next run
            logger.exception("Reminder run failed")
        await asyncio.sleep(interval)


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the reminder job."""
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Run the discussion reminder job")
    parser.add_argument(
        "--database-url",
        default=settings.database_url_async,
        help="Async database connection string",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=SweepConfig().batch_size,
        help="Maximum reminders handled per run",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=settings.reminder_sweep_interval_seconds,
        help="Seconds between runs when looping",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single pass and exit",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    sweep_config = SweepConfig(batch_size=args.batch_size)

    if not args.once:
        asyncio.run(_run_forever(args.database_url, args.interval, sweep_config))
        return

    try:
        results = asyncio.run(run_reminder_job(
            database_url=args.database_url,
            sweep_config=sweep_config,
        ))
        print(f"Job completed: {results}")
    except Exception as e:
        print(f"Job failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
