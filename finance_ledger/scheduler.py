# scheduler.py
# Role: Background task that posts due recurring transactions once a day.
#       Started from the app lifespan (main.py); the posting itself is
#       services/recurring.run_due_recurring, run in a worker thread.

import asyncio
from datetime import datetime, timedelta
from typing import Callable

import structlog
from sqlalchemy.orm import Session

from finance_ledger.services.audit import AuditLogger
from finance_ledger.services.periods import utcnow
from finance_ledger.services.recurring import TickResult, run_due_recurring

logger = structlog.get_logger(__name__)


def seconds_until_next_run(now: datetime, hour: int) -> float:
    """Seconds from `now` until the next HH:00:00 (UTC), always > 0."""
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


def run_recurring_once(session_factory: Callable[[], Session], now: datetime | None = None) -> TickResult:
    """One posting run with its own session. Audit entries are written inline."""
    db = session_factory()
    try:
        return run_due_recurring(db, now=now, audit=AuditLogger(session_factory))
    finally:
        db.close()


async def recurring_loop(session_factory: Callable[[], Session], hour: int) -> None:
    """
    Sleep until the configured hour, post, repeat. Runs until cancelled.

    A crashed run is logged and the loop waits for the next day.
    """
    logger.info("recurring_scheduler_started", run_hour=hour)
    while True:
        delay = seconds_until_next_run(utcnow(), hour)
        logger.debug("recurring_scheduler_sleeping", seconds=int(delay))
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.info("recurring_scheduler_stopped")
            raise

        try:
            await asyncio.to_thread(run_recurring_once, session_factory)
        except Exception:
            logger.exception("recurring_run_crashed")
