"""APScheduler integration."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from .config import settings
from .database import get_session
from .membership import reconcile_attendee_counts
from .storage import vacuum_database

logger = logging.getLogger("uvicorn.error")

_scheduler: BackgroundScheduler | None = None


def run_reconcile_cycle() -> int:
    with get_session() as session:
        corrected = reconcile_attendee_counts(session)
    if corrected:
        logger.info("Reconcile cycle corrected %d event(s)", corrected)
    return corrected


def start_scheduler() -> BackgroundScheduler:
    global _scheduler
    if _scheduler and _scheduler.running:
        return _scheduler
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_reconcile_cycle,
        "interval",
        seconds=int(settings.reconcile_interval.total_seconds()),
        id="reconcile-attendees",
        max_instances=1,
        replace_existing=True,
    )
    scheduler.add_job(
        vacuum_database,
        "interval",
        seconds=int(settings.vacuum_interval.total_seconds()),
        id="vacuum",
        max_instances=1,
        replace_existing=True,
    )
    scheduler.start()
    _scheduler = scheduler
    return scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        _scheduler = None
