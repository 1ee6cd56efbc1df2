"""APScheduler integration."""

from __future__ import annotations

from apscheduler.schedulers.background import BackgroundScheduler

from .config import settings
from .reminders import dispatch_reminders

_scheduler: BackgroundScheduler | None = None


def start_scheduler() -> BackgroundScheduler | None:
    global _scheduler
    if not settings.enable_scheduler:
        return None
    if _scheduler and _scheduler.running:
        return _scheduler
    scheduler = BackgroundScheduler(timezone=settings.reference_timezone)
    scheduler.add_job(
        dispatch_reminders,
        "cron",
        hour=settings.reminder_hour,
        id="rsvp-reminders",
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
