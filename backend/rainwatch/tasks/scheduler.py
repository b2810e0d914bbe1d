"""APScheduler setup for the interval-timer mode.

A one-minute job checks every schedule and dispatches the ones that are due.
A one-second job only refreshes the "time remaining" display.
"""

import asyncio
import logging
import threading
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler

from rainwatch.cities.definitions import parse_schedules
from rainwatch.config import Settings, settings
from rainwatch.schemas.dispatch import DispatchResult, Schedule
from rainwatch.services.dispatch import DispatchEngine, build_engine
from rainwatch.services.schedule_matcher import format_time_remaining, next_notification_time

logger = logging.getLogger(__name__)

_scheduler: BackgroundScheduler | None = None
_engine: DispatchEngine | None = None
_schedules: list[Schedule] = []
_settings: Settings = settings

# Held while a check is dispatching; overlapping ticks skip instead of re-entering.
_dispatch_lock = threading.Lock()

_status: dict = {
    "running": False,
    "next_notification_time": None,
    "time_remaining": "",
    "last_check_time": None,
}


async def check_schedules(
    engine: DispatchEngine, schedules: list[Schedule], app_settings: Settings
) -> list[DispatchResult]:
    """Dispatch every enabled schedule that is due now; returns the non-skipped passes."""
    threshold = app_settings.alert_threshold if app_settings.alert_enabled else None
    results = []
    for schedule in schedules:
        if not schedule.enabled:
            continue
        result = await engine.dispatch_slot(schedule.id, schedule=schedule, threshold=threshold)
        if not result.skipped:
            results.append(result)
    return results


def _run_schedule_check():
    if _engine is None:
        return
    if not _dispatch_lock.acquire(blocking=False):
        logger.info("Previous schedule check still running; skipping this tick")
        return
    loop = asyncio.new_event_loop()
    try:
        results = loop.run_until_complete(check_schedules(_engine, _schedules, _settings))
        sent = sum(1 for r in results for c in r.results if c.success)
        if sent:
            logger.info("Schedule check sent %d notifications", sent)
    except Exception as e:
        logger.error("Schedule check job failed: %s", e)
    finally:
        loop.close()
        _dispatch_lock.release()
        _status["last_check_time"] = _engine.now().isoformat()
        _refresh_next_time()


def _refresh_next_time():
    if _engine is None:
        return
    now = _engine.now()
    next_time = next_notification_time(_schedules, now)
    _status["next_notification_time"] = next_time.isoformat() if next_time else None
    _status["time_remaining"] = format_time_remaining(next_time, now) if next_time else ""


def _tick_countdown():
    if _engine is None or not _status["next_notification_time"]:
        return
    next_time = datetime.fromisoformat(_status["next_notification_time"])
    _status["time_remaining"] = format_time_remaining(next_time, _engine.now())


def get_status() -> dict:
    return dict(_status)


def start_scheduler(app_settings: Settings = settings, engine: DispatchEngine | None = None):
    global _scheduler, _engine, _schedules, _settings
    _settings = app_settings
    _engine = engine or build_engine(app_settings, mode="timer")
    _schedules = parse_schedules(app_settings.notification_schedules)
    _scheduler = BackgroundScheduler()

    _scheduler.add_job(
        _run_schedule_check,
        "interval",
        seconds=app_settings.timer_check_interval_seconds,
        id="schedule_check",
        name="Forecast schedule check",
        max_instances=1,
        next_run_time=datetime.now(),
    )

    _scheduler.add_job(
        _tick_countdown,
        "interval",
        seconds=1,
        id="countdown",
        name="Time remaining display",
        max_instances=1,
    )

    _refresh_next_time()
    _scheduler.start()
    _status["running"] = True
    logger.info(
        "Scheduler started: %d schedules, check every %d s",
        len(_schedules),
        app_settings.timer_check_interval_seconds,
    )


def stop_scheduler():
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
        _scheduler = None
    _status["running"] = False
