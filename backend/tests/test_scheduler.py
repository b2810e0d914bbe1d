from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_settings
from rainwatch.schemas.dispatch import DispatchResult, Schedule
from rainwatch.tasks import scheduler

SCHEDULES = [
    Schedule(id="evening-6", time="18:00"),
    Schedule(id="morning-8", time="08:00", target="today"),
    Schedule(id="evening-9", time="21:00", enabled=False),
]


def fake_engine(now, due: set[str]):
    engine = MagicMock()
    engine.now = lambda: now

    async def dispatch_slot(slot_id, schedule=None, threshold=None):
        if slot_id in due:
            return DispatchResult(slot=slot_id, date="2024-05-01")
        return DispatchResult(slot=slot_id, skipped=True, reason="Not due")

    engine.dispatch_slot = AsyncMock(side_effect=dispatch_slot)
    return engine


@pytest.mark.asyncio
async def test_check_schedules_returns_dispatched_passes(morning_now):
    engine = fake_engine(morning_now, due={"morning-8"})

    results = await scheduler.check_schedules(engine, SCHEDULES, make_settings(alert_threshold=60))

    assert [r.slot for r in results] == ["morning-8"]
    # disabled schedules are never dispatched
    assert engine.dispatch_slot.await_count == 2
    _, kwargs = engine.dispatch_slot.await_args_list[1]
    assert kwargs["threshold"] == 60
    assert kwargs["schedule"].id == "morning-8"


@pytest.mark.asyncio
async def test_check_schedules_without_alerts_has_no_threshold(morning_now):
    engine = fake_engine(morning_now, due=set())

    await scheduler.check_schedules(engine, SCHEDULES, make_settings(alert_enabled=False))

    assert all(c.kwargs["threshold"] is None for c in engine.dispatch_slot.await_args_list)


def test_start_and_stop_update_status(morning_now):
    engine = fake_engine(morning_now, due=set())
    settings = make_settings(notification_schedules="", timer_check_interval_seconds=3600)

    scheduler.start_scheduler(settings, engine=engine)
    try:
        status = scheduler.get_status()
        assert status["running"] is True
        assert status["next_notification_time"].startswith("2024-05-01T18:00")
        assert status["time_remaining"] == "in 10h 0m"
    finally:
        scheduler.stop_scheduler()

    assert scheduler.get_status()["running"] is False
