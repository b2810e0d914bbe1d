from fastapi import APIRouter, Depends, Query

from rainwatch.deps import get_engine, get_history
from rainwatch.schemas.dispatch import DeliveryResult, NotificationRecord
from rainwatch.services.dispatch import DispatchEngine
from rainwatch.services.history import NotificationHistory
from rainwatch.tasks.scheduler import get_status

router = APIRouter(tags=["notifications"])


@router.get("/notifications/history", response_model=list[NotificationRecord])
async def list_history(
    limit: int | None = Query(None, ge=1, le=100),
    history: NotificationHistory = Depends(get_history),
):
    """Most recent notification attempts, newest first."""
    return await history.recent(limit)


@router.delete("/notifications/history")
async def clear_history(history: NotificationHistory = Depends(get_history)):
    await history.clear()
    return {"ok": True}


@router.post("/notifications/test", response_model=DeliveryResult)
async def send_test_notification(engine: DispatchEngine = Depends(get_engine)):
    """Push a test message to the configured token."""
    return await engine.send_test()


@router.get("/scheduler/status")
async def scheduler_status():
    """Interval-timer state: next notification time and a countdown string."""
    return get_status()
