"""Decides whether a slot should dispatch now.

Nothing here is long-lived: every decision is recomputed from the current
time, the slot config and the dedupe markers in the store.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Protocol

from rainwatch.schemas.dispatch import Schedule, SlotConfig
from rainwatch.services.kv_client import KeyValueStore

logger = logging.getLogger(__name__)

DUE_TOLERANCE_MINUTES = 2
DAY_MARKER_TTL_SECONDS = 60 * 60 * 36
# Lapses on its own if a pass dies between claiming and settling.
CLAIM_TTL_SECONDS = 60 * 10

REASON_DISABLED = "Slot disabled"
REASON_NOT_DUE = "Not due"
REASON_ALREADY_SENT = "Already sent"


class MarkerScope(str, Enum):
    SLOT = "slot"  # any successful city marks the whole slot
    CITY = "city"  # each city gets its own marker


def date_key(now: datetime) -> str:
    return now.strftime("%Y-%m-%d")


def _epoch_ms(now: datetime) -> int:
    return int(now.timestamp() * 1000)


def _minute_of_day(hhmm: str) -> int:
    hour, minute = hhmm.split(":")
    return int(hour) * 60 + int(minute)


def is_due(schedule_time: str, now: datetime, tolerance_minutes: int = DUE_TOLERANCE_MINUTES) -> bool:
    """True when ``now`` is within the tolerance of HH:MM, wrapping at midnight."""
    diff = abs(now.hour * 60 + now.minute - _minute_of_day(schedule_time))
    return min(diff, 24 * 60 - diff) <= tolerance_minutes


class DedupePolicy(Protocol):
    name: str

    def key(self, slot_id: str, now: datetime, scope_id: str | None = None) -> str: ...

    async def is_satisfied(self, store: KeyValueStore, slot_id: str, now: datetime,
                           scope_id: str | None = None) -> bool: ...

    async def record(self, store: KeyValueStore, slot_id: str, now: datetime,
                     scope_id: str | None = None) -> bool: ...

    async def claim(self, store: KeyValueStore, slot_id: str, now: datetime,
                    scope_id: str | None = None) -> bool: ...

    async def settle(self, store: KeyValueStore, slot_id: str, now: datetime, sent: bool,
                     scope_id: str | None = None) -> None: ...


class DayKeyedPolicy:
    """One send per (calendar date, slot). The marker lapses when the date rolls over.

    The marker itself is the claim: it is written set-if-absent before any
    push goes out and removed again if nothing was sent.
    """

    name = "day"

    def key(self, slot_id: str, now: datetime, scope_id: str | None = None) -> str:
        key = f"rain-forecast:{date_key(now)}:{slot_id}"
        return f"{key}:{scope_id}" if scope_id else key

    async def is_satisfied(self, store, slot_id, now, scope_id=None) -> bool:
        return await store.get(self.key(slot_id, now, scope_id)) is not None

    async def record(self, store, slot_id, now, scope_id=None) -> bool:
        key = self.key(slot_id, now, scope_id)
        created = await store.set_if_absent(key, str(_epoch_ms(now)), DAY_MARKER_TTL_SECONDS)
        if not created and store.configured:
            logger.info("Dedupe marker %s already present; another pass got there first", key)
        return created

    async def claim(self, store, slot_id, now, scope_id=None) -> bool:
        return await self.record(store, slot_id, now, scope_id)

    async def settle(self, store, slot_id, now, sent, scope_id=None) -> None:
        if not sent:
            await store.delete(self.key(slot_id, now, scope_id))


class RollingHoursPolicy:
    """One send per slot within the last ``hours``, measured from the marker timestamp."""

    name = "rolling"

    def __init__(self, hours: float = 12.0):
        self.hours = hours

    def key(self, slot_id: str, now: datetime, scope_id: str | None = None) -> str:
        key = f"rain-scheduler:{slot_id}"
        return f"{key}:{scope_id}" if scope_id else key

    async def is_satisfied(self, store, slot_id, now, scope_id=None) -> bool:
        raw = await store.get(self.key(slot_id, now, scope_id))
        if raw is None:
            return False
        try:
            sent_ms = int(raw)
        except ValueError:
            logger.warning("Unreadable dedupe marker %r for %s; ignoring it", raw, slot_id)
            return False
        return (_epoch_ms(now) - sent_ms) < self.hours * 3600 * 1000

    async def record(self, store, slot_id, now, scope_id=None) -> bool:
        return await store.set(
            self.key(slot_id, now, scope_id),
            str(_epoch_ms(now)),
            int(self.hours * 3600),
        )

    async def claim(self, store, slot_id, now, scope_id=None) -> bool:
        """Take a short-lived lock beside the timestamp marker; False if the window is closed or taken."""
        lock = f"{self.key(slot_id, now, scope_id)}:claim"
        if not await store.set_if_absent(lock, str(_epoch_ms(now)), CLAIM_TTL_SECONDS):
            return False
        # checked under the lock, so a holder that settled just before us is seen
        if await self.is_satisfied(store, slot_id, now, scope_id):
            await store.delete(lock)
            return False
        return True

    async def settle(self, store, slot_id, now, sent, scope_id=None) -> None:
        if sent:
            await self.record(store, slot_id, now, scope_id)
        await store.delete(f"{self.key(slot_id, now, scope_id)}:claim")


def make_policy(name: str, window_hours: float = 12.0) -> DedupePolicy:
    if name == "rolling":
        return RollingHoursPolicy(window_hours)
    if name == "day":
        return DayKeyedPolicy()
    raise ValueError(f"unknown dedupe policy {name!r}")


@dataclass(frozen=True)
class MatchOutcome:
    proceed: bool
    reason: str | None = None

    @classmethod
    def skip(cls, reason: str) -> "MatchOutcome":
        return cls(proceed=False, reason=reason)


async def evaluate(
    slot_id: str,
    slot: SlotConfig,
    now: datetime,
    store: KeyValueStore,
    policy: DedupePolicy,
    schedule: Schedule | None = None,
    scope: MarkerScope = MarkerScope.SLOT,
) -> MatchOutcome:
    """Skip or proceed for one slot.

    Without a schedule the slot is due by construction (the external cron
    decides when to call). With CITY scope the per-city markers are checked
    by the dispatcher, so only the slot-level checks apply here.
    """
    if not slot.enabled or (schedule is not None and not schedule.enabled):
        return MatchOutcome.skip(REASON_DISABLED)
    if schedule is not None and not is_due(schedule.time, now):
        return MatchOutcome.skip(REASON_NOT_DUE)
    if scope == MarkerScope.SLOT and await policy.is_satisfied(store, slot_id, now):
        return MatchOutcome.skip(REASON_ALREADY_SENT)
    return MatchOutcome(proceed=True)


def next_notification_time(schedules: list[Schedule], now: datetime) -> datetime | None:
    """Nearest upcoming enabled schedule time strictly after ``now``."""
    upcoming = []
    for schedule in schedules:
        if not schedule.enabled:
            continue
        hour, minute = schedule.time.split(":")
        candidate = now.replace(hour=int(hour), minute=int(minute), second=0, microsecond=0)
        if candidate <= now:
            candidate += timedelta(days=1)
        upcoming.append(candidate)
    return min(upcoming) if upcoming else None


def format_time_remaining(target: datetime, now: datetime) -> str:
    seconds = int((target - now).total_seconds())
    if seconds <= 0:
        return "due now"
    hours, rem = divmod(seconds, 3600)
    minutes = rem // 60
    if hours > 24:
        return f"in {hours // 24}d {hours % 24}h"
    if hours > 0:
        return f"in {hours}h {minutes}m"
    return f"in {minutes}m"
