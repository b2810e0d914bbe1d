"""Bounded rolling log of notification attempts, newest first."""

import json
import logging

from pydantic import ValidationError

from rainwatch.schemas.dispatch import NotificationRecord
from rainwatch.services.kv_client import KeyValueStore

logger = logging.getLogger(__name__)

HISTORY_KEY = "rain-forecast:history"
HISTORY_TTL_SECONDS = 60 * 60 * 24 * 30
HISTORY_LIMIT = 100


class NotificationHistory:
    def __init__(self, store: KeyValueStore, limit: int = HISTORY_LIMIT, key: str = HISTORY_KEY):
        self.store = store
        self.limit = limit
        self.key = key

    async def recent(self, limit: int | None = None) -> list[NotificationRecord]:
        raw = await self.store.get(self.key)
        if not raw:
            return []
        try:
            items = json.loads(raw)
            records = [NotificationRecord.model_validate(item) for item in items]
        except (ValueError, TypeError, ValidationError) as e:
            logger.warning("Notification history unreadable, starting fresh: %s", e)
            return []
        return records[:limit] if limit else records

    async def append(self, records: list[NotificationRecord]) -> None:
        if not records or not self.store.configured:
            return
        existing = await self.recent()
        updated = records + existing
        payload = json.dumps([r.model_dump() for r in updated[: self.limit]], ensure_ascii=False)
        if not await self.store.set(self.key, payload, HISTORY_TTL_SECONDS):
            logger.warning("Failed to save %d notification records", len(records))

    async def clear(self) -> None:
        await self.store.delete(self.key)
