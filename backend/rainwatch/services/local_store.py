"""SQLite-backed key-value store for the interval-timer mode.

Implements the same async interface as ``KVClient`` so dedupe policies and
notification history work unchanged when no remote store is configured.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from rainwatch.database import SessionLocal
from rainwatch.models.kv_entry import KVEntry
from rainwatch.services.kv_client import DEFAULT_TTL_SECONDS

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _expiry(ttl_seconds: int | None) -> datetime | None:
    if not ttl_seconds:
        return None
    return _utcnow() + timedelta(seconds=ttl_seconds)


def _live(entry: KVEntry | None) -> bool:
    return entry is not None and (entry.expires_at is None or entry.expires_at > _utcnow())


class LocalStore:
    def __init__(self, session_factory: sessionmaker | None = None):
        self._session_factory = session_factory or SessionLocal

    @property
    def configured(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        db: Session = self._session_factory()
        try:
            entry = db.get(KVEntry, key)
            return entry.value if _live(entry) else None
        finally:
            db.close()

    async def set(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> bool:
        db: Session = self._session_factory()
        try:
            entry = db.get(KVEntry, key)
            if entry is None:
                db.add(KVEntry(key=key, value=value, expires_at=_expiry(ttl_seconds)))
            else:
                entry.value = value
                entry.expires_at = _expiry(ttl_seconds)
            db.commit()
            return True
        except Exception as e:
            db.rollback()
            logger.error("Local store write failed for %s: %s", key, e)
            return False
        finally:
            db.close()

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> bool:
        db: Session = self._session_factory()
        try:
            entry = db.get(KVEntry, key)
            if _live(entry):
                return False
            if entry is not None:
                db.delete(entry)
                db.flush()
            db.add(KVEntry(key=key, value=value, expires_at=_expiry(ttl_seconds)))
            db.commit()
            return True
        except IntegrityError:
            # another writer inserted the key between our read and insert
            db.rollback()
            return False
        finally:
            db.close()

    async def delete(self, key: str) -> None:
        db: Session = self._session_factory()
        try:
            entry = db.get(KVEntry, key)
            if entry is not None:
                db.delete(entry)
                db.commit()
        finally:
            db.close()
