"""Layered slot configuration.

Base layer: per-slot defaults inferred from the slot name, overridden by
process settings. Override layer: a JSON document in the key-value store.
Override fields win one by one; absent fields fall through to the base.
"""

import json
import logging

from rainwatch.config import Settings
from rainwatch.core.errors import (
    AuthorizationError,
    ConfigurationError,
    InvalidPayloadError,
    OverrideParseError,
    StoreWriteError,
)
from rainwatch.schemas.dispatch import (
    VALID_DAYS,
    VALID_TARGETS,
    ConfigOverride,
    EffectiveConfig,
    SlotConfig,
    SlotOverride,
)
from rainwatch.services.kv_client import KeyValueStore

logger = logging.getLogger(__name__)

CONFIG_KEY = "rain-forecast:config"
CONFIG_TTL_SECONDS = 60 * 60 * 24 * 30

_TRUE = ("true", "1", "yes")
_FALSE = ("false", "0", "no")


def default_target_for_slot(slot: str) -> str:
    normalized = slot.lower()
    if normalized == "morning":
        return "today"
    if normalized in ("evening", "night"):
        return "tomorrow"
    return "range"


def _parse_enabled(raw, fallback: bool = True) -> bool:
    if isinstance(raw, bool):
        return raw
    if raw is None:
        return fallback
    value = str(raw).strip().lower()
    if value in _FALSE:
        return False
    if value in _TRUE:
        return True
    return fallback


def _sanitize_target(value) -> str | None:
    return value if value in VALID_TARGETS else None


def _sanitize_days(value) -> int | None:
    # bool is an int subclass; True must not pass as 1
    if isinstance(value, bool):
        return None
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    return int(value) if value in VALID_DAYS else None


def sanitize_slot(value) -> SlotOverride | None:
    """Keep only recognized fields; None when nothing valid is left."""
    if not isinstance(value, dict):
        return None
    fields = {}
    if isinstance(value.get("enabled"), bool):
        fields["enabled"] = value["enabled"]
    target = _sanitize_target(value.get("target"))
    if target:
        fields["target"] = target
    if "days" in value and not isinstance(value["days"], str):
        days = _sanitize_days(value["days"])
        if days:
            fields["days"] = days
    return SlotOverride(**fields) if fields else None


def sanitize_override(doc) -> ConfigOverride:
    if not isinstance(doc, dict):
        raise OverrideParseError("override document must be a JSON object")
    out = ConfigOverride()
    if isinstance(doc.get("enabled"), bool):
        out.enabled = doc["enabled"]
    slots = doc.get("slots")
    if isinstance(slots, dict):
        for slot_id, raw_slot in slots.items():
            slot = sanitize_slot(raw_slot)
            if slot:
                out.slots[str(slot_id).lower()] = slot
    return out


def parse_override(raw: str) -> ConfigOverride:
    """Parse the stored document. Raises OverrideParseError when unusable."""
    try:
        doc = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise OverrideParseError(f"override is not valid JSON: {e}") from e
    return sanitize_override(doc)


def merge_slot(base: SlotConfig, override: SlotOverride | None) -> SlotConfig:
    if override is None:
        return base
    return base.model_copy(update=override.model_dump(exclude_none=True))


def merge_overrides(stored: ConfigOverride | None, updates: ConfigOverride) -> ConfigOverride:
    """Deep-merge updates onto the stored document, per slot and per field."""
    merged = (stored or ConfigOverride()).model_copy(deep=True)
    if updates.enabled is not None:
        merged.enabled = updates.enabled
    for slot_id, slot in updates.slots.items():
        current = merged.slots.get(slot_id, SlotOverride())
        merged.slots[slot_id] = current.model_copy(update=slot.model_dump(exclude_none=True))
    return merged


def _bearer(authorization: str | None) -> str | None:
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):]
    return None


class ConfigResolver:
    def __init__(self, settings: Settings, store: KeyValueStore):
        self.settings = settings
        self.store = store

    def base_slot(self, slot: str) -> SlotConfig:
        slot = slot.lower()
        env = self.settings.forecast_slot.get(slot)
        target = _sanitize_target(env.target) if env else None
        days = _sanitize_days(env.days) if env else None
        return SlotConfig(
            enabled=_parse_enabled(env.enabled if env else None, True),
            target=target or default_target_for_slot(slot),
            days=days or self.settings.forecast_days,
        )

    def base_config(self) -> EffectiveConfig:
        return EffectiveConfig(
            enabled=True,
            slots={name: self.base_slot(name) for name in self.settings.slot_name_list},
        )

    async def load_override(self) -> ConfigOverride | None:
        if not self.store.configured:
            return None
        raw = await self.store.get(CONFIG_KEY)
        if not raw:
            return None
        try:
            return parse_override(raw)
        except OverrideParseError as e:
            logger.warning("Ignoring stored config override: %s", e)
            return None

    @staticmethod
    def merge(base: EffectiveConfig, override: ConfigOverride | None) -> EffectiveConfig:
        if override is None:
            return base
        enabled = override.enabled if override.enabled is not None else base.enabled
        slots = {slot_id: merge_slot(cfg, override.slots.get(slot_id)) for slot_id, cfg in base.slots.items()}
        if enabled is False:
            slots = {slot_id: cfg.model_copy(update={"enabled": False}) for slot_id, cfg in slots.items()}
        return EffectiveConfig(enabled=enabled, slots=slots)

    async def effective_config(self) -> EffectiveConfig:
        return self.merge(self.base_config(), await self.load_override())

    async def resolve(self, slot_id: str, base: SlotConfig | None = None) -> SlotConfig:
        """Effective config for one slot; ``enabled`` already folds in the global flag."""
        slot_id = slot_id.lower()
        override = await self.load_override()
        slot = merge_slot(base or self.base_slot(slot_id), override.slots.get(slot_id) if override else None)
        if override is not None and override.enabled is False:
            slot = slot.model_copy(update={"enabled": False})
        return slot

    def check_admin(self, authorization: str | None) -> None:
        if not self.settings.admin_secret or _bearer(authorization) != self.settings.admin_secret:
            raise AuthorizationError("Unauthorized")

    def check_store(self) -> None:
        if not self.store.configured:
            raise ConfigurationError("KV not configured", code="kv_not_configured")

    async def update(self, payload, authorization: str | None) -> EffectiveConfig:
        """Validate a partial document, merge it onto the stored override and persist it."""
        self.check_store()
        self.check_admin(authorization)

        if not isinstance(payload, dict):
            raise InvalidPayloadError("No valid updates", code="no_valid_updates")
        updates = sanitize_override(payload)
        if updates.enabled is None and not updates.slots:
            raise InvalidPayloadError("No valid updates", code="no_valid_updates")

        stored = await self.load_override()
        merged = merge_overrides(stored, updates)
        saved = await self.store.set(
            CONFIG_KEY,
            merged.model_dump_json(exclude_none=True),
            CONFIG_TTL_SECONDS,
        )
        if not saved:
            logger.warning("Config override write was not acknowledged by the store")
            raise StoreWriteError("Config write failed")
        logger.info("Config override updated: %s", merged.model_dump(exclude_none=True))
        return self.merge(self.base_config(), merged)
