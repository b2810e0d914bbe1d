"""Tests for layered slot configuration and the admin write path."""

import json

import pytest

from conftest import FakeStore, make_settings
from rainwatch.core.errors import (
    AuthorizationError,
    ConfigurationError,
    InvalidPayloadError,
    OverrideParseError,
    StoreWriteError,
)
from rainwatch.schemas.dispatch import ConfigOverride, SlotConfig, SlotOverride
from rainwatch.services.config_resolver import (
    CONFIG_KEY,
    ConfigResolver,
    default_target_for_slot,
    merge_overrides,
    parse_override,
    sanitize_slot,
)

ADMIN = "Bearer admin-secret"


@pytest.fixture
def resolver(store):
    return ConfigResolver(make_settings(admin_secret="admin-secret"), store)


# --- Base layer ---

def test_default_target_by_slot_name():
    assert default_target_for_slot("morning") == "today"
    assert default_target_for_slot("Evening") == "tomorrow"
    assert default_target_for_slot("night") == "tomorrow"
    assert default_target_for_slot("lunch") == "range"


def test_base_uses_process_settings(store):
    settings = make_settings(
        forecast_days=2,
        forecast_slot={"night": {"enabled": "false", "target": "today", "days": "1"}},
    )
    resolver = ConfigResolver(settings, store)

    assert resolver.base_slot("morning") == SlotConfig(enabled=True, target="today", days=2)
    assert resolver.base_slot("night") == SlotConfig(enabled=False, target="today", days=1)


def test_unrecognized_env_values_fall_back(store):
    settings = make_settings(forecast_slot={"morning": {"enabled": "maybe", "target": "weekly", "days": "7"}})
    resolver = ConfigResolver(settings, store)
    assert resolver.base_slot("morning") == SlotConfig(enabled=True, target="today", days=3)


def test_forecast_days_out_of_range_clamps_to_default():
    assert make_settings(forecast_days=9).forecast_days == 3


# --- Merge ---

@pytest.mark.asyncio
async def test_override_wins_per_field(store, resolver):
    store.data[CONFIG_KEY] = json.dumps({"slots": {"morning": {"days": 1}}})

    slot = await resolver.resolve("morning")

    assert slot == SlotConfig(enabled=True, target="today", days=1)


@pytest.mark.asyncio
async def test_override_can_reenable_slot(store):
    settings = make_settings(forecast_slot={"night": {"enabled": "false"}})
    store.data[CONFIG_KEY] = json.dumps({"slots": {"night": {"enabled": True}}})
    slot = await ConfigResolver(settings, store).resolve("night")
    assert slot.enabled is True


@pytest.mark.asyncio
async def test_global_disable_disables_every_slot(store, resolver):
    store.data[CONFIG_KEY] = json.dumps({"enabled": False, "slots": {"morning": {"enabled": True}}})

    config = await resolver.effective_config()

    assert config.enabled is False
    assert all(not s.enabled for s in config.slots.values())
    assert (await resolver.resolve("morning")).enabled is False


@pytest.mark.asyncio
async def test_malformed_override_is_ignored(store, resolver):
    store.data[CONFIG_KEY] = "{not json"
    assert await resolver.load_override() is None
    assert await resolver.effective_config() == resolver.base_config()


@pytest.mark.asyncio
async def test_unconfigured_store_yields_base():
    resolver = ConfigResolver(make_settings(), FakeStore(configured=False))
    assert await resolver.effective_config() == resolver.base_config()


def test_parse_override_drops_invalid_fields():
    override = parse_override(json.dumps({
        "enabled": "yes",
        "slots": {
            "Morning": {"target": "today", "days": 5, "color": "red"},
            "evening": {"days": True},
            "night": {"days": "2"},
            "noon": "bad",
        },
    }))
    assert override.enabled is None
    assert override.slots == {"morning": SlotOverride(target="today")}


def test_parse_override_rejects_non_object():
    with pytest.raises(OverrideParseError):
        parse_override("[1, 2]")


def test_sanitize_slot_accepts_whole_float_days():
    assert sanitize_slot({"days": 2.0}) == SlotOverride(days=2)
    assert sanitize_slot({"days": 2.5}) is None


def test_merge_overrides_is_deep():
    stored = ConfigOverride(slots={"morning": SlotOverride(target="today", days=2)})
    updates = ConfigOverride(enabled=True, slots={"morning": SlotOverride(days=1), "night": SlotOverride(enabled=False)})

    merged = merge_overrides(stored, updates)

    assert merged.enabled is True
    assert merged.slots["morning"] == SlotOverride(target="today", days=1)
    assert merged.slots["night"] == SlotOverride(enabled=False)
    # the stored document is not mutated
    assert stored.slots["morning"].days == 2


def test_serialized_override_round_trips_stably():
    doc = ConfigOverride(enabled=False, slots={"morning": SlotOverride(days=1)})
    raw = doc.model_dump_json(exclude_none=True)
    assert parse_override(raw).model_dump_json(exclude_none=True) == raw


# --- Write path ---

@pytest.mark.asyncio
async def test_update_requires_store():
    resolver = ConfigResolver(make_settings(admin_secret="admin-secret"), FakeStore(configured=False))
    with pytest.raises(ConfigurationError) as exc:
        await resolver.update({"enabled": False}, ADMIN)
    assert exc.value.message == "KV not configured"


@pytest.mark.asyncio
async def test_update_requires_admin_bearer(resolver):
    with pytest.raises(AuthorizationError):
        await resolver.update({"enabled": False}, None)
    with pytest.raises(AuthorizationError):
        await resolver.update({"enabled": False}, "Bearer wrong")
    with pytest.raises(AuthorizationError):
        await resolver.update({"enabled": False}, "admin-secret")


@pytest.mark.asyncio
async def test_update_refused_when_admin_secret_unset(store):
    resolver = ConfigResolver(make_settings(admin_secret=""), store)
    with pytest.raises(AuthorizationError):
        await resolver.update({"enabled": False}, "Bearer ")


@pytest.mark.asyncio
async def test_update_with_nothing_valid(resolver):
    with pytest.raises(InvalidPayloadError) as exc:
        await resolver.update({"slots": {"morning": {"days": 9}}}, ADMIN)
    assert exc.value.message == "No valid updates"
    with pytest.raises(InvalidPayloadError):
        await resolver.update(["enabled"], ADMIN)


@pytest.mark.asyncio
async def test_update_deep_merges_and_persists(store, resolver):
    await resolver.update({"slots": {"morning": {"target": "range"}}}, ADMIN)
    config = await resolver.update({"slots": {"morning": {"days": 1}}}, ADMIN)

    assert config.slots["morning"] == SlotConfig(enabled=True, target="range", days=1)
    stored = json.loads(store.data[CONFIG_KEY])
    assert stored == {"slots": {"morning": {"target": "range", "days": 1}}}
    assert store.ttls[CONFIG_KEY] == 60 * 60 * 24 * 30


@pytest.mark.asyncio
async def test_update_persists_override_only(store, resolver):
    await resolver.update({"enabled": False}, ADMIN)
    assert json.loads(store.data[CONFIG_KEY]) == {"enabled": False, "slots": {}}


class UnacknowledgedStore(FakeStore):
    """Accepts reads but never acknowledges a write."""

    async def set(self, key, value, ttl_seconds=0):
        return False


@pytest.mark.asyncio
async def test_update_fails_when_write_is_not_acknowledged():
    store = UnacknowledgedStore()
    resolver = ConfigResolver(make_settings(admin_secret="admin-secret"), store)

    with pytest.raises(StoreWriteError) as exc:
        await resolver.update({"enabled": False}, ADMIN)

    assert exc.value.message == "Config write failed"
    assert CONFIG_KEY not in store.data
    assert (await resolver.effective_config()).enabled is True
