import json
import logging

from rainwatch.schemas.dispatch import Schedule
from rainwatch.schemas.weather import City, DataSource

logger = logging.getLogger(__name__)


PRESET_CITIES = [
    City(id="beijing", name="Beijing", code="101010100", province="Beijing",
         latitude=39.9042, longitude=116.4074),
    City(id="shanghai", name="Shanghai", code="101020100", province="Shanghai",
         latitude=31.2304, longitude=121.4737),
    City(id="guangzhou", name="Guangzhou", code="101280101", province="Guangdong",
         latitude=23.1291, longitude=113.2644),
    City(id="shenzhen", name="Shenzhen", code="101280601", province="Guangdong",
         latitude=22.5431, longitude=114.0579),
    City(id="hangzhou", name="Hangzhou", code="101210101", province="Zhejiang",
         latitude=30.2741, longitude=120.1551),
    City(id="chengdu", name="Chengdu", code="101270101", province="Sichuan",
         latitude=30.5728, longitude=104.0668),
    City(id="wuhan", name="Wuhan", code="101200101", province="Hubei",
         latitude=30.5928, longitude=114.3055),
    City(id="nanjing", name="Nanjing", code="101190101", province="Jiangsu",
         latitude=32.0603, longitude=118.7969),
    City(id="xian", name="Xi'an", code="101110101", province="Shaanxi",
         latitude=34.3416, longitude=108.9398),
    City(id="chongqing", name="Chongqing", code="101040100", province="Chongqing",
         latitude=29.5630, longitude=106.5516),
]

_PRESET_BY_CODE: dict[str, City] = {c.code: c for c in PRESET_CITIES}


# Weights need not sum to 1; the aggregator normalizes over enabled sources.
DEFAULT_DATA_SOURCES = [
    DataSource(
        id="qweather",
        name="QWeather",
        description="Commercial forecast API, frequent updates",
        weight=0.6,
        enabled=True,
    ),
    DataSource(
        id="openmeteo",
        name="Open-Meteo",
        description="Open model blend, keyless",
        weight=0.4,
        enabled=True,
    ),
]

_SOURCE_NAMES: dict[str, str] = {s.id: s.name for s in DEFAULT_DATA_SOURCES}


DEFAULT_SCHEDULES = [
    Schedule(id="evening-6", time="18:00", target="tomorrow", enabled=True,
             description="18:00 push for tomorrow"),
    Schedule(id="evening-9", time="21:00", target="tomorrow", enabled=True,
             description="21:00 push for tomorrow"),
    Schedule(id="morning-8", time="08:00", target="today", enabled=True,
             description="08:00 push for today"),
]


def _city_from_pair(name: str, code: str) -> City:
    preset = _PRESET_BY_CODE.get(code)
    if preset:
        return preset.model_copy(update={"name": name})
    return City(id=code, name=name, code=code)


def parse_cities(raw: str) -> list[City]:
    """Parse the configured city list.

    Accepts a JSON array of ``{"name", "code"}`` objects or ``name:code``
    pairs separated by commas. Empty input means the preset list; a JSON
    array that fails to parse also falls back to the presets.
    """
    trimmed = (raw or "").strip()
    if not trimmed:
        return list(PRESET_CITIES)

    if trimmed.startswith("["):
        try:
            items = json.loads(trimmed)
        except json.JSONDecodeError as e:
            logger.warning("FORECAST_CITIES is not valid JSON, using presets: %s", e)
            return list(PRESET_CITIES)
        if not isinstance(items, list):
            return list(PRESET_CITIES)
        return [
            _city_from_pair(str(item["name"]), str(item["code"]))
            for item in items
            if isinstance(item, dict) and item.get("name") and item.get("code")
        ]

    cities = []
    for part in trimmed.split(","):
        name, _, code = part.strip().partition(":")
        if name.strip() and code.strip():
            cities.append(_city_from_pair(name.strip(), code.strip()))
    return cities


def parse_sources(raw: str) -> list[DataSource]:
    """Parse ``id:weight`` pairs. Known sources not listed come back disabled."""
    weights: dict[str, float] = {}
    for part in (raw or "").split(","):
        source_id, _, weight = part.strip().partition(":")
        source_id = source_id.strip().lower()
        if not source_id:
            continue
        try:
            weights[source_id] = min(1.0, max(0.0, float(weight)))
        except ValueError:
            logger.warning("Ignoring source %s with bad weight %r", source_id, weight)

    sources = [
        s.model_copy(update={"weight": weights.get(s.id, s.weight), "enabled": s.id in weights})
        for s in DEFAULT_DATA_SOURCES
    ]
    for source_id, weight in weights.items():
        if source_id not in _SOURCE_NAMES:
            sources.append(DataSource(id=source_id, name=source_id, weight=weight, enabled=True))
    return sources


def parse_schedules(raw: str) -> list[Schedule]:
    trimmed = (raw or "").strip()
    if not trimmed:
        return list(DEFAULT_SCHEDULES)
    try:
        items = json.loads(trimmed)
        return [Schedule.model_validate(item) for item in items]
    except (json.JSONDecodeError, TypeError, ValueError) as e:
        logger.warning("NOTIFICATION_SCHEDULES is invalid, using defaults: %s", e)
        return list(DEFAULT_SCHEDULES)
