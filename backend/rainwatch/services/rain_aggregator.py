"""Weighted multi-source rain probability.

Only enabled sources count, and their weights are normalized by their sum at
read time, so configured weights need not add up to 1.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date

from rainwatch.schemas.weather import DataSource, WeatherSample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Aggregate:
    probability: int
    has_data: bool  # False means "no samples", not "no rain risk"
    sample_count: int


def round_half_away(value: float) -> int:
    return int(math.floor(abs(value) + 0.5)) * (1 if value >= 0 else -1)


def aggregate(samples: list[WeatherSample], sources: list[DataSource]) -> Aggregate:
    """Combine one city/day's samples into a composite 0-100 percentage."""
    enabled = {s.id: s.weight for s in sources if s.enabled}
    total_weight = sum(enabled.values())
    matched = [s for s in samples if s is not None and s.source in enabled]
    if total_weight <= 0 or not matched:
        return Aggregate(probability=0, has_data=False, sample_count=0)

    weighted = sum(s.rain_probability * (enabled[s.source] / total_weight) for s in matched)
    return Aggregate(
        probability=max(0, min(100, round_half_away(weighted))),
        has_data=True,
        sample_count=len(matched),
    )


def weighted_probability(samples: list[WeatherSample], sources: list[DataSource]) -> int:
    return aggregate(samples, sources).probability


def aggregate_by_date(samples: list[WeatherSample], sources: list[DataSource]) -> dict[date, Aggregate]:
    by_date: dict[date, list[WeatherSample]] = {}
    for s in samples:
        by_date.setdefault(s.date, []).append(s)
    return {d: aggregate(group, sources) for d, group in sorted(by_date.items())}


def alert_level(probability: int) -> str:
    if probability >= 80:
        return "High"
    if probability >= 60:
        return "Medium"
    return "Low"


def suggestion(probability: int) -> str:
    if probability >= 80:
        return "Rain is very likely. Take rain gear and avoid going out if you can."
    if probability >= 60:
        return "Rain is likely. Take rain gear."
    if probability >= 40:
        return "Rain is possible. Carry an umbrella."
    return "Low chance of rain. Normal plans should be fine."
