"""Open-Meteo daily precipitation probability, used as a secondary sample source."""

import logging
from datetime import date, datetime, timezone

import httpx

from rainwatch.core.errors import RetriesExhausted
from rainwatch.schemas.weather import City, WeatherSample, clamp_probability
from rainwatch.services.http_retry import WEATHER_POLICY, RetryingExecutor, RetryPolicy

logger = logging.getLogger(__name__)

SOURCE_ID = "openmeteo"
OPEN_METEO_BASE = "https://api.open-meteo.com/v1/forecast"


class OpenMeteoClient:
    source_id = SOURCE_ID

    def __init__(
        self,
        executor: RetryingExecutor | None = None,
        policy: RetryPolicy = WEATHER_POLICY,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.executor = executor or RetryingExecutor()
        self.policy = policy
        self._transport = transport

    def covers(self, city: City) -> bool:
        return city.latitude is not None and city.longitude is not None

    async def fetch_samples(self, city: City, days: int = 3) -> list[WeatherSample]:
        """Daily samples for a city; empty when it has no coordinates or the call fails."""
        if not self.covers(city):
            return []

        params = {
            "latitude": city.latitude,
            "longitude": city.longitude,
            "daily": "precipitation_probability_max,temperature_2m_max,temperature_2m_min",
            "timezone": "auto",
            "forecast_days": days,
        }
        try:
            async with httpx.AsyncClient(timeout=15, transport=self._transport) as client:
                resp = await self.executor.execute(
                    lambda: client.get(OPEN_METEO_BASE, params=params),
                    self.policy,
                    label=f"Open-Meteo {city.id}",
                )
                resp.raise_for_status()
                daily = resp.json().get("daily", {})
        except (httpx.HTTPError, RetriesExhausted, ValueError, AttributeError) as e:
            logger.warning("Open-Meteo fetch failed for %s: %s", city.id, e)
            return []

        now = datetime.now(timezone.utc)
        dates = daily.get("time", [])
        pops = daily.get("precipitation_probability_max", [])
        highs = daily.get("temperature_2m_max", [])
        lows = daily.get("temperature_2m_min", [])

        samples = []
        for i, day_str in enumerate(dates):
            pop = pops[i] if i < len(pops) else None
            if pop is None:
                # missing value means no sample, not a 0% reading
                continue
            try:
                day_date = date.fromisoformat(day_str)
            except (TypeError, ValueError):
                continue
            samples.append(WeatherSample(
                source=SOURCE_ID,
                city_id=city.id,
                date=day_date,
                rain_probability=clamp_probability(pop),
                temp_max=highs[i] if i < len(highs) else None,
                temp_min=lows[i] if i < len(lows) else None,
                fetched_at=now,
            ))
        return samples
