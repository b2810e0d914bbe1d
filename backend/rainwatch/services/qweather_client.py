import logging
from datetime import date, datetime, timezone

import httpx

from rainwatch.core.errors import RetriesExhausted
from rainwatch.schemas.weather import City, DailyForecast, WeatherSample, parse_percent
from rainwatch.services.http_retry import WEATHER_POLICY, RetryingExecutor, RetryPolicy

logger = logging.getLogger(__name__)

SOURCE_ID = "qweather"
SUCCESS_CODE = "200"


class QWeatherClient:
    """Daily forecast (3 days) from QWeather."""

    def __init__(
        self,
        api_key: str,
        host: str = "devapi.qweather.com",
        version: str = "v7",
        executor: RetryingExecutor | None = None,
        policy: RetryPolicy = WEATHER_POLICY,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = f"https://{host}/{version}"
        self.executor = executor or RetryingExecutor()
        self.policy = policy
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def get_forecast(self, city_code: str) -> DailyForecast | None:
        """Fetch the daily forecast for a location id, or None when unavailable."""
        if not self.api_key:
            return None

        url = f"{self.base_url}/weather/3d"
        headers = {"X-QW-Api-Key": self.api_key, "Accept-Encoding": "gzip"}
        try:
            async with httpx.AsyncClient(timeout=15, transport=self._transport) as client:
                resp = await self.executor.execute(
                    lambda: client.get(url, params={"location": city_code}, headers=headers),
                    self.policy,
                    label=f"QWeather {city_code}",
                )
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, RetriesExhausted, ValueError) as e:
            logger.warning("QWeather forecast fetch failed for %s: %s", city_code, e)
            return None

        if not isinstance(data, dict) or str(data.get("code")) != SUCCESS_CODE:
            logger.warning(
                "QWeather returned code %s for %s",
                data.get("code") if isinstance(data, dict) else None,
                city_code,
            )
            return None
        try:
            return DailyForecast.model_validate(data)
        except ValueError as e:
            logger.warning("QWeather payload for %s did not validate: %s", city_code, e)
            return None


def to_samples(city: City, forecast: DailyForecast) -> list[WeatherSample]:
    """One sample per forecast day for the aggregator."""
    now = datetime.now(timezone.utc)
    samples = []
    for day in forecast.daily:
        try:
            day_date = date.fromisoformat(day.fx_date)
        except ValueError:
            continue
        samples.append(WeatherSample(
            source=SOURCE_ID,
            city_id=city.id,
            date=day_date,
            rain_probability=day.rain_probability,
            temp_min=_num(day.temp_min),
            temp_max=_num(day.temp_max),
            text=day.text_day or None,
            fetched_at=now,
        ))
    return samples


def _num(raw: str) -> float | None:
    return float(parse_percent(raw)) if raw and raw.strip() else None
