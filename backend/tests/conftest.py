from datetime import datetime
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest

from rainwatch.config import Settings
from rainwatch.schemas.dispatch import DeliveryResult
from rainwatch.schemas.weather import City, DailyForecast, DataSource

TZ = ZoneInfo("Asia/Shanghai")


class FakeStore:
    """In-memory stand-in for the key-value store (no TTL handling)."""

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key):
        return self.data.get(key) if self.configured else None

    async def set(self, key, value, ttl_seconds=0):
        if not self.configured:
            return False
        self.data[key] = value
        self.ttls[key] = ttl_seconds
        return True

    async def set_if_absent(self, key, value, ttl_seconds=0):
        if not self.configured or key in self.data:
            return False
        return await self.set(key, value, ttl_seconds)

    async def delete(self, key):
        self.data.pop(key, None)


def make_settings(**kwargs) -> Settings:
    defaults = {
        "qweather_api_key": "qw-key",
        "wechat_push_token": "push-token",
        "kv_rest_api_url": "",
        "kv_rest_api_token": "",
        "forecast_cities": "",
        "forecast_sources": "qweather:1",
        "forecast_slot": {},
        "cron_secret": "",
        "admin_secret": "",
    }
    defaults.update(kwargs)
    return Settings(_env_file=None, **defaults)


def make_forecast(*pops: str, update_time: str = "2024-05-01T07:35+08:00") -> DailyForecast:
    days = ["2024-05-01", "2024-05-02", "2024-05-03"]
    return DailyForecast.model_validate({
        "code": "200",
        "updateTime": update_time,
        "fxLink": "",
        "daily": [
            {
                "fxDate": days[i],
                "tempMax": "25",
                "tempMin": "18",
                "textDay": "Light rain",
                "iconDay": "305",
                "precip": "1.0",
                "pop": pop,
            }
            for i, pop in enumerate(pops)
        ],
    })


def make_city(city_id: str, code: str | None = None) -> City:
    return City(id=city_id, name=city_id.title(), code=code or f"code-{city_id}")


def fake_weather(forecasts: dict[str, DailyForecast | None]):
    weather = AsyncMock()
    weather.configured = True
    weather.get_forecast = AsyncMock(side_effect=lambda code: forecasts.get(code))
    return weather


def fake_push(success: bool = True, message: str = "ok"):
    push = AsyncMock()
    push.send = AsyncMock(return_value=DeliveryResult(success=success, message=message))
    return push


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def morning_now():
    return datetime(2024, 5, 1, 8, 0, tzinfo=TZ)


@pytest.fixture
def single_source():
    return [DataSource(id="qweather", name="QWeather", weight=1.0, enabled=True)]
