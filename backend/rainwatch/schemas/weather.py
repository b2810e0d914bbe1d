import re
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse_percent(raw) -> int:
    """Leading integer of ``raw`` ("70", "70.5", " 40%"), 0 when there is none."""
    if raw is None:
        return 0
    if isinstance(raw, (int, float)):
        return int(raw)
    m = _LEADING_INT.match(str(raw))
    return int(m.group(1)) if m else 0


def clamp_probability(value: float) -> int:
    return int(max(0, min(100, value)))


class City(BaseModel):
    id: str
    name: str
    code: str  # QWeather location id
    province: str = ""
    latitude: float | None = None
    longitude: float | None = None


class DataSource(BaseModel):
    id: str
    name: str
    weight: float = Field(default=0.0, ge=0.0, le=1.0)
    enabled: bool = True
    description: str = ""


class WeatherSample(BaseModel):
    source: str
    city_id: str
    date: date
    rain_probability: int = Field(ge=0, le=100)
    temp_min: float | None = None
    temp_max: float | None = None
    text: str | None = None
    fetched_at: datetime


class ForecastDay(BaseModel):
    """One entry of the provider's ``daily`` array. Numbers arrive as strings."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    fx_date: str = Field(alias="fxDate")
    temp_max: str = Field(default="", alias="tempMax")
    temp_min: str = Field(default="", alias="tempMin")
    text_day: str = Field(default="", alias="textDay")
    icon_day: str = Field(default="", alias="iconDay")
    precip: str = ""
    pop: str = ""

    @property
    def rain_probability(self) -> int:
        return clamp_probability(parse_percent(self.pop))


class DailyForecast(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    code: str
    update_time: str = Field(default="", alias="updateTime")
    fx_link: str = Field(default="", alias="fxLink")
    daily: list[ForecastDay] = []
