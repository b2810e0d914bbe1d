from typing import Literal

from pydantic import BaseModel, Field, computed_field

ForecastTarget = Literal["today", "tomorrow", "range"]
CityStatus = Literal["sent", "failed", "below_threshold", "already_sent"]

VALID_TARGETS: tuple[str, ...] = ("today", "tomorrow", "range")
VALID_DAYS: tuple[int, ...] = (1, 2, 3)


class SlotConfig(BaseModel):
    enabled: bool = True
    target: ForecastTarget = "range"
    days: Literal[1, 2, 3] = 3
    # Alert slots only send when the composite probability reaches this value.
    threshold: int | None = None


class SlotOverride(BaseModel):
    enabled: bool | None = None
    target: ForecastTarget | None = None
    days: Literal[1, 2, 3] | None = None


class ConfigOverride(BaseModel):
    """The document stored in the key-value store under the config key."""

    enabled: bool | None = None
    slots: dict[str, SlotOverride] = {}


class EffectiveConfig(BaseModel):
    enabled: bool = True
    slots: dict[str, SlotConfig] = {}


class Schedule(BaseModel):
    """A time-of-day trigger used by the interval-timer mode."""

    id: str
    time: str = Field(pattern=r"^([01]\d|2[0-3]):[0-5]\d$")  # HH:MM local time
    target: Literal["today", "tomorrow"] = "tomorrow"
    enabled: bool = True
    description: str = ""


class DeliveryResult(BaseModel):
    success: bool
    message: str


class CityResult(BaseModel):
    city: str
    city_id: str
    status: CityStatus
    message: str
    probability: int | None = None
    has_data: bool = False

    @computed_field
    @property
    def success(self) -> bool:
        return self.status == "sent"


class DispatchResult(BaseModel):
    ok: bool = True
    slot: str
    date: str | None = None
    target: ForecastTarget | None = None
    days: int | None = None
    results: list[CityResult] = []
    skipped: bool = False
    reason: str | None = None
    error: str | None = None
    dedupe: bool = False


class NotificationRecord(BaseModel):
    id: str
    slot_id: str
    city_id: str
    timestamp: int  # epoch milliseconds
    sent: bool
    message: str | None = None
