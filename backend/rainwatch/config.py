from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class SlotEnvSettings(BaseModel):
    """Per-slot process settings, e.g. FORECAST_SLOT__MORNING__TARGET=today.

    Values are kept raw; the config resolver discards anything unrecognized.
    """

    enabled: str | None = None
    target: str | None = None
    days: str | None = None


class Settings(BaseSettings):
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
        "populate_by_name": True,
        "extra": "ignore",
    }

    # Database (local store for interval-timer mode)
    database_url: str = Field(default="sqlite:///./rainwatch.db")

    # QWeather
    qweather_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("qweather_api_key", "vite_qweather_api_key"),
    )
    qweather_api_host: str = Field(default="devapi.qweather.com")
    qweather_api_version: str = Field(default="v7")

    # ServerChan push token
    wechat_push_token: str = Field(
        default="",
        validation_alias=AliasChoices("wechat_push_token", "serverchan_token", "vite_wechat_push_token"),
    )

    # Remote key-value store (Upstash-style REST)
    kv_rest_api_url: str = Field(default="")
    kv_rest_api_token: str = Field(default="")

    # Secrets
    cron_secret: str = Field(default="")  # empty = cron endpoint is open
    admin_secret: str = Field(default="")  # empty = config writes are refused

    # Forecast slots
    forecast_days: int = Field(default=3)
    forecast_slot_names: str = Field(default="morning,evening,night")
    forecast_slot: dict[str, SlotEnvSettings] = Field(default_factory=dict)

    # Cities: JSON array of {name, code} or "name:code,name:code"
    forecast_cities: str = Field(default="")
    # Sources: "id:weight,id:weight"; sources not listed are disabled
    forecast_sources: str = Field(default="qweather:0.6,openmeteo:0.4")

    # Local time used for date keys, due checks and message footers
    timezone: str = Field(default="Asia/Shanghai")

    # Dedupe
    cron_dedupe_policy: str = Field(default="day")  # day | rolling
    timer_dedupe_policy: str = Field(default="rolling")
    dedupe_marker_scope: str = Field(default="slot")  # slot | city
    dedupe_window_hours: float = Field(default=12.0)

    # Interval-timer mode
    timer_enabled: bool = Field(default=False)
    timer_check_interval_seconds: int = Field(default=60)
    alert_enabled: bool = Field(default=True)
    alert_threshold: int = Field(default=50)
    notification_schedules: str = Field(default="")  # JSON list; empty = defaults

    history_limit: int = Field(default=100)

    log_level: str = Field(default="INFO")

    # CORS
    cors_origins: str = Field(default="http://localhost:5173,http://localhost:3000")

    @field_validator("forecast_days", mode="before")
    @classmethod
    def _clamp_days(cls, value):
        try:
            days = int(value)
        except (TypeError, ValueError):
            return 3
        return days if days in (1, 2, 3) else 3

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]

    @property
    def slot_name_list(self) -> list[str]:
        return [s.strip().lower() for s in self.forecast_slot_names.split(",") if s.strip()]

    @property
    def has_kv(self) -> bool:
        return bool(self.kv_rest_api_url and self.kv_rest_api_token)


settings = Settings()
