from dataclasses import dataclass
from datetime import datetime

from rainwatch.schemas.dispatch import SlotConfig
from rainwatch.schemas.weather import City, ForecastDay
from rainwatch.services.rain_aggregator import alert_level, suggestion

DAY_LABELS = ("Today", "Tomorrow", "Day after")
TARGET_LABELS = {"today": "Today", "tomorrow": "Tomorrow", "range": "Upcoming"}


@dataclass(frozen=True)
class ReportDay:
    label: str
    day: ForecastDay
    probability: int


def select_days(daily: list[ForecastDay], slot: SlotConfig) -> list[tuple[str, ForecastDay]]:
    """Pick the days a slot reports. Empty when the required day is missing."""
    if slot.target == "today":
        return [(DAY_LABELS[0], daily[0])] if daily else []
    if slot.target == "tomorrow":
        return [(DAY_LABELS[1], daily[1])] if len(daily) > 1 else []
    if len(daily) < slot.days:
        return []
    return [(DAY_LABELS[i], day) for i, day in enumerate(daily[: slot.days])]


def forecast_line(report: ReportDay) -> str:
    return (
        f"{report.label}: {report.day.text_day}, "
        f"{report.day.temp_min}°~{report.day.temp_max}°, rain chance {report.probability}%"
    )


def forecast_title(city: City) -> str:
    return f"[Daily forecast] {city.name}"


def forecast_body(city: City, days: list[ReportDay], update_time: str, sent_at: datetime) -> str:
    lines = "\n".join(forecast_line(d) for d in days)
    return (
        "Weather forecast\n\n"
        f"📍 City: {city.name}\n"
        f"{lines}\n\n"
        "---\n"
        f"Data updated: {update_time}\n"
        f"Sent at: {sent_at.strftime('%Y-%m-%d %H:%M:%S')}\n"
    )


def alert_title(city: City, probability: int) -> str:
    return f"[Rain alert] {city.name} - {alert_level(probability)}"


def alert_body(city: City, report: ReportDay, threshold: int, sent_at: datetime) -> str:
    level = alert_level(report.probability)
    return (
        "Alert details\n\n"
        f"📍 City: {city.name}\n"
        f"🌧️ Rain chance ({report.label.lower()}): {report.probability}%\n"
        f"⚠️ Alert threshold: {threshold}%\n"
        f"🌤️ Conditions: {report.day.text_day or 'unknown'}\n"
        f"Risk level: {level}\n\n"
        f"Advice: {suggestion(report.probability)}\n\n"
        "---\n"
        f"Sent at: {sent_at.strftime('%Y-%m-%d %H:%M:%S')}\n"
    )


def connectivity_message(sent_at: datetime) -> tuple[str, str]:
    return (
        "[Rain alert] Test notification",
        "This is a test message.\n\n"
        "If you received it, push delivery is configured correctly.\n\n"
        "---\n"
        f"Sent at: {sent_at.strftime('%Y-%m-%d %H:%M:%S')}\n",
    )
