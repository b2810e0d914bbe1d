"""Dispatch pass for one slot: resolve config, check schedule/dedupe, then per
city fetch -> aggregate -> format -> push, with the dedupe marker claimed before
any push and settled once the cities are done."""

import asyncio
import logging
from datetime import date, datetime
from typing import Callable, Protocol
from zoneinfo import ZoneInfo

from rainwatch.cities.definitions import parse_cities, parse_sources
from rainwatch.config import Settings
from rainwatch.schemas.dispatch import (
    CityResult,
    DeliveryResult,
    DispatchResult,
    NotificationRecord,
    Schedule,
    SlotConfig,
)
from rainwatch.schemas.weather import City, DataSource, WeatherSample
from rainwatch.services import messages
from rainwatch.services.config_resolver import ConfigResolver
from rainwatch.services.history import NotificationHistory
from rainwatch.services.kv_client import KeyValueStore, KVClient
from rainwatch.services.local_store import LocalStore
from rainwatch.services.openmeteo_client import OpenMeteoClient
from rainwatch.services.qweather_client import QWeatherClient, to_samples
from rainwatch.services.rain_aggregator import aggregate_by_date
from rainwatch.services.schedule_matcher import (
    REASON_ALREADY_SENT,
    DedupePolicy,
    MarkerScope,
    date_key,
    evaluate,
    make_policy,
)
from rainwatch.services.serverchan_client import ServerChanClient

logger = logging.getLogger(__name__)

DEFAULT_SLOT = "default"


class SampleSource(Protocol):
    source_id: str

    def covers(self, city: City) -> bool: ...

    async def fetch_samples(self, city: City, days: int = 3) -> list[WeatherSample]: ...


def _epoch_ms(now: datetime) -> int:
    return int(now.timestamp() * 1000)


def _fx_date(raw: str) -> date | None:
    try:
        return date.fromisoformat(raw)
    except ValueError:
        return None


class DispatchEngine:
    def __init__(
        self,
        settings: Settings,
        resolver: ConfigResolver,
        store: KeyValueStore,
        policy: DedupePolicy,
        weather: QWeatherClient,
        push: ServerChanClient,
        cities: list[City],
        sources: list[DataSource],
        samplers: list[SampleSource] | None = None,
        history: NotificationHistory | None = None,
        scope: MarkerScope = MarkerScope.SLOT,
        clock: Callable[[], datetime] | None = None,
    ):
        self.settings = settings
        self.resolver = resolver
        self.store = store
        self.policy = policy
        self.weather = weather
        self.push = push
        self.cities = cities
        self.sources = sources
        self.samplers = samplers or []
        self.history = history
        self.scope = scope
        self._clock = clock or (lambda: datetime.now(ZoneInfo(settings.timezone)))

    def now(self) -> datetime:
        return self._clock()

    def _configuration_error(self) -> str | None:
        if not self.settings.wechat_push_token:
            return "missing_push_token"
        if not self.cities:
            return "no_cities"
        if not self.weather.configured:
            return "missing_weather_key"
        return None

    async def dispatch_slot(
        self,
        slot_id: str = DEFAULT_SLOT,
        schedule: Schedule | None = None,
        threshold: int | None = None,
    ) -> DispatchResult:
        """Run one dispatch pass. Only configuration problems make ``ok`` false."""
        now = self.now()
        slot_id = slot_id.lower()

        error = self._configuration_error()
        if error:
            logger.warning("Dispatch for slot %s refused: %s", slot_id, error)
            return DispatchResult(ok=False, slot=slot_id, error=error)

        base = None
        if schedule is not None:
            base = SlotConfig(enabled=schedule.enabled, target=schedule.target, days=1, threshold=threshold)
        slot = await self.resolver.resolve(slot_id, base)

        def skipped(reason: str) -> DispatchResult:
            logger.info("Slot %s skipped: %s", slot_id, reason)
            return DispatchResult(
                slot=slot_id,
                date=date_key(now),
                target=slot.target,
                days=slot.days,
                skipped=True,
                reason=reason,
                dedupe=self.store.configured,
            )

        outcome = await evaluate(slot_id, slot, now, self.store, self.policy, schedule, self.scope)
        if not outcome.proceed:
            return skipped(outcome.reason)

        # Claimed before any push so overlapping passes cannot both send.
        claimed = self.scope == MarkerScope.SLOT and self.store.configured
        if claimed and not await self.policy.claim(self.store, slot_id, now):
            return skipped(REASON_ALREADY_SENT)

        logger.info("Dispatching slot %s (%s, %d days) to %d cities", slot_id, slot.target, slot.days, len(self.cities))
        results: list[CityResult] = []
        try:
            outcomes = await asyncio.gather(*(self._dispatch_city(city, slot_id, slot, now) for city in self.cities))
            results = [result for result, _ in outcomes]
        finally:
            if claimed:
                # a partial success still marks the whole slot
                await self.policy.settle(self.store, slot_id, now, any(r.success for r in results))

        if self.history is not None:
            records = [
                NotificationRecord(
                    id=f"{slot_id}-{result.city_id}-{_epoch_ms(now)}",
                    slot_id=slot_id,
                    city_id=result.city_id,
                    timestamp=_epoch_ms(now),
                    sent=result.success,
                    message=result.message,
                )
                for result, attempted in outcomes
                if attempted
            ]
            await self.history.append(records)

        sent = sum(1 for r in results if r.success)
        logger.info("Slot %s done: %d/%d cities sent", slot_id, sent, len(results))
        return DispatchResult(
            slot=slot_id,
            date=date_key(now),
            target=slot.target,
            days=slot.days,
            results=results,
            dedupe=self.store.configured,
        )

    def _sources_for(self, city: City) -> list[DataSource]:
        """Enabled sources minus those whose sampler cannot cover the city (e.g. no coordinates)."""
        uncovered = {s.source_id for s in self.samplers if not s.covers(city)}
        return [s for s in self.sources if s.id not in uncovered]

    async def _extra_samples(self, city: City, sources: list[DataSource]) -> list[WeatherSample]:
        enabled = {s.id for s in sources if s.enabled}
        samplers = [s for s in self.samplers if s.source_id in enabled]
        if not samplers:
            return []
        batches = await asyncio.gather(*(s.fetch_samples(city) for s in samplers), return_exceptions=True)
        samples = []
        for sampler, batch in zip(samplers, batches):
            if isinstance(batch, BaseException):
                logger.warning("%s samples failed for %s: %s", sampler.source_id, city.id, batch)
                continue
            samples.extend(batch)
        return samples

    async def _dispatch_city(
        self, city: City, slot_id: str, slot: SlotConfig, now: datetime
    ) -> tuple[CityResult, bool]:
        """Returns the city's result and whether a push was attempted."""

        def result(status, message, probability=None, has_data=False) -> CityResult:
            return CityResult(
                city=city.name,
                city_id=city.id,
                status=status,
                message=message,
                probability=probability,
                has_data=has_data,
            )

        per_city = self.scope == MarkerScope.CITY and self.store.configured
        claimed = sent = False
        try:
            if per_city and await self.policy.is_satisfied(self.store, slot_id, now, city.id):
                return result("already_sent", REASON_ALREADY_SENT), False

            sources = self._sources_for(city)
            forecast, extra = await asyncio.gather(
                self.weather.get_forecast(city.code),
                self._extra_samples(city, sources),
            )
            if forecast is None:
                return result("failed", "Failed to fetch weather"), False

            picked = messages.select_days(forecast.daily, slot)
            if not picked:
                label = messages.TARGET_LABELS[slot.target].lower()
                return result("failed", f"Missing {label} weather data"), False

            composites = aggregate_by_date(to_samples(city, forecast) + extra, sources)
            report = []
            for label, day in picked:
                agg = composites.get(_fx_date(day.fx_date))
                has_data = bool(agg and agg.has_data)
                probability = agg.probability if has_data else day.rain_probability
                report.append((messages.ReportDay(label=label, day=day, probability=probability), has_data))

            first, first_has_data = report[0]
            if slot.threshold is not None:
                if not first_has_data or first.probability < slot.threshold:
                    return result(
                        "below_threshold",
                        f"Rain chance {first.probability}% below threshold {slot.threshold}%",
                        first.probability,
                        first_has_data,
                    ), False
                title = messages.alert_title(city, first.probability)
                body = messages.alert_body(city, first, slot.threshold, now)
            else:
                title = messages.forecast_title(city)
                body = messages.forecast_body(city, [r for r, _ in report], forecast.update_time, now)

            if per_city:
                if not await self.policy.claim(self.store, slot_id, now, city.id):
                    return result("already_sent", REASON_ALREADY_SENT), False
                claimed = True

            delivery = await self.push.send(self.settings.wechat_push_token, title, body)
            sent = delivery.success
            status = "sent" if sent else "failed"
            return result(status, delivery.message, first.probability, first_has_data), True
        except Exception as e:
            logger.error("Dispatch failed for city %s in slot %s: %s", city.id, slot_id, e)
            return result("failed", f"Unexpected error: {e}"), False
        finally:
            if claimed:
                await self.policy.settle(self.store, slot_id, now, sent, city.id)

    async def send_test(self) -> DeliveryResult:
        title, body = messages.connectivity_message(self.now())
        return await self.push.send(self.settings.wechat_push_token, title, body)


def build_engine(settings: Settings, mode: str = "cron", clock: Callable[[], datetime] | None = None) -> DispatchEngine:
    """Wire an engine from settings.

    ``cron`` keeps markers and history in the remote KV store. ``timer`` uses
    the remote store when configured and the local SQLite store otherwise.
    """
    remote = KVClient(settings.kv_rest_api_url, settings.kv_rest_api_token)
    if mode == "timer":
        store = remote if settings.has_kv else LocalStore()
        policy_name = settings.timer_dedupe_policy
    else:
        store = remote
        policy_name = settings.cron_dedupe_policy

    weather = QWeatherClient(
        settings.qweather_api_key,
        host=settings.qweather_api_host,
        version=settings.qweather_api_version,
    )
    return DispatchEngine(
        settings=settings,
        resolver=ConfigResolver(settings, remote),
        store=store,
        policy=make_policy(policy_name, settings.dedupe_window_hours),
        weather=weather,
        push=ServerChanClient(),
        cities=parse_cities(settings.forecast_cities),
        sources=parse_sources(settings.forecast_sources),
        samplers=[OpenMeteoClient()],
        history=NotificationHistory(store, limit=settings.history_limit),
        scope=MarkerScope(settings.dedupe_marker_scope),
        clock=clock,
    )
