from rainwatch.config import Settings, settings
from rainwatch.services.config_resolver import ConfigResolver
from rainwatch.services.dispatch import DispatchEngine, build_engine
from rainwatch.services.history import NotificationHistory
from rainwatch.services.kv_client import KVClient


def get_settings() -> Settings:
    return settings


def get_engine() -> DispatchEngine:
    return build_engine(settings, mode="cron")


def get_resolver() -> ConfigResolver:
    return ConfigResolver(settings, KVClient(settings.kv_rest_api_url, settings.kv_rest_api_token))


def get_history() -> NotificationHistory:
    mode = "timer" if settings.timer_enabled else "cron"
    return build_engine(settings, mode=mode).history
