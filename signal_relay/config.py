import math
import os
from pathlib import Path
from typing import Mapping, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from signal_relay import __version__

DEFAULT_SYMBOLS = ["6758", "7203", "9984"]
MAX_USER_REQUESTS_PER_HOUR = 5


class Settings(BaseModel):
    service_name: str = "SignalRelay"
    version: str = __version__

    # Quotas
    max_daily_model_calls: int = 20
    max_daily_messages: int = 50
    cache_freshness_hours: float = 4
    max_user_requests_per_hour: int = MAX_USER_REQUESTS_PER_HOUR

    # Market data
    symbols: list[str] = Field(default_factory=lambda: list(DEFAULT_SYMBOLS))
    quote_provider: str = "chart"
    quote_suffix: str = ".T"
    quote_base_url: str = "https://query1.finance.yahoo.com/v8/finance/chart"
    request_timeout_sec: float = 10

    # Language model
    provider_mode: str = "MOCK"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"

    # Chat channel
    line_channel_secret: Optional[str] = None
    line_channel_access_token: Optional[str] = None
    line_push_to: Optional[str] = None

    # Store
    store_dir: str = "data/store"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    # Scheduled trigger window (local time, Monday=0)
    cron_weekdays: list[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])
    cron_start_hour: int = 9
    cron_end_hour: int = 15

    log_level: str = "INFO"
    config_loaded: bool = False


_INT_ENV = {
    "MAX_DAILY_MODEL_CALLS": "max_daily_model_calls",
    "MAX_DAILY_MESSAGES": "max_daily_messages",
    "CRON_START_HOUR": "cron_start_hour",
    "CRON_END_HOUR": "cron_end_hour",
}

_FLOAT_ENV = {
    "CACHE_FRESHNESS_HOURS": "cache_freshness_hours",
    "REQUEST_TIMEOUT_SEC": "request_timeout_sec",
}

_STR_ENV = {
    "QUOTE_PROVIDER": "quote_provider",
    "QUOTE_SUFFIX": "quote_suffix",
    "QUOTE_BASE_URL": "quote_base_url",
    "SIGNAL_PROVIDER_MODE": "provider_mode",
    "GEMINI_API_KEY": "gemini_api_key",
    "GEMINI_MODEL": "gemini_model",
    "LINE_CHANNEL_SECRET": "line_channel_secret",
    "LINE_CHANNEL_ACCESS_TOKEN": "line_channel_access_token",
    "LINE_PUSH_TO": "line_push_to",
    "STORE_DIR": "store_dir",
    "SUPABASE_URL": "supabase_url",
    "SUPABASE_KEY": "supabase_key",
    "LOG_LEVEL": "log_level",
}

# Keys a YAML file may override; the per-user ceiling stays fixed.
_YAML_KEYS = set(Settings.model_fields) - {"max_user_requests_per_hour", "config_loaded"}


def _positive_int(raw: Optional[str]) -> Optional[int]:
    """Parse an env integer; invalid or non-positive values mean 'use the default'."""
    try:
        value = int((raw or "").strip())
    except ValueError:
        return None
    return value if value > 0 else None


def _positive_float(raw: Optional[str]) -> Optional[float]:
    try:
        value = float((raw or "").strip())
    except ValueError:
        return None
    return value if math.isfinite(value) and value > 0 else None


def _split_csv(raw: str) -> list[str]:
    return [s.strip().upper() for s in raw.split(",") if s.strip()]


def _load_yaml(path: Path) -> Optional[dict]:
    if not path.exists():
        return None
    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError):
        return None
    return loaded if isinstance(loaded, dict) else None


def load_settings(env: Optional[Mapping[str, str]] = None, config_path: Optional[str] = None) -> Settings:
    """
    Defaults -> YAML file -> environment.
    A missing or broken YAML file is ignored.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    values: dict = {}

    path = Path(config_path or env.get("SIGNAL_RELAY_CONFIG", "config/base.yaml"))
    loaded = _load_yaml(path)
    if loaded is not None:
        values.update({k: v for k, v in loaded.items() if k in _YAML_KEYS})
        values["config_loaded"] = True

    for env_key, field in _INT_ENV.items():
        parsed = _positive_int(env.get(env_key))
        if parsed is not None:
            values[field] = parsed

    for env_key, field in _FLOAT_ENV.items():
        parsed = _positive_float(env.get(env_key))
        if parsed is not None:
            values[field] = parsed

    for env_key, field in _STR_ENV.items():
        raw = (env.get(env_key) or "").strip()
        if raw:
            values[field] = raw

    symbols_raw = (env.get("SYMBOLS") or "").strip()
    if symbols_raw:
        values["symbols"] = _split_csv(symbols_raw)

    settings = Settings(**values)
    settings.provider_mode = settings.provider_mode.upper()
    return settings
