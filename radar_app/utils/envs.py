from __future__ import annotations
import os, json
from dataclasses import asdict, fields
from pydantic.dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from .file_io import atomic_write_text
from .log import log
from .paths import SETTINGS_FILE, STATE_FILE

CacheKey = Tuple[Optional[float], Tuple[Tuple[str, Any], ...]]


_SENSITIVE_FIELDS = {
    "telegram_token",
    "telegram_chat_id",
    "openai_api_key",
    "moralis_api_key",
    "backend_auth_token",
}

_TRUE_STRINGS = {"1", "true", "yes", "y", "on"}
_FALSE_STRINGS = {"0", "false", "no", "n", "off"}

SUPPORTED_PROVIDERS = ("coingecko", "dexscreener")


def _coerce_bool(value: Any) -> bool:
    """Return a strict boolean for configuration style inputs."""

    if isinstance(value, bool):
        return value

    if value is None:
        return False

    if isinstance(value, (int, float)):
        return value != 0

    if isinstance(value, str):
        lowered = value.strip().lower()
        if not lowered:
            return False
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
        return True

    return bool(value)


@dataclass
class Settings:
    # scheduler
    scan_interval_sec: float = 300.0
    autostart: bool = True

    # market data
    provider: str = "coingecko"
    chain_filter: str = ""
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_pages: int = 2
    coingecko_per_page: int = 250
    dexscreener_base_url: str = "https://api.dexscreener.com"
    http_timeout_sec: float = 10.0
    http_max_attempts: int = 3

    # enrichment
    whale_enabled: bool = True
    whale_batch_limit: int = 10
    whale_max_workers: int = 4
    whale_cache_ttl_sec: float = 1800.0
    moralis_api_key: str = ""
    ai_enabled: bool = True
    ai_max_per_cycle: int = 10
    openai_api_key: str = ""
    openai_endpoint: str = "https://api.openai.com/v1/chat/completions"
    openai_model: str = "gpt-4o-mini"

    # alerts
    telegram_enabled: bool = True
    telegram_token: str = ""
    telegram_chat_id: str = ""
    alerts_max_records: int = 500

    # persistence
    state_file: str = ""
    snapshot_retention_hours: float = 48.0

    # operational surface
    backend_auth_token: str = ""

    def telegram_ready(self) -> bool:
        return bool(self.telegram_enabled and self.telegram_token and self.telegram_chat_id)

    def resolved_provider(self) -> str:
        """Provider name after applying the chain filter."""

        if self.chain_filter.strip().lower() == "solana":
            return "dexscreener"
        name = self.provider.strip().lower()
        return name if name in SUPPORTED_PROVIDERS else "coingecko"


_ENV_MAP = {
    "scan_interval_sec": "RADAR_SCAN_INTERVAL_SEC",
    "autostart": "RADAR_AUTOSTART",
    "provider": "RADAR_PROVIDER",
    "chain_filter": "RADAR_CHAIN_FILTER",
    "coingecko_base_url": "RADAR_COINGECKO_URL",
    "coingecko_pages": "RADAR_COINGECKO_PAGES",
    "coingecko_per_page": "RADAR_COINGECKO_PER_PAGE",
    "dexscreener_base_url": "RADAR_DEXSCREENER_URL",
    "http_timeout_sec": "RADAR_HTTP_TIMEOUT_SEC",
    "http_max_attempts": "RADAR_HTTP_MAX_ATTEMPTS",
    "whale_enabled": "RADAR_WHALE_ENABLED",
    "whale_batch_limit": "RADAR_WHALE_BATCH_LIMIT",
    "whale_max_workers": "RADAR_WHALE_MAX_WORKERS",
    "whale_cache_ttl_sec": "RADAR_WHALE_CACHE_TTL_SEC",
    "moralis_api_key": "MORALIS_API_KEY",
    "ai_enabled": "RADAR_AI_ENABLED",
    "ai_max_per_cycle": "RADAR_AI_MAX_PER_CYCLE",
    "openai_api_key": "OPENAI_API_KEY",
    "openai_endpoint": "RADAR_OPENAI_ENDPOINT",
    "openai_model": "RADAR_OPENAI_MODEL",
    "telegram_enabled": "RADAR_TELEGRAM_ENABLED",
    "telegram_token": "TELEGRAM_BOT_TOKEN",
    "telegram_chat_id": "TELEGRAM_CHAT_ID",
    "alerts_max_records": "RADAR_ALERTS_MAX_RECORDS",
    "state_file": "RADAR_STATE_FILE",
    "snapshot_retention_hours": "RADAR_SNAPSHOT_RETENTION_HOURS",
    "backend_auth_token": "BACKEND_AUTH_TOKEN",
}

_BOOL_ENV_KEYS = ("autostart", "whale_enabled", "ai_enabled", "telegram_enabled")
_INT_ENV_KEYS = (
    "coingecko_pages",
    "coingecko_per_page",
    "http_max_attempts",
    "whale_batch_limit",
    "whale_max_workers",
    "ai_max_per_cycle",
    "alerts_max_records",
)
_FLOAT_ENV_KEYS = (
    "scan_interval_sec",
    "http_timeout_sec",
    "whale_cache_ttl_sec",
    "snapshot_retention_hours",
)

_CACHE: Dict[str, Any] = {"settings": None, "key": None}


def _read_env() -> Dict[str, Optional[str]]:
    return {k: os.getenv(v) for k, v in _ENV_MAP.items()}


def _env_signature(env: Dict[str, Any]) -> Tuple[Tuple[str, Any], ...]:
    return tuple(sorted(env.items()))


def _cast_bool(x: Any) -> Optional[bool]:
    if x is None:
        return None
    return _coerce_bool(x)


def _cast_int(x: Any) -> Optional[int]:
    if x is None:
        return None
    try:
        return int(x)
    except (TypeError, ValueError):
        return None


def _cast_float(x: Any) -> Optional[float]:
    if x is None:
        return None
    try:
        return float(x)
    except (TypeError, ValueError):
        return None


def _bulk_cast(target: Dict[str, Any], keys: Iterable[str], caster: Callable[[Any], Any]) -> None:
    for name in keys:
        target[name] = caster(target.get(name))


def _env_overrides(raw_env: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    m = dict(raw_env if raw_env is not None else _read_env())

    _bulk_cast(m, _BOOL_ENV_KEYS, _cast_bool)
    _bulk_cast(m, _INT_ENV_KEYS, _cast_int)
    _bulk_cast(m, _FLOAT_ENV_KEYS, _cast_float)

    interval = m.get("scan_interval_sec")
    if interval is not None and interval <= 0:
        m["scan_interval_sec"] = None
    for name in ("whale_batch_limit", "whale_max_workers", "ai_max_per_cycle"):
        value = m.get(name)
        if value is not None and value < 0:
            m[name] = 0

    return m


def _merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(a)
    out.update({k: v for k, v in b.items() if v is not None})
    return out


def _filter_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
    allowed = {f.name for f in fields(Settings)}
    return {k: v for k, v in payload.items() if k in allowed}


def _load_file() -> Dict[str, Any]:
    try:
        raw = SETTINGS_FILE.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        log("envs.settings.parse_error", path=str(SETTINGS_FILE), err=str(exc))
        return {}
    return payload if isinstance(payload, dict) else {}


def _file_mtime(path: Path) -> Optional[float]:
    try:
        return path.stat().st_mtime
    except FileNotFoundError:
        return None


def _invalidate_cache() -> None:
    _CACHE["settings"] = None
    _CACHE["key"] = None


def get_settings(force_reload: bool = False) -> Settings:
    raw_env = _read_env()
    key: CacheKey = (_file_mtime(SETTINGS_FILE), _env_signature(raw_env))

    cached = _CACHE.get("settings")
    if not force_reload and cached is not None and _CACHE.get("key") == key:
        return cached

    merged = _merge(asdict(Settings()), _filter_fields(_load_file()))
    merged = _merge(merged, _env_overrides(raw_env))
    settings = Settings(**_filter_fields(merged))

    _CACHE["settings"] = settings
    _CACHE["key"] = key
    return settings


def update_settings(**kwargs: Any) -> Settings:
    """Persist non-secret overrides to ``settings.json`` and reload.

    Secret fields are applied to the process environment only, so they are
    never written to disk by the radar.
    """

    payload = _load_file()
    allowed = {f.name for f in fields(Settings)}
    for key, value in kwargs.items():
        if value is None or key not in allowed:
            continue
        if key in _SENSITIVE_FIELDS:
            os.environ[_ENV_MAP[key]] = str(value)
            continue
        payload[key] = value

    atomic_write_text(SETTINGS_FILE, json.dumps(payload, ensure_ascii=False, indent=2))
    _invalidate_cache()
    settings = get_settings(force_reload=True)
    log("envs.settings.updated", fields=sorted(k for k in kwargs if k in allowed))
    return settings


def resolve_state_file(settings: Optional[Settings] = None) -> Path:
    s = settings or get_settings()
    if s.state_file:
        return Path(s.state_file).expanduser()
    return STATE_FILE
