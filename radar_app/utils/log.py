from __future__ import annotations

import json
import threading
import time
import traceback
from pathlib import Path
from types import TracebackType
from typing import Any, Callable, Iterable, Iterator, Mapping

from .file_io import atomic_write_text, tail_lines
from .paths import LOG_DIR

LOG_FILE = LOG_DIR / "app.log"
ERROR_LOG_FILE = LOG_DIR / "error.log"

# Retention limits; tests shrink them through monkeypatching.
MAX_LOG_BYTES = 5_000_000
RETAIN_LOG_LINES = 5_000
MAX_ERROR_LOG_BYTES = 2_000_000
ERROR_RETAIN_LOG_LINES = 2_000

_LOCK = threading.RLock()
_LISTENERS: list[Callable[[dict[str, Any]], None]] = []

_SEVERITY_KEYWORDS = {
    "critical": "critical",
    "fatal": "critical",
    "error": "error",
    "fail": "error",
    "exception": "error",
    "warn": "warning",
    "warning": "warning",
}

_STRUCTURED_ALIASES: dict[str, tuple[str, ...]] = {
    "symbol": ("symbol",),
    "strategy": ("strategy", "strategy_id"),
    "score": ("score",),
    "cycle": ("cycle", "cycle_id"),
}

_STRUCTURED_ALIAS_MAP: dict[str, str] = {
    alias: canonical
    for canonical, aliases in _STRUCTURED_ALIASES.items()
    for alias in aliases
}

_SENSITIVE_EXACT_KEYS = {
    "telegram_token",
    "telegram_chat_id",
    "openai_api_key",
    "moralis_api_key",
    "backend_auth_token",
}

_SENSITIVE_KEYWORDS = ("secret", "token", "apikey", "api_key", "api-key", "password", "chat_id")

_ERROR_SEVERITIES = {"error", "critical"}


def _normalise_limit(value: int | str | None, fallback: int) -> int:
    try:
        limit = int(value) if value is not None else fallback
    except (TypeError, ValueError):
        limit = fallback
    return max(limit, 0)


def _iter_json_lines(lines: Iterable[str]) -> Iterator[tuple[str, Any]]:
    """Yield ``(raw, parsed)`` for every line that holds valid JSON."""

    for raw in lines:
        text = raw.strip()
        if not text:
            continue
        try:
            yield raw, json.loads(text)
        except json.JSONDecodeError:
            continue


def _is_sensitive_key(key: str) -> bool:
    lowered = key.strip().lower()
    if lowered in _SENSITIVE_EXACT_KEYS:
        return True
    return any(token in lowered for token in _SENSITIVE_KEYWORDS)


def _sanitize(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            str(key): "***" if _is_sensitive_key(str(key)) else _sanitize(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple, set)):
        return [_sanitize(item) for item in value]
    return value


def _derive_severity(event: str, explicit: str | None) -> str:
    if explicit:
        return explicit.lower()

    tokens = [part.lower() for part in event.replace("-", ".").split(".") if part]
    for token in tokens:
        mapped = _SEVERITY_KEYWORDS.get(token)
        if mapped:
            return mapped
    # Partial matches such as "fetch_failed" do not split on dots.
    lowered = event.lower()
    for keyword, mapped in _SEVERITY_KEYWORDS.items():
        if keyword in lowered:
            return mapped
    return "info"


def _normalise_exception(
    exc: BaseException | tuple[type[BaseException], BaseException, TracebackType | None] | None,
) -> dict[str, Any] | None:
    if exc is None:
        return None

    if isinstance(exc, tuple):
        exc_type, exc_value, tb = exc
    else:
        exc_type, exc_value, tb = type(exc), exc, exc.__traceback__

    if exc_type is None or exc_value is None:
        return None

    return {
        "type": f"{exc_type.__module__}.{exc_type.__name__}",
        "message": str(exc_value),
        "traceback": "".join(traceback.format_exception(exc_type, exc_value, tb)),
    }


def _split_structured_payload(payload: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    context: dict[str, Any] = {}
    remaining: dict[str, Any] = {}
    for key, value in payload.items():
        canonical = _STRUCTURED_ALIAS_MAP.get(str(key))
        if canonical is not None:
            context[canonical] = value
        else:
            remaining[key] = value
    return context, remaining


def _prune_log_file(path: Path, *, max_bytes: int, retain_lines: int) -> None:
    """Trim ``path`` to its last ``retain_lines`` valid records past ``max_bytes``."""

    if max_bytes <= 0 or retain_lines <= 0:
        return
    try:
        size = path.stat().st_size
    except OSError:
        return
    if size <= max_bytes:
        return

    tail = tail_lines(path, retain_lines, drop_blank=True)
    cleaned = [raw for raw, _ in _iter_json_lines(tail)]
    atomic_write_text(path, "\n".join(cleaned) + "\n" if cleaned else "")


def _append_record(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(text + "\n")


def add_listener(callback: Callable[[dict[str, Any]], None]) -> None:
    """Register ``callback`` to receive every record after it is written."""

    with _LOCK:
        if callback not in _LISTENERS:
            _LISTENERS.append(callback)


def remove_listener(callback: Callable[[dict[str, Any]], None]) -> None:
    with _LOCK:
        if callback in _LISTENERS:
            _LISTENERS.remove(callback)


def log(
    event: str,
    *,
    severity: str | None = None,
    exc: BaseException | tuple[type[BaseException], BaseException, TracebackType | None] | None = None,
    **payload: Any,
) -> None:
    """Append a JSON record with ``event`` and ``payload`` to the log file."""

    context, remaining_payload = _split_structured_payload(payload)

    record: dict[str, Any] = {
        "ts": int(time.time() * 1000),
        "event": event,
        "severity": _derive_severity(event, severity),
        "thread": threading.current_thread().name,
        "context": _sanitize(context),
        "payload": _sanitize(remaining_payload),
    }

    exception_payload = _normalise_exception(exc)
    if exception_payload is not None:
        record["exception"] = exception_payload

    text = json.dumps(record, ensure_ascii=False, default=str)

    with _LOCK:
        _append_record(LOG_FILE, text)
        _prune_log_file(LOG_FILE, max_bytes=MAX_LOG_BYTES, retain_lines=RETAIN_LOG_LINES)

        if record["severity"] in _ERROR_SEVERITIES:
            _append_record(ERROR_LOG_FILE, text)
            _prune_log_file(
                ERROR_LOG_FILE,
                max_bytes=MAX_ERROR_LOG_BYTES,
                retain_lines=ERROR_RETAIN_LOG_LINES,
            )
        listeners = list(_LISTENERS)

    for listener in listeners:
        try:
            listener(record)
        except Exception:  # pragma: no cover - listener bugs must not break logging
            continue


def clean_logs(*, max_bytes: int | None = None, retain_lines: int | None = None) -> None:
    """Manually prune both log files using optional retention overrides."""

    maximum = max_bytes if max_bytes is not None else MAX_LOG_BYTES
    keep = retain_lines if retain_lines is not None else RETAIN_LOG_LINES

    with _LOCK:
        _prune_log_file(LOG_FILE, max_bytes=maximum, retain_lines=keep)
        _prune_log_file(
            ERROR_LOG_FILE,
            max_bytes=min(maximum, MAX_ERROR_LOG_BYTES),
            retain_lines=max(keep // 2, 1),
        )


def read_tail(n: int | str = 1000, *, parse: bool = False) -> list[Any]:
    """Return the tail of the log file, optionally parsed as JSON objects."""

    limit = _normalise_limit(n, 1000)
    if limit <= 0:
        return []

    lines = tail_lines(LOG_FILE, limit)
    if not parse:
        return lines
    return [parsed for _, parsed in _iter_json_lines(lines)]
