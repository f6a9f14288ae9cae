from __future__ import annotations

import json
import time
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Dict

from .file_io import atomic_write_text, read_text_or_none


class TTLKV:
    """Thread-safe JSON-file cache whose entries expire after a TTL.

    The whale detector keeps one entry per contract address here so repeated
    cycles within the TTL do not hit the on-chain APIs again. The file is
    reloaded when another process rewrites it.
    """

    def __init__(self, path: Path, ttl_sec: float | None = None, *, clock: Callable[[], float] = time.time):
        self.path = Path(path)
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._lock = RLock()
        self._data: Dict[str, Dict[str, Any]] = {}
        self._mtime: float | None = None
        self._reload()

    # --- internal helpers -------------------------------------------------
    def _stat_mtime(self) -> float | None:
        try:
            return self.path.stat().st_mtime
        except FileNotFoundError:
            return None

    def _reload(self) -> None:
        raw = read_text_or_none(self.path)
        data: Dict[str, Dict[str, Any]] = {}
        if raw and raw.strip():
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError:
                parsed = {}
            if isinstance(parsed, dict):
                data = {k: v for k, v in parsed.items() if isinstance(v, dict)}
        self._data = data
        self._mtime = self._stat_mtime()

    def _refresh(self) -> None:
        if self._stat_mtime() != self._mtime:
            self._reload()

    def _flush(self) -> None:
        atomic_write_text(self.path, json.dumps(self._data, ensure_ascii=False, indent=2, default=str))
        self._mtime = self._stat_mtime()

    def _expired(self, record: Dict[str, Any], ttl_sec: float | None) -> bool:
        if ttl_sec is None:
            return False
        return self._clock() - float(record.get("ts", 0.0)) > ttl_sec

    # --- public API -------------------------------------------------------
    def get(self, key: str, ttl_sec: float | None = None, default: Any = None) -> Any:
        ttl = self.ttl_sec if ttl_sec is None else ttl_sec
        with self._lock:
            self._refresh()
            record = self._data.get(key)
            if not record:
                return default
            if self._expired(record, ttl):
                del self._data[key]
                self._flush()
                return default
            return record.get("val", default)

    def set(self, key: str, val: Any) -> None:
        with self._lock:
            self._refresh()
            self._data[key] = {"ts": self._clock(), "val": val}
            self._flush()

    def prune(self) -> int:
        """Drop every expired entry and return how many were removed."""

        if self.ttl_sec is None:
            return 0
        with self._lock:
            self._refresh()
            stale = [key for key, record in self._data.items() if self._expired(record, self.ttl_sec)]
            for key in stale:
                del self._data[key]
            if stale:
                self._flush()
            return len(stale)

    def __len__(self) -> int:
        with self._lock:
            self._refresh()
            return len(self._data)

    def clear(self) -> None:
        with self._lock:
            self._data = {}
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
            self._mtime = None
