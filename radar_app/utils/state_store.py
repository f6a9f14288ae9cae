"""Versioned JSON persistence for everything the radar must survive a restart with."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Mapping, Optional

from .file_io import atomic_write_text, read_text_or_none
from .log import log

STATE_VERSION = 1


class RadarStateStore:
    """Load and save the radar state blob at ``path``.

    The blob holds tracks, volume history, the snapshot log, the graduated
    set and the active chain filter. A missing, unreadable or foreign-version
    file loads as an empty state and is logged; it never stops the radar.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> dict[str, Any]:
        raw = read_text_or_none(self.path)
        if raw is None or not raw.strip():
            return {}
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            log("radar.state.corrupt", severity="error", path=str(self.path), err=str(exc))
            return {}
        if not isinstance(payload, dict):
            log("radar.state.corrupt", severity="error", path=str(self.path), err="not an object")
            return {}
        version = payload.get("version")
        if version != STATE_VERSION:
            log("radar.state.version_mismatch", severity="warning", found=version, expected=STATE_VERSION)
            return {}
        return payload

    def save(self, state: Mapping[str, Any], *, now: Optional[float] = None) -> bool:
        blob = dict(state)
        blob["version"] = STATE_VERSION
        blob["saved_at"] = time.time() if now is None else now
        try:
            atomic_write_text(self.path, json.dumps(blob, ensure_ascii=False, default=str))
        except (OSError, TypeError, ValueError) as exc:
            log("radar.state.save_error", severity="error", path=str(self.path), err=str(exc))
            return False
        return True

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        log("radar.state.cleared", path=str(self.path))
