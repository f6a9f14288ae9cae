from __future__ import annotations
from pathlib import Path
import os
import re


APP_ROOT = Path(__file__).resolve().parent.parent
REPO_ROOT = APP_ROOT.parent
_BASE_DATA_DIR = APP_ROOT / "_data"


def _slugify_profile(value: str | None) -> str | None:
    if not value:
        return None
    text = value.strip().lower()
    if text in {"", "default", "prod", "production"}:
        return None
    text = re.sub(r"[^a-z0-9_.-]", "-", text)
    return text or None


def _resolve_data_dir() -> tuple[Path, str | None]:
    override = os.environ.get("RADAR_DATA_DIR")
    profile = _slugify_profile(os.environ.get("RADAR_ENV"))
    if override:
        return Path(override).expanduser(), profile
    if profile:
        return _BASE_DATA_DIR / "profiles" / profile, profile
    return _BASE_DATA_DIR, None


DATA_DIR, _DATA_PROFILE = _resolve_data_dir()
LOG_DIR = DATA_DIR / "logs"
CACHE_DIR = DATA_DIR / "cache"
STATE_DIR = DATA_DIR / "state"

if os.environ.get("RADAR_DATA_DIR"):
    RUNTIME_DIR = DATA_DIR / "runtime"
elif _DATA_PROFILE:
    RUNTIME_DIR = REPO_ROOT / f".runtime-{_DATA_PROFILE}"
else:
    RUNTIME_DIR = REPO_ROOT / ".runtime"

for d in (DATA_DIR, LOG_DIR, CACHE_DIR, STATE_DIR, RUNTIME_DIR):
    d.mkdir(parents=True, exist_ok=True)

SETTINGS_FILE = RUNTIME_DIR / "settings.json"
STATE_FILE = STATE_DIR / "radar_state.json"
ALERTS_FILE = STATE_DIR / "alerts.jsonl"
