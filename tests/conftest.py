import os
import sys
import tempfile
from pathlib import Path

import pytest

# Paths are resolved at import time, so the data dir must be isolated first.
os.environ.setdefault("RADAR_DATA_DIR", tempfile.mkdtemp(prefix="radar-tests-"))
os.environ.setdefault("RADAR_ENV", "test")
os.environ.setdefault("RADAR_TELEGRAM_ENABLED", "0")

# Ensure the project root is on sys.path for module imports
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from radar_app.utils.radar_models import InstrumentSnapshot  # noqa: E402


def _snapshot(symbol: str = "ABC", **overrides) -> InstrumentSnapshot:
    values = {
        "symbol": symbol,
        "name": symbol.title(),
        "price": 1.0,
        "change_1h": 2.0,
        "change_24h": 4.0,
        "volume_24h": 200_000.0,
        "market_cap": 2_000_000.0,
    }
    values.update(overrides)
    return InstrumentSnapshot(**values)


@pytest.fixture
def make_snapshot():
    return _snapshot
