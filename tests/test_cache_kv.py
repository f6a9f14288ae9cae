import json
from pathlib import Path

from radar_app.utils.cache_kv import TTLKV


class _Clock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_ttlkv_persists_and_expires(tmp_path: Path):
    clock = _Clock(1000.0)
    kv = TTLKV(tmp_path / "whales.json", clock=clock)
    kv.set("0xabc", {"score": 72})

    clock.now += 5
    assert kv.get("0xabc", ttl_sec=10) == {"score": 72}

    clock.now += 6
    assert kv.get("0xabc", ttl_sec=10) is None
    assert kv.get("0xabc") is None


def test_ttlkv_default_ttl_and_prune(tmp_path: Path):
    clock = _Clock(5000.0)
    cache_file = tmp_path / "whales.json"
    kv = TTLKV(cache_file, ttl_sec=60, clock=clock)
    kv.set("old", {"score": 1})
    clock.now += 50
    kv.set("fresh", {"score": 2})

    clock.now += 20
    assert kv.prune() == 1
    assert len(kv) == 1

    saved = json.loads(cache_file.read_text(encoding="utf-8"))
    assert "old" not in saved
    assert saved["fresh"]["val"] == {"score": 2}


def test_ttlkv_reloads_external_writes(tmp_path: Path):
    cache_file = tmp_path / "whales.json"
    clock = _Clock(10.0)
    writer = TTLKV(cache_file, clock=clock)
    reader = TTLKV(cache_file, clock=clock)

    writer.set("0xdef", {"score": 40})

    assert reader.get("0xdef") == {"score": 40}


def test_ttlkv_ignores_corrupt_file_and_clears(tmp_path: Path):
    cache_file = tmp_path / "whales.json"
    cache_file.write_text("{not json", encoding="utf-8")

    kv = TTLKV(cache_file)
    assert len(kv) == 0

    kv.set("key", 1)
    kv.clear()
    assert not cache_file.exists()
    assert kv.get("key") is None
