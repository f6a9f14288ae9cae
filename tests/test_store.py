from radar_app.utils import store as store_module
from radar_app.utils.store import JLStore


def test_jlstore_append_and_truncate(tmp_path):
    store = JLStore(tmp_path / "alerts.jsonl", max_lines=2)

    store.append({"id": 1})
    store.append_many([{"id": 2}, {"id": 3}])

    tail = store.read_tail(10)
    assert [entry["id"] for entry in tail] == [2, 3]
    assert len(store) == 2


def test_jlstore_skips_torn_lines(tmp_path):
    store_path = tmp_path / "alerts.jsonl"
    store = JLStore(store_path, max_lines=10)
    store.append({"valid": 1})

    with store_path.open("a", encoding="utf-8") as handle:
        handle.write("broken json\n")

    reloaded = JLStore(store_path, max_lines=10)
    assert reloaded.read_tail(5) == [{"valid": 1}]
    assert len(reloaded) == 2


def test_jlstore_filters_by_kind(tmp_path):
    store = JLStore(tmp_path / "alerts.jsonl", max_lines=50)
    store.append_many(
        [
            {"kind": "persistence", "symbol": "AAA"},
            {"kind": "pre_ignition", "symbol": "BBB"},
            {"kind": "persistence", "symbol": "CCC"},
            {"kind": "advisor", "symbol": "DDD"},
        ]
    )

    persistence = store.read_tail(1, kind="persistence")
    assert [entry["symbol"] for entry in persistence] == ["CCC"]
    assert [entry["symbol"] for entry in store.read_tail(10, kind="persistence")] == ["AAA", "CCC"]
    assert store.read_tail(0) == []


def test_jlstore_fsync_flag_triggers_flush(tmp_path, monkeypatch):
    calls: list[int] = []

    monkeypatch.setattr(store_module.os, "fsync", lambda fd: calls.append(fd))

    store = JLStore(tmp_path / "alerts.jsonl", max_lines=10, fsync=True)
    store.append({"id": 1})

    assert calls, "fsync should be called when fsync flag is enabled"


def test_jlstore_clear(tmp_path):
    store = JLStore(tmp_path / "alerts.jsonl", max_lines=10)
    store.append({"id": 1})

    store.clear()

    assert len(store) == 0
    assert store.read_tail(10) == []
