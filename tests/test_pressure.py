from __future__ import annotations

import pytest

from radar_app.utils.pressure import calculate_volume_acceleration, detect_pressure_direction
from radar_app.utils.radar_models import PressureDirection
from radar_app.utils.volume_history import VolumeHistoryStore


def test_acceleration_uses_synthetic_baseline_without_history() -> None:
    # baseline = 3% of 1M = 30k
    assert calculate_volume_acceleration([], 60_000, 1_000_000) == pytest.approx(2.0)


def test_acceleration_synthetic_baseline_is_clamped() -> None:
    assert calculate_volume_acceleration([], 10_000_000, 1_000_000) == 20.0
    assert calculate_volume_acceleration([1.0], 100, 1_000_000) == 0.5


def test_acceleration_is_neutral_without_history_or_cap() -> None:
    assert calculate_volume_acceleration([100.0, 200.0], 500.0, 0.0) == 1.0


def test_acceleration_against_historical_mean() -> None:
    assert calculate_volume_acceleration([100.0, 200.0, 300.0], 400.0, 0.0) == pytest.approx(2.0)
    assert calculate_volume_acceleration([0.0, 0.0, 0.0], 400.0, 0.0) == 1.0


def test_pressure_bullish_when_signals_align() -> None:
    reading = detect_pressure_direction(2.0, 5.0, previous_change_1h=1.0)

    assert reading.direction is PressureDirection.BULLISH
    assert reading.net_buy_pressure == pytest.approx(0.6 * 2.0 + 0.3 * 5.0 + 0.1 * 1.0)
    assert reading.confidence == pytest.approx(100.0)


def test_pressure_bearish_when_signals_align() -> None:
    reading = detect_pressure_direction(-3.0, -6.0, previous_change_1h=1.0)

    assert reading.direction is PressureDirection.BEARISH
    assert reading.confidence == pytest.approx(100.0)


def test_pressure_neutral_below_threshold() -> None:
    reading = detect_pressure_direction(0.5, 0.5, previous_change_1h=0.5)

    assert reading.direction is PressureDirection.NEUTRAL
    assert reading.confidence == 50.0


def test_pressure_needs_two_aligned_signals() -> None:
    # Strong 24h move alone does not make a direction.
    reading = detect_pressure_direction(-1.0, 20.0, previous_change_1h=0.0)

    assert reading.direction is PressureDirection.NEUTRAL


def test_volume_history_records_and_prunes() -> None:
    store = VolumeHistoryStore()
    day = 24 * 3600.0

    store.record("AAA", 100.0, 0.0)
    store.record("AAA", 0.0, 1.0)
    store.record("AAA", 200.0, 2.0)
    store.record("BBB", 50.0, 3.0)
    assert store.samples("AAA") == [100.0, 200.0]

    store.record("AAA", 300.0, 8 * day)
    assert store.samples("AAA") == [300.0]

    assert store.prune(8 * day) == 1
    assert "BBB" not in store
    assert len(store) == 1


def test_volume_history_caps_samples() -> None:
    store = VolumeHistoryStore()
    for index in range(200):
        store.record("AAA", 10.0 + index, float(index))

    samples = store.samples("AAA")
    assert len(samples) == 168
    assert samples[-1] == 209.0


def test_volume_history_acceleration_and_persistence() -> None:
    store = VolumeHistoryStore()
    for ts, volume in enumerate((100.0, 100.0, 100.0)):
        store.record("AAA", volume, float(ts))

    assert store.acceleration("AAA", 250.0, 0.0) == pytest.approx(2.5)

    restored = VolumeHistoryStore()
    restored.load(store.to_dict())
    assert restored.samples("AAA") == [100.0, 100.0, 100.0]

    clone = store.clone()
    clone.record("AAA", 400.0, 5.0)
    assert store.samples("AAA") == [100.0, 100.0, 100.0]


def test_volume_history_load_ignores_malformed_entries() -> None:
    store = VolumeHistoryStore()
    store.load({"AAA": [[1.0, 10.0], ["bad"], None, [2.0, "x"]], "BBB": []})

    assert store.samples("AAA") == [10.0]
    assert "BBB" not in store


def test_volume_history_load_skips_scalar_entries() -> None:
    store = VolumeHistoryStore()

    store.load({"ABC": 5, "DEF": None, "GHI": [[10.0, 2.0]]})

    assert "ABC" not in store
    assert "DEF" not in store
    assert store.samples("GHI") == [2.0]
