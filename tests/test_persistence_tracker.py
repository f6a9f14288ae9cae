from __future__ import annotations

import pytest

from radar_app.utils.persistence_tracker import PersistenceTracker
from radar_app.utils.radar_models import (
    Candidate,
    PressureDirection,
    PressureReading,
    StrategyId,
    WhaleAnalysis,
)


@pytest.fixture
def candidate(make_snapshot):
    def _candidate(symbol: str = "FOO", strategy: StrategyId = StrategyId.STANDARD, **snapshot) -> Candidate:
        return Candidate(snapshot=make_snapshot(symbol, **snapshot), strategy_id=strategy)

    return _candidate


def test_create_seeds_track(candidate) -> None:
    tracker = PersistenceTracker()

    report = tracker.process([candidate("FOO", price=2.0, change_1h=1.5)], now=10.0)

    assert report.created == ["FOO"]
    track = tracker.get("FOO")
    assert track is not None
    assert track.consecutive_hours == 1
    assert track.first_seen_price == track.last_seen_price == 2.0
    assert track.previous_change_1h == 1.5
    assert track.price_history == [2.0]
    assert track.markov_state == "ACCUMULATION"
    assert track.entry_timestamp == track.last_updated == 10.0


def test_ttl_eviction_keeps_recent_tracks(candidate) -> None:
    tracker = PersistenceTracker()
    tracker.process([candidate("FOO")], now=0.0)

    report = tracker.process([], now=4 * 60.0)
    assert "FOO" in tracker
    assert report.evicted == []

    report = tracker.process([], now=6 * 60.0)
    assert "FOO" not in tracker
    assert report.evicted == ["FOO"]


def test_protected_tracks_survive_ttl(candidate) -> None:
    tracker = PersistenceTracker()
    tracker.process([candidate("FOO")], now=0.0)

    tracker.process([], now=6 * 60.0, protected={"FOO"})

    assert "FOO" in tracker


def test_volume_collapse_disqualifies_within_ttl(candidate) -> None:
    tracker = PersistenceTracker()
    tracker.process([candidate("DROP", volume_24h=100_000), candidate("DIP", volume_24h=100_000)], now=0.0)

    report = tracker.process(
        [candidate("DROP", volume_24h=75_000), candidate("DIP", volume_24h=81_000)],
        now=60.0,
    )

    assert report.disqualified == ["DROP"]
    assert "DROP" not in tracker
    assert tracker.get("DIP").consecutive_hours == 2


def test_update_shifts_changes_and_refreshes(candidate) -> None:
    tracker = PersistenceTracker()
    tracker.process([candidate("FOO", change_1h=1.0, price=1.0)], now=0.0)

    tracker.process([candidate("FOO", change_1h=3.0, price=1.1)], now=120.0)

    track = tracker.get("FOO")
    assert track.consecutive_hours == 2
    assert track.previous_change_1h == 1.0
    assert track.last_seen_change_1h == 3.0
    assert track.last_updated == 120.0
    assert track.change_since_entry_pct == pytest.approx(10.0)
    # Less than 15 minutes since the seed sample.
    assert track.price_history == [1.0]


def test_price_history_interval_and_markov(candidate) -> None:
    tracker = PersistenceTracker()
    interval = 15 * 60.0
    tracker.process([candidate("FOO", price=1.0)], now=0.0)

    for step in range(1, 12):
        tracker.process([candidate("FOO", price=1.0 + 0.01 * step)], now=step * interval)

    track = tracker.get("FOO")
    assert len(track.price_history) == 12
    assert track.markov_state == "BULLISH_TREND"
    assert track.markov_probability == pytest.approx(1.0)


def test_milestone_alerts_fire_once_each(candidate) -> None:
    tracker = PersistenceTracker()
    alerts_by_cycle: list[list[str]] = []

    for cycle in range(7):
        report = tracker.process([candidate("FOO")], now=cycle * 60.0)
        alerts_by_cycle.append([alert.title for alert in report.alerts])

    assert alerts_by_cycle[2] == ["FOO persistent for 3 cycles"]
    assert alerts_by_cycle[5] == ["FOO persistent for 6 cycles"]
    fired = [cycle for cycle, titles in enumerate(alerts_by_cycle) if titles]
    assert fired == [2, 5]
    assert tracker.get("FOO").alert_sent_level == 6


def test_promotion_never_demotes(candidate) -> None:
    tracker = PersistenceTracker()
    tracker.process([candidate("FOO", StrategyId.STANDARD)], now=0.0)

    report = tracker.process([candidate("FOO", StrategyId.ACCUMULATION)], now=60.0)
    assert report.promoted == ["FOO"]

    report = tracker.process([candidate("FOO", StrategyId.MICRO_VELOCITY)], now=120.0)
    assert report.promoted == []
    assert tracker.get("FOO").strategy_id is StrategyId.ACCUMULATION


def test_apply_pre_ignition_promotes_and_marks_alerts(candidate, make_snapshot) -> None:
    tracker = PersistenceTracker()
    tracker.process([candidate("FOO"), candidate("BAR")], now=0.0)
    pre = [
        Candidate(
            snapshot=make_snapshot("FOO"),
            strategy_id=StrategyId.PRE_IGNITION,
            pre_ignition_score=82,
            volume_acceleration=2.2,
            pressure=PressureReading(PressureDirection.BULLISH, 2.123456, 100.0),
        ),
        Candidate(snapshot=make_snapshot("GONE"), strategy_id=StrategyId.PRE_IGNITION, pre_ignition_score=70),
    ]

    promoted = tracker.apply_pre_ignition(pre, alerted={"FOO"})

    assert promoted == ["FOO"]
    track = tracker.get("FOO")
    assert track.strategy_id is StrategyId.PRE_IGNITION
    assert track.pre_ignition_score == 82
    assert track.pressure_direction == "BULLISH"
    assert track.net_buy_pressure == 2.1235
    assert track.alert_sent_level == 1
    assert tracker.get("BAR").strategy_id is StrategyId.STANDARD


def test_enrichment_attachments(candidate) -> None:
    tracker = PersistenceTracker()
    tracker.process([candidate("FOO")], now=0.0)

    tracker.mark_graduated("FOO", "PUMPING")
    tracker.attach_advisor("FOO", {"score": 80})
    tracker.attach_whale("FOO", WhaleAnalysis(symbol="FOO", score=72.0, signal="BUY"))
    tracker.attach_whale("MISSING", WhaleAnalysis(symbol="MISSING", score=1.0, signal="SELL"))

    track = tracker.get("FOO")
    assert track.social_phase == "PUMPING"
    assert track.advisor == {"score": 80}
    assert (track.whale_score, track.whale_signal) == (72.0, "BUY")
    assert "MISSING" not in tracker


def test_persistence_list_is_sorted_copy(candidate) -> None:
    tracker = PersistenceTracker()
    tracker.process([candidate("OLD")], now=0.0)
    tracker.process([candidate("OLD"), candidate("NEW", StrategyId.MICRO_VELOCITY)], now=60.0)

    listed = tracker.persistence_list()
    assert [t.symbol for t in listed] == ["OLD", "NEW"]

    listed[0].consecutive_hours = 99
    assert tracker.get("OLD").consecutive_hours == 2

    assert [t.symbol for t in tracker.persistence_list("micro_velocity")] == ["NEW"]


def test_fill_missing_change_1h_uses_tracked_price(candidate, make_snapshot) -> None:
    tracker = PersistenceTracker()
    tracker.process([candidate("FOO", price=2.0)], now=0.0)

    filled = tracker.fill_missing_change_1h(
        [make_snapshot("FOO", price=2.2, change_1h=0.0), make_snapshot("BAR", change_1h=0.0)]
    )

    assert filled[0].change_1h == pytest.approx(10.0)
    assert filled[1].change_1h == 0.0


def test_round_trip_and_clone(candidate) -> None:
    tracker = PersistenceTracker()
    tracker.process([candidate("FOO", StrategyId.MICRO_VELOCITY)], now=0.0)

    restored = PersistenceTracker()
    assert restored.load(tracker.to_dict()) == 1
    assert restored.get("FOO").strategy_id is StrategyId.MICRO_VELOCITY

    clone = tracker.clone()
    clone.process([candidate("FOO")], now=60.0)
    assert tracker.get("FOO").consecutive_hours == 1

    assert restored.load({"BAD": {"symbol": "BAD"}, "JUNK": "x"}) == 0
