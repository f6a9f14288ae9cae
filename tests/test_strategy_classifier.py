from __future__ import annotations

from radar_app.utils import strategy_classifier as sc
from radar_app.utils.radar_config import ACCUMULATION, MICRO_VELOCITY, STANDARD
from radar_app.utils.radar_models import Candidate, StrategyId, WhaleAnalysis


def test_micro_velocity_accepts_liquid_small_cap(make_snapshot) -> None:
    foo = make_snapshot(
        "FOO", price=1.0, change_1h=1.0, change_24h=3.0, volume_24h=300_000, market_cap=2_000_000
    )

    result = sc.classify([foo], MICRO_VELOCITY)

    assert len(result) == 1
    assert result[0].symbol == "FOO"
    assert result[0].strategy_id is StrategyId.MICRO_VELOCITY


def test_standard_rejects_unknown_cap_below_volume_floor(make_snapshot) -> None:
    thin = make_snapshot("THIN", market_cap=0, volume_24h=40_000, change_1h=2.0, change_24h=3.0)
    deep = make_snapshot("DEEP", market_cap=0, volume_24h=60_000, change_1h=2.0, change_24h=3.0)

    result = sc.classify([thin, deep], STANDARD)

    assert [c.symbol for c in result] == ["DEEP"]


def test_micro_velocity_rejects_unknown_cap(make_snapshot) -> None:
    ghost = make_snapshot("GHOST", market_cap=0, volume_24h=5_000_000)
    assert sc.classify([ghost], MICRO_VELOCITY) == []


def test_filters_exclusions_turnover_and_change_bounds(make_snapshot) -> None:
    batch = [
        make_snapshot("BTC"),
        make_snapshot("USDT"),
        make_snapshot("SLOW", volume_24h=10_000, market_cap=2_000_000),
        make_snapshot("DUMP", change_1h=-6.0),
        make_snapshot("OK"),
    ]

    result = sc.classify(batch, MICRO_VELOCITY)

    assert [c.symbol for c in result] == ["OK"]


def test_standard_profiles(make_snapshot) -> None:
    early = make_snapshot("EARLY", change_1h=1.5, change_24h=-5.0)
    sustained = make_snapshot("SUST", change_1h=0.6, change_24h=12.0)
    flat = make_snapshot("FLAT", change_1h=0.2, change_24h=0.5)

    result = {c.symbol: c for c in sc.classify([early, sustained, flat], STANDARD)}

    assert result["EARLY"].profile == "early_riser"
    assert result["SUST"].profile == "standard"
    assert "FLAT" not in result


def test_ranking_is_by_change_1h_and_capped(make_snapshot) -> None:
    batch = [make_snapshot(f"S{i}", change_1h=float(i % 7)) for i in range(150)]

    result = sc.classify(batch, MICRO_VELOCITY)

    assert len(result) == MICRO_VELOCITY.limit
    changes = [c.snapshot.change_1h for c in result]
    assert changes == sorted(changes, reverse=True)


def test_classify_is_deterministic(make_snapshot) -> None:
    batch = [make_snapshot(f"S{i}", change_1h=1.0) for i in range(5)]

    first = sc.classify(batch, STANDARD)
    second = sc.classify(batch, STANDARD)

    assert [c.symbol for c in first] == [c.symbol for c in second] == [f"S{i}" for i in range(5)]


def test_accumulation_scores_quiet_accumulating_token(make_snapshot) -> None:
    quiet = make_snapshot("QUIET", change_1h=0.5, change_24h=1.0, volume_24h=300_000, market_cap=2_000_000)
    whale = WhaleAnalysis(
        symbol="QUIET",
        score=80.0,
        signal="BUY",
        trend="ACCUMULATING",
        concentration=45.0,
        large_transactions=6,
    )

    result = sc.classify_accumulation([quiet], {"QUIET": 2.5}, {"QUIET": whale}, ACCUMULATION)

    assert len(result) == 1
    candidate = result[0]
    assert candidate.strategy_id is StrategyId.ACCUMULATION
    # 30 whale + 10 concentration + 30 acceleration + 10 calm + 10 flat + 10 turnover
    assert candidate.accumulation_score == 100
    assert candidate.whale is whale
    assert candidate.volume_acceleration == 2.5


def test_accumulation_requires_minimum_score_and_no_prior_move(make_snapshot) -> None:
    moved = make_snapshot("MOVED", change_24h=15.0)
    plain = make_snapshot("PLAIN", change_1h=0.5, change_24h=1.0, volume_24h=40_000, market_cap=2_000_000)

    result = sc.classify_accumulation([moved, plain], {}, {})

    # PLAIN only collects the calm and flat bonuses (20 points).
    assert result == []


def test_accumulation_score_without_whale_data(make_snapshot) -> None:
    snapshot = make_snapshot("CALM", change_1h=0.5, change_24h=1.0, volume_24h=300_000, market_cap=2_000_000)
    raw = sc.accumulation_score(snapshot, 1.6)
    assert raw == 10 + 15 + 10 + 10


def test_merge_candidates_prefers_higher_rank(make_snapshot) -> None:
    snap = make_snapshot("DUP")
    standard = Candidate(snapshot=snap, strategy_id=StrategyId.STANDARD)
    micro = Candidate(snapshot=snap, strategy_id=StrategyId.MICRO_VELOCITY)
    accumulation = Candidate(snapshot=snap, strategy_id=StrategyId.ACCUMULATION, accumulation_score=60)
    other = Candidate(snapshot=make_snapshot("OTHER"), strategy_id=StrategyId.STANDARD)

    merged = sc.merge_candidates([standard, other], [micro], [accumulation])

    assert [c.symbol for c in merged] == ["DUP", "OTHER"]
    assert merged[0] is accumulation

    reversed_order = sc.merge_candidates([accumulation], [micro], [standard])
    assert reversed_order[0] is accumulation
