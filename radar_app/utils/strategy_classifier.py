from __future__ import annotations

from collections import Counter
from typing import Iterable, Mapping, Optional, Sequence

from .log import log
from .radar_config import (
    ACCUMULATION,
    ACCUMULATION_RULES,
    STANDARD_RULES,
    AccumulationRules,
    StandardRules,
    StrategyConfig,
)
from .radar_models import Candidate, InstrumentSnapshot, StrategyId, WhaleAnalysis

_STRATEGY_IDS = {
    "standard": StrategyId.STANDARD,
    "micro_velocity": StrategyId.MICRO_VELOCITY,
    "accumulation": StrategyId.ACCUMULATION,
}


def _clamp_score(value: float) -> int:
    return int(max(1, min(round(value), 100)))


def _reject_reason(snapshot: InstrumentSnapshot, config: StrategyConfig) -> Optional[str]:
    """Return the first hard filter ``snapshot`` fails, or ``None``."""

    market_cap = snapshot.market_cap
    if market_cap <= 0:
        floor = config.unknown_cap_min_volume
        if floor is None or snapshot.volume_24h < floor:
            return "market_cap"
    elif market_cap < config.min_market_cap or market_cap > config.max_market_cap:
        return "market_cap"

    if snapshot.volume_24h < config.min_volume:
        return "volume"
    if market_cap > 0 and snapshot.turnover < config.min_volume_to_mcap:
        return "turnover"
    if snapshot.symbol.upper() in config.excluded_symbols:
        return "excluded"
    if snapshot.change_1h < config.min_change_1h or snapshot.change_24h < config.min_change_24h:
        return "change"
    return None


def _standard_profile(snapshot: InstrumentSnapshot, rules: StandardRules) -> Optional[str]:
    early = (
        snapshot.change_1h >= rules.early_min_change_1h
        and rules.early_min_change_24h < snapshot.change_24h < rules.early_max_change_24h
    )
    sustained = (
        snapshot.change_1h >= rules.sustained_min_change_1h
        and snapshot.change_24h >= rules.sustained_min_change_24h
    )
    if early:
        return "early_riser"
    if sustained:
        return "standard"
    return None


def _log_summary(config: StrategyConfig, total: int, rejected: Counter, passed: int) -> None:
    log(
        "radar.classify.summary",
        strategy=config.name,
        total=total,
        passed=passed,
        rejected=dict(rejected),
    )


def classify(
    snapshots: Sequence[InstrumentSnapshot],
    config: StrategyConfig,
    *,
    standard_rules: StandardRules = STANDARD_RULES,
) -> list[Candidate]:
    """Apply ``config``'s hard filters and rank the survivors.

    Ranking is by descending 1h change; Python's sort is stable so ties keep
    the batch order. The result is capped at ``config.limit``.
    """

    strategy_id = _STRATEGY_IDS.get(config.name, StrategyId.STANDARD)
    rejected: Counter = Counter()
    accepted: list[Candidate] = []

    for snapshot in snapshots:
        reason = _reject_reason(snapshot, config)
        if reason is None and strategy_id is StrategyId.STANDARD:
            profile = _standard_profile(snapshot, standard_rules)
            if profile is None:
                reason = "profile"
        else:
            profile = "standard"
        if reason is not None:
            rejected[reason] += 1
            continue
        accepted.append(Candidate(snapshot=snapshot, strategy_id=strategy_id, profile=profile))

    accepted.sort(key=lambda candidate: candidate.snapshot.change_1h, reverse=True)
    ranked = accepted[: max(config.limit, 0)]
    _log_summary(config, len(snapshots), rejected, len(ranked))
    return ranked


def accumulation_score(
    snapshot: InstrumentSnapshot,
    acceleration: float,
    whale: Optional[WhaleAnalysis] = None,
    rules: AccumulationRules = ACCUMULATION_RULES,
) -> int:
    score = 0
    if whale is not None:
        if whale.trend == "ACCUMULATING":
            score += rules.whale_accumulating_bonus
        low, high = rules.healthy_concentration
        if low <= whale.concentration <= high:
            score += rules.concentration_bonus
    for threshold, bonus in rules.acceleration_tiers:
        if acceleration > threshold:
            score += bonus
    if abs(snapshot.change_1h) < rules.calm_change_1h:
        score += rules.calm_bonus
    if -rules.flat_change_24h < snapshot.change_24h < rules.flat_change_24h:
        score += rules.flat_bonus
    low, high = rules.healthy_turnover
    if low <= snapshot.turnover <= high:
        score += rules.turnover_bonus
    return score


def classify_accumulation(
    snapshots: Sequence[InstrumentSnapshot],
    accelerations: Mapping[str, float],
    whales: Mapping[str, WhaleAnalysis] | None = None,
    config: StrategyConfig = ACCUMULATION,
    rules: AccumulationRules = ACCUMULATION_RULES,
) -> list[Candidate]:
    """Quiet, high-interest instruments that have not moved yet.

    Only the market-cap band, volume floor, exclusions and a 24h ceiling are
    hard filters; the rest feeds an additive score with a minimum cut-off.
    """

    whales = whales or {}
    rejected: Counter = Counter()
    scored: list[Candidate] = []

    for snapshot in snapshots:
        if not (config.min_market_cap <= snapshot.market_cap <= config.max_market_cap):
            rejected["market_cap"] += 1
            continue
        if snapshot.volume_24h < config.min_volume:
            rejected["volume"] += 1
            continue
        if snapshot.symbol.upper() in config.excluded_symbols:
            rejected["excluded"] += 1
            continue
        if snapshot.change_24h > rules.max_change_24h:
            rejected["already_moved"] += 1
            continue

        acceleration = accelerations.get(snapshot.symbol, 1.0)
        whale = whales.get(snapshot.symbol)
        raw_score = accumulation_score(snapshot, acceleration, whale, rules)
        if raw_score < rules.min_score:
            rejected["score"] += 1
            continue
        scored.append(
            Candidate(
                snapshot=snapshot,
                strategy_id=StrategyId.ACCUMULATION,
                accumulation_score=_clamp_score(raw_score),
                volume_acceleration=acceleration,
                whale=whale,
            )
        )

    scored.sort(key=lambda candidate: candidate.accumulation_score or 0, reverse=True)
    ranked = scored[: max(config.limit, 0)]
    _log_summary(config, len(snapshots), rejected, len(ranked))
    return ranked


def merge_candidates(*groups: Iterable[Candidate]) -> list[Candidate]:
    """Reduce candidate lists to one candidate per symbol by strategy rank.

    On equal rank the first candidate seen wins. The output keeps first-seen
    symbol order.
    """

    merged: dict[str, Candidate] = {}
    for group in groups:
        for candidate in group:
            current = merged.get(candidate.symbol)
            if current is None or candidate.strategy_id.rank > current.strategy_id.rank:
                merged[candidate.symbol] = candidate
    return list(merged.values())
