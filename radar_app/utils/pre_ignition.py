"""Pre-ignition detection over already tracked instruments.

Only symbols the persistence tracker has seen for a few cycles are
eligible: without history a fresh spike cannot be told apart from a move
that already happened. Candidates are scored, the best few form the
watch-list, and any candidate whose 1h change breaks out graduates to the
``PUMPING`` phase for good. Graduated symbols are forgotten once they have
had no track for a week.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

from .log import log
from .pressure import detect_pressure_direction
from .radar_config import EXCLUDED_SYMBOLS, PreIgnitionConfig, PreIgnitionScoring
from .radar_models import (
    Candidate,
    InstrumentSnapshot,
    PersistenceTrack,
    RadarAlert,
    StrategyId,
)

PUMPING_PHASE = "PUMPING"


def _clamp_score(value: float) -> int:
    return int(max(1, min(round(value), 100)))


def calculate_pre_ignition_score(
    snapshot: InstrumentSnapshot,
    acceleration: float,
    scoring: PreIgnitionScoring | None = None,
) -> int:
    rules = scoring or PreIgnitionScoring()
    score = rules.base

    for threshold, bonus in rules.volume_tiers:
        if snapshot.volume_24h > threshold:
            score += bonus
            break
    else:
        if snapshot.volume_24h < rules.dead_volume:
            score += rules.dead_volume_penalty

    if snapshot.change_1h > rules.live_change_1h:
        score += rules.momentum_bonus
    if snapshot.change_24h > rules.sustained_change_24h:
        score += rules.momentum_bonus
    if snapshot.change_1h < rules.dump_change_1h:
        score += rules.dump_penalty
    if snapshot.change_24h < rules.dump_change_24h:
        score += rules.dump_penalty

    for threshold, bonus in rules.turnover_tiers:
        if snapshot.turnover > threshold:
            score += bonus
            break

    for threshold, bonus in rules.acceleration_tiers:
        if acceleration > threshold:
            score += bonus
            break

    return _clamp_score(score)


@dataclass(slots=True)
class PreIgnitionResult:
    candidates: list[Candidate] = field(default_factory=list)
    graduated: list[InstrumentSnapshot] = field(default_factory=list)
    alerts: list[RadarAlert] = field(default_factory=list)
    relaxed: bool = False

    @property
    def symbols(self) -> set[str]:
        return {candidate.symbol for candidate in self.candidates}


class PreIgnitionDetector:
    def __init__(
        self,
        config: PreIgnitionConfig | None = None,
        scoring: PreIgnitionScoring | None = None,
        excluded_symbols: frozenset[str] = EXCLUDED_SYMBOLS,
    ) -> None:
        self.config = config or PreIgnitionConfig()
        self.scoring = scoring or PreIgnitionScoring()
        self.excluded_symbols = excluded_symbols
        self._watchlist: dict[str, Candidate] = {}
        # symbol -> last time it graduated or was still tracked
        self._graduated: dict[str, float] = {}

    # ------------------------------------------------------------------
    # state
    @property
    def watchlist(self) -> dict[str, Candidate]:
        return dict(self._watchlist)

    @property
    def graduated(self) -> frozenset[str]:
        return frozenset(self._graduated)

    def graduated_state(self) -> dict[str, float]:
        return dict(self._graduated)

    def clone(self) -> "PreIgnitionDetector":
        other = PreIgnitionDetector(self.config, self.scoring, self.excluded_symbols)
        other._watchlist = copy.deepcopy(self._watchlist)
        other._graduated = dict(self._graduated)
        return other

    def clear(self) -> None:
        self._watchlist.clear()
        self._graduated.clear()

    def load(self, graduated: Mapping[str, float] | Sequence[str] | None, now: float = 0.0) -> None:
        """Restore the graduated set; bare symbol lists are stamped with ``now``."""

        self._graduated = {}
        if isinstance(graduated, Mapping):
            for symbol, stamp in graduated.items():
                try:
                    self._graduated[str(symbol)] = float(stamp)
                except (TypeError, ValueError):
                    self._graduated[str(symbol)] = now
        elif isinstance(graduated, (list, tuple)):
            self._graduated = {str(symbol): now for symbol in graduated}

    def _prune_graduated(self, tracks: Mapping[str, PersistenceTrack], now: float) -> None:
        cutoff = now - self.config.graduated_retention_sec
        for symbol, stamp in list(self._graduated.items()):
            if symbol in tracks:
                self._graduated[symbol] = now
            elif stamp < cutoff:
                del self._graduated[symbol]

    def _graduate(self, snapshot: InstrumentSnapshot, result: PreIgnitionResult, now: float) -> None:
        self._graduated[snapshot.symbol] = now
        result.graduated.append(snapshot)
        log("radar.pre_ignition.graduated", symbol=snapshot.symbol, change_1h=snapshot.change_1h)

    # ------------------------------------------------------------------
    # filters
    def _eligible(self, snapshot: InstrumentSnapshot, track: Optional[PersistenceTrack]) -> bool:
        if track is None or track.consecutive_hours < self.config.min_consecutive_hours:
            return False
        if snapshot.symbol in self._graduated:
            return False
        return snapshot.symbol.upper() not in self.excluded_symbols

    def _passes_strict(self, snapshot: InstrumentSnapshot, track: PersistenceTrack) -> bool:
        cfg = self.config
        if track.first_seen_price > 0:
            since_entry = (snapshot.price - track.first_seen_price) / track.first_seen_price * 100.0
        else:
            since_entry = 0.0
        low, high = cfg.since_entry_band
        if not (low < since_entry < high):
            return False

        low, high = cfg.change_1h_band
        if not (low < snapshot.change_1h < high):
            return False
        if snapshot.change_1h < cfg.distribution_change_1h:
            return False

        if snapshot.market_cap > 0:
            velocity = snapshot.turnover >= cfg.min_velocity_ratio
        else:
            velocity = snapshot.volume_24h > cfg.unknown_cap_velocity_volume
        return velocity or snapshot.volume_24h > cfg.min_absolute_volume

    def _passes_relaxed(self, snapshot: InstrumentSnapshot) -> bool:
        cfg = self.config
        low, high = cfg.relaxed_change_24h_band
        if not (low < snapshot.change_24h < high):
            return False
        if snapshot.change_1h <= 0:
            return False
        if snapshot.market_cap > 0:
            return snapshot.turnover >= cfg.relaxed_min_velocity_ratio
        return snapshot.volume_24h > cfg.relaxed_unknown_cap_volume

    # ------------------------------------------------------------------
    # public API
    def detect(
        self,
        snapshots: Sequence[InstrumentSnapshot],
        tracks: Mapping[str, PersistenceTrack],
        accelerations: Mapping[str, float],
        now: float,
    ) -> PreIgnitionResult:
        result = PreIgnitionResult()
        by_symbol = {snapshot.symbol: snapshot for snapshot in snapshots}
        breakout = self.config.graduation_change_1h
        self._prune_graduated(tracks, now)

        for symbol in list(self._watchlist):
            snapshot = by_symbol.get(symbol)
            if snapshot is not None and snapshot.change_1h > breakout:
                self._graduate(snapshot, result, now)

        eligible = [
            (snapshot, tracks[snapshot.symbol])
            for snapshot in snapshots
            if self._eligible(snapshot, tracks.get(snapshot.symbol))
        ]
        passed = [(s, t) for s, t in eligible if self._passes_strict(s, t)]
        if not passed and eligible:
            passed = [(s, t) for s, t in eligible if self._passes_relaxed(s)]
            if passed:
                result.relaxed = True
                log(
                    "radar.pre_ignition.safety_net",
                    severity="warning",
                    eligible=len(eligible),
                    relaxed_candidates=len(passed),
                )

        scored: list[tuple[Candidate, PersistenceTrack]] = []
        for snapshot, track in passed:
            if snapshot.change_1h > breakout:
                # Already breaking out: graduates instead of joining the watch-list.
                self._graduate(snapshot, result, now)
                continue
            acceleration = accelerations.get(snapshot.symbol, 1.0)
            candidate = Candidate(
                snapshot=snapshot,
                strategy_id=StrategyId.PRE_IGNITION,
                pre_ignition_score=calculate_pre_ignition_score(snapshot, acceleration, self.scoring),
                volume_acceleration=acceleration,
                pressure=detect_pressure_direction(
                    snapshot.change_1h, snapshot.change_24h, track.previous_change_1h
                ),
                relaxed=result.relaxed,
            )
            scored.append((candidate, track))

        scored.sort(key=lambda item: item[0].pre_ignition_score or 0, reverse=True)
        scored = scored[: self.config.watchlist_size]

        self._watchlist = {candidate.symbol: candidate for candidate, _ in scored}
        result.candidates = [candidate for candidate, _ in scored]
        result.alerts = [
            self._build_alert(candidate, now)
            for candidate, track in scored
            if self._should_alert(candidate, track)
        ]

        log(
            "radar.pre_ignition.summary",
            eligible=len(eligible),
            candidates=len(result.candidates),
            graduated=len(result.graduated),
            relaxed=result.relaxed,
        )
        return result

    def _should_alert(self, candidate: Candidate, track: PersistenceTrack) -> bool:
        if track.alert_sent_level >= 1:
            return False
        threshold = self.config.alert_threshold
        if candidate.volume_acceleration == 1.0:
            threshold = self.config.alert_threshold_neutral_acceleration
        return (candidate.pre_ignition_score or 0) >= threshold

    @staticmethod
    def _build_alert(candidate: Candidate, now: float) -> RadarAlert:
        snapshot = candidate.snapshot
        pressure = candidate.pressure
        return RadarAlert(
            kind="pre_ignition",
            symbol=snapshot.symbol,
            strategy=StrategyId.PRE_IGNITION.value,
            score=candidate.pre_ignition_score,
            title=f"Pre-ignition: {snapshot.symbol}",
            metrics={
                "price": snapshot.price,
                "change_1h": snapshot.change_1h,
                "change_24h": snapshot.change_24h,
                "volume_24h": snapshot.volume_24h,
                "market_cap": snapshot.market_cap,
                "volume_acceleration": candidate.volume_acceleration,
                "pressure": pressure.direction.value if pressure else None,
                "relaxed": candidate.relaxed,
            },
            timestamp=now,
        )
