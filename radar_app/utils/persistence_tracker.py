from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence

from . import markov
from .log import log
from .radar_config import MarkovConfig, TrackerConfig
from .radar_models import (
    Candidate,
    InstrumentSnapshot,
    PersistenceTrack,
    RadarAlert,
    StrategyId,
    WhaleAnalysis,
)


@dataclass(slots=True)
class TrackerReport:
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    promoted: list[str] = field(default_factory=list)
    evicted: list[str] = field(default_factory=list)
    disqualified: list[str] = field(default_factory=list)
    alerts: list[RadarAlert] = field(default_factory=list)


class PersistenceTracker:
    """Authoritative ``symbol -> PersistenceTrack`` map.

    Tracks are created when a candidate first qualifies, refreshed while it
    keeps qualifying, evicted once unrefreshed beyond the TTL (unless
    protected) and dropped immediately on a volume collapse.
    """

    def __init__(
        self,
        config: TrackerConfig | None = None,
        markov_config: MarkovConfig | None = None,
    ) -> None:
        self.config = config or TrackerConfig()
        self.markov_config = markov_config or MarkovConfig()
        self._tracks: dict[str, PersistenceTrack] = {}

    def __len__(self) -> int:
        return len(self._tracks)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._tracks

    def get(self, symbol: str) -> Optional[PersistenceTrack]:
        return self._tracks.get(symbol)

    @property
    def tracks(self) -> Mapping[str, PersistenceTrack]:
        return self._tracks

    # ------------------------------------------------------------------
    # cycle processing
    def process(
        self,
        candidates: Sequence[Candidate],
        now: float,
        protected: Iterable[str] = (),
    ) -> TrackerReport:
        report = TrackerReport()
        present = {candidate.symbol for candidate in candidates}
        self._evict_stale(now, present, set(protected), report)

        for candidate in candidates:
            track = self._tracks.get(candidate.symbol)
            if track is None:
                self._tracks[candidate.symbol] = self._create(candidate, now)
                report.created.append(candidate.symbol)
                log("radar.track.created", symbol=candidate.symbol, strategy=candidate.strategy_id.value)
                continue
            if self._volume_collapsed(track, candidate.snapshot):
                del self._tracks[candidate.symbol]
                report.disqualified.append(candidate.symbol)
                log(
                    "radar.track.disqualified",
                    symbol=candidate.symbol,
                    previous_volume=track.last_seen_volume,
                    volume=candidate.snapshot.volume_24h,
                )
                continue
            self._update(track, candidate, now, report)

        return report

    def _evict_stale(self, now: float, present: set[str], protected: set[str], report: TrackerReport) -> None:
        for symbol, track in list(self._tracks.items()):
            if symbol in present or symbol in protected:
                continue
            last = track.last_updated or track.entry_timestamp
            if now - last > self.config.ttl_sec:
                del self._tracks[symbol]
                report.evicted.append(symbol)
                log("radar.track.evicted", symbol=symbol, idle_sec=round(now - last, 1))

    def _volume_collapsed(self, track: PersistenceTrack, snapshot: InstrumentSnapshot) -> bool:
        if track.last_seen_volume <= 0:
            return False
        change_pct = (snapshot.volume_24h - track.last_seen_volume) / track.last_seen_volume * 100.0
        return change_pct < self.config.volume_drop_pct

    @staticmethod
    def _create(candidate: Candidate, now: float) -> PersistenceTrack:
        snapshot = candidate.snapshot
        return PersistenceTrack(
            symbol=snapshot.symbol,
            name=snapshot.name,
            strategy_id=candidate.strategy_id,
            first_seen_price=snapshot.price,
            last_seen_price=snapshot.price,
            entry_timestamp=now,
            last_updated=now,
            previous_change_1h=snapshot.change_1h,
            last_seen_change_1h=snapshot.change_1h,
            last_seen_change_24h=snapshot.change_24h,
            last_seen_volume=snapshot.volume_24h,
            last_seen_market_cap=snapshot.market_cap,
            last_history_update=now,
            price_history=[snapshot.price],
            markov_state=markov.MarketState.ACCUMULATION.value,
            pre_ignition_score=candidate.pre_ignition_score,
            accumulation_score=candidate.accumulation_score,
            volume_acceleration=candidate.volume_acceleration,
            whale_score=candidate.whale.score if candidate.whale else None,
            whale_signal=candidate.whale.signal if candidate.whale else None,
            logo=snapshot.logo,
            trade_url=snapshot.trade_url,
            contract_address=snapshot.contract_address,
        )

    def _update(self, track: PersistenceTrack, candidate: Candidate, now: float, report: TrackerReport) -> None:
        snapshot = candidate.snapshot
        track.consecutive_hours += 1
        track.previous_change_1h = track.last_seen_change_1h
        track.last_seen_change_1h = snapshot.change_1h
        track.last_seen_change_24h = snapshot.change_24h
        track.last_seen_price = snapshot.price
        track.last_seen_volume = snapshot.volume_24h
        track.last_seen_market_cap = snapshot.market_cap
        track.last_updated = now
        if candidate.accumulation_score is not None:
            track.accumulation_score = candidate.accumulation_score
        if candidate.volume_acceleration is not None:
            track.volume_acceleration = candidate.volume_acceleration

        if not track.price_history or now - track.last_history_update >= self.config.history_interval_sec:
            track.price_history.append(snapshot.price)
            track.price_history = track.price_history[-self.config.history_max :]
            track.last_history_update = now

        if len(track.price_history) >= self.config.markov_min_points:
            prediction = markov.predict(track.price_history, self.markov_config)
            track.markov_state = prediction.predicted.value
            track.markov_probability = prediction.probability

        if self._promote(track, candidate.strategy_id):
            report.promoted.append(track.symbol)

        alert = self._milestone_alert(track, now)
        if alert is not None:
            report.alerts.append(alert)
        report.updated.append(track.symbol)

    @staticmethod
    def _promote(track: PersistenceTrack, strategy_id: StrategyId) -> bool:
        if strategy_id.rank <= track.strategy_id.rank:
            return False
        log(
            "radar.track.promoted",
            symbol=track.symbol,
            strategy=strategy_id.value,
            previous=track.strategy_id.value,
        )
        track.strategy_id = strategy_id
        return True

    def _milestone_alert(self, track: PersistenceTrack, now: float) -> Optional[RadarAlert]:
        for milestone in sorted(self.config.alert_milestones, reverse=True):
            if track.consecutive_hours >= milestone and track.alert_sent_level < milestone:
                track.alert_sent_level = milestone
                return RadarAlert(
                    kind="persistence",
                    symbol=track.symbol,
                    strategy=track.strategy_id.value,
                    score=track.pre_ignition_score or track.accumulation_score,
                    title=f"{track.symbol} persistent for {milestone} cycles",
                    metrics={
                        "consecutive_hours": track.consecutive_hours,
                        "price": track.last_seen_price,
                        "change_since_entry_pct": round(track.change_since_entry_pct, 2),
                        "change_1h": track.last_seen_change_1h,
                        "change_24h": track.last_seen_change_24h,
                        "volume_24h": track.last_seen_volume,
                        "markov_state": track.markov_state,
                    },
                    timestamp=now,
                )
        return None

    # ------------------------------------------------------------------
    # enrichment from other stages
    def apply_pre_ignition(self, candidates: Sequence[Candidate], alerted: Iterable[str] = ()) -> list[str]:
        """Promote tracks to ``pre_ignition`` and copy the detector's metrics."""

        alerted_symbols = set(alerted)
        promoted: list[str] = []
        for candidate in candidates:
            track = self._tracks.get(candidate.symbol)
            if track is None:
                continue
            if self._promote(track, StrategyId.PRE_IGNITION):
                promoted.append(track.symbol)
            track.pre_ignition_score = candidate.pre_ignition_score
            track.volume_acceleration = candidate.volume_acceleration
            if candidate.pressure is not None:
                track.pressure_direction = candidate.pressure.direction.value
                track.net_buy_pressure = round(candidate.pressure.net_buy_pressure, 4)
            if candidate.symbol in alerted_symbols:
                track.alert_sent_level = max(track.alert_sent_level, 1)
        return promoted

    def mark_graduated(self, symbol: str, phase: str) -> None:
        track = self._tracks.get(symbol)
        if track is not None:
            track.social_phase = phase

    def attach_advisor(self, symbol: str, verdict: Mapping[str, Any] | None) -> None:
        track = self._tracks.get(symbol)
        if track is not None and verdict is not None:
            track.advisor = dict(verdict)

    def attach_whale(self, symbol: str, analysis: WhaleAnalysis | None) -> None:
        track = self._tracks.get(symbol)
        if track is not None and analysis is not None:
            track.whale_score = analysis.score
            track.whale_signal = analysis.signal

    def fill_missing_change_1h(self, snapshots: Sequence[InstrumentSnapshot]) -> list[InstrumentSnapshot]:
        """Derive a 1h change from the tracked price when the provider has none."""

        filled: list[InstrumentSnapshot] = []
        for snapshot in snapshots:
            track = self._tracks.get(snapshot.symbol)
            if snapshot.change_1h == 0 and track is not None and track.last_seen_price > 0 and snapshot.price > 0:
                change = (snapshot.price - track.last_seen_price) / track.last_seen_price * 100.0
                snapshot = snapshot.with_change_1h(round(change, 4))
            filled.append(snapshot)
        return filled

    # ------------------------------------------------------------------
    # views and persistence
    def persistence_list(self, strategy: StrategyId | str | None = None) -> list[PersistenceTrack]:
        wanted = StrategyId(strategy) if strategy else None
        selected = [
            copy.deepcopy(track)
            for track in self._tracks.values()
            if wanted is None or track.strategy_id is wanted
        ]
        selected.sort(key=lambda track: track.consecutive_hours, reverse=True)
        return selected

    def snapshot(self) -> list[dict[str, Any]]:
        return [track.to_dict() for track in self.persistence_list()]

    def clone(self) -> "PersistenceTracker":
        other = PersistenceTracker(self.config, self.markov_config)
        other._tracks = copy.deepcopy(self._tracks)
        return other

    def clear(self) -> None:
        self._tracks.clear()

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {symbol: track.to_dict() for symbol, track in self._tracks.items()}

    def load(self, payload: Mapping[str, Any] | None) -> int:
        self._tracks = {}
        if not isinstance(payload, Mapping):
            return 0
        for symbol, raw in payload.items():
            if not isinstance(raw, Mapping):
                continue
            track = PersistenceTrack.from_dict(raw)
            if track is not None:
                track.price_history = track.price_history[-self.config.history_max :]
                self._tracks[str(symbol)] = track
        return len(self._tracks)
