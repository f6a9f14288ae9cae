"""The scan cycle: fetch, classify, enrich, track, persist, alert.

:class:`ScanOrchestrator` owns the tracker, the volume history, the
pre-ignition detector and the snapshot log. Each cycle works on deep copies
of that state and swaps them in only when every step succeeded, so a failed
cycle leaves the previous state untouched. A cycle lock serialises scheduled
and forced cycles.
"""

from __future__ import annotations

import copy
import threading
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Callable, Iterable, Optional, Sequence

from .ai.advisor import AdvisorInput, RadarAdvisor
from .ai.llm_adapter import LLMAdapter
from .alerts import AlertNotifier
from .envs import Settings, get_settings, resolve_state_file
from .error_handling import SCHEDULER_THREAD_NAME, set_crash_context
from .http_client import create_http_session
from .log import log
from .market_provider import MarketSnapshotProvider, build_provider
from .paths import ALERTS_FILE
from .persistence_tracker import PersistenceTracker
from .pre_ignition import PUMPING_PHASE, PreIgnitionDetector
from .radar_config import RadarConfig
from .radar_models import Candidate, InstrumentSnapshot, PersistenceTrack, RadarAlert, StrategyId, WhaleAnalysis
from .state_store import RadarStateStore
from .store import JLStore
from .strategy_classifier import classify, classify_accumulation, merge_candidates
from .telegram_notify import enqueue_telegram_message
from .volume_history import VolumeHistoryStore
from .whale_detector import WhaleDetector

ProviderFactory = Callable[[str], MarketSnapshotProvider]


@dataclass(slots=True)
class CycleReport:
    status: str
    started_at: float
    finished_at: float = 0.0
    fetched: int = 0
    candidates: int = 0
    created: int = 0
    updated: int = 0
    promoted: int = 0
    evicted: int = 0
    disqualified: int = 0
    pre_ignition: int = 0
    graduated: int = 0
    relaxed: bool = False
    alerts: int = 0
    tracked: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class _WorkingState:
    tracker: PersistenceTracker
    history: VolumeHistoryStore
    detector: PreIgnitionDetector
    snapshots: list[dict[str, Any]]
    alerts: list[RadarAlert] = field(default_factory=list)


class ScanOrchestrator:
    def __init__(
        self,
        provider: MarketSnapshotProvider,
        *,
        config: RadarConfig | None = None,
        clock: Callable[[], float] = time.time,
        notifier: AlertNotifier | None = None,
        whale_detector: WhaleDetector | None = None,
        advisor: RadarAdvisor | None = None,
        state_store: RadarStateStore | None = None,
        provider_factory: ProviderFactory | None = None,
        interval_sec: float = 300.0,
        chain_filter: str = "",
        whale_max_workers: int = 4,
        advisor_max_per_cycle: int = 10,
        snapshot_retention_sec: float | None = None,
    ) -> None:
        self.config = config or RadarConfig()
        self.provider = provider
        self._clock = clock
        self.notifier = notifier
        self.whale_detector = whale_detector
        self.advisor = advisor
        self.state_store = state_store
        self._provider_factory = provider_factory
        self.interval_sec = max(float(interval_sec), 1.0)
        self.chain_filter = chain_filter
        self.whale_max_workers = whale_max_workers
        self.advisor_max_per_cycle = advisor_max_per_cycle
        self.snapshot_retention_sec = snapshot_retention_sec or self.config.snapshots.retention_sec

        self._tracker = PersistenceTracker(self.config.tracker, self.config.markov)
        self._history = VolumeHistoryStore(self.config.acceleration)
        self._detector = PreIgnitionDetector(self.config.pre_ignition, self.config.pre_ignition_scoring)
        self._snapshots: list[dict[str, Any]] = []

        self._cycle_lock = threading.Lock()
        self._state_lock = threading.RLock()
        self._thread_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

        self._cycle_count = 0
        self._last_report: Optional[CycleReport] = None

    # ------------------------------------------------------------------
    # persistence
    def restore(self) -> bool:
        """Load the persisted blob; must run before the first cycle."""

        if self.state_store is None:
            return False
        payload = self.state_store.load()
        if not payload:
            return False
        with self._state_lock:
            restored = self._restore_section("tracking", lambda: self._tracker.load(payload.get("tracking"))) or 0
            self._restore_section("volume_history", lambda: self._history.load(payload.get("volume_history")))
            self._restore_section(
                "graduated", lambda: self._detector.load(payload.get("graduated"), now=self._clock())
            )
            snapshots = payload.get("snapshots")
            self._snapshots = [s for s in snapshots if isinstance(s, dict)] if isinstance(snapshots, list) else []
            chain = payload.get("chain_filter")
            if isinstance(chain, str) and chain != self.chain_filter:
                self._apply_chain(chain)
        log("radar.state.restored", tracked=restored, snapshots=len(self._snapshots))
        return True

    @staticmethod
    def _restore_section(section: str, loader: Callable[[], Any]) -> Any:
        try:
            return loader()
        except Exception as exc:
            log("radar.state.corrupt", severity="warning", section=section, exc=exc)
            return None

    def _persist(self) -> None:
        if self.state_store is None:
            return
        with self._state_lock:
            blob = {
                "tracking": self._tracker.to_dict(),
                "volume_history": self._history.to_dict(),
                "snapshots": copy.deepcopy(self._snapshots),
                "graduated": self._detector.graduated_state(),
                "chain_filter": self.chain_filter,
            }
        self.state_store.save(blob, now=self._clock())

    # ------------------------------------------------------------------
    # cycle
    def run_cycle(self) -> CycleReport:
        with self._cycle_lock:
            started = self._clock()
            self._cycle_count += 1
            log("radar.cycle.start", cycle=self._cycle_count, provider=getattr(self.provider, "name", None))
            try:
                report, alerts = self._run_locked(started)
            except Exception as exc:
                log("radar.cycle.error", cycle=self._cycle_count, exc=exc)
                report, alerts = CycleReport(status="error", started_at=started, error=str(exc)), []
            report.finished_at = self._clock()
            self._last_report = report
            summary = report.to_dict()
            summary.pop("started_at")
            summary.pop("finished_at")
            log("radar.cycle.finish", cycle=self._cycle_count, **summary)

        self._dispatch(alerts)
        return report

    force_cycle = run_cycle

    def _run_locked(self, now: float) -> tuple[CycleReport, list[RadarAlert]]:
        snapshots = self.provider.fetch_snapshots()
        report = CycleReport(status="ok", started_at=now, fetched=len(snapshots))
        if not snapshots:
            log("radar.cycle.empty_batch", severity="warning", provider=getattr(self.provider, "name", None))
            report.status = "skipped"
            return report, []

        with self._state_lock:
            work = _WorkingState(
                tracker=self._tracker.clone(),
                history=self._history.clone(),
                detector=self._detector.clone(),
                snapshots=copy.deepcopy(self._snapshots),
            )

        batch = work.tracker.fill_missing_change_1h(snapshots)
        standard = classify(batch, self.config.standard, standard_rules=self.config.standard_rules)
        micro = classify(batch, self.config.micro_velocity)

        accelerations = {
            snapshot.symbol: work.history.acceleration(snapshot.symbol, snapshot.volume_24h, snapshot.market_cap)
            for snapshot in batch
        }
        for snapshot in batch:
            work.history.record(snapshot.symbol, snapshot.volume_24h, now)
        work.history.prune(now)
        standard = [replace(c, volume_acceleration=accelerations.get(c.symbol)) for c in standard]
        micro = [replace(c, volume_acceleration=accelerations.get(c.symbol)) for c in micro]

        whales = self._enrich_whales(work, micro, standard)
        accumulation = classify_accumulation(
            batch, accelerations, whales, self.config.accumulation, self.config.accumulation_rules
        )
        pre = work.detector.detect(batch, work.tracker.tracks, accelerations, now)

        merged = merge_candidates(accumulation, micro, standard)
        merged = [replace(c, whale=c.whale or whales.get(c.symbol)) for c in merged]
        tracker_report = work.tracker.process(merged, now, protected=pre.symbols)

        alerted = {alert.symbol for alert in pre.alerts}
        promoted = set(tracker_report.promoted)
        promoted.update(work.tracker.apply_pre_ignition(pre.candidates, alerted))
        for snapshot in pre.graduated:
            work.tracker.mark_graduated(snapshot.symbol, PUMPING_PHASE)
            work.alerts.append(self._graduation_alert(snapshot, now))
        for symbol, analysis in whales.items():
            work.tracker.attach_whale(symbol, analysis)

        work.alerts.extend(pre.alerts)
        work.alerts.extend(tracker_report.alerts)
        self._enrich_advice(work, list(tracker_report.created) + sorted(promoted - set(tracker_report.created)))
        self._record_snapshot(work, merged, now)

        with self._state_lock:
            self._tracker = work.tracker
            self._history = work.history
            self._detector = work.detector
            self._snapshots = work.snapshots
        self._persist()

        report.candidates = len(merged)
        report.created = len(tracker_report.created)
        report.updated = len(tracker_report.updated)
        report.promoted = len(promoted)
        report.evicted = len(tracker_report.evicted)
        report.disqualified = len(tracker_report.disqualified)
        report.pre_ignition = len(pre.candidates)
        report.graduated = len(pre.graduated)
        report.relaxed = pre.relaxed
        report.alerts = len(work.alerts)
        report.tracked = len(work.tracker)
        return report, work.alerts

    # ------------------------------------------------------------------
    # enrichment
    def _enrich_whales(
        self,
        work: _WorkingState,
        micro: Sequence[Candidate],
        standard: Sequence[Candidate],
    ) -> dict[str, WhaleAnalysis]:
        if self.whale_detector is None or not self.whale_detector.enabled:
            return {}
        ordered = list(work.detector.watchlist.values()) + list(micro) + list(standard)
        try:
            return self.whale_detector.analyze_batch(
                ordered, limit=self.config.whale_batch_limit, max_workers=self.whale_max_workers
            )
        except Exception as exc:
            log("radar.whale.batch_failed", severity="warning", exc=exc)
            return {}

    def _enrich_advice(self, work: _WorkingState, symbols: Iterable[str]) -> None:
        if self.advisor is None:
            return
        for symbol in list(symbols)[: max(self.advisor_max_per_cycle, 0)]:
            track = work.tracker.get(symbol)
            if track is None:
                continue
            try:
                verdict = self.advisor.evaluate(AdvisorInput.from_track(track))
            except Exception as exc:
                log("radar.advisor.failed", severity="warning", symbol=symbol, exc=exc)
                continue
            work.tracker.attach_advisor(symbol, verdict.to_dict())
            alert = self.advisor.alert_for(verdict, strategy=track.strategy_id.value)
            if alert is not None:
                work.alerts.append(alert)

    @staticmethod
    def _graduation_alert(snapshot: InstrumentSnapshot, now: float) -> RadarAlert:
        return RadarAlert(
            kind="graduation",
            symbol=snapshot.symbol,
            strategy=StrategyId.PRE_IGNITION.value,
            score=None,
            title=f"{snapshot.symbol} graduated: breakout underway",
            metrics={
                "price": snapshot.price,
                "change_1h": snapshot.change_1h,
                "change_24h": snapshot.change_24h,
                "volume_24h": snapshot.volume_24h,
            },
            timestamp=now,
        )

    # ------------------------------------------------------------------
    # snapshot log
    def _record_snapshot(self, work: _WorkingState, merged: Sequence[Candidate], now: float) -> None:
        cfg = self.config.snapshots
        cutoff = now - self.snapshot_retention_sec
        work.snapshots[:] = [s for s in work.snapshots if float(s.get("timestamp", 0)) >= cutoff]
        rows = [candidate.to_dict() for candidate in merged]
        if not rows:
            log("radar.snapshot.empty_cycle", kept=len(work.snapshots))
            return
        latest = work.snapshots[-1] if work.snapshots else None
        if latest is not None and now - float(latest.get("timestamp", 0)) < cfg.merge_window_sec:
            # First row seen for a symbol within the window wins.
            existing = latest.setdefault("candidates", [])
            seen = {row.get("symbol") for row in existing}
            existing.extend(row for row in rows if row["symbol"] not in seen)
        else:
            work.snapshots.append({"timestamp": now, "candidates": rows})

    def _dispatch(self, alerts: Sequence[RadarAlert]) -> None:
        if not alerts or self.notifier is None:
            return
        try:
            self.notifier.dispatch(alerts)
        except Exception as exc:
            log("radar.alert.dispatch_failed", severity="error", exc=exc, count=len(alerts))

    # ------------------------------------------------------------------
    # scheduler
    def start(self) -> bool:
        with self._thread_lock:
            if self._thread is not None and self._thread.is_alive():
                return False
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._loop, args=(stop_event,), name=SCHEDULER_THREAD_NAME, daemon=True
            )
            self._stop_event = stop_event
            self._thread = thread
            thread.start()
        log("radar.scheduler.started", interval=self.interval_sec)
        return True

    def stop(self, *, timeout: float | None = 5.0) -> bool:
        with self._thread_lock:
            thread, stop_event = self._thread, self._stop_event
            self._thread = None
            self._stop_event = None
        if thread is None or stop_event is None:
            return False
        stop_event.set()
        thread.join(timeout=timeout)
        log("radar.scheduler.stopped", alive=thread.is_alive())
        return True

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def _loop(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self.run_cycle()
            stop_event.wait(timeout=self.interval_sec)

    # ------------------------------------------------------------------
    # operational surface
    def _apply_chain(self, chain: str) -> None:
        self.chain_filter = chain
        if self._provider_factory is not None:
            self.provider = self._provider_factory(chain)

    def set_chain_filter(self, chain: str | None) -> str:
        value = (chain or "").strip().lower()
        with self._cycle_lock:
            self._apply_chain(value)
        self._persist()
        log("radar.chain_filter.updated", chain=value or None, provider=getattr(self.provider, "name", None))
        return value

    def purge(self) -> None:
        with self._cycle_lock:
            with self._state_lock:
                self._tracker.clear()
                self._history.clear()
                self._detector.clear()
                self._snapshots = []
                self._last_report = None
            if self.advisor is not None:
                self.advisor.reset()
            if self.state_store is not None:
                self.state_store.clear()
        log("radar.state.purged")

    def crash_context(self) -> dict[str, Any]:
        # Read without locks: the crashing thread may hold them.
        report = self._last_report
        return {
            "cycle": self._cycle_count,
            "provider": getattr(self.provider, "name", None),
            "tracked": len(self._tracker),
            "last_status": report.status if report else None,
            "running": self.running,
        }

    def status(self) -> dict[str, Any]:
        with self._state_lock:
            tracked = len(self._tracker)
            watchlist = len(self._detector.watchlist)
            graduated = len(self._detector.graduated)
            snapshots = len(self._snapshots)
        report = self._last_report
        return {
            "running": self.running,
            "interval_sec": self.interval_sec,
            "provider": getattr(self.provider, "name", None),
            "chain_filter": self.chain_filter,
            "cycles": self._cycle_count,
            "tracked": tracked,
            "watchlist": watchlist,
            "graduated": graduated,
            "snapshots": snapshots,
            "last_cycle": report.to_dict() if report else None,
            "config_version": self.config.version,
        }

    def tracks(self, strategy: StrategyId | str | None = None) -> list[PersistenceTrack]:
        with self._state_lock:
            return self._tracker.persistence_list(strategy)

    def watchlist(self) -> list[dict[str, Any]]:
        with self._state_lock:
            return [candidate.to_dict() for candidate in self._detector.watchlist.values()]

    def latest_snapshot(self) -> Optional[dict[str, Any]]:
        with self._state_lock:
            return copy.deepcopy(self._snapshots[-1]) if self._snapshots else None

    def active_snapshots(self) -> list[dict[str, Any]]:
        cutoff = self._clock() - self.config.snapshots.active_window_sec
        with self._state_lock:
            return [copy.deepcopy(s) for s in self._snapshots if float(s.get("timestamp", 0)) >= cutoff]


def build_orchestrator(settings: Settings | None = None) -> ScanOrchestrator:
    """Wire an orchestrator from settings and restore its persisted state."""

    s = settings or get_settings()
    session = create_http_session()

    def provider_for(chain: str) -> MarketSnapshotProvider:
        return build_provider(replace(s, chain_filter=chain), session=session)

    whales = None
    if s.whale_enabled:
        whales = WhaleDetector(
            s.moralis_api_key,
            session=session,
            cache_ttl_sec=s.whale_cache_ttl_sec,
            timeout=s.http_timeout_sec,
        )
    advisor = None
    if s.ai_enabled:
        llm = LLMAdapter(
            api_key=s.openai_api_key,
            endpoint=s.openai_endpoint,
            model=s.openai_model,
            session=session,
        )
        advisor = RadarAdvisor(llm)

    notifier = AlertNotifier(
        enqueue_telegram_message,
        JLStore(ALERTS_FILE, max_lines=s.alerts_max_records),
        enabled=s.telegram_enabled,
    )
    orchestrator = ScanOrchestrator(
        build_provider(s, session=session),
        config=replace(RadarConfig(), whale_batch_limit=s.whale_batch_limit),
        notifier=notifier,
        whale_detector=whales,
        advisor=advisor,
        state_store=RadarStateStore(resolve_state_file(s)),
        provider_factory=provider_for,
        interval_sec=s.scan_interval_sec,
        chain_filter=s.chain_filter.strip().lower(),
        whale_max_workers=s.whale_max_workers,
        advisor_max_per_cycle=s.ai_max_per_cycle,
        snapshot_retention_sec=s.snapshot_retention_hours * 3600.0,
    )
    orchestrator.restore()
    set_crash_context(orchestrator.crash_context)
    return orchestrator
