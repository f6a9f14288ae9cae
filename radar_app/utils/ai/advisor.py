"""Rule-based entry advisor with an optional LLM second opinion.

The heuristic score starts at 50 and is pushed up or down by turnover,
freshness, short-term stability, trend consistency and whale interest.
Only a score of at least 75 without a disqualifying flag is a match, and
only matches get a trading plan.
"""

from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Optional

from ..log import log
from ..radar_models import PersistenceTrack, RadarAlert
from .llm_adapter import LLMAdapter

MATCH_SCORE = 75
_BLOCKING_FLAGS = {"DUMPING_NOW", "ALREADY_PUMPED"}


@dataclass(frozen=True, slots=True)
class AdvisorInput:
    symbol: str
    price: float
    change_1h: float
    change_24h: float
    volume_24h: float
    market_cap: float
    volume_acceleration: float = 1.0
    whale_score: Optional[float] = None
    price_history: tuple[float, ...] = ()

    @property
    def turnover(self) -> float:
        return self.volume_24h / self.market_cap if self.market_cap > 0 else 0.0

    @classmethod
    def from_track(cls, track: PersistenceTrack) -> "AdvisorInput":
        return cls(
            symbol=track.symbol,
            price=track.last_seen_price,
            change_1h=track.last_seen_change_1h,
            change_24h=track.last_seen_change_24h,
            volume_24h=track.last_seen_volume,
            market_cap=track.last_seen_market_cap,
            volume_acceleration=track.volume_acceleration or 1.0,
            whale_score=track.whale_score,
            price_history=tuple(track.price_history),
        )

    def to_context(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["price_history"] = list(self.price_history)
        return payload


@dataclass(slots=True)
class TradingPlan:
    trend_score: int
    trend: str
    horizon: str
    entry_ideal: float
    safe_zone: tuple[float, float]
    pullback_price: float
    max_entry_price: float
    stop_loss: float
    take_profit_1: float
    take_profit_2: float
    risk_reward: float
    status: str
    cause: str
    direction: str = "LONG"

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["safe_zone"] = list(self.safe_zone)
        return payload


@dataclass(slots=True)
class AdvisorVerdict:
    symbol: str
    score: int
    is_match: bool
    reason: str
    flags: list[str] = field(default_factory=list)
    plan: Optional[TradingPlan] = None
    llm: Optional[dict[str, Any]] = None
    timestamp: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "score": self.score,
            "is_match": self.is_match,
            "reason": self.reason,
            "flags": list(self.flags),
            "plan": self.plan.to_dict() if self.plan else None,
            "llm": self.llm,
            "timestamp": self.timestamp,
        }


def confirm_trend(data: AdvisorInput) -> tuple[int, str]:
    """Approximate the higher-timeframe trend from 24h and 1h changes."""

    score = 0
    if data.change_24h > 15:
        score += 2
    elif data.change_24h > 5:
        score += 1
    elif data.change_24h < -10:
        score -= 2
    elif data.change_24h < 0:
        score -= 1

    if data.change_1h > 5:
        score += 1
    elif data.change_1h < -5:
        score -= 1

    if data.volume_acceleration > 2.0:
        score += 1

    if score >= 3:
        label = "Strong Uptrend"
    elif score >= 1:
        label = "Weak Uptrend"
    elif score >= -1:
        label = "Neutral"
    else:
        label = "Downtrend"
    return score, label


def build_trading_plan(data: AdvisorInput) -> TradingPlan:
    trend_score, trend = confirm_trend(data)
    entry = data.price
    strong = trend_score >= 2

    pullback = entry * (1 - (0.02 if strong else 0.04))
    max_entry = entry * 1.05
    if strong:
        stop_loss, tp1, tp2 = entry * 0.95, entry * 1.10, entry * 1.20
    else:
        stop_loss, tp1, tp2 = entry * 0.97, entry * 1.05, entry * 1.08

    risk = entry - stop_loss
    reward = tp1 - entry
    if trend_score >= 3:
        cause = "volume breakout with strong uptrend confirmation"
    elif trend_score >= 1:
        cause = "volume breakout in a weak uptrend"
    else:
        cause = "volume breakout against the trend"

    return TradingPlan(
        trend_score=trend_score,
        trend=trend,
        horizon="Scalping (< 1d)" if data.turnover > 0.5 else "Swing (3-7d)",
        entry_ideal=entry,
        safe_zone=(entry, entry * 1.025),
        pullback_price=pullback,
        max_entry_price=max_entry,
        stop_loss=stop_loss,
        take_profit_1=tp1,
        take_profit_2=tp2,
        risk_reward=reward / risk if risk > 0 else 0.0,
        status="LATE_PULLBACK_ONLY" if data.price > max_entry else "ACTIVE",
        cause=cause,
    )


def heuristic_score(data: AdvisorInput) -> tuple[int, list[str]]:
    score = 50
    flags: list[str] = []

    if data.market_cap > 0:
        turnover = data.turnover
        if turnover > 2.0:
            score -= 30
            flags.append("SUSPICIOUS_VOLUME")
        elif turnover > 0.5:
            score += 20
        elif turnover < 0.05:
            score -= 20
            flags.append("LOW_INTEREST")
        else:
            score += 10
    elif data.volume_24h < 10_000:
        score -= 40
        flags.append("GHOST_TOKEN")
    else:
        score += 5

    if data.change_24h > 15:
        score -= 40
        flags.append("ALREADY_PUMPED")

    if data.change_1h > 100:
        score -= 30
        flags.append("VOLATILE_PUMP")
    elif data.change_1h < -5:
        score -= 50
        flags.append("DUMPING_NOW")
    elif 5 < data.change_1h < 20:
        score += 20

    if data.change_1h > 0 and data.change_24h < 0:
        score -= 20
        flags.append("DEAD_CAT_BOUNCE")
    if data.change_1h > 0 and 0 < data.change_24h < 15:
        score += 20

    if data.whale_score is not None and data.whale_score > 70:
        score += 25

    return max(0, min(score, 100)), flags


class RadarAdvisor:
    def __init__(
        self,
        llm: Optional[LLMAdapter] = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.llm = llm
        self._clock = clock
        self._lock = threading.Lock()
        self._alerted: set[tuple[str, str]] = set()

    def evaluate(self, data: AdvisorInput) -> AdvisorVerdict:
        score, flags = heuristic_score(data)
        is_match = score >= MATCH_SCORE and not _BLOCKING_FLAGS.intersection(flags)
        if is_match:
            reason = "Prime setup"
        elif score < 50:
            reason = "Rejected: " + (", ".join(flags) or "weak profile")
        else:
            reason = "Moderate opportunity"

        verdict = AdvisorVerdict(
            symbol=data.symbol,
            score=score,
            is_match=is_match,
            reason=reason,
            flags=flags,
            plan=build_trading_plan(data) if is_match else None,
            timestamp=self._clock(),
        )
        if self.llm is not None and self.llm.enabled:
            analysis = self.llm.analyze(data.to_context())
            verdict.llm = analysis.to_dict() if analysis else None
        log("radar.advisor.verdict", symbol=data.symbol, score=score, match=is_match, flags=flags)
        return verdict

    def alert_for(self, verdict: AdvisorVerdict, *, strategy: str) -> Optional[RadarAlert]:
        """Return an alert once per (symbol, trend) pair for matching verdicts."""

        if not verdict.is_match or verdict.plan is None:
            return None
        key = (verdict.symbol, verdict.plan.trend)
        with self._lock:
            if key in self._alerted:
                return None
            self._alerted.add(key)
        plan = verdict.plan
        return RadarAlert(
            kind="advisor",
            symbol=verdict.symbol,
            strategy=strategy,
            score=float(verdict.score),
            title=f"{verdict.symbol}: {plan.trend}, entry plan ready",
            metrics={
                "price": plan.entry_ideal,
                "safe_zone": list(plan.safe_zone),
                "pullback_price": plan.pullback_price,
                "stop_loss": plan.stop_loss,
                "take_profit_1": plan.take_profit_1,
                "take_profit_2": plan.take_profit_2,
                "risk_reward": round(plan.risk_reward, 2),
                "horizon": plan.horizon,
                "status": plan.status,
            },
            timestamp=verdict.timestamp,
        )

    def reset(self) -> None:
        with self._lock:
            self._alerted.clear()
