from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any, Mapping, Optional


class StrategyId(str, Enum):
    STANDARD = "standard"
    MICRO_VELOCITY = "micro_velocity"
    ACCUMULATION = "accumulation"
    PRE_IGNITION = "pre_ignition"

    @property
    def rank(self) -> int:
        return _STRATEGY_RANK[self]


# Merge priority and promotion order; a track is never demoted.
_STRATEGY_RANK = {
    StrategyId.STANDARD: 0,
    StrategyId.MICRO_VELOCITY: 1,
    StrategyId.ACCUMULATION: 2,
    StrategyId.PRE_IGNITION: 3,
}


class PressureDirection(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


def _safe_float(value: object) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            numeric = float(stripped)
        except ValueError:
            return None
    else:
        return None
    if math.isnan(numeric) or math.isinf(numeric):
        return None
    return numeric


def _first_number(raw: Mapping[str, Any], *paths: str) -> float:
    """Return the first usable number found under ``paths`` or ``0.0``.

    Paths use dots for nested mappings (``priceChange.h1``).
    """

    for path in paths:
        node: Any = raw
        for part in path.split("."):
            if not isinstance(node, Mapping):
                node = None
                break
            node = node.get(part)
        number = _safe_float(node)
        if number is not None:
            return number
    return 0.0


def _first_text(raw: Mapping[str, Any], *paths: str) -> Optional[str]:
    for path in paths:
        node: Any = raw
        for part in path.split("."):
            if not isinstance(node, Mapping):
                node = None
                break
            node = node.get(part)
        if isinstance(node, str) and node.strip():
            return node.strip()
    return None


@dataclass(frozen=True, slots=True)
class InstrumentSnapshot:
    """One normalised ticker observation; read-only inside the radar."""

    symbol: str
    name: str
    price: float = 0.0
    change_1h: float = 0.0
    change_24h: float = 0.0
    volume_24h: float = 0.0
    market_cap: float = 0.0
    logo: Optional[str] = None
    trade_url: Optional[str] = None
    contract_address: Optional[str] = None
    chain: Optional[str] = None

    @property
    def turnover(self) -> float:
        if self.market_cap <= 0:
            return 0.0
        return self.volume_24h / self.market_cap

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> Optional["InstrumentSnapshot"]:
        """Normalise a CoinGecko, DexScreener or internal ticker mapping.

        Missing or malformed numbers become ``0.0``; a ticker without a
        symbol cannot be tracked and yields ``None``.
        """

        if not isinstance(raw, Mapping):
            return None
        symbol = _first_text(raw, "symbol", "baseToken.symbol")
        if not symbol:
            return None
        return cls(
            symbol=symbol.upper(),
            name=_first_text(raw, "name", "baseToken.name") or symbol.upper(),
            price=_first_number(raw, "price", "current_price", "priceUsd"),
            change_1h=_first_number(
                raw,
                "change_1h",
                "change1h",
                "price_change_percentage_1h_in_currency",
                "price_change_percentage_1h",
                "priceChange.h1",
            ),
            change_24h=_first_number(
                raw,
                "change_24h",
                "change24h",
                "price_change_percentage_24h_in_currency",
                "price_change_percentage_24h",
                "priceChange.h24",
            ),
            volume_24h=_first_number(raw, "volume_24h", "volume24h", "total_volume", "volume.h24"),
            market_cap=_first_number(raw, "market_cap", "marketCap", "fdv"),
            logo=_first_text(raw, "logo", "image", "info.imageUrl"),
            trade_url=_first_text(raw, "trade_url", "tradeUrl", "url"),
            contract_address=_first_text(raw, "contract_address", "contractAddress", "baseToken.address"),
            chain=_first_text(raw, "chain", "chainId"),
        )

    def with_change_1h(self, change_1h: float) -> "InstrumentSnapshot":
        return replace(self, change_1h=change_1h)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True, slots=True)
class PressureReading:
    direction: PressureDirection
    net_buy_pressure: float
    confidence: float


@dataclass(frozen=True, slots=True)
class WhaleAnalysis:
    """Result of the on-chain holder and transfer lookup."""

    symbol: str
    score: float
    signal: str
    trend: str = "NEUTRAL"
    concentration: float = 0.0
    large_transactions: int = 0
    contract_address: Optional[str] = None
    timestamp: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "WhaleAnalysis":
        allowed = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in payload.items() if k in allowed})


@dataclass(slots=True)
class Candidate:
    snapshot: InstrumentSnapshot
    strategy_id: StrategyId
    profile: str = "standard"
    pre_ignition_score: Optional[int] = None
    accumulation_score: Optional[int] = None
    volume_acceleration: Optional[float] = None
    pressure: Optional[PressureReading] = None
    whale: Optional[WhaleAnalysis] = None
    relaxed: bool = False

    @property
    def symbol(self) -> str:
        return self.snapshot.symbol

    def to_dict(self) -> dict[str, Any]:
        payload = self.snapshot.to_dict()
        payload.update(
            {
                "strategy_id": self.strategy_id.value,
                "profile": self.profile,
                "pre_ignition_score": self.pre_ignition_score,
                "accumulation_score": self.accumulation_score,
                "volume_acceleration": self.volume_acceleration,
                "pressure_direction": self.pressure.direction.value if self.pressure else None,
                "net_buy_pressure": self.pressure.net_buy_pressure if self.pressure else None,
                "whale_score": self.whale.score if self.whale else None,
                "relaxed": self.relaxed,
            }
        )
        return payload


@dataclass(slots=True)
class PersistenceTrack:
    symbol: str
    name: str
    strategy_id: StrategyId
    first_seen_price: float
    last_seen_price: float
    entry_timestamp: float
    last_updated: float
    consecutive_hours: int = 1
    previous_change_1h: float = 0.0
    last_seen_change_1h: float = 0.0
    last_seen_change_24h: float = 0.0
    last_seen_volume: float = 0.0
    last_seen_market_cap: float = 0.0
    last_history_update: float = 0.0
    price_history: list[float] = field(default_factory=list)
    markov_state: str = "ACCUMULATION"
    markov_probability: float = 0.0
    pre_ignition_score: Optional[int] = None
    accumulation_score: Optional[int] = None
    volume_acceleration: Optional[float] = None
    pressure_direction: Optional[str] = None
    net_buy_pressure: Optional[float] = None
    alert_sent_level: int = 0
    advisor: Optional[dict[str, Any]] = None
    whale_score: Optional[float] = None
    whale_signal: Optional[str] = None
    social_phase: Optional[str] = None
    logo: Optional[str] = None
    trade_url: Optional[str] = None
    contract_address: Optional[str] = None

    @property
    def change_since_entry_pct(self) -> float:
        if self.first_seen_price <= 0:
            return 0.0
        return (self.last_seen_price - self.first_seen_price) / self.first_seen_price * 100.0

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["strategy_id"] = self.strategy_id.value
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Optional["PersistenceTrack"]:
        allowed = {f.name for f in fields(cls)}
        data = {k: v for k, v in payload.items() if k in allowed}
        try:
            data["strategy_id"] = StrategyId(data.get("strategy_id", StrategyId.STANDARD.value))
            data["price_history"] = [float(p) for p in data.get("price_history") or []]
            if not data.get("last_updated"):
                data["last_updated"] = data.get("entry_timestamp")
            return cls(**data)
        except (TypeError, ValueError):
            return None


@dataclass(frozen=True, slots=True)
class RadarAlert:
    """Fully formed notification payload handed to the alert sinks."""

    kind: str
    symbol: str
    strategy: str
    score: Optional[float]
    title: str
    metrics: dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "symbol": self.symbol,
            "strategy": self.strategy,
            "score": self.score,
            "title": self.title,
            "metrics": dict(self.metrics),
            "timestamp": self.timestamp,
        }
