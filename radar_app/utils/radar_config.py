"""Named, versioned threshold sets for every radar strategy.

Classification code never embeds numeric thresholds; it reads them from the
frozen structs below so each rule set can be tuned or replaced in tests
without touching the algorithms.
"""

from __future__ import annotations

from dataclasses import dataclass, field

CONFIG_VERSION = 3

MAJOR_SYMBOLS = frozenset(
    {
        "BTC", "ETH", "SOL", "BNB", "XRP", "ADA", "DOGE", "TRX", "TON", "AVAX",
        "SHIB", "DOT", "LINK", "BCH", "NEAR", "LTC", "MATIC", "UNI", "APT", "ICP",
        "FIL", "ATOM", "RENDER", "IMX", "INJ", "OP", "ARB",
    }
)

STABLE_SYMBOLS = frozenset(
    {
        "USDT", "USDC", "DAI", "BUSD", "TUSD", "USDD", "FDUSD", "PYUSD", "USDE",
        "FRAX", "USDP", "GUSD", "LUSD", "SUSD", "USDK", "USDX", "UST", "USTC",
        "EURT", "EURS", "EUROC", "XAUT", "PAXG",
    }
)

WRAPPED_SYMBOLS = frozenset({"WBTC", "WETH", "STETH", "CBETH", "WAVAX", "WSOL", "WBNB"})

EXCLUDED_SYMBOLS = MAJOR_SYMBOLS | STABLE_SYMBOLS | WRAPPED_SYMBOLS


@dataclass(frozen=True, slots=True)
class StrategyConfig:
    """Hard-filter thresholds shared by the classifier strategies."""

    name: str
    min_market_cap: float
    max_market_cap: float
    min_volume: float
    min_change_1h: float
    min_change_24h: float
    min_volume_to_mcap: float
    limit: int
    # Unknown market caps are rejected unless this floor is set.
    unknown_cap_min_volume: float | None = None
    excluded_symbols: frozenset[str] = EXCLUDED_SYMBOLS


@dataclass(frozen=True, slots=True)
class StandardRules:
    """Standard accepts a sustained profile or an early-riser profile."""

    sustained_min_change_1h: float = 0.5
    sustained_min_change_24h: float = 1.0
    early_min_change_1h: float = 1.0
    early_min_change_24h: float = -20.0
    early_max_change_24h: float = 10.0


@dataclass(frozen=True, slots=True)
class AccumulationRules:
    max_change_24h: float = 10.0
    min_score: int = 50
    whale_accumulating_bonus: int = 30
    healthy_concentration: tuple[float, float] = (30.0, 70.0)
    concentration_bonus: int = 10
    acceleration_tiers: tuple[tuple[float, int], ...] = ((1.5, 15), (2.0, 15))
    calm_change_1h: float = 5.0
    calm_bonus: int = 10
    flat_change_24h: float = 5.0
    flat_bonus: int = 10
    healthy_turnover: tuple[float, float] = (0.08, 0.30)
    turnover_bonus: int = 10


STANDARD = StrategyConfig(
    name="standard",
    min_market_cap=50_000,
    max_market_cap=500_000_000,
    min_volume=2_000,
    min_change_1h=-10.0,
    min_change_24h=-20.0,
    min_volume_to_mcap=0.03,
    limit=100,
    unknown_cap_min_volume=50_000,
)

MICRO_VELOCITY = StrategyConfig(
    name="micro_velocity",
    min_market_cap=500_000,
    max_market_cap=50_000_000,
    min_volume=1_000,
    min_change_1h=-5.0,
    min_change_24h=-10.0,
    min_volume_to_mcap=0.02,
    limit=100,
)

ACCUMULATION = StrategyConfig(
    name="accumulation",
    min_market_cap=100_000,
    max_market_cap=100_000_000,
    min_volume=1_000,
    min_change_1h=-15.0,
    min_change_24h=-30.0,
    min_volume_to_mcap=0.01,
    limit=50,
)

STANDARD_RULES = StandardRules()
ACCUMULATION_RULES = AccumulationRules()


@dataclass(frozen=True, slots=True)
class PreIgnitionConfig:
    min_consecutive_hours: int = 2
    since_entry_band: tuple[float, float] = (-15.0, 8.0)
    change_1h_band: tuple[float, float] = (0.5, 25.0)
    min_velocity_ratio: float = 0.08
    unknown_cap_velocity_volume: float = 5_000
    min_absolute_volume: float = 3_000
    distribution_change_1h: float = -5.0
    # Relaxed pass used only when the strict pass finds nothing.
    relaxed_change_24h_band: tuple[float, float] = (-15.0, 15.0)
    relaxed_min_velocity_ratio: float = 0.05
    relaxed_unknown_cap_volume: float = 10_000
    graduation_change_1h: float = 5.0
    # Graduated symbols with no track for this long are forgotten.
    graduated_retention_sec: float = 7 * 24 * 3600
    watchlist_size: int = 10
    alert_threshold: int = 70
    alert_threshold_neutral_acceleration: int = 100


@dataclass(frozen=True, slots=True)
class PreIgnitionScoring:
    base: int = 50
    volume_tiers: tuple[tuple[float, int], ...] = (
        (1_000_000, 30),
        (500_000, 20),
        (100_000, 10),
    )
    dead_volume: float = 10_000
    dead_volume_penalty: int = -20
    live_change_1h: float = 3.0
    sustained_change_24h: float = 10.0
    momentum_bonus: int = 10
    dump_change_1h: float = -5.0
    dump_change_24h: float = -10.0
    dump_penalty: int = -15
    turnover_tiers: tuple[tuple[float, int], ...] = ((0.5, 20), (0.1, 10))
    acceleration_tiers: tuple[tuple[float, int], ...] = ((3.0, 30), (1.5, 15))


@dataclass(frozen=True, slots=True)
class AccelerationConfig:
    window_sec: float = 7 * 24 * 3600
    max_samples: int = 7 * 24
    min_samples: int = 3
    synthetic_turnover: float = 0.03
    clamp: tuple[float, float] = (0.5, 20.0)
    neutral: float = 1.0


@dataclass(frozen=True, slots=True)
class PressureConfig:
    weights: tuple[float, float, float] = (0.6, 0.3, 0.1)
    min_aligned_signals: int = 2
    net_threshold: float = 1.0
    neutral_confidence: float = 50.0


@dataclass(frozen=True, slots=True)
class TrackerConfig:
    ttl_sec: float = 5 * 60
    volume_drop_pct: float = -20.0
    history_interval_sec: float = 15 * 60
    history_max: int = 96
    markov_min_points: int = 5
    alert_milestones: tuple[int, ...] = (3, 6)


@dataclass(frozen=True, slots=True)
class MarkovConfig:
    window: int = 5
    min_points: int = 10
    high_volatility: float = 0.02
    strong_move_pct: float = 3.0
    trend_move_pct: float = 0.5


@dataclass(frozen=True, slots=True)
class SnapshotLogConfig:
    merge_window_sec: float = 2 * 60
    retention_sec: float = 48 * 3600
    active_window_sec: float = 15 * 60


@dataclass(frozen=True, slots=True)
class RadarConfig:
    """Bundle handed to the orchestrator; every field has a tuned default."""

    standard: StrategyConfig = STANDARD
    micro_velocity: StrategyConfig = MICRO_VELOCITY
    accumulation: StrategyConfig = ACCUMULATION
    standard_rules: StandardRules = STANDARD_RULES
    accumulation_rules: AccumulationRules = ACCUMULATION_RULES
    pre_ignition: PreIgnitionConfig = field(default_factory=PreIgnitionConfig)
    pre_ignition_scoring: PreIgnitionScoring = field(default_factory=PreIgnitionScoring)
    acceleration: AccelerationConfig = field(default_factory=AccelerationConfig)
    pressure: PressureConfig = field(default_factory=PressureConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    markov: MarkovConfig = field(default_factory=MarkovConfig)
    snapshots: SnapshotLogConfig = field(default_factory=SnapshotLogConfig)
    whale_batch_limit: int = 10
    version: int = CONFIG_VERSION
