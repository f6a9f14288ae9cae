"""Volume acceleration and buy/sell pressure estimates.

Both functions are pure: they take the observations they need and return a
number or a reading, leaving history bookkeeping to
:class:`~radar_app.utils.volume_history.VolumeHistoryStore`.
"""

from __future__ import annotations

from typing import Sequence

from .radar_config import AccelerationConfig, PressureConfig
from .radar_models import PressureDirection, PressureReading

_DEFAULT_ACCELERATION = AccelerationConfig()
_DEFAULT_PRESSURE = PressureConfig()


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(value, upper))


def calculate_volume_acceleration(
    samples: Sequence[float],
    current_volume: float,
    market_cap: float,
    config: AccelerationConfig = _DEFAULT_ACCELERATION,
) -> float:
    """Return ``current_volume`` relative to the historical mean volume.

    With fewer than ``config.min_samples`` samples the baseline is synthetic:
    ``config.synthetic_turnover`` of the market cap, clamped to
    ``config.clamp``. Without history and without a market cap the ratio is
    neutral.
    """

    if len(samples) < config.min_samples:
        if market_cap > 0:
            baseline = market_cap * config.synthetic_turnover
            return _clamp(current_volume / baseline, *config.clamp)
        return config.neutral

    average = sum(samples) / len(samples)
    if average <= 0:
        return config.neutral
    return max(0.0, current_volume / average)


def detect_pressure_direction(
    change_1h: float,
    change_24h: float,
    previous_change_1h: float = 0.0,
    config: PressureConfig = _DEFAULT_PRESSURE,
) -> PressureReading:
    momentum = change_1h - previous_change_1h
    signals = (change_1h, change_24h, momentum)
    bullish = sum(1 for value in signals if value > 0)
    bearish = sum(1 for value in signals if value < 0)

    w_1h, w_24h, w_momentum = config.weights
    net = w_1h * change_1h + w_24h * change_24h + w_momentum * momentum

    if bullish >= config.min_aligned_signals and net > config.net_threshold:
        return PressureReading(
            PressureDirection.BULLISH, net, min(100.0, bullish / len(signals) * 100.0)
        )
    if bearish >= config.min_aligned_signals and net < -config.net_threshold:
        return PressureReading(
            PressureDirection.BEARISH, net, min(100.0, bearish / len(signals) * 100.0)
        )
    return PressureReading(PressureDirection.NEUTRAL, net, config.neutral_confidence)
