from __future__ import annotations

import copy
from typing import Any, Mapping

from .pressure import calculate_volume_acceleration
from .radar_config import AccelerationConfig


class VolumeHistoryStore:
    """Per-symbol rolling ``(timestamp, volume)`` samples.

    Independent of the persistence tracker so acceleration can be computed
    for symbols that are not tracked yet. Samples older than the configured
    window are dropped on every write, and each symbol keeps at most
    ``config.max_samples`` entries.
    """

    def __init__(self, config: AccelerationConfig | None = None) -> None:
        self.config = config or AccelerationConfig()
        self._samples: dict[str, list[tuple[float, float]]] = {}

    def __len__(self) -> int:
        return len(self._samples)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._samples

    def record(self, symbol: str, volume: float, now: float) -> None:
        if volume <= 0:
            return
        cutoff = now - self.config.window_sec
        samples = [entry for entry in self._samples.get(symbol, []) if entry[0] >= cutoff]
        samples.append((now, float(volume)))
        self._samples[symbol] = samples[-self.config.max_samples :]

    def samples(self, symbol: str) -> list[float]:
        return [volume for _, volume in self._samples.get(symbol, [])]

    def acceleration(self, symbol: str, volume: float, market_cap: float) -> float:
        return calculate_volume_acceleration(
            self.samples(symbol), volume, market_cap, self.config
        )

    def prune(self, now: float) -> int:
        """Drop expired samples and empty symbols; return removed symbol count."""

        cutoff = now - self.config.window_sec
        removed = 0
        for symbol in list(self._samples):
            kept = [entry for entry in self._samples[symbol] if entry[0] >= cutoff]
            if kept:
                self._samples[symbol] = kept
            else:
                del self._samples[symbol]
                removed += 1
        return removed

    def clone(self) -> "VolumeHistoryStore":
        other = VolumeHistoryStore(self.config)
        other._samples = copy.deepcopy(self._samples)
        return other

    def clear(self) -> None:
        self._samples.clear()

    def to_dict(self) -> dict[str, list[list[float]]]:
        return {symbol: [[ts, vol] for ts, vol in entries] for symbol, entries in self._samples.items()}

    def load(self, payload: Mapping[str, Any] | None) -> None:
        self._samples = {}
        if not isinstance(payload, Mapping):
            return
        for symbol, entries in payload.items():
            if not isinstance(entries, (list, tuple)):
                continue
            parsed: list[tuple[float, float]] = []
            for entry in entries:
                try:
                    ts, vol = entry
                    parsed.append((float(ts), float(vol)))
                except (TypeError, ValueError):
                    continue
            if parsed:
                self._samples[str(symbol)] = parsed[-self.config.max_samples :]
