"""Discrete Markov regime labelling for tracked price histories.

A history is cut into overlapping windows, each window is labelled with a
:class:`MarketState`, and the empirical transition matrix of that label
sequence gives the most probable next regime. Matrices are rebuilt on every
call from the track's own history and never shared between symbols.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

import numpy as np

from .radar_config import MarkovConfig

_DEFAULT_CONFIG = MarkovConfig()


class MarketState(str, Enum):
    ACCUMULATION = "ACCUMULATION"
    BULLISH_TREND = "BULLISH_TREND"
    BEARISH_TREND = "BEARISH_TREND"
    EUPHORIA = "EUPHORIA"
    PANIC = "PANIC"
    UNCERTAIN = "UNCERTAIN"


STATES: tuple[MarketState, ...] = tuple(MarketState)
_INDEX = {state: position for position, state in enumerate(STATES)}

# States the window classifier can emit; UNCERTAIN is reserved.
_OBSERVABLE = tuple(state for state in STATES if state is not MarketState.UNCERTAIN)


@dataclass(frozen=True, slots=True)
class MarkovPrediction:
    current: MarketState
    predicted: MarketState
    probability: float
    vector: dict[str, float]


def classify_window(prices: Sequence[float], config: MarkovConfig = _DEFAULT_CONFIG) -> MarketState:
    if len(prices) < 2:
        return MarketState.ACCUMULATION
    window = np.asarray(prices, dtype=float)
    start, end = float(window[0]), float(window[-1])
    mean = float(window.mean())
    if start <= 0 or mean <= 0 or not np.isfinite(window).all():
        return MarketState.ACCUMULATION

    change = (end - start) / start * 100.0
    volatility = float(window.std()) / mean

    if abs(change) < config.trend_move_pct and volatility < config.high_volatility:
        return MarketState.ACCUMULATION
    if change > config.strong_move_pct and volatility > config.high_volatility:
        return MarketState.EUPHORIA
    if change < -config.strong_move_pct and volatility > config.high_volatility:
        return MarketState.PANIC
    if change > config.trend_move_pct:
        return MarketState.BULLISH_TREND
    if change < -config.trend_move_pct:
        return MarketState.BEARISH_TREND
    return MarketState.ACCUMULATION


def to_state_sequence(prices: Sequence[float], config: MarkovConfig = _DEFAULT_CONFIG) -> list[MarketState]:
    size = config.window
    return [
        classify_window(prices[end - size : end], config)
        for end in range(size, len(prices) + 1)
    ]


def build_transition_matrix(states: Sequence[MarketState]) -> np.ndarray:
    """Row-stochastic matrix of observed transitions.

    A state with no outgoing transitions keeps all probability on itself.
    """

    size = len(STATES)
    counts = np.zeros((size, size), dtype=float)
    for current, following in zip(states, states[1:]):
        counts[_INDEX[current], _INDEX[following]] += 1.0

    totals = counts.sum(axis=1)
    matrix = np.eye(size, dtype=float)
    observed = totals > 0
    matrix[observed] = counts[observed] / totals[observed][:, None]
    return matrix


def fallback_prediction() -> MarkovPrediction:
    share = 1.0 / len(_OBSERVABLE)
    vector = {state.value: (share if state in _OBSERVABLE else 0.0) for state in STATES}
    return MarkovPrediction(
        current=MarketState.ACCUMULATION,
        predicted=MarketState.ACCUMULATION,
        probability=0.0,
        vector=vector,
    )


def predict(prices: Sequence[float], config: MarkovConfig = _DEFAULT_CONFIG) -> MarkovPrediction:
    if len(prices) < config.min_points:
        return fallback_prediction()

    states = to_state_sequence(prices, config)
    if not states:
        return fallback_prediction()

    current = states[-1]
    row = build_transition_matrix(states)[_INDEX[current]]
    # argmax returns the first maximum, i.e. enum declaration order on ties.
    best = int(np.argmax(row))
    return MarkovPrediction(
        current=current,
        predicted=STATES[best],
        probability=float(row[best]),
        vector={state.value: float(row[_INDEX[state]]) for state in STATES},
    )
