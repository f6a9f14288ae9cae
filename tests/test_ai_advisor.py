from __future__ import annotations

import json
from typing import Any

import pytest
import requests

from radar_app.utils.ai.advisor import (
    AdvisorInput,
    RadarAdvisor,
    build_trading_plan,
    confirm_trend,
    heuristic_score,
)
from radar_app.utils.ai.llm_adapter import LLMAdapter


def _input(**overrides: Any) -> AdvisorInput:
    values: dict[str, Any] = {
        "symbol": "FOO",
        "price": 1.0,
        "change_1h": 8.0,
        "change_24h": 6.0,
        "volume_24h": 1_200_000,
        "market_cap": 2_000_000,
    }
    values.update(overrides)
    return AdvisorInput(**values)


class _Response:
    def __init__(self, payload: Any = None, status_code: int = 200, text: str = "") -> None:
        self._payload = payload
        self.status_code = status_code
        self.text = text

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _Session:
    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.bodies: list[dict[str, Any]] = []

    def post(self, url: str, headers=None, data=None, timeout=None):
        self.bodies.append(json.loads(data))
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def _completion(content: Any) -> _Response:
    text = content if isinstance(content, str) else json.dumps(content)
    return _Response({"choices": [{"message": {"content": text}}]})


# ----------------------------------------------------------------------
# heuristic advisor


def test_prime_setup_scores_as_match() -> None:
    score, flags = heuristic_score(_input())

    assert score == 100
    assert flags == []


@pytest.mark.parametrize(
    ("overrides", "flag"),
    [
        ({"volume_24h": 5_000_000}, "SUSPICIOUS_VOLUME"),
        ({"volume_24h": 50_000}, "LOW_INTEREST"),
        ({"market_cap": 0, "volume_24h": 5_000}, "GHOST_TOKEN"),
        ({"change_24h": 25.0}, "ALREADY_PUMPED"),
        ({"change_1h": -8.0}, "DUMPING_NOW"),
        ({"change_1h": 150.0}, "VOLATILE_PUMP"),
        ({"change_24h": -4.0}, "DEAD_CAT_BOUNCE"),
    ],
)
def test_heuristic_flags(overrides: dict[str, Any], flag: str) -> None:
    _score, flags = heuristic_score(_input(**overrides))

    assert flag in flags


def test_whale_interest_adds_points() -> None:
    base, _ = heuristic_score(_input(change_1h=1.0, change_24h=-1.0))
    boosted, _ = heuristic_score(_input(change_1h=1.0, change_24h=-1.0, whale_score=80.0))

    assert boosted - base == 25


def test_confirm_trend_labels() -> None:
    assert confirm_trend(_input(change_24h=20.0, change_1h=6.0)) == (3, "Strong Uptrend")
    assert confirm_trend(_input(change_24h=6.0, change_1h=1.0)) == (1, "Weak Uptrend")
    assert confirm_trend(_input(change_24h=-2.0, change_1h=1.0)) == (-1, "Neutral")
    assert confirm_trend(_input(change_24h=-12.0, change_1h=-6.0)) == (-3, "Downtrend")


def test_trading_plan_levels() -> None:
    weak = build_trading_plan(_input(change_24h=6.0, change_1h=1.0, price=2.0))
    assert weak.stop_loss == pytest.approx(1.94)
    assert weak.take_profit_1 == pytest.approx(2.10)
    assert weak.take_profit_2 == pytest.approx(2.16)
    assert weak.pullback_price == pytest.approx(1.92)
    assert weak.risk_reward == pytest.approx(0.1 / 0.06)
    assert weak.horizon == "Scalping (< 1d)"
    assert weak.status == "ACTIVE"

    strong = build_trading_plan(_input(change_24h=20.0, change_1h=6.0, volume_24h=200_000))
    assert strong.stop_loss == pytest.approx(0.95)
    assert strong.take_profit_1 == pytest.approx(1.10)
    assert strong.risk_reward == pytest.approx(2.0)
    assert strong.horizon == "Swing (3-7d)"


def test_advisor_alerts_once_per_symbol_and_trend() -> None:
    advisor = RadarAdvisor(clock=lambda: 7.0)
    verdict = advisor.evaluate(_input())

    assert verdict.is_match is True
    assert verdict.reason == "Prime setup"
    assert verdict.llm is None

    first = advisor.alert_for(verdict, strategy="standard")
    assert first is not None
    assert first.kind == "advisor"
    assert first.timestamp == 7.0
    assert advisor.alert_for(verdict, strategy="standard") is None

    advisor.reset()
    assert advisor.alert_for(verdict, strategy="standard") is not None


def test_blocking_flag_prevents_match() -> None:
    verdict = RadarAdvisor().evaluate(_input(change_1h=-8.0))

    assert verdict.is_match is False
    assert verdict.plan is None
    assert verdict.reason.startswith("Rejected")
    assert RadarAdvisor().alert_for(verdict, strategy="standard") is None


# ----------------------------------------------------------------------
# LLM adapter


def test_llm_disabled_without_key(tmp_path) -> None:
    adapter = LLMAdapter(cache_path=tmp_path / "llm.json", session=_Session())

    assert adapter.enabled is False
    assert adapter.analyze({"symbol": "FOO"}) is None


def test_llm_analysis_is_normalised_and_cached(tmp_path) -> None:
    session = _Session(
        _completion(
            {
                "action": "buy",
                "confidence": 140,
                "rationale": "  fresh breakout  ",
                "entry_timing": "EARLY",
                "risk_level": "EXTREME",
                "is_real_breakout": True,
                "key_points": ["volume", "structure", 3, "a", "b", "c"],
            }
        )
    )
    now = {"t": 1_000.0}
    adapter = LLMAdapter(api_key="sk-test", cache_path=tmp_path / "llm.json", session=session, clock=lambda: now["t"])

    analysis = adapter.analyze(_input().to_context())

    assert analysis is not None
    assert analysis.action == "BUY"
    assert analysis.confidence == 100.0
    assert analysis.rationale == "fresh breakout"
    assert analysis.risk_level == "MEDIUM"
    assert analysis.key_points == ["volume", "structure", "3", "a", "b"]
    assert session.bodies[0]["response_format"] == {"type": "json_object"}
    assert "Symbol: FOO" in session.bodies[0]["messages"][1]["content"]

    now["t"] += 60
    assert adapter.analyze({"symbol": "foo"}).action == "BUY"
    assert adapter.request_count == 1
    assert "FOO" in json.loads((tmp_path / "llm.json").read_text(encoding="utf-8"))


@pytest.mark.parametrize(
    "response",
    [
        _Response(status_code=500, text="upstream"),
        _Response(ValueError("not json")),
        _Response({"choices": []}),
        _completion("not a json object"),
        _completion([1, 2]),
        requests.ConnectionError("reset"),
    ],
)
def test_llm_failures_return_none(tmp_path, response) -> None:
    adapter = LLMAdapter(api_key="sk-test", cache_path=tmp_path / "llm.json", session=_Session(response))

    assert adapter.analyze({"symbol": "FOO"}) is None


def test_advisor_attaches_llm_opinion(tmp_path) -> None:
    session = _Session(_completion({"action": "HOLD", "confidence": 55}))
    llm = LLMAdapter(api_key="sk-test", cache_path=tmp_path / "llm.json", session=session)

    verdict = RadarAdvisor(llm).evaluate(_input())

    assert verdict.llm is not None
    assert verdict.llm["action"] == "HOLD"
    assert verdict.to_dict()["llm"]["confidence"] == 55.0
