"""Optional commentary from an OpenAI-compatible chat-completions endpoint."""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, MutableMapping, Optional, Sequence

import requests

from ..file_io import atomic_write_text, read_text_or_none
from ..http_client import create_http_session
from ..log import log
from ..paths import CACHE_DIR

_DEFAULT_ENDPOINT = "https://api.openai.com/v1/chat/completions"
_DEFAULT_MODEL = "gpt-4o-mini"

_ACTIONS = {"BUY", "HOLD", "AVOID"}
_TIMINGS = {"EARLY", "MID", "LATE", "VERY_LATE"}
_RISK_LEVELS = {"LOW", "MEDIUM", "HIGH"}

_SYSTEM_PROMPT = (
    "You are an expert cryptocurrency trading analyst. "
    "Always respond with a single valid JSON object and no markdown."
)


@dataclass(slots=True)
class LLMAnalysis:
    symbol: str
    action: str = "HOLD"
    confidence: float = 0.0
    rationale: str = ""
    entry_timing: str = "MID"
    risk_level: str = "MEDIUM"
    is_real_breakout: bool = False
    time_in_uptrend: str = "unknown"
    key_points: list[str] = field(default_factory=list)
    timestamp: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _choice(value: Any, allowed: set[str], default: str) -> str:
    text = str(value or "").strip().upper()
    return text if text in allowed else default


def _build_prompt(context: Mapping[str, Any]) -> str:
    history: Sequence[Any] = context.get("price_history") or []
    recent = ", ".join(f"{float(p):.8g}" for p in list(history)[-10:])
    return (
        "Assess whether this token is at the start of a real breakout or already late.\n\n"
        f"Symbol: {context.get('symbol')}\n"
        f"Price: {context.get('price')}\n"
        f"Change 1h: {float(context.get('change_1h') or 0):.2f}%\n"
        f"Change 24h: {float(context.get('change_24h') or 0):.2f}%\n"
        f"Volume 24h: {float(context.get('volume_24h') or 0):,.0f} USD\n"
        f"Market cap: {float(context.get('market_cap') or 0):,.0f} USD\n"
        f"Recent prices: {recent or 'n/a'}\n\n"
        "Reply with JSON using exactly these keys: "
        '{"action": "BUY|HOLD|AVOID", "confidence": 0-100, "rationale": "max 80 words", '
        '"entry_timing": "EARLY|MID|LATE|VERY_LATE", "is_real_breakout": true|false, '
        '"time_in_uptrend": "N hours|days", "risk_level": "LOW|MEDIUM|HIGH", '
        '"key_points": ["...", "..."]}'
    )


class LLMAdapter:
    """Chat-completions client with a per-symbol on-disk cache.

    ``analyze`` returns ``None`` without an API key or when the request or
    the response parsing fails; the heuristic advisor verdict stands alone
    in that case.
    """

    def __init__(
        self,
        *,
        api_key: str = "",
        endpoint: str = _DEFAULT_ENDPOINT,
        model: str = _DEFAULT_MODEL,
        cache_path: Path | None = None,
        cache_ttl: float = 30.0 * 60.0,
        session: requests.Session | None = None,
        temperature: float = 0.3,
        max_tokens: int = 500,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.api_key = api_key
        self.endpoint = endpoint
        self.model = model
        self.cache_path = Path(cache_path) if cache_path else CACHE_DIR / "llm_analysis.json"
        self.cache_ttl = float(cache_ttl)
        self.session = session or create_http_session()
        self.temperature = float(temperature)
        self.max_tokens = int(max_tokens)
        self.timeout = timeout
        self._clock = clock
        self._cache: MutableMapping[str, Mapping[str, Any]] | None = None
        self.request_count = 0

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    # ------------------------------------------------------------------
    # Cache helpers
    # ------------------------------------------------------------------
    def _load_cache(self) -> MutableMapping[str, Mapping[str, Any]]:
        if self._cache is not None:
            return self._cache
        raw = read_text_or_none(self.cache_path)
        cache: dict[str, Mapping[str, Any]] = {}
        if raw:
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                log("llm.cache.load_error", path=str(self.cache_path))
                payload = {}
            if isinstance(payload, dict):
                cache = {str(k): v for k, v in payload.items() if isinstance(v, Mapping)}
        self._cache = cache
        return cache

    def _read_cached(self, symbol: str) -> Optional[LLMAnalysis]:
        entry = self._load_cache().get(symbol)
        if not entry:
            return None
        stamp = entry.get("timestamp")
        if not isinstance(stamp, (int, float)) or self._clock() - float(stamp) > self.cache_ttl:
            return None
        data = entry.get("data")
        return self._coerce(symbol, data, stamp=float(stamp)) if isinstance(data, Mapping) else None

    def _store_cache(self, symbol: str, raw: Mapping[str, Any]) -> None:
        cache = dict(self._load_cache())
        cache[symbol] = {"timestamp": self._clock(), "data": dict(raw)}
        self._cache = cache
        try:
            atomic_write_text(self.cache_path, json.dumps(cache, ensure_ascii=False, indent=2))
        except OSError as exc:
            log("llm.cache.write_error", path=str(self.cache_path), err=str(exc))

    # ------------------------------------------------------------------
    # API interaction
    # ------------------------------------------------------------------
    def _request(self, prompt: str) -> Optional[str]:
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        body = {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        try:
            response = self.session.post(self.endpoint, headers=headers, data=json.dumps(body), timeout=self.timeout)
        except requests.RequestException as exc:
            log("llm.api.request_failed", err=str(exc))
            return None
        self.request_count += 1
        if response.status_code >= 400:
            log("llm.api.http_error", status=int(response.status_code), body=response.text[:300])
            return None
        try:
            payload = response.json()
        except ValueError:
            log("llm.api.invalid_json")
            return None
        choices = payload.get("choices") if isinstance(payload, Mapping) else None
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], Mapping):
            return None
        message = choices[0].get("message")
        content = message.get("content") if isinstance(message, Mapping) else None
        return content if isinstance(content, str) else None

    def _coerce(self, symbol: str, data: Mapping[str, Any], *, stamp: float) -> LLMAnalysis:
        try:
            confidence = max(0.0, min(float(data.get("confidence") or 0), 100.0))
        except (TypeError, ValueError):
            confidence = 0.0
        points = data.get("key_points")
        return LLMAnalysis(
            symbol=symbol,
            action=_choice(data.get("action"), _ACTIONS, "HOLD"),
            confidence=confidence,
            rationale=str(data.get("rationale") or "").strip(),
            entry_timing=_choice(data.get("entry_timing"), _TIMINGS, "MID"),
            risk_level=_choice(data.get("risk_level"), _RISK_LEVELS, "MEDIUM"),
            is_real_breakout=bool(data.get("is_real_breakout")),
            time_in_uptrend=str(data.get("time_in_uptrend") or "unknown"),
            key_points=[str(p) for p in points][:5] if isinstance(points, list) else [],
            timestamp=stamp,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def analyze(self, context: Mapping[str, Any]) -> Optional[LLMAnalysis]:
        symbol = str(context.get("symbol") or "").upper()
        if not symbol or not self.enabled:
            return None
        cached = self._read_cached(symbol)
        if cached is not None:
            return cached

        content = self._request(_build_prompt(context))
        if not content:
            return None
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError:
            log("llm.api.parse_error", symbol=symbol, sample=content[:200])
            return None
        if not isinstance(parsed, Mapping):
            return None
        self._store_cache(symbol, parsed)
        return self._coerce(symbol, parsed, stamp=self._clock())


__all__ = ["LLMAdapter", "LLMAnalysis"]
