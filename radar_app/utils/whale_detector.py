"""On-chain whale activity for small-cap candidates.

Contract addresses are resolved through the DexScreener search API; holder
concentration and recent transfers come from Moralis when an API key is
configured. Every lookup is best effort: a failure yields ``None`` and the
candidate simply goes without whale data this cycle.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

import requests

from .cache_kv import TTLKV
from .http_client import ProviderError, create_http_session, get_json
from .log import log
from .paths import CACHE_DIR
from .radar_models import Candidate, WhaleAnalysis

DEXSCREENER_SEARCH_URL = "https://api.dexscreener.com/latest/dex/search"
MORALIS_EVM_URL = "https://deep-index.moralis.io/api/v2.2"
MORALIS_SOLANA_URL = "https://solana-gateway.moralis.io/token/mainnet"
_ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

_EVM_CHAIN_IDS = {"ethereum": "0x1", "polygon": "0x89", "bsc": "0x38"}
_DEX_CHAIN_ALIASES = {
    "ethereum": ("ethereum", "ether"),
    "polygon": ("polygon",),
    "bsc": ("bsc",),
    "solana": ("solana",),
}


@dataclass(frozen=True, slots=True)
class WhaleMetrics:
    concentration: float
    large_transactions: int
    trend: str


def calculate_metrics(concentration: float, transfers: Sequence[Mapping[str, Any]]) -> WhaleMetrics:
    buys = sum(1 for transfer in transfers if transfer.get("type") == "BUY")
    sells = sum(1 for transfer in transfers if transfer.get("type") == "SELL")
    trend = "NEUTRAL"
    if len(transfers) > 5:
        if buys > sells:
            trend = "ACCUMULATING"
        elif sells > buys:
            trend = "DISTRIBUTING"
    return WhaleMetrics(concentration=concentration, large_transactions=len(transfers), trend=trend)


def calculate_whale_score(metrics: WhaleMetrics) -> float:
    score = 50.0
    if metrics.trend == "ACCUMULATING":
        score += 40
    elif metrics.trend == "DISTRIBUTING":
        score -= 40
    score += min(metrics.large_transactions * 2, 20)
    if metrics.concentration > 0:
        if 30 <= metrics.concentration <= 70:
            score += 20
        elif metrics.concentration > 80:
            score -= 20
    return max(0.0, min(100.0, score))


def determine_signal(score: float, metrics: WhaleMetrics) -> str:
    if metrics.trend == "DISTRIBUTING":
        return "STRONG_SELL" if score < 30 else "SELL"
    if score >= 90:
        return "STRONG_BUY"
    if score >= 75:
        return "BUY"
    if score >= 40:
        return "HOLD"
    if score >= 25:
        return "SELL"
    return "STRONG_SELL"


class WhaleDetector:
    """Batch whale analysis with a 30 minute on-disk cache."""

    def __init__(
        self,
        api_key: str = "",
        *,
        session: Optional[requests.Session] = None,
        cache: Optional[TTLKV] = None,
        cache_path: Optional[Path] = None,
        cache_ttl_sec: float = 1800.0,
        timeout: float = 10.0,
        max_attempts: int = 2,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.api_key = api_key
        self.session = session or create_http_session()
        self.cache = cache or TTLKV(cache_path or CACHE_DIR / "whales.json", ttl_sec=cache_ttl_sec, clock=clock)
        self.timeout = timeout
        self.max_attempts = max_attempts
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _get(self, url: str, *, params: Mapping[str, Any] | None = None, moralis: bool = False) -> Any:
        headers = {"X-API-Key": self.api_key} if moralis else None
        return get_json(
            self.session,
            url,
            params=params,
            headers=headers,
            timeout=self.timeout,
            max_attempts=self.max_attempts,
        )

    # ------------------------------------------------------------------
    # lookups
    def resolve_contract_address(self, symbol: str, chain: str = "ethereum") -> Optional[str]:
        payload = self._get(DEXSCREENER_SEARCH_URL, params={"q": symbol})
        pairs = payload.get("pairs") if isinstance(payload, Mapping) else None
        if not isinstance(pairs, list):
            return None

        wanted = symbol.upper()
        matching = [
            pair
            for pair in pairs
            if isinstance(pair, Mapping)
            and str((pair.get("baseToken") or {}).get("symbol", "")).upper() == wanted
            and (pair.get("baseToken") or {}).get("address")
        ]
        aliases = _DEX_CHAIN_ALIASES.get(chain, ("ethereum",))
        for pair in matching:
            pair_chain = str(pair.get("chainId") or "").lower()
            if any(alias in pair_chain for alias in aliases):
                return pair["baseToken"]["address"]
        if matching:
            return matching[0]["baseToken"]["address"]
        return None

    def fetch_concentration(self, address: str, chain: str) -> float:
        if chain == "solana":
            # Largest accounts come without total supply, so no share can be computed.
            return 0.0
        payload = self._get(
            f"{MORALIS_EVM_URL}/erc20/{address}/owners",
            params={"chain": _EVM_CHAIN_IDS.get(chain, "0x1"), "limit": 10},
            moralis=True,
        )
        holders = payload.get("result") if isinstance(payload, Mapping) else None
        total = 0.0
        for holder in holders or []:
            try:
                total += float(holder.get("percentage_relative") or 0)
            except (TypeError, ValueError, AttributeError):
                continue
        return total

    def fetch_transfers(self, address: str, chain: str) -> list[dict[str, Any]]:
        if chain == "solana":
            payload = self._get(f"{MORALIS_SOLANA_URL}/{address}/transfers", params={"limit": 20}, moralis=True)
            rows = payload if isinstance(payload, list) else []
            return [{"type": "BUY", "amount": row.get("amount")} for row in rows if isinstance(row, Mapping)]

        payload = self._get(
            f"{MORALIS_EVM_URL}/erc20/{address}/transfers",
            params={"chain": _EVM_CHAIN_IDS.get(chain, "0x1"), "limit": 20},
            moralis=True,
        )
        rows = payload.get("result") if isinstance(payload, Mapping) else None
        transfers: list[dict[str, Any]] = []
        for row in rows or []:
            if not isinstance(row, Mapping) or row.get("value") is None:
                continue
            kind = "BUY" if str(row.get("from_address", "")).lower() == _ZERO_ADDRESS else "SELL"
            transfers.append({"type": kind, "amount": row.get("value")})
        return transfers

    # ------------------------------------------------------------------
    # analysis
    def analyze(self, symbol: str, contract_address: Optional[str] = None, chain: Optional[str] = None) -> Optional[WhaleAnalysis]:
        chain = (chain or "ethereum").lower()
        cache_key = f"{symbol.upper()}-{chain}"
        cached = self.cache.get(cache_key)
        if isinstance(cached, Mapping):
            return WhaleAnalysis.from_dict(cached)
        if not self.enabled:
            return None

        try:
            address = contract_address or self.resolve_contract_address(symbol, chain)
            if not address:
                log("whale.unresolved", symbol=symbol, chain=chain)
                return None
            if not address.startswith("0x"):
                chain = "solana"
            concentration = self.fetch_concentration(address, chain)
            transfers = self.fetch_transfers(address, chain)
        except ProviderError as exc:
            log("whale.lookup_failed", severity="warning", symbol=symbol, err=str(exc))
            return None

        metrics = calculate_metrics(concentration, transfers)
        score = calculate_whale_score(metrics)
        analysis = WhaleAnalysis(
            symbol=symbol,
            score=score,
            signal=determine_signal(score, metrics),
            trend=metrics.trend,
            concentration=round(metrics.concentration, 4),
            large_transactions=metrics.large_transactions,
            contract_address=address,
            timestamp=self._clock(),
        )
        self.cache.set(cache_key, analysis.to_dict())
        log("whale.analysis", symbol=symbol, score=score, signal=analysis.signal, trend=metrics.trend)
        return analysis

    def analyze_batch(
        self,
        candidates: Iterable[Candidate],
        *,
        limit: int = 10,
        max_workers: int = 4,
    ) -> dict[str, WhaleAnalysis]:
        """Analyse up to ``limit`` unique symbols with at most ``max_workers`` in flight."""

        unique: dict[str, Candidate] = {}
        for candidate in candidates:
            if len(unique) >= limit:
                break
            unique.setdefault(candidate.symbol, candidate)
        if not unique:
            return {}

        def _one(candidate: Candidate) -> Optional[WhaleAnalysis]:
            snapshot = candidate.snapshot
            return self.analyze(snapshot.symbol, snapshot.contract_address, snapshot.chain)

        results: dict[str, WhaleAnalysis] = {}
        with ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="whale") as pool:
            for symbol, analysis in zip(unique, pool.map(_one, unique.values())):
                if analysis is not None:
                    results[symbol] = analysis
        self.cache.prune()
        return results
