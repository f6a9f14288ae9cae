"""Market snapshot providers.

A provider returns one batch of normalised :class:`InstrumentSnapshot`
objects per call and raises :class:`ProviderError` when the upstream API is
unavailable. An empty list is a valid answer (the cycle is then skipped).
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Iterable, Mapping, Optional, Protocol

import requests

from .envs import Settings, get_settings
from .http_client import ProviderError, create_http_session, get_json
from .log import log
from .radar_models import InstrumentSnapshot

# CoinGecko categories used to narrow the market list to one ecosystem.
_COINGECKO_CATEGORIES = {
    "ethereum": "ethereum-ecosystem",
    "bsc": "binance-smart-chain",
    "polygon": "polygon-ecosystem",
    "base": "base-ecosystem",
    "arbitrum": "arbitrum-ecosystem",
    "avalanche": "avalanche-ecosystem",
}


class MarketSnapshotProvider(Protocol):
    name: str

    def fetch_snapshots(self) -> list[InstrumentSnapshot]:
        ...


def _normalise(rows: Iterable[Any], *, chain: Optional[str] = None) -> list[InstrumentSnapshot]:
    snapshots: list[InstrumentSnapshot] = []
    seen: set[str] = set()
    for row in rows:
        if not isinstance(row, Mapping):
            continue
        snapshot = InstrumentSnapshot.from_mapping(row)
        if snapshot is None or snapshot.symbol in seen:
            continue
        if chain and snapshot.chain is None:
            snapshot = replace(snapshot, chain=chain)
        seen.add(snapshot.symbol)
        snapshots.append(snapshot)
    return snapshots


def _pair_volume(pair: Mapping[str, Any]) -> float:
    volume = pair.get("volume")
    if not isinstance(volume, Mapping):
        return 0.0
    try:
        return float(volume.get("h24") or 0)
    except (TypeError, ValueError):
        return 0.0


class CoinGeckoProvider:
    name = "coingecko"

    def __init__(
        self,
        *,
        base_url: str = "https://api.coingecko.com/api/v3",
        pages: int = 2,
        per_page: int = 250,
        chain: str = "",
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        max_attempts: int = 3,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.pages = max(int(pages), 1)
        self.per_page = max(min(int(per_page), 250), 1)
        self.chain = chain.strip().lower()
        self.session = session or create_http_session()
        self.timeout = timeout
        self.max_attempts = max_attempts

    def _params(self, page: int) -> dict[str, Any]:
        params: dict[str, Any] = {
            "vs_currency": "usd",
            "order": "market_cap_desc",
            "per_page": self.per_page,
            "page": page,
            "sparkline": "false",
            "price_change_percentage": "1h,24h",
        }
        category = _COINGECKO_CATEGORIES.get(self.chain)
        if category:
            params["category"] = category
        return params

    def fetch_snapshots(self) -> list[InstrumentSnapshot]:
        rows: list[Any] = []
        errors: list[str] = []
        for page in range(1, self.pages + 1):
            try:
                payload = get_json(
                    self.session,
                    f"{self.base_url}/coins/markets",
                    params=self._params(page),
                    timeout=self.timeout,
                    max_attempts=self.max_attempts,
                )
            except ProviderError as exc:
                errors.append(str(exc))
                log("radar.provider.page_failed", severity="warning", provider=self.name, page=page, err=str(exc))
                continue
            if not isinstance(payload, list):
                errors.append(f"page {page}: unexpected payload")
                continue
            rows.extend(payload)
            if len(payload) < self.per_page:
                break

        if not rows and errors:
            raise ProviderError(f"coingecko unavailable: {errors[-1]}")
        snapshots = _normalise(rows, chain=self.chain or None)
        log("radar.provider.fetched", provider=self.name, count=len(snapshots), pages_failed=len(errors))
        return snapshots


class DexScreenerProvider:
    """Trending DEX pairs for one chain, deduplicated by base token."""

    name = "dexscreener"

    def __init__(
        self,
        *,
        chain: str = "solana",
        base_url: str = "https://api.dexscreener.com",
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        max_attempts: int = 3,
        profile_limit: int = 20,
        search_limit: int = 60,
    ) -> None:
        self.chain = (chain or "solana").strip().lower()
        self.base_url = base_url.rstrip("/")
        self.session = session or create_http_session()
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.profile_limit = profile_limit
        self.search_limit = search_limit

    def _get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        return get_json(
            self.session,
            f"{self.base_url}{path}",
            params=params,
            timeout=self.timeout,
            max_attempts=self.max_attempts,
        )

    def _trending_pairs(self) -> list[Mapping[str, Any]]:
        profiles = self._get("/token-profiles/latest/v1")
        if not isinstance(profiles, list):
            return []
        addresses = [
            str(profile.get("tokenAddress"))
            for profile in profiles
            if isinstance(profile, Mapping)
            and str(profile.get("chainId", "")).lower() == self.chain
            and profile.get("tokenAddress")
        ][: self.profile_limit]
        if not addresses:
            return []
        payload = self._get(f"/latest/dex/tokens/{','.join(addresses)}")
        pairs = payload.get("pairs") if isinstance(payload, Mapping) else payload
        return [pair for pair in pairs or [] if isinstance(pair, Mapping)]

    def _search_pairs(self) -> list[Mapping[str, Any]]:
        payload = self._get("/latest/dex/search", params={"q": self.chain})
        pairs = payload.get("pairs") if isinstance(payload, Mapping) else None
        return [
            pair
            for pair in pairs or []
            if isinstance(pair, Mapping) and str(pair.get("chainId", "")).lower() == self.chain
        ][: self.search_limit]

    def fetch_snapshots(self) -> list[InstrumentSnapshot]:
        pairs = self._trending_pairs()
        if not pairs:
            pairs = self._search_pairs()

        # Keep the most liquid pair per token.
        ordered = sorted(pairs, key=_pair_volume, reverse=True)
        snapshots = _normalise(ordered, chain=self.chain)
        log("radar.provider.fetched", provider=self.name, chain=self.chain, count=len(snapshots))
        return snapshots


def build_provider(settings: Optional[Settings] = None, *, session: Optional[requests.Session] = None) -> MarketSnapshotProvider:
    s = settings or get_settings()
    if s.resolved_provider() == "dexscreener":
        return DexScreenerProvider(
            chain=s.chain_filter or "solana",
            base_url=s.dexscreener_base_url,
            session=session,
            timeout=s.http_timeout_sec,
            max_attempts=s.http_max_attempts,
        )
    return CoinGeckoProvider(
        base_url=s.coingecko_base_url,
        pages=s.coingecko_pages,
        per_page=s.coingecko_per_page,
        chain=s.chain_filter,
        session=session,
        timeout=s.http_timeout_sec,
        max_attempts=s.http_max_attempts,
    )
