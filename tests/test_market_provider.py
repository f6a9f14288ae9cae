from __future__ import annotations

from typing import Any

import pytest
import requests

from radar_app.utils.envs import Settings
from radar_app.utils.http_client import ProviderError, get_json
from radar_app.utils.market_provider import CoinGeckoProvider, DexScreenerProvider, build_provider


class _Response:
    def __init__(self, payload: Any = None, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _Session:
    """Routes GET requests by URL suffix to queued responses."""

    def __init__(self, routes: dict[str, list[Any]]) -> None:
        self.routes = {key: list(value) for key, value in routes.items()}
        self.calls: list[tuple[str, dict[str, Any] | None]] = []

    def get(self, url: str, params=None, headers=None, timeout=None):
        self.calls.append((url, dict(params) if params else None))
        for suffix, queue in self.routes.items():
            if url.endswith(suffix):
                item = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(item, BaseException):
                    raise item
                return item
        raise AssertionError(f"unexpected url {url}")


def _gecko_row(symbol: str, **overrides: Any) -> dict[str, Any]:
    row = {
        "symbol": symbol.lower(),
        "name": symbol.title(),
        "current_price": 1.5,
        "price_change_percentage_1h_in_currency": 2.0,
        "price_change_percentage_24h_in_currency": 5.0,
        "total_volume": 250_000,
        "market_cap": 3_000_000,
        "image": "https://img/x.png",
    }
    row.update(overrides)
    return row


def test_get_json_retries_transient_status() -> None:
    session = _Session({"/ping": [_Response(status_code=503), _Response({"ok": True})]})

    assert get_json(session, "https://api/ping", initial_backoff=0.0) == {"ok": True}
    assert len(session.calls) == 2


def test_get_json_raises_provider_error() -> None:
    exhausted = _Session({"/ping": [_Response(status_code=429)]})
    with pytest.raises(ProviderError):
        get_json(exhausted, "https://api/ping", max_attempts=2, initial_backoff=0.0)
    assert len(exhausted.calls) == 2

    not_found = _Session({"/ping": [_Response(status_code=404)]})
    with pytest.raises(ProviderError):
        get_json(not_found, "https://api/ping", initial_backoff=0.0)
    assert len(not_found.calls) == 1

    bad_json = _Session({"/ping": [_Response(ValueError("no json"))]})
    with pytest.raises(ProviderError):
        get_json(bad_json, "https://api/ping", initial_backoff=0.0)


def test_get_json_retries_connection_errors() -> None:
    session = _Session({"/ping": [requests.ConnectionError("reset"), _Response([1])]})

    assert get_json(session, "https://api/ping", initial_backoff=0.0) == [1]


def test_coingecko_normalises_rows_and_applies_category() -> None:
    rows = [_gecko_row("foo"), _gecko_row("bar", total_volume=None), "junk", _gecko_row("foo"), {"name": "nosymbol"}]
    session = _Session({"/coins/markets": [_Response(rows)]})
    provider = CoinGeckoProvider(session=session, chain="BSC", pages=3, per_page=250, max_attempts=1)

    snapshots = provider.fetch_snapshots()

    assert [s.symbol for s in snapshots] == ["FOO", "BAR"]
    foo = snapshots[0]
    assert (foo.price, foo.change_1h, foo.change_24h) == (1.5, 2.0, 5.0)
    assert foo.market_cap == 3_000_000
    assert foo.logo == "https://img/x.png"
    assert foo.chain == "bsc"
    assert snapshots[1].volume_24h == 0.0
    # A short page ends pagination.
    assert len(session.calls) == 1
    assert session.calls[0][1]["category"] == "binance-smart-chain"


def test_coingecko_raises_when_every_page_fails() -> None:
    session = _Session({"/coins/markets": [_Response(status_code=500)]})
    provider = CoinGeckoProvider(session=session, pages=2, max_attempts=1)

    with pytest.raises(ProviderError):
        provider.fetch_snapshots()


def test_coingecko_keeps_pages_that_succeeded() -> None:
    full_page = [_gecko_row(f"t{i}") for i in range(2)]
    session = _Session({"/coins/markets": [_Response(full_page), _Response(status_code=500)]})
    provider = CoinGeckoProvider(session=session, pages=2, per_page=2, max_attempts=1)

    assert [s.symbol for s in provider.fetch_snapshots()] == ["T0", "T1"]


def test_dexscreener_prefers_most_liquid_pair() -> None:
    profiles = [
        {"chainId": "solana", "tokenAddress": "Mint1"},
        {"chainId": "ethereum", "tokenAddress": "0xabc"},
    ]
    pairs = {
        "pairs": [
            {
                "chainId": "solana",
                "baseToken": {"symbol": "wif", "name": "dogwifhat", "address": "Mint1"},
                "priceUsd": "2.5",
                "priceChange": {"h1": 1.2, "h24": -3.0},
                "volume": {"h24": 1_000},
                "fdv": 9_000_000,
                "url": "https://dexscreener.com/solana/small",
            },
            {
                "chainId": "solana",
                "baseToken": {"symbol": "wif", "name": "dogwifhat", "address": "Mint1"},
                "priceUsd": "2.51",
                "priceChange": {"h1": 1.5, "h24": -2.0},
                "volume": {"h24": 900_000},
                "fdv": 9_100_000,
                "url": "https://dexscreener.com/solana/big",
            },
        ]
    }
    session = _Session(
        {
            "/token-profiles/latest/v1": [_Response(profiles)],
            "/latest/dex/tokens/Mint1": [_Response(pairs)],
        }
    )

    snapshots = DexScreenerProvider(session=session, max_attempts=1).fetch_snapshots()

    assert len(snapshots) == 1
    wif = snapshots[0]
    assert wif.symbol == "WIF"
    assert wif.price == 2.51
    assert wif.volume_24h == 900_000
    assert wif.trade_url.endswith("/big")
    assert wif.contract_address == "Mint1"
    assert wif.chain == "solana"


def test_dexscreener_falls_back_to_search() -> None:
    search = {
        "pairs": [
            {"chainId": "solana", "baseToken": {"symbol": "BONK"}, "priceUsd": "0.00002", "volume": {"h24": 5}},
            {"chainId": "bsc", "baseToken": {"symbol": "CAKE"}, "priceUsd": "2"},
        ]
    }
    session = _Session(
        {
            "/token-profiles/latest/v1": [_Response([])],
            "/latest/dex/search": [_Response(search)],
        }
    )

    snapshots = DexScreenerProvider(session=session, max_attempts=1).fetch_snapshots()

    assert [s.symbol for s in snapshots] == ["BONK"]
    assert session.calls[-1][1] == {"q": "solana"}


def test_build_provider_selects_by_chain() -> None:
    assert isinstance(build_provider(Settings(chain_filter="solana"), session=_Session({})), DexScreenerProvider)
    gecko = build_provider(Settings(chain_filter="polygon"), session=_Session({}))
    assert isinstance(gecko, CoinGeckoProvider)
    assert gecko.chain == "polygon"
    assert isinstance(build_provider(Settings(), session=_Session({})), CoinGeckoProvider)
