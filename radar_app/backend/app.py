from __future__ import annotations

import hmac
import time
from collections import OrderedDict
from threading import Lock
from typing import Any, Mapping, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from radar_app.utils.envs import get_settings
from radar_app.utils.log import log, read_tail
from radar_app.utils.radar_models import StrategyId
from radar_app.utils.scan_orchestrator import ScanOrchestrator, build_orchestrator

AUTH_HEADER = "Authorization"
FAILURE_TRACKER_TTL_SECONDS = 60
FAILURE_TRACKER_MAX_ATTEMPTS = 3
FAILURE_TRACKER_MAX_SIZE = 1024
SUPPORTED_CHAINS = ("", "ethereum", "bsc", "polygon", "base", "arbitrum", "avalanche", "solana")

app = FastAPI(title="Momentum Radar Backend", version="1.0.0")


class ChainFilterRequest(BaseModel):
    chain: Optional[str] = Field(default=None, max_length=32)


class _FailureTracker:
    def __init__(self, ttl_seconds: float, max_attempts: int, max_items: int = FAILURE_TRACKER_MAX_SIZE) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self.max_items = max_items
        self._attempts: OrderedDict[str, tuple[int, float]] = OrderedDict()
        self._lock = Lock()

    def _purge_expired(self, now: float) -> None:
        while self._attempts:
            key, (_, expires_at) = next(iter(self._attempts.items()))
            if expires_at < now:
                self._attempts.popitem(last=False)
            else:
                break

    def register_failure(self, key: str, *, now: float) -> bool:
        with self._lock:
            self._purge_expired(now)
            count, expires_at = self._attempts.get(key, (0, now + self.ttl_seconds))
            count += 1
            self._attempts[key] = (count, expires_at)
            self._attempts.move_to_end(key)
            if len(self._attempts) > self.max_items:
                self._attempts.popitem(last=False)
            return count >= self.max_attempts

    def clear(self, key: str, *, now: float) -> None:
        with self._lock:
            self._purge_expired(now)
            self._attempts.pop(key, None)


_failure_tracker = _FailureTracker(
    ttl_seconds=FAILURE_TRACKER_TTL_SECONDS,
    max_attempts=FAILURE_TRACKER_MAX_ATTEMPTS,
    max_items=FAILURE_TRACKER_MAX_SIZE,
)

_ORCHESTRATOR: Optional[ScanOrchestrator] = None
_ORCHESTRATOR_LOCK = Lock()


def get_orchestrator() -> ScanOrchestrator:
    global _ORCHESTRATOR
    with _ORCHESTRATOR_LOCK:
        if _ORCHESTRATOR is None:
            _ORCHESTRATOR = build_orchestrator()
        return _ORCHESTRATOR


def set_orchestrator(orchestrator: Optional[ScanOrchestrator]) -> None:
    global _ORCHESTRATOR
    with _ORCHESTRATOR_LOCK:
        _ORCHESTRATOR = orchestrator


async def verify_backend_auth(
    request: Request,
    authorization: str | None = Header(default=None, alias=AUTH_HEADER),
) -> None:
    secret = getattr(get_settings(), "backend_auth_token", "").strip()
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Backend authentication is not configured",
        )
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication credentials were not provided",
        )

    failure_key = f"ip:{request.client.host if request.client else 'unknown'}"
    provided = authorization.split(" ", 1)[1].strip()
    if hmac.compare_digest(provided, secret):
        _failure_tracker.clear(failure_key, now=time.time())
        return

    if _failure_tracker.register_failure(failure_key, now=time.time()):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed authentication attempts",
        )
    log("backend.auth.invalid_token", severity="warning", client=failure_key)
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid bearer token")


@app.get("/health", dependencies=[Depends(verify_backend_auth)])
def health() -> Mapping[str, Any]:
    radar = get_orchestrator()
    return {"status": "ok", "timestamp": time.time(), "running": radar.running}


@app.get("/radar/status", dependencies=[Depends(verify_backend_auth)])
def radar_status() -> Mapping[str, Any]:
    return get_orchestrator().status()


@app.get("/radar/tracks", dependencies=[Depends(verify_backend_auth)])
def radar_tracks(strategy: str | None = Query(default=None)) -> Mapping[str, Any]:
    if strategy:
        try:
            StrategyId(strategy)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown strategy: {strategy}") from None
    tracks = get_orchestrator().tracks(strategy)
    return {"count": len(tracks), "tracks": [track.to_dict() for track in tracks]}


@app.get("/radar/watchlist", dependencies=[Depends(verify_backend_auth)])
def radar_watchlist() -> Mapping[str, Any]:
    return {"candidates": get_orchestrator().watchlist()}


@app.get("/radar/snapshot", dependencies=[Depends(verify_backend_auth)])
def radar_snapshot(active: bool = Query(default=False)) -> Mapping[str, Any]:
    radar = get_orchestrator()
    if active:
        return {"snapshots": radar.active_snapshots()}
    return {"snapshot": radar.latest_snapshot()}


@app.post("/radar/scan", dependencies=[Depends(verify_backend_auth)])
def radar_scan() -> Mapping[str, Any]:
    return get_orchestrator().force_cycle().to_dict()


@app.post("/radar/start", dependencies=[Depends(verify_backend_auth)])
def radar_start() -> Mapping[str, Any]:
    started = get_orchestrator().start()
    return {"status": "started" if started else "already_running"}


@app.post("/radar/stop", dependencies=[Depends(verify_backend_auth)])
def radar_stop() -> Mapping[str, Any]:
    stopped = get_orchestrator().stop()
    return {"status": "stopped" if stopped else "not_running"}


@app.post("/radar/chain-filter", dependencies=[Depends(verify_backend_auth)])
def radar_chain_filter(request: ChainFilterRequest) -> Mapping[str, Any]:
    chain = (request.chain or "").strip().lower()
    if chain not in SUPPORTED_CHAINS:
        raise HTTPException(status_code=400, detail=f"Unsupported chain: {request.chain}")
    radar = get_orchestrator()
    value = radar.set_chain_filter(chain)
    return {"chain": value or None, "provider": getattr(radar.provider, "name", None)}


@app.post("/radar/purge", dependencies=[Depends(verify_backend_auth)])
def radar_purge() -> Mapping[str, Any]:
    get_orchestrator().purge()
    return {"status": "purged"}


@app.get("/radar/alerts", dependencies=[Depends(verify_backend_auth)])
def radar_alerts(
    limit: int = Query(default=50, ge=1, le=500),
    kind: str | None = Query(default=None),
) -> Mapping[str, Any]:
    notifier = get_orchestrator().notifier
    alerts = notifier.recent(limit, kind=kind) if notifier is not None else []
    return {"alerts": alerts}


@app.get("/radar/logs", dependencies=[Depends(verify_backend_auth)])
def radar_logs(limit: int = Query(default=200, ge=1, le=5000)) -> Mapping[str, Any]:
    return {"records": read_tail(limit, parse=True)}


def create_app() -> FastAPI:
    """Return a configured FastAPI application."""

    return app
