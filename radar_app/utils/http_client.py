from __future__ import annotations

from typing import Any, Mapping

import requests
from requests.adapters import HTTPAdapter
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_none,
    wait_random,
)

from .log import log

_DEFAULT_POOL_CONNECTIONS = 20
_DEFAULT_POOL_MAXSIZE = 20
_RETRYABLE_STATUS = {429, 500, 502, 503, 504}
_USER_AGENT = "momentum-radar/1.0"


class ProviderError(RuntimeError):
    """Raised when an upstream HTTP API cannot deliver a usable response."""


class _TransientHTTPError(RuntimeError):
    """Internal marker for responses worth retrying."""


def create_http_session(
    *,
    pool_connections: int = _DEFAULT_POOL_CONNECTIONS,
    pool_maxsize: int = _DEFAULT_POOL_MAXSIZE,
) -> requests.Session:
    """Return a :class:`requests.Session` pre-configured with a connection pool."""

    session = requests.Session()
    session.headers.update({"User-Agent": _USER_AGENT, "Accept": "application/json"})
    adapter = HTTPAdapter(pool_connections=pool_connections, pool_maxsize=pool_maxsize)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def get_json(
    session: requests.Session,
    url: str,
    *,
    params: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
    timeout: float = 10.0,
    max_attempts: int = 3,
    initial_backoff: float = 0.5,
    sleep=None,
) -> Any:
    """GET ``url`` and decode JSON, retrying rate limits and server errors.

    Raises :class:`ProviderError` once the attempts are exhausted or when the
    response is a non-retryable error or not JSON.
    """

    def _attempt() -> Any:
        try:
            response = session.get(url, params=params, headers=headers, timeout=timeout)
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise _TransientHTTPError(str(exc)) from exc
        except requests.RequestException as exc:
            raise ProviderError(str(exc)) from exc

        status = int(getattr(response, "status_code", 0) or 0)
        if status in _RETRYABLE_STATUS:
            raise _TransientHTTPError(f"http {status}")
        if status >= 400:
            raise ProviderError(f"http {status} for {url}")
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(f"invalid json from {url}") from exc

    wait = wait_exponential(multiplier=initial_backoff, min=initial_backoff, max=10.0)
    retrying_kwargs: dict[str, Any] = {
        "stop": stop_after_attempt(max(int(max_attempts), 1)),
        "wait": wait + wait_random(0, min(0.25, initial_backoff)) if initial_backoff > 0 else wait_none(),
        "retry": retry_if_exception_type(_TransientHTTPError),
        "reraise": False,
    }
    if sleep is not None:
        retrying_kwargs["sleep"] = sleep

    try:
        return Retrying(**retrying_kwargs)(_attempt)
    except RetryError as exc:
        attempts = exc.last_attempt.attempt_number
        error = str(exc.last_attempt.exception())
        log("http.request_failed", url=url, attempts=attempts, err=error)
        raise ProviderError(f"{url}: {error}") from exc
