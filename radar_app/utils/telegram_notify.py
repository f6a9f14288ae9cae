from __future__ import annotations

import atexit
import queue
import threading
import time
from collections import deque
from typing import Any, Callable, Optional

import requests
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_none,
    wait_random,
)

from .envs import get_settings
from .log import log

_DEFAULT_SHUTDOWN_TIMEOUT = 1.0
_TELEGRAM_API = "https://api.telegram.org"


class _RetryableTelegramError(RuntimeError):
    """Transient delivery failure; the dispatcher retries it."""


class TelegramDispatcher:
    """Background queue that delivers radar alerts to Telegram.

    ``enqueue_message`` never blocks the scan cycle: messages are handed to
    a daemon worker which applies the rate guard and retries with tenacity.
    When the queue is full the oldest pending message is dropped.
    """

    DEFAULT_QUEUE_MAXSIZE = 200

    def __init__(
        self,
        http_post: Callable[..., Any] | None = None,
        rate_guard: Callable[[], None] | None = None,
        queue_maxsize: int | None = None,
        *,
        max_attempts: int = 4,
        initial_backoff: float = 1.0,
        max_backoff: float = 30.0,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        if initial_backoff < 0 or max_backoff < 0:
            raise ValueError("backoff values must be non-negative")
        maxsize = queue_maxsize or self.DEFAULT_QUEUE_MAXSIZE
        if maxsize <= 0:
            raise ValueError("queue_maxsize must be positive")

        self._http_post = http_post or requests.post
        self._rate_guard = rate_guard or _rate_guard
        self._queue_maxsize = maxsize
        self._queue: "queue.Queue[Optional[str]]" = queue.Queue(maxsize=maxsize)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._dropped = 0
        self._delivered = 0
        self._max_attempts = max_attempts
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._sleep = sleep or time.sleep

    @property
    def stats(self) -> dict[str, int]:
        return {"delivered": self._delivered, "dropped": self._dropped, "pending": self._queue.qsize()}

    def _wait_strategy(self):
        if self._initial_backoff <= 0:
            return wait_none()
        upper = self._max_backoff if self._max_backoff > 0 else None
        base = wait_exponential(multiplier=self._initial_backoff, min=self._initial_backoff, max=upper)
        return base + wait_random(0, min(0.25, self._initial_backoff))

    # ------------------------------------------------------------------
    # public API
    def enqueue_message(self, text: str) -> None:
        if not isinstance(text, str):
            raise TypeError("text must be a string")
        self._ensure_thread()
        self._put(text)

    def shutdown(self, *, timeout: float | None = None) -> None:
        thread = self._thread
        if not thread:
            return
        join_timeout = timeout if timeout is not None else _DEFAULT_SHUTDOWN_TIMEOUT
        self._stop_event.set()
        self._put(None)
        thread.join(timeout=join_timeout)
        if thread.is_alive():  # pragma: no cover - slow network on exit
            log("telegram.dispatcher.shutdown_timeout", timeout=join_timeout, pending=self._queue.qsize())
        else:
            self._thread = None

    # ------------------------------------------------------------------
    # worker
    def _ensure_thread(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name="telegram-dispatcher", daemon=True)
            self._thread.start()

    def _run(self) -> None:
        while True:
            try:
                item = self._queue.get(timeout=0.1)
            except queue.Empty:
                if self._stop_event.is_set():
                    break
                continue
            if item is None:
                if self._stop_event.is_set() and self._queue.empty():
                    break
                continue
            self._deliver(item)

    def _deliver(self, text: str) -> None:
        def _attempt() -> dict[str, Any]:
            self._rate_guard()
            result = _send_telegram_http(text, http_post=self._http_post)
            if result.get("ok"):
                return result
            if result.get("error") == "telegram_not_configured":
                return result
            raise _RetryableTelegramError(str(result.get("error") or "telegram_delivery_failed"))

        retrying = Retrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=self._wait_strategy(),
            retry=retry_if_exception_type(_RetryableTelegramError),
            sleep=self._sleep,
            reraise=False,
        )
        try:
            result = retrying(_attempt)
        except RetryError as exc:
            log(
                "telegram.delivery_failed",
                attempts=exc.last_attempt.attempt_number,
                error=str(exc.last_attempt.exception()),
            )
            return
        if result.get("ok"):
            self._delivered += 1

    def _put(self, item: Optional[str]) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except queue.Full:
                try:
                    dropped = self._queue.get_nowait()
                except queue.Empty:  # pragma: no cover - raced with the worker
                    continue
                if dropped is None:
                    continue
                self._dropped += 1
                log(
                    "telegram.queue_overflow",
                    dropped_total=self._dropped,
                    queue_maxsize=self._queue_maxsize,
                )


# Telegram allows roughly one message per second per chat and twenty per
# minute in groups.
RATE_STATE = {"last_ts": 0.0, "window": deque(maxlen=60)}
_RATE_LOCK = threading.Lock()


def _rate_guard() -> None:
    while True:
        with _RATE_LOCK:
            now = time.time()
            window = RATE_STATE["window"]
            while window and now - window[0] > 60.0:
                window.popleft()

            wait_for = max(0.0, 1.0 - (now - RATE_STATE["last_ts"]))
            if len(window) >= 20:
                wait_for = max(wait_for, 60.0 - (now - window[0]))

            if wait_for <= 0.0:
                RATE_STATE["last_ts"] = now
                window.append(now)
                return
        time.sleep(wait_for)


def _send_telegram_http(text: str, http_post: Callable[..., Any] | None = None) -> dict[str, Any]:
    http = http_post or requests.post
    s = get_settings()
    if not s.telegram_token or not s.telegram_chat_id:
        return {"ok": False, "error": "telegram_not_configured"}

    url = f"{_TELEGRAM_API}/bot{s.telegram_token}/sendMessage"
    payload = {
        "chat_id": s.telegram_chat_id,
        "text": text,
        "parse_mode": "HTML",
        "disable_web_page_preview": True,
    }
    try:
        response = http(url, json=payload, timeout=10)
    except requests.RequestException as exc:
        log("telegram.error", error=str(exc))
        return {"ok": False, "error": str(exc)}

    try:
        data = response.json()
    except ValueError:
        data = None

    status = getattr(response, "status_code", None)
    if not getattr(response, "ok", False) or (isinstance(data, dict) and data.get("ok") is False):
        description = ""
        if isinstance(data, dict):
            description = str(data.get("description") or data.get("error") or "")
        description = description or getattr(response, "text", "") or "telegram_delivery_failed"
        log("telegram.error", status=status, error=description)
        return {"ok": False, "status": status, "error": description}

    log("telegram.send", status=status)
    return {"ok": True, "status": status}


dispatcher = TelegramDispatcher()


def enqueue_telegram_message(text: str) -> None:
    dispatcher.enqueue_message(text)


def shutdown_telegram_dispatcher(*, timeout: float | None = None) -> None:
    dispatcher.shutdown(timeout=timeout)


atexit.register(shutdown_telegram_dispatcher)
