from __future__ import annotations

import sys
import threading
import traceback
from types import TracebackType
from typing import Callable, Dict, Mapping

from .log import log
from .telegram_notify import enqueue_telegram_message

_installed = False
_previous_sys_hook: Callable[[type[BaseException], BaseException, TracebackType | None], None] | None = None
_previous_thread_hook: Callable[[threading.ExceptHookArgs], None] | None = None

_TELEGRAM_LIMIT = 3600
_TRACEBACK_TAIL = 1600

SCHEDULER_THREAD_NAME = "radar-scheduler"

_context_provider: Callable[[], Mapping[str, object]] | None = None


def install_global_exception_handlers(*, force: bool = False) -> None:
    """Route uncaught exceptions (main thread and workers) to the log and Telegram."""

    global _installed, _previous_sys_hook, _previous_thread_hook

    if _installed and not force:
        return
    if force:
        _restore_previous_hooks()

    _previous_sys_hook = sys.excepthook
    sys.excepthook = _handle_sys_exception
    _previous_thread_hook = threading.excepthook
    threading.excepthook = _handle_thread_exception  # type: ignore[assignment]
    _installed = True


def set_crash_context(provider: Callable[[], Mapping[str, object]] | None) -> None:
    """Register a callable whose mapping is attached to every crash report."""

    global _context_provider
    _context_provider = provider


def _crash_context() -> dict[str, object]:
    if _context_provider is None:
        return {}
    try:
        context = dict(_context_provider())
    except Exception as exc:
        return {"context_error": f"{type(exc).__name__}: {exc}"}
    return {key: value for key, value in context.items() if value is not None}


def _restore_previous_hooks() -> None:
    global _installed

    if _previous_sys_hook is not None:
        sys.excepthook = _previous_sys_hook
    if _previous_thread_hook is not None:
        threading.excepthook = _previous_thread_hook
    _installed = False


def _handle_sys_exception(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_traceback: TracebackType | None,
) -> None:
    try:
        _process_exception(
            exc_type, exc_value, exc_traceback, origin="sys", thread_name=threading.current_thread().name
        )
    finally:
        if _previous_sys_hook is not None:
            _previous_sys_hook(exc_type, exc_value, exc_traceback)


def _handle_thread_exception(args: threading.ExceptHookArgs) -> None:
    try:
        _process_exception(
            args.exc_type,
            args.exc_value,
            args.exc_traceback,
            origin="thread",
            thread_name=getattr(args.thread, "name", None),
        )
    finally:
        if _previous_thread_hook is not None:
            _previous_thread_hook(args)


def _process_exception(
    exc_type: type[BaseException] | None,
    exc_value: BaseException | None,
    exc_traceback: TracebackType | None,
    *,
    origin: str,
    thread_name: str | None = None,
) -> None:
    if exc_type is None or exc_value is None:
        return
    if issubclass(exc_type, (KeyboardInterrupt, SystemExit)):
        return

    context = _crash_context()
    payload: Dict[str, object] = {"origin": origin}
    if thread_name:
        payload["thread"] = thread_name
    if thread_name == SCHEDULER_THREAD_NAME:
        # The scan loop is dead; nothing restarts it.
        payload["scheduler_stopped"] = True
    if context:
        payload["radar"] = context
    try:
        log("runtime.unhandled_exception", exc=(exc_type, exc_value, exc_traceback), **payload)
    except Exception:  # pragma: no cover - logging must not mask the original error
        pass

    text = _build_exception_message(
        exc_type, exc_value, exc_traceback, origin=origin, thread_name=thread_name, context=context
    )
    try:
        enqueue_telegram_message(text)
    except Exception:  # pragma: no cover - alerting must not mask the original error
        pass


def _build_exception_message(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_traceback: TracebackType | None,
    *,
    origin: str,
    thread_name: str | None,
    context: Mapping[str, object] | None = None,
) -> str:
    details = [f"origin={origin}"]
    if thread_name:
        details.append(f"thread={thread_name}")
    subject = "Radar scheduler" if thread_name == SCHEDULER_THREAD_NAME else "Radar"
    headline = f"🔥 {subject} crashed (" + ", ".join(details) + ")"
    if thread_name == SCHEDULER_THREAD_NAME:
        headline += "\nScanning has stopped until the radar is restarted."
    state_line = " | ".join(f"{key}={value}" for key, value in (context or {}).items())

    tb_text = "".join(traceback.format_exception(exc_type, exc_value, exc_traceback)).strip()
    if len(tb_text) > _TRACEBACK_TAIL:
        half = _TRACEBACK_TAIL // 2
        tb_text = f"{tb_text[:half].rstrip()}\n...\n{tb_text[-half:].lstrip()}"

    parts = (headline, state_line, f"{exc_type.__name__}: {exc_value}", tb_text)
    text = "\n\n".join(part for part in parts if part)
    if len(text) > _TELEGRAM_LIMIT:
        text = text[: _TELEGRAM_LIMIT - 1] + "…"
    return text
