import sys
import threading
from types import SimpleNamespace

import pytest

from radar_app.utils import error_handling


def _collectors(monkeypatch: pytest.MonkeyPatch) -> tuple[list[tuple[str, dict[str, object]]], list[str]]:
    recorded_logs: list[tuple[str, dict[str, object]]] = []
    telegram_messages: list[str] = []

    def fake_log(event: str, **payload: object) -> None:
        recorded_logs.append((event, payload))

    monkeypatch.setattr(error_handling, "log", fake_log)
    monkeypatch.setattr(error_handling, "enqueue_telegram_message", telegram_messages.append)
    monkeypatch.setattr(error_handling, "_context_provider", None)

    return recorded_logs, telegram_messages


def _exc_info(exc: BaseException):
    try:
        raise exc
    except BaseException:
        return sys.exc_info()


def test_sys_excepthook_sends_alert(monkeypatch: pytest.MonkeyPatch) -> None:
    logs, messages = _collectors(monkeypatch)
    monkeypatch.setattr(error_handling, "_previous_sys_hook", lambda *args, **kwargs: None)

    error_handling._handle_sys_exception(*_exc_info(RuntimeError("boom")))

    event, payload = logs[0]
    assert event == "runtime.unhandled_exception"
    assert payload["origin"] == "sys"
    assert messages[0].startswith("🔥 Radar crashed (origin=sys")
    assert "RuntimeError: boom" in messages[0]


def test_threading_excepthook_sends_alert(monkeypatch: pytest.MonkeyPatch) -> None:
    logs, messages = _collectors(monkeypatch)
    monkeypatch.setattr(error_handling, "_previous_thread_hook", lambda *_: None)

    exc_type, exc_value, tb = _exc_info(ValueError("thread fail"))
    args = SimpleNamespace(
        exc_type=exc_type,
        exc_value=exc_value,
        exc_traceback=tb,
        thread=SimpleNamespace(name="radar-scheduler"),
    )

    error_handling._handle_thread_exception(args)

    assert logs[0][0] == "runtime.unhandled_exception"
    assert logs[0][1] == {
        "origin": "thread",
        "thread": "radar-scheduler",
        "scheduler_stopped": True,
        "exc": (exc_type, exc_value, tb),
    }
    assert messages[0].startswith("🔥 Radar scheduler crashed (origin=thread, thread=radar-scheduler)")
    assert "Scanning has stopped" in messages[0]


def test_keyboard_interrupt_is_ignored(monkeypatch: pytest.MonkeyPatch) -> None:
    logs, messages = _collectors(monkeypatch)
    monkeypatch.setattr(error_handling, "_previous_sys_hook", lambda *args, **kwargs: None)

    error_handling._handle_sys_exception(*_exc_info(KeyboardInterrupt()))

    assert logs == []
    assert messages == []


def test_long_tracebacks_are_trimmed() -> None:
    exc_type, exc_value, tb = _exc_info(RuntimeError("x" * 10_000))

    text = error_handling._build_exception_message(exc_type, exc_value, tb, origin="sys", thread_name=None)

    assert len(text) <= error_handling._TELEGRAM_LIMIT
    assert text.endswith("…")


def test_install_is_idempotent(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sys, "excepthook", sys.__excepthook__)
    monkeypatch.setattr(threading, "excepthook", threading.__excepthook__)
    monkeypatch.setattr(error_handling, "_installed", False)
    monkeypatch.setattr(error_handling, "_previous_sys_hook", None)
    monkeypatch.setattr(error_handling, "_previous_thread_hook", None)

    error_handling.install_global_exception_handlers()
    error_handling.install_global_exception_handlers()

    assert sys.excepthook is error_handling._handle_sys_exception
    assert threading.excepthook is error_handling._handle_thread_exception
    assert error_handling._previous_sys_hook is sys.__excepthook__


def test_crash_report_carries_radar_context(monkeypatch: pytest.MonkeyPatch) -> None:
    logs, messages = _collectors(monkeypatch)
    monkeypatch.setattr(error_handling, "_previous_sys_hook", lambda *args, **kwargs: None)
    error_handling.set_crash_context(lambda: {"cycle": 7, "provider": "coingecko", "last_status": None})

    error_handling._handle_sys_exception(*_exc_info(RuntimeError("boom")))

    assert logs[0][1]["radar"] == {"cycle": 7, "provider": "coingecko"}
    assert "cycle=7 | provider=coingecko" in messages[0]
    assert "Scanning has stopped" not in messages[0]


def test_failing_context_provider_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    logs, _messages = _collectors(monkeypatch)
    monkeypatch.setattr(error_handling, "_previous_sys_hook", lambda *args, **kwargs: None)

    def _broken() -> dict:
        raise LookupError("state gone")

    monkeypatch.setattr(error_handling, "_context_provider", _broken)

    error_handling._handle_sys_exception(*_exc_info(RuntimeError("boom")))

    assert logs[0][1]["radar"] == {"context_error": "LookupError: state gone"}
