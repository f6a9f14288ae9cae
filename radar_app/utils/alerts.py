from __future__ import annotations

import html
from typing import Callable, Iterable, Optional

from .log import log
from .radar_models import RadarAlert
from .store import JLStore

_KIND_ICONS = {
    "pre_ignition": "🚀",
    "persistence": "⏳",
    "graduation": "🎓",
    "advisor": "🤖",
}


def _fmt_money(value: object) -> str:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return "n/a"
    if number <= 0:
        return "n/a"
    if number >= 1_000_000_000:
        return f"${number / 1_000_000_000:.2f}B"
    if number >= 1_000_000:
        return f"${number / 1_000_000:.2f}M"
    if number >= 1_000:
        return f"${number / 1_000:.1f}K"
    return f"${number:.2f}"


def _fmt_pct(value: object) -> str:
    try:
        return f"{float(value):+.2f}%"  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return "n/a"


def _fmt_price(value: object) -> str:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return "n/a"
    if number >= 1:
        return f"${number:,.4f}"
    return f"${number:.8f}".rstrip("0")


def format_alert(alert: RadarAlert) -> str:
    """Render an alert as Telegram HTML."""

    metrics = alert.metrics
    icon = _KIND_ICONS.get(alert.kind, "📡")
    lines = [f"{icon} <b>{html.escape(alert.title)}</b>"]
    lines.append(f"Strategy: <code>{html.escape(alert.strategy)}</code>")
    if alert.score is not None:
        lines.append(f"Score: <b>{alert.score:g}</b>")
    if "price" in metrics:
        lines.append(f"Price: {_fmt_price(metrics['price'])}")
    if "change_1h" in metrics or "change_24h" in metrics:
        lines.append(f"1h: {_fmt_pct(metrics.get('change_1h'))} | 24h: {_fmt_pct(metrics.get('change_24h'))}")
    if "volume_24h" in metrics:
        lines.append(f"Volume 24h: {_fmt_money(metrics['volume_24h'])}")
    if metrics.get("market_cap"):
        lines.append(f"Market cap: {_fmt_money(metrics['market_cap'])}")
    if metrics.get("volume_acceleration") is not None:
        lines.append(f"Volume accel: x{float(metrics['volume_acceleration']):.2f}")
    if metrics.get("pressure"):
        lines.append(f"Pressure: {html.escape(str(metrics['pressure']))}")
    if "consecutive_hours" in metrics:
        lines.append(
            f"Tracked for {metrics['consecutive_hours']} cycles, "
            f"{_fmt_pct(metrics.get('change_since_entry_pct'))} since entry"
        )
    if metrics.get("markov_state"):
        lines.append(f"Regime: {html.escape(str(metrics['markov_state']))}")
    if metrics.get("safe_zone"):
        low, high = metrics["safe_zone"]
        lines.append(f"Safe zone: {_fmt_price(low)} - {_fmt_price(high)}")
        lines.append(f"Pullback: {_fmt_price(metrics.get('pullback_price'))}")
        lines.append(
            f"SL {_fmt_price(metrics.get('stop_loss'))} | TP1 {_fmt_price(metrics.get('take_profit_1'))}"
            f" | TP2 {_fmt_price(metrics.get('take_profit_2'))} | R:R {metrics.get('risk_reward')}"
        )
        lines.append(f"{html.escape(str(metrics.get('horizon', '')))} ({html.escape(str(metrics.get('status', '')))})")
    if metrics.get("relaxed"):
        lines.append("<i>found by relaxed filters</i>")
    return "\n".join(lines)


class AlertNotifier:
    """Fan an alert out to Telegram and the JSONL alert ledger.

    ``send`` is expected to be non-blocking (the Telegram dispatcher queue);
    a failing sink is logged and never interrupts the remaining alerts.
    """

    def __init__(
        self,
        send: Optional[Callable[[str], None]] = None,
        ledger: Optional[JLStore] = None,
        *,
        enabled: bool = True,
    ) -> None:
        self._send = send
        self._ledger = ledger
        self.enabled = enabled

    def dispatch(self, alerts: Iterable[RadarAlert]) -> int:
        batch = list(alerts)
        if not batch:
            return 0

        if self._ledger is not None:
            try:
                self._ledger.append_many(alert.to_dict() for alert in batch)
            except OSError as exc:
                log("radar.alert.ledger_error", severity="error", err=str(exc), count=len(batch))

        sent = 0
        for alert in batch:
            log("radar.alert", symbol=alert.symbol, kind=alert.kind, strategy=alert.strategy, score=alert.score)
            if not self.enabled or self._send is None:
                continue
            try:
                self._send(format_alert(alert))
            except Exception as exc:  # pragma: no cover - sink failures are reported, not raised
                log("radar.alert.send_error", severity="error", symbol=alert.symbol, err=str(exc))
                continue
            sent += 1
        return sent

    def recent(self, limit: int = 50, *, kind: str | None = None) -> list[dict]:
        if self._ledger is None:
            return []
        return self._ledger.read_tail(limit, kind=kind)
