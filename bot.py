"""Command-line launcher for the momentum radar."""

from __future__ import annotations

import argparse
import os
import time
from pathlib import Path
from typing import Any, Mapping, Sequence

from dotenv import load_dotenv

from radar_app.utils import envs
from radar_app.utils.log import log
from radar_app.utils.paths import DATA_DIR

_DEFAULT_ENV_FILE = Path(__file__).resolve().parent / ".env"
_CHAIN_CHOICES = ("all", "ethereum", "bsc", "polygon", "base", "arbitrum", "avalanche", "solana")


def _load_env_file(path: str | os.PathLike[str] | None) -> None:
    """Populate ``os.environ`` from the supplied dotenv file if available."""

    if path is None:
        dotenv_path = _DEFAULT_ENV_FILE
    else:
        dotenv_path = Path(path).expanduser().resolve()

    load_dotenv(dotenv_path, override=False)


def _apply_cli_overrides(*, interval: float | None, chain: str | None) -> None:
    if interval is not None:
        os.environ["RADAR_SCAN_INTERVAL_SEC"] = str(interval)
    if chain is not None:
        os.environ["RADAR_CHAIN_FILTER"] = "" if chain == "all" else chain


def _configured_label(value: bool) -> str:
    return "configured" if value else "missing"


def _print_banner(settings: envs.Settings) -> None:
    chain = settings.chain_filter or "all"
    state_path = envs.resolve_state_file(settings)

    print(f"Starting radar with {settings.resolved_provider()} (chain: {chain}).")
    print(f"Scan interval: {settings.scan_interval_sec:g}s")
    print(f"Data directory: {DATA_DIR}")
    print(f"State file: {state_path}")
    print(
        "Keys: telegram={telegram} | moralis={moralis} | openai={openai}".format(
            telegram=_configured_label(settings.telegram_ready()),
            moralis=_configured_label(bool(settings.moralis_api_key)),
            openai=_configured_label(bool(settings.openai_api_key)),
        )
    )

    log(
        "bot.start",
        provider=settings.resolved_provider(),
        chain=chain,
        interval=settings.scan_interval_sec,
        telegram=settings.telegram_ready(),
        whales=bool(settings.whale_enabled and settings.moralis_api_key),
        ai=bool(settings.ai_enabled and settings.openai_api_key),
        data_dir=str(DATA_DIR),
        state_file=str(state_path),
    )


def _render_cycle_summary(report: Mapping[str, Any] | None) -> str:
    if not isinstance(report, Mapping):
        return "no cycle yet"

    parts = [f"status={report.get('status') or 'idle'}"]
    if report.get("error"):
        parts.append(f"error={report['error']}")
    for key in ("fetched", "candidates", "tracked", "pre_ignition", "alerts"):
        parts.append(f"{key}={report.get(key, 0)}")
    if report.get("relaxed"):
        parts.append("relaxed")
    return ", ".join(parts)


def _print_report(report: Mapping[str, Any] | None, *, prefix: str) -> None:
    print(f"[{prefix}] {_render_cycle_summary(report)}")


def _run_scheduler(*, once: bool, purge: bool) -> int:
    from radar_app.utils.scan_orchestrator import build_orchestrator
    from radar_app.utils.telegram_notify import shutdown_telegram_dispatcher

    radar = build_orchestrator()
    if purge:
        radar.purge()
        print("Radar state purged.")

    if once:
        report = radar.run_cycle().to_dict()
        _print_report(report, prefix="cycle")
        log("bot.once", summary=_render_cycle_summary(report))
        shutdown_telegram_dispatcher(timeout=5.0)
        return 0 if report.get("status") != "error" else 1

    radar.start()
    print("Radar started. Press Ctrl+C to stop.")
    log("bot.loop.started", interval=radar.interval_sec)
    seen = 0
    try:
        while True:
            time.sleep(1.0)
            status = radar.status()
            if status["cycles"] != seen and status["last_cycle"]:
                seen = status["cycles"]
                _print_report(status["last_cycle"], prefix=f"cycle {seen}")
    except KeyboardInterrupt:
        print("\nStopping radar...")
        log("bot.stop", reason="keyboard_interrupt")
        radar.stop()
        shutdown_telegram_dispatcher(timeout=5.0)
        return 0


def _run_backend(*, host: str, port: int) -> int:
    import uvicorn

    from radar_app.backend.app import create_app, get_orchestrator

    radar = get_orchestrator()
    if envs.get_settings().autostart:
        radar.start()
    log("bot.backend.started", host=host, port=port, running=radar.running)
    uvicorn.run(create_app(), host=host, port=port)
    radar.stop()
    return 0


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the momentum radar without the HTTP backend.")
    parser.add_argument(
        "--chain",
        choices=_CHAIN_CHOICES,
        type=str.lower,
        help="Restrict the scan to one ecosystem; solana switches to DexScreener.",
    )
    parser.add_argument(
        "--interval",
        type=float,
        help="Seconds between scan cycles.",
    )
    parser.add_argument(
        "--status-only",
        action="store_true",
        help="Print the configuration and exit without scanning.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single scan cycle and exit.",
    )
    parser.add_argument(
        "--purge",
        action="store_true",
        help="Clear tracks, history and persisted state before scanning.",
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Expose the operational HTTP API instead of the console loop.",
    )
    parser.add_argument("--host", default="127.0.0.1", help="Backend bind address.")
    parser.add_argument("--port", type=int, default=8000, help="Backend port.")
    parser.add_argument(
        "--env-file",
        help="Path to a .env file (defaults to the repository .env).",
    )
    parser.add_argument(
        "--no-env-file",
        action="store_true",
        help="Do not load variables from a .env file.",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    if args.interval is not None and args.interval <= 0:
        parser.error("--interval must be positive")

    if not args.no_env_file:
        _load_env_file(args.env_file)

    _apply_cli_overrides(interval=args.interval, chain=args.chain)

    settings = envs.get_settings(force_reload=True)
    _print_banner(settings)

    if args.status_only:
        return 0

    if args.serve:
        return _run_backend(host=args.host, port=args.port)

    return _run_scheduler(once=args.once, purge=args.purge)


if __name__ == "__main__":  # pragma: no cover - manual execution path
    raise SystemExit(main())
