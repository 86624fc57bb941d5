from __future__ import annotations

import argparse
import logging
import os
import signal
import time

from .config import load_config
from .runner import CycleReport, Runner, build_runner
from .scheduler import CancellationToken, FixedDelayScheduler


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="sfr", description="Stokefire Relay (game feed -> Farcaster)")
    p.add_argument("--config", required=True, help="Path to JSON config file")
    p.add_argument(
        "--log-level",
        default=None,
        help="Log level (DEBUG/INFO/WARNING/ERROR). Defaults to env SFR_LOG_LEVEL or INFO",
    )
    p.add_argument(
        "--status-interval",
        type=int,
        default=None,
        help="Daemon heartbeat interval seconds. Defaults to env SFR_STATUS_INTERVAL_SECONDS or 60. Set 0 to disable.",
    )
    p.add_argument("--dry-run", action="store_true", help="Log messages instead of publishing them")

    mode = p.add_mutually_exclusive_group(required=False)
    mode.add_argument("--once", action="store_true", help="Run one poll cycle and exit")
    mode.add_argument("--daemon", action="store_true", help="Run forever with poll interval")
    return p


def _resolve_log_level(value: str | None) -> int:
    v = (value or "").strip().upper()
    if not v:
        return logging.INFO
    level = logging.getLevelNamesMapping().get(v)
    if isinstance(level, int):
        return level
    return logging.INFO


def _log_report(logger: logging.Logger, prefix: str, report: CycleReport) -> None:
    logger.info(
        "%s: duration_ms=%d watermark=%s->%s pages=%d fetched=%d delivered=%d skipped_seen=%d filtered=%d "
        "delivery_failures=%d retractions=%d fetch_error=%s",
        prefix,
        report.duration_ms,
        report.watermark_before,
        report.watermark_after,
        report.pages_fetched,
        report.events_fetched,
        report.events_delivered,
        report.events_skipped_seen,
        report.events_filtered,
        report.delivery_failures,
        report.retractions,
        report.fetch_error or "-",
    )


def _install_signal_handlers(token: CancellationToken, logger: logging.Logger) -> dict[int, object]:
    def _handle(signum, frame) -> None:  # noqa: ANN001, ARG001
        logger.info("signal received: %s; shutting down after in-flight delivery", signal.Signals(signum).name)
        token.cancel()

    previous: dict[int, object] = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _handle)
    return previous


def _run_daemon(runner: Runner, token: CancellationToken, interval: int, status_interval: int) -> None:
    logger = logging.getLogger("sfr")
    last_logged_at = 0.0

    def _cycle() -> None:
        nonlocal last_logged_at
        report = runner.run_once()
        now = time.monotonic()
        should_log = (
            report.events_delivered > 0
            or report.delivery_failures > 0
            or report.fetch_error is not None
            or (status_interval > 0 and (now - last_logged_at) >= status_interval)
        )
        if should_log:
            _log_report(logger, "cycle summary", report)
            last_logged_at = now

    FixedDelayScheduler(interval_seconds=interval, token=token).run(_cycle)


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    env_log_level = os.environ.get("SFR_LOG_LEVEL")
    log_level = _resolve_log_level(args.log_level or env_log_level)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger = logging.getLogger("sfr")

    config = load_config(args.config)
    token = CancellationToken()
    runner = build_runner(config, token=token, dry_run=args.dry_run)

    status_interval = args.status_interval
    if status_interval is None:
        try:
            status_interval = int(os.environ.get("SFR_STATUS_INTERVAL_SECONDS") or 60)
        except Exception:
            status_interval = 60
    status_interval = max(0, int(status_interval))

    mode = "daemon" if args.daemon and not args.once else "once"
    logger.info("sfr start: mode=%s config=%s", mode, args.config)
    logger.info(
        "config: poll_interval_seconds=%d page_size=%d retention_max=%d state_backend=%s graphql_url=%s",
        config.poll_interval_seconds,
        config.page_size,
        config.retention_max,
        config.state_backend,
        config.graphql_url,
    )
    logger.info("publisher: %s(%s)", type(runner.publisher).__name__, runner.publisher.channel())

    try:
        runner.store.ensure_schema()
    except Exception:  # noqa: BLE001
        logger.exception("state store unavailable at startup: backend=%s", config.state_backend)
        return 1

    previous_handlers = _install_signal_handlers(token, logger)
    try:
        if mode == "once":
            try:
                report = runner.run_once()
            except Exception:  # noqa: BLE001
                logger.exception("cycle crashed: mode=once")
                return 1
            _log_report(logger, "once done", report)
            return 0

        _run_daemon(runner, token, max(1, config.poll_interval_seconds), status_interval)
        return 0
    finally:
        runner.close()
        for signum, handler in previous_handlers.items():
            if handler is not None:
                signal.signal(signum, handler)


if __name__ == "__main__":
    raise SystemExit(main())
