from __future__ import annotations

import argparse
import logging
import os
import signal

from .batch import BatchSyncError
from .config import ConfigError, load_config
from .lifecycle import Cancellation
from .runner import build_orchestrator
from .state.store import StoreError


EXIT_OK = 0
EXIT_SYNC_FAILED = 1
EXIT_CONFIG = 2


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="nls", description="NextDNS log sync (pagination backfill + live stream)")
    p.add_argument("--config", default=None, help="Path to optional JSON config file")
    p.add_argument("--profile", default=None, help="NextDNS profile id. Defaults to env NEXTDNS_PROFILE_ID")
    p.add_argument("--api-key", default=None, help="NextDNS API key. Defaults to env NEXTDNS_API_KEY")
    p.add_argument("--db", default=None, help="SQLite path or postgres:// DSN. Defaults to env DATABASE_URL")
    p.add_argument(
        "--log-level",
        default=None,
        help="Log level (DEBUG/INFO/WARNING/ERROR). Defaults to env NLS_LOG_LEVEL or INFO",
    )
    return p


def _resolve_log_level(value: str | None) -> int:
    v = (value or "").strip().upper()
    if not v:
        return logging.INFO
    level = logging.getLevelNamesMapping().get(v)
    if isinstance(level, int):
        return level
    return logging.INFO


def _install_signal_handlers(cancel: Cancellation) -> None:
    logger = logging.getLogger("nls")

    def _handler(signum, frame) -> None:  # noqa: ANN001, ARG001
        logger.info("received %s, shutting down", signal.Signals(signum).name)
        cancel.cancel()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    env_log_level = os.environ.get("NLS_LOG_LEVEL")
    log_level = _resolve_log_level(args.log_level or env_log_level)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger = logging.getLogger("nls")

    try:
        config = load_config(args.config, profile_id=args.profile, api_key=args.api_key, database=args.db)
    except ConfigError as e:
        logger.error("invalid configuration: %s", e)
        return EXIT_CONFIG

    orchestrator = build_orchestrator(config)
    logger.info(
        "nls start: profile=%s database=%s page_size=%d checkpoint_every=%d backoff=%.0f..%.0fs",
        config.profile_id,
        type(orchestrator.store).__name__,
        config.page_size,
        config.checkpoint_every,
        config.backoff_initial_seconds,
        config.backoff_max_seconds,
    )

    try:
        orchestrator.prepare()
    except StoreError as e:
        logger.error("failed to initialize database: %s", e)
        orchestrator.store.close()
        return EXIT_SYNC_FAILED

    cancel = Cancellation()
    _install_signal_handlers(cancel)

    try:
        result = orchestrator.run(cancel)
    except BatchSyncError as e:
        logger.error("sync failed: %s", e)
        return EXIT_SYNC_FAILED
    finally:
        orchestrator.store.close()

    logger.info(
        "sync done: mode=%s inserted=%d duplicates=%d malformed=%d attempts=%d cancelled=%s duration_ms=%d",
        result.mode,
        result.session.inserted,
        result.session.duplicates,
        result.session.malformed,
        result.session.attempts,
        result.cancelled,
        result.duration_ms,
    )
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
