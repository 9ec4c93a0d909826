import argparse
import json
import sys
import time
from pathlib import Path
from typing import Callable, List, Mapping, Optional

import requests

from . import __version__
from .client import PointsApiClient
from .config import ConfigError, JobConfiguration, RebuildError
from .env import load_env
from .health import check_health
from .logger import StructuredLogger, get_logger, reset_logger
from .rebuild import PointsRebuild

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_STALE = 2


def _load_config(args: argparse.Namespace, environ: Optional[Mapping[str, str]]) -> JobConfiguration:
    config = JobConfiguration.from_env(environ)
    return config.with_overrides(
        season_id=getattr(args, "season", None),
        skip_reset=True if getattr(args, "skip_reset", False) else None,
        skip_ingest=True if getattr(args, "skip_ingest", False) else None,
        recalc_fast=True if getattr(args, "fast", False) else None,
    )


def cmd_rebuild(args, config: JobConfiguration, client: PointsApiClient, logger: StructuredLogger) -> int:
    try:
        PointsRebuild(config, client).run()
        if getattr(args, "verify_health", False):
            status = check_health(client, config.season_id)
            if not status.healthy:
                return EXIT_STALE
    finally:
        logger.log_metrics_summary()
    return EXIT_OK


def cmd_health(args, config: JobConfiguration, client: PointsApiClient, logger: StructuredLogger) -> int:
    status = check_health(client, config.season_id)
    return EXIT_OK if status.healthy else EXIT_STALE


def cmd_config(args, config: JobConfiguration, client: PointsApiClient, logger: StructuredLogger) -> int:
    print(json.dumps(config.describe(), indent=2))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="points-rebuild", description="Rebuild points via the remote reset/ingest/recalc API")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Console log level (default: INFO)")
    parser.add_argument("--log-dir", help="Also write a daily log file into this directory")

    subparsers = parser.add_subparsers(dest="command")
    reb = subparsers.add_parser("rebuild", help="Run reset, ingest and recalc (default command)")
    reb.add_argument("--season", help="Season id (overrides POINTS_SEASON_ID)")
    reb.add_argument("--skip-reset", action="store_true", help="Skip the reset stage")
    reb.add_argument("--skip-ingest", action="store_true", help="Skip the ingest stage")
    reb.add_argument("--fast", action="store_true", help="Ask the backend for fast recalc")
    reb.add_argument("--verify-health", action="store_true", help="Check points freshness after recalc")
    reb.set_defaults(func=cmd_rebuild)

    hlt = subparsers.add_parser("health", help="Check whether points data is fresh (exit 2 when stale)")
    hlt.add_argument("--season", help="Season id (overrides POINTS_SEASON_ID)")
    hlt.set_defaults(func=cmd_health)

    cfg = subparsers.add_parser("config", help="Print the resolved configuration (token masked)")
    cfg.add_argument("--season", help="Season id (overrides POINTS_SEASON_ID)")
    cfg.set_defaults(func=cmd_config)

    return parser


def main(
    argv: Optional[List[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Parse arguments, run the selected command and return the exit code."""
    if environ is None:
        # Load .env if present (POINTS_API_BASE, POINTS_INGEST_TOKEN, etc.)
        load_env()

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return EXIT_OK

    reset_logger()
    logger = get_logger(
        level=args.log_level,
        log_dir=Path(args.log_dir) if args.log_dir else None,
        enable_file=bool(args.log_dir),
    )
    func = getattr(args, "func", cmd_rebuild)

    try:
        config = _load_config(args, environ)
        client = PointsApiClient(config, session=session, sleep=sleep, logger=logger)
        return func(args, config, client, logger)
    except ConfigError as e:
        logger.error(str(e))
        return EXIT_FAILED
    except RebuildError as e:
        logger.error(f"failed: {e}")
        return EXIT_FAILED


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
