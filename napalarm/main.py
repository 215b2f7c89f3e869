"""
Main entry point for napalarm.

`napalarm serve` runs the web API (metadata proxy, alarms, history, config);
`napalarm run` counts down one alarm in the terminal.
"""

import argparse
import logging
import sys
from typing import List, Optional

import uvicorn

from .config_manager import ConfigManager
from .database import Database
from .durations import PRESET_MINUTES, resolve_duration_ms
from .engine import create_session
from .errors import InvalidDurationError, MetadataError
from .history import AlarmHistory
from .models import MusicKind
from .oembed import MetadataProxyClient

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="napalarm - nap timer and alarm")
    parser.add_argument("--db", default=None, help="SQLite database path")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the web API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    run = subparsers.add_parser("run", help="Run an alarm in this terminal")
    run.add_argument(
        "--preset",
        type=int,
        choices=PRESET_MINUTES,
        help="Preset duration in minutes",
    )
    run.add_argument("--hours", type=int, default=0)
    run.add_argument("--minutes", type=int, default=0)
    run.add_argument("--seconds", type=int, default=0)
    run.add_argument("--music", default="", help="Audio URL/file or YouTube link")
    run.add_argument("--label", default=None, help="Label shown in the history")
    return parser


def serve(args, database: Database) -> int:
    from .web.server import create_app

    config_manager = ConfigManager(database)
    history = AlarmHistory(database)
    app = create_app(config_manager, history)

    logger.info("napalarm API listening on http://%s:%s", args.host, args.port)
    config = uvicorn.Config(app, host=args.host, port=args.port, log_level="info")
    uvicorn.Server(config).run()
    return 0


def run_alarm(args, database: Database) -> int:
    from .host import ConsoleAlarm

    preset = args.preset if args.preset is not None else "custom"
    try:
        duration_ms = resolve_duration_ms(preset, args.hours, args.minutes, args.seconds)
    except InvalidDurationError as e:
        logger.error("%s", e)
        return 2

    config_manager = ConfigManager(database)
    session = create_session(duration_ms, args.music, args.label, config_manager)
    source = session.music_source

    label = source.label
    if label is None and source.kind == MusicKind.EXTERNAL_VIDEO:
        try:
            label = MetadataProxyClient(config_manager).resolve_metadata(source.locator).title
            if label:
                print(f"♪ {label}")
        except MetadataError as e:
            logger.warning("Could not look up video title: %s", e.code)

    AlarmHistory(database).record(
        duration_ms, source.history_locator(), source.kind.value, label=label
    )

    try:
        console = ConsoleAlarm(session, config_manager)
    except RuntimeError as e:
        logger.error("%s", e)
        return 1
    return console.run()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    database = Database(args.db)
    try:
        if args.command == "serve":
            return serve(args, database)
        return run_alarm(args, database)
    finally:
        database.close()


if __name__ == "__main__":
    sys.exit(main())
