from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from .app import CrateMatchApp
from .catalog import load_catalog, select_releases
from .commands import cache as cmd_cache
from .commands import resolve as cmd_resolve
from .commands import unmatched as cmd_unmatched
from .config import Settings, find_config
from .errors import CatalogError, CrateMatchError
from .models import UnmatchStatus

LOG_FORMAT = "%(levelname).1s | %(name)s | %(message)s"

C_RESET = "\033[0m"
LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",  # Cyan
    logging.INFO: "\033[37m",  # Light gray
    logging.WARNING: "\033[33m",  # Yellow
    logging.ERROR: "\033[31m",  # Red
    logging.CRITICAL: "\033[35m",  # Magenta
}


class ColorFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = LEVEL_COLORS.get(record.levelno)
        if not color:
            return message
        return f"{color}{message}{C_RESET}"


class WarningBufferHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.WARNING)
        self.records: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
        except Exception:  # pragma: no cover
            msg = record.getMessage()
        self.records.append(msg)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cratematch", description="Match record-collection tracks to a search index"
    )
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)
    resolve_parser = subparsers.add_parser(
        "resolve", help="Resolve every track of a catalog export"
    )
    resolve_parser.add_argument("catalog", type=Path, help="Catalog YAML file")
    resolve_parser.add_argument(
        "--release", default=None, help="Only resolve the release with this id"
    )
    resolve_parser.add_argument(
        "--playlist-out",
        type=Path,
        default=None,
        help="Write resolved track ids per release to this JSON file",
    )
    review_parser = subparsers.add_parser(
        "review", help="Interactively review tracks that could not be matched"
    )
    review_parser.add_argument(
        "--release", default=None, help="Only review tracks of this release"
    )
    unmatched_parser = subparsers.add_parser(
        "unmatched", help="List tracks in the unmatched queue"
    )
    unmatched_parser.add_argument(
        "--status",
        choices=[status.value for status in UnmatchStatus],
        default=UnmatchStatus.PENDING.value,
    )
    unmatched_parser.add_argument("--release", default=None, help="Filter by release id")
    unmatched_parser.add_argument(
        "--json",
        action="store_true",
        help="Emit machine-readable JSON to stdout",
    )
    subparsers.add_parser("cache-stats", help="Show match cache and queue statistics")
    subparsers.add_parser(
        "clear-cache", help="Forget automatic matches (manual decisions are kept)"
    )
    return parser


def configure_logging(level_name: str, warn_log_path: Path) -> WarningBufferHandler:
    log_level = getattr(logging, level_name.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)

    color_handler = logging.StreamHandler()
    color_handler.setFormatter(ColorFormatter(LOG_FORMAT))
    root_logger.addHandler(color_handler)

    warn_buffer = WarningBufferHandler()
    warn_buffer.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(warn_buffer)

    file_handler = logging.FileHandler(warn_log_path, mode="w", encoding="utf-8")
    file_handler.setLevel(logging.WARNING)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(file_handler)

    logging.getLogger("musicbrainzngs").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    return warn_buffer


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    config_path = find_config(args.config)
    settings = Settings.load(config_path)

    warn_log_path = Path.cwd() / "cratematch-warnings.log"
    warn_buffer = configure_logging(args.log_level, warn_log_path)

    app = CrateMatchApp.create(settings)
    try:
        match args.command:
            case "resolve":
                releases = select_releases(load_catalog(args.catalog), args.release)
                try:
                    batch = app.get_batch()
                except ValueError as exc:
                    raise SystemExit(f"Search provider not configured: {exc}")
                if not releases:
                    raise SystemExit(
                        f"No release {args.release!r} in {args.catalog}"
                        if args.release
                        else f"No releases in {args.catalog}"
                    )
                asyncio.run(
                    cmd_resolve.run(
                        batch,
                        releases,
                        timeout=settings.resolver.batch_timeout_seconds,
                        playlist_out=args.playlist_out,
                    )
                )
            case "review":
                app.get_review(owner_id=args.release).run()
            case "unmatched":
                cmd_unmatched.run(
                    app.queue,
                    status=args.status,
                    owner_id=args.release,
                    json_output=args.json,
                )
            case "cache-stats":
                cmd_cache.stats(app.cache, app.queue)
            case "clear-cache":
                cmd_cache.clear(app.cache)
            case _:
                parser.error("Unknown command")
    except KeyboardInterrupt:
        print("\nInterrupted; unfinished tracks were left for the next run.")
        raise SystemExit(130)
    except CatalogError as exc:
        raise SystemExit(str(exc))
    except CrateMatchError as exc:
        logging.getLogger(__name__).error("%s", exc)
        raise SystemExit(1)
    finally:
        app.close()
        if warn_buffer.records:
            print("\n\033[33mWarnings/Errors summary:\033[0m")
            for line in warn_buffer.records:
                print(f" - {line}")
            print(f"\nFull warning log: {warn_log_path}")


if __name__ == "__main__":
    main()
