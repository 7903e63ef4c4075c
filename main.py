"""
Command line entry point: ingest documents, then print the solvency report.
"""

import argparse
import logging
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Optional, Sequence

from config import get_settings
from database import SchemaError, SchemaManager, StorageError, create_store, session_scope
from services import (
    IngestService,
    LedgerService,
    ReportDataMissing,
    ReportService,
    render_history,
)

logger = logging.getLogger(__name__)


def _app_version() -> str:
    try:
        return version("budget-ledger")
    except PackageNotFoundError:
        return "unknown"


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def create_cli() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="budget-ledger",
        description="Ingests weakly-structured income and expense records for analysis.",
    )
    parser.add_argument("--version", action="version", version=_app_version())
    parser.add_argument(
        "-f",
        "--files",
        nargs="+",
        type=Path,
        default=[],
        help="Input documents to ingest (TOML, one record each)",
    )
    parser.add_argument(
        "-d",
        "--database",
        type=str,
        default=None,
        help="SQLite file to read and write; created if missing (default: in-memory)",
    )
    parser.add_argument(
        "--history",
        action="store_true",
        help="Print every stored record before the report",
    )
    parser.add_argument(
        "--no-report",
        action="store_true",
        help="Only ingest; do not print the report",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = create_cli().parse_args(argv)
    settings = get_settings()
    setup_logging("DEBUG" if args.verbose else settings.log_level)

    engine = create_store(settings.resolve_database_url(args.database))
    try:
        SchemaManager(engine, allow_reset=settings.allow_reset).ensure_ready()
        with session_scope(engine) as session:
            result = IngestService(session).ingest_paths(args.files)
            logger.info(
                f"ingest_done: stored={len(result.stored)} skipped={len(result.failures)}"
            )
            if args.history:
                sys.stdout.write(render_history(LedgerService(session)))
            if not args.no_report:
                sys.stdout.write(ReportService(session).generate())
    except SchemaError as exc:
        logger.error(f"Store initialization failed: {exc}")
        return 1
    except StorageError as exc:
        logger.error(f"Storage failure: {exc}")
        return 1
    except ReportDataMissing as exc:
        logger.error(f"Cannot generate report: {exc}")
        return 1
    finally:
        engine.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
