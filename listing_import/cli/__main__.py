from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from dotenv import load_dotenv

from ..config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from ..csvio.reader import ParseError
from ..db.postgres import PostgresRepository
from ..db.repository import InMemoryRepository, RecordRepository, RepositoryError
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import log_summary, setup_logging
from ..models.config_models import DatabaseConfig, ImportConfig
from ..models.import_options import ImportOptions, InvalidOptionsError
from ..services.error_report import write_error_report
from ..services.orchestrator import ImportPipeline
from ..services.summary import render_summary_line

"""CLI entrypoint.

    python -m listing_import.cli [--config PATH] [--debug] preview FILE
    python -m listing_import.cli validate FILE
    python -m listing_import.cli commit FILE [--update-duplicates | --skip-duplicates]
                                             [--batch-size N] [--error-report PATH]

Exit codes: 0 no row errors, 2 completed with row errors, 1 fatal
(configuration, unreadable file, invalid options).

Connection settings are resolved in this order:
    1. `.env` (loaded with override, so it wins over the process environment)
    2. DATABASE_URL / PGDSN, or PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
    3. the ``database`` section of the config file
Without any of them, or with DISABLE_DB_CONNECT=1, commits go to an in-memory
repository (mock mode).
"""

EXIT_SUCCESS_ALL = 0
EXIT_FATAL = 1
EXIT_PARTIAL_FAILURE = 2


def _resolve_dsn(db_cfg: DatabaseConfig) -> str | None:
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST") or db_cfg.host
    if not host:
        return None
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


def _memory_repository(pipeline: ImportPipeline) -> InMemoryRepository:
    return InMemoryRepository(
        identity_field=pipeline.schema.identity_field,
        fallback_fields=pipeline.schema.fallback_identity_fields,
        normalizer=pipeline.normalizer,
    )


@contextmanager
def _repository(cfg: ImportConfig, pipeline: ImportPipeline, logger) -> Iterator[RecordRepository]:
    dsn = None if os.getenv("DISABLE_DB_CONNECT") == "1" else _resolve_dsn(cfg.database)
    if dsn is None:
        logger.info("no database configured -> mock mode (in-memory repository)")
        yield _memory_repository(pipeline)
        return
    repo: PostgresRepository | None = None
    try:
        repo = PostgresRepository.connect(
            dsn,
            pipeline.schema,
            normalizer=pipeline.normalizer,
            table=cfg.database.table,
            max_connections=cfg.settings.workers,
            statement_timeout_seconds=cfg.settings.repository_timeout_seconds,
        )
    except RepositoryError as e:
        logger.info(f"DB connection failed -> fallback to mock mode: {e}")
    if repo is None:
        yield _memory_repository(pipeline)
        return
    logger.info(f"mode=live table={cfg.database.table}")
    try:
        yield repo
    finally:
        repo.close()


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="listing_import", description="CSV -> listings importer")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="YAML config path")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--json", action="store_true", help="Print the stage result as JSON")
    sub = p.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("preview", "Show headers, sample rows and errors of the first rows"),
        ("validate", "Validate every row without writing"),
    ):
        sp = sub.add_parser(name, help=help_text)
        sp.add_argument("file", type=Path)

    cp = sub.add_parser("commit", help="Validate, classify duplicates and write rows")
    cp.add_argument("file", type=Path)
    mode = cp.add_mutually_exclusive_group()
    mode.add_argument("--update-duplicates", action="store_true", help="Update existing records")
    mode.add_argument(
        "--skip-duplicates", action="store_true", help="Skip rows matching existing records (default)"
    )
    cp.add_argument("--batch-size", type=int, default=None, help="Rows per batch (10-200)")
    cp.add_argument("--error-report", type=Path, default=None, help="Write errors as CSV to PATH")
    return p.parse_args(argv)


def _options(args: argparse.Namespace, cfg: ImportConfig) -> ImportOptions:
    batch_size = args.batch_size if args.batch_size is not None else cfg.settings.batch_size
    if args.update_duplicates:
        return ImportOptions(update_duplicates=True, batch_size=batch_size)
    return ImportOptions(batch_size=batch_size)


def _emit(args: argparse.Namespace, payload: dict) -> None:
    if args.json:
        print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def main(argv: list[str] | None = None) -> int:
    # None reads sys.argv; an explicit [] must not pick up the test runner's arguments
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    load_dotenv(dotenv_path=Path(".env"), override=True)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if not args.file.exists():
        logger.error(f"file not found: {args.file}")
        return EXIT_FATAL

    pipeline = ImportPipeline(cfg)
    name = args.file.name
    try:
        if args.command == "preview":
            preview = pipeline.preview(args.file, name=name)
            logger.info(
                f"{name}: columns={len(preview.headers)} rows={preview.total_row_count} "
                f"errors_in_first_{preview.validated_rows}={len(preview.validation_errors)}"
            )
            for warning in preview.warnings:
                logger.warning(warning)
            _emit(args, preview.to_dict())
            return EXIT_SUCCESS_ALL

        if args.command == "validate":
            summary = pipeline.validate(args.file, name=name)
            logger.info(summary.message)
            for warning in summary.warnings:
                logger.warning(warning)
            _emit(args, summary.to_dict())
            return EXIT_PARTIAL_FAILURE if summary.errors else EXIT_SUCCESS_ALL

        options = _options(args, cfg)
        error_log = ErrorLogBuffer()
        with _repository(cfg, pipeline, logger) as repository:
            result = pipeline.commit(
                args.file, options, repository=repository, name=name, error_log=error_log
            )
    except ParseError as e:
        logger.error(f"parse: {e}")
        return EXIT_FATAL
    except InvalidOptionsError as e:
        logger.error(f"options: {e}")
        return EXIT_FATAL

    for warning in result.warnings:
        logger.warning(warning)
    for err in result.errors:
        logger.debug(f"row={err.row} field={err.field} {err.message}")
    log_path = error_log.flush()
    if log_path is not None:
        logger.info(f"error log written: {log_path}")
    if args.error_report is not None:
        write_error_report(result.errors, args.error_report)
        logger.info(f"error report written: {args.error_report}")
    logger.info(result.message)
    _emit(args, result.to_dict())

    # log_summary adds the "SUMMARY " label itself
    log_summary(render_summary_line(result)[len("SUMMARY "):])
    return EXIT_PARTIAL_FAILURE if result.errors else EXIT_SUCCESS_ALL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
