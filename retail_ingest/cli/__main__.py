from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from retail_ingest.config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from retail_ingest.db.postgres import PostgresStore
from retail_ingest.db.store import InMemoryStore
from retail_ingest.errors import IngestError
from retail_ingest.excel.headers import rows_from_grid
from retail_ingest.excel.reader import apply_format, read_workbook, select_sheets
from retail_ingest.logging.error_log import ErrorLogBuffer
from retail_ingest.logging.init import log_summary, set_debug, setup_logging
from retail_ingest.models.config_models import DatabaseConfig, IngestConfig
from retail_ingest.models.records import UploadMode, UploadType
from retail_ingest.services.orchestrator import ingest_file
from retail_ingest.services.progress import ProgressTracker
from retail_ingest.services.summary import render_summary_line

"""Command line entry point.

    python -m retail_ingest.cli FILE --type receiving-voucher [--mode weekly_update]

Exit codes:
- 0: every record uploaded or skipped
- 2: at least one record failed (validation or write)
- 1: fatal (config, structural error, database unreachable)
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    """Build the libpq DSN.

    優先順位 (.env は main() 冒頭で override 読み込み済み):
        1. DATABASE_URL / PGDSN (DSN 全体)
        2. 個別 PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
        3. config の database セクション (不足分のフォールバック)
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def _db_connection(cfg: IngestConfig) -> Iterator[Any]:  # pragma: no cover (needs a live server)
    conn = psycopg2.connect(resolve_dsn(cfg.database))
    conn.autocommit = False  # レコード単位の COMMIT は PostgresStore が行う
    try:
        yield conn
    finally:
        conn.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv; .env values win over the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="retail-ingest", description="Retail spreadsheet -> PostgreSQL ingestion"
    )
    p.add_argument("file", nargs="?", type=Path, help="Spreadsheet (.xlsx) to ingest")
    p.add_argument(
        "--type",
        dest="upload_type",
        choices=[t.value for t in UploadType],
        help="Upload type of FILE",
    )
    p.add_argument(
        "--mode",
        choices=[m.value for m in UploadMode],
        default=UploadMode.INITIAL.value,
        help="initial: skip existing records / weekly_update: upsert them",
    )
    p.add_argument("--config", type=Path, default=None, help=f"Config YAML (default {DEFAULT_CONFIG_PATH})")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--inspect-data", action="store_true", help="Print sheet headers & first rows then exit")
    p.add_argument("--init-db", action="store_true", help="Create the database tables if missing")
    return p.parse_args(argv)


def _load(args: argparse.Namespace) -> IngestConfig:
    if args.config is not None:
        return load_config(args.config)
    if DEFAULT_CONFIG_PATH.exists():
        return load_config(DEFAULT_CONFIG_PATH)
    return IngestConfig.defaults()


def _inspect_data(path: Path, upload_type: UploadType | None, cfg: IngestConfig) -> int:
    try:
        sheets = read_workbook(path)
    except IngestError as e:
        print(f"inspect: {e}")
        return EXIT_FATAL
    print(f"FILE: {path.name}")
    fmt = cfg.format_for(upload_type) if upload_type is not None else None
    if fmt is not None:
        sheets = select_sheets(sheets, fmt.sheet_pattern)
    for sheet in sheets:
        grid = apply_format(sheet.grid, fmt) if fmt is not None else sheet.grid
        columns, rows = rows_from_grid(
            grid, sheet=sheet.name, overrides=fmt.header_overrides if fmt else None
        )
        print(f"  SHEET: {sheet.name} cols={columns}")
        # date 等は isoformat で表示
        sample = [
            {k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in r.values.items()}
            for r in rows[:3]
        ]
        print("    sample_rows=", sample)
    return EXIT_SUCCESS_ALL


def _run(args: argparse.Namespace, cfg: IngestConfig, store: Any) -> int:
    logger = setup_logging()
    error_log = ErrorLogBuffer()
    try:
        with ProgressTracker(description=args.file.name) as tracker:
            result = ingest_file(
                args.file,
                args.upload_type,
                store=store,
                mode=args.mode,
                config=cfg,
                progress=tracker,
                error_log=error_log,
            )
    except IngestError as e:
        logger.error(f"{args.file.name}: {e}")
        return EXIT_FATAL
    finally:
        counts = error_log.counts_by_type()
        path = error_log.flush()
        if path is not None:
            breakdown = " ".join(f"{k}={v}" for k, v in sorted(counts.items()))
            logger.info(f"error log written: {path} ({breakdown})")

    for message in result.errors:
        logger.warning(message)
    for sample in result.duplicates:
        logger.debug(f"skipped {sample.describe()}")
    # log_summary が "SUMMARY " を付けるため先頭を除去
    log_summary(render_summary_line(result)[len("SUMMARY "):])

    if result.failed > 0:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # 空リスト [] の場合に sys.argv を読まないよう None のみ判定
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    if args.debug:
        set_debug(True)
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)
    try:
        cfg = _load(args)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    upload_type = UploadType(args.upload_type) if args.upload_type else None

    if args.file is not None and not args.file.exists():
        logger.error(f"file not found: {args.file}")
        return EXIT_FATAL

    if args.inspect_data:
        if args.file is None:
            logger.error("--inspect-data needs FILE")
            return EXIT_FATAL
        return _inspect_data(args.file, upload_type, cfg)

    if args.file is not None and upload_type is None:
        logger.error("--type is required")
        return EXIT_FATAL
    if args.file is None and not args.init_db:
        logger.error("nothing to do: give FILE and --type, or --init-db")
        return EXIT_FATAL

    # テスト / dry-run 用: DISABLE_DB_CONNECT=1 ならメモリ上のストアに書く
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> in-memory store")
        if args.file is None:
            return EXIT_SUCCESS_ALL
        return _run(args, cfg, InMemoryStore())

    try:
        with _db_connection(cfg) as conn:
            store = PostgresStore(conn)
            if args.init_db:
                store.ensure_schema()
            if args.file is None:
                return EXIT_SUCCESS_ALL
            return _run(args, cfg, store)
    except psycopg2.Error as e:
        logger.error(f"database: {str(e).strip()}")
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
