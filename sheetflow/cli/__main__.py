from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

from ..config.loader import ConfigError, load_config
from ..excel.reader import FileReadError, read_tabular_file
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import log_summary, setup_logging
from ..models.processing_result import ProcessingResult
from ..services.mapping_storage import MappingStore
from ..services.progress import RowProgressTracker
from ..services.summary import render_summary_line
from ..services.workbook import ROW_FILTERS, UnknownSheetError, WorkbookSession

"""CLI entrypoint.

Flow:
- Load .env (python-dotenv), then the workbook config
- Read one CSV/XLSX file into the selected sheet
- Pick the initial mapping (config seed -> stored -> auto-map)
- Run the chunked pipeline with a tqdm row bar (TTY only)
- Write processed rows (JSON Lines) and the validation error log
- Emit the SUMMARY line and exit 0 (all valid) / 2 (some invalid) / 1 (fatal)
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

DEFAULT_CONFIG_PATH = Path("config/workbook.yml")


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env; its values win over the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="sheetflow", description="Map, transform and validate a CSV/XLSX file")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Workbook config (YAML)")
    p.add_argument("--sheet", help="Sheet slug (default: first sheet)")
    p.add_argument("--file", type=Path, required=True, help="CSV or XLSX file to import")
    p.add_argument("--batch-size", type=int, help="Rows per processing batch")
    p.add_argument("--output", type=Path, help="Write processed rows as JSON Lines")
    p.add_argument("--only", choices=ROW_FILTERS, default="all", help="Rows written to --output")
    p.add_argument("--save-mapping", action="store_true", help="Persist the effective mapping")
    p.add_argument("--show-mapping", action="store_true", help="Print the header -> field mapping")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def _write_rows(path: Path, session: WorkbookSession, which: str) -> int:
    rows = session.filtered_rows(which)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        for row in rows:
            # datetime 等は文字列化して出力
            f.write(json.dumps(row.to_dict(), ensure_ascii=False, default=str) + "\n")
    return len(rows)


def main(argv: list[str] | None = None) -> int:
    # None のときのみシステム引数を読む (テストで main([]) を呼べるように)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    if args.debug:
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.batch_size is not None and args.batch_size < 1:
        logger.error(f"--batch-size must be >= 1 (got {args.batch_size})")
        return EXIT_FATAL

    store = MappingStore(cfg.mapping_store_path) if cfg.mapping_store_path else None
    session = WorkbookSession(cfg, store=store, auto_process=False)
    try:
        if args.sheet:
            session.set_current_sheet(args.sheet)
        data = read_tabular_file(args.file)
    except UnknownSheetError as e:
        logger.error(f"sheet: {e}")
        return EXIT_FATAL
    except FileReadError as e:
        logger.error(f"file: {e}")
        return EXIT_FATAL

    logger.info(f"Processing {args.file.name} -> sheet '{session.sheet.slug}'")
    session.import_data(data, process=False)

    if args.show_mapping:
        for header, target in session.mapping_state.items():
            logger.info(f"mapping {header} -> {target or '-'}")
    for problem in session.mapping_problems():
        logger.warning(f"mapping: {problem}")

    with RowProgressTracker(data.row_count) as tracker:
        result = asyncio.run(session.process_data_async(tracker.on_update, args.batch_size))
    if result is None:
        # 通常は起こらない (CLI では上書き実行なし)
        logger.error("processing: run was cancelled")
        return EXIT_FATAL

    if args.save_mapping:
        if session.save_mapping():
            logger.info(f"mapping saved: {cfg.mapping_store_path}")
        else:
            logger.warning("mapping not saved: no mapping_store_path configured")

    if args.output:
        written = _write_rows(args.output, session, args.only)
        logger.info(f"rows written: {written} -> {args.output}")

    error_log = ErrorLogBuffer()
    error_log.extend_validation_errors(data.file_name or args.file.name, session.sheet.slug, result.errors)
    log_path = error_log.flush()
    if log_path is not None:
        logger.info(f"error log: {log_path}")

    _emit_summary(result)
    return EXIT_SUCCESS_ALL if result.invalid_rows == 0 else EXIT_PARTIAL_FAILURE


def _emit_summary(result: ProcessingResult) -> None:
    # log_summary がラベルを付与するため先頭の "SUMMARY " を外す
    log_summary(render_summary_line(result).removeprefix("SUMMARY "))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
