from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv

from report_mailer.config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from report_mailer.excel.normalize import normalize_records
from report_mailer.excel.reader import read_report_file
from report_mailer.logging.error_log import ErrorLogBuffer
from report_mailer.logging.init import enable_debug, log_summary, setup_logging
from report_mailer.mail.dispatch import DispatchError, ResendDispatcher, dispatch_group
from report_mailer.mail.recipients import RecipientStore, ValidationError
from report_mailer.models.config_models import MailerConfig
from report_mailer.services.export import write_group_csv
from report_mailer.services.generation import GeminiDraftGenerator
from report_mailer.services.grouping import partition_rows
from report_mailer.services.session import IngestionError, ReportSession
from report_mailer.services.summary import render_summary_fields

"""CLI entrypoint.

Commands:
- run REPORT      ingest, generate every draft (paced), optionally export / send
- inspect REPORT  print normalized headers, groups and sample rows
- recipients      show or edit the persisted group -> recipients mapping

Exit codes: 0 all groups ready (and sent), 2 some group failed or a dispatch
failed, 1 fatal (config, ingestion, recipients file).
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv (API keys). Values override the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="report-mailer", description="Report -> per-group AI email drafts")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--config", default=str(DEFAULT_CONFIG_PATH), help="Path to YAML config")
    sub = p.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Generate drafts for every group of a report")
    run.add_argument("report", help="Excel (.xlsx/.xls) or CSV report file")
    run.add_argument("--export", action="store_true", help="Write one CSV per group")
    run.add_argument("--send", action="store_true", help="Send ready drafts to saved recipients")

    inspect = sub.add_parser("inspect", help="Print headers, groups and first rows then exit")
    inspect.add_argument("report")

    rcp = sub.add_parser("recipients", help="Show or edit saved recipients")
    rcp_sub = rcp.add_subparsers(dest="action", required=True)
    rcp_sub.add_parser("show")
    rcp_set = rcp_sub.add_parser("set")
    rcp_set.add_argument("group")
    rcp_set.add_argument("emails", help='Comma-separated, e.g. "a@b.com, c@d.com" ("" clears)')
    return p.parse_args(argv)


def _inspect(report: Path) -> int:
    try:
        rows = normalize_records(read_report_file(report))
    except IngestionError as e:
        print(f"inspect: {e}")
        return EXIT_FATAL
    groups = partition_rows(rows)
    print(f"FILE: {report.name} rows={len(rows)}")
    print(f"  headers={list(rows[0].keys())}")
    for g in groups:
        print(f"  GROUP: {g.name} rows={len(g.rows)}")
    print("  sample_rows=", [r.to_dict() for r in rows[:3]])
    return EXIT_SUCCESS_ALL


def _recipients(cfg: MailerConfig, args: argparse.Namespace, logger) -> int:
    store = RecipientStore(Path(cfg.recipients_file))
    try:
        store.load()
    except ValueError as e:
        logger.error(f"recipients: {e}")
        return EXIT_FATAL
    if args.action == "show":
        for group, raw in store.as_dict().items():
            print(f"{group}: {raw or '-'}")
        return EXIT_SUCCESS_ALL
    try:
        saved = store.set(args.group, args.emails)
    except ValidationError as e:
        logger.error(f"recipients: {e}")
        return EXIT_FATAL
    print(f"{args.group}: {saved or '-'}")
    return EXIT_SUCCESS_ALL


def _send_all(cfg: MailerConfig, session: ReportSession, error_log: ErrorLogBuffer, logger) -> int | None:
    """Send every ready draft; returns the failure count, or None when recipients cannot be loaded."""
    store = RecipientStore(Path(cfg.recipients_file))
    try:
        store.load()
    except ValueError as e:
        logger.error(f"recipients: {e}")
        return None
    dispatcher = ResendDispatcher(cfg.dispatch)
    failures = 0
    for group in session.groups:
        state = session.store.get(group.name)
        if not state.is_ready:
            continue
        try:
            dispatch_group(dispatcher, group.name, state, store.get(group.name))
        except DispatchError as e:
            failures += 1
            logger.error(f"dispatch group={group.name}: {e}")
            error_log.record(session.source_name, group.name, "DISPATCH_REJECTED", str(e))
    return failures


def _run(cfg: MailerConfig, args: argparse.Namespace, logger) -> int:
    error_log = ErrorLogBuffer()
    session = ReportSession(GeminiDraftGenerator(cfg.generation), cfg.batch, error_log=error_log)
    report = Path(args.report)
    logger.info(f"Processing report: {report}")
    try:
        groups = session.ingest_file(report)
    except IngestionError as e:
        logger.error(f"ingest: {e}")
        return EXIT_FATAL

    result = asyncio.run(session.generate_all())
    for name in result.failed_names:
        logger.warning(f"draft failed group={name}: {session.store.get(name).error}")

    if args.export:
        export_dir = Path(cfg.export_directory)
        for group in groups:
            path = write_group_csv(group, export_dir)
            if path is not None:
                logger.info(f"exported group={group.name} -> {path}")

    dispatch_failures = 0
    if args.send:
        sent = _send_all(cfg, session, error_log, logger)
        if sent is None:
            return EXIT_FATAL
        dispatch_failures = sent
        try:
            error_log.flush()
        except OSError as e:
            logger.warning(f"failed to write error log: {e}")

    log_summary(render_summary_fields(result))

    if result.failed_groups > 0 or dispatch_failures > 0:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # [] を渡されたときに sys.argv[1:] が混入しないよう None のときのみ読む
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        enable_debug(logger)
        logger.debug("debug mode enabled")

    if args.command == "inspect":
        return _inspect(Path(args.report))

    try:
        cfg = load_config(Path(args.config))
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.command == "recipients":
        return _recipients(cfg, args, logger)
    return _run(cfg, args, logger)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
