from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path

from .artifacts import retrieve
from .config import Settings, load_settings
from .content import BodyFormat
from .errors import ArchiverError, NotFound, StorageUnavailable, ValidationError
from .events import CompleteEvent, ErrorEvent, to_json_line
from .manifest import utc_iso
from .moderation import ReportStatus, ReportTicket
from .pipeline import ArchivePipeline, RunRequest
from .urls import CrawlTarget

EXIT_OK = 0
EXIT_USAGE = 2
EXIT_REFUSED = 3
EXIT_STORAGE = 4

_REFUSED_CODES = {"blocked", "policy_denied", "rate_limited", "empty_result", "cancelled"}


def _exit_code_for(error: ArchiverError | ErrorEvent) -> int:
    code = error.code
    if code == ValidationError.code:
        return EXIT_USAGE
    if code in _REFUSED_CODES:
        return EXIT_REFUSED
    return EXIT_STORAGE


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _write_download(pipeline: ArchivePipeline, download_id: str, out: Path) -> int:
    try:
        download = retrieve(pipeline.artifacts, download_id)
    except (NotFound, StorageUnavailable) as e:
        print(str(e), file=sys.stderr)
        return EXIT_STORAGE
    try:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(download.data)
    except OSError as e:
        print(str(e), file=sys.stderr)
        return EXIT_STORAGE
    print(f"download: wrote {download.content_length} bytes to {out}", file=sys.stderr)
    return EXIT_OK


def _cmd_archive(args: argparse.Namespace, pipeline: ArchivePipeline) -> int:
    request = RunRequest(url=args.url, consent=args.consent, timestamp=utc_iso())
    terminal = None
    for event in pipeline.run(request, requester=args.requester):
        sys.stdout.write(to_json_line(event))
        sys.stdout.flush()
        terminal = event

    if isinstance(terminal, ErrorEvent):
        return _exit_code_for(terminal)
    if isinstance(terminal, CompleteEvent) and args.out is not None:
        return _write_download(pipeline, terminal.download_id, args.out)
    return EXIT_OK


def _cmd_policy(args: argparse.Namespace, pipeline: ArchivePipeline) -> int:
    try:
        target = CrawlTarget.from_url(
            args.url, allowed_hosts=pipeline.settings.allowed_hosts
        )
    except ValidationError as e:
        print(str(e), file=sys.stderr)
        return EXIT_USAGE
    decision = pipeline.policy.evaluate(target.origin)
    print(
        json.dumps(
            {
                "origin": target.origin,
                "site_id": target.site_id,
                "allowed": decision.can_fetch(target.root_url),
                "crawl_delay_ms": decision.crawl_delay_ms,
                "disallow": list(decision.disallow_prefixes),
                "allow": list(decision.allow_prefixes),
            },
            indent=2,
        )
    )
    return EXIT_OK


def _cmd_report(args: argparse.Namespace, pipeline: ArchivePipeline) -> int:
    try:
        ticket = ReportTicket.from_mapping(
            {
                "vaultUrl": args.vault_url,
                "email": args.email,
                "reason": args.reason,
                "details": args.details,
                "verificationUrl": args.verification_url,
            }
        )
        report_id = pipeline.moderation.file_report(ticket)
    except ArchiverError as e:
        print(str(e), file=sys.stderr)
        return _exit_code_for(e)
    print(json.dumps({"reportId": report_id, "siteId": ticket.site_id}))
    return EXIT_OK


def _cmd_reports(args: argparse.Namespace, pipeline: ArchivePipeline) -> int:
    try:
        if args.resolve:
            pipeline.moderation.resolve_report(args.resolve, ReportStatus(args.status))
        pending = pipeline.moderation.pending_reports()
    except ArchiverError as e:
        print(str(e), file=sys.stderr)
        return _exit_code_for(e)
    print(json.dumps(pending, indent=2, ensure_ascii=False))
    return EXIT_OK


def _cmd_block(args: argparse.Namespace, pipeline: ArchivePipeline) -> int:
    try:
        if args.cmd == "block":
            pipeline.moderation.block(args.site_id, args.reason)
        else:
            pipeline.moderation.unblock(args.site_id)
    except ArchiverError as e:
        print(str(e), file=sys.stderr)
        return _exit_code_for(e)
    print(f"{args.cmd}: {args.site_id}")
    return EXIT_OK


def main(argv: list[str] | None = None, *, pipeline: ArchivePipeline | None = None) -> int:
    parser = argparse.ArgumentParser(prog="vault-archiver")
    parser.add_argument("--log-level", default=None)
    parser.add_argument(
        "--redis-url",
        default=None,
        help="Overrides VAULT_ARCHIVER_REDIS_URL; without one, state is in-memory",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    archive_p = sub.add_parser("archive", help="Crawl a vault and build its archive")
    archive_p.add_argument("url")
    archive_p.add_argument(
        "--consent",
        action="store_true",
        help="Confirm the content will be used in line with its license",
    )
    archive_p.add_argument("--out", type=Path, default=None)
    archive_p.add_argument("--requester", default="cli")
    archive_p.add_argument("--max-pages", type=int, default=None)
    archive_p.add_argument(
        "--markdown",
        action="store_true",
        help="Render page bodies as Markdown instead of plain text",
    )

    download_p = sub.add_parser("download", help="Retrieve an archive once")
    download_p.add_argument("download_id")
    download_p.add_argument("--out", type=Path, required=True)

    policy_p = sub.add_parser("policy", help="Show the robots.txt decision for a URL")
    policy_p.add_argument("url")

    report_p = sub.add_parser("report", help="File a takedown report")
    report_p.add_argument("--vault-url", required=True)
    report_p.add_argument("--email", required=True)
    report_p.add_argument(
        "--reason",
        required=True,
        choices=["owner", "copyright", "privacy", "other"],
    )
    report_p.add_argument("--details", required=True)
    report_p.add_argument("--verification-url", default=None)

    reports_p = sub.add_parser("reports", help="List pending reports")
    reports_p.add_argument("--resolve", default=None, metavar="REPORT_ID")
    reports_p.add_argument(
        "--status",
        default=ReportStatus.RESOLVED.value,
        choices=[s.value for s in ReportStatus],
    )

    block_p = sub.add_parser("block", help="Add a site to the block list")
    block_p.add_argument("site_id")
    block_p.add_argument("--reason", default="manual")

    unblock_p = sub.add_parser("unblock", help="Remove a site from the block list")
    unblock_p.add_argument("site_id")

    args = parser.parse_args(argv)

    if pipeline is None:
        try:
            settings: Settings = load_settings()
        except ValueError as e:
            print(str(e), file=sys.stderr)
            return EXIT_USAGE
        overrides: dict[str, object] = {}
        if args.redis_url:
            overrides["redis_url"] = args.redis_url
        if args.log_level:
            overrides["log_level"] = args.log_level
        if args.cmd == "archive" and args.max_pages is not None:
            if args.max_pages < 1:
                print("--max-pages must be positive", file=sys.stderr)
                return EXIT_USAGE
            overrides["max_pages"] = args.max_pages
        settings = dataclasses.replace(settings, **overrides)
        _configure_logging(settings.log_level)

        body_format = BodyFormat.TEXT
        if args.cmd == "archive" and args.markdown:
            body_format = BodyFormat.MARKDOWN
        pipeline = ArchivePipeline.from_settings(settings, body_format=body_format)

    if args.cmd == "archive":
        return _cmd_archive(args, pipeline)
    if args.cmd == "download":
        return _write_download(pipeline, args.download_id, args.out)
    if args.cmd == "policy":
        return _cmd_policy(args, pipeline)
    if args.cmd == "report":
        return _cmd_report(args, pipeline)
    if args.cmd == "reports":
        return _cmd_reports(args, pipeline)
    if args.cmd in {"block", "unblock"}:
        return _cmd_block(args, pipeline)

    parser.error(f"unknown command: {args.cmd}")
    return EXIT_USAGE

