"""Command-line front end: parse archive URLs, scan a domain, download a mirror."""

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

from .archive import ArchiveClient
from .cdx import CaptureIndex
from .config import DEFAULT_OUTPUT_ROOT, MirrorConfig
from .engine import MirrorEngine
from .errors import FetchError
from .models import JobSnapshot, JobStatus
from .urls import domain_of, parse_wayback_url

logger = logging.getLogger("wayback_mirror.cli")


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--timeout", type=float, default=30.0,
                        help="Timeout in seconds for HTTP requests (default: 30).")
    parser.add_argument("--retries", type=int, default=3,
                        help="Attempts per request before giving up (default: 3).")
    parser.add_argument("--delay", type=float, default=0.2,
                        help="Minimum seconds between requests to the archive (default: 0.2).")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable debug logging.")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Build a browsable static mirror from the Wayback Machine.")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("parse", help="Show the timestamp and original URL of an archive URL")
    p.add_argument("url")

    p = sub.add_parser("scan", help="List archived URLs of a domain")
    p.add_argument("url", help="Domain, page URL or archive URL")
    p.add_argument("--from", dest="from_ts", default=None, help="Earliest timestamp (YYYYMMDDhhmmss prefix)")
    p.add_argument("--to", dest="to_ts", default=None, help="Latest timestamp (YYYYMMDDhhmmss prefix)")
    p.add_argument("--limit", type=int, default=500, help="Maximum rows (default: 500)")
    _add_common_arguments(p)

    p = sub.add_parser("download", help="Mirror pages and their same-domain assets")
    p.add_argument("urls", nargs="+", help="Page URLs or archive URLs of the same domain")
    p.add_argument("--timestamp", default=None,
                   help="Capture timestamp for pages that do not carry one; default is the latest capture.")
    p.add_argument("--output", type=Path, default=DEFAULT_OUTPUT_ROOT,
                   help="Directory that receives one folder per domain (default: downloads)")
    _add_common_arguments(p)

    return ap.parse_args(argv)


def _config(args: argparse.Namespace) -> MirrorConfig:
    return MirrorConfig(
        output_root=getattr(args, "output", DEFAULT_OUTPUT_ROOT),
        request_delay=args.delay,
        timeout=args.timeout,
        max_retries=args.retries,
    )


def _run_parse(args: argparse.Namespace) -> int:
    ref = parse_wayback_url(args.url)
    if ref is None:
        print(f"Not an archive URL: {args.url}")
        return 1
    print(f"timestamp: {ref.timestamp}")
    print(f"original:  {ref.original_url}")
    print(f"domain:    {domain_of(ref.original_url)}")
    return 0


def _run_scan(args: argparse.Namespace) -> int:
    ref = parse_wayback_url(args.url)
    url = ref.original_url if ref else args.url
    index = CaptureIndex(ArchiveClient(_config(args)))
    logger.info("Scanning %s", domain_of(url))
    try:
        captures = index.scan_domain(url, from_ts=args.from_ts, to_ts=args.to_ts, limit=args.limit)
    except FetchError as e:
        logger.error("CDX query failed: %s", e)
        return 2
    for c in captures:
        print(f"{c.timestamp}  {c.mimetype:<24} {c.original_url}")
    logger.info("%d captured URLs", len(captures))
    return 0


class _ProgressLog:
    """Logs snapshots when something worth reporting changed."""

    def __init__(self):
        self.last = None

    def __call__(self, snap: JobSnapshot) -> None:
        key = (snap.status, snap.done, snap.total, snap.current)
        if key == self.last:
            return
        self.last = key
        logger.info("[%s %d/%d] %s", snap.status.value, snap.done, snap.total, snap.current)


def _run_download(args: argparse.Namespace) -> int:
    engine = MirrorEngine(_config(args))
    engine.subscribe(_ProgressLog())

    def on_sigint(signum, frame):
        logger.warning("Interrupted, finishing the current request...")
        engine.cancel()

    previous = signal.signal(signal.SIGINT, on_sigint)
    try:
        snap = engine.run(args.urls, timestamp=args.timestamp)
    finally:
        signal.signal(signal.SIGINT, previous)

    if snap.errors:
        logger.warning("%d error(s):", len(snap.errors))
        for err in snap.errors:
            logger.warning("  %s: %s", err.url, err.message)
    if snap.status == JobStatus.CANCELLED:
        logger.info("Cancelled; %d/%d units were fetched into %s", snap.done, snap.total, snap.output_dir)
        return 1
    logger.info("Mirror written to %s", snap.output_dir)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "verbose", False) else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )
    if args.command == "parse":
        return _run_parse(args)
    if args.command == "scan":
        return _run_scan(args)
    return _run_download(args)


if __name__ == "__main__":
    sys.exit(main())
