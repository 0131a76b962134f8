"""Command line entry point for rscrape."""
from __future__ import annotations

import argparse
import csv
import io
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, List, Sequence

from .client import (
    DEFAULT_USER_AGENT,
    LISTING_TYPE_HOT,
    LISTING_TYPES,
    TOP_ALL_TIME,
    TOP_WINDOWS,
    ClientOptions,
    build_session,
    collect_posts,
    get_comments,
    get_subreddit,
)
from .core import (
    COMMENT_CSV_FIELDS,
    POST_CSV_FIELDS,
    SUBREDDIT_CSV_FIELDS,
    RScrapeError,
    comment_record,
    post_record,
    subreddit_record,
)

logger = logging.getLogger(__name__)


def _default_user_agent() -> str:
    return os.environ.get("RSCRAPE_USER_AGENT") or DEFAULT_USER_AGENT


def save_json(data: Any, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")


def write_csv(rows: List[dict[str, Any]], fieldnames: List[str], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as fp:
        _write_csv_rows(fp, rows, fieldnames)


def _write_csv_rows(fp: Any, rows: List[dict[str, Any]], fieldnames: List[str]) -> None:
    writer = csv.DictWriter(fp, fieldnames=fieldnames)
    writer.writeheader()
    for row in rows:
        writer.writerow(row)


def _emit(
    document: dict[str, Any],
    rows: List[dict[str, Any]],
    fieldnames: List[str],
    *,
    output_format: str,
    output: Path | None,
) -> None:
    if output_format == "csv":
        if output is not None:
            write_csv(rows, fieldnames, output)
            logger.info("Wrote %d row(s) to %s", len(rows), output)
            return
        buffer = io.StringIO()
        _write_csv_rows(buffer, rows, fieldnames)
        sys.stdout.write(buffer.getvalue())
        return

    if output is not None:
        save_json(document, output)
        logger.info("Saved %d record(s) to %s", len(rows), output)
        return
    sys.stdout.write(json.dumps(document, indent=2, ensure_ascii=False) + "\n")


def _run_subreddit(args: argparse.Namespace, session: Any, options: ClientOptions) -> None:
    subreddit = get_subreddit(session, args.subreddit, timeout=options.timeout)
    record = subreddit_record(subreddit)
    _emit(
        {"subreddit": record},
        [record],
        SUBREDDIT_CSV_FIELDS,
        output_format=args.output_format,
        output=args.output,
    )


def _run_posts(args: argparse.Namespace, session: Any, options: ClientOptions) -> None:
    posts, after = collect_posts(
        session,
        args.subreddit,
        args.listing,
        pages=args.pages,
        after=args.after,
        top_window=args.time,
        timeout=options.timeout,
    )
    rows = [post_record(post) for post in posts]
    _emit(
        {"subreddit": args.subreddit, "listing": args.listing, "posts": rows, "after": after},
        rows,
        POST_CSV_FIELDS,
        output_format=args.output_format,
        output=args.output,
    )
    if after:
        logger.info("More posts available; resume with --after %s", after)


def _run_comments(args: argparse.Namespace, session: Any, options: ClientOptions) -> None:
    comments, more = get_comments(
        session,
        args.subreddit,
        args.post_id,
        args.after,
        timeout=options.timeout,
    )
    rows = [comment_record(comment) for comment in comments]
    _emit(
        {"subreddit": args.subreddit, "post_id": args.post_id, "comments": rows, "more": more},
        rows,
        COMMENT_CSV_FIELDS,
        output_format=args.output_format,
        output=args.output,
    )
    if more:
        logger.info("%d top-level comment subtree(s) were not returned inline", len(more))


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--output-format",
        choices=["json", "csv"],
        default="json",
        help="Print or save results as JSON or as a CSV table (default: json).",
    )
    common.add_argument(
        "--output",
        type=Path,
        default=None,
        help="File to write results to (default: standard output).",
    )
    common.add_argument(
        "--user-agent",
        default=None,
        help="Custom User-Agent header (default: $RSCRAPE_USER_AGENT or the built-in agent).",
    )
    common.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Request timeout in seconds (default: 30).",
    )
    common.add_argument(
        "--insecure",
        action="store_true",
        help="Disable TLS certificate verification (only if you trust the network).",
    )
    common.add_argument(
        "--log-level",
        default="INFO",
        choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"],
        help="Logging verbosity (default: INFO).",
    )

    parser = argparse.ArgumentParser(
        description="Fetch subreddit information, posts and flattened comment trees from Reddit."
    )
    commands = parser.add_subparsers(dest="command", required=True)

    subreddit_parser = commands.add_parser(
        "subreddit", parents=[common], help="Show information about a subreddit."
    )
    subreddit_parser.add_argument("subreddit", help="Subreddit name (without the r/ prefix).")
    subreddit_parser.set_defaults(handler=_run_subreddit)

    posts_parser = commands.add_parser("posts", parents=[common], help="List posts of a subreddit.")
    posts_parser.add_argument("subreddit", help="Subreddit name (without the r/ prefix).")
    posts_parser.add_argument(
        "--listing",
        choices=list(LISTING_TYPES),
        default=LISTING_TYPE_HOT,
        help="Which listing to read (default: hot).",
    )
    posts_parser.add_argument(
        "--time",
        choices=list(TOP_WINDOWS),
        default=TOP_ALL_TIME,
        help="Time window for the 'top' listing (default: all).",
    )
    posts_parser.add_argument(
        "--after",
        default="",
        help="Continuation token returned by a previous run.",
    )
    posts_parser.add_argument(
        "--pages",
        type=int,
        default=1,
        help="Number of pages to follow (default: 1).",
    )
    posts_parser.set_defaults(handler=_run_posts)

    comments_parser = commands.add_parser(
        "comments", parents=[common], help="Fetch the flattened comment tree of a post."
    )
    comments_parser.add_argument("subreddit", help="Subreddit name (without the r/ prefix).")
    comments_parser.add_argument("post_id", help="Post ID, with or without the t3_ prefix.")
    comments_parser.add_argument(
        "--after",
        default="",
        help="Continuation token returned by a previous run.",
    )
    comments_parser.set_defaults(handler=_run_comments)

    args = parser.parse_args(argv)
    if args.command == "posts" and args.pages < 1:
        posts_parser.error(f"--pages must be at least 1 (got {args.pages})")
    return args


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    try:
        options = ClientOptions(
            user_agent=args.user_agent or _default_user_agent(),
            verify=not args.insecure,
            timeout=args.timeout,
        )
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    if args.output is not None:
        args.output = Path(args.output).expanduser().resolve()

    session = build_session(options.user_agent, options.verify)
    try:
        args.handler(args, session, options)
    except RScrapeError as exc:
        logger.warning("Command %s failed", args.command)
        print(f"Failed to run {args.command}: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
