"""commit-helper: Conventional Commits formatting with forge issue references.

Usage:
    commit-helper [--json] [--debug] COMMAND

Commands:
    remote [URL]                       Show the forge identity of a remote URL
    issues [--remote URL] [--max N]    List open issues of the repository
    format --type TYPE [opts]          Reformat a commit message (stdin or --message)
    types                              List commit types

Tokens are read from ~/.config/commit-helper/config.yml or the environment
(GITHUB_TOKEN, GITLAB_TOKEN, LOCAL_GITLAB_TOKEN, GITEE_TOKEN).
"""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Callable
from dataclasses import asdict
from typing import NoReturn

from .commit import COMMIT_TYPES, build_commit_message, clean_issue_title
from .config import Settings
from .context import AppContext
from .errors import CommitHelperError
from .git_repo import get_remote_url
from .remote_url import RepoInfo, parse_remote_url

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _positive_int(value: str) -> int:
    """Argparse type: parse a positive integer (> 0)."""
    n = int(value)
    if n <= 0:
        msg = f"must be a positive integer, got {n}"
        raise argparse.ArgumentTypeError(msg)
    return n


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def _output(data: object, *, json_mode: bool) -> None:
    """Print output as JSON or human-readable text."""
    if json_mode:
        print(json.dumps(data, indent=2, default=str))
    elif isinstance(data, list):
        for item in data:
            if isinstance(item, dict):
                _print_row(item)
            else:
                print(item)
    elif isinstance(data, dict):
        _print_row(data)
    else:
        print(data)


def _print_row(d: dict) -> None:
    """Print a dict as a compact key=value line."""
    parts = [f"{k}={v}" for k, v in d.items() if v is not None]
    print("  ".join(parts))


def _fail(message: str) -> NoReturn:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def _resolve_repo(
    url: str | None,
    parse: Callable[[str], RepoInfo | None] = parse_remote_url,
) -> RepoInfo:
    """RepoInfo for url, or for the current repository's remote. Exits on failure."""
    remote_url = url or get_remote_url()
    if not remote_url:
        _fail("No git remote found; pass a remote URL explicitly")
    info = parse(remote_url)
    if info is None:
        _fail(f"Unrecognized remote URL format: {remote_url}")
    return info


# --- Commands ---


def cmd_remote(args: argparse.Namespace, settings: Settings) -> None:
    info = _resolve_repo(args.url)
    _output(info.to_dict(), json_mode=args.json)


async def _list_issues(args: argparse.Namespace, settings: Settings) -> list[dict]:
    async with AppContext(settings) as ctx:
        info = _resolve_repo(args.remote, ctx.parse_remote_url)
        if args.refresh:
            issues = await ctx.refresh_issues(info, args.max)
        else:
            issues = await ctx.list_open_issues(info, args.max)
    return [asdict(issue) for issue in issues]


def cmd_issues(args: argparse.Namespace, settings: Settings) -> None:
    issues = asyncio.run(_list_issues(args, settings))
    if args.json:
        _output(issues, json_mode=True)
        return
    if not issues:
        print("No open issues.")
        return
    for issue in issues:
        print(f"#{issue['number']:<6} {clean_issue_title(issue['title'])}")


def cmd_format(args: argparse.Namespace, settings: Settings) -> None:
    message = args.message if args.message is not None else sys.stdin.read()
    subject = message.strip().splitlines()[0] if message.strip() else ""
    title = args.title or subject
    if not title:
        _fail("No commit message given; use --message, --title or stdin")

    result = build_commit_message(
        args.type,
        title,
        scope=args.scope,
        issue_numbers=args.issue,
        breaking=args.breaking,
        existing_message=message,
    )
    if args.json:
        _output({"message": result}, json_mode=True)
    else:
        print(result)


def cmd_types(args: argparse.Namespace, settings: Settings) -> None:
    if args.json:
        _output(
            [{"type": t, "description": d} for t, d in COMMIT_TYPES], json_mode=True
        )
        return
    for commit_type, description in COMMIT_TYPES:
        print(f"{commit_type:<10} {description}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="commit-helper",
        description="Format commit messages as Conventional Commits and link forge issues",
    )
    parser.add_argument("--json", action="store_true", help="Output JSON")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", help="Command")

    # remote
    remote = sub.add_parser("remote", help="Show the forge identity of a remote URL")
    remote.add_argument("url", nargs="?", help="Remote URL (default: current repo)")
    remote.set_defaults(func=cmd_remote)

    # issues
    issues = sub.add_parser("issues", help="List open issues")
    issues.add_argument("--remote", help="Remote URL (default: current repo)")
    issues.add_argument(
        "--max", type=_positive_int, help="Maximum issues (default: settings)"
    )
    issues.add_argument(
        "--refresh", action="store_true", help="Ignore the cached issue list"
    )
    issues.set_defaults(func=cmd_issues)

    # format
    fmt = sub.add_parser("format", help="Reformat a commit message")
    fmt.add_argument(
        "--type", required=True, choices=[t for t, _ in COMMIT_TYPES], help="Commit type"
    )
    fmt.add_argument("--scope", default="", help="Commit scope")
    fmt.add_argument("--breaking", action="store_true", help="Mark as breaking change")
    fmt.add_argument(
        "--issue",
        type=_positive_int,
        action="append",
        default=[],
        help="Issue number to close (repeatable)",
    )
    fmt.add_argument("--title", help="Subject (default: first line of the message)")
    fmt.add_argument("--message", help="Existing message (default: read stdin)")
    fmt.set_defaults(func=cmd_format)

    # types
    types = sub.add_parser("types", help="List commit types")
    types.set_defaults(func=cmd_types)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    settings = Settings.load()
    _configure_logging(args.debug or settings.debug)

    try:
        args.func(args, settings)
    except CommitHelperError as e:
        logger.debug("Command failed", exc_info=True)
        _fail(str(e))


if __name__ == "__main__":
    main()
