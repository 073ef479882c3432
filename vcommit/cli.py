"""CLI: argparse, logging setup and error reporting."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Mapping, Optional

from .config import load_settings
from .errors import UsageError, VcommitError
from .external import ProcessTools
from .porcelain import CommitOptions, commit_to_branch
from .repo import Repository


class _ArgumentParser(argparse.ArgumentParser):
    """argparse exits with status 2 on bad input; this tool uses 1 for every failure."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="git-vcommit",
        description="Commit the staged changes onto another branch without touching the work tree or index.",
    )
    parser.add_argument("branch", help="Branch to commit onto (must already exist)")
    parser.add_argument("-m", "--message", help="Commit message (skips the editor)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show the staged diff in the editor template")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be committed and the parent; write nothing")
    parser.add_argument(
        "-S", "--gpg-sign", dest="sign", action="store_const", const=True, default=None,
        help="Sign the commit (overrides commit.gpgSign)",
    )
    parser.add_argument(
        "--no-gpg-sign", dest="sign", action="store_const", const=False,
        help="Do not sign the commit (overrides commit.gpgSign)",
    )
    return parser


def _configure_logging(environ: Mapping[str, str]) -> None:
    level = logging.DEBUG if environ.get("VCOMMIT_TRACE") == "1" else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s", stream=sys.stderr)


def main(argv: Optional[List[str]] = None) -> int:
    environ = os.environ
    _configure_logging(environ)
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except UsageError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    options = CommitOptions(
        branch=args.branch,
        message=args.message,
        verbose=args.verbose,
        dry_run=args.dry_run,
        sign=args.sign,
    )
    try:
        repo = Repository.discover(Path.cwd(), environ)
        settings = load_settings(repo, environ)
        tools = ProcessTools(repo, settings, environ)
        commit_to_branch(repo, settings, tools, options)
    except (VcommitError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
