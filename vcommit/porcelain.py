"""Porcelain: commit the staged changes onto another branch, or show what would be committed."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import List, Optional, TextIO

from .builder import (
    CommitResult,
    build_commit,
    run_commit_msg_hook,
    run_post_commit_hook,
    update_branch,
)
from .changes import ChangeRecord, extract_changes, head_entries
from .compose import compose_tree, resolve_branch
from .config import Settings, resolve_identity
from .constants import COMMIT_EDITMSG
from .external import ExternalTools
from .message import build_template, cleanup_message, staged_diff
from .refs import current_branch_name
from .repo import Repository
from .util import write_text_atomic

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitOptions:
    """What the user asked for on the command line."""

    branch: str
    message: Optional[str] = None
    verbose: bool = False
    dry_run: bool = False
    sign: Optional[bool] = None  # None: commit.gpgSign decides


def print_status(records: List[ChangeRecord], branch: str, parent: str, out: TextIO) -> None:
    """Dry-run listing: the staged changes and the commit they would sit on."""
    print(f"Changes to be committed to {branch}:", file=out)
    for record in records:
        print(f"\t{record.status_line()}", file=out)
    print(f"parent: {parent}", file=out)


def resolve_message(
    repo: Repository,
    tools: ExternalTools,
    options: CommitOptions,
    records: List[ChangeRecord],
) -> str:
    """-m text (whitespace cleanup), else the edited template (comment-stripping cleanup)."""
    if options.message is not None:
        return cleanup_message(options.message, strip_comments=False)
    diff_text = staged_diff(repo, records, head_entries(repo)) if options.verbose else None
    template = build_template(records, options.branch, current_branch_name(repo.git_dir), diff_text)
    path = repo.git_dir / COMMIT_EDITMSG
    write_text_atomic(path, template)
    tools.edit_message(path)
    return cleanup_message(path.read_text(encoding="utf-8", errors="surrogateescape"), strip_comments=True)


def commit_to_branch(
    repo: Repository,
    settings: Settings,
    tools: ExternalTools,
    options: CommitOptions,
    out: TextIO = sys.stdout,
) -> Optional[CommitResult]:
    """Commit the staged changes onto options.branch. Returns None when nothing was committed."""
    repo.require_repo()
    parent = resolve_branch(repo, options.branch)
    records = extract_changes(repo)
    if not records:
        print("nothing to commit", file=out)
        return None
    logger.debug("%d staged change(s) for %s on top of %s", len(records), options.branch, parent)
    if options.dry_run:
        print_status(records, options.branch, parent, out)
        return None

    resolve_identity(settings)  # fail before the editor runs
    message = resolve_message(repo, tools, options, records)
    message = run_commit_msg_hook(repo, tools, message, strip_comments=options.message is None)

    # the index is read again here; the editor and hook may have taken a while
    tree = compose_tree(repo, parent, records)
    author, committer = resolve_identity(settings)
    sign = settings.gpg_sign if options.sign is None else options.sign
    commit_id = build_commit(repo, tools, tree, parent, author, committer, message, sign)
    subject = message.split("\n", 1)[0].strip()
    update_branch(repo, settings, options.branch, parent, commit_id, committer, subject)
    result = CommitResult(options.branch, commit_id, parent, subject)
    print(result.summary(), file=out)
    run_post_commit_hook(tools)
    return result
