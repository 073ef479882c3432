"""Commit building: message hook, unsigned/signed commit objects, branch compare-and-set, post-commit."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from .config import Settings
from .constants import COMMIT_EDITMSG, HOOK_COMMIT_MSG, HOOK_POST_COMMIT, SHORT_ID_LEN, ZEROS
from .errors import EmptyMessage, HookFailed, ObjectNotFoundError, SigningFailed, VcommitError
from .external import ExternalTools
from .message import cleanup_message
from .objects import Commit, Signature
from .reflog import append_reflog, reflog_path_for_ref
from .refs import branch_ref, read_head, update_ref_verify
from .repo import Repository
from .util import is_hex_sha, write_text_atomic

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitResult:
    branch: str
    commit_id: str
    parent: Optional[str]
    subject: str

    def summary(self) -> str:
        """'[<branch> <short-id>] <subject>', with '(root-commit)' for a branch's first commit."""
        root = " (root-commit)" if self.parent is None else ""
        return f"[{self.branch}{root} {self.commit_id[:SHORT_ID_LEN]}] {self.subject}"


def identity_env(author: Signature, committer: Signature) -> Dict[str, str]:
    """Identity of the commit being built, as the environment git tools understand."""
    return {
        "GIT_AUTHOR_NAME": author.name,
        "GIT_AUTHOR_EMAIL": author.email,
        "GIT_AUTHOR_DATE": author.date,
        "GIT_COMMITTER_NAME": committer.name,
        "GIT_COMMITTER_EMAIL": committer.email,
        "GIT_COMMITTER_DATE": committer.date,
    }


def run_commit_msg_hook(repo: Repository, tools: ExternalTools, message: str, strip_comments: bool) -> str:
    """Hand message to the commit-msg hook; return the message the commit should carry."""
    if not message:
        raise EmptyMessage("Aborting commit due to empty commit message.")
    path = repo.git_dir / COMMIT_EDITMSG
    write_text_atomic(path, message)
    status = tools.run_hook(HOOK_COMMIT_MSG, [str(path)])
    if status is None:
        return message
    if status != 0:
        raise HookFailed(f"{HOOK_COMMIT_MSG} hook exited with status {status}; not committing")
    rewritten = cleanup_message(path.read_text(encoding="utf-8", errors="surrogateescape"), strip_comments)
    if not rewritten:
        raise EmptyMessage("Aborting commit due to empty commit message.")
    return rewritten


def build_commit(
    repo: Repository,
    tools: ExternalTools,
    tree: str,
    parent: str,
    author: Signature,
    committer: Signature,
    message: str,
    sign: bool,
) -> str:
    """Store a commit of tree on top of parent; return its id.

    Signed commits are produced by the signer. Its answer is only trusted after
    the commit is loaded back and its unsigned bytes match what was asked for.
    """
    if not message:
        raise EmptyMessage("Aborting commit due to empty commit message.")
    commit = Commit(tree, [parent], author, committer, message)
    if not sign:
        return repo.store_object(commit)

    payload = commit.payload()
    answer = (tools.sign(payload, identity_env(author, committer)) or "").strip().lower()
    if not is_hex_sha(answer):
        raise SigningFailed(f"signer did not return a commit id (got {answer!r})")
    try:
        signed = repo.load_commit(answer)
    except ObjectNotFoundError as e:
        raise SigningFailed(f"signer returned {answer}, which is not a stored commit: {e}") from e
    if not signed.gpgsig:
        raise SigningFailed(f"signer returned {answer}, which carries no signature")
    if signed.payload() != payload:
        raise SigningFailed(f"signer returned {answer}, which does not match the commit that was signed")
    return answer


def update_branch(
    repo: Repository,
    settings: Settings,
    branch: str,
    old_tip: Optional[str],
    new_id: str,
    committer: Signature,
    subject: str,
) -> None:
    """Compare-and-set refs/heads/<branch> from old_tip to new_id, then log it.

    Raises ConcurrentUpdate, leaving the ref alone, if it no longer points at old_tip.
    """
    refname = branch_ref(branch)
    update_ref_verify(repo.git_dir, refname, new_id, old_tip)
    logged = [refname]
    head = read_head(repo.git_dir)
    if head is not None and head.kind == "ref" and head.value == refname:
        logged.append("HEAD")
    old = old_tip or ZEROS
    for name in logged:
        if not settings.log_all_ref_updates and not reflog_path_for_ref(repo.git_dir, name).exists():
            continue
        try:
            append_reflog(
                repo.git_dir, name, old, new_id,
                committer.identity, committer.timestamp, committer.tz_offset,
                f"commit: {subject}",
            )
        except OSError as e:
            # the ref already moved; a missing log line must not undo that
            logger.warning("could not append to reflog of %s: %s", name, e)


def run_post_commit_hook(tools: ExternalTools) -> None:
    """Advisory hook: every failure is logged and ignored."""
    try:
        status = tools.run_hook(HOOK_POST_COMMIT, [])
    except VcommitError as e:
        logger.warning("%s hook failed: %s", HOOK_POST_COMMIT, e)
        return
    if status:
        logger.warning("%s hook exited with status %d", HOOK_POST_COMMIT, status)
