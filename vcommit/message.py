"""Commit message template, staged diff rendering and message cleanup."""

from __future__ import annotations

import difflib
from typing import List, Optional

from .changes import ChangeKind, ChangeRecord
from .constants import MODE_GITLINK
from .repo import FlatTree, Repository
from .util import is_binary, quote_path

COMMENT_CHAR = "#"


def cleanup_message(text: str, strip_comments: bool = True) -> str:
    """git's 'strip' (editor) or 'whitespace' (-m) cleanup.

    Drops comment lines (strip mode only), trailing whitespace and
    leading/trailing blank lines, and collapses runs of blank lines.
    Returns '' or a message ending in exactly one newline.
    """
    lines: List[str] = []
    for line in text.splitlines():
        if strip_comments and line.startswith(COMMENT_CHAR):
            continue
        line = line.rstrip()
        if not line and (not lines or not lines[-1]):
            continue
        lines.append(line)
    while lines and not lines[-1]:
        lines.pop()
    return "\n".join(lines) + "\n" if lines else ""


def _comment(text: str) -> str:
    return f"{COMMENT_CHAR} {text}".rstrip() if text else COMMENT_CHAR


def build_template(
    records: List[ChangeRecord],
    branch: str,
    current_branch: Optional[str],
    diff_text: Optional[str] = None,
) -> str:
    """Editor template: blank first line, then commented instructions, status and optional diff."""
    out = [
        "",
        _comment("Please enter the commit message for your changes. Lines starting"),
        _comment(f"with '{COMMENT_CHAR}' will be ignored, and an empty message aborts the commit."),
        COMMENT_CHAR,
    ]
    if current_branch:
        out.append(_comment(f"Committing to branch {branch} (currently on {current_branch})"))
    else:
        out.append(_comment(f"Committing to branch {branch} (HEAD detached)"))
    out.append(COMMENT_CHAR)
    out.append(_comment("Changes to be committed:"))
    for record in records:
        out.append(f"{COMMENT_CHAR}\t{record.status_line()}")
    out.append(COMMENT_CHAR)
    if diff_text:
        out.append(_comment("Staged diff:"))
        for line in diff_text.splitlines():
            out.append(_comment(line))
    return "\n".join(out) + "\n"


def staged_diff(repo: Repository, records: List[ChangeRecord], head: FlatTree) -> str:
    """Unified diff of the staged changes (HEAD side -> index side)."""
    chunks: List[str] = []
    for record in records:
        old_path = record.old_path if record.kind is ChangeKind.RENAMED else record.path
        old_mode, old_sha = head.get(old_path, (None, None)) if record.kind is not ChangeKind.ADDED else (None, None)
        old = _content(repo, old_mode, old_sha)
        new = _content(repo, record.mode, record.blob_id)
        chunks.append(_file_diff(old_path, record.path, old, new, record.kind))
    return "".join(chunks)


def _content(repo: Repository, mode: Optional[str], sha: Optional[str]) -> bytes:
    if not sha:
        return b""
    if mode == MODE_GITLINK:
        # submodule entries point at commits that live in another repository
        return f"Subproject commit {sha}\n".encode()
    return repo.load_object(sha).content


def _file_diff(old_path: str, new_path: str, old: bytes, new: bytes, kind: ChangeKind) -> str:
    a_path, b_path = quote_path(f"a/{old_path}"), quote_path(f"b/{new_path}")
    out = [f"diff --git {a_path} {b_path}"]
    if kind is ChangeKind.ADDED:
        out.append("new file")
    elif kind is ChangeKind.DELETED:
        out.append("deleted file")
    elif kind is ChangeKind.RENAMED:
        out.append(f"rename from {quote_path(old_path)}")
        out.append(f"rename to {quote_path(new_path)}")
    if is_binary(old) or is_binary(new):
        out.append(f"Binary files {a_path} and {b_path} differ")
        return "\n".join(out) + "\n"
    a = old.decode("utf-8", errors="replace").splitlines()
    b = new.decode("utf-8", errors="replace").splitlines()
    fromfile = "/dev/null" if kind is ChangeKind.ADDED else a_path
    tofile = "/dev/null" if kind is ChangeKind.DELETED else b_path
    out.extend(difflib.unified_diff(a, b, fromfile=fromfile, tofile=tofile, lineterm=""))
    return "\n".join(out) + "\n"
