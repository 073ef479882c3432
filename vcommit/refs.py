"""HEAD and refs: symbolic/detached HEAD, loose and packed refs, compare-and-set updates."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional

from .constants import HEAD_FILE, PACKED_REFS_FILE, REF_HEADS_PREFIX
from .errors import ConcurrentUpdate, InvalidRefError
from .util import is_hex_sha, read_text_safe

MAX_SYMREF_DEPTH = 5


@dataclass
class HeadState:
    """HEAD state: either symbolic ref or detached commit hash."""
    kind: Literal["ref", "detached"]
    value: str  # refs/heads/main or 40-char commit hash


def _ref_path(repo_git: Path, refname: str) -> Path:
    return repo_git / refname


def branch_ref(name: str) -> str:
    """'main' -> 'refs/heads/main'; full refnames pass through."""
    return name if name.startswith(REF_HEADS_PREFIX) else REF_HEADS_PREFIX + name


# Characters git forbids in ref names
_REF_FORBIDDEN = set(" ~^:?*[\\\x7f")


def validate_branch_name(name: str) -> None:
    """Raise InvalidRefError unless name is a usable branch name (git check-ref-format rules)."""
    if not name or name == "@" or name.startswith("-"):
        raise InvalidRefError(f"invalid branch name: {name!r}")
    if name.startswith("/") or name.endswith("/") or name.endswith("."):
        raise InvalidRefError(f"invalid branch name: {name!r}")
    if ".." in name or "//" in name or "@{" in name:
        raise InvalidRefError(f"invalid branch name: {name!r}")
    for part in name.split("/"):
        if part.startswith(".") or part.endswith(".lock"):
            raise InvalidRefError(f"invalid branch name: {name!r}")
    for c in name:
        if c in _REF_FORBIDDEN or ord(c) < 32:
            raise InvalidRefError(f"invalid branch name: {name!r}")


def read_head(repo_git: Path) -> Optional[HeadState]:
    """Read HEAD; return HeadState or None if no HEAD file."""
    raw = read_text_safe(repo_git / HEAD_FILE)
    if raw is None:
        return None
    raw = raw.strip()
    if raw.startswith("ref: "):
        return HeadState("ref", raw[5:].strip())
    if is_hex_sha(raw):
        return HeadState("detached", raw.lower())
    return None


def _read_packed_refs(repo_git: Path) -> dict[str, str]:
    """Read .git/packed-refs; return refname -> sha. Loose refs take precedence."""
    raw = read_text_safe(repo_git / PACKED_REFS_FILE)
    if raw is None:
        return {}
    result: dict[str, str] = {}
    for line in raw.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or line.startswith("^"):
            continue  # header, or peeled tag line
        parts = line.split(None, 1)
        if len(parts) == 2 and is_hex_sha(parts[0]):
            result[parts[1]] = parts[0].lower()
    return result


def resolve_ref(repo_git: Path, refname: str, _depth: int = 0) -> Optional[str]:
    """Resolve ref to commit hash; None if the ref does not exist. Loose first, then packed-refs."""
    content = read_text_safe(_ref_path(repo_git, refname))
    if content is None:
        return _read_packed_refs(repo_git).get(refname)
    content = content.strip()
    if is_hex_sha(content):
        return content.lower()
    if content.startswith("ref: ") and _depth < MAX_SYMREF_DEPTH:
        return resolve_ref(repo_git, content[5:].strip(), _depth + 1)
    return None


def current_branch_name(repo_git: Path) -> Optional[str]:
    """Return current branch name (e.g. main) or None if detached."""
    state = read_head(repo_git)
    if state is None or state.kind == "detached":
        return None
    if state.value.startswith(REF_HEADS_PREFIX):
        return state.value[len(REF_HEADS_PREFIX) :]
    return None


def head_commit(repo_git: Path) -> Optional[str]:
    """Resolve HEAD to commit hash; None for an unborn branch."""
    state = read_head(repo_git)
    if state is None:
        return None
    if state.kind == "detached":
        return state.value
    return resolve_ref(repo_git, state.value)


def write_head_ref(repo_git: Path, refname: str) -> None:
    """Set HEAD to symbolic ref (e.g. refs/heads/main)."""
    if not refname.startswith(REF_HEADS_PREFIX):
        raise InvalidRefError(f"symbolic ref must be refs/heads/... (got {refname})")
    (repo_git / HEAD_FILE).write_text(f"ref: {refname}\n")


def update_ref_verify(
    repo_git: Path,
    refname: str,
    new_hash: str,
    old_hash: Optional[str],
) -> None:
    """Move refname from old_hash to new_hash under refname.lock.

    old_hash None means the ref must not exist yet. The current value is read
    while holding the lock, so a concurrent writer either holds the lock (we
    fail) or has already finished (we see its value and fail).
    """
    if not is_hex_sha(new_hash):
        raise InvalidRefError(f"invalid hash: {new_hash}")
    path = _ref_path(repo_git, refname)
    path.parent.mkdir(parents=True, exist_ok=True)
    lock_path = path.parent / (path.name + ".lock")
    try:
        fd = os.open(lock_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
    except FileExistsError:
        raise ConcurrentUpdate(
            f"cannot lock ref '{refname}': {lock_path} exists; another git process seems to be running"
        ) from None
    committed = False
    try:
        with os.fdopen(fd, "w") as f:
            f.write(new_hash.lower() + "\n")
        current = resolve_ref(repo_git, refname)
        expected = old_hash.lower() if old_hash else None
        if current != expected:
            raise ConcurrentUpdate(
                f"cannot update ref '{refname}': is at {current or 'nothing'} but expected {expected or 'nothing'}"
            )
        os.replace(lock_path, path)
        committed = True
    finally:
        if not committed:
            lock_path.unlink(missing_ok=True)
