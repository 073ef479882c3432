"""Change extraction: staged diff (HEAD tree vs index) as ordered ChangeRecords, with rename detection."""

from __future__ import annotations

import difflib
import enum
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .constants import MODE_FILE, MODE_FILE_EXECUTABLE, RENAME_SIMILARITY
from .errors import UnmergedIndex
from .refs import head_commit
from .repo import FlatTree, Repository, tree_hash_for_commit
from .util import is_binary, quote_path

logger = logging.getLogger(__name__)


class ChangeKind(enum.Enum):
    ADDED = "A"
    MODIFIED = "M"
    DELETED = "D"
    RENAMED = "R"


@dataclass(frozen=True)
class ChangeRecord:
    """One staged path-level change. old_path only for renames; mode/blob_id None for deletions."""

    path: str
    kind: ChangeKind
    mode: Optional[str] = None
    blob_id: Optional[str] = None
    old_path: Optional[str] = None

    def status_line(self) -> str:
        """git-status style label, e.g. 'renamed:    a -> b'."""
        label = {
            ChangeKind.ADDED: "new file:",
            ChangeKind.MODIFIED: "modified:",
            ChangeKind.DELETED: "deleted:",
            ChangeKind.RENAMED: "renamed:",
        }[self.kind]
        path = quote_path(self.path)
        target = f"{quote_path(self.old_path)} -> {path}" if self.kind is ChangeKind.RENAMED else path
        return f"{label:<12}{target}"


def head_entries(repo: Repository) -> FlatTree:
    """Flattened tree of the checked-out HEAD commit; empty on an unborn branch."""
    head = head_commit(repo.git_dir)
    if head is None:
        return {}
    return repo.flatten_tree(tree_hash_for_commit(repo, head))


def index_entries(repo: Repository) -> FlatTree:
    """Flattened stage-0 index. Raises UnmergedIndex if any path is still conflicted."""
    entries = repo.load_index()
    unmerged = sorted(p for p, ent in entries.items() if ent.get("stage", 0))
    if unmerged:
        raise UnmergedIndex(
            "committing is not possible because you have unmerged files: " + ", ".join(unmerged)
        )
    return {p: (ent["mode"], ent["sha1"]) for p, ent in entries.items()}


def extract_changes(repo: Repository) -> List[ChangeRecord]:
    """Staged changes of the current index against HEAD, sorted by path."""
    records = diff_entries(head_entries(repo), index_entries(repo), repo)
    logger.debug("extracted %d staged change(s)", len(records))
    return records


def diff_entries(
    old: FlatTree,
    new: FlatTree,
    repo: Optional[Repository] = None,
    detect_renames: bool = True,
) -> List[ChangeRecord]:
    """Diff two path -> (mode, sha) maps.

    Exact renames (same blob) are paired first; with a repo to read blobs from,
    remaining deletions and additions are paired by content similarity.
    """
    added: Dict[str, Tuple[str, str]] = {}
    deleted: Dict[str, Tuple[str, str]] = {}
    records: List[ChangeRecord] = []
    for path in set(old) | set(new):
        before, after = old.get(path), new.get(path)
        if before == after:
            continue
        if before is None:
            added[path] = after
        elif after is None:
            deleted[path] = before
        else:
            records.append(ChangeRecord(path, ChangeKind.MODIFIED, after[0], after[1]))
    if detect_renames and added and deleted:
        for src, dst in _pair_renames(deleted, added, repo):
            mode, sha = added.pop(dst)
            del deleted[src]
            records.append(ChangeRecord(dst, ChangeKind.RENAMED, mode, sha, old_path=src))
    for path, (mode, sha) in added.items():
        records.append(ChangeRecord(path, ChangeKind.ADDED, mode, sha))
    for path in deleted:
        records.append(ChangeRecord(path, ChangeKind.DELETED))
    records.sort(key=lambda r: r.path)
    return records


def _pair_renames(
    deleted: Dict[str, Tuple[str, str]],
    added: Dict[str, Tuple[str, str]],
    repo: Optional[Repository],
) -> List[Tuple[str, str]]:
    """Return (source, destination) pairs; each path is used at most once."""
    pairs: List[Tuple[str, str]] = []
    used_src: set[str] = set()
    used_dst: set[str] = set()
    by_sha: Dict[str, List[str]] = {}
    for src in sorted(deleted):
        by_sha.setdefault(deleted[src][1], []).append(src)
    for dst in sorted(added):
        sources = by_sha.get(added[dst][1])
        if sources:
            src = sources.pop(0)
            pairs.append((src, dst))
            used_src.add(src)
            used_dst.add(dst)
    if repo is None:
        return pairs

    candidates: List[Tuple[float, str, str]] = []
    contents: Dict[str, Optional[List[bytes]]] = {}
    for src in sorted(set(deleted) - used_src):
        for dst in sorted(set(added) - used_dst):
            if not _is_regular(deleted[src][0]) or not _is_regular(added[dst][0]):
                continue
            score = _similarity(repo, deleted[src][1], added[dst][1], contents)
            if score >= RENAME_SIMILARITY:
                candidates.append((score, src, dst))
    # best score first; ties broken by path for a stable result
    candidates.sort(key=lambda c: (-c[0], c[1], c[2]))
    for _score, src, dst in candidates:
        if src in used_src or dst in used_dst:
            continue
        pairs.append((src, dst))
        used_src.add(src)
        used_dst.add(dst)
    return pairs


def _is_regular(mode: str) -> bool:
    return mode in (MODE_FILE, MODE_FILE_EXECUTABLE)


def _similarity(repo: Repository, sha_a: str, sha_b: str, cache: Dict[str, Optional[List[bytes]]]) -> float:
    a = _blob_lines(repo, sha_a, cache)
    b = _blob_lines(repo, sha_b, cache)
    if a is None or b is None or (not a and not b):
        return 0.0
    matcher = difflib.SequenceMatcher(None, a, b, autojunk=False)
    if matcher.real_quick_ratio() < RENAME_SIMILARITY or matcher.quick_ratio() < RENAME_SIMILARITY:
        return 0.0
    return matcher.ratio()


def _blob_lines(repo: Repository, sha: str, cache: Dict[str, Optional[List[bytes]]]) -> Optional[List[bytes]]:
    """Lines of a text blob; None for binary blobs, which only rename on an exact match."""
    if sha not in cache:
        data = repo.load_object(sha).content
        cache[sha] = None if is_binary(data) else data.splitlines(keepends=True)
    return cache[sha]
