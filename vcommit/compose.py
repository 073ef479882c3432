"""Tree composition: replay staged ChangeRecords onto another branch's tip tree.

The staged diff was computed against the checked-out HEAD, but the edits land
on the target branch's tree; the two trees need not share any history.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from .changes import ChangeKind, ChangeRecord, index_entries
from .constants import MODE_DIR
from .errors import BranchNotFound, PathConflict, StaleIndexEntry
from .objects import Tree, is_tree_mode
from .refs import branch_ref, resolve_ref, validate_branch_name
from .repo import FlatTree, Repository, tree_hash_for_commit

logger = logging.getLogger(__name__)

Entry = Tuple[str, str]  # (mode, sha)


def resolve_branch(repo: Repository, branch: str) -> str:
    """Tip commit of refs/heads/<branch>. Raises BranchNotFound."""
    validate_branch_name(branch)
    tip = resolve_ref(repo.git_dir, branch_ref(branch))
    if tip is None:
        raise BranchNotFound(f"branch '{branch}' not found")
    return tip


def _check_path(path: str) -> None:
    parts = path.split("/")
    if any(p in ("", ".", "..", ".git") for p in parts):
        raise PathConflict(f"path '{path}' cannot be stored in a tree")


class ScratchTree:
    """Edits layered over an immutable base tree.

    Only paths that were upserted or removed are recorded; everything else is
    read from the base tree when ``write`` rebuilds the touched directories.
    Untouched subtrees keep their existing ids.
    """

    def __init__(self, repo: Repository, base_tree: Optional[str]) -> None:
        self.repo = repo
        self.base_tree = base_tree
        self._edits: Dict[str, Optional[Entry]] = {}

    def upsert(self, path: str, mode: str, sha: str) -> None:
        _check_path(path)
        self._edits[path] = (mode, sha)

    def remove(self, path: str) -> None:
        _check_path(path)
        self._edits[path] = None

    def write(self) -> str:
        """Persist the new root tree and any new subtrees; return the root id.

        All trees are computed before the first one is stored, so a conflict
        leaves the object store untouched.
        """
        if not self._edits and self.base_tree is not None:
            return self.base_tree
        pending: List[Tree] = []
        root = self._build(self.base_tree, self._edits, "", pending)
        if root is None:
            empty = Tree()
            pending.append(empty)
            root = empty.hash_id()
        for tree in pending:
            self.repo.store_object(tree)
        logger.debug("composed tree %s (%d new tree object(s))", root, len(pending))
        return root

    def _build(
        self,
        base_sha: Optional[str],
        edits: Dict[str, Optional[Entry]],
        prefix: str,
        pending: List[Tree],
    ) -> Optional[str]:
        """Apply edits (paths relative to this directory); None if the directory ends up empty."""
        entries: Dict[str, Entry] = {}
        if base_sha is not None:
            for mode, name, sha in self.repo.load_tree(base_sha).entries:
                entries[name] = (mode, sha)
        direct: Dict[str, Optional[Entry]] = {}
        nested: Dict[str, Dict[str, Optional[Entry]]] = {}
        for path, edit in edits.items():
            head, sep, rest = path.partition("/")
            if sep:
                nested.setdefault(head, {})[rest] = edit
            else:
                direct[head] = edit

        for name, sub_edits in sorted(nested.items()):
            current = entries.get(name)
            sub_base: Optional[str] = None
            if current is not None and is_tree_mode(current[0]):
                sub_base = current[1]
            elif current is not None:
                # a file sits where the edits need a directory
                if all(e is None for e in sub_edits.values()):
                    continue
                if name not in direct or direct[name] is not None:
                    raise PathConflict(
                        f"'{prefix}{name}' is a file on the target branch but staged paths need it to be a directory"
                    )
            sub_sha = self._build(sub_base, sub_edits, f"{prefix}{name}/", pending)
            if sub_sha is None:
                entries.pop(name, None)
            else:
                entries[name] = (MODE_DIR, sub_sha)

        for name, edit in sorted(direct.items()):
            current = entries.get(name)
            if edit is None:
                if current is not None and not is_tree_mode(current[0]):
                    del entries[name]
                continue
            if current is not None and is_tree_mode(current[0]):
                raise PathConflict(
                    f"'{prefix}{name}' is a directory on the target branch and cannot be replaced by a file"
                )
            entries[name] = edit

        if not entries and prefix:
            return None
        tree = Tree([(mode, name, sha) for name, (mode, sha) in entries.items()])
        sha = tree.hash_id()
        if sha != base_sha:
            pending.append(tree)
        return sha


def apply_records(scratch: ScratchTree, records: Iterable[ChangeRecord], index: FlatTree) -> None:
    """Load records into scratch.

    For one final path an upsert beats a removal, and of two upserts the
    later record wins; beyond that the result does not depend on record order.
    """
    removals: List[str] = []
    upserts: Dict[str, Entry] = {}
    for record in records:
        if record.kind in (ChangeKind.DELETED, ChangeKind.RENAMED):
            removals.append(record.old_path if record.kind is ChangeKind.RENAMED else record.path)
        if record.kind is not ChangeKind.DELETED:
            staged = index.get(record.path)
            if staged is None:
                raise StaleIndexEntry(f"'{record.path}' is no longer in the index")
            upserts[record.path] = staged
    for path in removals:
        if path not in upserts:
            scratch.remove(path)
    for path, (mode, sha) in upserts.items():
        scratch.upsert(path, mode, sha)


def compose_tree(
    repo: Repository,
    target_tip: str,
    records: List[ChangeRecord],
    index: Optional[FlatTree] = None,
) -> str:
    """New tree: target_tip's tree with records applied, entries taken from index.

    index defaults to the current stage-0 index of repo.
    """
    if index is None:
        index = index_entries(repo)
    scratch = ScratchTree(repo, tree_hash_for_commit(repo, target_tip))
    apply_records(scratch, records, index)
    return scratch.write()
