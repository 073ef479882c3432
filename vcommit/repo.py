"""Repository: ties paths, ODB, refs and index together."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from .constants import INDEX_FILENAME, OBJ_COMMIT, OBJ_TREE, REF_HEADS_PREFIX
from .errors import NotARepositoryError, ObjectNotFoundError
from .index import load_index as index_load, save_index as index_save
from .objects import Commit, GitObject, Tree, is_tree_mode
from .odb import ObjectDB
from .refs import write_head_ref
from .util import read_text_safe

# path -> (mode, sha) for every non-tree entry of a tree, recursively
FlatTree = Dict[str, Tuple[str, str]]


class Repository:
    """Git repository: work tree, .git dir, objects, refs, index."""

    def __init__(self, path: str | Path = ".", git_dir: str | Path | None = None) -> None:
        self.path = Path(path).resolve()
        self.git_dir = Path(git_dir).resolve() if git_dir else self.path / ".git"
        self.objects_dir = self.git_dir / "objects"
        self.refs_dir = self.git_dir / "refs"
        self.heads_dir = self.refs_dir / "heads"
        self.index_file = self.git_dir / INDEX_FILENAME
        self.odb = ObjectDB(self.objects_dir)

    @classmethod
    def discover(cls, start: str | Path = ".", environ: Optional[Mapping[str, str]] = None) -> "Repository":
        """Find the repository containing start (walking upward), honouring GIT_DIR."""
        environ = os.environ if environ is None else environ
        if environ.get("GIT_DIR"):
            git_dir = Path(environ["GIT_DIR"]).resolve()
            work_tree = environ.get("GIT_WORK_TREE") or git_dir.parent
            repo = cls(work_tree, git_dir=git_dir)
            repo.require_repo()
            return repo
        current = Path(start).resolve()
        for candidate in [current, *current.parents]:
            dot_git = candidate / ".git"
            if dot_git.is_dir():
                return cls(candidate)
            if dot_git.is_file():
                return cls(candidate, git_dir=_read_gitdir_file(dot_git))
        raise NotARepositoryError("not a git repository (or any of the parent directories): .git")

    def require_repo(self) -> None:
        """Raise NotARepositoryError if not a git repo."""
        if not self.git_dir.is_dir():
            raise NotARepositoryError("not a git repository")

    def init(self, default_branch: str = "main") -> bool:
        """Create new repo. Return False if already exists."""
        if self.git_dir.exists():
            return False
        for d in (self.git_dir, self.objects_dir, self.heads_dir, self.refs_dir / "tags", self.git_dir / "hooks"):
            d.mkdir(parents=True, exist_ok=True)
        write_head_ref(self.git_dir, f"{REF_HEADS_PREFIX}{default_branch}")
        index_save(self.git_dir, {})
        (self.git_dir / "config").write_text(
            "[core]\n\trepositoryformatversion = 0\n\tfilemode = true\n\tbare = false\n"
        )
        return True

    def load_index(self) -> Dict[str, Dict]:
        """Load index (entries: path -> {sha1, mode, size, mtime_ns, ctime_ns, stage})."""
        return index_load(self.git_dir)

    def save_index(self, entries: Dict[str, Dict]) -> None:
        index_save(self.git_dir, entries)

    def store_object(self, obj: GitObject) -> str:
        """Store object in ODB; return full hash."""
        return self.odb.store(obj)

    def load_object(self, sha: str) -> GitObject:
        """Load object by full hash."""
        return self.odb.load(sha)

    def load_tree(self, sha: str) -> Tree:
        obj = self.load_object(sha)
        if obj.type != OBJ_TREE:
            raise ObjectNotFoundError(f"object {sha} is a {obj.type}, not a tree")
        return obj

    def load_commit(self, sha: str) -> Commit:
        obj = self.load_object(sha)
        if obj.type != OBJ_COMMIT:
            raise ObjectNotFoundError(f"object {sha} is a {obj.type}, not a commit")
        return obj

    def flatten_tree(self, tree_hash: str, prefix: str = "") -> FlatTree:
        """Return path -> (mode, sha) for all non-directory entries under tree."""
        result: FlatTree = {}
        for mode, name, obj_hash in self.load_tree(tree_hash).entries:
            full = f"{prefix}{name}"
            if is_tree_mode(mode):
                result.update(self.flatten_tree(obj_hash, f"{full}/"))
            else:
                result[full] = (mode, obj_hash)
        return result


def tree_hash_for_commit(repo: Repository, commit_hash: str) -> str:
    """Load commit and return its tree hash."""
    return repo.load_commit(commit_hash).tree_hash


def _read_gitdir_file(dot_git: Path) -> Path:
    """Resolve a '.git' file ('gitdir: <path>', as submodules have) to the directory it names."""
    text = read_text_safe(dot_git)
    if text is None or not text.startswith("gitdir:"):
        raise NotARepositoryError(f"invalid gitfile format: {dot_git}")
    git_dir = (dot_git.parent / text[len("gitdir:") :].strip()).resolve()
    if not git_dir.is_dir():
        raise NotARepositoryError(f"not a git repository: {git_dir}")
    if (git_dir / "commondir").exists():
        raise NotARepositoryError(f"linked worktrees are not supported: {git_dir}")
    return git_dir
