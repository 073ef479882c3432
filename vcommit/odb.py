"""Object database: loose objects under .git/objects/<aa>/<bb...>, with packs read as a fallback."""

from __future__ import annotations

import logging
import zlib
from pathlib import Path

from .constants import SHA1_HEX_LEN
from .errors import ObjectNotFoundError
from .objects import GitObject
from .pack import PackStore, RawObject
from .util import is_hex_sha, write_bytes_atomic

logger = logging.getLogger(__name__)


class ObjectDB:
    """Loose object storage plus read-only packs. Writes are additive, idempotent and always loose."""

    def __init__(self, objects_dir: Path) -> None:
        self.objects_dir = Path(objects_dir)
        self.packs = PackStore(self.objects_dir)

    def _object_path(self, sha: str) -> Path:
        """Path to loose object file. sha must be full 40-char hex."""
        if len(sha) != SHA1_HEX_LEN or not is_hex_sha(sha):
            raise ValueError(f"invalid full sha: {sha}")
        sha = sha.lower()
        return self.objects_dir / sha[:2] / sha[2:]

    def store(self, obj: GitObject) -> str:
        """Write object to ODB; return full 40-char hash."""
        sha = obj.hash_id()
        path = self._object_path(sha)
        if path.exists() or self.packs.contains(sha):
            return sha
        write_bytes_atomic(path, obj.serialize())
        logger.debug("wrote %s %s", obj.type, sha)
        return sha

    def _load_raw(self, sha: str) -> RawObject:
        """(type, content) of sha: loose first, then packs."""
        if not is_hex_sha(sha):
            raise ObjectNotFoundError(f"object {sha} not found")
        path = self._object_path(sha)
        if not path.exists():
            return self.packs.load(sha.lower(), self._load_raw)
        try:
            obj = GitObject.deserialize(path.read_bytes())
        except (zlib.error, ValueError) as e:
            raise ObjectNotFoundError(f"object {sha} is corrupt: {e}") from e
        return obj.type, obj.content

    def load(self, sha: str) -> GitObject:
        """Load object by full 40-char hash. Raises ObjectNotFoundError."""
        obj_type, content = self._load_raw(sha)
        try:
            return GitObject.from_parts(obj_type, content)
        except ValueError as e:
            raise ObjectNotFoundError(f"object {sha} is corrupt: {e}") from e
