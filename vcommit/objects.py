"""Git objects: GitObject, Blob, Tree, Commit and Signature with serialization/parsing."""

from __future__ import annotations

import zlib
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .constants import MODE_DIR, OBJ_BLOB, OBJ_COMMIT, OBJ_TREE
from .util import sha1_hash


def _object_header(obj_type: str, content: bytes) -> bytes:
    """Header: '<type> <size>\\0'."""
    return f"{obj_type} {len(content)}\0".encode()


def is_tree_mode(mode: str) -> bool:
    """True for directory entries ('40000', or '040000' as some tools write it)."""
    return mode.lstrip("0") == MODE_DIR


class GitObject:
    """Base git object (blob, tree, commit)."""

    def __init__(self, obj_type: str, content: bytes) -> None:
        self.type = obj_type
        self.content = content

    def hash_id(self) -> str:
        """SHA-1 of uncompressed representation: header + content."""
        header = _object_header(self.type, self.content)
        return sha1_hash(header + self.content)

    def serialize(self) -> bytes:
        """Compressed bytes for storage: zlib(header + content)."""
        header = _object_header(self.type, self.content)
        return zlib.compress(header + self.content)

    @classmethod
    def deserialize(cls, data: bytes) -> "GitObject":
        """Parse compressed object bytes into a Blob, Tree, Commit or generic GitObject."""
        raw = zlib.decompress(data)
        null_idx = raw.find(b"\0")
        if null_idx == -1:
            raise ValueError("invalid object: no null byte in header")
        header = raw[:null_idx].decode()
        content = raw[null_idx + 1 :]
        parts = header.split(" ", 1)
        if len(parts) != 2:
            raise ValueError("invalid object header")
        obj_type, size = parts
        if int(size) != len(content):
            raise ValueError(f"invalid object: size {size} does not match content")
        return cls.from_parts(obj_type, content)

    @classmethod
    def from_parts(cls, obj_type: str, content: bytes) -> "GitObject":
        """Build the typed object for already-inflated content."""
        if obj_type == OBJ_BLOB:
            return Blob(content)
        if obj_type == OBJ_TREE:
            return Tree.from_content(content)
        if obj_type == OBJ_COMMIT:
            return Commit.from_content(content)
        return cls(obj_type, content)


class Blob(GitObject):
    """Blob object: raw file content."""

    def __init__(self, content: bytes) -> None:
        super().__init__(OBJ_BLOB, content)


def _tree_sort_key(entry: Tuple[str, str, str]) -> bytes:
    # git compares directory names as if they ended in '/'
    mode, name, _ = entry
    key = name.encode("utf-8", errors="surrogateescape")
    return key + b"/" if is_tree_mode(mode) else key


class Tree(GitObject):
    """Tree object: list of (mode, name, sha) entries, serialized in git order."""

    def __init__(self, entries: List[Tuple[str, str, str]] | None = None) -> None:
        self.entries: List[Tuple[str, str, str]] = list(entries or [])
        super().__init__(OBJ_TREE, self._serialize_entries())

    def _serialize_entries(self) -> bytes:
        """Each entry: b'{mode} {name}\\0' + 20-byte sha."""
        out = bytearray()
        for mode, name, obj_hash in sorted(self.entries, key=_tree_sort_key):
            if is_tree_mode(mode):
                mode = MODE_DIR
            out += f"{mode} {name}\0".encode("utf-8", errors="surrogateescape")
            out += bytes.fromhex(obj_hash)
        return bytes(out)

    @classmethod
    def from_content(cls, content: bytes) -> "Tree":
        tree = cls()
        i = 0
        while i < len(content):
            null_idx = content.find(b"\0", i)
            if null_idx == -1:
                raise ValueError("invalid tree: entry without terminator")
            mode_name = content[i:null_idx].decode("utf-8", errors="surrogateescape")
            mode, sep, name = mode_name.partition(" ")
            sha_bin = content[null_idx + 1 : null_idx + 21]
            if not sep or len(sha_bin) != 20:
                raise ValueError("invalid tree: truncated entry")
            tree.entries.append((mode, name, sha_bin.hex()))
            i = null_idx + 21
        tree.content = content  # preserve exact bytes for correct hash
        return tree


@dataclass(frozen=True)
class Signature:
    """Author or committer line: name, email and a timestamp with its UTC offset."""

    name: str
    email: str
    timestamp: int
    tz_offset: str

    @property
    def identity(self) -> str:
        return f"{self.name} <{self.email}>"

    @property
    def date(self) -> str:
        """'<unix seconds> <+hhmm>', the format GIT_*_DATE accepts."""
        return f"{self.timestamp} {self.tz_offset}"

    def format(self) -> str:
        return f"{self.identity} {self.date}"

    @classmethod
    def parse(cls, text: str) -> "Signature":
        """Parse 'Name <email> 1700000000 +0000'."""
        lt = text.rfind("<")
        gt = text.rfind(">")
        if lt == -1 or gt < lt:
            raise ValueError(f"invalid signature: {text!r}")
        name = text[:lt].strip()
        email = text[lt + 1 : gt]
        rest = text[gt + 1 :].split()
        if len(rest) != 2:
            raise ValueError(f"invalid signature: {text!r}")
        return cls(name, email, int(rest[0]), rest[1])


class Commit(GitObject):
    """Commit object: tree, parents, author, committer, optional gpgsig, message.

    Headers this class does not model (e.g. encoding) are kept in ``extra_headers``
    so a parsed commit reserializes to the same bytes.
    """

    def __init__(
        self,
        tree_hash: str,
        parent_hashes: List[str],
        author: Signature,
        committer: Signature,
        message: str,
        gpgsig: Optional[str] = None,
        extra_headers: Optional[List[Tuple[str, str]]] = None,
    ) -> None:
        self.tree_hash = tree_hash
        self.parent_hashes = list(parent_hashes)
        self.author = author
        self.committer = committer
        # git stores the message with a trailing newline
        self.message = message if message.endswith("\n") else message + "\n"
        self.gpgsig = gpgsig
        self.extra_headers = list(extra_headers or [])
        super().__init__(OBJ_COMMIT, self._serialize_commit(with_signature=True))

    def _serialize_commit(self, with_signature: bool) -> bytes:
        lines = [f"tree {self.tree_hash}"]
        for p in self.parent_hashes:
            lines.append(f"parent {p}")
        lines.append(f"author {self.author.format()}")
        lines.append(f"committer {self.committer.format()}")
        for key, value in self.extra_headers:
            lines.append(_header_line(key, value))
        if with_signature and self.gpgsig:
            lines.append(_header_line("gpgsig", self.gpgsig))
        lines.append("")
        return ("\n".join(lines) + "\n" + self.message).encode("utf-8", errors="surrogateescape")

    def payload(self) -> bytes:
        """Canonical bytes a signature covers: the commit without its gpgsig header."""
        return self._serialize_commit(with_signature=False)

    def with_signature(self, signature: str) -> "Commit":
        """Return a copy carrying signature as its gpgsig header."""
        return Commit(
            self.tree_hash,
            self.parent_hashes,
            self.author,
            self.committer,
            self.message,
            gpgsig=signature.rstrip("\n"),
            extra_headers=self.extra_headers,
        )

    @property
    def subject(self) -> str:
        return self.message.split("\n", 1)[0].strip()

    @classmethod
    def from_content(cls, content: bytes) -> "Commit":
        """Parse commit content; keep exact bytes so the hash is unchanged."""
        text = content.decode("utf-8", errors="surrogateescape")
        head, sep, message = text.partition("\n\n")
        if not sep:
            head, message = text.rstrip("\n"), ""
        headers: List[Tuple[str, str]] = []
        for line in head.split("\n"):
            if line.startswith(" ") and headers:
                key, value = headers[-1]
                headers[-1] = (key, value + "\n" + line[1:])
                continue
            key, _, value = line.partition(" ")
            headers.append((key, value))
        commit = cls.__new__(cls)
        commit.tree_hash = ""
        commit.parent_hashes = []
        commit.author = None
        commit.committer = None
        commit.gpgsig = None
        commit.extra_headers = []
        for key, value in headers:
            if key == "tree":
                commit.tree_hash = value
            elif key == "parent":
                commit.parent_hashes.append(value)
            elif key == "author":
                commit.author = Signature.parse(value)
            elif key == "committer":
                commit.committer = Signature.parse(value)
            elif key == "gpgsig":
                commit.gpgsig = value
            else:
                commit.extra_headers.append((key, value))
        commit.message = message
        commit.content = content  # keep exact bytes for correct hash
        commit.type = OBJ_COMMIT
        return commit


def _header_line(key: str, value: str) -> str:
    """Multi-line header values continue on lines prefixed with a single space."""
    return f"{key} " + value.replace("\n", "\n ")
