"""Staging area: Git binary index (DIRC v2/v3), read-mostly."""

from __future__ import annotations

import hashlib
import struct
from pathlib import Path
from typing import Any, Dict

from .constants import INDEX_FILENAME, MODE_FILE
from .errors import IndexChecksumError, IndexCorruptError
from .util import write_bytes_atomic

INDEX_CHECKSUM_LEN = 20

DIRC_SIGNATURE = b"DIRC"
INDEX_VERSION_BINARY = 2
SUPPORTED_VERSIONS = (2, 3)
FLAGS_NAME_MASK = 0x0FFF  # low 12 bits for name length; 0xFFF = name longer than that
FLAGS_STAGE_MASK = 0x3000
FLAGS_STAGE_SHIFT = 12
FLAGS_EXTENDED = 0x4000
MAX_NAME_IN_FLAGS = 0xFFF


def _index_path(repo_git: Path) -> Path:
    return repo_git / INDEX_FILENAME


def _mode_to_int(mode: str) -> int:
    """Git mode string (e.g. 100644) to u32 (octal)."""
    return int(mode, 8)


def _mode_from_int(m: int) -> str:
    """u32 to Git mode string (100644, 100755, 120000, 160000)."""
    if m <= 0:
        return MODE_FILE
    return f"{m:o}"


def _read_dirc(data: bytes) -> Dict[str, Dict[str, Any]]:
    """Parse DIRC bytes; return {path: {sha1, mode, size, mtime_ns, ctime_ns, stage}}.
    Verifies the trailing SHA-1 checksum and entry order. Extensions are skipped."""
    if len(data) < 12 + INDEX_CHECKSUM_LEN:
        raise IndexCorruptError("index truncated or corrupt")
    body = data[:-INDEX_CHECKSUM_LEN]
    stored = data[-INDEX_CHECKSUM_LEN:]
    if hashlib.sha1(body).digest() != stored:
        raise IndexChecksumError("index checksum mismatch")
    version, count = struct.unpack(">II", body[4:12])
    if version not in SUPPORTED_VERSIONS:
        raise IndexCorruptError(f"index version {version} is not supported")
    result: Dict[str, Dict[str, Any]] = {}
    path_order: list[str] = []
    pos = 12
    for _ in range(count):
        if pos + 62 > len(body):
            raise IndexCorruptError("index truncated or corrupt")
        entry_start = pos
        ctime_s, ctime_ns, mtime_s, mtime_ns = struct.unpack(">IIII", body[pos : pos + 16])
        pos += 24  # ctime, mtime, dev, ino
        mode, _uid, _gid, size = struct.unpack(">IIII", body[pos : pos + 16])
        pos += 16
        sha1_bin = body[pos : pos + 20]
        pos += 20
        flags = struct.unpack(">H", body[pos : pos + 2])[0]
        pos += 2
        if flags & FLAGS_EXTENDED:
            if version < 3:
                raise IndexCorruptError("extended flags in a version 2 index")
            pos += 2
        name_len = flags & FLAGS_NAME_MASK
        if name_len == MAX_NAME_IN_FLAGS:
            null_idx = body.find(b"\0", pos)
            if null_idx == -1:
                raise IndexCorruptError("index truncated or corrupt")
            path_bytes = body[pos:null_idx]
            pos = null_idx + 1
        else:
            path_bytes = body[pos : pos + name_len]
            pos += name_len + 1  # NUL
        path_str = path_bytes.decode("utf-8", errors="surrogateescape")
        path_order.append(path_str)
        result[path_str] = {
            "sha1": sha1_bin.hex(),
            "mode": _mode_from_int(mode),
            "size": size,
            "mtime_ns": mtime_s * 1_000_000_000 + mtime_ns,
            "ctime_ns": ctime_s * 1_000_000_000 + ctime_ns,
            "stage": (flags & FLAGS_STAGE_MASK) >> FLAGS_STAGE_SHIFT,
        }
        # entries are NUL-padded to a multiple of 8 bytes
        consumed = pos - entry_start
        pos = entry_start + ((consumed + 7) // 8) * 8
    # Git requires entries sorted by path
    if path_order != sorted(path_order):
        raise IndexCorruptError("index entries not sorted by path")
    return result


def _write_dirc(repo_git: Path, entries: Dict[str, Dict[str, Any]]) -> None:
    """Write binary DIRC v2 index (atomic)."""
    chunks = [DIRC_SIGNATURE, struct.pack(">II", INDEX_VERSION_BINARY, len(entries))]
    for path_str in sorted(entries.keys()):
        ent = entries[path_str]
        mtime_s, mtime_nsec = divmod(int(ent.get("mtime_ns", 0)), 1_000_000_000)
        ctime_s, ctime_nsec = divmod(int(ent.get("ctime_ns", 0)), 1_000_000_000)
        path_bytes = path_str.encode("utf-8", errors="surrogateescape")
        flags = min(len(path_bytes), MAX_NAME_IN_FLAGS)
        flags |= (int(ent.get("stage", 0)) << FLAGS_STAGE_SHIFT) & FLAGS_STAGE_MASK
        entry = (
            struct.pack(">IIII", ctime_s, ctime_nsec, mtime_s, mtime_nsec)
            + struct.pack(">II", 0, 0)  # dev, ino
            + struct.pack(">IIII", _mode_to_int(ent.get("mode", MODE_FILE)), 0, 0, int(ent.get("size", 0)))
            + bytes.fromhex(ent["sha1"])
            + struct.pack(">H", flags)
            + path_bytes
            + b"\0"
        )
        while len(entry) % 8 != 0:
            entry += b"\0"
        chunks.append(entry)
    content = b"".join(chunks)
    write_bytes_atomic(_index_path(repo_git), content + hashlib.sha1(content).digest())


def load_index(repo_git: Path) -> Dict[str, Dict[str, Any]]:
    """Load index; empty dict if there is no index file yet."""
    path = _index_path(repo_git)
    if not path.exists():
        return {}
    data = path.read_bytes()
    if data[:4] != DIRC_SIGNATURE:
        raise IndexCorruptError("index file has no DIRC signature")
    return _read_dirc(data)


def save_index(repo_git: Path, entries: Dict[str, Dict[str, Any]]) -> None:
    """Save index as binary DIRC v2 (atomic)."""
    _write_dirc(repo_git, entries)


def index_entry(blob_sha: str, mode: str = MODE_FILE, size: int = 0) -> Dict[str, Any]:
    """Build a stage-0 index entry for a blob that is not backed by a stat()ed file."""
    return {
        "sha1": blob_sha,
        "mode": mode,
        "size": size,
        "mtime_ns": 0,
        "ctime_ns": 0,
        "stage": 0,
    }
