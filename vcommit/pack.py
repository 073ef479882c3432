"""Read-only access to packed objects: pack index v2 lookup and entry inflation with deltas."""

from __future__ import annotations

import logging
import struct
import zlib
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .constants import OBJ_BLOB, OBJ_COMMIT, OBJ_TAG, OBJ_TREE, SHA1_HEX_LEN
from .errors import ObjectNotFoundError, PackError

logger = logging.getLogger(__name__)

IDX_SIGNATURE = b"\xfftOc"
IDX_VERSION_V2 = 2
FANOUT_ENTRIES = 256 * 4  # 1024 bytes
IDX_TRAILER_LEN = 20 + 20  # pack sha1 + idx sha1
LARGE_OFFSET_FLAG = 0x80000000

PACK_SIGNATURE = b"PACK"
PACK_HEADER_LEN = 12  # PACK(4) + version(4) + num_objects(4)

OBJ_OFS_DELTA = 6
OBJ_REF_DELTA = 7

TYPE_NAMES = {
    1: OBJ_COMMIT,
    2: OBJ_TREE,
    3: OBJ_BLOB,
    4: OBJ_TAG,
}

# git refuses deeper chains when writing; anything longer here is a cycle
MAX_DELTA_CHAIN = 10000

# (type name, inflated content)
RawObject = Tuple[str, bytes]


class PackIndex:
    """Pack index v2: object id -> offset of its entry in the matching .pack."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._data = self.path.read_bytes()
        self._parse()

    def _parse(self) -> None:
        data = self._data
        if len(data) < 8 + FANOUT_ENTRIES + IDX_TRAILER_LEN:
            raise PackError(f"{self.path.name}: idx file too short")
        if data[:4] != IDX_SIGNATURE:
            raise PackError(f"{self.path.name}: unsupported idx format (only version 2 is read)")
        version = struct.unpack(">I", data[4:8])[0]
        if version != IDX_VERSION_V2:
            raise PackError(f"{self.path.name}: unsupported idx version {version}")

        self._fanout: List[int] = list(struct.unpack(">256I", data[8 : 8 + FANOUT_ENTRIES]))
        n = self._fanout[255]
        names_start = 8 + FANOUT_ENTRIES
        crc_start = names_start + n * 20
        offset_start = crc_start + n * 4
        large_start = offset_start + n * 4
        trailer_start = len(data) - IDX_TRAILER_LEN
        if large_start > trailer_start:
            raise PackError(f"{self.path.name}: idx truncated")

        self._names = [data[names_start + i * 20 : names_start + (i + 1) * 20].hex() for i in range(n)]
        self._offsets = list(struct.unpack(f">{n}I", data[offset_start:large_start]))

        # MSB set: the low 31 bits index the 8-byte large offset table
        for i, value in enumerate(self._offsets):
            if value & LARGE_OFFSET_FLAG:
                pos = large_start + (value & ~LARGE_OFFSET_FLAG) * 8
                if pos + 8 > trailer_start:
                    raise PackError(f"{self.path.name}: idx truncated at large offsets")
                self._offsets[i] = struct.unpack(">Q", data[pos : pos + 8])[0]

    def __len__(self) -> int:
        return len(self._names)

    def lookup(self, sha1_hex: str) -> Optional[int]:
        """Return pack file offset for object, or None if not in this index."""
        if len(sha1_hex) != SHA1_HEX_LEN:
            return None
        sha1_hex = sha1_hex.lower()
        first_byte = int(sha1_hex[:2], 16)
        lo = self._fanout[first_byte - 1] if first_byte > 0 else 0
        hi = self._fanout[first_byte]
        while lo < hi:
            mid = (lo + hi) // 2
            name = self._names[mid]
            if name < sha1_hex:
                lo = mid + 1
            elif name > sha1_hex:
                hi = mid
            else:
                return self._offsets[mid]
        return None


def _decode_entry_header(data: bytes, offset: int) -> Tuple[int, int, int]:
    """Decode one pack entry header. Returns (type, inflated size, position after the size)."""
    if offset >= len(data):
        raise PackError("entry header truncated")
    byte = data[offset]
    obj_type = (byte >> 4) & 0x07
    size = byte & 0x0F
    pos = offset + 1
    shift = 4
    while byte & 0x80:
        if pos >= len(data):
            raise PackError("size encoding truncated")
        byte = data[pos]
        size |= (byte & 0x7F) << shift
        shift += 7
        pos += 1
    return obj_type, size, pos


def _read_ofs_distance(data: bytes, pos: int) -> Tuple[int, int]:
    """Decode an ofs-delta base distance. Returns (distance back from the entry, next position).

    Each continuation byte adds one before shifting, so no value has two encodings.
    """
    if pos >= len(data):
        raise PackError("ofs-delta offset truncated")
    byte = data[pos]
    pos += 1
    value = byte & 0x7F
    while byte & 0x80:
        if pos >= len(data):
            raise PackError("ofs-delta offset truncated")
        byte = data[pos]
        pos += 1
        value = ((value + 1) << 7) | (byte & 0x7F)
    return value, pos


def _inflate(data: bytes, pos: int, size: int) -> bytes:
    try:
        out = zlib.decompressobj().decompress(memoryview(data)[pos:], size)
    except zlib.error as e:
        raise PackError(f"corrupt pack entry at {pos}: {e}") from e
    if len(out) != size:
        raise PackError(f"pack entry at {pos} inflated to {len(out)} bytes, expected {size}")
    return out


def apply_delta(base_content: bytes, delta: bytes) -> bytes:
    """Apply git delta instructions to base_content; return result bytes."""
    if len(delta) < 2:
        raise PackError("delta too short")
    pos = 0

    def read_varint() -> int:
        nonlocal pos
        value = 0
        shift = 0
        while True:
            if pos >= len(delta):
                raise PackError("delta varint truncated")
            byte = delta[pos]
            pos += 1
            value |= (byte & 0x7F) << shift
            shift += 7
            if not byte & 0x80:
                return value

    base_size = read_varint()
    result_size = read_varint()
    if base_size != len(base_content):
        raise PackError(f"delta base size mismatch: expected {base_size}, got {len(base_content)}")

    result = bytearray()
    while pos < len(delta):
        cmd = delta[pos]
        pos += 1
        if cmd & 0x80:
            # Copy from base: bits 0-3 select offset bytes, bits 4-6 size bytes
            offset = 0
            size = 0
            for i in range(4):
                if cmd & (1 << i):
                    if pos >= len(delta):
                        raise PackError("delta copy offset truncated")
                    offset |= delta[pos] << (8 * i)
                    pos += 1
            for i in range(3):
                if cmd & (0x10 << i):
                    if pos >= len(delta):
                        raise PackError("delta copy size truncated")
                    size |= delta[pos] << (8 * i)
                    pos += 1
            if size == 0:
                size = 0x10000
            if offset + size > len(base_content):
                raise PackError("delta copy outside base")
            result += base_content[offset : offset + size]
        else:
            if cmd == 0:
                raise PackError("delta insert size 0")
            if pos + cmd > len(delta):
                raise PackError("delta insert truncated")
            result += delta[pos : pos + cmd]
            pos += cmd

    if len(result) != result_size:
        raise PackError(f"delta result size mismatch: expected {result_size}, got {len(result)}")
    return bytes(result)


class PackFile:
    """One .pack plus its .idx. Pack bytes are read on first use."""

    def __init__(self, pack_path: Path, index: PackIndex) -> None:
        self.pack_path = Path(pack_path)
        self.index = index
        self._data: Optional[bytes] = None

    def _pack_data(self) -> bytes:
        if self._data is None:
            data = self.pack_path.read_bytes()
            if len(data) < PACK_HEADER_LEN or data[:4] != PACK_SIGNATURE:
                raise PackError(f"{self.pack_path.name}: invalid pack signature")
            version = struct.unpack(">I", data[4:8])[0]
            if version not in (2, 3):
                raise PackError(f"{self.pack_path.name}: unsupported pack version {version}")
            self._data = data
        return self._data

    def contains(self, sha: str) -> bool:
        return self.index.lookup(sha) is not None

    def read(self, sha: str, load_base: Callable[[str], RawObject]) -> Optional[RawObject]:
        """Return (type, content) of sha, or None if this pack does not hold it.

        load_base fetches ref-delta bases that live outside this pack.
        """
        offset = self.index.lookup(sha)
        if offset is None:
            return None
        return self._read_at(offset, load_base)

    def _read_at(self, offset: int, load_base: Callable[[str], RawObject]) -> RawObject:
        data = self._pack_data()
        deltas: List[bytes] = []
        while True:
            if len(deltas) > MAX_DELTA_CHAIN:
                raise PackError(f"{self.pack_path.name}: delta chain too long at {offset}")
            obj_type, size, pos = _decode_entry_header(data, offset)
            if obj_type in TYPE_NAMES:
                base = (TYPE_NAMES[obj_type], _inflate(data, pos, size))
                break
            if obj_type == OBJ_OFS_DELTA:
                distance, pos = _read_ofs_distance(data, pos)
                if distance <= 0 or distance > offset:
                    raise PackError(f"{self.pack_path.name}: bad ofs-delta base at {offset}")
                deltas.append(_inflate(data, pos, size))
                offset -= distance
            elif obj_type == OBJ_REF_DELTA:
                if pos + 20 > len(data):
                    raise PackError("ref-delta base id truncated")
                base_sha = data[pos : pos + 20].hex()
                deltas.append(_inflate(data, pos + 20, size))
                base_offset = self.index.lookup(base_sha)
                if base_offset is None:
                    base = load_base(base_sha)
                    break
                offset = base_offset
            else:
                raise PackError(f"{self.pack_path.name}: unsupported entry type {obj_type} at {offset}")

        base_type, content = base
        for delta in reversed(deltas):
            content = apply_delta(content, delta)
        return base_type, content


class PackStore:
    """All packs under objects/pack. Rescanned when a lookup misses and the set of packs changed."""

    def __init__(self, objects_dir: Path) -> None:
        self.pack_dir = Path(objects_dir) / "pack"
        self._packs: Dict[str, PackFile] = {}
        self._scanned = False

    def _scan(self) -> bool:
        """Open indexes not seen yet. Return True if any were added."""
        self._scanned = True
        if not self.pack_dir.is_dir():
            return False
        added = False
        for idx_path in sorted(self.pack_dir.glob("*.idx")):
            pack_path = idx_path.with_suffix(".pack")
            if idx_path.name in self._packs or not pack_path.is_file():
                continue
            try:
                index = PackIndex(idx_path)
            except PackError as e:
                logger.warning("skipping %s: %s", idx_path.name, e)
                continue
            self._packs[idx_path.name] = PackFile(pack_path, index)
            logger.debug("opened %s (%d objects)", idx_path.name, len(index))
            added = True
        return added

    def _find(self, sha: str) -> Optional[PackFile]:
        if not self._scanned:
            self._scan()
        for pack in self._packs.values():
            if pack.contains(sha):
                return pack
        if self._scan():
            for pack in self._packs.values():
                if pack.contains(sha):
                    return pack
        return None

    def contains(self, sha: str) -> bool:
        return self._find(sha) is not None

    def load(self, sha: str, load_base: Callable[[str], RawObject]) -> RawObject:
        """Return (type, content) of a packed object. Raises ObjectNotFoundError."""
        pack = self._find(sha)
        if pack is None:
            raise ObjectNotFoundError(f"object {sha} not found")
        return pack.read(sha, load_base)
