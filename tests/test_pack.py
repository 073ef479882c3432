"""Tests for reading packed objects: idx v2 lookup, ofs/ref deltas, and repositories packed by git gc."""

import hashlib
import io
import os
import shutil
import struct
import subprocess
import tempfile
import unittest
import zlib
from pathlib import Path
from typing import Dict, Set

from repo_fixtures import StubTools, commit_files, fixture_settings, make_repo

from vcommit.errors import ObjectNotFoundError, PackError
from vcommit.objects import Blob
from vcommit.pack import apply_delta
from vcommit.porcelain import CommitOptions, commit_to_branch
from vcommit.repo import Repository


def varint(n: int) -> bytes:
    out = bytearray()
    while True:
        byte = n & 0x7F
        n >>= 7
        if n:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def entry_header(type_num: int, size: int) -> bytes:
    byte = (type_num << 4) | (size & 0x0F)
    size >>= 4
    out = bytearray()
    while size:
        out.append(byte | 0x80)
        byte = size & 0x7F
        size >>= 7
    out.append(byte)
    return bytes(out)


def ofs_distance(distance: int) -> bytes:
    out = [distance & 0x7F]
    distance >>= 7
    while distance:
        distance -= 1
        out.append(0x80 | (distance & 0x7F))
        distance >>= 7
    return bytes(reversed(out))


def append_delta(base: bytes, suffix: bytes) -> bytes:
    """Delta that copies all of base (one copy command) and inserts suffix."""
    assert 0 < len(base) < 256 and 0 < len(suffix) < 128
    return varint(len(base)) + varint(len(base) + len(suffix)) + bytes([0x90, len(base), len(suffix)]) + suffix


def write_pack(pack_dir: Path, name: str, entries, large: Set[str] = frozenset()) -> Dict[str, int]:
    """entries: list of (sha, encoded header, payload). Writes pack-<name>.pack/.idx; returns sha -> offset."""
    pack_dir.mkdir(parents=True, exist_ok=True)
    body = bytearray(b"PACK" + struct.pack(">II", 2, len(entries)))
    offsets: Dict[str, int] = {}
    for sha, header, payload in entries:
        offsets[sha] = len(body)
        body += header + zlib.compress(payload)
    pack_sha = hashlib.sha1(body).digest()
    (pack_dir / f"pack-{name}.pack").write_bytes(bytes(body) + pack_sha)

    names = sorted(offsets)
    fanout = [sum(1 for s in names if int(s[:2], 16) <= i) for i in range(256)]
    idx = bytearray(b"\xfftOc" + struct.pack(">I", 2) + struct.pack(">256I", *fanout))
    for s in names:
        idx += bytes.fromhex(s)
    idx += b"\0\0\0\0" * len(names)
    large_table = bytearray()
    for s in names:
        if s in large:
            idx += struct.pack(">I", 0x80000000 | (len(large_table) // 8))
            large_table += struct.pack(">Q", offsets[s])
        else:
            idx += struct.pack(">I", offsets[s])
    idx += large_table + pack_sha
    idx += hashlib.sha1(idx).digest()
    (pack_dir / f"pack-{name}.idx").write_bytes(bytes(idx))
    return offsets


BASE = b"line of packed text\n" * 10
OFS_TEXT = BASE + b"ofs tail\n"
REF_TEXT = BASE + b"ref tail\n"


class TestPackedObjects(unittest.TestCase):
    def setUp(self) -> None:
        self.repo = make_repo("vcommit_pack_")
        self.pack_dir = self.repo.objects_dir / "pack"
        self.base_sha = Blob(BASE).hash_id()
        self.ofs_sha = Blob(OFS_TEXT).hash_id()
        self.ref_sha = Blob(REF_TEXT).hash_id()

    def write_deltified_pack(self, large: Set[str] = frozenset()) -> None:
        base_header = entry_header(3, len(BASE))
        ofs_delta = append_delta(BASE, b"ofs tail\n")
        ref_delta = append_delta(BASE, b"ref tail\n")
        ofs_entry_offset = 12 + len(base_header) + len(zlib.compress(BASE))
        write_pack(
            self.pack_dir,
            "a",
            [
                (self.base_sha, base_header, BASE),
                (self.ofs_sha, entry_header(6, len(ofs_delta)) + ofs_distance(ofs_entry_offset - 12), ofs_delta),
                (self.ref_sha, entry_header(7, len(ref_delta)) + bytes.fromhex(self.base_sha), ref_delta),
            ],
            large=large,
        )

    def test_reads_whole_and_deltified_entries(self) -> None:
        self.write_deltified_pack()
        self.assertEqual(self.repo.load_object(self.base_sha).content, BASE)
        self.assertEqual(self.repo.load_object(self.ofs_sha).content, OFS_TEXT)
        self.assertEqual(self.repo.load_object(self.ref_sha).content, REF_TEXT)
        self.assertEqual(self.repo.load_object(self.ref_sha).type, "blob")

    def test_large_offset_table(self) -> None:
        self.write_deltified_pack(large={self.ofs_sha})
        self.assertEqual(self.repo.load_object(self.ofs_sha).content, OFS_TEXT)

    def test_ofs_distance_beyond_one_byte(self) -> None:
        filler = bytes(range(256)) * 2  # incompressible enough to push the delta past 127 bytes
        filler_sha = Blob(filler).hash_id()
        filler_header = entry_header(3, len(filler))
        delta = append_delta(BASE, b"far\n")
        delta_offset = 12 + len(entry_header(3, len(BASE))) + len(zlib.compress(BASE))
        delta_offset += len(filler_header) + len(zlib.compress(filler))
        self.assertGreater(delta_offset - 12, 127)
        far_sha = Blob(BASE + b"far\n").hash_id()
        write_pack(
            self.pack_dir,
            "far",
            [
                (self.base_sha, entry_header(3, len(BASE)), BASE),
                (filler_sha, filler_header, filler),
                (far_sha, entry_header(6, len(delta)) + ofs_distance(delta_offset - 12), delta),
            ],
        )
        self.assertEqual(self.repo.load_object(far_sha).content, BASE + b"far\n")

    def test_ref_delta_base_outside_pack(self) -> None:
        self.repo.store_object(Blob(BASE))
        ref_delta = append_delta(BASE, b"ref tail\n")
        write_pack(self.pack_dir, "thin", [(self.ref_sha, entry_header(7, len(ref_delta)) + bytes.fromhex(self.base_sha), ref_delta)])
        self.assertEqual(self.repo.load_object(self.ref_sha).content, REF_TEXT)

    def test_store_skips_packed_object(self) -> None:
        self.write_deltified_pack()
        self.assertEqual(self.repo.store_object(Blob(BASE)), self.base_sha)
        self.assertFalse((self.repo.objects_dir / self.base_sha[:2] / self.base_sha[2:]).exists())
        self.repo.store_object(Blob(b"loose only"))
        self.assertEqual(self.repo.load_object(Blob(b"loose only").hash_id()).content, b"loose only")

    def test_pack_added_after_first_lookup(self) -> None:
        with self.assertRaises(ObjectNotFoundError):
            self.repo.load_object(self.base_sha)
        self.write_deltified_pack()
        self.assertEqual(self.repo.load_object(self.base_sha).content, BASE)

    def test_missing_object(self) -> None:
        self.write_deltified_pack()
        with self.assertRaises(ObjectNotFoundError):
            self.repo.load_object("f" * 40)

    def test_unreadable_index_is_skipped(self) -> None:
        self.pack_dir.mkdir(parents=True)
        (self.pack_dir / "pack-bad.idx").write_bytes(b"not an index")
        (self.pack_dir / "pack-bad.pack").write_bytes(b"PACK")
        with self.assertLogs("vcommit.pack", level="WARNING"):
            with self.assertRaises(ObjectNotFoundError):
                self.repo.load_object(self.base_sha)


class TestApplyDelta(unittest.TestCase):
    def test_copy_and_insert(self) -> None:
        self.assertEqual(apply_delta(b"abcdef", append_delta(b"abcdef", b"XY")), b"abcdefXY")

    def test_copy_with_offset(self) -> None:
        # copy 3 bytes at offset 2, then insert "!"
        delta = varint(6) + varint(4) + bytes([0x91, 2, 3, 1]) + b"!"
        self.assertEqual(apply_delta(b"abcdef", delta), b"cde!")

    def test_base_size_mismatch(self) -> None:
        with self.assertRaises(PackError):
            apply_delta(b"abc", append_delta(b"abcdef", b"X"))

    def test_result_size_mismatch(self) -> None:
        delta = varint(3) + varint(10) + bytes([0x90, 3])
        with self.assertRaises(PackError):
            apply_delta(b"abc", delta)


LATIN1_NAME = b"caf\xe9.txt".decode("utf-8", "surrogateescape")
BIG_V1 = b"".join(b"line %d of a file git will deltify\n" % i for i in range(200))
BIG_V2 = BIG_V1 + b"one more line\n"


@unittest.skipUnless(shutil.which("git"), "needs git")
class TestRepositoryPackedByGit(unittest.TestCase):
    """main holds two versions of big.txt and a Latin-1 file name; everything is packed by git gc."""

    def setUp(self) -> None:
        self.work = Path(tempfile.mkdtemp(prefix="vcommit_gitgc_")).resolve()
        home = tempfile.mkdtemp(prefix="vcommit_gitgc_home_")
        self.env = {
            "PATH": os.environ.get("PATH", "/usr/bin:/bin"),
            "HOME": home,
            "GIT_CONFIG_NOSYSTEM": "1",
            "GIT_AUTHOR_NAME": "Git User",
            "GIT_AUTHOR_EMAIL": "git@example.com",
            "GIT_COMMITTER_NAME": "Git User",
            "GIT_COMMITTER_EMAIL": "git@example.com",
        }
        self.git("init", "-q")
        self.git("symbolic-ref", "HEAD", "refs/heads/main")
        (self.work / "README.md").write_bytes(b"readme\n")
        (self.work / "big.txt").write_bytes(BIG_V1)
        (self.work / LATIN1_NAME).write_bytes(b"latin-1 name\n")
        self.git("add", "-A")
        self.git("commit", "-q", "-m", "A")
        self.a = self.git("rev-parse", "HEAD").strip()
        (self.work / "big.txt").write_bytes(BIG_V2)
        self.git("commit", "-q", "-a", "-m", "A2")
        self.a2 = self.git("rev-parse", "HEAD").strip()
        self.git("checkout", "-q", "-b", "feature", self.a)
        (self.work / "feature.go").write_bytes(b"package feature\n")
        self.git("add", "feature.go")
        self.git("gc", "-q", "--prune=now")
        self.repo = Repository(self.work)

    def git(self, *args: str) -> str:
        done = subprocess.run(
            ["git", *args], cwd=self.work, env=self.env, stdout=subprocess.PIPE, stderr=subprocess.PIPE, check=True
        )
        return done.stdout.decode("utf-8", errors="surrogateescape")

    def test_objects_are_packed(self) -> None:
        self.assertFalse((self.repo.objects_dir / self.a2[:2] / self.a2[2:]).exists())
        self.assertEqual(
            commit_files(self.repo, self.a),
            {"README.md": b"readme\n", "big.txt": BIG_V1, LATIN1_NAME: b"latin-1 name\n"},
        )

    def test_commit_onto_packed_branch(self) -> None:
        result = commit_to_branch(
            self.repo,
            fixture_settings(),
            StubTools(self.repo),
            CommitOptions(branch="main", message="Add feature"),
            out=io.StringIO(),
        )
        self.assertEqual(result.parent, self.a2)
        self.assertEqual(self.git("rev-parse", "main").strip(), result.commit_id)
        self.assertEqual(
            commit_files(self.repo, result.commit_id),
            {
                "README.md": b"readme\n",
                "big.txt": BIG_V2,
                LATIN1_NAME: b"latin-1 name\n",
                "feature.go": b"package feature\n",
            },
        )
        self.git("fsck", "--strict", "--no-progress")
        self.assertEqual(self.git("show", "main:big.txt").encode("utf-8", errors="surrogateescape"), BIG_V2)
        self.assertIn(
            LATIN1_NAME, self.git("ls-tree", "-z", "--name-only", "main").split("\0")
        )


if __name__ == "__main__":
    unittest.main()
