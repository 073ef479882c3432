"""Tests for refs: HEAD, loose and packed refs, branch names, compare-and-set updates."""

import tempfile
import unittest
from pathlib import Path

from vcommit.errors import ConcurrentUpdate, InvalidRefError
from vcommit.refs import (
    branch_ref,
    current_branch_name,
    head_commit,
    read_head,
    resolve_ref,
    update_ref_verify,
    validate_branch_name,
    write_head_ref,
)

SHA_A = "a" * 40
SHA_B = "b" * 40
SHA_C = "c" * 40


def make_temp_git() -> Path:
    p = Path(tempfile.mkdtemp(prefix="vcommit_refs_"))
    (p / "refs" / "heads").mkdir(parents=True)
    return p


class TestRefs(unittest.TestCase):
    def setUp(self) -> None:
        self.git = make_temp_git()

    def test_head_ref_unborn(self) -> None:
        write_head_ref(self.git, "refs/heads/main")
        state = read_head(self.git)
        self.assertEqual((state.kind, state.value), ("ref", "refs/heads/main"))
        self.assertEqual(current_branch_name(self.git), "main")
        self.assertIsNone(head_commit(self.git))

    def test_detached_head(self) -> None:
        (self.git / "HEAD").write_text(SHA_A + "\n")
        self.assertIsNone(current_branch_name(self.git))
        self.assertEqual(head_commit(self.git), SHA_A)

    def test_resolve_loose_before_packed(self) -> None:
        (self.git / "packed-refs").write_text(
            "# pack-refs with: peeled fully-peeled sorted\n"
            f"{SHA_A} refs/heads/main\n"
            f"{SHA_B} refs/heads/packed-only\n"
            f"{SHA_C} refs/tags/v1\n"
            f"^{SHA_A}\n"
        )
        self.assertEqual(resolve_ref(self.git, "refs/heads/packed-only"), SHA_B)
        self.assertEqual(resolve_ref(self.git, "refs/heads/main"), SHA_A)
        (self.git / "refs" / "heads" / "main").write_text(SHA_C + "\n")
        self.assertEqual(resolve_ref(self.git, "refs/heads/main"), SHA_C)
        self.assertIsNone(resolve_ref(self.git, "refs/heads/nope"))

    def test_symbolic_ref_chain(self) -> None:
        (self.git / "refs" / "heads" / "main").write_text(SHA_A + "\n")
        (self.git / "refs" / "heads" / "alias").write_text("ref: refs/heads/main\n")
        self.assertEqual(resolve_ref(self.git, "refs/heads/alias"), SHA_A)

    def test_branch_ref(self) -> None:
        self.assertEqual(branch_ref("main"), "refs/heads/main")
        self.assertEqual(branch_ref("refs/heads/x"), "refs/heads/x")

    def test_validate_branch_name(self) -> None:
        for good in ("main", "feature/login", "release-1.2"):
            validate_branch_name(good)
        for bad in ("", "-x", "a..b", "a b", "x.lock", "a/", "@", "a~1", "dir/.hidden", "x@{1}"):
            with self.subTest(name=bad), self.assertRaises(InvalidRefError):
                validate_branch_name(bad)


class TestUpdateRefVerify(unittest.TestCase):
    def setUp(self) -> None:
        self.git = make_temp_git()
        self.ref = "refs/heads/main"
        (self.git / self.ref).write_text(SHA_A + "\n")

    def test_moves_ref_when_old_matches(self) -> None:
        update_ref_verify(self.git, self.ref, SHA_B, SHA_A)
        self.assertEqual(resolve_ref(self.git, self.ref), SHA_B)
        self.assertFalse((self.git / "refs" / "heads" / "main.lock").exists())

    def test_mismatch_leaves_ref_alone(self) -> None:
        with self.assertRaises(ConcurrentUpdate):
            update_ref_verify(self.git, self.ref, SHA_B, SHA_C)
        self.assertEqual(resolve_ref(self.git, self.ref), SHA_A)
        self.assertFalse((self.git / "refs" / "heads" / "main.lock").exists())

    def test_existing_lock_is_concurrent_update(self) -> None:
        lock = self.git / "refs" / "heads" / "main.lock"
        lock.write_text("held\n")
        with self.assertRaises(ConcurrentUpdate):
            update_ref_verify(self.git, self.ref, SHA_B, SHA_A)
        self.assertEqual(lock.read_text(), "held\n")
        self.assertEqual(resolve_ref(self.git, self.ref), SHA_A)

    def test_create_requires_absence(self) -> None:
        update_ref_verify(self.git, "refs/heads/new", SHA_B, None)
        self.assertEqual(resolve_ref(self.git, "refs/heads/new"), SHA_B)
        with self.assertRaises(ConcurrentUpdate):
            update_ref_verify(self.git, "refs/heads/new", SHA_C, None)

    def test_packed_ref_counts_as_current_value(self) -> None:
        (self.git / "packed-refs").write_text(f"{SHA_A} refs/heads/packed\n")
        update_ref_verify(self.git, "refs/heads/packed", SHA_B, SHA_A)
        self.assertEqual(resolve_ref(self.git, "refs/heads/packed"), SHA_B)

    def test_rejects_bad_hash(self) -> None:
        with self.assertRaises(InvalidRefError):
            update_ref_verify(self.git, self.ref, "nothex", SHA_A)


if __name__ == "__main__":
    unittest.main()
