"""Tests for reflog append/read."""

import tempfile
import unittest
from pathlib import Path

from vcommit.reflog import append_reflog, read_reflog, reflog_path_for_ref

SHA_A = "a" * 40
SHA_B = "b" * 40
ZEROS = "0" * 40


class TestReflog(unittest.TestCase):
    def setUp(self) -> None:
        self.git = Path(tempfile.mkdtemp(prefix="vcommit_reflog_"))

    def test_paths(self) -> None:
        self.assertEqual(reflog_path_for_ref(self.git, "HEAD"), self.git / "logs" / "HEAD")
        self.assertEqual(
            reflog_path_for_ref(self.git, "refs/heads/main"),
            self.git / "logs" / "refs" / "heads" / "main",
        )

    def test_append_and_read(self) -> None:
        append_reflog(self.git, "refs/heads/main", ZEROS, SHA_A, "Alice <a@example.com>", 100, "+0000", "commit (initial): one")
        append_reflog(self.git, "refs/heads/main", SHA_A, SHA_B, "Alice <a@example.com>", 200, "-0700", "commit: two")
        entries = read_reflog(self.git, "refs/heads/main")
        self.assertEqual(
            entries,
            [
                (ZEROS, SHA_A, "Alice <a@example.com>", 100, "+0000", "commit (initial): one"),
                (SHA_A, SHA_B, "Alice <a@example.com>", 200, "-0700", "commit: two"),
            ],
        )

    def test_message_flattened_to_one_line(self) -> None:
        append_reflog(self.git, "HEAD", SHA_A, SHA_B, "A <a@x>", 1, "+0000", "commit: multi\nline")
        raw = (self.git / "logs" / "HEAD").read_text()
        self.assertEqual(raw.count("\n"), 1)
        self.assertTrue(raw.endswith("\tcommit: multi line\n"))

    def test_malformed_lines_skipped(self) -> None:
        path = reflog_path_for_ref(self.git, "HEAD")
        path.parent.mkdir(parents=True)
        path.write_text(f"garbage\n{SHA_A} {SHA_B} A <a@x> 5 +0000\tok\n")
        self.assertEqual(len(read_reflog(self.git, "HEAD")), 1)

    def test_missing_log(self) -> None:
        self.assertEqual(read_reflog(self.git, "refs/heads/none"), [])


if __name__ == "__main__":
    unittest.main()
