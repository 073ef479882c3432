"""Tests for message cleanup, the editor template and the staged diff."""

import unittest

from repo_fixtures import make_commit, make_repo, set_branch, stage

from vcommit.changes import ChangeKind, ChangeRecord, extract_changes, head_entries
from vcommit.message import build_template, cleanup_message, staged_diff


class TestCleanupMessage(unittest.TestCase):
    def test_strips_comments_and_blank_edges(self) -> None:
        text = "\n\n# comment\nSubject  \n\n\n\nBody line\t\n# another\n\n"
        self.assertEqual(cleanup_message(text), "Subject\n\nBody line\n")

    def test_whitespace_mode_keeps_hash_lines(self) -> None:
        self.assertEqual(cleanup_message("#123 fixed\n", strip_comments=False), "#123 fixed\n")

    def test_only_comments_is_empty(self) -> None:
        self.assertEqual(cleanup_message("# a\n#\n   \n"), "")

    def test_adds_trailing_newline(self) -> None:
        self.assertEqual(cleanup_message("one line", strip_comments=False), "one line\n")


class TestTemplate(unittest.TestCase):
    def test_lists_changes_and_branches(self) -> None:
        records = [
            ChangeRecord("a.txt", ChangeKind.ADDED, "100644", "1" * 40),
            ChangeRecord("b.txt", ChangeKind.RENAMED, "100644", "2" * 40, old_path="old.txt"),
            ChangeRecord("c.txt", ChangeKind.DELETED),
        ]
        text = build_template(records, "main", "feature")
        self.assertTrue(text.startswith("\n# Please enter the commit message"))
        self.assertIn("# Committing to branch main (currently on feature)\n", text)
        self.assertIn("#\tnew file:   a.txt\n", text)
        self.assertIn("#\trenamed:    old.txt -> b.txt\n", text)
        self.assertIn("#\tdeleted:    c.txt\n", text)
        self.assertEqual(cleanup_message(text), "")

    def test_detached_head(self) -> None:
        self.assertIn("(HEAD detached)", build_template([], "main", None))

    def test_diff_is_commented(self) -> None:
        text = build_template([], "main", "dev", diff_text="diff --git a/x b/x\n+added\n")
        self.assertIn("# +added\n", text)
        self.assertEqual(cleanup_message(text), "")


class TestStagedDiff(unittest.TestCase):
    def setUp(self) -> None:
        self.repo = make_repo("vcommit_message_")
        set_branch(self.repo, "main", make_commit(self.repo, {"mod.txt": b"one\ntwo\n", "gone.txt": b"bye\n", "bin": b"\0\1"}))

    def test_unified_diff(self) -> None:
        stage(self.repo, {"mod.txt": b"one\nTWO\n", "new.txt": b"hello\n", "bin": b"\0\2"})
        diff = staged_diff(self.repo, extract_changes(self.repo), head_entries(self.repo))
        self.assertIn("diff --git a/mod.txt b/mod.txt\n", diff)
        self.assertIn("-two\n+TWO\n", diff)
        self.assertIn("new file\n--- /dev/null\n+++ b/new.txt\n", diff)
        self.assertIn("deleted file\n--- a/gone.txt\n+++ /dev/null\n", diff)
        self.assertIn("Binary files a/bin and b/bin differ\n", diff)

    def test_non_utf8_path_is_quoted(self) -> None:
        latin1 = b"caf\xe9.txt".decode("utf-8", "surrogateescape")
        stage(self.repo, {"mod.txt": b"one\ntwo\n", "gone.txt": b"bye\n", "bin": b"\0\1", latin1: b"x\n"})
        records = extract_changes(self.repo)
        diff = staged_diff(self.repo, records, head_entries(self.repo))
        self.assertIn('diff --git "a/caf\\351.txt" "b/caf\\351.txt"\n', diff)
        self.assertIn('+++ "b/caf\\351.txt"\n', diff)
        template = build_template(records, "main", "main", diff)
        self.assertIn('#\tnew file:   "caf\\351.txt"\n', template)


if __name__ == "__main__":
    unittest.main()
