"""Constants for vcommit: file modes, ref paths, hook names, file names."""

from __future__ import annotations

# Git file modes (as written in tree objects)
MODE_FILE = "100644"
MODE_FILE_EXECUTABLE = "100755"
MODE_GITLINK = "160000"
MODE_DIR = "40000"

# Ref paths under .git
REF_HEADS_PREFIX = "refs/heads/"
HEAD_FILE = "HEAD"
PACKED_REFS_FILE = "packed-refs"

# Object types
OBJ_BLOB = "blob"
OBJ_TREE = "tree"
OBJ_COMMIT = "commit"
OBJ_TAG = "tag"

# Index
INDEX_FILENAME = "index"

# Message file edited by the editor and handed to commit-msg
COMMIT_EDITMSG = "COMMIT_EDITMSG"

# Hooks
HOOK_COMMIT_MSG = "commit-msg"
HOOK_POST_COMMIT = "post-commit"

# SHA-1 hex length; short ids printed in summaries
SHA1_HEX_LEN = 40
SHORT_ID_LEN = 7

# All-zero id used as "no previous value" in reflogs
ZEROS = "0" * SHA1_HEX_LEN

# Rename detection threshold (git's default -M50%)
RENAME_SIMILARITY = 0.5

DEFAULT_EDITOR = "vi"
DEFAULT_GPG_PROGRAM = "gpg"
