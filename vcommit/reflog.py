"""Reflog: append-only logs for HEAD and refs/heads/*."""

from __future__ import annotations

import re
from pathlib import Path

from .util import read_text_safe

_SHA_RE = re.compile(r"[0-9a-fA-F]{40}")


def reflog_path_for_ref(repo_git: Path, refname: str) -> Path:
    """HEAD -> .git/logs/HEAD; refs/heads/X -> .git/logs/refs/heads/X."""
    return repo_git / "logs" / refname


def append_reflog(
    repo_git: Path,
    refname: str,
    old: str,
    new: str,
    who: str,
    timestamp: int,
    tz: str,
    message: str,
) -> None:
    """Append one reflog line: old new who timestamp tz\\tmessage. Creates log dir if missing."""
    path = reflog_path_for_ref(repo_git, refname)
    path.parent.mkdir(parents=True, exist_ok=True)
    msg_line = message.replace("\n", " ").replace("\r", " ").strip()
    line = f"{old} {new} {who} {timestamp} {tz}\t{msg_line}\n"
    with open(path, "a", encoding="utf-8") as f:
        f.write(line)


def read_reflog(repo_git: Path, refname: str) -> list[tuple[str, str, str, int, str, str]]:
    """Read reflog entries. Returns [(old, new, who, timestamp, tz, message), ...] oldest first. Skips malformed lines."""
    content = read_text_safe(reflog_path_for_ref(repo_git, refname))
    if not content:
        return []
    result: list[tuple[str, str, str, int, str, str]] = []
    for raw in content.splitlines():
        head, sep, msg = raw.partition("\t")
        parts = head.split()
        if not sep or len(parts) < 5:
            continue
        old_h, new_h = parts[0], parts[1]
        if not _SHA_RE.fullmatch(old_h) or not _SHA_RE.fullmatch(new_h):
            continue
        try:
            ts = int(parts[-2])
        except ValueError:
            continue
        result.append((old_h.lower(), new_h.lower(), " ".join(parts[2:-2]), ts, parts[-1], msg))
    return result
