"""Helper functions: atomic writes, safe reads, time/tz, hashing."""

from __future__ import annotations

import calendar
import datetime
import email.utils
import hashlib
import os
import re
import tempfile
import time
from pathlib import Path
from typing import Mapping, Optional

from .errors import UsageError


def sha1_hash(data: bytes) -> str:
    """Compute SHA-1 hex digest of data."""
    return hashlib.sha1(data).hexdigest()


def is_hex_sha(s: str) -> bool:
    return len(s) == 40 and all(c in "0123456789abcdef" for c in s.lower())


def write_bytes_atomic(path: Path, data: bytes) -> None:
    """Write bytes to file atomically (temp then replace)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp_")
    try:
        os.write(fd, data)
        os.close(fd)
        os.replace(tmp, path)
    except Exception:
        try:
            os.close(fd)
        except OSError:
            pass
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def write_text_atomic(path: Path, text: str) -> None:
    """Write text to file atomically. Undecodable bytes carried as surrogates are written back as-is."""
    write_bytes_atomic(path, text.encode("utf-8", errors="surrogateescape"))


_C_ESCAPES = {
    "\a": "\\a",
    "\b": "\\b",
    "\t": "\\t",
    "\n": "\\n",
    "\v": "\\v",
    "\f": "\\f",
    "\r": "\\r",
    '"': '\\"',
    "\\": "\\\\",
}


def _escape_char(c: str) -> Optional[str]:
    code = ord(c)
    if c in _C_ESCAPES:
        return _C_ESCAPES[c]
    if 0xDC80 <= code <= 0xDCFF:
        # a raw byte that was not valid UTF-8
        return f"\\{code - 0xDC00:03o}"
    if code < 0x20 or code == 0x7F:
        return f"\\{code:03o}"
    return None


def quote_path(path: str) -> str:
    """Quote path the way git prints unusual names: C-style, undecodable bytes as octal."""
    escaped = [_escape_char(c) for c in path]
    if not any(escaped):
        return path
    return '"' + "".join(e or c for e, c in zip(escaped, path)) + '"'


def read_text_safe(path: Path) -> Optional[str]:
    """Read file as text; return None if not found or error."""
    try:
        return path.read_text(encoding="utf-8")
    except (FileNotFoundError, OSError):
        return None


def _format_offset(offset_sec: int) -> str:
    sign = "+" if offset_sec >= 0 else "-"
    abs_sec = abs(offset_sec)
    return f"{sign}{abs_sec // 3600:02d}{(abs_sec % 3600) // 60:02d}"


def timezone_offset_utc(timestamp: Optional[int] = None) -> str:
    """Return local timezone offset at timestamp as string e.g. +0530 or -0800."""
    lt = time.localtime(timestamp)
    return _format_offset(lt.tm_gmtoff if lt.tm_gmtoff is not None else -time.timezone)


def timestamp_with_tz(timestamp: Optional[int] = None) -> tuple[int, str]:
    """Return (timestamp, tz_offset). Uses current time if timestamp is None."""
    ts = int(time.time()) if timestamp is None else timestamp
    return ts, timezone_offset_utc(ts)


_TZ_OFFSET = re.compile(r"[+-](\d{2})([0-5]\d)\Z")
_ISO_DATE = re.compile(r"(\d{4}-\d{2}-\d{2})[T ](\d{2}:\d{2}:\d{2})(?:\.\d+)?\s*(Z|[+-]\d{2}:?\d{2})?\Z")


def _offset_seconds(tz: str) -> int:
    m = _TZ_OFFSET.match(tz.replace(":", ""))
    if not m:
        raise ValueError(f"bad timezone offset {tz!r}")
    seconds = int(m.group(1)) * 3600 + int(m.group(2)) * 60
    return -seconds if tz.startswith("-") else seconds


def parse_git_date(text: str) -> tuple[int, str]:
    """Parse a date as GIT_AUTHOR_DATE/GIT_COMMITTER_DATE take it; return (unix seconds, '+hhmm').

    Accepted: git's raw '<unix seconds> <+hhmm>' (optionally '@'-prefixed; the local
    offset is used when none is given), ISO 8601 ('2005-04-07T22:13:13+0200', 'Z',
    or no offset for local time) and RFC 2822 ('Thu, 07 Apr 2005 22:13:13 +0200').
    Raises ValueError for anything else.
    """
    text = text.strip()
    parts = (text[1:] if text.startswith("@") else text).split()
    if parts and parts[0].isdigit() and len(parts) <= 2:
        ts = int(parts[0])
        if len(parts) == 1:
            return ts, timezone_offset_utc(ts)
        _offset_seconds(parts[1])
        return ts, parts[1]
    m = _ISO_DATE.match(text)
    if m:
        day, clock, tz = m.groups()
        naive = datetime.datetime.strptime(f"{day} {clock}", "%Y-%m-%d %H:%M:%S")
        if tz is None:
            ts = int(time.mktime(naive.timetuple()))
            return ts, timezone_offset_utc(ts)
        offset = 0 if tz == "Z" else _offset_seconds(tz)
        return calendar.timegm(naive.timetuple()) - offset, _format_offset(offset)
    try:
        parsed = email.utils.parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError) as e:
        raise ValueError(f"unrecognised date {text!r}") from e
    if parsed.tzinfo is None:
        # '-0000': UTC with no local offset known
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return int(parsed.timestamp()), _format_offset(int(parsed.utcoffset().total_seconds()))


def timestamp_from_env(kind: str, environ: Mapping[str, str]) -> Optional[tuple[int, str]]:
    """Read GIT_AUTHOR_DATE or GIT_COMMITTER_DATE. kind is 'AUTHOR' or 'COMMITTER'.
    None when unset; UsageError when set to something parse_git_date rejects."""
    name = f"GIT_{kind}_DATE"
    val = environ.get(name)
    if not val or not val.strip():
        return None
    try:
        return parse_git_date(val)
    except ValueError as e:
        raise UsageError(f"invalid date in {name}: {val.strip()!r}") from e


def is_executable(path: Path) -> bool:
    """Return True if path is a regular file the current user may execute."""
    return path.is_file() and os.access(path, os.X_OK)


def is_binary(data: bytes) -> bool:
    """Heuristic: treat as binary if contains null or many non-printable bytes."""
    if b"\0" in data[:8000]:
        return True
    non_printable = sum(1 for b in data[:8000] if b < 32 and b not in (9, 10, 13))
    return non_printable > len(data[:8000]) // 4
