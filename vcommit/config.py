"""Git-like configuration: read git config files (INI format) into one Settings struct.

Everything the pipeline needs from the environment and the config files is
resolved once by ``load_settings`` and threaded through explicitly.
"""

from __future__ import annotations

import configparser
import io
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, List, Mapping, Optional, Tuple

from .constants import DEFAULT_EDITOR, DEFAULT_GPG_PROGRAM
from .errors import IdentityUnresolved, UsageError
from .objects import Signature
from .util import read_text_safe, timestamp_from_env, timestamp_with_tz, write_text_atomic

if TYPE_CHECKING:
    from .repo import Repository

CONFIG_FILENAME = "config"

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0", ""}


def _new_parser() -> configparser.ConfigParser:
    # git allows repeated keys and bare "key" lines (boolean true)
    return configparser.ConfigParser(strict=False, interpolation=None, allow_no_value=True)


# [section], [section "subsection"] or the legacy [section.subsection]
_SECTION_HEADER = re.compile(r'^(\s*)\[\s*([A-Za-z0-9.-]+)(?:\s+"((?:[^"\\\n]|\\.)*)")?\s*\]', re.MULTILINE)


def _section_name(name: str, subsection: Optional[str]) -> str:
    """Canonical parser section: name lowercased, subsection kept as written."""
    if subsection is None:
        return name.lower()
    return f'{name.lower()} "{subsection}"'


def _canonical_headers(content: str) -> str:
    """Rewrite section headers so that [User] and [user] land in one parser section."""

    def repl(m: "re.Match[str]") -> str:
        indent, name, subsection = m.groups()
        if subsection is None and "." in name:
            # legacy form: the whole header is case-insensitive
            name, _, subsection = name.lower().partition(".")
        return f"{indent}[{_section_name(name, subsection)}]"

    return _SECTION_HEADER.sub(repl, content)


def _parse_key(key: str) -> tuple[str, str]:
    """Return (section, option) for 'section.option' or 'section.subsection.option'.

    Section and option names are case-insensitive; a subsection is not. Raises UsageError if key invalid.
    """
    name, _, rest = key.partition(".")
    subsection, _, option = rest.rpartition(".")
    if not name.strip() or not option.strip():
        raise UsageError(f"invalid config key: {key!r} (expected section.option)")
    return _section_name(name.strip(), subsection or None), option.strip().lower()


def config_files(repo: "Repository", environ: Mapping[str, str]) -> List[Path]:
    """Config files in increasing precedence: XDG, ~/.gitconfig, repository."""
    files: List[Path] = []
    home = environ.get("HOME")
    xdg = environ.get("XDG_CONFIG_HOME") or (str(Path(home) / ".config") if home else None)
    if xdg:
        files.append(Path(xdg) / "git" / "config")
    if home:
        files.append(Path(home) / ".gitconfig")
    files.append(repo.git_dir / CONFIG_FILENAME)
    return files


def read_config(paths: List[Path]) -> configparser.ConfigParser:
    """Read config files in order; later files override earlier ones. Missing files are skipped."""
    cfg = _new_parser()
    for path in paths:
        content = read_text_safe(path)
        if not content:
            continue
        try:
            cfg.read_string(_canonical_headers(content), source=str(path))
        except configparser.Error as e:
            raise UsageError(f"bad config file {path}: {e}") from e
    return cfg


def get_value(cfg: configparser.ConfigParser, key: str) -> Optional[str]:
    """Get config value for key (section.option). Return None if missing; '' for a bare key."""
    section, option = _parse_key(key)
    if cfg.has_section(section) and cfg.has_option(section, option):
        value = cfg.get(section, option)
        return "" if value is None else value.strip().strip('"')
    return None


def get_bool(cfg: configparser.ConfigParser, key: str, default: bool) -> bool:
    value = get_value(cfg, key)
    if value is None:
        return default
    lowered = value.lower()
    if lowered in _TRUE or (lowered == "" and cfg.get(*_parse_key(key)) is None):
        return True
    if lowered in _FALSE:
        return False
    raise UsageError(f"bad boolean config value '{value}' for '{key}'")


def get_timeout(cfg: configparser.ConfigParser, key: str) -> Optional[float]:
    """Timeout in seconds; unset or 0 means wait forever."""
    value = get_value(cfg, key)
    if value is None or value == "":
        return None
    try:
        seconds = float(value)
    except ValueError:
        raise UsageError(f"bad timeout config value '{value}' for '{key}'") from None
    return seconds if seconds > 0 else None


def set_value(repo: "Repository", key: str, value: str) -> None:
    """Set value in the repository config file. Creates section if needed."""
    repo.require_repo()
    section, option = _parse_key(key)
    path = repo.git_dir / CONFIG_FILENAME
    cfg = read_config([path])
    if not cfg.has_section(section):
        cfg.add_section(section)
    cfg.set(section, option, value)
    buf = io.StringIO()
    cfg.write(buf)
    write_text_atomic(path, buf.getvalue())


@dataclass(frozen=True)
class Settings:
    """Configuration for one run, resolved once at startup."""

    user_name: Optional[str] = None
    user_email: Optional[str] = None
    author_name: Optional[str] = None
    author_email: Optional[str] = None
    committer_name: Optional[str] = None
    committer_email: Optional[str] = None
    author_date: Optional[Tuple[int, str]] = None
    committer_date: Optional[Tuple[int, str]] = None
    editor: str = DEFAULT_EDITOR
    gpg_sign: bool = False
    signing_key: Optional[str] = None
    gpg_program: str = DEFAULT_GPG_PROGRAM
    hooks_dir: Optional[Path] = None
    log_all_ref_updates: bool = True
    editor_timeout: Optional[float] = None
    sign_timeout: Optional[float] = None
    hook_timeout: Optional[float] = None


def _editor(cfg: configparser.ConfigParser, environ: Mapping[str, str]) -> str:
    for candidate in (
        environ.get("GIT_EDITOR"),
        get_value(cfg, "core.editor"),
        environ.get("VISUAL"),
        environ.get("EDITOR"),
    ):
        if candidate:
            return candidate
    return DEFAULT_EDITOR


def load_settings(repo: "Repository", environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Resolve environment and config files into a Settings value."""
    environ = os.environ if environ is None else environ
    cfg = read_config(config_files(repo, environ))
    hooks_path = get_value(cfg, "core.hookspath")
    if hooks_path:
        hooks_dir = Path(os.path.expanduser(hooks_path))
        if not hooks_dir.is_absolute():
            hooks_dir = repo.path / hooks_dir
    else:
        hooks_dir = repo.git_dir / "hooks"
    return Settings(
        user_name=get_value(cfg, "user.name"),
        user_email=get_value(cfg, "user.email"),
        author_name=environ.get("GIT_AUTHOR_NAME"),
        author_email=environ.get("GIT_AUTHOR_EMAIL"),
        committer_name=environ.get("GIT_COMMITTER_NAME"),
        committer_email=environ.get("GIT_COMMITTER_EMAIL"),
        author_date=timestamp_from_env("AUTHOR", environ),
        committer_date=timestamp_from_env("COMMITTER", environ),
        editor=_editor(cfg, environ),
        gpg_sign=get_bool(cfg, "commit.gpgsign", False),
        signing_key=get_value(cfg, "user.signingkey") or None,
        gpg_program=get_value(cfg, "gpg.program") or DEFAULT_GPG_PROGRAM,
        hooks_dir=hooks_dir,
        log_all_ref_updates=get_bool(cfg, "core.logallrefupdates", True),
        editor_timeout=get_timeout(cfg, "vcommit.editortimeout"),
        sign_timeout=get_timeout(cfg, "vcommit.signtimeout"),
        hook_timeout=get_timeout(cfg, "vcommit.hooktimeout"),
    )


def resolve_identity(settings: Settings, now: Optional[int] = None) -> tuple[Signature, Signature]:
    """Return (author, committer).

    Name and email each resolve env override > config > IdentityUnresolved.
    The committer takes its own env overrides, else the author's values.
    """
    author_name = settings.author_name or settings.user_name
    author_email = settings.author_email or settings.user_email
    if not author_name or not author_email:
        missing = "user.name" if not author_name else "user.email"
        raise IdentityUnresolved(
            f"author identity unknown: set {missing} in git config "
            "or GIT_AUTHOR_NAME/GIT_AUTHOR_EMAIL in the environment"
        )
    committer_name = settings.committer_name or author_name
    committer_email = settings.committer_email or author_email
    ts, tz = timestamp_with_tz(now)
    a_ts, a_tz = settings.author_date or (ts, tz)
    c_ts, c_tz = settings.committer_date or (ts, tz)
    return (
        Signature(author_name, author_email, a_ts, a_tz),
        Signature(committer_name, committer_email, c_ts, c_tz),
    )
