"""External capabilities: message editor, commit signer and hooks.

Each of these waits on another process. ``ExternalTools`` is the interface the
pipeline calls; ``ProcessTools`` implements it with subprocesses and the
timeouts from Settings. Tests substitute their own implementation.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .config import Settings
from .errors import EditorFailed, ExternalProcessUnavailable, SigningFailed, TimedOut
from .objects import Commit
from .repo import Repository
from .util import is_executable

logger = logging.getLogger(__name__)


class ExternalTools:
    """Interface for everything that blocks on an outside process."""

    def edit_message(self, path: Path) -> None:
        """Let the user edit the message file at path in place."""
        raise NotImplementedError

    def sign(self, payload: bytes, env: Dict[str, str]) -> str:
        """Sign the canonical commit bytes; return the id of the stored, signed commit.

        env carries GIT_AUTHOR_* / GIT_COMMITTER_* for the commit being signed.
        Raises SigningFailed on a non-zero exit or empty output.
        """
        raise NotImplementedError

    def run_hook(self, name: str, args: List[str]) -> Optional[int]:
        """Run hook name with args; return its exit status, or None if there is no executable hook."""
        raise NotImplementedError


class ProcessTools(ExternalTools):
    """ExternalTools backed by real processes."""

    def __init__(
        self,
        repo: Repository,
        settings: Settings,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.repo = repo
        self.settings = settings
        self.environ = dict(os.environ if environ is None else environ)
        self.hooks_dir = settings.hooks_dir or repo.git_dir / "hooks"

    def _run(
        self,
        argv: List[str],
        what: str,
        timeout: Optional[float],
        input: Optional[bytes] = None,
        capture: bool = False,
        env: Optional[Dict[str, str]] = None,
    ) -> subprocess.CompletedProcess:
        e = dict(self.environ)
        if env:
            e.update(env)
        logger.debug("running %s: %s (timeout=%s)", what, argv, timeout)
        try:
            return subprocess.run(
                argv,
                cwd=self.repo.path,
                input=input,
                capture_output=capture,
                timeout=timeout,
                env=e,
            )
        except subprocess.TimeoutExpired:
            raise TimedOut(f"{what} '{argv[0]}' did not finish within {timeout:g}s") from None
        except OSError as exc:
            raise ExternalProcessUnavailable(f"cannot run {what} '{argv[0]}': {exc}") from exc

    def edit_message(self, path: Path) -> None:
        argv = shlex.split(self.settings.editor) + [str(path)]
        result = self._run(argv, "editor", self.settings.editor_timeout)
        if result.returncode != 0:
            raise EditorFailed(f"there was a problem with the editor '{self.settings.editor}'")

    def sign(self, payload: bytes, env: Dict[str, str]) -> str:
        key = self.settings.signing_key or f"{env['GIT_COMMITTER_NAME']} <{env['GIT_COMMITTER_EMAIL']}>"
        argv = [self.settings.gpg_program, "--status-fd=2", "-bsau", key]
        result = self._run(argv, "signer", self.settings.sign_timeout, input=payload, capture=True, env=env)
        signature = (result.stdout or b"").decode("utf-8", errors="replace")
        if result.returncode != 0 or not signature.strip():
            detail = (result.stderr or b"").decode("utf-8", errors="replace").strip()
            raise SigningFailed(f"gpg failed to sign the data{': ' + detail if detail else ''}")
        signed = Commit.from_content(payload).with_signature(signature)
        return self.repo.store_object(signed)

    def run_hook(self, name: str, args: List[str]) -> Optional[int]:
        hook = self.hooks_dir / name
        if not hook.exists():
            return None
        if not is_executable(hook):
            logger.warning("hook '%s' was ignored because it is not set as executable", hook)
            return None
        result = self._run([str(hook), *args], f"{name} hook", self.settings.hook_timeout)
        return result.returncode
