"""Custom exceptions for vcommit."""

from __future__ import annotations


class VcommitError(Exception):
    """Base exception for vcommit."""

    pass


class UsageError(VcommitError):
    """Raised on bad command-line input."""

    pass


class NotARepositoryError(VcommitError):
    """Raised when not in a git repository."""

    pass


class ObjectNotFoundError(VcommitError):
    """Raised when an object is not found in the ODB."""

    pass


class InvalidRefError(VcommitError):
    """Raised when a ref name or ref value is malformed."""

    pass


class IndexChecksumError(VcommitError):
    """Raised when index file trailing SHA-1 checksum does not match contents."""

    pass


class IndexCorruptError(VcommitError):
    """Raised when index file is corrupt or entries are not sorted by path."""

    pass


class UnmergedIndex(VcommitError):
    """Raised when the index still holds conflict stages."""

    pass


class BranchNotFound(VcommitError):
    """Raised when the target branch does not exist."""

    pass


class StaleIndexEntry(VcommitError):
    """Raised when a staged path vanished from the index before composition."""

    pass


class PathConflict(VcommitError):
    """Raised when an edit would put a file and a directory at the same path."""

    pass


class IdentityUnresolved(VcommitError):
    """Raised when no usable author or committer name/email is configured."""

    pass


class EmptyMessage(VcommitError):
    """Raised when the commit message is empty after cleanup."""

    pass


class HookFailed(VcommitError):
    """Raised when a blocking hook exits non-zero."""

    pass


class SigningFailed(VcommitError):
    """Raised when the signer fails or returns something that does not check out."""

    pass


class ConcurrentUpdate(VcommitError):
    """Raised when the branch moved between being read and being updated."""

    pass


class ExternalProcessUnavailable(VcommitError):
    """Raised when the editor, signer or a hook cannot be started."""

    pass


class EditorFailed(VcommitError):
    """Raised when the editor exits non-zero."""

    pass


class TimedOut(VcommitError):
    """Raised when an external process exceeds its configured timeout."""

    pass


class PackError(VcommitError):
    """Raised when a pack or pack index file is malformed."""

    pass
