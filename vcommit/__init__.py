"""vcommit: commit staged changes onto a branch other than the checked-out one."""

from .errors import NotARepositoryError, VcommitError
from .repo import Repository

__all__ = ["Repository", "VcommitError", "NotARepositoryError"]
