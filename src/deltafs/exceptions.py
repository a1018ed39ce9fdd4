"""Exceptions for deltafs.

Every error derives from :class:`DeltaFSError` and from the closest builtin,
so ``except ValueError`` / ``except LookupError`` keep working for callers
that do not import this module.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .records import Conflict


class DeltaFSError(Exception):
    """Base class for all deltafs errors."""


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class InvalidPathError(DeltaFSError, ValueError):
    """A path failed validation (empty, too long, or forbidden characters)."""


class InvalidNameError(DeltaFSError, ValueError):
    """A repository or branch name is not acceptable."""


class MissingContentError(DeltaFSError, ValueError):
    """A non-deleted file write was given no content."""


class DuplicateNameError(DeltaFSError, ValueError):
    """A repository or branch with this name already exists."""


class DuplicatePathError(DeltaFSError, ValueError):
    """The commit already records a delta for this path."""


# ---------------------------------------------------------------------------
# Referential
# ---------------------------------------------------------------------------

class NotFoundError(DeltaFSError, LookupError):
    """An identity does not resolve."""

    def __str__(self) -> str:
        # LookupError subclasses render args like KeyError otherwise
        return str(self.args[0]) if self.args else ""


class UnknownRepositoryError(NotFoundError):
    """Repository does not exist."""


class UnknownBranchError(NotFoundError):
    """Branch does not exist."""


class UnknownCommitError(NotFoundError):
    """Commit does not exist."""


class CrossRepositoryError(DeltaFSError, ValueError):
    """Two objects that must share a repository do not."""


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------

class AmbiguousParentError(DeltaFSError, ValueError):
    """No parent was given and the default branch head cannot supply one."""


class AmbiguousHeadError(DeltaFSError, ValueError):
    """No head was given for a new branch and none can be defaulted."""


class RootCommitExistsError(DeltaFSError, ValueError):
    """The repository already has its root (parentless) commit."""


class EmptyBranchError(DeltaFSError, ValueError):
    """An operation needs a branch (or commit) with history and got none."""


class StaleSnapshotError(DeltaFSError):
    """Raised when a branch head has moved since it was read.

    Re-read the branch and retry, or use :func:`~deltafs.retry_commit`
    for automatic retry with backoff.
    """


class HeadMismatchError(StaleSnapshotError):
    """A commit's parent is not the current head of the target branch."""


class CorruptHistoryError(DeltaFSError, RuntimeError):
    """The commit graph violates its invariants (cycle, depth bound, no root)."""


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------

class ConflictError(DeltaFSError):
    """Base for outcomes blocked by three-way conflicts.

    Carries the full conflict list so callers can resolve and retry
    without recomputing the comparison.
    """

    def __init__(self, message: str, conflicts: Sequence[Conflict]):
        super().__init__(message)
        self.conflicts = list(conflicts)

    @property
    def paths(self) -> list[str]:
        return [c.path for c in self.conflicts]


class RebaseBlockedError(ConflictError):
    """Rebase refused because both branches changed the same paths."""


class UnresolvedConflictsError(ConflictError):
    """A merge commit lacks resolutions for some conflicting paths."""

    def __init__(self, message: str, conflicts: Sequence[Conflict], missing_paths: Sequence[str]):
        super().__init__(message, conflicts)
        self.missing_paths = list(missing_paths)
