"""Value records returned by deltafs operations.

Rows loaded from the database are converted to these frozen dataclasses
before leaving a transaction, so they stay valid after the session closes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, NamedTuple

from dulwich.objects import Blob

__all__ = [
    "UNSET",
    "DeltaKind",
    "Repository",
    "Branch",
    "Commit",
    "FileDelta",
    "FileWrite",
    "CommitDeltaEntry",
    "SnapshotEntry",
    "FileHistoryEntry",
    "FileState",
    "MISSING",
    "ConflictKind",
    "Conflict",
    "RebaseOperation",
    "RebaseResult",
    "FinalizeOperation",
    "FinalizeResult",
]


class _Unset:
    """Sentinel distinguishing "argument omitted" from an explicit ``None``."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


def blob_hash(content: str) -> str:
    """Git blob SHA-1 of *content* (UTF-8), as ``git hash-object`` prints it."""
    return Blob.from_string(content.encode("utf-8")).id.decode()


# ---------------------------------------------------------------------------
# Stored entities
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Repository:
    id: str
    name: str
    default_branch_id: str | None
    created_at: datetime


@dataclass(frozen=True, slots=True)
class Branch:
    id: str
    repository_id: str
    name: str
    head_commit_id: str | None
    created_at: datetime


@dataclass(frozen=True, slots=True)
class Commit:
    id: str
    repository_id: str
    parent_commit_id: str | None
    merged_from_commit_id: str | None
    message: str
    created_at: datetime

    @property
    def is_root(self) -> bool:
        return self.parent_commit_id is None

    @property
    def is_merge(self) -> bool:
        return self.merged_from_commit_id is not None


class DeltaKind(str, Enum):
    """What a file delta does to its path.

    ``WRITE`` stores content (or a symlink target), ``TOMBSTONE`` deletes
    the path, ``MOVE`` stores content and also deletes ``previous_path``.
    """

    WRITE = "write"
    TOMBSTONE = "tombstone"
    MOVE = "move"

    def __str__(self) -> str:          # noqa: D105
        return self.value


@dataclass(frozen=True, slots=True)
class FileDelta:
    """One row of per-commit file state."""

    id: str
    commit_id: str
    path: str
    previous_path: str | None
    content: str
    is_deleted: bool
    is_symlink: bool
    created_at: datetime

    @property
    def kind(self) -> DeltaKind:
        if self.is_deleted:
            return DeltaKind.TOMBSTONE
        if self.previous_path is not None and self.previous_path != self.path:
            return DeltaKind.MOVE
        return DeltaKind.WRITE

    @property
    def moved_from(self) -> str | None:
        """The path this delta implicitly tombstones, if any."""
        if self.previous_path is None or self.previous_path == self.path:
            return None
        return self.previous_path


@dataclass(frozen=True, slots=True)
class FileWrite:
    """Describes a single file write for batch operations.

    *content* may be omitted only for deletions.  For symlinks it holds
    the target path.
    """

    path: str
    content: str | None = None
    is_symlink: bool = False
    is_deleted: bool = False
    previous_path: str | None = None

    @classmethod
    def coerce(cls, value: FileWrite | Mapping[str, Any]) -> FileWrite:
        """Accept a :class:`FileWrite` or a mapping with the same keys."""
        if isinstance(value, FileWrite):
            return value
        if isinstance(value, Mapping):
            return cls(**value)
        raise TypeError(f"Expected FileWrite or mapping, got {type(value).__name__}")


# ---------------------------------------------------------------------------
# Derived views
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class CommitDeltaEntry:
    """A delta recorded in one commit, with repository and commit metadata."""

    repository_id: str
    repository_name: str
    commit_id: str
    path: str
    previous_path: str | None
    is_deleted: bool
    is_symlink: bool
    file_created_at: datetime
    commit_created_at: datetime
    commit_message: str


@dataclass(frozen=True, slots=True)
class SnapshotEntry:
    """A live path in a resolved snapshot.

    ``content`` is ``None`` unless the snapshot was resolved with content.
    """

    repository_id: str
    repository_name: str
    commit_id: str
    path: str
    is_symlink: bool
    commit_created_at: datetime
    commit_message: str
    content: str | None = None

    @property
    def hash(self) -> str:
        """40-char git blob SHA of the content.

        Raises ValueError if the snapshot was resolved without content.
        """
        if self.content is None:
            raise ValueError(f"Snapshot entry {self.path!r} was resolved without content")
        return blob_hash(self.content)

    @property
    def state(self) -> FileState:
        return FileState(True, self.is_symlink, self.content)


@dataclass(frozen=True, slots=True)
class FileHistoryEntry:
    """One delta touching a path.

    A move away from the path reports ``is_deleted=True`` and the new
    location in ``moved_to``.
    """

    commit_id: str
    content: str | None
    is_deleted: bool
    is_symlink: bool
    moved_to: str | None = None


class FileState(NamedTuple):
    """The (exists, is_symlink, content) triple compared in three-way merges."""

    exists: bool
    is_symlink: bool
    content: str | None


MISSING = FileState(False, False, None)


class ConflictKind(str, Enum):
    DELETE_MODIFY = "delete/modify"
    ADD_ADD = "add/add"
    MODIFY_MODIFY = "modify/modify"

    def __str__(self) -> str:          # noqa: D105
        return self.value


@dataclass(frozen=True, slots=True)
class Conflict:
    """A path both sides changed from the merge base, differently."""

    merge_base_commit_id: str
    path: str
    base: FileState
    left: FileState
    right: FileState
    kind: ConflictKind


class RebaseOperation(str, Enum):
    NOOP = "noop"
    ALREADY_UP_TO_DATE = "already_up_to_date"
    FAST_FORWARD = "fast_forward"
    REBASED = "rebased"

    def __str__(self) -> str:          # noqa: D105
        return self.value


@dataclass(frozen=True, slots=True)
class RebaseResult:
    operation: RebaseOperation
    repository_id: str
    branch_id: str
    onto_branch_id: str
    merge_base_commit_id: str | None
    previous_branch_head_commit_id: str | None
    onto_head_commit_id: str | None
    rebased_commit_id: str | None
    new_branch_head_commit_id: str | None
    applied_file_count: int = 0


class FinalizeOperation(str, Enum):
    FAST_FORWARD = "fast_forward"
    MERGED = "merged"
    MERGED_WITH_CONFLICTS_RESOLVED = "merged_with_conflicts_resolved"
    ALREADY_UP_TO_DATE = "already_up_to_date"

    def __str__(self) -> str:          # noqa: D105
        return self.value


@dataclass(frozen=True, slots=True)
class FinalizeResult:
    operation: FinalizeOperation
    repository_id: str
    target_branch_id: str | None
    merge_base_commit_id: str | None
    previous_target_head_commit_id: str | None
    source_commit_id: str | None
    merge_commit_id: str
    new_target_head_commit_id: str | None
    applied_file_count: int = 0
    resolved_paths: tuple[str, ...] = field(default=())
