from loguru import logger

from .store import DeltaStore, CommitOutcome, InitOutcome, retry_commit
from .db import Database
from .graph import CommitGraph
from .paths import normalize_path, normalize_file_path, normalize_prefix, validate_path
from .records import (
    UNSET, Repository, Branch, Commit, DeltaKind, FileDelta, FileWrite,
    CommitDeltaEntry, SnapshotEntry, FileHistoryEntry, FileState, MISSING,
    Conflict, ConflictKind, RebaseOperation, RebaseResult,
    FinalizeOperation, FinalizeResult,
)
from .exceptions import (
    DeltaFSError, InvalidPathError, InvalidNameError, MissingContentError,
    DuplicateNameError, DuplicatePathError, NotFoundError,
    UnknownRepositoryError, UnknownBranchError, UnknownCommitError,
    CrossRepositoryError, AmbiguousParentError, AmbiguousHeadError,
    RootCommitExistsError, EmptyBranchError, StaleSnapshotError,
    HeadMismatchError, CorruptHistoryError, ConflictError,
    RebaseBlockedError, UnresolvedConflictsError,
)

# Library code stays quiet unless the application opts in
logger.disable("deltafs")

__all__ = [
    "DeltaStore", "CommitOutcome", "InitOutcome", "retry_commit", "Database", "CommitGraph",
    "normalize_path", "normalize_file_path", "normalize_prefix", "validate_path",
    "UNSET", "Repository", "Branch", "Commit", "DeltaKind", "FileDelta", "FileWrite",
    "CommitDeltaEntry", "SnapshotEntry", "FileHistoryEntry", "FileState", "MISSING",
    "Conflict", "ConflictKind", "RebaseOperation", "RebaseResult",
    "FinalizeOperation", "FinalizeResult",
    "DeltaFSError", "InvalidPathError", "InvalidNameError", "MissingContentError",
    "DuplicateNameError", "DuplicatePathError", "NotFoundError",
    "UnknownRepositoryError", "UnknownBranchError", "UnknownCommitError",
    "CrossRepositoryError", "AmbiguousParentError", "AmbiguousHeadError",
    "RootCommitExistsError", "EmptyBranchError", "StaleSnapshotError",
    "HeadMismatchError", "CorruptHistoryError", "ConflictError",
    "RebaseBlockedError", "UnresolvedConflictsError",
]
