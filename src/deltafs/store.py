"""DeltaStore: the public entry point wrapping a database."""

from __future__ import annotations

import os
import random
import time
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from loguru import logger
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session

from . import deltas, graph, merge, registry, snapshot
from .db import Database
from .exceptions import StaleSnapshotError, UnknownBranchError
from .records import (
    UNSET,
    Branch,
    Commit,
    CommitDeltaEntry,
    Conflict,
    FileDelta,
    FileHistoryEntry,
    FileWrite,
    FinalizeResult,
    RebaseResult,
    Repository,
    SnapshotEntry,
)

__all__ = ["DeltaStore", "CommitOutcome", "InitOutcome", "retry_commit"]

FileSpec = FileWrite | Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class CommitOutcome:
    commit: Commit
    branch: Branch


@dataclass(frozen=True, slots=True)
class InitOutcome:
    repository: Repository
    branch: Branch
    commit: Commit


def _sqlite_file(url: str) -> str | None:
    """Filesystem path of a file-backed SQLite URL, else ``None``."""
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return None
    database = parsed.database
    if not database or database == ":memory:" or database.startswith("file:"):
        return None
    return database


class DeltaStore:
    """A versioned file store kept in a relational database.

    Every method runs in its own transaction, committed when the method
    returns and rolled back if it raises.  Pass ``session=`` (from
    :meth:`transaction`) to run several calls as one unit; each call then
    uses a savepoint inside it.

    Usage::

        store = DeltaStore.open("sqlite:///data.db")
        result = store.init_repository("docs", [FileWrite("/readme.md", "hi")])
        store.read_file(result.commit.id, "/readme.md")
    """

    def __init__(self, database: Database, *, max_depth: int | None = None):
        self._db = database
        self.max_depth = max_depth

    @classmethod
    def open(
        cls,
        url: str,
        *,
        create: bool = True,
        echo: bool = False,
        max_depth: int | None = None,
    ) -> DeltaStore:
        """Open a store at a SQLAlchemy database URL.

        Args:
            url: Database URL, e.g. ``sqlite:///deltafs.db``.
            create: If True (default), create a missing SQLite file.
                    If False, raise FileNotFoundError when it is missing.
            echo: Log every SQL statement (SQLAlchemy engine echo).
            max_depth: Bound on ancestry walks; deeper history raises
                :class:`~deltafs.exceptions.CorruptHistoryError`.
        """
        path = _sqlite_file(url)
        if path is not None and not create and not os.path.exists(path):
            raise FileNotFoundError(f"Database not found: {path}")
        return cls(Database.connect(url, echo=echo), max_depth=max_depth)

    def __repr__(self) -> str:
        return f"DeltaStore({self._db!r})"

    def __enter__(self) -> DeltaStore:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._db.dispose()

    @contextmanager
    def transaction(self, session: Session | None = None) -> Iterator[Session]:
        """Group several store calls atomically.

        Usage::

            with store.transaction() as s:
                commit = store.create_commit(repo.id, "msg", session=s)
                store.write_file(commit.id, "/a.txt", "a", session=s)
        """
        with self._db.transaction(session) as s:
            yield s

    def _run(self, fn, session: Session | None, *args, **kwargs):
        with self._db.transaction(session) as s:
            return fn(s, *args, **kwargs)

    # -- repositories -------------------------------------------------------

    def create_repository(self, name: str, *, session: Session | None = None) -> Repository:
        return self._run(registry.create_repository, session, name)

    def get_repository(self, name: str, *, session: Session | None = None) -> Repository | None:
        return self._run(registry.get_repository, session, name)

    def get_repository_by_id(self, repository_id: str, *, session: Session | None = None) -> Repository | None:
        return self._run(registry.get_repository_by_id, session, repository_id)

    def list_repositories(self, *, session: Session | None = None) -> list[Repository]:
        return self._run(registry.list_repositories, session)

    def delete_repository(self, repository_id: str, *, session: Session | None = None) -> None:
        return self._run(registry.delete_repository, session, repository_id)

    # -- branches -----------------------------------------------------------

    def create_branch(
        self,
        repository_id: str,
        name: str,
        head_commit_id: str | None = None,
        *,
        session: Session | None = None,
    ) -> Branch:
        return self._run(registry.create_branch, session, repository_id, name, head_commit_id)

    def get_branch(self, repository_id: str, name: str, *, session: Session | None = None) -> Branch | None:
        return self._run(registry.get_branch, session, repository_id, name)

    def get_branch_by_id(self, branch_id: str, *, session: Session | None = None) -> Branch | None:
        return self._run(registry.get_branch_by_id, session, branch_id)

    def list_branches(self, repository_id: str, *, session: Session | None = None) -> list[Branch]:
        return self._run(registry.list_branches, session, repository_id)

    def delete_branch(self, branch_id: str, *, session: Session | None = None) -> None:
        return self._run(registry.delete_branch, session, branch_id)

    def update_branch_head(
        self,
        branch_id: str,
        commit_id: str,
        *,
        expected_head: str | None = UNSET,
        session: Session | None = None,
    ) -> Branch:
        """Move a branch.  See :func:`deltafs.registry.update_branch_head`."""
        return self._run(registry.update_branch_head, session, branch_id, commit_id, expected_head)

    # -- commits and deltas -------------------------------------------------

    def create_commit(
        self,
        repository_id: str,
        message: str,
        parent_commit_id: str | None = UNSET,
        merged_from_commit_id: str | None = None,
        *,
        session: Session | None = None,
    ) -> Commit:
        """Create a commit.  See :func:`deltafs.graph.create_commit`."""
        return self._run(graph.create_commit, session, repository_id, message,
                         parent_commit_id, merged_from_commit_id)

    def get_commit(self, commit_id: str, *, session: Session | None = None) -> Commit | None:
        return self._run(graph.get_commit, session, commit_id)

    def write_file(
        self,
        commit_id: str,
        path: str,
        content: str | None,
        *,
        is_symlink: bool = False,
        is_deleted: bool = False,
        previous_path: str | None = None,
        session: Session | None = None,
    ) -> FileDelta:
        return self._run(deltas.write_file, session, commit_id, path, content,
                         is_symlink=is_symlink, is_deleted=is_deleted,
                         previous_path=previous_path)

    def write_files(
        self, commit_id: str, files: Iterable[FileSpec], *, session: Session | None = None
    ) -> list[FileDelta]:
        return self._run(deltas.write_files, session, commit_id, list(files))

    def move_file(
        self,
        commit_id: str,
        from_path: str,
        to_path: str,
        content: str,
        *,
        is_symlink: bool = False,
        session: Session | None = None,
    ) -> FileDelta:
        return self._run(deltas.move_file, session, commit_id, from_path, to_path,
                         content, is_symlink=is_symlink)

    def delete_file(self, commit_id: str, path: str, *, session: Session | None = None) -> FileDelta:
        return self._run(deltas.delete_file, session, commit_id, path)

    def get_commit_delta(self, commit_id: str, *, session: Session | None = None) -> list[CommitDeltaEntry]:
        return self._run(deltas.get_commit_delta, session, commit_id)

    # -- reads --------------------------------------------------------------

    def read_file(self, commit_id: str, path: str, *, session: Session | None = None) -> str | None:
        return self._run(snapshot.read_file, session, commit_id, path, max_depth=self.max_depth)

    def get_commit_snapshot(
        self, commit_id: str, path_prefix: str | None = None, *, session: Session | None = None
    ) -> list[SnapshotEntry]:
        return self._run(snapshot.get_commit_snapshot, session, commit_id, path_prefix,
                         max_depth=self.max_depth)

    def get_commit_snapshot_with_content(
        self, commit_id: str, path_prefix: str | None = None, *, session: Session | None = None
    ) -> list[SnapshotEntry]:
        return self._run(snapshot.get_commit_snapshot_with_content, session, commit_id,
                         path_prefix, max_depth=self.max_depth)

    def get_file_history(
        self, commit_id: str, path: str, *, session: Session | None = None
    ) -> list[FileHistoryEntry]:
        return self._run(snapshot.get_file_history, session, commit_id, path,
                         max_depth=self.max_depth)

    def log(
        self,
        commit_id: str,
        path: str | None = None,
        limit: int | None = None,
        *,
        session: Session | None = None,
    ) -> list[Commit]:
        return self._run(snapshot.log, session, commit_id, path, limit, max_depth=self.max_depth)

    # -- merging ------------------------------------------------------------

    def get_merge_base(self, left_commit_id: str, right_commit_id: str, *, session: Session | None = None) -> str:
        return self._run(graph.get_merge_base, session, left_commit_id, right_commit_id,
                         max_depth=self.max_depth)

    def get_conflicts(
        self, left_commit_id: str, right_commit_id: str, *, session: Session | None = None
    ) -> list[Conflict]:
        return self._run(merge.get_conflicts, session, left_commit_id, right_commit_id,
                         max_depth=self.max_depth)

    def rebase_branch(
        self,
        branch_id: str,
        onto_branch_id: str,
        message: str | None = None,
        *,
        session: Session | None = None,
    ) -> RebaseResult:
        return self._run(merge.rebase_branch, session, branch_id, onto_branch_id, message,
                         max_depth=self.max_depth)

    def finalize_commit(
        self,
        commit_id: str,
        target_branch_id: str | None = None,
        *,
        session: Session | None = None,
    ) -> FinalizeResult:
        return self._run(merge.finalize_commit, session, commit_id, target_branch_id,
                         max_depth=self.max_depth)

    def merge_branch(
        self,
        source_branch_id: str,
        target_branch_id: str,
        message: str | None = None,
        resolutions: Iterable[FileSpec] = (),
        *,
        session: Session | None = None,
    ) -> FinalizeResult:
        """Merge *source* into *target* atomically.

        A refused merge (missing resolutions) leaves no commit behind.
        """
        return self._run(merge.merge_branch, session, source_branch_id, target_branch_id,
                         message, list(resolutions), max_depth=self.max_depth)

    # -- composites ---------------------------------------------------------

    def commit_to_branch(
        self,
        branch_id: str,
        message: str,
        files: Iterable[FileSpec],
        *,
        session: Session | None = None,
    ) -> CommitOutcome:
        """Create a commit on a branch's head, write *files*, advance the branch.

        Raises:
            UnknownBranchError: If the branch does not exist.
            StaleSnapshotError: If the branch moved concurrently.
        """
        files = list(files)
        with self._db.transaction(session) as s:
            branch = registry.get_branch_by_id(s, branch_id)
            if branch is None:
                raise UnknownBranchError(f"Branch not found: {branch_id!r}")
            commit = graph.create_commit(s, branch.repository_id, message,
                                         parent_commit_id=branch.head_commit_id)
            deltas.write_files(s, commit.id, files)
            branch = registry.update_branch_head(s, branch.id, commit.id,
                                                 expected_head=branch.head_commit_id)
            return CommitOutcome(commit, branch)

    def init_repository(
        self,
        name: str,
        files: Iterable[FileSpec] = (),
        message: str = "Initial commit",
        *,
        session: Session | None = None,
    ) -> InitOutcome:
        """Create a repository with a root commit holding *files* on ``main``."""
        files = list(files)
        with self._db.transaction(session) as s:
            repository = registry.create_repository(s, name)
            commit = graph.create_commit(s, repository.id, message, parent_commit_id=None)
            deltas.write_files(s, commit.id, files)
            branch = registry.update_branch_head(s, repository.default_branch_id, commit.id,
                                                 expected_head=None)
            return InitOutcome(repository, branch, commit)


def retry_commit(
    store: DeltaStore,
    branch_id: str,
    message: str,
    files: Iterable[FileSpec],
    *,
    retries: int = 5,
) -> CommitOutcome:
    """Commit to a branch with automatic retry on concurrent modification.

    Re-reads the branch on each attempt.  Uses exponential backoff
    with jitter (base 10ms, factor 2x, cap 200ms) to avoid thundering-herd.

    Raises ``StaleSnapshotError`` if all attempts are exhausted.
    """
    files = list(files)
    for attempt in range(retries):
        try:
            return store.commit_to_branch(branch_id, message, files)
        except StaleSnapshotError:
            if attempt == retries - 1:
                raise
            delay = min(0.01 * (2 ** attempt), 0.2)
            logger.debug("Branch {} moved, retrying commit (attempt {})", branch_id, attempt + 2)
            time.sleep(random.uniform(0, delay))
    raise ValueError("retries must be at least 1")
