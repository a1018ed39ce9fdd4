"""Commit graph: creation, ancestry walks and merge-base discovery.

History is linear: each commit has at most one parent, and exactly one
commit per repository (the root) has none.  Merges are recorded as a
second, non-parent edge (``merged_from_commit_id``) that only the
merge-base search follows.

Ancestry is walked in memory.  :class:`CommitGraph` loads the
``(id, parent, merged_from)`` edges of a repository in one query; walks
detect cycles and honour an optional depth bound, so a corrupted table
fails loudly instead of looping.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator

from loguru import logger
from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .exceptions import (
    AmbiguousParentError,
    CorruptHistoryError,
    CrossRepositoryError,
    RootCommitExistsError,
    UnknownCommitError,
    UnknownRepositoryError,
)
from .models import CommitRow, RepositoryRow
from .records import UNSET, Commit
from .registry import default_head, has_commits

__all__ = ["CommitGraph", "create_commit", "get_commit", "get_merge_base", "require_commit"]


def get_commit(session: Session, commit_id: str) -> Commit | None:
    row = session.get(CommitRow, commit_id)
    return row.to_record() if row is not None else None


def require_commit(session: Session, commit_id: str, label: str = "commit") -> Commit:
    """Like :func:`get_commit` but raise :class:`UnknownCommitError`."""
    if not commit_id:
        raise UnknownCommitError(f"{label} id must be specified")
    commit = get_commit(session, commit_id)
    if commit is None:
        raise UnknownCommitError(f"Invalid {label} id {commit_id!r}: commit does not exist")
    return commit


def _check_same_repository(session: Session, commit_id: str, repository_id: str, label: str) -> None:
    commit = session.get(CommitRow, commit_id)
    if commit is None:
        raise UnknownCommitError(f"Invalid {label} {commit_id!r}: commit does not exist")
    if commit.repository_id != repository_id:
        raise CrossRepositoryError(f"Invalid {label}: must reference a commit in the same repository")


def _root_exists(session: Session, repository_id: str) -> bool:
    stmt = select(exists().where(
        CommitRow.repository_id == repository_id,
        CommitRow.parent_commit_id.is_(None),
    ))
    return bool(session.execute(stmt).scalar())


def create_commit(
    session: Session,
    repository_id: str,
    message: str,
    parent_commit_id: str | None = UNSET,
    merged_from_commit_id: str | None = None,
) -> Commit:
    """Create a commit.  Branch heads are not moved.

    Args:
        parent_commit_id: Parent commit.  Omit it to use the head of the
            repository's default branch; pass ``None`` explicitly for the
            root commit.
        merged_from_commit_id: The other side of a merge, if any.

    Raises:
        UnknownRepositoryError: If the repository does not exist.
        AmbiguousParentError: If the parent was omitted, the default branch
            has no head, and the repository already has commits.
        UnknownCommitError: If a referenced commit does not exist.
        CrossRepositoryError: If a referenced commit is in another repository.
        RootCommitExistsError: If this would be a second root commit.
    """
    if session.get(RepositoryRow, repository_id) is None:
        raise UnknownRepositoryError(f"Repository not found: {repository_id!r}")

    if parent_commit_id is UNSET:
        parent_commit_id = default_head(session, repository_id)
        if parent_commit_id is None and has_commits(session, repository_id):
            raise AmbiguousParentError(
                "parent_commit_id must be specified "
                "(repository default branch head could not be resolved)"
            )

    if parent_commit_id is not None:
        _check_same_repository(session, parent_commit_id, repository_id, "parent_commit_id")
    elif _root_exists(session, repository_id):
        raise RootCommitExistsError("Repository already has a root commit; a parent is required")
    if merged_from_commit_id is not None:
        _check_same_repository(session, merged_from_commit_id, repository_id, "merged_from_commit_id")

    row = CommitRow(
        repository_id=repository_id,
        message=message,
        parent_commit_id=parent_commit_id,
        merged_from_commit_id=merged_from_commit_id,
    )
    try:
        with session.begin_nested():
            session.add(row)
            session.flush()
    except IntegrityError as exc:
        # Lost a race with another writer creating the root
        raise RootCommitExistsError("Repository already has a root commit") from exc

    logger.info("Created commit {} ({!r}) parent={}", row.id[:8], message, parent_commit_id)
    return row.to_record()


class CommitGraph:
    """In-memory view of one repository's commit edges.

    Args:
        session: Session to load edges with.
        repository_id: Repository whose commits are loaded.
        max_depth: Optional bound on walk length; exceeding it raises
            :class:`CorruptHistoryError`.
    """

    def __init__(self, session: Session, repository_id: str, *, max_depth: int | None = None):
        self.repository_id = repository_id
        self.max_depth = max_depth
        rows = session.execute(
            select(CommitRow.id, CommitRow.parent_commit_id, CommitRow.merged_from_commit_id)
            .where(CommitRow.repository_id == repository_id)
        ).all()
        self._parents: dict[str, str | None] = {}
        self._merged_from: dict[str, str | None] = {}
        for commit_id, parent_id, merged_from_id in rows:
            self._parents[commit_id] = parent_id
            self._merged_from[commit_id] = merged_from_id

    @classmethod
    def for_commit(cls, session: Session, commit_id: str, *, max_depth: int | None = None) -> CommitGraph:
        """Load the graph of the repository owning *commit_id*."""
        commit = require_commit(session, commit_id)
        return cls(session, commit.repository_id, max_depth=max_depth)

    def __contains__(self, commit_id: str) -> bool:
        return commit_id in self._parents

    def __len__(self) -> int:
        return len(self._parents)

    def parent(self, commit_id: str) -> str | None:
        return self._parents[commit_id]

    def match_prefix(self, prefix: str) -> list[str]:
        """Commit ids starting with *prefix*, sorted."""
        return sorted(c for c in self._parents if c.startswith(prefix))

    def _check_depth(self, depth: int, start: str) -> None:
        if self.max_depth is not None and depth > self.max_depth:
            raise CorruptHistoryError(
                f"Ancestry of {start!r} exceeds max_depth={self.max_depth}"
            )

    def iter_ancestry(self, commit_id: str) -> Iterator[str]:
        """Yield *commit_id* and its parents, newest first (depth 0, 1, ...)."""
        if commit_id not in self._parents:
            raise UnknownCommitError(f"Commit {commit_id!r} is not in repository {self.repository_id!r}")
        seen: set[str] = set()
        current: str | None = commit_id
        depth = 0
        while current is not None:
            if current in seen:
                raise CorruptHistoryError(f"Cycle in commit ancestry at {current!r}")
            if current not in self._parents:
                raise CorruptHistoryError(f"Dangling parent reference {current!r}")
            self._check_depth(depth, commit_id)
            seen.add(current)
            yield current
            current = self._parents[current]
            depth += 1

    def ancestry(self, commit_id: str) -> list[str]:
        return list(self.iter_ancestry(commit_id))

    def is_ancestor(self, ancestor_id: str, commit_id: str) -> bool:
        """True if *ancestor_id* is on the parent chain of *commit_id* (inclusive)."""
        return any(c == ancestor_id for c in self.iter_ancestry(commit_id))

    def distances(self, commit_id: str) -> dict[str, int]:
        """Minimum distance to every ancestor over parent and merged-from edges.

        Breadth-first, so the first visit of a commit is its minimum
        distance.  The returned dict is in visit order.
        """
        if commit_id not in self._parents:
            raise UnknownCommitError(f"Commit {commit_id!r} is not in repository {self.repository_id!r}")
        dist: dict[str, int] = {commit_id: 0}
        queue: deque[str] = deque([commit_id])
        while queue:
            current = queue.popleft()
            d = dist[current] + 1
            for nxt in (self._parents.get(current), self._merged_from.get(current)):
                if nxt is None or nxt in dist:
                    continue
                if nxt not in self._parents:
                    raise CorruptHistoryError(f"Dangling commit reference {nxt!r}")
                self._check_depth(d, commit_id)
                dist[nxt] = d
                queue.append(nxt)
        return dist

    def merge_base(self, left: str, right: str) -> str:
        """Common ancestor with the smallest summed distance.

        Ties go to the ancestor with the more even split of distances,
        then to the smaller id, which keeps the result symmetric.
        """
        left_dist = self.distances(left)
        right_dist = self.distances(right)
        best: tuple[int, int, str] | None = None
        for commit_id, dl in left_dist.items():
            dr = right_dist.get(commit_id)
            if dr is None:
                continue
            key = (dl + dr, abs(dl - dr), commit_id)
            if best is None or key < best:
                best = key
        if best is None:
            raise CorruptHistoryError(
                f"No common ancestor for {left!r} and {right!r} (unexpected)"
            )
        logger.debug("merge base of {} and {}: {} (distance {})", left[:8], right[:8], best[2][:8], best[0])
        return best[2]


def get_merge_base(
    session: Session,
    left_commit_id: str,
    right_commit_id: str,
    *,
    max_depth: int | None = None,
) -> str:
    """Best common ancestor of two commits in the same repository.

    Raises:
        UnknownCommitError: If either commit does not exist.
        CrossRepositoryError: If the commits are in different repositories.
        CorruptHistoryError: If they share no ancestor.
    """
    left = require_commit(session, left_commit_id, "left commit")
    right = require_commit(session, right_commit_id, "right commit")
    if left.repository_id != right.repository_id:
        raise CrossRepositoryError("Commits must belong to the same repository")
    graph = CommitGraph(session, left.repository_id, max_depth=max_depth)
    return graph.merge_base(left.id, right.id)
