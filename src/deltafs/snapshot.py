"""Resolve file state at a commit by walking its parent chain.

The walk loads the ancestry once (see :class:`~deltafs.graph.CommitGraph`)
and then the deltas of every commit on it, so a whole snapshot, with or
without content, costs one pass.  Within the chain the closest commit
wins; within one commit a row written *at* a path wins over a row moving
away *from* it.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from loguru import logger
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from .exceptions import UnknownCommitError
from .graph import CommitGraph
from .models import CommitRow, FileRow, RepositoryRow
from .paths import normalize_path, normalize_prefix
from .records import Commit, DeltaKind, FileHistoryEntry, SnapshotEntry

__all__ = [
    "read_file",
    "get_commit_snapshot",
    "get_commit_snapshot_with_content",
    "get_file_history",
    "log",
]

# Bound on bound parameters per IN (...) clause
_CHUNK = 500


@dataclass(frozen=True, slots=True)
class _Op:
    """One operation on a path as seen by the resolver."""

    depth: int
    rank: int                   # 0 = row at the path, 1 = move away from it
    commit_id: str
    kind: DeltaKind
    is_symlink: bool
    content: str | None
    moved_to: str | None = None

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.depth, self.rank)

    @property
    def live(self) -> bool:
        return self.kind is not DeltaKind.TOMBSTONE and self.moved_to is None


def _chunks(items: Sequence[str], size: int = _CHUNK) -> Iterator[Sequence[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _commit_and_repository(session: Session, commit_id: str) -> tuple[CommitRow, str]:
    if not commit_id:
        raise UnknownCommitError("commit_id must be specified")
    row = session.execute(
        select(CommitRow, RepositoryRow.name)
        .join(RepositoryRow, RepositoryRow.id == CommitRow.repository_id)
        .where(CommitRow.id == commit_id)
    ).first()
    if row is None:
        raise UnknownCommitError(f"Invalid commit_id {commit_id!r}: commit does not exist")
    return row[0], row[1]


def _ancestry(session: Session, commit: CommitRow, max_depth: int | None) -> list[str]:
    graph = CommitGraph(session, commit.repository_id, max_depth=max_depth)
    return graph.ancestry(commit.id)


def _iter_ops(
    session: Session,
    ancestry: list[str],
    *,
    path: str | None = None,
    prefix: str | None = None,
    with_content: bool = True,
) -> Iterator[tuple[str, _Op]]:
    """Yield ``(affected_path, op)`` for every delta on the ancestry.

    A move yields twice: a write at its path and a tombstone at the path
    it left.  *path* / *prefix* narrow the rows loaded; callers still
    filter the affected paths.
    """
    depth_of = {commit_id: depth for depth, commit_id in enumerate(ancestry)}
    columns = [FileRow.commit_id, FileRow.path, FileRow.previous_path,
               FileRow.is_deleted, FileRow.is_symlink]
    if with_content:
        columns.append(FileRow.content)

    for chunk in _chunks(ancestry):
        stmt = select(*columns).where(FileRow.commit_id.in_(chunk))
        if path is not None:
            stmt = stmt.where(or_(FileRow.path == path, FileRow.previous_path == path))
        elif prefix is not None:
            stmt = stmt.where(or_(
                FileRow.path.startswith(prefix, autoescape=True),
                FileRow.previous_path.startswith(prefix, autoescape=True),
            ))
        for row in session.execute(stmt):
            depth = depth_of[row.commit_id]
            content = row.content if with_content else None
            if row.is_deleted:
                yield row.path, _Op(depth, 0, row.commit_id, DeltaKind.TOMBSTONE, False, None)
            elif row.previous_path is not None and row.previous_path != row.path:
                yield row.path, _Op(depth, 0, row.commit_id, DeltaKind.MOVE, row.is_symlink, content)
            else:
                yield row.path, _Op(depth, 0, row.commit_id, DeltaKind.WRITE, row.is_symlink, content)
            if row.previous_path is not None and row.previous_path != row.path:
                yield row.previous_path, _Op(
                    depth, 1, row.commit_id, DeltaKind.TOMBSTONE, False, None, moved_to=row.path
                )


def _resolve(ops: Iterator[tuple[str, _Op]]) -> dict[str, _Op]:
    winners: dict[str, _Op] = {}
    for path, op in ops:
        current = winners.get(path)
        if current is None or op.sort_key < current.sort_key:
            winners[path] = op
    return winners


def read_file(
    session: Session,
    commit_id: str,
    path: str,
    *,
    max_depth: int | None = None,
) -> str | None:
    """Content of *path* at *commit_id*, or ``None`` if absent there.

    For a symlink this is the link target.

    Raises:
        UnknownCommitError: If the commit does not exist.
        InvalidPathError: If *path* is invalid.
    """
    commit, _ = _commit_and_repository(session, commit_id)
    path = normalize_path(path)
    winners = _resolve(_iter_ops(session, _ancestry(session, commit, max_depth), path=path))
    op = winners.get(path)
    if op is None or not op.live:
        return None
    return op.content


def get_commit_snapshot(
    session: Session,
    commit_id: str,
    path_prefix: str | None = None,
    *,
    with_content: bool = False,
    max_depth: int | None = None,
) -> list[SnapshotEntry]:
    """Live paths at *commit_id*, sorted by path.

    Args:
        path_prefix: Keep only paths starting with this literal prefix.
        with_content: Also resolve each entry's content.

    Raises:
        UnknownCommitError: If the commit does not exist.
    """
    commit, repository_name = _commit_and_repository(session, commit_id)
    prefix = normalize_prefix(path_prefix) if path_prefix else None
    ancestry = _ancestry(session, commit, max_depth)
    winners = _resolve(_iter_ops(session, ancestry, prefix=prefix, with_content=with_content))

    entries = [
        SnapshotEntry(
            repository_id=commit.repository_id,
            repository_name=repository_name,
            commit_id=commit.id,
            path=path,
            is_symlink=op.is_symlink,
            commit_created_at=commit.created_at,
            commit_message=commit.message,
            content=op.content if with_content else None,
        )
        for path, op in winners.items()
        if op.live and (prefix is None or path.startswith(prefix))
    ]
    entries.sort(key=lambda e: e.path)
    logger.debug("Snapshot of {}: {} path(s) over {} commit(s)", commit.id[:8], len(entries), len(ancestry))
    return entries


def get_commit_snapshot_with_content(
    session: Session,
    commit_id: str,
    path_prefix: str | None = None,
    *,
    max_depth: int | None = None,
) -> list[SnapshotEntry]:
    return get_commit_snapshot(session, commit_id, path_prefix,
                               with_content=True, max_depth=max_depth)


def get_file_history(
    session: Session,
    commit_id: str,
    path: str,
    *,
    max_depth: int | None = None,
) -> list[FileHistoryEntry]:
    """Every delta touching *path* along the chain, newest first.

    Tombstones and moves away from *path* report ``content=None``; a move
    away also carries its destination in ``moved_to``.
    """
    commit, _ = _commit_and_repository(session, commit_id)
    path = normalize_path(path)
    matching = [
        op for affected, op in _iter_ops(session, _ancestry(session, commit, max_depth), path=path)
        if affected == path
    ]
    matching.sort(key=lambda op: (op.depth, op.rank, op.moved_to or ""))
    return [
        FileHistoryEntry(
            commit_id=op.commit_id,
            content=op.content if op.live else None,
            is_deleted=not op.live,
            is_symlink=op.is_symlink,
            moved_to=op.moved_to,
        )
        for op in matching
    ]


def log(
    session: Session,
    commit_id: str,
    path: str | None = None,
    limit: int | None = None,
    *,
    max_depth: int | None = None,
) -> list[Commit]:
    """Commits on the parent chain of *commit_id*, newest first.

    Args:
        path: Only include commits with a delta at (or moving away from)
            this path.
        limit: Maximum number of commits to return.
    """
    commit, _ = _commit_and_repository(session, commit_id)
    ancestry = _ancestry(session, commit, max_depth)
    if path is not None:
        path = normalize_path(path)
        touched = {op.commit_id for affected, op in
                   _iter_ops(session, ancestry, path=path, with_content=False)
                   if affected == path}
        ancestry = [c for c in ancestry if c in touched]
    if limit is not None:
        ancestry = ancestry[:limit]

    rows: dict[str, CommitRow] = {}
    for chunk in _chunks(ancestry):
        for row in session.execute(select(CommitRow).where(CommitRow.id.in_(chunk))).scalars():
            rows[row.id] = row
    return [rows[c].to_record() for c in ancestry]
