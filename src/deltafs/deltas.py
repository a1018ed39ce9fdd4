"""Per-commit file deltas.

A commit stores only what it changes: one row per touched path.  A row
with ``is_deleted`` is a tombstone; a row with a ``previous_path`` also
tombstones that path at the same commit (a move).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from loguru import logger
from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .exceptions import DuplicatePathError, MissingContentError, UnknownCommitError
from .models import CommitRow, FileRow, RepositoryRow
from .paths import normalize_file_path
from .records import CommitDeltaEntry, FileDelta, FileWrite

__all__ = [
    "write_file",
    "write_files",
    "move_file",
    "delete_file",
    "get_commit_delta",
]


def _prepare(write: FileWrite) -> dict[str, Any]:
    """Normalize one write into column values without touching the store."""
    path = normalize_file_path(write.path)
    previous_path = (
        normalize_file_path(write.previous_path) if write.previous_path else None
    )
    if write.is_deleted:
        return dict(path=path, previous_path=previous_path, content="",
                    is_symlink=False, is_deleted=True)
    if write.content is None:
        raise MissingContentError(
            f"Content must be specified when writing non-deleted file {path!r}"
        )
    content = write.content
    if write.is_symlink:
        content = normalize_file_path(content)
    return dict(path=path, previous_path=previous_path, content=content,
                is_symlink=bool(write.is_symlink), is_deleted=False)


def _require_commit(session: Session, commit_id: str) -> None:
    if not commit_id:
        raise UnknownCommitError("commit_id must be specified")
    if session.get(CommitRow, commit_id) is None:
        raise UnknownCommitError(f"Invalid commit_id {commit_id!r}: commit does not exist")


def _path_taken(session: Session, commit_id: str, path: str) -> bool:
    stmt = select(exists().where(FileRow.commit_id == commit_id, FileRow.path == path))
    return bool(session.execute(stmt).scalar())


def _insert(session: Session, commit_id: str, values: list[dict[str, Any]]) -> list[FileDelta]:
    rows = [FileRow(commit_id=commit_id, **v) for v in values]
    try:
        with session.begin_nested():
            session.add_all(rows)
            session.flush()
    except IntegrityError as exc:
        raise DuplicatePathError(
            f"Commit {commit_id!r} already has a delta for one of "
            f"{[v['path'] for v in values]}"
        ) from exc
    return [row.to_record() for row in rows]


def write_files(
    session: Session,
    commit_id: str,
    files: Iterable[FileWrite | Mapping[str, Any]],
) -> list[FileDelta]:
    """Record several deltas in *commit_id*.

    The whole batch is validated before any row is inserted, so an invalid
    entry leaves the commit untouched.

    Raises:
        InvalidPathError: If a path, previous path or symlink target is invalid.
        MissingContentError: If a live entry has no content.
        UnknownCommitError: If the commit does not exist.
        DuplicatePathError: If a path repeats in the batch or is already
            recorded in the commit.
    """
    values = [_prepare(FileWrite.coerce(f)) for f in files]
    _require_commit(session, commit_id)
    seen: set[str] = set()
    for v in values:
        if v["path"] in seen or _path_taken(session, commit_id, v["path"]):
            raise DuplicatePathError(
                f"Commit {commit_id!r} already has a delta for {v['path']!r}"
            )
        seen.add(v["path"])
    if not values:
        return []
    deltas = _insert(session, commit_id, values)
    logger.debug("Wrote {} delta(s) to commit {}", len(deltas), commit_id[:8])
    return deltas


def write_file(
    session: Session,
    commit_id: str,
    path: str,
    content: str | None,
    *,
    is_symlink: bool = False,
    is_deleted: bool = False,
    previous_path: str | None = None,
) -> FileDelta:
    """Record one delta.  See :func:`write_files` for the errors raised."""
    write = FileWrite(path, content, is_symlink=is_symlink,
                      is_deleted=is_deleted, previous_path=previous_path)
    return write_files(session, commit_id, [write])[0]


def move_file(
    session: Session,
    commit_id: str,
    from_path: str,
    to_path: str,
    content: str,
    *,
    is_symlink: bool = False,
) -> FileDelta:
    """Write *content* at *to_path* and tombstone *from_path*."""
    return write_file(session, commit_id, to_path, content,
                      is_symlink=is_symlink, previous_path=from_path)


def delete_file(session: Session, commit_id: str, path: str) -> FileDelta:
    return write_file(session, commit_id, path, "", is_deleted=True)


def get_commit_delta(session: Session, commit_id: str) -> list[CommitDeltaEntry]:
    """Deltas recorded in one commit, ordered by path.

    An unknown commit yields an empty list.
    """
    stmt = (
        select(FileRow, CommitRow, RepositoryRow.name)
        .join(CommitRow, CommitRow.id == FileRow.commit_id)
        .join(RepositoryRow, RepositoryRow.id == CommitRow.repository_id)
        .where(FileRow.commit_id == commit_id)
        .order_by(FileRow.path)
    )
    return [
        CommitDeltaEntry(
            repository_id=commit.repository_id,
            repository_name=repository_name,
            commit_id=commit.id,
            path=f.path,
            previous_path=f.previous_path,
            is_deleted=f.is_deleted,
            is_symlink=f.is_symlink,
            file_created_at=f.created_at,
            commit_created_at=commit.created_at,
            commit_message=commit.message,
        )
        for f, commit, repository_name in session.execute(stmt)
    ]
