"""Repository and branch registry.

Lookups return ``None`` when an id or name does not resolve; mutations
raise.  :func:`update_branch_head` is the single place a branch head is
written.
"""

from __future__ import annotations

from loguru import logger
from sqlalchemy import delete, exists, inspect, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .exceptions import (
    AmbiguousHeadError,
    CrossRepositoryError,
    DuplicateNameError,
    InvalidNameError,
    StaleSnapshotError,
    UnknownBranchError,
    UnknownCommitError,
    UnknownRepositoryError,
)
from .models import BranchRow, CommitRow, FileRow, RepositoryRow
from .records import UNSET, Branch, Repository

__all__ = [
    "DEFAULT_BRANCH",
    "create_repository",
    "get_repository",
    "get_repository_by_id",
    "list_repositories",
    "delete_repository",
    "create_branch",
    "get_branch",
    "get_branch_by_id",
    "list_branches",
    "delete_branch",
    "update_branch_head",
    "default_head",
    "has_commits",
]

DEFAULT_BRANCH = "main"


def _validate_repository_name(name: str) -> None:
    if not isinstance(name, str) or not name.strip():
        raise InvalidNameError("Repository name must not be empty")


def _validate_branch_name(name: str) -> None:
    """Reject empty names and names containing ':', space, tab, or newline."""
    if not isinstance(name, str) or not name:
        raise InvalidNameError("Branch name must not be empty")
    for ch, label in ((":", "colon"), (" ", "space"), ("\t", "tab"), ("\n", "newline")):
        if ch in name:
            raise InvalidNameError(f"Invalid branch name {name!r}: contains {label}")


# ---------------------------------------------------------------------------
# Internal row access
# ---------------------------------------------------------------------------

def _repository_row(session: Session, repository_id: str) -> RepositoryRow:
    row = session.get(RepositoryRow, repository_id)
    if row is None:
        raise UnknownRepositoryError(f"Repository not found: {repository_id!r}")
    return row


def _branch_row(session: Session, branch_id: str) -> BranchRow:
    row = session.get(BranchRow, branch_id)
    if row is None:
        raise UnknownBranchError(f"Branch not found: {branch_id!r}")
    return row


def default_head(session: Session, repository_id: str) -> str | None:
    """Head commit of the repository's default branch, or ``None``."""
    stmt = (
        select(BranchRow.head_commit_id)
        .join(RepositoryRow, RepositoryRow.default_branch_id == BranchRow.id)
        .where(RepositoryRow.id == repository_id)
    )
    return session.execute(stmt).scalar_one_or_none()


def has_commits(session: Session, repository_id: str) -> bool:
    stmt = select(exists().where(CommitRow.repository_id == repository_id))
    return bool(session.execute(stmt).scalar())


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------

def create_repository(session: Session, name: str) -> Repository:
    """Create a repository together with its ``main`` branch (null head).

    Raises:
        InvalidNameError: If *name* is empty.
        DuplicateNameError: If a repository called *name* exists.
    """
    _validate_repository_name(name)
    if get_repository(session, name) is not None:
        raise DuplicateNameError(f"Repository already exists: {name!r}")

    repo = RepositoryRow(name=name)
    branch = BranchRow(name=DEFAULT_BRANCH, head_commit_id=None)
    try:
        with session.begin_nested():
            session.add(repo)
            session.flush()
            branch.repository_id = repo.id
            session.add(branch)
            session.flush()
            repo.default_branch_id = branch.id
            session.flush()
    except IntegrityError as exc:
        raise DuplicateNameError(f"Repository already exists: {name!r}") from exc

    logger.info("Created repository {!r} ({})", name, repo.id)
    return repo.to_record()


def get_repository(session: Session, name: str) -> Repository | None:
    row = session.execute(
        select(RepositoryRow).where(RepositoryRow.name == name)
    ).scalar_one_or_none()
    return row.to_record() if row is not None else None


def get_repository_by_id(session: Session, repository_id: str) -> Repository | None:
    row = session.get(RepositoryRow, repository_id)
    return row.to_record() if row is not None else None


def list_repositories(session: Session) -> list[Repository]:
    rows = session.execute(select(RepositoryRow).order_by(RepositoryRow.name)).scalars()
    return [row.to_record() for row in rows]


def _expunge_repository(session: Session, repository_id: str, commit_ids: set[str]) -> None:
    """Drop rows removed by the cascade from the identity map; leave the rest."""
    for obj in list(session.identity_map.values()):
        # Loaded state only; a refresh would hit the deleted rows
        loaded = inspect(obj).dict
        if isinstance(obj, RepositoryRow):
            gone = loaded.get("id") == repository_id
        elif isinstance(obj, (BranchRow, CommitRow)):
            gone = loaded.get("repository_id") == repository_id
        elif isinstance(obj, FileRow):
            gone = loaded.get("commit_id") in commit_ids
        else:
            gone = False
        if gone:
            session.expunge(obj)


def delete_repository(session: Session, repository_id: str) -> None:
    """Delete a repository; its branches, commits and files go with it."""
    row = _repository_row(session, repository_id)
    name = row.name
    commit_ids = set(session.scalars(
        select(CommitRow.id).where(CommitRow.repository_id == repository_id)
    ))
    session.execute(delete(RepositoryRow).where(RepositoryRow.id == repository_id))
    _expunge_repository(session, repository_id, commit_ids)
    logger.info("Deleted repository {!r} ({})", name, repository_id)


# ---------------------------------------------------------------------------
# Branches
# ---------------------------------------------------------------------------

def create_branch(
    session: Session,
    repository_id: str,
    name: str,
    head_commit_id: str | None = None,
) -> Branch:
    """Create a branch.

    With no *head_commit_id* the branch starts at the default branch's
    head.  A null head is only allowed while the repository has no commits.

    Raises:
        UnknownRepositoryError: If the repository does not exist.
        InvalidNameError: If *name* is not a valid branch name.
        DuplicateNameError: If the repository already has a branch *name*.
        AmbiguousHeadError: If commits exist but no head can be defaulted.
        UnknownCommitError: If *head_commit_id* does not exist.
        CrossRepositoryError: If *head_commit_id* is in another repository.
    """
    _validate_branch_name(name)
    _repository_row(session, repository_id)
    if get_branch(session, repository_id, name) is not None:
        raise DuplicateNameError(f"Branch already exists: {name!r}")

    if head_commit_id is None:
        head_commit_id = default_head(session, repository_id)
        if head_commit_id is None and has_commits(session, repository_id):
            raise AmbiguousHeadError(
                "head_commit_id must be specified: the repository has commits "
                "but its default branch has no head"
            )
    else:
        commit = session.get(CommitRow, head_commit_id)
        if commit is None:
            raise UnknownCommitError(f"Commit not found: {head_commit_id!r}")
        if commit.repository_id != repository_id:
            raise CrossRepositoryError("Branch head must be a commit in the same repository")

    row = BranchRow(repository_id=repository_id, name=name, head_commit_id=head_commit_id)
    try:
        with session.begin_nested():
            session.add(row)
            session.flush()
    except IntegrityError as exc:
        raise DuplicateNameError(f"Branch already exists: {name!r}") from exc

    logger.info("Created branch {!r} at {}", name, head_commit_id)
    return row.to_record()


def get_branch(session: Session, repository_id: str, name: str) -> Branch | None:
    row = session.execute(
        select(BranchRow).where(
            BranchRow.repository_id == repository_id, BranchRow.name == name
        )
    ).scalar_one_or_none()
    return row.to_record() if row is not None else None


def get_branch_by_id(session: Session, branch_id: str) -> Branch | None:
    row = session.get(BranchRow, branch_id, populate_existing=True)
    return row.to_record() if row is not None else None


def list_branches(session: Session, repository_id: str) -> list[Branch]:
    rows = session.execute(
        select(BranchRow)
        .where(BranchRow.repository_id == repository_id)
        .order_by(BranchRow.name)
    ).scalars()
    return [row.to_record() for row in rows]


def delete_branch(session: Session, branch_id: str) -> None:
    """Delete a branch pointer.  Commits are not touched.

    Raises:
        UnknownBranchError: If the branch does not exist.
        InvalidNameError: If the branch is the repository's default branch.
    """
    row = _branch_row(session, branch_id)
    repo = _repository_row(session, row.repository_id)
    if repo.default_branch_id == branch_id:
        raise InvalidNameError(f"Cannot delete default branch {row.name!r}")
    session.delete(row)
    session.flush()
    logger.info("Deleted branch {!r}", row.name)


def update_branch_head(
    session: Session,
    branch_id: str,
    commit_id: str,
    expected_head: str | None = UNSET,
) -> Branch:
    """Point a branch at *commit_id*.

    Args:
        expected_head: The head the caller observed.  When given, the update
            only succeeds if the stored head still equals it (compare and
            swap); ``None`` means "the branch must still be empty".

    Raises:
        UnknownBranchError: If the branch does not exist.
        UnknownCommitError: If the commit does not exist.
        CrossRepositoryError: If the commit is in another repository.
        StaleSnapshotError: If *expected_head* no longer matches.
    """
    branch = _branch_row(session, branch_id)
    commit = session.get(CommitRow, commit_id)
    if commit is None:
        raise UnknownCommitError(f"Commit not found: {commit_id!r}")
    if commit.repository_id != branch.repository_id:
        raise CrossRepositoryError("Branch head must be a commit in the same repository")

    stmt = update(BranchRow).where(BranchRow.id == branch_id)
    if expected_head is not UNSET:
        if expected_head is None:
            stmt = stmt.where(BranchRow.head_commit_id.is_(None))
        else:
            stmt = stmt.where(BranchRow.head_commit_id == expected_head)
    result = session.execute(
        stmt.values(head_commit_id=commit_id).execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise StaleSnapshotError(f"Branch {branch.name!r} has advanced since it was read")

    session.refresh(branch)
    logger.debug("Branch {!r}: {} -> {}", branch.name, expected_head, commit_id)
    return branch.to_record()
