"""SQLAlchemy ORM models for the deltafs schema.

Four tables: ``repositories``, ``branches``, ``commits`` and ``files``.

Composite ``(id, repository_id)`` keys let foreign keys require that a
parent commit, a merged-from commit and a branch head all live in the
same repository as the row pointing at them.  A partial unique index
allows exactly one parentless (root) commit per repository.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy import ForeignKey, ForeignKeyConstraint, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .records import Branch, Commit, FileDelta, Repository


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(sa.TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite keeps no offset, so values are stored as UTC and tagged as UTC
    again when loaded.
    """

    impl = sa.DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class RepositoryRow(Base):
    __tablename__ = "repositories"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(sa.Text, nullable=False, unique=True)
    # Not a foreign key: branches already reference repositories, and the
    # cycle cannot be created inline on every backend.  Kept consistent by
    # registry.create_repository / delete_branch.
    default_branch_id: Mapped[Optional[str]] = mapped_column(sa.String(36))
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=_utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<RepositoryRow(id={self.id[:8]}, name={self.name!r})>"

    def to_record(self) -> Repository:
        return Repository(
            id=self.id,
            name=self.name,
            default_branch_id=self.default_branch_id,
            created_at=self.created_at,
        )


class CommitRow(Base):
    __tablename__ = "commits"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_new_id)
    repository_id: Mapped[str] = mapped_column(
        sa.String(36), ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    parent_commit_id: Mapped[Optional[str]] = mapped_column(sa.String(36))
    merged_from_commit_id: Mapped[Optional[str]] = mapped_column(sa.String(36))
    message: Mapped[str] = mapped_column(sa.Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=_utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("id", "repository_id", name="commits_id_repository_id_unique"),
        ForeignKeyConstraint(
            ["parent_commit_id", "repository_id"],
            ["commits.id", "commits.repository_id"],
            name="commits_parent_same_repo_fk",
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["merged_from_commit_id", "repository_id"],
            ["commits.id", "commits.repository_id"],
            name="commits_merged_from_same_repo_fk",
            ondelete="CASCADE",
        ),
        Index("idx_commits_repository_parent", "repository_id", "parent_commit_id"),
        Index("idx_commits_repository_merged_from", "repository_id", "merged_from_commit_id"),
        Index(
            "commits_one_root_per_repo_idx",
            "repository_id",
            unique=True,
            sqlite_where=sa.text("parent_commit_id IS NULL"),
            postgresql_where=sa.text("parent_commit_id IS NULL"),
        ),
    )

    def __repr__(self) -> str:
        return f"<CommitRow(id={self.id[:8]}, message={self.message[:40]!r})>"

    def to_record(self) -> Commit:
        return Commit(
            id=self.id,
            repository_id=self.repository_id,
            parent_commit_id=self.parent_commit_id,
            merged_from_commit_id=self.merged_from_commit_id,
            message=self.message,
            created_at=self.created_at,
        )


class BranchRow(Base):
    __tablename__ = "branches"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_new_id)
    repository_id: Mapped[str] = mapped_column(
        sa.String(36), ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    head_commit_id: Mapped[Optional[str]] = mapped_column(sa.String(36))
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=_utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("repository_id", "name", name="branches_repository_id_name_unique"),
        UniqueConstraint("id", "repository_id", name="branches_id_repository_id_unique"),
        ForeignKeyConstraint(
            ["head_commit_id", "repository_id"],
            ["commits.id", "commits.repository_id"],
            name="branches_head_commit_same_repo_fk",
        ),
    )

    def __repr__(self) -> str:
        return f"<BranchRow(id={self.id[:8]}, name={self.name!r})>"

    def to_record(self) -> Branch:
        return Branch(
            id=self.id,
            repository_id=self.repository_id,
            name=self.name,
            head_commit_id=self.head_commit_id,
            created_at=self.created_at,
        )


class FileRow(Base):
    __tablename__ = "files"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_new_id)
    commit_id: Mapped[str] = mapped_column(
        sa.String(36), ForeignKey("commits.id", ondelete="CASCADE"), nullable=False
    )
    path: Mapped[str] = mapped_column(sa.Text, nullable=False)
    previous_path: Mapped[Optional[str]] = mapped_column(sa.Text)
    content: Mapped[str] = mapped_column(sa.Text, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    is_symlink: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=_utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("commit_id", "path", name="files_commit_id_path_unique"),
        Index("idx_files_commit_path", "commit_id", "path"),
        Index("idx_files_commit_previous_path", "commit_id", "previous_path"),
    )

    def __repr__(self) -> str:
        return f"<FileRow(commit={self.commit_id[:8]}, path={self.path!r})>"

    def to_record(self) -> FileDelta:
        return FileDelta(
            id=self.id,
            commit_id=self.commit_id,
            path=self.path,
            previous_path=self.previous_path,
            content=self.content,
            is_deleted=self.is_deleted,
            is_symlink=self.is_symlink,
            created_at=self.created_at,
        )
