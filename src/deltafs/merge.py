"""Three-way comparison, rebase and merge finalization.

All three work on resolved snapshots of a merge base and two tips,
compared path by path as :class:`~deltafs.records.FileState` triples.
Rebase and finalize share one patch rule: take the incoming side where
it changed from the base, else keep the target, and write only where the
result differs from the target.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import deltas, graph, registry
from .exceptions import (
    CrossRepositoryError,
    EmptyBranchError,
    HeadMismatchError,
    RebaseBlockedError,
    UnknownBranchError,
    UnresolvedConflictsError,
)
from .models import FileRow
from .records import (
    MISSING,
    Branch,
    Conflict,
    ConflictKind,
    FileState,
    FileWrite,
    FinalizeOperation,
    FinalizeResult,
    RebaseOperation,
    RebaseResult,
)
from .snapshot import get_commit_snapshot_with_content

__all__ = ["get_conflicts", "rebase_branch", "finalize_commit", "merge_branch"]


def _states(session: Session, commit_id: str, max_depth: int | None) -> dict[str, FileState]:
    return {
        e.path: e.state
        for e in get_commit_snapshot_with_content(session, commit_id, max_depth=max_depth)
    }


@dataclass
class _ThreeWay:
    """Snapshots of a merge base and the two sides being combined."""

    base_id: str
    base: dict[str, FileState]
    left: dict[str, FileState]
    right: dict[str, FileState]

    @classmethod
    def load(cls, session: Session, left_id: str, right_id: str,
             max_depth: int | None = None, base_id: str | None = None) -> _ThreeWay:
        if base_id is None:
            base_id = graph.get_merge_base(session, left_id, right_id, max_depth=max_depth)
        return cls(
            base_id=base_id,
            base=_states(session, base_id, max_depth),
            left=_states(session, left_id, max_depth),
            right=_states(session, right_id, max_depth),
        )

    def paths(self) -> list[str]:
        return sorted(self.base.keys() | self.left.keys() | self.right.keys())

    def triple(self, path: str) -> tuple[FileState, FileState, FileState]:
        return (
            self.base.get(path, MISSING),
            self.left.get(path, MISSING),
            self.right.get(path, MISSING),
        )

    def conflicts(self) -> list[Conflict]:
        found = []
        for path in self.paths():
            base, left, right = self.triple(path)
            if left == base or right == base or left == right:
                continue
            if base.exists and not (left.exists and right.exists):
                kind = ConflictKind.DELETE_MODIFY
            elif not base.exists and left.exists and right.exists:
                kind = ConflictKind.ADD_ADD
            else:
                kind = ConflictKind.MODIFY_MODIFY
            found.append(Conflict(self.base_id, path, base, left, right, kind))
        return found

    def plan(self, *, incoming: str, skip: Iterable[str] = ()) -> list[FileWrite]:
        """Writes that bring the target side up to date with *incoming*.

        Args:
            incoming: ``"left"`` or ``"right"``; the other side is the target.
            skip: Paths never written.
        """
        skip = set(skip)
        writes = []
        for path in self.paths():
            if path in skip:
                continue
            base, left, right = self.triple(path)
            source, target = (left, right) if incoming == "left" else (right, left)
            desired = source if source != base else target
            if desired == target:
                continue
            if desired.exists:
                writes.append(FileWrite(path, desired.content, is_symlink=desired.is_symlink))
            else:
                writes.append(FileWrite(path, is_deleted=True))
        logger.debug("Patch from {} against base {}: {} write(s)", incoming, self.base_id[:8], len(writes))
        return writes


def get_conflicts(
    session: Session,
    left_commit_id: str,
    right_commit_id: str,
    *,
    max_depth: int | None = None,
) -> list[Conflict]:
    """Paths both commits changed from their merge base, differently.

    Sorted by path.
    """
    return _ThreeWay.load(session, left_commit_id, right_commit_id, max_depth).conflicts()


def _require_branch(session: Session, branch_id: str, label: str = "branch") -> Branch:
    if not branch_id:
        raise UnknownBranchError(f"{label} id must be specified")
    branch = registry.get_branch_by_id(session, branch_id)
    if branch is None:
        raise UnknownBranchError(f"Invalid {label} id {branch_id!r}: branch does not exist")
    return branch


def rebase_branch(
    session: Session,
    branch_id: str,
    onto_branch_id: str,
    message: str | None = None,
    *,
    max_depth: int | None = None,
) -> RebaseResult:
    """Replay a branch's changes on top of another branch as one commit.

    Raises:
        UnknownBranchError: If either branch does not exist.
        CrossRepositoryError: If the branches are in different repositories.
        EmptyBranchError: If either branch has no head.
        RebaseBlockedError: If the branches conflict; nothing is changed.
        StaleSnapshotError: If the branch moved while rebasing.
    """
    branch = _require_branch(session, branch_id)
    onto = _require_branch(session, onto_branch_id, "onto branch")
    if branch.repository_id != onto.repository_id:
        raise CrossRepositoryError("Branches must belong to the same repository")

    head = branch.head_commit_id
    onto_head = onto.head_commit_id

    def result(operation, merge_base, new_head, rebased=None, applied=0):
        return RebaseResult(
            operation=operation,
            repository_id=branch.repository_id,
            branch_id=branch.id,
            onto_branch_id=onto.id,
            merge_base_commit_id=merge_base,
            previous_branch_head_commit_id=head,
            onto_head_commit_id=onto_head,
            rebased_commit_id=rebased,
            new_branch_head_commit_id=new_head,
            applied_file_count=applied,
        )

    if branch.id == onto.id:
        return result(RebaseOperation.NOOP, head, head)
    if head is None or onto_head is None:
        raise EmptyBranchError("Both branches must have commits to rebase")

    base_id = graph.get_merge_base(session, head, onto_head, max_depth=max_depth)
    if base_id == onto_head:
        return result(RebaseOperation.ALREADY_UP_TO_DATE, base_id, head)
    if base_id == head:
        registry.update_branch_head(session, branch.id, onto_head, expected_head=head)
        logger.info("Rebase {!r} onto {!r}: fast-forward to {}", branch.name, onto.name, onto_head[:8])
        return result(RebaseOperation.FAST_FORWARD, base_id, onto_head)

    three_way = _ThreeWay.load(session, head, onto_head, max_depth, base_id=base_id)
    conflicts = three_way.conflicts()
    if conflicts:
        raise RebaseBlockedError(
            f"Rebase of {branch.name!r} onto {onto.name!r} blocked by "
            f"{len(conflicts)} conflict(s): {', '.join(c.path for c in conflicts)}",
            conflicts,
        )

    writes = three_way.plan(incoming="left")
    if not writes:
        registry.update_branch_head(session, branch.id, onto_head, expected_head=head)
        logger.info("Rebase {!r} onto {!r}: nothing to apply, fast-forward", branch.name, onto.name)
        return result(RebaseOperation.FAST_FORWARD, base_id, onto_head)

    commit = graph.create_commit(
        session, branch.repository_id, message if message is not None else "rebase",
        parent_commit_id=onto_head,
    )
    deltas.write_files(session, commit.id, writes)
    registry.update_branch_head(session, branch.id, commit.id, expected_head=head)
    logger.info("Rebased {!r} onto {!r} as {} ({} file(s))",
                branch.name, onto.name, commit.id[:8], len(writes))
    return result(RebaseOperation.REBASED, base_id, commit.id, commit.id, len(writes))


def _caller_paths(session: Session, commit_id: str) -> set[str]:
    """Paths the commit already records, including the sources of its moves."""
    paths: set[str] = set()
    for path, previous_path in session.execute(
        select(FileRow.path, FileRow.previous_path).where(FileRow.commit_id == commit_id)
    ):
        paths.add(path)
        if previous_path is not None:
            paths.add(previous_path)
    return paths


def finalize_commit(
    session: Session,
    commit_id: str,
    target_branch_id: str | None = None,
    *,
    max_depth: int | None = None,
) -> FinalizeResult:
    """Complete a commit and optionally advance a branch to it.

    A plain commit is a fast-forward.  A merge commit (one with a
    merged-from commit) must already hold a delta for every conflicting
    path; every other change from the merged-from side is then written
    into it.

    Raises:
        UnknownCommitError: If the commit does not exist.
        UnknownBranchError: If the target branch does not exist.
        CrossRepositoryError: If the branch is in another repository.
        HeadMismatchError: If the branch head is not the commit's parent.
        EmptyBranchError: If a merge commit has no parent.
        UnresolvedConflictsError: If conflict resolutions are missing;
            nothing is changed.
    """
    commit = graph.require_commit(session, commit_id, "merge commit")
    parent_id = commit.parent_commit_id
    merged_from_id = commit.merged_from_commit_id

    target: Branch | None = None
    if target_branch_id:
        target = _require_branch(session, target_branch_id, "target branch")
        if target.repository_id != commit.repository_id:
            raise CrossRepositoryError("Branch and merge commit must belong to the same repository")
        if parent_id is None and target.head_commit_id is not None:
            raise HeadMismatchError(
                "Root commit (null parent) can only be finalized on a branch with no head"
            )
        if parent_id is not None and parent_id != target.head_commit_id:
            raise HeadMismatchError(
                f"Commit parent {parent_id!r} does not match head of branch "
                f"{target.name!r} ({target.head_commit_id!r})"
            )
    previous_head = target.head_commit_id if target is not None else parent_id

    def advance() -> str | None:
        if target is None:
            return None
        registry.update_branch_head(session, target.id, commit.id, expected_head=previous_head)
        return commit.id

    if merged_from_id is None:
        new_head = advance()
        logger.info("Finalized {} as fast-forward", commit.id[:8])
        return FinalizeResult(
            operation=FinalizeOperation.FAST_FORWARD,
            repository_id=commit.repository_id,
            target_branch_id=target.id if target else None,
            merge_base_commit_id=parent_id,
            previous_target_head_commit_id=previous_head,
            source_commit_id=None,
            merge_commit_id=commit.id,
            new_target_head_commit_id=new_head,
        )

    if parent_id is None:
        raise EmptyBranchError("A merge commit needs a parent to merge into")

    three_way = _ThreeWay.load(session, parent_id, merged_from_id, max_depth)
    conflicts = three_way.conflicts()
    written = _caller_paths(session, commit.id)
    missing = [c.path for c in conflicts if c.path not in written]
    if missing:
        raise UnresolvedConflictsError(
            f"Merge requires resolutions for {len(missing)} conflicting path(s): "
            f"{', '.join(missing)}",
            conflicts,
            missing,
        )

    writes = three_way.plan(incoming="right", skip=written)
    if writes:
        deltas.write_files(session, commit.id, writes)
    new_head = advance()

    if three_way.base_id == merged_from_id:
        operation = FinalizeOperation.ALREADY_UP_TO_DATE
    elif conflicts:
        operation = FinalizeOperation.MERGED_WITH_CONFLICTS_RESOLVED
    else:
        operation = FinalizeOperation.MERGED
    logger.info("Finalized merge {} ({}, {} file(s) applied)", commit.id[:8], operation, len(writes))
    return FinalizeResult(
        operation=operation,
        repository_id=commit.repository_id,
        target_branch_id=target.id if target else None,
        merge_base_commit_id=three_way.base_id,
        previous_target_head_commit_id=previous_head,
        source_commit_id=merged_from_id,
        merge_commit_id=commit.id,
        new_target_head_commit_id=new_head,
        applied_file_count=len(writes),
        resolved_paths=tuple(c.path for c in conflicts),
    )


def merge_branch(
    session: Session,
    source_branch_id: str,
    target_branch_id: str,
    message: str | None = None,
    resolutions: Iterable[FileWrite | Mapping[str, Any]] = (),
    *,
    max_depth: int | None = None,
) -> FinalizeResult:
    """Merge one branch into another with a single merge commit.

    *resolutions* are written into the merge commit before it is
    finalized; they must cover every conflicting path.  The caller is
    expected to run this in one transaction so that a refused merge
    leaves no commit behind.
    """
    source = _require_branch(session, source_branch_id, "source branch")
    target = _require_branch(session, target_branch_id, "target branch")
    if source.repository_id != target.repository_id:
        raise CrossRepositoryError("Branches must belong to the same repository")
    if source.head_commit_id is None or target.head_commit_id is None:
        raise EmptyBranchError("Both branches must have commits to merge")

    commit = graph.create_commit(
        session,
        target.repository_id,
        message if message is not None else f"Merge branch {source.name!r} into {target.name!r}",
        parent_commit_id=target.head_commit_id,
        merged_from_commit_id=source.head_commit_id,
    )
    resolutions = list(resolutions)
    if resolutions:
        deltas.write_files(session, commit.id, resolutions)
    return finalize_commit(session, commit.id, target.id, max_depth=max_depth)
