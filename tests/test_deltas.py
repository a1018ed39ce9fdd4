"""Tests for writing per-commit file deltas."""

import pytest

from deltafs import (
    DeltaKind,
    DuplicatePathError,
    FileWrite,
    InvalidPathError,
    MissingContentError,
    UnknownCommitError,
)


@pytest.fixture
def commit(store, repo):
    return store.create_commit(repo.id, "work")


class TestWriteFile:
    def test_normalizes_path(self, store, commit):
        delta = store.write_file(commit.id, "docs\\a.txt/", "x")
        assert delta.path == "/docs/a.txt"
        assert delta.kind is DeltaKind.WRITE
        assert delta.content == "x"
        assert not delta.is_deleted

    def test_tombstone_forces_fields(self, store, commit):
        delta = store.write_file(commit.id, "/a.txt", "ignored", is_symlink=True, is_deleted=True)
        assert delta.is_deleted
        assert not delta.is_symlink
        assert delta.content == ""
        assert delta.kind is DeltaKind.TOMBSTONE

    def test_tombstone_without_content(self, store, commit):
        assert store.write_file(commit.id, "/a.txt", None, is_deleted=True).content == ""

    def test_missing_content(self, store, commit):
        with pytest.raises(MissingContentError):
            store.write_file(commit.id, "/a.txt", None)

    def test_empty_content_is_allowed(self, store, commit):
        assert store.write_file(commit.id, "/empty", "").content == ""

    def test_symlink_target_normalized(self, store, commit):
        delta = store.write_file(commit.id, "/link", "target//file.txt", is_symlink=True)
        assert delta.is_symlink
        assert delta.content == "/target/file.txt"

    def test_symlink_target_validated(self, store, commit):
        with pytest.raises(InvalidPathError):
            store.write_file(commit.id, "/link", "/", is_symlink=True)

    def test_root_rejected(self, store, commit):
        with pytest.raises(InvalidPathError):
            store.write_file(commit.id, "/", "x")

    def test_invalid_path(self, store, commit):
        with pytest.raises(InvalidPathError):
            store.write_file(commit.id, "a?b", "x")

    def test_unknown_commit(self, store):
        with pytest.raises(UnknownCommitError):
            store.write_file("missing", "/a.txt", "x")

    def test_duplicate_path(self, store, commit):
        store.write_file(commit.id, "/a.txt", "x")
        with pytest.raises(DuplicatePathError):
            store.write_file(commit.id, "a.txt", "y")

    def test_same_path_in_other_commit(self, store, repo, commit):
        store.write_file(commit.id, "/a.txt", "x")
        other = store.create_commit(repo.id, "other", commit.id)
        assert store.write_file(other.id, "/a.txt", "y").content == "y"


class TestMoveAndDelete:
    def test_move(self, store, commit):
        delta = store.move_file(commit.id, "old.txt", "new.txt", "x")
        assert delta.path == "/new.txt"
        assert delta.previous_path == "/old.txt"
        assert delta.moved_from == "/old.txt"
        assert delta.kind is DeltaKind.MOVE

    def test_previous_path_equal_to_path_is_a_write(self, store, commit):
        delta = store.write_file(commit.id, "/a.txt", "x", previous_path="a.txt")
        assert delta.kind is DeltaKind.WRITE
        assert delta.moved_from is None

    def test_delete(self, store, commit):
        delta = store.delete_file(commit.id, "gone.txt")
        assert delta.is_deleted
        assert delta.path == "/gone.txt"


class TestWriteFiles:
    def test_batch(self, store, commit):
        deltas = store.write_files(commit.id, [
            FileWrite("/a.txt", "a"),
            {"path": "/b.txt", "content": "b"},
            FileWrite("/c.txt", is_deleted=True),
        ])
        assert [d.path for d in deltas] == ["/a.txt", "/b.txt", "/c.txt"]

    def test_empty_batch(self, store, commit):
        assert store.write_files(commit.id, []) == []

    def test_invalid_entry_writes_nothing(self, store, commit):
        with pytest.raises(MissingContentError):
            store.write_files(commit.id, [FileWrite("/a.txt", "a"), FileWrite("/b.txt")])
        assert store.get_commit_delta(commit.id) == []

    def test_duplicate_within_batch(self, store, commit):
        with pytest.raises(DuplicatePathError):
            store.write_files(commit.id, [FileWrite("/a.txt", "a"), FileWrite("a.txt", "b")])
        assert store.get_commit_delta(commit.id) == []

    def test_bad_type(self, store, commit):
        with pytest.raises(TypeError):
            store.write_files(commit.id, ["/a.txt"])

    def test_inside_caller_transaction(self, store, commit):
        with pytest.raises(DuplicatePathError):
            with store.transaction() as s:
                store.write_files(commit.id, [FileWrite("/a.txt", "a")], session=s)
                store.write_files(commit.id, [FileWrite("/a.txt", "b")], session=s)
        # The outer unit rolled back as a whole
        assert store.get_commit_delta(commit.id) == []

    def test_savepoint_keeps_outer_work(self, store, commit):
        with store.transaction() as s:
            store.write_file(commit.id, "/a.txt", "a", session=s)
            with pytest.raises(DuplicatePathError):
                store.write_file(commit.id, "/a.txt", "b", session=s)
        assert [d.path for d in store.get_commit_delta(commit.id)] == ["/a.txt"]


class TestCommitDelta:
    def test_metadata(self, store, repo, commit):
        store.write_files(commit.id, [FileWrite("/b.txt", "b"),
                                      FileWrite("/a.txt", "a", previous_path="/z.txt")])
        entries = store.get_commit_delta(commit.id)
        assert [e.path for e in entries] == ["/a.txt", "/b.txt"]
        first = entries[0]
        assert first.repository_id == repo.id
        assert first.repository_name == "docs"
        assert first.commit_id == commit.id
        assert first.commit_message == "work"
        assert first.previous_path == "/z.txt"
        assert not first.is_deleted

    def test_unknown_commit_is_empty(self, store):
        assert store.get_commit_delta("missing") == []
