"""Tests for three-way conflict detection."""

from deltafs import MISSING, ConflictKind, FileState, FileWrite


class TestConflicts:
    def test_scenario_has_none(self, store, scenario):
        assert store.get_conflicts(scenario["c1"].id, scenario["c2"].id) == []

    def test_modify_modify(self, store, fork):
        f = fork([FileWrite("/a.txt", "base")],
                 [FileWrite("/a.txt", "left")],
                 [FileWrite("/a.txt", "right")])
        [conflict] = store.get_conflicts(f.left_commit.id, f.right_commit.id)
        assert conflict.path == "/a.txt"
        assert conflict.kind is ConflictKind.MODIFY_MODIFY
        assert conflict.merge_base_commit_id == f.base.id
        assert conflict.base == FileState(True, False, "base")
        assert conflict.left == FileState(True, False, "left")
        assert conflict.right == FileState(True, False, "right")

    def test_same_change_is_not_a_conflict(self, store, fork):
        f = fork([FileWrite("/a.txt", "base")],
                 [FileWrite("/a.txt", "same")],
                 [FileWrite("/a.txt", "same")])
        assert store.get_conflicts(f.left_commit.id, f.right_commit.id) == []

    def test_one_side_change_is_not_a_conflict(self, store, fork):
        f = fork([FileWrite("/a.txt", "base")],
                 [FileWrite("/a.txt", "left")],
                 [FileWrite("/b.txt", "other")])
        assert store.get_conflicts(f.left_commit.id, f.right_commit.id) == []

    def test_delete_modify(self, store, fork):
        f = fork([FileWrite("/a.txt", "base")],
                 [FileWrite("/a.txt", is_deleted=True)],
                 [FileWrite("/a.txt", "right")])
        [conflict] = store.get_conflicts(f.left_commit.id, f.right_commit.id)
        assert conflict.kind is ConflictKind.DELETE_MODIFY
        assert conflict.left == MISSING
        assert str(conflict.kind) == "delete/modify"

    def test_both_deleted_is_not_a_conflict(self, store, fork):
        f = fork([FileWrite("/a.txt", "base")],
                 [FileWrite("/a.txt", is_deleted=True)],
                 [FileWrite("/a.txt", is_deleted=True)])
        assert store.get_conflicts(f.left_commit.id, f.right_commit.id) == []

    def test_add_add(self, store, fork):
        f = fork([], [FileWrite("/new", "l")], [FileWrite("/new", "r")])
        [conflict] = store.get_conflicts(f.left_commit.id, f.right_commit.id)
        assert conflict.kind is ConflictKind.ADD_ADD
        assert conflict.base == MISSING

    def test_add_add_identical(self, store, fork):
        f = fork([], [FileWrite("/new", "same")], [FileWrite("/new", "same")])
        assert store.get_conflicts(f.left_commit.id, f.right_commit.id) == []

    def test_symlink_vs_file(self, store, fork):
        f = fork([FileWrite("/a", "/t")],
                 [FileWrite("/a", "/t", is_symlink=True)],
                 [FileWrite("/a", "/u")])
        [conflict] = store.get_conflicts(f.left_commit.id, f.right_commit.id)
        assert conflict.kind is ConflictKind.MODIFY_MODIFY
        assert conflict.left.is_symlink

    def test_move_vs_modify(self, store, fork):
        f = fork([FileWrite("/a", "base")],
                 [FileWrite("/b", "base", previous_path="/a")],
                 [FileWrite("/a", "changed")])
        [conflict] = store.get_conflicts(f.left_commit.id, f.right_commit.id)
        assert conflict.path == "/a"
        assert conflict.kind is ConflictKind.DELETE_MODIFY

    def test_sorted_by_path(self, store, fork):
        f = fork([FileWrite("/z", "0"), FileWrite("/a", "0"), FileWrite("/m", "0")],
                 [FileWrite("/z", "l"), FileWrite("/a", "l"), FileWrite("/m", "l")],
                 [FileWrite("/z", "r"), FileWrite("/a", "r"), FileWrite("/m", "r")])
        conflicts = store.get_conflicts(f.left_commit.id, f.right_commit.id)
        assert [c.path for c in conflicts] == ["/a", "/m", "/z"]

    def test_ancestor_has_none(self, store, fork):
        f = fork([FileWrite("/a", "0")], [FileWrite("/a", "1")], [])
        assert store.get_conflicts(f.base.id, f.left_commit.id) == []
