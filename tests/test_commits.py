"""Tests for commit creation and the in-memory commit graph."""

import pytest

from deltafs import (
    AmbiguousParentError,
    CommitGraph,
    CorruptHistoryError,
    CrossRepositoryError,
    DeltaStore,
    RootCommitExistsError,
    UnknownCommitError,
    UnknownRepositoryError,
)


class TestCreateCommit:
    def test_root(self, store):
        repo = store.create_repository("r")
        root = store.create_commit(repo.id, "root", None)
        assert root.is_root
        assert not root.is_merge
        assert root.repository_id == repo.id

    def test_omitted_parent_on_empty_repository_is_root(self, store):
        repo = store.create_repository("r")
        assert store.create_commit(repo.id, "root").parent_commit_id is None

    def test_omitted_parent_defaults_to_main_head(self, store, repo, main_branch):
        child = store.create_commit(repo.id, "child")
        assert child.parent_commit_id == main_branch.head_commit_id

    def test_does_not_move_branches(self, store, repo, main_branch):
        store.create_commit(repo.id, "child")
        assert store.get_branch_by_id(main_branch.id).head_commit_id == main_branch.head_commit_id

    def test_ambiguous_parent(self, store):
        repo = store.create_repository("r")
        store.create_commit(repo.id, "root", None)
        with pytest.raises(AmbiguousParentError):
            store.create_commit(repo.id, "next")

    def test_second_root(self, store, repo):
        with pytest.raises(RootCommitExistsError):
            store.create_commit(repo.id, "another root", None)

    def test_unknown_parent(self, store, repo):
        with pytest.raises(UnknownCommitError):
            store.create_commit(repo.id, "x", "missing")

    def test_cross_repository_parent(self, store, repo):
        other = store.init_repository("other")
        with pytest.raises(CrossRepositoryError):
            store.create_commit(repo.id, "x", other.commit.id)

    def test_cross_repository_merged_from(self, store, repo, main_branch):
        other = store.init_repository("other")
        with pytest.raises(CrossRepositoryError):
            store.create_commit(repo.id, "x", main_branch.head_commit_id, other.commit.id)

    def test_merged_from(self, store, scenario):
        merge = store.create_commit(scenario["repo"].id, "merge",
                                    scenario["c2"].id, scenario["c1"].id)
        assert merge.is_merge
        assert merge.merged_from_commit_id == scenario["c1"].id

    def test_unknown_repository(self, store):
        with pytest.raises(UnknownRepositoryError):
            store.create_commit("missing", "x", None)

    def test_get_commit(self, store, scenario):
        assert store.get_commit(scenario["c1"].id) == scenario["c1"]
        assert store.get_commit("missing") is None


class TestCommitGraph:
    def test_ancestry_newest_first(self, store, scenario):
        with store.transaction() as s:
            graph = CommitGraph(s, scenario["repo"].id)
            assert graph.ancestry(scenario["c2"].id) == [scenario["c2"].id, scenario["c0"].id]
            assert graph.ancestry(scenario["c0"].id) == [scenario["c0"].id]

    def test_ancestry_ignores_merged_from(self, store, scenario):
        merge = store.create_commit(scenario["repo"].id, "merge",
                                    scenario["c2"].id, scenario["c1"].id)
        with store.transaction() as s:
            graph = CommitGraph(s, scenario["repo"].id)
            assert scenario["c1"].id not in graph.ancestry(merge.id)

    def test_is_ancestor(self, store, scenario):
        with store.transaction() as s:
            graph = CommitGraph(s, scenario["repo"].id)
            assert graph.is_ancestor(scenario["c0"].id, scenario["c1"].id)
            assert not graph.is_ancestor(scenario["c2"].id, scenario["c1"].id)

    def test_unknown_commit(self, store, scenario):
        with store.transaction() as s:
            graph = CommitGraph(s, scenario["repo"].id)
            with pytest.raises(UnknownCommitError):
                graph.ancestry("missing")

    def test_max_depth(self, store, repo, main_branch):
        for i in range(5):
            store.commit_to_branch(main_branch.id, f"c{i}", [])
        head = store.get_branch_by_id(main_branch.id).head_commit_id
        with store.transaction() as s:
            assert len(CommitGraph(s, repo.id, max_depth=5).ancestry(head)) == 6
            with pytest.raises(CorruptHistoryError, match="max_depth"):
                CommitGraph(s, repo.id, max_depth=3).ancestry(head)

    def test_store_max_depth_applies_to_reads(self, db_url, store, repo, main_branch):
        for i in range(3):
            store.commit_to_branch(main_branch.id, f"c{i}", [])
        head = store.get_branch_by_id(main_branch.id).head_commit_id
        with DeltaStore.open(db_url, max_depth=1) as shallow:
            with pytest.raises(CorruptHistoryError):
                shallow.read_file(head, "/x")

    def test_cycle_detected(self, store, scenario):
        c0, c2 = scenario["c0"], scenario["c2"]
        with store.transaction() as s:
            graph = CommitGraph(s, scenario["repo"].id)
            # Corrupt the in-memory edges only; the schema cannot hold a cycle
            # with a parentless root.
            graph._parents[c0.id] = c2.id
            with pytest.raises(CorruptHistoryError, match="Cycle"):
                graph.ancestry(c2.id)

    def test_match_prefix(self, store, scenario):
        with store.transaction() as s:
            graph = CommitGraph(s, scenario["repo"].id)
            c1 = scenario["c1"].id
            assert c1 in graph.match_prefix(c1[:8])
            assert graph.match_prefix("zzzz") == []

