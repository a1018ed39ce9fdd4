"""Tests for DeltaStore: opening, transactions and composite operations."""

import threading

import pytest

from deltafs import (
    DeltaStore,
    DuplicateNameError,
    DuplicatePathError,
    FileWrite,
    InvalidPathError,
    RootCommitExistsError,
    StaleSnapshotError,
    UnknownBranchError,
    retry_commit,
)
from deltafs.store import CommitOutcome


class TestOpen:
    def test_creates_missing_file(self, tmp_path):
        path = tmp_path / "new.db"
        with DeltaStore.open(f"sqlite:///{path}") as store:
            assert store.list_repositories() == []
        assert path.exists()

    def test_no_create(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            DeltaStore.open(f"sqlite:///{tmp_path / 'missing.db'}", create=False)

    def test_no_create_existing(self, db_url):
        DeltaStore.open(db_url).close()
        with DeltaStore.open(db_url, create=False) as store:
            assert store.list_repositories() == []

    def test_in_memory(self):
        with DeltaStore.open("sqlite://") as store:
            store.create_repository("mem")
            assert [r.name for r in store.list_repositories()] == ["mem"]

    def test_data_persists(self, db_url):
        with DeltaStore.open(db_url) as store:
            init = store.init_repository("docs", [FileWrite("/a", "a")])
        with DeltaStore.open(db_url) as store:
            assert store.read_file(init.commit.id, "/a") == "a"

    def test_repr(self, store):
        assert "deltafs.db" in repr(store)


class TestTransaction:
    def test_calls_commit_together(self, store):
        with store.transaction() as s:
            repo = store.create_repository("docs", session=s)
            commit = store.create_commit(repo.id, "root", None, session=s)
            store.write_file(commit.id, "/a", "a", session=s)
        assert store.read_file(commit.id, "/a") == "a"

    def test_exception_rolls_back_everything(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction() as s:
                store.create_repository("docs", session=s)
                raise RuntimeError("abort")
        assert store.get_repository("docs") is None

    def test_failed_call_keeps_earlier_work(self, store):
        with store.transaction() as s:
            store.create_repository("docs", session=s)
            with pytest.raises(DuplicateNameError):
                store.create_repository("docs", session=s)
            store.create_repository("notes", session=s)
        assert [r.name for r in store.list_repositories()] == ["docs", "notes"]

    def test_each_call_is_atomic(self, store, repo, main_branch):
        commit = store.create_commit(repo.id, "next")
        with pytest.raises(DuplicatePathError):
            store.write_files(commit.id, [FileWrite("/a", "1"), FileWrite("/a", "2")])
        assert store.get_commit_delta(commit.id) == []


class TestInitRepository:
    def test_root_commit_on_main(self, store):
        init = store.init_repository("docs", [FileWrite("/readme.md", "hi")])
        assert init.branch.name == "main"
        assert init.branch.head_commit_id == init.commit.id
        assert init.commit.parent_commit_id is None
        assert init.commit.message == "Initial commit"
        assert init.repository.default_branch_id == init.branch.id
        assert store.read_file(init.commit.id, "/readme.md") == "hi"

    def test_without_files(self, store):
        init = store.init_repository("docs", message="start")
        assert init.commit.message == "start"
        assert store.get_commit_snapshot(init.commit.id) == []

    def test_duplicate_rolls_back(self, store, repo):
        with pytest.raises(DuplicateNameError):
            store.init_repository("docs")
        assert len(store.list_repositories()) == 1

    def test_bad_file_rolls_back(self, store):
        with pytest.raises(InvalidPathError):
            store.init_repository("docs", [FileWrite("/bad|name", "x")])
        assert store.get_repository("docs") is None

    def test_second_root_refused(self, store, repo):
        with pytest.raises(RootCommitExistsError):
            store.create_commit(repo.id, "another root", None)


class TestCommitToBranch:
    def test_advances_branch(self, store, repo, main_branch):
        outcome = store.commit_to_branch(main_branch.id, "add", [FileWrite("/a", "a")])
        assert outcome.commit.parent_commit_id == main_branch.head_commit_id
        assert outcome.branch.head_commit_id == outcome.commit.id
        assert store.get_branch_by_id(main_branch.id).head_commit_id == outcome.commit.id

    def test_accepts_mappings(self, store, repo, main_branch):
        outcome = store.commit_to_branch(main_branch.id, "add", [{"path": "/a", "content": "a"}])
        assert store.read_file(outcome.commit.id, "/a") == "a"

    def test_unknown_branch(self, store):
        with pytest.raises(UnknownBranchError):
            store.commit_to_branch("missing", "add", [])

    def test_empty_branch_gets_root(self, store):
        repo = store.create_repository("fresh")
        outcome = store.commit_to_branch(repo.default_branch_id, "root", [FileWrite("/a", "a")])
        assert outcome.commit.parent_commit_id is None

    def test_failure_leaves_no_commit(self, store, repo, main_branch):
        with pytest.raises(DuplicatePathError):
            store.commit_to_branch(main_branch.id, "dup", [FileWrite("/a", "1"), FileWrite("/a", "2")])
        assert store.get_branch_by_id(main_branch.id) == main_branch
        assert len(store.log(main_branch.head_commit_id)) == 1


class TestRetryCommit:
    @pytest.fixture(autouse=True)
    def _no_sleep(self, monkeypatch):
        monkeypatch.setattr("deltafs.store.time.sleep", lambda seconds: None)

    def test_succeeds_first_time(self, store, repo, main_branch):
        outcome = retry_commit(store, main_branch.id, "add", [FileWrite("/a", "a")])
        assert isinstance(outcome, CommitOutcome)
        assert store.read_file(outcome.commit.id, "/a") == "a"

    def test_retries_stale(self, store, repo, main_branch, monkeypatch):
        real = store.commit_to_branch
        calls = []

        def flaky(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise StaleSnapshotError("moved")
            return real(*args, **kwargs)

        monkeypatch.setattr(store, "commit_to_branch", flaky)
        outcome = retry_commit(store, main_branch.id, "add", [FileWrite("/a", "a")])
        assert len(calls) == 2
        assert outcome.branch.head_commit_id == outcome.commit.id

    def test_gives_up(self, store, repo, main_branch, monkeypatch):
        calls = []

        def always_stale(*args, **kwargs):
            calls.append(args)
            raise StaleSnapshotError("moved")

        monkeypatch.setattr(store, "commit_to_branch", always_stale)
        with pytest.raises(StaleSnapshotError):
            retry_commit(store, main_branch.id, "add", [], retries=3)
        assert len(calls) == 3

    def test_other_errors_propagate(self, store):
        with pytest.raises(UnknownBranchError):
            retry_commit(store, "missing", "add", [])


class TestConcurrentWriters:
    def test_writers_on_one_branch_form_a_chain(self, db_url, store, repo, main_branch):
        errors = []

        def writer(worker):
            try:
                with DeltaStore.open(db_url) as own:
                    for n in range(10):
                        retry_commit(own, main_branch.id, f"w{worker}-{n}",
                                     [FileWrite(f"/w{worker}/{n}", "x")], retries=20)
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=writer, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        head = store.get_branch_by_id(main_branch.id).head_commit_id
        chain = store.log(head)
        assert len(chain) == 41
        assert {c.message for c in chain[:-1]} == {
            f"w{w}-{n}" for w in range(4) for n in range(10)
        }
        assert len(store.get_commit_snapshot(head)) == 40
