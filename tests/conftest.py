"""Shared fixtures for deltafs tests."""

from types import SimpleNamespace

import pytest
from click.testing import CliRunner

from deltafs import DeltaStore, FileWrite


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'deltafs.db'}"


@pytest.fixture
def store(db_url):
    s = DeltaStore.open(db_url)
    yield s
    s.close()


@pytest.fixture
def repo(store):
    """Repository 'docs' with an empty root commit on 'main'."""
    return store.init_repository("docs").repository


@pytest.fixture
def main_branch(store, repo):
    return store.get_branch(repo.id, "main")


@pytest.fixture
def scenario(store):
    """The c0 / c1 / c2 history.

    c0 (root, main) writes /a.txt = "hello".
    c1 on 'feature' (forked at c0) rewrites /a.txt = "world".
    c2 on 'main' adds /b.txt = "new".
    """
    init = store.init_repository("scenario", [FileWrite("/a.txt", "hello")])
    repo, main, c0 = init.repository, init.branch, init.commit
    feature = store.create_branch(repo.id, "feature", c0.id)
    c1 = store.commit_to_branch(feature.id, "feature work", [FileWrite("/a.txt", "world")]).commit
    c2 = store.commit_to_branch(main.id, "main work", [FileWrite("/b.txt", "new")]).commit
    return {
        "repo": repo,
        "main": store.get_branch_by_id(main.id),
        "feature": store.get_branch_by_id(feature.id),
        "c0": c0,
        "c1": c1,
        "c2": c2,
    }


@pytest.fixture
def fork(store):
    """Factory: a root commit plus one commit on each of 'left' and 'right'.

    Returns a namespace with repo, base (root commit), left/right branches
    and left_commit/right_commit.
    """
    def make(base_files=(), left_files=(), right_files=()):
        init = store.init_repository("fork", base_files)
        repo = init.repository
        left = store.create_branch(repo.id, "left", init.commit.id)
        right = store.create_branch(repo.id, "right", init.commit.id)
        left_commit = store.commit_to_branch(left.id, "left work", left_files).commit
        right_commit = store.commit_to_branch(right.id, "right work", right_files).commit
        return SimpleNamespace(
            repo=repo,
            main=init.branch,
            base=init.commit,
            left=store.get_branch_by_id(left.id),
            right=store.get_branch_by_id(right.id),
            left_commit=left_commit,
            right_commit=right_commit,
        )
    return make


# ---------------------------------------------------------------------------
# CLI fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def cli_env(db_url):
    """Environment pointing the CLI at a temp database and repo 'docs'."""
    return {"DELTAFS_DATABASE_URL": db_url, "DELTAFS_REPO": "docs"}
