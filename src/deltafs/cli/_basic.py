"""Basic commands: init, repos, branch, write, rm, mv, cat, ls, log, history, show."""

from __future__ import annotations

import json
import sys

import click

from ..exceptions import StaleSnapshotError
from ..paths import normalize_file_path
from ..records import FileWrite
from ..store import retry_commit
from ._helpers import (
    main,
    branch,
    _repo_option,
    _branch_option,
    _message_option,
    _ref_option,
    _format_option,
    _require_repo,
    _status,
    _open_store,
    _get_branch,
    _resolve_ref,
    _short,
)
import deltafs.cli._helpers as _helpers


def _commit(ctx, store, branch_obj, message, files):
    try:
        outcome = retry_commit(store, branch_obj.id, message, files)
    except StaleSnapshotError:
        raise click.ClickException("Branch modified concurrently; retry")
    _status(ctx, f"[{branch_obj.name} {_short(outcome.commit.id)}] {message}")
    return outcome


# ---------------------------------------------------------------------------
# init / repos
# ---------------------------------------------------------------------------

@main.command()
@_repo_option
@click.argument("name", required=False, default=None)
@click.option("-m", "--message", default="Initial commit", show_default=True,
              help="Message of the root commit.")
@click.pass_context
def init(ctx, name, message):
    """Create repository NAME (default: --repo) with an empty root commit on 'main'."""
    name = name or ctx.obj.get("repo_name")
    if not name:
        raise click.ClickException("No repository name given. Pass NAME or use --repo.")
    store = _open_store(ctx, create=True)
    if store.get_repository(name) is not None:
        raise click.ClickException(f"Repository already exists: {name}")
    outcome = store.init_repository(name, message=message)
    _status(ctx, f"Initialized {name} ({_short(outcome.commit.id)})")


@main.command()
@click.pass_context
def repos(ctx):
    """List repositories."""
    store = _open_store(ctx)
    for repo in store.list_repositories():
        click.echo(repo.name)


# ---------------------------------------------------------------------------
# branch subcommands
# ---------------------------------------------------------------------------

@branch.command("list")
@_repo_option
@click.pass_context
def branch_list(ctx):
    """List branches; the default branch is marked with '*'."""
    store = _open_store(ctx)
    repo = _require_repo(ctx, store)
    for b in store.list_branches(repo.id):
        marker = "*" if b.id == repo.default_branch_id else " "
        click.echo(f"{marker} {b.name}  {_short(b.head_commit_id)}")


_helpers.branch_list = branch_list


@branch.command("create")
@_repo_option
@click.argument("name")
@click.option("--at", "at_ref", default=None,
              help="Branch or commit to start from [default: default branch head].")
@click.pass_context
def branch_create(ctx, name, at_ref):
    """Create branch NAME."""
    store = _open_store(ctx)
    repo = _require_repo(ctx, store)
    head = _resolve_ref(store, repo, at_ref) if at_ref else None
    created = store.create_branch(repo.id, name, head)
    _status(ctx, f"Created branch {name} at {_short(created.head_commit_id)}")


@branch.command("delete")
@_repo_option
@click.argument("name")
@click.pass_context
def branch_delete(ctx, name):
    """Delete branch NAME."""
    store = _open_store(ctx)
    repo = _require_repo(ctx, store)
    store.delete_branch(_get_branch(store, repo, name).id)
    _status(ctx, f"Deleted branch {name}")


# ---------------------------------------------------------------------------
# write / rm / mv
# ---------------------------------------------------------------------------

@main.command()
@_repo_option
@click.argument("path")
@_branch_option
@_message_option
@click.option("--symlink", "target", default=None,
              help="Write a symlink pointing at TARGET instead of reading stdin.")
@click.pass_context
def write(ctx, path, branch, message, target):
    """Write stdin (UTF-8 text) to PATH in a new commit."""
    store = _open_store(ctx)
    repo = _require_repo(ctx, store)
    b = _get_branch(store, repo, branch)
    if target is not None:
        change = FileWrite(path, target, is_symlink=True)
    else:
        change = FileWrite(path, sys.stdin.read())
    _commit(ctx, store, b, message or f"Write {path}", [change])


@main.command()
@_repo_option
@click.argument("paths", nargs=-1, required=True)
@_branch_option
@_message_option
@click.pass_context
def rm(ctx, paths, branch, message):
    """Remove files in a new commit."""
    store = _open_store(ctx)
    repo = _require_repo(ctx, store)
    b = _get_branch(store, repo, branch)
    if b.head_commit_id is not None:
        for p in paths:
            if store.read_file(b.head_commit_id, p) is None:
                raise click.ClickException(f"File not found: {p}")
    _commit(ctx, store, b, message or f"Remove {', '.join(paths)}",
            [FileWrite(p, is_deleted=True) for p in paths])


@main.command()
@_repo_option
@click.argument("src")
@click.argument("dest")
@_branch_option
@_message_option
@click.pass_context
def mv(ctx, src, dest, branch, message):
    """Move SRC to DEST in a new commit."""
    store = _open_store(ctx)
    repo = _require_repo(ctx, store)
    b = _get_branch(store, repo, branch)
    head = _resolve_ref(store, repo, b.name)
    entries = {e.path: e for e in store.get_commit_snapshot_with_content(head)}
    entry = entries.get(normalize_file_path(src))
    if entry is None:
        raise click.ClickException(f"File not found: {src}")
    _commit(ctx, store, b, message or f"Move {src} -> {dest}",
            [FileWrite(dest, entry.content, is_symlink=entry.is_symlink, previous_path=src)])


# ---------------------------------------------------------------------------
# cat / ls
# ---------------------------------------------------------------------------

@main.command()
@_repo_option
@click.argument("paths", nargs=-1, required=True)
@_ref_option
@click.pass_context
def cat(ctx, paths, ref):
    """Concatenate file contents to stdout."""
    store = _open_store(ctx)
    repo = _require_repo(ctx, store)
    commit_id = _resolve_ref(store, repo, ref)
    for p in paths:
        content = store.read_file(commit_id, p)
        if content is None:
            raise click.ClickException(f"File not found: {p}")
        click.echo(content, nl=False)


@main.command()
@_repo_option
@click.argument("prefix", required=False, default=None)
@_ref_option
@click.option("-l", "--long", "long_", is_flag=True, help="Show types and blob hashes.")
@_format_option
@click.pass_context
def ls(ctx, prefix, ref, long_, fmt):
    """List files at a commit, optionally under PREFIX."""
    store = _open_store(ctx)
    repo = _require_repo(ctx, store)
    commit_id = _resolve_ref(store, repo, ref)
    if long_ or fmt == "json":
        entries = store.get_commit_snapshot_with_content(commit_id, prefix)
    else:
        entries = store.get_commit_snapshot(commit_id, prefix)

    if fmt == "json":
        click.echo(json.dumps([
            {"path": e.path, "type": "link" if e.is_symlink else "file", "hash": e.hash}
            for e in entries
        ], indent=2))
    elif long_:
        for e in entries:
            kind = "link" if e.is_symlink else "file"
            suffix = f" -> {e.content}" if e.is_symlink else ""
            click.echo(f"{e.hash[:7]}  {kind:<4}  {e.path}{suffix}")
    else:
        for e in entries:
            click.echo(e.path)


# ---------------------------------------------------------------------------
# log / history / show
# ---------------------------------------------------------------------------

@main.command()
@_repo_option
@click.argument("path", required=False, default=None)
@_ref_option
@click.option("-n", "--limit", type=int, default=None, help="Show at most N commits.")
@_format_option
@click.pass_context
def log(ctx, path, ref, limit, fmt):
    """Show commit log, newest first, optionally only commits touching PATH."""
    store = _open_store(ctx)
    repo = _require_repo(ctx, store)
    commits = store.log(_resolve_ref(store, repo, ref), path, limit)
    if fmt == "json":
        click.echo(json.dumps([
            {
                "id": c.id,
                "parent": c.parent_commit_id,
                "merged_from": c.merged_from_commit_id,
                "message": c.message,
                "time": c.created_at.isoformat(),
            }
            for c in commits
        ], indent=2))
        return
    for c in commits:
        merge = f" (merge {_short(c.merged_from_commit_id)})" if c.is_merge else ""
        click.echo(f"{_short(c.id)}  {c.created_at.isoformat()}  {c.message}{merge}")


@main.command()
@_repo_option
@click.argument("path")
@_ref_option
@click.pass_context
def history(ctx, path, ref):
    """Show every change to PATH, newest first."""
    store = _open_store(ctx)
    repo = _require_repo(ctx, store)
    for h in store.get_file_history(_resolve_ref(store, repo, ref), path):
        if h.moved_to is not None:
            what = f"moved to {h.moved_to}"
        elif h.is_deleted:
            what = "deleted"
        elif h.is_symlink:
            what = f"link -> {h.content}"
        else:
            what = f"{len(h.content)} chars"
        click.echo(f"{_short(h.commit_id)}  {what}")


@main.command()
@_repo_option
@click.argument("ref", required=False, default=None)
@click.pass_context
def show(ctx, ref):
    """Show the files changed in a commit."""
    store = _open_store(ctx)
    repo = _require_repo(ctx, store)
    commit = store.get_commit(_resolve_ref(store, repo, ref))
    click.echo(f"commit {commit.id}")
    if commit.parent_commit_id:
        click.echo(f"parent {commit.parent_commit_id}")
    if commit.merged_from_commit_id:
        click.echo(f"merged-from {commit.merged_from_commit_id}")
    click.echo(f"date   {commit.created_at.isoformat()}")
    click.echo(f"\n    {commit.message}\n")
    for d in store.get_commit_delta(commit.id):
        if d.is_deleted:
            click.echo(f"D  {d.path}")
        elif d.previous_path and d.previous_path != d.path:
            click.echo(f"R  {d.previous_path} -> {d.path}")
        else:
            click.echo(f"W  {d.path}")
