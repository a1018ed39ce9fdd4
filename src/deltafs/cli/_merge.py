"""Merge commands: merge-base, conflicts, rebase, merge."""

from __future__ import annotations

import json

import click

from ..records import FileWrite
from ._helpers import (
    main,
    _repo_option,
    _message_option,
    _format_option,
    _require_repo,
    _status,
    _open_store,
    _get_branch,
    _resolve_ref,
    _format_conflict,
    _short,
)


def _state_dict(state) -> dict:
    return {"exists": state.exists, "is_symlink": state.is_symlink, "content": state.content}


@main.command("merge-base")
@_repo_option
@click.argument("left")
@click.argument("right")
@click.pass_context
def merge_base(ctx, left, right):
    """Print the best common ancestor of LEFT and RIGHT (branches or commits)."""
    store = _open_store(ctx)
    repo = _require_repo(ctx, store)
    click.echo(store.get_merge_base(_resolve_ref(store, repo, left),
                                    _resolve_ref(store, repo, right)))


@main.command()
@_repo_option
@click.argument("left")
@click.argument("right")
@_format_option
@click.pass_context
def conflicts(ctx, left, right, fmt):
    """List paths LEFT and RIGHT changed differently since their merge base.

    Exits with status 1 when there are conflicts.
    """
    store = _open_store(ctx)
    repo = _require_repo(ctx, store)
    found = store.get_conflicts(_resolve_ref(store, repo, left),
                                _resolve_ref(store, repo, right))
    if fmt == "json":
        click.echo(json.dumps([
            {
                "path": c.path,
                "kind": str(c.kind),
                "merge_base": c.merge_base_commit_id,
                "base": _state_dict(c.base),
                "left": _state_dict(c.left),
                "right": _state_dict(c.right),
            }
            for c in found
        ], indent=2))
    else:
        for c in found:
            click.echo(_format_conflict(c).strip())
    if found:
        ctx.exit(1)


@main.command()
@_repo_option
@click.argument("branch_name")
@click.argument("onto")
@_message_option
@click.pass_context
def rebase(ctx, branch_name, onto, message):
    """Rebase BRANCH_NAME onto branch ONTO as a single commit."""
    store = _open_store(ctx)
    repo = _require_repo(ctx, store)
    result = store.rebase_branch(_get_branch(store, repo, branch_name).id,
                                 _get_branch(store, repo, onto).id, message)
    click.echo(f"{result.operation}  {_short(result.new_branch_head_commit_id)}")
    _status(ctx, f"Applied {result.applied_file_count} file(s)")


@main.command()
@_repo_option
@click.argument("source")
@click.option("--into", "target", default=None,
              help="Branch to merge into [default: the repository's default branch].")
@_message_option
@click.option("--resolve", "resolutions", nargs=2, multiple=True,
              type=(str, click.File("r")), metavar="PATH FILE",
              help="Resolve conflicting PATH with the contents of local FILE. Repeatable.")
@click.option("--delete", "deletions", multiple=True, metavar="PATH",
              help="Resolve conflicting PATH by deleting it. Repeatable.")
@click.pass_context
def merge(ctx, source, target, message, resolutions, deletions):
    """Merge branch SOURCE into another branch with a merge commit.

    Conflicting paths must be resolved with --resolve or --delete; the
    merge is refused (and nothing is written) otherwise.
    """
    store = _open_store(ctx)
    repo = _require_repo(ctx, store)
    src = _get_branch(store, repo, source)
    dst = _get_branch(store, repo, target)
    writes = [FileWrite(path, fh.read()) for path, fh in resolutions]
    writes += [FileWrite(path, is_deleted=True) for path in deletions]
    result = store.merge_branch(src.id, dst.id, message, writes)
    click.echo(f"{result.operation}  {_short(result.merge_commit_id)}")
    _status(ctx, f"Applied {result.applied_file_count} file(s)")
