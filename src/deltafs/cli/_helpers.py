"""Shared helpers, option decorators, and the main CLI group."""

from __future__ import annotations

import sys

import click
from loguru import logger

from ..exceptions import ConflictError, DeltaFSError, UnresolvedConflictsError
from ..graph import CommitGraph
from ..records import Branch, Conflict, Repository
from ..store import DeltaStore

DEFAULT_DATABASE_URL = "sqlite:///deltafs.db"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _status(ctx, msg):
    """Emit a status message to stderr when verbose mode (-v) is on."""
    if ctx.obj.get("verbose"):
        click.echo(msg, err=True)


def _store_repo(ctx, param, value):
    """Click callback: store --repo value in the context."""
    ctx.ensure_object(dict)
    if value is not None:
        ctx.obj["repo_name"] = value
    return value


def _repo_option(f):
    """Shared --repo/-r option decorator for all commands."""
    return click.option(
        "--repo", "-r", envvar="DELTAFS_REPO",
        help="Repository name (or set DELTAFS_REPO).",
        expose_value=False, callback=_store_repo, is_eager=True,
    )(f)


def _branch_option(f):
    return click.option(
        "--branch", "-b", default=None,
        help="Branch to operate on [default: the repository's default branch].",
    )(f)


def _message_option(f):
    return click.option("-m", "--message", default=None, help="Commit message.")(f)


def _ref_option(f):
    return click.option(
        "--ref", default=None,
        help="Branch name or commit id (prefix) to read from [default: default branch].",
    )(f)


def _format_option(f):
    return click.option(
        "--format", "fmt", type=click.Choice(["text", "json"]), default="text",
        help="Output format.",
    )(f)


def _open_store(ctx, *, create: bool = False) -> DeltaStore:
    """Open the store for this invocation; it is closed with the context."""
    url = ctx.obj.get("db_url") or DEFAULT_DATABASE_URL
    try:
        store = DeltaStore.open(url, create=create)
    except FileNotFoundError as exc:
        raise click.ClickException(f"{exc} (run 'deltafs init' first)")
    ctx.call_on_close(store.close)
    return store


def _require_repo(ctx, store: DeltaStore) -> Repository:
    """Get the repository named by --repo, raising a clear error if missing."""
    name = ctx.obj.get("repo_name")
    if not name:
        raise click.ClickException(
            "No repository specified. Use --repo or set DELTAFS_REPO."
        )
    repo = store.get_repository(name)
    if repo is None:
        raise click.ClickException(f"Repository not found: {name}")
    return repo


def _get_branch(store: DeltaStore, repo: Repository, name: str | None) -> Branch:
    """Branch *name*, or the repository's default branch when *name* is None."""
    if name is None:
        branch = store.get_branch_by_id(repo.default_branch_id)
    else:
        branch = store.get_branch(repo.id, name)
    if branch is None:
        raise click.ClickException(f"Branch not found: {name}")
    return branch


def _resolve_ref(store: DeltaStore, repo: Repository, ref: str | None) -> str:
    """Try branches, then commit ids (unique prefix allowed)."""
    if ref is None or store.get_branch(repo.id, ref) is not None:
        head = _get_branch(store, repo, ref).head_commit_id
        if head is None:
            raise click.ClickException(f"Branch {ref or 'default'} has no commits")
        return head
    with store.transaction() as s:
        matches = CommitGraph(s, repo.id).match_prefix(ref)
    if len(matches) == 1:
        return matches[0]
    if matches:
        raise click.ClickException(f"Ambiguous commit id: {ref}")
    raise click.ClickException(f"Unknown ref: {ref}")


def _format_conflict(c: Conflict) -> str:
    return f"  {c.kind!s:<14} {c.path}"


def _conflict_message(exc: ConflictError) -> str:
    lines = [str(exc)]
    if isinstance(exc, UnresolvedConflictsError):
        conflicts = [c for c in exc.conflicts if c.path in set(exc.missing_paths)]
    else:
        conflicts = exc.conflicts
    lines.extend(_format_conflict(c) for c in conflicts)
    return "\n".join(lines)


def _short(commit_id: str | None) -> str:
    return commit_id[:8] if commit_id else "-"


# ---------------------------------------------------------------------------
# Main group
# ---------------------------------------------------------------------------

class _Group(click.Group):
    """Group that reports library errors as clean CLI errors."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except ConflictError as exc:
            raise click.ClickException(_conflict_message(exc))
        except DeltaFSError as exc:
            raise click.ClickException(str(exc))


@click.group(cls=_Group)
@click.option("--db", "db_url", envvar="DELTAFS_DATABASE_URL", default=DEFAULT_DATABASE_URL,
              show_default=True,
              help="SQLAlchemy database URL (or set DELTAFS_DATABASE_URL).")
@click.option("--repo", "-r", envvar="DELTAFS_REPO",
              help="Repository name (or set DELTAFS_REPO).",
              expose_value=False, callback=_store_repo, is_eager=True)
@click.option("-v", "--verbose", is_flag=True, help="Verbose output on stderr.")
@click.pass_context
def main(ctx, db_url, verbose):
    """deltafs: a versioned file store in a SQL database.

    Keeps repositories, branches and commits of text files as per-commit
    deltas, with snapshots, three-way conflict detection, rebase and merge.

    \b
    Quick start:
      deltafs -r docs init docs
      echo hello | deltafs -r docs write /readme.md
      deltafs -r docs cat /readme.md
      deltafs -r docs ls

    \b
    Set DELTAFS_DATABASE_URL and DELTAFS_REPO to avoid repeating
    --db and --repo on every call.
    """
    ctx.ensure_object(dict)
    ctx.obj["db_url"] = db_url
    ctx.obj["verbose"] = verbose
    if verbose:
        logger.remove()
        logger.add(sys.stderr, level="INFO", format="{level}: {message}")
        logger.enable("deltafs")


# ---------------------------------------------------------------------------
# Branch group shell
# ---------------------------------------------------------------------------

@main.group(cls=_Group, invoke_without_command=True)
@_repo_option
@click.pass_context
def branch(ctx):
    """Manage branches."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(branch_list)


# Set by _basic.py during import to avoid a circular dependency
branch_list = None
