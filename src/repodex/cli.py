"""
Command line interface for the repository indexer.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .errors import InvalidRepositoryKey, StoreIOError
from .identity import DEFAULT_PROVIDER, RepositoryKey
from .logger import configure_logging, get_logger, redirect_logging_to_file
from .services import IndexOrchestrator
from .settings import settings
from .storage import ArtifactStore, JobStatus, LockManager, Metadata

app = typer.Typer(name="repodex", help="Repository indexing jobs.")
configure_logging(enable_console=False)
log = get_logger(__name__)
console = Console()

_STATUS_STYLES = {
    JobStatus.IDLE: "dim",
    JobStatus.INDEXING: "yellow",
    JobStatus.READY: "green",
    JobStatus.ERROR: "red",
}


def _parse_key(value: str) -> RepositoryKey:
    try:
        return RepositoryKey.parse(value)
    except InvalidRepositoryKey as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=2) from exc


def _render_metadata(metadata: Metadata) -> Table:
    table = Table(title=metadata.key, show_header=False)
    table.add_column("field", style="bold")
    table.add_column("value")
    table.add_row("status", f"[{_STATUS_STYLES[metadata.status]}]{metadata.status.value}[/]")
    table.add_row("branch", metadata.branch or "-")
    table.add_row("commit", metadata.commit_fingerprint or "-")
    table.add_row("indexed at", metadata.indexed_at or "-")
    table.add_row("updated at", metadata.updated_at)
    if metadata.stats:
        table.add_row("files", f"{metadata.stats.indexed_files}/{metadata.stats.total_files} fetched")
        table.add_row("size", f"{metadata.stats.total_size} bytes")
        languages = ", ".join(
            f"{name}={count}"
            for name, count in sorted(metadata.stats.languages.items(), key=lambda item: -item[1])
        )
        table.add_row("languages", languages or "-")
        table.add_row("average size", f"{metadata.stats.average_file_size} bytes")
        if metadata.stats.largest_files:
            largest = metadata.stats.largest_files[0]
            table.add_row("largest file", f"{largest['path']} ({largest['size']} bytes)")
    if metadata.repo_info:
        info = metadata.repo_info
        table.add_row("description", info.description or "-")
        table.add_row("language", info.language or "-")
        table.add_row("stars / forks", f"{info.stars} / {info.forks}")
    if metadata.error:
        table.add_row("error", f"[red]{metadata.error}[/]")
    return table


@app.command()
def index(
    owner: str = typer.Argument(..., help="Repository owner on the host."),
    repo: str = typer.Argument(..., help="Repository name."),
    branch: Optional[str] = typer.Option(
        None, "--branch", "-b", help="Branch or commit to index (default branch when omitted)."
    ),
    force: bool = typer.Option(False, "--force", help="Reindex even when the commit is unchanged."),
    uid: Optional[str] = typer.Option(None, "--uid", help="Identifier of the requesting user."),
    provider: str = typer.Option(DEFAULT_PROVIDER, "--provider", help="Repository host label."),
    wait: bool = typer.Option(False, "--wait", "-w", help="Block until the job finishes."),
    poll: float = typer.Option(1.0, "--poll", help="Seconds between status checks with --wait."),
    log_file: Optional[Path] = typer.Option(
        None, "--log", help="Write detailed logs to this file."
    ),
) -> None:
    """Request indexing for OWNER/REPO."""
    if log_file:
        redirect_logging_to_file(log_file.resolve())
        typer.echo(f"Logging detailed output to {log_file.resolve()}")

    orchestrator = IndexOrchestrator()
    try:
        result = orchestrator.request_index(
            owner, repo, branch=branch, force=force, owner_uid=uid, provider=provider
        )
    except InvalidRepositoryKey as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=2) from exc

    log.info("cli_index_requested", key=result.key, started=result.started, status=result.status.value)
    if not result.started:
        typer.echo(f"{result.key}: not started (status={result.status.value})")
    else:
        typer.echo(f"{result.key}: indexing started")

    if wait and result.status is JobStatus.INDEXING:
        with console.status(f"Indexing {result.key}..."):
            while orchestrator.get_status(result.key) is JobStatus.INDEXING:
                time.sleep(max(poll, 0.1))
        orchestrator.shutdown(wait=True)
        metadata = orchestrator.get_metadata(result.key)
        if metadata is not None:
            console.print(_render_metadata(metadata))
        if orchestrator.get_status(result.key) is JobStatus.ERROR:
            raise typer.Exit(code=1)


@app.command()
def status(key: str = typer.Argument(..., help="Repository key, e.g. github:owner:repo.")) -> None:
    """Print the job status of a repository."""
    repository_key = _parse_key(key)
    current = ArtifactStore().get_status(str(repository_key))
    console.print(f"{repository_key}: [{_STATUS_STYLES[current]}]{current.value}[/]")


@app.command()
def show(
    key: str = typer.Argument(..., help="Repository key, e.g. github:owner:repo."),
    as_json: bool = typer.Option(False, "--json", help="Print raw metadata as JSON."),
) -> None:
    """Show stored metadata for a repository."""
    repository_key = _parse_key(key)
    try:
        metadata = ArtifactStore().get_metadata(str(repository_key))
    except StoreIOError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=2) from exc
    if metadata is None:
        typer.echo(f"{repository_key}: no metadata (status=idle)")
        return
    if as_json:
        typer.echo(json.dumps(metadata.to_dict(), indent=2))
    else:
        console.print(_render_metadata(metadata))

    holder = LockManager().holder(str(repository_key))
    if holder:
        typer.echo(f"Lock held by {holder.holder_id} since {holder.acquired_at}")


@app.command()
def purge(
    key: str = typer.Argument(..., help="Repository key, e.g. github:owner:repo."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not prompt for confirmation."),
) -> None:
    """Delete stored metadata and index for a repository."""
    repository_key = _parse_key(key)
    locks = LockManager()
    if locks.is_locked(str(repository_key)):
        typer.echo(f"[ERROR] {repository_key} is being indexed; try again later.")
        raise typer.Exit(code=2)
    if not yes and not typer.confirm(f"Delete index data for {repository_key}?", default=False):
        typer.echo("Purge aborted.")
        raise typer.Exit()
    ArtifactStore().delete(str(repository_key))
    typer.echo(f"Removed {repository_key}")


@app.command()
def serve() -> None:
    """Run the HTTP API."""
    from .api.main import run

    run()


@app.command()
def workspace() -> None:
    """Show where indexes and locks are stored."""
    typer.echo(f"Workspace root: {settings.workspace_root}")
    typer.echo(f"Indexes: {settings.resolved_indexes_dir()}")
    typer.echo(f"Locks: {settings.resolved_locks_dir()}")
    typer.echo(f"Legacy store: {settings.legacy_store_dir or '-'}")


if __name__ == "__main__":  # pragma: no cover
    app()
