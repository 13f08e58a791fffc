"""
xetclient CLI.

Usage:
    xetclient resolve Qwen/Qwen3-0.6B model.safetensors
    xetclient token Qwen/Qwen3-0.6B
    xetclient download Qwen/Qwen3-0.6B model.safetensors tokenizer.json --dest ./out
    xetclient ls datasets/owner/name data
"""

from __future__ import annotations

import asyncio
from pathlib import Path, PurePosixPath
from typing import Any

import click
from rich.console import Console
from rich.progress import BarColumn, DownloadColumn, Progress, TransferSpeedColumn
from rich.table import Table

from xetclient._version import __version__
from xetclient.client import AsyncXetClient
from xetclient.exceptions import ResolutionError, XetError
from xetclient.logging import setup_logging

console = Console()
err_console = Console(stderr=True)


@click.group()
@click.option("--token", envvar=["XET_TOKEN", "HF_TOKEN"], help="Hub access token")
@click.option("--endpoint", envvar="XET_ENDPOINT", help="Hub endpoint URL")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr")
@click.version_option(version=__version__, prog_name="xetclient")
@click.pass_context
def main(ctx: click.Context, token: str | None, endpoint: str | None, verbose: bool) -> None:
    """xetclient command-line interface."""
    ctx.ensure_object(dict)
    ctx.obj["token"] = token
    ctx.obj["endpoint"] = endpoint
    if verbose:
        setup_logging("DEBUG")


def make_client(ctx: click.Context) -> AsyncXetClient:
    """Build a client from CLI options."""
    obj: dict[str, Any] = ctx.obj or {}
    return AsyncXetClient(
        token=obj.get("token"),
        endpoint=obj.get("endpoint"),
        transport=obj.get("transport"),
    )


def run(coro) -> Any:
    """Run a command coroutine; report client errors and exit 1."""
    try:
        return asyncio.run(coro)
    except XetError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1) from e


# =============================================================================
# Resolve / Token
# =============================================================================


@main.command()
@click.argument("repo")
@click.argument("path")
@click.option("--revision", "-r", default="main", help="Branch, tag, or commit")
@click.pass_context
def resolve(ctx: click.Context, repo: str, path: str, revision: str) -> None:
    """Resolve a repository file to its content hash and size.

    Examples:

        xetclient resolve Qwen/Qwen3-0.6B model.safetensors
    """
    descriptor = run(make_client(ctx).resolve(repo, path, revision))
    if descriptor is None:
        console.print(f"[yellow]{path} is not stored in CAS[/yellow]")
        return
    console.print(f"[dim]Hash:[/dim] {descriptor.hash}")
    console.print(f"[dim]Size:[/dim] {descriptor.size:,} bytes")


@main.command()
@click.argument("repo")
@click.option("--revision", "-r", default="main", help="Branch, tag, or commit")
@click.pass_context
def token(ctx: click.Context, repo: str, revision: str) -> None:
    """Obtain a CAS read credential for a repository."""
    credential = run(make_client(ctx).authorize(repo, revision))
    console.print(f"[dim]CAS URL:[/dim] {credential.endpoint}")
    console.print(f"[dim]Expires:[/dim] {credential.expiry.isoformat()}")
    console.print(f"[dim]Token:[/dim] {credential.token}")


# =============================================================================
# Download
# =============================================================================


@main.command()
@click.argument("repo")
@click.argument("paths", nargs=-1, required=True)
@click.option(
    "--dest",
    "-d",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    help="Destination directory",
)
@click.option("--revision", "-r", default="main", help="Branch, tag, or commit")
@click.option("--timeout", "-t", type=float, default=None, help="Overall timeout in seconds")
@click.pass_context
def download(
    ctx: click.Context,
    repo: str,
    paths: tuple[str, ...],
    dest: Path,
    revision: str,
    timeout: float | None,
) -> None:
    """Download repository files into a directory.

    Either every file is downloaded and verified, or none is kept.

    Examples:

        xetclient download Qwen/Qwen3-0.6B model.safetensors --dest ./out
    """
    client = make_client(ctx)
    results = run(_download_async(client, repo, list(paths), dest, revision, timeout))
    for local in results:
        console.print(f"[green]✓[/green] {local}")
    if client.last_metrics is not None:
        console.print(f"[dim]{client.last_metrics.summary()}[/dim]")


async def _download_async(
    client: AsyncXetClient,
    repo: str,
    paths: list[str],
    dest: Path,
    revision: str,
    timeout: float | None,
) -> list[str]:
    async with client:
        descriptors = []
        for path in paths:
            descriptor = await client.resolve(repo, path, revision)
            if descriptor is None:
                raise ResolutionError("File is not stored in CAS", repo=repo, path=path)
            descriptors.append(descriptor)
        credential = await client.authorize(repo, revision)

        with Progress(
            "[progress.description]{task.description}",
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            console=err_console,
            transient=True,
        ) as progress:
            task = progress.add_task("Downloading", total=sum(d.size for d in descriptors))

            def on_progress(done: int, total: int) -> None:
                progress.update(task, completed=done, total=total)

            return await client.download(
                descriptors,
                dest,
                credential,
                filenames=[PurePosixPath(p).name for p in paths],
                on_progress=on_progress,
                timeout=timeout,
            )


# =============================================================================
# List
# =============================================================================


@main.command("ls")
@click.argument("repo")
@click.argument("path", default="")
@click.option("--revision", "-r", default="main", help="Branch, tag, or commit")
@click.option("--recursive", "-R", is_flag=True, help="List subdirectories too")
@click.pass_context
def ls(ctx: click.Context, repo: str, path: str, revision: str, recursive: bool) -> None:
    """List files in a repository directory."""
    entries = run(
        make_client(ctx).list_files_with_metadata(repo, path, revision, recursive=recursive)
    )
    if not entries:
        console.print("[yellow]No entries[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Type", width=9)
    table.add_column("Path")
    table.add_column("Size", justify="right")
    table.add_column("CAS", width=4)

    for entry in entries:
        size = f"{entry.size:,}" if entry.size is not None else ""
        cas = "[green]●[/green]" if entry.hash else ""
        table.add_row(entry.entry_type, entry.path, size, cas)

    console.print(table)


# =============================================================================
# Entry Point
# =============================================================================


if __name__ == "__main__":
    main()
