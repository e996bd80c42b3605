"""Developer CLI: print and check the workspace tree held by a store."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger

from workspace_tree.cache.queries import TreeQueries
from workspace_tree.cache.query_cache import QueryCache
from workspace_tree.core.integrity import check_integrity
from workspace_tree.core.tree.builder import SortKey, SortOrder, TreeBuildOptions, build_arena
from workspace_tree.core.tree.outline import render_outline
from workspace_tree.errors import TransportError
from workspace_tree.logging_config import configure_logging
from workspace_tree.models.entity import Entity
from workspace_tree.protocols import TransportProtocol
from workspace_tree.store.adapter import EntityStoreAdapter
from workspace_tree.store.http import HttpTransport
from workspace_tree.store.memory import MemoryBackend, read_seed

app = typer.Typer(help="Workspace tree: inspect folders and notes held by a store.")

SeedOption = Annotated[
    Path | None,
    typer.Option("--seed", "-s", help="JSON list of entities to load into an in-memory store"),
]
UrlOption = Annotated[
    str | None,
    typer.Option("--url", "-u", help="Backend bridge URL (default: $WORKSPACE_TREE_STORE_URL)"),
]


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    log_file: Annotated[
        Path | None,
        typer.Option("--log-file", help="Also write debug logs to this file"),
    ] = None,
) -> None:
    configure_logging(verbose=verbose, log_file=log_file)


def _read_seed(seed: Path) -> list[Entity]:
    if not seed.exists():
        logger.error("Seed file not found: {}", seed)
        raise typer.Exit(1)
    try:
        return read_seed(seed)
    except ValueError as e:
        logger.error("Cannot read seed file {}: {}", seed, e)
        raise typer.Exit(1) from e


def _open_transport(seed: Path | None, url: str | None) -> TransportProtocol:
    if seed is not None:
        return MemoryBackend(_read_seed(seed))
    return HttpTransport(url)


def _load(seed: Path | None, url: str | None) -> list[Entity]:
    """Load every entity through the adapter and the cache."""
    transport = _open_transport(seed, url)
    queries = TreeQueries(EntityStoreAdapter(transport), QueryCache())
    try:
        return asyncio.run(queries.load_tree())
    except TransportError as e:
        logger.error("{}", e)
        raise typer.Exit(1) from e
    finally:
        if isinstance(transport, HttpTransport):
            transport.close()


@app.command()
def outline(
    seed: SeedOption = None,
    url: UrlOption = None,
    max_depth: Annotated[
        int | None,
        typer.Option("--max-depth", "-d", help="Levels to show (default: all)"),
    ] = None,
    sort_by: SortKey = typer.Option(SortKey.POSITION, "--sort-by", help="Sort siblings by"),
    desc: bool = typer.Option(False, "--desc", help="Sort descending"),
    content: bool = typer.Option(False, "--content", "-c", help="Include note content"),
) -> None:
    """Print the workspace tree as a markdown outline."""
    entities = _load(seed, url)
    options = TreeBuildOptions(
        sort_by=sort_by,
        sort_order=SortOrder.DESC if desc else SortOrder.ASC,
        max_depth=max_depth,
    )
    arena = build_arena(entities, options=options)
    text = render_outline(arena, include_content=content)
    if not text:
        typer.echo("(empty)")
        return
    typer.echo(text, nl=False)


@app.command()
def check(seed: SeedOption = None, url: UrlOption = None) -> None:
    """Check positions, parents and cycles; exit 1 on any violation.

    A seed file is checked record by record; a live store is checked as far as
    it can be walked from the root.
    """
    entities = _read_seed(seed) if seed is not None else _load(None, url)
    report = check_integrity(entities)
    if report.ok:
        typer.echo(f"OK: {report.entity_count} entities")
        return
    for violation in report.violations:
        typer.echo(f"  {violation}")
    typer.echo(f"{len(report.violations)} problem(s) in {report.entity_count} entities")
    raise typer.Exit(1)
