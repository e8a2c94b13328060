#!/usr/bin/env python3
"""
Command line interface for Roamdex - offline travel organizer search.

Usage:
    roam search "query"          - Full multi-tier search
    roam semantic "X in Y"       - Entity and filter search
    roam find "query"            - Search-box flow (mode picked from the query)
    roam analyze "text"          - Show extracted entities
    roam tags "text"             - Suggest tags for a text
    roam add journal --title ..  - Add a record to the vault
    roam reindex                 - Force an index rebuild
    roam stats                   - Index and search statistics
"""

import asyncio
import json
from dataclasses import asdict
from pathlib import Path
from typing import Optional, List, Tuple
import click
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn
from loguru import logger

from ..engine.analyzer import TextAnalyzer
from ..engine.config import Config
from ..engine.enrichment import EnrichmentClient
from ..engine.logging_setup import setup_logging
from ..engine.models import COLLECTIONS, ScoredResult
from ..engine.search import SearchEngine
from ..engine.store import JsonRecordStore, UnknownCollectionError
from ..engine.universal import UniversalSearch

console = Console()

DEFAULT_VAULT = Path.home() / ".roamdex"


def load_config(config_path: Optional[str], vault: Optional[str]) -> Config:
    """Config file if there is one, defaults otherwise; --vault always wins."""
    try:
        config = Config.load(Path(config_path) if config_path else None)
    except FileNotFoundError:
        if config_path:
            raise
        return Config(vault_path=Path(vault) if vault else DEFAULT_VAULT)

    if vault:
        data = config.model_dump()
        data["vault_path"] = Path(vault)
        config = Config(**data)
    return config


def build_engine(config: Config) -> SearchEngine:
    store = JsonRecordStore(config.vault_path, config.index.collections)
    return SearchEngine.from_config(store, config)


@click.group()
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Config file path")
@click.option("--vault", "-v", type=click.Path(file_okay=False), help="Vault directory")
@click.pass_context
def cli(ctx, config_path: Optional[str], vault: Optional[str]):
    """Roamdex - search your travel pins, journal, expenses and more."""
    config = load_config(config_path, vault)
    setup_logging(config.logging)
    ctx.obj = config


@cli.command()
@click.argument("query")
@click.option("--module", "-m", "modules", multiple=True, help="Restrict to a collection (repeatable)")
@click.option("--limit", "-l", default=None, type=int, help="Max results")
@click.option("--threshold", "-t", default=None, type=float, help="Minimum score")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@click.pass_obj
def search(config: Config, query: str, modules: Tuple[str, ...], limit: Optional[int],
           threshold: Optional[float], as_json: bool):
    """Multi-tier search across all collections."""
    asyncio.run(run_search(config, query, list(modules) or None, limit, threshold, as_json))


async def run_search(config: Config, query: str, modules: Optional[List[str]],
                     limit: Optional[int], threshold: Optional[float], as_json: bool):
    engine = build_engine(config)
    overrides = {"modules": modules}
    if limit is not None:
        overrides["limit"] = limit
    if threshold is not None:
        overrides["threshold"] = threshold

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
        console=console,
        disable=as_json
    ) as progress:
        progress.add_task(description="Searching...", total=None)
        results = await engine.search(query, engine.default_options(**overrides))

    display_results(results, f"Search: {query}", as_json)


@cli.command()
@click.argument("query")
@click.option("--module", "-m", "modules", multiple=True, help="Restrict to a collection (repeatable)")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@click.pass_obj
def semantic(config: Config, query: str, modules: Tuple[str, ...], as_json: bool):
    """Entity and filter search for queries like "dinner with Maria in Paris"."""
    asyncio.run(run_semantic(config, query, list(modules) or None, as_json))


async def run_semantic(config: Config, query: str, modules: Optional[List[str]], as_json: bool):
    engine = build_engine(config)
    results = await engine.semantic_search(query, modules)
    display_results(results, f"Semantic: {query}", as_json)


@cli.command()
@click.argument("query")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@click.pass_obj
def find(config: Config, query: str, as_json: bool):
    """Search the way the search box does, picking the mode from the query."""
    asyncio.run(run_find(config, query, as_json))


async def run_find(config: Config, query: str, as_json: bool):
    engine = build_engine(config)
    outcome = await UniversalSearch(engine).run(query)
    if not as_json:
        console.print(f"[dim]mode: {outcome.mode.value}{' (fallback)' if outcome.fell_back else ''}[/dim]")
    display_results(outcome.results, f"Find: {query}", as_json)


def display_results(results: List[ScoredResult], title: str, as_json: bool = False):
    """Display search results in a table, or as JSON."""
    if as_json:
        click.echo(json.dumps([r.to_dict() for r in results], indent=2))
        return

    if not results:
        console.print("[yellow]No results found[/yellow]")
        return

    table = Table(title=f"{title} ({len(results)})")
    table.add_column("Title", style="cyan", no_wrap=False)
    table.add_column("Type", style="magenta")
    table.add_column("Score", justify="right")
    table.add_column("Matched", style="dim")
    table.add_column("Snippet", no_wrap=False)

    for r in results:
        table.add_row(
            r.record.display_title or "Untitled",
            r.collection,
            f"{r.score:.2f}",
            ", ".join(dict.fromkeys(r.matched_fields)),
            r.snippet or ""
        )

    console.print(table)


@cli.command()
@click.argument("text")
@click.option("--json", "as_json", is_flag=True, help="Print entities as JSON")
def analyze(text: str, as_json: bool):
    """Show the entities, topics and sentiment found in a text."""
    entities = TextAnalyzer().analyze(text)
    if as_json:
        click.echo(json.dumps(asdict(entities), indent=2))
        return

    table = Table(title="Entities")
    table.add_column("Kind", style="cyan")
    table.add_column("Values")
    for kind, values in asdict(entities).items():
        if isinstance(values, list):
            values = ", ".join(values)
        table.add_row(kind, values or "[dim]-[/dim]")
    console.print(table)


@cli.command()
@click.argument("text")
@click.option("--type", "-t", "record_type", help="Record type to include as a tag")
@click.option("--remote", is_flag=True, help="Ask the enrichment service first")
@click.pass_obj
def tags(config: Config, text: str, record_type: Optional[str], remote: bool):
    """Suggest tags for a piece of text."""
    if remote:
        client = EnrichmentClient(config.enrichment)
        suggested = asyncio.run(client.suggest_tags(text, record_type))
    else:
        suggested = TextAnalyzer().generate_tags(text, record_type)

    if suggested:
        console.print(" ".join(f"[green]#{tag}[/green]" for tag in suggested))
    else:
        console.print("[yellow]No tags found[/yellow]")


@cli.command()
@click.argument("collection", type=click.Choice(COLLECTIONS))
@click.option("--title", help="Title")
@click.option("--name", help="Name (people, gear and food use this instead of a title)")
@click.option("--description", "-d", help="Description")
@click.option("--content", help="Longer free text")
@click.option("--location", "-l", help="Location")
@click.option("--tag", "tag_list", multiple=True, help="Tag (repeatable)")
@click.option("--auto-tag", is_flag=True, help="Generate tags from the text")
@click.pass_obj
def add(config: Config, collection: str, title: Optional[str], name: Optional[str],
        description: Optional[str], content: Optional[str], location: Optional[str],
        tag_list: Tuple[str, ...], auto_tag: bool):
    """Add a record to a collection."""
    if not (title or name):
        raise click.UsageError("Give the record a --title or a --name")

    data = {
        key: value for key, value in {
            "title": title,
            "name": name,
            "description": description,
            "content": content,
            "location": location,
        }.items() if value
    }
    record_tags = list(tag_list)
    if auto_tag:
        text = " ".join(v for v in data.values())
        record_tags += TextAnalyzer().generate_tags(text, collection)
    data["tags"] = list(dict.fromkeys(record_tags))

    try:
        record = asyncio.run(add_record(config, collection, data))
    except UnknownCollectionError as e:
        console.print(f"[red]Unknown collection:[/red] {e}")
        raise SystemExit(1)

    console.print(f"[green]✓[/green] Added {collection}/{record.id}: {record.display_title}")


async def add_record(config: Config, collection: str, data: dict):
    store = JsonRecordStore(config.vault_path, config.index.collections)
    return await store.add(collection, data)


@cli.command()
@click.pass_obj
def reindex(config: Config):
    """Force a full index rebuild."""
    stats = asyncio.run(rebuild(config))
    index = stats["index"]
    console.print(
        f"[green]✓[/green] Indexed {index['records']} records "
        f"in {index['build_time_ms']:.1f}ms"
    )
    for collection in index["failed_collections"]:
        console.print(f"  [red]failed:[/red] {collection}")


async def rebuild(config: Config) -> dict:
    engine = build_engine(config)
    await engine.rebuild_index()
    return engine.get_statistics()


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print statistics as JSON")
@click.pass_obj
def stats(config: Config, as_json: bool):
    """Show index statistics."""
    data = asyncio.run(rebuild(config))
    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    table = Table(title=f"Vault: {config.vault_path}")
    table.add_column("Collection", style="cyan")
    table.add_column("Records", justify="right")
    failed = set(data["index"]["failed_collections"])
    for collection, count in data["index"]["collections"].items():
        label = f"{count} [red](failed)[/red]" if collection in failed else str(count)
        table.add_row(collection, label)
    console.print(table)
    console.print(f"Build time: {data['index']['build_time_ms']:.1f}ms")


def main():
    try:
        cli()
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        logger.exception("roam crashed")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
