"""
shelfdb command line

Inspect, back up, restore and drop databases under the home directory.
Every command accepts --json for machine-readable output.
"""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from shelfdb.logging_config import logger, setup_logging
from shelfdb.database import Database
from shelfdb.exceptions import ShelfError
from shelfdb.paths import get_paths
from shelfdb.schemas import key_path_name

app = typer.Typer(help="Inspect and maintain shelfdb databases.")
console = Console()


class CLIConfig:
    """Options shared by every command."""

    home: Optional[Path] = None

    @classmethod
    def paths(cls):
        return get_paths(cls.home)


@app.callback()
def global_options(
    home: Optional[Path] = typer.Option(
        None,
        "--home",
        help="Directory holding the databases (also via SHELFDB_HOME, default ~/.shelfdb).",
        file_okay=False,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log engine activity to stderr."),
):
    """
    shelfdb: declarative document collections on SQLite.
    """
    CLIConfig.home = home
    if verbose:
        setup_logging(level="DEBUG", suppress_console=False, force=True)


def _fail(message: str, json_output: bool) -> None:
    if json_output:
        typer.echo(json.dumps({"status": "error", "message": message}))
    else:
        console.print(f"[red]Error: {escape(message)}[/red]")
    raise typer.Exit(code=1)


def _require_existing(name: str, json_output: bool) -> None:
    paths = CLIConfig.paths()
    try:
        path = paths.database_file(name)
    except ShelfError as e:
        _fail(str(e), json_output)
    if not path.exists():
        _fail(f"Database '{name}' not found in {paths.home}", json_output)


async def _describe(name: str) -> dict:
    db = Database(name, home=CLIConfig.home)
    collections = await db.open()
    try:
        summary = {"name": name, "version": db.version, "path": str(db.path), "collections": []}
        for collection in collections.values():
            summary["collections"].append({
                "name": collection.name,
                "primary_key": key_path_name(collection.primary_key),
                "auto_increment": collection.auto_increment,
                "indexes": [
                    {
                        "name": index.name,
                        "key_path": index.key_path,
                        "unique": index.unique,
                        "multi_entry": index.multi_entry,
                    }
                    for index in collection.indexes
                ],
                "count": await collection.count(),
            })
        return summary
    finally:
        await db.close()


async def _backup(name: str) -> dict:
    db = Database(name, home=CLIConfig.home)
    await db.open()
    try:
        snapshot = await db.backup()
    finally:
        await db.close()
    return snapshot.model_dump(mode="json")


async def _restore(name: str, payload: dict, overwrite: bool) -> dict:
    db = Database(name, home=CLIConfig.home)
    await db.open()
    try:
        return await db.restore(payload, overwrite=overwrite)
    finally:
        await db.close()


async def _drop(name: str) -> bool:
    return await Database(name, home=CLIConfig.home).delete()


# ========== COMMANDS ==========

@app.command("list")
def list_databases(
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON."),
):
    """
    Lists the databases in the home directory.
    """
    paths = CLIConfig.paths()
    names = paths.list_databases()
    if json_output:
        typer.echo(json.dumps({"home": str(paths.home), "databases": names}, indent=2))
        return
    if not names:
        console.print(f"[dim]No databases in {escape(str(paths.home))}[/dim]")
        return
    for name in names:
        console.print(name)


@app.command()
def info(
    name: str = typer.Argument(..., help="Database name."),
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON."),
):
    """
    Shows the version, collections, indexes and record counts of a database.
    """
    _require_existing(name, json_output)
    try:
        summary = asyncio.run(_describe(name))
    except ShelfError as e:
        _fail(str(e), json_output)

    if json_output:
        typer.echo(json.dumps(summary, indent=2))
        return

    console.print(f"[bold]{escape(name)}[/bold] version {summary['version']} ({escape(summary['path'])})")
    table = Table(title="Collections")
    table.add_column("Collection", style="cyan", no_wrap=True)
    table.add_column("Primary Key", style="magenta")
    table.add_column("Indexes")
    table.add_column("Records", justify="right")
    for collection in summary["collections"]:
        indexes = ", ".join(
            index["name"] + (" (unique)" if index["unique"] else "") + (" (multi)" if index["multi_entry"] else "")
            for index in collection["indexes"]
        )
        primary = collection["primary_key"] + (" (auto)" if collection["auto_increment"] else "")
        table.add_row(collection["name"], primary, indexes or "-", str(collection["count"]))
    console.print(table)


@app.command()
def backup(
    name: str = typer.Argument(..., help="Database name."),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Snapshot file. Defaults to <home>/backups/<name>-<timestamp>.json.",
        dir_okay=False,
    ),
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON."),
):
    """
    Writes a JSON snapshot of every collection of a database.
    """
    _require_existing(name, json_output)
    try:
        snapshot = asyncio.run(_backup(name))
    except ShelfError as e:
        _fail(str(e), json_output)

    if output is None:
        paths = CLIConfig.paths()
        paths.ensure_dirs()
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        output = paths.backups_dir / f"{name}-{stamp}.json"
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(snapshot, indent=2))
    logger.info(f"Wrote snapshot of '{name}' to {output}")

    counts = {c["name"]: len(c["docs"]) for c in snapshot["collections"]}
    if json_output:
        typer.echo(json.dumps({"status": "ok", "file": str(output), "version": snapshot["version"], "counts": counts}))
        return
    console.print(f"[green]Backed up '{escape(name)}' to {escape(str(output))}[/green]")
    for collection, count in counts.items():
        console.print(f"  {escape(collection)}: {count}")


@app.command()
def restore(
    name: str = typer.Argument(..., help="Database name."),
    snapshot_file: Path = typer.Argument(..., help="Snapshot JSON written by 'backup'.", exists=True, dir_okay=False),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace records that already exist."),
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON."),
):
    """
    Restores a snapshot into an existing database.
    """
    _require_existing(name, json_output)
    try:
        payload = json.loads(snapshot_file.read_text())
    except json.JSONDecodeError as e:
        _fail(f"{snapshot_file} is not valid JSON: {e}", json_output)

    try:
        counts = asyncio.run(_restore(name, payload, overwrite))
    except ShelfError as e:
        _fail(str(e), json_output)

    if json_output:
        typer.echo(json.dumps({"status": "ok", "counts": counts}))
        return
    console.print(f"[green]Restored {sum(counts.values())} records into '{escape(name)}'[/green]")
    for collection, count in counts.items():
        console.print(f"  {escape(collection)}: {count}")


@app.command()
def drop(
    name: str = typer.Argument(..., help="Database name."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON."),
):
    """
    Deletes a database file.
    """
    _require_existing(name, json_output)
    if not yes:
        if json_output:
            _fail("Refusing to delete without --yes", json_output)
        typer.confirm(f"Delete database '{name}'?", abort=True)
    try:
        existed = asyncio.run(_drop(name))
    except ShelfError as e:
        _fail(str(e), json_output)

    if json_output:
        typer.echo(json.dumps({"status": "ok", "deleted": existed}))
        return
    console.print(f"[green]Deleted database '{escape(name)}'[/green]")


if __name__ == "__main__":
    app()
