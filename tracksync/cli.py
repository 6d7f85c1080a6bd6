import asyncio
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import click
import typer
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn

from .config import CONFIG_FILE, config, console
from .database import CatalogStore
from .dupes import find_duplicates
from .errors import TracksyncError, ValidationError
from .filter import DEFAULT_FILTER, load_filter, validate
from .pipeline import recover_partial_copies, sync_catalogs
from .scanner import ScanResult, add_directories, update_catalog

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Sync music libraries to neatly ordered directories.",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Show configuration")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False, show_time=False)],
        force=True,
    )


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    _setup_logging("DEBUG" if verbose else config["LOG_LEVEL"])


@contextmanager
def _reported_errors() -> Iterator[None]:
    """Turn tracksync errors into an error message and exit status 1."""
    try:
        yield
    except TracksyncError as e:
        logger.debug(f"error details: {e.details}")
        console.print(f"[bold red]Error:[/bold red] {e}", highlight=False)
        raise typer.Exit(1)


def _database_dir(database_path: Optional[Path]) -> Path:
    return database_path or config["DATABASE_PATH"]


def _require(value: Optional[str], name: str) -> str:
    if not value:
        raise ValidationError(f"missing {name}")
    return value


def _destination_dir(destination: Optional[str]) -> str:
    """The --destination value with "~" expanded, as used for both catalog and music."""
    return os.path.expanduser(_require(destination, "destination"))


def _scan(coro_factory) -> ScanResult:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task(description="Scanning...", total=None)

        def on_track(track) -> None:
            progress.update(task, description=f"Found track: {track}")

        return asyncio.run(coro_factory(on_track))


@app.command()
def add(
    sources: Optional[List[str]] = typer.Option(
        None,
        "--source",
        "-s",
        help="A path in which to look for music files. Repeat for multiple sources.",
    ),
    database_path: Optional[Path] = typer.Option(
        None, "--database-path", "-d", help="Directory holding the local catalog."
    ),
    destination: bool = typer.Option(
        False, "--destination", help="Mark the catalog as a destination one."
    ),
):
    """Add a directory's content to the catalog."""
    with _reported_errors():
        if not sources:
            raise ValidationError("missing source(s)")
        catalog = CatalogStore.open_or_create(_database_dir(database_path), destination)
        result = _scan(lambda on_track: add_directories(catalog, sources, on_track))

    console.print(
        f"[bold green]✓ Imported {result.new} tracks[/bold green]"
        + (f", skipped {result.duplicates} already known" if result.duplicates else "")
    )


@app.command()
def update(
    database_path: Optional[Path] = typer.Option(
        None, "--database-path", "-d", help="Directory holding the local catalog."
    ),
    destination: bool = typer.Option(
        False, "--destination", help="The catalog is a destination one."
    ),
):
    """Rescan previously added directories and drop tracks gone from disk."""
    with _reported_errors():
        catalog = CatalogStore.open_or_create(_database_dir(database_path), destination)
        result = _scan(lambda on_track: update_catalog(catalog, on_track))

    console.print(
        f"[bold green]✓ Imported {result.new} new tracks, "
        f"purged {result.purged} vanished tracks[/bold green]"
    )


@app.command()
def sync(
    destination: Optional[str] = typer.Option(
        None, "--destination", help="Where to store the destination catalog and music."
    ),
    database_path: Optional[Path] = typer.Option(
        None, "--database-path", "-d", help="Directory holding the local catalog."
    ),
    no_delete: bool = typer.Option(
        False, "--no-delete", help="Keep destination tracks missing from the source."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Only print what would be copied and deleted."
    ),
    link: bool = typer.Option(
        False, "--link", help="Hard-link files instead of copying them."
    ),
):
    """Sync the destination with the local catalog."""
    with _reported_errors():
        dest_dir = _destination_dir(destination)
        source = CatalogStore.open_or_create(_database_dir(database_path), False)
        dest = CatalogStore.open_or_create(dest_dir, True)
        predicate = load_filter(dest)
        result = sync_catalogs(
            source,
            dest,
            dest_dir,
            predicate=predicate,
            no_delete=no_delete,
            dry_run=dry_run,
            use_hardlink=link,
        )

    if dry_run:
        console.print(
            f"[yellow]Dry run: {len(result.plan.copy_set)} to copy, "
            f"{len(result.plan.delete_set)} to delete[/yellow]"
        )
        return
    console.print(
        f"[bold green]✓ Copied {len(result.copied)} tracks, "
        f"deleted {len(result.deleted)} tracks[/bold green]"
    )


@app.command()
def clean(
    destination: Optional[str] = typer.Option(
        None, "--destination", help="Destination to clean."
    ),
):
    """Remove tracks left behind by interrupted copies."""
    with _reported_errors():
        dest_dir = _destination_dir(destination)
        dest = CatalogStore.open_or_create(dest_dir, True)
        removed = recover_partial_copies(dest, dest_dir)

    console.print(f"[bold green]✓ Removed {len(removed)} partial copies[/bold green]")


@app.command()
def dupes(
    database_path: Optional[Path] = typer.Option(
        None, "--database-path", "-d", help="Directory holding the local catalog."
    ),
    threshold: Optional[float] = typer.Option(
        None,
        "--threshold",
        min=0.0,
        max=1.0,
        help="Minimum name similarity for likely duplicates (default from config).",
    ),
):
    """Find albums stored in more than one audio format."""
    with _reported_errors():
        catalog = CatalogStore.open_or_create(_database_dir(database_path), False)
        report = find_duplicates(catalog, threshold)

    for dupe in report.likely:
        console.print(
            "Maybe duplicate:\n"
            f'\t"{dupe.album}": "{dupe.duplicate}" (confidence: {dupe.score * 100:.1f}%)\n'
            f"\tat path {dupe.album_directory}, format {dupe.album_format}\n"
            f"\tat path {dupe.duplicate_directory}, format {dupe.duplicate_format}",
            markup=False,
            highlight=False,
        )

    for dupe in report.exact:
        console.print(
            f'Found "{dupe.title}" in {dupe.count} formats:', markup=False, highlight=False
        )
        for path, ext in dupe.locations:
            console.print(f"\t {path}: {ext}", markup=False, highlight=False)

    if not report.likely and not report.exact:
        console.print("[green]No duplicate albums found.[/green]")


@app.command(name="filter")
def filter_cmd(
    destination: Optional[str] = typer.Option(
        None, "--destination", help="Destination whose filter to read or change."
    ),
    read: bool = typer.Option(False, "--read", help="Print the stored filter."),
    file: Optional[Path] = typer.Option(
        None,
        "--file",
        help="Read the filter from this file instead of opening $EDITOR.",
    ),
):
    """Show or change the filter deciding which tracks a destination receives."""
    with _reported_errors():
        dest_dir = _destination_dir(destination)
        dest = CatalogStore.open_or_create(dest_dir, True)
        existing = dest.get_filter() or DEFAULT_FILTER

        if read:
            typer.echo(existing)
            return

        if file is None:
            edited = click.edit(existing, extension=".py")
            if edited is None:
                console.print("[yellow]Filter unchanged.[/yellow]")
                return
            source = edited
        else:
            try:
                source = file.read_text(encoding="utf-8")
            except OSError as e:
                raise ValidationError(f"Cannot read filter code path {file}: {e}")

        validate(source)
        dest.set_filter(source)

    console.print("[bold green]✓ Filter stored[/bold green]")


@config_app.command(name="show")
def config_show():
    """Show current configuration values."""
    console.print(f"[dim]config file: {CONFIG_FILE}[/dim]")
    for k, v in config.items():
        console.print(f"[cyan]{k}[/cyan]=[white]{v}[/white]")


app.add_typer(config_app, name="config")


if __name__ == "__main__":
    app()
