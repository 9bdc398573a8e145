"""
CLI interface for breakage export.

Records breakage entries and runs the internal and public exports.
"""

import logging
import sqlite3
import sys
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from breakage_export.config.loader import AppConfig, default_config, load_app_config
from breakage_export.core.catalog import import_products as import_catalog
from breakage_export.core.channels import InternalChannel, PublicChannel
from breakage_export.core.errors import ExportError, ReasonError, ValidationError
from breakage_export.core.targets import DirectoryGrant
from breakage_export.storage.repository import (
    EntryRepository,
    initialize_schema,
    seed_demo_products,
)

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


def _configure_logging(level: int) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True
    )


def _config(ctx: typer.Context) -> AppConfig:
    return ctx.obj if isinstance(ctx.obj, AppConfig) else default_config()


def _repository(ctx: typer.Context) -> EntryRepository:
    return EntryRepository(_config(ctx).database.path)


def _parse_date(value: Optional[str]) -> date:
    if value is None:
        return date.today()
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise typer.BadParameter(f"Expected YYYY-MM-DD, got {value!r}")


def _print_errors(errors: List[ReasonError]) -> None:
    for error in errors:
        console.print(f"[red]✗[/] {error}")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file"
    )
):
    """Breakage export CLI."""
    try:
        app_config = load_app_config(str(config)) if config else default_config()
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    ctx.obj = app_config
    _configure_logging(app_config.logging.level_number)
    if ctx.invoked_subcommand is None:
        console.print("Breakage Export - Use --help to see available commands")


@app.command()
def init(
    ctx: typer.Context,
    demo_products: bool = typer.Option(
        False,
        "--demo-products",
        help="Also load the demo product catalog"
    )
):
    """Initialize the entry store database."""
    db_path = _config(ctx).database.path
    try:
        initialize_schema(db_path)
        if demo_products:
            count = seed_demo_products(db_path)
            console.print(f"[green]✓[/] {count} demo products loaded")
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except sqlite3.Error as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def record(
    ctx: typer.Context,
    product_code: str = typer.Argument(..., help="Product code"),
    reason_code: str = typer.Argument(..., help="Reason code, e.g. 01"),
    quantity: str = typer.Argument(..., help="Quantity to add"),
    entry_date: Optional[str] = typer.Option(
        None,
        "--date",
        "-d",
        help="Entry date as YYYY-MM-DD (defaults to today)"
    )
):
    """Record a breakage quantity, adding to any entry of the same day."""
    day = _parse_date(entry_date)
    repository = _repository(ctx)
    try:
        reason = repository.get_reason_by_code(reason_code)
        if reason is None:
            console.print(f"[red]Error:[/] unknown reason {reason_code}")
            sys.exit(EXIT_CODE_FAIL)

        repository.upsert_entry(product_code, reason.id, quantity, day)
        total = repository.total_for(product_code, reason.id, day)
        console.print(
            f"[green]✓[/] {product_code} / motivo {reason.code} on {day.isoformat()}: total {total}"
        )
        sys.exit(EXIT_CODE_PASS)
    except ValidationError as e:
        console.print(f"[red]Invalid entry:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except sqlite3.Error as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def total(
    ctx: typer.Context,
    product_code: str = typer.Argument(..., help="Product code"),
    reason_code: str = typer.Argument(..., help="Reason code, e.g. 01"),
    entry_date: Optional[str] = typer.Option(None, "--date", "-d", help="YYYY-MM-DD")
):
    """Show the recorded quantity for a product, reason and day."""
    day = _parse_date(entry_date)
    repository = _repository(ctx)
    reason = repository.get_reason_by_code(reason_code)
    if reason is None:
        console.print(f"[red]Error:[/] unknown reason {reason_code}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(str(repository.total_for(product_code, reason.id, day)))


@app.command("export-internal")
def export_internal(ctx: typer.Context):
    """Write a snapshot of all entries into the app-private tree."""
    channel = InternalChannel(_repository(ctx), Path(_config(ctx).export.private_root))
    result = channel.export()
    _report_internal(result)


@app.command("export-day")
def export_day(
    ctx: typer.Context,
    entry_date: Optional[str] = typer.Option(None, "--date", "-d", help="YYYY-MM-DD")
):
    """Write one day's entries into the app-private tree."""
    day = _parse_date(entry_date)
    channel = InternalChannel(_repository(ctx), Path(_config(ctx).export.private_root))
    result = channel.export_day(day)
    _report_internal(result)


def _report_internal(result) -> None:
    if result.success:
        console.print(f"[green]✓[/] {result.message}")
    else:
        console.print(f"[yellow]{result.message}[/]")
    _print_errors(result.errors)
    sys.exit(EXIT_CODE_PASS if result.success else EXIT_CODE_FAIL)


@app.command("export-public")
def export_public(
    ctx: typer.Context,
    directory: Optional[Path] = typer.Option(
        None,
        "--directory",
        help="External directory to write into"
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Grant directory access without asking"
    )
):
    """Flush the unsynchronized backlog into an external directory."""
    default_root = _config(ctx).export.public_root

    def request_access() -> DirectoryGrant:
        target = directory or Path(typer.prompt("Export directory", default=default_root or "."))
        if not target.is_dir():
            console.print(f"[red]Not a directory:[/] {target}")
            return DirectoryGrant(granted=False)
        if not yes and not typer.confirm(f"Allow writing export files to {target}?"):
            return DirectoryGrant(granted=False)
        return DirectoryGrant(granted=True, directory_handle=target)

    channel = PublicChannel(_repository(ctx), request_access)
    try:
        result = channel.export()
    except ExportError as e:
        console.print(f"[red]Export aborted:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if result.success:
        console.print(f"[green]✓[/] {result.message}")
        for name in result.saved_files:
            console.print(f"  {name}")
        console.print(f"Location: {result.location}")
    else:
        console.print(f"[yellow]{result.message}[/]")
    _print_errors(result.errors)
    sys.exit(EXIT_CODE_PASS if result.success else EXIT_CODE_FAIL)


@app.command("list-files")
def list_files(ctx: typer.Context):
    """List files written by the internal export."""
    channel = InternalChannel(_repository(ctx), Path(_config(ctx).export.private_root))
    groups = channel.list_files()
    if not groups:
        console.print("[dim]No exported files found.[/]")
        return

    table = Table(title="Exported files")
    table.add_column("Reason")
    table.add_column("Files")
    for group in groups:
        table.add_row(group.reason_dir, "\n".join(group.files))
    console.print(table)


@app.command("import-products")
def import_products(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="Pipe-delimited product catalog file")
):
    """Import products from a code|name|UN/KG|price|club_price file."""
    try:
        with open(file, 'r', encoding='utf-8') as f:
            result = import_catalog(f, _repository(ctx))
    except OSError as e:
        console.print(f"[red]Error reading catalog:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] {result.message}")
    for error in result.errors:
        console.print(f"[yellow]![/] {error}")
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
