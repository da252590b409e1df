from __future__ import annotations

import sys
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Callable

import typer
from bson.errors import BSONError
from loguru import logger
from pymongo.errors import PyMongoError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from bookctl.catalog_db import CatalogClient, CatalogError
from bookctl.config import (
    URI_ENV_VAR,
    AppConfig,
    ConfigError,
    load_config,
    redact_uri,
    resolve_mongo_uri,
    set_collection,
    set_db_name,
    set_mongo_uri,
    validate_name,
)
from bookctl.queries import DEFAULT_PAGE_SIZE
from bookctl.reports import build_run_payload, dumps, export_run_json, iso_now, render_step
from bookctl.runner import RunOptions, StepResult, build_steps, run_catalog

app = typer.Typer(help="Book catalog query runner for MongoDB")
config_app = typer.Typer(help="Manage local bookctl config")

app.add_typer(config_app, name="config")

console = Console()


def _fail(message: str, *, code: int = 1) -> None:
    console.print(f"[red]{escape(message)}[/red]")
    raise typer.Exit(code=code)


def _load_config_or_fail() -> AppConfig:
    try:
        return load_config()
    except ConfigError as exc:
        _fail(str(exc))
    raise AssertionError("unreachable")


def _resolve_target_or_fail(
    cfg: AppConfig,
    uri: str | None,
    db_name: str | None,
    collection: str | None,
) -> AppConfig:
    try:
        return replace(
            cfg,
            mongo_uri=resolve_mongo_uri(uri, cfg),
            db_name=validate_name(db_name, key="db_name") if db_name else cfg.db_name,
            collection=validate_name(collection, key="collection") if collection else cfg.collection,
        )
    except ConfigError as exc:
        _fail(str(exc))
    raise AssertionError("unreachable")


def _run_with_client(
    target: AppConfig,
    action: Callable[[CatalogClient], int | None],
    *,
    announce: bool = True,
) -> int | None:
    try:
        with CatalogClient(
            target.mongo_uri,
            db_name=target.db_name,
            collection=target.collection,
            timeout_ms=target.timeout_ms,
        ) as client:
            return action(client)
    except (CatalogError, PyMongoError, BSONError) as exc:
        _fail(f"Error: {exc}")
    finally:
        if announce:
            console.print("\nConnection closed.")
    raise AssertionError("unreachable")


def _render_config_table(cfg: AppConfig) -> Table:
    table = Table(title="bookctl Config")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("mongo_uri", redact_uri(cfg.mongo_uri))
    table.add_row("effective_uri", redact_uri(resolve_mongo_uri(None, cfg)))
    table.add_row("db_name", cfg.db_name)
    table.add_row("collection", cfg.collection)
    table.add_row("timeout_ms", str(cfg.timeout_ms))
    return table


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log each database call to stderr."),
) -> None:
    logger.remove()
    if verbose:
        logger.add(sys.stderr, level="DEBUG")


@config_app.command("set-uri")
def config_set_uri(uri: str) -> None:
    """Persist the default MongoDB connection string."""
    try:
        cfg = set_mongo_uri(uri)
    except ConfigError as exc:
        _fail(str(exc))
    console.print(f"[green]Saved mongo_uri:[/green] {redact_uri(cfg.mongo_uri)}")


@config_app.command("set-db")
def config_set_db(name: str) -> None:
    """Persist the default database name."""
    try:
        cfg = set_db_name(name)
    except ConfigError as exc:
        _fail(str(exc))
    console.print(f"[green]Saved db_name:[/green] {cfg.db_name}")


@config_app.command("set-collection")
def config_set_collection(name: str) -> None:
    """Persist the default collection name."""
    try:
        cfg = set_collection(name)
    except ConfigError as exc:
        _fail(str(exc))
    console.print(f"[green]Saved collection:[/green] {cfg.collection}")


@config_app.command("show")
def config_show() -> None:
    """Show effective local config."""
    cfg = _load_config_or_fail()
    try:
        table = _render_config_table(cfg)
    except ConfigError as exc:
        _fail(f"{URI_ENV_VAR}: {exc}")
    console.print(table)


@app.command("test")
def test_connection(
    uri: str | None = typer.Option(None, "--uri", help=f"MongoDB URI override (or set {URI_ENV_VAR})."),
    db_name: str | None = typer.Option(None, "--db", help="Database name override."),
    collection: str | None = typer.Option(None, "--collection", help="Collection name override."),
) -> None:
    """Check that the database is reachable and count the books."""
    cfg = _load_config_or_fail()
    target = _resolve_target_or_fail(cfg, uri, db_name, collection)

    def action(client: CatalogClient) -> int:
        client.ping()
        count = client.count_books()
        table = Table(title="MongoDB connectivity test")
        table.add_column("Check", style="cyan")
        table.add_column("Result", style="green")
        table.add_row("URI", redact_uri(target.mongo_uri))
        table.add_row("Ping", "OK")
        table.add_row("Collection", f"{target.db_name}.{target.collection}")
        table.add_row("Documents", str(count))
        console.print(table)
        console.print("[green]Connectivity test passed.[/green]")
        return 0

    _run_with_client(target, action, announce=False)


@app.command("run")
def run(
    uri: str | None = typer.Option(None, "--uri", help=f"MongoDB URI override (or set {URI_ENV_VAR})."),
    db_name: str | None = typer.Option(None, "--db", help="Database name override."),
    collection: str | None = typer.Option(None, "--collection", help="Collection name override."),
    page_size: int = typer.Option(DEFAULT_PAGE_SIZE, "--page-size", help="Books per page for the pagination steps."),
    json_output: bool = typer.Option(False, "--json", help="Emit the run as one JSON document."),
    export: Path | None = typer.Option(None, "--export", help="Also write the run transcript as JSON."),
) -> None:
    """Run the full batch of catalog queries, updates, aggregations and index calls."""
    if page_size <= 0:
        _fail("--page-size must be positive.")
    cfg = _load_config_or_fail()
    target = _resolve_target_or_fail(cfg, uri, db_name, collection)
    steps = build_steps(RunOptions(page_size=page_size))
    run_id = str(uuid.uuid4())
    started_at = iso_now()

    def sink(result: StepResult) -> None:
        if json_output:
            return
        console.print()
        console.print(render_step(result))

    def on_connect() -> None:
        if not json_output:
            console.print("Connected to MongoDB")

    def action(client: CatalogClient) -> int:
        report = run_catalog(client, steps, sink, on_connect=on_connect)
        payload = build_run_payload(
            report,
            run_id=run_id,
            database=target.db_name,
            collection=target.collection,
            started_at=started_at,
            completed_at=iso_now(),
        )
        if json_output:
            console.print(dumps(payload), soft_wrap=True, markup=False, highlight=False, emoji=False)
        elif report.failure is not None:
            console.print(f"[red]Error: {escape(report.failure)}[/red]")
            if report.skipped:
                console.print(f"[yellow]Skipped {len(report.skipped)} remaining step(s).[/yellow]")
        if export is not None:
            written = export_run_json(payload, export.expanduser())
            if not json_output:
                console.print(f"[green]Run transcript:[/green] {written}")
        return 0 if report.ok else 1

    exit_code = _run_with_client(target, action, announce=not json_output)
    if exit_code:
        raise typer.Exit(code=exit_code)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
