from __future__ import annotations

import json
from dataclasses import asdict
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, NotRequired, TypedDict

from rich.console import RenderableType
from rich.table import Table

from bookctl.books import AuthorCount, Book, BookListing, DecadeCount, GenrePrice, book_to_dict
from bookctl.queries import summarize_execution_stats
from bookctl.runner import RunReport, StepKind, StepResult


class StepPayload(TypedDict):
    key: str
    status: str
    title: NotRequired[str]
    kind: NotRequired[str]
    result: NotRequired[Any]


class RunPayload(TypedDict):
    run_id: str
    database: str
    collection: str
    started_at: str
    completed_at: str
    ok: bool
    failure: str | None
    steps: list[StepPayload]


def iso_now() -> str:
    return datetime.now(UTC).isoformat()


def render_books_table(title: str, books: list[Book]) -> Table:
    table = Table(title=title)
    table.add_column("Title", style="bold")
    table.add_column("Author", style="magenta")
    table.add_column("Genre")
    table.add_column("Year", justify="right")
    table.add_column("Price", justify="right", style="cyan")
    table.add_column("In Stock", justify="center")

    for book in books:
        table.add_row(
            book.title,
            book.author,
            book.genre,
            str(book.published_year),
            f"{book.price:.2f}",
            "yes" if book.in_stock else "no",
        )

    return table


def render_listings_table(title: str, listings: list[BookListing]) -> Table:
    table = Table(title=title)
    table.add_column("Title", style="bold")
    table.add_column("Author", style="magenta")
    table.add_column("Price", justify="right", style="cyan")

    for item in listings:
        table.add_row(item.title, item.author, f"{item.price:.2f}")

    return table


def render_genre_prices_table(title: str, rows: list[GenrePrice]) -> Table:
    table = Table(title=title)
    table.add_column("Genre", style="bold")
    table.add_column("Average Price", justify="right", style="cyan")
    for row in rows:
        table.add_row(row.genre or "-", f"{row.average_price:.2f}")
    return table


def render_author_counts_table(title: str, rows: list[AuthorCount]) -> Table:
    table = Table(title=title)
    table.add_column("Author", style="bold")
    table.add_column("Books", justify="right", style="cyan")
    for row in rows:
        table.add_row(row.author or "-", str(row.count))
    return table


def render_decade_counts_table(title: str, rows: list[DecadeCount]) -> Table:
    table = Table(title=title)
    table.add_column("Decade", style="bold")
    table.add_column("Books", justify="right", style="cyan")
    for row in rows:
        table.add_row(row.label, str(row.count))
    return table


def render_explain_table(title: str, stats: dict[str, Any]) -> Table:
    summary = summarize_execution_stats(stats)
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value")

    def _fmt(value: int | None) -> str:
        return "N/A" if value is None else str(value)

    table.add_row("Plan", summary.plan)
    table.add_row("Uses index", "yes" if summary.uses_index else "no")
    table.add_row("Returned", _fmt(summary.n_returned))
    table.add_row("Keys examined", _fmt(summary.keys_examined))
    table.add_row("Docs examined", _fmt(summary.docs_examined))
    table.add_row("Time (ms)", _fmt(summary.execution_time_ms))
    return table


def render_step(result: StepResult) -> RenderableType:
    kind = result.kind
    if kind is StepKind.books:
        return render_books_table(result.title, result.value)
    if kind is StepKind.listings:
        return render_listings_table(result.title, result.value)
    if kind is StepKind.genre_prices:
        return render_genre_prices_table(result.title, result.value)
    if kind is StepKind.author_counts:
        return render_author_counts_table(result.title, result.value)
    if kind is StepKind.decade_counts:
        return render_decade_counts_table(result.title, result.value)
    if kind is StepKind.updated:
        return f"[green]Updated {result.value} document(s):[/green] {result.title}"
    if kind is StepKind.deleted:
        return f"[green]Deleted {result.value} document(s):[/green] {result.title}"
    if kind is StepKind.index:
        return f"[green]Index created:[/green] {result.value} ({result.title})"
    if kind is StepKind.explain:
        return render_explain_table(result.title, result.value)
    raise ValueError(f"Unknown step kind: {kind!r}")


def step_result_to_dict(result: StepResult) -> dict[str, Any]:
    kind = result.kind
    value = result.value
    if kind in {StepKind.books, StepKind.listings}:
        payload: Any = [book_to_dict(item) for item in value]
    elif kind is StepKind.decade_counts:
        payload = [{"decade": row.decade, "label": row.label, "count": row.count} for row in value]
    elif kind in {StepKind.genre_prices, StepKind.author_counts}:
        payload = [asdict(row) for row in value]
    elif kind is StepKind.updated:
        payload = {"modified_count": value}
    elif kind is StepKind.deleted:
        payload = {"deleted_count": value}
    elif kind is StepKind.index:
        payload = {"name": value}
    else:
        payload = value
    return {"key": result.key, "title": result.title, "kind": kind.value, "result": payload}


def build_run_payload(
    report: RunReport,
    *,
    run_id: str,
    database: str,
    collection: str,
    started_at: str,
    completed_at: str,
) -> RunPayload:
    steps: list[StepPayload] = []
    for result in report.results:
        item = step_result_to_dict(result)
        steps.append(
            {
                "key": item["key"],
                "title": item["title"],
                "kind": item["kind"],
                "status": "ok",
                "result": item["result"],
            }
        )
    if report.failed_step is not None:
        steps.append({"key": report.failed_step, "status": "failed"})
    for key in report.skipped:
        steps.append({"key": key, "status": "skipped"})

    return {
        "run_id": run_id,
        "database": database,
        "collection": collection,
        "started_at": started_at,
        "completed_at": completed_at,
        "ok": report.ok,
        "failure": report.failure,
        "steps": steps,
    }


def dumps(payload: Any) -> str:
    # Explain output can carry BSON values (ObjectId, Timestamp) that json cannot encode.
    return json.dumps(payload, indent=2, sort_keys=True, default=str)


def export_run_json(payload: RunPayload, dest: Path) -> Path:
    """Write the run transcript to ``dest`` and return the written path."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_text(dumps(payload) + "\n", encoding="utf-8")
    return dest
