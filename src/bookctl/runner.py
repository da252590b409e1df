from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from loguru import logger
from pymongo.collection import Collection
from bson.errors import BSONError
from pymongo.errors import PyMongoError

from bookctl import queries
from bookctl.catalog_db import CatalogClient, CatalogError


class StepKind(str, Enum):
    books = "books"
    listings = "listings"
    updated = "updated"
    deleted = "deleted"
    genre_prices = "genre_prices"
    author_counts = "author_counts"
    decade_counts = "decade_counts"
    index = "index"
    explain = "explain"


@dataclass(slots=True)
class RunOptions:
    genre: str = "Fiction"
    published_after: int = 1950
    author: str = "George Orwell"
    update_title: str = "1984"
    update_price: float = 12.99
    delete_title: str = "Moby Dick"
    recent_after: int = 2010
    page_size: int = queries.DEFAULT_PAGE_SIZE
    top_author_limit: int = 1
    explain_title: str = "1984"


@dataclass(slots=True)
class Step:
    key: str
    title: str
    kind: StepKind
    action: Callable[[Collection], Any]


@dataclass(slots=True)
class StepResult:
    key: str
    title: str
    kind: StepKind
    value: Any


@dataclass(slots=True)
class RunReport:
    results: list[StepResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failure: str | None = None
    failed_step: str | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None


def build_steps(options: RunOptions | None = None) -> list[Step]:
    opts = options or RunOptions()
    return [
        Step(
            "genre",
            f"Books in {opts.genre} genre",
            StepKind.books,
            lambda c: queries.find_by_genre(c, opts.genre),
        ),
        Step(
            "published_after",
            f"Books published after {opts.published_after}",
            StepKind.books,
            lambda c: queries.find_published_after(c, opts.published_after),
        ),
        Step(
            "author",
            f"Books by {opts.author}",
            StepKind.books,
            lambda c: queries.find_by_author(c, opts.author),
        ),
        Step(
            "update_price",
            f"Price of {opts.update_title!r} set to {opts.update_price}",
            StepKind.updated,
            lambda c: queries.update_price(c, opts.update_title, opts.update_price),
        ),
        Step(
            "delete_title",
            f"Delete {opts.delete_title!r}",
            StepKind.deleted,
            lambda c: queries.delete_by_title(c, opts.delete_title),
        ),
        Step(
            "in_stock_recent",
            f"Books in stock published after {opts.recent_after}",
            StepKind.books,
            lambda c: queries.find_in_stock_published_after(c, opts.recent_after),
        ),
        Step(
            "projection",
            "Books with projection (title, author, price)",
            StepKind.listings,
            queries.find_listings,
        ),
        Step(
            "price_asc",
            "Books sorted by price (ascending)",
            StepKind.books,
            lambda c: queries.find_sorted_by_price(c, descending=False),
        ),
        Step(
            "price_desc",
            "Books sorted by price (descending)",
            StepKind.books,
            lambda c: queries.find_sorted_by_price(c, descending=True),
        ),
        Step(
            "page_1",
            f"Page 1 ({opts.page_size} books)",
            StepKind.books,
            lambda c: queries.find_page(c, 1, opts.page_size),
        ),
        Step(
            "page_2",
            f"Page 2 (next {opts.page_size} books)",
            StepKind.books,
            lambda c: queries.find_page(c, 2, opts.page_size),
        ),
        Step(
            "avg_price_by_genre",
            "Average price by genre",
            StepKind.genre_prices,
            queries.average_price_by_genre,
        ),
        Step(
            "top_author",
            "Author with most books",
            StepKind.author_counts,
            lambda c: queries.top_authors(c, opts.top_author_limit),
        ),
        Step(
            "by_decade",
            "Books grouped by publication decade",
            StepKind.decade_counts,
            queries.count_by_decade,
        ),
        Step(
            "title_index",
            "Index on 'title'",
            StepKind.index,
            queries.create_title_index,
        ),
        Step(
            "author_year_index",
            "Compound index on 'author' and 'published_year'",
            StepKind.index,
            queries.create_author_year_index,
        ),
        Step(
            "explain_title",
            f"Explain query on title {opts.explain_title!r}",
            StepKind.explain,
            lambda c: queries.explain_title_lookup(c, opts.explain_title),
        ),
    ]


def run_catalog(
    client: CatalogClient,
    steps: list[Step],
    sink: Callable[[StepResult], None],
    *,
    on_connect: Callable[[], None] | None = None,
) -> RunReport:
    """Run ``steps`` in order, stopping at the first failure.

    Each result is passed to ``sink`` as soon as its step finishes. Closing the
    client is left to the caller's ``with`` block.
    """
    report = RunReport()
    remaining = [step.key for step in steps]

    try:
        client.ping()
        if on_connect is not None:
            on_connect()

        collection = client.books
        for step in steps:
            report.failed_step = step.key
            logger.debug(f"Running step {step.key}")
            try:
                value = step.action(collection)
            except (PyMongoError, BSONError) as exc:
                raise CatalogError(f"{step.title} failed: {exc}") from exc
            result = StepResult(key=step.key, title=step.title, kind=step.kind, value=value)
            report.results.append(result)
            remaining.remove(step.key)
            sink(result)
        report.failed_step = None
    except (CatalogError, PyMongoError, BSONError) as exc:
        logger.debug(f"Run aborted: {exc}")
        report.failure = str(exc)
        report.skipped = [key for key in remaining if key != report.failed_step]

    return report
