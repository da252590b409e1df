"""Queries, mutations, aggregations and index calls against the books collection.

Every function takes the collection explicitly so callers decide which
connection (or fake) it runs against.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from loguru import logger
from pymongo import ASCENDING, DESCENDING
from pymongo.collection import Collection

from bookctl.books import (
    AuthorCount,
    Book,
    BookListing,
    BookValidationError,
    DecadeCount,
    GenrePrice,
    book_from_document,
    listing_from_document,
)
from bookctl.catalog_db import CatalogError

DEFAULT_PAGE_SIZE = 5
PAGINATION_SORT = [("title", ASCENDING), ("_id", ASCENDING)]
LISTING_PROJECTION = {"title": 1, "author": 1, "price": 1, "_id": 0}


def _books(cursor: Any) -> list[Book]:
    return [book_from_document(doc) for doc in cursor]


def find_by_genre(collection: Collection, genre: str) -> list[Book]:
    return _books(collection.find({"genre": genre}))


def find_published_after(collection: Collection, year: int) -> list[Book]:
    return _books(collection.find({"published_year": {"$gt": year}}))


def find_by_author(collection: Collection, author: str) -> list[Book]:
    return _books(collection.find({"author": author}))


def find_by_title(collection: Collection, title: str) -> list[Book]:
    return _books(collection.find({"title": title}))


def find_in_stock_published_after(collection: Collection, year: int) -> list[Book]:
    return _books(collection.find({"in_stock": True, "published_year": {"$gt": year}}))


def find_listings(collection: Collection) -> list[BookListing]:
    return [listing_from_document(doc) for doc in collection.find({}, LISTING_PROJECTION)]


def find_sorted_by_price(collection: Collection, *, descending: bool = False) -> list[Book]:
    direction = DESCENDING if descending else ASCENDING
    return _books(collection.find({}).sort([("price", direction)]))


def find_page(collection: Collection, page: int, page_size: int = DEFAULT_PAGE_SIZE) -> list[Book]:
    """Return one page of books in title order.

    Pages are 1-based. The ``_id`` tie-break keeps books that share a title in
    a fixed order, so consecutive pages neither repeat nor drop documents.
    """
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")
    cursor = collection.find({}).sort(PAGINATION_SORT).skip((page - 1) * page_size).limit(page_size)
    return _books(cursor)


def update_price(collection: Collection, title: str, price: float) -> int:
    result = collection.update_one({"title": title}, {"$set": {"price": price}})
    logger.debug(
        f"update_one title={title!r}: matched={result.matched_count} modified={result.modified_count}"
    )
    return result.modified_count


def delete_by_title(collection: Collection, title: str) -> int:
    result = collection.delete_one({"title": title})
    logger.debug(f"delete_one title={title!r}: deleted={result.deleted_count}")
    return result.deleted_count


AVERAGE_PRICE_BY_GENRE_PIPELINE: list[dict[str, Any]] = [
    {"$group": {"_id": "$genre", "avgPrice": {"$avg": "$price"}}},
    {"$sort": {"avgPrice": -1, "_id": 1}},
]

DECADE_PIPELINE: list[dict[str, Any]] = [
    {"$match": {"published_year": {"$type": ["int", "long"]}}},
    {
        "$group": {
            "_id": {"$subtract": ["$published_year", {"$mod": ["$published_year", 10]}]},
            "count": {"$sum": 1},
        }
    },
    {"$sort": {"_id": 1}},
]


def top_authors_pipeline(limit: int) -> list[dict[str, Any]]:
    return [
        {"$group": {"_id": "$author", "count": {"$sum": 1}}},
        {"$sort": {"count": -1, "_id": 1}},
        {"$limit": limit},
    ]


def average_price_by_genre(collection: Collection) -> list[GenrePrice]:
    rows: list[GenrePrice] = []
    for row in collection.aggregate(AVERAGE_PRICE_BY_GENRE_PIPELINE):
        avg = row.get("avgPrice")
        if isinstance(avg, bool) or not isinstance(avg, (int, float)):
            raise BookValidationError(f"Genre {row.get('_id')!r} has no numeric prices to average")
        genre = row.get("_id")
        rows.append(GenrePrice(genre="" if genre is None else str(genre), average_price=float(avg)))
    return rows


def top_authors(collection: Collection, limit: int = 1) -> list[AuthorCount]:
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    return [
        AuthorCount(author="" if row.get("_id") is None else str(row["_id"]), count=int(row["count"]))
        for row in collection.aggregate(top_authors_pipeline(limit))
    ]


def count_by_decade(collection: Collection) -> list[DecadeCount]:
    """Count books per decade, oldest first.

    Sorting happens on the numeric decade inside the pipeline; the
    ``"1950s"`` style label is only produced for display.
    """
    rows: list[DecadeCount] = []
    for row in collection.aggregate(DECADE_PIPELINE):
        decade = row.get("_id")
        if isinstance(decade, bool) or not isinstance(decade, int):
            raise BookValidationError(f"Decade group {decade!r} is not an integer year")
        rows.append(DecadeCount(decade=decade, count=int(row["count"])))
    return rows


def create_title_index(collection: Collection) -> str:
    name = collection.create_index([("title", ASCENDING)])
    logger.debug(f"Index ready: {name}")
    return name


def create_author_year_index(collection: Collection) -> str:
    name = collection.create_index([("author", ASCENDING), ("published_year", DESCENDING)])
    logger.debug(f"Index ready: {name}")
    return name


def list_index_names(collection: Collection) -> list[str]:
    return sorted(collection.index_information().keys())


def explain_title_lookup(collection: Collection, title: str = "1984") -> dict[str, Any]:
    """Return the ``executionStats`` section of an explain for ``{"title": title}``."""
    reply = collection.database.command(
        {
            "explain": {"find": collection.name, "filter": {"title": title}},
            "verbosity": "executionStats",
        }
    )
    stats = reply.get("executionStats")
    if not isinstance(stats, Mapping):
        raise CatalogError("Explain reply did not include executionStats.")
    return dict(stats)


@dataclass(slots=True)
class ExplainSummary:
    n_returned: int | None
    keys_examined: int | None
    docs_examined: int | None
    execution_time_ms: int | None
    stages: list[str] = field(default_factory=list)

    @property
    def uses_index(self) -> bool:
        return "IXSCAN" in self.stages

    @property
    def plan(self) -> str:
        return " > ".join(self.stages) if self.stages else "unknown"


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def summarize_execution_stats(stats: Mapping[str, Any]) -> ExplainSummary:
    stages: list[str] = []
    stage = stats.get("executionStages")
    while isinstance(stage, Mapping):
        name = stage.get("stage")
        if isinstance(name, str):
            stages.append(name)
        stage = stage.get("inputStage")

    return ExplainSummary(
        n_returned=_int_or_none(stats.get("nReturned")),
        keys_examined=_int_or_none(stats.get("totalKeysExamined")),
        docs_examined=_int_or_none(stats.get("totalDocsExamined")),
        execution_time_ms=_int_or_none(stats.get("executionTimeMillis")),
        stages=stages,
    )
