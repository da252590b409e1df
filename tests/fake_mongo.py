from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any


def _matches(doc: dict[str, Any], filter_: dict[str, Any]) -> bool:
    for key, expected in filter_.items():
        value = doc.get(key)
        if isinstance(expected, dict):
            for op, operand in expected.items():
                if op == "$gt":
                    if value is None or not value > operand:
                        return False
                else:
                    raise NotImplementedError(op)
        elif value != expected:
            return False
    return True


def _project(doc: dict[str, Any], projection: dict[str, int] | None) -> dict[str, Any]:
    if not projection:
        return dict(doc)
    included = [key for key, flag in projection.items() if flag and key != "_id"]
    out = {key: doc[key] for key in included if key in doc}
    if projection.get("_id", 1) and "_id" in doc:
        out["_id"] = doc["_id"]
    return out


class FakeCursor:
    def __init__(self, docs: list[dict[str, Any]]) -> None:
        self._docs = docs
        self.sort_spec: list[tuple[str, int]] | None = None
        self.skip_count = 0
        self.limit_count = 0

    def sort(self, spec: list[tuple[str, int]]) -> "FakeCursor":
        self.sort_spec = list(spec)
        return self

    def skip(self, count: int) -> "FakeCursor":
        self.skip_count = count
        return self

    def limit(self, count: int) -> "FakeCursor":
        self.limit_count = count
        return self

    def __iter__(self):
        docs = list(self._docs)
        for key, direction in reversed(self.sort_spec or []):
            docs.sort(key=lambda d: d.get(key), reverse=direction < 0)
        docs = docs[self.skip_count :]
        if self.limit_count:
            docs = docs[: self.limit_count]
        return iter(docs)


@dataclass
class FakeUpdateResult:
    matched_count: int
    modified_count: int


@dataclass
class FakeDeleteResult:
    deleted_count: int


class FakeDatabase:
    def __init__(self, explain_reply: dict[str, Any] | None = None) -> None:
        self.explain_reply = explain_reply or {}
        self.commands: list[dict[str, Any]] = []

    def command(self, command: dict[str, Any]) -> dict[str, Any]:
        self.commands.append(command)
        return self.explain_reply


class FakeCollection:
    name = "books"

    def __init__(
        self,
        docs: list[dict[str, Any]] | None = None,
        *,
        aggregate_rows: list[dict[str, Any]] | None = None,
        explain_reply: dict[str, Any] | None = None,
    ) -> None:
        self.docs = [copy.deepcopy(doc) for doc in (docs or [])]
        self.aggregate_rows = aggregate_rows or []
        self.database = FakeDatabase(explain_reply)
        self.find_calls: list[tuple[dict[str, Any], dict[str, int] | None]] = []
        self.cursors: list[FakeCursor] = []
        self.pipelines: list[list[dict[str, Any]]] = []
        self.indexes: dict[str, list[tuple[str, int]]] = {"_id_": [("_id", 1)]}

    def find(self, filter_: dict[str, Any] | None = None, projection: dict[str, int] | None = None) -> FakeCursor:
        filter_ = filter_ or {}
        self.find_calls.append((filter_, projection))
        matched = [_project(doc, projection) for doc in self.docs if _matches(doc, filter_)]
        cursor = FakeCursor(matched)
        self.cursors.append(cursor)
        return cursor

    def update_one(self, filter_: dict[str, Any], update: dict[str, Any]) -> FakeUpdateResult:
        for doc in self.docs:
            if _matches(doc, filter_):
                changes = update["$set"]
                modified = any(doc.get(key) != value for key, value in changes.items())
                doc.update(changes)
                return FakeUpdateResult(matched_count=1, modified_count=int(modified))
        return FakeUpdateResult(matched_count=0, modified_count=0)

    def delete_one(self, filter_: dict[str, Any]) -> FakeDeleteResult:
        for index, doc in enumerate(self.docs):
            if _matches(doc, filter_):
                del self.docs[index]
                return FakeDeleteResult(deleted_count=1)
        return FakeDeleteResult(deleted_count=0)

    def aggregate(self, pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
        self.pipelines.append(pipeline)
        return list(self.aggregate_rows)

    def create_index(self, keys: list[tuple[str, int]]) -> str:
        name = "_".join(f"{field}_{direction}" for field, direction in keys)
        self.indexes[name] = list(keys)
        return name

    def index_information(self) -> dict[str, Any]:
        return {name: {"key": keys} for name, keys in self.indexes.items()}


def make_book(
    _id: int,
    title: str,
    *,
    author: str = "Someone",
    genre: str = "Fiction",
    published_year: int = 2000,
    price: float = 10.0,
    in_stock: bool = True,
) -> dict[str, Any]:
    return {
        "_id": _id,
        "title": title,
        "author": author,
        "genre": genre,
        "published_year": published_year,
        "price": price,
        "in_stock": in_stock,
    }


def sample_books() -> list[dict[str, Any]]:
    return [
        make_book(1, "To Kill a Mockingbird", author="Harper Lee", published_year=1960, price=12.99),
        make_book(2, "1984", author="George Orwell", genre="Dystopian", published_year=1949, price=10.99),
        make_book(3, "The Great Gatsby", author="F. Scott Fitzgerald", published_year=1925, price=9.99),
        make_book(4, "Brave New World", author="Aldous Huxley", genre="Dystopian", published_year=1932, price=11.5, in_stock=False),
        make_book(5, "The Hobbit", author="J.R.R. Tolkien", genre="Fantasy", published_year=1937, price=14.99),
        make_book(6, "The Catcher in the Rye", author="J.D. Salinger", published_year=1951, price=8.99, in_stock=False),
        make_book(7, "Pride and Prejudice", author="Jane Austen", genre="Romance", published_year=1813, price=7.99),
        make_book(8, "The Lord of the Rings", author="J.R.R. Tolkien", genre="Fantasy", published_year=1954, price=19.99),
        make_book(9, "Animal Farm", author="George Orwell", genre="Political Satire", published_year=1945, price=8.5, in_stock=False),
        make_book(10, "The Alchemist", author="Paulo Coelho", published_year=1988, price=10.99),
        make_book(11, "Moby Dick", author="Herman Melville", genre="Adventure", published_year=1851, price=12.5),
        make_book(12, "Wuthering Heights", author="Emily Bronte", genre="Gothic Fiction", published_year=1847, price=9.99),
        make_book(13, "Project Hail Mary", author="Andy Weir", genre="Science Fiction", published_year=2021, price=16.99),
    ]


class FakeCatalogClient:
    def __init__(self, collection: FakeCollection, *, ping_error: Exception | None = None) -> None:
        self.books = collection
        self.ping_error = ping_error
        self.pings = 0
        self.closed = False

    def ping(self) -> dict[str, Any]:
        self.pings += 1
        if self.ping_error is not None:
            raise self.ping_error
        return {"ok": True}

    def count_books(self) -> int:
        return len(self.books.docs)

    def __enter__(self) -> "FakeCatalogClient":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.closed = True
