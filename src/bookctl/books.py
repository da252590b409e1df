from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping

from bookctl.catalog_db import CatalogError


class BookValidationError(CatalogError):
    """Raised when a stored document does not look like a book."""


@dataclass(slots=True)
class Book:
    id: str | None
    title: str
    author: str
    genre: str
    published_year: int
    price: float
    in_stock: bool


@dataclass(slots=True)
class BookListing:
    title: str
    author: str
    price: float


@dataclass(slots=True)
class GenrePrice:
    genre: str
    average_price: float


@dataclass(slots=True)
class AuthorCount:
    author: str
    count: int


@dataclass(slots=True)
class DecadeCount:
    decade: int
    count: int

    @property
    def label(self) -> str:
        return f"{self.decade}s"


def _doc_ref(doc: Mapping[str, Any]) -> str:
    if "_id" in doc:
        return f"_id={doc['_id']!s}"
    title = doc.get("title")
    return f"title={title!r}" if title is not None else "<no id>"


def _require_str(doc: Mapping[str, Any], key: str) -> str:
    value = doc.get(key)
    if not isinstance(value, str):
        raise BookValidationError(
            f"Document {_doc_ref(doc)} has invalid {key!r}: expected string, got {value!r}"
        )
    return value


def _require_int(doc: Mapping[str, Any], key: str) -> int:
    value = doc.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise BookValidationError(
            f"Document {_doc_ref(doc)} has invalid {key!r}: expected integer, got {value!r}"
        )
    return value


def _require_number(doc: Mapping[str, Any], key: str) -> float:
    value = doc.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise BookValidationError(
            f"Document {_doc_ref(doc)} has invalid {key!r}: expected number, got {value!r}"
        )
    return float(value)


def _require_bool(doc: Mapping[str, Any], key: str) -> bool:
    value = doc.get(key)
    if not isinstance(value, bool):
        raise BookValidationError(
            f"Document {_doc_ref(doc)} has invalid {key!r}: expected boolean, got {value!r}"
        )
    return value


def book_from_document(doc: Mapping[str, Any]) -> Book:
    raw_id = doc.get("_id")
    return Book(
        id=str(raw_id) if raw_id is not None else None,
        title=_require_str(doc, "title"),
        author=_require_str(doc, "author"),
        genre=_require_str(doc, "genre"),
        published_year=_require_int(doc, "published_year"),
        price=_require_number(doc, "price"),
        in_stock=_require_bool(doc, "in_stock"),
    )


def listing_from_document(doc: Mapping[str, Any]) -> BookListing:
    return BookListing(
        title=_require_str(doc, "title"),
        author=_require_str(doc, "author"),
        price=_require_number(doc, "price"),
    )


def book_to_dict(book: Book | BookListing) -> dict[str, str | int | float | bool | None]:
    return asdict(book)
