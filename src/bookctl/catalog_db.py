from __future__ import annotations

from typing import Any

from loguru import logger
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

from bookctl.config import DEFAULT_COLLECTION, DEFAULT_DB_NAME, DEFAULT_TIMEOUT_MS, redact_uri


class CatalogError(RuntimeError):
    """Raised when an operation against the book catalog fails."""


class CatalogClient:
    """Owns one MongoDB connection and hands out the books collection.

    The underlying ``MongoClient`` connects lazily, so a bad address only
    surfaces on the first command. Call :meth:`ping` to force that early.
    """

    def __init__(
        self,
        uri: str,
        *,
        db_name: str = DEFAULT_DB_NAME,
        collection: str = DEFAULT_COLLECTION,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        self.uri = uri
        self.db_name = db_name
        self.collection_name = collection
        self._closed = False
        self._client: MongoClient = MongoClient(uri, serverSelectionTimeoutMS=timeout_ms)
        logger.debug(f"Opened MongoDB client for {redact_uri(uri)} db={db_name}")

    def close(self) -> None:
        if self._closed:
            return
        self._client.close()
        self._closed = True
        logger.debug("Closed MongoDB client")

    def __enter__(self) -> "CatalogClient":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def database(self) -> Database:
        return self._client[self.db_name]

    @property
    def books(self) -> Collection:
        return self.database[self.collection_name]

    def ping(self) -> dict[str, Any]:
        try:
            self._client.admin.command("ping")
        except PyMongoError as exc:
            raise CatalogError(f"Could not reach MongoDB at {redact_uri(self.uri)}: {exc}") from exc
        return {"ok": True}

    def count_books(self) -> int:
        try:
            return self.books.count_documents({})
        except PyMongoError as exc:
            raise CatalogError(f"Could not count documents in {self.collection_name!r}: {exc}") from exc
