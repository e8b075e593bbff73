"""In-memory DocumentStore for service and repository tests.

Mirrors SqlDocumentStore semantics: documents go through ``to_document`` on
write (so datetimes come back as ISO strings), ``create`` overwrites,
``update`` shallow-merges and fails on a missing document, and ``query``
supports field equality only. The contract tests in
tests/integration/test_document_store.py run against both implementations.
"""

import asyncio
import copy
from typing import Any

from repositories.document_store import (
    SUPPORTED_OPERATORS,
    DocumentNotFoundError,
    QueryFilter,
    StoreError,
    to_document,
)


class InMemoryDocumentStore:
    def __init__(self) -> None:
        self.documents: dict[tuple[str, str], dict[str, Any]] = {}
        # Operation names ("get", "create", "update", "query") that should fail
        self.failing: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    async def _check(self, operation: str, collection: str) -> None:
        # Yield like real I/O so concurrent callers can interleave
        await asyncio.sleep(0)
        self.calls.append((operation, collection))
        if operation in self.failing:
            raise StoreError(f"simulated {operation} failure on {collection}")

    def put_raw(self, collection: str, doc_id: str, doc: dict[str, Any]) -> None:
        """Seed a document exactly as given, bypassing serialization."""
        self.documents[(collection, doc_id)] = doc

    def raw(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        return self.documents.get((collection, doc_id))

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        await self._check("get", collection)
        doc = self.documents.get((collection, doc_id))
        return copy.deepcopy(doc) if doc is not None else None

    async def create(self, collection: str, doc_id: str, doc: dict[str, Any]) -> str:
        await self._check("create", collection)
        self.documents[(collection, doc_id)] = to_document(doc)
        return doc_id

    async def update(
        self, collection: str, doc_id: str, patch: dict[str, Any]
    ) -> None:
        await self._check("update", collection)
        existing = self.documents.get((collection, doc_id))
        if existing is None:
            raise DocumentNotFoundError(collection, doc_id)
        self.documents[(collection, doc_id)] = {**existing, **to_document(patch)}

    async def query(
        self, collection: str, filters: list[QueryFilter]
    ) -> list[dict[str, Any]]:
        await self._check("query", collection)
        for query_filter in filters:
            if query_filter.operator not in SUPPORTED_OPERATORS:
                raise ValueError(f"Unsupported query operator: {query_filter.operator}")

        return [
            copy.deepcopy(doc)
            for (doc_collection, _), doc in self.documents.items()
            if doc_collection == collection
            and all(doc.get(f.field) == f.value for f in filters)
        ]
