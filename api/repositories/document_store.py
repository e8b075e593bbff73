"""Document store contract and its SQLAlchemy-backed implementation.

The streak engine only needs four operations on schemaless documents:
get by id, create (set) by id, shallow-merge update, and field-equality
query. Datetimes are stored as ISO-8601 strings; readers normalize them
back with ``core.clock.to_datetime``.
"""

from dataclasses import dataclass
from typing import Any, Protocol

from pydantic_core import to_jsonable_python
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.logger import get_logger
from core.telemetry import track_dependency
from models import Document
from repositories.utils import log_slow_query

logger = get_logger(__name__)

SUPPORTED_OPERATORS = ("==",)


class StoreError(Exception):
    """Raised when the document store cannot complete an operation."""


class DocumentNotFoundError(StoreError):
    """Raised when updating a document that does not exist."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"Document not found: {collection}/{doc_id}")
        self.collection = collection
        self.doc_id = doc_id


class CorruptDocumentError(StoreError):
    """Raised when a persisted document cannot be mapped to its model."""


@dataclass(frozen=True, slots=True)
class QueryFilter:
    field: str
    operator: str
    value: Any


class DocumentStore(Protocol):
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    async def create(
        self, collection: str, doc_id: str, doc: dict[str, Any]
    ) -> str: ...

    async def update(
        self, collection: str, doc_id: str, patch: dict[str, Any]
    ) -> None: ...

    async def query(
        self, collection: str, filters: list[QueryFilter]
    ) -> list[dict[str, Any]]: ...


def to_document(values: dict[str, Any]) -> dict[str, Any]:
    """Convert a Python mapping into JSON-safe document data."""
    return to_jsonable_python(values)


def _filter_clause(query_filter: QueryFilter):
    if query_filter.operator not in SUPPORTED_OPERATORS:
        raise ValueError(f"Unsupported query operator: {query_filter.operator}")

    element = Document.data[query_filter.field]
    value = query_filter.value
    if isinstance(value, bool):
        return element.as_boolean() == value
    if isinstance(value, int):
        return element.as_integer() == value
    if isinstance(value, float):
        return element.as_float() == value
    return element.as_string() == str(value)


class SqlDocumentStore:
    """DocumentStore over the ``documents`` table.

    Each call opens its own short-lived session and commits before
    returning, so no connection is held across awaits on other services.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    @track_dependency("document_store", "SQL")
    @log_slow_query("document_store.get")
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        try:
            async with self.session_maker() as session:
                row = await session.get(Document, (collection, doc_id))
                return dict(row.data) if row is not None else None
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read {collection}/{doc_id}: {e}") from e

    @track_dependency("document_store", "SQL")
    @log_slow_query("document_store.create")
    async def create(self, collection: str, doc_id: str, doc: dict[str, Any]) -> str:
        """Create or fully overwrite the document at ``collection/doc_id``."""
        data = to_document(doc)
        try:
            async with self.session_maker() as session:
                row = await session.get(Document, (collection, doc_id))
                if row is None:
                    session.add(
                        Document(collection=collection, doc_id=doc_id, data=data)
                    )
                else:
                    row.data = data
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to write {collection}/{doc_id}: {e}") from e
        return doc_id

    @track_dependency("document_store", "SQL")
    @log_slow_query("document_store.update")
    async def update(
        self, collection: str, doc_id: str, patch: dict[str, Any]
    ) -> None:
        """Shallow-merge ``patch`` into an existing document."""
        data = to_document(patch)
        try:
            async with self.session_maker() as session:
                row = await session.get(
                    Document, (collection, doc_id), with_for_update=True
                )
                if row is None:
                    raise DocumentNotFoundError(collection, doc_id)
                # Reassign so the JSON column is flagged dirty
                row.data = {**row.data, **data}
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to update {collection}/{doc_id}: {e}") from e

    @track_dependency("document_store", "SQL")
    @log_slow_query("document_store.query")
    async def query(
        self, collection: str, filters: list[QueryFilter]
    ) -> list[dict[str, Any]]:
        stmt = select(Document).where(Document.collection == collection)
        for query_filter in filters:
            stmt = stmt.where(_filter_clause(query_filter))
        try:
            async with self.session_maker() as session:
                result = await session.execute(stmt)
                return [dict(row.data) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to query {collection}: {e}") from e
