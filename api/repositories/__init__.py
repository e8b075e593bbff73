"""Repository layer over the document store.

Repositories translate between store documents and schema models so that
services never touch raw document shapes or timestamp encodings.
"""

from repositories.document_store import (
    CorruptDocumentError,
    DocumentNotFoundError,
    DocumentStore,
    QueryFilter,
    SqlDocumentStore,
    StoreError,
)
from repositories.recovery_repository import (
    ObjectiveRepository,
    RecoveryAssessmentRepository,
)
from repositories.streak_repository import StreakRepository
from repositories.utils import log_slow_query

__all__ = [
    "CorruptDocumentError",
    "DocumentNotFoundError",
    "DocumentStore",
    "ObjectiveRepository",
    "QueryFilter",
    "RecoveryAssessmentRepository",
    "SqlDocumentStore",
    "StoreError",
    "StreakRepository",
    "log_slow_query",
]
