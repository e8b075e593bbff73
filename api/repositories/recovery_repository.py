"""Repositories for recovery assessments and the objectives they target."""

from datetime import datetime
from typing import Any

from pydantic import ValidationError

from core.clock import to_datetime
from repositories.document_store import (
    CorruptDocumentError,
    DocumentStore,
    QueryFilter,
)
from schemas import AssessmentStatus, RecoveryAssessment

ASSESSMENTS_COLLECTION = "recoveryAssessments"
OBJECTIVES_COLLECTION = "objectives"

OBJECTIVE_IN_PROGRESS = "in_progress"


def assessment_from_document(doc: dict[str, Any]) -> RecoveryAssessment:
    data = dict(doc)
    created_at = to_datetime(data.get("created_at"))
    if created_at is None:
        raise CorruptDocumentError(
            f"Assessment {data.get('id')} has an unreadable created_at"
        )
    data["created_at"] = created_at
    data["completed_at"] = to_datetime(data.get("completed_at"))
    try:
        return RecoveryAssessment.model_validate(data)
    except ValidationError as e:
        raise CorruptDocumentError(
            f"Assessment {data.get('id')} is malformed: {e}"
        ) from e


class RecoveryAssessmentRepository:
    """Repository for RecoveryAssessment documents."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get(self, assessment_id: str) -> RecoveryAssessment | None:
        doc = await self.store.get(ASSESSMENTS_COLLECTION, assessment_id)
        if doc is None:
            return None
        return assessment_from_document(doc)

    async def create(self, assessment: RecoveryAssessment) -> None:
        await self.store.create(
            ASSESSMENTS_COLLECTION, assessment.id, assessment.model_dump()
        )

    async def mark_completed(
        self,
        assessment_id: str,
        *,
        score: float,
        passed: bool,
        recovered_days: int,
        completed_at: datetime,
    ) -> None:
        await self.store.update(
            ASSESSMENTS_COLLECTION,
            assessment_id,
            {
                "status": AssessmentStatus.COMPLETED.value,
                "score": score,
                "passed": passed,
                "recovered_days": recovered_days,
                "completed_at": completed_at,
            },
        )

    async def list_attempts(
        self, user_id: str, objective_id: str
    ) -> list[dict[str, Any]]:
        """Raw attempt documents for a (user, objective) pair.

        Returned unparsed: the cooldown guard tolerates legacy documents
        whose timestamps are stored in other shapes.
        """
        return await self.store.query(
            ASSESSMENTS_COLLECTION,
            [
                QueryFilter("user_id", "==", user_id),
                QueryFilter("objective_id", "==", objective_id),
            ],
        )


class ObjectiveRepository:
    """Read access to learning objectives."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get(self, objective_id: str) -> dict[str, Any] | None:
        return await self.store.get(OBJECTIVES_COLLECTION, objective_id)

    async def list_in_progress(self, user_id: str) -> list[dict[str, Any]]:
        return await self.store.query(
            OBJECTIVES_COLLECTION,
            [
                QueryFilter("user_id", "==", user_id),
                QueryFilter("status", "==", OBJECTIVE_IN_PROGRESS),
            ],
        )
