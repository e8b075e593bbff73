"""Streak repository: maps ``streaks`` documents to the Streak model."""

from datetime import datetime
from typing import Any

from pydantic import ValidationError

from core.clock import to_datetime
from repositories.document_store import CorruptDocumentError, DocumentStore
from schemas import RecoveryHistoryEntry, Streak

STREAKS_COLLECTION = "streaks"


def _require_datetime(value: object, user_id: str, field: str) -> datetime:
    parsed = to_datetime(value)
    if parsed is None:
        raise CorruptDocumentError(
            f"Streak {user_id} has an unreadable {field}: {value!r}"
        )
    return parsed


def streak_from_document(user_id: str, doc: dict[str, Any]) -> Streak:
    """Build a Streak from persisted data, normalizing every timestamp.

    Raises:
        CorruptDocumentError: If a timestamp or counter cannot be interpreted.
    """
    last_study_date = _require_datetime(
        doc.get("last_study_date"), user_id, "last_study_date"
    )
    updated_at = to_datetime(doc.get("updated_at")) or last_study_date

    history: list[RecoveryHistoryEntry] = []
    raw_history = doc.get("recovery_history") or []
    if not isinstance(raw_history, list):
        raise CorruptDocumentError(f"Streak {user_id} has a malformed recovery_history")

    try:
        for entry in raw_history:
            history.append(
                RecoveryHistoryEntry(
                    date=_require_datetime(
                        entry.get("date"), user_id, "recovery_history.date"
                    ),
                    recovered_days=entry.get("recovered_days", 0),
                    assessment_id=entry.get("assessment_id", ""),
                    objective_id=entry.get("objective_id", ""),
                )
            )

        return Streak(
            user_id=doc.get("user_id") or user_id,
            current_streak=doc.get("current_streak", 0),
            longest_streak=doc.get("longest_streak", 0),
            last_study_date=last_study_date,
            missed_days=doc.get("missed_days", 0),
            recovery_history=history,
            updated_at=updated_at,
        )
    except (AttributeError, ValidationError) as e:
        raise CorruptDocumentError(f"Streak {user_id} is malformed: {e}") from e


class StreakRepository:
    """Repository for Streak documents (one per user, keyed by user id)."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get(self, user_id: str) -> Streak | None:
        doc = await self.store.get(STREAKS_COLLECTION, user_id)
        if doc is None:
            return None
        return streak_from_document(user_id, doc)

    async def save(self, streak: Streak) -> None:
        """Persist the whole document (full overwrite)."""
        await self.store.create(STREAKS_COLLECTION, streak.user_id, streak.model_dump())

    async def update_fields(self, user_id: str, **fields: Any) -> None:
        """Partial update of top-level streak fields."""
        await self.store.update(STREAKS_COLLECTION, user_id, fields)
