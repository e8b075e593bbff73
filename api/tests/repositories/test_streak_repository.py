"""Tests for StreakRepository document mapping."""

from datetime import UTC, datetime

import pytest

from repositories.document_store import CorruptDocumentError, DocumentNotFoundError
from repositories.streak_repository import (
    STREAKS_COLLECTION,
    StreakRepository,
    streak_from_document,
)
from schemas import RecoveryHistoryEntry, Streak

pytestmark = pytest.mark.unit

STUDIED_AT = datetime(2026, 3, 9, 18, 30, tzinfo=UTC)


def _streak(**overrides) -> Streak:
    values = {
        "user_id": "user-1",
        "current_streak": 4,
        "longest_streak": 9,
        "last_study_date": STUDIED_AT,
        "missed_days": 0,
        "recovery_history": [],
        "updated_at": STUDIED_AT,
    }
    values.update(overrides)
    return Streak(**values)


class TestStreakFromDocument:
    def test_reads_iso_strings(self):
        streak = streak_from_document(
            "user-1",
            {
                "user_id": "user-1",
                "current_streak": 4,
                "longest_streak": 9,
                "last_study_date": "2026-03-09T18:30:00Z",
                "missed_days": 0,
                "recovery_history": [],
                "updated_at": "2026-03-09T18:30:00+00:00",
            },
        )
        assert streak.last_study_date == STUDIED_AT
        assert streak.current_streak == 4

    def test_reads_serialized_seconds_timestamps(self):
        streak = streak_from_document(
            "user-1",
            {
                "current_streak": 4,
                "last_study_date": {"_seconds": 1773081000, "_nanoseconds": 0},
                "updated_at": {"_seconds": 1773081000, "_nanoseconds": 0},
            },
        )
        assert streak.last_study_date == STUDIED_AT
        assert streak.updated_at == STUDIED_AT

    def test_missing_counters_default_to_zero(self):
        streak = streak_from_document(
            "user-1", {"last_study_date": "2026-03-09T18:30:00Z"}
        )
        assert streak.user_id == "user-1"
        assert streak.current_streak == 0
        assert streak.longest_streak == 0
        assert streak.updated_at == STUDIED_AT

    def test_parses_history_entries(self):
        streak = streak_from_document(
            "user-1",
            {
                "last_study_date": "2026-03-09T18:30:00Z",
                "recovery_history": [
                    {
                        "date": "2026-03-01T10:00:00Z",
                        "recovered_days": 2,
                        "assessment_id": "a1",
                        "objective_id": "o1",
                    }
                ],
            },
        )
        assert streak.recovery_history == [
            RecoveryHistoryEntry(
                date=datetime(2026, 3, 1, 10, 0, tzinfo=UTC),
                recovered_days=2,
                assessment_id="a1",
                objective_id="o1",
            )
        ]

    @pytest.mark.parametrize("value", [None, "not-a-date", 12345])
    def test_unreadable_last_study_date_is_corrupt(self, value):
        with pytest.raises(CorruptDocumentError, match="last_study_date"):
            streak_from_document("user-1", {"last_study_date": value})

    def test_unreadable_history_date_is_corrupt(self):
        with pytest.raises(CorruptDocumentError):
            streak_from_document(
                "user-1",
                {
                    "last_study_date": "2026-03-09T18:30:00Z",
                    "recovery_history": [{"date": "??", "recovered_days": 1}],
                },
            )

    def test_negative_counter_is_corrupt(self):
        with pytest.raises(CorruptDocumentError):
            streak_from_document(
                "user-1",
                {"last_study_date": "2026-03-09T18:30:00Z", "current_streak": -1},
            )

    def test_non_list_history_is_corrupt(self):
        with pytest.raises(CorruptDocumentError):
            streak_from_document(
                "user-1",
                {"last_study_date": "2026-03-09T18:30:00Z", "recovery_history": "x"},
            )


class TestStreakRepository:
    async def test_get_missing_returns_none(self, store):
        assert await StreakRepository(store).get("nobody") is None

    async def test_save_then_get(self, store):
        repo = StreakRepository(store)
        streak = _streak()
        await repo.save(streak)

        assert await repo.get("user-1") == streak
        # Stored as JSON-safe data
        assert store.raw(STREAKS_COLLECTION, "user-1")["last_study_date"] == (
            "2026-03-09T18:30:00Z"
        )

    async def test_save_overwrites_whole_document(self, store):
        repo = StreakRepository(store)
        store.put_raw(
            STREAKS_COLLECTION,
            "user-1",
            {"last_study_date": "2026-03-01T00:00:00Z", "legacy_field": True},
        )
        await repo.save(_streak())
        assert "legacy_field" not in store.raw(STREAKS_COLLECTION, "user-1")

    async def test_update_fields_merges(self, store):
        repo = StreakRepository(store)
        await repo.save(_streak(recovery_history=[]))
        await repo.update_fields("user-1", current_streak=5)

        streak = await repo.get("user-1")
        assert streak.current_streak == 5
        assert streak.longest_streak == 9

    async def test_update_fields_missing_document(self, store):
        with pytest.raises(DocumentNotFoundError):
            await StreakRepository(store).update_fields("nobody", current_streak=1)
