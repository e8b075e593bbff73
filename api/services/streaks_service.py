"""Streak service: daily study continuity per user.

This module handles:
- Recalculating a stored streak against today's date (active vs. broken)
- Lazily creating a user's streak on first read
- Reporting missed days for the recovery flow
- Advancing the streak once per calendar day of study
- Folding a successful recovery back into the streak

Streak state machine (evaluated fresh on every read):
- Active: last study today or yesterday (one day of grace)
- Broken: two or more calendar days since the last study. current_streak
  reads as 0 and missed_days counts the skipped days, excluding today.

The read path never writes the recalculated values back.
"""

from datetime import datetime

from core import get_logger
from core.clock import days_between, utcnow
from core.locks import KeyedLocks
from core.telemetry import track_operation
from repositories.document_store import DocumentStore
from repositories.streak_repository import StreakRepository
from schemas import MissedDaysResult, RecoveryHistoryEntry, Streak

logger = get_logger(__name__)

# Days since last study that still count as an unbroken streak
GRACE_DAYS = 1

# =============================================================================
# Per-user serialization
# =============================================================================
# The study committer and the recovery committer both read-modify-write the
# same streak document. Serializing them per user in-process prevents one
# from silently overwriting the other. Across processes the store remains
# last-writer-wins.

_streak_locks = KeyedLocks()


def recalculate_streak(streak: Streak, now: datetime) -> Streak:
    """Return the streak as it stands at ``now``, without persisting.

    Active streaks are returned unchanged (missed_days is not zeroed here;
    only a study action or a recovery resets it). Broken streaks come back
    as a copy with current_streak=0 and missed_days=days_since-1.
    """
    days_since_last_study = days_between(now, streak.last_study_date)

    if days_since_last_study <= GRACE_DAYS:
        logger.debug(
            "streak.recalculated.active",
            user_id=streak.user_id,
            current_streak=streak.current_streak,
            days_since_last_study=days_since_last_study,
        )
        return streak

    missed_days = days_since_last_study - 1
    logger.info(
        "streak.recalculated.broken",
        user_id=streak.user_id,
        old_streak=streak.current_streak,
        days_since_last_study=days_since_last_study,
        missed_days=missed_days,
        last_study_date=streak.last_study_date.isoformat(),
    )
    return streak.model_copy(update={"current_streak": 0, "missed_days": missed_days})


def new_streak(user_id: str, now: datetime) -> Streak:
    return Streak(
        user_id=user_id,
        current_streak=0,
        longest_streak=0,
        last_study_date=now,
        missed_days=0,
        recovery_history=[],
        updated_at=now,
    )


class StreakService:
    """Reads and advances per-user streaks stored in the document store."""

    def __init__(self, store: DocumentStore):
        self.streaks = StreakRepository(store)

    @track_operation("get_streak")
    async def get_streak(self, user_id: str) -> Streak:
        """Get the user's streak, creating it on first access.

        A freshly created streak is returned verbatim. An existing one is
        recalculated against the current date; the recalculation is not
        persisted.

        Raises:
            StoreError: If the store read or the initial write fails.
        """
        try:
            streak = await self.streaks.get(user_id)
            now = utcnow()
            if streak is None:
                streak = new_streak(user_id, now)
                await self.streaks.save(streak)
                logger.info("streak.created", user_id=user_id)
                return streak
            return recalculate_streak(streak, now)
        except Exception as e:
            logger.error("streak.get.failed", user_id=user_id, error=str(e))
            raise

    @track_operation("calculate_missed_days")
    async def calculate_missed_days(self, user_id: str) -> MissedDaysResult:
        """Missed days and last study date, as of now.

        Raises:
            StoreError: Propagated from the store; no silent default.
        """
        try:
            streak = await self.get_streak(user_id)
        except Exception as e:
            logger.error("streak.missed_days.failed", user_id=user_id, error=str(e))
            raise
        return MissedDaysResult(
            missed_days=streak.missed_days,
            last_study_date=streak.last_study_date,
        )

    @track_operation("update_streak_on_study")
    async def update_streak_on_study(self, user_id: str) -> None:
        """Advance the streak for a qualifying study action.

        Idempotent within a calendar day. Best effort: it runs as a side
        effect of an unrelated study action, so every failure is logged and
        swallowed.
        """
        try:
            async with _streak_locks.get(user_id):
                await self._advance_on_study(user_id)
        except Exception:
            logger.exception("streak.study_update.failed", user_id=user_id)

    async def _advance_on_study(self, user_id: str) -> None:
        streak = await self.get_streak(user_id)
        now = utcnow()
        days_since_last_study = days_between(now, streak.last_study_date)

        if days_since_last_study <= 0:
            logger.debug("streak.study_update.same_day", user_id=user_id)
            return

        if days_since_last_study == 1:
            current_streak = streak.current_streak + 1
            logger.info(
                "streak.incremented",
                user_id=user_id,
                old_streak=streak.current_streak,
                new_streak=current_streak,
            )
        else:
            current_streak = 1
            logger.info(
                "streak.reset",
                user_id=user_id,
                old_streak=streak.current_streak,
                days_since_last_study=days_since_last_study,
            )

        longest_streak = max(streak.longest_streak, current_streak)

        await self.streaks.update_fields(
            user_id,
            current_streak=current_streak,
            longest_streak=longest_streak,
            last_study_date=now,
            missed_days=0,
            updated_at=now,
        )
        logger.info(
            "streak.updated",
            user_id=user_id,
            current_streak=current_streak,
            longest_streak=longest_streak,
        )

    @track_operation("apply_recovery")
    async def apply_recovery(
        self,
        user_id: str,
        recovered_days: int,
        assessment_id: str,
        objective_id: str,
    ) -> Streak:
        """Credit recovered days and record the recovery.

        Writes the whole streak document (not a patch) and returns it.

        Raises:
            StoreError: If the streak cannot be read or written.
        """
        async with _streak_locks.get(user_id):
            try:
                streak = await self.get_streak(user_id)
                now = utcnow()
                current_streak = streak.current_streak + recovered_days

                updated = Streak(
                    user_id=user_id,
                    current_streak=current_streak,
                    longest_streak=max(streak.longest_streak, current_streak),
                    last_study_date=now,
                    missed_days=0,
                    recovery_history=[
                        *streak.recovery_history,
                        RecoveryHistoryEntry(
                            date=now,
                            recovered_days=recovered_days,
                            assessment_id=assessment_id,
                            objective_id=objective_id,
                        ),
                    ],
                    updated_at=now,
                )
                await self.streaks.save(updated)
            except Exception as e:
                logger.error(
                    "streak.recovery_commit.failed",
                    user_id=user_id,
                    assessment_id=assessment_id,
                    error=str(e),
                )
                raise

        logger.info(
            "streak.recovered",
            user_id=user_id,
            old_streak=streak.current_streak,
            new_streak=updated.current_streak,
            recovered_days=recovered_days,
        )
        return updated
