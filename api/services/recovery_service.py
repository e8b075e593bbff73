"""Streak recovery service.

This module handles:
- The recoverable-days / question-count formula
- Cooldown enforcement between recovery attempts (per user+objective)
- Generating a recovery quiz for a learning objective
- Scoring a submitted quiz and crediting recovered days to the streak

Protocol: generate (pending assessment) -> learner answers -> validate
(assessment completed; on pass the streak is credited). An assessment can
only be validated once.
"""

import math
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol

from core import get_logger
from core.clock import to_datetime, utcnow
from core.config import Settings, get_settings
from core.locks import KeyedLocks
from core.telemetry import add_custom_attribute, log_business_event, track_operation
from repositories.document_store import DocumentStore
from repositories.recovery_repository import (
    ObjectiveRepository,
    RecoveryAssessmentRepository,
)
from schemas import (
    AnswerFeedback,
    AssessmentStatus,
    CooldownStatus,
    ObjectiveProfile,
    QuizQuestion,
    RecoveryAnswer,
    RecoveryAssessment,
    RecoveryEstimate,
    RecoveryResult,
)
from services.streaks_service import StreakService

logger = get_logger(__name__)

PASSING_SCORE = 70.0
# Passing faster than this average is flagged, not blocked
SUSPICIOUS_SECONDS_PER_QUESTION = 5.0
NO_EXPLANATION = "No explanation available"

# Attempt statuses that count toward the cooldown window
_COOLDOWN_STATUSES = frozenset(
    {AssessmentStatus.PENDING.value, AssessmentStatus.COMPLETED.value}
)

# Validation of one assessment is serialized so it completes exactly once
_assessment_locks = KeyedLocks()


class QuestionGenerator(Protocol):
    async def generate_recovery_questions(
        self,
        profile: ObjectiveProfile,
        missed_days: int,
        question_count: int,
    ) -> list[QuizQuestion]: ...


class RecoveryError(Exception):
    """Base class for recovery flow failures."""


class InvalidRecoveryRequestError(RecoveryError):
    pass


class ObjectiveNotFoundError(RecoveryError):
    pass


class UnauthorizedObjectiveError(RecoveryError):
    pass


class AssessmentNotFoundError(RecoveryError):
    pass


class UnauthorizedAssessmentError(RecoveryError):
    pass


class AssessmentAlreadyCompletedError(RecoveryError):
    pass


class CooldownActiveError(RecoveryError):
    """Raised when a recovery is attempted during the cooldown window.

    Attributes:
        cooldown_ends_at: When the next attempt becomes possible (UTC)
    """

    def __init__(self, message: str, cooldown_ends_at: datetime):
        super().__init__(message)
        self.cooldown_ends_at = cooldown_ends_at


@dataclass(frozen=True, slots=True)
class RecoveryPolicy:
    max_recovery_days: int = 7
    questions_per_day: int = 10
    max_questions: int = 30
    cooldown_hours: float = 1.0
    locale: str = "en"

    @classmethod
    def from_settings(cls, settings: Settings) -> "RecoveryPolicy":
        return cls(
            max_recovery_days=settings.streak_recovery_max_days,
            questions_per_day=settings.streak_recovery_questions_per_day,
            max_questions=settings.streak_recovery_max_questions,
            cooldown_hours=settings.streak_recovery_cooldown_hours,
            locale=settings.recovery_message_locale,
        )

    @property
    def cooldown(self) -> timedelta:
        return timedelta(hours=self.cooldown_hours)

    def recoverable_days(self, missed_days: int) -> int:
        return max(0, min(missed_days, self.max_recovery_days))

    def calculate_question_count(self, missed_days: int) -> int:
        """min(min(missed, max_days) * per_day, max_questions)."""
        return min(
            self.recoverable_days(missed_days) * self.questions_per_day,
            self.max_questions,
        )


_COOLDOWN_MESSAGES = {
    "en": {
        "soon": "a few seconds",
        "minutes": lambda n: f"{n} minute{'s' if n > 1 else ''}",
        "hours": lambda n: f"{n} hour{'s' if n > 1 else ''}",
        "hours_minutes": lambda h, m: f"{h}h {m}min",
        "wait": "You must wait {remaining} before trying again.",
    },
    "fr": {
        "soon": "quelques secondes",
        "minutes": lambda n: f"{n} minute{'s' if n > 1 else ''}",
        "hours": lambda n: f"{n} heure{'s' if n > 1 else ''}",
        "hours_minutes": lambda h, m: f"{h}h {m}min",
        "wait": "Vous devez attendre {remaining} avant de pouvoir réessayer.",
    },
}


def format_cooldown_remaining(
    cooldown_ends_at: datetime, now: datetime, locale: str = "en"
) -> str:
    """Human-readable time left, rounded up to the next whole minute."""
    messages = _COOLDOWN_MESSAGES.get(locale, _COOLDOWN_MESSAGES["en"])
    remaining_seconds = (cooldown_ends_at - now).total_seconds()
    if remaining_seconds <= 0:
        return messages["soon"]

    remaining_minutes = math.ceil(remaining_seconds / 60)
    if remaining_minutes < 60:
        return messages["minutes"](remaining_minutes)

    hours, minutes = divmod(remaining_minutes, 60)
    if minutes == 0:
        return messages["hours"](hours)
    return messages["hours_minutes"](hours, minutes)


def cooldown_message(
    cooldown_ends_at: datetime, now: datetime, locale: str = "en"
) -> str:
    messages = _COOLDOWN_MESSAGES.get(locale, _COOLDOWN_MESSAGES["en"])
    remaining = format_cooldown_remaining(cooldown_ends_at, now, locale)
    return messages["wait"].format(remaining=remaining)


def _new_assessment_id() -> str:
    """recovery_<epoch ms>_<7 random hex chars>; sorts roughly by creation."""
    return f"recovery_{int(utcnow().timestamp() * 1000)}_{uuid.uuid4().hex[:7]}"


def _profile_from_objective(objective: dict[str, Any]) -> ObjectiveProfile:
    def text(key: str, default: str = "") -> str:
        value = objective.get(key)
        return value if isinstance(value, str) else default

    return ObjectiveProfile(
        title=text("title"),
        description=text("description"),
        category=text("category"),
        target_role=text("target_role"),
        current_level=text("current_level", "beginner"),
        target_level=text("target_level", "intermediate"),
    )


def _normalize_answer(value: int | str) -> int | str:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return str(value)


def _display_answer(question: QuizQuestion) -> int | str:
    correct = question.correct_answer
    if isinstance(correct, int) and 0 <= correct < len(question.options):
        return question.options[correct]
    return correct


def score_answers(
    questions: Sequence[QuizQuestion], answers: Sequence[RecoveryAnswer]
) -> tuple[int, list[AnswerFeedback]]:
    """Count correct answers and build per-question feedback.

    Answers whose question id is not part of the quiz are ignored.
    """
    by_id = {question.id: question for question in questions}
    correct_answers = 0
    feedback: list[AnswerFeedback] = []

    for answer in answers:
        question = by_id.get(answer.question_id)
        if question is None:
            continue

        selected = _normalize_answer(answer.selected_answer)
        is_correct = selected == question.correct_answer
        if is_correct:
            correct_answers += 1

        feedback.append(
            AnswerFeedback(
                question_id=question.id,
                question=question.question,
                correct=is_correct,
                user_answer=answer.selected_answer,
                correct_answer=_display_answer(question),
                explanation=question.explanation or NO_EXPLANATION,
            )
        )

    return correct_answers, feedback


class RecoveryService:
    """Generates, gates and scores streak recovery quizzes."""

    def __init__(
        self,
        store: DocumentStore,
        question_generator: QuestionGenerator,
        policy: RecoveryPolicy | None = None,
        streak_service: StreakService | None = None,
    ):
        self.policy = policy or RecoveryPolicy.from_settings(get_settings())
        self.assessments = RecoveryAssessmentRepository(store)
        self.objectives = ObjectiveRepository(store)
        self.question_generator = question_generator
        self.streak_service = streak_service or StreakService(store)

    def calculate_question_count(self, missed_days: int) -> int:
        return self.policy.calculate_question_count(missed_days)

    @track_operation("can_attempt_recovery")
    async def can_attempt_recovery(
        self, user_id: str, objective_id: str
    ) -> CooldownStatus:
        """Check the cooldown window for a user+objective.

        The most recent pending/completed attempt inside the window decides
        when the cooldown ends. Store failures fail open: a transient outage
        must not lock learners out of recovery.
        """
        cooldown = self.policy.cooldown
        now = utcnow()
        cooldown_start = now - cooldown

        try:
            attempts = await self.assessments.list_attempts(user_id, objective_id)
        except Exception as e:
            logger.warning(
                "recovery.cooldown.check_failed",
                user_id=user_id,
                objective_id=objective_id,
                error=str(e),
            )
            return CooldownStatus(can_attempt=True)

        latest: datetime | None = None
        for attempt in attempts:
            if attempt.get("status") not in _COOLDOWN_STATUSES:
                continue
            created_at = to_datetime(attempt.get("created_at"))
            if created_at is None:
                logger.debug(
                    "recovery.cooldown.unparseable_attempt",
                    assessment_id=attempt.get("id"),
                )
                continue
            if created_at > cooldown_start and (latest is None or created_at > latest):
                latest = created_at

        if latest is None:
            return CooldownStatus(can_attempt=True)
        return CooldownStatus(can_attempt=False, cooldown_ends_at=latest + cooldown)

    async def get_active_objectives_for_recovery(
        self, user_id: str
    ) -> list[dict[str, Any]]:
        """Objectives the user is currently working on (recovery targets)."""
        try:
            return await self.objectives.list_in_progress(user_id)
        except Exception as e:
            logger.error(
                "recovery.active_objectives.failed", user_id=user_id, error=str(e)
            )
            raise

    async def estimate_recovery(self, user_id: str) -> RecoveryEstimate:
        """Missed days and the quiz size a recovery would need right now."""
        missed = await self.streak_service.calculate_missed_days(user_id)
        return RecoveryEstimate(
            missed_days=missed.missed_days,
            recoverable_days=self.policy.recoverable_days(missed.missed_days),
            question_count=self.calculate_question_count(missed.missed_days),
            last_study_date=missed.last_study_date,
        )

    @track_operation("generate_recovery_assessment")
    async def generate_recovery_assessment(
        self, user_id: str, objective_id: str, missed_days: int
    ) -> RecoveryAssessment:
        """Generate and persist a pending recovery quiz.

        Raises:
            InvalidRecoveryRequestError: If missed_days is not positive.
            CooldownActiveError: If a recent attempt exists for this objective.
            ObjectiveNotFoundError: If the objective doesn't exist.
            UnauthorizedObjectiveError: If the objective belongs to another user.
            StoreError / generator errors: Propagated unchanged.
        """
        add_custom_attribute("recovery.objective_id", objective_id)
        try:
            if missed_days <= 0:
                raise InvalidRecoveryRequestError(
                    "missed_days must be a positive number"
                )

            cooldown = await self.can_attempt_recovery(user_id, objective_id)
            if not cooldown.can_attempt and cooldown.cooldown_ends_at is not None:
                log_business_event("recovery.cooldown_blocked", 1)
                raise CooldownActiveError(
                    cooldown_message(
                        cooldown.cooldown_ends_at, utcnow(), self.policy.locale
                    ),
                    cooldown_ends_at=cooldown.cooldown_ends_at,
                )

            objective = await self.objectives.get(objective_id)
            if objective is None:
                raise ObjectiveNotFoundError(f"Objective not found: {objective_id}")
            if objective.get("user_id") != user_id:
                raise UnauthorizedObjectiveError("Unauthorized access to objective")

            profile = _profile_from_objective(objective)
            recoverable_days = self.policy.recoverable_days(missed_days)
            question_count = self.calculate_question_count(recoverable_days)

            logger.info(
                "recovery.questions.requested",
                objective_id=objective_id,
                question_count=question_count,
                recoverable_days=recoverable_days,
            )
            questions = await self.question_generator.generate_recovery_questions(
                profile, missed_days, question_count
            )

            assessment = RecoveryAssessment(
                id=_new_assessment_id(),
                user_id=user_id,
                objective_id=objective_id,
                objective_title=profile.title,
                missed_days=recoverable_days,
                question_count=question_count,
                questions=questions,
                status=AssessmentStatus.PENDING,
                created_at=utcnow(),
            )
            await self.assessments.create(assessment)
        except Exception as e:
            logger.error(
                "recovery.assessment.generation_failed",
                user_id=user_id,
                objective_id=objective_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        logger.info(
            "recovery.assessment.created",
            assessment_id=assessment.id,
            user_id=user_id,
            question_count=question_count,
        )
        return assessment

    @track_operation("validate_recovery_assessment")
    async def validate_recovery_assessment(
        self,
        assessment_id: str,
        answers: Sequence[RecoveryAnswer],
        time_spent_seconds: float | None = None,
        *,
        user_id: str | None = None,
    ) -> RecoveryResult:
        """Score a recovery quiz and credit the streak when it is passed.

        Args:
            assessment_id: The pending assessment being answered
            answers: Submitted answers; unknown question ids are ignored
            time_spent_seconds: Total time on the quiz, for the speed heuristic
            user_id: When given, the assessment must belong to this user

        Raises:
            AssessmentNotFoundError: If the assessment doesn't exist.
            UnauthorizedAssessmentError: If user_id doesn't own the assessment.
            AssessmentAlreadyCompletedError: If it was already validated.
            StoreError: Propagated unchanged.
        """
        add_custom_attribute("recovery.assessment_id", assessment_id)
        try:
            async with _assessment_locks.get(assessment_id):
                assessment = await self.assessments.get(assessment_id)
                if assessment is None:
                    raise AssessmentNotFoundError(
                        f"Assessment not found: {assessment_id}"
                    )
                if user_id is not None and assessment.user_id != user_id:
                    raise UnauthorizedAssessmentError(
                        "Unauthorized access to assessment"
                    )
                if assessment.status == AssessmentStatus.COMPLETED:
                    raise AssessmentAlreadyCompletedError(
                        "Assessment already completed"
                    )

                recoverable_days = self.policy.recoverable_days(assessment.missed_days)
                question_count = assessment.question_count

                correct_answers, feedback = score_answers(assessment.questions, answers)
                score = (
                    correct_answers / question_count * 100
                    if question_count > 0
                    else 0.0
                )
                passed = score >= PASSING_SCORE

                average_time_per_question = (
                    time_spent_seconds / question_count
                    if time_spent_seconds is not None
                    and time_spent_seconds > 0
                    and question_count > 0
                    else None
                )
                suspicious_pattern = (
                    passed
                    and average_time_per_question is not None
                    and average_time_per_question < SUSPICIOUS_SECONDS_PER_QUESTION
                )
                recovered_days = recoverable_days if passed else 0

                await self.assessments.mark_completed(
                    assessment_id,
                    score=score,
                    passed=passed,
                    recovered_days=recovered_days,
                    completed_at=utcnow(),
                )

                if passed:
                    streak = await self.streak_service.apply_recovery(
                        assessment.user_id,
                        recovered_days,
                        assessment_id,
                        assessment.objective_id,
                    )
                else:
                    streak = await self.streak_service.get_streak(assessment.user_id)
        except Exception as e:
            logger.error(
                "recovery.assessment.validation_failed",
                assessment_id=assessment_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        if suspicious_pattern:
            log_business_event("recovery.suspicious_pattern", 1)
            logger.warning(
                "recovery.suspicious_pattern",
                assessment_id=assessment_id,
                user_id=assessment.user_id,
                average_time_per_question=average_time_per_question,
            )

        logger.info(
            "recovery.assessment.validated",
            assessment_id=assessment_id,
            passed=passed,
            score=score,
            recovered_days=recovered_days,
        )
        return RecoveryResult(
            assessment_id=assessment_id,
            score=score,
            passed=passed,
            correct_answers=correct_answers,
            total_questions=question_count,
            recovered_days=recovered_days,
            new_streak=streak.current_streak,
            feedback=feedback,
            average_time_per_question=average_time_per_question,
            suspicious_pattern=suspicious_pattern,
        )
