"""Pydantic schemas for streaks, recovery assessments and their results."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class RecoveryHistoryEntry(BaseModel):
    """One successful recovery, appended to the streak's audit log."""

    model_config = ConfigDict(frozen=True)

    date: datetime
    recovered_days: int = Field(ge=0)
    assessment_id: str
    objective_id: str


class Streak(BaseModel):
    """Per-user study continuity counters.

    ``missed_days`` is a snapshot: it is only meaningful right after the
    streak has been recalculated against the current date.
    """

    user_id: str
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    last_study_date: datetime
    missed_days: int = Field(default=0, ge=0)
    recovery_history: list[RecoveryHistoryEntry] = Field(default_factory=list)
    updated_at: datetime


class MissedDaysResult(BaseModel):
    missed_days: int
    last_study_date: datetime | None = None


class ObjectiveProfile(BaseModel):
    """Learning objective context handed to the question generator."""

    title: str = ""
    description: str = ""
    category: str = ""
    target_role: str = ""
    current_level: str = "beginner"
    target_level: str = "intermediate"


class QuizQuestion(BaseModel):
    id: str
    question: str
    options: list[str] = Field(default_factory=list)
    # Either the index into ``options`` or the literal answer text
    correct_answer: int | str
    explanation: str = ""
    difficulty: str = "medium"


class AssessmentStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"


class RecoveryAssessment(BaseModel):
    """A generated recovery quiz.

    ``missed_days`` holds the recoverable (capped) day count at generation
    time; this is what gets credited when the quiz is passed.
    """

    id: str
    user_id: str
    objective_id: str
    objective_title: str = ""
    missed_days: int = Field(ge=0)
    question_count: int = Field(ge=0)
    questions: list[QuizQuestion] = Field(default_factory=list)
    status: AssessmentStatus = AssessmentStatus.PENDING
    created_at: datetime
    completed_at: datetime | None = None
    score: float | None = None
    passed: bool | None = None
    recovered_days: int | None = None


class RecoveryAnswer(BaseModel):
    question_id: str
    selected_answer: int | str


class AnswerFeedback(BaseModel):
    question_id: str
    question: str
    correct: bool
    user_answer: int | str
    correct_answer: int | str
    explanation: str


class RecoveryResult(BaseModel):
    assessment_id: str
    score: float
    passed: bool
    correct_answers: int
    total_questions: int
    recovered_days: int
    new_streak: int
    feedback: list[AnswerFeedback] = Field(default_factory=list)
    average_time_per_question: float | None = None
    suspicious_pattern: bool = False


class CooldownStatus(BaseModel):
    can_attempt: bool
    cooldown_ends_at: datetime | None = None


class RecoveryEstimate(BaseModel):
    """What a recovery would cost right now, for display before generating."""

    missed_days: int
    recoverable_days: int
    question_count: int
    last_study_date: datetime | None = None
