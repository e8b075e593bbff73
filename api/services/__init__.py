"""Service layer for business logic.

Services encapsulate the streak and recovery rules, keeping the CLI (and any
future HTTP surface) thin. Layer hierarchy:
    CLI -> Services (Business Logic) -> Repositories -> Document store

Services should:
- Contain all business rules and validation
- Orchestrate calls to repositories
- Return schema models, never raw store documents

Services should NOT:
- Know how documents are persisted (use repositories)
- Parse timestamps from storage formats (repositories normalize them)
"""

from services.llm_service import (
    GeminiQuestionGenerator,
    GeminiServiceUnavailable,
    QuestionGenerationError,
)
from services.recovery_service import (
    AssessmentAlreadyCompletedError,
    AssessmentNotFoundError,
    CooldownActiveError,
    InvalidRecoveryRequestError,
    ObjectiveNotFoundError,
    QuestionGenerator,
    RecoveryError,
    RecoveryPolicy,
    RecoveryService,
    UnauthorizedAssessmentError,
    UnauthorizedObjectiveError,
)
from services.streaks_service import StreakService

__all__ = [
    "AssessmentAlreadyCompletedError",
    "AssessmentNotFoundError",
    "CooldownActiveError",
    "GeminiQuestionGenerator",
    "GeminiServiceUnavailable",
    "InvalidRecoveryRequestError",
    "ObjectiveNotFoundError",
    "QuestionGenerationError",
    "QuestionGenerator",
    "RecoveryError",
    "RecoveryPolicy",
    "RecoveryService",
    "StreakService",
    "UnauthorizedAssessmentError",
    "UnauthorizedObjectiveError",
]
