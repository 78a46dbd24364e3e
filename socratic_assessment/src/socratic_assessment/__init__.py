"""
Adaptive Socratic Assessment Engine

Generates a five-question adaptive quiz about an uploaded article, grades
free-text answers, adjusts difficulty and aggregates long-run proficiency.
"""

from socratic_assessment.config import AssessmentSettings
from socratic_assessment.errors import (
    AssessmentError,
    ConflictError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from socratic_assessment.socratic_assessor import (
    AssessmentContext,
    SocraticAssessor,
    TurnRequest,
    TurnResult,
)

__all__ = [
    "AssessmentSettings",
    "AssessmentError",
    "ConflictError",
    "NotFoundError",
    "RateLimitError",
    "ValidationError",
    "AssessmentContext",
    "SocraticAssessor",
    "TurnRequest",
    "TurnResult",
]
