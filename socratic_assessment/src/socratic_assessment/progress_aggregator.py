"""
Progress Aggregator

Runs once per session, after the fifth answer is graded and reviewed:

1. Computes the session average (always over 5 slots, unanswered = 0) and
   the difficulty path.
2. Records a completion row and merges the review into the user's
   proficiency record with weighted smoothing.

Persistence failures are logged and swallowed; the caller still gets the
completion summary.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from socratic_assessment.config import TOTAL_QUESTIONS
from socratic_assessment.keyed_locks import KeyedLocks
from socratic_assessment.proficiency_manager import ProficiencyManager, ProficiencyRecord, SessionResult
from socratic_assessment.session_reviewer import SessionReview
from socratic_assessment.session_state import AssessmentSession

logger = logging.getLogger(__name__)

SMOOTHING_OLD_WEIGHT = 0.6
SMOOTHING_NEW_WEIGHT = 0.4
FEEDBACK_LIST_CAP = 5


def _pad(values: Iterable[Any], length: int = TOTAL_QUESTIONS) -> List[int]:
    padded = []
    for value in list(values)[:length]:
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = 0.0
        padded.append(int(number) if math.isfinite(number) else 0)
    return padded + [0] * (length - len(padded))


def average_score(scores: Iterable[Any]) -> float:
    """Mean over exactly five slots, rounded half-up to two decimals."""
    padded = _pad(scores)
    mean = sum(padded) / TOTAL_QUESTIONS
    return math.floor(mean * 100 + 0.5) / 100


def smooth(old: Optional[float], incoming: float) -> float:
    """new = 0.6 * old + 0.4 * incoming, or incoming when there is no history."""
    if old is None:
        return float(incoming)
    return SMOOTHING_OLD_WEIGHT * old + SMOOTHING_NEW_WEIGHT * incoming


def merge_feedback_list(incoming: Iterable[str], existing: Iterable[str], cap: int = FEEDBACK_LIST_CAP) -> List[str]:
    """De-duplicated incoming ++ existing, truncated to `cap`; incoming wins."""
    merged: List[str] = []
    seen = set()
    for item in list(incoming) + list(existing):
        text = str(item).strip()
        key = text.casefold()
        if not text or key in seen:
            continue
        seen.add(key)
        merged.append(text)
    return merged[:cap]


def merge_proficiency(record: Optional[ProficiencyRecord], user_id: str, review: SessionReview) -> ProficiencyRecord:
    """Fold one session review into a (possibly missing) proficiency record."""
    record = record or ProficiencyRecord(user_id=user_id)
    record.comprehension_score = smooth(record.comprehension_score, review.comprehension_score)
    record.critical_thinking_score = smooth(record.critical_thinking_score, review.critical_thinking_score)
    record.quality_score = smooth(record.quality_score, review.quality_score)
    record.strengths = merge_feedback_list(review.strengths, record.strengths)
    record.weaknesses = merge_feedback_list(review.weaknesses, record.weaknesses)
    record.recommendations = merge_feedback_list(review.recommendations, record.recommendations)
    record.sessions_completed += 1
    return record


@dataclass
class SessionSummary:
    average_score: float
    scores: List[int]
    difficulty_path: List[int]


def summarize_session(session: AssessmentSession) -> SessionSummary:
    scores = _pad(session.scores())
    return SessionSummary(
        average_score=average_score(scores),
        scores=scores,
        difficulty_path=_pad(session.difficulty_path()),
    )


class ProgressAggregator:
    """Completes a reviewed session: summary and proficiency merge."""

    def __init__(self):
        # Serializes read-merge-write per user within this process only
        self._user_locks = KeyedLocks()

    async def complete_session(
        self,
        session: AssessmentSession,
        review: SessionReview,
        progress_store: ProficiencyManager,
    ) -> Dict[str, Any]:
        """
        Aggregate a finished session.

        Returns:
            Final feedback payload (averageScore, scores, difficultyPath,
            summaryText and the qualitative fields)
        """
        summary = summarize_session(session)

        try:
            await self._persist(session, summary, review, progress_store)
        except Exception as e:
            logger.error(f"❌ [ProgressAggregator] Failed to persist progress for session {session.id}: {e}", exc_info=True)

        logger.info(f"🏁 [ProgressAggregator] Session {session.id} complete, average {summary.average_score}")
        feedback = review.to_dict()
        feedback.update({
            "averageScore": summary.average_score,
            "scores": summary.scores,
            "difficultyPath": summary.difficulty_path,
            "summaryText": f"Session complete. Final average score: {summary.average_score}/100. {review.summary_text}",
        })
        return feedback

    async def _persist(
        self,
        session: AssessmentSession,
        summary: SessionSummary,
        review: SessionReview,
        progress_store: ProficiencyManager,
    ) -> None:
        await progress_store.record_session_result(SessionResult(
            user_id=session.user_id,
            article_id=session.article_id,
            session_id=session.id,
            final_average_score=summary.average_score,
            question_scores=summary.scores,
            difficulty_path=summary.difficulty_path,
            comprehension_score=review.comprehension_score,
            critical_thinking_score=review.critical_thinking_score,
            quality_score=review.quality_score,
            strengths=review.strengths,
            weaknesses=review.weaknesses,
            recommendations=review.recommendations,
        ))

        async with self._user_locks.hold(session.user_id):
            existing = await progress_store.get_proficiency(session.user_id)
            merged = merge_proficiency(existing, session.user_id, review)
            await progress_store.save_proficiency(merged)
