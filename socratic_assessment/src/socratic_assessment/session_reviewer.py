"""
Session Reviewer

Produces the qualitative end-of-session review (comprehension, critical
thinking and answer quality scores plus strengths, weaknesses and
recommendations). Falls back to a fixed review when the model is
unavailable or its output cannot be used.
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Any, List, Optional

from socratic_assessment.article_repository import Article
from socratic_assessment.errors import RateLimitError
from socratic_assessment.generation_client import GenerationFailed
from socratic_assessment.json_output import extract_json_object
from socratic_assessment.session_state import AssessmentSession

logger = logging.getLogger(__name__)


@dataclass
class SessionReview:
    comprehension_score: float
    critical_thinking_score: float
    quality_score: float
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    summary_text: str = ""
    is_fallback: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        return {
            "comprehensionScore": data["comprehension_score"],
            "criticalThinkingScore": data["critical_thinking_score"],
            "qualityScore": data["quality_score"],
            "strengths": data["strengths"],
            "weaknesses": data["weaknesses"],
            "recommendations": data["recommendations"],
            "summaryText": data["summary_text"],
            "isFallback": data["is_fallback"],
        }


def fallback_review() -> SessionReview:
    return SessionReview(
        comprehension_score=70,
        critical_thinking_score=68,
        quality_score=72,
        strengths=[
            "Completed the full Socratic flow",
            "Stayed engaged through all questions",
            "Provided structured answers",
            "Showed effort to explain reasoning",
        ],
        weaknesses=[
            "Some answers could include more specific details",
            "Critical evaluation could be deeper",
            "More evidence/examples would strengthen arguments",
        ],
        recommendations=[
            "Review the methodology section and summarize it in your own words",
            "Practice connecting results to real-world implications",
            "Try to question assumptions/limitations explicitly",
            "Add 1-2 concrete examples in each answer next time",
        ],
        summary_text=(
            "You completed the Socratic session and demonstrated a solid baseline understanding. "
            "To improve further, focus on using specific evidence from the paper and adding deeper "
            "critical evaluation. Keep practicing structured reasoning and connecting findings to implications."
        ),
        is_fallback=True,
    )


def _score(value: Any) -> Optional[float]:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(score):
        return None
    return max(0.0, min(100.0, score))


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def parse_review(text: str) -> Optional[SessionReview]:
    """Parse a review from model output; None if any score is missing."""
    parsed = extract_json_object(text)
    if parsed is None:
        return None
    scores = [_score(parsed.get(key)) for key in ("comprehensionScore", "criticalThinkingScore", "qualityScore")]
    if any(s is None for s in scores):
        return None
    summary = parsed.get("summaryText")
    return SessionReview(
        comprehension_score=scores[0],
        critical_thinking_score=scores[1],
        quality_score=scores[2],
        strengths=_string_list(parsed.get("strengths")),
        weaknesses=_string_list(parsed.get("weaknesses")),
        recommendations=_string_list(parsed.get("recommendations")),
        summary_text=summary.strip() if isinstance(summary, str) else "",
    )


class SessionReviewer:
    """Asks the model for a qualitative review of a finished session."""

    def __init__(self, generator=None, enabled: bool = True):
        self.generator = generator
        self.enabled = enabled and generator is not None

    def build_prompt(self, article: Article, session: AssessmentSession) -> str:
        lines = []
        for i, question in enumerate(session.asked_questions, 1):
            record = session.answer_at(i)
            answer = record.answer_text if record else "(no answer)"
            score = record.score if record else 0
            lines.append(f"Q{i}: {question}\nA{i}: {answer}\nScore: {score}/100")
        transcript = "\n\n".join(lines)
        return f"""You are reviewing a student's Socratic assessment about an academic article.

Article Title: {article.title}
Topics: {article.topics_line}

Transcript:
{transcript}

Return ONLY valid JSON (no markdown) with these keys:
- "comprehensionScore": number 0-100
- "criticalThinkingScore": number 0-100
- "qualityScore": number 0-100
- "strengths": up to 5 short strings
- "weaknesses": up to 5 short strings
- "recommendations": up to 5 short strings
- "summaryText": 2-3 sentences addressed to the student"""

    async def review(self, article: Article, session: AssessmentSession) -> SessionReview:
        """
        Review a session whose fifth answer is graded. Never raises for
        generation problems.
        """
        if not self.enabled:
            return fallback_review()
        try:
            text = await self.generator.generate(self.build_prompt(article, session))
        except (RateLimitError, GenerationFailed) as e:
            logger.warning(f"⚠️ [SessionReviewer] Review generation failed, using fallback: {e}")
            return fallback_review()

        review = parse_review(text)
        if review is None:
            logger.warning("⚠️ [SessionReviewer] Review output unusable, using fallback")
            return fallback_review()
        if not review.summary_text:
            review.summary_text = fallback_review().summary_text
        return review
