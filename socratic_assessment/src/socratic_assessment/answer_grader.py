"""
Answer Grader

Grades a free-text answer against the article with a rubric prompt and
parses the model's verdict. Unparsable output never fails the turn: it
degrades to a zero-score "could not evaluate" verdict.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any

from socratic_assessment.article_repository import Article
from socratic_assessment.json_output import extract_json_object

logger = logging.getLogger(__name__)

FALLBACK_FEEDBACK = "Could not evaluate reliably. Please be more specific and reference the article."


@dataclass
class GradingVerdict:
    """Result of grading one answer."""
    is_correct: bool
    score: int
    feedback: str
    is_fallback: bool = False


def fallback_verdict() -> GradingVerdict:
    return GradingVerdict(is_correct=False, score=0, feedback=FALLBACK_FEEDBACK, is_fallback=True)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "correct")
    return bool(value)


def _as_score(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(score):
        return 0.0
    return score


def parse_verdict(text: str) -> GradingVerdict:
    """
    Parse a grading verdict from model output.

    Incorrect answers always carry score 0; scores are clamped to [0, 100].
    Non-JSON output yields the fallback verdict.
    """
    parsed = extract_json_object(text)
    if parsed is None:
        logger.warning("⚠️ [AnswerGrader] Grader output was not valid JSON, using fallback verdict")
        return fallback_verdict()

    is_correct = _as_bool(parsed.get("isCorrect"))
    score = _as_score(parsed.get("score")) if is_correct else 0.0
    score = max(0.0, min(100.0, score))
    feedback = parsed.get("feedback")
    return GradingVerdict(
        is_correct=is_correct,
        score=int(round(score)),
        feedback=feedback.strip() if isinstance(feedback, str) else "",
    )


class AnswerGrader:
    """Grades answers through the (retrying) generation client."""

    def __init__(self, generator):
        """
        Args:
            generator: Object with `async generate(prompt) -> str`, normally a
                RetryingGenerator so rate limits are retried once
        """
        self.generator = generator

    def build_prompt(self, article: Article, question: str, answer: str) -> str:
        return f"""You are an educational grader.

Rules:
- Decide if the answer is correct enough to be considered "correct".
- If NOT correct => score MUST be 0.
- If correct => score 1-100 based on accuracy, completeness, and clarity.
- Keep feedback short (1-2 sentences).

Return ONLY valid JSON (no markdown):
{{
  "isCorrect": true,
  "score": 85,
  "feedback": "..."
}}

Article Title: {article.title}
Abstract: {article.abstract or "No abstract"}
Topics: {article.topics_line}

Question: {question}
Student Answer: {answer}
"""

    async def grade(self, article: Article, question: str, answer: str) -> GradingVerdict:
        """
        Grade one answer.

        Args:
            article: Article the question is about
            question: Question text as shown to the student
            answer: Student's answer

        Returns:
            GradingVerdict (fallback verdict if the output is unparsable)

        Raises:
            RateLimitError, GenerationFailed: generation failures propagate
        """
        text = await self.generator.generate(self.build_prompt(article, question, answer))
        verdict = parse_verdict(text)
        logger.info(f"📝 [AnswerGrader] correct={verdict.is_correct} score={verdict.score}")
        return verdict
