"""
Question Generator

Produces the next Socratic question for an article at a given difficulty.
The first question is always generated at the medium starting level.
"""

import logging
import re
from typing import Optional

from socratic_assessment.article_repository import Article
from socratic_assessment.config import START_DIFFICULTY, TOTAL_QUESTIONS
from socratic_assessment.difficulty_controller import clamp_difficulty
from socratic_assessment.generation_client import GenerationFailed
from socratic_assessment.json_output import strip_code_fences

logger = logging.getLogger(__name__)

LEVEL_GUIDANCE = {
    1: "simple comprehension",
    2: "method/design basics",
    3: "findings reasoning",
    4: "implications/limitations",
    5: "critical thinking, alternatives, future work",
}

TEXT_PREVIEW_CHARS = 3000

_LABEL = re.compile(r"^\s*(?:\*\*)?(?:question(?:\s*\d+)?|q\d*)\s*[:.)-]\s*(?:\*\*)?\s*", re.IGNORECASE)


def clean_question_text(raw: str) -> str:
    """Strip fences, labels, emphasis and wrapping quotes around a question."""
    text = strip_code_fences(raw or "")
    text = _LABEL.sub("", text, count=1)
    text = text.strip().strip("*").strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        text = text[1:-1].strip()
    return text


class QuestionGenerator:
    """Builds difficulty-tagged prompts and returns bare question text."""

    def __init__(self, generator):
        self.generator = generator

    def first_question_prompt(self, article: Article) -> str:
        preview = article.full_text[:TEXT_PREVIEW_CHARS] if article.full_text else "Not available"
        return f"""You are a Socratic teaching bot.
Generate the FIRST question for this academic article.

Difficulty Level: {START_DIFFICULTY} (1=easy, 5=hard)

Title: {article.title}
Authors: {", ".join(article.authors) or "Unknown"}
Abstract: {article.abstract or "No abstract"}
Topics: {article.topics_line}
Text Preview: {preview}

Guidelines:
- Moderately challenging comprehension
- Not too basic, not too advanced
- Encourage explanation (not yes/no)

Respond ONLY with the question text."""

    def next_question_prompt(
        self,
        article: Article,
        difficulty: int,
        question_number: int,
        prior_answer: Optional[str],
    ) -> str:
        guidance = "\n".join(f"- Level {level}: {text}" for level, text in LEVEL_GUIDANCE.items())
        return f"""You are a Socratic teaching bot.
Generate the NEXT question (Question {question_number} of {TOTAL_QUESTIONS}).

Difficulty Level: {difficulty} (1=easy, 5=hard)
Focus for this level: {LEVEL_GUIDANCE[difficulty]}

Article Title: {article.title}
Topics: {article.topics_line}

Student's previous answer (for context): "{prior_answer or ""}"

Guidelines by difficulty:
{guidance}

Respond ONLY with the question text."""

    async def generate(
        self,
        article: Article,
        difficulty: int,
        question_number: int,
        prior_answer: Optional[str] = None,
    ) -> str:
        """
        Generate question `question_number`.

        Question 1 ignores `difficulty` and uses the starting level.

        Raises:
            RateLimitError, GenerationFailed
        """
        if question_number <= 1:
            prompt = self.first_question_prompt(article)
        else:
            prompt = self.next_question_prompt(article, clamp_difficulty(difficulty), question_number, prior_answer)

        question = clean_question_text(await self.generator.generate(prompt))
        if not question:
            raise GenerationFailed("Generation service returned an empty question")
        logger.info(f"❓ [QuestionGenerator] Question {question_number} generated")
        return question
