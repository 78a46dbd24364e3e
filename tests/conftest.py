import json
import sys
from pathlib import Path
from typing import List, Optional, Union

import pytest

ROOT = Path(__file__).resolve().parents[1]
for path in (ROOT / "socratic_assessment" / "src", ROOT / "backend"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from socratic_assessment.article_repository import Article, ArticleRepository
from socratic_assessment.config import AssessmentSettings
from socratic_assessment.proficiency_manager import ProficiencyManager
from socratic_assessment.session_manager import SessionManager
from socratic_assessment.socratic_assessor import AssessmentContext, SocraticAssessor

USER_ID = "user-1"
ARTICLE_ID = "article-1"


def verdict(is_correct: bool, score: int, feedback: str = "ok") -> str:
    """Grader output as the model would return it."""
    return json.dumps({"isCorrect": is_correct, "score": score, "feedback": feedback})


class FakeGenerationClient:
    """
    Scripted generation client.

    Each call pops the next scripted item: strings are returned, exceptions
    are raised. Prompts are recorded in `prompts`.
    """

    def __init__(self, script: Optional[List[Union[str, Exception]]] = None):
        self.script = list(script or [])
        self.prompts: List[str] = []

    def push(self, *items):
        self.script.extend(items)

    async def generate(self, prompt, history=None):
        self.prompts.append(prompt)
        if not self.script:
            raise AssertionError(f"Unexpected generation call: {prompt[:80]}")
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def call_count(self) -> int:
        return len(self.prompts)


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def article():
    return Article(
        id=ARTICLE_ID,
        title="Attention Is All You Need",
        authors=["Vaswani", "Shazeer"],
        abstract="We propose the Transformer, based solely on attention mechanisms.",
        main_topics=["transformers", "self-attention"],
        keywords=["attention", "translation"],
        full_text="The dominant sequence transduction models are based on recurrent networks. " * 100,
    )


@pytest.fixture
def generation_client():
    return FakeGenerationClient()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def session_store():
    return SessionManager()


@pytest.fixture
def article_repository(article):
    return ArticleRepository(articles={article.id: article})


@pytest.fixture
def progress_store():
    return ProficiencyManager()


@pytest.fixture
def settings():
    return AssessmentSettings(turn_timeout_seconds=5.0, llm_final_feedback=True)


@pytest.fixture
def context(session_store, article_repository, progress_store, generation_client):
    return AssessmentContext(
        current_user=USER_ID,
        session_store=session_store,
        article_repository=article_repository,
        progress_store=progress_store,
        generation_client=generation_client,
    )


@pytest.fixture
def assessor(settings, recording_sleep):
    return SocraticAssessor(settings=settings, sleep=recording_sleep)
