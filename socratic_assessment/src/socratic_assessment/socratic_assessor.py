"""
Socratic Assessor - adaptive assessment state machine

Drives one turn of the five-question protocol:

    NOT_STARTED -> IN_PROGRESS(q=1..5) -> COMPLETED

- Start (no answer): generate question 1 at difficulty 3 and reset the session
- Answer for question i: grade, adjust difficulty, then either generate
  question i+1 or (i == 5) complete the session and aggregate progress

A turn either fully succeeds or fully fails: the session is written once,
after the last generation call of the turn. The only exception is progress
aggregation on completion, whose persistence failures are swallowed.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from socratic_assessment.answer_grader import AnswerGrader
from socratic_assessment.article_repository import Article, ArticleRepository
from socratic_assessment.config import START_DIFFICULTY, TOTAL_QUESTIONS, AssessmentSettings
from socratic_assessment.difficulty_controller import clamp_difficulty, next_difficulty
from socratic_assessment.errors import (
    AuthError,
    GenerationServiceError,
    GenerationTimeoutError,
    NotFoundError,
    ValidationError,
)
from socratic_assessment.generation_client import GenerationClient, GenerationFailed, GenerationTimedOut
from socratic_assessment.keyed_locks import KeyedLocks
from socratic_assessment.proficiency_manager import ProficiencyManager, ProficiencyRecord
from socratic_assessment.progress_aggregator import ProgressAggregator
from socratic_assessment.question_generator import QuestionGenerator
from socratic_assessment.retry_policy import RetryingGenerator, RetryPolicy, SleepFn
from socratic_assessment.session_manager import SessionManager
from socratic_assessment.session_reviewer import SessionReviewer
from socratic_assessment.session_state import AnswerRecord, AssessmentSession

logger = logging.getLogger(__name__)


@dataclass
class AssessmentContext:
    """Collaborators for one request, injected by the caller."""
    current_user: Optional[str]
    session_store: SessionManager
    article_repository: ArticleRepository
    progress_store: ProficiencyManager
    generation_client: Optional[GenerationClient]


@dataclass
class TurnRequest:
    article_id: Optional[str]
    session_id: Optional[str]
    user_answer: Optional[str] = None
    current_level: Optional[int] = None
    question_index: Optional[int] = None
    current_question: Optional[str] = None

    @property
    def is_start(self) -> bool:
        return self.user_answer is None


@dataclass
class TurnResult:
    question: Optional[str]
    level: int
    question_index: int
    is_completed: bool
    feedback: Any = None
    answer_score: Optional[int] = None
    is_correct: Optional[bool] = None
    average_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question": self.question,
            "level": self.level,
            "questionIndex": self.question_index,
            "isCompleted": self.is_completed,
            "feedback": self.feedback,
            "answerScore": self.answer_score,
            "isCorrect": self.is_correct,
            "averageScore": self.average_score,
        }


def validate_turn_request(request: TurnRequest) -> None:
    """
    Stateless validation, run before any datastore or generation call.

    Raises:
        ValidationError
    """
    if not request.article_id or not request.session_id:
        raise ValidationError("Missing required fields", details="articleId and sessionId are required")
    if request.is_start:
        return
    if not isinstance(request.user_answer, str) or not request.user_answer.strip():
        raise ValidationError("userAnswer must not be empty")
    if not isinstance(request.current_question, str) or not request.current_question.strip():
        raise ValidationError("Missing currentQuestion for grading")
    if request.question_index is not None and not 1 <= request.question_index <= TOTAL_QUESTIONS:
        raise ValidationError(f"questionIndex must be between 1 and {TOTAL_QUESTIONS}")


class SocraticAssessor:
    """
    Orchestrates assessment turns.

    Holds no per-request state: every collaborator arrives in the
    AssessmentContext. What it does hold is process-wide coordination, the
    per-session locks that serialize turns on the same session.
    """

    def __init__(
        self,
        settings: Optional[AssessmentSettings] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Optional[SleepFn] = None,
    ):
        self.settings = settings or AssessmentSettings()
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=self.settings.retry_max_attempts,
            fallback_delay_seconds=self.settings.retry_fallback_seconds,
            max_delay_seconds=self.settings.max_retry_wait_seconds,
        )
        self._sleep = sleep
        self.progress_aggregator = ProgressAggregator()
        self._session_locks = KeyedLocks()

    # ==================== Turn protocol ====================

    async def run_turn(self, context: AssessmentContext, request: TurnRequest) -> TurnResult:
        """
        Process one turn.

        Raises:
            ValidationError, AuthError, NotFoundError, ConflictError,
            RateLimitError, GenerationTimeoutError, GenerationServiceError,
            DatastoreError
        """
        validate_turn_request(request)
        user_id = self._require_user(context)
        if context.generation_client is None:
            raise GenerationServiceError("Generation service is not configured", details="OPENAI_API_KEY is not set")

        logger.info(
            f"📥 [SocraticAssessor] Turn for session {request.session_id} "
            f"({'start' if request.is_start else f'answer q{request.question_index}'})"
        )
        try:
            return await asyncio.wait_for(
                self._locked_turn(context, request, user_id),
                timeout=self.settings.turn_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"⏱️ [SocraticAssessor] Turn timed out for session {request.session_id}")
            raise GenerationTimeoutError(
                "The assessment service took too long to respond, please try again",
                details=f"turn exceeded {self.settings.turn_timeout_seconds}s",
            ) from e
        except GenerationTimedOut as e:
            raise GenerationTimeoutError("The generation service timed out, please try again", details=e.detail) from e
        except GenerationFailed as e:
            raise GenerationServiceError("Failed to process request", details=e.detail) from e

    async def _locked_turn(self, context: AssessmentContext, request: TurnRequest, user_id: str) -> TurnResult:
        article = await self._load_article(context, request.article_id)
        # Ownership first, so unknown session ids never get a lock entry
        await self._load_owned_session(context, request, user_id)

        async with self._session_locks.hold(request.session_id):
            # Re-read: a turn queued on the lock may have changed the session
            session = await self._load_owned_session(context, request, user_id)
            session.ensure_mutable()

            generator = RetryingGenerator(context.generation_client, self.retry_policy, sleep=self._sleep)
            if request.is_start:
                return await self._start(context, article, session, generator)
            return await self._answer(context, article, session, request, generator)

    async def _start(
        self,
        context: AssessmentContext,
        article: Article,
        session: AssessmentSession,
        generator: RetryingGenerator,
    ) -> TurnResult:
        question = await QuestionGenerator(generator).generate(article, START_DIFFICULTY, 1)
        session.reset_for_start(question, START_DIFFICULTY)
        await context.session_store.save_session(session)
        return TurnResult(question=question, level=START_DIFFICULTY, question_index=1, is_completed=False)

    async def _answer(
        self,
        context: AssessmentContext,
        article: Article,
        session: AssessmentSession,
        request: TurnRequest,
        generator: RetryingGenerator,
    ) -> TurnResult:
        index = request.question_index or max(session.asked_count, 1)
        if index > session.asked_count + 1:
            raise ValidationError(
                f"questionIndex {index} is ahead of the session",
                details=f"{session.asked_count} question(s) asked so far",
            )

        if request.current_level is not None:
            difficulty = clamp_difficulty(request.current_level)
        elif session.asked_count:
            difficulty = clamp_difficulty(session.current_difficulty)
        else:
            difficulty = START_DIFFICULTY

        verdict = await AnswerGrader(generator).grade(article, request.current_question, request.user_answer)
        new_difficulty = next_difficulty(difficulty, verdict.is_correct)
        logger.info(f"📊 [SocraticAssessor] q{index}: difficulty {difficulty} -> {new_difficulty}")

        # Caller's question text is authoritative for the in-flight turn
        session.set_question(index, request.current_question)
        session.set_answer(index, AnswerRecord(
            answer_text=request.user_answer,
            score=verdict.score,
            is_correct=verdict.is_correct,
            difficulty_at_ask=difficulty,
        ))
        session.current_difficulty = new_difficulty

        if index >= TOTAL_QUESTIONS:
            # Last generation call of the session; nothing is written before it
            review = await SessionReviewer(generator, enabled=self.settings.llm_final_feedback).review(article, session)
            session.is_completed = True
            await context.session_store.save_session(session)
            final_feedback = await self.progress_aggregator.complete_session(
                session, review, context.progress_store
            )
            return TurnResult(
                question=None,
                level=new_difficulty,
                question_index=TOTAL_QUESTIONS + 1,
                is_completed=True,
                feedback=final_feedback,
                answer_score=verdict.score,
                is_correct=verdict.is_correct,
                average_score=final_feedback["averageScore"],
            )

        next_question = await QuestionGenerator(generator).generate(
            article, new_difficulty, index + 1, request.user_answer
        )
        session.set_question(index + 1, next_question)
        await context.session_store.save_session(session)
        return TurnResult(
            question=next_question,
            level=new_difficulty,
            question_index=index + 1,
            is_completed=False,
            feedback=verdict.feedback,
            answer_score=verdict.score,
            is_correct=verdict.is_correct,
        )

    # ==================== Session lifecycle ====================

    async def open_session(self, context: AssessmentContext, article_id: Optional[str]) -> AssessmentSession:
        """Resume the caller's active session for an article, or create one."""
        if not article_id:
            raise ValidationError("Missing required fields", details="articleId is required")
        user_id = self._require_user(context)
        await self._load_article(context, article_id)
        return await context.session_store.get_or_create_active_session(article_id, user_id)

    async def get_session(self, context: AssessmentContext, session_id: str) -> AssessmentSession:
        user_id = self._require_user(context)
        session = await context.session_store.get_session(session_id, user_id)
        if session is None:
            raise NotFoundError("Session not found", details=f"session {session_id}")
        return session

    async def list_completed_sessions(self, context: AssessmentContext, article_id: str) -> List[AssessmentSession]:
        user_id = self._require_user(context)
        return await context.session_store.list_completed_sessions(article_id, user_id)

    async def get_proficiency(self, context: AssessmentContext) -> ProficiencyRecord:
        user_id = self._require_user(context)
        record = await context.progress_store.get_proficiency(user_id)
        if record is None:
            raise NotFoundError("No proficiency record yet", details="complete a session first")
        return record

    # ==================== Helpers ====================

    @staticmethod
    def _require_user(context: AssessmentContext) -> str:
        if not context.current_user:
            raise AuthError("Unauthorized")
        return context.current_user

    @staticmethod
    async def _load_article(context: AssessmentContext, article_id: str) -> Article:
        article = await context.article_repository.get_article(article_id)
        if article is None:
            raise NotFoundError("Article not found", details=f"article {article_id}")
        return article

    @staticmethod
    async def _load_owned_session(context: AssessmentContext, request: TurnRequest, user_id: str) -> AssessmentSession:
        session = await context.session_store.get_session(request.session_id, user_id)
        if session is None or session.article_id != request.article_id:
            raise NotFoundError("Session not found", details=f"session {request.session_id}")
        return session
