"""
FastAPI Backend for the Adaptive Socratic Assessment Engine

Provides REST API endpoints with:
- JWT Authentication
- Supabase persistence for sessions, results and proficiency
- Adaptive five-question Socratic assessment turns
- Progress tracking
"""

from fastapi import FastAPI, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
import os
import sys
import time
import logging
import signal

# Setup enhanced logging with pretty formatting
from lib.logger import setup_logging, get_logger

setup_logging(level=logging.INFO, use_colors=True)

logger = get_logger("backend.main")

# Add the socratic_assessment package to Python path (when not pip-installed)
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)

package_src = os.path.join(project_root, 'socratic_assessment', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lib.supabase_client import get_supabase_client
from lib.auth import get_current_user

from socratic_assessment import (
    AssessmentContext,
    AssessmentError,
    AssessmentSettings,
    SocraticAssessor,
    TurnRequest,
)
from socratic_assessment.article_repository import ArticleRepository
from socratic_assessment.errors import UnclassifiedServiceError
from socratic_assessment.generation_client import OpenAIGenerationClient
from socratic_assessment.proficiency_manager import ProficiencyManager
from socratic_assessment.session_manager import SessionManager

settings = AssessmentSettings.from_env()

# Singletons: the assessor owns the per-session locks, the stores own the
# in-memory fallback data, so both must outlive a single request
_assessor: Optional[SocraticAssessor] = None
_session_store: Optional[SessionManager] = None
_article_repository: Optional[ArticleRepository] = None
_progress_store: Optional[ProficiencyManager] = None
_generation_client: Optional[OpenAIGenerationClient] = None


def get_assessor() -> SocraticAssessor:
    """Get or create singleton SocraticAssessor instance."""
    global _assessor
    if _assessor is None:
        _assessor = SocraticAssessor(settings=settings)
    return _assessor


def get_stores():
    """Get or create the datastore-backed stores (in-memory without Supabase)."""
    global _session_store, _article_repository, _progress_store
    if _session_store is None:
        supabase = get_supabase_client()
        _session_store = SessionManager(supabase_client=supabase)
        _article_repository = ArticleRepository(supabase_client=supabase)
        _progress_store = ProficiencyManager(supabase_client=supabase)
    return _session_store, _article_repository, _progress_store


def get_generation_client() -> Optional[OpenAIGenerationClient]:
    """Get or create the generation client; None when no API key is configured."""
    global _generation_client
    if _generation_client is None and settings.openai_api_key:
        _generation_client = OpenAIGenerationClient(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
        )
    return _generation_client


async def get_assessment_context(user: dict = Depends(get_current_user)) -> AssessmentContext:
    """Build the per-request context handed to the assessor."""
    session_store, article_repository, progress_store = get_stores()
    return AssessmentContext(
        current_user=user.get("id"),
        session_store=session_store,
        article_repository=article_repository,
        progress_store=progress_store,
        generation_client=get_generation_client(),
    )


# Initialize FastAPI app
app = FastAPI(
    title="Socratic Assessment API",
    description="Adaptive Socratic assessment over uploaded articles, with Supabase persistence",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Pydantic Models ====================

class TurnBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    article_id: Optional[str] = Field(None, alias="articleId")
    session_id: Optional[str] = Field(None, alias="sessionId")
    user_answer: Optional[str] = Field(None, alias="userAnswer")
    current_level: Optional[int] = Field(None, alias="currentLevel")
    question_index: Optional[int] = Field(None, alias="questionIndex")
    current_question: Optional[str] = Field(None, alias="currentQuestion")


class OpenSessionBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    article_id: Optional[str] = Field(None, alias="articleId")


class TurnResponse(BaseModel):
    question: Optional[str]
    level: int
    questionIndex: int
    isCompleted: bool
    feedback: Optional[Any] = None
    answerScore: Optional[int] = None
    isCorrect: Optional[bool] = None
    averageScore: Optional[float] = None


class SessionSnapshot(BaseModel):
    id: str
    articleId: str
    askedQuestions: List[str]
    answerRecords: List[Optional[Dict[str, Any]]]
    questionsAskedCount: int
    questionsAnsweredCount: int
    currentLevel: int
    isCompleted: bool
    createdAt: Optional[str] = None


# ==================== Error Handling ====================

def _error_response(error: AssessmentError) -> JSONResponse:
    headers = {}
    retry_after = getattr(error, "retry_after_seconds", None)
    if retry_after:
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(status_code=error.status_code, content=error.to_dict(), headers=headers)


@app.exception_handler(AssessmentError)
async def assessment_error_handler(request: Request, exc: AssessmentError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}", data={"message": exc.message, "details": exc.details})
    else:
        logger.warning(f"{exc.code} on {request.url.path}", data={"message": exc.message})
    return _error_response(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', []))}: {err.get('msg')}" for err in exc.errors()
    )
    return JSONResponse(
        status_code=400,
        content={"error": "VALIDATION_ERROR", "message": "Invalid request body", "details": details},
    )


# ==================== API Endpoints ====================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "Socratic Assessment API",
        "version": "1.0.0",
        "supabase_connected": get_supabase_client() is not None,
        "generation_configured": bool(settings.openai_api_key),
    }


@app.post("/api/socraticbot", response_model=TurnResponse)
async def socratic_turn(
    body: TurnBody,
    context: AssessmentContext = Depends(get_assessment_context),
    assessor: SocraticAssessor = Depends(get_assessor),
):
    """
    Run one assessment turn: start the session (no userAnswer) or grade an
    answer and return the next question or the final summary.
    """
    start = time.time()
    logger.request("POST", "/api/socraticbot", context.current_user, data={
        "session_id": body.session_id,
        "question_index": body.question_index,
        "start": body.user_answer is None,
    })

    try:
        result = await assessor.run_turn(context, TurnRequest(
            article_id=body.article_id,
            session_id=body.session_id,
            user_answer=body.user_answer,
            current_level=body.current_level,
            question_index=body.question_index,
            current_question=body.current_question,
        ))
    except AssessmentError:
        raise
    except Exception as e:
        logger.error("Unexpected failure during turn", error=e)
        raise UnclassifiedServiceError("Failed to process request", details=str(e)) from e

    logger.response(200, "/api/socraticbot", time.time() - start, data={
        "question_index": result.question_index,
        "level": result.level,
        "completed": result.is_completed,
    })
    return result.to_dict()


@app.post("/api/socratic/sessions", response_model=SessionSnapshot)
async def open_session(
    body: OpenSessionBody,
    context: AssessmentContext = Depends(get_assessment_context),
    assessor: SocraticAssessor = Depends(get_assessor),
):
    """Resume the caller's active session for an article, or create one."""
    session = await assessor.open_session(context, body.article_id)
    return session.snapshot()


@app.get("/api/socratic/sessions/{session_id}", response_model=SessionSnapshot)
async def get_session(
    session_id: str,
    context: AssessmentContext = Depends(get_assessment_context),
    assessor: SocraticAssessor = Depends(get_assessor),
):
    session = await assessor.get_session(context, session_id)
    return session.snapshot()


@app.get("/api/socratic/articles/{article_id}/sessions/completed", response_model=List[SessionSnapshot])
async def list_completed_sessions(
    article_id: str,
    context: AssessmentContext = Depends(get_assessment_context),
    assessor: SocraticAssessor = Depends(get_assessor),
):
    """Completed sessions for an article, newest first."""
    sessions = await assessor.list_completed_sessions(context, article_id)
    return [s.snapshot() for s in sessions]


@app.get("/api/progress")
async def get_progress(
    context: AssessmentContext = Depends(get_assessment_context),
    assessor: SocraticAssessor = Depends(get_assessor),
):
    """The caller's cross-session proficiency record."""
    record = await assessor.get_proficiency(context)
    return record.to_dict()


if __name__ == "__main__":
    import uvicorn

    def handle_exit(*args):
        """Handle graceful shutdown."""
        logger.section("SERVER SHUTDOWN", {"reason": "signal received"})
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    logger.section("SERVER START", {
        "model": settings.openai_model,
        "turn_timeout_s": settings.turn_timeout_seconds,
        "cors_origins": ", ".join(settings.cors_origins),
    })
    try:
        uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped.")
        sys.exit(0)
