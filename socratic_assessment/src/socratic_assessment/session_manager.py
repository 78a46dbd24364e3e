"""
Session Manager for Assessment State Persistence

Persists AssessmentSession objects in the Supabase `socratic_sessions`
table, keyed by session id and filtered by owner. Without a Supabase client
sessions are kept in process memory (development and tests).

Writes use a compare-and-swap on the `version` column: a save only lands if
nobody else saved the session since it was read.
"""

import copy
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from socratic_assessment.errors import ConflictError, DatastoreError
from socratic_assessment.session_state import AnswerRecord, AssessmentSession, empty_answer_slots

logger = logging.getLogger(__name__)

SESSIONS_TABLE = "socratic_sessions"


def _parse_json_list(value: Any) -> List[Any]:
    if not value:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except (json.JSONDecodeError, ValueError):
            return []
    return value if isinstance(value, list) else []


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None


class SessionManager:
    """
    Manages assessment session persistence.

    Every read is filtered by the owning user, so a session belonging to
    someone else is indistinguishable from a missing one.
    """

    def __init__(self, supabase_client=None):
        """
        Initialize SessionManager.

        Args:
            supabase_client: Supabase client instance (optional)
        """
        self.supabase = supabase_client
        self.use_supabase = supabase_client is not None
        self._in_memory_sessions: Dict[str, AssessmentSession] = {}

    def session_to_dict(self, session: AssessmentSession) -> Dict[str, Any]:
        """
        Convert AssessmentSession to a row for storage.

        The count columns are derived here so they can never drift from the
        typed lists.
        """
        return {
            "id": session.id,
            "article_id": session.article_id,
            "user_id": session.user_id,
            "questions_asked": list(session.asked_questions),
            "questions_answered": [r.to_dict() if r is not None else None for r in session.answer_records],
            "questions_asked_count": session.asked_count,
            "questions_answered_count": session.answered_count,
            "current_level": session.current_difficulty,
            "is_completed": session.is_completed,
            "created_at": session.created_at.isoformat() if session.created_at else None,
            "version": session.version,
        }

    def dict_to_session(self, data: Dict[str, Any]) -> AssessmentSession:
        """Convert a stored row back into an AssessmentSession."""
        asked = [str(q) for q in _parse_json_list(data.get("questions_asked"))]
        records = empty_answer_slots()
        for i, raw in enumerate(_parse_json_list(data.get("questions_answered"))[:len(records)]):
            if isinstance(raw, dict):
                records[i] = AnswerRecord.from_dict(raw)

        return AssessmentSession(
            id=str(data["id"]),
            article_id=str(data["article_id"]),
            user_id=str(data["user_id"]),
            asked_questions=asked,
            answer_records=records,
            current_difficulty=int(data.get("current_level") or 1),
            is_completed=bool(data.get("is_completed", False)),
            created_at=_parse_timestamp(data.get("created_at")) or datetime.now(timezone.utc),
            updated_at=_parse_timestamp(data.get("updated_at")),
            version=int(data.get("version") or 0),
        )

    async def create_session(self, article_id: str, user_id: str) -> AssessmentSession:
        """
        Create a new, empty session for (article, user).

        Returns:
            The persisted session
        """
        session = AssessmentSession(id=str(uuid.uuid4()), article_id=article_id, user_id=user_id)

        if not self.use_supabase:
            self._in_memory_sessions[session.id] = copy.deepcopy(session)
            return session

        try:
            row = self.session_to_dict(session)
            result = self.supabase.table(SESSIONS_TABLE).insert(row).execute()
        except Exception as e:
            logger.error(f"❌ [SessionManager] Error creating session: {e}")
            raise DatastoreError("Failed to create session", details=str(e)) from e

        if not result.data:
            raise DatastoreError("Failed to create session", details="insert returned no row")
        return self.dict_to_session(result.data[0])

    async def get_session(self, session_id: str, user_id: str) -> Optional[AssessmentSession]:
        """
        Load a session owned by `user_id`.

        Returns:
            AssessmentSession or None if absent or owned by another user
        """
        if not self.use_supabase:
            session = self._in_memory_sessions.get(session_id)
            if session is None or session.user_id != user_id:
                return None
            return copy.deepcopy(session)

        try:
            result = self.supabase.table(SESSIONS_TABLE) \
                .select('*') \
                .eq('id', session_id) \
                .eq('user_id', user_id) \
                .limit(1) \
                .execute()
        except Exception as e:
            logger.error(f"❌ [SessionManager] Error loading session {session_id}: {e}")
            raise DatastoreError("Failed to load session", details=str(e)) from e

        if result.data:
            return self.dict_to_session(result.data[0])
        return None

    async def get_active_session(self, article_id: str, user_id: str) -> Optional[AssessmentSession]:
        """Most recently created non-completed session for (article, user)."""
        if not self.use_supabase:
            active = [
                s for s in self._in_memory_sessions.values()
                if s.article_id == article_id and s.user_id == user_id and not s.is_completed
            ]
            if not active:
                return None
            return copy.deepcopy(max(active, key=lambda s: s.created_at))

        try:
            result = self.supabase.table(SESSIONS_TABLE) \
                .select('*') \
                .eq('article_id', article_id) \
                .eq('user_id', user_id) \
                .eq('is_completed', False) \
                .order('created_at', desc=True) \
                .limit(1) \
                .execute()
        except Exception as e:
            logger.error(f"❌ [SessionManager] Error fetching active session: {e}")
            raise DatastoreError("Failed to fetch active session", details=str(e)) from e

        if result.data:
            return self.dict_to_session(result.data[0])
        return None

    async def get_or_create_active_session(self, article_id: str, user_id: str) -> AssessmentSession:
        """Resume the active session for (article, user), creating one if none exists."""
        session = await self.get_active_session(article_id, user_id)
        if session is not None:
            logger.info(f"💾 [SessionManager] Resuming session {session.id} ({session.answered_count} answered)")
            return session
        session = await self.create_session(article_id, user_id)
        logger.info(f"💾 [SessionManager] Created session {session.id} for article {article_id}")
        return session

    async def list_completed_sessions(self, article_id: str, user_id: str) -> List[AssessmentSession]:
        """Completed sessions for (article, user), newest first."""
        if not self.use_supabase:
            done = [
                s for s in self._in_memory_sessions.values()
                if s.article_id == article_id and s.user_id == user_id and s.is_completed
            ]
            return [copy.deepcopy(s) for s in sorted(done, key=lambda s: s.created_at, reverse=True)]

        try:
            result = self.supabase.table(SESSIONS_TABLE) \
                .select('*') \
                .eq('article_id', article_id) \
                .eq('user_id', user_id) \
                .eq('is_completed', True) \
                .order('created_at', desc=True) \
                .execute()
        except Exception as e:
            logger.error(f"❌ [SessionManager] Error fetching completed sessions: {e}")
            raise DatastoreError("Failed to fetch completed sessions", details=str(e)) from e

        return [self.dict_to_session(row) for row in (result.data or [])]

    async def save_session(self, session: AssessmentSession) -> AssessmentSession:
        """
        Persist the session if nobody saved it since it was read.

        Args:
            session: Session carrying the version it was read at

        Returns:
            The same session with its version bumped

        Raises:
            ConflictError: the stored version moved on (concurrent turn)
            DatastoreError: the write failed
        """
        expected_version = session.version
        now = datetime.now(timezone.utc)

        if not self.use_supabase:
            stored = self._in_memory_sessions.get(session.id)
            if stored is None or stored.user_id != session.user_id or stored.version != expected_version:
                raise ConflictError(
                    "Session was modified by another request",
                    code="CONCURRENT_UPDATE",
                    details=f"session {session.id}",
                )
            session.version = expected_version + 1
            session.updated_at = now
            self._in_memory_sessions[session.id] = copy.deepcopy(session)
            return session

        update_data = self.session_to_dict(session)
        for immutable in ("id", "article_id", "user_id", "created_at"):
            update_data.pop(immutable)
        update_data["version"] = expected_version + 1
        update_data["updated_at"] = now.isoformat()

        try:
            result = self.supabase.table(SESSIONS_TABLE) \
                .update(update_data) \
                .eq('id', session.id) \
                .eq('user_id', session.user_id) \
                .eq('version', expected_version) \
                .execute()
        except Exception as e:
            logger.error(f"❌ [SessionManager] Error saving session {session.id}: {e}")
            raise DatastoreError("Failed to save session", details=str(e)) from e

        if not result.data:
            raise ConflictError(
                "Session was modified by another request",
                code="CONCURRENT_UPDATE",
                details=f"session {session.id}",
            )

        session.version = expected_version + 1
        session.updated_at = now
        return session
