"""
Proficiency Manager

Persists user-level proficiency aggregated across all assessment sessions
(`student_proficiency`, one row per user) and the per-session completion
records (`session_results`, one row per completed session).
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from socratic_assessment.errors import DatastoreError

logger = logging.getLogger(__name__)

PROFICIENCY_TABLE = "student_proficiency"
RESULTS_TABLE = "session_results"


@dataclass
class ProficiencyRecord:
    """A user's long-run, cross-session smoothed proficiency."""
    user_id: str
    comprehension_score: Optional[float] = None
    critical_thinking_score: Optional[float] = None
    quality_score: Optional[float] = None
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    sessions_completed: int = 0
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "comprehensionScore": self.comprehension_score,
            "criticalThinkingScore": self.critical_thinking_score,
            "qualityScore": self.quality_score,
            "strengths": list(self.strengths),
            "weaknesses": list(self.weaknesses),
            "recommendations": list(self.recommendations),
            "sessionsCompleted": self.sessions_completed,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class SessionResult:
    """Completion record for one finished session."""
    user_id: str
    article_id: str
    session_id: str
    final_average_score: float
    question_scores: List[int]
    difficulty_path: List[int]
    comprehension_score: float
    critical_thinking_score: float
    quality_score: float
    strengths: List[str]
    weaknesses: List[str]
    recommendations: List[str]

    def to_row(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "article_id": self.article_id,
            "session_id": self.session_id,
            "final_average_score": self.final_average_score,
            "question_scores": list(self.question_scores),
            "difficulty_path": list(self.difficulty_path),
            "comprehension_score": self.comprehension_score,
            "critical_thinking_score": self.critical_thinking_score,
            "quality_score": self.quality_score,
            "strengths": list(self.strengths),
            "weaknesses": list(self.weaknesses),
            "recommendations": list(self.recommendations),
        }


def _json_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except (json.JSONDecodeError, ValueError):
            return []
    return [str(v) for v in value] if isinstance(value, list) else []


def _optional_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


class ProficiencyManager:
    """
    Reads and writes proficiency data.

    Falls back to process memory when no Supabase client is configured.
    Errors are raised as DatastoreError; the caller decides whether to
    swallow them.
    """

    def __init__(self, supabase_client=None):
        self.supabase = supabase_client
        self.use_supabase = supabase_client is not None
        self._in_memory_records: Dict[str, ProficiencyRecord] = {}
        self._in_memory_results: List[SessionResult] = []

        if not self.use_supabase:
            logger.warning("⚠️ [ProficiencyManager] Supabase not available, using in-memory fallback")

    async def get_proficiency(self, user_id: str) -> Optional[ProficiencyRecord]:
        """
        Get a user's proficiency record.

        Args:
            user_id: User UUID

        Returns:
            ProficiencyRecord or None if the user never completed a session
        """
        if not self.use_supabase:
            record = self._in_memory_records.get(user_id)
            return copy.deepcopy(record) if record else None

        try:
            result = self.supabase.table(PROFICIENCY_TABLE) \
                .select('*') \
                .eq('user_id', user_id) \
                .limit(1) \
                .execute()
        except Exception as e:
            logger.error(f"❌ [ProficiencyManager] Error loading proficiency: {e}")
            raise DatastoreError("Failed to load proficiency", details=str(e)) from e

        if result.data:
            return self._dict_to_record(result.data[0])
        return None

    async def save_proficiency(self, record: ProficiencyRecord) -> ProficiencyRecord:
        """Upsert a proficiency record keyed by user_id."""
        record.updated_at = datetime.now(timezone.utc)

        if not self.use_supabase:
            self._in_memory_records[record.user_id] = copy.deepcopy(record)
            return record

        row = {
            "user_id": record.user_id,
            "comprehension_score": record.comprehension_score,
            "critical_thinking_score": record.critical_thinking_score,
            "quality_score": record.quality_score,
            "strengths": record.strengths,
            "weaknesses": record.weaknesses,
            "recommendations": record.recommendations,
            "sessions_completed": record.sessions_completed,
            "updated_at": record.updated_at.isoformat(),
        }
        try:
            self.supabase.table(PROFICIENCY_TABLE).upsert(row, on_conflict="user_id").execute()
        except Exception as e:
            logger.error(f"❌ [ProficiencyManager] Error saving proficiency: {e}")
            raise DatastoreError("Failed to save proficiency", details=str(e)) from e

        logger.info(f"✅ [ProficiencyManager] Updated proficiency for user {record.user_id[:20]}...")
        return record

    async def record_session_result(self, result: SessionResult) -> None:
        """Insert the completion record for a finished session."""
        if not self.use_supabase:
            self._in_memory_results.append(copy.deepcopy(result))
            return

        try:
            self.supabase.table(RESULTS_TABLE).insert(result.to_row()).execute()
        except Exception as e:
            logger.error(f"❌ [ProficiencyManager] Error inserting session result: {e}")
            raise DatastoreError("Failed to record session result", details=str(e)) from e

    def _dict_to_record(self, data: Dict[str, Any]) -> ProficiencyRecord:
        updated_at = None
        if data.get('updated_at'):
            try:
                updated_at = datetime.fromisoformat(str(data['updated_at']).replace('Z', '+00:00'))
            except ValueError:
                pass

        return ProficiencyRecord(
            user_id=str(data['user_id']),
            comprehension_score=_optional_float(data.get('comprehension_score')),
            critical_thinking_score=_optional_float(data.get('critical_thinking_score')),
            quality_score=_optional_float(data.get('quality_score')),
            strengths=_json_list(data.get('strengths')),
            weaknesses=_json_list(data.get('weaknesses')),
            recommendations=_json_list(data.get('recommendations')),
            sessions_completed=int(data.get('sessions_completed') or 0),
            updated_at=updated_at,
        )
