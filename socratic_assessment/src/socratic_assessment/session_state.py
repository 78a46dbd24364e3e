"""
Session State Data Model

Typed state for one five-question assessment attempt. Answers live in a
fixed-length, index-addressed list so resubmitting the same question
overwrites its slot instead of appending a duplicate.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from socratic_assessment.config import START_DIFFICULTY, TOTAL_QUESTIONS
from socratic_assessment.errors import ConflictError, ValidationError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def empty_answer_slots() -> List[Optional["AnswerRecord"]]:
    return [None] * TOTAL_QUESTIONS


@dataclass
class AnswerRecord:
    """One graded answer, embedded in its session."""
    answer_text: str
    score: int
    is_correct: bool
    difficulty_at_ask: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answer": self.answer_text,
            "score": self.score,
            "isCorrect": self.is_correct,
            "difficulty": self.difficulty_at_ask,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnswerRecord":
        return cls(
            answer_text=str(data.get("answer", "")),
            score=int(data.get("score") or 0),
            is_correct=bool(data.get("isCorrect", False)),
            difficulty_at_ask=int(data.get("difficulty") or 0),
        )


@dataclass
class AssessmentSession:
    """
    One assessment attempt for an (article, user) pair.

    Invariant: answered_count <= len(asked_questions) <= 5. Once
    is_completed is set the session rejects every further mutation.
    """
    id: str
    article_id: str
    user_id: str
    asked_questions: List[str] = field(default_factory=list)
    answer_records: List[Optional[AnswerRecord]] = field(default_factory=empty_answer_slots)
    current_difficulty: int = 1
    is_completed: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None
    # Optimistic concurrency token, bumped by the store on every save
    version: int = 0

    @property
    def asked_count(self) -> int:
        return len(self.asked_questions)

    @property
    def answered_count(self) -> int:
        return sum(1 for record in self.answer_records if record is not None)

    def ensure_mutable(self) -> None:
        if self.is_completed:
            raise ConflictError("Session already completed", details=f"session {self.id}")

    def question_at(self, index: int) -> Optional[str]:
        """Question text at 1-based index, or None if not asked yet."""
        if 1 <= index <= len(self.asked_questions):
            return self.asked_questions[index - 1]
        return None

    def answer_at(self, index: int) -> Optional[AnswerRecord]:
        if 1 <= index <= TOTAL_QUESTIONS:
            return self.answer_records[index - 1]
        return None

    def set_question(self, index: int, text: str) -> None:
        """
        Overwrite the question at `index`, or append it if it is the next one.

        Replacing a question with different text drops the answer stored for
        it, since that answer was given to the old question.
        """
        self.ensure_mutable()
        if not 1 <= index <= TOTAL_QUESTIONS:
            raise ValidationError(f"questionIndex must be between 1 and {TOTAL_QUESTIONS}")
        if index <= len(self.asked_questions):
            if self.asked_questions[index - 1] != text:
                self.answer_records[index - 1] = None
            self.asked_questions[index - 1] = text
        elif index == len(self.asked_questions) + 1:
            self.asked_questions.append(text)
        else:
            raise ValidationError(
                f"questionIndex {index} is ahead of the session ({len(self.asked_questions)} asked)"
            )

    def set_answer(self, index: int, record: AnswerRecord) -> None:
        """Store the graded answer for `index`, replacing any earlier one."""
        self.ensure_mutable()
        if index > len(self.asked_questions):
            raise ValidationError(f"question {index} has not been asked")
        self.answer_records[index - 1] = record

    def reset_for_start(self, first_question: str, difficulty: int = START_DIFFICULTY) -> None:
        self.ensure_mutable()
        self.asked_questions = [first_question]
        self.answer_records = empty_answer_slots()
        self.current_difficulty = difficulty

    def scores(self) -> List[int]:
        """Per-question scores, 0 for unanswered slots."""
        return [record.score if record is not None else 0 for record in self.answer_records]

    def difficulty_path(self) -> List[int]:
        """Difficulty at ask time per question, 0 for unanswered slots."""
        return [record.difficulty_at_ask if record is not None else 0 for record in self.answer_records]

    def snapshot(self) -> Dict[str, Any]:
        """Client-facing view of the session."""
        return {
            "id": self.id,
            "articleId": self.article_id,
            "askedQuestions": list(self.asked_questions),
            "answerRecords": [r.to_dict() if r is not None else None for r in self.answer_records],
            "questionsAskedCount": self.asked_count,
            "questionsAnsweredCount": self.answered_count,
            "currentLevel": self.current_difficulty,
            "isCompleted": self.is_completed,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
