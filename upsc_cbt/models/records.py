"""
models/records.py

Persisted records of a sitting (test_sessions, question_attempts) and the
scored outcome returned to callers.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from upsc_cbt.models.question_model import OptionLabel


def attempt_id_for(session_id: str, question_id: str) -> str:
    """One attempt row per (session, question); re-answering updates it."""
    return f"attempt_{session_id}_{question_id}"


class TestSession(BaseModel):
    """A user's sitting of a question set."""

    id: str
    user_id: str
    test_name: str = "Practice Test"
    test_type: Literal["practice", "mock", "adaptive"] = "practice"
    question_ids: List[str] = Field(default_factory=list)
    total_questions: int = 0
    duration_seconds: int
    negative_mark: float
    started_at: datetime
    completed_at: Optional[datetime] = None
    is_completed: bool = False
    total_attempted: int = 0
    correct_answers: int = 0
    wrong_answers: int = 0
    skipped: int = 0
    raw_score: float = 0.0
    negative_marks: float = 0.0
    final_score: float = 0.0
    time_taken_seconds: int = 0

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class QuestionAttempt(BaseModel):
    id: str
    user_id: str
    session_id: str
    question_id: str
    selected_answer: Optional[OptionLabel] = None
    is_correct: bool = False
    confidence_level: int = Field(default=3, ge=1, le=5)
    time_taken_seconds: int = Field(default=0, ge=0)
    attempt_order: int = Field(default=0, ge=0)
    was_flagged: bool = False
    created_at: datetime

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class TopicScore(BaseModel):
    topic: str
    total: int = 0
    correct: int = 0
    wrong: int = 0
    skipped: int = 0
    net_score: float = 0.0


class SessionResult(BaseModel):
    """
    Scored outcome of a submitted session.

    negative_marks and final_score are rounded to 2 decimals (half-up);
    final_score is never below 0.
    """

    session_id: str
    total_questions: int
    attempted: int
    correct: int
    wrong: int
    skipped: int
    raw_score: float
    negative_marks: float
    final_score: float
    elapsed_seconds: int
    auto_submitted: bool = False
    topic_scores: List[TopicScore] = Field(default_factory=list)

    def session_fields(self, completed_at: datetime) -> Dict[str, Any]:
        """Column updates written to the session row on submission."""
        return {
            "completed_at": completed_at.isoformat(),
            "is_completed": True,
            "total_attempted": self.attempted,
            "correct_answers": self.correct,
            "wrong_answers": self.wrong,
            "skipped": self.skipped,
            "raw_score": self.raw_score,
            "negative_marks": self.negative_marks,
            "final_score": self.final_score,
            "time_taken_seconds": self.elapsed_seconds,
        }
