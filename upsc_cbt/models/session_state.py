"""
models/session_state.py

In-memory state of one sitting: position, answer sheet, confidence, flags
and per-question timing. Owned by SessionEngine; never persisted as a whole.
No UI code.
"""

from enum import Enum
from typing import Dict, Set

from pydantic import BaseModel, Field

from upsc_cbt.models.question_model import OptionLabel


class SessionStatus(str, Enum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    COMPLETED = "completed"


class ExamState(BaseModel):
    """
    Navigation and answer-sheet state of a test session.

    Attributes:
        status:              Lifecycle status. Only moves forward.
        current_quest_index: Index of the question on screen (0-based).
        user_answers:        {question.id: selected label}
        confidence_levels:   {question.id: 1..5}, only set after an answer.
        flagged_questions:   Question ids marked for review.
        question_times:      {question.id: cumulative seconds on screen}
        first_reached:       {question.id: order in which it was first shown, 1-based}
        time_remaining:      Countdown in whole seconds.
        question_started_at: Clock reading when the current question was shown.
    """

    status: SessionStatus = SessionStatus.NOT_STARTED
    current_quest_index: int = Field(
        default=0,
        ge=0,
        description="Index of the question on screen (0-based)"
    )
    user_answers: Dict[str, OptionLabel] = Field(default_factory=dict)
    confidence_levels: Dict[str, int] = Field(default_factory=dict)
    flagged_questions: Set[str] = Field(default_factory=set)
    question_times: Dict[str, float] = Field(default_factory=dict)
    first_reached: Dict[str, int] = Field(default_factory=dict)
    time_remaining: int = Field(default=0, ge=0)
    question_started_at: float = 0.0

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE

    @property
    def is_completed(self) -> bool:
        return self.status is SessionStatus.COMPLETED

    @property
    def answered_count(self) -> int:
        return len(self.user_answers)

    @property
    def flagged_count(self) -> int:
        return len(self.flagged_questions)

    def mark_reached(self, question_id: str) -> int:
        """Record the first visit to a question and return its visit order."""
        if question_id not in self.first_reached:
            self.first_reached[question_id] = len(self.first_reached) + 1
        return self.first_reached[question_id]
