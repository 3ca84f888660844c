"""
models/memo_models.py

Voice-memo reflection records: the memo itself, the AI analysis of it and
the flashcard scheduled from that analysis.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator


def _as_list(v: Any) -> List[str]:
    if v is None:
        return []
    if isinstance(v, str):
        return [v] if v.strip() else []
    return [str(item) for item in v]


class VoiceMemo(BaseModel):
    id: str
    user_id: str
    question_id: str
    question_attempt_id: Optional[str] = None
    session_id: Optional[str] = None
    audio_url: Optional[str] = None
    transcription: str = ""
    prompt_type: Literal["reasoning", "mistake_analysis", "next_time_strategy"] = "mistake_analysis"
    duration_seconds: int = 0
    created_at: datetime

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class MemoFeedback(BaseModel):
    """
    Structured analysis of a memo transcript.
    Accepts both snake_case and the camelCase keys the model tends to emit.
    """

    summary: str = ""
    key_insights: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("key_insights", "keyInsights"),
    )
    missing_concepts: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("missing_concepts", "missingConcepts"),
    )
    logic_errors: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("logic_errors", "logicErrors"),
    )
    recommendations: List[str] = Field(default_factory=list)
    clarifications: str = ""
    counterpoints: str = ""
    confidence_score: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        validation_alias=AliasChoices("confidence_score", "confidenceScore"),
    )

    @field_validator("key_insights", "missing_concepts", "logic_errors", "recommendations", mode="before")
    @classmethod
    def coerce_list(cls, v: Any) -> List[str]:
        return _as_list(v)

    @field_validator("summary", "clarifications", "counterpoints", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        if v is None:
            return ""
        if isinstance(v, (list, tuple)):
            return "\n".join(str(item) for item in v)
        return str(v)

    @field_validator("confidence_score", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        # model output, not user input: keep it inside [0, 1]
        try:
            score = float(v)
        except (TypeError, ValueError):
            return 0.5
        return min(1.0, max(0.0, score))


class MemoFeedbackRecord(BaseModel):
    id: str
    voice_memo_id: str
    user_id: str
    feedback: MemoFeedback
    created_at: datetime

    def to_row(self) -> Dict[str, Any]:
        fb = self.feedback
        return {
            "id": self.id,
            "voice_memo_id": self.voice_memo_id,
            "user_id": self.user_id,
            "ai_summary": fb.summary,
            "key_insights": fb.key_insights,
            "missing_concepts": fb.missing_concepts,
            "logic_errors": fb.logic_errors,
            "recommendations": fb.recommendations,
            "clarifications": fb.clarifications,
            "counterpoints": fb.counterpoints,
            "confidence_score": fb.confidence_score,
            "created_at": self.created_at.isoformat(),
        }


class MemoFlashcard(BaseModel):
    id: str
    user_id: str
    voice_memo_id: str
    question_id: str
    mistake_summary: str = ""
    user_memo_summary: str = ""
    ai_correction: str = ""
    next_review_date: datetime
    review_count: int = Field(default=0, ge=0)
    mastery_level: int = Field(default=0, ge=0, le=5)

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MemoFlashcard":
        return cls.model_validate(row)
