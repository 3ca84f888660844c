"""
services/memo_policy.py

Decides whether to ask the student for a spoken reflection after they rate
their confidence on an answer, and which framing to present.

  wrong,   confidence >= 4  -> high_confidence_wrong
  wrong,   confidence <  4  -> wrong_answer
  correct, confidence <= 2  -> low_confidence_correct
  correct, confidence >= 3  -> no memo

Pure decision logic; recording, transcription and AI analysis live elsewhere.
"""

from enum import Enum
from typing import Dict, Literal, NamedTuple, Optional

from pydantic import BaseModel

PromptType = Literal["reasoning", "mistake_analysis", "next_time_strategy"]

MIN_CONFIDENCE = 1
MAX_CONFIDENCE = 5


class MemoFraming(str, Enum):
    WRONG_ANSWER = "wrong_answer"
    LOW_CONFIDENCE_CORRECT = "low_confidence_correct"
    HIGH_CONFIDENCE_WRONG = "high_confidence_wrong"


class MemoPrompt(NamedTuple):
    title: str
    prompt: str
    description: str
    prompt_type: PromptType


MEMO_PROMPTS: Dict[MemoFraming, MemoPrompt] = {
    MemoFraming.WRONG_ANSWER: MemoPrompt(
        title="Learn from this mistake",
        prompt="What was your line of reasoning? Where do you think you went wrong?",
        description="Recording a voice memo helps you understand your mistakes better",
        prompt_type="mistake_analysis",
    ),
    MemoFraming.LOW_CONFIDENCE_CORRECT: MemoPrompt(
        title="Reinforce your success",
        prompt="You got it right! What was your thought process?",
        description="Even when correct, understanding your reasoning builds confidence",
        prompt_type="reasoning",
    ),
    MemoFraming.HIGH_CONFIDENCE_WRONG: MemoPrompt(
        title="Analyze overconfidence",
        prompt="You were confident but got it wrong. What led to this mistake?",
        description="Overconfidence errors are valuable learning opportunities",
        prompt_type="mistake_analysis",
    ),
}


class MemoDecision(BaseModel):
    should_trigger: bool
    framing: Optional[MemoFraming] = None
    is_correct: bool
    confidence: int

    @property
    def prompt(self) -> Optional[MemoPrompt]:
        return MEMO_PROMPTS[self.framing] if self.framing else None

    def as_dict(self) -> dict:
        data = {
            "should_trigger": self.should_trigger,
            "framing": self.framing.value if self.framing else None,
            "is_correct": self.is_correct,
            "confidence": self.confidence,
        }
        if self.prompt:
            data.update(self.prompt._asdict())
        return data


def validate_confidence(level: int) -> int:
    """Confidence is an integer 1..5. bool is rejected even though it is an int."""
    if isinstance(level, bool) or not isinstance(level, int):
        raise ValueError(f"confidence must be an integer, got {level!r}")
    if not MIN_CONFIDENCE <= level <= MAX_CONFIDENCE:
        raise ValueError(f"confidence must be between {MIN_CONFIDENCE} and {MAX_CONFIDENCE}, got {level}")
    return level


def decide_voice_memo(is_correct: bool, confidence: int) -> MemoDecision:
    """
    Apply the trigger table.

    Args:
        is_correct: Whether the selected option matches the key.
        confidence: Self-rated confidence, 1 (guess) .. 5 (certain).

    Returns:
        MemoDecision; `framing` is None when no memo is requested.
    """
    validate_confidence(confidence)

    framing: Optional[MemoFraming] = None
    if not is_correct:
        framing = (
            MemoFraming.HIGH_CONFIDENCE_WRONG if confidence >= 4
            else MemoFraming.WRONG_ANSWER
        )
    elif confidence <= 2:
        framing = MemoFraming.LOW_CONFIDENCE_CORRECT

    return MemoDecision(
        should_trigger=framing is not None,
        framing=framing,
        is_correct=is_correct,
        confidence=confidence,
    )


def prompt_type_for(framing: MemoFraming) -> PromptType:
    return MEMO_PROMPTS[framing].prompt_type
