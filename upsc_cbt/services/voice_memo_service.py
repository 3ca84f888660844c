"""
services/voice_memo_service.py

Reflection-memo pipeline triggered by the memo policy:

  audio -> transcript -> VoiceMemo row -> AI feedback row -> flashcard

plus flashcard review on a fixed interval table (1, 3, 7, 14, 30 days).

AI failures are logged and leave the memo without feedback; they never
propagate. Persistence failures do propagate (PersistenceError).
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from pydantic import BaseModel

from config import FLASHCARD_INTERVALS_DAYS
from upsc_cbt.errors import AIFeedbackError
from upsc_cbt.models.memo_models import MemoFeedback, MemoFeedbackRecord, MemoFlashcard, VoiceMemo
from upsc_cbt.models.question_model import Question
from upsc_cbt.models.records import QuestionAttempt
from upsc_cbt.services.ai_feedback import AIFeedbackClient
from upsc_cbt.services.memo_policy import MemoFraming, prompt_type_for
from upsc_cbt.services.repository import SessionRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_review_interval(review_count: int) -> int:
    """Days until the next review: fixed table, last step repeats."""
    index = min(max(review_count, 0), len(FLASHCARD_INTERVALS_DAYS) - 1)
    return FLASHCARD_INTERVALS_DAYS[index]


class MemoOutcome(BaseModel):
    memo: VoiceMemo
    feedback: Optional[MemoFeedback] = None
    flashcard: Optional[MemoFlashcard] = None
    error: Optional[str] = None


class VoiceMemoService:
    def __init__(
        self,
        repository: SessionRepository,
        ai_client: AIFeedbackClient,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.ai_client = ai_client
        self._now = now

    def process_memo(
        self,
        user_id: str,
        question: Question,
        attempt: QuestionAttempt,
        framing: MemoFraming,
        audio: Optional[bytes] = None,
        transcript: Optional[str] = None,
        duration_seconds: int = 0,
    ) -> MemoOutcome:
        """
        Store a reflection memo and, when the AI side cooperates, its feedback
        and a flashcard due tomorrow.

        Either `audio` (transcribed here) or `transcript` must be given.
        """
        if audio is None and transcript is None:
            raise ValueError("either audio or transcript is required")
        if attempt.question_id != question.id:
            raise ValueError(f"attempt {attempt.id} is not for question {question.id}")

        error: Optional[str] = None
        text = (transcript or "").strip()
        if audio is not None and not text:
            try:
                text = self.ai_client.transcribe_audio(audio)
            except AIFeedbackError as e:
                logger.warning(f"Transcription failed for memo on question {question.id}: {e}")
                error = str(e)

        memo = VoiceMemo(
            id=f"memo_{uuid.uuid4().hex}",
            user_id=user_id,
            question_id=question.id,
            question_attempt_id=attempt.id,
            session_id=attempt.session_id,
            transcription=text,
            prompt_type=prompt_type_for(framing),
            duration_seconds=duration_seconds,
            created_at=self._now(),
        )
        self.repository.create_voice_memo(memo)

        if not text:
            return MemoOutcome(memo=memo, error=error or "empty transcript")

        try:
            feedback = self.ai_client.analyze_voice_memo(text, question.context(), attempt.is_correct)
        except AIFeedbackError as e:
            logger.warning(f"AI feedback unavailable for memo {memo.id}: {e}")
            return MemoOutcome(memo=memo, error=str(e))

        created = self._now()
        self.repository.create_memo_feedback(
            MemoFeedbackRecord(
                id=f"feedback_{uuid.uuid4().hex}",
                voice_memo_id=memo.id,
                user_id=user_id,
                feedback=feedback,
                created_at=created,
            )
        )

        card = MemoFlashcard(
            id=f"flashcard_{uuid.uuid4().hex}",
            user_id=user_id,
            voice_memo_id=memo.id,
            question_id=question.id,
            mistake_summary=feedback.summary,
            user_memo_summary=text[:200],
            ai_correction=feedback.clarifications,
            next_review_date=created + timedelta(days=next_review_interval(0)),
        )
        self.repository.create_flashcard(card)
        logger.info(f"Memo {memo.id} analysed; flashcard {card.id} due {card.next_review_date.date()}")
        return MemoOutcome(memo=memo, feedback=feedback, flashcard=card)

    def review_flashcard(self, card_id: str, mastery_level: int) -> MemoFlashcard:
        """Record a review and schedule the next one from the interval table."""
        if isinstance(mastery_level, bool) or not isinstance(mastery_level, int) or not 0 <= mastery_level <= 5:
            raise ValueError(f"mastery level must be an integer 0-5, got {mastery_level!r}")
        card = self.repository.get_flashcard(card_id)
        if card is None:
            raise KeyError(card_id)

        next_review = self._now() + timedelta(days=next_review_interval(card.review_count))
        fields = {
            "review_count": card.review_count + 1,
            "mastery_level": mastery_level,
            "next_review_date": next_review.isoformat(),
        }
        self.repository.update_flashcard(card_id, fields)
        return card.model_copy(update={**fields, "next_review_date": next_review})
