"""
services/ai_feedback.py

AI feedback collaborator: turns a voice-memo transcript plus question
context into structured feedback, and audio into a transcript.

Any failure is raised as AIFeedbackError. Callers treat feedback as
best-effort; it never gates the test session.
"""

import io
import json
import logging
from typing import Any, Dict, Optional

from openai import APIError, OpenAI
from pydantic import ValidationError

from config import MODEL_NAME, TRANSCRIBE_MODEL
from upsc_cbt.errors import AIFeedbackError
from upsc_cbt.models.memo_models import MemoFeedback
from upsc_cbt.services.llm_client import call_openai, clean_json_response, make_client

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = "You are an expert UPSC CSE mentor analyzing student reasoning patterns."


def _build_memo_prompt(transcript: str, question_context: Dict[str, Any], is_correct: bool) -> str:
    return (
        "Analyze this UPSC CSE Prelims student's voice memo explanation:\n\n"
        f"Question Context: {json.dumps(question_context, ensure_ascii=False)}\n"
        f"Student's Answer: {'Correct' if is_correct else 'Incorrect'}\n"
        f'Student\'s Explanation: "{transcript}"\n\n'
        "Provide a comprehensive analysis with:\n"
        "1. Summary of student's reasoning\n"
        "2. Key insights from their thinking\n"
        "3. Missing concepts they should know\n"
        "4. Logic errors in their reasoning\n"
        "5. Specific recommendations for improvement\n"
        "6. Clarifications on the topic\n"
        "7. Counterpoints to deepen understanding\n"
        "8. Confidence score (0-1) of their understanding\n\n"
        "Format as JSON with keys: summary, keyInsights, missingConcepts, logicErrors, "
        "recommendations, clarifications, counterpoints, confidenceScore"
    )


def _fallback_feedback(raw: str) -> MemoFeedback:
    """Reply was not JSON: keep the prose, sliced into the fields."""
    return MemoFeedback(
        summary=raw[:200],
        key_insights=[raw[200:400]] if raw[200:400].strip() else [],
        missing_concepts=["Analysis pending"],
        logic_errors=["Review needed"],
        recommendations=["Continue practice"],
        clarifications=raw[400:600],
        counterpoints=raw[600:800],
        confidence_score=0.5,
    )


def parse_feedback(raw: str) -> MemoFeedback:
    cleaned = clean_json_response(raw)
    if cleaned:
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            try:
                return MemoFeedback.model_validate(data)
            except ValidationError as e:
                logger.warning(f"Feedback JSON did not validate, using text fallback: {e}")
    return _fallback_feedback(raw)


class AIFeedbackClient:
    """OpenAI-backed analysis of reflection memos."""

    def __init__(self, api_key: str = "", client: Optional[OpenAI] = None, model: str = MODEL_NAME):
        self.client = client if client is not None else make_client(api_key)
        self.model = model

    @property
    def available(self) -> bool:
        return self.client is not None

    def analyze_voice_memo(
        self,
        transcript: str,
        question_context: Dict[str, Any],
        is_correct: bool,
    ) -> MemoFeedback:
        """
        Structured feedback on a student's spoken reasoning.

        Raises:
            AIFeedbackError: no client, empty transcript, or the API call failed.
        """
        if not self.available:
            raise AIFeedbackError("AI feedback is not configured (missing OpenAI API key)")
        if not transcript or not transcript.strip():
            raise AIFeedbackError("empty transcript")

        raw = call_openai(
            self.client,
            _SYSTEM_PROMPT,
            _build_memo_prompt(transcript, question_context, is_correct),
            temperature=0.3,
            model=self.model,
        )
        if raw is None:
            raise AIFeedbackError("voice memo analysis failed")
        return parse_feedback(raw)

    def transcribe_audio(self, audio: bytes, filename: str = "memo.wav", language: str = "en") -> str:
        """Speech to text for a recorded memo."""
        if not self.available:
            raise AIFeedbackError("AI feedback is not configured (missing OpenAI API key)")
        if not audio:
            raise AIFeedbackError("empty audio")

        buffer = io.BytesIO(audio)
        buffer.name = filename
        try:
            response = self.client.audio.transcriptions.create(
                model=TRANSCRIBE_MODEL,
                file=buffer,
                language=language,
            )
        except APIError as e:
            logger.error(f"Transcription failed: {e}")
            raise AIFeedbackError(f"transcription failed: {e}") from e
        return (response.text or "").strip()
