"""
Unit Tests for the AI feedback collaborator and the shared OpenAI helpers
"""

import json

import httpx
import pytest
from openai import APIConnectionError

from conftest import FEEDBACK_JSON, FakeOpenAI
from upsc_cbt.errors import AIFeedbackError
from upsc_cbt.services.ai_feedback import AIFeedbackClient, parse_feedback
from upsc_cbt.services.llm_client import call_openai, clean_json_response


def _connection_error():
    return APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))


class TestParseFeedback:

    def test_camel_case_keys_are_accepted(self):
        fb = parse_feedback(FEEDBACK_JSON)
        assert fb.summary.startswith("Confused the writ jurisdiction")
        assert fb.missing_concepts == ["Article 32 is itself a Fundamental Right"]
        assert fb.confidence_score == 0.4

    def test_fenced_json_is_unwrapped(self):
        fb = parse_feedback(f"```json\n{FEEDBACK_JSON}\n```")
        assert fb.recommendations == ["Revise Part III remedies"]

    def test_prose_reply_falls_back_to_text_slices(self):
        raw = "The student reasoned well about federal structure. " * 10
        fb = parse_feedback(raw)
        assert fb.summary == raw[:200]
        assert fb.key_insights == [raw[200:400]]
        assert fb.missing_concepts == ["Analysis pending"]
        assert fb.confidence_score == 0.5

    def test_out_of_range_confidence_is_clamped(self):
        fb = parse_feedback(json.dumps({"summary": "ok", "confidenceScore": 7}))
        assert fb.confidence_score == 1.0

    def test_single_string_lists_are_wrapped(self):
        fb = parse_feedback(json.dumps({"summary": "ok", "recommendations": "Read Laxmikanth ch. 7"}))
        assert fb.recommendations == ["Read Laxmikanth ch. 7"]


class TestAIFeedbackClient:

    def test_analyze_sends_json_mode_request(self):
        fake = FakeOpenAI(replies=[FEEDBACK_JSON])
        ai = AIFeedbackClient(client=fake)

        fb = ai.analyze_voice_memo("I mixed up 32 and 226", {"question": "Q"}, is_correct=False)

        assert fb.logic_errors == ["Assumed High Courts are the only writ courts"]
        call = fake.chat_calls[0]
        assert call["response_format"] == {"type": "json_object"}
        assert "Student's Answer: Incorrect" in call["messages"][1]["content"]

    def test_analyze_without_client_raises(self):
        ai = AIFeedbackClient(client=FakeOpenAI())
        ai.client = None
        assert ai.available is False
        with pytest.raises(AIFeedbackError, match="not configured"):
            ai.analyze_voice_memo("text", {}, True)

    def test_analyze_empty_transcript_raises(self):
        ai = AIFeedbackClient(client=FakeOpenAI())
        with pytest.raises(AIFeedbackError, match="empty transcript"):
            ai.analyze_voice_memo("   ", {}, True)

    def test_transcribe_passes_named_buffer(self):
        fake = FakeOpenAI(transcript="  my reasoning  ")
        ai = AIFeedbackClient(client=fake)

        assert ai.transcribe_audio(b"RIFF....", filename="memo.webm") == "my reasoning"
        call = fake.transcribe_calls[0]
        assert call["model"] == "whisper-1"
        assert call["file"].name == "memo.webm"


class TestCallOpenAI:

    def test_transient_errors_retry_with_backoff_then_give_up(self):
        fake = FakeOpenAI(replies=[_connection_error(), _connection_error(), _connection_error()])
        waits = []

        assert call_openai(fake, "sys", "user", sleep=waits.append) is None
        assert len(fake.chat_calls) == 3
        assert waits == [1.0, 2.0]

    def test_recovers_after_one_transient_error(self):
        fake = FakeOpenAI(replies=[_connection_error(), '{"ok": true}'])
        assert call_openai(fake, "sys", "user", sleep=lambda s: None) == '{"ok": true}'

    def test_no_client_returns_none(self):
        assert call_openai(None, "sys", "user") is None

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ('```json\n{"a": 1}\n```', '{"a": 1}'),
            ('Here you go: {"a": 1} thanks', '{"a": 1}'),
            ("no json here", ""),
            ("", ""),
        ],
    )
    def test_clean_json_response(self, raw, expected):
        assert clean_json_response(raw) == expected
