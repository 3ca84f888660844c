import json
from collections import Counter
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from upsc_cbt.errors import PersistenceError
from upsc_cbt.models.question_model import Question
from upsc_cbt.services.repository import InMemoryRepository
from upsc_cbt.services.session_engine import SessionEngine
from upsc_cbt.services.ticker import ManualTicker

FIXED_NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)
TOPICS = ("Polity", "History", "Geography", "Economy")


# ─────────────────────────────────────────────────────────────────────────────
# Test doubles
# ─────────────────────────────────────────────────────────────────────────────

class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FlakyRepository(InMemoryRepository):
    """In-memory repository that counts calls and fails the operations listed in `fail_on`."""

    def __init__(self, *args, fail_on=(), **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_on = set(fail_on)
        self.calls = Counter()

    def _hit(self, name):
        self.calls[name] += 1
        if name in self.fail_on:
            raise PersistenceError(f"{name} unavailable")

    def create_session(self, session):
        self._hit("create_session")
        super().create_session(session)

    def update_session(self, session_id, fields):
        self._hit("update_session")
        super().update_session(session_id, fields)

    def upsert_attempt(self, attempt):
        self._hit("upsert_attempt")
        super().upsert_attempt(attempt)

    def create_voice_memo(self, memo):
        self._hit("create_voice_memo")
        super().create_voice_memo(memo)


class FakeOpenAI:
    """Just enough of the OpenAI client surface: chat completions and transcriptions."""

    def __init__(self, replies=None, transcript="I eliminated B and D but guessed between A and C."):
        self.replies = list(replies or [])
        self.transcript = transcript
        self.chat_calls = []
        self.transcribe_calls = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._chat))
        self.audio = SimpleNamespace(transcriptions=SimpleNamespace(create=self._transcribe))

    def _chat(self, **kwargs):
        self.chat_calls.append(kwargs)
        reply = self.replies.pop(0) if self.replies else "{}"
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])

    def _transcribe(self, **kwargs):
        self.transcribe_calls.append(kwargs)
        return SimpleNamespace(text=self.transcript)


FEEDBACK_JSON = json.dumps({
    "summary": "Confused the writ jurisdiction of Article 32 with Article 226.",
    "keyInsights": ["Knew that remedies are a Fundamental Right"],
    "missingConcepts": ["Article 32 is itself a Fundamental Right"],
    "logicErrors": ["Assumed High Courts are the only writ courts"],
    "recommendations": ["Revise Part III remedies"],
    "clarifications": "Article 32 lets a person move the Supreme Court directly.",
    "counterpoints": "Article 226 is wider in scope than Article 32.",
    "confidenceScore": 0.4,
})


# ─────────────────────────────────────────────────────────────────────────────
# Factories
# ─────────────────────────────────────────────────────────────────────────────

def make_question(qid: str, topic: str = "Polity", correct: str = "A") -> Question:
    return Question(
        id=qid,
        question_text=f"Question {qid}: which statement is correct?",
        options={"A": "Statement one", "B": "Statement two", "C": "Statement three", "D": "Statement four"},
        correct_answer=correct,
        explanation=f"Explanation for {qid}",
        topic=topic,
    )


def make_questions(n: int, correct: str = "A") -> list:
    return [make_question(f"q{i}", topic=TOPICS[i % len(TOPICS)], correct=correct) for i in range(1, n + 1)]


@pytest.fixture
def questions():
    return make_questions(5)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ticker():
    return ManualTicker()


@pytest.fixture
def repository():
    return FlakyRepository()


@pytest.fixture
def memo_calls():
    return []


@pytest.fixture
def make_engine(repository, ticker, clock, memo_calls):
    """Build an engine wired to the shared fakes. Keyword overrides go to SessionEngine."""

    def _make(**kwargs):
        options = {
            "duration_seconds": 7200,
            "ticker": ticker,
            "clock": clock,
            "now": lambda: FIXED_NOW,
            "on_voice_memo": lambda decision, attempt: memo_calls.append((decision, attempt)),
        }
        options.update(kwargs)
        return SessionEngine(repository, options.pop("user_id", "user-1"), **options)

    return _make


@pytest.fixture
def engine(make_engine, questions):
    eng = make_engine()
    eng.start(questions)
    return eng
