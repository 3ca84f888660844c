"""
services/repository.py

Persistence collaborator for test sessions, attempts, the question bank and
voice-memo records.

  - SessionRepository   : the port the engine and services depend on
  - SupabaseRepository  : supabase-py backed tables
  - InMemoryRepository  : lock-protected dicts (default when Supabase is not configured)

Every backend failure surfaces as PersistenceError; callers decide whether
it is fatal (submission) or logged and ignored (confidence capture).
"""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Protocol

from supabase import Client, create_client

from config import DEFAULT_QUESTION_LIMIT, STORAGE_BACKEND, SUPABASE_KEY, SUPABASE_URL
from upsc_cbt.errors import PersistenceError
from upsc_cbt.models.memo_models import MemoFeedbackRecord, MemoFlashcard, VoiceMemo
from upsc_cbt.models.question_model import Question
from upsc_cbt.models.records import QuestionAttempt, TestSession

logger = logging.getLogger(__name__)

QuestionFilters = Dict[str, Any]


class SessionRepository(Protocol):
    def create_session(self, session: TestSession) -> None: ...

    def update_session(self, session_id: str, fields: Dict[str, Any]) -> None: ...

    def upsert_attempt(self, attempt: QuestionAttempt) -> None: ...

    def list_questions(
        self,
        filters: Optional[QuestionFilters] = None,
        order_by: str = "created_at",
        limit: int = DEFAULT_QUESTION_LIMIT,
    ) -> List[Question]: ...

    def resolve_user(self, token: str) -> Optional[str]: ...

    def create_voice_memo(self, memo: VoiceMemo) -> None: ...

    def create_memo_feedback(self, record: MemoFeedbackRecord) -> None: ...

    def create_flashcard(self, card: MemoFlashcard) -> None: ...

    def get_flashcard(self, card_id: str) -> Optional[MemoFlashcard]: ...

    def update_flashcard(self, card_id: str, fields: Dict[str, Any]) -> None: ...


def _matches(value: Any, wanted: Any) -> bool:
    if isinstance(wanted, (list, tuple, set)):
        return value in wanted
    return value == wanted


# ══════════════════════════════════════════════════════════════════════════════
# Supabase
# ══════════════════════════════════════════════════════════════════════════════

class SupabaseRepository:
    """Wrapper around the Supabase client with CBT-specific tables."""

    SESSIONS = "test_sessions"
    ATTEMPTS = "question_attempts"
    QUESTIONS = "questions"
    MEMOS = "voice_memos"
    FEEDBACK = "ai_memo_feedback"
    FLASHCARDS = "memo_flashcards"

    def __init__(self, client: Optional[Client] = None, url: str = SUPABASE_URL, key: str = SUPABASE_KEY):
        if client is None:
            if not url or not key:
                raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set")
            client = create_client(url, key)
        self.client = client

    def _execute(self, what: str, query):
        try:
            return query.execute()
        except Exception as e:
            logger.error(f"Supabase {what} failed: {e}")
            raise PersistenceError(f"{what} failed: {e}") from e

    # ============= Sessions & attempts =============

    def create_session(self, session: TestSession) -> None:
        self._execute(
            f"insert {self.SESSIONS}",
            self.client.table(self.SESSIONS).insert(session.to_row()),
        )

    def update_session(self, session_id: str, fields: Dict[str, Any]) -> None:
        response = self._execute(
            f"update {self.SESSIONS}",
            self.client.table(self.SESSIONS).update(fields).eq("id", session_id),
        )
        if not response.data:
            raise PersistenceError(f"session {session_id} not found")

    def upsert_attempt(self, attempt: QuestionAttempt) -> None:
        self._execute(
            f"upsert {self.ATTEMPTS}",
            self.client.table(self.ATTEMPTS).upsert(
                attempt.to_row(), on_conflict="session_id,question_id"
            ),
        )

    # ============= Questions =============

    def list_questions(
        self,
        filters: Optional[QuestionFilters] = None,
        order_by: str = "created_at",
        limit: int = DEFAULT_QUESTION_LIMIT,
    ) -> List[Question]:
        query = self.client.table(self.QUESTIONS).select("*")
        for column, wanted in (filters or {}).items():
            if isinstance(wanted, (list, tuple, set)):
                query = query.in_(column, list(wanted))
            else:
                query = query.eq(column, wanted)
        if order_by:
            query = query.order(order_by)
        if limit:
            query = query.limit(limit)

        response = self._execute(f"select {self.QUESTIONS}", query)
        questions: List[Question] = []
        for row in response.data or []:
            try:
                questions.append(Question.from_row(row))
            except (ValueError, KeyError) as e:
                logger.warning(f"Skipping malformed question row {row.get('id')}: {e}")
        return questions

    def upsert_questions(self, questions: Iterable[Question], chunk_size: int = 200) -> int:
        """Bulk upsert into questions. Dedupes by id so no chunk carries duplicates."""
        rows = list({q.id: q.to_row() for q in questions}.values())
        for i in range(0, len(rows), chunk_size):
            chunk = rows[i:i + chunk_size]
            logger.info(f"Upserting question chunk {i // chunk_size + 1} ({len(chunk)} rows)")
            self._execute(
                f"upsert {self.QUESTIONS}",
                self.client.table(self.QUESTIONS).upsert(chunk, on_conflict="id"),
            )
        return len(rows)

    # ============= Identity =============

    def resolve_user(self, token: str) -> Optional[str]:
        if not token:
            return None
        try:
            response = self.client.auth.get_user(token)
        except Exception as e:
            logger.warning(f"Could not resolve user from token: {e}")
            return None
        user = getattr(response, "user", None)
        return str(user.id) if user else None

    # ============= Voice memos =============

    def create_voice_memo(self, memo: VoiceMemo) -> None:
        self._execute(f"insert {self.MEMOS}", self.client.table(self.MEMOS).insert(memo.to_row()))

    def create_memo_feedback(self, record: MemoFeedbackRecord) -> None:
        self._execute(f"insert {self.FEEDBACK}", self.client.table(self.FEEDBACK).insert(record.to_row()))

    def create_flashcard(self, card: MemoFlashcard) -> None:
        self._execute(f"insert {self.FLASHCARDS}", self.client.table(self.FLASHCARDS).insert(card.to_row()))

    def get_flashcard(self, card_id: str) -> Optional[MemoFlashcard]:
        response = self._execute(
            f"select {self.FLASHCARDS}",
            self.client.table(self.FLASHCARDS).select("*").eq("id", card_id).limit(1),
        )
        rows = response.data or []
        return MemoFlashcard.from_row(rows[0]) if rows else None

    def update_flashcard(self, card_id: str, fields: Dict[str, Any]) -> None:
        self._execute(
            f"update {self.FLASHCARDS}",
            self.client.table(self.FLASHCARDS).update(fields).eq("id", card_id),
        )


# ══════════════════════════════════════════════════════════════════════════════
# In-memory
# ══════════════════════════════════════════════════════════════════════════════

class InMemoryRepository:
    """
    Process-local tables. Rows are stored as the same dicts the Supabase
    backend would send, so both backends see identical shapes.
    """

    def __init__(self, questions: Optional[Iterable[Question]] = None, users: Optional[Dict[str, str]] = None):
        self._lock = threading.Lock()
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.attempts: Dict[tuple, Dict[str, Any]] = {}
        self.questions: Dict[str, Question] = {}
        self.memos: Dict[str, Dict[str, Any]] = {}
        self.feedback: Dict[str, Dict[str, Any]] = {}
        self.flashcards: Dict[str, Dict[str, Any]] = {}
        self.users: Dict[str, str] = dict(users or {})  # token -> user id
        for q in questions or []:
            self.questions[q.id] = q

    def create_session(self, session: TestSession) -> None:
        with self._lock:
            if session.id in self.sessions:
                raise PersistenceError(f"session {session.id} already exists")
            self.sessions[session.id] = session.to_row()

    def update_session(self, session_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            if session_id not in self.sessions:
                raise PersistenceError(f"session {session_id} not found")
            self.sessions[session_id].update(fields)

    def upsert_attempt(self, attempt: QuestionAttempt) -> None:
        with self._lock:
            self.attempts[(attempt.session_id, attempt.question_id)] = attempt.to_row()

    def list_questions(
        self,
        filters: Optional[QuestionFilters] = None,
        order_by: str = "created_at",
        limit: int = DEFAULT_QUESTION_LIMIT,
    ) -> List[Question]:
        with self._lock:
            pool = list(self.questions.values())  # insertion order == created_at order
        for column, wanted in (filters or {}).items():
            pool = [q for q in pool if _matches(getattr(q, column, None), wanted)]
        if order_by and order_by != "created_at":
            pool.sort(key=lambda q: (getattr(q, order_by, None) is None, getattr(q, order_by, None)))
        return pool[:limit] if limit else pool

    def add_questions(self, questions: Iterable[Question]) -> int:
        with self._lock:
            count = 0
            for q in questions:
                self.questions[q.id] = q
                count += 1
            return count

    def resolve_user(self, token: str) -> Optional[str]:
        return self.users.get(token)

    def create_voice_memo(self, memo: VoiceMemo) -> None:
        with self._lock:
            self.memos[memo.id] = memo.to_row()

    def create_memo_feedback(self, record: MemoFeedbackRecord) -> None:
        with self._lock:
            self.feedback[record.id] = record.to_row()

    def create_flashcard(self, card: MemoFlashcard) -> None:
        with self._lock:
            self.flashcards[card.id] = card.to_row()

    def get_flashcard(self, card_id: str) -> Optional[MemoFlashcard]:
        with self._lock:
            row = self.flashcards.get(card_id)
        return MemoFlashcard.from_row(row) if row else None

    def update_flashcard(self, card_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            if card_id not in self.flashcards:
                raise PersistenceError(f"flashcard {card_id} not found")
            self.flashcards[card_id].update(fields)


def make_repository(backend: str = STORAGE_BACKEND, questions: Optional[Iterable[Question]] = None):
    """Build the configured backend. Seed questions only apply to the in-memory one."""
    if backend == "supabase":
        logger.info("Using Supabase persistence")
        return SupabaseRepository()
    if backend != "memory":
        raise ValueError(f"unknown storage backend: {backend!r}")
    logger.info("Using in-memory persistence")
    return InMemoryRepository(questions=questions)
