"""
services/session_engine.py

Test session engine: lifecycle, countdown, navigation, answer sheet,
confidence capture and submission for one user sitting one question set.

Lifecycle:
  NOT_STARTED --start()--> ACTIVE --submit() / countdown expiry--> COMPLETED

All public operations run under one re-entrant lock, so the ticker thread
and request handlers are serialized. Calls made in the wrong lifecycle state
are logged and ignored (they return None). Bad arguments raise ValueError.
Persistence failures during submit() propagate and leave the session ACTIVE.
"""

import functools
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from fractions import Fraction
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence

from config import DEFAULT_CONFIDENCE, EXAM_DURATION_SECONDS, NEGATIVE_MARK, TIMER_WARNING_SECONDS
from upsc_cbt.errors import AIFeedbackError, PersistenceError, PolicyViolation, SessionStartError
from upsc_cbt.models.question_model import Question, validate_option_label
from upsc_cbt.models.records import QuestionAttempt, SessionResult, TestSession, attempt_id_for
from upsc_cbt.models.session_state import ExamState, SessionStatus
from upsc_cbt.services.exam_service import as_fraction, build_result
from upsc_cbt.services.memo_policy import MemoDecision, decide_voice_memo, validate_confidence
from upsc_cbt.services.repository import SessionRepository
from upsc_cbt.services.ticker import Ticker

logger = logging.getLogger(__name__)

Direction = Literal["previous", "next"]
DIRECTIONS = ("previous", "next")

VoiceMemoHook = Callable[[MemoDecision, QuestionAttempt], None]
AutoSubmitHook = Callable[[SessionResult], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _guarded(method):
    """Serialize on the engine lock; PolicyViolation turns the call into a logged no-op."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            try:
                return method(self, *args, **kwargs)
            except PolicyViolation as e:
                logger.warning(f"{method.__name__} ignored: {e}")
                return None

    return wrapper


class SessionEngine:
    """
    One sitting of a question set.

    Args:
        repository:       Persistence collaborator.
        user_id:          Resolved identity of the test-taker ("" or None when unresolved).
        duration_seconds: Countdown budget (default 7200).
        negative_mark:    Deduction per wrong answer (default 1/3).
        ticker:           Drives tick() once per second while ACTIVE. None = caller ticks.
        clock:            Monotonic seconds, used for time-on-question.
        now:              Wall-clock timestamps written to records.
        on_voice_memo:    Called when a confidence rating triggers a reflection memo.
        on_auto_submit:   Called with the result when the countdown submits the test.
    """

    def __init__(
        self,
        repository: SessionRepository,
        user_id: Optional[str],
        *,
        duration_seconds: int = EXAM_DURATION_SECONDS,
        negative_mark: Fraction = NEGATIVE_MARK,
        test_name: str = "Practice Test",
        test_type: str = "practice",
        ticker: Optional[Ticker] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
        on_voice_memo: Optional[VoiceMemoHook] = None,
        on_auto_submit: Optional[AutoSubmitHook] = None,
    ):
        if duration_seconds <= 0:
            raise ValueError(f"duration must be positive, got {duration_seconds}")
        self.negative_mark = as_fraction(negative_mark)
        if self.negative_mark < 0:
            raise ValueError(f"negative mark cannot be negative, got {negative_mark}")

        self.repository = repository
        self.user_id = user_id
        self.duration_seconds = int(duration_seconds)
        self.test_name = test_name
        self.test_type = test_type
        self.ticker = ticker
        self.on_voice_memo = on_voice_memo
        self.on_auto_submit = on_auto_submit
        self._clock = clock
        self._now = now

        self.state = ExamState()
        self.questions: List[Question] = []
        self.session: Optional[TestSession] = None
        self.last_submit_error: Optional[PersistenceError] = None
        self._by_id: Dict[str, Question] = {}
        self._result: Optional[SessionResult] = None
        self._lock = threading.RLock()

    # ── read-only views ──────────────────────────────────────────────────────

    @property
    def status(self) -> SessionStatus:
        return self.state.status

    @property
    def result(self) -> Optional[SessionResult]:
        return self._result

    @property
    def current_question(self) -> Optional[Question]:
        if not self.questions:
            return None
        return self.questions[self.state.current_quest_index]

    @property
    def remaining_seconds(self) -> int:
        return self.state.time_remaining

    @property
    def elapsed_seconds(self) -> int:
        if self.state.status is SessionStatus.NOT_STARTED:
            return 0
        return self.duration_seconds - self.state.time_remaining

    @property
    def is_expired(self) -> bool:
        return self.state.is_active and self.state.time_remaining == 0

    def time_on_question(self, question_id: str) -> float:
        """Cumulative seconds, including the running visit if it is on screen."""
        spent = self.state.question_times.get(question_id, 0.0)
        current = self.current_question
        if self.state.is_active and current is not None and current.id == question_id:
            spent += max(0.0, self._clock() - self.state.question_started_at)
        return spent

    # ── lifecycle ────────────────────────────────────────────────────────────

    def start(self, questions: Sequence[Question]) -> TestSession:
        """
        Open the session: persist the session row, seed the countdown, start ticking.

        Raises:
            SessionStartError: already started, empty or duplicated question set,
                               or unresolved user.
            PersistenceError:  the session row could not be created; nothing
                               else changes and start may be called again.
        """
        with self._lock:
            if self.state.status is not SessionStatus.NOT_STARTED:
                raise SessionStartError(f"session already {self.state.status.value}")
            questions = list(questions)
            if not questions:
                raise SessionStartError("no questions available for this test")
            if not self.user_id:
                raise SessionStartError("user identity could not be resolved")
            ids = [q.id for q in questions]
            if len(set(ids)) != len(ids):
                raise SessionStartError("question set contains duplicate question ids")

            session = TestSession(
                id=uuid.uuid4().hex,
                user_id=self.user_id,
                test_name=self.test_name,
                test_type=self.test_type,
                question_ids=ids,
                total_questions=len(questions),
                duration_seconds=self.duration_seconds,
                negative_mark=float(self.negative_mark),
                started_at=self._now(),
            )
            self.repository.create_session(session)

            self.session = session
            self.questions = questions
            self._by_id = {q.id: q for q in questions}
            self.state = ExamState(
                status=SessionStatus.ACTIVE,
                time_remaining=self.duration_seconds,
                question_started_at=self._clock(),
            )
            self.state.mark_reached(questions[0].id)
            logger.info(
                f"Session {session.id} started: user={self.user_id}, "
                f"{len(questions)} questions, {self.duration_seconds}s"
            )

            if self.ticker is not None:
                self.ticker.start(self.tick)
            return session

    def tick(self) -> None:
        """One second of countdown. Reaching zero forces submission."""
        with self._lock:
            if not self.state.is_active:
                return
            if self.state.time_remaining > 0:
                self.state.time_remaining -= 1
            if self.state.time_remaining == 0:
                self._force_submit()

    def _force_submit(self) -> None:
        try:
            result = self._submit(auto=True)
        except PersistenceError as e:
            self.last_submit_error = e
            logger.error(f"Auto-submit of session {self.session.id} failed, retrying on next tick: {e}")
            return
        if self.on_auto_submit is not None:
            self.on_auto_submit(result)

    @_guarded
    def submit(self) -> Optional[SessionResult]:
        """
        Score and persist the session. Safe to call twice: once COMPLETED the
        stored result is returned without touching persistence.

        Raises:
            PersistenceError: an attempt or the session row could not be written;
                              the session stays ACTIVE so the caller can retry.
        """
        if self.state.is_completed:
            logger.info(f"Session {self.session.id} already submitted; ignoring repeat submit")
            return self._result
        if not self.state.is_active:
            raise PolicyViolation("cannot submit a session that has not started")
        return self._submit(auto=False)

    def _submit(self, auto: bool) -> SessionResult:
        self._flush_question_time()
        result = build_result(
            self.session.id,
            self.questions,
            self.state.user_answers,
            elapsed_seconds=self.elapsed_seconds,
            negative_mark=self.negative_mark,
            auto_submitted=auto,
        )

        # every write must land before the session counts as completed
        for q in self.questions:
            if q.id in self.state.user_answers:
                self.repository.upsert_attempt(self._build_attempt(q))
        completed_at = self._now()
        fields = result.session_fields(completed_at)
        self.repository.update_session(self.session.id, fields)

        self.session = self.session.model_copy(update={**fields, "completed_at": completed_at})
        self.state.status = SessionStatus.COMPLETED
        self._result = result
        self.last_submit_error = None
        if self.ticker is not None:
            self.ticker.cancel()

        logger.info(
            f"Session {self.session.id} {'auto-' if auto else ''}submitted: "
            f"correct={result.correct} wrong={result.wrong} skipped={result.skipped} "
            f"final={result.final_score}"
        )
        return result

    def close(self) -> None:
        """Stop the countdown without submitting (session evicted by the host)."""
        if self.ticker is not None:
            self.ticker.cancel()

    # ── answer sheet ─────────────────────────────────────────────────────────

    @_guarded
    def select_answer(self, question_id: str, option: str) -> Optional[bool]:
        """Record (or overwrite) the selected option. In-memory only."""
        validate_option_label(option)
        self._require_answerable("select_answer")
        q = self._question(question_id)
        self.state.user_answers[q.id] = option
        return True

    @_guarded
    def set_confidence(self, question_id: str, level: int) -> Optional[MemoDecision]:
        """
        Store the 1-5 confidence rating for an answered question, save the
        attempt right away and evaluate the voice-memo policy.

        Returns:
            The MemoDecision, or None when ignored (no answer yet / not active).
        """
        validate_confidence(level)
        self._require_answerable("set_confidence")
        q = self._question(question_id)
        if q.id not in self.state.user_answers:
            raise PolicyViolation(f"no answer recorded yet for question {q.id}")

        self.state.confidence_levels[q.id] = level
        attempt = self._build_attempt(q)
        try:
            self.repository.upsert_attempt(attempt)
        except PersistenceError as e:
            logger.error(f"Could not save attempt for question {q.id}; in-memory answer kept: {e}")

        decision = decide_voice_memo(attempt.is_correct, level)
        if decision.should_trigger and self.on_voice_memo is not None:
            try:
                self.on_voice_memo(decision, attempt)
            except AIFeedbackError as e:
                logger.warning(f"Voice memo request for question {q.id} failed: {e}")
        return decision

    @_guarded
    def toggle_flag(self, question_id: str) -> Optional[bool]:
        """Flip the review flag. Returns whether the question is now flagged."""
        self._require_answerable("toggle_flag")
        q = self._question(question_id)
        if q.id in self.state.flagged_questions:
            self.state.flagged_questions.discard(q.id)
            return False
        self.state.flagged_questions.add(q.id)
        return True

    # ── navigation ───────────────────────────────────────────────────────────

    @_guarded
    def navigate(self, direction: Direction) -> Optional[int]:
        """Move one question back or forward, clamped at both ends. Returns the new index."""
        if direction not in DIRECTIONS:
            raise ValueError(f"direction must be one of {DIRECTIONS}, got {direction!r}")
        self._require_answerable("navigate")
        step = -1 if direction == "previous" else 1
        return self._move_to(self.state.current_quest_index + step)

    @_guarded
    def go_to(self, index: int) -> Optional[int]:
        """Jump straight to a question (navigator grid)."""
        self._require_answerable("go_to")
        if isinstance(index, bool) or not isinstance(index, int):
            raise ValueError(f"index must be an integer, got {index!r}")
        if not 0 <= index < len(self.questions):
            raise ValueError(f"index {index} out of range 0..{len(self.questions) - 1}")
        return self._move_to(index)

    def _move_to(self, index: int) -> int:
        target = max(0, min(index, len(self.questions) - 1))
        self._flush_question_time()
        self.state.current_quest_index = target
        self.state.mark_reached(self.questions[target].id)
        return target

    def _flush_question_time(self) -> None:
        q = self.current_question
        if q is None:
            return
        now = self._clock()
        spent = max(0.0, now - self.state.question_started_at)
        self.state.question_times[q.id] = self.state.question_times.get(q.id, 0.0) + spent
        self.state.question_started_at = now

    # ── helpers ──────────────────────────────────────────────────────────────

    def _require_answerable(self, operation: str) -> None:
        if not self.state.is_active:
            raise PolicyViolation(f"{operation} requires an active session (status={self.state.status.value})")
        if self.state.time_remaining == 0:
            raise PolicyViolation(f"{operation} rejected: time is up")

    def _question(self, question_id: str) -> Question:
        try:
            return self._by_id[question_id]
        except KeyError:
            raise ValueError(f"question {question_id!r} is not part of this session") from None

    def _build_attempt(self, q: Question) -> QuestionAttempt:
        answer = self.state.user_answers.get(q.id)
        return QuestionAttempt(
            id=attempt_id_for(self.session.id, q.id),
            user_id=self.session.user_id,
            session_id=self.session.id,
            question_id=q.id,
            selected_answer=answer,
            is_correct=q.is_correct(answer),
            confidence_level=self.state.confidence_levels.get(q.id, DEFAULT_CONFIDENCE),
            time_taken_seconds=int(self.time_on_question(q.id)),
            attempt_order=self.state.first_reached.get(q.id, 0),
            was_flagged=q.id in self.state.flagged_questions,
            created_at=self._now(),
        )

    def snapshot(self) -> Dict[str, Any]:
        """JSON-ready view of the sitting for the exam screen."""
        with self._lock:
            current = self.current_question
            return {
                "session_id": self.session.id if self.session else None,
                "status": self.state.status.value,
                "current_quest_index": self.state.current_quest_index,
                "current_question_id": current.id if current else None,
                "total": len(self.questions),
                "question_ids": [q.id for q in self.questions],
                "user_answers": dict(self.state.user_answers),
                "confidence_levels": dict(self.state.confidence_levels),
                "flagged_questions": sorted(self.state.flagged_questions),
                "answered_count": self.state.answered_count,
                "flagged_count": self.state.flagged_count,
                "time_remaining": self.state.time_remaining,
                "elapsed_seconds": self.elapsed_seconds,
                "time_warning": self.state.is_active and self.state.time_remaining < TIMER_WARNING_SECONDS,
                "is_expired": self.is_expired,
            }
