"""
api/session.py: multi-user in-memory sessions (cookie based)

Each browser gets a UUID session id holding its own state: PDF drafts and
the questions built from them, the running SessionEngine and pending
voice-memo prompts. Sessions expire after SESSION_TTL of inactivity, but
never while their test is ACTIVE: the countdown must reach its deadline and
auto-submit. An expiring session's engine is closed.
"""

import logging
import threading
import time
import uuid
from typing import Any

from upsc_cbt.models.session_state import SessionStatus

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_sessions: dict[str, dict[str, Any]] = {}
_timestamps: dict[str, float] = {}

SESSION_TTL = 3600  # 1 hour


def _new_state() -> dict[str, Any]:
    return {
        "pdf_drafts": [],  # raw drafts, rebuilt when an answer key arrives
        "parsed_questions": [],
        "engine": None,
        "memo_prompts": {},  # question id -> (MemoDecision, QuestionAttempt)
    }


def _close_engine(state: dict[str, Any]) -> None:
    engine = state.get("engine")
    if engine is not None:
        engine.close()


def _is_expired(sid: str, now: float) -> bool:
    if now - _timestamps[sid] <= SESSION_TTL:
        return False
    engine = _sessions[sid].get("engine")
    return engine is None or engine.status is not SessionStatus.ACTIVE


def create_session() -> str:
    """Create a session and return its id."""
    sid = uuid.uuid4().hex
    with _lock:
        _sessions[sid] = _new_state()
        _timestamps[sid] = time.time()
    return sid


def get_session(sid: str) -> dict[str, Any] | None:
    """Session data for an id, or None when unknown or expired."""
    with _lock:
        if sid not in _sessions:
            return None
        if _is_expired(sid, time.time()):
            _close_engine(_sessions.pop(sid))
            del _timestamps[sid]
            return None
        _timestamps[sid] = time.time()  # refresh on access
        return _sessions[sid]


def get(sid: str, key: str, default=None):
    session = get_session(sid)
    if session is None:
        return default
    return session.get(key, default)


def put(sid: str, key: str, value) -> None:
    with _lock:
        if sid in _sessions:
            _sessions[sid][key] = value
            _timestamps[sid] = time.time()


def reset(sid: str) -> None:
    """Drop everything for this browser, stopping any running countdown."""
    with _lock:
        if sid in _sessions:
            _close_engine(_sessions[sid])
            _sessions[sid] = _new_state()
            _timestamps[sid] = time.time()


def cleanup_expired() -> int:
    """Remove expired sessions. Returns how many were removed."""
    now = time.time()
    removed = 0
    with _lock:
        expired = [sid for sid in _timestamps if _is_expired(sid, now)]
        for sid in expired:
            _close_engine(_sessions.pop(sid))
            del _timestamps[sid]
            removed += 1
    if removed:
        logger.info(f"Removed {removed} expired sessions")
    return removed
