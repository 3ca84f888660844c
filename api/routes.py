"""
api/routes.py: FastAPI endpoints
"""

import asyncio
import logging
from typing import Literal, Optional

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile
from pydantic import BaseModel, Field

import api.session as session
import config
from api.sample_questions import SAMPLE_QUESTIONS
from upsc_cbt.errors import PersistenceError, SessionStartError
from upsc_cbt.models.question_model import Question
from upsc_cbt.models.session_state import SessionStatus
from upsc_cbt.services.exam_service import get_incorrect_questions, get_skipped_questions
from upsc_cbt.services.memo_policy import MemoFraming
from upsc_cbt.services.pdf_parser import build_questions, extract_question_drafts, parse_answer_key
from upsc_cbt.services.session_engine import SessionEngine

logger = logging.getLogger(__name__)

router = APIRouter()

# ── Pydantic request bodies ──────────────────────────────────────────────────

class StartTestBody(BaseModel):
    source: Literal["bank", "parsed", "sample"] = "bank"
    topics: list[str] = []
    difficulty: list[str] = []
    limit: int = Field(default=config.DEFAULT_QUESTION_LIMIT, ge=1, le=500)
    test_name: str = "Practice Test"
    test_type: Literal["practice", "mock", "adaptive"] = "practice"

class AnswerBody(BaseModel):
    question_id: str
    answer: str

class ConfidenceBody(BaseModel):
    question_id: str
    level: int

class NavigateBody(BaseModel):
    direction: str

class JumpBody(BaseModel):
    index: int

class FlagBody(BaseModel):
    question_id: str

class ReviewBody(BaseModel):
    mastery_level: int


# ── helpers ──────────────────────────────────────────────────────────────────

def _question_to_dict(q: Question, reveal: bool = False) -> dict:
    d = {
        "id": q.id,
        "question_text": q.question_text,
        "options": q.options,
        "topic": q.topic,
        "sub_topic": q.sub_topic,
        "difficulty_level": q.difficulty_level,
        "source": q.source,
        "year": q.year,
    }
    if reveal:
        d["correct_answer"] = q.correct_answer
        d["explanation"] = q.explanation
    return d


def _resolve_user(request: Request) -> Optional[str]:
    """Bearer token -> repository lookup; X-User-Id header; LOCAL_USER_ID fallback."""
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        token = auth[7:].strip()
        try:
            return request.app.state.repository.resolve_user(token)
        except PersistenceError as e:
            logger.error(f"Could not resolve user from token: {e}")
            return None
    return request.headers.get("x-user-id") or config.LOCAL_USER_ID or None


def _engine(request: Request) -> SessionEngine:
    engine = session.get(request.state.session_id, "engine")
    if engine is None:
        raise HTTPException(status_code=404, detail="No test session in progress.")
    return engine


def _ignored(action: str):
    raise HTTPException(status_code=409, detail=f"{action} is not allowed in the current session state.")


# ── endpoints ────────────────────────────────────────────────────────────────

@router.post("/api/parse-pdf")
async def api_parse_pdf(
    request: Request,
    file: UploadFile = File(...),
    answer_file: Optional[UploadFile] = File(None),
):
    sid = request.state.session_id
    file_bytes = await file.read()
    answer_bytes = await answer_file.read() if answer_file is not None else None
    if len(file_bytes) > config.MAX_PDF_SIZE or len(answer_bytes or b"") > config.MAX_PDF_SIZE:
        raise HTTPException(status_code=413, detail="PDF file is too large (max 50MB).")
    try:
        drafts = await asyncio.to_thread(extract_question_drafts, file_bytes)
        answers = await asyncio.to_thread(parse_answer_key, answer_bytes) if answer_bytes else {}
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except RuntimeError as e:
        logger.error(f"PDF parse failed: {e}")
        raise HTTPException(status_code=503, detail="AI service error. Please try again shortly.")
    if not drafts:
        raise HTTPException(status_code=422, detail="No questions could be extracted. Check the PDF format.")

    # papers rarely print answers; drafts stay pending until a key arrives
    questions = build_questions(drafts, answers)
    session.put(sid, "pdf_drafts", drafts)
    session.put(sid, "parsed_questions", questions)
    return {"count": len(questions), "pending": len(drafts) - len(questions), "ok": True}


@router.post("/api/parse-answer")
async def api_parse_answer(request: Request, file: UploadFile = File(...)):
    sid = request.state.session_id
    drafts: list[dict] = session.get(sid, "pdf_drafts", [])
    if not drafts:
        raise HTTPException(status_code=400, detail="Upload the question paper first.")

    file_bytes = await file.read()
    if len(file_bytes) > config.MAX_PDF_SIZE:
        raise HTTPException(status_code=413, detail="PDF file is too large (max 50MB).")
    try:
        answers = await asyncio.to_thread(parse_answer_key, file_bytes)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if not answers:
        raise HTTPException(status_code=422, detail="No answers could be extracted.")

    questions = build_questions(drafts, answers)
    session.put(sid, "parsed_questions", questions)
    return {"count": len(questions), "pending": len(drafts) - len(questions), "answers": len(answers), "ok": True}


@router.get("/api/question-bank")
async def question_bank(request: Request, topic: Optional[str] = None, limit: int = config.DEFAULT_QUESTION_LIMIT):
    filters = {"topic": topic} if topic else None
    try:
        questions = await asyncio.to_thread(request.app.state.repository.list_questions, filters, "created_at", limit)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {
        "count": len(questions),
        "topics": sorted({q.topic for q in questions if q.topic}),
        "questions": [_question_to_dict(q) for q in questions],
    }


@router.get("/api/session-status")
async def session_status(request: Request):
    sid = request.state.session_id
    parsed: list[Question] = session.get(sid, "parsed_questions", [])
    drafts: list[dict] = session.get(sid, "pdf_drafts", [])
    engine: Optional[SessionEngine] = session.get(sid, "engine")
    return {
        "parsed_count": len(parsed),
        "pending_count": max(0, len(drafts) - len(parsed)),
        "topics": sorted({q.topic for q in parsed if q.topic}),
        "status": engine.status.value if engine else SessionStatus.NOT_STARTED.value,
        "ai_available": request.app.state.ai_client.available,
    }


@router.post("/api/start-test")
async def start_test(request: Request, body: StartTestBody):
    sid = request.state.session_id
    state = request.app.state

    current: Optional[SessionEngine] = session.get(sid, "engine")
    if current is not None and current.status is SessionStatus.ACTIVE:
        raise HTTPException(status_code=409, detail="A test is already in progress. Submit or reset it first.")

    if body.source == "sample":
        questions = list(SAMPLE_QUESTIONS)
    elif body.source == "parsed":
        questions = list(session.get(sid, "parsed_questions", []))
    else:
        filters = {}
        if body.topics:
            filters["topic"] = body.topics
        if body.difficulty:
            filters["difficulty_level"] = body.difficulty
        try:
            questions = await asyncio.to_thread(state.repository.list_questions, filters, "created_at", body.limit)
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))

    if body.source != "bank" and body.topics:
        questions = [q for q in questions if q.topic in body.topics]
    questions = questions[: body.limit]

    memo_prompts: dict = {}

    def _remember_memo(decision, attempt):
        memo_prompts[attempt.question_id] = (decision, attempt)

    engine = SessionEngine(
        state.repository,
        _resolve_user(request),
        duration_seconds=state.duration_seconds,
        test_name=body.test_name,
        test_type=body.test_type,
        ticker=state.ticker_factory(),
        on_voice_memo=_remember_memo,
    )
    try:
        test_session = await asyncio.to_thread(engine.start, questions)
    except SessionStartError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        logger.error(f"Could not open test session: {e}")
        raise HTTPException(status_code=503, detail="Could not create the test session. Please try again shortly.")

    if current is not None:
        current.close()
    session.put(sid, "engine", engine)
    session.put(sid, "memo_prompts", memo_prompts)
    return {
        "session_id": test_session.id,
        "total": test_session.total_questions,
        "duration_seconds": test_session.duration_seconds,
        "ok": True,
    }


@router.get("/api/question/{index}")
async def get_question(request: Request, index: int):
    engine = _engine(request)
    if not 0 <= index < len(engine.questions):
        raise HTTPException(status_code=404, detail="Question not found.")

    q = engine.questions[index]
    st = engine.state
    d = _question_to_dict(q, reveal=st.is_completed)
    d.update({
        "index": index,
        "total": len(engine.questions),
        "saved_answer": st.user_answers.get(q.id, ""),
        "confidence": st.confidence_levels.get(q.id),
        "flagged": q.id in st.flagged_questions,
    })
    return d


@router.get("/api/exam-state")
async def get_exam_state(request: Request):
    return await asyncio.to_thread(_engine(request).snapshot)


@router.post("/api/answer")
async def save_answer(request: Request, body: AnswerBody):
    engine = _engine(request)
    try:
        ok = await asyncio.to_thread(engine.select_answer, body.question_id, body.answer)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if ok is None:
        _ignored("Answering")
    return {"ok": True, "answered_count": engine.state.answered_count}


@router.post("/api/confidence")
async def set_confidence(request: Request, body: ConfidenceBody):
    engine = _engine(request)
    try:
        decision = await asyncio.to_thread(engine.set_confidence, body.question_id, body.level)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if decision is None:
        _ignored("Rating confidence")
    return {"ok": True, "voice_memo": decision.as_dict()}


@router.post("/api/navigate")
async def navigate(request: Request, body: NavigateBody):
    engine = _engine(request)
    try:
        index = await asyncio.to_thread(engine.navigate, body.direction)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if index is None:
        _ignored("Navigation")
    return {"index": index, "ok": True}


@router.post("/api/jump")
async def jump(request: Request, body: JumpBody):
    engine = _engine(request)
    try:
        index = await asyncio.to_thread(engine.go_to, body.index)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if index is None:
        _ignored("Navigation")
    return {"index": index, "ok": True}


@router.post("/api/flag")
async def toggle_flag(request: Request, body: FlagBody):
    engine = _engine(request)
    try:
        flagged = await asyncio.to_thread(engine.toggle_flag, body.question_id)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if flagged is None:
        _ignored("Flagging")
    return {"flagged": flagged, "flagged_count": engine.state.flagged_count, "ok": True}


@router.post("/api/submit-test")
async def submit_test(request: Request):
    engine = _engine(request)
    try:
        result = await asyncio.to_thread(engine.submit)
    except PersistenceError as e:
        logger.error(f"Submit failed: {e}")
        raise HTTPException(status_code=503, detail="Could not save the test. Please submit again.")
    if result is None:
        raise HTTPException(status_code=400, detail="The test has not been started.")
    return {"ok": True, "result": result.model_dump()}


@router.get("/api/results")
async def get_results(request: Request):
    engine = _engine(request)
    result = engine.result
    if result is None:
        raise HTTPException(status_code=400, detail="The test has not been submitted yet.")

    answers = engine.state.user_answers
    incorrect = []
    for q in get_incorrect_questions(engine.questions, answers):
        d = _question_to_dict(q, reveal=True)
        d["user_answer"] = answers[q.id]
        d["confidence"] = engine.state.confidence_levels.get(q.id, config.DEFAULT_CONFIDENCE)
        incorrect.append(d)

    return {
        **result.model_dump(),
        "incorrect_questions": incorrect,
        "skipped_question_ids": [q.id for q in get_skipped_questions(engine.questions, answers)],
        "flagged_question_ids": sorted(engine.state.flagged_questions),
    }


@router.post("/api/voice-memo")
async def voice_memo(
    request: Request,
    question_id: str = Form(...),
    transcript: Optional[str] = Form(None),
    duration_seconds: int = Form(0),
    audio: Optional[UploadFile] = File(None),
):
    sid = request.state.session_id
    engine = _engine(request)
    pending: dict = session.get(sid, "memo_prompts", {})
    if question_id not in pending:
        raise HTTPException(status_code=404, detail="No reflection memo was requested for this question.")
    decision, attempt = pending[question_id]

    audio_bytes = await audio.read() if audio is not None else None
    if audio_bytes is None and transcript is None:
        raise HTTPException(status_code=422, detail="Send either an audio recording or a transcript.")

    question = next(q for q in engine.questions if q.id == question_id)
    try:
        outcome = await asyncio.to_thread(
            request.app.state.memo_service.process_memo,
            attempt.user_id,
            question,
            attempt,
            MemoFraming(decision.framing),
            audio_bytes,
            transcript,
            duration_seconds,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))

    pending.pop(question_id, None)
    return {"ok": True, **outcome.model_dump(mode="json")}


@router.post("/api/flashcards/{card_id}/review")
async def review_flashcard(request: Request, card_id: str, body: ReviewBody):
    try:
        card = await asyncio.to_thread(request.app.state.memo_service.review_flashcard, card_id, body.mastery_level)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except KeyError:
        raise HTTPException(status_code=404, detail="Flashcard not found.")
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"ok": True, "flashcard": card.model_dump(mode="json")}


@router.post("/api/reset")
async def reset_session(request: Request):
    session.reset(request.state.session_id)
    return {"ok": True}
