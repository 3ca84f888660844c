"""
api/app.py: FastAPI app instance + session middleware + static file serving
"""

import logging
import os
import threading
import time
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

import api.session as session
from api.routes import router
from api.sample_questions import SAMPLE_QUESTIONS
from config import EXAM_DURATION_SECONDS, STATIC_DIR
from upsc_cbt.services.ai_feedback import AIFeedbackClient
from upsc_cbt.services.repository import SessionRepository, make_repository
from upsc_cbt.services.ticker import IntervalTicker, Ticker
from upsc_cbt.services.voice_memo_service import VoiceMemoService

logger = logging.getLogger(__name__)

SESSION_COOKIE = "cbt_session"
CLEANUP_INTERVAL = 300  # seconds


def create_app(
    repository: Optional[SessionRepository] = None,
    ai_client: Optional[AIFeedbackClient] = None,
    ticker_factory: Callable[[], Ticker] = IntervalTicker,
    duration_seconds: int = EXAM_DURATION_SECONDS,
) -> FastAPI:
    """
    Build the app. Collaborators default to the configured backends; tests
    pass an in-memory repository, a stub AI client and a manual ticker.
    """
    app = FastAPI(title="UPSC Prelims CBT", docs_url=None, redoc_url=None)

    app.state.repository = repository if repository is not None else make_repository(questions=SAMPLE_QUESTIONS)
    app.state.ai_client = ai_client if ai_client is not None else AIFeedbackClient()
    app.state.memo_service = VoiceMemoService(app.state.repository, app.state.ai_client)
    app.state.ticker_factory = ticker_factory
    app.state.duration_seconds = duration_seconds
    logger.info(
        f"App created: storage={type(app.state.repository).__name__}, "
        f"ai_available={app.state.ai_client.available}, duration={duration_seconds}s"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # read the session id from the cookie, issue a new one when missing
    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        sid = request.cookies.get(SESSION_COOKIE)
        if not sid or session.get_session(sid) is None:
            sid = session.create_session()

        request.state.session_id = sid
        response: Response = await call_next(request)
        response.set_cookie(
            key=SESSION_COOKIE,
            value=sid,
            httponly=True,
            samesite="lax",
            max_age=session.SESSION_TTL,
        )
        return response

    app.include_router(router)

    if os.path.isdir(STATIC_DIR):
        app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    @app.get("/")
    async def serve_index():
        index_path = os.path.join(STATIC_DIR, "index.html")
        if os.path.exists(index_path):
            return FileResponse(index_path)
        return {"error": "index.html not found"}

    def _cleanup_loop():
        while True:
            time.sleep(CLEANUP_INTERVAL)
            session.cleanup_expired()

    threading.Thread(target=_cleanup_loop, daemon=True).start()

    return app
