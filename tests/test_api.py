"""
Tests for the HTTP surface (cookie sessions, test lifecycle endpoints, memos).
"""

import threading
import time

import pytest
from fastapi.testclient import TestClient

import api.session as session
import config
from api.app import SESSION_COOKIE, create_app
from conftest import FEEDBACK_JSON, FakeOpenAI, FlakyRepository, make_questions
from upsc_cbt.services.ai_feedback import AIFeedbackClient
from upsc_cbt.services.ticker import ManualTicker

USER = {"X-User-Id": "user-1"}


@pytest.fixture
def api_repository():
    return FlakyRepository(questions=make_questions(5), users={"token-9": "user-9"})


@pytest.fixture
def client(api_repository, monkeypatch):
    monkeypatch.setattr(config, "LOCAL_USER_ID", "")
    app = create_app(
        repository=api_repository,
        ai_client=AIFeedbackClient(client=FakeOpenAI(replies=[FEEDBACK_JSON])),
        ticker_factory=ManualTicker,
        duration_seconds=600,
    )
    with TestClient(app) as c:
        yield c


@pytest.fixture
def started(client):
    response = client.post("/api/start-test", json={}, headers=USER)
    assert response.status_code == 200
    return response.json()


class TestStartTest:
    """POST /api/start-test"""

    def test_start_from_question_bank(self, client, started, api_repository):
        assert started["total"] == 5
        assert started["duration_seconds"] == 600
        assert api_repository.sessions[started["session_id"]]["user_id"] == "user-1"

        state = client.get("/api/exam-state").json()
        assert state["status"] == "active"
        assert state["time_remaining"] == 600
        assert state["question_ids"] == ["q1", "q2", "q3", "q4", "q5"]

    def test_start_with_topic_filter(self, client):
        response = client.post("/api/start-test", json={"topics": ["Polity"]}, headers=USER)
        assert response.status_code == 200
        assert response.json()["total"] == 1

    def test_start_sample_paper(self, client):
        response = client.post("/api/start-test", json={"source": "sample"}, headers=USER)
        assert response.json()["total"] == 8

    def test_start_without_identity_is_rejected(self, client):
        response = client.post("/api/start-test", json={})
        assert response.status_code == 400
        assert "identity" in response.json()["detail"]

    def test_start_with_bearer_token(self, client, api_repository):
        response = client.post("/api/start-test", json={}, headers={"Authorization": "Bearer token-9"})
        assert response.status_code == 200
        assert api_repository.sessions[response.json()["session_id"]]["user_id"] == "user-9"

    def test_start_with_no_parsed_questions_is_rejected(self, client):
        response = client.post("/api/start-test", json={"source": "parsed"}, headers=USER)
        assert response.status_code == 400

    def test_start_while_active_conflicts(self, client, started):
        response = client.post("/api/start-test", json={}, headers=USER)
        assert response.status_code == 409

    def test_start_when_backend_down(self, client, api_repository):
        api_repository.fail_on.add("create_session")
        response = client.post("/api/start-test", json={}, headers=USER)
        assert response.status_code == 503
        assert client.get("/api/exam-state").status_code == 404


class TestExamScreen:
    """Question view, answers, navigation and flags."""

    def test_question_hides_key_while_active(self, client, started):
        data = client.get("/api/question/0").json()
        assert data["id"] == "q1"
        assert data["total"] == 5
        assert "correct_answer" not in data
        assert "explanation" not in data

    def test_question_out_of_range(self, client, started):
        assert client.get("/api/question/5").status_code == 404

    def test_no_session_yields_404(self, client):
        assert client.get("/api/exam-state").status_code == 404

    def test_answer_and_validation(self, client, started):
        ok = client.post("/api/answer", json={"question_id": "q1", "answer": "B"})
        assert ok.json() == {"ok": True, "answered_count": 1}

        bad_label = client.post("/api/answer", json={"question_id": "q1", "answer": "E"})
        assert bad_label.status_code == 422
        unknown = client.post("/api/answer", json={"question_id": "zz", "answer": "A"})
        assert unknown.status_code == 422

        assert client.get("/api/question/0").json()["saved_answer"] == "B"

    def test_navigation_and_jump(self, client, started):
        assert client.post("/api/navigate", json={"direction": "previous"}).json()["index"] == 0
        assert client.post("/api/jump", json={"index": 4}).json()["index"] == 4
        assert client.post("/api/navigate", json={"direction": "next"}).json()["index"] == 4
        assert client.post("/api/jump", json={"index": 9}).status_code == 422
        assert client.post("/api/navigate", json={"direction": "up"}).status_code == 422

    def test_flag_toggle(self, client, started):
        assert client.post("/api/flag", json={"question_id": "q2"}).json()["flagged"] is True
        data = client.post("/api/flag", json={"question_id": "q2"}).json()
        assert data["flagged"] is False
        assert data["flagged_count"] == 0

    def test_confidence_before_answer_conflicts(self, client, started):
        response = client.post("/api/confidence", json={"question_id": "q1", "level": 3})
        assert response.status_code == 409

    def test_confidence_out_of_range(self, client, started):
        client.post("/api/answer", json={"question_id": "q1", "answer": "A"})
        response = client.post("/api/confidence", json={"question_id": "q1", "level": 9})
        assert response.status_code == 422

    def test_confident_wrong_answer_asks_for_memo(self, client, started):
        client.post("/api/answer", json={"question_id": "q1", "answer": "C"})
        memo = client.post("/api/confidence", json={"question_id": "q1", "level": 5}).json()["voice_memo"]
        assert memo["should_trigger"] is True
        assert memo["framing"] == "high_confidence_wrong"
        assert memo["prompt_type"] == "mistake_analysis"


class TestSubmitAndResults:
    """POST /api/submit-test, GET /api/results"""

    def test_submit_then_results(self, client, started, api_repository):
        client.post("/api/answer", json={"question_id": "q1", "answer": "A"})
        client.post("/api/answer", json={"question_id": "q2", "answer": "B"})

        result = client.post("/api/submit-test").json()["result"]
        assert (result["correct"], result["wrong"], result["skipped"]) == (1, 1, 3)
        assert result["final_score"] == 0.67

        results = client.get("/api/results").json()
        assert [q["id"] for q in results["incorrect_questions"]] == ["q2"]
        assert results["incorrect_questions"][0]["correct_answer"] == "A"
        assert results["incorrect_questions"][0]["user_answer"] == "B"
        assert results["skipped_question_ids"] == ["q3", "q4", "q5"]

        again = client.post("/api/submit-test").json()["result"]
        assert again == result
        assert api_repository.calls["update_session"] == 1

    def test_results_before_submit(self, client, started):
        assert client.get("/api/results").status_code == 400

    def test_answers_rejected_after_submit(self, client, started):
        client.post("/api/submit-test")
        response = client.post("/api/answer", json={"question_id": "q1", "answer": "A"})
        assert response.status_code == 409
        assert client.get("/api/question/0").json()["correct_answer"] == "A"

    def test_submit_when_backend_down_can_be_retried(self, client, started, api_repository):
        api_repository.fail_on.add("update_session")
        assert client.post("/api/submit-test").status_code == 503
        assert client.get("/api/exam-state").json()["status"] == "active"

        api_repository.fail_on.clear()
        assert client.post("/api/submit-test").status_code == 200
        assert client.get("/api/exam-state").json()["status"] == "completed"

    def test_reset_drops_the_session(self, client, started):
        assert client.post("/api/reset").json() == {"ok": True}
        assert client.get("/api/exam-state").status_code == 404


class TestVoiceMemos:
    """POST /api/voice-memo, POST /api/flashcards/{id}/review"""

    def test_memo_flow_creates_reviewable_flashcard(self, client, started, api_repository):
        client.post("/api/answer", json={"question_id": "q1", "answer": "D"})
        client.post("/api/confidence", json={"question_id": "q1", "level": 4})

        response = client.post(
            "/api/voice-memo",
            data={"question_id": "q1", "transcript": "I mixed up the two articles.", "duration_seconds": "20"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["memo"]["prompt_type"] == "mistake_analysis"
        assert data["feedback"]["confidence_score"] == 0.4
        card_id = data["flashcard"]["id"]
        assert card_id in api_repository.flashcards

        review = client.post(f"/api/flashcards/{card_id}/review", json={"mastery_level": 3})
        assert review.status_code == 200
        assert review.json()["flashcard"]["review_count"] == 1

    def test_memo_not_requested(self, client, started):
        client.post("/api/answer", json={"question_id": "q1", "answer": "A"})
        client.post("/api/confidence", json={"question_id": "q1", "level": 5})
        response = client.post("/api/voice-memo", data={"question_id": "q1", "transcript": "sure"})
        assert response.status_code == 404

    def test_review_unknown_flashcard(self, client):
        response = client.post("/api/flashcards/missing/review", json={"mastery_level": 3})
        assert response.status_code == 404


class TestPaperImport:
    """POST /api/parse-pdf, POST /api/parse-answer"""

    DRAFTS = [
        {
            "number": n,
            "question_text": f"Statement question {n}",
            "options": {"A": "1 only", "B": "2 only", "C": "Both", "D": "Neither"},
            "correct_answer": "",
            "topic": "Polity",
        }
        for n in (1, 2, 3)
    ]

    @pytest.fixture
    def stub_parser(self, monkeypatch):
        monkeypatch.setattr("api.routes.extract_question_drafts", lambda file_bytes: [dict(d) for d in self.DRAFTS])
        monkeypatch.setattr("api.routes.parse_answer_key", lambda file_bytes: {1: "B", 2: "C", 3: "D"})

    def _upload(self, client, path, name):
        return client.post(path, files={"file": (name, b"%PDF-1.4 stub", "application/pdf")})

    def test_paper_then_answer_key(self, client, stub_parser):
        paper = self._upload(client, "/api/parse-pdf", "paper.pdf")
        assert paper.status_code == 200
        assert paper.json() == {"count": 0, "pending": 3, "ok": True}
        assert client.get("/api/session-status").json()["pending_count"] == 3

        key = self._upload(client, "/api/parse-answer", "key.pdf")
        assert key.status_code == 200
        assert key.json()["count"] == 3
        assert key.json()["pending"] == 0

        started = client.post("/api/start-test", json={"source": "parsed"}, headers=USER)
        assert started.status_code == 200
        assert started.json()["total"] == 3

        client.post("/api/answer", json={"question_id": "pdf_2", "answer": "C"})
        result = client.post("/api/submit-test").json()["result"]
        assert (result["correct"], result["wrong"], result["skipped"]) == (1, 0, 2)

    def test_paper_with_key_in_one_upload(self, client, stub_parser):
        response = client.post(
            "/api/parse-pdf",
            files={
                "file": ("paper.pdf", b"%PDF-1.4 stub", "application/pdf"),
                "answer_file": ("key.pdf", b"%PDF-1.4 key", "application/pdf"),
            },
        )
        assert response.json() == {"count": 3, "pending": 0, "ok": True}

    def test_answer_key_before_paper(self, client, stub_parser):
        response = self._upload(client, "/api/parse-answer", "key.pdf")
        assert response.status_code == 400

    def test_paper_without_questions(self, client, monkeypatch):
        monkeypatch.setattr("api.routes.extract_question_drafts", lambda file_bytes: [])
        response = self._upload(client, "/api/parse-pdf", "blank.pdf")
        assert response.status_code == 422


class TestSessionExpiry:
    """Idle-session eviction while a test is running."""

    def test_active_test_outlives_idle_ttl_and_auto_submits(self, client, started, api_repository, monkeypatch):
        sid = client.cookies.get(SESSION_COOKIE)
        client.post("/api/answer", json={"question_id": "q1", "answer": "A"})
        engine = session.get(sid, "engine")

        monkeypatch.setattr(session, "SESSION_TTL", -1)
        session.cleanup_expired()
        assert session.get(sid, "engine") is engine
        assert engine.ticker.running is True

        engine.ticker.advance(600)
        row = api_repository.sessions[started["session_id"]]
        assert row["is_completed"] is True
        assert engine.result.auto_submitted is True
        assert engine.result.correct == 1

        session.cleanup_expired()
        assert session.get_session(sid) is None

    def test_idle_session_without_test_is_evicted(self, client, monkeypatch):
        client.get("/api/session-status")
        sid = client.cookies.get(SESSION_COOKIE)
        monkeypatch.setattr(session, "SESSION_TTL", -1)
        session.cleanup_expired()
        assert session.get_session(sid) is None


class TestEventLoop:
    """Engine calls run in worker threads, never on the event loop."""

    def test_answer_waiting_on_engine_lock_does_not_stall_other_requests(self, client, started):
        engine = session.get(client.cookies.get(SESSION_COOKIE), "engine")
        responses = {}

        def answer():
            responses["answer"] = client.post("/api/answer", json={"question_id": "q1", "answer": "B"})

        def status():
            responses["status"] = client.get("/api/session-status")

        with engine._lock:
            answering = threading.Thread(target=answer, daemon=True)
            answering.start()
            time.sleep(0.2)
            checking = threading.Thread(target=status, daemon=True)
            checking.start()
            checking.join(timeout=5)
            assert not checking.is_alive()
            assert responses["status"].status_code == 200
            assert "answer" not in responses

        answering.join(timeout=5)
        assert responses["answer"].json() == {"ok": True, "answered_count": 1}
