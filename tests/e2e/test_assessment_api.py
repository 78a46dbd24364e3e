"""
End-to-End Tests for the Assessment API

Drives the FastAPI app through TestClient with in-memory stores and a
scripted generation client:
- Session open -> start -> five answers -> completion summary
- Error mapping (400 / 401 / 404 / 409 / 429)
- Progress read-out after completion
"""

import pytest
from fastapi.testclient import TestClient

from socratic_assessment.generation_client import GenerationRateLimited

from conftest import ARTICLE_ID, verdict

import main
from main import app, get_assessment_context, get_assessor


@pytest.fixture
def client(context, assessor):
    app.dependency_overrides[get_assessment_context] = lambda: context
    app.dependency_overrides[get_assessor] = lambda: assessor
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _open_session(client):
    response = client.post("/api/socratic/sessions", json={"articleId": ARTICLE_ID})
    assert response.status_code == 200
    return response.json()["id"]


def _turn(client, session_id, **fields):
    body = {"articleId": ARTICLE_ID, "sessionId": session_id}
    body.update(fields)
    return client.post("/api/socraticbot", json=body)


def _answer(client, session_id, index, question, level):
    return _turn(
        client,
        session_id,
        userAnswer=f"answer {index}",
        questionIndex=index,
        currentQuestion=question,
        currentLevel=level,
    )


class TestAssessmentFlow:

    def test_health(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_full_session_over_http(self, client, generation_client):
        session_id = _open_session(client)

        generation_client.push("Q1?")
        first = _turn(client, session_id).json()
        assert first == {
            "question": "Q1?",
            "level": 3,
            "questionIndex": 1,
            "isCompleted": False,
            "feedback": None,
            "answerScore": None,
            "isCorrect": None,
            "averageScore": None,
        }

        scripted = [(True, 80), (False, 0), (True, 50), (False, 0)]
        level, question = first["level"], first["question"]
        for index, (correct, score) in enumerate(scripted, 1):
            generation_client.push(verdict(correct, score), f"Q{index + 1}?")
            body = _answer(client, session_id, index, question, level).json()
            assert body["questionIndex"] == index + 1
            assert body["answerScore"] == score
            level, question = body["level"], body["question"]

        generation_client.push(verdict(True, 90), "not a review")
        final = _answer(client, session_id, 5, question, level)

        assert final.status_code == 200
        body = final.json()
        assert body["isCompleted"] is True
        assert body["question"] is None
        assert body["questionIndex"] == 6
        assert body["averageScore"] == 44.0
        assert body["feedback"]["scores"] == [80, 0, 50, 0, 90]
        assert body["feedback"]["difficultyPath"] == [3, 4, 3, 4, 3]
        assert body["feedback"]["isFallback"] is True

        snapshot = client.get(f"/api/socratic/sessions/{session_id}").json()
        assert snapshot["isCompleted"] is True
        assert snapshot["questionsAnsweredCount"] == 5

        completed = client.get(f"/api/socratic/articles/{ARTICLE_ID}/sessions/completed").json()
        assert [s["id"] for s in completed] == [session_id]

        progress = client.get("/api/progress")
        assert progress.status_code == 200
        assert progress.json()["comprehensionScore"] == 70
        assert progress.json()["sessionsCompleted"] == 1

        # A completed session accepts no more answers
        conflict = _answer(client, session_id, 5, question, level)
        assert conflict.status_code == 409
        assert conflict.json()["error"] == "SESSION_COMPLETED"

    def test_open_session_resumes_same_session(self, client):
        assert _open_session(client) == _open_session(client)


class TestErrorMapping:

    def test_missing_session_id_is_400(self, client, generation_client):
        response = client.post("/api/socraticbot", json={"articleId": ARTICLE_ID})
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"
        assert generation_client.call_count == 0

    def test_malformed_body_is_400(self, client):
        response = _turn(client, "s1", userAnswer="x", currentQuestion="Q?", currentLevel="very hard")
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_missing_current_question_is_400(self, client, generation_client):
        session_id = _open_session(client)
        response = _turn(client, session_id, userAnswer="x", questionIndex=1)
        assert response.status_code == 400
        assert generation_client.call_count == 0

    def test_unknown_session_is_404(self, client):
        response = client.get("/api/socratic/sessions/does-not-exist")
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_unknown_article_is_404(self, client):
        response = client.post("/api/socratic/sessions", json={"articleId": "nope"})
        assert response.status_code == 404

    def test_progress_before_completion_is_404(self, client):
        assert client.get("/api/progress").status_code == 404

    def test_rate_limit_is_429_with_retry_after(self, client, generation_client, recording_sleep):
        session_id = _open_session(client)
        generation_client.push(
            GenerationRateLimited("quota", retry_after=15),
            GenerationRateLimited("quota", retry_after=15),
        )

        response = _turn(client, session_id)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "15"
        body = response.json()
        assert body["error"] == "RATE_LIMIT"
        assert body["retryAfterSeconds"] == 15
        assert recording_sleep.delays == [15]

        snapshot = client.get(f"/api/socratic/sessions/{session_id}").json()
        assert snapshot["askedQuestions"] == []


class TestAuthentication:

    def test_missing_token_is_401(self):
        app.dependency_overrides.clear()
        with TestClient(app) as test_client:
            response = test_client.post("/api/socraticbot", json={"articleId": ARTICLE_ID, "sessionId": "s1"})
        assert response.status_code == 401

    def test_turn_without_generation_client_is_500(self, client, context):
        context.generation_client = None
        session_id = _open_session(client)
        response = _turn(client, session_id)
        assert response.status_code == 500
        assert response.json()["error"] == "INTERNAL_ERROR"


def test_app_builds_context_from_singletons(monkeypatch):
    monkeypatch.setattr(main.settings, "openai_api_key", None)
    monkeypatch.setattr(main, "get_supabase_client", lambda: None)
    monkeypatch.setattr(main, "_session_store", None)
    monkeypatch.setattr(main, "_generation_client", None)

    stores = main.get_stores()
    assert all(store.use_supabase is False for store in stores)
    assert main.get_generation_client() is None
