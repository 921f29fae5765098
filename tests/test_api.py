"""End-to-end tests of the HTTP surface through FastAPI's TestClient."""

import inspect

import pytest
from fastapi.testclient import TestClient

from storyrunner.app.api.main import app
from storyrunner.app.api.dependencies import get_current_user, get_session_manager
from storyrunner.services.chapter_generator import ChapterGenerator
from storyrunner.services.session_manager import SessionManager

PLAYER = ("player", "player-pass")
ADMIN = ("admin", "admin-pass")


@pytest.fixture
def client():
    app.dependency_overrides[get_session_manager] = lambda: SessionManager(
        ChapterGenerator(provider="mock"), refund_on_failure=True
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


def _start(client, story_id):
    return client.post("/api/start", auth=PLAYER,
                       json={"storyId": story_id, "toneStyleId": "drama", "timeFlavorId": "today"})


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_settings_are_public(client):
    resp = client.get("/api/settings")
    assert resp.status_code == 200
    body = resp.json()
    assert body["tone_styles"][0] == {
        "id": "original", "displayLabel": "Original",
        "description": "Stay true to the original author's tone and style",
    }
    assert len(body["time_flavors"]) == 4


def test_stories_listing(client, story):
    resp = client.get("/api/stories")
    assert resp.status_code == 200
    assert [s["id"] for s in resp.json()] == ["the-picture-of-dorian-gray"]
    assert resp.json()[0]["pricing"]["creditsPerChapter"] == 10
    assert client.get("/api/stories/missing").json()["error"] == "NOT_FOUND"


def test_play_requires_credentials(client, story):
    resp = client.post("/api/start", json={"storyId": story.id, "toneStyleId": "drama", "timeFlavorId": "today"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "UNAUTHENTICATED"
    assert resp.headers["WWW-Authenticate"] == "Basic"

    resp = client.get("/api/wallet/me", auth=("player", "wrong"))
    assert resp.status_code == 401


def test_play_flow(client, player, story):
    resp = _start(client, story.id)
    assert resp.status_code == 201
    body = resp.json()
    assert body["resumed"] is False
    assert body["walletBalance"] == 90
    session_id = body["session"]["id"]

    resp = _start(client, story.id)
    assert resp.status_code == 200
    assert resp.json()["resumed"] is True

    resp = client.post("/api/generate-chapter", auth=PLAYER, json={"sessionId": session_id})
    assert resp.status_code == 200
    assert resp.json()["chapter"]["chapterIndex"] == 1
    assert resp.json()["walletBalance"] == 90

    resp = client.post("/api/advance", auth=PLAYER,
                       json={"sessionId": session_id, "choiceIndex": 1, "expectedChapter": 1})
    assert resp.status_code == 200
    assert resp.json()["chapter"]["chapterIndex"] == 2
    assert resp.json()["walletBalance"] == 80

    resp = client.post("/api/advance", auth=PLAYER, json={"sessionId": session_id, "expectedChapter": 1})
    assert resp.status_code == 409
    assert resp.json() == {
        "error": "CHAPTER_CONFLICT",
        "detail": "Chapter mismatch. Expected 1, session is at 2. Please refresh.",
        "expected": 1,
        "actual": 2,
    }

    chapters = client.get(f"/api/session/{session_id}/chapters", auth=PLAYER).json()["items"]
    assert [c["chapterIndex"] for c in chapters] == [1, 2]

    resp = client.post(f"/api/session/{session_id}/complete", auth=PLAYER, json={"rating": 5})
    assert resp.json()["session"]["status"] == "finished"

    resp = client.post("/api/advance", auth=PLAYER, json={"sessionId": session_id})
    assert resp.status_code == 409
    assert resp.json()["error"] == "SESSION_NOT_ACTIVE"

    sessions = client.get("/api/sessions", auth=PLAYER, params={"status": "finished"}).json()["items"]
    assert [s["id"] for s in sessions] == [session_id]


def test_insufficient_credits(client, player, story):
    client.post("/api/admin/users/{}/wallet".format(player.id), auth=ADMIN,
                json={"type": "debit", "amount": 95, "note": "test"})
    resp = _start(client, story.id)
    assert resp.status_code == 402
    assert resp.json()["error"] == "INSUFFICIENT_CREDITS"
    assert resp.json()["needed"] == 10
    assert resp.json()["balance"] == 5


def test_bad_flavor(client, player, story):
    resp = client.post("/api/start", auth=PLAYER,
                       json={"storyId": story.id, "toneStyleId": "noir", "timeFlavorId": "today"})
    assert resp.status_code == 400
    assert resp.json()["field"] == "toneStyleId"


def test_start_without_flavors(client, player, story):
    resp = client.post("/api/start", auth=PLAYER, json={"storyId": story.id})
    assert resp.status_code == 201
    session = resp.json()["session"]
    assert session["toneStyleId"]
    assert session["timeFlavorId"]


def test_credentials_are_checked_off_the_event_loop():
    assert not inspect.iscoroutinefunction(get_current_user)


def test_wallet_routes(client, player):
    resp = client.post("/api/wallet/topup", auth=PLAYER, json={"amount": 50})
    assert resp.status_code == 200
    assert resp.json()["balance"] == 150
    assert client.get("/api/wallet/me", auth=PLAYER).json() == {"balance": 150}

    resp = client.get("/api/wallet/transactions", auth=PLAYER, params={"limit": 10})
    items = resp.json()["items"]
    assert len(items) == 1
    assert items[0]["type"] == "credit"
    assert items[0]["source"] == "topup"
    assert "nextCursor" not in resp.json()

    resp = client.post("/api/wallet/refund", auth=PLAYER, json={"txId": items[0]["id"]})
    assert resp.status_code == 400
    assert resp.json()["error"] == "NOT_REFUNDABLE"

    resp = client.post("/api/wallet/topup", auth=PLAYER, json={"amount": 0})
    assert resp.status_code == 422


def test_feedback_routes(client, player, story):
    resp = client.post("/api/feedbacks", auth=PLAYER, json={"storyId": story.id, "stars": 4, "text": "Good"})
    assert resp.status_code == 200
    assert resp.json()["stats"] == {"totalReviews": 1, "avgRating": 4.0}

    resp = client.get(f"/api/stories/{story.id}/feedbacks")
    assert resp.status_code == 200
    assert resp.json()["items"][0]["displayName"] == "player"
    assert "nextCursor" not in resp.json()

    resp = client.get(f"/api/stories/{story.id}/feedbacks", params={"cursor": "not-a-cursor"})
    assert resp.status_code == 400
    assert resp.json()["field"] == "cursor"


class TestAdmin:
    def test_non_admin_is_forbidden(self, client, player):
        resp = client.get("/api/admin/stories", auth=PLAYER)
        assert resp.status_code == 403
        assert resp.json()["error"] == "FORBIDDEN"

    def test_story_crud(self, client):
        resp = client.post("/api/admin/stories", auth=ADMIN, json={
            "title": "Frankenstein",
            "story_prompt": "Tell {{STORY_TITLE}} in a {{TONE_STYLE}} tone",
            "credits_per_chapter": 5,
            "characters": [{"id": "victor", "name": "Victor"}],
            "roles": [{"id": "lead", "label": "Lead"}],
            "cast": [{"character_id": "victor", "role_ids": ["lead"]}],
        })
        assert resp.status_code == 201
        assert resp.json()["id"] == "frankenstein"

        resp = client.put("/api/admin/stories/frankenstein", auth=ADMIN,
                          json={"cast": [{"character_id": "elizabeth", "role_ids": []}]})
        assert resp.status_code == 400
        assert resp.json()["field"] == "cast"

        resp = client.put("/api/admin/stories/frankenstein/active", auth=ADMIN, json={"is_active": False})
        assert resp.json() == {"id": "frankenstein", "isActive": False}
        assert client.get("/api/stories").json() == []

        resp = client.delete("/api/admin/stories/frankenstein", auth=ADMIN)
        assert resp.status_code == 204

    def test_validate_template(self, client):
        resp = client.post("/api/admin/stories/validate-template", auth=ADMIN,
                           json={"template": "{{STORY_TITLE}} meets {{HERO}}"})
        assert resp.status_code == 200
        assert resp.json()["unknown"] == ["HERO"]

        resp = client.post("/api/admin/stories/validate-template", auth=ADMIN,
                           json={"template": "{{HERO}}", "strict": True})
        assert resp.status_code == 400
        assert resp.json()["error"] == "UNKNOWN_PLACEHOLDER"
        assert resp.json()["tokens"] == ["HERO"]

    def test_replace_settings(self, client):
        resp = client.put("/api/admin/settings", auth=ADMIN, json={
            "tone_styles": [{"id": "noir", "displayLabel": "Noir"}],
            "time_flavors": [{"id": "today", "displayLabel": "Today"}],
        })
        assert resp.status_code == 200
        assert client.get("/api/settings").json()["tone_styles"][0]["id"] == "noir"

    def test_delete_story_with_sessions_conflicts(self, client, player, story):
        _start(client, story.id)
        resp = client.delete(f"/api/admin/stories/{story.id}", auth=ADMIN)
        assert resp.status_code == 409
        assert resp.json()["error"] == "CONFLICT"

    def test_sessions_and_analytics(self, client, player, story):
        _start(client, story.id)
        resp = client.get("/api/admin/sessions", auth=ADMIN, params={"storyId": story.id})
        assert resp.json()["total"] == 1

        stats = client.get("/api/admin/analytics/wallet", auth=ADMIN).json()
        assert stats["totalDebits"] == 10
        assert stats["uniqueUsers"] == 1

        flavors = client.get("/api/admin/analytics/flavors", auth=ADMIN).json()
        assert flavors["toneStyles"][0]["id"] == "drama"

    def test_user_admin(self, client):
        resp = client.post("/api/admin/users", auth=ADMIN, json={"username": "reader", "password": "pw"})
        assert resp.status_code == 201
        user_id = resp.json()["id"]

        resp = client.post(f"/api/admin/users/{user_id}/wallet", auth=ADMIN, json={"type": "credit", "amount": 30})
        assert resp.json()["balance"] == 30
        assert resp.json()["transaction"]["source"] == "admin"

        resp = client.post(f"/api/admin/users/{user_id}/wallet", auth=ADMIN, json={"type": "gift", "amount": 30})
        assert resp.status_code == 400

        resp = client.post("/api/admin/users", auth=ADMIN, json={"username": "reader", "password": "pw"})
        assert resp.status_code == 409
