from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

import cinefind.notifier as notifier_module
import webapp.routes as routes_module
from cinefind.database import Database
from cinefind.models import ContentItem, User, UserSession
from cinefind.youtube_client import YouTubeClient
from webapp.app import app


def _content(item_id: str, title: str, votes: int = 0) -> ContentItem:
    return ContentItem(
        id=item_id,
        title=title,
        url=f"https://example.test/{item_id}",
        votes=votes,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


class _DummyDB:
    @property
    def conn(self):
        raise RuntimeError("not connected")

    async def list_content(self, *_args, **_kwargs):
        return [_content("m1", "Inception", votes=3), _content("m2", "Tenet")]

    async def get_content(self, *_args, **_kwargs):
        return None

    async def list_users(self, *_args, **_kwargs):
        return [User(id="user-1", name="Test User")]

    async def get_user_sessions(self, *_args, **_kwargs):
        start = datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
        return [
            UserSession(
                id="s1",
                user_id="user-1",
                started_at=start,
                ended_at=start + timedelta(minutes=30),
                duration_seconds=1800,
            ),
            UserSession(
                id="s2",
                user_id="user-1",
                started_at=start + timedelta(hours=2),
                ended_at=start + timedelta(hours=3),
                duration_seconds=3725,
            ),
            UserSession(id="s3", user_id="user-1", started_at=start + timedelta(hours=5)),
        ]


@pytest.fixture
def dummy_client(monkeypatch):
    monkeypatch.setattr(routes_module, "db", _DummyDB())
    monkeypatch.setattr(routes_module, "youtube_client", YouTubeClient(api_key=""))
    return TestClient(app)


@pytest.fixture
def client(monkeypatch, tmp_path):
    database = Database(tmp_path / "routes.db")
    monkeypatch.setattr(routes_module, "db", database)
    monkeypatch.setattr(notifier_module, "db", database)
    monkeypatch.setattr(routes_module, "youtube_client", YouTubeClient(api_key=""))
    monkeypatch.setattr(notifier_module.settings, "fcm_project_id", "")
    with TestClient(app) as test_client:
        yield test_client


def _add(client: TestClient, title: str, **extra) -> dict:
    payload = {"title": title, "category": "movie", "url": f"https://example.test/{title}"}
    payload.update(extra)
    response = client.post("/api/content", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_format_clock():
    assert routes_module.format_clock(0) == "00:00:00"
    assert routes_module.format_clock(None) == "00:00:00"
    assert routes_module.format_clock(3725) == "01:02:05"


def test_index_route_renders(dummy_client):
    response = dummy_client.get("/")
    assert response.status_code == 200
    assert "Inception" in response.text


def test_pages_carry_activity_tracker(dummy_client):
    dummy_client.cookies.set("cinefind_user_id", "user-1")

    for path in ("/", "/tv-channels", "/watch?v=missing", "/admin/activity"):
        body = dummy_client.get(path).text
        assert 'id="activity-tracker"' in body
        assert "/ws/activity" in body
        assert 'let userId = "user-1";' in body
        assert "visibilitychange" in body
        assert "pagehide" in body


def test_live_pages_open_snapshot_sockets(dummy_client):
    body = dummy_client.get("/?category=movie").text
    assert "/ws/catalog?" in body
    assert 'category: "movie"' in body

    body = dummy_client.get("/admin/activity?user_id=user-1&date=2024-01-01").text
    assert "/ws/admin/sessions?" in body
    assert 'user_id: "user-1", date: "2024-01-01"' in body


def test_index_rejects_unknown_category(dummy_client):
    response = dummy_client.get("/?category=documentary")
    assert response.status_code == 400


def test_tv_channels_route_renders(dummy_client):
    response = dummy_client.get("/tv-channels")
    assert response.status_code == 200
    assert "TV channels" in response.text


def test_watch_missing_video(dummy_client):
    response = dummy_client.get("/watch?v=missing")
    assert response.status_code == 404
    assert "Video not found." in response.text


def test_admin_activity_totals(dummy_client):
    response = dummy_client.get("/admin/activity?user_id=user-1&date=2024-01-01")
    assert response.status_code == 200
    body = response.text
    assert "Test User" in body
    assert "01:32:05" in body
    assert "In Progress" in body


def test_admin_activity_rejects_bad_date(dummy_client):
    response = dummy_client.get("/admin/activity?user_id=user-1&date=yesterday")
    assert response.status_code == 400


def test_health_route(dummy_client):
    response = dummy_client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["db_connected"] is False


def test_add_content_validation(client):
    response = client.post("/api/content", json={"title": " ", "url": "https://example.test/x"})
    assert response.status_code == 422

    response = client.post("/api/content", json={"title": "Panchayat", "category": "web-series"})
    assert response.status_code == 422

    response = client.post(
        "/api/content",
        json={
            "title": "Panchayat",
            "category": "web-series",
            "episodes": [{"title": "Episode 1", "url": "https://youtu.be/dQw4w9WgXcQ"}],
        },
    )
    assert response.status_code == 201
    assert response.json()["url"] is None


def test_add_and_list_content(client):
    first = _add(client, "Inception")
    second = _add(client, "News 24", category="tv-channel")

    response = client.get("/api/content")
    assert [i["id"] for i in response.json()] == [second["id"], first["id"]]

    response = client.get("/api/content?category=tv-channel")
    assert [i["id"] for i in response.json()] == [second["id"]]

    response = client.get(f"/api/content/{first['id']}")
    assert response.json()["title"] == "Inception"
    assert client.get("/api/content/missing").status_code == 404


def test_vote(client):
    item = _add(client, "Inception")

    response = client.post(f"/api/content/{item['id']}/vote")
    assert response.json() == {"id": item["id"], "votes": 1}
    assert client.post("/api/content/missing/vote").status_code == 404


def test_suggestions_and_watch_page(client):
    current = _add(client, "Breaking Bad S1E1")
    same = _add(client, "Breaking Bad S1E2")
    popular = _add(client, "Inception")
    _add(client, "Tenet")
    client.post(f"/api/content/{popular['id']}/vote")

    response = client.get(f"/api/content/{current['id']}/suggestions")
    ids = [i["id"] for i in response.json()]
    assert ids[:2] == [same["id"], popular["id"]]
    assert current["id"] not in ids

    response = client.get(f"/watch?v={current['id']}")
    assert response.status_code == 200
    assert "Recommended For You" in response.text
    assert "Breaking Bad S1E2" in response.text
    assert "Watch on original site" in response.text


def test_watch_page_embeds_youtube(client):
    item = _add(client, "Trailer", url="https://www.youtube.com/watch?v=dQw4w9WgXcQ")

    response = client.get(f"/watch?v={item['id']}")
    assert "https://www.youtube.com/embed/dQw4w9WgXcQ?autoplay=1&amp;rel=0" in response.text


def test_activity_socket_session_lifecycle(client):
    with client.websocket_connect("/ws/activity?user_id=user-1") as ws:
        status = ws.receive_json()
        assert status["state"] == "open"
        first_id = status["session_id"]

        ws.send_json({"type": "visibility", "state": "hidden"})
        assert ws.receive_json()["state"] == "closed"

        ws.send_json({"type": "visibility", "state": "visible"})
        status = ws.receive_json()
        assert status["state"] == "open"
        assert status["session_id"] != first_id

        ws.send_json({"type": "unload"})
        assert ws.receive_json()["state"] == "closed"

    sessions = client.get("/api/users/user-1/sessions").json()
    assert len(sessions) == 2
    assert all(s["ended_at"] is not None for s in sessions)
    assert all(s["duration_seconds"] >= 0 for s in sessions)


def test_activity_socket_identity_changes(client):
    with client.websocket_connect("/ws/activity") as ws:
        assert ws.receive_json()["state"] == "closed"

        ws.send_json({"type": "identity", "user_id": "user-1"})
        status = ws.receive_json()
        assert status == {"state": "open", "session_id": status["session_id"], "user_id": "user-1"}

        ws.send_json({"type": "identity", "user_id": None})
        assert ws.receive_json()["state"] == "closed"

        ws.send_json({"type": "dance"})
        assert "error" in ws.receive_json()

        ws.send_text("not json")
        assert ws.receive_json() == {"error": "invalid json"}

        ws.send_bytes(b"\x00\x01")
        assert ws.receive_json() == {"error": "invalid message"}

    sessions = client.get("/api/users/user-1/sessions").json()
    assert len(sessions) == 1
    assert sessions[0]["ended_at"] is not None


def test_catalog_socket_streams_snapshots(client):
    with client.websocket_connect("/ws/catalog") as ws:
        assert ws.receive_json() == []

        _add(client, "Inception")
        snapshot = ws.receive_json()
        assert [i["title"] for i in snapshot] == ["Inception"]

        _add(client, "Tenet")
        snapshot = ws.receive_json()
        assert [i["title"] for i in snapshot] == ["Tenet", "Inception"]


def test_admin_sessions_socket(client):
    today = datetime.now(timezone.utc).date().isoformat()
    with client.websocket_connect(f"/ws/admin/sessions?user_id=user-1&date={today}") as ws:
        assert ws.receive_json() == []

        with client.websocket_connect("/ws/activity?user_id=user-1") as page:
            assert page.receive_json()["state"] == "open"
            snapshot = ws.receive_json()
            assert len(snapshot) == 1
            assert snapshot[0]["ended_at"] is None

            page.send_json({"type": "visibility", "state": "hidden"})
            assert page.receive_json()["state"] == "closed"
            snapshot = ws.receive_json()
            assert snapshot[0]["ended_at"] is not None


def test_users_and_push_tokens(client):
    response = client.post("/api/users", json={"id": "user-1", "name": "Adam"})
    assert response.status_code == 201

    response = client.post("/api/users/user-1/push-token", json={"token": "fcm-token"})
    assert response.status_code == 204
    response = client.post("/api/users/missing/push-token", json={"token": "fcm-token"})
    assert response.status_code == 404

    response = client.get("/admin/activity?user_id=user-1")
    assert response.status_code == 200
    assert "Adam" in response.text


def test_suggest_rejects_short_prompt(client):
    response = client.post("/api/suggest", json={"prompt": "short"})
    assert response.json() == {
        "success": False,
        "message": "Please provide a more detailed description.",
    }


def test_metrics_route(client):
    _add(client, "Inception")
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "cinefind_catalog_items 1.0" in response.text


def test_suggest_tolerates_undecodable_body(client):
    response = client.post(
        "/api/suggest",
        content=b'{"prompt": "\xff"}',
        headers={"content-type": "application/json"},
    )
    assert response.status_code == 200
    assert response.json()["success"] is False
