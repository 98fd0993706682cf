from datetime import datetime, timezone

import httpx
import pytest

import cinefind.notifier as notifier_module
from cinefind.models import ContentItem, User
from cinefind.notifier import PushNotifier


class _FakeResponse:
    def __init__(self, status_code: int):
        self.status_code = status_code


class _FakeAsyncClient:
    def __init__(self, statuses: dict[str, int]):
        self._statuses = statuses
        self.sent = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, url, *_args, **kwargs):
        token = kwargs["json"]["message"]["token"]
        self.sent.append((url, kwargs["headers"], kwargs["json"]))
        status = self._statuses.get(token, 200)
        if status is None:
            raise httpx.ConnectError("unreachable")
        return _FakeResponse(status)


class _DummyDB:
    def __init__(self, users: list[User]):
        self.users = users

    async def get_push_recipients(self):
        return self.users


def _item() -> ContentItem:
    return ContentItem(
        id="item-1",
        title="Inception",
        url="https://example.test/inception",
        thumbnail_url="https://img.test/inception.jpg",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def _configure(monkeypatch, project_id="cinefind-test", token="access"):
    monkeypatch.setattr(notifier_module.settings, "fcm_project_id", project_id)
    monkeypatch.setattr(notifier_module.settings, "fcm_access_token", token)
    monkeypatch.setattr(notifier_module.settings, "notifications_enabled", True)


def test_build_message():
    message = PushNotifier().build_message("token-1", _item())

    assert message["message"]["token"] == "token-1"
    assert message["message"]["notification"] == {
        "title": "New video added",
        "body": "Inception",
        "image": "https://img.test/inception.jpg",
    }
    assert message["message"]["data"] == {"content_id": "item-1", "category": "movie"}


@pytest.mark.asyncio
async def test_notify_skips_when_not_configured(monkeypatch):
    _configure(monkeypatch, project_id="", token="")
    monkeypatch.setattr(notifier_module, "db", _DummyDB([User(id="u1", name="A", fcm_token="t1")]))

    assert await PushNotifier().notify_new_content(_item()) == 0


@pytest.mark.asyncio
async def test_notify_counts_successful_deliveries(monkeypatch):
    _configure(monkeypatch)
    users = [
        User(id="u1", name="A", fcm_token="t1"),
        User(id="u2", name="B", fcm_token="t2"),
        User(id="u3", name="C", fcm_token="t3"),
    ]
    fake = _FakeAsyncClient({"t2": 404, "t3": None})
    monkeypatch.setattr(notifier_module, "db", _DummyDB(users))
    monkeypatch.setattr(notifier_module.httpx, "AsyncClient", lambda: fake)

    sent = await PushNotifier().notify_new_content(_item())

    assert sent == 1
    assert len(fake.sent) == 3
    url, headers, _ = fake.sent[0]
    assert url == "https://fcm.googleapis.com/v1/projects/cinefind-test/messages:send"
    assert headers == {"Authorization": "Bearer access"}
