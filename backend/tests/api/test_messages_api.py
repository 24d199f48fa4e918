import pytest

from duochat.domain.chat import service
from duochat.domain.chat.models import DELETED_PLACEHOLDER
from duochat.infra import jwt as jwt_helper
from duochat.settings import settings

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


async def _send(api_client, headers, receiver, text):
    response = await api_client.post(f"/api/messages/send/{receiver}", data={"text": text}, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["message"]


@pytest.mark.asyncio
async def test_send_and_read_conversation(api_client):
    first = await _send(api_client, ALICE, "bob", "hi")
    second = await _send(api_client, BOB, "alice", "hello")

    assert first["sender"] == "alice"
    assert first["receiver"] == "bob"
    assert first["seen"] is False
    assert first["reactions"] == []
    assert set(first) >= {"_id", "text", "image", "deleted", "createdAt", "updatedAt"}

    response = await api_client.get("/api/messages/alice", headers=BOB)
    body = response.json()
    assert response.status_code == 200
    assert body["success"] is True
    assert [message["_id"] for message in body["messages"]] == [second["_id"], first["_id"]]
    assert body["total"] == 2
    assert body["page"] == 1
    assert body["limit"] == 50
    assert body["hasMore"] is False


@pytest.mark.asyncio
async def test_pagination_limit_is_capped(api_client):
    settings_max = settings.message_page_limit_max
    for index in range(3):
        await _send(api_client, ALICE, "bob", f"m{index}")

    response = await api_client.get("/api/messages/bob", params={"page": 1, "limit": 2}, headers=ALICE)
    body = response.json()
    assert len(body["messages"]) == 2
    assert body["hasMore"] is True

    response = await api_client.get("/api/messages/bob", params={"page": 2, "limit": 2}, headers=ALICE)
    body = response.json()
    assert len(body["messages"]) == 1
    assert body["hasMore"] is False

    response = await api_client.get("/api/messages/bob", params={"limit": 10_000}, headers=ALICE)
    assert response.json()["limit"] == settings_max


@pytest.mark.asyncio
async def test_sidebar_reports_unseen_and_first_page_clears_it(api_client):
    await _send(api_client, ALICE, "bob", "one")
    await _send(api_client, ALICE, "bob", "two")

    response = await api_client.get("/api/messages/users", headers=BOB)
    body = response.json()
    assert body["success"] is True
    assert body["unseenMessages"] == {"alice": 2}
    (user,) = body["users"]
    assert user["_id"] == "alice"
    assert user["lastMessageAt"] is not None
    assert {"fullName", "profilePic"} <= set(user)

    await api_client.get("/api/messages/alice", headers=BOB)

    response = await api_client.get("/api/messages/users", headers=BOB)
    assert response.json()["unseenMessages"] == {}


@pytest.mark.asyncio
async def test_empty_send_rejected(api_client):
    response = await api_client.post("/api/messages/send/bob", data={}, headers=ALICE)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["detail"] == "empty_message"
    assert body["request_id"]

    listing = await api_client.get("/api/messages/bob", headers=ALICE)
    assert listing.json()["total"] == 0


@pytest.mark.asyncio
async def test_send_with_image(api_client, memory_storage):
    response = await api_client.post(
        "/api/messages/send/bob",
        files={"image": ("cat.png", b"\x89PNG-bytes", "image/png")},
        headers=ALICE,
    )

    assert response.status_code == 200, response.text
    message = response.json()["message"]
    assert message["image"].startswith("https://cdn.test/chat-messages/alice/")
    assert message["text"] == ""


@pytest.mark.asyncio
async def test_send_with_invalid_image(api_client, memory_storage):
    response = await api_client.post(
        "/api/messages/send/bob",
        data={"text": "see attached"},
        files={"image": ("notes.txt", b"plain", "text/plain")},
        headers=ALICE,
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "invalid_image"
    assert memory_storage.objects == {}


@pytest.mark.asyncio
async def test_detail_requires_participant(api_client):
    sent = await _send(api_client, ALICE, "bob", "secret")

    ok = await api_client.get(f"/api/messages/detail/{sent['_id']}", headers=BOB)
    forbidden = await api_client.get(f"/api/messages/detail/{sent['_id']}", headers={"X-User-Id": "mallory"})
    missing = await api_client.get("/api/messages/detail/nope", headers=BOB)

    assert ok.status_code == 200
    assert ok.json()["message"]["text"] == "secret"
    assert forbidden.status_code == 403
    assert missing.status_code == 404
    assert missing.json()["detail"] == "not_found"


@pytest.mark.asyncio
async def test_mark_seen_twice_is_stable(api_client):
    sent = await _send(api_client, ALICE, "bob", "ping")

    first = await api_client.put(f"/api/messages/mark/{sent['_id']}", headers=BOB)
    second = await api_client.put(f"/api/messages/mark/{sent['_id']}", headers=BOB)

    assert first.status_code == second.status_code == 200
    assert first.json()["message"] == "Message marked as seen"
    assert first.json()["data"]["seen"] is True
    assert second.json()["data"] == first.json()["data"]


@pytest.mark.asyncio
async def test_reaction_toggle_round_trip(api_client):
    sent = await _send(api_client, ALICE, "bob", "nice")
    url = f"/api/messages/reaction/{sent['_id']}"

    added = await api_client.post(url, json={"emoji": "👍"}, headers=BOB)
    removed = await api_client.post(url, json={"emoji": "👍"}, headers=BOB)
    missing = await api_client.post(url, json={}, headers=BOB)

    assert added.json()["message"]["reactions"] == [{"userId": "bob", "emoji": "👍"}]
    assert removed.json()["message"]["reactions"] == []
    assert missing.status_code == 400
    assert missing.json()["detail"] == "emoji_required"


@pytest.mark.asyncio
async def test_reaction_cap_returns_429(api_client):
    settings.max_reactions_per_user = 1
    service.set_service(None)
    sent = await _send(api_client, ALICE, "bob", "nice")
    url = f"/api/messages/reaction/{sent['_id']}"

    await api_client.post(url, json={"emoji": "👍"}, headers=BOB)
    response = await api_client.post(url, json={"emoji": "🎉"}, headers=BOB)

    assert response.status_code == 429
    assert response.json()["detail"] == "reaction_limit"


@pytest.mark.asyncio
async def test_delete_by_sender_only(api_client):
    sent = await _send(api_client, ALICE, "bob", "oops")

    forbidden = await api_client.delete(f"/api/messages/{sent['_id']}", headers=BOB)
    deleted = await api_client.delete(f"/api/messages/{sent['_id']}", headers=ALICE)

    assert forbidden.status_code == 403
    assert deleted.status_code == 200
    body = deleted.json()
    assert body["message"] == "Message deleted"
    assert body["data"]["deleted"] is True
    assert body["data"]["text"] == DELETED_PLACEHOLDER
    assert body["data"]["image"] == ""


@pytest.mark.asyncio
async def test_requests_need_identity(api_client):
    anonymous = await api_client.get("/api/messages/users")
    assert anonymous.status_code == 401

    token = jwt_helper.encode_access({"sub": "alice"})
    settings.environment = "production"
    spoofed = await api_client.get("/api/messages/users", headers={"X-User-Id": "alice"})
    bearer = await api_client.get("/api/messages/users", headers={"Authorization": f"Bearer {token}"})

    assert spoofed.status_code == 401
    assert bearer.status_code == 200


@pytest.mark.asyncio
async def test_health_live(api_client):
    response = await api_client.get("/health/live")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
