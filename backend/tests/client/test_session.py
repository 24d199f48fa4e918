import pytest
import socketio

from duochat.client.models import Draft
from duochat.client.session import ChatSession
from duochat.domain.chat.exceptions import MessageForbidden, NetworkFailure
from timeline_fixtures import PagedConversation, make_message


def wire(message):
    return {
        "_id": message.id,
        "sender": message.sender,
        "receiver": message.receiver,
        "text": message.text,
        "image": message.image,
        "seen": message.seen,
        "deleted": message.deleted,
        "reactions": [{"userId": user_id, "emoji": emoji} for user_id, emoji in message.reactions],
        "createdAt": message.created_at.isoformat(),
        "updatedAt": message.updated_at.isoformat(),
    }


class FakeApi:
    def __init__(self, conversation):
        self.conversation = conversation
        self.seen_calls = []
        self.error = None
        self.sent = []

    async def fetch_page(self, peer_id, page, limit):
        return await self.conversation.fetch(peer_id, page, limit)

    async def list_users(self):
        return {"success": True, "users": [{"_id": "bob"}, {"_id": "carol"}], "unseenMessages": {"carol": 2}}

    async def mark_seen(self, message_id):
        self.seen_calls.append(message_id)
        if self.error is not None:
            raise self.error
        return make_message(message_id, 30, seen=True)

    async def send(self, receiver_id, *, text=None, image=None):
        self.sent.append((receiver_id, text))
        return make_message("srv-1", 40, sender="alice", receiver=receiver_id, text=text or "")

    async def delete(self, message_id):
        if self.error is not None:
            raise self.error
        return make_message(message_id, 0, deleted=True, text="This message was deleted")

    async def toggle_reaction(self, message_id, emoji):
        if self.error is not None:
            raise self.error
        return make_message(message_id, 0, reactions=(("alice", emoji),))


async def _open_session(notes=None):
    api = FakeApi(PagedConversation([make_message("old", 0)]))
    session = ChatSession("alice", api, sio=socketio.AsyncClient(), notify=(notes.append if notes is not None else None))
    await session.refresh_users()
    await session.select("bob")
    return session, api


@pytest.mark.asyncio
async def test_refresh_users_loads_unseen_badges():
    session, _ = await _open_session()

    assert [user["_id"] for user in session.users] == ["bob", "carol"]
    assert session.unseen.get("carol") == 2


@pytest.mark.asyncio
async def test_message_from_active_peer_is_shown_and_marked_seen():
    session, api = await _open_session()
    session.peer_typing.is_typing = True

    await session.on_new_message(wire(make_message("m1", 30)))

    assert [message.id for message in session.timeline.messages] == ["m1", "old"]
    assert api.seen_calls == ["m1"]
    assert session.timeline.messages[0].seen is True
    assert session.peer_typing.is_typing is False
    assert session.unseen.get("bob") == 0


@pytest.mark.asyncio
async def test_message_from_other_peer_bumps_badge_only():
    session, api = await _open_session()

    await session.on_new_message(wire(make_message("c1", 30, sender="carol")))

    assert [message.id for message in session.timeline.messages] == ["old"]
    assert session.unseen.get("carol") == 3
    assert api.seen_calls == []


@pytest.mark.asyncio
async def test_mark_seen_failure_keeps_message_visible():
    session, api = await _open_session()
    api.error = NetworkFailure()

    await session.on_new_message(wire(make_message("m1", 30)))

    assert session.timeline.messages[0].id == "m1"
    assert session.timeline.messages[0].seen is False


@pytest.mark.asyncio
async def test_own_echo_confirms_pending_send():
    session, _ = await _open_session()

    result = await session.send(Draft(text="hey"))
    await session.on_new_message(wire(result.message))

    assert [message.id for message in session.timeline.messages] == ["srv-1", "old"]
    assert session.sender.pending() == []


@pytest.mark.asyncio
async def test_send_without_active_conversation_raises():
    session = ChatSession("alice", FakeApi(PagedConversation([])), sio=socketio.AsyncClient())

    with pytest.raises(RuntimeError):
        await session.send(Draft(text="hey"))


@pytest.mark.asyncio
async def test_updates_replace_timeline_entries():
    session, _ = await _open_session()
    deleted = make_message("old", 0, deleted=True, text="This message was deleted")

    await session.on_message_updated(wire(deleted))

    assert session.timeline.messages[0].deleted is True


@pytest.mark.asyncio
async def test_delete_and_react_apply_records():
    session, _ = await _open_session()

    assert await session.react("old", "👍") is True
    assert session.timeline.messages[0].reactions == (("alice", "👍"),)
    assert await session.delete("old") is True
    assert session.timeline.messages[0].deleted is True


@pytest.mark.asyncio
async def test_failed_mutations_notify_and_leave_timeline_untouched():
    notes = []
    session, api = await _open_session(notes)
    api.error = MessageForbidden()

    assert await session.delete("old") is False
    assert await session.react("old", "👍") is False

    assert [error.reason for error in notes] == ["forbidden", "forbidden"]
    assert session.timeline.messages[0].deleted is False
    assert session.timeline.messages[0].reactions == ()


@pytest.mark.asyncio
async def test_typing_and_presence_events():
    session, _ = await _open_session()

    await session.on_typing({"userId": "bob", "receiverId": "alice"})
    assert session.peer_typing.is_typing is True
    await session.on_stop_typing({"userId": "bob", "receiverId": "alice"})
    assert session.peer_typing.is_typing is False

    await session.on_online_users(["bob", "carol"])
    assert session.online_users == {"bob", "carol"}


@pytest.mark.asyncio
async def test_typing_is_not_emitted_while_disconnected():
    session, _ = await _open_session()

    await session.typing.on_input()

    assert session.typing.is_typing is True
    session.typing.dispose()
