import asyncio

import pytest

from duochat.client.models import Draft, LocalImage, TimelineMessage
from duochat.client.reconciler import OptimisticSender, SendState
from duochat.client.timeline import ConversationTimeline
from duochat.domain.chat.exceptions import EmptyMessage, NetworkFailure, UploadFailure
from timeline_fixtures import PagedConversation, make_message


class FakeSendApi:
    def __init__(self):
        self.calls = []
        self.gate = None
        self.error = None
        self.record = None
        self._counter = 100

    async def send(self, receiver_id, *, text=None, image=None):
        self.calls.append((receiver_id, text, image))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if self.record is not None:
            return self.record
        self._counter += 1
        return make_message(
            f"srv-{self._counter}",
            self._counter,
            sender="alice",
            receiver=receiver_id,
            text=text or "",
            image="https://cdn.test/x.png" if image else "",
        )


async def _ready_timeline():
    timeline = ConversationTimeline(PagedConversation([make_message("old", 0)]).fetch)
    await timeline.select("bob")
    return timeline


@pytest.mark.asyncio
async def test_send_confirms_provisional_in_place():
    timeline = await _ready_timeline()
    api = FakeSendApi()
    sender = OptimisticSender("alice", timeline, api.send)

    result = await sender.send("bob", Draft(text="hi"))

    assert result.ok is True
    head = timeline.messages[0]
    assert head.id == result.message.id
    assert head.text == "hi"
    assert head.pending is False
    assert head.correlation_key.startswith("local-")
    assert sender._entries == {}

    # the self-echo arriving afterwards is de-duplicated
    assert sender.confirm(result.message) is None
    assert [message.id for message in timeline.messages] == [head.id, "old"]


@pytest.mark.asyncio
async def test_provisional_is_inserted_before_request_and_echo_may_win():
    timeline = await _ready_timeline()
    api = FakeSendApi()
    api.gate = asyncio.Event()
    api.record = make_message("srv-echo", 50, sender="alice", receiver="bob", text="hello")
    sender = OptimisticSender("alice", timeline, api.send)

    task = asyncio.create_task(sender.send("bob", Draft(text="hello")))
    await asyncio.sleep(0)

    provisional = timeline.messages[0]
    assert provisional.pending is True
    assert provisional.id == provisional.correlation_key
    assert provisional.seen is False

    entry = sender.confirm(api.record)
    assert entry.correlation_key == provisional.correlation_key
    assert entry.state is SendState.CONFIRMED
    assert entry.message_id == "srv-echo"
    assert timeline.messages[0].id == "srv-echo"
    assert timeline.messages[0].correlation_key == provisional.correlation_key

    api.gate.set()
    result = await task
    assert result.ok is True
    assert result.message.id == "srv-echo"
    assert [message.id for message in timeline.messages] == ["srv-echo", "old"]


@pytest.mark.asyncio
async def test_failed_send_rolls_back_and_keeps_draft():
    timeline = await _ready_timeline()
    api = FakeSendApi()
    api.error = NetworkFailure()
    notified = []
    sender = OptimisticSender("alice", timeline, api.send, notify=notified.append)
    draft = Draft(text="will fail")

    result = await sender.send("bob", draft)

    assert result.ok is False
    assert result.draft is draft
    assert isinstance(result.error, NetworkFailure)
    assert [message.id for message in timeline.messages] == ["old"]
    assert sender._entries == {}
    assert notified == [api.error]


@pytest.mark.asyncio
async def test_upload_failure_rolls_back_image_send():
    timeline = await _ready_timeline()
    api = FakeSendApi()
    api.error = UploadFailure()
    sender = OptimisticSender("alice", timeline, api.send)
    image = LocalImage(data=b"png", content_type="image/png", filename="a.png", local_uri="blob:1")

    result = await sender.send("bob", Draft(image=image))

    assert result.ok is False
    assert all(not message.pending for message in timeline.messages)


@pytest.mark.asyncio
async def test_empty_draft_rejected_before_insert():
    timeline = await _ready_timeline()
    api = FakeSendApi()
    sender = OptimisticSender("alice", timeline, api.send)

    with pytest.raises(EmptyMessage):
        await sender.send("bob", Draft(text="   "))

    assert api.calls == []
    assert [message.id for message in timeline.messages] == ["old"]
    assert sender.pending() == []


@pytest.mark.asyncio
async def test_concurrent_sends_each_reconciled():
    timeline = await _ready_timeline()
    api = FakeSendApi()
    api.gate = asyncio.Event()
    sender = OptimisticSender("alice", timeline, api.send)

    first = asyncio.create_task(sender.send("bob", Draft(text="one")))
    second = asyncio.create_task(sender.send("bob", Draft(text="two")))
    await asyncio.sleep(0)
    assert len(sender.pending("bob")) == 2
    assert [message.text for message in timeline.messages[:2]] == ["two", "one"]

    api.gate.set()
    results = await asyncio.gather(first, second)

    assert all(result.ok for result in results)
    assert sender.pending() == []
    assert not any(message.pending for message in timeline.messages)
    ids = [message.id for message in timeline.messages]
    assert len(ids) == len(set(ids)) == 3


@pytest.mark.asyncio
async def test_echo_without_pending_entry_is_prepended_once():
    timeline = await _ready_timeline()
    sender = OptimisticSender("alice", timeline, FakeSendApi().send)
    echo = make_message("srv-9", 30, sender="alice", receiver="bob")

    sender.confirm(echo)
    sender.confirm(echo)

    assert [message.id for message in timeline.messages] == ["srv-9", "old"]


@pytest.mark.asyncio
async def test_echo_for_other_conversation_leaves_timeline():
    timeline = await _ready_timeline()
    sender = OptimisticSender("alice", timeline, FakeSendApi().send)

    sender.confirm(make_message("srv-c", 30, sender="alice", receiver="carol"))

    assert [message.id for message in timeline.messages] == ["old"]


def test_provisional_copies_local_image_uri():
    image = LocalImage(data=b"x", content_type="image/png", local_uri="blob:42")
    provisional = TimelineMessage.provisional("local-1", "alice", "bob", Draft(text="", image=image))

    assert provisional.image == "blob:42"
    assert provisional.pending is True
    assert provisional.correlation_key == "local-1"


@pytest.mark.asyncio
async def test_confirmed_send_survives_conversation_switch():
    conversation = PagedConversation([])
    timeline = ConversationTimeline(conversation.fetch)
    await timeline.select("bob")
    api = FakeSendApi()
    api.gate = asyncio.Event()
    api.record = make_message("m1", 50, sender="alice", receiver="bob", text="hi")
    sender = OptimisticSender("alice", timeline, api.send)

    task = asyncio.create_task(sender.send("bob", Draft(text="hi")))
    await asyncio.sleep(0)
    await timeline.select("carol")
    await timeline.select("bob")
    assert timeline.messages == []

    api.gate.set()
    result = await task

    assert result.ok is True
    assert [message.id for message in timeline.messages] == ["m1"]
    assert sender.pending() == []


@pytest.mark.asyncio
async def test_record_loaded_by_page_read_settles_pending_send():
    conversation = PagedConversation([])
    timeline = ConversationTimeline(conversation.fetch)
    await timeline.select("bob")
    api = FakeSendApi()
    api.gate = asyncio.Event()
    api.record = make_message("m1", 50, sender="alice", receiver="bob", text="hi")
    sender = OptimisticSender("alice", timeline, api.send)

    task = asyncio.create_task(sender.send("bob", Draft(text="hi")))
    await asyncio.sleep(0)
    await timeline.select("carol")
    conversation.messages = [api.record]
    await timeline.select("bob")

    api.gate.set()
    result = await task

    assert result.ok is True
    assert [message.id for message in timeline.messages] == ["m1"]
    assert sender.pending() == []
    assert sender._entries == {}


@pytest.mark.asyncio
async def test_settled_sends_release_bookkeeping():
    timeline = await _ready_timeline()
    api = FakeSendApi()
    sender = OptimisticSender("alice", timeline, api.send)

    for index in range(20):
        await sender.send("bob", Draft(text=f"m{index}"))
    api.error = NetworkFailure()
    await sender.send("bob", Draft(text="lost"))

    assert sender._entries == {}
    assert len(timeline.messages) == 21
    assert not any(message.pending for message in timeline.messages)
