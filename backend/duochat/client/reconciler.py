"""Optimistic sends: provisional timeline entries reconciled with durable records.

Every send inserts one provisional entry at the head of the timeline before
the request goes out. Entries are slots keyed by a local correlation key and
move ``PENDING -> CONFIRMED | ROLLED_BACK`` exactly once. A durable record
from the local user (self-echo or HTTP response, whichever lands first)
fills the oldest pending slot of its conversation; a failed send removes one
pending slot. Settled entries are dropped from the sender's bookkeeping.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Protocol

import ulid

from duochat.client.models import Draft, LocalImage, TimelineMessage
from duochat.client.timeline import ConversationTimeline
from duochat.domain.chat.exceptions import ChatError, EmptyMessage

logger = logging.getLogger(__name__)

LOCAL_ID_PREFIX = "local-"


class SendState(str, Enum):
	PENDING = "pending"
	CONFIRMED = "confirmed"
	ROLLED_BACK = "rolled_back"


class SendFunc(Protocol):
	def __call__(
		self, receiver_id: str, *, text: Optional[str] = None, image: Optional[LocalImage] = None
	) -> Awaitable[TimelineMessage]: ...


@dataclass(slots=True)
class PendingSend:
	correlation_key: str
	receiver_id: str
	state: SendState = SendState.PENDING
	message_id: Optional[str] = None
	error: Optional[ChatError] = None

	def confirm(self, message_id: str) -> None:
		if self.state is not SendState.PENDING:
			raise RuntimeError(f"cannot confirm {self.state.value} send")
		self.state = SendState.CONFIRMED
		self.message_id = message_id

	def roll_back(self, error: Optional[ChatError] = None) -> None:
		if self.state is not SendState.PENDING:
			raise RuntimeError(f"cannot roll back {self.state.value} send")
		self.state = SendState.ROLLED_BACK
		self.error = error


@dataclass(slots=True)
class SendResult:
	ok: bool
	draft: Draft
	message: Optional[TimelineMessage] = None
	error: Optional[ChatError] = None


class OptimisticSender:
	def __init__(
		self,
		user_id: str,
		timeline: ConversationTimeline,
		send: SendFunc,
		*,
		notify: Optional[Callable[[ChatError], None]] = None,
	) -> None:
		self.user_id = user_id
		self.timeline = timeline
		self._send = send
		self._notify = notify
		self._entries: Dict[str, PendingSend] = {}

	def pending(self, receiver_id: Optional[str] = None) -> list[PendingSend]:
		return [
			entry
			for entry in self._entries.values()
			if entry.state is SendState.PENDING and (receiver_id is None or entry.receiver_id == receiver_id)
		]

	async def send(self, receiver_id: str, draft: Draft) -> SendResult:
		if draft.is_empty():
			raise EmptyMessage()
		key = f"{LOCAL_ID_PREFIX}{ulid.new()}"
		entry = PendingSend(correlation_key=key, receiver_id=receiver_id)
		self._entries[key] = entry
		if self.timeline.peer_id == receiver_id:
			self.timeline.push_head(TimelineMessage.provisional(key, self.user_id, receiver_id, draft))
		try:
			record = await self._send(receiver_id, text=draft.text or None, image=draft.image)
		except ChatError as exc:
			self._fail(entry, exc)
			return SendResult(ok=False, draft=draft, error=exc)
		if self.confirm(record) is None and entry.state is SendState.PENDING:
			# The record was already on screen from an echo or a page read
			self.timeline.remove(entry.correlation_key)
			self._settle(entry, record.id)
		return SendResult(ok=True, draft=draft, message=record)

	def confirm(self, record: TimelineMessage) -> Optional[PendingSend]:
		"""Adopt a durable record sent by the local user.

		Returns the entry whose slot the record filled, if any. Applying the
		same record twice is a no-op beyond refreshing it in place.
		"""
		if self.timeline.update(record):
			return None
		pending = self.pending(record.receiver)
		if not pending:
			if self.timeline.belongs(record):
				self.timeline.push_head(record)
			return None
		entry = pending[0]
		provisional = self.timeline.get(entry.correlation_key)
		if provisional is not None:
			self.timeline.replace(entry.correlation_key, provisional.adopt(record))
		elif self.timeline.belongs(record):
			# Slot dropped by a conversation switch while the write was in flight
			self.timeline.push_head(record)
		self._settle(entry, record.id)
		return entry

	def _settle(self, entry: PendingSend, message_id: str) -> None:
		entry.confirm(message_id)
		self._entries.pop(entry.correlation_key, None)

	def _fail(self, entry: PendingSend, error: ChatError) -> None:
		target: Optional[PendingSend] = entry
		if entry.state is not SendState.PENDING:
			# Another send's record already took this slot; give up the newest open one
			candidates = self.pending(entry.receiver_id)
			target = candidates[-1] if candidates else None
		if target is not None:
			self.timeline.remove(target.correlation_key)
			target.roll_back(error)
			self._entries.pop(target.correlation_key, None)
			logger.info("chat_send_rolled_back", extra={"correlation_key": target.correlation_key, "reason": error.reason})
		if self._notify is not None:
			self._notify(error)
