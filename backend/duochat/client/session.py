"""Client session: wires REST calls and live socket events into local state."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional, Set

import socketio

from duochat.client.api import MessagesApi
from duochat.client.models import Draft, TimelineMessage
from duochat.client.reconciler import OptimisticSender, SendResult
from duochat.client.timeline import ConversationTimeline
from duochat.client.typing_indicator import TypingEmitter, TypingIndicator
from duochat.client.unseen import UnseenTracker
from duochat.domain.chat.exceptions import ChatError

logger = logging.getLogger(__name__)


def _log_notification(error: ChatError) -> None:
	logger.warning("chat_notification", extra={"reason": error.reason})


class ChatSession:
	"""State for one signed-in user: active conversation, badges, typing."""

	def __init__(
		self,
		user_id: str,
		api: MessagesApi,
		*,
		sio: socketio.AsyncClient | None = None,
		page_limit: int = 50,
		notify: Optional[Callable[[ChatError], None]] = None,
	) -> None:
		self.user_id = user_id
		self.api = api
		self.sio = sio or socketio.AsyncClient(reconnection=True)
		self.notify = notify or _log_notification
		self.timeline = ConversationTimeline(api.fetch_page, limit=page_limit)
		self.sender = OptimisticSender(user_id, self.timeline, api.send, notify=self.notify)
		self.unseen = UnseenTracker()
		self.typing = TypingEmitter(user_id, self._emit)
		self.peer_typing = TypingIndicator()
		self.online_users: Set[str] = set()
		self.users: List[dict] = []
		self.bind_socket(self.sio)

	@property
	def active_peer(self) -> Optional[str]:
		return self.timeline.peer_id

	def bind_socket(self, sio: socketio.AsyncClient) -> None:
		sio.on("newMessage", self.on_new_message)
		sio.on("messageSeen", self.on_message_updated)
		sio.on("messageDeleted", self.on_message_updated)
		sio.on("messageReactionUpdated", self.on_message_updated)
		sio.on("typing", self.on_typing)
		sio.on("stopTyping", self.on_stop_typing)
		sio.on("getOnlineUsers", self.on_online_users)

	async def connect(self, url: str, *, token: Optional[str] = None) -> None:
		auth = {"token": token} if token else {"userId": self.user_id}
		await self.sio.connect(url, auth=auth)

	async def disconnect(self) -> None:
		self.typing.dispose()
		await self.sio.disconnect()

	async def _emit(self, event: str, payload: dict) -> None:
		if not self.sio.connected:
			return
		await self.sio.emit(event, payload)

	async def refresh_users(self) -> None:
		body = await self.api.list_users()
		self.users = list(body.get("users", []))
		self.unseen.load(body.get("unseenMessages") or {})

	async def select(self, peer_id: str) -> bool:
		self.unseen.activate(peer_id)
		self.peer_typing.activate(peer_id)
		self.typing.set_receiver(peer_id)
		try:
			return await self.timeline.select(peer_id)
		except ChatError as exc:
			self.notify(exc)
			return False

	async def load_older(self) -> bool:
		try:
			return await self.timeline.load_older()
		except ChatError as exc:
			self.notify(exc)
			return False

	async def send(self, draft: Draft) -> SendResult:
		peer_id = self.active_peer
		if peer_id is None:
			raise RuntimeError("no active conversation")
		await self.typing.on_stop()
		return await self.sender.send(peer_id, draft)

	async def delete(self, message_id: str) -> bool:
		try:
			record = await self.api.delete(message_id)
		except ChatError as exc:
			self.notify(exc)
			return False
		self.timeline.update(record)
		return True

	async def react(self, message_id: str, emoji: str) -> bool:
		try:
			record = await self.api.toggle_reaction(message_id, emoji)
		except ChatError as exc:
			self.notify(exc)
			return False
		self.timeline.update(record)
		return True

	async def on_new_message(self, payload: dict) -> None:
		message = TimelineMessage.from_wire(payload)
		if message.sender == self.user_id:
			self.sender.confirm(message)
			return
		self.unseen.on_new_message(message, self.active_peer, self.user_id)
		if message.sender != self.active_peer:
			return
		self.timeline.push_head(message)
		self.peer_typing.is_typing = False
		try:
			seen = await self.api.mark_seen(message.id)
		except ChatError as exc:
			logger.debug("chat_mark_seen_failed", extra={"message_id": message.id, "reason": exc.reason})
			return
		self.timeline.update(seen)

	async def on_message_updated(self, payload: dict) -> None:
		message = TimelineMessage.from_wire(payload)
		self.timeline.update(message)

	async def on_typing(self, payload: dict) -> None:
		self.peer_typing.on_typing(payload or {})

	async def on_stop_typing(self, payload: dict) -> None:
		self.peer_typing.on_stop_typing(payload or {})

	async def on_online_users(self, user_ids: Iterable[str]) -> None:
		self.online_users = {str(user_id) for user_id in user_ids or ()}
