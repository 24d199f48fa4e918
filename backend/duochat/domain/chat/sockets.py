"""Socket.IO namespace and point-to-point event router for chat."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import socketio

from duochat.domain.chat.presence import PresenceMap
from duochat.infra.auth import AuthenticatedUser, authenticate_socket
from duochat.infra.users import UserDirectory
from duochat.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

NEW_MESSAGE = "newMessage"
MESSAGE_SEEN = "messageSeen"
MESSAGE_DELETED = "messageDeleted"
MESSAGE_REACTION_UPDATED = "messageReactionUpdated"
TYPING = "typing"
STOP_TYPING = "stopTyping"
ONLINE_USERS = "getOnlineUsers"

_namespace: Optional["ChatNamespace"] = None


class ChatNamespace(socketio.AsyncNamespace):
	"""Default namespace; each user owns at most one live session."""

	def __init__(self, presence: Optional[PresenceMap] = None, directory: Optional[UserDirectory] = None) -> None:
		super().__init__("/")
		self.presence = presence or PresenceMap()
		self.directory = directory or UserDirectory()
		self._sessions: Dict[str, AuthenticatedUser] = {}

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		user = authenticate_socket(environ, auth)
		obs_metrics.socket_connected(self.namespace)
		self._sessions[sid] = user
		replaced = self.presence.register(user.id, sid)
		if replaced:
			self._sessions.pop(replaced, None)
			obs_metrics.socket_disconnected(self.namespace)
		await self.directory.remember(user.id, user.display_name)
		logger.info("socket_connected", extra={"user_id": user.id, "sid": sid})
		await self._broadcast_online_users()

	async def on_disconnect(self, sid: str, *args: Any) -> None:
		self._sessions.pop(sid, None)
		user_id = self.presence.unregister(sid)
		if user_id is None:
			return
		obs_metrics.socket_disconnected(self.namespace)
		logger.info("socket_disconnected", extra={"user_id": user_id, "sid": sid})
		await self._broadcast_online_users()

	async def on_typing(self, sid: str, payload: Optional[dict] = None) -> None:
		await self._relay_typing(sid, TYPING, payload)

	async def on_stopTyping(self, sid: str, payload: Optional[dict] = None) -> None:  # noqa: N802 (event name)
		await self._relay_typing(sid, STOP_TYPING, payload)

	async def _relay_typing(self, sid: str, event: str, payload: Optional[dict]) -> None:
		user = self._sessions.get(sid)
		if user is None:
			return
		receiver_id = str((payload or {}).get("receiverId") or "").strip()
		if not receiver_id:
			return
		await self.send_to_user(receiver_id, event, {"userId": user.id, "receiverId": receiver_id})

	async def send_to_user(self, user_id: str, event: str, payload: dict) -> bool:
		"""Deliver ``event`` to the user's live session; offline users are skipped."""
		sid = self.presence.lookup(user_id)
		if sid is None:
			obs_metrics.socket_event_dropped(event)
			logger.debug("socket_event_dropped", extra={"event": event, "target_user_id": user_id})
			return False
		obs_metrics.socket_event(self.namespace, event)
		await self.emit(event, payload, room=sid)
		return True

	async def _broadcast_online_users(self) -> None:
		obs_metrics.socket_event(self.namespace, ONLINE_USERS)
		await self.emit(ONLINE_USERS, self.presence.online_user_ids())


def set_namespace(namespace: Optional[ChatNamespace]) -> None:
	global _namespace
	_namespace = namespace


def get_namespace() -> Optional[ChatNamespace]:
	return _namespace


async def emit_to_user(user_id: str, event: str, payload: dict) -> bool:
	if _namespace is None:
		return False
	return await _namespace.send_to_user(user_id, event, payload)


async def emit_new_message(sender_id: str, receiver_id: str, payload: dict) -> None:
	await emit_to_user(sender_id, NEW_MESSAGE, payload)
	if receiver_id != sender_id:
		await emit_to_user(receiver_id, NEW_MESSAGE, payload)


async def emit_message_seen(sender_id: str, payload: dict) -> None:
	await emit_to_user(sender_id, MESSAGE_SEEN, payload)


async def emit_message_deleted(sender_id: str, receiver_id: str, payload: dict) -> None:
	await emit_to_user(sender_id, MESSAGE_DELETED, payload)
	if receiver_id != sender_id:
		await emit_to_user(receiver_id, MESSAGE_DELETED, payload)


async def emit_reaction_updated(sender_id: str, receiver_id: str, payload: dict) -> None:
	await emit_to_user(sender_id, MESSAGE_REACTION_UPDATED, payload)
	if receiver_id != sender_id:
		await emit_to_user(receiver_id, MESSAGE_REACTION_UPDATED, payload)
