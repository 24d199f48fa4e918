"""Chat service: store mutation first, then live-event fan-out."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from . import attachments, sockets
from .attachments import ImageUpload
from .exceptions import EmptyMessage, MessageForbidden
from .models import ChatMessage
from .repo import ChatRepository
from .schemas import MessageListResponse, MessageOut, SidebarResponse, SidebarUser, message_payload
from duochat.infra.auth import AuthenticatedUser
from duochat.infra.storage import ObjectStorage
from duochat.infra.users import DirectoryUser, UserDirectory
from duochat.obs import metrics as obs_metrics
from duochat.settings import settings

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def clamp_limit(limit: Optional[int]) -> int:
	if not limit or limit < 1:
		return settings.message_page_limit_default
	return min(limit, settings.message_page_limit_max)


class ChatService:
	def __init__(
		self,
		repository: ChatRepository | None = None,
		directory: UserDirectory | None = None,
		storage: ObjectStorage | None = None,
	) -> None:
		self._repo = repository or ChatRepository(max_reactions_per_user=settings.max_reactions_per_user)
		self._directory = directory or UserDirectory()
		self._storage = storage

	@property
	def repository(self) -> ChatRepository:
		return self._repo

	async def list_sidebar(self, auth_user: AuthenticatedUser) -> SidebarResponse:
		users: Dict[str, DirectoryUser] = {user.id: user for user in await self._directory.list_except(auth_user.id)}
		last_times = await self._repo.last_message_times(auth_user.id)
		for peer_id in last_times:
			if peer_id != auth_user.id and peer_id not in users:
				users[peer_id] = DirectoryUser(id=peer_id)
		entries: List[SidebarUser] = [
			SidebarUser(
				id=user.id,
				full_name=user.full_name,
				profile_pic=user.profile_pic,
				last_message_at=last_times.get(user.id),
			)
			for user in users.values()
		]
		entries.sort(key=lambda entry: entry.last_message_at or _EPOCH, reverse=True)
		unseen = await self._repo.unseen_counts(auth_user.id)
		return SidebarResponse(users=entries, unseen_messages=unseen)

	async def list_messages(
		self,
		auth_user: AuthenticatedUser,
		peer_id: str,
		*,
		page: int = 1,
		limit: Optional[int] = None,
	) -> MessageListResponse:
		result, newly_seen = await self._repo.page(auth_user.id, peer_id, page=max(1, page), limit=clamp_limit(limit))
		if newly_seen:
			obs_metrics.inc_chat_seen(len(newly_seen))
			for message in newly_seen:
				await sockets.emit_message_seen(message.sender_id, message_payload(message))
		return MessageListResponse.from_page(result)

	async def get_message(self, auth_user: AuthenticatedUser, message_id: str) -> MessageOut:
		message = await self._repo.get_message(message_id)
		self._require_participant(message, auth_user.id)
		return MessageOut.from_model(message)

	async def mark_seen(self, auth_user: AuthenticatedUser, message_id: str) -> MessageOut:
		current = await self._repo.get_message(message_id)
		if current.receiver_id != auth_user.id:
			raise MessageForbidden()
		message, changed = await self._repo.mark_seen(message_id)
		if changed:
			obs_metrics.inc_chat_seen()
		await sockets.emit_message_seen(message.sender_id, message_payload(message))
		return MessageOut.from_model(message)

	async def send_message(
		self,
		auth_user: AuthenticatedUser,
		receiver_id: str,
		*,
		text: Optional[str] = None,
		image: Optional[ImageUpload] = None,
	) -> MessageOut:
		if not (text or "").strip() and image is None:
			raise EmptyMessage()
		image_uri = ""
		if image is not None:
			image_uri = await attachments.store_image(auth_user.id, image, self._storage)
		message = await self._repo.append(auth_user.id, receiver_id, text=text, image=image_uri)
		obs_metrics.inc_chat_send()
		await self._directory.remember(auth_user.id, auth_user.display_name)
		await self._directory.remember(receiver_id)
		logger.info(
			"chat_message_sent",
			extra={"message_id": message.message_id, "receiver_id": receiver_id, "with_attachment": bool(image_uri)},
		)
		await sockets.emit_new_message(message.sender_id, message.receiver_id, message_payload(message))
		return MessageOut.from_model(message)

	async def delete_message(self, auth_user: AuthenticatedUser, message_id: str) -> MessageOut:
		message = await self._repo.soft_delete(message_id, auth_user.id)
		obs_metrics.inc_chat_delete()
		logger.info("chat_message_deleted", extra={"message_id": message_id})
		await sockets.emit_message_deleted(message.sender_id, message.receiver_id, message_payload(message))
		return MessageOut.from_model(message)

	async def toggle_reaction(self, auth_user: AuthenticatedUser, message_id: str, emoji: str) -> MessageOut:
		current = await self._repo.get_message(message_id)
		self._require_participant(current, auth_user.id)
		message, added = await self._repo.toggle_reaction(message_id, auth_user.id, emoji)
		obs_metrics.inc_chat_reaction("add" if added else "remove")
		await sockets.emit_reaction_updated(message.sender_id, message.receiver_id, message_payload(message))
		return MessageOut.from_model(message)

	@staticmethod
	def _require_participant(message: ChatMessage, user_id: str) -> None:
		if not message.is_participant(user_id):
			raise MessageForbidden()


_SERVICE = ChatService()


def get_service() -> ChatService:
	return _SERVICE


def set_service(service: ChatService | None) -> None:
	global _SERVICE
	_SERVICE = service or ChatService()


async def list_sidebar(auth_user: AuthenticatedUser) -> SidebarResponse:
	return await _SERVICE.list_sidebar(auth_user)


async def list_messages(
	auth_user: AuthenticatedUser,
	peer_id: str,
	*,
	page: int = 1,
	limit: Optional[int] = None,
) -> MessageListResponse:
	return await _SERVICE.list_messages(auth_user, peer_id, page=page, limit=limit)


async def get_message(auth_user: AuthenticatedUser, message_id: str) -> MessageOut:
	return await _SERVICE.get_message(auth_user, message_id)


async def mark_seen(auth_user: AuthenticatedUser, message_id: str) -> MessageOut:
	return await _SERVICE.mark_seen(auth_user, message_id)


async def send_message(
	auth_user: AuthenticatedUser,
	receiver_id: str,
	*,
	text: Optional[str] = None,
	image: Optional[ImageUpload] = None,
) -> MessageOut:
	return await _SERVICE.send_message(auth_user, receiver_id, text=text, image=image)


async def delete_message(auth_user: AuthenticatedUser, message_id: str) -> MessageOut:
	return await _SERVICE.delete_message(auth_user, message_id)


async def toggle_reaction(auth_user: AuthenticatedUser, message_id: str, emoji: str) -> MessageOut:
	return await _SERVICE.toggle_reaction(auth_user, message_id, emoji)
