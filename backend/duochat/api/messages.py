"""REST endpoints for one-to-one message history and mutations."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

from duochat.domain.chat import service
from duochat.domain.chat.attachments import ImageUpload
from duochat.domain.chat.exceptions import (
	ChatError,
	MessageForbidden,
	MessageNotFound,
	ReactionLimitExceeded,
	UploadFailure,
)
from duochat.domain.chat.schemas import (
	MessageEnvelope,
	MessageListResponse,
	MutationEnvelope,
	ReactionRequest,
	SidebarResponse,
)
from duochat.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/api/messages", tags=["messages"])


def _map_error(exc: Exception) -> HTTPException:
	reason = getattr(exc, "reason", None) or str(exc)
	if isinstance(exc, MessageNotFound):
		return HTTPException(status.HTTP_404_NOT_FOUND, detail=reason)
	if isinstance(exc, MessageForbidden):
		return HTTPException(status.HTTP_403_FORBIDDEN, detail=reason)
	if isinstance(exc, ReactionLimitExceeded):
		return HTTPException(status.HTTP_429_TOO_MANY_REQUESTS, detail=reason)
	if isinstance(exc, UploadFailure):
		return HTTPException(status.HTTP_502_BAD_GATEWAY, detail=reason)
	return HTTPException(status.HTTP_400_BAD_REQUEST, detail=reason)


async def _read_image(image: Optional[UploadFile]) -> Optional[ImageUpload]:
	if image is None:
		return None
	data = await image.read()
	if not data and not image.filename:
		return None
	return ImageUpload(data=data, content_type=image.content_type or "", filename=image.filename or "")


@router.get("/users")
async def list_sidebar_users(auth_user: AuthenticatedUser = Depends(get_current_user)) -> dict:
	result: SidebarResponse = await service.list_sidebar(auth_user)
	return result.to_wire()


@router.get("/detail/{message_id}")
async def get_message_detail(
	message_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
	try:
		message = await service.get_message(auth_user, message_id)
	except ChatError as exc:
		raise _map_error(exc) from None
	return MessageEnvelope(message=message).to_wire()


@router.put("/mark/{message_id}")
async def mark_message_seen(
	message_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
	try:
		message = await service.mark_seen(auth_user, message_id)
	except ChatError as exc:
		raise _map_error(exc) from None
	return MutationEnvelope(message="Message marked as seen", data=message).to_wire()


@router.post("/send/{receiver_id}")
async def send_message(
	receiver_id: str,
	text: Optional[str] = Form(default=None),
	image: Optional[UploadFile] = File(default=None),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
	try:
		upload = await _read_image(image)
		message = await service.send_message(auth_user, receiver_id, text=text, image=upload)
	except ChatError as exc:
		raise _map_error(exc) from None
	return MessageEnvelope(message=message).to_wire()


@router.post("/reaction/{message_id}")
async def toggle_reaction(
	message_id: str,
	payload: ReactionRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
	emoji = (payload.emoji or "").strip()
	if not emoji:
		raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="emoji_required")
	try:
		message = await service.toggle_reaction(auth_user, message_id, emoji)
	except ChatError as exc:
		raise _map_error(exc) from None
	return MessageEnvelope(message=message).to_wire()


@router.delete("/{message_id}")
async def delete_message(
	message_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
	try:
		message = await service.delete_message(auth_user, message_id)
	except ChatError as exc:
		raise _map_error(exc) from None
	return MutationEnvelope(message="Message deleted", data=message).to_wire()


@router.get("/{peer_id}")
async def list_conversation(
	peer_id: str,
	page: int = Query(default=1),
	limit: Optional[int] = Query(default=None),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
	result: MessageListResponse = await service.list_messages(auth_user, peer_id, page=page, limit=limit)
	return result.to_wire()
