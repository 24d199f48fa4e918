"""Pydantic schemas for the chat REST API and socket payloads.

Field names on the wire are camelCase; Python attributes stay snake_case.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import ChatMessage, MessagePage


class _WireModel(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	def to_wire(self) -> dict:
		return self.model_dump(mode="json", by_alias=True)


class ReactionOut(_WireModel):
	user_id: str = Field(..., alias="userId")
	emoji: str


class MessageOut(_WireModel):
	id: str = Field(..., alias="_id", examples=["01HZY5AJ6HT7PM1F8M3X2W8Z9V"])
	sender: str
	receiver: str
	text: str = ""
	image: str = ""
	seen: bool = False
	deleted: bool = False
	reactions: List[ReactionOut] = Field(default_factory=list)
	created_at: datetime = Field(..., alias="createdAt")
	updated_at: datetime = Field(..., alias="updatedAt")

	@classmethod
	def from_model(cls, message: ChatMessage) -> "MessageOut":
		return cls(
			id=message.message_id,
			sender=message.sender_id,
			receiver=message.receiver_id,
			text=message.text,
			image=message.image,
			seen=message.seen,
			deleted=message.deleted,
			reactions=[ReactionOut(user_id=r.user_id, emoji=r.emoji) for r in message.reactions],
			created_at=message.created_at,
			updated_at=message.updated_at,
		)


def message_payload(message: ChatMessage) -> dict:
	"""Socket event body for ``message``; identical to the REST representation."""
	return MessageOut.from_model(message).to_wire()


class ReactionRequest(BaseModel):
	emoji: Optional[str] = Field(default=None, max_length=32)


class MessageEnvelope(_WireModel):
	success: bool = True
	message: MessageOut


class MutationEnvelope(_WireModel):
	success: bool = True
	message: str
	data: MessageOut


class MessageListResponse(_WireModel):
	success: bool = True
	messages: List[MessageOut]
	total: int
	page: int
	limit: int
	has_more: bool = Field(..., alias="hasMore")

	@classmethod
	def from_page(cls, page: MessagePage) -> "MessageListResponse":
		return cls(
			messages=[MessageOut.from_model(message) for message in page.messages],
			total=page.total,
			page=page.page,
			limit=page.limit,
			has_more=page.has_more,
		)


class SidebarUser(_WireModel):
	id: str = Field(..., alias="_id")
	full_name: str = Field(default="", alias="fullName")
	profile_pic: str = Field(default="", alias="profilePic")
	last_message_at: Optional[datetime] = Field(default=None, alias="lastMessageAt")


class SidebarResponse(_WireModel):
	success: bool = True
	users: List[SidebarUser]
	unseen_messages: Dict[str, int] = Field(default_factory=dict, alias="unseenMessages")
