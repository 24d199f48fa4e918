"""Domain models for one-to-one chat."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Tuple

DELETED_PLACEHOLDER = "This message was deleted"


@dataclass(slots=True)
class ConversationKey:
	"""Canonical representation of a 1:1 chat conversation."""

	user_a: str
	user_b: str

	@classmethod
	def from_participants(cls, user_one: str, user_two: str) -> "ConversationKey":
		ordered = tuple(sorted((str(user_one), str(user_two))))
		return cls(user_a=ordered[0], user_b=ordered[1])

	@property
	def conversation_id(self) -> str:
		return f"chat:{self.user_a}:{self.user_b}"

	def participants(self) -> Tuple[str, str]:
		return (self.user_a, self.user_b)


@dataclass(frozen=True, slots=True)
class Reaction:
	user_id: str
	emoji: str

	def to_dict(self) -> dict:
		return {"userId": self.user_id, "emoji": self.emoji}


@dataclass(slots=True)
class ChatMessage:
	message_id: str
	conversation_id: str
	seq: int
	sender_id: str
	receiver_id: str
	text: str
	image: str
	created_at: datetime
	updated_at: datetime
	seen: bool = False
	deleted: bool = False
	reactions: Tuple[Reaction, ...] = ()

	def is_participant(self, user_id: str) -> bool:
		return user_id in (self.sender_id, self.receiver_id)

	def sort_key(self) -> Tuple[datetime, int]:
		return (self.created_at, self.seq)

	def copy(self) -> "ChatMessage":
		return replace(self)


@dataclass(slots=True)
class MessagePage:
	messages: List[ChatMessage]
	total: int
	page: int
	limit: int
	has_more: bool = field(default=False)

	@classmethod
	def build(cls, messages: List[ChatMessage], *, total: int, page: int, limit: int) -> "MessagePage":
		offset = (page - 1) * limit
		return cls(
			messages=messages,
			total=total,
			page=page,
			limit=limit,
			has_more=offset + len(messages) < total,
		)


def toggle_reaction(reactions: Tuple[Reaction, ...], user_id: str, emoji: str) -> Tuple[Tuple[Reaction, ...], bool]:
	"""Return the reaction set with ``(user_id, emoji)`` toggled and whether it was added."""
	target = Reaction(user_id=user_id, emoji=emoji)
	if target in reactions:
		return tuple(reaction for reaction in reactions if reaction != target), False
	return reactions + (target,), True


def tombstone(message: ChatMessage, *, at: datetime) -> ChatMessage:
	message.deleted = True
	message.text = DELETED_PLACEHOLDER
	message.image = ""
	message.updated_at = at
	return message
