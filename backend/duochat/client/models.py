"""Client-side view of chat messages."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Tuple

from duochat.domain.chat.schemas import MessageOut


@dataclass(slots=True)
class LocalImage:
	"""Image picked in the compose box; ``local_uri`` previews it before upload."""

	data: bytes
	content_type: str
	filename: str = "image"
	local_uri: str = ""


@dataclass(slots=True)
class Draft:
	text: str = ""
	image: Optional[LocalImage] = None

	def is_empty(self) -> bool:
		return not self.text.strip() and self.image is None


@dataclass(slots=True)
class TimelineMessage:
	id: str
	sender: str
	receiver: str
	created_at: datetime
	updated_at: datetime
	text: str = ""
	image: str = ""
	seen: bool = False
	deleted: bool = False
	reactions: Tuple[Tuple[str, str], ...] = ()
	pending: bool = False
	correlation_key: str = ""

	@classmethod
	def from_wire(cls, payload: Mapping[str, Any]) -> "TimelineMessage":
		wire = MessageOut.model_validate(dict(payload))
		return cls(
			id=wire.id,
			sender=wire.sender,
			receiver=wire.receiver,
			text=wire.text,
			image=wire.image,
			seen=wire.seen,
			deleted=wire.deleted,
			reactions=tuple((reaction.user_id, reaction.emoji) for reaction in wire.reactions),
			created_at=wire.created_at,
			updated_at=wire.updated_at,
		)

	@classmethod
	def provisional(cls, key: str, sender: str, receiver: str, draft: Draft) -> "TimelineMessage":
		now = datetime.now(timezone.utc)
		return cls(
			id=key,
			sender=sender,
			receiver=receiver,
			text=draft.text,
			image=draft.image.local_uri if draft.image else "",
			created_at=now,
			updated_at=now,
			pending=True,
			correlation_key=key,
		)

	def adopt(self, other: "TimelineMessage") -> "TimelineMessage":
		"""Return ``other`` carrying this entry's correlation key."""
		return replace(other, pending=False, correlation_key=self.correlation_key or other.correlation_key)


@dataclass(slots=True)
class PageResult:
	messages: List[TimelineMessage]
	total: int
	page: int
	limit: int
	has_more: bool = field(default=False)
