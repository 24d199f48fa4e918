"""Domain-level exceptions for chat messages."""

from __future__ import annotations


class ChatError(Exception):
	"""Base class for chat feature errors."""

	reason: str = "unknown"

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class EmptyMessage(ChatError):
	reason = "empty_message"


class MessageNotFound(ChatError):
	reason = "not_found"


class MessageForbidden(ChatError):
	reason = "forbidden"


class InvalidAttachment(ChatError):
	reason = "invalid_image"


class UploadFailure(ChatError):
	reason = "upload_failed"


class ReactionLimitExceeded(ChatError):
	reason = "reaction_limit"


class NetworkFailure(ChatError):
	"""Transient transport failure seen by a client; safe to retry."""

	reason = "network_error"


_BY_REASON = {
	cls.reason: cls
	for cls in (
		EmptyMessage,
		MessageNotFound,
		MessageForbidden,
		InvalidAttachment,
		UploadFailure,
		ReactionLimitExceeded,
		NetworkFailure,
	)
}


def from_reason(reason: str) -> ChatError:
	"""Rebuild the domain error behind an API ``detail`` code."""
	cls = _BY_REASON.get(reason)
	if cls is None:
		return ChatError(reason)
	return cls()
