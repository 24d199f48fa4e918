"""Chat domain exports."""

from .service import (
	delete_message,
	get_message,
	list_messages,
	list_sidebar,
	mark_seen,
	send_message,
	toggle_reaction,
)

__all__ = [
	"delete_message",
	"get_message",
	"list_messages",
	"list_sidebar",
	"mark_seen",
	"send_message",
	"toggle_reaction",
]
