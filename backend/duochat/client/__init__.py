"""Client-side chat state: timeline, optimistic sends, badges, typing."""

from .api import MessagesApi
from .models import Draft, LocalImage, PageResult, TimelineMessage
from .reconciler import OptimisticSender, PendingSend, SendResult, SendState
from .session import ChatSession
from .timeline import ConversationTimeline, TimelineState
from .typing_indicator import TypingEmitter, TypingIndicator
from .unseen import UnseenTracker

__all__ = [
	"ChatSession",
	"ConversationTimeline",
	"Draft",
	"LocalImage",
	"MessagesApi",
	"OptimisticSender",
	"PageResult",
	"PendingSend",
	"SendResult",
	"SendState",
	"TimelineMessage",
	"TimelineState",
	"TypingEmitter",
	"TypingIndicator",
	"UnseenTracker",
]
