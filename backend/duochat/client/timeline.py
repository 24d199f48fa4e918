"""Newest-first conversation timeline stitched from REST pages and live events."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from duochat.client.models import PageResult, TimelineMessage

logger = logging.getLogger(__name__)

PageFetcher = Callable[[str, int, int], Awaitable[PageResult]]


class TimelineState(str, Enum):
	IDLE = "idle"
	LOADING = "loading"
	READY = "ready"


class ConversationTimeline:
	"""Timeline for the active conversation.

	Pages are appended at the tail (older), live records are pushed at the
	head. Nothing is re-sorted: order holds because live events only ever
	refer to messages newer than anything on page 1.

	Each ``select`` bumps a generation token; a page fetched for an earlier
	generation is discarded when it lands.
	"""

	def __init__(self, fetch_page: PageFetcher, *, limit: int = 50) -> None:
		self._fetch_page = fetch_page
		self.limit = limit
		self.peer_id: Optional[str] = None
		self.state = TimelineState.IDLE
		self.messages: List[TimelineMessage] = []
		self.page = 0
		self.has_more = False
		self._latched = False
		self._generation = 0

	@property
	def is_loading(self) -> bool:
		return self._latched

	async def select(self, peer_id: str) -> bool:
		self._generation += 1
		self.peer_id = peer_id
		self.state = TimelineState.IDLE
		self.messages = []
		self.page = 0
		self.has_more = False
		self._latched = False
		return await self._load(1)

	async def load_older(self) -> bool:
		"""Fetch the next older page; returns False when latched or exhausted."""
		if self.peer_id is None or self._latched:
			return False
		if self.state is not TimelineState.READY or not self.has_more:
			return False
		return await self._load(self.page + 1)

	async def _load(self, page: int) -> bool:
		generation = self._generation
		peer_id = self.peer_id
		assert peer_id is not None
		self._latched = True
		self.state = TimelineState.LOADING
		try:
			result = await self._fetch_page(peer_id, page, self.limit)
		except Exception:
			if generation == self._generation:
				self._latched = False
				self.state = TimelineState.READY if self.page else TimelineState.IDLE
			raise
		if generation != self._generation:
			logger.debug("timeline_stale_page", extra={"peer_id": peer_id, "page": page})
			return False
		self._append_page(result.messages)
		self.page = page
		self.has_more = result.has_more
		self.state = TimelineState.READY
		self._latched = False
		return True

	def _append_page(self, messages: List[TimelineMessage]) -> None:
		known = {message.id for message in self.messages}
		for message in messages:
			if message.id in known:
				continue
			known.add(message.id)
			self.messages.append(message)

	def index_of(self, message_id: str) -> int:
		for index, message in enumerate(self.messages):
			if message.id == message_id:
				return index
		return -1

	def contains(self, message_id: str) -> bool:
		return self.index_of(message_id) >= 0

	def get(self, message_id: str) -> Optional[TimelineMessage]:
		index = self.index_of(message_id)
		return self.messages[index] if index >= 0 else None

	def belongs(self, message: TimelineMessage) -> bool:
		return self.peer_id is not None and self.peer_id in (message.sender, message.receiver)

	def push_head(self, message: TimelineMessage) -> bool:
		if self.contains(message.id):
			return False
		self.messages.insert(0, message)
		return True

	def replace(self, message_id: str, message: TimelineMessage) -> bool:
		index = self.index_of(message_id)
		if index < 0:
			return False
		self.messages[index] = message
		return True

	def update(self, message: TimelineMessage) -> bool:
		"""Swap in a newer copy of a known record, keeping its correlation key."""
		index = self.index_of(message.id)
		if index < 0:
			return False
		self.messages[index] = self.messages[index].adopt(message)
		return True

	def remove(self, message_id: str) -> bool:
		index = self.index_of(message_id)
		if index < 0:
			return False
		del self.messages[index]
		return True
