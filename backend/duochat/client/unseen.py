"""Per-peer unseen badge counts kept on the client."""

from __future__ import annotations

from typing import Dict, Mapping, Optional

from duochat.client.models import TimelineMessage


class UnseenTracker:
	def __init__(self) -> None:
		self.counts: Dict[str, int] = {}

	def load(self, counts: Mapping[str, int]) -> None:
		self.counts = {str(peer): int(count) for peer, count in counts.items() if int(count) > 0}

	def on_new_message(self, message: TimelineMessage, active_peer: Optional[str], me: str) -> bool:
		"""Count ``message`` unless it is ours or belongs to the open conversation."""
		if message.sender == me or message.sender == active_peer:
			return False
		self.counts[message.sender] = self.counts.get(message.sender, 0) + 1
		return True

	def activate(self, peer_id: str) -> None:
		# Client-predicted reset; the page-1 read clears the store side
		self.counts.pop(peer_id, None)

	def get(self, peer_id: str) -> int:
		return self.counts.get(peer_id, 0)
