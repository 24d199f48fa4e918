"""Process-wide presence map: user id to live Socket.IO session id.

All mutation happens on the event loop thread from connect/disconnect
handlers, and dispatch reads happen on the same loop, so no lock is taken.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class PresenceMap:
	def __init__(self) -> None:
		self._by_user: Dict[str, str] = {}
		self._by_sid: Dict[str, str] = {}

	def register(self, user_id: str, sid: str) -> Optional[str]:
		"""Bind ``user_id`` to ``sid`` and return the session id it replaced, if any."""
		previous = self._by_user.get(user_id)
		if previous is not None and previous != sid:
			self._by_sid.pop(previous, None)
		self._by_user[user_id] = sid
		self._by_sid[sid] = user_id
		logger.debug("presence_register", extra={"user_id": user_id, "sid": sid, "replaced": previous})
		return previous

	def unregister(self, sid: str) -> Optional[str]:
		"""Drop ``sid``; the user stays online if a newer session replaced it."""
		user_id = self._by_sid.pop(sid, None)
		if user_id is None:
			return None
		if self._by_user.get(user_id) == sid:
			del self._by_user[user_id]
		logger.debug("presence_unregister", extra={"user_id": user_id, "sid": sid})
		return user_id

	def lookup(self, user_id: str) -> Optional[str]:
		return self._by_user.get(user_id)

	def online_user_ids(self) -> List[str]:
		return list(self._by_user)

	def __len__(self) -> int:
		return len(self._by_user)
