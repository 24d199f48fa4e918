"""Read-only view of the user directory owned by the profile service.

Chat only needs ids and display fields for the sidebar. The Postgres ``users``
table is shared with the profile service; without a database the directory
remembers every user id that has connected or taken part in a conversation.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional

from duochat.infra.postgres import get_pool


@dataclass(slots=True)
class DirectoryUser:
	id: str
	full_name: str = ""
	profile_pic: str = ""


class _MemoryDirectory:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._users: Dict[str, DirectoryUser] = {}

	async def remember(self, user_id: str, full_name: Optional[str] = None) -> None:
		async with self._lock:
			existing = self._users.get(user_id)
			if existing is None:
				self._users[user_id] = DirectoryUser(id=user_id, full_name=full_name or "")
			elif full_name:
				existing.full_name = full_name

	async def list_except(self, user_id: str) -> List[DirectoryUser]:
		async with self._lock:
			return [user for uid, user in self._users.items() if uid != user_id]

	async def reset(self) -> None:
		async with self._lock:
			self._users.clear()


_MEMORY_DIRECTORY = _MemoryDirectory()


async def reset_memory_directory() -> None:
	await _MEMORY_DIRECTORY.reset()


class UserDirectory:
	def __init__(self) -> None:
		self._pool_checked = False
		self._pool = None

	async def _pool_or_none(self):
		if self._pool_checked:
			return self._pool
		self._pool_checked = True
		try:
			self._pool = await get_pool()
		except Exception:
			self._pool = None
		return self._pool

	async def remember(self, user_id: str, full_name: Optional[str] = None) -> None:
		pool = await self._pool_or_none()
		if pool is None:
			await _MEMORY_DIRECTORY.remember(user_id, full_name)

	async def list_except(self, user_id: str) -> List[DirectoryUser]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_DIRECTORY.list_except(user_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT id, COALESCE(full_name, '') AS full_name, COALESCE(profile_pic, '') AS profile_pic
				FROM users
				WHERE id::text <> $1
				ORDER BY full_name ASC
				""",
				user_id,
			)
		return [
			DirectoryUser(id=str(row["id"]), full_name=row["full_name"], profile_pic=row["profile_pic"])
			for row in rows
		]
