"""Message store: asyncpg-backed repository with an in-memory fallback."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import ulid

from duochat.domain.chat.exceptions import EmptyMessage, MessageForbidden, MessageNotFound, ReactionLimitExceeded
from duochat.domain.chat.models import (
	DELETED_PLACEHOLDER,
	ChatMessage,
	ConversationKey,
	MessagePage,
	Reaction,
	tombstone,
	toggle_reaction,
)
from duochat.infra.postgres import get_pool

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS chat_seq (
	conversation_id TEXT PRIMARY KEY,
	last_seq BIGINT NOT NULL
);
CREATE TABLE IF NOT EXISTS chat_messages (
	message_id TEXT PRIMARY KEY,
	conversation_id TEXT NOT NULL,
	seq BIGINT NOT NULL,
	sender_id TEXT NOT NULL,
	receiver_id TEXT NOT NULL,
	text TEXT NOT NULL DEFAULT '',
	image TEXT NOT NULL DEFAULT '',
	seen BOOLEAN NOT NULL DEFAULT FALSE,
	deleted BOOLEAN NOT NULL DEFAULT FALSE,
	reactions JSONB NOT NULL DEFAULT '[]'::jsonb,
	created_at TIMESTAMPTZ NOT NULL,
	updated_at TIMESTAMPTZ NOT NULL,
	UNIQUE (conversation_id, seq)
);
CREATE INDEX IF NOT EXISTS chat_messages_timeline_idx
	ON chat_messages (conversation_id, created_at DESC, seq DESC);
CREATE INDEX IF NOT EXISTS chat_messages_unseen_idx
	ON chat_messages (receiver_id, sender_id) WHERE NOT seen;
"""

_COLUMNS = "message_id, conversation_id, seq, sender_id, receiver_id, text, image, seen, deleted, reactions, created_at, updated_at"


def _now() -> datetime:
	return datetime.now(timezone.utc)


def _check_reaction_cap(reactions: Tuple[Reaction, ...], user_id: str, cap: int) -> None:
	if cap <= 0:
		return
	held = sum(1 for reaction in reactions if reaction.user_id == user_id)
	if held >= cap:
		raise ReactionLimitExceeded()


class _InMemoryStore:
	"""Fallback store used in tests and local dev when Postgres is unavailable."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._conversations: Dict[str, List[ChatMessage]] = {}
		self._index: Dict[str, ChatMessage] = {}

	async def reset(self) -> None:
		async with self._lock:
			self._conversations.clear()
			self._index.clear()

	async def append(self, sender_id: str, receiver_id: str, text: str, image: str) -> ChatMessage:
		conversation = ConversationKey.from_participants(sender_id, receiver_id)
		async with self._lock:
			created_at = _now()
			messages = self._conversations.setdefault(conversation.conversation_id, [])
			message = ChatMessage(
				message_id=str(ulid.new()),
				conversation_id=conversation.conversation_id,
				seq=messages[-1].seq + 1 if messages else 1,
				sender_id=sender_id,
				receiver_id=receiver_id,
				text=text,
				image=image,
				created_at=created_at,
				updated_at=created_at,
			)
			messages.append(message)
			self._index[message.message_id] = message
			return message.copy()

	async def page(self, user_a: str, user_b: str, page: int, limit: int) -> Tuple[MessagePage, List[ChatMessage]]:
		conversation = ConversationKey.from_participants(user_a, user_b)
		async with self._lock:
			messages = self._conversations.get(conversation.conversation_id, [])
			newly_seen: List[ChatMessage] = []
			if page == 1:
				now = _now()
				for message in messages:
					if message.sender_id == user_b and message.receiver_id == user_a and not message.seen:
						message.seen = True
						message.updated_at = now
						newly_seen.append(message.copy())
			ordered = sorted(messages, key=ChatMessage.sort_key, reverse=True)
			offset = (page - 1) * limit
			window = [message.copy() for message in ordered[offset : offset + limit]]
			return MessagePage.build(window, total=len(ordered), page=page, limit=limit), newly_seen

	async def get(self, message_id: str) -> Optional[ChatMessage]:
		async with self._lock:
			message = self._index.get(message_id)
			return message.copy() if message else None

	async def mark_seen(self, message_id: str) -> Tuple[ChatMessage, bool]:
		async with self._lock:
			message = self._index.get(message_id)
			if message is None:
				raise MessageNotFound()
			changed = not message.seen
			if changed:
				message.seen = True
				message.updated_at = _now()
			return message.copy(), changed

	async def soft_delete(self, message_id: str, requester_id: str) -> ChatMessage:
		async with self._lock:
			message = self._index.get(message_id)
			if message is None:
				raise MessageNotFound()
			if message.sender_id != requester_id:
				raise MessageForbidden()
			tombstone(message, at=_now())
			return message.copy()

	async def toggle_reaction(self, message_id: str, user_id: str, emoji: str, cap: int) -> Tuple[ChatMessage, bool]:
		async with self._lock:
			message = self._index.get(message_id)
			if message is None:
				raise MessageNotFound()
			reactions, added = toggle_reaction(message.reactions, user_id, emoji)
			if added:
				_check_reaction_cap(message.reactions, user_id, cap)
			message.reactions = reactions
			message.updated_at = _now()
			return message.copy(), added

	async def unseen_counts(self, owner_id: str) -> Dict[str, int]:
		counts: Dict[str, int] = {}
		async with self._lock:
			for message in self._index.values():
				if message.receiver_id == owner_id and not message.seen:
					counts[message.sender_id] = counts.get(message.sender_id, 0) + 1
		return counts

	async def last_message_times(self, owner_id: str) -> Dict[str, datetime]:
		latest: Dict[str, datetime] = {}
		async with self._lock:
			for message in self._index.values():
				if not message.is_participant(owner_id):
					continue
				peer = message.receiver_id if message.sender_id == owner_id else message.sender_id
				if peer not in latest or message.created_at > latest[peer]:
					latest[peer] = message.created_at
		return latest


_MEMORY_STORE = _InMemoryStore()


async def reset_memory_store() -> None:
	await _MEMORY_STORE.reset()


async def ensure_schema(pool) -> None:
	if not pool:
		return
	async with pool.acquire() as conn:
		await conn.execute(SCHEMA_SQL)


class ChatRepository:
	"""Message store backed by asyncpg with an in-memory fallback."""

	def __init__(self, *, max_reactions_per_user: int = 0) -> None:
		self._pool_checked = False
		self._pool = None
		self.max_reactions_per_user = max_reactions_per_user

	async def _pool_or_none(self):
		if self._pool_checked:
			return self._pool
		self._pool_checked = True
		try:
			pool = await get_pool()
		except Exception:
			pool = None
		self._pool = pool
		return pool

	async def append(self, sender_id: str, receiver_id: str, *, text: Optional[str] = None, image: Optional[str] = None) -> ChatMessage:
		body = text or ""
		image_uri = (image or "").strip()
		if not body.strip() and not image_uri:
			raise EmptyMessage()
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.append(sender_id, receiver_id, body, image_uri)
		created_at = _now()
		conversation = ConversationKey.from_participants(sender_id, receiver_id)
		async with pool.acquire() as conn:
			async with conn.transaction():
				seq = await self._next_sequence(conn, conversation.conversation_id)
				row = await conn.fetchrow(
					f"""
					INSERT INTO chat_messages (
						message_id, conversation_id, seq, sender_id, receiver_id,
						text, image, created_at, updated_at
					) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $8)
					RETURNING {_COLUMNS}
					""",
					str(ulid.new()),
					conversation.conversation_id,
					seq,
					sender_id,
					receiver_id,
					body,
					image_uri,
					created_at,
				)
		return self._row_to_message(row)

	async def page(self, user_a: str, user_b: str, *, page: int, limit: int) -> Tuple[MessagePage, List[ChatMessage]]:
		"""Return one newest-first page and the messages this read flagged as seen.

		Reading page 1 marks everything ``user_b`` sent to ``user_a`` as seen
		before the window is selected, so the page reflects post-read state.
		"""
		page = max(1, page)
		limit = max(1, limit)
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.page(user_a, user_b, page, limit)
		conversation = ConversationKey.from_participants(user_a, user_b)
		newly_seen: List[ChatMessage] = []
		async with pool.acquire() as conn:
			async with conn.transaction():
				if page == 1:
					seen_rows = await conn.fetch(
						f"""
						UPDATE chat_messages
						SET seen = TRUE, updated_at = $4
						WHERE conversation_id = $1 AND sender_id = $2 AND receiver_id = $3 AND NOT seen
						RETURNING {_COLUMNS}
						""",
						conversation.conversation_id,
						user_b,
						user_a,
						_now(),
					)
					newly_seen = [self._row_to_message(row) for row in seen_rows]
				total = await conn.fetchval(
					"SELECT COUNT(*) FROM chat_messages WHERE conversation_id = $1",
					conversation.conversation_id,
				)
				rows = await conn.fetch(
					f"""
					SELECT {_COLUMNS}
					FROM chat_messages
					WHERE conversation_id = $1
					ORDER BY created_at DESC, seq DESC
					OFFSET $2 LIMIT $3
					""",
					conversation.conversation_id,
					(page - 1) * limit,
					limit,
				)
		messages = [self._row_to_message(row) for row in rows]
		return MessagePage.build(messages, total=int(total or 0), page=page, limit=limit), newly_seen

	async def get_message(self, message_id: str) -> ChatMessage:
		pool = await self._pool_or_none()
		if pool is None:
			message = await _MEMORY_STORE.get(message_id)
		else:
			async with pool.acquire() as conn:
				row = await conn.fetchrow(f"SELECT {_COLUMNS} FROM chat_messages WHERE message_id = $1", message_id)
			message = self._row_to_message(row) if row else None
		if message is None:
			raise MessageNotFound()
		return message

	async def mark_seen(self, message_id: str) -> Tuple[ChatMessage, bool]:
		"""Flag one message as seen; the flag reports whether it changed."""
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.mark_seen(message_id)
		async with pool.acquire() as conn:
			async with conn.transaction():
				current = await conn.fetchval(
					"SELECT seen FROM chat_messages WHERE message_id = $1 FOR UPDATE",
					message_id,
				)
				if current is None:
					raise MessageNotFound()
				row = await conn.fetchrow(
					f"""
					UPDATE chat_messages
					SET seen = TRUE, updated_at = CASE WHEN seen THEN updated_at ELSE $2 END
					WHERE message_id = $1
					RETURNING {_COLUMNS}
					""",
					message_id,
					_now(),
				)
		return self._row_to_message(row), not current

	async def soft_delete(self, message_id: str, requester_id: str) -> ChatMessage:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.soft_delete(message_id, requester_id)
		async with pool.acquire() as conn:
			async with conn.transaction():
				sender_id = await conn.fetchval(
					"SELECT sender_id FROM chat_messages WHERE message_id = $1 FOR UPDATE",
					message_id,
				)
				if sender_id is None:
					raise MessageNotFound()
				if str(sender_id) != requester_id:
					raise MessageForbidden()
				row = await conn.fetchrow(
					f"""
					UPDATE chat_messages
					SET deleted = TRUE, text = $2, image = '', updated_at = $3
					WHERE message_id = $1
					RETURNING {_COLUMNS}
					""",
					message_id,
					DELETED_PLACEHOLDER,
					_now(),
				)
		return self._row_to_message(row)

	async def toggle_reaction(self, message_id: str, user_id: str, emoji: str) -> Tuple[ChatMessage, bool]:
		"""Add or remove ``(user_id, emoji)``; the flag is True when it was added."""
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.toggle_reaction(message_id, user_id, emoji, self.max_reactions_per_user)
		async with pool.acquire() as conn:
			async with conn.transaction():
				raw = await conn.fetchrow(
					"SELECT reactions FROM chat_messages WHERE message_id = $1 FOR UPDATE",
					message_id,
				)
				if raw is None:
					raise MessageNotFound()
				current = self._decode_reactions(raw["reactions"])
				reactions, added = toggle_reaction(current, user_id, emoji)
				if added:
					_check_reaction_cap(current, user_id, self.max_reactions_per_user)
				row = await conn.fetchrow(
					f"""
					UPDATE chat_messages
					SET reactions = $2::jsonb, updated_at = $3
					WHERE message_id = $1
					RETURNING {_COLUMNS}
					""",
					message_id,
					json.dumps([reaction.to_dict() for reaction in reactions]),
					_now(),
				)
		return self._row_to_message(row), added

	async def unseen_counts(self, owner_id: str) -> Dict[str, int]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.unseen_counts(owner_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT sender_id, COUNT(*) AS unseen
				FROM chat_messages
				WHERE receiver_id = $1 AND NOT seen
				GROUP BY sender_id
				""",
				owner_id,
			)
		return {str(row["sender_id"]): int(row["unseen"]) for row in rows}

	async def last_message_times(self, owner_id: str) -> Dict[str, datetime]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.last_message_times(owner_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT CASE WHEN sender_id = $1 THEN receiver_id ELSE sender_id END AS peer_id,
					MAX(created_at) AS last_at
				FROM chat_messages
				WHERE sender_id = $1 OR receiver_id = $1
				GROUP BY peer_id
				""",
				owner_id,
			)
		return {str(row["peer_id"]): row["last_at"] for row in rows}

	async def _next_sequence(self, conn, conversation_id: str) -> int:
		row = await conn.fetchrow(
			"""
			INSERT INTO chat_seq (conversation_id, last_seq) VALUES ($1, 1)
			ON CONFLICT (conversation_id) DO UPDATE SET last_seq = chat_seq.last_seq + 1
			RETURNING last_seq
			""",
			conversation_id,
		)
		return int(row["last_seq"])

	@staticmethod
	def _decode_reactions(raw) -> Tuple[Reaction, ...]:
		if isinstance(raw, str):
			payload = json.loads(raw) if raw else []
		else:
			payload = raw or []
		return tuple(Reaction(user_id=str(item["userId"]), emoji=str(item["emoji"])) for item in payload)

	def _row_to_message(self, row) -> ChatMessage:
		return ChatMessage(
			message_id=str(row["message_id"]),
			conversation_id=str(row["conversation_id"]),
			seq=int(row["seq"]),
			sender_id=str(row["sender_id"]),
			receiver_id=str(row["receiver_id"]),
			text=row["text"] or "",
			image=row["image"] or "",
			seen=bool(row["seen"]),
			deleted=bool(row["deleted"]),
			reactions=self._decode_reactions(row["reactions"]),
			created_at=row["created_at"],
			updated_at=row["updated_at"],
		)
