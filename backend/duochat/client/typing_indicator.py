"""Typing indicator protocol: throttled sender side and single-flag receiver side."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Mapping, Optional

logger = logging.getLogger(__name__)

TYPING_THROTTLE_SECONDS = 0.3
TYPING_IDLE_SECONDS = 2.0

EmitFunc = Callable[[str, dict], Awaitable[None]]


class TypingEmitter:
	"""Owns the throttle window and the idle timer for one compose box.

	``on_input`` emits ``typing`` at most once per throttle window and re-arms
	the idle timer; when it fires, ``stopTyping`` goes out. ``on_stop`` sends
	``stopTyping`` right away. ``dispose`` cancels the timer without emitting.
	"""

	def __init__(
		self,
		user_id: str,
		emit: EmitFunc,
		*,
		throttle_seconds: float = TYPING_THROTTLE_SECONDS,
		idle_seconds: float = TYPING_IDLE_SECONDS,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self.user_id = user_id
		self._emit = emit
		self._throttle = throttle_seconds
		self._idle = idle_seconds
		self._clock = clock
		self.receiver_id: Optional[str] = None
		self._last_emit: Optional[float] = None
		self._typing = False
		self._idle_task: Optional[asyncio.Task] = None

	@property
	def is_typing(self) -> bool:
		return self._typing

	def set_receiver(self, receiver_id: Optional[str]) -> None:
		if receiver_id != self.receiver_id:
			self.dispose()
			self.receiver_id = receiver_id

	async def on_input(self) -> None:
		if self.receiver_id is None:
			return
		now = self._clock()
		if self._last_emit is None or now - self._last_emit >= self._throttle:
			self._last_emit = now
			self._typing = True
			await self._emit("typing", self._payload())
		self._arm_idle()

	async def on_stop(self) -> None:
		self._cancel_idle()
		await self._send_stop()

	def dispose(self) -> None:
		self._cancel_idle()
		self._typing = False
		self._last_emit = None

	def _payload(self) -> dict:
		return {"userId": self.user_id, "receiverId": self.receiver_id}

	async def _send_stop(self) -> None:
		if not self._typing or self.receiver_id is None:
			return
		self._typing = False
		self._last_emit = None
		await self._emit("stopTyping", self._payload())

	def _arm_idle(self) -> None:
		self._cancel_idle()
		self._idle_task = asyncio.get_running_loop().create_task(self._idle_expired())

	def _cancel_idle(self) -> None:
		if self._idle_task is not None:
			self._idle_task.cancel()
			self._idle_task = None

	async def _idle_expired(self) -> None:
		await asyncio.sleep(self._idle)
		self._idle_task = None
		try:
			await self._send_stop()
		except Exception:
			logger.warning("typing_stop_emit_failed", exc_info=True)


class TypingIndicator:
	"""Whether the peer of the active conversation is typing."""

	def __init__(self) -> None:
		self.peer_id: Optional[str] = None
		self.is_typing = False

	def activate(self, peer_id: Optional[str]) -> None:
		self.peer_id = peer_id
		self.is_typing = False

	def on_typing(self, payload: Mapping) -> None:
		if self.peer_id is not None and payload.get("userId") == self.peer_id:
			self.is_typing = True

	def on_stop_typing(self, payload: Mapping) -> None:
		if payload.get("userId") == self.peer_id:
			self.is_typing = False
