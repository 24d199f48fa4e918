"""HTTP client for the duochat message endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from duochat.client.models import LocalImage, PageResult, TimelineMessage
from duochat.domain.chat.exceptions import ChatError, NetworkFailure, from_reason

logger = logging.getLogger(__name__)


class MessagesApi:
	"""Thin wrapper over ``/api/messages`` that speaks domain exceptions."""

	def __init__(
		self,
		base_url: str = "http://localhost:8000",
		*,
		token: Optional[str] = None,
		user_id: Optional[str] = None,
		http: httpx.AsyncClient | None = None,
		timeout: float = 10.0,
	) -> None:
		headers: Dict[str, str] = {}
		if token:
			headers["Authorization"] = f"Bearer {token}"
		elif user_id:
			headers["X-User-Id"] = user_id
		self.http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)
		self._headers = headers

	async def aclose(self) -> None:
		await self.http.aclose()

	async def _call(self, method: str, path: str, **kwargs: Any) -> dict:
		try:
			response = await self.http.request(method, path, headers=self._headers, **kwargs)
		except httpx.HTTPError as exc:
			logger.warning("chat_api_transport_error", extra={"path": path, "error": str(exc)})
			raise NetworkFailure() from exc
		if response.status_code >= 400:
			raise self._error_for(response)
		return response.json()

	@staticmethod
	def _error_for(response: httpx.Response) -> ChatError:
		try:
			detail = response.json().get("detail")
		except ValueError:
			detail = None
		error = from_reason(str(detail)) if isinstance(detail, str) and detail else ChatError(f"http_{response.status_code}")
		if type(error) is ChatError and response.status_code >= 500:
			return NetworkFailure()
		return error

	async def list_users(self) -> dict:
		return await self._call("GET", "/api/messages/users")

	async def fetch_page(self, peer_id: str, page: int = 1, limit: int = 50) -> PageResult:
		body = await self._call("GET", f"/api/messages/{peer_id}", params={"page": page, "limit": limit})
		return PageResult(
			messages=[TimelineMessage.from_wire(item) for item in body.get("messages", [])],
			total=int(body.get("total", 0)),
			page=int(body.get("page", page)),
			limit=int(body.get("limit", limit)),
			has_more=bool(body.get("hasMore", False)),
		)

	async def get_message(self, message_id: str) -> TimelineMessage:
		body = await self._call("GET", f"/api/messages/detail/{message_id}")
		return TimelineMessage.from_wire(body["message"])

	async def mark_seen(self, message_id: str) -> TimelineMessage:
		body = await self._call("PUT", f"/api/messages/mark/{message_id}")
		return TimelineMessage.from_wire(body["data"])

	async def send(self, receiver_id: str, *, text: Optional[str] = None, image: Optional[LocalImage] = None) -> TimelineMessage:
		data = {"text": text} if text else {}
		files = {"image": (image.filename, image.data, image.content_type)} if image else None
		body = await self._call("POST", f"/api/messages/send/{receiver_id}", data=data, files=files)
		return TimelineMessage.from_wire(body["message"])

	async def delete(self, message_id: str) -> TimelineMessage:
		body = await self._call("DELETE", f"/api/messages/{message_id}")
		return TimelineMessage.from_wire(body["data"])

	async def toggle_reaction(self, message_id: str, emoji: str) -> TimelineMessage:
		body = await self._call("POST", f"/api/messages/reaction/{message_id}", json={"emoji": emoji})
		return TimelineMessage.from_wire(body["message"])
