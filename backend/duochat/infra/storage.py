"""Object storage for chat image attachments.

Production deployments point ``UPLOAD_BASE_URL`` at a CDN/bucket fronting the
same directory layout. Locally the files are written under ``UPLOAD_ROOT`` and
served by the app at ``/uploads``.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Protocol

from duochat.settings import settings

DEFAULT_LOCAL_BASE_URL = "http://localhost:8000/uploads"


class ObjectStorage(Protocol):
	async def put(self, key: str, data: bytes, content_type: str) -> str:
		"""Store ``data`` under ``key`` and return its stable public URI."""
		...


class LocalObjectStorage:
	def __init__(self, root: str | Path | None = None, base_url: str | None = None) -> None:
		self.root = Path(root or settings.upload_root).resolve()
		self.base_url = (base_url or settings.upload_base_url or DEFAULT_LOCAL_BASE_URL).rstrip("/")

	def _target(self, key: str) -> Path:
		target = (self.root / key).resolve()
		# Prevent path traversal
		if not target.is_relative_to(self.root):
			raise ValueError("invalid_key")
		return target

	def _write(self, target: Path, data: bytes) -> None:
		target.parent.mkdir(parents=True, exist_ok=True)
		with open(target, "wb") as fh:
			fh.write(data)

	async def put(self, key: str, data: bytes, content_type: str) -> str:
		target = self._target(key)
		await asyncio.to_thread(self._write, target, data)
		return f"{self.base_url}/{key}"


_storage: ObjectStorage | None = None


def get_storage() -> ObjectStorage:
	global _storage
	if _storage is None:
		_storage = LocalObjectStorage()
	return _storage


def set_storage(storage: ObjectStorage | None) -> None:
	global _storage
	_storage = storage
