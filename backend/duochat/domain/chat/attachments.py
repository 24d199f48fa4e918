"""Image attachment validation and hand-off to object storage."""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from typing import Optional

import ulid

from duochat.domain.chat.exceptions import InvalidAttachment, UploadFailure
from duochat.infra.storage import ObjectStorage, get_storage
from duochat.obs import metrics as obs_metrics
from duochat.settings import settings

logger = logging.getLogger(__name__)

_ALLOWED_PREFIX = "image/"
_KEY_PREFIX = "chat-messages"


@dataclass(slots=True)
class ImageUpload:
	data: bytes
	content_type: str
	filename: str = ""


def _extension(upload: ImageUpload) -> str:
	if upload.filename and "." in upload.filename:
		suffix = upload.filename.rsplit(".", 1)[-1].lower()
		if suffix.isalnum() and len(suffix) <= 5:
			return f".{suffix}"
	guessed = mimetypes.guess_extension(upload.content_type)
	return guessed or ""


def validate_image(upload: ImageUpload, *, max_bytes: Optional[int] = None) -> None:
	"""Reject anything that is not a non-empty image within the size limit."""
	limit = max_bytes if max_bytes is not None else settings.max_image_bytes
	content_type = (upload.content_type or "").strip().lower()
	if not content_type.startswith(_ALLOWED_PREFIX):
		raise InvalidAttachment()
	if not upload.data:
		raise InvalidAttachment()
	if limit > 0 and len(upload.data) > limit:
		raise InvalidAttachment()


async def store_image(owner_id: str, upload: ImageUpload, storage: Optional[ObjectStorage] = None) -> str:
	"""Validate ``upload``, write it to object storage and return its URI.

	Storage errors surface as ``UploadFailure`` so the send is aborted before
	any message is persisted.
	"""
	try:
		validate_image(upload)
	except InvalidAttachment:
		obs_metrics.inc_upload("rejected")
		raise
	backend = storage or get_storage()
	key = f"{_KEY_PREFIX}/{owner_id}/{ulid.new()}{_extension(upload)}"
	try:
		uri = await backend.put(key, upload.data, upload.content_type)
	except Exception as exc:
		obs_metrics.inc_upload("failed")
		logger.warning("chat_upload_failed", extra={"owner_id": owner_id, "key": key, "error": str(exc)})
		raise UploadFailure() from exc
	obs_metrics.inc_upload("stored")
	return uri
