import asyncio
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from duochat.domain.chat import service as chat_service
from duochat.domain.chat import sockets as chat_sockets
from duochat.domain.chat.repo import reset_memory_store
from duochat.infra import postgres
from duochat.infra.storage import set_storage
from duochat.infra.users import reset_memory_directory
from duochat.main import app
from duochat.settings import settings


# Ensure a selector-based event loop policy on Windows to avoid Proactor issues with async IO
if hasattr(asyncio, "WindowsSelectorEventLoopPolicy"):
	try:
		asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
	except Exception:
		# Non-fatal; proceed with default policy
		pass


class MemoryStorage:
	"""Object storage double that keeps uploads in a dict."""

	def __init__(self) -> None:
		self.objects: dict[str, tuple[bytes, str]] = {}

	async def put(self, key: str, data: bytes, content_type: str) -> str:
		self.objects[key] = (data, content_type)
		return f"https://cdn.test/{key}"


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API and socket tests authenticate via X-User-Id / ``userId``, which are only
	accepted in dev mode.
	"""
	original_env = settings.environment
	original_cap = settings.max_reactions_per_user
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.environment = original_env
		settings.max_reactions_per_user = original_cap


@pytest_asyncio.fixture(autouse=True)
async def reset_chat_state():
	await reset_memory_store()
	await reset_memory_directory()
	chat_service.set_service(None)
	previous_namespace = chat_sockets.get_namespace()
	try:
		yield
	finally:
		chat_sockets.set_namespace(previous_namespace)
		set_storage(None)


@pytest.fixture
def memory_storage():
	storage = MemoryStorage()
	set_storage(storage)
	return storage


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
