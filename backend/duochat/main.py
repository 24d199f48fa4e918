"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.staticfiles import StaticFiles

from duochat.api import messages
from duochat.api.errors import install_error_handlers
from duochat.domain.chat.repo import ensure_schema
from duochat.domain.chat.sockets import ChatNamespace, set_namespace
from duochat.infra import postgres
from duochat.obs import init as obs_init
from duochat.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	pool = None
	try:
		pool = await postgres.init_pool()
	except Exception as exc:
		# Chat falls back to the in-process store when Postgres is unreachable
		logger.warning("postgres_unavailable", extra={"error": str(exc)})
	await ensure_schema(pool)
	try:
		yield
	finally:
		await postgres.close_pool()


app = FastAPI(title="duochat", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(getattr(settings, "cors_allow_origins", []))
if not allow_origins:
	allow_origins = ["http://localhost:5173"] if settings.is_dev() else []

# Starlette disallows wildcard '*' with allow_credentials=True. Replace '*' with explicit origins.
if "*" in allow_origins:
	allow_origins = (
		[
			"http://localhost:3000",
			"http://127.0.0.1:3000",
			"http://localhost:5173",
			"http://127.0.0.1:5173",
		]
		if settings.is_dev()
		else [origin for origin in allow_origins if origin != "*"]
	)

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

obs_init(app)


@app.get("/health/live", include_in_schema=False)
async def health_live() -> dict:
	return {"status": "ok"}


# Static serving for uploaded chat images in dev
if settings.is_dev():
	upload_root = Path(settings.upload_root).resolve()
	upload_root.mkdir(parents=True, exist_ok=True)
	app.mount("/uploads", StaticFiles(directory=str(upload_root), check_dir=True), name="uploads")

app.include_router(messages.router)

# Use the same allowed origins for Socket.IO as for the REST API
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
chat_namespace = ChatNamespace()
sio.register_namespace(chat_namespace)
set_namespace(chat_namespace)
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
