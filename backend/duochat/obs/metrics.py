"""Prometheus metrics for the chat backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNTER = Counter(
	"duochat_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"duochat_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"duochat_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"duochat_socketio_events_total",
	"Socket.IO events emitted per namespace",
	["namespace", "event"],
)

SOCKET_EVENTS_DROPPED = Counter(
	"duochat_socketio_events_dropped_total",
	"Point-to-point events skipped because the target user was offline",
	["event"],
)

CHAT_MESSAGES = Counter(
	"duochat_chat_messages_total",
	"Chat message mutations by kind",
	["action"],
)

CHAT_UPLOADS = Counter(
	"duochat_chat_uploads_total",
	"Image attachment uploads by result",
	["result"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def socket_event_dropped(event: str) -> None:
	SOCKET_EVENTS_DROPPED.labels(event=event).inc()


def inc_chat_send() -> None:
	CHAT_MESSAGES.labels(action="send").inc()


def inc_chat_seen(count: int = 1) -> None:
	if count > 0:
		CHAT_MESSAGES.labels(action="seen").inc(count)


def inc_chat_delete() -> None:
	CHAT_MESSAGES.labels(action="delete").inc()


def inc_chat_reaction(action: str) -> None:
	CHAT_MESSAGES.labels(action=f"reaction_{action}").inc()


def inc_upload(result: str) -> None:
	CHAT_UPLOADS.labels(result=result).inc()
