"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


REQUEST_COUNTER = Counter(
	"bonfire_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"bonfire_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"bonfire_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"bonfire_socketio_events_total",
	"Socket.IO events emitted per namespace",
	["namespace", "event"],
)

BONFIRES_CREATED = Counter(
	"bonfire_sessions_created_total",
	"Bonfires created",
)

BONFIRES_ENDED = Counter(
	"bonfire_sessions_ended_total",
	"Bonfires ended by their creator",
)

JOIN_ATTEMPTS = Counter(
	"bonfire_join_attempts_total",
	"Join validations by outcome",
	["result"],
)

PIN_LOCKOUTS = Counter(
	"bonfire_pin_lockouts_total",
	"Participant/bonfire pairs locked after repeated PIN failures",
)

SECRET_FETCHES = Counter(
	"bonfire_secret_fetch_total",
	"Proximity-gated secret fetches by outcome",
	["result"],
)

NEARBY_QUERIES = Counter(
	"bonfire_nearby_queries_total",
	"Nearby bonfire lookups",
)

NEARBY_RESULTS = Histogram(
	"bonfire_nearby_results",
	"Candidates returned per nearby lookup",
	buckets=(0, 1, 2, 5, 10, 25, 50),
)

MESSAGES_SENT = Counter(
	"bonfire_messages_sent_total",
	"Messages persisted",
	["type"],
)

PRESENCE_TOUCHES = Counter(
	"bonfire_presence_touches_total",
	"Participant presence updates accepted",
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


def inc_bonfire_created() -> None:
	BONFIRES_CREATED.inc()


def inc_bonfire_ended() -> None:
	BONFIRES_ENDED.inc()


def inc_join(result: str) -> None:
	JOIN_ATTEMPTS.labels(result=result).inc()


def inc_pin_lockout() -> None:
	PIN_LOCKOUTS.inc()


def inc_secret_fetch(result: str) -> None:
	SECRET_FETCHES.labels(result=result).inc()


def observe_nearby(count: int) -> None:
	NEARBY_QUERIES.inc()
	NEARBY_RESULTS.observe(count)


def inc_message_sent(kind: str) -> None:
	MESSAGES_SENT.labels(type=kind).inc()


def inc_presence_touch() -> None:
	PRESENCE_TOUCHES.inc()
