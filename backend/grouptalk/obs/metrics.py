"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


REQUEST_COUNTER = Counter(
	"grouptalk_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"grouptalk_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"grouptalk_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"grouptalk_socketio_events_total",
	"Socket.IO events handled per namespace",
	["namespace", "event"],
)

SOCKET_INBOUND_DROPPED = Counter(
	"grouptalk_socket_inbound_dropped_total",
	"Inbound realtime payloads dropped",
	["reason"],
)

GROUPS_CREATED = Counter(
	"grouptalk_groups_created_total",
	"Groups created",
)

GROUP_JOINS = Counter(
	"grouptalk_group_joins_total",
	"Join attempts by outcome",
	["result"],
)

GROUP_ACTIONS = Counter(
	"grouptalk_group_actions_total",
	"Membership lifecycle actions applied",
	["action"],
)

MESSAGES_POSTED = Counter(
	"grouptalk_messages_posted_total",
	"Messages persisted",
)

BROADCAST_DELIVERIES = Counter(
	"grouptalk_broadcast_deliveries_total",
	"Per-connection fan-out attempts by outcome",
	["result"],
)

REGISTRY_GROUPS = Gauge(
	"grouptalk_registry_groups",
	"Groups with at least one attached connection",
)

IDENTITY_EVENTS = Counter(
	"grouptalk_identity_events_total",
	"Registration and login outcomes",
	["event", "result"],
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


def inc_inbound_dropped(reason: str) -> None:
	SOCKET_INBOUND_DROPPED.labels(reason=reason).inc()


def inc_groups_created() -> None:
	GROUPS_CREATED.inc()


def inc_group_join(result: str) -> None:
	GROUP_JOINS.labels(result=result).inc()


def inc_group_action(action: str) -> None:
	GROUP_ACTIONS.labels(action=action).inc()


def inc_message_posted() -> None:
	MESSAGES_POSTED.inc()


def inc_broadcast_delivery(result: str, count: int = 1) -> None:
	if count > 0:
		BROADCAST_DELIVERIES.labels(result=result).inc(count)


def set_registry_groups(count: int) -> None:
	REGISTRY_GROUPS.set(count)


def inc_identity(event: str, result: str) -> None:
	IDENTITY_EVENTS.labels(event=event, result=result).inc()
