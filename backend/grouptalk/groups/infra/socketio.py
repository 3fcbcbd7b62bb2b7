"""Factory helpers for the groups Socket.IO namespace."""

from __future__ import annotations

import socketio

from grouptalk.groups.domain.authorization import AuthorizationEngine
from grouptalk.groups.domain.messages_service import MessagesService
from grouptalk.groups.sockets.namespace import GroupsNamespace
from grouptalk.groups.sockets.registry import ConnectionRegistry


def register(
	server: socketio.AsyncServer,
	*,
	registry: ConnectionRegistry,
	messages_service: MessagesService,
	authorization: AuthorizationEngine,
) -> GroupsNamespace:
	"""Register the groups namespace on the process Socket.IO server."""
	namespace = GroupsNamespace(
		registry=registry,
		messages_service=messages_service,
		authorization=authorization,
	)
	server.register_namespace(namespace)
	return namespace
