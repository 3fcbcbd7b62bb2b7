"""Socket.IO namespace attaching members to their group's live channel."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qs
from uuid import UUID

import socketio
from pydantic import ValidationError

from grouptalk.domain.common.exceptions import BadRequestError, DomainError, UnauthorizedError
from grouptalk.groups.domain.authorization import AuthorizationEngine
from grouptalk.groups.domain.messages_service import MessagesService
from grouptalk.groups.schemas import dto
from grouptalk.groups.sockets.registry import ConnectionRegistry
from grouptalk.infra.auth import AuthenticatedUser, bearer_token, parse_user_id, verify_identity
from grouptalk.obs import logging as obs_logging
from grouptalk.obs import metrics as obs_metrics
from grouptalk.settings import settings

logger = logging.getLogger(__name__)

READY_EVENT = "group:ready"
ERROR_EVENT = "group:error"


def _header(scope: dict, name: str) -> Optional[str]:
	target = name.encode().lower()
	for key, value in scope.get("headers", []):
		if key.lower() == target:
			return value.decode()
	return None


class SocketConnection:
	"""Registry handle for one Socket.IO session."""

	__slots__ = ("_namespace", "sid")

	def __init__(self, namespace: socketio.AsyncNamespace, sid: str) -> None:
		self._namespace = namespace
		self.sid = sid

	async def send(self, event: str, payload: Dict[str, Any]) -> None:
		await self._namespace.emit(event, payload, to=self.sid)

	async def close(self) -> None:
		await self._namespace.disconnect(self.sid)

	def __repr__(self) -> str:
		return f"SocketConnection(sid={self.sid!r})"


@dataclass(slots=True)
class _Session:
	user: AuthenticatedUser
	user_id: UUID
	group_id: UUID
	connection: SocketConnection


class GroupsNamespace(socketio.AsyncNamespace):
	"""One connection is attached to exactly one group, after a membership check."""

	def __init__(
		self,
		*,
		registry: ConnectionRegistry,
		messages_service: MessagesService,
		authorization: AuthorizationEngine,
		namespace: str = "/groups",
	) -> None:
		super().__init__(namespace)
		self.registry = registry
		self.messages_service = messages_service
		self.authorization = authorization
		self._sessions: Dict[str, _Session] = {}

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		obs_metrics.socket_connected(self.namespace)
		try:
			user, group_id = self._handshake(environ, auth)
			user_id = parse_user_id(user.id)
			await self.authorization.require_member(user_id, group_id)
		except DomainError as exc:
			obs_metrics.socket_disconnected(self.namespace)
			logger.info("socket connection refused: %s", exc.detail)
			raise ConnectionRefusedError(exc.detail) from None

		connection = SocketConnection(self, sid)
		await self.registry.attach(group_id, user_id, connection)
		# A removal committed before this read is refused here; one committed after
		# it finds the attachment when it evicts.
		try:
			await self.authorization.require_member(user_id, group_id)
		except DomainError as exc:
			await self.registry.detach(group_id, connection)
			obs_metrics.socket_disconnected(self.namespace)
			logger.info("socket connection refused after attach: %s", exc.detail)
			raise ConnectionRefusedError(exc.detail) from None

		self._sessions[sid] = _Session(user=user, user_id=user_id, group_id=group_id, connection=connection)
		await self.emit(READY_EVENT, {"group_id": str(group_id), "user_id": str(user_id)}, to=sid)

	async def on_disconnect(self, sid: str, reason: Any = None) -> None:
		obs_metrics.socket_disconnected(self.namespace)
		session = self._sessions.pop(sid, None)
		if session is not None:
			await self.registry.detach(session.group_id, session.connection)

	async def on_message(self, sid: str, data: Any = None) -> None:
		obs_metrics.socket_event(self.namespace, "message")
		session = self._sessions.get(sid)
		if session is None:
			obs_metrics.inc_inbound_dropped("unattached")
			return
		token = obs_logging.bind_context(sid=sid, user_id=session.user_id, group_id=session.group_id)
		try:
			await self._handle_message(sid, session, data)
		finally:
			obs_logging.reset_context(token)

	async def _handle_message(self, sid: str, session: _Session, data: Any) -> None:
		inbound = self._parse_inbound(data)
		if inbound is None:
			logger.warning("dropping malformed socket payload")
			obs_metrics.inc_inbound_dropped("malformed")
			return
		try:
			await self.messages_service.post_message(session.user, session.group_id, inbound.content)
		except DomainError as exc:
			await self.emit(ERROR_EVENT, {"kind": exc.kind.value, **exc.to_dict()}, to=sid)

	def session(self, sid: str) -> Optional[_Session]:
		return self._sessions.get(sid)

	@staticmethod
	def _parse_inbound(data: Any) -> Optional[dto.InboundSocketMessage]:
		if isinstance(data, (str, bytes)):
			try:
				data = json.loads(data)
			except ValueError:
				return None
		try:
			return dto.InboundSocketMessage.model_validate(data)
		except ValidationError:
			return None

	def _handshake(self, environ: dict, auth: Optional[dict]) -> Tuple[AuthenticatedUser, UUID]:
		scope = environ.get("asgi.scope", environ)
		auth_payload = auth if isinstance(auth, dict) else {}

		token = auth_payload.get("token") or bearer_token(
			environ.get("HTTP_AUTHORIZATION") or _header(scope, "authorization")
		)
		if token:
			user = verify_identity(str(token))
		elif settings.is_dev() and auth_payload.get("userId"):
			user = AuthenticatedUser(id=str(auth_payload["userId"]))
		else:
			raise UnauthorizedError("missing_token")

		raw_group = auth_payload.get("groupId")
		if not raw_group:
			query = environ.get("QUERY_STRING") or scope.get("query_string", b"")
			if isinstance(query, bytes):
				query = query.decode()
			raw_group = (parse_qs(query).get("groupId") or [None])[0]
		if not raw_group:
			raise BadRequestError("missing_group_id")
		try:
			group_id = UUID(str(raw_group))
		except ValueError:
			raise BadRequestError("invalid_group_id") from None
		return user, group_id
