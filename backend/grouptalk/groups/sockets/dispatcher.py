"""Fan-out of persisted group messages to attached connections."""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Any, Dict, List
from uuid import UUID

from grouptalk.domain.common.exceptions import CorruptDataError
from grouptalk.groups.domain import models
from grouptalk.groups.sockets.registry import Attachment, ConnectionRegistry
from grouptalk.infra.crypto import MessageCipher
from grouptalk.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

MESSAGE_EVENT = "group:message"
EVICTED_EVENT = "group:evicted"


def message_payload(message: models.Message, content: str) -> Dict[str, Any]:
	"""Shape pushed to clients for one message, with plaintext ``content``."""
	sender = message.sender
	return {
		"id": str(message.id),
		"group_id": str(message.group_id),
		"sender": {
			"id": str(message.sender_id),
			"first_name": sender.first_name if sender else None,
			"last_name": sender.last_name if sender else None,
		},
		"content": content,
		"created_at": message.created_at.isoformat(),
	}


class BroadcastDispatcher:
	"""Pushes messages to every live connection of their group.

	Delivery is best effort and at most once per connection: nothing is
	buffered for absent members, and one failing connection never blocks the
	rest. A connection whose send fails is detached afterwards.
	"""

	def __init__(self, registry: ConnectionRegistry, cipher: MessageCipher) -> None:
		self.registry = registry
		self._cipher = cipher
		self._group_locks: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = weakref.WeakValueDictionary()

	def group_lock(self, group_id: UUID) -> asyncio.Lock:
		"""Lock serialising persist-then-broadcast for one group."""
		lock = self._group_locks.get(group_id)
		if lock is None:
			lock = asyncio.Lock()
			self._group_locks[group_id] = lock
		return lock

	async def broadcast(self, message: models.Message) -> int:
		"""Send ``message`` to its group; returns the number of successful sends."""
		attachments = await self.registry.snapshot(message.group_id)
		if not attachments:
			return 0
		try:
			content = self._cipher.open(message.content)
		except CorruptDataError:
			logger.error("broadcast skipped, undecryptable message %s in group %s", message.id, message.group_id)
			obs_metrics.inc_broadcast_delivery("failed", len(attachments))
			return 0

		payload = message_payload(message, content)
		delivered = 0
		failed: List[Attachment] = []
		for attachment in attachments:
			try:
				await attachment.connection.send(MESSAGE_EVENT, payload)
			except Exception:
				logger.warning(
					"broadcast send failed for user %s in group %s",
					attachment.user_id,
					attachment.group_id,
					exc_info=True,
				)
				failed.append(attachment)
			else:
				delivered += 1

		if delivered:
			obs_metrics.inc_broadcast_delivery("sent", delivered)
		if failed:
			obs_metrics.inc_broadcast_delivery("failed", len(failed))
			for attachment in failed:
				await self.registry.detach(attachment.group_id, attachment.connection)
		return delivered

	async def evict(self, group_id: UUID, user_id: UUID, *, reason: str) -> int:
		"""Detach and close every connection ``user_id`` holds on ``group_id``."""
		evicted = await self.registry.detach_user(group_id, user_id)
		for attachment in evicted:
			await self._close(attachment, reason=reason)
		return len(evicted)

	async def shutdown(self) -> None:
		for attachment in await self.registry.clear():
			await self._close(attachment, reason="shutdown")

	@staticmethod
	async def _close(attachment: Attachment, *, reason: str) -> None:
		try:
			await attachment.connection.send(EVICTED_EVENT, {"group_id": str(attachment.group_id), "reason": reason})
			await attachment.connection.close()
		except Exception:
			logger.warning("closing connection for user %s failed", attachment.user_id, exc_info=True)
