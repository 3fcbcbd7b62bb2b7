"""In-process registry of live real-time connections, keyed by group."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Protocol
from uuid import UUID

from grouptalk.obs import metrics as obs_metrics


class Connection(Protocol):
	"""A live, push-capable handle owned by the transport."""

	async def send(self, event: str, payload: Dict[str, Any]) -> None: ...

	async def close(self) -> None: ...


@dataclass(frozen=True, slots=True, eq=False)
class Attachment:
	group_id: UUID
	user_id: UUID
	connection: Connection


class ConnectionRegistry:
	"""Maps group ids to the connections currently attached to them.

	One instance lives for the whole process and starts empty. A single lock
	guards insertion, removal and snapshotting, so iteration never observes a
	half-mutated set. Sends happen outside the lock on snapshots.
	"""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._groups: Dict[UUID, List[Attachment]] = {}

	async def attach(self, group_id: UUID, user_id: UUID, connection: Connection) -> Attachment:
		"""Register ``connection``; callers must have verified membership first."""
		attachment = Attachment(group_id=group_id, user_id=user_id, connection=connection)
		async with self._lock:
			self._groups.setdefault(group_id, []).append(attachment)
			obs_metrics.set_registry_groups(len(self._groups))
		return attachment

	async def detach(self, group_id: UUID, connection: Connection) -> bool:
		"""Remove ``connection`` by identity. Returns False when it was not attached."""
		async with self._lock:
			attachments = self._groups.get(group_id)
			if not attachments:
				return False
			remaining = [item for item in attachments if item.connection is not connection]
			removed = len(remaining) != len(attachments)
			if remaining:
				self._groups[group_id] = remaining
			else:
				del self._groups[group_id]
			obs_metrics.set_registry_groups(len(self._groups))
			return removed

	async def detach_user(self, group_id: UUID, user_id: UUID) -> List[Attachment]:
		"""Remove every connection ``user_id`` holds on ``group_id``."""
		async with self._lock:
			attachments = self._groups.get(group_id)
			if not attachments:
				return []
			evicted = [item for item in attachments if item.user_id == user_id]
			remaining = [item for item in attachments if item.user_id != user_id]
			if remaining:
				self._groups[group_id] = remaining
			else:
				del self._groups[group_id]
			obs_metrics.set_registry_groups(len(self._groups))
			return evicted

	async def snapshot(self, group_id: UUID) -> List[Attachment]:
		async with self._lock:
			return list(self._groups.get(group_id, ()))

	async def clear(self) -> List[Attachment]:
		"""Drop every attachment, returning what was registered."""
		async with self._lock:
			dropped = [item for attachments in self._groups.values() for item in attachments]
			self._groups.clear()
			obs_metrics.set_registry_groups(0)
			return dropped

	def group_count(self) -> int:
		return len(self._groups)

	def connection_count(self, group_id: UUID) -> int:
		return len(self._groups.get(group_id, ()))
