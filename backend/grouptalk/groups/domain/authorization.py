"""Read-then-decide authorization checks against the groups repository."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID

from grouptalk.domain.common.exceptions import NotFoundError
from grouptalk.groups.domain import models, policies
from grouptalk.groups.domain.repo import GroupsRepository
from grouptalk.settings import settings


def utc_now() -> datetime:
	return datetime.now(timezone.utc)


class AuthorizationEngine:
	"""Evaluates who may do what to a group.

	The engine only reads. Every result is advisory for the mutation that
	follows; the repository's conditional writes have the final say.
	"""

	def __init__(
		self,
		repository: Optional[GroupsRepository] = None,
		*,
		lockout_hours: Optional[int] = None,
		clock: Callable[[], datetime] = utc_now,
	) -> None:
		self._repo = repository or GroupsRepository()
		self.lockout_hours = lockout_hours if lockout_hours is not None else settings.lockout_hours
		if self.lockout_hours <= 0:
			raise ValueError("lockout_hours must be positive")
		self._clock = clock

	def now(self) -> datetime:
		return self._clock()

	async def require_member(self, user_id: UUID, group_id: UUID) -> models.Membership:
		return policies.assert_member(await self._repo.get_member(group_id, user_id))

	async def require_admin_or_owner(self, user_id: UUID, group_id: UUID) -> models.Membership:
		return policies.assert_admin_or_owner(await self._repo.get_member(group_id, user_id))

	async def require_owner(self, group_id: UUID, user_id: UUID) -> models.Group:
		group = await self._repo.get_group(group_id)
		if group is None:
			raise NotFoundError("group_not_found")
		return policies.assert_owner(group, user_id)

	async def evaluate_join(self, user_id: UUID, group_id: UUID) -> policies.JoinDecision:
		group = await self._repo.get_group(group_id)
		if group is None:
			raise NotFoundError("group_not_found")
		membership = await self._repo.get_member(group_id, user_id)
		ban = await self._repo.get_ban(group_id, user_id)
		join_request = None
		if group.type == models.GroupType.PRIVATE:
			join_request = await self._repo.get_join_request(group_id, user_id)
		return policies.evaluate_join(
			group,
			membership,
			ban,
			join_request,
			now=self.now(),
			lockout_hours=self.lockout_hours,
		)

	def stale_ban_cutoff(self) -> datetime:
		return policies.stale_ban_cutoff(self.now(), self.lockout_hours)
