"""Authorization policies for group lifecycle operations.

Everything here is a pure function over already-fetched records; fetching
lives in ``authorization`` and mutation in the repository.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal
from uuid import UUID

from grouptalk.domain.common.exceptions import (
	BadRequestError,
	ConflictError,
	ForbiddenError,
	NotFoundError,
)
from grouptalk.groups.domain import models

ROLE_HIERARCHY = {
	models.GroupRole.OWNER: 3,
	models.GroupRole.ADMIN: 2,
	models.GroupRole.MEMBER: 1,
}


@dataclass(frozen=True, slots=True)
class JoinDecision:
	"""Outcome of a join evaluation that passed every guard."""

	action: Literal["admit", "request"]
	# A temporary ban exists but its cooldown has elapsed.
	clears_stale_ban: bool = False


def lockout_ends(ban: models.Ban, lockout_hours: int) -> datetime:
	return ban.created_at + timedelta(hours=lockout_hours)


def stale_ban_cutoff(now: datetime, lockout_hours: int) -> datetime:
	"""Temporary bans created at or before this instant have expired."""
	return now - timedelta(hours=lockout_hours)


def is_admin_or_owner(role: models.GroupRole | None) -> bool:
	return role in (models.GroupRole.OWNER, models.GroupRole.ADMIN)


def assert_member(membership: models.Membership | None) -> models.Membership:
	if membership is None:
		raise ForbiddenError("membership_required")
	return membership


def assert_admin_or_owner(membership: models.Membership | None) -> models.Membership:
	if membership is None or not is_admin_or_owner(membership.role):
		raise ForbiddenError("admin_or_owner_required")
	return membership


def assert_owner(group: models.Group | None, user_id: UUID) -> models.Group:
	if group is None or group.owner_id != user_id:
		raise ForbiddenError("owner_required")
	return group


def assert_ban_allows_join(ban: models.Ban | None, *, now: datetime, lockout_hours: int) -> bool:
	"""Raise if the ban still blocks the user; return True when it is stale."""
	if ban is None:
		return False
	if ban.permanent:
		raise ForbiddenError("permanently_banned")
	ends = lockout_ends(ban, lockout_hours)
	if now < ends:
		raise ForbiddenError("lockout_active", retry_at=ends)
	return True


def evaluate_join(
	group: models.Group | None,
	membership: models.Membership | None,
	ban: models.Ban | None,
	join_request: models.JoinRequest | None,
	*,
	now: datetime,
	lockout_hours: int,
) -> JoinDecision:
	if group is None:
		raise NotFoundError("group_not_found")
	if membership is not None:
		raise ConflictError("already_member")
	stale = assert_ban_allows_join(ban, now=now, lockout_hours=lockout_hours)
	if group.type == models.GroupType.PUBLIC:
		return JoinDecision(action="admit", clears_stale_ban=stale)
	if join_request is not None and join_request.status == models.JoinRequestStatus.PENDING:
		raise ConflictError("join_request_pending")
	return JoinDecision(action="request", clears_stale_ban=stale)


def assert_pending(join_request: models.JoinRequest | None) -> models.JoinRequest:
	if join_request is None or join_request.status != models.JoinRequestStatus.PENDING:
		raise NotFoundError("join_request_not_found")
	return join_request


def assert_can_leave(membership: models.Membership | None) -> models.Membership:
	if membership is None:
		raise NotFoundError("not_a_member")
	if membership.role == models.GroupRole.OWNER:
		raise BadRequestError("owner_must_transfer")
	return membership


def assert_can_remove(target: models.Membership | None) -> models.Membership:
	if target is None:
		raise NotFoundError("member_not_found")
	if target.role == models.GroupRole.OWNER:
		raise ForbiddenError("cannot_ban_owner")
	return target


def assert_can_promote(target: models.Membership | None) -> models.Membership:
	if target is None:
		raise NotFoundError("member_not_found")
	if target.role != models.GroupRole.MEMBER:
		raise BadRequestError("already_admin_or_owner")
	return target


def assert_can_transfer(actor_id: UUID, target: models.Membership | None) -> models.Membership:
	if target is None:
		raise NotFoundError("member_not_found")
	if target.user_id == actor_id:
		raise BadRequestError("already_owner")
	return target


def assert_can_delete(member_count: int) -> None:
	if member_count > 1:
		raise BadRequestError("group_has_members")


def ensure_page_limit(limit: int, *, maximum: int) -> int:
	if limit < 1 or limit > maximum:
		raise BadRequestError("limit_out_of_range", maximum=maximum)
	return limit
