"""Service layer orchestrating the group lifecycle."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

from grouptalk.domain.common.exceptions import BadRequestError, DomainError, NotFoundError
from grouptalk.groups.domain import models, policies
from grouptalk.groups.domain.authorization import AuthorizationEngine, utc_now
from grouptalk.groups.domain.repo import GroupsRepository
from grouptalk.groups.schemas import dto
from grouptalk.groups.sockets.dispatcher import BroadcastDispatcher
from grouptalk.infra.auth import AuthenticatedUser, parse_user_id
from grouptalk.infra.crypto import MessageCipher
from grouptalk.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

GROUPS_MAX_PAGE = 100


class GroupsService:
	"""Create, join, moderate and delete groups.

	Each mutation re-reads the caller's authority right before writing; the
	repository's conditional writes close the remaining race window.
	"""

	def __init__(
		self,
		repository: Optional[GroupsRepository] = None,
		*,
		cipher: MessageCipher,
		dispatcher: Optional[BroadcastDispatcher] = None,
		lockout_hours: Optional[int] = None,
		clock: Callable[[], datetime] = utc_now,
	) -> None:
		self.repo = repository or GroupsRepository()
		self.auth = AuthorizationEngine(self.repo, lockout_hours=lockout_hours, clock=clock)
		self.cipher = cipher
		self.dispatcher = dispatcher

	# ------------------------------------------------------------------
	# Helpers

	@staticmethod
	def _group_to_response(group: models.Group) -> dto.GroupResponse:
		return dto.GroupResponse(**group.model_dump())

	def _overview_to_response(self, group: models.GroupOverview) -> dto.GroupSummaryResponse:
		last_message = None
		if group.last_message_content is not None and group.last_message_at is not None:
			last_message = dto.LastMessageResponse(
				content=self.cipher.open(group.last_message_content),
				created_at=group.last_message_at,
			)
		payload = group.model_dump(exclude={"last_message_content", "last_message_at"})
		return dto.GroupSummaryResponse(**payload, last_message=last_message)

	async def _require_group(self, group_id: UUID) -> models.Group:
		group = await self.repo.get_group(group_id)
		if group is None:
			raise NotFoundError("group_not_found")
		return group

	async def _evict(self, group_id: UUID, user_id: UUID, *, reason: str) -> None:
		if self.dispatcher is None:
			return
		evicted = await self.dispatcher.evict(group_id, user_id, reason=reason)
		if evicted:
			logger.info("evicted %d connection(s) of user %s from group %s", evicted, user_id, group_id)

	# ------------------------------------------------------------------
	# Group operations

	async def create_group(self, user: AuthenticatedUser, payload: dto.GroupCreateRequest) -> dto.GroupResponse:
		owner_id = parse_user_id(user.id)
		group = await self.repo.create_group(
			name=payload.name.strip(),
			type=payload.type,
			max_members=payload.max_members,
			owner_id=owner_id,
		)
		obs_metrics.inc_groups_created()
		logger.info("group %s created by %s", group.id, owner_id)
		return self._group_to_response(group)

	async def list_groups(
		self,
		user: AuthenticatedUser,
		*,
		limit: int = 20,
		offset: int = 0,
		include_all: bool = False,
	) -> dto.GroupListResponse:
		user_id = parse_user_id(user.id)
		policies.ensure_page_limit(limit, maximum=GROUPS_MAX_PAGE)
		if offset < 0:
			raise BadRequestError("offset_out_of_range")
		groups = await self.repo.list_groups(
			viewer_id=user_id,
			include_all=include_all,
			limit=limit,
			offset=offset,
		)
		return dto.GroupListResponse(
			items=[self._overview_to_response(group) for group in groups],
			limit=limit,
			offset=offset,
		)

	async def get_group(self, user: AuthenticatedUser, group_id: UUID) -> dto.GroupDetailResponse:
		user_id = parse_user_id(user.id)
		group = await self._require_group(group_id)
		membership = await self.repo.get_member(group_id, user_id)
		member_count = await self.repo.count_members(group_id)
		return dto.GroupDetailResponse(
			**group.model_dump(),
			member_count=member_count,
			role=membership.role if membership else None,
		)

	async def delete_group(self, user: AuthenticatedUser, group_id: UUID) -> None:
		user_id = parse_user_id(user.id)
		await self.auth.require_owner(group_id, user_id)
		policies.assert_can_delete(await self.repo.count_members(group_id))
		await self.repo.delete_group(group_id, owner_id=user_id)
		obs_metrics.inc_group_action("delete")
		logger.info("group %s deleted by %s", group_id, user_id)
		await self._evict(group_id, user_id, reason="group_deleted")

	# ------------------------------------------------------------------
	# Membership transitions

	async def join_group(self, user: AuthenticatedUser, group_id: UUID) -> dto.JoinResponse:
		user_id = parse_user_id(user.id)
		try:
			decision = await self.auth.evaluate_join(user_id, group_id)
			stale_before = self.auth.stale_ban_cutoff() if decision.clears_stale_ban else None
			if decision.action == "admit":
				await self.repo.admit_member(group_id, user_id, stale_ban_before=stale_before)
			else:
				await self.repo.submit_join_request(group_id, user_id, stale_ban_before=stale_before)
		except DomainError as exc:
			obs_metrics.inc_group_join(f"rejected_{exc.kind.value}")
			raise
		if decision.clears_stale_ban:
			logger.info("stale ban of user %s on group %s cleared", user_id, group_id)
		if decision.action == "admit":
			obs_metrics.inc_group_join("joined")
			return dto.JoinResponse(status="joined", message="Successfully joined group", group_id=group_id)
		obs_metrics.inc_group_join("pending")
		return dto.JoinResponse(status="pending", message="Join request submitted", group_id=group_id)

	async def leave_group(self, user: AuthenticatedUser, group_id: UUID) -> dto.ActionResponse:
		user_id = parse_user_id(user.id)
		policies.assert_can_leave(await self.repo.get_member(group_id, user_id))
		await self.repo.remove_member(group_id, user_id, permanent=False, banned_at=self.auth.now())
		obs_metrics.inc_group_action("leave")
		await self._evict(group_id, user_id, reason="left")
		return dto.ActionResponse(message="Successfully left group")

	async def approve_join_request(
		self,
		user: AuthenticatedUser,
		group_id: UUID,
		payload: dto.TargetUserRequest,
	) -> dto.ActionResponse:
		actor_id = parse_user_id(user.id)
		await self.auth.require_admin_or_owner(actor_id, group_id)
		policies.assert_pending(await self.repo.get_join_request(group_id, payload.user_id))
		await self.repo.approve_join_request(group_id, payload.user_id)
		obs_metrics.inc_group_action("approve")
		return dto.ActionResponse(message="Join request approved")

	async def reject_join_request(
		self,
		user: AuthenticatedUser,
		group_id: UUID,
		payload: dto.TargetUserRequest,
	) -> dto.ActionResponse:
		actor_id = parse_user_id(user.id)
		await self.auth.require_admin_or_owner(actor_id, group_id)
		policies.assert_pending(await self.repo.get_join_request(group_id, payload.user_id))
		await self.repo.reject_join_request(group_id, payload.user_id)
		obs_metrics.inc_group_action("reject")
		return dto.ActionResponse(message="Join request rejected")

	async def ban_member(
		self,
		user: AuthenticatedUser,
		group_id: UUID,
		payload: dto.BanRequest,
	) -> dto.BanResponse:
		actor_id = parse_user_id(user.id)
		await self.auth.require_admin_or_owner(actor_id, group_id)
		policies.assert_can_remove(await self.repo.get_member(group_id, payload.user_id))
		ban = await self.repo.remove_member(
			group_id,
			payload.user_id,
			permanent=payload.permanent,
			banned_at=self.auth.now(),
		)
		action = "ban" if payload.permanent else "kick"
		obs_metrics.inc_group_action(action)
		logger.info("user %s removed from group %s by %s (%s)", payload.user_id, group_id, actor_id, action)
		await self._evict(group_id, payload.user_id, reason="banned")
		return dto.BanResponse(
			message="User banned from group" if ban.permanent else "User removed from group",
			user_id=ban.user_id,
			permanent=ban.permanent,
			created_at=ban.created_at,
		)

	async def promote_member(
		self,
		user: AuthenticatedUser,
		group_id: UUID,
		payload: dto.TargetUserRequest,
	) -> dto.ActionResponse:
		actor_id = parse_user_id(user.id)
		await self.auth.require_owner(group_id, actor_id)
		policies.assert_can_promote(await self.repo.get_member(group_id, payload.user_id))
		await self.repo.promote_member(group_id, payload.user_id)
		obs_metrics.inc_group_action("promote")
		return dto.ActionResponse(message="User promoted to admin")

	async def transfer_ownership(
		self,
		user: AuthenticatedUser,
		group_id: UUID,
		payload: dto.TargetUserRequest,
	) -> dto.GroupResponse:
		actor_id = parse_user_id(user.id)
		await self.auth.require_owner(group_id, actor_id)
		policies.assert_can_transfer(actor_id, await self.repo.get_member(group_id, payload.user_id))
		group = await self.repo.transfer_ownership(group_id, from_user_id=actor_id, to_user_id=payload.user_id)
		obs_metrics.inc_group_action("transfer")
		logger.info("ownership of group %s transferred from %s to %s", group_id, actor_id, payload.user_id)
		return self._group_to_response(group)

	# ------------------------------------------------------------------
	# Queries

	async def list_members(self, user: AuthenticatedUser, group_id: UUID) -> dto.MemberListResponse:
		user_id = parse_user_id(user.id)
		await self._require_group(group_id)
		await self.auth.require_member(user_id, group_id)
		members = await self.repo.list_members(group_id)
		return dto.MemberListResponse(
			items=[
				dto.MemberResponse(
					user_id=member.user_id,
					role=member.role,
					joined_at=member.joined_at,
					user=dto.UserSummaryResponse(**member.user.model_dump()),
				)
				for member in members
			]
		)

	async def list_join_requests(self, user: AuthenticatedUser, group_id: UUID) -> dto.JoinRequestListResponse:
		user_id = parse_user_id(user.id)
		await self._require_group(group_id)
		await self.auth.require_admin_or_owner(user_id, group_id)
		requests = await self.repo.list_pending_join_requests(group_id)
		return dto.JoinRequestListResponse(
			items=[
				dto.JoinRequestResponse(
					user_id=request.user_id,
					status=request.status,
					created_at=request.created_at,
					user=dto.UserSummaryResponse(**request.user.model_dump()),
				)
				for request in requests
			]
		)
