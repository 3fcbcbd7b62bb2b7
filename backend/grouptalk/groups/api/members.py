"""Member routes: listing and moderation."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from grouptalk.groups.api.deps import get_groups_service
from grouptalk.groups.domain.services import GroupsService
from grouptalk.groups.schemas import dto
from grouptalk.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["groups:members"])


@router.get("/groups/{group_id}/members", response_model=dto.MemberListResponse)
async def list_members_endpoint(
	group_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GroupsService = Depends(get_groups_service),
) -> dto.MemberListResponse:
	return await service.list_members(auth_user, group_id)


@router.post("/groups/{group_id}/ban", response_model=dto.BanResponse)
async def ban_member_endpoint(
	group_id: UUID,
	payload: dto.BanRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GroupsService = Depends(get_groups_service),
) -> dto.BanResponse:
	return await service.ban_member(auth_user, group_id, payload)


@router.post("/groups/{group_id}/promote", response_model=dto.ActionResponse)
async def promote_member_endpoint(
	group_id: UUID,
	payload: dto.TargetUserRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GroupsService = Depends(get_groups_service),
) -> dto.ActionResponse:
	return await service.promote_member(auth_user, group_id, payload)
