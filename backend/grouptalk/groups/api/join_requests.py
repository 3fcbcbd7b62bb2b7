"""Join request review routes for private groups."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from grouptalk.groups.api.deps import get_groups_service
from grouptalk.groups.domain.services import GroupsService
from grouptalk.groups.schemas import dto
from grouptalk.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["groups:join-requests"])


@router.get("/groups/{group_id}/requests", response_model=dto.JoinRequestListResponse)
async def list_join_requests_endpoint(
	group_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GroupsService = Depends(get_groups_service),
) -> dto.JoinRequestListResponse:
	return await service.list_join_requests(auth_user, group_id)


@router.post("/groups/{group_id}/approve", response_model=dto.ActionResponse)
async def approve_join_request_endpoint(
	group_id: UUID,
	payload: dto.TargetUserRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GroupsService = Depends(get_groups_service),
) -> dto.ActionResponse:
	return await service.approve_join_request(auth_user, group_id, payload)


@router.post("/groups/{group_id}/reject", response_model=dto.ActionResponse)
async def reject_join_request_endpoint(
	group_id: UUID,
	payload: dto.TargetUserRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GroupsService = Depends(get_groups_service),
) -> dto.ActionResponse:
	return await service.reject_join_request(auth_user, group_id, payload)
