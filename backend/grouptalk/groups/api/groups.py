"""Group routes: create, list, inspect, delete, join and leave."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response

from grouptalk.groups.api.deps import get_groups_service
from grouptalk.groups.domain.services import GroupsService
from grouptalk.groups.schemas import dto
from grouptalk.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["groups"])


@router.post("/groups", response_model=dto.GroupResponse, status_code=201)
async def create_group_endpoint(
	payload: dto.GroupCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GroupsService = Depends(get_groups_service),
) -> dto.GroupResponse:
	return await service.create_group(auth_user, payload)


@router.get("/groups", response_model=dto.GroupListResponse)
async def list_groups_endpoint(
	limit: int = 20,
	offset: int = 0,
	include_all: bool = Query(default=False, alias="all"),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GroupsService = Depends(get_groups_service),
) -> dto.GroupListResponse:
	return await service.list_groups(auth_user, limit=limit, offset=offset, include_all=include_all)


@router.get("/groups/{group_id}", response_model=dto.GroupDetailResponse)
async def get_group_endpoint(
	group_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GroupsService = Depends(get_groups_service),
) -> dto.GroupDetailResponse:
	return await service.get_group(auth_user, group_id)


@router.delete(
	"/groups/{group_id}",
	status_code=204,
	response_class=Response,
	response_model=None,
)
async def delete_group_endpoint(
	group_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GroupsService = Depends(get_groups_service),
) -> None:
	await service.delete_group(auth_user, group_id)
	return None


@router.post("/groups/{group_id}/join", response_model=dto.JoinResponse)
async def join_group_endpoint(
	group_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GroupsService = Depends(get_groups_service),
) -> dto.JoinResponse:
	return await service.join_group(auth_user, group_id)


@router.post("/groups/{group_id}/leave", response_model=dto.ActionResponse)
async def leave_group_endpoint(
	group_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GroupsService = Depends(get_groups_service),
) -> dto.ActionResponse:
	return await service.leave_group(auth_user, group_id)


@router.post("/groups/{group_id}/transfer-ownership", response_model=dto.GroupResponse)
async def transfer_ownership_endpoint(
	group_id: UUID,
	payload: dto.TargetUserRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GroupsService = Depends(get_groups_service),
) -> dto.GroupResponse:
	return await service.transfer_ownership(auth_user, group_id, payload)
