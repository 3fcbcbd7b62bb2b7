"""Message history and posting routes."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends

from grouptalk.groups.api.deps import get_messages_service
from grouptalk.groups.domain.messages_service import MessagesService
from grouptalk.groups.schemas import dto
from grouptalk.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["groups:messages"])


@router.get("/groups/{group_id}/messages", response_model=dto.MessagePageResponse)
async def list_messages_endpoint(
	group_id: UUID,
	cursor: Optional[UUID] = None,
	limit: Optional[int] = None,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagesService = Depends(get_messages_service),
) -> dto.MessagePageResponse:
	return await service.list_messages(auth_user, group_id, cursor=cursor, limit=limit)


@router.post("/groups/{group_id}/messages", response_model=dto.MessageResponse, status_code=201)
async def post_message_endpoint(
	group_id: UUID,
	payload: dto.MessageCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagesService = Depends(get_messages_service),
) -> dto.MessageResponse:
	return await service.post_message(auth_user, group_id, payload.content)
