"""Pydantic schemas for the groups API and socket payloads."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from grouptalk.groups.domain.models import GroupRole, GroupType, JoinRequestStatus


class GroupCreateRequest(BaseModel):
	name: str = Field(..., min_length=1, max_length=120)
	type: GroupType = GroupType.PUBLIC
	max_members: int = Field(default=50, ge=2, le=10_000)


class UserSummaryResponse(BaseModel):
	id: UUID
	first_name: str
	last_name: str
	email: Optional[str] = None


class SenderResponse(BaseModel):
	id: UUID
	first_name: str
	last_name: str


class LastMessageResponse(BaseModel):
	content: str
	created_at: datetime


class GroupResponse(BaseModel):
	id: UUID
	name: str
	type: GroupType
	max_members: int
	owner_id: UUID
	created_at: datetime
	updated_at: datetime


class GroupSummaryResponse(GroupResponse):
	last_message: Optional[LastMessageResponse] = None


class GroupListResponse(BaseModel):
	items: List[GroupSummaryResponse]
	limit: int
	offset: int


class GroupDetailResponse(GroupResponse):
	member_count: int
	role: Optional[GroupRole] = None


class TargetUserRequest(BaseModel):
	user_id: UUID


class BanRequest(TargetUserRequest):
	permanent: bool = False


class JoinResponse(BaseModel):
	status: Literal["joined", "pending"]
	message: str
	group_id: UUID


class ActionResponse(BaseModel):
	message: str


class BanResponse(BaseModel):
	message: str
	user_id: UUID
	permanent: bool
	created_at: datetime


class MemberResponse(BaseModel):
	user_id: UUID
	role: GroupRole
	joined_at: datetime
	user: UserSummaryResponse


class MemberListResponse(BaseModel):
	items: List[MemberResponse]


class JoinRequestResponse(BaseModel):
	user_id: UUID
	status: JoinRequestStatus
	created_at: datetime
	user: UserSummaryResponse


class JoinRequestListResponse(BaseModel):
	items: List[JoinRequestResponse]


class MessageCreateRequest(BaseModel):
	content: str = Field(..., min_length=1, max_length=4000)


class MessageResponse(BaseModel):
	id: UUID
	group_id: UUID
	sender: Optional[SenderResponse] = None
	content: str
	created_at: datetime


class MessagePageResponse(BaseModel):
	messages: List[MessageResponse]
	next_cursor: Optional[UUID] = None
	total_count: int


class InboundSocketMessage(BaseModel):
	"""Payload a client emits on the ``message`` socket event."""

	type: Literal["message"]
	content: str = Field(..., min_length=1, max_length=4000)
