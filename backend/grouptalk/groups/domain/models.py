"""Domain models for groups, memberships, bans, join requests and messages."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class GroupType(str, Enum):
	PUBLIC = "PUBLIC"
	PRIVATE = "PRIVATE"


class GroupRole(str, Enum):
	OWNER = "OWNER"
	ADMIN = "ADMIN"
	MEMBER = "MEMBER"


class JoinRequestStatus(str, Enum):
	PENDING = "PENDING"
	APPROVED = "APPROVED"
	REJECTED = "REJECTED"


class Group(BaseModel):
	"""Represents a chat group."""

	id: UUID
	name: str
	type: GroupType
	max_members: int
	owner_id: UUID
	created_at: datetime
	updated_at: datetime

	model_config = ConfigDict(from_attributes=True)


class Membership(BaseModel):
	"""A user's current role within a group."""

	group_id: UUID
	user_id: UUID
	role: GroupRole
	joined_at: datetime

	model_config = ConfigDict(from_attributes=True)


class Ban(BaseModel):
	"""Blocks a user from (re)joining, either as a cooldown or permanently."""

	group_id: UUID
	user_id: UUID
	permanent: bool
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)


class JoinRequest(BaseModel):
	"""Request to join a private group."""

	group_id: UUID
	user_id: UUID
	status: JoinRequestStatus
	created_at: datetime
	updated_at: datetime

	model_config = ConfigDict(from_attributes=True)


class UserSummary(BaseModel):
	id: UUID
	first_name: str
	last_name: str
	email: Optional[str] = None

	model_config = ConfigDict(from_attributes=True)


class MemberWithUser(Membership):
	user: UserSummary


class JoinRequestWithUser(JoinRequest):
	user: UserSummary


class Message(BaseModel):
	"""Stored message; ``content`` is the sealed (encrypted) form."""

	id: UUID
	group_id: UUID
	sender_id: UUID
	content: str
	created_at: datetime
	sender: Optional[UserSummary] = None

	model_config = ConfigDict(from_attributes=True)


class GroupOverview(Group):
	"""Group row with its newest sealed message, for listings."""

	last_message_content: Optional[str] = None
	last_message_at: Optional[datetime] = None
