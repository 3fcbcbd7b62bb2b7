"""Pydantic schemas for registration and login."""

from __future__ import annotations

from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from grouptalk.domain.identity.policy import NAME_MAX_LEN, PASSWORD_MIN_LEN


class RegisterRequest(BaseModel):
	email: EmailStr
	password: Annotated[str, Field(min_length=PASSWORD_MIN_LEN, max_length=256)]
	first_name: Annotated[str, Field(min_length=1, max_length=NAME_MAX_LEN)]
	last_name: Annotated[str, Field(min_length=1, max_length=NAME_MAX_LEN)]


class UserOut(BaseModel):
	id: UUID
	email: str
	first_name: str
	last_name: str


class LoginRequest(BaseModel):
	email: EmailStr
	password: str


class LoginResponse(BaseModel):
	access_token: str
	token_type: Literal["bearer"] = "bearer"
	expires_in: int
	user: UserOut
