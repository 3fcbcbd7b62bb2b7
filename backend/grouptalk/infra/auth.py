"""Authentication helpers shared by the HTTP and Socket.IO boundaries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from grouptalk.domain.common.exceptions import UnauthorizedError
from grouptalk.infra import jwt as jwt_helper
from grouptalk.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	email: Optional[str] = None


_bearer_scheme = HTTPBearer(auto_error=False)


def parse_user_id(value: str) -> UUID:
	"""Coerce a token subject or dev header into a user id."""
	try:
		return UUID(str(value))
	except (TypeError, ValueError) as exc:
		raise UnauthorizedError("invalid_subject") from exc


def verify_identity(token: str) -> AuthenticatedUser:
	"""Decode an access JWT into the caller identity.

	Every decode failure is normalised to ``UnauthorizedError("invalid_token")``.
	"""
	token = (token or "").strip()
	if not token:
		raise UnauthorizedError("missing_token")
	try:
		payload = jwt_helper.decode_access(token)
	except Exception as exc:
		raise UnauthorizedError("invalid_token") from exc
	sub = str(payload.get("sub") or "").strip()
	if not sub:
		raise UnauthorizedError("invalid_token")
	email = payload.get("email")
	return AuthenticatedUser(id=sub, email=str(email) if email is not None else None)


def bearer_token(value: Optional[str]) -> Optional[str]:
	"""Extract the token from an ``Authorization: Bearer`` header value."""
	if not value:
		return None
	scheme, _, token = value.partition(" ")
	if scheme.lower() != "bearer" or not token.strip():
		return None
	return token.strip()


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated user.

	In development a bare ``X-User-Id`` header is accepted for local tools. In
	all other environments a valid Bearer JWT is required.
	"""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_identity(credentials.credentials)

	if settings.is_dev() and x_user_id:
		return AuthenticatedUser(id=x_user_id)

	raise UnauthorizedError("invalid_token")
