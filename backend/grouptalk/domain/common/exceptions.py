"""Domain error taxonomy shared by every grouptalk service.

Services raise these; only the transport boundaries (HTTP error handlers and
the Socket.IO namespace) decide how a kind is rendered.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
	UNAUTHORIZED = "unauthorized"
	FORBIDDEN = "forbidden"
	CONFLICT = "conflict"
	NOT_FOUND = "not_found"
	BAD_REQUEST = "bad_request"
	CORRUPT_DATA = "corrupt_data"


class DomainError(Exception):
	"""Base class for domain errors carrying a kind, a code and a payload."""

	kind: ErrorKind = ErrorKind.BAD_REQUEST
	detail: str = "bad_request"

	def __init__(self, detail: str | None = None, **payload: Any) -> None:
		super().__init__(detail or self.detail)
		if detail:
			self.detail = detail
		self.payload: dict[str, Any] = payload

	def to_dict(self) -> dict[str, Any]:
		body: dict[str, Any] = {"detail": self.detail}
		for key, value in self.payload.items():
			body[key] = value.isoformat() if hasattr(value, "isoformat") else value
		return body


class UnauthorizedError(DomainError):
	"""Missing, malformed or expired credentials."""

	kind = ErrorKind.UNAUTHORIZED
	detail = "invalid_token"


class ForbiddenError(DomainError):
	"""Authenticated but not permitted (wrong role, banned)."""

	kind = ErrorKind.FORBIDDEN
	detail = "forbidden"


class ConflictError(DomainError):
	"""Duplicate membership or request, or a lost concurrent write."""

	kind = ErrorKind.CONFLICT
	detail = "conflict"


class NotFoundError(DomainError):
	"""Missing group, request, member or cursor."""

	kind = ErrorKind.NOT_FOUND
	detail = "not_found"


class BadRequestError(DomainError):
	"""The request would violate a lifecycle invariant."""

	kind = ErrorKind.BAD_REQUEST
	detail = "bad_request"


class CorruptDataError(DomainError):
	"""Stored content could not be decrypted."""

	kind = ErrorKind.CORRUPT_DATA
	detail = "corrupt_data"
