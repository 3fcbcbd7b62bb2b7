"""Identity domain models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping
from uuid import UUID

RecordLike = Mapping[str, Any]


@dataclass(slots=True)
class User:
	"""Core user record."""

	id: UUID
	email: str
	first_name: str
	last_name: str
	password_hash: str
	created_at: datetime

	@classmethod
	def from_record(cls, record: RecordLike) -> "User":
		return cls(
			id=record["id"],
			email=str(record["email"]),
			first_name=str(record.get("first_name") or ""),
			last_name=str(record.get("last_name") or ""),
			password_hash=str(record.get("password_hash") or ""),
			created_at=record["created_at"],
		)
