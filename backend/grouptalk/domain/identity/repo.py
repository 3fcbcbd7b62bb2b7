"""User persistence backed by asyncpg."""

from __future__ import annotations

from typing import Optional
from uuid import uuid4

import asyncpg

from grouptalk.domain.common.exceptions import ConflictError
from grouptalk.domain.identity import models
from grouptalk.infra.postgres import get_pool


class UsersRepository:
	async def get_by_email(self, email: str) -> Optional[models.User]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			row = await conn.fetchrow("SELECT * FROM users WHERE LOWER(email) = $1", email)
		return models.User.from_record(row) if row else None

	async def create(
		self,
		*,
		email: str,
		password_hash: str,
		first_name: str,
		last_name: str,
	) -> models.User:
		pool = await get_pool()
		async with pool.acquire() as conn:
			try:
				row = await conn.fetchrow(
					"""
					INSERT INTO users (id, email, password_hash, first_name, last_name)
					VALUES ($1, $2, $3, $4, $5)
					RETURNING *
					""",
					uuid4(),
					email,
					password_hash,
					first_name,
					last_name,
				)
			except asyncpg.UniqueViolationError as exc:  # type: ignore[attr-defined]
				raise ConflictError("email_registered") from exc
		return models.User.from_record(row)
