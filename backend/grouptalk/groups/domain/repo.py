"""Async repository helpers for the groups domain.

Every multi-entity mutation runs in one transaction, and every guarded
mutation is a conditional write, so a losing concurrent writer surfaces as a
domain error instead of a double effect.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator
from uuid import UUID, uuid4

import asyncpg

from grouptalk.domain.common.exceptions import (
	BadRequestError,
	ConflictError,
	ForbiddenError,
	NotFoundError,
)
from grouptalk.groups.domain import models
from grouptalk.infra.postgres import get_pool


@contextmanager
def storage_errors() -> Iterator[None]:
	"""Translate asyncpg constraint violations into domain errors."""
	try:
		yield
	except asyncpg.UniqueViolationError as exc:  # type: ignore[attr-defined]
		raise ConflictError("duplicate_record") from exc
	except asyncpg.ForeignKeyViolationError as exc:  # type: ignore[attr-defined]
		raise NotFoundError("related_record_not_found") from exc


def _sender(row: asyncpg.Record) -> models.UserSummary | None:
	if row["sender_user_id"] is None:
		return None
	return models.UserSummary(
		id=row["sender_user_id"],
		first_name=row["sender_first_name"],
		last_name=row["sender_last_name"],
	)


def _message_from_row(row: asyncpg.Record) -> models.Message:
	return models.Message(
		id=row["id"],
		group_id=row["group_id"],
		sender_id=row["sender_id"],
		content=row["content"],
		created_at=row["created_at"],
		sender=_sender(row),
	)


_MESSAGE_COLUMNS = """
	m.id, m.group_id, m.sender_id, m.content, m.created_at,
	u.id AS sender_user_id, u.first_name AS sender_first_name, u.last_name AS sender_last_name
"""


class GroupsRepository:
	"""Thin data-access layer around asyncpg."""

	# --- Groups -------------------------------------------------------------

	async def create_group(
		self,
		*,
		name: str,
		type: models.GroupType,
		max_members: int,
		owner_id: UUID,
	) -> models.Group:
		pool = await get_pool()
		async with pool.acquire() as conn:
			with storage_errors():
				async with conn.transaction():
					record = await conn.fetchrow(
						"""
						INSERT INTO group_entity (id, name, type, max_members, owner_id)
						VALUES ($1, $2, $3, $4, $5)
						RETURNING *
						""",
						uuid4(),
						name,
						type.value,
						max_members,
						owner_id,
					)
					await conn.execute(
						"""
						INSERT INTO group_member (group_id, user_id, role)
						VALUES ($1, $2, 'OWNER')
						""",
						record["id"],
						owner_id,
					)
		return models.Group.model_validate(dict(record))

	async def get_group(self, group_id: UUID) -> models.Group | None:
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow("SELECT * FROM group_entity WHERE id=$1", group_id)
		return models.Group.model_validate(dict(record)) if record else None

	async def list_groups(
		self,
		*,
		viewer_id: UUID,
		include_all: bool = False,
		limit: int,
		offset: int = 0,
	) -> list[models.GroupOverview]:
		"""Newest groups first; the newest message is only read for groups ``viewer_id`` belongs to."""
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT g.*, lm.content AS last_message_content, lm.created_at AS last_message_at
				FROM group_entity g
				CROSS JOIN LATERAL (
					SELECT EXISTS (
						SELECT 1 FROM group_member gm WHERE gm.group_id = g.id AND gm.user_id = $1
					) AS is_member
				) vm
				LEFT JOIN LATERAL (
					SELECT m.content, m.created_at
					FROM group_message m
					WHERE m.group_id = g.id AND vm.is_member
					ORDER BY m.created_at DESC, m.id DESC
					LIMIT 1
				) lm ON TRUE
				WHERE vm.is_member OR $2::boolean
				ORDER BY g.created_at DESC, g.id DESC
				LIMIT $3 OFFSET $4
				""",
				viewer_id,
				include_all,
				limit,
				offset,
			)
		return [models.GroupOverview.model_validate(dict(row)) for row in rows]

	async def delete_group(self, group_id: UUID, *, owner_id: UUID) -> None:
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				group = await conn.fetchrow(
					"SELECT owner_id FROM group_entity WHERE id=$1 FOR UPDATE",
					group_id,
				)
				if group is None:
					raise NotFoundError("group_not_found")
				if group["owner_id"] != owner_id:
					raise ForbiddenError("owner_required")
				member_count = await conn.fetchval(
					"SELECT COUNT(*) FROM group_member WHERE group_id=$1",
					group_id,
				)
				if member_count > 1:
					raise BadRequestError("group_has_members")
				await conn.execute("DELETE FROM group_entity WHERE id=$1", group_id)

	async def transfer_ownership(
		self,
		group_id: UUID,
		*,
		from_user_id: UUID,
		to_user_id: UUID,
	) -> models.Group:
		pool = await get_pool()
		async with pool.acquire() as conn:
			with storage_errors():
				async with conn.transaction():
					record = await conn.fetchrow(
						"""
						UPDATE group_entity
						SET owner_id=$3, updated_at=NOW()
						WHERE id=$1 AND owner_id=$2
						RETURNING *
						""",
						group_id,
						from_user_id,
						to_user_id,
					)
					if record is None:
						raise ForbiddenError("owner_required")
					# Demote first: the single-owner index is checked per statement.
					demoted = await conn.fetchrow(
						"""
						UPDATE group_member SET role='ADMIN'
						WHERE group_id=$1 AND user_id=$2 AND role='OWNER'
						RETURNING user_id
						""",
						group_id,
						from_user_id,
					)
					if demoted is None:
						raise ConflictError("member_state_changed")
					promoted = await conn.fetchrow(
						"""
						UPDATE group_member SET role='OWNER'
						WHERE group_id=$1 AND user_id=$2
						RETURNING user_id
						""",
						group_id,
						to_user_id,
					)
					if promoted is None:
						raise NotFoundError("member_not_found")
		return models.Group.model_validate(dict(record))

	# --- Memberships --------------------------------------------------------

	async def get_member(self, group_id: UUID, user_id: UUID) -> models.Membership | None:
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow(
				"SELECT * FROM group_member WHERE group_id=$1 AND user_id=$2",
				group_id,
				user_id,
			)
		return models.Membership.model_validate(dict(record)) if record else None

	async def count_members(self, group_id: UUID) -> int:
		pool = await get_pool()
		async with pool.acquire() as conn:
			return int(await conn.fetchval("SELECT COUNT(*) FROM group_member WHERE group_id=$1", group_id))

	async def list_members(self, group_id: UUID) -> list[models.MemberWithUser]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT gm.*, u.id AS user_id_ref, u.email AS user_email,
					u.first_name AS user_first_name, u.last_name AS user_last_name
				FROM group_member gm
				JOIN users u ON u.id = gm.user_id
				WHERE gm.group_id=$1
				ORDER BY gm.joined_at ASC
				""",
				group_id,
			)
		return [
			models.MemberWithUser(
				group_id=row["group_id"],
				user_id=row["user_id"],
				role=row["role"],
				joined_at=row["joined_at"],
				user=models.UserSummary(
					id=row["user_id_ref"],
					email=row["user_email"],
					first_name=row["user_first_name"],
					last_name=row["user_last_name"],
				),
			)
			for row in rows
		]

	async def admit_member(
		self,
		group_id: UUID,
		user_id: UUID,
		*,
		stale_ban_before: datetime | None = None,
	) -> models.Membership:
		"""Insert a MEMBER row for a public join, re-checking bans and capacity."""
		pool = await get_pool()
		async with pool.acquire() as conn:
			with storage_errors():
				async with conn.transaction():
					max_members = await self._lock_group(conn, group_id)
					if stale_ban_before is not None:
						await self._clear_stale_ban(conn, group_id, user_id, stale_ban_before)
					await self._ensure_not_banned(conn, group_id, user_id)
					await self._ensure_capacity(conn, group_id, max_members)
					record = await self._insert_member(conn, group_id, user_id)
		return models.Membership.model_validate(dict(record))

	async def remove_member(
		self,
		group_id: UUID,
		user_id: UUID,
		*,
		permanent: bool,
		banned_at: datetime,
	) -> models.Ban:
		"""Delete a non-owner membership and upsert its ban in one transaction."""
		pool = await get_pool()
		async with pool.acquire() as conn:
			with storage_errors():
				async with conn.transaction():
					deleted = await conn.fetchrow(
						"""
						DELETE FROM group_member
						WHERE group_id=$1 AND user_id=$2 AND role <> 'OWNER'
						RETURNING user_id
						""",
						group_id,
						user_id,
					)
					if deleted is None:
						still_there = await conn.fetchval(
							"SELECT 1 FROM group_member WHERE group_id=$1 AND user_id=$2",
							group_id,
							user_id,
						)
						if still_there:
							raise ConflictError("member_state_changed")
						raise NotFoundError("member_not_found")
					record = await conn.fetchrow(
						"""
						INSERT INTO group_ban (group_id, user_id, permanent, created_at)
						VALUES ($1, $2, $3, $4)
						ON CONFLICT (group_id, user_id)
						DO UPDATE SET permanent=EXCLUDED.permanent, created_at=EXCLUDED.created_at
						RETURNING *
						""",
						group_id,
						user_id,
						permanent,
						banned_at,
					)
		return models.Ban.model_validate(dict(record))

	async def promote_member(self, group_id: UUID, user_id: UUID) -> models.Membership:
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow(
				"""
				UPDATE group_member SET role='ADMIN'
				WHERE group_id=$1 AND user_id=$2 AND role='MEMBER'
				RETURNING *
				""",
				group_id,
				user_id,
			)
			if record is None:
				exists = await conn.fetchval(
					"SELECT 1 FROM group_member WHERE group_id=$1 AND user_id=$2",
					group_id,
					user_id,
				)
				if exists:
					raise BadRequestError("already_admin_or_owner")
				raise NotFoundError("member_not_found")
		return models.Membership.model_validate(dict(record))

	# --- Bans ---------------------------------------------------------------

	async def get_ban(self, group_id: UUID, user_id: UUID) -> models.Ban | None:
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow(
				"SELECT * FROM group_ban WHERE group_id=$1 AND user_id=$2",
				group_id,
				user_id,
			)
		return models.Ban.model_validate(dict(record)) if record else None

	# --- Join requests ------------------------------------------------------

	async def get_join_request(self, group_id: UUID, user_id: UUID) -> models.JoinRequest | None:
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow(
				"SELECT * FROM group_join_request WHERE group_id=$1 AND user_id=$2",
				group_id,
				user_id,
			)
		return models.JoinRequest.model_validate(dict(record)) if record else None

	async def list_pending_join_requests(self, group_id: UUID) -> list[models.JoinRequestWithUser]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT jr.*, u.email AS user_email,
					u.first_name AS user_first_name, u.last_name AS user_last_name
				FROM group_join_request jr
				JOIN users u ON u.id = jr.user_id
				WHERE jr.group_id=$1 AND jr.status='PENDING'
				ORDER BY jr.created_at ASC
				""",
				group_id,
			)
		return [
			models.JoinRequestWithUser(
				group_id=row["group_id"],
				user_id=row["user_id"],
				status=row["status"],
				created_at=row["created_at"],
				updated_at=row["updated_at"],
				user=models.UserSummary(
					id=row["user_id"],
					email=row["user_email"],
					first_name=row["user_first_name"],
					last_name=row["user_last_name"],
				),
			)
			for row in rows
		]

	async def submit_join_request(
		self,
		group_id: UUID,
		user_id: UUID,
		*,
		stale_ban_before: datetime | None = None,
	) -> models.JoinRequest:
		"""Upsert a PENDING request; an already pending one is a conflict."""
		pool = await get_pool()
		async with pool.acquire() as conn:
			with storage_errors():
				async with conn.transaction():
					await self._lock_group(conn, group_id)
					if stale_ban_before is not None:
						await self._clear_stale_ban(conn, group_id, user_id, stale_ban_before)
					await self._ensure_not_banned(conn, group_id, user_id)
					is_member = await conn.fetchval(
						"SELECT 1 FROM group_member WHERE group_id=$1 AND user_id=$2",
						group_id,
						user_id,
					)
					if is_member:
						raise ConflictError("already_member")
					record = await conn.fetchrow(
						"""
						INSERT INTO group_join_request (group_id, user_id, status)
						VALUES ($1, $2, 'PENDING')
						ON CONFLICT (group_id, user_id)
						DO UPDATE SET status='PENDING', updated_at=NOW()
						WHERE group_join_request.status <> 'PENDING'
						RETURNING *
						""",
						group_id,
						user_id,
					)
					if record is None:
						raise ConflictError("join_request_pending")
		return models.JoinRequest.model_validate(dict(record))

	async def approve_join_request(self, group_id: UUID, user_id: UUID) -> models.Membership:
		"""Flip PENDING to APPROVED and create the membership atomically."""
		pool = await get_pool()
		async with pool.acquire() as conn:
			with storage_errors():
				async with conn.transaction():
					max_members = await self._lock_group(conn, group_id)
					approved = await conn.fetchrow(
						"""
						UPDATE group_join_request SET status='APPROVED', updated_at=NOW()
						WHERE group_id=$1 AND user_id=$2 AND status='PENDING'
						RETURNING user_id
						""",
						group_id,
						user_id,
					)
					if approved is None:
						raise NotFoundError("join_request_not_found")
					await self._ensure_capacity(conn, group_id, max_members)
					record = await self._insert_member(conn, group_id, user_id)
		return models.Membership.model_validate(dict(record))

	async def reject_join_request(self, group_id: UUID, user_id: UUID) -> models.JoinRequest:
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow(
				"""
				UPDATE group_join_request SET status='REJECTED', updated_at=NOW()
				WHERE group_id=$1 AND user_id=$2 AND status='PENDING'
				RETURNING *
				""",
				group_id,
				user_id,
			)
		if record is None:
			raise NotFoundError("join_request_not_found")
		return models.JoinRequest.model_validate(dict(record))

	# --- Messages -----------------------------------------------------------

	async def create_message(self, group_id: UUID, sender_id: UUID, content: str) -> models.Message:
		"""Append a sealed message; the insert only happens for a current member."""
		pool = await get_pool()
		async with pool.acquire() as conn:
			with storage_errors():
				record = await conn.fetchrow(
					"""
					WITH inserted AS (
						INSERT INTO group_message (id, group_id, sender_id, content)
						SELECT $1::uuid, $2::uuid, $3::uuid, $4::text
						WHERE EXISTS (
							SELECT 1 FROM group_member WHERE group_id=$2::uuid AND user_id=$3::uuid
						)
						RETURNING *
					)
					SELECT i.*, u.id AS sender_user_id, u.first_name AS sender_first_name,
						u.last_name AS sender_last_name
					FROM inserted i
					LEFT JOIN users u ON u.id = i.sender_id
					""",
					uuid4(),
					group_id,
					sender_id,
					content,
				)
		if record is None:
			raise ForbiddenError("membership_required")
		return _message_from_row(record)

	async def list_messages(
		self,
		group_id: UUID,
		*,
		limit: int,
		after: UUID | None = None,
	) -> list[models.Message]:
		"""Newest first, starting strictly after the ``after`` message."""
		pool = await get_pool()
		async with pool.acquire() as conn:
			params: list[object] = [group_id]
			conditions = ["m.group_id=$1"]
			if after is not None:
				anchor = await conn.fetchrow(
					"SELECT created_at, id FROM group_message WHERE id=$1 AND group_id=$2",
					after,
					group_id,
				)
				if anchor is None:
					raise NotFoundError("cursor_not_found")
				params.extend([anchor["created_at"], anchor["id"]])
				conditions.append("(m.created_at, m.id) < ($2, $3)")
			params.append(limit)
			query = f"""
				SELECT {_MESSAGE_COLUMNS}
				FROM group_message m
				LEFT JOIN users u ON u.id = m.sender_id
				WHERE {' AND '.join(conditions)}
				ORDER BY m.created_at DESC, m.id DESC
				LIMIT ${len(params)}
			"""
			rows = await conn.fetch(query, *params)
		return [_message_from_row(row) for row in rows]

	async def count_messages(self, group_id: UUID) -> int:
		pool = await get_pool()
		async with pool.acquire() as conn:
			return int(await conn.fetchval("SELECT COUNT(*) FROM group_message WHERE group_id=$1", group_id))

	async def get_user_summary(self, user_id: UUID) -> models.UserSummary | None:
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow(
				"SELECT id, email, first_name, last_name FROM users WHERE id=$1",
				user_id,
			)
		return models.UserSummary.model_validate(dict(record)) if record else None

	# --- Transaction helpers ------------------------------------------------

	@staticmethod
	async def _lock_group(conn: asyncpg.Connection, group_id: UUID) -> int:
		max_members = await conn.fetchval(
			"SELECT max_members FROM group_entity WHERE id=$1 FOR UPDATE",
			group_id,
		)
		if max_members is None:
			raise NotFoundError("group_not_found")
		return int(max_members)

	@staticmethod
	async def _clear_stale_ban(
		conn: asyncpg.Connection,
		group_id: UUID,
		user_id: UUID,
		cutoff: datetime,
	) -> None:
		await conn.execute(
			"""
			DELETE FROM group_ban
			WHERE group_id=$1 AND user_id=$2 AND permanent = FALSE AND created_at <= $3
			""",
			group_id,
			user_id,
			cutoff,
		)

	@staticmethod
	async def _ensure_not_banned(conn: asyncpg.Connection, group_id: UUID, user_id: UUID) -> None:
		banned = await conn.fetchval(
			"SELECT 1 FROM group_ban WHERE group_id=$1 AND user_id=$2",
			group_id,
			user_id,
		)
		if banned:
			raise ForbiddenError("banned")

	@staticmethod
	async def _ensure_capacity(conn: asyncpg.Connection, group_id: UUID, max_members: int) -> None:
		count = await conn.fetchval("SELECT COUNT(*) FROM group_member WHERE group_id=$1", group_id)
		if count >= max_members:
			raise ConflictError("group_full")

	@staticmethod
	async def _insert_member(conn: asyncpg.Connection, group_id: UUID, user_id: UUID) -> asyncpg.Record:
		record = await conn.fetchrow(
			"""
			INSERT INTO group_member (group_id, user_id, role)
			VALUES ($1, $2, 'MEMBER')
			ON CONFLICT (group_id, user_id) DO NOTHING
			RETURNING *
			""",
			group_id,
			user_id,
		)
		if record is None:
			raise ConflictError("already_member")
		return record
