"""Membership-gated message log with reverse-chronological cursor pages."""

from __future__ import annotations

import contextlib
import logging
from typing import Optional
from uuid import UUID

from grouptalk.groups.domain import models, policies
from grouptalk.groups.domain.authorization import AuthorizationEngine
from grouptalk.groups.domain.repo import GroupsRepository
from grouptalk.groups.schemas import dto
from grouptalk.groups.sockets.dispatcher import BroadcastDispatcher
from grouptalk.infra.auth import AuthenticatedUser, parse_user_id
from grouptalk.infra.crypto import MessageCipher
from grouptalk.obs import metrics as obs_metrics
from grouptalk.settings import settings

logger = logging.getLogger(__name__)


class MessagesService:
	def __init__(
		self,
		repository: Optional[GroupsRepository] = None,
		*,
		cipher: MessageCipher,
		dispatcher: Optional[BroadcastDispatcher] = None,
		default_limit: Optional[int] = None,
		max_limit: Optional[int] = None,
	) -> None:
		self.repo = repository or GroupsRepository()
		self.auth = AuthorizationEngine(self.repo)
		self.cipher = cipher
		self.dispatcher = dispatcher
		self.default_limit = default_limit or settings.messages_default_limit
		self.max_limit = max_limit or settings.messages_max_limit

	@staticmethod
	def _to_response(message: models.Message, content: str) -> dto.MessageResponse:
		sender = None
		if message.sender is not None:
			sender = dto.SenderResponse(
				id=message.sender.id,
				first_name=message.sender.first_name,
				last_name=message.sender.last_name,
			)
		return dto.MessageResponse(
			id=message.id,
			group_id=message.group_id,
			sender=sender,
			content=content,
			created_at=message.created_at,
		)

	async def post_message(self, user: AuthenticatedUser, group_id: UUID, content: str) -> dto.MessageResponse:
		"""Persist ``content`` for a current member and fan it out.

		Persist and broadcast share a per-group lock so live clients see
		messages in the order they were stored.
		"""
		sender_id = parse_user_id(user.id)
		sealed = self.cipher.seal(content)
		lock = self.dispatcher.group_lock(group_id) if self.dispatcher else contextlib.nullcontext()
		async with lock:
			# The insert itself checks membership.
			message = await self.repo.create_message(group_id, sender_id, sealed)
			if message.sender is None:
				message.sender = await self.repo.get_user_summary(sender_id)
			obs_metrics.inc_message_posted()
			if self.dispatcher is not None:
				await self.dispatcher.broadcast(message)
		return self._to_response(message, content)

	async def list_messages(
		self,
		user: AuthenticatedUser,
		group_id: UUID,
		*,
		cursor: Optional[UUID] = None,
		limit: Optional[int] = None,
	) -> dto.MessagePageResponse:
		user_id = parse_user_id(user.id)
		await self.auth.require_member(user_id, group_id)
		page_size = policies.ensure_page_limit(
			self.default_limit if limit is None else limit,
			maximum=self.max_limit,
		)
		# One look-ahead row tells whether another page exists.
		rows = await self.repo.list_messages(group_id, limit=page_size + 1, after=cursor)
		page = rows[:page_size]
		next_cursor = page[-1].id if len(rows) > page_size else None
		total_count = await self.repo.count_messages(group_id)
		return dto.MessagePageResponse(
			messages=[self._to_response(message, self.cipher.open(message.content)) for message in page],
			next_cursor=next_cursor,
			total_count=total_count,
		)
