"""FastAPI dependencies resolving the process-wide group services."""

from __future__ import annotations

from fastapi import Request

from grouptalk.groups.domain.messages_service import MessagesService
from grouptalk.groups.domain.services import GroupsService


def get_groups_service(request: Request) -> GroupsService:
	return request.app.state.groups_service


def get_messages_service(request: Request) -> MessagesService:
	return request.app.state.messages_service
