"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from grouptalk.api import auth, ops
from grouptalk.api.errors import install_error_handlers
from grouptalk.api.middleware_request_id import RequestIdMiddleware
from grouptalk.groups.api import router as groups_router
from grouptalk.groups.domain.authorization import AuthorizationEngine
from grouptalk.groups.domain.messages_service import MessagesService
from grouptalk.groups.domain.repo import GroupsRepository
from grouptalk.groups.domain.services import GroupsService
from grouptalk.groups.infra import socketio as groups_socketio
from grouptalk.groups.sockets.dispatcher import BroadcastDispatcher
from grouptalk.groups.sockets.registry import ConnectionRegistry
from grouptalk.infra import postgres
from grouptalk.infra.crypto import MessageCipher
from grouptalk.obs import init as obs_init
from grouptalk.settings import settings

logger = logging.getLogger(__name__)

# Process-scoped collaborators, created once and injected everywhere.
registry = ConnectionRegistry()
cipher = MessageCipher(settings.encryption_key)
dispatcher = BroadcastDispatcher(registry, cipher)
groups_repository = GroupsRepository()
authorization = AuthorizationEngine(groups_repository)
groups_service = GroupsService(groups_repository, cipher=cipher, dispatcher=dispatcher)
messages_service = MessagesService(groups_repository, cipher=cipher, dispatcher=dispatcher)


@asynccontextmanager
async def lifespan(app: FastAPI):
	pool = await postgres.init_pool()
	if settings.postgres_apply_schema and pool is not None:
		await postgres.apply_schema(pool)
		logger.info("database schema applied")
	try:
		yield
	finally:
		await dispatcher.shutdown()
		await postgres.close_pool()


app = FastAPI(title="grouptalk", lifespan=lifespan)
app.state.registry = registry
app.state.dispatcher = dispatcher
app.state.groups_service = groups_service
app.state.messages_service = messages_service

allow_origins = list(settings.cors_allow_origins)
if not allow_origins and settings.is_dev():
	allow_origins = [
		"http://localhost:3000",
		"http://127.0.0.1:3000",
		"http://localhost:5173",
		"http://127.0.0.1:5173",
	]

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

obs_init(app)
# Ensure every request carries an X-Request-Id and make it available on request.state
app.add_middleware(RequestIdMiddleware)
install_error_handlers(app)

app.include_router(auth.router, tags=["identity"])
app.include_router(groups_router)
app.include_router(ops.router)

server_options = {}
if settings.socket_ping_timeout_seconds:
	server_options["ping_timeout"] = settings.socket_ping_timeout_seconds

# Use the same allowed origins for Socket.IO as for the REST API
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins, **server_options)
groups_namespace = groups_socketio.register(
	sio,
	registry=registry,
	messages_service=messages_service,
	authorization=authorization,
)
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
