import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
TESTS_ROOT = Path(__file__).resolve().parent
for path in (BACKEND_ROOT, TESTS_ROOT):
	if str(path) not in sys.path:
		sys.path.insert(0, str(path))

# Required settings must exist before grouptalk.settings is imported
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-enough-entropy-0123456789")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-secret")
os.environ.setdefault("LOCKOUT_HOURS", "48")

from fakes import FrozenClock, InMemoryGroupsRepository
from grouptalk.groups.api.deps import get_groups_service, get_messages_service
from grouptalk.groups.domain.messages_service import MessagesService
from grouptalk.groups.domain.services import GroupsService
from grouptalk.groups.sockets.dispatcher import BroadcastDispatcher
from grouptalk.groups.sockets.registry import ConnectionRegistry
from grouptalk.infra import postgres
from grouptalk.infra.auth import AuthenticatedUser
from grouptalk.infra.crypto import MessageCipher
from grouptalk.main import app
from grouptalk.settings import settings


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""API tests authenticate via X-User-Id, which is only accepted in dev mode."""
	original_env = settings.environment
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.environment = original_env


@pytest.fixture
def clock():
	return FrozenClock()


@pytest.fixture
def repo(clock):
	return InMemoryGroupsRepository(clock=clock)


@pytest.fixture
def cipher():
	return MessageCipher("test-encryption-secret")


@pytest.fixture
def registry():
	return ConnectionRegistry()


@pytest.fixture
def dispatcher(registry, cipher):
	return BroadcastDispatcher(registry, cipher)


@pytest.fixture
def groups_service(repo, cipher, dispatcher, clock):
	return GroupsService(repo, cipher=cipher, dispatcher=dispatcher, lockout_hours=48, clock=clock)


@pytest.fixture
def messages_service(repo, cipher, dispatcher):
	return MessagesService(repo, cipher=cipher, dispatcher=dispatcher, default_limit=20, max_limit=100)


@pytest.fixture
def as_user():
	def _build(user_id) -> AuthenticatedUser:
		return AuthenticatedUser(id=str(user_id))

	return _build


@pytest_asyncio.fixture
async def api_client(groups_service, messages_service):
	app.dependency_overrides[get_groups_service] = lambda: groups_service
	app.dependency_overrides[get_messages_service] = lambda: messages_service
	transport = ASGITransport(app=app)
	try:
		async with AsyncClient(transport=transport, base_url="http://testserver") as client:
			yield client
	finally:
		app.dependency_overrides.clear()
