"""Registration and login for the credential service."""

from __future__ import annotations

import logging
from typing import Optional

from grouptalk.domain.common.exceptions import ConflictError, UnauthorizedError
from grouptalk.domain.identity import models, policy, schemas
from grouptalk.domain.identity.repo import UsersRepository
from grouptalk.infra import jwt as jwt_helper
from grouptalk.infra.password import hash_password, verify_password
from grouptalk.obs import metrics as obs_metrics
from grouptalk.settings import settings

logger = logging.getLogger(__name__)

# Verified against when the email is unknown so both failure paths cost the same.
_DUMMY_HASH = hash_password("grouptalk-unknown-user")


def _user_out(user: models.User) -> schemas.UserOut:
	return schemas.UserOut(
		id=user.id,
		email=user.email,
		first_name=user.first_name,
		last_name=user.last_name,
	)


def issue_access_token(user: models.User) -> str:
	return jwt_helper.encode_access({"sub": str(user.id), "email": user.email})


async def register(
	payload: schemas.RegisterRequest,
	*,
	repository: Optional[UsersRepository] = None,
) -> schemas.UserOut:
	repo = repository or UsersRepository()
	email = policy.normalise_email(payload.email)
	if await repo.get_by_email(email) is not None:
		obs_metrics.inc_identity("register", "conflict")
		raise ConflictError("email_registered")
	try:
		user = await repo.create(
			email=email,
			password_hash=hash_password(payload.password),
			first_name=policy.normalise_name(payload.first_name),
			last_name=policy.normalise_name(payload.last_name),
		)
	except ConflictError:
		obs_metrics.inc_identity("register", "conflict")
		raise
	obs_metrics.inc_identity("register", "ok")
	logger.info("user %s registered", user.id)
	return _user_out(user)


async def login(
	payload: schemas.LoginRequest,
	*,
	repository: Optional[UsersRepository] = None,
) -> schemas.LoginResponse:
	repo = repository or UsersRepository()
	email = policy.normalise_email(payload.email)
	user = await repo.get_by_email(email)
	if user is None:
		verify_password(_DUMMY_HASH, payload.password)
		obs_metrics.inc_identity("login", "failed")
		# Same error for unknown email and wrong password
		raise UnauthorizedError("invalid_credentials")
	if not verify_password(user.password_hash, payload.password):
		obs_metrics.inc_identity("login", "failed")
		raise UnauthorizedError("invalid_credentials")
	obs_metrics.inc_identity("login", "ok")
	return schemas.LoginResponse(
		access_token=issue_access_token(user),
		expires_in=settings.access_ttl_minutes * 60,
		user=_user_out(user),
	)
