"""Registration and login routes."""

from __future__ import annotations

from fastapi import APIRouter

from grouptalk.domain.identity import schemas, service

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=schemas.UserOut, status_code=201)
async def register_endpoint(payload: schemas.RegisterRequest) -> schemas.UserOut:
	return await service.register(payload)


@router.post("/login", response_model=schemas.LoginResponse)
async def login_endpoint(payload: schemas.LoginRequest) -> schemas.LoginResponse:
	return await service.login(payload)
