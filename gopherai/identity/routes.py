from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from gopherai.common.error_envelope import error_response
from gopherai.identity.service import EmailExists, InvalidCredentials, UsernameExhausted
from gopherai.services import get_services

router = APIRouter(prefix="/api/v1/user", tags=["user"])


class Credentials(BaseModel):
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=6, max_length=128)


class TokenResponse(BaseModel):
    token: str
    username: str


@router.post("/register", response_model=TokenResponse)
async def register(payload: Credentials, request: Request):
    users = get_services(request).users
    try:
        result = await users.register(payload.email, payload.password)
    except EmailExists:
        error_response("auth.email_exists", "email already registered", status_code=409, resource_kind="user")
    except UsernameExhausted:
        error_response("auth.server_busy", "could not allocate a username, try again", status_code=503)
    return TokenResponse(token=result.token, username=result.username)


@router.post("/login", response_model=TokenResponse)
async def login(payload: Credentials, request: Request):
    users = get_services(request).users
    try:
        result = await users.login(payload.email, payload.password)
    except InvalidCredentials:
        error_response("auth.invalid_credentials", "invalid email or password", status_code=401, resource_kind="user")
    return TokenResponse(token=result.token, username=result.username)
