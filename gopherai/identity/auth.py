"""Auth dependency: Bearer header, or ``token`` query param for EventSource clients."""
from __future__ import annotations

from typing import Optional

from fastapi import Header, Query, Request

from gopherai.common.error_envelope import error_response
from gopherai.identity.jwt_service import AuthContext, AuthError
from gopherai.services import get_services


def get_auth_context(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    token: Optional[str] = Query(default=None),
) -> AuthContext:
    raw = None
    if authorization and authorization.lower().startswith("bearer "):
        raw = authorization.split(" ", 1)[1].strip()
    raw = raw or token
    if not raw:
        error_response("auth.missing_token", "missing bearer token", status_code=401, resource_kind="user")
    jwt = get_services(request).jwt
    try:
        return jwt.decode_token(raw)
    except AuthError as exc:
        error_response("auth.invalid_token", f"invalid token: {exc}", status_code=401, resource_kind="user")
