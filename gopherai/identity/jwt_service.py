"""Minimal HS256 JWT issue/verify."""
from __future__ import annotations

import base64
import hmac
import json
import time
from dataclasses import dataclass, field
from hashlib import sha256
from typing import Any, Dict, Optional

from gopherai.config.runtime_config import Settings


class AuthError(ValueError):
    """Token missing, malformed, forged or expired."""


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("utf-8")


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


@dataclass
class AuthContext:
    user_id: str
    user_name: str
    claims: Dict[str, Any] = field(default_factory=dict)


class JwtService:
    def __init__(self, secret: str, issuer: str = "gopherai", ttl_seconds: int = 3600) -> None:
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret.encode("utf-8")
        self._issuer = issuer
        self._ttl_seconds = ttl_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "JwtService":
        return cls(settings.jwt_secret, issuer=settings.jwt_issuer, ttl_seconds=settings.jwt_ttl_seconds)

    def _sign(self, signing_input: str) -> bytes:
        return hmac.new(self._secret, signing_input.encode("utf-8"), sha256).digest()

    def issue_token(self, user_id: str, user_name: str, now: Optional[int] = None) -> str:
        issued_at = int(now if now is not None else time.time())
        header = {"alg": "HS256", "typ": "JWT"}
        claims = {
            "sub": user_name,
            "uid": user_id,
            "iss": self._issuer,
            "iat": issued_at,
            "exp": issued_at + self._ttl_seconds,
        }
        signing_input = ".".join(
            [
                _b64url(json.dumps(header, separators=(",", ":"), sort_keys=True).encode()),
                _b64url(json.dumps(claims, separators=(",", ":"), sort_keys=True).encode()),
            ]
        )
        return signing_input + "." + _b64url(self._sign(signing_input))

    def decode_token(self, token: str, now: Optional[int] = None) -> AuthContext:
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise AuthError("invalid token")
        try:
            signature = _b64url_decode(sig_b64)
            payload = json.loads(_b64url_decode(payload_b64))
        except (ValueError, TypeError):
            raise AuthError("invalid token")
        if not hmac.compare_digest(self._sign(header_b64 + "." + payload_b64), signature):
            raise AuthError("invalid signature")
        if not isinstance(payload, dict) or not payload.get("sub"):
            raise AuthError("invalid token claims")
        if payload.get("iss") != self._issuer:
            raise AuthError("invalid issuer")
        current = int(now if now is not None else time.time())
        try:
            expires_at = int(payload.get("exp", 0))
        except (TypeError, ValueError):
            raise AuthError("invalid expiry claim")
        if expires_at <= current:
            raise AuthError("token expired")
        return AuthContext(user_id=str(payload.get("uid", "")), user_name=payload["sub"], claims=payload)
