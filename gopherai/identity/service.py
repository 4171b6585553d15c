"""Registration and login."""
from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass

from gopherai.identity.jwt_service import JwtService
from gopherai.identity.models import User
from gopherai.identity.passwords import hash_password, verify_password
from gopherai.identity.repository import DuplicateUser, UserRepository

logger = logging.getLogger(__name__)

USERNAME_DIGITS = 11
USERNAME_ATTEMPTS = 10


class EmailExists(ValueError):
    pass


class InvalidCredentials(ValueError):
    pass


class UsernameExhausted(RuntimeError):
    pass


@dataclass
class LoginResult:
    token: str
    username: str


def generate_username() -> str:
    # leading digit is never zero so the name stays 11 digits wide
    return str(secrets.randbelow(9) + 1) + "".join(str(secrets.randbelow(10)) for _ in range(USERNAME_DIGITS - 1))


class UserService:
    def __init__(self, repo: UserRepository, jwt: JwtService) -> None:
        self.repo = repo
        self.jwt = jwt

    def _register(self, email: str, password: str) -> User:
        if self.repo.find_by_email(email) is not None:
            raise EmailExists(email)
        for _ in range(USERNAME_ATTEMPTS):
            username = generate_username()
            if not self.repo.exists_by_username(username):
                break
        else:
            raise UsernameExhausted("could not allocate a unique username")
        try:
            user = self.repo.create(User(username=username, email=email, password_hash=hash_password(password)))
        except DuplicateUser as exc:
            raise EmailExists(email) from exc
        logger.info("Registered user %s", user.username)
        return user

    async def register(self, email: str, password: str) -> LoginResult:
        user = await asyncio.to_thread(self._register, email, password)
        return LoginResult(token=self.jwt.issue_token(user.id, user.username), username=user.username)

    async def login(self, email: str, password: str) -> LoginResult:
        user = await asyncio.to_thread(self.repo.find_by_email, email)
        if user is None or not verify_password(password, user.password_hash):
            raise InvalidCredentials(email)
        logger.info("User %s logged in", user.username)
        return LoginResult(token=self.jwt.issue_token(user.id, user.username), username=user.username)
