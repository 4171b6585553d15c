"""User accounts, password hashing and JWT auth."""

from gopherai.identity.jwt_service import AuthContext, JwtService  # noqa: F401
from gopherai.identity.models import User  # noqa: F401
from gopherai.identity.repository import InMemoryUserRepository, UserRepository  # noqa: F401
