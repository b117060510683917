"""
Password hashing and session tokens.

Tokens are stateless HS256 JWTs carrying the user id and role. Nothing is
stored server-side, so a token cannot be revoked: logging out only drops the
cookie and a copied bearer token keeps working until it expires.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from config import Settings

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        # unknown or corrupt hash format
        return False


class TokenError(Exception):
    pass


class InvalidTokenError(TokenError):
    pass


class TokenExpiredError(TokenError):
    pass


@dataclass(frozen=True)
class Identity:
    id: str
    role: str


class TokenService:
    """Issues and verifies signed, time-bound session tokens."""

    def __init__(self, secret: str, lifetime_seconds: int, algorithm: str = "HS256"):
        if not secret:
            raise ValueError("a signing secret is required")
        self._secret = secret
        self.lifetime_seconds = lifetime_seconds
        self.algorithm = algorithm

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        return cls(
            secret=settings.JWT_SECRET.get_secret_value(),
            lifetime_seconds=settings.JWT_EXPIRES_IN,
            algorithm=settings.JWT_ALGORITHM,
        )

    def issue(self, user_id: str, role: str, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        claims = {
            "sub": str(user_id),
            "role": role,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self.lifetime_seconds)).timestamp()),
        }
        return jwt.encode(claims, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Identity:
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise TokenExpiredError("Token has expired") from exc
        except JWTError as exc:
            raise InvalidTokenError(str(exc)) from exc

        user_id = payload.get("sub")
        role = payload.get("role")
        if not isinstance(user_id, str) or not user_id or not isinstance(role, str) or not role:
            raise InvalidTokenError("Token is missing the sub or role claim")
        return Identity(id=user_id, role=role)
