"""Credential store and token verification.

``UserDirectory`` keeps registered users in memory with salted PBKDF2
password hashes. ``IdentityVerifier`` issues and verifies HS256 JWTs and is
the only thing the chat core calls to turn a token into an identity.
"""
import hashlib
import hmac
import logging
import secrets
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import jwt

from roomchat.chat.errors import AuthError, ValidationError

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 100_000


@dataclass(frozen=True)
class Identity:
    user_id: str
    username: str


@dataclass
class UserRecord:
    user_id: str
    username: str
    password_hash: str
    salt: str
    email: Optional[str] = None
    created_at: float = field(default_factory=time.time)


def _hash_password(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), bytes.fromhex(salt), PBKDF2_ITERATIONS
    ).hex()


class UserDirectory:
    """In-memory registered users, keyed by username."""

    def __init__(self) -> None:
        self._users: Dict[str, UserRecord] = {}

    def register(self, username: str, password: str, email: Optional[str] = None) -> UserRecord:
        """Create a user.

        Raises:
            ValidationError: empty username/password or username taken.
        """
        username = (username or "").strip()
        if not username or not password:
            raise ValidationError("Username and password are required")
        if username in self._users:
            raise ValidationError("Username already exists")

        salt = secrets.token_hex(16)
        record = UserRecord(
            user_id=str(uuid.uuid4()),
            username=username,
            password_hash=_hash_password(password, salt),
            salt=salt,
            email=email,
        )
        self._users[username] = record
        logger.info(f"[Auth] Registered user {username} ({record.user_id})")
        return record

    def authenticate(self, username: str, password: str) -> UserRecord:
        """Check a password.

        Raises:
            AuthError: unknown user or wrong password.
        """
        record = self._users.get(username)
        if record is None:
            raise AuthError("User not found")
        if not hmac.compare_digest(record.password_hash, _hash_password(password, record.salt)):
            raise AuthError("Invalid password")
        return record

    def get(self, username: str) -> Optional[UserRecord]:
        return self._users.get(username)

    def list_users(self) -> List[UserRecord]:
        return list(self._users.values())


class IdentityVerifier:
    """Issues and verifies signed tokens carrying ``{id, username}``.

    When constructed with a directory, tokens for users not (or no longer)
    in it are rejected.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expire_minutes: int = 0,
        directory: Optional[UserDirectory] = None,
    ) -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._expire_minutes = expire_minutes
        self._directory = directory

    def issue(self, user_id: str, username: str) -> str:
        payload = {"id": user_id, "username": username, "iat": int(time.time())}
        if self._expire_minutes > 0:
            payload["exp"] = int(time.time()) + self._expire_minutes * 60
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def verify(self, token: Optional[str]) -> Identity:
        """Turn a token into an identity.

        Raises:
            AuthError: missing, malformed, expired or unknown-user token.
        """
        if not token or not isinstance(token, str):
            raise AuthError("Missing token")
        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthError("Token expired")
        except jwt.InvalidTokenError:
            raise AuthError("Invalid token")

        user_id = claims.get("id")
        username = claims.get("username")
        if not user_id or not username:
            raise AuthError("Invalid token")

        if self._directory is not None:
            record = self._directory.get(username)
            if record is None or record.user_id != user_id:
                raise AuthError("Unknown user")

        return Identity(user_id=user_id, username=username)
