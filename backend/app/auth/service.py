"""Account storage and the authentication operations built on it.

``UserRepository`` is the data-access layer over the ``users`` table.
``AuthService`` combines it with password hashing and identity tokens to
implement registration, login, logout, status changes and token
authentication for both the REST facade and the realtime core.
"""
import json
import logging
import uuid
from typing import Optional, Tuple

import duckdb

from app.errors import AuthError, ConflictError, NotFoundError
from app.store.database import Database, utcnow

from .passwords import hash_password, verify_password
from .schemas import RegisterRequest, UserRecord, UserStatus
from .tokens import TokenService

logger = logging.getLogger(__name__)


class UserRepository:
    """Create / find / update operations on the users table."""

    _COLUMNS = [
        "id", "username", "password_hash", "profile_picture", "status", "bio",
        "interests", "age", "gender", "interested_in", "mola_balance",
        "is_email_verified", "is_active", "last_seen", "joined_at",
        "subscription_type", "subscription_expires_at",
    ]

    def __init__(self, db: Database) -> None:
        self._db = db
        self._select = f"SELECT {', '.join(self._COLUMNS)} FROM users"

    def create(self, request: RegisterRequest, password_hash: str) -> UserRecord:
        user_id = str(uuid.uuid4())
        now = utcnow()
        try:
            self._db.execute(
                """
                INSERT INTO users
                  (id, username, password_hash, bio, interests, age, gender,
                   interested_in, last_seen, joined_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    user_id, request.username, password_hash, request.bio,
                    json.dumps(list(request.interests)), request.age, request.gender,
                    json.dumps(list(request.interestedIn)), now, now, now, now,
                ],
            )
        except duckdb.ConstraintException:
            raise ConflictError("Username already taken! Try another one") from None
        return self.get(user_id)

    def get(self, user_id: str) -> Optional[UserRecord]:
        row = self._db.fetchone(f"{self._select} WHERE id = ?", [user_id])
        return self._row_to_record(row) if row else None

    def find_by_username(self, username: str) -> Optional[UserRecord]:
        row = self._db.fetchone(
            f"{self._select} WHERE username = ?", [username.strip().lower()]
        )
        return self._row_to_record(row) if row else None

    def exists(self, user_id: str) -> bool:
        return self._db.fetchone("SELECT 1 FROM users WHERE id = ?", [user_id]) is not None

    def set_status(self, user_id: str, status: UserStatus) -> Optional[UserRecord]:
        """Persist ``status`` and refresh the activity timestamp."""
        now = utcnow()
        row = self._db.fetchone(
            """
            UPDATE users SET status = ?, last_seen = ?, updated_at = ?
            WHERE id = ? RETURNING id
            """,
            [status.value, now, now, user_id],
        )
        return self.get(user_id) if row else None

    def set_active(self, user_id: str, is_active: bool) -> None:
        """Flip the account-active flag (deactivation is never a delete)."""
        self._db.execute(
            "UPDATE users SET is_active = ?, updated_at = ? WHERE id = ?",
            [is_active, utcnow(), user_id],
        )

    def _row_to_record(self, row: tuple) -> UserRecord:
        d = dict(zip(self._COLUMNS, row))
        d["status"] = UserStatus(d["status"])
        d["interests"] = json.loads(d["interests"] or "[]")
        d["interested_in"] = json.loads(d["interested_in"] or "[]")
        return UserRecord(**d)


class AuthService:
    """Registration, login and token authentication.

    Every successful login or realtime authentication marks the user
    ``online`` and refreshes ``last_seen`` before returning.
    """

    def __init__(self, users: UserRepository, tokens: TokenService) -> None:
        self.users = users
        self.tokens = tokens

    def register(self, request: RegisterRequest) -> Tuple[str, UserRecord]:
        if self.users.find_by_username(request.username) is not None:
            raise ConflictError("Username already taken! Try another one")
        user = self.users.create(request, hash_password(request.password))
        logger.info("[Auth] Registered user %s (%s)", user.username, user.id)
        return self.tokens.issue_token(user.id), user

    def login(self, username: str, password: str) -> Tuple[str, UserRecord]:
        user = self.users.find_by_username(username)
        if user is None:
            raise AuthError("Invalid credentials! Check your username")
        if not user.is_active:
            raise AuthError("Account is deactivated. Contact support")
        if not verify_password(user.password_hash, password):
            raise AuthError("Invalid credentials! Check your password")
        user = self.users.set_status(user.id, UserStatus.ONLINE)
        logger.info("[Auth] User %s logged in", user.username)
        return self.tokens.issue_token(user.id), user

    def resolve_token(self, token: str) -> UserRecord:
        """Return the active user a token belongs to, without side effects."""
        user_id = self.tokens.verify_token(token)
        user = self.users.get(user_id)
        if user is None:
            raise AuthError("Token is invalid. User not found")
        if not user.is_active:
            raise AuthError("Account is deactivated")
        return user

    def authenticate(self, token: str) -> UserRecord:
        """Resolve ``token`` and mark its user online."""
        user = self.resolve_token(token)
        return self.users.set_status(user.id, UserStatus.ONLINE)

    def update_status(self, user_id: str, status: UserStatus) -> UserRecord:
        user = self.users.set_status(user_id, status)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def logout(self, user_id: str) -> None:
        self.users.set_status(user_id, UserStatus.OFFLINE)
        logger.info("[Auth] User %s logged out", user_id)
