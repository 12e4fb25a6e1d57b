"""Pydantic schemas for accounts, credentials and public profiles."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class UserStatus(str, Enum):
    """Presence status shown next to a user.

    Attributes:
        ONLINE: Connected and available.
        BUSY: Connected, do not disturb.
        AWAY: Connected but idle.
        OFFLINE: Not connected (set on logout and disconnect).
    """
    ONLINE = "online"
    BUSY = "busy"
    AWAY = "away"
    OFFLINE = "offline"


Gender = Literal["male", "female", "non-binary", "prefer-not-to-say"]
InterestedIn = Literal["male", "female", "non-binary", "everyone"]
Interest = Literal[
    "music", "gaming", "art", "travel", "movies",
    "sports", "food", "books", "technology", "fashion",
]
SubscriptionType = Literal["free", "mola_pass", "mola_gold", "mola_black"]


@dataclass
class UserRecord:
    """A row of the users table. Holds the credential hash; never serialized."""
    id: str
    username: str
    password_hash: str
    status: UserStatus
    last_seen: datetime
    joined_at: datetime
    profile_picture: Optional[str] = None
    bio: str = ""
    interests: List[str] = field(default_factory=list)
    age: Optional[int] = None
    gender: Optional[str] = None
    interested_in: List[str] = field(default_factory=lambda: ["everyone"])
    mola_balance: int = 50
    is_email_verified: bool = False
    is_active: bool = True
    subscription_type: str = "free"
    subscription_expires_at: Optional[datetime] = None

    def is_premium(self, now: datetime) -> bool:
        if self.subscription_type == "free" or self.subscription_expires_at is None:
            return False
        return now < self.subscription_expires_at

    def public_profile(self, now: Optional[datetime] = None) -> "PublicProfile":
        return PublicProfile(
            id=self.id,
            username=self.username,
            profilePicture=self.profile_picture,
            status=self.status,
            bio=self.bio,
            interests=list(self.interests),
            age=self.age,
            gender=self.gender,
            interestedIn=list(self.interested_in),
            isPremium=self.is_premium(now) if now is not None else False,
            joinedAt=self.joined_at,
            lastSeen=self.last_seen,
        )


class PublicProfile(BaseModel):
    """The subset of a user that is safe to expose. Has no credential field."""
    id: str
    username: str
    profilePicture: Optional[str] = None
    status: UserStatus = UserStatus.OFFLINE
    bio: str = ""
    interests: List[str] = Field(default_factory=list)
    age: Optional[int] = None
    gender: Optional[str] = None
    interestedIn: List[str] = Field(default_factory=list)
    isPremium: bool = False
    joinedAt: datetime
    lastSeen: datetime


class RegisterRequest(BaseModel):
    """Request body for POST /api/auth/register."""
    username: str = Field(..., min_length=3, max_length=20, pattern=r"^[a-zA-Z0-9_]+$")
    password: str = Field(..., min_length=6)
    age: int = Field(..., ge=18, le=100)
    gender: Gender
    interestedIn: List[InterestedIn] = Field(default_factory=lambda: ["everyone"])
    bio: str = Field(default="", max_length=140)
    interests: List[Interest] = Field(default_factory=list)

    @field_validator("username", mode="before")
    @classmethod
    def _normalize_username(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("interestedIn")
    @classmethod
    def _default_interested_in(cls, value):
        return value or ["everyone"]


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login."""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class StatusUpdate(BaseModel):
    """Request body for PUT /api/auth/status."""
    status: UserStatus
