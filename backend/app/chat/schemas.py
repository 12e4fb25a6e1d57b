"""Data models for chatrooms, occupancy, messages and reactions.

Store rows are plain dataclasses; everything sent over the wire is a
pydantic model with the camelCase field names the mobile client uses.

Message types are a tagged variant rather than a string plus an optional
target: only :class:`Whisper` carries a ``target``, so a public message with
a whisper target cannot be represented.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import ClassVar, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from app.errors import ValidationError


class Topic(str, Enum):
    MUSIC = "music"
    GAMING = "gaming"
    MOVIES = "movies"
    ART = "art"
    TRAVEL = "travel"
    SPORTS = "sports"
    FOOD = "food"
    BOOKS = "books"
    TECHNOLOGY = "technology"
    FASHION = "fashion"
    GENERAL = "general"
    VIBES = "vibes"


class NeonTheme(BaseModel):
    """Visual theme descriptor for a room."""
    primaryColor: str = "#FF00FF"
    secondaryColor: str = "#00FFFF"
    backgroundGradient: str = "linear-gradient(135deg, #1a1a2e, #16213e, #0f3460)"


# =============================================================================
# Message kinds (tagged variant)
# =============================================================================


@dataclass(frozen=True)
class Public:
    wire_name: ClassVar[str] = "public"


@dataclass(frozen=True)
class Whisper:
    target: str
    wire_name: ClassVar[str] = "whisper"


@dataclass(frozen=True)
class System:
    wire_name: ClassVar[str] = "system"


@dataclass(frozen=True)
class EmojiReaction:
    wire_name: ClassVar[str] = "emoji-reaction"


MessageKind = Union[Public, Whisper, System, EmojiReaction]

MESSAGE_TYPES = ("public", "whisper", "system", "emoji-reaction")


def message_kind(message_type: str, whisper_target: Optional[str] = None) -> MessageKind:
    """Build the variant for a wire ``messageType`` / ``whisperTarget`` pair.

    A target given with a non-whisper type is dropped.

    Raises:
        ValidationError: For an unknown type, or a whisper without a target.
    """
    if message_type == "whisper":
        if not whisper_target:
            raise ValidationError("Whisper messages need a whisperTarget")
        return Whisper(target=whisper_target)
    if message_type == "public":
        return Public()
    if message_type == "system":
        return System()
    if message_type == "emoji-reaction":
        return EmojiReaction()
    raise ValidationError(
        f"Invalid messageType: {message_type}. Use one of: {', '.join(MESSAGE_TYPES)}"
    )


# =============================================================================
# Store records
# =============================================================================


@dataclass
class Occupant:
    """Occupancy record: one currently-joined user of a room."""
    user_id: str
    joined_at: datetime
    last_seen: datetime
    username: str = ""
    status: str = "offline"
    profile_picture: Optional[str] = None


@dataclass
class ChatroomRecord:
    id: str
    name: str
    description: str
    topic: Topic
    neon_theme: NeonTheme
    created_by: str
    is_private: bool
    max_users: int
    allow_whispers: bool
    allow_emojis: bool
    is_premium_room: bool
    total_messages: int
    last_activity: datetime
    is_active: bool
    created_at: datetime
    occupants: List[Occupant] = field(default_factory=list)

    def has_occupant(self, user_id: str) -> bool:
        return any(o.user_id == user_id for o in self.occupants)

    def is_full(self) -> bool:
        return len(self.occupants) >= self.max_users

    def public_info(self) -> "RoomPublicInfo":
        return RoomPublicInfo(
            id=self.id,
            name=self.name,
            description=self.description,
            topic=self.topic,
            neonTheme=self.neon_theme,
            createdBy=self.created_by,
            currentUserCount=len(self.occupants),
            maxUsers=self.max_users,
            isPrivate=self.is_private,
            allowWhispers=self.allow_whispers,
            allowEmojis=self.allow_emojis,
            isPremiumRoom=self.is_premium_room,
            totalMessages=self.total_messages,
            lastActivity=self.last_activity,
            createdAt=self.created_at,
        )

    def active_users(self) -> List["OccupantInfo"]:
        return [
            OccupantInfo(
                id=o.user_id,
                username=o.username,
                status=o.status,
                profilePicture=o.profile_picture,
                joinedAt=o.joined_at,
                lastSeen=o.last_seen,
            )
            for o in self.occupants
        ]


@dataclass
class UserSummary:
    id: str
    username: str = ""
    profile_picture: Optional[str] = None
    status: str = "offline"


@dataclass
class MessageRecord:
    id: str
    room_id: str
    sender: UserSummary
    content: str
    kind: MessageKind
    created_at: datetime
    has_neon_effect: bool = False
    neon_color: Optional[str] = None
    is_deleted: bool = False
    is_edited: bool = False
    edited_at: Optional[datetime] = None
    whisper_target: Optional[UserSummary] = None
    # emoji -> user ids, in first-applied order
    reactions: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def total_reactions(self) -> int:
        return sum(len(users) for users in self.reactions.values())

    def reaction_counts(self) -> Dict[str, int]:
        return {emoji: len(users) for emoji, users in self.reactions.items()}

    def public_data(self) -> "MessagePublic":
        target = None
        if self.whisper_target is not None:
            target = {"id": self.whisper_target.id, "username": self.whisper_target.username}
        return MessagePublic(
            id=self.id,
            content=self.content,
            sender=SenderInfo(
                id=self.sender.id,
                username=self.sender.username,
                profilePicture=self.sender.profile_picture,
                status=self.sender.status,
            ),
            chatroom=self.room_id,
            messageType=self.kind.wire_name,
            whisperTarget=target,
            reactions=[
                ReactionEntry(emoji=emoji, users=list(users), count=len(users))
                for emoji, users in self.reactions.items()
            ],
            totalReactions=self.total_reactions,
            hasNeonEffect=self.has_neon_effect,
            neonColor=self.neon_color,
            isEdited=self.is_edited,
            editedAt=self.edited_at,
            createdAt=self.created_at,
        )


# =============================================================================
# Wire models
# =============================================================================


class RoomPublicInfo(BaseModel):
    id: str
    name: str
    description: str = ""
    topic: Topic = Topic.GENERAL
    neonTheme: NeonTheme = Field(default_factory=NeonTheme)
    createdBy: str
    currentUserCount: int = 0
    maxUsers: int = 100
    isPrivate: bool = False
    allowWhispers: bool = True
    allowEmojis: bool = True
    isPremiumRoom: bool = False
    totalMessages: int = 0
    lastActivity: datetime
    createdAt: datetime


class OccupantInfo(BaseModel):
    id: str
    username: str
    status: str = "offline"
    profilePicture: Optional[str] = None
    joinedAt: datetime
    lastSeen: datetime


class SenderInfo(BaseModel):
    id: str
    username: str = ""
    profilePicture: Optional[str] = None
    status: str = "offline"


class ReactionEntry(BaseModel):
    emoji: str
    users: List[str]
    count: int


class MessagePublic(BaseModel):
    """Message as delivered to clients in ``new_message`` and history pages."""
    id: str
    content: str
    sender: SenderInfo
    chatroom: str
    messageType: str = "public"
    whisperTarget: Optional[dict] = None
    reactions: List[ReactionEntry] = Field(default_factory=list)
    totalReactions: int = 0
    hasNeonEffect: bool = False
    neonColor: Optional[str] = None
    isEdited: bool = False
    editedAt: Optional[datetime] = None
    createdAt: datetime


class ReactionSummary(BaseModel):
    """Payload of ``reaction_updated``: emoji -> count, plus the total."""
    messageId: str
    roomId: str
    reactions: Dict[str, int] = Field(default_factory=dict)
    totalReactions: int = 0


# =============================================================================
# Request bodies
# =============================================================================


class RoomCreate(BaseModel):
    """Request body for POST /api/chat/rooms."""
    name: str = Field(..., min_length=3, max_length=30)
    topic: Topic
    description: str = Field(default="", max_length=200)
    neonTheme: Optional[NeonTheme] = None
    isPrivate: bool = False
    maxUsers: Optional[int] = Field(default=None, ge=2, le=500)
    allowWhispers: bool = True
    allowEmojis: bool = True

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value


class MessageCreate(BaseModel):
    """Body of a message send, shared by REST and the ``send_message`` event."""
    content: str = ""
    messageType: str = "public"
    whisperTarget: Optional[str] = None
    hasNeonEffect: bool = False
    neonColor: Optional[str] = None

    def kind(self) -> MessageKind:
        return message_kind(self.messageType, self.whisperTarget)


class ReactionRequest(BaseModel):
    """Request body for POST /api/chat/messages/{messageId}/react."""
    emoji: str = Field(..., min_length=1, max_length=32)
