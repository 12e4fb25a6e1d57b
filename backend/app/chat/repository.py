"""Room & message repositories over the DuckDB store.

Each public method is a single statement or a single explicit transaction,
so it behaves as one atomic read-modify-write with respect to other events
handled by the process. Nothing here holds a room or message across calls:
callers always get a freshly read record back.

Appending a message is a multi-step operation:

1. insert the message row (the primary write),
2. bump the room's ``total_messages`` / ``last_activity``,
3. refresh the sender's occupancy ``last_seen``.

Steps 2 and 3 are best-effort. If they fail the error is logged, the
message stays persisted and the caller is not told.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from app.auth.service import UserRepository
from app.errors import ConflictError, ForbiddenError, NotFoundError, RoomFullError, ValidationError
from app.store.database import Database, utcnow

from .schemas import (
    ChatroomRecord,
    MessageCreate,
    MessageKind,
    MessageRecord,
    NeonTheme,
    Occupant,
    RoomCreate,
    Topic,
    UserSummary,
    Whisper,
    message_kind,
)

logger = logging.getLogger(__name__)


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class RoomRepository:
    """Chatroom rows and their occupancy lists."""

    _COLUMNS = [
        "id", "name", "description", "topic", "neon_theme", "created_by",
        "is_private", "max_users", "allow_whispers", "allow_emojis",
        "is_premium_room", "total_messages", "last_activity", "is_active",
        "created_at",
    ]

    def __init__(self, db: Database) -> None:
        self._db = db
        self._select = f"SELECT {', '.join(self._COLUMNS)} FROM chatrooms"

    # -----------------------------------------------------------------------
    # Rooms
    # -----------------------------------------------------------------------

    def create(self, request: RoomCreate, creator_id: str, default_max_users: int = 100) -> ChatroomRecord:
        """Create a room with its creator as the first occupant.

        Raises:
            ConflictError: If an active room already has this name (case-insensitive).
        """
        room_id = str(uuid.uuid4())
        now = utcnow()
        theme = request.neonTheme or NeonTheme()
        with self._db.transaction() as conn:
            existing = conn.execute(
                "SELECT id FROM chatrooms WHERE lower(name) = lower(?) AND is_active",
                [request.name],
            ).fetchone()
            if existing:
                raise ConflictError("Room name already exists! Try another one")
            conn.execute(
                """
                INSERT INTO chatrooms
                  (id, name, description, topic, neon_theme, created_by, is_private,
                   max_users, allow_whispers, allow_emojis, last_activity,
                   created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    room_id, request.name, request.description, request.topic.value,
                    theme.model_dump_json(), creator_id, request.isPrivate,
                    request.maxUsers or default_max_users, request.allowWhispers,
                    request.allowEmojis, now, now, now,
                ],
            )
            conn.execute(
                "INSERT INTO room_occupants (room_id, user_id, joined_at, last_seen) VALUES (?, ?, ?, ?)",
                [room_id, creator_id, now, now],
            )
        logger.info("[Rooms] Created room %s (%s) by %s", request.name, room_id, creator_id)
        return self.get(room_id)

    def get(self, room_id: str) -> Optional[ChatroomRecord]:
        row = self._db.fetchone(f"{self._select} WHERE id = ?", [room_id])
        if not row:
            return None
        room = self._row_to_record(row)
        room.occupants = self._occupants(room_id)
        return room

    def get_active(self, room_id: str) -> ChatroomRecord:
        """Return the room, or raise NotFoundError if missing or inactive."""
        room = self.get(room_id)
        if room is None or not room.is_active:
            raise NotFoundError("Chatroom not found")
        return room

    def list_active(self, limit: int = 50) -> List[ChatroomRecord]:
        """Active rooms, most recently active first."""
        rows = self._db.fetchall(
            f"{self._select} WHERE is_active ORDER BY last_activity DESC LIMIT ?",
            [limit],
        )
        rooms = [self._row_to_record(r) for r in rows]
        for room in rooms:
            room.occupants = self._occupants(room.id)
        return rooms

    def set_active(self, room_id: str, is_active: bool) -> None:
        self._db.execute(
            "UPDATE chatrooms SET is_active = ?, updated_at = ? WHERE id = ?",
            [is_active, utcnow(), room_id],
        )

    def record_message_activity(self, room_id: str) -> None:
        """Increment the message counter and refresh ``last_activity``."""
        now = utcnow()
        self._db.execute(
            """
            UPDATE chatrooms
            SET total_messages = total_messages + 1, last_activity = ?, updated_at = ?
            WHERE id = ?
            """,
            [now, now, room_id],
        )

    # -----------------------------------------------------------------------
    # Occupancy
    # -----------------------------------------------------------------------

    def join(self, room_id: str, user_id: str) -> ChatroomRecord:
        """Validate and add an occupancy row, returning the refreshed room.

        Re-joining a room the user already occupies only refreshes
        ``last_seen``. The capacity check reads the room before the write, so
        two near-simultaneous joins may transiently exceed it by one.

        Raises:
            NotFoundError: Room missing or inactive.
            RoomFullError: Occupancy already equals capacity.
        """
        room = self.get_active(room_id)
        if not room.has_occupant(user_id) and room.is_full():
            raise RoomFullError("Chatroom is full! Try another one")
        self.add_occupant(room_id, user_id)
        return self.get(room_id)

    def add_occupant(self, room_id: str, user_id: str) -> bool:
        """Insert an occupancy row; returns False if it already existed."""
        now = utcnow()
        with self._db.transaction() as conn:
            existing = conn.execute(
                "SELECT 1 FROM room_occupants WHERE room_id = ? AND user_id = ?",
                [room_id, user_id],
            ).fetchone()
            if existing:
                conn.execute(
                    "UPDATE room_occupants SET last_seen = ? WHERE room_id = ? AND user_id = ?",
                    [now, room_id, user_id],
                )
                return False
            conn.execute(
                "INSERT INTO room_occupants (room_id, user_id, joined_at, last_seen) VALUES (?, ?, ?, ?)",
                [room_id, user_id, now, now],
            )
            conn.execute(
                "UPDATE chatrooms SET last_activity = ?, updated_at = ? WHERE id = ?",
                [now, now, room_id],
            )
        return True

    def remove_occupant(self, room_id: str, user_id: str) -> bool:
        """Delete the occupancy row; returns False if there was none."""
        now = utcnow()
        with self._db.transaction() as conn:
            removed = conn.execute(
                "DELETE FROM room_occupants WHERE room_id = ? AND user_id = ? RETURNING user_id",
                [room_id, user_id],
            ).fetchall()
            conn.execute(
                "UPDATE chatrooms SET last_activity = ?, updated_at = ? WHERE id = ?",
                [now, now, room_id],
            )
        return len(removed) > 0

    def touch_occupant(self, room_id: str, user_id: str) -> None:
        now = utcnow()
        self._db.execute(
            "UPDATE room_occupants SET last_seen = ? WHERE room_id = ? AND user_id = ?",
            [now, room_id, user_id],
        )

    def is_occupant(self, room_id: str, user_id: str) -> bool:
        row = self._db.fetchone(
            "SELECT 1 FROM room_occupants WHERE room_id = ? AND user_id = ?",
            [room_id, user_id],
        )
        return row is not None

    def _occupants(self, room_id: str) -> List[Occupant]:
        rows = self._db.fetchall(
            """
            SELECT o.user_id, o.joined_at, o.last_seen, u.username, u.status, u.profile_picture
            FROM room_occupants o LEFT JOIN users u ON u.id = o.user_id
            WHERE o.room_id = ?
            ORDER BY o.joined_at ASC, o.user_id ASC
            """,
            [room_id],
        )
        return [
            Occupant(
                user_id=r[0], joined_at=r[1], last_seen=r[2],
                username=r[3] or "", status=r[4] or "offline", profile_picture=r[5],
            )
            for r in rows
        ]

    def _row_to_record(self, row: tuple) -> ChatroomRecord:
        d = dict(zip(self._COLUMNS, row))
        d["topic"] = Topic(d["topic"])
        d["neon_theme"] = NeonTheme(**json.loads(d["neon_theme"] or "{}"))
        return ChatroomRecord(**d)


class MessageRepository:
    """Messages and their reaction sets."""

    _SELECT = """
        SELECT m.id, m.room_id, m.sender_id, s.username, s.profile_picture, s.status,
               m.content, m.message_type, m.whisper_target, t.username,
               m.has_neon_effect, m.neon_color, m.is_deleted, m.is_edited,
               m.edited_at, m.created_at
        FROM messages m
        LEFT JOIN users s ON s.id = m.sender_id
        LEFT JOIN users t ON t.id = m.whisper_target
    """

    def __init__(
        self,
        db: Database,
        rooms: RoomRepository,
        users: UserRepository,
        max_length: int = 500,
    ) -> None:
        self._db = db
        self._rooms = rooms
        self._users = users
        self._max_length = max_length

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def send(self, room_id: str, sender_id: str, body: MessageCreate) -> MessageRecord:
        """Validate a send against room state and append the message.

        Raises:
            ValidationError: Empty or over-long content, bad type, whisper without target.
            NotFoundError: Room missing/inactive, or whisper target unknown.
            ForbiddenError: Sender not an occupant, or whispers disabled in the room.
        """
        content = (body.content or "").strip()
        if not content:
            raise ValidationError("Message content is required")
        if len(content) > self._max_length:
            raise ValidationError(f"Message cannot exceed {self._max_length} characters")
        kind = body.kind()

        room = self._rooms.get_active(room_id)
        if not room.has_occupant(sender_id):
            raise ForbiddenError("You must join the chatroom first")
        if isinstance(kind, Whisper):
            if not room.allow_whispers:
                raise ForbiddenError("Whispers are disabled in this chatroom")
            if not self._users.exists(kind.target):
                raise NotFoundError("Whisper target not found")

        return self.append(room_id, sender_id, content, body, kind)

    def append(
        self,
        room_id: str,
        sender_id: str,
        content: str,
        body: MessageCreate,
        kind: MessageKind,
    ) -> MessageRecord:
        message_id = str(uuid.uuid4())
        now = utcnow()
        target = kind.target if isinstance(kind, Whisper) else None
        self._db.execute(
            """
            INSERT INTO messages
              (id, room_id, sender_id, content, message_type, whisper_target,
               has_neon_effect, neon_color, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                message_id, room_id, sender_id, content, kind.wire_name, target,
                bool(body.hasNeonEffect), body.neonColor, now, now,
            ],
        )

        try:
            self._rooms.record_message_activity(room_id)
        except Exception as e:
            logger.error(f"[Messages] Failed to update stats for room {room_id}: {e}")
        try:
            self._rooms.touch_occupant(room_id, sender_id)
        except Exception as e:
            logger.error(f"[Messages] Failed to refresh last seen of {sender_id} in {room_id}: {e}")

        return self.get(message_id)

    def toggle_reaction(self, message_id: str, user_id: str, emoji: str) -> MessageRecord:
        """Apply or remove ``user_id``'s ``emoji`` on a message.

        Applying the same emoji twice restores the original reaction set; an
        emoji whose last user is removed disappears from the set.

        Raises:
            ValidationError: Empty emoji.
            NotFoundError: Message missing or soft-deleted.
            ForbiddenError: The message's room does not allow emoji reactions.
        """
        emoji = (emoji or "").strip()
        if not emoji:
            raise ValidationError("Emoji is required")
        message = self.get_visible(message_id)
        room = self._rooms.get(message.room_id)
        if room is not None and not room.allow_emojis:
            raise ForbiddenError("Emoji reactions are disabled in this chatroom")

        with self._db.transaction() as conn:
            removed = conn.execute(
                """
                DELETE FROM message_reactions
                WHERE message_id = ? AND emoji = ? AND user_id = ?
                RETURNING user_id
                """,
                [message_id, emoji, user_id],
            ).fetchall()
            if not removed:
                conn.execute(
                    "INSERT INTO message_reactions (message_id, emoji, user_id, created_at) VALUES (?, ?, ?, ?)",
                    [message_id, emoji, user_id, utcnow()],
                )
        return self.get(message_id)

    def soft_delete(self, message_id: str) -> bool:
        row = self._db.fetchone(
            "UPDATE messages SET is_deleted = TRUE, updated_at = ? WHERE id = ? RETURNING id",
            [utcnow(), message_id],
        )
        return row is not None

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get(self, message_id: str) -> Optional[MessageRecord]:
        row = self._db.fetchone(f"{self._SELECT} WHERE m.id = ?", [message_id])
        if not row:
            return None
        message = self._row_to_record(row)
        message.reactions = self._reactions([message_id]).get(message_id, {})
        return message

    def get_visible(self, message_id: str) -> MessageRecord:
        message = self.get(message_id)
        if message is None or message.is_deleted:
            raise NotFoundError("Message not found")
        return message

    def history(
        self,
        room_id: str,
        viewer_id: str,
        limit: int = 50,
        before: Optional[datetime] = None,
        before_id: Optional[str] = None,
    ) -> List[MessageRecord]:
        """The newest ``limit`` visible messages before a cursor, oldest first.

        ``before`` pages by creation time. ``before_id`` pages by insertion
        order relative to a message of this room, so messages sharing the
        cursor's timestamp are not skipped. Soft-deleted messages are skipped,
        and whispers are only included for their sender and target.

        Raises:
            NotFoundError: ``before_id`` is not a message of this room.
        """
        query = f"""
            {self._SELECT}
            WHERE m.room_id = ? AND NOT m.is_deleted
              AND (m.message_type <> 'whisper' OR m.sender_id = ? OR m.whisper_target = ?)
        """
        params: list = [room_id, viewer_id, viewer_id]
        before = _naive_utc(before)
        if before is not None:
            query += " AND m.created_at < ?"
            params.append(before)
        if before_id is not None:
            row = self._db.fetchone(
                "SELECT seq FROM messages WHERE id = ? AND room_id = ?", [before_id, room_id]
            )
            if row is None:
                raise NotFoundError("Message not found")
            query += " AND m.seq < ?"
            params.append(row[0])
        query += " ORDER BY m.seq DESC LIMIT ?"
        params.append(limit)

        messages = [self._row_to_record(r) for r in self._db.fetchall(query, params)]
        messages.reverse()
        reactions = self._reactions([m.id for m in messages])
        for message in messages:
            message.reactions = reactions.get(message.id, {})
        return messages

    def _reactions(self, message_ids: List[str]) -> Dict[str, Dict[str, List[str]]]:
        if not message_ids:
            return {}
        placeholders = ", ".join("?" for _ in message_ids)
        rows = self._db.fetchall(
            f"""
            SELECT message_id, emoji, user_id FROM message_reactions
            WHERE message_id IN ({placeholders})
            ORDER BY created_at ASC, emoji ASC, user_id ASC
            """,
            list(message_ids),
        )
        result: Dict[str, Dict[str, List[str]]] = {}
        for message_id, emoji, user_id in rows:
            result.setdefault(message_id, {}).setdefault(emoji, []).append(user_id)
        return result

    @staticmethod
    def _row_to_record(row: tuple) -> MessageRecord:
        (message_id, room_id, sender_id, sender_name, sender_picture, sender_status,
         content, message_type, whisper_target, target_name, has_neon_effect,
         neon_color, is_deleted, is_edited, edited_at, created_at) = row
        return MessageRecord(
            id=message_id,
            room_id=room_id,
            sender=UserSummary(
                id=sender_id,
                username=sender_name or "",
                profile_picture=sender_picture,
                status=sender_status or "offline",
            ),
            content=content,
            kind=message_kind(message_type, whisper_target),
            created_at=created_at,
            has_neon_effect=has_neon_effect,
            neon_color=neon_color,
            is_deleted=is_deleted,
            is_edited=is_edited,
            edited_at=edited_at,
            whisper_target=(
                UserSummary(id=whisper_target, username=target_name or "")
                if whisper_target else None
            ),
        )
