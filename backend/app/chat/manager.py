"""Presence table for realtime chat connections.

This module tracks which users are connected, the connection that serves
each of them, and which room broadcast groups every connection is
subscribed to. It is the only in-memory shared state of the realtime core.

Key features:
    - At most one presence record per authenticated user id
    - Room broadcast groups (room id -> subscribed sessions)
    - Concurrent fan-out with asyncio.gather() over a snapshot of the group
    - Automatic removal of connections whose send fails

Thread Safety:
    This implementation is designed for async/await usage with a single event
    loop. It is NOT thread-safe for concurrent access from multiple threads;
    a multi-threaded runtime would need one lock around the records and the
    groups, with fan-out snapshots taken under it.

The table is owned by the ``RealtimeServer`` instance (see ``realtime.py``),
never by a module global, so tests can build as many as they need.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from app.auth.schemas import PublicProfile
from app.store.database import utcnow

logger = logging.getLogger(__name__)

# Close code sent to a session replaced by a newer authentication
SESSION_REPLACED_CLOSE_CODE = 4001


class ConnectionState(str, Enum):
    """Per-connection state tag checked by every realtime handler.

    Attributes:
        UNAUTHENTICATED: Socket accepted, no valid token seen yet.
        AUTHENTICATED: Token verified, no rooms joined.
        JOINED: Authenticated and subscribed to at least one room.
        DISCONNECTED: Terminal; transport closed or session replaced.
    """
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    JOINED = "joined"
    DISCONNECTED = "disconnected"


class Session:
    """One realtime connection and its state tag.

    ``websocket`` is anything with ``async send_json(dict)`` and
    ``async close(code)``; FastAPI's ``WebSocket`` in production.
    """

    def __init__(self, websocket: Any) -> None:
        self.id = str(uuid.uuid4())
        self.websocket = websocket
        self.state = ConnectionState.UNAUTHENTICATED
        self.user_id: Optional[str] = None
        self.username: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.state in (ConnectionState.AUTHENTICATED, ConnectionState.JOINED)

    def __repr__(self) -> str:
        return f"<Session {self.id} user={self.username} state={self.state.value}>"


@dataclass
class PresenceRecord:
    """In-memory record of one connected user."""
    user_id: str
    session: Session
    profile: PublicProfile
    connected_at: datetime = field(default_factory=utcnow)
    rooms: Set[str] = field(default_factory=set)


class PresenceTable:
    """Connected users, their sessions and the room broadcast groups."""

    def __init__(self) -> None:
        # user_id -> presence record
        self.records: Dict[str, PresenceRecord] = {}

        # room_id -> sessions subscribed to the room's broadcast group
        self.groups: Dict[str, Set[Session]] = {}

    # =========================================================================
    # Presence records
    # =========================================================================

    def register(self, session: Session, profile: PublicProfile) -> Optional[PresenceRecord]:
        """Create the record for ``session``'s user, replacing any previous one.

        Returns:
            The replaced record, if there was one. The caller is responsible
            for evicting its session.
        """
        previous = self.records.get(profile.id)
        self.records[profile.id] = PresenceRecord(
            user_id=profile.id,
            session=session,
            profile=profile,
        )
        logger.info(f"[Presence] {profile.username} connected ({len(self.records)} online)")
        return previous

    def get(self, user_id: str) -> Optional[PresenceRecord]:
        return self.records.get(user_id)

    def record_for(self, session: Session) -> Optional[PresenceRecord]:
        """The record owned by ``session``, or None if it was replaced."""
        if session.user_id is None:
            return None
        record = self.records.get(session.user_id)
        if record is None or record.session is not session:
            return None
        return record

    def session_of(self, user_id: str) -> Optional[Session]:
        record = self.records.get(user_id)
        return record.session if record else None

    def remove(self, session: Session) -> Optional[PresenceRecord]:
        """Destroy ``session``'s record and drop it from every group.

        A record that already belongs to a newer session is left alone.
        """
        for room_id in list(self.groups):
            self.unsubscribe(room_id, session)
        record = self.record_for(session)
        if record is None:
            return None
        del self.records[record.user_id]
        logger.info(f"[Presence] {record.profile.username} removed ({len(self.records)} online)")
        return record

    def active_users(self) -> List[dict]:
        """Snapshot of connected users with their room counts."""
        return [
            {
                "user": record.profile.model_dump(mode="json"),
                "connectedAt": record.connected_at.isoformat(),
                "currentRooms": len(record.rooms),
            }
            for record in self.records.values()
        ]

    # =========================================================================
    # Broadcast groups
    # =========================================================================

    def subscribe(self, room_id: str, session: Session) -> None:
        self.groups.setdefault(room_id, set()).add(session)

    def unsubscribe(self, room_id: str, session: Session) -> None:
        group = self.groups.get(room_id)
        if group is None:
            return
        group.discard(session)
        if not group:
            del self.groups[room_id]

    def subscribers(self, room_id: str) -> List[Session]:
        return list(self.groups.get(room_id, ()))

    def get_room_size(self, room_id: str) -> int:
        return len(self.groups.get(room_id, ()))

    # =========================================================================
    # Delivery
    # =========================================================================

    async def send(self, session: Session, message: dict) -> bool:
        """Send one frame to one session. Returns False if the send failed."""
        try:
            await session.websocket.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to session {session.id}: {e}")
            return False

    async def send_to_user(self, user_id: str, message: dict) -> bool:
        """Send to the user's current session, if connected."""
        session = self.session_of(user_id)
        if session is None:
            return False
        return await self.send(session, message)

    async def broadcast(
        self, room_id: str, message: dict, exclude: Optional[Session] = None
    ) -> None:
        """Send a frame to every session in the room's group concurrently.

        Sessions whose send fails are dropped from the group.

        Args:
            room_id: Group to broadcast to.
            message: JSON-serializable frame.
            exclude: Optional session to skip (typically the originator).
        """
        sessions = [s for s in self.subscribers(room_id) if s is not exclude]
        if not sessions:
            return

        results = await asyncio.gather(
            *[self.send(s, message) for s in sessions],
            return_exceptions=True,
        )

        for session, ok in zip(sessions, results):
            if ok is not True:
                self.unsubscribe(room_id, session)
                logger.debug(f"Removed dead session {session.id} from room {room_id}")

    async def close(self, session: Session, code: int = SESSION_REPLACED_CLOSE_CODE) -> None:
        try:
            await session.websocket.close(code=code)
        except Exception as e:
            logger.debug(f"Failed to close session {session.id}: {e}")
