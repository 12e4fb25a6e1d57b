"""Realtime presence and messaging core.

``RealtimeServer`` receives decoded JSON frames from one WebSocket session at
a time, checks the session's state tag, calls the repositories and fans the
results out through the presence table.

Protocol (client -> server):
    - authenticate {token}
    - join_room {roomId}
    - leave_room {roomId}
    - send_message {roomId, content, messageType, whisperTarget?, hasNeonEffect?, neonColor?}
    - add_reaction {messageId, emoji}
    - update_status {status}
    - typing_start / typing_stop {roomId}

Protocol (server -> client):
    authenticated, auth_error, room_joined, room_left, user_joined, user_left,
    new_message, message_sent, reaction_updated, user_status_updated,
    status_updated, user_typing, session_replaced, error

Every failure is reported to the originating session as an ``error`` frame
(``auth_error`` for authenticate); nothing raised by a handler closes the
connection.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from app.auth.schemas import UserStatus
from app.auth.service import AuthService
from app.errors import AuthError, DomainError, NotFoundError, ValidationError
from app.store.database import utcnow

from .manager import ConnectionState, PresenceRecord, PresenceTable, Session
from .repository import MessageRepository, RoomRepository
from .schemas import MessageCreate, MessageRecord, ReactionSummary, Whisper

logger = logging.getLogger(__name__)

Handler = Callable[[Session, dict], Awaitable[None]]

# Human-readable operation names used in "Failed to ..." errors
_OPERATIONS = {
    "authenticate": "authenticate",
    "join_room": "join room",
    "leave_room": "leave room",
    "send_message": "send message",
    "add_reaction": "add reaction",
    "update_status": "update status",
    "typing_start": "update typing status",
    "typing_stop": "update typing status",
}


def _parse(model: type, frame: dict) -> BaseModel:
    """Validate ``frame`` against ``model``, raising the domain ValidationError."""
    try:
        return model.model_validate(frame)
    except PydanticValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise ValidationError("Validation Error", errors=errors) from None


def _required(frame: dict, key: str) -> str:
    value = frame.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} is required")
    return value.strip()


class RealtimeServer:
    """Per-process realtime core: owns the presence table, dispatches frames."""

    def __init__(
        self,
        presence: PresenceTable,
        auth: AuthService,
        rooms: RoomRepository,
        messages: MessageRepository,
    ) -> None:
        self.presence = presence
        self.auth = auth
        self.rooms = rooms
        self.messages = messages
        self._handlers: Dict[str, Handler] = {
            "authenticate": self.authenticate,
            "join_room": self.join_room,
            "leave_room": self.leave_room,
            "send_message": self.send_message,
            "add_reaction": self.add_reaction,
            "update_status": self.update_status,
            "typing_start": self.typing_start,
            "typing_stop": self.typing_stop,
        }

    def open_session(self, websocket: Any) -> Session:
        session = Session(websocket)
        logger.info(f"[WS] Session {session.id} opened")
        return session

    async def dispatch(self, session: Session, frame: dict) -> None:
        """Run the handler for one inbound frame and report any failure."""
        if session.state is ConnectionState.DISCONNECTED:
            return

        event_type = frame.get("type")
        handler = self._handlers.get(event_type) if isinstance(event_type, str) else None
        if handler is None:
            await self._error(session, "Unknown event type")
            return

        try:
            await handler(session, frame)
        except DomainError as e:
            logger.info(f"[WS] {event_type} rejected for {session!r}: {e.message}")
            if event_type == "authenticate":
                await self.presence.send(session, {"type": "auth_error", "message": e.message})
            else:
                await self._error(session, e.message, e.errors)
        except Exception:
            logger.exception(f"[WS] {event_type} failed for {session!r}")
            await self._error(session, f"Failed to {_OPERATIONS[event_type]}")

    def active_users(self) -> List[dict]:
        return self.presence.active_users()

    # =========================================================================
    # Handlers
    # =========================================================================

    async def authenticate(self, session: Session, frame: dict) -> None:
        if session.state is not ConnectionState.UNAUTHENTICATED:
            raise AuthError("Already authenticated")

        token = frame.get("token")
        if not token:
            raise AuthError("No token provided")
        user = self.auth.authenticate(token)

        previous = self.presence.get(user.id)
        if previous is not None and previous.session is not session:
            await self._evict(previous)

        profile = user.public_profile(utcnow())
        self.presence.register(session, profile)
        session.user_id = user.id
        session.username = user.username
        session.state = ConnectionState.AUTHENTICATED

        logger.info(f"[WS] {user.username} authenticated on session {session.id}")
        await self.presence.send(session, {
            "type": "authenticated",
            "success": True,
            "user": profile.model_dump(mode="json"),
        })

    async def join_room(self, session: Session, frame: dict) -> None:
        record = self._require_record(session)
        room_id = _required(frame, "roomId")

        room = self.rooms.join(room_id, record.user_id)

        already_joined = room_id in record.rooms
        self.presence.subscribe(room_id, session)
        record.rooms.add(room_id)
        session.state = ConnectionState.JOINED

        await self.presence.send(session, {
            "type": "room_joined",
            "room": room.public_info().model_dump(mode="json"),
            "activeUsers": [u.model_dump(mode="json") for u in room.active_users()],
        })
        if not already_joined:
            await self.presence.broadcast(room_id, {
                "type": "user_joined",
                "roomId": room_id,
                "user": self._user_ref(record),
                "message": f"{record.profile.username} joined the room!",
            }, exclude=session)
        logger.info(f"[WS] {record.profile.username} joined room {room_id}")

    async def leave_room(self, session: Session, frame: dict) -> None:
        record = self._require_record(session)
        room_id = _required(frame, "roomId")

        if self.rooms.get(room_id) is None:
            raise NotFoundError("Chatroom not found")
        self.rooms.remove_occupant(room_id, record.user_id)

        self.presence.unsubscribe(room_id, session)
        record.rooms.discard(room_id)
        self._refresh_state(session, record)

        await self.presence.send(session, {"type": "room_left", "roomId": room_id})
        await self.presence.broadcast(room_id, {
            "type": "user_left",
            "roomId": room_id,
            "user": self._user_ref(record),
            "message": f"{record.profile.username} left the room",
        })
        logger.info(f"[WS] {record.profile.username} left room {room_id}")

    async def send_message(self, session: Session, frame: dict) -> None:
        record = self._require_record(session)
        room_id = _required(frame, "roomId")
        body = _parse(MessageCreate, frame)

        message = self.messages.send(room_id, record.user_id, body)
        await self.deliver(message)
        await self.presence.send(session, {
            "type": "message_sent",
            "success": True,
            "messageId": message.id,
        })

    async def add_reaction(self, session: Session, frame: dict) -> None:
        record = self._require_record(session)
        message_id = _required(frame, "messageId")
        emoji = frame.get("emoji") if isinstance(frame.get("emoji"), str) else ""

        message = self.messages.toggle_reaction(message_id, record.user_id, emoji)
        await self.publish_reactions(message)

    async def update_status(self, session: Session, frame: dict) -> None:
        record = self._require_record(session)
        try:
            status = UserStatus(frame.get("status"))
        except ValueError:
            raise ValidationError("Invalid status. Use: online, busy, away, or offline") from None

        user = self.auth.update_status(record.user_id, status)
        record.profile = user.public_profile(utcnow())

        for room_id in list(record.rooms):
            await self.presence.broadcast(room_id, {
                "type": "user_status_updated",
                "roomId": room_id,
                "userId": user.id,
                "username": user.username,
                "status": status.value,
            }, exclude=session)
        await self.presence.send(session, {"type": "status_updated", "status": status.value})

    async def typing_start(self, session: Session, frame: dict) -> None:
        await self._typing(session, frame, True)

    async def typing_stop(self, session: Session, frame: dict) -> None:
        await self._typing(session, frame, False)

    async def _typing(self, session: Session, frame: dict, is_typing: bool) -> None:
        record = self._require_record(session)
        room_id = _required(frame, "roomId")
        await self.presence.broadcast(room_id, {
            "type": "user_typing",
            "userId": record.user_id,
            "username": record.profile.username,
            "roomId": room_id,
            "isTyping": is_typing,
        }, exclude=session)

    # =========================================================================
    # Fan-out shared with the REST facade
    # =========================================================================

    async def deliver(self, message: MessageRecord) -> None:
        """Route a persisted message to its audience.

        A whisper goes to the sender and, if connected, the target only; an
        offline target is skipped. Anything else goes to every subscriber of
        the room, sender included.
        """
        outbound = {"type": "new_message", **message.public_data().model_dump(mode="json")}
        if isinstance(message.kind, Whisper):
            await self.presence.send_to_user(message.sender.id, outbound)
            if message.kind.target != message.sender.id:
                await self.presence.send_to_user(message.kind.target, outbound)
        else:
            await self.presence.broadcast(message.room_id, outbound)

    async def publish_reactions(self, message: MessageRecord) -> ReactionSummary:
        summary = ReactionSummary(
            messageId=message.id,
            roomId=message.room_id,
            reactions=message.reaction_counts(),
            totalReactions=message.total_reactions,
        )
        await self.presence.broadcast(
            message.room_id,
            {"type": "reaction_updated", **summary.model_dump()},
        )
        return summary

    async def detach(self, user_id: str, room_id: str) -> None:
        """Drop a room from a connected user's session after a REST leave."""
        record = self.presence.get(user_id)
        if record is None or room_id not in record.rooms:
            return
        self.presence.unsubscribe(room_id, record.session)
        record.rooms.discard(room_id)
        self._refresh_state(record.session, record)
        await self.presence.send(record.session, {"type": "room_left", "roomId": room_id})
        await self.presence.broadcast(room_id, {
            "type": "user_left",
            "roomId": room_id,
            "user": self._user_ref(record),
            "message": f"{record.profile.username} left the room",
        })

    # =========================================================================
    # Teardown
    # =========================================================================

    async def disconnect(self, session: Session) -> None:
        """Clean up after transport closure.

        Best-effort: store failures are logged and teardown continues.
        Sessions already replaced by a newer authentication are ignored.
        """
        if session.state is ConnectionState.DISCONNECTED:
            return
        was_authenticated = session.is_authenticated
        session.state = ConnectionState.DISCONNECTED

        record = self.presence.remove(session)
        if not was_authenticated or record is None:
            logger.info(f"[WS] Session {session.id} closed")
            return

        room_ids = self._release_rooms(record)
        try:
            self.auth.users.set_status(record.user_id, UserStatus.OFFLINE)
        except Exception as e:
            logger.error(f"[WS] Failed to mark {record.profile.username} offline: {e}")

        await self._announce_departure(record, room_ids)
        logger.info(f"[WS] {record.profile.username} disconnected ({len(room_ids)} rooms)")

    async def _evict(self, previous: PresenceRecord) -> None:
        """Force-disconnect the session a user authenticated with before."""
        old = previous.session
        old.state = ConnectionState.DISCONNECTED
        self.presence.remove(old)

        room_ids = self._release_rooms(previous)
        await self._announce_departure(previous, room_ids)

        await self.presence.send(old, {
            "type": "session_replaced",
            "message": "You signed in from another connection",
        })
        await self.presence.close(old)
        logger.info(f"[WS] Replaced session {old.id} of {previous.profile.username}")

    def _release_rooms(self, record: PresenceRecord) -> List[str]:
        """Remove the user's occupancy of every room the record holds."""
        room_ids = sorted(record.rooms)
        for room_id in room_ids:
            try:
                self.rooms.remove_occupant(room_id, record.user_id)
            except Exception as e:
                logger.error(
                    f"[WS] Failed to remove {record.profile.username} from room {room_id}: {e}"
                )
        record.rooms.clear()
        return room_ids

    async def _announce_departure(self, record: PresenceRecord, room_ids: List[str]) -> None:
        for room_id in room_ids:
            await self.presence.broadcast(room_id, {
                "type": "user_left",
                "roomId": room_id,
                "user": self._user_ref(record),
                "message": f"{record.profile.username} disconnected",
            })

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_record(self, session: Session) -> PresenceRecord:
        if not session.is_authenticated:
            raise AuthError("Not authenticated")
        record = self.presence.record_for(session)
        if record is None:
            raise AuthError("Not authenticated")
        return record

    @staticmethod
    def _refresh_state(session: Session, record: PresenceRecord) -> None:
        session.state = ConnectionState.JOINED if record.rooms else ConnectionState.AUTHENTICATED

    @staticmethod
    def _user_ref(record: PresenceRecord) -> dict:
        return {"id": record.user_id, "username": record.profile.username}

    async def _error(
        self, session: Session, message: str, errors: Optional[List[str]] = None
    ) -> None:
        frame: Dict[str, Any] = {"type": "error", "message": message}
        if errors:
            frame["errors"] = errors
        await self.presence.send(session, frame)
