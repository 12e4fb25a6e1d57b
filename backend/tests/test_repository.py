"""Tests for the room and message repositories over an in-memory DuckDB."""
from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from app.chat.schemas import MessageCreate, Public, RoomCreate, Topic, Whisper
from app.errors import ConflictError, ForbiddenError, NotFoundError, RoomFullError, ValidationError


@pytest.fixture
def alice(register_user):
    return register_user("alice")[1]


@pytest.fixture
def bob(register_user):
    return register_user("bob")[1]


@pytest.fixture
def carol(register_user):
    return register_user("carol")[1]


class TestRooms:
    def test_create_adds_creator_as_occupant(self, create_room, alice):
        room = create_room(alice.id, maxUsers=10)

        assert room.name == "Night Owls"
        assert room.topic is Topic.GENERAL
        assert room.max_users == 10
        assert room.neon_theme.primaryColor == "#FF00FF"
        assert [o.user_id for o in room.occupants] == [alice.id]
        assert room.public_info().currentUserCount == 1

    def test_default_capacity(self, create_room, alice):
        assert create_room(alice.id).max_users == 100

    def test_duplicate_name_ignores_case(self, create_room, alice, bob):
        create_room(alice.id, name="Night Owls")
        with pytest.raises(ConflictError):
            create_room(bob.id, name="night owls")

    def test_inactive_room_name_can_be_reused(self, services, create_room, alice):
        old = create_room(alice.id, name="Night Owls")
        services.rooms.set_active(old.id, False)
        new = create_room(alice.id, name="NIGHT OWLS")
        assert new.id != old.id

    def test_list_active_most_recent_first(self, services, create_room, alice, bob):
        first = create_room(alice.id, name="First Room")
        second = create_room(alice.id, name="Second Room")
        hidden = create_room(alice.id, name="Hidden Room")
        services.rooms.set_active(hidden.id, False)

        services.rooms.join(first.id, bob.id)

        ids = [r.id for r in services.rooms.list_active()]
        assert ids == [first.id, second.id]

    def test_list_active_limit(self, create_room, services, alice):
        for i in range(3):
            create_room(alice.id, name=f"Room {i}")
        assert len(services.rooms.list_active(limit=2)) == 2

    def test_get_active_missing(self, services):
        with pytest.raises(NotFoundError):
            services.rooms.get_active("no-such-room")


class TestOccupancy:
    def test_join_is_idempotent(self, services, create_room, alice, bob):
        room = create_room(alice.id)

        services.rooms.join(room.id, bob.id)
        again = services.rooms.join(room.id, bob.id)

        assert [o.user_id for o in again.occupants].count(bob.id) == 1
        assert len(again.occupants) == 2

    def test_full_room_rejects_newcomer(self, services, create_room, alice, bob, carol):
        room = create_room(alice.id, maxUsers=2)
        services.rooms.join(room.id, bob.id)

        with pytest.raises(RoomFullError, match="full"):
            services.rooms.join(room.id, carol.id)

        assert len(services.rooms.get(room.id).occupants) == 2

    def test_full_room_allows_existing_occupant(self, services, create_room, alice, bob):
        room = create_room(alice.id, maxUsers=2)
        services.rooms.join(room.id, bob.id)
        assert len(services.rooms.join(room.id, bob.id).occupants) == 2

    def test_join_inactive_room(self, services, create_room, alice, bob):
        room = create_room(alice.id)
        services.rooms.set_active(room.id, False)
        with pytest.raises(NotFoundError):
            services.rooms.join(room.id, bob.id)

    def test_remove_occupant(self, services, create_room, alice, bob):
        room = create_room(alice.id)
        services.rooms.join(room.id, bob.id)

        assert services.rooms.remove_occupant(room.id, bob.id) is True
        assert services.rooms.remove_occupant(room.id, bob.id) is False
        assert not services.rooms.is_occupant(room.id, bob.id)

    def test_rejoin_after_leave(self, services, create_room, alice, bob):
        room = create_room(alice.id)
        services.rooms.join(room.id, bob.id)
        services.rooms.remove_occupant(room.id, bob.id)
        assert services.rooms.join(room.id, bob.id).has_occupant(bob.id)


class TestMessages:
    def test_send_public(self, services, create_room, alice):
        room = create_room(alice.id)
        message = services.messages.send(room.id, alice.id, MessageCreate(content="  hello  "))

        assert message.content == "hello"
        assert isinstance(message.kind, Public)
        assert message.sender.username == "alice"
        assert message.public_data().messageType == "public"

        refreshed = services.rooms.get(room.id)
        assert refreshed.total_messages == 1
        assert refreshed.last_activity >= room.last_activity

    def test_send_requires_occupancy(self, services, create_room, alice, bob):
        room = create_room(alice.id)
        with pytest.raises(ForbiddenError):
            services.messages.send(room.id, bob.id, MessageCreate(content="hi"))

    def test_send_to_missing_room(self, services, alice):
        with pytest.raises(NotFoundError):
            services.messages.send("no-such-room", alice.id, MessageCreate(content="hi"))

    @pytest.mark.parametrize("content", ["", "   ", "x" * 501])
    def test_send_rejects_bad_content(self, services, create_room, alice, content):
        room = create_room(alice.id)
        with pytest.raises(ValidationError):
            services.messages.send(room.id, alice.id, MessageCreate(content=content))

    def test_whisper_needs_target(self, services, create_room, alice):
        room = create_room(alice.id)
        with pytest.raises(ValidationError):
            services.messages.send(room.id, alice.id, MessageCreate(content="psst", messageType="whisper"))

    def test_whisper_target_must_exist(self, services, create_room, alice):
        room = create_room(alice.id)
        body = MessageCreate(content="psst", messageType="whisper", whisperTarget="ghost")
        with pytest.raises(NotFoundError):
            services.messages.send(room.id, alice.id, body)

    def test_whispers_disabled(self, services, create_room, alice, bob):
        room = create_room(alice.id, allowWhispers=False)
        body = MessageCreate(content="psst", messageType="whisper", whisperTarget=bob.id)
        with pytest.raises(ForbiddenError):
            services.messages.send(room.id, alice.id, body)

    def test_target_dropped_for_public(self, services, create_room, alice, bob):
        room = create_room(alice.id)
        body = MessageCreate(content="hi", messageType="public", whisperTarget=bob.id)
        message = services.messages.send(room.id, alice.id, body)

        assert isinstance(message.kind, Public)
        assert message.whisper_target is None

    def test_whisper_carries_target(self, services, create_room, alice, bob):
        room = create_room(alice.id)
        body = MessageCreate(content="psst", messageType="whisper", whisperTarget=bob.id)
        message = services.messages.send(room.id, alice.id, body)

        assert message.kind == Whisper(target=bob.id)
        assert message.public_data().whisperTarget == {"id": bob.id, "username": "bob"}

    def test_unknown_type(self, services, create_room, alice):
        room = create_room(alice.id)
        with pytest.raises(ValidationError):
            services.messages.send(room.id, alice.id, MessageCreate(content="hi", messageType="shout"))

    def test_counter_failure_keeps_message(self, services, create_room, alice, monkeypatch):
        room = create_room(alice.id)

        def broken(room_id):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(services.rooms, "record_message_activity", broken)
        message = services.messages.send(room.id, alice.id, MessageCreate(content="still here"))

        assert services.messages.get(message.id) is not None
        assert services.rooms.get(room.id).total_messages == 0


class TestReactions:
    def test_toggle_twice_restores(self, services, create_room, alice, bob):
        room = create_room(alice.id)
        message = services.messages.send(room.id, alice.id, MessageCreate(content="hi"))

        once = services.messages.toggle_reaction(message.id, bob.id, "🔥")
        assert once.reactions == {"🔥": [bob.id]}
        assert once.total_reactions == 1

        twice = services.messages.toggle_reaction(message.id, bob.id, "🔥")
        assert twice.reactions == {}
        assert twice.total_reactions == 0

        thrice = services.messages.toggle_reaction(message.id, bob.id, "🔥")
        assert thrice.reactions == once.reactions

    def test_counts_per_emoji(self, services, create_room, alice, bob):
        room = create_room(alice.id)
        message = services.messages.send(room.id, alice.id, MessageCreate(content="hi"))

        services.messages.toggle_reaction(message.id, alice.id, "🔥")
        services.messages.toggle_reaction(message.id, bob.id, "🔥")
        result = services.messages.toggle_reaction(message.id, bob.id, "💜")

        assert result.reaction_counts() == {"🔥": 2, "💜": 1}
        assert result.total_reactions == 3

    def test_missing_or_deleted_message(self, services, create_room, alice):
        room = create_room(alice.id)
        message = services.messages.send(room.id, alice.id, MessageCreate(content="hi"))
        services.messages.soft_delete(message.id)

        with pytest.raises(NotFoundError):
            services.messages.toggle_reaction(message.id, alice.id, "🔥")
        with pytest.raises(NotFoundError):
            services.messages.toggle_reaction("no-such-message", alice.id, "🔥")

    def test_empty_emoji(self, services, create_room, alice):
        room = create_room(alice.id)
        message = services.messages.send(room.id, alice.id, MessageCreate(content="hi"))
        with pytest.raises(ValidationError):
            services.messages.toggle_reaction(message.id, alice.id, "  ")

    def test_emojis_disabled(self, services, create_room, alice):
        room = create_room(alice.id, allowEmojis=False)
        message = services.messages.send(room.id, alice.id, MessageCreate(content="hi"))
        with pytest.raises(ForbiddenError):
            services.messages.toggle_reaction(message.id, alice.id, "🔥")


class TestHistory:
    def _send(self, services, room_id, user_id, n):
        return [
            services.messages.send(room_id, user_id, MessageCreate(content=f"m{i}"))
            for i in range(n)
        ]

    def test_oldest_first(self, services, create_room, alice):
        room = create_room(alice.id)
        self._send(services, room.id, alice.id, 5)

        page = services.messages.history(room.id, alice.id, limit=3)

        assert [m.content for m in page] == ["m2", "m3", "m4"]

    def test_before_cursor(self, services, create_room, alice):
        room = create_room(alice.id)
        sent = self._send(services, room.id, alice.id, 3)

        cursor = sent[-1].created_at + timedelta(microseconds=1)
        page = services.messages.history(room.id, alice.id, limit=50, before=cursor)
        assert [m.id for m in page] == [m.id for m in sent]

        empty = services.messages.history(
            room.id, alice.id, limit=50, before=sent[0].created_at - timedelta(seconds=1)
        )
        assert empty == []

    def test_before_id_keeps_same_timestamp_messages(self, services, create_room, alice):
        room = create_room(alice.id)
        stamp = datetime(2024, 2, 7, 16, 0, 0)
        for i in range(4):
            services.db.execute(
                """
                INSERT INTO messages (id, room_id, sender_id, content, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [f"tie-{i}", room.id, alice.id, f"t{i}", stamp, stamp],
            )

        newest = services.messages.history(room.id, alice.id, limit=2)
        assert [m.id for m in newest] == ["tie-2", "tie-3"]

        older = services.messages.history(room.id, alice.id, limit=2, before_id=newest[0].id)
        assert [m.id for m in older] == ["tie-0", "tie-1"]

        by_time = services.messages.history(room.id, alice.id, limit=2, before=newest[0].created_at)
        assert by_time == []

    def test_before_id_from_other_room(self, services, create_room, alice):
        room = create_room(alice.id)
        other = create_room(alice.id, name="Other Room")
        message = services.messages.send(other.id, alice.id, MessageCreate(content="elsewhere"))

        with pytest.raises(NotFoundError):
            services.messages.history(room.id, alice.id, before_id=message.id)

    def test_excludes_deleted(self, services, create_room, alice):
        room = create_room(alice.id)
        sent = self._send(services, room.id, alice.id, 2)
        services.messages.soft_delete(sent[0].id)

        assert [m.content for m in services.messages.history(room.id, alice.id)] == ["m1"]

    def test_whispers_only_for_participants(self, services, create_room, alice, bob, carol):
        room = create_room(alice.id)
        services.rooms.join(room.id, bob.id)
        services.rooms.join(room.id, carol.id)
        services.messages.send(room.id, alice.id, MessageCreate(content="hello all"))
        services.messages.send(
            room.id, alice.id,
            MessageCreate(content="psst", messageType="whisper", whisperTarget=bob.id),
        )

        assert [m.content for m in services.messages.history(room.id, alice.id)] == ["hello all", "psst"]
        assert [m.content for m in services.messages.history(room.id, bob.id)] == ["hello all", "psst"]
        assert [m.content for m in services.messages.history(room.id, carol.id)] == ["hello all"]

    def test_reactions_in_history(self, services, create_room, alice):
        room = create_room(alice.id)
        message = services.messages.send(room.id, alice.id, MessageCreate(content="hi"))
        services.messages.toggle_reaction(message.id, alice.id, "🔥")

        page = services.messages.history(room.id, alice.id)
        assert page[0].reaction_counts() == {"🔥": 1}


class TestRoomCreateModel:
    def test_name_is_trimmed(self):
        assert RoomCreate(name="  Chill  ", topic="music").name == "Chill"

    def test_capacity_bounds(self):
        with pytest.raises(PydanticValidationError):
            RoomCreate(name="Chill", topic="music", maxUsers=1)
        with pytest.raises(PydanticValidationError):
            RoomCreate(name="Chill", topic="music", maxUsers=501)
