"""Tests for the comment thread relay."""

import pytest
from datetime import datetime
from unittest.mock import AsyncMock

from helpdesk.collab.document import CommentDoc, decode_update, encode_update
from helpdesk.collab.hub import (
    CommentRoom,
    RoomFullError,
    RoomRegistry,
    _parse_created_at,
    handle_message,
    load_thread,
    user_color,
)
from helpdesk.models import Comment, CommentThread


class FakeWebSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail
        self.close_code = None

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)

    async def close(self, code=1000):
        self.close_code = code


def _room(max_connections=20):
    return CommentRoom(ticket_id="ticket-1", doc=CommentDoc(), max_connections=max_connections)


def _peer_update(content, comment_id="c-1"):
    """Update a remote peer would send after writing a comment."""
    doc = CommentDoc()
    return doc.add_comment(
        {
            "id": comment_id,
            "ticket_id": "ticket-1",
            "user_id": "user-1",
            "user_name": "Maria",
            "content": content,
            "created_at": "2026-03-10T12:00:00+00:00",
        }
    )


class TestHelpers:
    def test_user_color_is_stable(self):
        assert user_color("user-1") == user_color("user-1")
        assert user_color("user-1").startswith("#")
        assert len(user_color("user-1")) == 7

    def test_parse_created_at(self):
        assert _parse_created_at("2026-03-10T09:00:00-03:00") == datetime(2026, 3, 10, 12, 0)
        assert _parse_created_at("2026-03-10T12:00:00Z") == datetime(2026, 3, 10, 12, 0)
        assert _parse_created_at("") is None


class TestCommentRoom:
    def test_room_full(self, regular_user):
        room = _room(max_connections=1)
        room.join(FakeWebSocket(), regular_user)
        with pytest.raises(RoomFullError):
            room.join(FakeWebSocket(), regular_user)

    def test_presence_deduplicates_users(self, regular_user, other_user):
        room = _room()
        room.join(FakeWebSocket(), regular_user)
        room.join(FakeWebSocket(), regular_user)
        room.join(FakeWebSocket(), other_user)
        assert [p["name"] for p in room.presence()] == ["Maria", "João"]

    @pytest.mark.asyncio
    async def test_broadcast_excludes_sender_and_drops_dead_peers(
        self, regular_user, other_user, admin_user
    ):
        room = _room()
        sender = room.join(FakeWebSocket(), regular_user)
        listener = room.join(FakeWebSocket(), other_user)
        dead = room.join(FakeWebSocket(fail=True), admin_user)

        await room.broadcast({"type": "ping"}, exclude=sender)

        assert sender.websocket.sent == []
        assert listener.websocket.sent == [{"type": "ping"}]
        assert dead not in room.peers

    @pytest.mark.asyncio
    async def test_welcome_sends_full_state(self, regular_user):
        room = _room()
        room.doc.add_comment({"id": "c-0", "content": "Primeiro"})
        peer = room.join(FakeWebSocket(), regular_user)

        await room.welcome(peer)

        message = peer.websocket.sent[0]
        assert message["type"] == "sync"
        assert CommentDoc(decode_update(message["update"])).comment_ids() == {"c-0"}

    @pytest.mark.asyncio
    async def test_apply_relays_and_returns_new_comments(self, regular_user, other_user):
        room = _room()
        sender = room.join(FakeWebSocket(), regular_user)
        listener = room.join(FakeWebSocket(), other_user)

        new = await room.apply(sender, _peer_update("Teste"))

        assert [c["content"] for c in new] == ["Teste"]
        assert listener.websocket.sent[0]["type"] == "update"
        assert sender.websocket.sent == []


class TestRoomRegistry:
    def test_open_loads_stored_comments(self, db_session, sample_ticket):
        sample_ticket.comments.append(
            Comment(id="c-db", user_id="user-1", user_name="Maria", content="Do banco")
        )
        db_session.commit()

        registry = RoomRegistry(max_connections=5)
        room = registry.open(db_session, sample_ticket)

        assert room.doc.comment_ids() == {"c-db"}
        assert registry.open(db_session, sample_ticket) is room
        assert db_session.get(CommentThread, "ticket-1") is not None

    def test_release_only_empty_rooms(self, db_session, sample_ticket, regular_user):
        registry = RoomRegistry()
        room = registry.open(db_session, sample_ticket)
        peer = room.join(FakeWebSocket(), regular_user)

        registry.release(room)
        assert registry.get("ticket-1") is room

        room.leave(peer)
        registry.release(room)
        assert registry.get("ticket-1") is None

    @pytest.mark.asyncio
    async def test_publish_comment_reaches_peers(
        self, db_session, sample_ticket, regular_user
    ):
        registry = RoomRegistry()
        room = registry.open(db_session, sample_ticket)
        peer = room.join(FakeWebSocket(), regular_user)

        await registry.publish_comment(
            db_session, "ticket-1", {"id": "c-rest", "content": "Via API"}
        )

        assert peer.websocket.sent[0]["type"] == "update"
        stored = db_session.get(CommentThread, "ticket-1")
        assert "c-rest" in CommentDoc(stored.state).comment_ids()

    @pytest.mark.asyncio
    async def test_publish_without_room_is_noop(self, db_session):
        await RoomRegistry().publish_comment(db_session, "ticket-1", {"id": "x"})
        assert db_session.get(CommentThread, "ticket-1") is None

    @pytest.mark.asyncio
    async def test_retract_comment(self, db_session, sample_ticket, regular_user):
        sample_ticket.comments.append(
            Comment(id="c-db", user_id="user-1", content="Apagar")
        )
        db_session.commit()
        registry = RoomRegistry()
        room = registry.open(db_session, sample_ticket)
        peer = room.join(FakeWebSocket(), regular_user)

        await registry.retract_comment(db_session, "ticket-1", "c-db")

        assert room.doc.comment_ids() == set()
        assert len(peer.websocket.sent) == 1

    @pytest.mark.asyncio
    async def test_close_room_disconnects_peers(
        self, db_session, sample_ticket, regular_user, other_user
    ):
        registry = RoomRegistry()
        room = registry.open(db_session, sample_ticket)
        first = room.join(FakeWebSocket(), regular_user)
        second = room.join(FakeWebSocket(fail=True), other_user)

        await registry.close_room("ticket-1")

        assert registry.get("ticket-1") is None
        assert room.closed is True
        assert room.peers == []
        assert first.websocket.sent == [{"type": "error", "message": "Ticket deleted"}]
        assert first.websocket.close_code == 1000

    @pytest.mark.asyncio
    async def test_close_unknown_room_is_noop(self):
        await RoomRegistry().close_room("ticket-404")


class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_update_records_comment(
        self, service, dispatcher, db_session, sample_ticket, regular_user
    ):
        room = RoomRegistry().open(db_session, sample_ticket)
        peer = room.join(FakeWebSocket(), regular_user)

        await handle_message(
            room,
            peer,
            {"type": "update", "update": encode_update(_peer_update("Pelo thread"))},
            service,
            regular_user,
        )

        comment = db_session.get(Comment, "c-1")
        assert comment.content == "Pelo thread"
        assert comment.created_at == datetime(2026, 3, 10, 12, 0)
        assert dispatcher.dispatch.await_args.args[0] == "ticket.comment_added"
        stored = db_session.get(CommentThread, "ticket-1")
        assert CommentDoc(stored.state).comment_ids() == {"c-1"}

    @pytest.mark.asyncio
    async def test_repeated_update_not_recorded_twice(
        self, service, db_session, sample_ticket, regular_user
    ):
        room = RoomRegistry().open(db_session, sample_ticket)
        peer = room.join(FakeWebSocket(), regular_user)
        update = encode_update(_peer_update("Uma vez"))

        for _ in range(2):
            await handle_message(
                room, peer, {"type": "update", "update": update}, service, regular_user
            )

        assert len(sample_ticket.comments) == 1

    @pytest.mark.asyncio
    async def test_bad_encoding(self, service, regular_user):
        room = _room()
        peer = room.join(FakeWebSocket(), regular_user)
        await handle_message(
            room, peer, {"type": "update", "update": "abc"}, service, regular_user
        )
        assert peer.websocket.sent == [
            {"type": "error", "message": "Invalid update encoding"}
        ]

    @pytest.mark.asyncio
    async def test_typing_relayed(self, service, regular_user, other_user):
        room = _room()
        typist = room.join(FakeWebSocket(), regular_user)
        reader = room.join(FakeWebSocket(), other_user)

        await handle_message(
            room, typist, {"type": "typing", "is_typing": True}, service, regular_user
        )

        assert reader.websocket.sent == [
            {"type": "typing", "user_id": "user-1", "user_name": "Maria", "is_typing": True}
        ]
        assert typist.websocket.sent == []

    @pytest.mark.asyncio
    async def test_unknown_type(self, service, regular_user):
        room = _room()
        peer = room.join(FakeWebSocket(), regular_user)
        peer.send = AsyncMock()
        await handle_message(room, peer, {"type": "shout"}, service, regular_user)
        peer.send.assert_awaited_once_with(
            {"type": "error", "message": "Unknown message type 'shout'"}
        )

    @pytest.mark.asyncio
    async def test_non_object_message(self, service, regular_user):
        room = _room()
        peer = room.join(FakeWebSocket(), regular_user)
        await handle_message(room, peer, ["not", "an", "object"], service, regular_user)
        assert peer.websocket.sent == [
            {"type": "error", "message": "Message must be a JSON object"}
        ]

    @pytest.mark.asyncio
    async def test_closed_room_ignores_updates(
        self, service, db_session, sample_ticket, regular_user
    ):
        registry = RoomRegistry()
        room = registry.open(db_session, sample_ticket)
        peer = room.join(FakeWebSocket(), regular_user)
        await registry.close_room("ticket-1")
        await service.delete_ticket("ticket-1", None, dispatch_webhooks=False)

        await handle_message(
            room,
            peer,
            {"type": "update", "update": encode_update(_peer_update("Tarde demais"))},
            service,
            regular_user,
        )

        assert db_session.get(CommentThread, "ticket-1") is None
        assert db_session.get(Comment, "c-1") is None
