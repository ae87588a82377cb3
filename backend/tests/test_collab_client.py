"""Tests for the comment thread client."""

import json

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from helpdesk.collab.client import CommentThreadClient
from helpdesk.collab.document import CommentDoc, decode_update, encode_update


class FakeConnection:
    """Server side of a WebSocket: replays messages, records what was sent."""

    def __init__(self, messages=(), raw=False):
        self.messages = list(messages)
        self.raw = raw
        self.sent = []
        self.closed = False

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self._replay()

    async def _replay(self):
        for message in self.messages:
            yield message if self.raw else json.dumps(message)


def _client(connect=None, **kwargs):
    return CommentThreadClient(
        "ws://helpdesk.local/",
        "ticket-1",
        "hd_maria",
        user_id="user-1",
        user_name="Maria",
        max_retries=kwargs.pop("max_retries", 5),
        retry_delay=kwargs.pop("retry_delay", 2.0),
        connection_timeout=kwargs.pop("connection_timeout", 5.0),
        connect=connect or AsyncMock(),
    )


@pytest.fixture
def no_sleep():
    with patch("helpdesk.collab.client.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


class TestClientBasics:
    def test_url_and_room(self):
        client = _client()
        assert client.url == "ws://helpdesk.local/tickets/ticket-1/thread?api_key=hd_maria"
        assert client.room == "ticket-ticket-1"
        assert client.connected is False

    def test_presence_and_typing(self):
        client = _client()
        client.handle_message({"type": "presence", "users": [{"id": "user-2"}]})
        client.handle_message({"type": "typing", "user_id": "user-2", "is_typing": True})
        assert client.active_users == [{"id": "user-2"}]
        assert client.typing_users == {"user-2": True}

        client.handle_message({"type": "typing", "user_id": "user-2", "is_typing": False})
        assert client.typing_users == {}

    def test_error_message(self):
        client = _client()
        client.handle_message({"type": "error", "message": "Invalid update"})
        assert client.last_error == "Invalid update"

    def test_remote_update_notifies_listeners(self):
        client = _client()
        listener = MagicMock()
        unsubscribe = client.on_change(listener)

        server = CommentDoc()
        update = server.add_comment({"id": "c-1", "content": "Oi"})
        client.handle_message({"type": "update", "update": encode_update(update)})

        listener.assert_called_once()
        assert listener.call_args.args[0][0]["content"] == "Oi"

        unsubscribe()
        client.handle_message({"type": "update", "update": encode_update(update)})
        listener.assert_called_once()


class TestClientComments:
    @pytest.mark.asyncio
    async def test_add_comment_requires_connection(self):
        with pytest.raises(ConnectionError):
            await _client().add_comment("Oi")

    @pytest.mark.asyncio
    async def test_add_comment_sends_update(self):
        client = _client()
        connection = FakeConnection()
        client._ws = connection

        comment = await client.add_comment("Já reiniciei")

        assert comment["user_name"] == "Maria"
        message = connection.sent[0]
        assert message["type"] == "update"
        server = CommentDoc()
        server.apply_update(decode_update(message["update"]))
        assert server.list_comments()[0]["content"] == "Já reiniciei"

    @pytest.mark.asyncio
    async def test_typing_only_when_connected(self):
        client = _client()
        await client.set_typing(True)

        connection = FakeConnection()
        client._ws = connection
        await client.set_typing(True)
        assert connection.sent == [{"type": "typing", "is_typing": True}]


class TestReconnect:
    @pytest.mark.asyncio
    async def test_backoff_doubles_then_gives_up(self, no_sleep):
        client = _client(max_retries=5, retry_delay=2.0)

        results = [await client._backoff() for _ in range(6)]

        assert results == [True] * 5 + [False]
        assert [c.args[0] for c in no_sleep.await_args_list] == [2, 4, 8, 16, 32]

    @pytest.mark.asyncio
    async def test_run_stops_after_max_retries(self, no_sleep):
        connect = AsyncMock(side_effect=OSError("refused"))
        client = _client(connect=connect, max_retries=3)

        await client._run()

        assert connect.await_count == 4
        assert client.last_error == "refused"
        assert client.connected is False

    @pytest.mark.asyncio
    async def test_session_syncs_and_resets_retries(self, no_sleep):
        server = CommentDoc()
        server.add_comment({"id": "c-1", "content": "Do servidor"})
        connection = FakeConnection(
            [
                {"type": "sync", "update": encode_update(server.full_update())},
                {"type": "presence", "users": [{"id": "user-1"}]},
            ]
        )
        connect = AsyncMock(side_effect=[connection, OSError("down")])
        client = _client(connect=connect, max_retries=1)
        client.retry_count = 1

        await client._run()

        assert connection.sent[0]["type"] == "sync"
        assert [c["id"] for c in client.comments()] == ["c-1"]
        # Successful session reset the budget, so one more retry was allowed
        assert connect.await_count == 2
        assert [c.args[0] for c in no_sleep.await_args_list] == [2.0]
        assert client.active_users == []

    @pytest.mark.asyncio
    async def test_close_stops_loop(self, no_sleep):
        client = _client(connect=AsyncMock(side_effect=OSError("refused")))
        await client.start()
        await client.close()
        assert client._task is None
        assert client.connected is False

    @pytest.mark.asyncio
    async def test_bad_frames_are_skipped(self, no_sleep):
        server = CommentDoc()
        server.add_comment({"id": "c-1", "content": "Depois do lixo"})
        connection = FakeConnection(
            [
                "not json",
                json.dumps(["not", "an", "object"]),
                json.dumps({"type": "update"}),
                json.dumps({"type": "update", "update": 42}),
                json.dumps({"type": "sync", "update": encode_update(server.full_update())}),
            ],
            raw=True,
        )
        connect = AsyncMock(side_effect=[connection, OSError("down")])
        client = _client(connect=connect, max_retries=1)

        await client._run()

        assert [c["id"] for c in client.comments()] == ["c-1"]
        # The link dropping after the bad frames still triggers a reconnect
        assert connect.await_count == 2

    def test_non_object_message_rejected(self):
        with pytest.raises(ValueError):
            _client().handle_message(["update"])
