"""Python client for a ticket's collaborative comment thread.

Keeps a local replica of the thread document in sync with the server relay
over a WebSocket, reconnecting with exponential backoff when the link drops.
"""

import asyncio
import json
import logging
from typing import Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..config import get_settings
from ..models import new_id, utcnow
from .document import CommentDoc, decode_update, encode_update, room_name

settings = get_settings()
logger = logging.getLogger(__name__)


class CommentThreadClient:
    """Replica of one ticket thread.

    Usage::

        client = CommentThreadClient("ws://localhost:8000", ticket_id, api_key,
                                     user_id=me.id, user_name=me.name)
        await client.start()
        await client.add_comment("Looking into it")
        ...
        await client.close()
    """

    def __init__(
        self,
        base_url: str,
        ticket_id: str,
        api_key: str,
        user_id: str,
        user_name: str,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        connection_timeout: Optional[float] = None,
        connect: Callable = websockets.connect,
    ):
        self.base_url = base_url.rstrip("/")
        self.ticket_id = ticket_id
        self.api_key = api_key
        self.user_id = user_id
        self.user_name = user_name
        self.max_retries = (
            max_retries if max_retries is not None else settings.collab_max_retries
        )
        self.retry_delay = (
            retry_delay
            if retry_delay is not None
            else settings.collab_retry_delay_seconds
        )
        self.connection_timeout = (
            connection_timeout
            if connection_timeout is not None
            else settings.collab_connection_timeout_seconds
        )
        self._connect = connect

        self.doc = CommentDoc()
        self.retry_count = 0
        self.active_users: list[dict] = []
        self.typing_users: dict[str, bool] = {}
        self.last_error: Optional[str] = None
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self._listeners: list[Callable[[list[dict]], None]] = []

    @property
    def room(self) -> str:
        return room_name(self.ticket_id)

    @property
    def url(self) -> str:
        return f"{self.base_url}/tickets/{self.ticket_id}/thread?api_key={self.api_key}"

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def comments(self) -> list[dict]:
        return self.doc.list_comments()

    def on_change(self, callback: Callable[[list[dict]], None]) -> Callable[[], None]:
        """Call ``callback(comments)`` after each remote change. Returns an unsubscribe function."""
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback)

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        self._closed = False
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def close(self) -> None:
        self._closed = True
        if self._ws is not None:
            await self._ws.close()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._ws = None

    async def reconnect(self) -> None:
        """Reset the retry budget and connect again."""
        self.retry_count = 0
        if self._ws is not None:
            await self._ws.close()
        await self.start()

    async def _run(self) -> None:
        while not self._closed:
            try:
                ws = await asyncio.wait_for(
                    self._connect(self.url), timeout=self.connection_timeout
                )
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                self.last_error = str(e) or type(e).__name__
                logger.warning(f"Could not connect to {self.room}: {self.last_error}")
            else:
                await self._session(ws)

            if self._closed or not await self._backoff():
                break

    async def _backoff(self) -> bool:
        if self.retry_count >= self.max_retries:
            logger.error(f"Giving up on {self.room} after {self.retry_count} retries")
            return False
        self.retry_count += 1
        delay = self.retry_delay * 2 ** (self.retry_count - 1)
        logger.info(
            f"Reconnecting to {self.room} in {delay:g}s "
            f"(attempt {self.retry_count}/{self.max_retries})"
        )
        await asyncio.sleep(delay)
        return True

    async def _session(self, ws) -> None:
        self._ws = ws
        self.retry_count = 0
        logger.info(f"Connected to {self.room}")
        try:
            await self._send({"type": "sync", "update": encode_update(self.doc.full_update())})
            async for raw in ws:
                try:
                    self.handle_message(json.loads(raw))
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning(f"Ignoring bad frame from {self.room}: {e}")
        except ConnectionClosed as e:
            logger.info(f"Connection to {self.room} closed: {e}")
        finally:
            self._ws = None
            self.active_users = []
            self.typing_users = {}

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    async def _send(self, message: dict) -> None:
        await self._ws.send(json.dumps(message))

    def handle_message(self, message: dict) -> None:
        if not isinstance(message, dict):
            raise ValueError("Message is not a JSON object")
        kind = message.get("type")
        if kind in ("sync", "update"):
            self.doc.apply_update(decode_update(message["update"]))
            comments = self.comments()
            for callback in list(self._listeners):
                callback(comments)
        elif kind == "presence":
            self.active_users = message.get("users") or []
        elif kind == "typing":
            user_id = message.get("user_id")
            if message.get("is_typing"):
                self.typing_users[user_id] = True
            else:
                self.typing_users.pop(user_id, None)
        elif kind == "error":
            self.last_error = message.get("message")
            logger.warning(f"{self.room}: {self.last_error}")

    async def add_comment(self, content: str) -> dict:
        if not self.connected:
            raise ConnectionError("Not connected to the comment thread")
        comment = {
            "id": new_id(),
            "ticket_id": self.ticket_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "content": content,
            "created_at": utcnow().isoformat(),
        }
        update = self.doc.add_comment(comment)
        await self._send({"type": "update", "update": encode_update(update)})
        return comment

    async def set_typing(self, is_typing: bool) -> None:
        if self.connected:
            await self._send({"type": "typing", "is_typing": is_typing})
