"""Server relay for collaborative comment threads.

Each ticket thread is a room holding one ``CommentDoc``. Peers joining a
room receive the full document and the presence list; updates from a peer
are applied to the room's document and relayed to the other peers.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import get_settings
from ..errors import HelpdeskError
from ..models import CommentThread, User, utcnow
from ..tickets import TicketService
from .document import CommentDoc, decode_update, encode_update, room_name

settings = get_settings()
logger = logging.getLogger(__name__)


class RoomFullError(Exception):
    """Raised when a room already holds the maximum number of peers."""


def user_color(user_id: str) -> str:
    """Stable presence colour for a user."""
    return "#" + hashlib.md5(user_id.encode("utf-8")).hexdigest()[:6]


@dataclass
class Peer:
    websocket: Any
    user_id: str
    user_name: str
    color: str

    def presence(self) -> dict:
        return {"id": self.user_id, "name": self.user_name, "color": self.color}

    async def send(self, message: dict) -> None:
        await self.websocket.send_json(message)

    async def close(self, code: int = 1000) -> None:
        await self.websocket.close(code=code)


# =============================================================================
# Persistence
# =============================================================================


def _thread_comments(ticket) -> list[dict]:
    return [
        {
            "id": c.id,
            "ticket_id": ticket.id,
            "user_id": c.user_id,
            "user_name": c.user_name or "",
            "content": c.content,
            "created_at": c.created_at.isoformat() if c.created_at else "",
        }
        for c in sorted(ticket.comments, key=lambda c: c.created_at or utcnow())
    ]


def load_thread(db: Session, ticket) -> CommentDoc:
    """Load a ticket's thread, aligned with the comments stored on the ticket."""
    row = db.get(CommentThread, ticket.id)
    doc = CommentDoc(row.state if row else None)
    if doc.reconcile(_thread_comments(ticket)) or row is None:
        save_thread(db, ticket.id, doc)
    return doc


def save_thread(db: Session, ticket_id: str, doc: CommentDoc) -> None:
    row = db.get(CommentThread, ticket_id)
    if row is None:
        row = CommentThread(ticket_id=ticket_id, state=doc.full_update())
        db.add(row)
    else:
        row.state = doc.full_update()
        row.updated_at = utcnow()
    db.commit()


def _parse_created_at(value: str) -> Optional[datetime]:
    try:
        stamp = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if stamp.tzinfo is not None:
        stamp = stamp.astimezone(timezone.utc).replace(tzinfo=None)
    return stamp


# =============================================================================
# Rooms
# =============================================================================


@dataclass
class CommentRoom:
    ticket_id: str
    doc: CommentDoc
    max_connections: int = 20
    peers: list[Peer] = field(default_factory=list)
    closed: bool = False

    @property
    def name(self) -> str:
        return room_name(self.ticket_id)

    def join(self, websocket, user: User) -> Peer:
        if len(self.peers) >= self.max_connections:
            raise RoomFullError(f"Room {self.name} is full")
        peer = Peer(
            websocket=websocket,
            user_id=user.id,
            user_name=user.name,
            color=user_color(user.id),
        )
        self.peers.append(peer)
        logger.info(f"{user.email} joined {self.name} ({len(self.peers)} peers)")
        return peer

    def leave(self, peer: Peer) -> None:
        if peer in self.peers:
            self.peers.remove(peer)
            logger.info(f"{peer.user_name} left {self.name}")

    def presence(self) -> list[dict]:
        seen = {}
        for peer in self.peers:
            seen.setdefault(peer.user_id, peer.presence())
        return list(seen.values())

    async def broadcast(self, message: dict, exclude: Optional[Peer] = None) -> None:
        """Send a message to every peer but ``exclude``; drop peers that fail."""
        failed = []
        for peer in list(self.peers):
            if peer is exclude:
                continue
            try:
                await peer.send(message)
            except Exception as e:
                logger.warning(f"Dropping peer {peer.user_name} in {self.name}: {e}")
                failed.append(peer)
        for peer in failed:
            self.leave(peer)

    async def broadcast_presence(self) -> None:
        await self.broadcast({"type": "presence", "users": self.presence()})

    async def welcome(self, peer: Peer) -> None:
        await peer.send(
            {"type": "sync", "update": encode_update(self.doc.full_update())}
        )

    async def apply(self, peer: Peer, update: bytes) -> list[dict]:
        """Apply a peer's update, relay it, and return comments it introduced."""
        known = self.doc.comment_ids()
        self.doc.apply_update(update)
        await self.broadcast(
            {"type": "update", "update": encode_update(update)}, exclude=peer
        )
        return [c for c in self.doc.list_comments() if c["id"] not in known]

    async def publish_comment(self, comment: dict) -> None:
        """Push a comment created outside the thread to the connected peers."""
        if comment["id"] in self.doc.comment_ids():
            return
        update = self.doc.add_comment(comment)
        await self.broadcast({"type": "update", "update": encode_update(update)})

    async def retract_comment(self, comment_id: str) -> None:
        update = self.doc.remove_comment(comment_id)
        if update is not None:
            await self.broadcast({"type": "update", "update": encode_update(update)})


class RoomRegistry:
    """Live rooms by ticket id. Rooms are created on first join and dropped when empty."""

    def __init__(self, max_connections: Optional[int] = None):
        self.max_connections = max_connections or settings.collab_max_connections
        self.rooms: dict[str, CommentRoom] = {}

    def get(self, ticket_id: str) -> Optional[CommentRoom]:
        return self.rooms.get(ticket_id)

    def open(self, db: Session, ticket) -> CommentRoom:
        room = self.rooms.get(ticket.id)
        if room is None:
            room = CommentRoom(
                ticket_id=ticket.id,
                doc=load_thread(db, ticket),
                max_connections=self.max_connections,
            )
            self.rooms[ticket.id] = room
        return room

    def release(self, room: CommentRoom) -> None:
        if not room.peers and self.rooms.get(room.ticket_id) is room:
            del self.rooms[room.ticket_id]
            logger.debug(f"Room {room.name} closed")

    async def close_room(self, ticket_id: str, reason: str = "Ticket deleted") -> None:
        """Disconnect every peer of a ticket's room and drop the room."""
        room = self.rooms.pop(ticket_id, None)
        if room is None:
            return
        room.closed = True
        for peer in list(room.peers):
            try:
                await peer.send({"type": "error", "message": reason})
                await peer.close()
            except Exception as e:
                logger.debug(f"Peer {peer.user_name} already gone from {room.name}: {e}")
        room.peers.clear()
        logger.info(f"Room {room.name} closed: {reason}")

    async def publish_comment(self, db: Session, ticket_id: str, comment: dict) -> None:
        room = self.rooms.get(ticket_id)
        if room is None:
            return
        await room.publish_comment(comment)
        save_thread(db, ticket_id, room.doc)

    async def retract_comment(self, db: Session, ticket_id: str, comment_id: str) -> None:
        room = self.rooms.get(ticket_id)
        if room is None:
            return
        await room.retract_comment(comment_id)
        save_thread(db, ticket_id, room.doc)


# =============================================================================
# Peer session
# =============================================================================


async def handle_message(
    room: CommentRoom, peer: Peer, message: dict, service: TicketService, user: User
) -> None:
    """Handle one JSON message from a peer."""
    if room.closed:
        return
    if not isinstance(message, dict):
        await peer.send({"type": "error", "message": "Message must be a JSON object"})
        return
    kind = message.get("type")

    if kind in ("sync", "update"):
        try:
            update = decode_update(message.get("update") or "")
        except (ValueError, TypeError):
            await peer.send({"type": "error", "message": "Invalid update encoding"})
            return
        if not update:
            return
        try:
            new_comments = await room.apply(peer, update)
        except Exception as e:
            logger.warning(f"Rejected update from {peer.user_name} in {room.name}: {e}")
            await peer.send({"type": "error", "message": "Invalid update"})
            return
        save_thread(service.db, room.ticket_id, room.doc)
        for comment in new_comments:
            await _record_comment(room, comment, service, user)

    elif kind == "typing":
        await room.broadcast(
            {
                "type": "typing",
                "user_id": peer.user_id,
                "user_name": peer.user_name,
                "is_typing": bool(message.get("is_typing")),
            },
            exclude=peer,
        )

    else:
        await peer.send({"type": "error", "message": f"Unknown message type {kind!r}"})


async def _record_comment(
    room: CommentRoom, comment: dict, service: TicketService, user: User
) -> None:
    try:
        await service.add_comment(
            room.ticket_id,
            comment["content"],
            user,
            author_name=comment.get("user_name") or None,
            comment_id=comment["id"] or None,
            created_at=_parse_created_at(comment.get("created_at")),
        )
    except HelpdeskError as e:
        logger.warning(f"Thread comment {comment['id']} not recorded: {e}")
    except SQLAlchemyError as e:
        service.db.rollback()
        logger.error(f"Failed to store thread comment {comment['id']}: {e}")
