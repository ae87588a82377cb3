"""Collaborative comment threads backed by a CRDT document."""

from .client import CommentThreadClient
from .document import CommentDoc
from .hub import CommentRoom, RoomFullError, RoomRegistry

__all__ = [
    "CommentDoc",
    "CommentRoom",
    "CommentThreadClient",
    "RoomFullError",
    "RoomRegistry",
]
