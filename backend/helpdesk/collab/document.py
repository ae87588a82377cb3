"""CRDT document holding a ticket's collaborative comment thread.

The document has one shared array, ``comments``, whose items are maps with
string fields. Server rooms and Python clients both wrap it; replication and
merging are left to pycrdt.
"""

import base64
from typing import Optional

from pycrdt import Array, Doc, Map

COMMENT_FIELDS = ("id", "ticket_id", "user_id", "user_name", "content", "created_at")


def room_name(ticket_id: str) -> str:
    return f"ticket-{ticket_id}"


def encode_update(update: bytes) -> str:
    return base64.b64encode(update).decode("ascii")


def decode_update(data: str) -> bytes:
    if not isinstance(data, str):
        raise ValueError("Update must be a base64 string")
    return base64.b64decode(data.encode("ascii"))


class CommentDoc:
    """A pycrdt ``Doc`` with a ``comments`` array of comment maps."""

    def __init__(self, state: Optional[bytes] = None):
        self.doc = Doc()
        self.comments = self.doc.get("comments", type=Array)
        if state:
            self.doc.apply_update(state)

    def full_update(self) -> bytes:
        """Everything in the document, as a single update."""
        return self.doc.get_update()

    def apply_update(self, update: bytes) -> None:
        """Apply a peer update. Raises ValueError if pycrdt cannot decode it."""
        try:
            self.doc.apply_update(update)
        except Exception as e:
            raise ValueError(f"Invalid update: {e}") from e

    def list_comments(self) -> list[dict]:
        return [
            {field: item.get(field, "") for field in COMMENT_FIELDS}
            for item in self.comments
        ]

    def comment_ids(self) -> set[str]:
        return {item.get("id") for item in self.comments}

    def add_comment(self, comment: dict) -> bytes:
        """Append a comment and return the update that carries it."""
        before = self.doc.get_state()
        self.comments.append(
            Map({field: str(comment.get(field) or "") for field in COMMENT_FIELDS})
        )
        return self.doc.get_update(before)

    def remove_comment(self, comment_id: str) -> Optional[bytes]:
        """Remove a comment by id; returns the update, or None if absent."""
        for index, item in enumerate(self.comments):
            if item.get("id") == comment_id:
                before = self.doc.get_state()
                del self.comments[index]
                return self.doc.get_update(before)
        return None

    def reconcile(self, comments: list[dict]) -> bool:
        """Make the thread hold exactly the given comments (matched by id).

        Comments missing from the document are appended; document comments
        not in the list are removed. Returns True if anything changed.
        """
        wanted = {c["id"]: c for c in comments}
        changed = False

        for comment_id in self.comment_ids() - set(wanted):
            self.remove_comment(comment_id)
            changed = True

        present = self.comment_ids()
        for comment in comments:
            if comment["id"] not in present:
                self.add_comment(comment)
                changed = True

        return changed
