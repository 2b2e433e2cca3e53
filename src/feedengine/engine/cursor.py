"""
Pagination cursors.

A cursor is an opaque, urlsafe token carrying the sort key of the last
position a page covered plus the snapshot marker fixed by the first page.
Later pages skip anything created after the snapshot, so entries published
mid-scroll never shift the pages a reader is walking through.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from feedengine.core.exceptions import InvalidCursorError
from feedengine.models import CursorPosition, parse_datetime


CURSOR_FORMAT_VERSION = 1


@dataclass(frozen=True)
class PageCursor:
    """
    Decoded cursor.

    Attributes:
        position: Resume strictly after this sort key; None restarts from the top
        snapshot_at: Entries created after this instant are ignored
    """
    position: Optional[CursorPosition]
    snapshot_at: datetime

    def encode(self) -> str:
        payload = {
            "v": CURSOR_FORMAT_VERSION,
            "t": self.position.created_at.isoformat() if self.position else None,
            "id": self.position.entry_id if self.position else None,
            "s": self.snapshot_at.isoformat(),
        }
        raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    @classmethod
    def decode(cls, token: str) -> "PageCursor":
        """
        Parse a cursor token.

        Raises:
            InvalidCursorError: If the token is not a cursor this engine issued
        """
        if not isinstance(token, str) or not token:
            raise InvalidCursorError("Cursor must be a non-empty string")
        try:
            padded = token + "=" * (-len(token) % 4)
            payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        except (binascii.Error, UnicodeError, ValueError) as e:
            raise InvalidCursorError(f"Malformed cursor: {e}", cause=e) from e

        if not isinstance(payload, dict) or payload.get("v") != CURSOR_FORMAT_VERSION:
            raise InvalidCursorError("Unsupported cursor format")

        try:
            snapshot_at = parse_datetime(payload["s"])
            if payload.get("t") is None:
                position = None
            else:
                if not isinstance(payload.get("id"), str):
                    raise InvalidCursorError("Cursor is missing its entry id")
                position = CursorPosition(parse_datetime(payload["t"]), payload["id"])
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidCursorError(f"Malformed cursor: {e}", cause=e) from e
        return cls(position=position, snapshot_at=snapshot_at)
