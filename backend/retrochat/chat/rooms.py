"""In-memory room store: membership and bounded message history.

Each room keeps the ids of its current members and a FIFO history of at most
``history_capacity`` messages; appending past capacity evicts the oldest.

Thread Safety:
    Every room has its own lock and every read or mutation of a room holds it,
    so no reader sees a half-applied append or membership change. The map of
    rooms is guarded by a separate store lock. Locks are never held across an
    ``await``; callers do validation and network I/O outside them.
"""
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional, Set

from .errors import RoomNotFoundError
from .schemas import ChatMessage

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

DEFAULT_HISTORY_CAPACITY = 100

# History returned by an explicit fetch
DEFAULT_FETCH_LIMIT = 50


class Room:
    """A named broadcast domain.

    Attributes:
        room_id: Unique room identifier.
        display_name: Human-readable name.
        created_at: When the room was created.
    """

    def __init__(
        self,
        room_id: str,
        display_name: Optional[str] = None,
        history_capacity: int = DEFAULT_HISTORY_CAPACITY,
    ) -> None:
        self.room_id = room_id
        self.display_name = display_name or room_id
        self.created_at = datetime.now(timezone.utc)
        self._lock = threading.Lock()
        self._members: Set[str] = set()
        self._history: Deque[ChatMessage] = deque(maxlen=history_capacity)

    @property
    def history_capacity(self) -> int:
        return self._history.maxlen

    def add_member(self, session_id: str) -> None:
        with self._lock:
            self._members.add(session_id)

    def remove_member(self, session_id: str) -> None:
        with self._lock:
            self._members.discard(session_id)

    def members(self) -> Set[str]:
        """Copy of the current member ids."""
        with self._lock:
            return set(self._members)

    def member_count(self) -> int:
        with self._lock:
            return len(self._members)

    def append(self, message: ChatMessage) -> None:
        with self._lock:
            self._history.append(message)

    def recent(self, limit: int) -> List[ChatMessage]:
        """The last ``limit`` messages, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            size = len(self._history)
            start = max(0, size - limit)
            return [self._history[i] for i in range(start, size)]

    def message_count(self) -> int:
        with self._lock:
            return len(self._history)

    def __repr__(self) -> str:
        return f"Room(room_id={self.room_id!r}, display_name={self.display_name!r})"


class RoomStore:
    """Owns all rooms of the process."""

    def __init__(self, history_capacity: int = DEFAULT_HISTORY_CAPACITY) -> None:
        self.history_capacity = history_capacity
        self._lock = threading.Lock()
        self._rooms: Dict[str, Room] = {}

    def get_or_create(self, room_id: str, display_name: Optional[str] = None) -> Room:
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                room = Room(room_id, display_name, self.history_capacity)
                self._rooms[room_id] = room
                logger.info(f"[Rooms] Created room {room_id} ({room.display_name})")
            return room

    def get(self, room_id: str) -> Optional[Room]:
        with self._lock:
            return self._rooms.get(room_id)

    def room_ids(self) -> List[str]:
        with self._lock:
            return list(self._rooms)

    def _require(self, room_id: str) -> Room:
        room = self.get(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        return room

    def add_member(self, room_id: str, session_id: str) -> None:
        self._require(room_id).add_member(session_id)

    def remove_member(self, room_id: str, session_id: str) -> None:
        """Remove a member. Unknown rooms and non-members are a no-op."""
        room = self.get(room_id)
        if room is not None:
            room.remove_member(session_id)

    def append_message(self, room_id: str, message: ChatMessage) -> ChatMessage:
        """Append to the room's history, evicting the oldest beyond capacity.

        Returns:
            The same message (for chaining).
        """
        self._require(room_id).append(message)
        return message

    def recent_messages(self, room_id: str, limit: int = DEFAULT_FETCH_LIMIT) -> List[ChatMessage]:
        """At most ``limit`` most recent messages, oldest first."""
        return self._require(room_id).recent(limit)

    def member_count(self, room_id: str) -> int:
        room = self.get(room_id)
        return room.member_count() if room else 0

    def message_count(self, room_id: str) -> int:
        room = self.get(room_id)
        return room.message_count() if room else 0
