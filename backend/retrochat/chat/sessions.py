"""Registry of live chat sessions.

A session is the server-side record of one connected, identified participant.
The registry is indexed both by connection handle and by session id, so a
connection's session is found in O(1) without scanning live sockets.

More than one connection may carry the same session id: a client that
reconnects with its previous ``userId`` before the old socket has closed
continues the same identity rather than becoming a new participant.

Thread Safety:
    All access goes through a single lock. ``members_of`` returns a fresh
    list built under that lock, so callers can iterate it while other
    connections join or leave.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Session:
    """One connected participant.

    Attributes:
        session_id: Identity, stable across reconnects when the client
            supplies it.
        display_name: Sanitized display name.
        room_id: The room this session is in (exactly one).
        color: Presentation color derived from display_name.
        connection: Transport handle. Not owned; released on disconnect.
        connected_at: When the session was registered.
    """
    session_id: str
    display_name: str
    room_id: str
    color: str
    connection: Any = field(repr=False)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SessionRegistry:
    """Maps live connections to sessions and answers room membership queries."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        # connection handle -> Session
        self._by_connection: Dict[Any, Session] = {}
        # session_id -> connection handles currently carrying that id
        self._connections_by_id: Dict[str, List[Any]] = {}

    def register(self, session: Session) -> bool:
        """Register a session for its connection.

        Returns:
            True if the session id was already live on another connection
            (identity continuation), False for a new participant.
        """
        with self._lock:
            previous = self._by_connection.get(session.connection)
            if previous is not None:
                self._forget(previous)
            handles = self._connections_by_id.setdefault(session.session_id, [])
            continued = bool(handles)
            handles.append(session.connection)
            self._by_connection[session.connection] = session
        if continued:
            logger.info(f"[Sessions] Session {session.session_id} continued on a new connection")
        return continued

    def unregister(self, connection: Any) -> Optional[Session]:
        """Remove the session held by ``connection``. Unknown handles are a no-op."""
        with self._lock:
            session = self._by_connection.get(connection)
            if session is None:
                return None
            self._forget(session)
            return session

    def _forget(self, session: Session) -> None:
        self._by_connection.pop(session.connection, None)
        handles = self._connections_by_id.get(session.session_id)
        if handles is None:
            return
        if session.connection in handles:
            handles.remove(session.connection)
        if not handles:
            del self._connections_by_id[session.session_id]

    def is_live(self, session_id: str) -> bool:
        """Whether any connection still carries ``session_id``."""
        with self._lock:
            return session_id in self._connections_by_id

    def find_by_connection(self, connection: Any) -> Optional[Session]:
        with self._lock:
            return self._by_connection.get(connection)

    def find_by_id(self, session_id: str) -> Optional[Session]:
        """Most recently registered session carrying ``session_id``."""
        with self._lock:
            handles = self._connections_by_id.get(session_id)
            if not handles:
                return None
            return self._by_connection.get(handles[-1])

    def members_of(self, room_id: str) -> List[Session]:
        """Snapshot of sessions in a room, one entry per live connection."""
        with self._lock:
            return [s for s in self._by_connection.values() if s.room_id == room_id]

    def count_in_room(self, room_id: str) -> int:
        """Number of distinct live session ids in a room."""
        with self._lock:
            ids: Set[str] = {
                s.session_id for s in self._by_connection.values() if s.room_id == room_id
            }
        return len(ids)

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_connection)
