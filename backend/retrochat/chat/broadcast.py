"""Room fan-out.

Delivery is best-effort and fire-and-forget: a payload is serialized once and
the identical text is sent concurrently to every live connection in the room.
A connection that is no longer writable is skipped, and a failed send is
logged and dropped without affecting the other recipients. Nothing is
retried or queued.

Recipients come from a snapshot of the session registry taken at call time,
so joins and leaves on other connections never mutate the set being iterated.
The sender of a chat message is a room member and receives its own message.
"""
import asyncio
import json
import logging
from typing import Any, Dict

from starlette.websockets import WebSocketState

from .schemas import user_count
from .sessions import SessionRegistry

logger = logging.getLogger(__name__)


def is_writable(connection: Any) -> bool:
    """Whether both sides of the WebSocket are still open."""
    return (
        connection.client_state == WebSocketState.CONNECTED
        and connection.application_state == WebSocketState.CONNECTED
    )


class BroadcastEngine:
    """Delivers payloads to the live members of a room."""

    def __init__(self, sessions: SessionRegistry) -> None:
        self.sessions = sessions

    async def broadcast_to_room(self, room_id: str, payload: Dict[str, Any]) -> int:
        """Send ``payload`` to every writable connection in ``room_id``.

        Uses asyncio.gather() so one slow recipient does not serialize the
        rest. Per-recipient failures are isolated.

        Args:
            room_id: Room to broadcast to.
            payload: JSON-serializable message.

        Returns:
            Number of connections the payload was delivered to.
        """
        members = self.sessions.members_of(room_id)
        if not members:
            return 0

        text = json.dumps(payload)
        connections = [s.connection for s in members if is_writable(s.connection)]
        if not connections:
            return 0

        results = await asyncio.gather(
            *[self._safe_send(conn, text) for conn in connections],
            return_exceptions=True
        )
        delivered = sum(1 for ok in results if ok is True)
        if delivered < len(connections):
            logger.debug(
                f"[Broadcast] Room {room_id}: delivered {delivered}/{len(connections)}"
            )
        return delivered

    async def broadcast_presence_count(self, room_id: str) -> int:
        """Recompute live membership of ``room_id`` and broadcast it.

        Returns:
            The presence count that was broadcast.
        """
        count = self.sessions.count_in_room(room_id)
        await self.broadcast_to_room(room_id, user_count(count))
        return count

    async def send_to(self, connection: Any, payload: Dict[str, Any]) -> bool:
        """Send ``payload`` to a single connection with the same isolation."""
        if not is_writable(connection):
            return False
        return await self._safe_send(connection, json.dumps(payload))

    async def _safe_send(self, connection: Any, text: str) -> bool:
        """Send text to a WebSocket connection with error handling.

        Returns:
            True if successful, False if the connection failed.
        """
        try:
            await connection.send_text(text)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection: {e}")
            return False
