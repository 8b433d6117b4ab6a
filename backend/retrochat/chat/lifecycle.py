"""Connection lifecycle: connect, join, post, disconnect.

Each connection moves through three states:

    UNINITIALIZED --first payload--> ACTIVE --transport close--> CLOSED

- UNINITIALIZED: the first payload must carry a ``username``. The controller
  registers a session, adds it to the default room, replays recent history to
  the new connection only, then broadcasts a join notice and the presence
  count to the room. A join that fails partway is rolled back, and the
  connection stays UNINITIALIZED.
- ACTIVE: every payload goes through the message pipeline. Invalid bodies are
  reported to the sender only; valid messages are appended to the room
  history and broadcast to the room, sender included.
- CLOSED: terminal. Membership is pruned, the session unregistered, and a
  leave notice plus presence count broadcast. Further events are ignored.

A session id that is already live on another connection continues that
identity: the new connection gets history and a presence count but no join
notice, and the leave notice waits until its last connection closes.

Payloads that cannot be decoded at all get a generic processing-failure
notice and leave the state unchanged. Transport errors are logged only;
cleanup happens on close.

A connection's events are handled one at a time by its receive loop, while
different connections interleave freely on the event loop.
"""
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from retrochat.config import ChatSettings

from .broadcast import BroadcastEngine
from .errors import DecodeError, InvalidMessageError
from .pipeline import MessagePipeline, decode_payload, derive_color
from .rooms import RoomStore
from .schemas import ChatMessage, InboundPayload, message_history, system_notice
from .sessions import Session, SessionRegistry

logger = logging.getLogger(__name__)

# =============================================================================
# System notices
# =============================================================================

JOIN_NOTICE = "{name} joined the chat"
LEAVE_NOTICE = "{name} left the chat"
INVALID_MESSAGE_NOTICE = "Invalid message format or length."
PROCESSING_FAILED_NOTICE = "Message processing failed."


class ConnectionState(str, Enum):
    """Lifecycle state of one connection."""
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(eq=False)
class ChatConnection:
    """Per-connection bookkeeping owned by the controller.

    Attributes:
        connection: Transport handle (a Starlette WebSocket in production).
        client_address: Remote address, for logging.
        state: Current lifecycle state.
        session: The session once joined.
    """
    connection: Any
    client_address: str = "unknown"
    state: ConnectionState = ConnectionState.UNINITIALIZED
    session: Optional[Session] = None


class ConnectionController:
    """Drives the chat core from transport events.

    The stores are injected at construction and live as long as the server
    process; the controller is the only component that talks to the
    transport.
    """

    def __init__(
        self,
        settings: ChatSettings,
        rooms: RoomStore,
        sessions: SessionRegistry,
        broadcaster: BroadcastEngine,
        pipeline: MessagePipeline,
    ) -> None:
        self.settings = settings
        self.rooms = rooms
        self.sessions = sessions
        self.broadcaster = broadcaster
        self.pipeline = pipeline

    @property
    def default_room_id(self) -> str:
        return self.settings.default_room_id

    def open(self, connection: Any, client_address: str = "unknown") -> ChatConnection:
        """Start tracking a freshly accepted connection."""
        logger.info(f"[WS] New connection from {client_address}")
        return ChatConnection(connection=connection, client_address=client_address)

    async def handle_text(self, conn: ChatConnection, text: Any) -> Optional[ChatMessage]:
        """Process one inbound frame.

        Returns:
            The ChatMessage that was broadcast, or None if the frame was a
            join, was rejected, or arrived after close.
        """
        if conn.state is ConnectionState.CLOSED:
            logger.debug(f"[WS] Ignoring payload on closed connection from {conn.client_address}")
            return None

        try:
            payload = decode_payload(text)
            if conn.state is ConnectionState.UNINITIALIZED:
                await self._join(conn, payload)
                return None
            return await self._post(conn, payload)

        except InvalidMessageError as e:
            # Ordinary user error: report to the sender, not a fault
            logger.debug(f"[WS] Rejected message from {conn.client_address}: {e}")
            await self.broadcaster.send_to(conn.connection, system_notice(INVALID_MESSAGE_NOTICE))
        except DecodeError as e:
            logger.warning(f"[WS] Undecodable payload from {conn.client_address}: {e}")
            await self.broadcaster.send_to(conn.connection, system_notice(PROCESSING_FAILED_NOTICE))
        except Exception:
            logger.exception(f"[WS] Message processing error for {conn.client_address}")
            await self.broadcaster.send_to(conn.connection, system_notice(PROCESSING_FAILED_NOTICE))
        return None

    async def _join(self, conn: ChatConnection, payload: InboundPayload) -> Session:
        if payload.username is None:
            raise DecodeError("First payload must carry a username")

        display_name = self.pipeline.sanitize(payload.username)
        session = Session(
            session_id=payload.userId or str(uuid.uuid4()),
            display_name=display_name,
            room_id=self.default_room_id,
            color=derive_color(display_name),
            connection=conn.connection,
        )

        continued = self.sessions.register(session)
        try:
            self.rooms.add_member(session.room_id, session.session_id)
            history = self.rooms.recent_messages(session.room_id, self.settings.join_history_limit)
        except Exception:
            # Undo the registration; the connection stays UNINITIALIZED
            self.sessions.unregister(conn.connection)
            if not self.sessions.is_live(session.session_id):
                self.rooms.remove_member(session.room_id, session.session_id)
            raise

        conn.session = session
        conn.state = ConnectionState.ACTIVE

        await self.broadcaster.send_to(conn.connection, message_history(history))

        logger.info(
            f"[WS] {display_name} ({session.session_id}) joined room {session.room_id}"
            + (" (reconnect)" if continued else "")
        )
        if not continued:
            await self.broadcaster.broadcast_to_room(
                session.room_id, system_notice(JOIN_NOTICE.format(name=display_name))
            )
        await self.broadcaster.broadcast_presence_count(session.room_id)
        return session

    async def _post(self, conn: ChatConnection, payload: InboundPayload) -> ChatMessage:
        session = conn.session
        # Validation and enrichment happen before any store is touched
        message = self.pipeline.process(payload, session)
        self.rooms.append_message(session.room_id, message)

        delivered = await self.broadcaster.broadcast_to_room(session.room_id, message.to_wire())
        logger.debug(
            f"[WS] Message {message.id} from {session.display_name} delivered to {delivered} connections"
        )
        return message

    def handle_error(self, conn: ChatConnection, error: BaseException) -> None:
        """Record a transport error. Cleanup is left to ``close``."""
        logger.warning(f"[WS] Socket error from {conn.client_address}: {error}")

    async def close(self, conn: ChatConnection) -> None:
        """Tear down a connection. Safe to call more than once."""
        if conn.state is ConnectionState.CLOSED:
            return
        conn.state = ConnectionState.CLOSED

        # Unregister by handle, whatever state the join reached
        session = self.sessions.unregister(conn.connection)
        conn.session = None
        if session is None:
            logger.info(f"[WS] Connection from {conn.client_address} closed before joining")
            return

        identity_left = not self.sessions.is_live(session.session_id)
        if identity_left:
            self.rooms.remove_member(session.room_id, session.session_id)

        logger.info(f"[WS] User {session.display_name} disconnected")

        if identity_left:
            await self.broadcaster.broadcast_to_room(
                session.room_id, system_notice(LEAVE_NOTICE.format(name=session.display_name))
            )
        await self.broadcaster.broadcast_presence_count(session.room_id)
