"""Pydantic models for the chat wire protocol.

Inbound (client -> server), a single JSON object:
    - userId: optional identity token reused across reconnects
    - username: raw display name, required on the first payload
    - message: chat body, required once joined

Outbound (server -> client), one of:
    - {"messageHistory": [<chat message>, ...]}   sent once after join
    - {"system": true, "message": "..."}          join/leave/error notices
    - {"userCount": n}                            presence update
    - {"id", "username", "message", "color", "timestamp", "userId"}
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer


def format_timestamp(value: datetime) -> str:
    """Render a datetime as ISO-8601 UTC with milliseconds and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class InboundPayload(BaseModel):
    """Decoded client payload.

    ``message`` is kept untyped so that body validation can report a
    non-string body as an invalid message rather than a decode failure.
    """
    model_config = ConfigDict(extra="ignore")

    userId: Optional[str] = Field(default=None, description="Client identity token")
    username: Optional[str] = Field(default=None, description="Raw display name")
    message: Any = Field(default=None, description="Chat body")


class ChatMessage(BaseModel):
    """A validated, enriched chat message. Immutable once created.

    Attributes:
        id: Unique message identifier (UUID4).
        roomId: Room the message was posted to.
        userId: Sender's session id.
        username: Sender's sanitized display name.
        message: Trimmed message body.
        color: Sender's presentation color.
        timestamp: Server-assigned creation time (UTC).
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique message ID")
    roomId: str = Field(..., description="Room ID this message belongs to")
    userId: str = Field(..., description="Session ID of the sender")
    username: str = Field(..., description="Display name of the sender")
    message: str = Field(..., description="Message body")
    color: str = Field(..., description="Sender color")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Server-assigned creation time"
    )

    @field_serializer("timestamp")
    def _serialize_timestamp(self, value: datetime) -> str:
        return format_timestamp(value)

    def to_wire(self) -> Dict[str, Any]:
        """Outbound representation (room id is implied by the connection)."""
        return self.model_dump(exclude={"roomId"})


class RoomSummary(BaseModel):
    """Response model for the room info endpoint."""
    roomId: str
    name: str
    userCount: int
    messageCount: int
    createdAt: str


def system_notice(text: str) -> Dict[str, Any]:
    return {"system": True, "message": text}


def user_count(count: int) -> Dict[str, Any]:
    return {"userCount": count}


def message_history(messages: Iterable[ChatMessage]) -> Dict[str, List[Dict[str, Any]]]:
    return {"messageHistory": [msg.to_wire() for msg in messages]}
