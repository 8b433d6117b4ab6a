"""Error taxonomy for the chat core.

Every error here is local to one connection. The connection controller turns
them into sender-only system notices; none of them is fatal to the server.
"""


class ChatError(Exception):
    """Base class for chat core errors."""


class DecodeError(ChatError):
    """Inbound payload is not a well-formed JSON object."""


class InvalidMessageError(ChatError):
    """Chat body is missing, blank, or longer than the configured maximum."""


class RoomNotFoundError(ChatError):
    """Operation referenced a room that does not exist in the store."""

    def __init__(self, room_id: str) -> None:
        super().__init__(f"Room not found: {room_id}")
        self.room_id = room_id
