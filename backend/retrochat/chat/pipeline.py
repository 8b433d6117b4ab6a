"""Validation, sanitization and enrichment of inbound chat payloads.

Nothing in this module touches room or session state. A payload is decoded,
its body validated, and the result enriched into an immutable ChatMessage
before any store is consulted, so no lock is ever held while this runs.
"""
import hashlib
import json
import logging
import re
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import ValidationError

from retrochat.config import ChatSettings

from .errors import DecodeError, InvalidMessageError
from .schemas import ChatMessage, InboundPayload
from .sessions import Session

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

DEFAULT_DISPLAY_NAME = "Anonymous"

# Neutral tones: white, light blue and grey spectrum
COLOR_PALETTE = [
    "#ffffff", "#87ceeb", "#c0c0c0", "#b0c4de", "#d3d3d3", "#e6e6fa"
]

_MARKUP_CHARS = re.compile(r"[<>'\"&]")

# Unpaired UTF-16 surrogates survive json.loads but cannot be encoded
_LONE_SURROGATES = re.compile(r"[\ud800-\udfff]")


# =============================================================================
# Display names and colors
# =============================================================================


def sanitize_display_name(raw: Optional[str], max_length: int = 20) -> str:
    """Clean a client-supplied display name.

    Drops unpaired surrogates, trims whitespace, caps the length, strips
    ``< > ' " &`` and falls back to ``"Anonymous"`` when nothing is left.
    Markup is stripped after the cap, so the result is trimmed once more to
    keep the function idempotent.

    Args:
        raw: Display name as sent by the client.
        max_length: Maximum number of characters kept.

    Returns:
        The sanitized display name.
    """
    if not raw:
        return DEFAULT_DISPLAY_NAME
    name = _LONE_SURROGATES.sub("", raw).strip()[:max_length]
    name = _MARKUP_CHARS.sub("", name).strip()
    return name or DEFAULT_DISPLAY_NAME


def derive_color(display_name: str) -> str:
    """Map a display name onto the palette.

    Identical names always get identical colors. Color is a presentation
    hint, not an identity.
    """
    digest = hashlib.md5(display_name.encode("utf-8", "surrogatepass")).hexdigest()
    return COLOR_PALETTE[int(digest[:2], 16) % len(COLOR_PALETTE)]


# =============================================================================
# Payload decoding and body validation
# =============================================================================


def decode_payload(text: Any) -> InboundPayload:
    """Parse a raw WebSocket frame into an InboundPayload.

    Raises:
        DecodeError: Frame is not JSON, not a JSON object, or carries a
            non-string userId/username.
    """
    if isinstance(text, (bytes, bytearray)):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError("Payload is not valid UTF-8") from e
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Payload is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise DecodeError("Payload must be a JSON object")

    try:
        return InboundPayload.model_validate(data)
    except ValidationError as e:
        raise DecodeError(f"Payload has invalid fields: {e.error_count()} error(s)") from e


def validate_body(raw: Any, max_length: int = 500) -> str:
    """Return the trimmed body, or raise InvalidMessageError.

    A body must be a string, non-empty after trimming, and at most
    ``max_length`` characters once trimmed.
    """
    if not isinstance(raw, str):
        raise InvalidMessageError("Message must be a string")
    body = raw.strip()
    if not body:
        raise InvalidMessageError("Message is empty")
    if len(body) > max_length:
        raise InvalidMessageError(
            f"Message is {len(body)} characters (max {max_length})"
        )
    return body


# =============================================================================
# Timestamps
# =============================================================================


class MonotonicClock:
    """Wall-clock UTC timestamps that never repeat or go backwards."""

    _TICK = timedelta(microseconds=1)

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        current = datetime.now(timezone.utc)
        with self._lock:
            if self._last is not None and current <= self._last:
                current = self._last + self._TICK
            self._last = current
        return current


# =============================================================================
# Pipeline
# =============================================================================


class MessagePipeline:
    """Turns an inbound payload from a joined session into a ChatMessage."""

    def __init__(self, settings: ChatSettings, clock: Optional[MonotonicClock] = None) -> None:
        self.settings = settings
        self.clock = clock or MonotonicClock()

    def sanitize(self, raw_name: Optional[str]) -> str:
        return sanitize_display_name(raw_name, self.settings.max_username_length)

    def process(self, payload: InboundPayload, session: Session) -> ChatMessage:
        """Validate and enrich a payload.

        Args:
            payload: Decoded inbound payload.
            session: The sender's registered session.

        Returns:
            A new immutable ChatMessage addressed to the sender's room.

        Raises:
            InvalidMessageError: Body is missing, blank or too long.
        """
        body = validate_body(payload.message, self.settings.max_message_length)
        return ChatMessage(
            roomId=session.room_id,
            userId=session.session_id,
            username=session.display_name,
            message=body,
            color=session.color,
            timestamp=self.clock.now(),
        )
