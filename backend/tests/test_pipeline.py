"""Tests for payload decoding, validation and enrichment."""
import pytest
from pydantic import ValidationError

from retrochat.chat.errors import DecodeError, InvalidMessageError
from retrochat.chat.pipeline import (
    COLOR_PALETTE,
    MessagePipeline,
    MonotonicClock,
    decode_payload,
    derive_color,
    sanitize_display_name,
    validate_body,
)
from retrochat.chat.schemas import InboundPayload
from retrochat.chat.sessions import Session
from retrochat.config import ChatSettings


# =============================================================================
# Display names
# =============================================================================


class TestSanitizeDisplayName:
    """Tests for sanitize_display_name()."""

    def test_trims_whitespace(self):
        assert sanitize_display_name("  alice  ") == "alice"

    def test_caps_length(self):
        assert sanitize_display_name("x" * 50) == "x" * 20

    def test_custom_cap(self):
        assert sanitize_display_name("abcdefgh", max_length=4) == "abcd"

    def test_strips_markup_characters(self):
        assert sanitize_display_name("<b>bob</b>") == "bbob/b"
        assert sanitize_display_name("a'b\"c&d") == "abcd"

    def test_empty_defaults_to_anonymous(self):
        assert sanitize_display_name("") == "Anonymous"
        assert sanitize_display_name("   ") == "Anonymous"
        assert sanitize_display_name("<>&") == "Anonymous"
        assert sanitize_display_name(None) == "Anonymous"

    @pytest.mark.parametrize("raw", [
        "alice",
        "  padded  ",
        "< leading markup",
        "trailing space then markup &",
        "a" * 19 + " <",
        "'\"",
        "Ünïcødé näme",
        "x" * 40,
    ])
    def test_idempotent(self, raw):
        once = sanitize_display_name(raw)
        assert sanitize_display_name(once) == once


class TestDeriveColor:
    """Tests for derive_color()."""

    def test_deterministic(self):
        assert derive_color("alice") == derive_color("alice")

    def test_always_in_palette(self):
        for name in ("alice", "bob", "carol", "Anonymous", "", "名前"):
            assert derive_color(name) in COLOR_PALETTE

    def test_known_value(self):
        # md5("alice") starts with 0x6384 -> 0x63 = 99, 99 % 6 = 3
        assert derive_color("alice") == COLOR_PALETTE[3]

    def test_lone_surrogate_does_not_raise(self):
        assert derive_color("\ud800x") in COLOR_PALETTE
        assert sanitize_display_name("\ud800x") == "x"
        assert sanitize_display_name("\udfff") == "Anonymous"

    def test_same_sanitized_name_same_color(self):
        assert derive_color(sanitize_display_name("  bob ")) == derive_color(sanitize_display_name("bob<"))


# =============================================================================
# Decoding and body validation
# =============================================================================


class TestDecodePayload:
    """Tests for decode_payload()."""

    def test_full_payload(self):
        payload = decode_payload('{"userId": "u1", "username": "alice", "message": "hi"}')
        assert payload.userId == "u1"
        assert payload.username == "alice"
        assert payload.message == "hi"

    def test_optional_fields_default_to_none(self):
        payload = decode_payload('{"message": "hi"}')
        assert payload.userId is None
        assert payload.username is None

    def test_unknown_fields_ignored(self):
        payload = decode_payload('{"message": "hi", "type": "chat"}')
        assert payload.message == "hi"

    def test_bytes_accepted(self):
        assert decode_payload(b'{"message": "hi"}').message == "hi"

    def test_non_string_message_kept_for_validation(self):
        assert decode_payload('{"message": 42}').message == 42

    @pytest.mark.parametrize("frame", [
        "not json",
        "",
        "[1, 2, 3]",
        '"just a string"',
        "null",
        '{"userId": 5}',
        '{"username": ["a"]}',
        b"\xff\xfe",
        None,
    ])
    def test_malformed_frames_raise(self, frame):
        with pytest.raises(DecodeError):
            decode_payload(frame)


class TestValidateBody:
    """Tests for validate_body()."""

    def test_returns_trimmed_body(self):
        assert validate_body("  hello  ") == "hello"

    def test_whitespace_only_rejected(self):
        with pytest.raises(InvalidMessageError):
            validate_body("   ")

    def test_empty_rejected(self):
        with pytest.raises(InvalidMessageError):
            validate_body("")

    def test_500_chars_accepted(self):
        assert len(validate_body("a" * 500)) == 500

    def test_501_chars_rejected(self):
        with pytest.raises(InvalidMessageError):
            validate_body("a" * 501)

    def test_length_checked_after_trim(self):
        assert validate_body("  " + "a" * 500 + "  ") == "a" * 500

    @pytest.mark.parametrize("raw", [None, 42, ["hi"], {"text": "hi"}, True])
    def test_non_string_rejected(self, raw):
        with pytest.raises(InvalidMessageError):
            validate_body(raw)


# =============================================================================
# Enrichment
# =============================================================================


def _session(**overrides):
    values = dict(
        session_id="s-1",
        display_name="alice",
        room_id="general",
        color=derive_color("alice"),
        connection=object(),
    )
    values.update(overrides)
    return Session(**values)


class TestMessagePipeline:
    """Tests for MessagePipeline.process()."""

    def test_process_enriches_message(self):
        pipeline = MessagePipeline(ChatSettings())
        session = _session()
        message = pipeline.process(InboundPayload(message="  hello "), session)

        assert message.message == "hello"
        assert message.userId == "s-1"
        assert message.username == "alice"
        assert message.roomId == "general"
        assert message.color == session.color
        assert message.id

    def test_process_rejects_invalid_body(self):
        pipeline = MessagePipeline(ChatSettings())
        with pytest.raises(InvalidMessageError):
            pipeline.process(InboundPayload(message=" "), _session())

    def test_configured_max_length(self):
        pipeline = MessagePipeline(ChatSettings(max_message_length=10))
        pipeline.process(InboundPayload(message="a" * 10), _session())
        with pytest.raises(InvalidMessageError):
            pipeline.process(InboundPayload(message="a" * 11), _session())

    def test_ids_unique_and_timestamps_increasing(self):
        pipeline = MessagePipeline(ChatSettings())
        session = _session()
        messages = [pipeline.process(InboundPayload(message=f"m{i}"), session) for i in range(50)]

        assert len({m.id for m in messages}) == 50
        stamps = [m.timestamp for m in messages]
        assert all(a < b for a, b in zip(stamps, stamps[1:]))

    def test_message_is_immutable(self):
        pipeline = MessagePipeline(ChatSettings())
        message = pipeline.process(InboundPayload(message="hi"), _session())
        with pytest.raises(ValidationError):
            message.message = "changed"

    def test_wire_format(self):
        pipeline = MessagePipeline(ChatSettings())
        wire = pipeline.process(InboundPayload(message="hi"), _session()).to_wire()

        assert set(wire) == {"id", "username", "message", "color", "timestamp", "userId"}
        assert wire["timestamp"].endswith("Z")

    def test_sanitize_uses_configured_length(self):
        pipeline = MessagePipeline(ChatSettings(max_username_length=3))
        assert pipeline.sanitize("abcdef") == "abc"


def test_monotonic_clock_never_repeats():
    clock = MonotonicClock()
    stamps = [clock.now() for _ in range(1000)]
    assert all(a < b for a, b in zip(stamps, stamps[1:]))
