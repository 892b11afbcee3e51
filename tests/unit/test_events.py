"""Unit tests for the client wire protocol."""

import json

import pytest

from character_engine.core.errors import ProtocolError
from character_engine.streaming import (
    AudioMessage,
    AudioSessionEndMessage,
    EventCodec,
    EventType,
    TextMessage,
    parse_inbound,
)


class TestOutboundEvents:
    """Tests for EventCodec builders."""

    def test_agent_text_event(self):
        event = EventCodec.text("Hello.", "int-1", is_agent=True, name="agent-1", utterance_id="utt-1")

        assert event["type"] == EventType.TEXT.value
        assert event["text"] == {"text": "Hello.", "final": True}
        assert event["packetId"] == {"utteranceId": "utt-1", "interactionId": "int-1"}
        assert event["routing"]["source"] == {"isAgent": True, "name": "agent-1"}
        assert event["date"].endswith("Z")

    def test_user_text_event_gets_utterance_id(self):
        event = EventCodec.text("Hi", "int-1", is_user=True)

        assert event["routing"]["source"] == {"isUser": True}
        assert event["packetId"]["utteranceId"]

    def test_audio_event(self):
        event = EventCodec.audio("UklGRg==", "int-1", "utt-1")

        assert event["type"] == "AUDIO"
        assert event["audio"] == {"chunk": "UklGRg=="}
        assert event["packetId"] == {"utteranceId": "utt-1", "interactionId": "int-1"}
        assert event["routing"]["source"]["isAgent"] is True

    def test_error_event(self):
        event = EventCodec.error(RuntimeError("boom"), "int-1")

        assert event["type"] == "ERROR"
        assert event["error"] == "boom"
        assert event["packetId"] == {"interactionId": "int-1"}

    def test_interaction_end_event(self):
        event = EventCodec.interaction_end("int-1")

        assert event["type"] == "INTERACTION_END"
        assert event["packetId"] == {"interactionId": "int-1"}

    def test_encode_is_json(self):
        encoded = EventCodec.encode(EventCodec.interaction_end("int-1"))

        assert json.loads(encoded)["type"] == "INTERACTION_END"


class TestInboundMessages:
    """Tests for parse_inbound."""

    def test_text_message(self):
        message = parse_inbound('{"type": "text", "text": "Hello"}')

        assert isinstance(message, TextMessage)
        assert message.text == "Hello"

    def test_audio_message_with_lists(self):
        message = parse_inbound({"type": "audio", "audio": [[0.1, 0.2], [0.3]]})

        assert isinstance(message, AudioMessage)
        assert message.samples().tolist() == pytest.approx([0.1, 0.2, 0.3])

    def test_audio_message_with_index_keyed_frames(self):
        raw = json.dumps({"type": "audio", "audio": [{"2": 0.3, "0": 0.1, "1": 0.2, "10": 0.9}]})

        message = parse_inbound(raw)

        assert message.samples().tolist() == pytest.approx([0.1, 0.2, 0.3, 0.9])

    def test_audio_message_without_frames(self):
        message = parse_inbound({"type": "audio"})

        assert message.samples().size == 0

    def test_audio_session_end(self):
        message = EventCodec.decode(b'{"type": "audioSessionEnd"}')

        assert isinstance(message, AudioSessionEndMessage)

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            '{"type": "video"}',
            '{"text": "missing type"}',
            '{"type": "text"}',
            '{"type": "audio", "audio": "nope"}',
            '{"type": "audio", "audio": [{"a": 0.1, "b": 0.2}]}',
        ],
    )
    def test_malformed_messages(self, raw):
        with pytest.raises(ProtocolError) as exc_info:
            parse_inbound(raw)

        assert exc_info.value.code == "PROTOCOL_ERROR"
