"""
Payload parsing and serialization for TTN application messages.
"""

import json
from typing import Any

from .exceptions import PayloadError, PublishError
from .models import Message, Downlink


class MessageParser:
    """Converts between MQTT payload bytes and Message records."""

    @staticmethod
    def parse_message(payload: bytes, topic: str | None = None) -> Message:
        """
        Deserialize a UTF-8 JSON payload into a Message.

        Args:
            payload: Raw MQTT payload
            topic: Topic the payload arrived on (for error context)

        Returns:
            Parsed Message

        Raises:
            PayloadError: If the payload is not JSON or does not match the schema
        """
        try:
            data = json.loads(payload.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PayloadError(f"Payload is not valid UTF-8 JSON: {e}", topic, payload) from e
        except RecursionError as e:
            raise PayloadError("Payload JSON is nested too deeply", topic, payload) from e

        if data is None:
            raise PayloadError("Payload deserialized to null", topic, payload)

        try:
            return Message.from_dict(data)
        except (KeyError, ValueError, TypeError, OverflowError) as e:
            raise PayloadError(f"Payload does not match the message schema: {e!r}", topic, payload) from e

    @staticmethod
    def serialize(message: Message | Downlink | dict | str | bytes) -> bytes:
        """
        Serialize an outgoing message to the JSON bytes published on a downlink topic.

        A single Downlink is wrapped in a Message with one downlink. Strings and
        bytes are assumed to be JSON already and are passed through.

        Raises:
            PublishError: If the message cannot be serialized
        """
        if isinstance(message, bytes):
            return message
        if isinstance(message, str):
            return message.encode('utf-8')

        if isinstance(message, Downlink):
            message = Message(downlinks=(message,))

        try:
            body: Any = message.to_dict() if isinstance(message, Message) else message
            return json.dumps(body, separators=(',', ':')).encode('utf-8')
        except (TypeError, ValueError, AttributeError) as e:
            raise PublishError(f"Could not serialize downlink message: {e}") from e
