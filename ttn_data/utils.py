"""
Wire field conversions for the TTN JSON payload schema.
"""

import base64
import binascii
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

_FRACTION_RE = re.compile(r'\.(\d+)')


class FieldCodec:
    """Converters between wire JSON values and Python values."""

    @staticmethod
    def b64_to_bytes(value: Optional[str]) -> Optional[bytes]:
        """Decode a Base64 string (the v3 encoding for byte fields)."""
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError(f"Expected Base64 string, got {type(value).__name__}")
        try:
            return base64.b64decode(value, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid Base64 value: '{value}'") from e

    @staticmethod
    def bytes_to_b64(value: Optional[bytes]) -> Optional[str]:
        if value is None:
            return None
        return base64.b64encode(bytes(value)).decode('ascii')

    @staticmethod
    def hex_to_bytes(value: Optional[str]) -> Optional[bytes]:
        """Decode a hex string (EUIs, device addresses and legacy byte fields)."""
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError(f"Expected hex string, got {type(value).__name__}")
        try:
            return bytes.fromhex(value)
        except ValueError as e:
            raise ValueError(f"Invalid hex value: '{value}'") from e

    @staticmethod
    def bytes_to_hex(value: Optional[bytes]) -> Optional[str]:
        if value is None:
            return None
        return bytes(value).hex().upper()

    @staticmethod
    def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
        """
        Parse an ISO-8601 timestamp with offset.

        The network server emits nanosecond fractions; these are truncated to
        the microsecond resolution of datetime. Timestamps without an offset
        are taken as UTC.
        """
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError(f"Expected timestamp string, got {type(value).__name__}")
        text = value.strip()
        if text.endswith(('Z', 'z')):
            text = text[:-1] + '+00:00'
        text = _FRACTION_RE.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text, count=1)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValueError(f"Invalid timestamp: '{value}'") from e
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    @staticmethod
    def format_timestamp(value: Optional[datetime]) -> Optional[str]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()

    @staticmethod
    def parse_airtime(value: Optional[str]) -> Optional[timedelta]:
        """Parse a duration like "0.061696s"."""
        if value is None:
            return None
        if not isinstance(value, str) or not value.endswith('s'):
            raise ValueError(f"Invalid duration: '{value}'")
        try:
            return timedelta(seconds=float(value[:-1]))
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Invalid duration: '{value}'") from e

    @staticmethod
    def format_airtime(value: Optional[timedelta]) -> Optional[str]:
        if value is None:
            return None
        seconds = format(value.total_seconds(), '.9f').rstrip('0').rstrip('.')
        return f"{seconds or '0'}s"


def parse_payload_bytes(text: str, encoding: str = 'hex') -> bytes:
    """
    Parse user-supplied FRMPayload text.

    Args:
        text: Payload text
        encoding: 'hex' or 'base64'

    Returns:
        Raw payload bytes

    Raises:
        ValueError: If the text is not valid for the encoding
    """
    match encoding:
        case 'hex':
            return FieldCodec.hex_to_bytes(text.replace(' ', ''))
        case 'base64':
            return FieldCodec.b64_to_bytes(text)
        case _:
            raise ValueError(f"Unsupported payload encoding: {encoding}")
