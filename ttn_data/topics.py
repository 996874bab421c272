"""
Topic codec for The Things Stack MQTT application data API.

Topics identify a (tenant, application, device, event kind) tuple:

    v3/{app_id}[@{tenant_id}]/devices/{device_id|+}/{suffix}

The older API generation used a shallower layout without tenants:

    {app_id}/devices/{device_id|+}/{suffix}

Both codecs are pure: they never touch the network and hold no state.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .exceptions import MalformedTopicError, UnknownEventKindError, InvalidOperationError

WILDCARD = '+'
_RESERVED = ('/', '+', '#')


class EventKind(Enum):
    """Message categories delivered on the current (v3) topic scheme."""
    JOIN = 'join'
    UP = 'up'
    DOWN_QUEUED = 'down/queued'
    DOWN_SENT = 'down/sent'
    DOWN_ACK = 'down/ack'
    DOWN_NACK = 'down/nack'
    DOWN_FAILED = 'down/failed'
    SERVICE_DATA = 'service/data'
    LOCATION_SOLVED = 'location/solved'

    @property
    def suffix(self) -> str:
        return self.value

    @classmethod
    def from_name(cls, name: str) -> 'EventKind':
        """Look up a kind by enum name or topic suffix (case-insensitive for names)."""
        key = name.strip()
        for kind in cls:
            if kind.value == key or kind.name == key.upper().replace('-', '_').replace('/', '_'):
                return kind
        raise ValueError(f"Unknown event kind: '{name}'")


class LegacyEventKind(Enum):
    """Message categories delivered on the legacy topic scheme."""
    UP = 'up'
    ACTIVATION = 'events/activations'
    DEVICE_CREATED = 'events/create'
    DEVICE_UPDATED = 'events/update'
    DEVICE_DELETED = 'events/delete'
    DOWN_SCHEDULED = 'events/down/scheduled'
    DOWN_SENT = 'events/down/sent'
    DOWN_ACKS = 'events/down/acks'
    ERROR_UP = 'events/up/errors'
    ERROR_DOWN = 'events/down/errors'
    ERROR_ACTIVATION = 'events/activations/errors'

    @property
    def suffix(self) -> str:
        return self.value


class Schedule(Enum):
    """Placement of a downlink in the device's pending queue."""
    REPLACE = 'replace'
    PUSH = 'push'
    # Legacy API only
    FIRST = 'first'
    LAST = 'last'


CURRENT_SCHEDULES = (Schedule.REPLACE, Schedule.PUSH)


@dataclass(frozen=True)
class ParsedTopic:
    """Structured form of a decoded topic string."""
    topic: str
    segments: tuple[str, ...]
    app_id: str
    tenant_id: Optional[str]
    device_id: str
    kind: EventKind | LegacyEventKind
    extra: tuple[str, ...] = ()

    @property
    def is_wildcard(self) -> bool:
        return self.device_id == WILDCARD


def _check_id(value: str, what: str, allow_wildcard: bool = False) -> None:
    if allow_wildcard and value == WILDCARD:
        return
    if not value:
        raise ValueError(f"{what} must not be empty")
    if any(c in value for c in _RESERVED):
        raise ValueError(f"{what} contains a reserved topic character: '{value}'")


class TopicCodec:
    """Codec for the current `v3/...` topic scheme."""

    PREFIX = 'v3'
    DEVICES = 'devices'
    MIN_SEGMENTS = 5

    _SUFFIXES = {kind.value: kind for kind in EventKind}

    @classmethod
    def app_segment(cls, app_id: str, tenant_id: Optional[str] = None) -> str:
        """Build the `{app}[@{tenant}]` segment."""
        _check_id(app_id, 'app_id')
        if '@' in app_id:
            raise ValueError(f"app_id must not contain '@': '{app_id}'")
        if tenant_id is None:
            return app_id
        _check_id(tenant_id, 'tenant_id')
        return f"{app_id}@{tenant_id}"

    @classmethod
    def topic_base(cls, app_id: str, tenant_id: Optional[str], device_id: str) -> str:
        """Build the topic prefix shared by every event of one device (or `+`)."""
        _check_id(device_id, 'device_id', allow_wildcard=True)
        return f"{cls.PREFIX}/{cls.app_segment(app_id, tenant_id)}/{cls.DEVICES}/{device_id}"

    @classmethod
    def encode(cls, app_id: str, tenant_id: Optional[str], device_id: str, kind: EventKind) -> str:
        """Build the subscription topic for an event kind."""
        if not isinstance(kind, EventKind):
            raise TypeError(f"Expected EventKind, got {type(kind).__name__}")
        return f"{cls.topic_base(app_id, tenant_id, device_id)}/{kind.value}"

    @classmethod
    def encode_downlink(cls, app_id: str, tenant_id: Optional[str], device_id: str,
                        schedule: Schedule = Schedule.PUSH) -> str:
        """Build the publish topic for a downlink to one concrete device."""
        if device_id == WILDCARD:
            raise InvalidOperationError("Downlinks can only be published to a concrete device")
        if schedule not in CURRENT_SCHEDULES:
            raise ValueError(f"Schedule {schedule.name} is not supported by the v3 API")
        return f"{cls.topic_base(app_id, tenant_id, device_id)}/down/{schedule.value}"

    @classmethod
    def decode(cls, topic: str) -> ParsedTopic:
        """
        Parse a topic string.

        Raises:
            MalformedTopicError: If the topic does not follow the v3 layout
            UnknownEventKindError: If the suffix matches no event kind
        """
        segments = topic.split('/')
        if len(segments) < cls.MIN_SEGMENTS:
            raise MalformedTopicError(topic, f"Expected at least {cls.MIN_SEGMENTS} segments")
        if segments[0] != cls.PREFIX or segments[2] != cls.DEVICES:
            raise MalformedTopicError(topic, "Not a v3 device topic")

        app_id, sep, tenant_id = segments[1].partition('@')
        device_id = segments[3]
        if not app_id or (sep and not tenant_id) or not device_id:
            raise MalformedTopicError(topic, "Empty application, tenant or device segment")

        extra = tuple(segments[4:])
        kind = cls._SUFFIXES.get('/'.join(extra))
        if kind is None:
            raise UnknownEventKindError(topic, "Unknown event suffix")

        return ParsedTopic(
            topic=topic,
            segments=tuple(segments),
            app_id=app_id,
            tenant_id=tenant_id if sep else None,
            device_id=device_id,
            kind=kind,
            extra=extra,
        )


class LegacyTopicCodec:
    """Codec for the legacy `{app}/devices/{device}/...` topic scheme."""

    DEVICES = 'devices'
    MIN_SEGMENTS = 4

    _SUFFIXES = {kind.value: kind for kind in LegacyEventKind}

    @classmethod
    def topic_base(cls, app_id: str, device_id: str) -> str:
        _check_id(app_id, 'app_id')
        _check_id(device_id, 'device_id', allow_wildcard=True)
        return f"{app_id}/{cls.DEVICES}/{device_id}"

    @classmethod
    def encode(cls, app_id: str, device_id: str, kind: LegacyEventKind) -> str:
        if not isinstance(kind, LegacyEventKind):
            raise TypeError(f"Expected LegacyEventKind, got {type(kind).__name__}")
        return f"{cls.topic_base(app_id, device_id)}/{kind.value}"

    @classmethod
    def encode_downlink(cls, app_id: str, device_id: str) -> str:
        """Legacy downlinks carry their schedule in the payload, not the topic."""
        if device_id == WILDCARD:
            raise InvalidOperationError("Downlinks can only be published to a concrete device")
        return f"{cls.topic_base(app_id, device_id)}/down"

    @classmethod
    def decode(cls, topic: str) -> ParsedTopic:
        segments = topic.split('/')
        if len(segments) < cls.MIN_SEGMENTS or segments[1] != cls.DEVICES:
            raise MalformedTopicError(topic, "Not a legacy device topic")
        if not segments[0] or not segments[2]:
            raise MalformedTopicError(topic, "Empty application or device segment")

        extra = tuple(segments[3:])
        kind = cls._SUFFIXES.get('/'.join(extra))
        if kind is None:
            raise UnknownEventKindError(topic, "Unknown event suffix")

        return ParsedTopic(
            topic=topic,
            segments=tuple(segments),
            app_id=segments[0],
            tenant_id=None,
            device_id=segments[2],
            kind=kind,
            extra=extra,
        )
