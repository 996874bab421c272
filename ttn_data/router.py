"""
Inbound message routing: topic + payload -> typed event -> listeners.
"""

from dataclasses import dataclass
from typing import Callable, Optional, TYPE_CHECKING

from .exceptions import TopicError, PayloadError
from .listeners import emit
from .models import Message
from .parsers import MessageParser
from .topics import EventKind, TopicCodec
from .logging_config import get_logger

if TYPE_CHECKING:
    from .device import DeviceScope

logger = get_logger('router')


@dataclass(frozen=True)
class MessageReceivedEvent:
    """Event passed to listeners for every routed message."""
    topic: str
    segments: tuple[str, ...]
    app_id: str
    tenant_id: Optional[str]
    device_id: str
    kind: EventKind
    message: Message

    @property
    def uplink(self):
        return self.message.uplink_message


class EventRouter:
    """
    Decodes inbound messages and fans them out to device scopes.

    Wildcard-scope listeners run first, then the listeners of the matching
    device scope if the application has created one. Topics that do not
    decode are dropped silently; payloads that do not parse are reported on
    the error channel and dispatched to nobody.
    """

    def __init__(self, wildcard: 'DeviceScope', lookup_device: Callable[[str], Optional['DeviceScope']],
                 on_error: Optional[Callable[[Exception], None]] = None):
        """
        Initialize EventRouter.

        Args:
            wildcard: Scope receiving every message
            lookup_device: Returns the cached scope for a device ID, without creating one
            on_error: Error channel for payload and listener failures
        """
        self.wildcard = wildcard
        self.lookup_device = lookup_device
        self.on_error = on_error
        self.parser = MessageParser()

    def on_message(self, topic: str, payload: bytes) -> int:
        """
        Route one inbound message.

        Returns:
            Number of listener invocations
        """
        try:
            parsed = TopicCodec.decode(topic)
        except TopicError as e:
            logger.debug(f"Dropping message: {e}")
            return 0

        try:
            message = self.parser.parse_message(payload, topic)
        except PayloadError as e:
            logger.warning(f"Dropping unparsable payload on {topic}: {e}")
            self._report(e)
            return 0

        event = MessageReceivedEvent(
            topic=topic,
            segments=parsed.segments,
            app_id=parsed.app_id,
            tenant_id=parsed.tenant_id,
            device_id=parsed.device_id,
            kind=parsed.kind,
            message=message,
        )
        return self.dispatch(event)

    def dispatch(self, event: MessageReceivedEvent) -> int:
        count = emit(self.wildcard.listener_set(event.kind), event, on_error=self._report)

        device = self.lookup_device(event.device_id)
        if device is not None:
            count += emit(device.listener_set(event.kind), event, on_error=self._report)

        logger.debug(f"Dispatched {event.kind.name} for {event.device_id} to {count} listener(s)")
        return count

    def _report(self, error: Exception) -> None:
        if self.on_error is not None:
            self.on_error(error)
        else:
            logger.error(f"Unhandled error while routing: {error!r}")
