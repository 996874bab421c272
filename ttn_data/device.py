"""
Device scopes: per-device (or all-devices) listener registration and publishing.
"""

from typing import Any, Callable, Optional, TYPE_CHECKING

from .exceptions import InvalidOperationError, PublishError
from .listeners import ListenerSet, ListenerHandle
from .models import Downlink, Message, Priority
from .parsers import MessageParser
from .topics import EventKind, Schedule, TopicCodec, WILDCARD
from .transport import PublishResult
from .logging_config import get_logger

if TYPE_CHECKING:
    from .subscriptions import SubscriptionManager
    from .transport import Transport

logger = get_logger('device')


class DeviceScope:
    """
    Listener and publish context for one device, or for all devices (`+`).

    Registering the first listener for an event kind subscribes its topic;
    removing the last one unsubscribes it. Only concrete-device scopes can
    publish downlinks.
    """

    def __init__(self, transport: 'Transport', subscriptions: 'SubscriptionManager',
                 device_id: str, app_id: str, tenant_id: Optional[str] = 'ttn',
                 on_error: Optional[Callable[[Exception], None]] = None):
        """
        Initialize DeviceScope.

        Args:
            transport: Shared transport used for publishing
            subscriptions: Shared subscription manager
            device_id: Device ID, or `+` for the all-devices scope
            app_id: Application ID
            tenant_id: Tenant ID (None for single-tenant deployments)
            on_error: Error channel for publish serialization failures
        """
        self.transport = transport
        self.subscriptions = subscriptions
        self.device_id = device_id
        self.app_id = app_id
        self.tenant_id = tenant_id
        self.on_error = on_error
        self.topic_base = TopicCodec.topic_base(app_id, tenant_id, device_id)
        self.qos = 0
        self._listeners = {kind: ListenerSet() for kind in EventKind}

    def __repr__(self) -> str:
        return f"DeviceScope({self.topic_base!r})"

    @property
    def is_wildcard(self) -> bool:
        return self.device_id == WILDCARD

    def topic(self, kind: EventKind) -> str:
        """Subscription topic for an event kind in this scope."""
        return f"{self.topic_base}/{kind.value}"

    def listener_set(self, kind: EventKind) -> ListenerSet:
        return self._listeners[kind]

    def listener_count(self, kind: EventKind) -> int:
        return len(self._listeners[kind])

    def active_kinds(self) -> list[EventKind]:
        """Event kinds with at least one listener."""
        return [kind for kind, listeners in self._listeners.items() if listeners]

    def on(self, kind: EventKind, callback: Callable) -> ListenerHandle:
        """
        Register a listener for an event kind.

        The callback receives a MessageReceivedEvent. It runs on the MQTT
        network thread, so long work should be handed off.

        Returns:
            Handle whose remove() unregisters the listener
        """
        return self.subscriptions.add_listener(self, kind, callback)

    def off(self, kind: EventKind, callback: Callable) -> bool:
        """Unregister a listener. Returns False if it was not registered."""
        return self.subscriptions.remove_listener(self, kind, callback)

    def publish(self, message: Message | Downlink | str | bytes, schedule: Schedule = Schedule.PUSH,
                timeout: Optional[float] = None) -> PublishResult:
        """
        Publish a downlink message to this device.

        Args:
            message: Message, single Downlink, or pre-serialized JSON
            schedule: Queue placement (push or replace)
            timeout: Seconds to wait for the transport to send the message

        Returns:
            PublishResult from the transport

        Raises:
            InvalidOperationError: If this is the all-devices scope
            PublishError: If the message cannot be serialized or sent
        """
        if self.is_wildcard:
            raise InvalidOperationError("Cannot publish from the all-devices scope; select a device first")

        topic = TopicCodec.encode_downlink(self.app_id, self.tenant_id, self.device_id, schedule)
        try:
            payload = MessageParser.serialize(message)
        except PublishError as e:
            self._report(e)
            raise

        logger.debug(f"Publishing downlink to {topic}")
        return self.transport.publish(topic, payload, qos=self.qos, timeout=timeout)

    def publish_downlink(self, f_port: int, frm_payload: Optional[bytes] = None,
                         decoded_payload: Optional[Any] = None, priority: Priority = Priority.NORMAL,
                         confirmed: bool = False, correlation_ids: Optional[list[str]] = None,
                         schedule: Schedule = Schedule.PUSH, timeout: Optional[float] = None) -> PublishResult:
        """Build a single Downlink and publish it."""
        downlink = Downlink(
            f_port=f_port,
            frm_payload=frm_payload,
            decoded_payload=decoded_payload,
            priority=priority,
            confirmed=confirmed,
            correlation_ids=tuple(correlation_ids) if correlation_ids is not None else None,
        )
        return self.publish(downlink, schedule=schedule, timeout=timeout)

    def _report(self, error: Exception) -> None:
        if self.on_error is not None:
            self.on_error(error)
        else:
            logger.error(str(error))
