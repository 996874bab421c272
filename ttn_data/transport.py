"""
MQTT transport: the abstract capability the client needs, and its paho-mqtt
implementation.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

import paho.mqtt.client as mqtt

from .exceptions import ConnectionError, PublishError, SubscriptionError
from .logging_config import get_logger

logger = get_logger('transport')


@dataclass(frozen=True)
class ConnectOptions:
    """Everything needed to open one broker connection."""
    host: str
    port: int
    username: str
    password: str
    client_id: str
    use_tls: bool = False
    keepalive: int = 60
    clean_session: bool = True
    managed: bool = False
    reconnect_delay: int = 5


@dataclass(frozen=True)
class ConnectResult:
    """Outcome of a connection attempt (the broker's CONNACK)."""
    result_code: int
    reason: str = ''

    @property
    def success(self) -> bool:
        return self.result_code == 0


@dataclass(frozen=True)
class PublishResult:
    """
    Outcome of a publish call.

    `published` is set once the message has left the client; `queued` means
    a managed connection holds it until the broker is reachable again.
    """
    mid: int
    rc: int = 0
    published: bool = False
    queued: bool = False


class Transport(ABC):
    """
    MQTT capability used by the client.

    Callbacks are assigned by the owner and invoked from the transport's
    network thread:
        on_connected(ConnectResult)
        on_disconnected(reason: str)
        on_message_received(topic: str, payload: bytes)
        on_message_processed(mid: int)
        on_message_skipped(mid: int)
    """

    def __init__(self):
        self.on_connected: Optional[Callable[[ConnectResult], None]] = None
        self.on_disconnected: Optional[Callable[[str], None]] = None
        self.on_message_received: Optional[Callable[[str, bytes], None]] = None
        self.on_message_processed: Optional[Callable[[int], None]] = None
        self.on_message_skipped: Optional[Callable[[int], None]] = None

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @property
    def pending_count(self) -> int:
        """Published messages not yet handed to the broker."""
        return 0

    @abstractmethod
    def connect(self, options: ConnectOptions, timeout: Optional[float] = None) -> Optional[ConnectResult]:
        """
        Open the connection.

        Unmanaged: blocks until the CONNACK arrives, raising ConnectionError on
        socket errors or timeout. Managed: starts the reconnecting network loop
        and only waits if a timeout is given, returning None otherwise.
        """

    @abstractmethod
    def disconnect(self, timeout: Optional[float] = None) -> None:
        ...

    @abstractmethod
    def publish(self, topic: str, payload: bytes, qos: int = 0, timeout: Optional[float] = None) -> PublishResult:
        ...

    @abstractmethod
    def subscribe(self, topic_filter: str, qos: int = 0) -> None:
        ...

    @abstractmethod
    def unsubscribe(self, topic_filter: str) -> None:
        ...


class PahoTransport(Transport):
    """
    Transport over a paho-mqtt client with a background network loop.

    Managed connections accept publishes while the broker is unreachable:
    paho keeps QoS 1/2 messages and sends them after the reconnect. Every
    accepted message is counted as pending until paho reports it sent.
    """

    def __init__(self):
        super().__init__()
        self.client: Optional[mqtt.Client] = None
        self.options: Optional[ConnectOptions] = None
        self._connected = False
        self._stopping = False
        self._loop_running = False
        self._connack = threading.Event()
        self._disconnected = threading.Event()
        self._last_result: Optional[ConnectResult] = None
        self._pending_lock = threading.RLock()
        self._pending: set[int] = set()
        self._sent_early: set[int] = set()

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def _create_client(self, options: ConnectOptions) -> mqtt.Client:
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=options.client_id,
            clean_session=options.clean_session,
        )
        client.username_pw_set(options.username, options.password)
        if options.use_tls:
            client.tls_set()
        if options.managed:
            client.reconnect_delay_set(min_delay=1, max_delay=max(1, options.reconnect_delay))

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_publish = self._on_publish
        # A failing callback must not tear down the network loop
        client.suppress_exceptions = True
        return client

    def _stop_loop(self, client: mqtt.Client) -> None:
        client.loop_stop()
        self._loop_running = False

    def connect(self, options: ConnectOptions, timeout: Optional[float] = None) -> Optional[ConnectResult]:
        if self._connected:
            raise ConnectionError("Already connected")
        if self._loop_running:
            raise ConnectionError("Connection already started; disconnect first")

        self.options = options
        self._stopping = False
        self._connack.clear()
        self._disconnected.clear()
        self._last_result = None
        self.client = self._create_client(options)

        logger.info(f"Connecting to {options.host}:{options.port} as {options.username}"
                    f"{' (managed)' if options.managed else ''}")
        try:
            if options.managed:
                self.client.connect_async(options.host, options.port, options.keepalive)
            else:
                self.client.connect(options.host, options.port, options.keepalive)
        except (OSError, ValueError) as e:
            raise ConnectionError(f"Connection error: {e}") from e
        self._loop_running = True
        self.client.loop_start()

        if options.managed and timeout is None:
            return None

        if not self._connack.wait(timeout):
            if not options.managed:
                self._stop_loop(self.client)
            raise ConnectionError(f"Connection timeout after {timeout}s")
        return self._last_result

    def disconnect(self, timeout: Optional[float] = None) -> None:
        if self.client is None:
            return
        self._stopping = True
        if self._connected:
            self.client.disconnect()
            if not self._disconnected.wait(timeout):
                logger.warning("Timed out waiting for disconnect acknowledgment")
        self._stop_loop(self.client)
        self._connected = False

        # The next connect builds a new paho client, so anything still queued is lost
        with self._pending_lock:
            dropped = sorted(self._pending)
            self._pending.clear()
            self._sent_early.clear()
        for mid in dropped:
            self._skipped(mid)

    def publish(self, topic: str, payload: bytes, qos: int = 0, timeout: Optional[float] = None) -> PublishResult:
        """
        Publish a message.

        Unmanaged connections require a live connection. Managed ones accept
        the message while reconnecting; QoS 0 messages that cannot be sent
        right away are skipped, since paho only keeps QoS 1/2 messages.

        Raises:
            PublishError: If not connected (unmanaged) or paho rejects the message
        """
        managed = self.options is not None and self.options.managed
        if self.client is None or not (self._connected or (managed and self._loop_running)):
            raise PublishError("Not connected to MQTT broker")

        with self._pending_lock:
            info = self.client.publish(topic, payload, qos=qos)
            sent_or_queued = info.rc == mqtt.MQTT_ERR_SUCCESS or (
                managed and qos > 0 and info.rc == mqtt.MQTT_ERR_NO_CONN
            )
            if sent_or_queued:
                if info.mid in self._sent_early:
                    self._sent_early.discard(info.mid)
                else:
                    self._pending.add(info.mid)

        if not sent_or_queued:
            if managed:
                logger.warning(f"Skipped message to {topic}: {mqtt.error_string(info.rc)}")
                self._skipped(info.mid)
                return PublishResult(mid=info.mid, rc=info.rc, published=False)
            raise PublishError(f"Publish to {topic} failed: {mqtt.error_string(info.rc)}")

        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.info(f"Queued message to {topic} until reconnected (mid: {info.mid})")
            return PublishResult(mid=info.mid, rc=info.rc, published=False, queued=True)

        if timeout is not None:
            try:
                info.wait_for_publish(timeout)
            except (RuntimeError, ValueError) as e:
                raise PublishError(f"Publish to {topic} failed: {e}") from e

        logger.debug(f"Published {len(payload)} bytes to {topic} (mid: {info.mid})")
        return PublishResult(mid=info.mid, rc=info.rc, published=info.is_published())

    def subscribe(self, topic_filter: str, qos: int = 0) -> None:
        if self.client is None:
            raise SubscriptionError("Not connected to MQTT broker", topic_filter)
        rc, _mid = self.client.subscribe(topic_filter, qos=qos)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise SubscriptionError(f"Subscribe to {topic_filter} failed: {mqtt.error_string(rc)}", topic_filter)

    def unsubscribe(self, topic_filter: str) -> None:
        if self.client is None:
            raise SubscriptionError("Not connected to MQTT broker", topic_filter)
        rc, _mid = self.client.unsubscribe(topic_filter)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise SubscriptionError(f"Unsubscribe from {topic_filter} failed: {mqtt.error_string(rc)}", topic_filter)

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        """Callback when the broker answers a connection attempt."""
        result = ConnectResult(result_code=int(reason_code.value), reason=str(reason_code))
        self._last_result = result
        self._connected = result.success
        if result.success:
            logger.info(f"Connected to MQTT broker at {self.options.host}:{self.options.port}")
        else:
            logger.warning(f"Failed to connect: {result.reason} (code {result.result_code})")
            if not self.options.managed:
                self._stop_loop(client)
        self._connack.set()

        if self.on_connected is not None:
            self.on_connected(result)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        """Callback when the connection is closed."""
        self._connected = False
        self._disconnected.set()
        logger.info(f"Disconnected from MQTT broker ({reason_code})")
        # Unmanaged connections do not come back on their own
        if not self._stopping and self.options is not None and not self.options.managed:
            self._stop_loop(client)

        if self.on_disconnected is not None:
            self.on_disconnected(str(reason_code))

    def _on_message(self, client, userdata, msg):
        """Callback when a message is received."""
        logger.debug(f"Received message: topic={msg.topic}, payload_len={len(msg.payload)}")
        if self.on_message_received is not None:
            self.on_message_received(msg.topic, msg.payload)

    def _on_publish(self, client, userdata, mid, reason_code, properties):
        """Callback when paho has handed a message to the broker."""
        with self._pending_lock:
            if mid in self._pending:
                self._pending.discard(mid)
            else:
                # publish() has not recorded this mid yet
                self._sent_early.add(mid)
        if self.on_message_processed is not None:
            self.on_message_processed(mid)

    def _skipped(self, mid: int) -> None:
        if self.on_message_skipped is not None:
            self.on_message_skipped(mid)
