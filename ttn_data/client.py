"""
Main client for The Things Stack MQTT application data API.
"""

import threading
import uuid
from enum import Enum
from typing import Callable, Optional

from .config import ServerConfig, ClientConfig
from .device import DeviceScope
from .exceptions import ConnectionError, InvalidOperationError
from .listeners import ListenerSet, ListenerHandle, emit
from .models import Downlink, Message
from .router import EventRouter
from .subscriptions import SubscriptionManager
from .topics import EventKind, Schedule, WILDCARD
from .transport import Transport, PahoTransport, ConnectOptions, ConnectResult, PublishResult
from .logging_config import get_logger

logger = get_logger('client')


class ConnectionState(Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    DISCONNECTING = 'disconnecting'


class TTNDataClient:
    """
    Application data connection.

    Orchestrates all components: the all-devices scope, per-device scopes,
    subscription bookkeeping and inbound routing over one transport.

    Listeners registered on the client itself receive events for every
    device; `client[device_id]` returns the scope for a single device.

    Unmanaged clients use connect()/disconnect() and stay down after a lost
    connection. Managed clients use start()/stop() and reconnect on their
    own; subscriptions are restored after every reconnect.
    """

    def __init__(self, app_id: str, tenant_id: Optional[str] = 'ttn', transport: Optional[Transport] = None,
                 managed: bool = False, client_id: Optional[str] = None, qos: int = 0):
        """
        Initialize TTNDataClient.

        Args:
            app_id: Application ID
            tenant_id: Tenant ID (None for single-tenant deployments)
            transport: MQTT transport (defaults to PahoTransport)
            managed: Reconnect automatically after connection loss
            client_id: MQTT client ID (random if not given)
            qos: QoS used for subscriptions and downlinks
        """
        self.app_id = app_id
        self.tenant_id = tenant_id
        self.managed = managed
        self.client_id = client_id or str(uuid.uuid4())
        self.qos = qos
        self.transport = transport if transport is not None else PahoTransport()
        self.server_config: Optional[ServerConfig] = None
        self.client_config: Optional[ClientConfig] = None

        self._state = ConnectionState.DISCONNECTED
        self._state_lock = threading.Lock()
        self._stopping = False

        self._connected_listeners = ListenerSet()
        self._disconnected_listeners = ListenerSet()
        self._error_listeners = ListenerSet()
        self._processed_listeners = ListenerSet()
        self._skipped_listeners = ListenerSet()

        self.subscriptions = SubscriptionManager(self.transport, on_error=self._report_error, qos=qos)
        self.all_devices = self._create_scope(WILDCARD)
        self._devices: dict[str, DeviceScope] = {}
        self._devices_lock = threading.Lock()
        self.router = EventRouter(self.all_devices, self.get_device, on_error=self._report_error)

        self.transport.on_connected = self._handle_connected
        self.transport.on_disconnected = self._handle_disconnected
        self.transport.on_message_received = self._handle_message
        self.transport.on_message_processed = self._handle_processed
        self.transport.on_message_skipped = self._handle_skipped

    @classmethod
    def from_config(cls, server_config: ServerConfig, client_config: ClientConfig,
                    transport: Optional[Transport] = None) -> 'TTNDataClient':
        """Create a client whose connect()/start() default to the given configuration."""
        if not client_config.app_id:
            raise InvalidOperationError("client_config.app_id is required")
        client = cls(
            client_config.app_id,
            client_config.tenant_id,
            transport=transport,
            managed=client_config.managed,
            client_id=client_config.client_id,
        )
        client.server_config = server_config
        client.client_config = client_config
        return client

    def __repr__(self) -> str:
        return f"TTNDataClient(app_id={self.app_id!r}, tenant_id={self.tenant_id!r}, state={self.state.value})"

    # Device scopes

    def _create_scope(self, device_id: str) -> DeviceScope:
        scope = DeviceScope(self.transport, self.subscriptions, device_id, self.app_id, self.tenant_id,
                            on_error=self._report_error)
        scope.qos = self.qos
        return scope

    def __getitem__(self, device_id: str) -> DeviceScope:
        """Return the scope for a device, creating it on first access."""
        if device_id == WILDCARD:
            return self.all_devices
        with self._devices_lock:
            scope = self._devices.get(device_id)
            if scope is None:
                scope = self._create_scope(device_id)
                self._devices[device_id] = scope
                logger.debug(f"Created device scope {scope.topic_base}")
            return scope

    def __contains__(self, device_id: str) -> bool:
        with self._devices_lock:
            return device_id in self._devices

    def get_device(self, device_id: str) -> Optional[DeviceScope]:
        """Return the cached scope for a device without creating one."""
        with self._devices_lock:
            return self._devices.get(device_id)

    def devices(self) -> list[DeviceScope]:
        with self._devices_lock:
            return list(self._devices.values())

    def _all_scopes(self) -> list[DeviceScope]:
        return [self.all_devices, *self.devices()]

    # Listeners

    def on(self, kind: EventKind, callback: Callable) -> ListenerHandle:
        """Register a listener for an event kind on all devices."""
        return self.all_devices.on(kind, callback)

    def off(self, kind: EventKind, callback: Callable) -> bool:
        return self.all_devices.off(kind, callback)

    def on_connected(self, callback: Callable[[ConnectResult], None]) -> ListenerHandle:
        """Called after every successful (re)connect, once subscriptions are queued."""
        return self._add_plain_listener(self._connected_listeners, callback)

    def on_disconnected(self, callback: Callable[[str], None]) -> ListenerHandle:
        return self._add_plain_listener(self._disconnected_listeners, callback)

    def on_error(self, callback: Callable[[Exception], None]) -> ListenerHandle:
        """
        Register an error listener.

        Receives payload, publish, connection and subscription errors that
        happen outside a direct call, and exceptions raised by listeners.
        """
        return self._add_plain_listener(self._error_listeners, callback)

    def on_message_processed(self, callback: Callable[[int], None]) -> ListenerHandle:
        """Called with the message ID once a published message has been handed to the broker."""
        return self._add_plain_listener(self._processed_listeners, callback)

    def on_message_skipped(self, callback: Callable[[int], None]) -> ListenerHandle:
        """Called with the message ID of a published message that will never be sent."""
        return self._add_plain_listener(self._skipped_listeners, callback)

    @staticmethod
    def _add_plain_listener(listeners: ListenerSet, callback: Callable) -> ListenerHandle:
        listeners.add(callback)
        return ListenerHandle(lambda: listeners.remove(callback) is not None, callback)

    # Publishing

    def publish(self, message: Message | Downlink | str | bytes, device_id: Optional[str] = None,
                schedule: Schedule = Schedule.PUSH, timeout: Optional[float] = None) -> PublishResult:
        """
        Publish a downlink to a device.

        Raises:
            InvalidOperationError: If no device_id is given
        """
        if device_id is None or device_id == WILDCARD:
            raise InvalidOperationError("Publishing requires a device; use client[device_id].publish()")
        return self[device_id].publish(message, schedule=schedule, timeout=timeout)

    @property
    def pending_messages_count(self) -> int:
        """Published messages accepted but not yet handed to the broker."""
        return self.transport.pending_count

    # Connection

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def _set_state(self, state: ConnectionState) -> None:
        with self._state_lock:
            if self._state != state:
                logger.debug(f"State {self._state.value} -> {state.value}")
            self._state = state

    def _connect_options(self, server_config: ServerConfig) -> ConnectOptions:
        default_username = f"{self.app_id}@{self.tenant_id}" if self.tenant_id else self.app_id
        reconnect_delay = self.client_config.reconnect_delay if self.client_config else 5
        return ConnectOptions(
            host=server_config.host,
            port=server_config.effective_port,
            username=server_config.username or default_username,
            password=server_config.api_key,
            client_id=self.client_id,
            use_tls=server_config.use_tls,
            keepalive=server_config.keepalive,
            managed=self.managed,
            reconnect_delay=reconnect_delay,
        )

    def _resolve_server_config(self, server_config: Optional[ServerConfig]) -> ServerConfig:
        server_config = server_config or self.server_config
        if server_config is None:
            raise InvalidOperationError("No server configuration given")
        return server_config

    def _require_disconnected(self) -> None:
        if self._state != ConnectionState.DISCONNECTED:
            raise InvalidOperationError(f"Connection already {self._state.value}; disconnect first")

    def connect(self, server_config: Optional[ServerConfig] = None,
                timeout: Optional[float] = None) -> ConnectResult:
        """
        Connect and wait for the broker's answer.

        Args:
            server_config: Broker settings (defaults to the configured ones)
            timeout: Seconds to wait for the connection acknowledgment

        Returns:
            ConnectResult; check `.success`

        Raises:
            InvalidOperationError: On a managed client, or one already connected
            ConnectionError: On socket errors or timeout
        """
        if self.managed:
            raise InvalidOperationError("This is a managed instance. Use start().")
        self._require_disconnected()
        if timeout is None:
            timeout = self.client_config.connect_timeout if self.client_config else 10.0

        options = self._connect_options(self._resolve_server_config(server_config))
        self._stopping = False
        self._set_state(ConnectionState.CONNECTING)
        try:
            return self.transport.connect(options, timeout)
        except ConnectionError as e:
            self._set_state(ConnectionState.DISCONNECTED)
            self._report_error(e)
            raise

    def disconnect(self, timeout: Optional[float] = None) -> None:
        """Disconnect an unmanaged client."""
        if self.managed:
            raise InvalidOperationError("This is a managed instance. Use stop().")
        self._shutdown_connection(timeout)

    def start(self, server_config: Optional[ServerConfig] = None, timeout: Optional[float] = None) -> Optional[ConnectResult]:
        """
        Start a managed client's reconnecting connection.

        Returns immediately unless a timeout is given, in which case it waits
        for the first connection attempt.

        Raises:
            InvalidOperationError: On an unmanaged client, or one already started
        """
        if not self.managed:
            raise InvalidOperationError("This is an unmanaged instance. Use connect().")
        self._require_disconnected()

        options = self._connect_options(self._resolve_server_config(server_config))
        self._stopping = False
        self._set_state(ConnectionState.CONNECTING)
        try:
            return self.transport.connect(options, timeout)
        except ConnectionError as e:
            self._report_error(e)
            raise

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop a managed client."""
        if not self.managed:
            raise InvalidOperationError("This is an unmanaged instance. Use disconnect().")
        self._shutdown_connection(timeout)

    def _shutdown_connection(self, timeout: Optional[float]) -> None:
        self._stopping = True
        self._set_state(ConnectionState.DISCONNECTING)
        try:
            self.transport.disconnect(timeout)
        finally:
            self.subscriptions.on_disconnected()
            self._set_state(ConnectionState.DISCONNECTED)

    def close(self) -> None:
        """Close the connection and release the subscription worker."""
        if self._state != ConnectionState.DISCONNECTED:
            self._shutdown_connection(None)
        self.subscriptions.shutdown()

    def __enter__(self):
        """Enter context manager."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit context manager and disconnect."""
        self.close()
        return False

    # Transport callbacks

    def _handle_connected(self, result: ConnectResult) -> None:
        if not result.success:
            self._set_state(ConnectionState.CONNECTING if self.managed else ConnectionState.DISCONNECTED)
            self._report_error(ConnectionError(f"Connection refused: {result.reason} (code {result.result_code})"))
            return

        self._set_state(ConnectionState.CONNECTED)
        self.subscriptions.on_connected(self._all_scopes)
        emit(self._connected_listeners, result, on_error=self._report_error)

    def _handle_disconnected(self, reason: str) -> None:
        self.subscriptions.on_disconnected()
        if self._stopping:
            self._set_state(ConnectionState.DISCONNECTED)
        else:
            logger.warning(f"Connection lost: {reason}")
            self._set_state(ConnectionState.CONNECTING if self.managed else ConnectionState.DISCONNECTED)
        emit(self._disconnected_listeners, reason, on_error=self._report_error)

    def _handle_message(self, topic: str, payload: bytes) -> None:
        self.router.on_message(topic, payload)

    def _handle_processed(self, mid: int) -> None:
        emit(self._processed_listeners, mid, on_error=self._report_error)

    def _handle_skipped(self, mid: int) -> None:
        logger.debug(f"Message {mid} skipped")
        emit(self._skipped_listeners, mid, on_error=self._report_error)

    def _report_error(self, error: Exception) -> None:
        if not self._error_listeners:
            logger.error(f"{type(error).__name__}: {error}")
            return
        for callback in self._error_listeners.snapshot():
            try:
                callback(error)
            except Exception:
                logger.exception("Error listener raised")
