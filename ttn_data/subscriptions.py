"""
Subscription bookkeeping: keeps the broker-side MQTT subscriptions in line
with the listeners registered by the application.

The listener registries are the only source of truth. A topic is subscribed
when its (scope, kind) pair gains its first listener while connected, and
unsubscribed when it loses its last one. After every (re)connect the whole
set is rebuilt from the registries.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Callable, Iterable, Optional, TYPE_CHECKING

from .exceptions import SubscriptionError
from .listeners import ListenerHandle
from .topics import EventKind
from .logging_config import get_logger

if TYPE_CHECKING:
    from .device import DeviceScope
    from .transport import Transport

logger = get_logger('subscriptions')

SUBSCRIBE = 'subscribe'
UNSUBSCRIBE = 'unsubscribe'


class SubscriptionManager:
    """
    Issues subscribe/unsubscribe calls on 0->1 and 1->0 listener transitions.

    Listener-count changes and the resulting decision happen under one lock,
    so concurrent add/remove calls and a reconnect resync always agree. The
    network calls run on a single worker thread in the order the decisions
    were taken; registration never waits for them. A call still queued when
    its opposite is decided is cancelled instead of sending both.
    """

    def __init__(self, transport: 'Transport', on_error: Optional[Callable[[Exception], None]] = None,
                 qos: int = 0):
        """
        Initialize SubscriptionManager.

        Args:
            transport: Transport used for subscribe/unsubscribe
            on_error: Receives SubscriptionError for failed network calls
            qos: QoS requested for subscriptions
        """
        self.transport = transport
        self.on_error = on_error
        self.qos = qos
        self._lock = threading.RLock()
        self._connected = False
        self._closed = False
        self._pending: dict[str, tuple[str, Future]] = {}
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='ttn-subscriptions')

    @property
    def connected(self) -> bool:
        return self._connected

    def add_listener(self, scope: 'DeviceScope', kind: EventKind, callback: Callable) -> ListenerHandle:
        """Register a listener and subscribe if it is the first for (scope, kind)."""
        with self._lock:
            count = scope.listener_set(kind).add(callback)
            logger.debug(f"Listener added to {scope.topic(kind)} (count={count})")
            if count == 1:
                self.on_listener_added(scope, kind)
        return ListenerHandle(lambda: self.remove_listener(scope, kind, callback), callback)

    def remove_listener(self, scope: 'DeviceScope', kind: EventKind, callback: Callable) -> bool:
        """
        Unregister a listener and unsubscribe if it was the last for (scope, kind).

        Returns:
            False if the callback was not registered
        """
        with self._lock:
            count = scope.listener_set(kind).remove(callback)
            if count is None:
                return False
            logger.debug(f"Listener removed from {scope.topic(kind)} (count={count})")
            if count == 0:
                self.on_listener_removed(scope, kind)
        return True

    def on_listener_added(self, scope: 'DeviceScope', kind: EventKind) -> None:
        with self._lock:
            if self._connected:
                self._submit(SUBSCRIBE, scope.topic(kind))

    def on_listener_removed(self, scope: 'DeviceScope', kind: EventKind) -> None:
        with self._lock:
            if self._connected:
                self._submit(UNSUBSCRIBE, scope.topic(kind))

    def on_connected(self, scopes: Callable[[], Iterable['DeviceScope']]) -> list[str]:
        """
        Subscribe every (scope, kind) pair that has listeners.

        Args:
            scopes: Returns the current scopes; evaluated with the lock held

        Returns:
            Topics queued for subscription
        """
        with self._lock:
            self._connected = True
            topics = [scope.topic(kind) for scope in scopes() for kind in scope.active_kinds()]
            for topic in topics:
                self._submit(SUBSCRIBE, topic)
        logger.info(f"Resynchronizing {len(topics)} subscription(s)")
        return topics

    def on_disconnected(self) -> None:
        """Stop issuing network calls and drop the ones still queued."""
        with self._lock:
            self._connected = False
            for action, future in list(self._pending.values()):
                future.cancel()
            self._pending.clear()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every queued subscribe/unsubscribe call has run.

        Returns:
            False if the timeout expired first
        """
        with self._lock:
            if self._closed:
                return True
            marker = self._executor.submit(lambda: None)
        try:
            marker.result(timeout=timeout)
            return True
        except FutureTimeoutError:
            return False

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._connected = False
            self._pending.clear()
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def _submit(self, action: str, topic: str) -> None:
        """Queue a network call. Must be called with the lock held."""
        if self._closed:
            return

        previous = self._pending.get(topic)
        if previous is not None and previous[0] != action and previous[1].cancel():
            self._pending.pop(topic, None)
            logger.debug(f"Cancelled queued {previous[0]} for {topic}")
            return

        future = self._executor.submit(self._run, action, topic)
        self._pending[topic] = (action, future)
        future.add_done_callback(lambda f, t=topic: self._forget(t, f))

    def _forget(self, topic: str, future: Future) -> None:
        with self._lock:
            entry = self._pending.get(topic)
            if entry is not None and entry[1] is future:
                del self._pending[topic]

    def _run(self, action: str, topic: str) -> None:
        try:
            if action == SUBSCRIBE:
                self.transport.subscribe(topic, qos=self.qos)
            else:
                self.transport.unsubscribe(topic)
            logger.debug(f"{action.capitalize()}d {topic}")
        except Exception as e:
            error = e if isinstance(e, SubscriptionError) else SubscriptionError(f"{action} failed for {topic}: {e}", topic)
            if error is not e:
                error.__cause__ = e
            self._report(error)

    def _report(self, error: Exception) -> None:
        if self.on_error is not None:
            self.on_error(error)
        else:
            logger.error(str(error))
