# tests/conftest.py
import json
import threading

import pytest

from ttn_data.client import TTNDataClient
from ttn_data.transport import Transport, ConnectResult, PublishResult


class FakeTransport(Transport):
    """Records every call; connection events are triggered by the test."""

    def __init__(self, auto_connack: bool = True):
        super().__init__()
        self.auto_connack = auto_connack
        self.connect_result = ConnectResult(0, 'Success')
        self.calls = []
        self.published = []
        self.options = None
        self.fail_subscribe = False
        self.subscribe_gate = None
        self._connected = False
        self._lock = threading.Lock()
        self._mid = 0
        self.pending = []

    @property
    def is_connected(self):
        return self._connected

    @property
    def pending_count(self):
        with self._lock:
            return len(self.pending)

    def connect(self, options, timeout=None):
        self.options = options
        if self.auto_connack:
            self.simulate_connack(self.connect_result)
        return self.connect_result

    def disconnect(self, timeout=None):
        if self._connected:
            self.simulate_disconnect('Normal disconnection')
        with self._lock:
            dropped, self.pending = self.pending, []
        for mid in dropped:
            if self.on_message_skipped:
                self.on_message_skipped(mid)

    def publish(self, topic, payload, qos=0, timeout=None):
        with self._lock:
            self._mid += 1
            self.published.append((topic, payload, qos))
            if not self._connected and self.options is not None and self.options.managed:
                # Held until simulate_processed(), like paho while reconnecting
                self.pending.append(self._mid)
                return PublishResult(mid=self._mid, rc=4, published=False, queued=True)
            return PublishResult(mid=self._mid, rc=0, published=True)

    def subscribe(self, topic_filter, qos=0):
        if self.subscribe_gate is not None:
            self.subscribe_gate.wait(5)
        if self.fail_subscribe:
            raise RuntimeError('broker said no')
        with self._lock:
            self.calls.append(('subscribe', topic_filter))

    def unsubscribe(self, topic_filter):
        with self._lock:
            self.calls.append(('unsubscribe', topic_filter))

    # Test helpers

    def simulate_connack(self, result=None):
        result = result or ConnectResult(0, 'Success')
        self._connected = result.success
        if self.on_connected:
            self.on_connected(result)

    def simulate_disconnect(self, reason='Unspecified error'):
        self._connected = False
        if self.on_disconnected:
            self.on_disconnected(reason)

    def simulate_processed(self):
        with self._lock:
            sent, self.pending = self.pending, []
        for mid in sent:
            if self.on_message_processed:
                self.on_message_processed(mid)

    def deliver(self, topic, payload):
        if isinstance(payload, dict):
            payload = json.dumps(payload).encode('utf-8')
        elif isinstance(payload, str):
            payload = payload.encode('utf-8')
        self.on_message_received(topic, payload)

    def subscribed(self):
        with self._lock:
            return [topic for action, topic in self.calls if action == 'subscribe']

    def unsubscribed(self):
        with self._lock:
            return [topic for action, topic in self.calls if action == 'unsubscribe']


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def client(transport):
    c = TTNDataClient('app1', tenant_id=None, transport=transport)
    yield c
    c.subscriptions.shutdown()


@pytest.fixture
def errors(client):
    received = []
    client.on_error(received.append)
    return received


def uplink_payload(device_id='dev1', frm_payload='SGVsbG8=', f_port=1):
    return {
        'end_device_ids': {
            'device_id': device_id,
            'application_ids': {'application_id': 'app1'},
            'dev_eui': '70B3D57ED005A1B2',
        },
        'correlation_ids': ['as:up:01F'],
        'received_at': '2024-03-01T10:15:30.123456789Z',
        'uplink_message': {
            'f_port': f_port,
            'f_cnt': 42,
            'frm_payload': frm_payload,
        },
    }


@pytest.fixture
def make_uplink():
    return uplink_payload
