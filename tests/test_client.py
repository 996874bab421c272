# tests/test_client.py
import json

import pytest

from ttn_data import TTNDataClient, ServerConfig, ClientConfig
from ttn_data.client import ConnectionState
from ttn_data.exceptions import ConnectionError, InvalidOperationError, PublishError
from ttn_data.models import Downlink, Message, Priority
from ttn_data.topics import EventKind, Schedule
from ttn_data.transport import ConnectResult

from conftest import FakeTransport

SERVER = ServerConfig(host='broker.local', username='', api_key='NNSXS.secret')


def test_sensor_uplink_end_to_end(make_uplink):
    transport = FakeTransport()
    client = TTNDataClient('myapp', 'ttn', transport=transport)
    try:
        received = []
        client['sensor01'].on(EventKind.UP, received.append)
        client.connect(SERVER, timeout=1)
        client.subscriptions.wait_idle(5)

        assert transport.subscribed() == ['v3/myapp@ttn/devices/sensor01/up']

        transport.deliver('v3/myapp@ttn/devices/sensor01/up', make_uplink('sensor01', 'SGVsbG8='))

        assert len(received) == 1
        event = received[0]
        assert event.device_id == 'sensor01'
        assert event.tenant_id == 'ttn'
        assert event.uplink.frm_payload == b'Hello'
    finally:
        client.close()


def test_indexer_caches_scopes(client):
    scope = client['dev1']

    assert client['dev1'] is scope
    assert client['+'] is client.all_devices
    assert 'dev1' in client
    assert 'dev2' not in client
    assert client.get_device('dev2') is None
    assert 'dev2' not in client
    assert client.devices() == [scope]


def test_publish_downlink_push_and_replace(client, transport):
    client.connect(SERVER)

    client['dev1'].publish(Downlink(f_port=15, frm_payload=b'\x01\x02'))
    client.publish(Message(downlinks=(Downlink(f_port=2, decoded_payload={'on': True}),)),
                   device_id='dev2', schedule=Schedule.REPLACE)

    topic, payload, qos = transport.published[0]
    assert topic == 'v3/app1/devices/dev1/down/push'
    assert json.loads(payload) == {
        'downlinks': [{'f_port': 15, 'frm_payload': 'AQI=', 'priority': 'NORMAL', 'confirmed': False}]
    }
    assert transport.published[1][0] == 'v3/app1/devices/dev2/down/replace'


def test_publish_downlink_helper(client, transport):
    client.connect(SERVER)

    result = client['dev1'].publish_downlink(1, frm_payload=b'Hi', priority=Priority.HIGHEST,
                                             confirmed=True, correlation_ids=['c1'])

    assert result.published
    body = json.loads(transport.published[0][1])
    assert body['downlinks'][0]['priority'] == 'HIGHEST'
    assert body['downlinks'][0]['confirmed'] is True
    assert body['downlinks'][0]['correlation_ids'] == ['c1']


def test_publish_requires_a_device(client):
    with pytest.raises(InvalidOperationError):
        client.publish(Downlink(f_port=1))
    with pytest.raises(InvalidOperationError):
        client.all_devices.publish(Downlink(f_port=1))
    with pytest.raises(InvalidOperationError):
        client.publish(Downlink(f_port=1), device_id='+')


def test_publish_serialization_error_is_raised_and_reported(client, transport, errors):
    client.connect(SERVER)

    with pytest.raises(PublishError):
        client['dev1'].publish(Downlink(f_port=1, decoded_payload={'bad': object()}))

    assert len(errors) == 1
    assert isinstance(errors[0], PublishError)
    assert transport.published == []


def test_unmanaged_guards():
    client = TTNDataClient('app1', transport=FakeTransport())
    try:
        with pytest.raises(InvalidOperationError):
            client.start(SERVER)
        with pytest.raises(InvalidOperationError):
            client.stop()
        with pytest.raises(InvalidOperationError):
            client.connect()
    finally:
        client.close()


def test_managed_guards():
    client = TTNDataClient('app1', transport=FakeTransport(), managed=True)
    try:
        with pytest.raises(InvalidOperationError):
            client.connect(SERVER)
        with pytest.raises(InvalidOperationError):
            client.disconnect()
    finally:
        client.close()


def test_state_transitions(client, transport):
    states = []
    client.on_connected(lambda result: states.append(client.state))
    client.on_disconnected(lambda reason: states.append((client.state, reason)))

    assert client.state is ConnectionState.DISCONNECTED
    result = client.connect(SERVER)
    assert result.success
    assert client.is_connected

    transport.simulate_disconnect('Keep alive timeout')
    assert client.state is ConnectionState.DISCONNECTED

    assert states == [ConnectionState.CONNECTED, (ConnectionState.DISCONNECTED, 'Keep alive timeout')]


def test_managed_client_reconnects(make_uplink):
    transport = FakeTransport()
    client = TTNDataClient('app1', None, transport=transport, managed=True)
    try:
        client['dev1'].on(EventKind.UP, lambda e: None)
        client.start(SERVER)
        client.subscriptions.wait_idle(5)

        transport.simulate_disconnect()
        assert client.state is ConnectionState.CONNECTING

        transport.simulate_connack()
        client.subscriptions.wait_idle(5)
        assert client.is_connected
        assert transport.subscribed() == ['v3/app1/devices/dev1/up'] * 2

        client.stop()
        assert client.state is ConnectionState.DISCONNECTED
    finally:
        client.close()


def test_refused_connection(client, transport, errors):
    transport.connect_result = ConnectResult(5, 'Not authorized')

    result = client.connect(SERVER)

    assert not result.success
    assert client.state is ConnectionState.DISCONNECTED
    assert isinstance(errors[0], ConnectionError)
    assert 'Not authorized' in str(errors[0])


def test_connection_error_is_raised_and_reported(client, transport, errors, monkeypatch):
    def fail(options, timeout=None):
        raise ConnectionError('Connection timeout after 1s')

    monkeypatch.setattr(transport, 'connect', fail)

    with pytest.raises(ConnectionError):
        client.connect(SERVER, timeout=1)
    assert client.state is ConnectionState.DISCONNECTED
    assert len(errors) == 1


def test_connect_options(transport):
    client = TTNDataClient('app1', 'acme', transport=transport, client_id='fixed-id')
    try:
        client.connect(ServerConfig(host='eu1.example', use_tls=True, api_key='key'))
        options = transport.options

        assert options.host == 'eu1.example'
        assert options.port == 8883
        assert options.use_tls
        assert options.username == 'app1@acme'
        assert options.password == 'key'
        assert options.client_id == 'fixed-id'
        assert not options.managed
    finally:
        client.close()


def test_explicit_username_wins(client, transport):
    client.connect(ServerConfig(host='h', username='someone', api_key='k'))

    assert transport.options.username == 'someone'
    assert transport.options.port == 1883


def test_from_config(transport):
    client = TTNDataClient.from_config(
        SERVER, ClientConfig(app_id='app9', tenant_id='ttn', managed=True, reconnect_delay=30), transport=transport
    )
    try:
        assert client.managed
        assert client['d'].topic(EventKind.UP) == 'v3/app9@ttn/devices/d/up'
        client.start()
        assert transport.options.reconnect_delay == 30
        assert transport.options.managed
    finally:
        client.close()


def test_from_config_requires_app_id():
    with pytest.raises(InvalidOperationError):
        TTNDataClient.from_config(SERVER, ClientConfig())


def test_context_manager_disconnects(transport):
    with TTNDataClient('app1', transport=transport) as client:
        client.connect(SERVER)
        assert client.is_connected

    assert client.state is ConnectionState.DISCONNECTED
    assert not transport.is_connected


def test_error_listener_removal(client):
    received = []
    handle = client.on_error(received.append)
    handle.remove()

    client._report_error(RuntimeError('nobody listens'))

    assert received == []


def test_connect_twice_is_refused(client, transport):
    client.connect(SERVER)

    with pytest.raises(InvalidOperationError):
        client.connect(SERVER)
    assert client.is_connected


def test_start_while_reconnecting_is_refused(transport):
    client = TTNDataClient('app1', None, transport=transport, managed=True)
    try:
        client.start(SERVER)
        transport.simulate_disconnect()

        with pytest.raises(InvalidOperationError):
            client.start(SERVER)

        client.stop()
        client.start(SERVER)
        assert client.is_connected
    finally:
        client.close()


def test_managed_publish_while_reconnecting(transport):
    client = TTNDataClient('app1', None, transport=transport, managed=True)
    processed = []
    client.on_message_processed(processed.append)
    try:
        client.start(SERVER)
        transport.simulate_disconnect()

        result = client['dev1'].publish(Downlink(f_port=1, frm_payload=b'\x01'))

        assert result.queued
        assert not result.published
        assert client.pending_messages_count == 1

        transport.simulate_connack()
        transport.simulate_processed()
        assert processed == [result.mid]
        assert client.pending_messages_count == 0
    finally:
        client.close()


def test_stop_reports_unsent_messages_as_skipped(transport):
    client = TTNDataClient('app1', None, transport=transport, managed=True)
    skipped = []
    client.on_message_skipped(skipped.append)
    try:
        client.start(SERVER)
        transport.simulate_disconnect()
        first = client['dev1'].publish(Downlink(f_port=1))
        second = client['dev2'].publish(Downlink(f_port=2))

        client.stop()

        assert skipped == [first.mid, second.mid]
        assert client.pending_messages_count == 0
    finally:
        client.close()


def test_processed_listener_exception_goes_to_error_channel(client, errors):
    def broken(mid):
        raise ValueError('listener bug')

    client.on_message_processed(broken)
    client.transport.on_message_processed(9)

    assert len(errors) == 1
    assert str(errors[0]) == 'listener bug'
