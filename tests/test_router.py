# tests/test_router.py
import pytest

from ttn_data.exceptions import PayloadError
from ttn_data.router import MessageReceivedEvent
from ttn_data.topics import EventKind


def test_fan_out_to_wildcard_then_device(client, transport, make_uplink):
    order = []
    client.on(EventKind.UP, lambda e: order.append(('all', e.device_id)))
    client['dev1'].on(EventKind.UP, lambda e: order.append(('dev1', e.device_id)))
    client['dev2'].on(EventKind.UP, lambda e: order.append(('dev2', e.device_id)))

    transport.deliver('v3/app1/devices/dev1/up', make_uplink('dev1'))

    assert order == [('all', 'dev1'), ('dev1', 'dev1')]


def test_event_carries_topic_and_message(client, transport, make_uplink):
    events = []
    client.on(EventKind.UP, events.append)

    transport.deliver('v3/app1/devices/dev1/up', make_uplink())

    event = events[0]
    assert isinstance(event, MessageReceivedEvent)
    assert event.topic == 'v3/app1/devices/dev1/up'
    assert event.segments == ('v3', 'app1', 'devices', 'dev1', 'up')
    assert event.app_id == 'app1'
    assert event.tenant_id is None
    assert event.kind is EventKind.UP
    assert event.uplink.frm_payload == b'Hello'
    assert event.uplink.f_cnt == 42


def test_listeners_run_in_registration_order(client, transport, make_uplink):
    calls = []
    scope = client['dev1']
    for name in ('first', 'second', 'third'):
        scope.on(EventKind.UP, lambda e, name=name: calls.append(name))

    transport.deliver('v3/app1/devices/dev1/up', make_uplink())

    assert calls == ['first', 'second', 'third']


def test_only_matching_kind_is_dispatched(client, transport):
    ups, acks = [], []
    client.on(EventKind.UP, ups.append)
    client.on(EventKind.DOWN_ACK, acks.append)

    transport.deliver('v3/app1/devices/dev1/down/ack', {'end_device_ids': {'device_id': 'dev1'}})

    assert ups == []
    assert len(acks) == 1


def test_malformed_payload_is_reported_once_and_routing_continues(client, transport, errors, make_uplink):
    events = []
    client.on(EventKind.UP, events.append)

    transport.deliver('v3/app1/devices/dev1/up', b'{not json')
    assert events == []
    assert len(errors) == 1
    assert isinstance(errors[0], PayloadError)
    assert errors[0].topic == 'v3/app1/devices/dev1/up'

    transport.deliver('v3/app1/devices/dev1/up', make_uplink())
    assert len(events) == 1
    assert len(errors) == 1


@pytest.mark.parametrize('payload', [
    b'{"uplink_message": {"f_port": "two"}}',
    b'{"end_device_ids": {}}',
    b'{"uplink_message": {"f_port": Infinity}}',
    b'{"uplink_message": {"consumed_airtime": "1e300s"}}',
    b'[' * 200000,
])
def test_undecodable_payload_reaches_error_channel_once(client, transport, errors, payload):
    events = []
    client.on(EventKind.UP, events.append)
    client['dev1'].on(EventKind.UP, events.append)

    assert client.router.on_message('v3/app1/devices/dev1/up', payload) == 0

    assert events == []
    assert len(errors) == 1
    assert isinstance(errors[0], PayloadError)
    assert errors[0].payload == payload


def test_unknown_topics_are_dropped_silently(client, transport, errors, make_uplink):
    events = []
    client.on(EventKind.UP, events.append)

    assert client.router.on_message('v3/app1/devices/dev1/bogus', b'{}') == 0
    assert client.router.on_message('some/other/topic', b'{}') == 0

    assert events == []
    assert errors == []


def test_listener_exception_does_not_stop_others(client, transport, errors, make_uplink):
    calls = []

    def broken(event):
        raise ValueError('listener bug')

    client.on(EventKind.UP, broken)
    client.on(EventKind.UP, lambda e: calls.append('all'))
    client['dev1'].on(EventKind.UP, lambda e: calls.append('dev1'))

    transport.deliver('v3/app1/devices/dev1/up', make_uplink())

    assert calls == ['all', 'dev1']
    assert len(errors) == 1
    assert str(errors[0]) == 'listener bug'


def test_routing_does_not_create_device_scopes(client, transport, make_uplink):
    events = []
    client.on(EventKind.UP, events.append)

    transport.deliver('v3/app1/devices/new-device/up', make_uplink('new-device'))

    assert len(events) == 1
    assert 'new-device' not in client
    assert client.devices() == []


def test_dispatch_count(client, make_uplink):
    client.on(EventKind.JOIN, lambda e: None)
    client['dev1'].on(EventKind.JOIN, lambda e: None)
    client['dev1'].on(EventKind.JOIN, lambda e: None)

    assert client.router.on_message('v3/app1/devices/dev1/join', b'{"end_device_ids": {"device_id": "dev1"}}') == 3
    assert client.router.on_message('v3/app1/devices/dev2/join', b'{}') == 1
