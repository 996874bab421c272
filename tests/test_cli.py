# tests/test_cli.py
import argparse
import json

import pytest

from ttn_data.cli import build_parser, events_completer, main, parse_events, run_downlink
from ttn_data.config import ServerConfig
from ttn_data.formatters import MessageFormatter, Statistics
from ttn_data.topics import EventKind


def test_parse_events():
    assert parse_events('up, down_ack,,join') == [EventKind.UP, EventKind.DOWN_ACK, EventKind.JOIN]
    with pytest.raises(argparse.ArgumentTypeError, match='uplink'):
        parse_events('uplink')


def test_events_completer():
    assert events_completer('do', None) == [
        'down_queued', 'down_sent', 'down_ack', 'down_nack', 'down_failed'
    ]
    assert events_completer('up,j', None) == ['up,join']


def test_listen_arguments():
    args = build_parser().parse_args(['listen', '--device', 'a', '--device', 'b', '--events', 'join'])

    assert args.command == 'listen'
    assert args.device == ['a', 'b']
    assert args.events == [EventKind.JOIN]


def test_downlink_payload_options_are_exclusive(capsys):
    with pytest.raises(SystemExit):
        build_parser().parse_args(['downlink', 'dev1', '--port', '1', '--hex', '01', '--base64', 'AQ=='])


def test_create_configs(tmp_path, capsys):
    server_path = tmp_path / 's.json'
    client_path = tmp_path / 'c.json'

    code = main(['--server-config', str(server_path), '--client-config', str(client_path), '--create-configs'])

    assert code == 0
    assert server_path.exists() and client_path.exists()
    assert 'Created default config' in capsys.readouterr().out


def test_missing_server_config_fails(tmp_path, capsys):
    code = main(['--server-config', str(tmp_path / 'nope.json'), '--log-level', 'NONE', 'listen'])

    assert code == 1
    assert 'not found' in capsys.readouterr().out


def test_run_downlink(client, transport, capsys):
    client.connect(ServerConfig())
    args = build_parser().parse_args(['downlink', 'dev1', '--port', '10', '--hex', 'CAFE',
                                      '--schedule', 'replace', '--priority', 'HIGH', '--confirmed'])

    assert run_downlink(client, args, publish_timeout=1)

    topic, payload, _qos = transport.published[0]
    assert topic == 'v3/app1/devices/dev1/down/replace'
    downlink = json.loads(payload)['downlinks'][0]
    assert downlink == {'f_port': 10, 'frm_payload': 'yv4=', 'priority': 'HIGH', 'confirmed': True}
    assert 'Downlink published' in capsys.readouterr().out


def test_run_downlink_rejects_bad_payload(client, transport, capsys):
    args = build_parser().parse_args(['downlink', 'dev1', '--port', '1', '--json', '{oops'])

    assert not run_downlink(client, args, publish_timeout=1)
    assert transport.published == []


def test_format_uplink_event(client, transport, make_uplink):
    events = []
    client['dev1'].on(EventKind.UP, events.append)
    transport.deliver('v3/app1/devices/dev1/up', make_uplink())

    text = MessageFormatter().format_event(events[0])

    assert 'Topic: v3/app1/devices/dev1/up' in text
    assert 'Event: UP   Device: dev1   App: app1' in text
    assert 'Uplink on FPort 1, FCnt 42' in text
    assert '48656C6C6F' in text
    assert 'DevEUI: 70B3D57ED005A1B2' in text


def test_format_downlink_failed_event(client, transport):
    events = []
    client.on(EventKind.DOWN_FAILED, events.append)
    transport.deliver('v3/app1/devices/dev1/down/failed', {
        'end_device_ids': {'device_id': 'dev1'},
        'downlink_failed': {
            'downlink': {'f_port': 3, 'frm_payload': 'AQ=='},
            'error': {'namespace': 'pkg/networkserver', 'name': 'queue_full', 'code': 8},
        },
    })

    text = MessageFormatter().format_event(events[0])

    assert 'Downlink failed on FPort 3' in text
    assert 'Error: pkg/networkserver:queue_full (code 8)' in text


def test_statistics():
    stats = Statistics(total_messages=3)
    stats.increment_kind(EventKind.UP)
    stats.increment_kind(EventKind.JOIN)
    stats.increment_kind(EventKind.UP)

    assert stats.get_sorted_kinds() == [('UP', 2), ('JOIN', 1)]
    assert 'Total messages: 3' in MessageFormatter.format_statistics(stats)
