#!/usr/bin/env python3
"""
TTN MQTT Data Client CLI
"""

import sys
import argparse
import json
import time

try:
    import argcomplete
    ARGCOMPLETE_AVAILABLE = True
except ImportError:
    ARGCOMPLETE_AVAILABLE = False

from .client import TTNDataClient
from .config import ServerConfig, ClientConfig, create_default_configs
from .exceptions import TTNDataError
from .formatters import MessageFormatter, Statistics
from .logging_config import setup_logging
from .models import Priority
from .topics import EventKind, Schedule
from .utils import parse_payload_bytes

EVENT_NAMES = [kind.name.lower() for kind in EventKind]


def events_completer(prefix, parsed_args, **kwargs):
    """Custom completer for comma-separated event kinds."""
    parts = prefix.split(',')
    already_specified = [p.strip() for p in parts[:-1]]
    current = parts[-1]
    available = [e for e in EVENT_NAMES if e not in already_specified and e.startswith(current)]
    head = ','.join(parts[:-1]) + ',' if len(parts) > 1 else ''
    return [head + e for e in available]


def parse_events(text: str) -> list[EventKind]:
    """Parse a comma-separated list of event kinds."""
    kinds = []
    for name in text.split(','):
        name = name.strip()
        if not name:
            continue
        try:
            kinds.append(EventKind.from_name(name))
        except ValueError:
            raise argparse.ArgumentTypeError(
                f"Invalid event kind: {name} (valid: {', '.join(EVENT_NAMES)})"
            ) from None
    return kinds


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='The Things Stack MQTT application data client')
    parser.add_argument('--server-config', default='server_config.json',
                        help='Path to server configuration file')
    parser.add_argument('--client-config', default='client_config.json',
                        help='Path to client configuration file')
    parser.add_argument('--create-configs', action='store_true',
                        help='Create default configuration files')
    parser.add_argument('--log-level', default='WARNING',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL', 'NONE'],
                        help='Set logging level (NONE = disable logging)')
    parser.add_argument('--debug-modules', type=str,
                        help='Comma-separated list of modules to debug (e.g., router,subscriptions)')
    parser.add_argument('--log-time', action='store_true', help='Prefix log lines with a timestamp')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    listen_parser = subparsers.add_parser('listen', help='Print application events')
    listen_parser.add_argument('--device', action='append', default=[],
                               help='Only listen to this device (repeatable; default: all devices)')
    events_arg = listen_parser.add_argument('--events', type=parse_events, default=[EventKind.UP],
                                            help=f"Comma-separated event kinds: {','.join(EVENT_NAMES)} (default: up)")
    if ARGCOMPLETE_AVAILABLE:
        events_arg.completer = events_completer
    listen_parser.add_argument('--duration', type=int, default=0, help='Duration in seconds (0 = forever)')

    down_parser = subparsers.add_parser('downlink', help='Schedule a downlink for a device')
    down_parser.add_argument('device', help='Device ID')
    down_parser.add_argument('--port', type=int, required=True, help='FPort (1-223)')
    payload_group = down_parser.add_mutually_exclusive_group(required=True)
    payload_group.add_argument('--hex', help='FRMPayload as hex')
    payload_group.add_argument('--base64', help='FRMPayload as Base64')
    payload_group.add_argument('--json', help='Decoded payload as JSON (encoded by the payload formatter)')
    down_parser.add_argument('--schedule', choices=['push', 'replace'], default='push',
                             help='Queue placement (default: push)')
    down_parser.add_argument('--priority', choices=[p.name for p in Priority], default='NORMAL',
                             help='Downlink priority')
    down_parser.add_argument('--confirmed', action='store_true', help='Request a confirmed downlink')

    return parser


def run_listen(client: TTNDataClient, args) -> None:
    formatter = MessageFormatter()
    stats = Statistics()

    def on_event(event):
        stats.total_messages += 1
        stats.increment_kind(event.kind)
        print(f"\n{formatter.format_event(event)}\n")

    def on_error(error):
        stats.errors += 1
        print(f"Error: {error}", file=sys.stderr)

    client.on_error(on_error)
    scopes = [client[device_id] for device_id in args.device] or [client.all_devices]
    for scope in scopes:
        for kind in args.events:
            scope.on(kind, on_event)

    print("Listening for events...")
    try:
        if args.duration > 0:
            print(f"Will listen for {args.duration} seconds")
            time.sleep(args.duration)
        else:
            print("Press Ctrl+C to stop")
            while True:
                time.sleep(1)
    except KeyboardInterrupt:
        print("\nStopping...")
    print(f"\n{formatter.format_statistics(stats)}\n")


def run_downlink(client: TTNDataClient, args, publish_timeout: float) -> bool:
    frm_payload = None
    decoded_payload = None
    try:
        if args.hex is not None:
            frm_payload = parse_payload_bytes(args.hex, 'hex')
        elif args.base64 is not None:
            frm_payload = parse_payload_bytes(args.base64, 'base64')
        else:
            decoded_payload = json.loads(args.json)
    except (ValueError, json.JSONDecodeError) as e:
        print(f"Error: invalid payload: {e}")
        return False

    result = client[args.device].publish_downlink(
        args.port,
        frm_payload=frm_payload,
        decoded_payload=decoded_payload,
        priority=Priority[args.priority],
        confirmed=args.confirmed,
        schedule=Schedule(args.schedule),
        timeout=publish_timeout,
    )
    if result.published:
        print(f"Downlink published (mid: {result.mid})")
    else:
        print(f"Downlink queued but not confirmed sent within {publish_timeout}s (mid: {result.mid})")
    return result.published


def main(argv=None) -> int:
    parser = build_parser()
    if ARGCOMPLETE_AVAILABLE:
        argcomplete.autocomplete(parser)

    args = parser.parse_args(argv)

    if args.create_configs:
        for path in create_default_configs(args.server_config, args.client_config):
            print(f"Created default config: {path}")
        return 0

    if not args.command:
        parser.print_help()
        return 0

    module_levels = {}
    if args.debug_modules:
        for module in args.debug_modules.split(','):
            module_levels[module.strip()] = 'DEBUG'
    setup_logging(args.log_level, module_levels, use_color=sys.stderr.isatty(), show_time=args.log_time)

    try:
        server_config = ServerConfig.from_json(args.server_config)
        client_config = ClientConfig.from_json(args.client_config)
        client = TTNDataClient.from_config(server_config, client_config)
    except TTNDataError as e:
        print(f"Error: {e}")
        return 1

    with client:
        try:
            if client.managed:
                result = client.start(timeout=client_config.connect_timeout)
            else:
                result = client.connect(timeout=client_config.connect_timeout)
        except TTNDataError as e:
            print(f"Failed to connect to MQTT broker: {e}")
            return 1
        if result is not None and not result.success:
            print(f"Failed to connect to MQTT broker: {result.reason}")
            return 1
        print(f"Connected to {server_config.host}:{server_config.effective_port}")

        if args.command == 'listen':
            run_listen(client, args)
        elif args.command == 'downlink':
            try:
                if not run_downlink(client, args, client_config.publish_timeout):
                    return 1
            except (TTNDataError, ValueError) as e:
                print(f"Error: {e}")
                return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
