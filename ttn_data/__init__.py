"""
TTN MQTT Data Client Package

A Python client for The Things Stack (LoRaWAN) MQTT application data API:
typed events per device, lazy topic subscriptions and downlink publishing.
"""

from .client import TTNDataClient, ConnectionState
from .config import ServerConfig, ClientConfig, create_default_configs
from .device import DeviceScope
from .listeners import ListenerSet, ListenerHandle
from .models import (
    Message, UplinkMessage, Downlink, DownlinkError, JoinAccept, DeviceIds,
    ApplicationIds, GatewayIds, NetworkIds, VersionIds, RxMetadata, Settings,
    DataRate, Lora, Location, Locations, Error, Priority
)
from .parsers import MessageParser
from .router import EventRouter, MessageReceivedEvent
from .subscriptions import SubscriptionManager
from .topics import EventKind, Schedule, ParsedTopic, TopicCodec, WILDCARD
from .transport import Transport, PahoTransport, ConnectOptions, ConnectResult, PublishResult
from .exceptions import (
    TTNDataError, ConfigError, TopicError, MalformedTopicError, UnknownEventKindError,
    PayloadError, PublishError, ConnectionError, SubscriptionError, InvalidOperationError
)
from .logging_config import LoggingManager, setup_logging, get_logger

__all__ = [
    # Main client
    'TTNDataClient',
    'ConnectionState',
    'DeviceScope',
    # Configuration
    'ServerConfig',
    'ClientConfig',
    'create_default_configs',
    # Core components
    'EventRouter',
    'MessageReceivedEvent',
    'SubscriptionManager',
    'ListenerSet',
    'ListenerHandle',
    'MessageParser',
    # Topics
    'EventKind',
    'Schedule',
    'ParsedTopic',
    'TopicCodec',
    'WILDCARD',
    # Transport
    'Transport',
    'PahoTransport',
    'ConnectOptions',
    'ConnectResult',
    'PublishResult',
    # Models
    'Message',
    'UplinkMessage',
    'Downlink',
    'DownlinkError',
    'JoinAccept',
    'DeviceIds',
    'ApplicationIds',
    'GatewayIds',
    'NetworkIds',
    'VersionIds',
    'RxMetadata',
    'Settings',
    'DataRate',
    'Lora',
    'Location',
    'Locations',
    'Error',
    'Priority',
    # Exceptions
    'TTNDataError',
    'ConfigError',
    'TopicError',
    'MalformedTopicError',
    'UnknownEventKindError',
    'PayloadError',
    'PublishError',
    'ConnectionError',
    'SubscriptionError',
    'InvalidOperationError',
    # Logging
    'LoggingManager',
    'setup_logging',
    'get_logger',
]

__version__ = '1.0.0'
