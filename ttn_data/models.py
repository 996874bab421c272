"""
Data models for The Things Stack v3 application payloads.

Every record declares its own wire mapping in from_dict()/to_dict(); field
names follow the JSON keys. Byte fields are Base64 on the wire, except EUIs
and device addresses which are hex.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from .utils import FieldCodec


class Priority(Enum):
    """Downlink priority, serialized as upper snake case."""
    LOWEST = 'LOWEST'
    LOW = 'LOW'
    BELOW_NORMAL = 'BELOW_NORMAL'
    NORMAL = 'NORMAL'
    ABOVE_NORMAL = 'ABOVE_NORMAL'
    HIGH = 'HIGH'
    HIGHEST = 'HIGHEST'


def _as_dict(data: Any, what: str) -> dict:
    if not isinstance(data, dict):
        raise ValueError(f"Expected object for '{what}', got {type(data).__name__}")
    return data


def _nested(data: dict, key: str, model):
    value = data.get(key)
    if value is None:
        return None
    return model.from_dict(_as_dict(value, key))


def _nested_list(data: dict, key: str, model) -> Optional[tuple]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValueError(f"Expected array for '{key}', got {type(value).__name__}")
    return tuple(model.from_dict(_as_dict(item, key)) for item in value)


def _strings(data: dict, key: str) -> Optional[tuple[str, ...]]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValueError(f"Expected array for '{key}', got {type(value).__name__}")
    return tuple(str(item) for item in value)


def _prune(data: dict) -> dict:
    """Drop keys whose value is None."""
    return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class ApplicationIds:
    """Application identifiers."""
    application_id: str

    @classmethod
    def from_dict(cls, data: dict) -> 'ApplicationIds':
        return cls(application_id=data['application_id'])

    def to_dict(self) -> dict:
        return {'application_id': self.application_id}


@dataclass(frozen=True)
class DeviceIds:
    """End device identifiers."""
    device_id: str
    application_ids: Optional[ApplicationIds] = None
    dev_eui: Optional[bytes] = None
    join_eui: Optional[bytes] = None
    dev_addr: Optional[bytes] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'DeviceIds':
        return cls(
            device_id=data['device_id'],
            application_ids=_nested(data, 'application_ids', ApplicationIds),
            dev_eui=FieldCodec.hex_to_bytes(data.get('dev_eui')),
            join_eui=FieldCodec.hex_to_bytes(data.get('join_eui')),
            dev_addr=FieldCodec.hex_to_bytes(data.get('dev_addr')),
        )

    def to_dict(self) -> dict:
        return _prune({
            'device_id': self.device_id,
            'application_ids': self.application_ids.to_dict() if self.application_ids else None,
            'dev_eui': FieldCodec.bytes_to_hex(self.dev_eui),
            'join_eui': FieldCodec.bytes_to_hex(self.join_eui),
            'dev_addr': FieldCodec.bytes_to_hex(self.dev_addr),
        })


@dataclass(frozen=True)
class GatewayIds:
    """Gateway identifiers."""
    gateway_id: str
    eui: Optional[bytes] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'GatewayIds':
        return cls(
            gateway_id=data['gateway_id'],
            eui=FieldCodec.hex_to_bytes(data.get('eui')),
        )


@dataclass(frozen=True)
class NetworkIds:
    """Network identifiers reported with an uplink."""
    net_id: Optional[str] = None
    tenant_id: Optional[str] = None
    cluster_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'NetworkIds':
        return cls(
            net_id=data.get('net_id'),
            tenant_id=data.get('tenant_id'),
            cluster_id=data.get('cluster_id'),
        )


@dataclass(frozen=True)
class VersionIds:
    """Device repository version identifiers."""
    brand_id: Optional[str] = None
    model_id: Optional[str] = None
    hardware_version: Optional[str] = None
    firmware_version: Optional[str] = None
    band_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'VersionIds':
        return cls(
            brand_id=data.get('brand_id'),
            model_id=data.get('model_id'),
            hardware_version=data.get('hardware_version'),
            firmware_version=data.get('firmware_version'),
            band_id=data.get('band_id'),
        )


@dataclass(frozen=True)
class Location:
    """Geographic location."""
    latitude: float = 0.0
    longitude: float = 0.0
    altitude: int = 0
    source: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'Location':
        return cls(
            latitude=float(data.get('latitude', 0.0)),
            longitude=float(data.get('longitude', 0.0)),
            altitude=int(data.get('altitude', 0)),
            source=data.get('source'),
        )


@dataclass(frozen=True)
class Locations:
    """Locations attached to an uplink."""
    user: Optional[Location] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'Locations':
        return cls(user=_nested(data, 'user', Location))


@dataclass(frozen=True)
class Lora:
    """LoRa modulation parameters."""
    bandwidth: int = 0
    spreading_factor: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> 'Lora':
        return cls(
            bandwidth=int(data.get('bandwidth', 0)),
            spreading_factor=int(data.get('spreading_factor', 0)),
        )


@dataclass(frozen=True)
class DataRate:
    """Data rate of a transmission."""
    lora: Optional[Lora] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'DataRate':
        return cls(lora=_nested(data, 'lora', Lora))


@dataclass(frozen=True)
class Settings:
    """Transmission settings of an uplink."""
    data_rate: Optional[DataRate] = None
    coding_rate: Optional[str] = None
    frequency: Optional[str] = None
    timestamp: Optional[int] = None
    time: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'Settings':
        timestamp = data.get('timestamp')
        return cls(
            data_rate=_nested(data, 'data_rate', DataRate),
            coding_rate=data.get('coding_rate'),
            frequency=data.get('frequency'),
            timestamp=int(timestamp) if timestamp is not None else None,
            time=FieldCodec.parse_timestamp(data.get('time')),
        )


@dataclass(frozen=True)
class RxMetadata:
    """Reception metadata reported by one gateway."""
    gateway_ids: Optional[GatewayIds] = None
    time: Optional[datetime] = None
    timestamp: Optional[int] = None
    rssi: int = 0
    channel_rssi: int = 0
    channel_index: int = 0
    snr: float = 0.0
    location: Optional[Location] = None
    uplink_token: Optional[bytes] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'RxMetadata':
        timestamp = data.get('timestamp')
        return cls(
            gateway_ids=_nested(data, 'gateway_ids', GatewayIds),
            time=FieldCodec.parse_timestamp(data.get('time')),
            timestamp=int(timestamp) if timestamp is not None else None,
            rssi=int(data.get('rssi', 0)),
            channel_rssi=int(data.get('channel_rssi', 0)),
            channel_index=int(data.get('channel_index', 0)),
            snr=float(data.get('snr', 0.0)),
            location=_nested(data, 'location', Location),
            uplink_token=FieldCodec.b64_to_bytes(data.get('uplink_token')),
        )


@dataclass(frozen=True)
class JoinAccept:
    """Join-accept details of a completed join."""
    session_key_id: Optional[bytes] = None
    received_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'JoinAccept':
        return cls(
            session_key_id=FieldCodec.b64_to_bytes(data.get('session_key_id')),
            received_at=FieldCodec.parse_timestamp(data.get('received_at')),
        )


@dataclass(frozen=True)
class UplinkMessage:
    """Uplink message content."""
    f_port: int = 0
    frm_payload: bytes = b''
    f_cnt: Optional[int] = None
    session_key_id: Optional[bytes] = None
    decoded_payload: Optional[Any] = None
    rx_metadata: Optional[tuple[RxMetadata, ...]] = None
    settings: Optional[Settings] = None
    received_at: Optional[datetime] = None
    confirmed: bool = False
    locations: Optional[Locations] = None
    consumed_airtime: Optional[timedelta] = None
    version_ids: Optional[VersionIds] = None
    network_ids: Optional[NetworkIds] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'UplinkMessage':
        f_cnt = data.get('f_cnt')
        return cls(
            f_port=int(data.get('f_port', 0)),
            frm_payload=FieldCodec.b64_to_bytes(data.get('frm_payload')) or b'',
            f_cnt=int(f_cnt) if f_cnt is not None else None,
            session_key_id=FieldCodec.b64_to_bytes(data.get('session_key_id')),
            decoded_payload=data.get('decoded_payload'),
            rx_metadata=_nested_list(data, 'rx_metadata', RxMetadata),
            settings=_nested(data, 'settings', Settings),
            received_at=FieldCodec.parse_timestamp(data.get('received_at')),
            confirmed=bool(data.get('confirmed', False)),
            locations=_nested(data, 'locations', Locations),
            consumed_airtime=FieldCodec.parse_airtime(data.get('consumed_airtime')),
            version_ids=_nested(data, 'version_ids', VersionIds),
            network_ids=_nested(data, 'network_ids', NetworkIds),
        )


@dataclass(frozen=True)
class Downlink:
    """Downlink message, as published or as reported back by the network."""
    f_port: int = 1
    frm_payload: Optional[bytes] = None
    decoded_payload: Optional[Any] = None
    priority: Priority = Priority.NORMAL
    confirmed: bool = False
    correlation_ids: Optional[tuple[str, ...]] = None

    def __post_init__(self):
        if not 0 <= self.f_port <= 255:
            raise ValueError(f"f_port out of range: {self.f_port} (valid range: 0 to 255)")

    @classmethod
    def from_dict(cls, data: dict) -> 'Downlink':
        priority = data.get('priority')
        return cls(
            f_port=int(data.get('f_port', 0)),
            frm_payload=FieldCodec.b64_to_bytes(data.get('frm_payload')),
            decoded_payload=data.get('decoded_payload'),
            priority=Priority(priority) if priority is not None else Priority.NORMAL,
            confirmed=bool(data.get('confirmed', False)),
            correlation_ids=_strings(data, 'correlation_ids'),
        )

    def to_dict(self) -> dict:
        return _prune({
            'f_port': self.f_port,
            'frm_payload': FieldCodec.bytes_to_b64(self.frm_payload),
            'decoded_payload': self.decoded_payload,
            'priority': self.priority.value,
            'confirmed': self.confirmed,
            'correlation_ids': list(self.correlation_ids) if self.correlation_ids is not None else None,
        })


@dataclass(frozen=True)
class Error:
    """Error details reported by the network server."""
    namespace: Optional[str] = None
    name: Optional[str] = None
    message_format: Optional[str] = None
    correlation_id: Optional[str] = None
    code: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> 'Error':
        return cls(
            namespace=data.get('namespace'),
            name=data.get('name'),
            message_format=data.get('message_format'),
            correlation_id=data.get('correlation_id'),
            code=int(data.get('code', 0)),
        )


@dataclass(frozen=True)
class DownlinkError:
    """A downlink that could not be delivered, with the reason."""
    downlink: Optional[Downlink] = None
    error: Optional[Error] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'DownlinkError':
        return cls(
            downlink=_nested(data, 'downlink', Downlink),
            error=_nested(data, 'error', Error),
        )


@dataclass(frozen=True)
class Message:
    """
    Application message envelope.

    Every event kind carries this envelope; which optional section is set
    depends on the event (uplink_message for `up`, join_accept for `join`,
    downlink_* for the downlink lifecycle). For publishing, only
    `downlinks` is used.
    """
    end_device_ids: Optional[DeviceIds] = None
    correlation_ids: tuple[str, ...] = field(default_factory=tuple)
    received_at: Optional[datetime] = None
    join_accept: Optional[JoinAccept] = None
    uplink_message: Optional[UplinkMessage] = None
    downlinks: Optional[tuple[Downlink, ...]] = None
    simulated: bool = False
    downlink_queued: Optional[Downlink] = None
    downlink_ack: Optional[Downlink] = None
    downlink_nack: Optional[Downlink] = None
    downlink_sent: Optional[Downlink] = None
    downlink_failed: Optional[DownlinkError] = None

    @property
    def device_id(self) -> Optional[str]:
        return self.end_device_ids.device_id if self.end_device_ids else None

    @classmethod
    def from_dict(cls, data: dict) -> 'Message':
        data = _as_dict(data, 'message')
        return cls(
            end_device_ids=_nested(data, 'end_device_ids', DeviceIds),
            correlation_ids=_strings(data, 'correlation_ids') or (),
            received_at=FieldCodec.parse_timestamp(data.get('received_at')),
            join_accept=_nested(data, 'join_accept', JoinAccept),
            uplink_message=_nested(data, 'uplink_message', UplinkMessage),
            downlinks=_nested_list(data, 'downlinks', Downlink),
            simulated=bool(data.get('simulated', False)),
            downlink_queued=_nested(data, 'downlink_queued', Downlink),
            downlink_ack=_nested(data, 'downlink_ack', Downlink),
            downlink_nack=_nested(data, 'downlink_nack', Downlink),
            downlink_sent=_nested(data, 'downlink_sent', Downlink),
            downlink_failed=_nested(data, 'downlink_failed', DownlinkError),
        )

    def to_dict(self) -> dict:
        """Serialize the parts of the envelope the network accepts on downlink topics."""
        return _prune({
            'end_device_ids': self.end_device_ids.to_dict() if self.end_device_ids else None,
            'correlation_ids': list(self.correlation_ids) or None,
            'received_at': FieldCodec.format_timestamp(self.received_at),
            'downlinks': [d.to_dict() for d in self.downlinks] if self.downlinks is not None else None,
        })
