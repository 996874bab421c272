"""
Configuration dataclasses for the TTN MQTT data client.
"""

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

from .exceptions import ConfigError

DEFAULT_PORT = 1883
DEFAULT_TLS_PORT = 8883


def _load_json(path: str | Path) -> dict:
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a JSON object in {path}")
    return data


def _known_fields(cls, data: dict, path: str | Path) -> dict:
    """Keep the keys a dataclass accepts; `_comment`-style keys are ignored."""
    names = {f.name for f in fields(cls)}
    unknown = [k for k in data if not k.startswith('_') and k not in names]
    if unknown:
        raise ConfigError(f"Unknown keys in {path}: {', '.join(sorted(unknown))}")
    return {k: v for k, v in data.items() if k in names}


@dataclass
class ServerConfig:
    """MQTT server configuration."""
    host: str = "eu1.cloud.thethings.network"
    port: int = DEFAULT_PORT
    use_tls: bool = False
    username: str = ""
    api_key: str = ""
    keepalive: int = 60

    @property
    def effective_port(self) -> int:
        """TLS connections left on the plain default port use 8883."""
        if self.use_tls and self.port == DEFAULT_PORT:
            return DEFAULT_TLS_PORT
        return self.port

    @classmethod
    def from_json(cls, path: str | Path) -> 'ServerConfig':
        """Load ServerConfig from JSON file."""
        try:
            data = _load_json(path)
            return cls(**_known_fields(cls, data, path))
        except FileNotFoundError as e:
            raise ConfigError(f"Config file not found: {path}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e


@dataclass
class ClientConfig:
    """Application and connection-behaviour configuration."""
    app_id: str = ""
    tenant_id: Optional[str] = "ttn"
    client_id: Optional[str] = None
    managed: bool = False
    reconnect_delay: int = 5  # seconds
    connect_timeout: float = 10.0  # seconds
    publish_timeout: float = 10.0  # seconds

    def __post_init__(self):
        """Validate identifiers."""
        if self.app_id and ('@' in self.app_id or '/' in self.app_id):
            raise ConfigError(f"Invalid app_id: '{self.app_id}'")
        if self.tenant_id == "":
            self.tenant_id = None
        if self.reconnect_delay < 1:
            raise ConfigError(f"reconnect_delay must be at least 1 second, got {self.reconnect_delay}")

    @classmethod
    def from_json(cls, path: str | Path) -> 'ClientConfig':
        """Load ClientConfig from JSON file."""
        try:
            data = _load_json(path)
            return cls(**_known_fields(cls, data, path))
        except FileNotFoundError:
            # Return default config if file doesn't exist
            return cls()
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e


def create_default_configs(server_path: str = "server_config.json",
                           client_path: str = "client_config.json") -> list[Path]:
    """
    Create default configuration files if they don't exist.

    Returns:
        Paths of the files that were written
    """
    server_config = {
        "host": "eu1.cloud.thethings.network",
        "port": 1883,
        "use_tls": False,
        "_use_tls_comment": "With TLS enabled and port 1883, port 8883 is used",
        "username": "my-app@ttn",
        "api_key": "NNSXS.XXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXX",
        "_api_key_comment": "Application API key with the 'Read application traffic' and 'Write downlink application traffic' rights",
        "keepalive": 60
    }

    client_config = {
        "app_id": "my-app",
        "tenant_id": "ttn",
        "_tenant_id_comment": "Tenant ID; empty string for single-tenant deployments",
        "managed": False,
        "_managed_comment": "Managed connections reconnect automatically every reconnect_delay seconds",
        "reconnect_delay": 5,
        "connect_timeout": 10.0,
        "publish_timeout": 10.0
    }

    written = []
    for path, content in ((Path(server_path), server_config), (Path(client_path), client_config)):
        if not path.exists():
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(content, f, indent=2)
            written.append(path)
    return written
