"""
Location Beacon Configuration

Author: Colin Bitterfield
Email: colin@bitterfield.com
Date Created: 2026-10-17
Date Updated: 2026-10-17
Version: 0.1.0

Settings are read from environment variables, each with a default.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_TRACK_LOG = PACKAGE_DIR / 'data' / 'monterey.gpx'

DEFAULT_MESSAGE_TYPE = 'position_report'
DEFAULT_BROADCAST_PORT = 45678
DEFAULT_FREQUENCY_MS = 3000


def _whole_number(value, name: str) -> int:
    # bool is an int subclass; 1.5 would otherwise truncate silently
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValueError(f"{name} must be a whole number, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name} must be a whole number, got {value!r}") from e


def check_port(port) -> int:
    """
    Raises:
        ValueError: Not a whole number in 1-65535
    """
    port = _whole_number(port, 'port')
    if not 0 < port < 65536:
        raise ValueError(f"port must be in 1-65535, got {port}")
    return port


def check_frequency(frequency) -> int:
    """
    Raises:
        ValueError: Not a positive whole number of milliseconds
    """
    frequency = _whole_number(frequency, 'frequency')
    if frequency <= 0:
        raise ValueError(f"frequency must be positive, got {frequency}")
    return frequency


@dataclass
class BroadcastConfig:
    """Outbound location broadcast parameters"""
    message_type: str = DEFAULT_MESSAGE_TYPE
    host: str = '<broadcast>'
    port: int = DEFAULT_BROADCAST_PORT
    frequency: int = DEFAULT_FREQUENCY_MS  # milliseconds between ticks

    def validate(self) -> None:
        """
        Raises:
            ValueError: If any parameter is out of range
        """
        if not self.message_type:
            raise ValueError("message_type must not be empty")
        check_port(self.port)
        check_frequency(self.frequency)


def _flag(env: Mapping[str, str], name: str, default: str) -> bool:
    return env.get(name, default).lower() == 'true'


@dataclass
class Settings:
    """Service settings"""
    host: str = '0.0.0.0'
    port: int = 8082
    debug: bool = False
    secret_key: str = 'location-beacon-dev-key'
    async_mode: str = 'eventlet'
    auto_start: bool = True

    # Position source
    source_mode: str = 'live'
    gpx_file: Optional[str] = None
    default_track_log: Optional[Path] = DEFAULT_TRACK_LOG
    upload_dir: str = 'uploads'
    serial_port: str = '/dev/ttyUSB0'
    serial_baudrate: int = 4800
    compass_port: Optional[str] = None
    sim_update_interval: float = 1.0  # seconds
    sim_speed_multiplier: float = 1.0

    # Broadcast
    broadcast: BroadcastConfig = field(default_factory=BroadcastConfig)
    broadcast_enabled: bool = False

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Raises:
            ValueError: If a numeric variable cannot be parsed or is out of range
        """
        env = os.environ if env is None else env

        settings = cls(
            host=env.get('HOST', '0.0.0.0'),
            port=int(env.get('PORT', 8082)),
            debug=_flag(env, 'DEBUG', 'false'),
            secret_key=env.get('SECRET_KEY', 'location-beacon-dev-key'),
            async_mode=env.get('ASYNC_MODE', 'eventlet'),
            auto_start=_flag(env, 'AUTO_START', 'true'),
            source_mode=env.get('SOURCE_MODE', 'live').lower(),
            gpx_file=env.get('GPX_FILE') or None,
            upload_dir=env.get('UPLOAD_DIR', 'uploads'),
            serial_port=env.get('SERIAL_PORT', '/dev/ttyUSB0'),
            serial_baudrate=int(env.get('SERIAL_BAUDRATE', 4800)),
            compass_port=env.get('COMPASS_PORT') or None,
            sim_update_interval=float(env.get('SIM_UPDATE_INTERVAL', 1.0)),
            sim_speed_multiplier=float(env.get('SIM_SPEED_MULTIPLIER', 1.0)),
            broadcast=BroadcastConfig(
                message_type=env.get('MESSAGE_TYPE', DEFAULT_MESSAGE_TYPE),
                host=env.get('BROADCAST_HOST', '<broadcast>'),
                port=int(env.get('BROADCAST_PORT', DEFAULT_BROADCAST_PORT)),
                frequency=int(env.get('BROADCAST_FREQUENCY', DEFAULT_FREQUENCY_MS)),
            ),
            broadcast_enabled=_flag(env, 'BROADCAST_ENABLED', 'false'),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """
        Raises:
            ValueError: If configuration is invalid
        """
        self.broadcast.validate()
        if self.source_mode not in ('live', 'simulated'):
            raise ValueError(f"Invalid source mode: {self.source_mode}")
        if self.sim_update_interval <= 0:
            raise ValueError(f"sim_update_interval must be positive, got {self.sim_update_interval}")
        if self.sim_speed_multiplier <= 0:
            raise ValueError(f"sim_speed_multiplier must be positive, got {self.sim_speed_multiplier}")
