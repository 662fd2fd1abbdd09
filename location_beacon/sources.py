"""
Position and Heading Sources

Author: Colin Bitterfield
Email: colin@bitterfield.com
Date Created: 2026-10-17
Date Updated: 2026-10-17
Version: 0.1.0

Live (NMEA receiver + compass) and simulated (GPX replay) producers behind a
single PositionHeadingSource that keeps the canonical position and heading.

Scheduling: producers run their loops through the injected scheduler, an
object with start_background_task(target, *args) and sleep(seconds). In the
service this is the Socket.IO server in eventlet mode, so every loop is a
green thread on one cooperative event loop. Canonical state is guarded by a
lock all the same, which keeps it consistent under a threaded scheduler.
"""

import logging
import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union
from urllib.parse import unquote, urlparse

import serial

from location_beacon import nmea
from location_beacon.config import DEFAULT_TRACK_LOG
from location_beacon.gpx import TrackLog, TrackLogError, load_track_log
from location_beacon.messages import (GeoPosition, heading_difference,
                                      normalize_heading, relative_heading)

logger = logging.getLogger(__name__)

# Viewer rotations at or below this many degrees are not republished
VIEWER_HEADING_THRESHOLD = 0.1


class SourceMode(str, Enum):
    LIVE = 'live'
    SIMULATED = 'simulated'


class ConfigurationError(Exception):
    """The source cannot enter the requested mode"""


class SourceUnavailable(Exception):
    """Producer hardware, permission or input file is not usable"""


class BaseSource(ABC):
    """
    Producer of position and heading updates.

    Implementations:
    - LiveSource: NMEA 0183 receiver and compass on serial ports
    - SimulatedSource: GPX track log replay

    Updates are pushed through the on_position / on_heading callbacks, which
    receive the producer itself as first argument. A producer that loses its
    input reports through on_unavailable and goes quiet; it never raises.
    """

    mode: SourceMode

    def __init__(
        self,
        scheduler,
        on_position: Optional[Callable[['BaseSource', GeoPosition], None]] = None,
        on_heading: Optional[Callable[['BaseSource', float], None]] = None,
        on_unavailable: Optional[Callable[['BaseSource', str], None]] = None,
    ):
        self.scheduler = scheduler
        self.on_position = on_position
        self.on_heading = on_heading
        self.on_unavailable = on_unavailable

        self.running = False
        self.available = True
        self.last_error: Optional[str] = None
        # Bumped on every start/stop; loops exit once theirs is stale
        self._generation = 0

    def start(self) -> None:
        """Start delivering updates. No-op if already started."""
        if self.running:
            return
        self.running = True
        self.available = True
        self.last_error = None
        self._generation += 1
        logger.info(f"Starting {self.mode.value} source")
        try:
            self._start(self._generation)
        except SourceUnavailable as e:
            self._mark_unavailable(str(e))

    def stop(self) -> None:
        """Stop delivering updates. No-op if already stopped."""
        if not self.running:
            return
        self.running = False
        self._generation += 1
        logger.info(f"Stopped {self.mode.value} source")

    @abstractmethod
    def _start(self, generation: int) -> None:
        """Acquire inputs and schedule the update loop(s)."""

    def _is_current(self, generation: int) -> bool:
        return self.running and generation == self._generation

    def _mark_unavailable(self, reason: str) -> None:
        self.available = False
        self.last_error = reason
        logger.warning(f"{self.mode.value} source unavailable: {reason}")
        if self.on_unavailable:
            self.on_unavailable(self, reason)

    def emit_position(self, position: GeoPosition) -> None:
        if self.on_position:
            self.on_position(self, position)

    def emit_heading(self, heading: Optional[float]) -> None:
        if heading is None or not math.isfinite(heading):
            logger.debug(f"Dropped invalid heading: {heading}")
            return
        if self.on_heading:
            self.on_heading(self, normalize_heading(heading))

    def get_status(self) -> dict:
        return {
            'mode': self.mode.value,
            'running': self.running,
            'available': self.available,
            'error': self.last_error,
        }


class LiveSource(BaseSource):
    """
    Live positioning from NMEA 0183 devices.

    Position fixes (GGA/RMC) and compass readings (HDT/HDM/HDG) are read from
    the receiver port. A separate compass port may be given when the compass
    is wired on its own line.
    """

    mode = SourceMode.LIVE

    def __init__(
        self,
        scheduler,
        port: str = '/dev/ttyUSB0',
        baudrate: int = 4800,
        compass_port: Optional[str] = None,
        **callbacks,
    ):
        super().__init__(scheduler, **callbacks)
        self.port = port
        self.baudrate = baudrate
        self.compass_port = compass_port

    def _open(self, port: str) -> serial.Serial:
        try:
            return serial.Serial(
                port=port,
                baudrate=self.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=1
            )
        except (serial.SerialException, ValueError) as e:
            raise SourceUnavailable(f"Cannot open {port}: {e}") from e

    def _start(self, generation: int) -> None:
        ports = [self.port]
        if self.compass_port and self.compass_port != self.port:
            ports.append(self.compass_port)

        for port in ports:
            try:
                interface = self._open(port)
            except SourceUnavailable as e:
                self._mark_unavailable(str(e))
                continue
            logger.info(f"Serial port opened: {port} @ {self.baudrate} bps")
            self.scheduler.start_background_task(self._read_loop, interface, generation)

    def _read_loop(self, interface: serial.Serial, generation: int) -> None:
        """Read sentences until stopped or the device goes away."""
        try:
            while self._is_current(generation):
                raw = interface.readline()
                if raw and self._is_current(generation):
                    self.handle_sentence(raw.decode('ascii', errors='ignore'))
                self.scheduler.sleep(0)
        except serial.SerialException as e:
            if self._is_current(generation):
                self._mark_unavailable(f"{interface.port}: {e}")
        finally:
            interface.close()
            logger.debug(f"Serial port closed: {interface.port}")

    def handle_sentence(self, line: str) -> None:
        """Decode one NMEA line and emit whatever valid reading it holds."""
        sentence = nmea.parse_sentence(line)
        if sentence is None:
            return

        if sentence.sentence_type in nmea.POSITION_SENTENCES:
            position = nmea.read_position(sentence)
            if position is None:
                logger.debug(f"Dropped invalid fix: {line.strip()}")
                return
            self.emit_position(position)

        elif sentence.sentence_type in nmea.HEADING_SENTENCES:
            self.emit_heading(nmea.read_azimuth(sentence))

    def get_status(self) -> dict:
        status = super().get_status()
        status.update({
            'port': self.port,
            'baudrate': self.baudrate,
            'compass_port': self.compass_port,
        })
        return status


class SimulatedSource(BaseSource):
    """
    Replays a GPX track log.

    Every update_interval seconds the replay clock advances by
    update_interval * speed_multiplier and the interpolated position and the
    current segment bearing are emitted. The replay wraps to the start of the
    log unless loop is False.
    """

    mode = SourceMode.SIMULATED

    def __init__(
        self,
        scheduler,
        track_log: Optional[Path] = None,
        update_interval: float = 1.0,
        speed_multiplier: float = 1.0,
        loop: bool = True,
        **callbacks,
    ):
        super().__init__(scheduler, **callbacks)
        self.track_log_path = track_log
        self.update_interval = update_interval
        self.speed_multiplier = speed_multiplier
        self.loop = loop

        self.track: Optional[TrackLog] = None
        self.elapsed = 0.0

    def set_track_log(self, path: Path) -> None:
        """Point the player at a new log; a running replay restarts on it."""
        self.track_log_path = path
        self.track = None
        if self.running:
            logger.info(f"Restarting replay with {path}")
            self.stop()
            self.start()

    def _start(self, generation: int) -> None:
        if self.track_log_path is None:
            raise SourceUnavailable("No track log configured")
        try:
            self.track = load_track_log(self.track_log_path)
        except TrackLogError as e:
            self.track = None
            raise SourceUnavailable(str(e)) from e

        self.elapsed = 0.0
        self.scheduler.start_background_task(self._replay_loop, generation)

    def _replay_loop(self, generation: int) -> None:
        while self._is_current(generation):
            if not self.step():
                logger.info("Track log replay finished")
                break
            self.scheduler.sleep(self.update_interval)

    def step(self) -> bool:
        """
        Emit the reading at the current replay time and advance the clock.

        Returns:
            False once a non-looping replay has run past the end of the log
        """
        if self.track is None:
            return False
        if not self.loop and self.elapsed > self.track.duration:
            return False

        position, heading = self.track.sample(self.elapsed)
        self.emit_position(position)
        self.emit_heading(heading)

        self.elapsed += self.update_interval * self.speed_multiplier
        if self.loop and self.elapsed > self.track.duration:
            self.elapsed = 0.0
        return True

    def get_status(self) -> dict:
        status = super().get_status()
        status.update({
            'track_log': str(self.track_log_path) if self.track_log_path else None,
            'track_name': self.track.name if self.track else None,
            'elapsed': self.elapsed,
            'update_interval': self.update_interval,
            'speed_multiplier': self.speed_multiplier,
        })
        return status


@dataclass(frozen=True)
class LocationState:
    """Snapshot of the canonical state"""
    position: Optional[GeoPosition]
    heading: Optional[float]
    relative_heading: Optional[float]
    viewer_heading: float


def as_track_log_path(handle: Union[str, Path]) -> Path:
    """Accept a filesystem path or a file:// URI."""
    text = str(handle)
    if text.startswith('file://'):
        return Path(unquote(urlparse(text).path))
    return Path(text)


class PositionHeadingSource:
    """
    Canonical position and heading, fed by whichever producer is active.

    Exactly one mode is active. Producers are created the first time their
    mode is used and kept afterwards; only the active one is ever started,
    and readings from any other producer are discarded. Starts in LIVE mode,
    disabled.
    """

    def __init__(
        self,
        scheduler,
        track_log: Optional[Union[str, Path]] = None,
        default_track_log: Optional[Union[str, Path]] = DEFAULT_TRACK_LOG,
        serial_port: str = '/dev/ttyUSB0',
        serial_baudrate: int = 4800,
        compass_port: Optional[str] = None,
        sim_update_interval: float = 1.0,
        sim_speed_multiplier: float = 1.0,
    ):
        self._scheduler = scheduler
        self._serial_port = serial_port
        self._serial_baudrate = serial_baudrate
        self._compass_port = compass_port
        self._sim_update_interval = sim_update_interval
        self._sim_speed_multiplier = sim_speed_multiplier

        self._track_log: Optional[Path] = None
        if track_log is not None:
            self._track_log = as_track_log_path(track_log)
        elif default_track_log is not None:
            if Path(default_track_log).exists():
                self._track_log = Path(default_track_log)
            else:
                logger.warning(f"Default track log not found: {default_track_log}")

        self._mode = SourceMode.LIVE
        self._enabled = False
        self._producers: Dict[SourceMode, BaseSource] = {}

        self._lock = threading.Lock()
        self._position: Optional[GeoPosition] = None
        self._heading: Optional[float] = None
        self._relative_heading: Optional[float] = None
        self._viewer_heading = 0.0

        self._position_callbacks: List[Callable[[GeoPosition], None]] = []
        self._heading_callbacks: List[Callable[[float], None]] = []
        self._relative_heading_callbacks: List[Callable[[float], None]] = []
        self._unavailable_callbacks: List[Callable[[SourceMode, str], None]] = []

    # Notification channels

    def on_position_update(self, callback):
        self._position_callbacks.append(callback)
        return callback

    def on_heading_update(self, callback):
        self._heading_callbacks.append(callback)
        return callback

    def on_relative_heading_update(self, callback):
        self._relative_heading_callbacks.append(callback)
        return callback

    def on_source_unavailable(self, callback):
        self._unavailable_callbacks.append(callback)
        return callback

    # Accessors

    @property
    def mode(self) -> SourceMode:
        return self._mode

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def track_log(self) -> Optional[Path]:
        return self._track_log

    @property
    def position(self) -> Optional[GeoPosition]:
        with self._lock:
            return self._position

    @property
    def heading(self) -> Optional[float]:
        with self._lock:
            return self._heading

    @property
    def relative_heading(self) -> Optional[float]:
        with self._lock:
            return self._relative_heading

    @property
    def viewer_heading(self) -> float:
        with self._lock:
            return self._viewer_heading

    @property
    def data_available(self) -> bool:
        """False while disabled or when the active producer has no input."""
        producer = self._producers.get(self._mode)
        return self._enabled and producer is not None and producer.available

    def producer(self, mode: SourceMode) -> Optional[BaseSource]:
        """The producer for a mode, if it has been created."""
        return self._producers.get(SourceMode(mode))

    def snapshot(self) -> LocationState:
        with self._lock:
            return LocationState(self._position, self._heading,
                                 self._relative_heading, self._viewer_heading)

    # Control

    def _ensure_producer(self, mode: SourceMode) -> BaseSource:
        producer = self._producers.get(mode)
        if producer is not None:
            return producer

        callbacks = dict(
            on_position=self._producer_position,
            on_heading=self._producer_heading,
            on_unavailable=self._producer_unavailable,
        )
        if mode is SourceMode.LIVE:
            producer = LiveSource(
                self._scheduler,
                port=self._serial_port,
                baudrate=self._serial_baudrate,
                compass_port=self._compass_port,
                **callbacks,
            )
        else:
            producer = SimulatedSource(
                self._scheduler,
                track_log=self._track_log,
                update_interval=self._sim_update_interval,
                speed_multiplier=self._sim_speed_multiplier,
                **callbacks,
            )

        self._producers[mode] = producer
        logger.info(f"Initialized {mode.value} source")
        return producer

    def set_mode(self, mode: Union[SourceMode, str]) -> None:
        """
        Switch between live and simulated updates.

        Raises:
            ValueError: Unknown mode
            ConfigurationError: Simulated mode without any track log
        """
        mode = SourceMode(mode)
        if mode is self._mode:
            return

        if mode is SourceMode.SIMULATED and self._track_log is None:
            raise ConfigurationError("Simulated mode requires a track log and no default is available")

        new_producer = self._ensure_producer(mode)
        old_producer = self._producers.get(self._mode)

        if self._enabled and old_producer is not None:
            old_producer.stop()
        self._mode = mode
        if self._enabled:
            new_producer.start()

        logger.info(f"Source mode: {mode.value}")

    def set_track_log(self, handle: Union[str, Path]) -> None:
        """Replace the log replayed in simulated mode."""
        path = as_track_log_path(handle)
        if path == self._track_log:
            return

        self._track_log = path
        logger.info(f"Track log set: {path}")

        producer = self._producers.get(SourceMode.SIMULATED)
        if producer is not None:
            producer.set_track_log(path)

    def set_enabled(self, enabled: bool) -> None:
        """Start or stop the producer of the current mode."""
        enabled = bool(enabled)
        if enabled == self._enabled:
            return

        producer = self._ensure_producer(self._mode)
        self._enabled = enabled
        if enabled:
            producer.start()
        else:
            producer.stop()

        logger.info(f"Location updates {'enabled' if enabled else 'disabled'} ({self._mode.value})")

    def set_viewer_heading(self, degrees: float) -> bool:
        """
        Update the viewer orientation used for relative heading.

        Returns:
            True if the change was accepted and relative heading recomputed
        """
        if degrees is None or not math.isfinite(degrees):
            logger.debug(f"Ignoring invalid viewer heading: {degrees}")
            return False

        degrees = normalize_heading(degrees)
        with self._lock:
            if heading_difference(degrees, self._viewer_heading) <= VIEWER_HEADING_THRESHOLD:
                return False
            self._viewer_heading = degrees
            relative = None
            if self._heading is not None:
                relative = relative_heading(self._heading, degrees)
                self._relative_heading = relative

        if relative is not None:
            for callback in list(self._relative_heading_callbacks):
                callback(relative)
        return True

    # Producer callbacks

    def _accepts(self, producer: BaseSource) -> bool:
        return self._enabled and producer is self._producers.get(self._mode)

    def _producer_position(self, producer: BaseSource, position: GeoPosition) -> None:
        if not self._accepts(producer):
            logger.debug(f"Ignoring position from inactive {producer.mode.value} source")
            return

        with self._lock:
            self._position = position

        for callback in list(self._position_callbacks):
            callback(position)

    def _producer_heading(self, producer: BaseSource, heading: float) -> None:
        if not self._accepts(producer):
            logger.debug(f"Ignoring heading from inactive {producer.mode.value} source")
            return

        with self._lock:
            self._heading = heading
            relative = relative_heading(heading, self._viewer_heading)
            self._relative_heading = relative

        for callback in list(self._heading_callbacks):
            callback(heading)
        for callback in list(self._relative_heading_callbacks):
            callback(relative)

    def _producer_unavailable(self, producer: BaseSource, reason: str) -> None:
        for callback in list(self._unavailable_callbacks):
            callback(producer.mode, reason)

    def get_status(self) -> dict:
        state = self.snapshot()
        return {
            'mode': self._mode.value,
            'enabled': self._enabled,
            'data_available': self.data_available,
            'track_log': str(self._track_log) if self._track_log else None,
            'position': state.position.to_dict() if state.position else None,
            'heading': state.heading,
            'relative_heading': state.relative_heading,
            'viewer_heading': state.viewer_heading,
            'producers': {mode.value: p.get_status() for mode, p in self._producers.items()},
        }
