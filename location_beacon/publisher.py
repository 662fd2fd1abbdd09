"""
Location Broadcast Publisher

Author: Colin Bitterfield
Email: colin@bitterfield.com
Date Created: 2026-10-17
Date Updated: 2026-10-17
Version: 0.1.0

Sends the current location as a UDP datagram at a fixed cadence.
"""

import logging
import socket
from typing import Callable, List, Optional

from location_beacon.config import BroadcastConfig, check_frequency, check_port
from location_beacon.messages import GeoPosition, PublishedMessage, new_message_id

logger = logging.getLogger(__name__)


class UdpSender:
    """
    Connectionless datagram sender.

    Sends are fire-and-forget: failures are logged and reported through the
    return value, never raised.
    """

    def __init__(self, host: str = '<broadcast>'):
        self.host = host
        self.udp_socket: Optional[socket.socket] = None
        self.sent_count = 0

    def connect(self) -> bool:
        """
        Create the broadcast socket.

        Returns:
            True if the socket is ready
        """
        if self.udp_socket is not None:
            return True
        try:
            self.udp_socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            self.udp_socket.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            self.udp_socket.setblocking(False)
            logger.info(f"UDP socket ready for {self.host}")
            return True
        except OSError as e:
            logger.error(f"Failed to create UDP socket: {e}")
            self.udp_socket = None
            return False

    def send(self, payload: bytes, port: int) -> bool:
        if not self.connect():
            return False
        try:
            self.udp_socket.sendto(payload, (self.host, port))
        except OSError as e:
            logger.error(f"UDP send error: {e}")
            return False
        self.sent_count += 1
        logger.debug(f"UDP datagram sent to {self.host}:{port} ({len(payload)} bytes)")
        return True

    def close(self) -> None:
        if self.udp_socket is not None:
            self.udp_socket.close()
            self.udp_socket = None


class LocationPublisher:
    """
    Periodic location broadcast.

    While enabled, a timer task wakes every `frequency` milliseconds and
    sends one message built from the current location. With
    use_current_location (the default) the location comes from the position
    source; otherwise the manually set location is sent every tick.

    Ticks run on the injected scheduler (start_background_task / sleep).
    Disabling stops scheduling further ticks; re-enabling starts a fresh
    timer so missed ticks are never replayed.
    """

    def __init__(
        self,
        source,
        sender,
        scheduler,
        config: Optional[BroadcastConfig] = None,
        message_id: Optional[str] = None,
    ):
        self.source = source
        self.sender = sender
        self.scheduler = scheduler
        self.config = config or BroadcastConfig()
        self.config.validate()
        self.message_id = message_id or new_message_id()

        self._enabled = False
        self._generation = 0
        self._location: Optional[GeoPosition] = None
        self._use_current_location = True
        self._message: Optional[PublishedMessage] = None
        self._message_callbacks: List[Callable[[PublishedMessage], None]] = []

    def on_message_changed(self, callback):
        self._message_callbacks.append(callback)
        return callback

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        enabled = bool(enabled)
        if enabled == self._enabled:
            return

        self._enabled = enabled
        # Any timer task still sleeping sees a stale generation and exits
        self._generation += 1
        if enabled:
            self.scheduler.start_background_task(self._timer_loop, self._generation)
            logger.info(f"Location broadcast enabled: every {self.config.frequency} ms "
                        f"to port {self.config.port}")
        else:
            logger.info("Location broadcast disabled")

    @property
    def location(self) -> Optional[GeoPosition]:
        return self._location

    def set_location(self, location: Optional[GeoPosition]) -> None:
        self._location = location

    @property
    def use_current_location(self) -> bool:
        return self._use_current_location

    def set_use_current_location(self, use_current_location: bool) -> None:
        self._use_current_location = bool(use_current_location)

    @property
    def message_type(self) -> str:
        return self.config.message_type

    def set_message_type(self, message_type: str) -> None:
        if not message_type:
            raise ValueError("message_type must not be empty")
        self.config.message_type = message_type

    @property
    def port(self) -> int:
        return self.config.port

    def set_port(self, port: int) -> None:
        self.config.port = check_port(port)

    @property
    def frequency(self) -> int:
        return self.config.frequency

    def set_frequency(self, frequency: int) -> None:
        """Tick interval in milliseconds, applied from the next tick."""
        self.config.frequency = check_frequency(frequency)

    def current_message(self) -> Optional[PublishedMessage]:
        """Most recently built message, without sending a new one."""
        return self._message

    def _timer_loop(self, generation: int) -> None:
        logger.debug("Broadcast timer started")
        while self._enabled and generation == self._generation:
            self.scheduler.sleep(self.config.frequency / 1000.0)
            if not self._enabled or generation != self._generation:
                break
            self.tick()
        logger.debug("Broadcast timer stopped")

    def _position_to_send(self) -> Optional[GeoPosition]:
        if self._use_current_location:
            return self.source.position
        return self._location

    def tick(self) -> Optional[PublishedMessage]:
        """
        Build and send one message.

        Returns:
            The message sent, or None when disabled or no position is known yet
        """
        if not self._enabled:
            return None

        position = self._position_to_send()
        if position is None:
            logger.debug("No position available yet, skipping broadcast")
            return None

        message = PublishedMessage(
            message_type=self.config.message_type,
            message_id=self.message_id,
            position=position,
        )
        self._message = message
        self.sender.send(message.encode(), self.config.port)

        for callback in list(self._message_callbacks):
            callback(message)
        return message

    def get_status(self) -> dict:
        return {
            'enabled': self._enabled,
            'message_type': self.config.message_type,
            'message_id': self.message_id,
            'host': self.config.host,
            'port': self.config.port,
            'frequency': self.config.frequency,
            'use_current_location': self._use_current_location,
            'location': self._location.to_dict() if self._location else None,
        }
