"""Shared fixtures: a deterministic scheduler, a recording sender, fake serial ports."""

from collections import deque

import pytest
import serial

from location_beacon import sources
from location_beacon.nmea import checksum


class Halt(Exception):
    """Raised by FakeScheduler.sleep when the run deadline is reached"""


class FakeScheduler:
    """
    Virtual-clock stand-in for the Socket.IO background task API.

    Background tasks are queued and only run inside run(until), one after
    another. sleep() advances the clock and fires any hook due by then; a
    sleep that would pass the deadline raises Halt, ending that task.
    """

    def __init__(self):
        self.clock = 0.0
        self.tasks = deque()
        self.hooks = []
        self.until = None

    def start_background_task(self, target, *args, **kwargs):
        self.tasks.append((target, args, kwargs))

    def sleep(self, seconds):
        if self.until is not None and self.clock + seconds > self.until:
            self.clock = self.until
            raise Halt()
        self.clock += seconds
        self._fire_hooks()

    def call_at(self, when, fn):
        self.hooks.append((when, fn))

    def _fire_hooks(self):
        due = sorted((h for h in self.hooks if h[0] <= self.clock), key=lambda h: h[0])
        self.hooks = [h for h in self.hooks if h[0] > self.clock]
        for _, fn in due:
            fn()

    def run(self, until):
        self.until = until
        try:
            while self.tasks:
                target, args, kwargs = self.tasks.popleft()
                try:
                    target(*args, **kwargs)
                except Halt:
                    pass
        finally:
            self.until = None
        self.clock = max(self.clock, until)


class FakeSender:
    def __init__(self):
        self.sent = []

    def send(self, payload, port):
        self.sent.append((payload, port))
        return True


def nmea_line(body):
    """Frame a sentence body with its checksum."""
    return f"${body}*{checksum(body):02X}\r\n"


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def sender():
    return FakeSender()


class FakeSerialPorts:
    """
    Devices visible to the patched serial.Serial.

    Only ports listed in `lines` can be opened. Once a port runs out of
    lines, readline raises as if the device was unplugged.
    """

    def __init__(self):
        self.lines = {}
        self.opened = []


@pytest.fixture
def fake_serial(monkeypatch):
    ports = FakeSerialPorts()

    class FakeSerial:
        def __init__(self, port=None, baudrate=9600, **kwargs):
            if port not in ports.lines:
                raise serial.SerialException(f"could not open port {port}")
            self.port = port
            self.baudrate = baudrate
            self.is_open = True
            self._lines = deque(line.encode('ascii') for line in ports.lines[port])
            ports.opened.append(self)

        def readline(self):
            if not self._lines:
                raise serial.SerialException("device reports readiness to read but returned no data")
            return self._lines.popleft()

        def close(self):
            self.is_open = False

    monkeypatch.setattr(sources.serial, 'Serial', FakeSerial)
    return ports


GPX_TRACK = """<?xml version="1.0" encoding="UTF-8"?>
<gpx version="1.1" creator="test" xmlns="http://www.topografix.com/GPX/1/1">
  <trk>
    <name>Equator Run</name>
    <trkseg>
      <trkpt lat="0.0" lon="0.0"><ele>10.0</ele><time>2024-01-01T00:00:00Z</time></trkpt>
      <trkpt lat="0.0" lon="0.001"><ele>20.0</ele><time>2024-01-01T00:00:02Z</time></trkpt>
      <trkpt lat="0.001" lon="0.001"><ele>30.0</ele><time>2024-01-01T00:00:04Z</time></trkpt>
    </trkseg>
  </trk>
</gpx>
"""


@pytest.fixture
def track_file(tmp_path):
    path = tmp_path / 'track.gpx'
    path.write_text(GPX_TRACK)
    return path
