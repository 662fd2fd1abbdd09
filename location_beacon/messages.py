"""
Location Message Types

Author: Colin Bitterfield
Email: colin@bitterfield.com
Date Created: 2026-10-17
Date Updated: 2026-10-17
Version: 0.1.0

Value types shared by the position source and the broadcast publisher,
heading arithmetic, and the GeoMessage payload sent on every tick.
"""

import math
import uuid
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Tuple

EARTH_RADIUS = 6371000.0  # meters


@dataclass(frozen=True)
class SpatialReference:
    """Coordinate system identifier (well-known ID)"""
    wkid: int


WGS84 = SpatialReference(4326)


@dataclass(frozen=True)
class GeoPosition:
    """
    Geographic position.

    Immutable: a new instance is created for every update.
    """
    longitude: float  # degrees
    latitude: float  # degrees
    altitude: Optional[float] = None  # meters, None for 2-D fixes
    spatial_reference: SpatialReference = WGS84

    def __post_init__(self):
        if not (math.isfinite(self.longitude) and math.isfinite(self.latitude)):
            raise ValueError(f"Non-finite coordinate: {self.longitude}, {self.latitude}")
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Invalid latitude: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Invalid longitude: {self.longitude}")
        if self.altitude is not None and not math.isfinite(self.altitude):
            raise ValueError(f"Non-finite altitude: {self.altitude}")

    @property
    def has_z(self) -> bool:
        return self.altitude is not None

    def to_dict(self) -> dict:
        return {
            'longitude': self.longitude,
            'latitude': self.latitude,
            'altitude': self.altitude,
            'wkid': self.spatial_reference.wkid,
        }


def normalize_heading(degrees: float) -> float:
    """Wrap a heading into [0, 360)."""
    result = degrees % 360.0
    # -1e-20 % 360.0 rounds up to 360.0
    if result >= 360.0:
        result = 0.0
    return result + 0.0  # drop negative zero


def relative_heading(absolute: float, viewer: float) -> float:
    """Heading relative to the viewer orientation, in [0, 360)."""
    return normalize_heading(absolute - viewer)


def heading_difference(a: float, b: float) -> float:
    """Smallest angle between two headings, in [0, 180]."""
    diff = abs(a - b) % 360.0
    return 360.0 - diff if diff > 180.0 else diff


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points.

    Args:
        lat1, lon1: First point (degrees)
        lat2, lon2: Second point (degrees)

    Returns:
        Distance in meters
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return EARTH_RADIUS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def bearing_between(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Initial bearing from point 1 to point 2.

    Returns:
        Bearing in degrees (0 = North, 90 = East)
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dlambda = math.radians(lon2 - lon1)

    x = math.sin(dlambda) * math.cos(phi2)
    y = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlambda)

    return normalize_heading(math.degrees(math.atan2(x, y)))


def interpolate_position(start: GeoPosition, end: GeoPosition, fraction: float) -> GeoPosition:
    """
    Linear interpolation between two positions.

    Altitude is only interpolated when both ends carry one; otherwise the
    result is a 2-D position.
    """
    fraction = min(max(fraction, 0.0), 1.0)
    lon = start.longitude + (end.longitude - start.longitude) * fraction
    lat = start.latitude + (end.latitude - start.latitude) * fraction

    altitude = None
    if start.has_z and end.has_z:
        altitude = start.altitude + (end.altitude - start.altitude) * fraction

    return GeoPosition(lon, lat, altitude, start.spatial_reference)


def new_message_id() -> str:
    return str(uuid.uuid4())[:8]


@dataclass(frozen=True)
class PublishedMessage:
    """
    One location broadcast.

    Carries the message-type tag consumed by downstream parsers, the sender
    id, the position and the time the message was built.
    """
    message_type: str
    message_id: str
    position: GeoPosition
    action: str = 'update'
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def control_points(self) -> str:
        """Coordinate string: lon,lat[,alt]"""
        coords: Tuple[float, ...] = (self.position.longitude, self.position.latitude)
        if self.position.has_z:
            coords += (self.position.altitude,)
        return ','.join(repr(float(c)) for c in coords)

    def to_xml(self) -> ET.Element:
        """
        Build the GeoMessage element tree.

        <geomessages>
          <geomessage v="1.0">
            <_type/> <_action/> <_id/> <_wkid/> <_control_points/> <_timestamp/>
          </geomessage>
        </geomessages>
        """
        root = ET.Element('geomessages')
        geomessage = ET.SubElement(root, 'geomessage', {'v': '1.0'})

        fields = (
            ('_type', self.message_type),
            ('_action', self.action),
            ('_id', self.message_id),
            ('_wkid', str(self.position.spatial_reference.wkid)),
            ('_control_points', self.control_points),
            ('_timestamp', self.timestamp.isoformat()),
        )
        for tag, text in fields:
            ET.SubElement(geomessage, tag).text = text

        return root

    def encode(self) -> bytes:
        """Serialize to the UTF-8 wire payload."""
        return ET.tostring(self.to_xml(), encoding='utf-8')

    def to_dict(self) -> dict:
        return {
            'message_type': self.message_type,
            'message_id': self.message_id,
            'action': self.action,
            'position': self.position.to_dict(),
            'timestamp': self.timestamp.isoformat(),
        }
