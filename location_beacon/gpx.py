"""
GPX Track Log Reader

Author: Colin Bitterfield
Email: colin@bitterfield.com
Date Created: 2026-10-17
Date Updated: 2026-10-17
Version: 0.1.0

Loads recorded GPX logs for replay and samples the recorded movement at an
arbitrary elapsed time.
"""

import bisect
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple, Union

from location_beacon.messages import (GeoPosition, bearing_between,
                                      haversine_distance, interpolate_position)

logger = logging.getLogger(__name__)

GPX_NAMESPACES = (
    {'gpx': 'http://www.topografix.com/GPX/1/1'},
    {'gpx': 'http://www.topografix.com/GPX/1/0'},
)

# Spacing used when a log carries no usable timestamps
DEFAULT_POINT_SPACING = 1.0  # seconds


class TrackLogError(ValueError):
    """Track log is missing, unreadable, or holds no points"""


@dataclass
class TrackPoint:
    """One recorded GPX point"""
    position: GeoPosition
    time: Optional[datetime] = None
    name: Optional[str] = None


def _find_points(root: ET.Element) -> List[ET.Element]:
    """Track points first, then route points, then waypoints."""
    for kind in ('trkpt', 'rtept', 'wpt'):
        for ns in GPX_NAMESPACES:
            points = root.findall(f'.//gpx:{kind}', ns)
            if points:
                return points
        # Try without namespace
        points = root.findall(f'.//{kind}')
        if points:
            return points
    return []


def _child_text(element: ET.Element, tag: str) -> Optional[str]:
    for ns in GPX_NAMESPACES:
        child = element.find(f'gpx:{tag}', ns)
        if child is not None:
            return child.text
    child = element.find(tag)
    return child.text if child is not None else None


def _parse_time(text: Optional[str]) -> Optional[datetime]:
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.strip().replace('Z', '+00:00'))
    except ValueError:
        return None


def parse_gpx(content: Union[str, bytes]) -> Tuple[Optional[str], List[TrackPoint]]:
    """
    Parse GPX content.

    Returns:
        (name, points)

    Raises:
        TrackLogError: on malformed XML or when no valid point is found
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise TrackLogError(f"GPX parse error: {e}") from e

    name = None
    for ns in GPX_NAMESPACES:
        name_elem = root.find('.//gpx:name', ns)
        if name_elem is not None:
            name = name_elem.text
            break
    else:
        name_elem = root.find('.//name')
        if name_elem is not None:
            name = name_elem.text

    points = []
    for element in _find_points(root):
        try:
            lat = float(element.get('lat'))
            lon = float(element.get('lon'))
            ele_text = _child_text(element, 'ele')
            altitude = float(ele_text) if ele_text else None
            position = GeoPosition(lon, lat, altitude)
        except (TypeError, ValueError) as e:
            logger.debug(f"Skipping invalid GPX point: {e}")
            continue

        points.append(TrackPoint(
            position=position,
            time=_parse_time(_child_text(element, 'time')),
            name=_child_text(element, 'name'),
        ))

    if not points:
        raise TrackLogError("GPX file contains no track, route or waypoints")

    return name, points


class TrackLog:
    """
    A loaded track log with replay timing.

    Offsets are seconds since the first point, taken from the recorded
    timestamps when every point has one and they never go backwards,
    otherwise DEFAULT_POINT_SPACING apart.
    """

    def __init__(self, points: List[TrackPoint], name: Optional[str] = None):
        if not points:
            raise TrackLogError("Track log is empty")
        self.points = points
        self.name = name or 'Unnamed Track'
        self.offsets = self._compute_offsets(points)
        self.headings = self._compute_headings(points)

    @staticmethod
    def _compute_offsets(points: List[TrackPoint]) -> List[float]:
        times = [p.time for p in points]
        if all(t is not None for t in times) and len({t.tzinfo is None for t in times}) == 1:
            offsets = [(t - times[0]).total_seconds() for t in times]
            if all(b >= a for a, b in zip(offsets, offsets[1:])) and offsets[-1] > 0:
                return offsets
        return [i * DEFAULT_POINT_SPACING for i in range(len(points))]

    @staticmethod
    def _compute_headings(points: List[TrackPoint]) -> List[Optional[float]]:
        """Bearing of each segment; stationary segments reuse a neighbour's."""
        headings: List[Optional[float]] = []
        for a, b in zip(points, points[1:]):
            pa, pb = a.position, b.position
            if haversine_distance(pa.latitude, pa.longitude, pb.latitude, pb.longitude) > 0.0:
                headings.append(bearing_between(pa.latitude, pa.longitude, pb.latitude, pb.longitude))
            else:
                headings.append(headings[-1] if headings else None)

        # Leading stationary segments take the first real bearing
        first = next((h for h in headings if h is not None), None)
        return [first if h is None else h for h in headings]

    @property
    def duration(self) -> float:
        return self.offsets[-1]

    def __len__(self) -> int:
        return len(self.points)

    def sample(self, elapsed: float) -> Tuple[GeoPosition, Optional[float]]:
        """
        Position and heading at an elapsed replay time.

        Args:
            elapsed: Seconds since the start of the log, clamped to the log

        Returns:
            (position, heading) where heading is None for logs that never move
        """
        if len(self.points) == 1:
            return self.points[0].position, None

        elapsed = min(max(elapsed, 0.0), self.duration)
        index = bisect.bisect_right(self.offsets, elapsed) - 1
        index = min(index, len(self.points) - 2)

        start, end = self.offsets[index], self.offsets[index + 1]
        fraction = (elapsed - start) / (end - start) if end > start else 1.0
        position = interpolate_position(self.points[index].position,
                                        self.points[index + 1].position, fraction)
        return position, self.headings[index]


def load_track_log(path: Union[str, Path]) -> TrackLog:
    """
    Read a GPX file from disk.

    Raises:
        TrackLogError: file missing, unreadable or malformed
    """
    path = Path(path)
    try:
        content = path.read_bytes()
    except OSError as e:
        raise TrackLogError(f"Cannot read track log {path}: {e}") from e

    name, points = parse_gpx(content)
    track = TrackLog(points, name)
    logger.info(f"Track log loaded: {track.name} ({len(track)} points, {track.duration:.0f}s)")
    return track
