"""
NMEA 0183 Sentence Decoder

Author: Colin Bitterfield
Email: colin@bitterfield.com
Date Created: 2026-10-17
Date Updated: 2026-10-17
Version: 0.1.0

Decodes the NMEA 0183 sentences produced by GNSS receivers and compasses:
GGA and RMC for position fixes, HDT, HDM and HDG for heading.
Anything that fails validation decodes to None.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional

from location_beacon.messages import GeoPosition

logger = logging.getLogger(__name__)

POSITION_SENTENCES = ('GGA', 'RMC')
HEADING_SENTENCES = ('HDT', 'HDM', 'HDG')


@dataclass
class Sentence:
    """A framed, checksum-verified NMEA sentence"""
    talker: str
    sentence_type: str
    fields: List[str]


def checksum(body: str) -> int:
    """XOR of every character between '$' and '*'."""
    value = 0
    for char in body:
        value ^= ord(char)
    return value


def parse_sentence(line: str) -> Optional[Sentence]:
    """
    Frame one NMEA line.

    Returns None for blank lines, proprietary sentences, and checksum
    mismatches. A sentence without a checksum is accepted.
    """
    line = line.strip()
    if not line.startswith('$') or len(line) < 6:
        return None

    body = line[1:]
    if '*' in body:
        body, _, expected = body.partition('*')
        try:
            if int(expected[:2], 16) != checksum(body):
                logger.debug(f"NMEA checksum mismatch: {line}")
                return None
        except ValueError:
            return None

    parts = body.split(',')
    address = parts[0]
    if len(address) != 5 or address.startswith('P'):
        return None

    return Sentence(talker=address[:2], sentence_type=address[2:], fields=parts[1:])


def _field(fields: List[str], index: int) -> str:
    return fields[index].strip() if index < len(fields) else ''


def _float(text: str) -> Optional[float]:
    if not text:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def parse_coordinate(value: str, hemisphere: str) -> Optional[float]:
    """
    Convert NMEA DDMM.MMMM / DDDMM.MMMM to signed decimal degrees.
    """
    number = _float(value)
    if number is None or hemisphere not in ('N', 'S', 'E', 'W'):
        return None

    degrees = int(number // 100)
    minutes = number - degrees * 100
    if minutes >= 60.0:
        return None

    result = degrees + minutes / 60.0
    if hemisphere in ('S', 'W'):
        result = -result
    return result


def _position(lat: str, lat_dir: str, lon: str, lon_dir: str,
              altitude: Optional[float] = None) -> Optional[GeoPosition]:
    latitude = parse_coordinate(lat, lat_dir)
    longitude = parse_coordinate(lon, lon_dir)
    if latitude is None or longitude is None:
        return None
    try:
        return GeoPosition(longitude, latitude, altitude)
    except ValueError as e:
        logger.debug(f"Rejected fix: {e}")
        return None


def read_position(sentence: Sentence) -> Optional[GeoPosition]:
    """
    Position from a GGA or RMC sentence.

    GGA with a reported altitude yields a 3-D position, everything else a
    2-D one. Fix quality 0 (GGA) or status V (RMC) is not a usable fix.
    """
    fields = sentence.fields

    if sentence.sentence_type == 'GGA':
        # time, lat, N/S, lon, E/W, quality, sats, hdop, alt, M, ...
        quality = _field(fields, 5)
        if not quality or quality == '0':
            return None
        altitude = _float(_field(fields, 8))
        return _position(_field(fields, 1), _field(fields, 2),
                         _field(fields, 3), _field(fields, 4), altitude)

    if sentence.sentence_type == 'RMC':
        # time, status, lat, N/S, lon, E/W, sog, cog, date, ...
        if _field(fields, 1) != 'A':
            return None
        return _position(_field(fields, 2), _field(fields, 3),
                         _field(fields, 4), _field(fields, 5))

    return None


def read_azimuth(sentence: Sentence) -> Optional[float]:
    """Compass azimuth in degrees from an HDT, HDM or HDG sentence."""
    if sentence.sentence_type not in HEADING_SENTENCES:
        return None
    return _float(_field(sentence.fields, 0))
