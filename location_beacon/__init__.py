"""
Location Beacon

Author: Colin Bitterfield
Email: colin@bitterfield.com
Date Created: 2026-10-17
Date Updated: 2026-10-17
Version: 0.1.0

Tracks position and heading from live NMEA devices or a replayed GPX track
log and broadcasts the location over UDP.
"""

__version__ = "0.1.0"
