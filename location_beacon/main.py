"""
Location Beacon - Main Application

Author: Colin Bitterfield
Email: colin@bitterfield.com
Date Created: 2026-10-17
Date Updated: 2026-10-17
Version: 0.1.0

Tracks position and heading from a live NMEA feed or a replayed GPX log and
broadcasts the location over UDP. Provides a REST API and Socket.IO events
for control and display.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from flask import Flask, jsonify, request
from flask_socketio import SocketIO, emit
from werkzeug.utils import secure_filename

from location_beacon.config import Settings, check_frequency, check_port
from location_beacon.messages import GeoPosition
from location_beacon.publisher import LocationPublisher, UdpSender
from location_beacon.sources import ConfigurationError, PositionHeadingSource, SourceMode

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Objects wired together by create_app"""
    settings: Settings
    socketio: SocketIO
    source: PositionHeadingSource
    publisher: LocationPublisher


def _error(message: str, code: int = 400):
    return jsonify({'status': 'error', 'error': message}), code


def _position_from_json(data: dict) -> GeoPosition:
    """
    Raises:
        ValueError: Missing or invalid coordinates
    """
    try:
        latitude = float(data['latitude'])
        longitude = float(data['longitude'])
    except (KeyError, TypeError) as e:
        raise ValueError("location needs latitude and longitude") from e
    altitude = data.get('altitude')
    try:
        altitude = float(altitude) if altitude is not None else None
    except TypeError as e:
        raise ValueError("altitude must be a number") from e
    return GeoPosition(longitude, latitude, altitude)


def _json_flag(data: dict, name: str) -> bool:
    """
    Raises:
        ValueError: The value is not a JSON boolean
    """
    value = data[name]
    if not isinstance(value, bool):
        raise ValueError(f"'{name}' must be true or false, got {value!r}")
    return value


def _broadcast_changes(data: dict) -> dict:
    """
    Validate a broadcast update before any of it is applied.

    Returns:
        Field name to converted value, with 'enabled' last

    Raises:
        ValueError: Any field is invalid
    """
    changes = {}
    if 'message_type' in data:
        message_type = data['message_type']
        if not isinstance(message_type, str) or not message_type:
            raise ValueError("message_type must be a non-empty string")
        changes['message_type'] = message_type
    if 'port' in data:
        changes['port'] = check_port(data['port'])
    if 'frequency' in data:
        changes['frequency'] = check_frequency(data['frequency'])
    if 'location' in data:
        changes['location'] = _position_from_json(data['location'] or {})
    if 'use_current_location' in data:
        changes['use_current_location'] = _json_flag(data, 'use_current_location')
    if 'enabled' in data:
        changes['enabled'] = _json_flag(data, 'enabled')
    return changes


def create_app(settings: Optional[Settings] = None, scheduler=None, sender=None):
    """
    Build the Flask application and its services.

    Args:
        settings: Service settings (from the environment when omitted)
        scheduler: Background task scheduler; defaults to the Socket.IO server
        sender: Datagram sender; defaults to a UdpSender on the broadcast host

    Returns:
        (app, services)
    """
    settings = settings or Settings.from_env()

    app = Flask(__name__)
    app.config['SECRET_KEY'] = settings.secret_key
    socketio = SocketIO(app, cors_allowed_origins="*", async_mode=settings.async_mode)
    scheduler = scheduler or socketio

    source = PositionHeadingSource(
        scheduler,
        track_log=settings.gpx_file,
        default_track_log=settings.default_track_log,
        serial_port=settings.serial_port,
        serial_baudrate=settings.serial_baudrate,
        compass_port=settings.compass_port,
        sim_update_interval=settings.sim_update_interval,
        sim_speed_multiplier=settings.sim_speed_multiplier,
    )
    publisher = LocationPublisher(
        source,
        sender or UdpSender(settings.broadcast.host),
        scheduler,
        config=settings.broadcast,
    )
    services = Services(settings, socketio, source, publisher)
    app.extensions['location_beacon'] = services

    if settings.source_mode == SourceMode.SIMULATED.value:
        try:
            source.set_mode(SourceMode.SIMULATED)
        except ConfigurationError as e:
            logger.error(f"Cannot start in simulated mode: {e}")

    # Push updates to display clients (requires app context from background tasks)
    def push(event: str, payload: dict) -> None:
        with app.app_context():
            socketio.emit(event, payload)

    @source.on_position_update
    def push_position(position):
        push('position_update', position.to_dict())

    @source.on_heading_update
    def push_heading(heading):
        push('heading_update', {'heading': heading})

    @source.on_relative_heading_update
    def push_relative_heading(heading):
        push('relative_heading_update', {'relative_heading': heading})

    @source.on_source_unavailable
    def push_unavailable(mode, reason):
        push('source_status', {'mode': mode.value, 'available': False, 'error': reason})

    @publisher.on_message_changed
    def push_message(message):
        push('message_update', message.to_dict())

    def status() -> dict:
        message = publisher.current_message()
        return {
            'source': source.get_status(),
            'broadcast': publisher.get_status(),
            'message': message.to_dict() if message else None,
        }

    # Flask routes
    @app.route('/')
    @app.route('/api/status')
    def get_status():
        """Get source and broadcast status"""
        return jsonify(status())

    @app.route('/api/source/mode', methods=['POST'])
    def set_mode():
        """Switch between live and simulated updates"""
        data = request.get_json(silent=True) or {}
        mode = str(data.get('mode', '')).lower()
        try:
            source.set_mode(mode)
        except ConfigurationError as e:
            return _error(str(e))
        except ValueError:
            return _error(f"Unknown mode: {mode}")
        return jsonify({'status': 'success', 'source': source.get_status()})

    @app.route('/api/source/enabled', methods=['POST'])
    def set_source_enabled():
        """Start or stop location updates"""
        data = request.get_json(silent=True) or {}
        if 'enabled' not in data:
            return _error("Missing 'enabled'")
        try:
            enabled = _json_flag(data, 'enabled')
        except ValueError as e:
            return _error(str(e))
        source.set_enabled(enabled)
        return jsonify({'status': 'success', 'source': source.get_status()})

    @app.route('/api/source/track', methods=['POST'])
    def set_track():
        """Set the GPX log for simulated mode, by path or upload"""
        if 'file' in request.files:
            file = request.files['file']
            filename = secure_filename(file.filename or '')
            if not filename:
                return _error('No file selected')
            upload_dir = Path(settings.upload_dir)
            upload_dir.mkdir(parents=True, exist_ok=True)
            path = upload_dir / filename
            file.save(str(path))
            logger.info(f"Track log uploaded: {path}")
        else:
            data = request.get_json(silent=True) or {}
            if not data.get('path'):
                return _error('No file uploaded')
            path = data['path']

        source.set_track_log(path)
        return jsonify({'status': 'success', 'track_log': str(source.track_log)})

    @app.route('/api/source/viewer-heading', methods=['POST'])
    def set_viewer_heading():
        """Update the viewer orientation used for relative heading"""
        data = request.get_json(silent=True) or {}
        try:
            heading = float(data['heading'])
        except (KeyError, TypeError, ValueError):
            return _error("Missing or invalid 'heading'")
        accepted = source.set_viewer_heading(heading)
        return jsonify({
            'status': 'success',
            'accepted': accepted,
            'viewer_heading': source.viewer_heading,
            'relative_heading': source.relative_heading,
        })

    @app.route('/api/broadcast', methods=['GET'])
    def get_broadcast():
        """Get broadcast settings"""
        return jsonify(publisher.get_status())

    @app.route('/api/broadcast', methods=['POST'])
    def set_broadcast():
        """Update broadcast settings"""
        data = request.get_json(silent=True) or {}
        try:
            changes = _broadcast_changes(data)
        except ValueError as e:
            return _error(str(e))

        setters = {
            'message_type': publisher.set_message_type,
            'port': publisher.set_port,
            'frequency': publisher.set_frequency,
            'location': publisher.set_location,
            'use_current_location': publisher.set_use_current_location,
            'enabled': publisher.set_enabled,
        }
        for name, value in changes.items():
            setters[name](value)

        logger.info(f"Broadcast updated: {publisher.message_type} on port {publisher.port} "
                    f"every {publisher.frequency} ms")
        return jsonify({'status': 'success', 'broadcast': publisher.get_status()})

    @app.route('/api/broadcast/message', methods=['GET'])
    def get_message():
        """Preview the most recent broadcast"""
        message = publisher.current_message()
        if message is None:
            return _error('No message broadcast yet', 404)
        return jsonify(message.to_dict())

    # WebSocket events
    @socketio.on('connect')
    def handle_connect():
        """Send current status to a new display client"""
        emit('status', status())

    @socketio.on('viewer_heading')
    def handle_viewer_heading(data):
        """Viewer orientation pushed by the display client"""
        try:
            source.set_viewer_heading(float(data['heading']))
        except (KeyError, TypeError, ValueError):
            logger.debug(f"Ignoring invalid viewer heading event: {data}")

    return app, services


def main():
    """Main entry point"""
    settings = Settings.from_env()

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format='%(levelname)s:%(name)s:%(message)s'
    )

    app, services = create_app(settings)

    print("=" * 60)
    print("  Location Beacon")
    print("=" * 60)
    print()
    print(f"Source mode: {services.source.mode.value}")
    print(f"Track log: {services.source.track_log}")
    print(f"UDP output: {settings.broadcast.host}:{settings.broadcast.port} "
          f"every {settings.broadcast.frequency} ms")
    print()

    if settings.auto_start:
        services.source.set_enabled(True)
        print("Location updates auto-started")
    if settings.broadcast_enabled:
        services.publisher.set_enabled(True)
        print("Broadcast auto-started")

    print(f"Web interface: http://{settings.host}:{settings.port}")
    print("=" * 60)

    services.socketio.run(app, host=settings.host, port=settings.port, debug=settings.debug,
                          use_reloader=False)

