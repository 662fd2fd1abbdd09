"""Tests for the REST API, Socket.IO events and environment settings."""

import importlib
import io
import sys
import types

import pytest

from location_beacon.config import DEFAULT_TRACK_LOG, Settings
from location_beacon.main import create_app, main
from location_beacon.sources import SourceMode

from conftest import GPX_TRACK


@pytest.fixture
def settings(tmp_path, track_file):
    return Settings(async_mode='threading', default_track_log=track_file,
                    upload_dir=str(tmp_path / 'uploads'))


@pytest.fixture
def app_services(settings, scheduler, sender):
    return create_app(settings, scheduler=scheduler, sender=sender)


@pytest.fixture
def client(app_services):
    app, _ = app_services
    app.config['TESTING'] = True
    return app.test_client()


@pytest.fixture
def services(app_services):
    return app_services[1]


def test_status(client):
    response = client.get('/api/status')
    assert response.status_code == 200
    data = response.get_json()
    assert data['source']['mode'] == 'live'
    assert data['source']['enabled'] is False
    assert data['broadcast']['enabled'] is False
    assert data['message'] is None


class TestSourceApi:

    def test_switch_to_simulated(self, client, services):
        response = client.post('/api/source/mode', json={'mode': 'simulated'})
        assert response.status_code == 200
        assert services.source.mode is SourceMode.SIMULATED

    def test_unknown_mode(self, client, services):
        response = client.post('/api/source/mode', json={'mode': 'bogus'})
        assert response.status_code == 400
        assert services.source.mode is SourceMode.LIVE

    def test_simulated_without_any_log(self, scheduler, sender):
        app, services = create_app(Settings(async_mode='threading', default_track_log=None),
                                   scheduler=scheduler, sender=sender)
        response = app.test_client().post('/api/source/mode', json={'mode': 'simulated'})

        assert response.status_code == 400
        assert 'track log' in response.get_json()['error']
        assert services.source.mode is SourceMode.LIVE

    def test_enable_requires_flag(self, client):
        assert client.post('/api/source/enabled', json={}).status_code == 400

    @pytest.mark.parametrize("value", ["false", "true", 0, 1, None])
    def test_enable_accepts_only_booleans(self, client, services, value):
        response = client.post('/api/source/enabled', json={'enabled': value})
        assert response.status_code == 400
        assert services.source.enabled is False

    def test_enable_simulated_replays(self, client, services, scheduler):
        client.post('/api/source/mode', json={'mode': 'simulated'})
        response = client.post('/api/source/enabled', json={'enabled': True})
        assert response.get_json()['source']['enabled'] is True

        scheduler.run(until=0.0)
        assert services.source.position.longitude == pytest.approx(0.0)
        assert services.source.heading == pytest.approx(90.0)

    def test_upload_track(self, client, services, settings):
        data = {'file': (io.BytesIO(GPX_TRACK.encode('utf-8')), '../harbor loop.gpx')}
        response = client.post('/api/source/track', data=data,
                               content_type='multipart/form-data')

        assert response.status_code == 200
        saved = services.source.track_log
        assert saved.name == 'harbor_loop.gpx'
        assert str(saved.parent) == settings.upload_dir
        assert saved.read_text() == GPX_TRACK

    def test_track_by_path(self, client, services):
        response = client.post('/api/source/track', json={'path': str(DEFAULT_TRACK_LOG)})
        assert response.status_code == 200
        assert services.source.track_log == DEFAULT_TRACK_LOG

    def test_track_needs_file_or_path(self, client):
        assert client.post('/api/source/track', json={}).status_code == 400

    def test_viewer_heading(self, client):
        response = client.post('/api/source/viewer-heading', json={'heading': 45.0})
        data = response.get_json()
        assert data['accepted'] is True
        assert data['viewer_heading'] == 45.0
        assert data['relative_heading'] is None

        response = client.post('/api/source/viewer-heading', json={'heading': 45.05})
        assert response.get_json()['accepted'] is False

    def test_viewer_heading_invalid(self, client):
        assert client.post('/api/source/viewer-heading', json={'heading': 'north'}).status_code == 400


class TestBroadcastApi:

    def test_update_settings(self, client, services):
        response = client.post('/api/broadcast', json={
            'message_type': 'spot_report',
            'port': 50000,
            'frequency': 500,
            'location': {'latitude': 36.6, 'longitude': -121.9},
            'use_current_location': False,
        })
        assert response.status_code == 200
        status = client.get('/api/broadcast').get_json()
        assert status['message_type'] == 'spot_report'
        assert status['port'] == 50000
        assert status['frequency'] == 500
        assert status['use_current_location'] is False
        assert services.publisher.location.latitude == 36.6

    @pytest.mark.parametrize("body", [
        {'port': 0},
        {'port': 'abc'},
        {'port': True},
        {'frequency': -1},
        {'frequency': 1.5},
        {'message_type': ''},
        {'message_type': 7},
        {'location': {'latitude': 95.0, 'longitude': 0.0}},
        {'location': {'latitude': 1.0}},
        {'location': {'latitude': 1.0, 'longitude': 2.0, 'altitude': [3]}},
    ])
    def test_rejects_invalid(self, client, body):
        assert client.post('/api/broadcast', json=body).status_code == 400

    def test_rejected_update_changes_nothing(self, client, services):
        response = client.post('/api/broadcast', json={
            'message_type': 'spot_report',
            'port': 50000,
            'location': {'latitude': 36.6, 'longitude': -121.9},
            'frequency': 0,
        })
        assert response.status_code == 400

        status = client.get('/api/broadcast').get_json()
        assert status['port'] == 45678
        assert status['message_type'] == 'position_report'
        assert status['location'] is None

    @pytest.mark.parametrize("body", [
        {'enabled': 'false'},
        {'enabled': 'true'},
        {'enabled': 1},
        {'use_current_location': 'no'},
        {'use_current_location': 0},
    ])
    def test_flags_accept_only_booleans(self, client, services, sender, scheduler, body):
        response = client.post('/api/broadcast', json=body)
        assert response.status_code == 400
        assert services.publisher.enabled is False
        assert services.publisher.use_current_location is True

        scheduler.run(until=10.0)
        assert sender.sent == []

    def test_message_preview(self, client, services, sender, scheduler):
        assert client.get('/api/broadcast/message').status_code == 404

        client.post('/api/broadcast', json={
            'location': {'latitude': 36.6, 'longitude': -121.9},
            'use_current_location': False,
            'frequency': 1000,
            'enabled': True,
        })
        scheduler.run(until=1.0)

        response = client.get('/api/broadcast/message')
        assert response.status_code == 200
        assert response.get_json()['position']['longitude'] == -121.9
        assert len(sender.sent) == 1


class TestSocketEvents:

    def test_connect_sends_status(self, app_services):
        app, services = app_services
        socket_client = services.socketio.test_client(app)
        received = socket_client.get_received()

        assert received[0]['name'] == 'status'
        assert received[0]['args'][0]['source']['mode'] == 'live'
        socket_client.disconnect()

    def test_position_updates_are_pushed(self, app_services, scheduler):
        app, services = app_services
        socket_client = services.socketio.test_client(app)
        socket_client.get_received()

        services.source.set_mode('simulated')
        services.source.set_enabled(True)
        scheduler.run(until=0.0)

        names = [event['name'] for event in socket_client.get_received()]
        assert names[:3] == ['position_update', 'heading_update', 'relative_heading_update']
        socket_client.disconnect()

    def test_viewer_heading_event(self, app_services):
        app, services = app_services
        socket_client = services.socketio.test_client(app)
        socket_client.emit('viewer_heading', {'heading': 90.0})
        assert services.source.viewer_heading == 90.0
        socket_client.disconnect()


class TestSettings:

    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.port == 8082
        assert settings.auto_start is True
        assert settings.source_mode == 'live'
        assert settings.serial_baudrate == 4800
        assert settings.broadcast.port == 45678
        assert settings.broadcast.frequency == 3000
        assert settings.broadcast_enabled is False

    def test_overrides(self):
        settings = Settings.from_env({
            'PORT': '9000',
            'DEBUG': 'True',
            'SOURCE_MODE': 'SIMULATED',
            'GPX_FILE': '/tmp/track.gpx',
            'BROADCAST_PORT': '50000',
            'BROADCAST_FREQUENCY': '250',
            'BROADCAST_ENABLED': 'true',
            'MESSAGE_TYPE': 'spot_report',
        })
        assert settings.port == 9000
        assert settings.debug is True
        assert settings.source_mode == 'simulated'
        assert settings.gpx_file == '/tmp/track.gpx'
        assert settings.broadcast.port == 50000
        assert settings.broadcast.frequency == 250
        assert settings.broadcast.message_type == 'spot_report'
        assert settings.broadcast_enabled is True

    @pytest.mark.parametrize("env", [
        {'PORT': 'eighty'},
        {'BROADCAST_PORT': '70000'},
        {'BROADCAST_FREQUENCY': '0'},
        {'SOURCE_MODE': 'satellite'},
        {'SIM_SPEED_MULTIPLIER': '0'},
    ])
    def test_invalid(self, env):
        with pytest.raises(ValueError):
            Settings.from_env(env)


class TestEntryPoint:

    @pytest.fixture
    def patch_calls(self, monkeypatch):
        calls = []
        monkeypatch.setitem(sys.modules, 'eventlet',
                            types.SimpleNamespace(monkey_patch=lambda: calls.append('patched')))
        monkeypatch.delitem(sys.modules, 'location_beacon.server', raising=False)
        return calls

    def test_patches_on_import_in_eventlet_mode(self, monkeypatch, patch_calls):
        monkeypatch.delenv('ASYNC_MODE', raising=False)
        server = importlib.import_module('location_beacon.server')

        assert patch_calls == ['patched']
        assert server.main is main

    def test_threading_mode_is_not_patched(self, monkeypatch, patch_calls):
        monkeypatch.setenv('ASYNC_MODE', 'threading')
        importlib.import_module('location_beacon.server')
        assert patch_calls == []
