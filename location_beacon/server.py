"""
Location Beacon - Server Entry Point

Author: Colin Bitterfield
Email: colin@bitterfield.com
Date Created: 2026-10-17
Date Updated: 2026-10-17
Version: 0.1.0

Applies eventlet monkey patching before flask, socket, threading or pyserial
are imported, so blocking serial reads in the live source yield to the
Socket.IO loop instead of stalling it.
"""

import os

if os.environ.get('ASYNC_MODE', 'eventlet') == 'eventlet':
    import eventlet
    eventlet.monkey_patch()

from location_beacon.main import main  # noqa: E402

if __name__ == '__main__':
    main()
