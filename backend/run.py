import sys

from racing_plate import create_app, socketio
from racing_plate.errors import ConfigurationError

try:
    app = create_app()
except ConfigurationError as exc:
    sys.exit(f"[startup] {exc}")

if __name__ == '__main__':
    # Use SocketIO server to enable websockets in dev
    socketio.run(app, port=app.config['PORT'], debug=app.config.get('DEBUG', False))
