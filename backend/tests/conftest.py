import os
import re
import sys
import pytest

# Ensure the backend root (containing the `racing_plate` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from config import Config
from racing_plate import create_app, db, socketio
from racing_plate.errors import DeliveryFailed


class TestConfig(Config):
    __test__ = False
    TESTING = True
    DEBUG = False
    SECRET_KEY = 'test-secret'
    JWT_SECRET_KEY = 'test-jwt-secret'
    JWT_EXPIRES_IN = 3600
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BCRYPT_LOG_ROUNDS = 4
    MAIL_BACKEND = 'console'
    REDIS_URL = None
    REQUIRE_VERIFIED_EMAIL = True
    AUTH_RATE_LIMIT_ATTEMPTS = 5
    AUTH_RATE_LIMIT_WINDOW_SEC = 900
    LEADERBOARD_RETRY_ATTEMPTS = 1
    CORS_ORIGINS = ['http://localhost:5173']


class RecordingNotifier:
    """Captures outgoing mail so tests can read issued codes."""

    def __init__(self):
        self.outbox = []
        self.fail = False

    def send(self, to, subject, body):
        if self.fail:
            raise DeliveryFailed()
        self.outbox.append({'to': to, 'subject': subject, 'body': body})

    def last_code(self, to):
        for message in reversed(self.outbox):
            if message['to'] == to:
                return re.search(r'\b(\d{6})\b', message['body']).group(1)
        return None


def _build_app(config_class, media_root):
    application = create_app(config_class)
    application.config['MEDIA_ROOT'] = str(media_root)
    application.extensions['racing_plate'].notifier = RecordingNotifier()
    return application


@pytest.fixture()
def flask_app(tmp_path):
    application = _build_app(TestConfig, tmp_path / 'media')
    with application.app_context():
        # Ensure models are imported so tables are created
        import racing_plate.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def file_app(tmp_path):
    """App on a file-backed SQLite database, for tests that use several threads."""

    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'racing_plate.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'timeout': 30}}
        LEADERBOARD_RETRY_ATTEMPTS = 3

    application = _build_app(FileConfig, tmp_path / 'media')
    with application.app_context():
        import racing_plate.models  # noqa: F401
        db.create_all()
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def notifier(flask_app):
    return flask_app.extensions['racing_plate'].notifier


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')


@pytest.fixture()
def make_player(client, notifier):
    """Register and verify a user over HTTP; returns (token, user dict)."""

    def _make(username, email=None, password='Secret123'):
        email = email or f"{username.lower()}@racingplate.io"
        res = client.post('/api/auth/register', json={'email': email, 'password': password, 'username': username})
        assert res.status_code == 201, res.get_json()
        code = notifier.last_code(email)
        res = client.post('/api/auth/verify-email', json={'email': email, 'code': code})
        assert res.status_code == 200, res.get_json()
        data = res.get_json()
        return data['token'], data['user']

    return _make


def auth_header(token):
    return {'Authorization': f'Bearer {token}'}
