import logging

import click
from flask import Flask
from flask_bcrypt import Bcrypt
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
from flask_sqlalchemy import SQLAlchemy

from config import get_config

db = SQLAlchemy()
bcrypt = Bcrypt()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


MAIL_BACKENDS = ('smtp', 'console')


def check_settings(config):
    """Return (missing, invalid) for the loaded config.

    ``missing`` lists required keys that are unset or empty; ``invalid`` maps
    malformed keys to a reason.
    """
    required = list(config.get('REQUIRED_SETTINGS', ()))
    if config.get('MAIL_BACKEND') == 'smtp':
        required.extend(config.get('REQUIRED_SMTP_SETTINGS', ()))
    missing = [key for key in required if not config.get(key)]

    invalid = {}
    for key in config.get('INTEGER_SETTINGS', ()):
        value = config.get(key)
        if not isinstance(value, int) or isinstance(value, bool):
            invalid[key] = f"expected an integer, got {value!r}"
    if config.get('MAIL_BACKEND') not in MAIL_BACKENDS:
        invalid['MAIL_BACKEND'] = f"expected one of {list(MAIL_BACKENDS)}, got {config.get('MAIL_BACKEND')!r}"
    return missing, invalid


def create_app(config_class=None):
    from racing_plate.errors import ConfigurationError, register_error_handlers
    from racing_plate.services import EXTENSION_KEY, build_services

    if config_class is None:
        try:
            config_class = get_config()
        except ValueError as exc:
            raise ConfigurationError(invalid={'APP_ENV': str(exc)})

    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    # Fail at startup, not on the first request that needs the value
    missing, invalid = check_settings(flask_app.config)
    if missing or invalid:
        raise ConfigurationError(missing, invalid)

    flask_app.logger.setLevel(getattr(logging, str(flask_app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    migrate.init_app(flask_app, db)
    origins = flask_app.config.get('CORS_ORIGINS') or []
    CORS(flask_app, origins=origins)
    socketio.init_app(flask_app, cors_allowed_origins=origins)

    flask_app.extensions[EXTENSION_KEY] = build_services(flask_app.config)
    register_error_handlers(flask_app)

    from racing_plate.main import main
    flask_app.register_blueprint(main)

    from racing_plate.api.auth import auth
    flask_app.register_blueprint(auth, url_prefix='/api/auth')

    from racing_plate.api.game import game
    flask_app.register_blueprint(game, url_prefix='/api/game')

    from racing_plate.api.media import media
    flask_app.register_blueprint(media, url_prefix='/api/media')

    from racing_plate.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from racing_plate.models import User
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed verified users
            for name in ['testuser1', 'testuser2', 'testuser3']:
                user = User(email=f'{name}@racingplate.dev', username=name, verified=True)
                user.set_password('Password123')
                db.session.add(user)

            db.session.commit()
            click.echo('Database has been reset and seeded!')

    @click.command('leaderboard-reconcile')
    def leaderboard_reconcile_command():
        """Folds completed sessions that missed the leaderboard into it."""
        from racing_plate.services.games.leaderboard import reconcile_pending
        with flask_app.app_context():
            applied = reconcile_pending()
            flask_app.logger.info(f"[leaderboard-reconcile] applied={applied}")
            click.echo(f'Reconciled {applied} session(s).')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(leaderboard_reconcile_command)

    return flask_app
