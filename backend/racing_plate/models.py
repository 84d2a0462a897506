from datetime import datetime, timezone

from racing_plate import db, bcrypt


SESSION_ACTIVE = 'active'
SESSION_COMPLETED = 'completed'
SESSION_ABANDONED = 'abandoned'

GAME_MODES = ('race', 'time-trial', 'practice', 'tournament')
DIFFICULTIES = ('easy', 'medium', 'hard')
SUBSCRIPTION_TIERS = ('free', 'premium', 'pro')


def utcnow():
    """Naive UTC timestamp; SQLite drops tzinfo so everything is stored naive."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    return value.isoformat() + 'Z' if value else None


class User(db.Model):
    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    # Always stored lower-cased; uniqueness is therefore case-insensitive.
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    username = db.Column(db.String(64), nullable=False)
    password_hash = db.Column(db.String(128), nullable=False)
    verified = db.Column(db.Boolean, default=False, nullable=False)
    subscription = db.Column(db.String(16), default='free', nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    sessions = db.relationship('GameSession', back_populates='user', lazy='dynamic')

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'username': self.username,
            'verified': self.verified,
            'subscription': self.subscription,
        }


class GameSession(db.Model):
    __tablename__ = 'game_sessions'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    game_mode = db.Column(db.String(32), nullable=False, default='race')
    difficulty = db.Column(db.String(16), nullable=False, default='medium')
    status = db.Column(db.String(16), nullable=False, default=SESSION_ACTIVE, index=True)  # active, completed, abandoned
    start_time = db.Column(db.DateTime, nullable=False, default=utcnow)
    end_time = db.Column(db.DateTime, nullable=True)
    duration = db.Column(db.Integer, nullable=True)  # seconds, end_time - start_time
    reported_duration = db.Column(db.Float, nullable=True)  # client-side clock, informational
    score = db.Column(db.Integer, nullable=False, default=0)
    aggregated_at = db.Column(db.DateTime, nullable=True)

    user = db.relationship('User', back_populates='sessions')

    __table_args__ = (
        db.Index('ix_game_sessions_user_status', 'user_id', 'status'),
        db.Index('ix_game_sessions_mode_score', 'game_mode', 'score'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'game_mode': self.game_mode,
            'difficulty': self.difficulty,
            'status': self.status,
            'start_time': isoformat(self.start_time),
            'end_time': isoformat(self.end_time),
            'duration': self.duration,
            'score': self.score,
        }


class LeaderboardEntry(db.Model):
    """Per-user running summary, one row per user across all game modes."""
    __tablename__ = 'leaderboard'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, unique=True)
    username = db.Column(db.String(64), nullable=False)
    best_score = db.Column(db.Integer, nullable=False, default=0, index=True)
    total_games = db.Column(db.Integer, nullable=False, default=0)
    total_playtime = db.Column(db.Integer, nullable=False, default=0)
    last_played = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'username': self.username,
            'best_score': self.best_score,
            'total_games': self.total_games,
            'total_playtime': self.total_playtime,
            'last_played': isoformat(self.last_played),
        }
