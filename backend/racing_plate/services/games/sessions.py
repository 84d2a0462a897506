import time
from typing import Optional

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from racing_plate import db
from racing_plate.errors import NotFound
from racing_plate.models import (
    SESSION_ABANDONED,
    SESSION_ACTIVE,
    SESSION_COMPLETED,
    GameSession,
    utcnow,
)
from . import leaderboard


class SessionNotFound(NotFound):
    message = 'Game session not found'


def start_session(user_id: int, game_mode: str, difficulty: str = 'medium') -> GameSession:
    session = GameSession(user_id=user_id, game_mode=game_mode, difficulty=difficulty or 'medium')
    db.session.add(session)
    db.session.commit()
    current_app.logger.info(f"[session-start] session={session.id} user={user_id} mode={game_mode}")
    return session


def _close_active(session_id: int, user_id: int, **values) -> GameSession:
    """Move an active session owned by ``user_id`` out of ``active``.

    The status check is part of the UPDATE so two concurrent closes of the
    same session cannot both succeed.
    """
    session = GameSession.query.filter_by(id=session_id, user_id=user_id, status=SESSION_ACTIVE).first()
    if session is None:
        raise SessionNotFound()
    end_time = utcnow()
    duration = max(0, int((end_time - session.start_time).total_seconds()))
    result = db.session.execute(
        update(GameSession)
        .where(GameSession.id == session_id, GameSession.user_id == user_id, GameSession.status == SESSION_ACTIVE)
        .values(end_time=end_time, duration=duration, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise SessionNotFound()
    db.session.commit()
    db.session.refresh(session)
    return session


def end_session(session_id: int, user_id: int, score: int, reported_duration: Optional[float] = None) -> GameSession:
    session = _close_active(
        session_id,
        user_id,
        status=SESSION_COMPLETED,
        score=int(score),
        reported_duration=reported_duration,
    )
    current_app.logger.info(
        f"[session-end] session={session.id} user={user_id} score={session.score} duration={session.duration}s"
    )
    if aggregate_with_retry(session.id):
        leaderboard.broadcast_update(user_id)
    return session


def abandon_session(session_id: int, user_id: int) -> GameSession:
    session = _close_active(session_id, user_id, status=SESSION_ABANDONED)
    current_app.logger.info(f"[session-abandon] session={session.id} user={user_id}")
    return session


def aggregate_with_retry(session_id: int) -> bool:
    """Run the leaderboard step, retrying on storage errors.

    A session that still fails stays unaggregated; ``flask
    leaderboard-reconcile`` picks it up later.
    """
    attempts = max(1, int(current_app.config.get('LEADERBOARD_RETRY_ATTEMPTS', 3)))
    for attempt in range(1, attempts + 1):
        try:
            return leaderboard.aggregate_session(session_id)
        except SQLAlchemyError as exc:
            current_app.logger.warning(
                f"[leaderboard-retry] session={session_id} attempt={attempt}/{attempts} error={exc}"
            )
            if attempt < attempts:
                time.sleep(0.05 * attempt)
    current_app.logger.error(f"[leaderboard-deferred] session={session_id} left for reconcile")
    return False
