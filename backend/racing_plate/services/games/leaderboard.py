from typing import List, Optional

from flask import current_app
from sqlalchemy import func, select, update

from racing_plate import db, socketio
from racing_plate.models import (
    SESSION_COMPLETED,
    GameSession,
    LeaderboardEntry,
    User,
    isoformat,
    utcnow,
)


def _upsert_statement(user_id: int, username: str, score: int, playtime: int, now):
    """Insert-or-update with the max/increment evaluated by the database."""
    table = LeaderboardEntry.__table__
    values = dict(
        user_id=user_id,
        username=username,
        best_score=score,
        total_games=1,
        total_playtime=playtime,
        last_played=now,
        created_at=now,
        updated_at=now,
    )
    dialect = db.engine.dialect.name
    if dialect == 'mysql':
        from sqlalchemy.dialects.mysql import insert
        stmt = insert(table).values(**values)
        return stmt.on_duplicate_key_update(
            username=stmt.inserted.username,
            best_score=func.greatest(table.c.best_score, stmt.inserted.best_score),
            total_games=table.c.total_games + 1,
            total_playtime=table.c.total_playtime + stmt.inserted.total_playtime,
            last_played=stmt.inserted.last_played,
            updated_at=stmt.inserted.updated_at,
        )

    if dialect == 'postgresql':
        from sqlalchemy.dialects.postgresql import insert
        greatest = func.greatest
    elif dialect == 'sqlite':
        from sqlalchemy.dialects.sqlite import insert
        # two-argument max() is SQLite's scalar greatest
        greatest = func.max
    else:
        raise RuntimeError(f"Leaderboard upsert not supported on dialect '{dialect}'")

    stmt = insert(table).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=[table.c.user_id],
        set_={
            'username': stmt.excluded.username,
            'best_score': greatest(table.c.best_score, stmt.excluded.best_score),
            'total_games': table.c.total_games + 1,
            'total_playtime': table.c.total_playtime + stmt.excluded.total_playtime,
            'last_played': stmt.excluded.last_played,
            'updated_at': stmt.excluded.updated_at,
        },
    )


def record_result(user_id: int, username: str, score: int, playtime_delta: int, now=None) -> None:
    """Fold one completed result into the user's leaderboard row.

    Runs inside the caller's transaction; the caller commits.
    """
    db.session.execute(_upsert_statement(user_id, username, int(score), int(playtime_delta or 0), now or utcnow()))


def aggregate_session(session_id: int) -> bool:
    """Apply a completed session to the leaderboard exactly once.

    The session row is claimed by setting ``aggregated_at`` with a
    conditional update in the same transaction as the upsert, so replays
    and concurrent retries of the same session are no-ops. Returns True if
    this call applied the session.
    """
    now = utcnow()
    try:
        claimed = db.session.execute(
            update(GameSession)
            .where(
                GameSession.id == session_id,
                GameSession.status == SESSION_COMPLETED,
                GameSession.aggregated_at.is_(None),
            )
            .values(aggregated_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            db.session.rollback()
            return False
        row = db.session.execute(
            select(GameSession.user_id, GameSession.score, GameSession.duration, User.username)
            .join(User, User.id == GameSession.user_id)
            .where(GameSession.id == session_id)
        ).one()
        record_result(row.user_id, row.username, row.score, row.duration or 0, now=now)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    current_app.logger.info(f"[leaderboard] session={session_id} user={row.user_id} score={row.score} applied")
    return True


def pending_session_ids() -> List[int]:
    return list(db.session.scalars(
        select(GameSession.id)
        .where(GameSession.status == SESSION_COMPLETED, GameSession.aggregated_at.is_(None))
        .order_by(GameSession.id)
    ))


def reconcile_pending() -> int:
    """Replay completed sessions that never reached the leaderboard."""
    applied = 0
    for session_id in pending_session_ids():
        if aggregate_session(session_id):
            applied += 1
    return applied


def get_top_scores(limit: int = 10) -> List[dict]:
    entries = (
        LeaderboardEntry.query
        .order_by(LeaderboardEntry.best_score.desc(), LeaderboardEntry.id.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            'rank': idx + 1,
            'user_id': e.user_id,
            'username': e.username,
            'score': e.best_score,
            'total_games': e.total_games,
            'last_played': isoformat(e.last_played),
        }
        for idx, e in enumerate(entries)
    ]


def get_top_scores_for_mode(game_mode: str, limit: int = 10) -> List[dict]:
    """Per-mode board derived from completed sessions."""
    best = func.max(GameSession.score).label('best_score')
    rows = db.session.execute(
        select(
            GameSession.user_id,
            User.username,
            best,
            func.count(GameSession.id).label('total_games'),
            func.max(GameSession.end_time).label('last_played'),
        )
        .join(User, User.id == GameSession.user_id)
        .where(GameSession.status == SESSION_COMPLETED, GameSession.game_mode == game_mode)
        .group_by(GameSession.user_id, User.username)
        .order_by(best.desc(), func.min(GameSession.id).asc())
        .limit(limit)
    ).all()
    return [
        {
            'rank': idx + 1,
            'user_id': r.user_id,
            'username': r.username,
            'score': int(r.best_score),
            'total_games': int(r.total_games),
            'last_played': isoformat(r.last_played),
        }
        for idx, r in enumerate(rows)
    ]


def get_user_rank(user_id: int) -> Optional[int]:
    entry = LeaderboardEntry.query.filter_by(user_id=user_id).first()
    if entry is None:
        return None
    better = db.session.scalar(
        select(func.count(func.distinct(LeaderboardEntry.user_id)))
        .where(LeaderboardEntry.best_score > entry.best_score)
    )
    return int(better or 0) + 1


def get_user_stats(user_id: int) -> dict:
    """Aggregate straight from the session rows, independent of the leaderboard table."""
    row = db.session.execute(
        select(
            func.count(GameSession.id),
            func.coalesce(func.sum(GameSession.score), 0),
            func.coalesce(func.avg(GameSession.score), 0),
            func.coalesce(func.max(GameSession.score), 0),
            func.coalesce(func.sum(GameSession.duration), 0),
        ).where(GameSession.user_id == user_id, GameSession.status == SESSION_COMPLETED)
    ).one()
    total_games, total_score, average_score, best_score, total_playtime = row
    return {
        'total_games': int(total_games),
        'total_score': int(total_score),
        'average_score': float(average_score),
        'best_score': int(best_score),
        'total_playtime': int(total_playtime),
    }


def get_personal_bests(user_id: int) -> dict:
    entry = LeaderboardEntry.query.filter_by(user_id=user_id).first()
    if entry is None:
        return {'best_score': 0, 'total_games': 0, 'total_playtime': 0, 'last_played': None}
    return {
        'best_score': entry.best_score,
        'total_games': entry.total_games,
        'total_playtime': entry.total_playtime,
        'last_played': isoformat(entry.last_played),
    }


def broadcast_update(user_id: int) -> None:
    entry = LeaderboardEntry.query.filter_by(user_id=user_id).first()
    if entry is None:
        return
    payload = entry.to_dict()
    payload['rank'] = get_user_rank(user_id)
    socketio.emit('leaderboard_update', payload, to='leaderboard', namespace='/ws')
