from flask import Blueprint, current_app, jsonify

from racing_plate.models import isoformat
from racing_plate.schemas import (
    LeaderboardQuery,
    SessionEndBody,
    SessionRefBody,
    SessionStartBody,
    parse_body,
    parse_query,
)
from racing_plate.services.auth.tokens import token_required
from racing_plate.services.games import leaderboard, sessions

game = Blueprint('game', __name__)


@game.route('/session/start', methods=['POST'])
@token_required
def start_session(auth):
    body = parse_body(SessionStartBody)
    session = sessions.start_session(auth.user_id, body.game_mode, body.difficulty)
    return jsonify({
        'message': 'Game session started',
        'session_id': session.id,
        'start_time': isoformat(session.start_time),
    }), 201


@game.route('/session/end', methods=['POST'])
@token_required
def end_session(auth):
    body = parse_body(SessionEndBody)
    session = sessions.end_session(body.session_id, auth.user_id, body.score, body.duration)
    return jsonify({
        'message': 'Game session ended',
        'session_id': session.id,
        'final_score': session.score,
        'duration': session.duration,
    })


@game.route('/session/abandon', methods=['POST'])
@token_required
def abandon_session(auth):
    body = parse_body(SessionRefBody)
    session = sessions.abandon_session(body.session_id, auth.user_id)
    return jsonify({'message': 'Game session abandoned', 'session': session.to_dict()})


@game.route('/leaderboard', methods=['GET'])
def get_leaderboard():
    query = parse_query(LeaderboardQuery)
    limit = query.limit or int(current_app.config.get('LEADERBOARD_DEFAULT_LIMIT', 10))
    if query.game_mode:
        entries = leaderboard.get_top_scores_for_mode(query.game_mode, limit)
    else:
        entries = leaderboard.get_top_scores(limit)
    return jsonify({'message': 'Leaderboard retrieved', 'leaderboard': entries})


@game.route('/rank', methods=['GET'])
@token_required
def get_rank(auth):
    return jsonify({'rank': leaderboard.get_user_rank(auth.user_id)})


@game.route('/stats', methods=['GET'])
@token_required
def get_stats(auth):
    return jsonify({'stats': leaderboard.get_user_stats(auth.user_id)})


@game.route('/personal-bests', methods=['GET'])
@token_required
def get_personal_bests(auth):
    return jsonify({'personal_bests': leaderboard.get_personal_bests(auth.user_id)})
