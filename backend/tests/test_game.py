from datetime import timedelta

from sqlalchemy.exc import OperationalError

from conftest import auth_header
from racing_plate import db
from racing_plate.models import GameSession, LeaderboardEntry
from racing_plate.services.games import leaderboard


def _start(client, token, mode='race', difficulty='medium'):
    res = client.post('/api/game/session/start', json={'game_mode': mode, 'difficulty': difficulty},
                      headers=auth_header(token))
    assert res.status_code == 201, res.get_json()
    return res.get_json()['session_id']


def _play(client, token, score, mode='race'):
    session_id = _start(client, token, mode)
    res = client.post('/api/game/session/end', json={'session_id': session_id, 'score': score},
                      headers=auth_header(token))
    assert res.status_code == 200, res.get_json()
    return session_id


def _locked(*args, **kwargs):
    raise OperationalError('INSERT INTO leaderboard', {}, Exception('database is locked'))


def test_start_and_end_session(client, make_player):
    token, _ = make_player('Alice')
    res = client.post('/api/game/session/start', json={'gameMode': 'time-trial'}, headers=auth_header(token))
    assert res.status_code == 201
    data = res.get_json()
    assert data['start_time'].endswith('Z')

    session = db.session.get(GameSession, data['session_id'])
    assert session.status == 'active'
    assert session.difficulty == 'medium'

    res = client.post('/api/game/session/end', json={'sessionId': data['session_id'], 'score': 420, 'duration': 75.5},
                      headers=auth_header(token))
    assert res.status_code == 200
    ended = res.get_json()
    assert ended['session_id'] == data['session_id']
    assert ended['final_score'] == 420
    assert ended['duration'] >= 0

    db.session.expire_all()
    session = db.session.get(GameSession, data['session_id'])
    assert session.status == 'completed'
    assert session.reported_duration == 75.5
    assert session.aggregated_at is not None


def test_duration_is_measured_on_the_server(client, make_player):
    token, _ = make_player('Alice')
    session_id = _start(client, token)
    session = db.session.get(GameSession, session_id)
    session.start_time = session.start_time - timedelta(seconds=90)
    db.session.commit()

    res = client.post('/api/game/session/end', json={'session_id': session_id, 'score': 10, 'duration': 5},
                      headers=auth_header(token))
    assert 90 <= res.get_json()['duration'] <= 91


def test_session_cannot_be_ended_twice(client, make_player):
    token, _ = make_player('Alice')
    session_id = _play(client, token, 100)
    res = client.post('/api/game/session/end', json={'session_id': session_id, 'score': 999},
                      headers=auth_header(token))
    assert res.status_code == 404
    assert res.get_json()['error'] == 'Game session not found'
    bests = client.get('/api/game/personal-bests', headers=auth_header(token)).get_json()['personal_bests']
    assert (bests['best_score'], bests['total_games']) == (100, 1)


def test_unknown_or_foreign_session_is_not_found(client, make_player):
    alice, _ = make_player('Alice')
    bob, _ = make_player('Bob')
    session_id = _start(client, alice)

    foreign = client.post('/api/game/session/end', json={'session_id': session_id, 'score': 5},
                          headers=auth_header(bob))
    assert foreign.status_code == 404
    unknown = client.post('/api/game/session/end', json={'session_id': 9999, 'score': 5},
                          headers=auth_header(alice))
    assert unknown.status_code == 404
    # still active for its owner
    res = client.post('/api/game/session/end', json={'session_id': session_id, 'score': 5},
                      headers=auth_header(alice))
    assert res.status_code == 200


def test_leaderboard_keeps_best_score_and_counts_games(client, make_player):
    alice, alice_user = make_player('Alice')
    for score in (50, 120, 80):
        _play(client, alice, score)

    board = client.get('/api/game/leaderboard').get_json()['leaderboard']
    assert len(board) == 1
    assert board[0]['user_id'] == alice_user['id']
    assert board[0]['username'] == 'Alice'
    assert board[0]['score'] == 120
    assert board[0]['total_games'] == 3

    stats = client.get('/api/game/stats', headers=auth_header(alice)).get_json()['stats']
    assert stats['total_games'] == 3
    assert stats['total_score'] == 250
    assert stats['best_score'] == 120
    assert round(stats['average_score'], 2) == 83.33

    bests = client.get('/api/game/personal-bests', headers=auth_header(alice)).get_json()['personal_bests']
    assert bests['best_score'] == stats['best_score']
    assert bests['total_games'] == stats['total_games']
    assert bests['total_playtime'] == stats['total_playtime']


def test_leaderboard_order_limit_and_rank(client, make_player):
    alice, _ = make_player('Alice')
    bob, _ = make_player('Bob')
    carol, _ = make_player('Carol')
    _play(client, alice, 120)
    _play(client, bob, 200)
    _play(client, carol, 90)

    board = client.get('/api/game/leaderboard?limit=2').get_json()['leaderboard']
    assert [(e['rank'], e['username'], e['score']) for e in board] == [(1, 'Bob', 200), (2, 'Alice', 120)]

    full = client.get('/api/game/leaderboard').get_json()['leaderboard']
    for token, entry in zip((bob, alice, carol), full):
        rank = client.get('/api/game/rank', headers=auth_header(token)).get_json()['rank']
        assert rank == entry['rank']


def test_tied_scores_share_rank_and_list_in_arrival_order(client, make_player):
    alice, _ = make_player('Alice')
    bob, _ = make_player('Bob')
    _play(client, alice, 100)
    _play(client, bob, 100)

    board = client.get('/api/game/leaderboard').get_json()['leaderboard']
    assert [e['username'] for e in board] == ['Alice', 'Bob']
    assert client.get('/api/game/rank', headers=auth_header(alice)).get_json()['rank'] == 1
    assert client.get('/api/game/rank', headers=auth_header(bob)).get_json()['rank'] == 1


def test_rank_and_bests_without_games(client, make_player):
    token, _ = make_player('Alice')
    assert client.get('/api/game/rank', headers=auth_header(token)).get_json()['rank'] is None
    bests = client.get('/api/game/personal-bests', headers=auth_header(token)).get_json()['personal_bests']
    assert bests == {'best_score': 0, 'total_games': 0, 'total_playtime': 0, 'last_played': None}
    stats = client.get('/api/game/stats', headers=auth_header(token)).get_json()['stats']
    assert stats['total_games'] == 0 and stats['average_score'] == 0


def test_abandoned_session_is_not_scored(client, make_player):
    token, _ = make_player('Alice')
    session_id = _start(client, token)
    res = client.post('/api/game/session/abandon', json={'session_id': session_id}, headers=auth_header(token))
    assert res.status_code == 200
    assert res.get_json()['session']['status'] == 'abandoned'

    res = client.post('/api/game/session/end', json={'session_id': session_id, 'score': 500},
                      headers=auth_header(token))
    assert res.status_code == 404
    assert client.get('/api/game/leaderboard').get_json()['leaderboard'] == []
    assert client.get('/api/game/stats', headers=auth_header(token)).get_json()['stats']['total_games'] == 0


def test_aggregation_applies_each_session_once(client, make_player):
    token, user = make_player('Alice')
    session_id = _play(client, token, 70)
    assert leaderboard.aggregate_session(session_id) is False
    assert leaderboard.reconcile_pending() == 0
    entry = LeaderboardEntry.query.filter_by(user_id=user['id']).one()
    assert entry.total_games == 1


def test_failed_aggregation_is_reconciled_later(client, make_player, monkeypatch):
    token, user = make_player('Alice')
    monkeypatch.setattr(leaderboard, 'record_result', _locked)
    session_id = _play(client, token, 300)

    db.session.expire_all()
    assert db.session.get(GameSession, session_id).aggregated_at is None
    assert LeaderboardEntry.query.filter_by(user_id=user['id']).first() is None
    assert leaderboard.pending_session_ids() == [session_id]

    monkeypatch.undo()
    assert leaderboard.reconcile_pending() == 1
    assert leaderboard.reconcile_pending() == 0
    entry = LeaderboardEntry.query.filter_by(user_id=user['id']).one()
    assert (entry.best_score, entry.total_games) == (300, 1)


def test_reconcile_cli_command(flask_app, client, make_player, monkeypatch):
    token, _ = make_player('Alice')
    monkeypatch.setattr(leaderboard, 'record_result', _locked)
    _play(client, token, 40)
    monkeypatch.undo()

    result = flask_app.test_cli_runner().invoke(args=['leaderboard-reconcile'])
    assert result.exit_code == 0
    assert 'Reconciled 1 session(s).' in result.output


def test_per_mode_leaderboard(client, make_player):
    alice, _ = make_player('Alice')
    bob, _ = make_player('Bob')
    _play(client, alice, 100, mode='race')
    _play(client, alice, 300, mode='time-trial')
    _play(client, bob, 150, mode='race')

    race = client.get('/api/game/leaderboard?game_mode=race').get_json()['leaderboard']
    assert [(e['username'], e['score']) for e in race] == [('Bob', 150), ('Alice', 100)]

    overall = client.get('/api/game/leaderboard').get_json()['leaderboard']
    assert [(e['username'], e['score']) for e in overall] == [('Alice', 300), ('Bob', 150)]


def test_game_endpoints_validate_input(client, make_player):
    token, _ = make_player('Alice')
    res = client.post('/api/game/session/start', json={'game_mode': 'demolition'}, headers=auth_header(token))
    assert res.status_code == 400
    assert res.get_json()['details'][0]['field'] == 'game_mode'

    res = client.post('/api/game/session/end', json={'session_id': 1, 'score': -5}, headers=auth_header(token))
    assert res.status_code == 400

    assert client.get('/api/game/leaderboard?limit=0').status_code == 400
    assert client.get('/api/game/leaderboard?limit=101').status_code == 400


def test_out_of_range_ids_and_scores_are_validation_errors(client, make_player):
    token, _ = make_player('Alice')
    session_id = _start(client, token)

    res = client.post('/api/game/session/end', json={'session_id': session_id, 'score': 10 ** 20},
                      headers=auth_header(token))
    assert res.status_code == 400
    assert res.get_json()['details'][0]['field'] == 'score'

    for path in ('/api/game/session/end', '/api/game/session/abandon'):
        res = client.post(path, json={'session_id': 10 ** 20, 'score': 1}, headers=auth_header(token))
        assert res.status_code == 400
        assert res.get_json()['details'][0]['field'] == 'session_id'

    # largest storable score is accepted
    res = client.post('/api/game/session/end', json={'session_id': session_id, 'score': 2 ** 31 - 1},
                      headers=auth_header(token))
    assert res.status_code == 200
    assert res.get_json()['final_score'] == 2 ** 31 - 1


def test_game_endpoints_require_token(client):
    assert client.post('/api/game/session/start', json={'game_mode': 'race'}).status_code == 401
    assert client.get('/api/game/stats').status_code == 401
    # public board
    assert client.get('/api/game/leaderboard').status_code == 200
