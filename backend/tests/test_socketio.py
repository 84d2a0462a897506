from conftest import auth_header


def test_socket_connect_and_join(sio_client):
    assert sio_client.is_connected('/ws')
    received = sio_client.get_received('/ws')
    assert any(pkt['name'] == 'connected' for pkt in received)

    sio_client.emit('join_leaderboard', namespace='/ws')
    received = sio_client.get_received('/ws')
    assert any(pkt['name'] == 'joined' and pkt['args'][0]['room'] == 'leaderboard' for pkt in received)


def test_ping_pong(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('ping', {'n': 1}, namespace='/ws')
    received = sio_client.get_received('/ws')
    assert any(pkt['name'] == 'pong' and pkt['args'][0] == {'n': 1} for pkt in received)


def test_finished_session_broadcasts_leaderboard_update(sio_client, client, make_player):
    sio_client.emit('join_leaderboard', namespace='/ws')
    sio_client.get_received('/ws')  # flush

    token, user = make_player('Alice')
    session_id = client.post('/api/game/session/start', json={'game_mode': 'race'},
                             headers=auth_header(token)).get_json()['session_id']
    client.post('/api/game/session/end', json={'session_id': session_id, 'score': 640}, headers=auth_header(token))

    updates = [pkt for pkt in sio_client.get_received('/ws') if pkt['name'] == 'leaderboard_update']
    assert len(updates) == 1
    payload = updates[0]['args'][0]
    assert payload['user_id'] == user['id']
    assert payload['best_score'] == 640
    assert payload['total_games'] == 1
    assert payload['rank'] == 1


def test_left_room_gets_no_updates(sio_client, client, make_player):
    sio_client.emit('join_leaderboard', namespace='/ws')
    sio_client.emit('leave_leaderboard', namespace='/ws')
    sio_client.get_received('/ws')

    token, _ = make_player('Alice')
    session_id = client.post('/api/game/session/start', json={'game_mode': 'race'},
                             headers=auth_header(token)).get_json()['session_id']
    client.post('/api/game/session/end', json={'session_id': session_id, 'score': 10}, headers=auth_header(token))
    assert not any(pkt['name'] == 'leaderboard_update' for pkt in sio_client.get_received('/ws'))
