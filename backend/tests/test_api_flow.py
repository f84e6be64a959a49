from teamhub.models import Role


def test_team_formation_flow(client, dispatcher, make_student, make_lecturer, auth_headers):
    alice, bob, carol = make_student('SE001', 'Alice'), make_student('SE002', 'Bob'), make_student('SE003', 'Carol')
    lecturer = make_lecturer('GV01', 'Dr. Nguyen')
    # create team
    r = client.post('/teams', json={'name': 'Rockets', 'description': 'capstone', 'max_members': 3}, headers=auth_headers(alice))
    assert r.status_code == 201
    team_id = r.json()['id']
    assert r.json()['status'] == 'Pending'
    # fill it up
    assert client.post(f'/teams/{team_id}/join', headers=auth_headers(bob)).status_code == 200
    full = client.post(f'/teams/{team_id}/join', headers=auth_headers(carol))
    assert full.status_code == 200
    assert full.json()['status'] == 'Voting'
    # elect bob
    v1 = client.post('/votes/leader', json={'team_id': team_id, 'candidate_id': 'SE002'}, headers=auth_headers(alice))
    assert v1.json()['status'] == 'voted'
    v2 = client.post('/votes/leader', json={'team_id': team_id, 'candidate_id': 'SE002'}, headers=auth_headers(carol))
    assert v2.json()['status'] == 'leader_chosen'
    detail = client.get(f'/teams/{team_id}', headers=auth_headers(carol)).json()
    assert detail['status'] == 'Active'
    assert detail['leader_name'] == 'Bob'
    # the old leader can no longer ask for a mentor
    denied = client.post(f'/teams/{team_id}/mentorship-requests/GV01', headers=auth_headers(alice))
    assert denied.status_code == 403
    assert denied.json()['code'] == 'NotTeamLeader'
    sent = client.post(f'/teams/{team_id}/mentorship-requests/GV01', headers=auth_headers(bob))
    assert sent.status_code == 201
    # lecturer sees and accepts the request
    inbox = client.get('/mentorship-requests', headers=auth_headers(lecturer))
    assert [req['team_name'] for req in inbox.json()] == ['Rockets']
    accepted = client.patch(f"/mentorship-requests/{sent.json()['id']}", json={'action': 'accept'}, headers=auth_headers(lecturer))
    assert accepted.status_code == 200
    assert accepted.json()['status'] == 'accepted'
    assert client.get(f'/teams/{team_id}', headers=auth_headers(bob)).json()['mentor_name'] == 'Dr. Nguyen'
    events = [e['event'] for e in dispatcher.events()]
    assert 'leader_chosen' in events
    assert 'mentor_response' in events


def test_error_bodies_and_status_codes(client, make_student, make_lecturer, auth_headers):
    alice, bob = make_student('SE001'), make_student('SE002')
    lecturer = make_lecturer('GV01')
    team_id = client.post('/teams', json={'name': 'Rockets', 'max_members': 2}, headers=auth_headers(alice)).json()['id']
    client.post(f'/teams/{team_id}/join', headers=auth_headers(bob))

    full = client.post(f'/teams/{team_id}/join', headers=auth_headers(make_student('SE003')))
    assert full.status_code == 409
    assert full.json() == {'kind': 'conflict', 'code': 'Full', 'message': 'team is full'}

    missing = client.post('/teams/9999/join', headers=auth_headers(make_student('SE004')))
    assert missing.status_code == 404
    assert missing.json()['kind'] == 'not_found'

    self_vote = client.post('/votes/leader', json={'team_id': team_id, 'candidate_id': 'SE001'}, headers=auth_headers(alice))
    assert self_vote.status_code == 409
    assert self_vote.json()['code'] == 'SelfVote'

    bad_capacity = client.post('/teams', json={'name': 'Tiny', 'max_members': 1}, headers=auth_headers(make_student('SE005')))
    assert bad_capacity.status_code == 400
    assert bad_capacity.json()['code'] == 'InvalidInput'

    bad_action = client.patch('/mentorship-requests/1', json={'action': 'ignore'}, headers=auth_headers(lecturer))
    assert bad_action.status_code == 400
    assert bad_action.json()['code'] == 'InvalidAction'

    lecturer_join = client.post(f'/teams/{team_id}/join', headers=auth_headers(lecturer))
    assert lecturer_join.status_code == 403

    lecturer_votes = client.get(f'/votes/leader/{team_id}', headers=auth_headers(lecturer))
    assert lecturer_votes.status_code == 403


def test_leave_endpoint_transfers_leadership(client, make_student, auth_headers):
    alice, bob = make_student('SE001'), make_student('SE002')
    team_id = client.post('/teams', json={'name': 'Rockets', 'max_members': 3}, headers=auth_headers(alice)).json()['id']
    client.post(f'/teams/{team_id}/join', headers=auth_headers(bob))

    r = client.post(f'/teams/{team_id}/leave', headers=auth_headers(alice))
    assert r.status_code == 200
    assert r.json() == {'team_id': team_id, 'team_deleted': False, 'leader_id': 'SE002'}

    r2 = client.post(f'/teams/{team_id}/leave', headers=auth_headers(bob))
    assert r2.json()['team_deleted'] is True
    assert client.get(f'/teams/{team_id}', headers=auth_headers(bob)).status_code == 404


def test_admin_lecturer_management_and_team_lock(client, make_student, auth_headers):
    admin = make_student('AD001', role=Role.ADMIN)
    alice, bob = make_student('SE001'), make_student('SE002')
    # lecturers
    created = client.post('/admin/lecturers', json={
        'id': 'GV10', 'full_name': 'Dr. Le', 'email': 'le@uni.edu', 'password': 'pw', 'department': 'CS',
    }, headers=auth_headers(admin))
    assert created.status_code == 201
    assert client.post('/admin/lecturers', json={
        'id': 'GV11', 'full_name': 'Dup', 'email': 'le@uni.edu', 'password': 'pw',
    }, headers=auth_headers(admin)).status_code == 409
    updated = client.put('/admin/lecturers/GV10', json={'department': 'AI'}, headers=auth_headers(admin))
    assert updated.json()['department'] == 'AI'
    assert [l['id'] for l in client.get('/lecturers', headers=auth_headers(alice)).json()] == ['GV10']
    assert client.get('/admin/lecturers', headers=auth_headers(alice)).status_code == 403
    login = client.post('/auth/login', json={'email': 'le@uni.edu', 'password': 'pw'})
    assert login.status_code == 200
    # lock a team
    team_id = client.post('/teams', json={'name': 'Rockets', 'max_members': 3}, headers=auth_headers(alice)).json()['id']
    locked = client.patch(f'/admin/teams/{team_id}/status', json={'status': 'Locked'}, headers=auth_headers(admin))
    assert locked.json()['status'] == 'Locked'
    blocked = client.post(f'/teams/{team_id}/join', headers=auth_headers(bob))
    assert blocked.status_code == 409
    assert blocked.json()['code'] == 'TeamLocked'
    bad_status = client.patch(f'/admin/teams/{team_id}/status', json={'status': 'Frozen'}, headers=auth_headers(admin))
    assert bad_status.status_code == 400
    # delete
    assert client.delete('/admin/lecturers/GV10', headers=auth_headers(admin)).json() == {'status': 'ok'}
    assert client.delete(f'/admin/teams/{team_id}', headers=auth_headers(admin)).status_code == 200
    assert client.get('/teams', headers=auth_headers(alice)).json() == []


def test_posts_and_comments_ownership(client, dispatcher, make_student, make_lecturer, auth_headers):
    alice, bob = make_student('SE001', 'Alice'), make_student('SE002')
    admin = make_student('AD001', role=Role.ADMIN)
    lecturer = make_lecturer('GV01')
    post = client.post('/posts', json={'title': 'Kickoff', 'content': 'Teams due Friday'}, headers=auth_headers(lecturer))
    assert post.status_code == 201
    post_id = post.json()['id']
    # only the author (or an admin) may edit
    assert client.put(f'/posts/{post_id}', json={'title': 'Hijack'}, headers=auth_headers(alice)).status_code == 403
    edited = client.put(f'/posts/{post_id}', json={'title': 'Kickoff!'}, headers=auth_headers(lecturer))
    assert edited.json()['title'] == 'Kickoff!'
    # comments
    comment = client.post(f'/posts/{post_id}/comments', json={'content': 'Noted'}, headers=auth_headers(alice))
    assert comment.status_code == 201
    assert comment.json()['author_name'] == 'Alice'
    comment_id = comment.json()['id']
    assert client.delete(f'/posts/{post_id}/comments/{comment_id}', headers=auth_headers(bob)).status_code == 403
    assert len(client.get(f'/posts/{post_id}/comments', headers=auth_headers(bob)).json()) == 1
    assert client.delete(f'/posts/{post_id}/comments/{comment_id}', headers=auth_headers(alice)).status_code == 200
    # admin may delete anybody's post
    assert client.delete(f'/posts/{post_id}', headers=auth_headers(admin)).status_code == 200
    assert client.get('/posts', headers=auth_headers(bob)).json() == []
    assert client.get(f'/posts/{post_id}/comments', headers=auth_headers(bob)).status_code == 404
    events = [e['event'] for e in dispatcher.events()]
    assert events[0] == 'post_created'
    assert 'comment_deleted' in events
    assert events[-1] == 'post_deleted'


def test_health_and_request_id(client):
    r = client.get('/health', headers={'X-Request-ID': 'abc123'})
    assert r.status_code == 200
    assert r.json() == {'status': 'ok'}
    assert r.headers['X-Request-ID'] == 'abc123'
