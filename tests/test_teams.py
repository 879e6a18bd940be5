from models import db, Team, TeamMember, JoinRequest, LeaveRequest, Invitation, ActivityLog, Project
import membership


def test_create_team_makes_creator_leader(client, make_user, headers_for):
    alice = make_user(name='Alice')
    project = Project(title='Apollo', owner_id=alice.id)
    db.session.add(project)
    db.session.commit()

    resp = client.post(
        '/api/teams',
        json={'name': 'Alpha', 'project_id': project.id},
        headers=headers_for(alice)
    )

    assert resp.status_code == 201
    team_id = resp.get_json()['team']['id']

    member = TeamMember.query.filter_by(team_id=team_id, user_id=alice.id).one()
    assert member.role == 'leader'
    assert ActivityLog.query.filter_by(team_id=team_id, type='team_created').count() == 1


def test_create_team_validation(client, make_user, headers_for):
    alice = make_user(name='Alice')
    project = Project(title='Apollo', owner_id=alice.id)
    db.session.add(project)
    db.session.commit()
    headers = headers_for(alice)

    short_name = client.post('/api/teams', json={'name': 'A', 'project_id': project.id}, headers=headers)
    no_project = client.post('/api/teams', json={'name': 'Alpha'}, headers=headers)
    unknown_project = client.post('/api/teams', json={'name': 'Alpha', 'project_id': 999}, headers=headers)

    assert short_name.status_code == 400
    assert no_project.status_code == 400
    assert unknown_project.status_code == 404
    assert Team.query.count() == 0


def test_search_teams_is_case_insensitive(client, workspace, headers_for):
    resp = client.get('/api/teams/search?q=alp', headers=headers_for(workspace.leader))
    empty = client.get('/api/teams/search?q=zzz', headers=headers_for(workspace.leader))

    assert resp.status_code == 200
    teams = resp.get_json()['teams']
    assert [t['name'] for t in teams] == ['Alpha']
    assert teams[0]['member_count'] == 1
    assert empty.get_json()['teams'] == []


def test_get_team_detail(client, workspace, make_user, headers_for):
    bob = make_user(name='Bob')
    membership.add_member(workspace.team_id, bob.id)
    db.session.commit()

    resp = client.get(f'/api/teams/{workspace.team_id}', headers=headers_for(bob))

    assert resp.status_code == 200
    team = resp.get_json()['team']
    assert team['project_title'] == 'Apollo'
    assert team['is_creator'] is False
    assert team['is_member'] is True
    assert team['member_count'] == 2
    assert {m['name']: m['team_role'] for m in team['members']} == {'Alice': 'leader', 'Bob': 'member'}


def test_get_unknown_team(client, workspace, headers_for):
    resp = client.get('/api/teams/999', headers=headers_for(workspace.leader))
    members = client.get('/api/teams/999/members', headers=headers_for(workspace.leader))

    for r in (resp, members):
        assert r.status_code == 404
        body = r.get_json()
        assert body['error'] == 'not_found'
        assert body['message'] == 'Team not found'


def test_only_creator_can_delete_team(client, workspace, make_user, headers_for):
    bob = make_user(name='Bob')
    membership.add_member(workspace.team_id, bob.id)
    db.session.commit()

    resp = client.delete(f'/api/teams/{workspace.team_id}', headers=headers_for(bob))

    assert resp.status_code == 403
    assert db.session.get(Team, workspace.team_id) is not None


def test_delete_team_cascades(client, workspace, make_user, headers_for):
    bob = make_user(name='Bob')
    carol = make_user(name='Carol')
    dave = make_user(name='Dave')
    membership.add_member(workspace.team_id, dave.id)
    db.session.commit()
    membership.submit_leave_request(dave, workspace.team_id, 'wrapping up')
    membership.submit_join_request(bob, workspace.team_id)
    membership.create_invitation(workspace.leader, workspace.team_id, carol.id, carol.email, 'member')

    resp = client.delete(f'/api/teams/{workspace.team_id}', headers=headers_for(workspace.leader))

    assert resp.status_code == 200
    assert Team.query.filter_by(id=workspace.team_id).count() == 0
    assert TeamMember.query.filter_by(team_id=workspace.team_id).count() == 0
    assert JoinRequest.query.filter_by(team_id=workspace.team_id).count() == 0
    assert LeaveRequest.query.filter_by(team_id=workspace.team_id).count() == 0
    assert Invitation.query.filter_by(workspace_id=workspace.team_id).count() == 0
    assert ActivityLog.query.filter_by(team_id=workspace.team_id).count() == 0

    members = client.get(f'/api/teams/{workspace.team_id}/members', headers=headers_for(workspace.leader))
    assert members.status_code == 404


def test_team_members(client, workspace, headers_for):
    resp = client.get(f'/api/teams/{workspace.team_id}/members', headers=headers_for(workspace.leader))

    assert resp.status_code == 200
    body = resp.get_json()
    assert body['total'] == 1
    assert body['members'][0]['email'] == 'alice@example.com'


def test_my_teams(client, workspace, make_user, headers_for):
    bob = make_user(name='Bob')
    membership.add_member(workspace.team_id, bob.id)
    db.session.commit()

    resp = client.get('/api/my-teams', headers=headers_for(bob))
    none = client.get('/api/my-teams', headers=headers_for(make_user(name='Carol')))

    assert resp.status_code == 200
    teams = resp.get_json()['teams']
    assert len(teams) == 1
    assert teams[0]['name'] == 'Alpha'
    assert teams[0]['role'] == 'member'
    assert teams[0]['member_count'] == 2
    assert teams[0]['project_title'] == 'Apollo'
    assert none.get_json()['teams'] == []


def test_remove_member_reports_deleted_rows(workspace, make_user):
    bob = make_user(name='Bob')
    membership.add_member(workspace.team_id, bob.id)
    db.session.commit()

    assert membership.remove_member(workspace.team_id, bob.id) == 1
    assert membership.remove_member(workspace.team_id, bob.id) == 0
    assert membership.is_member(workspace.team_id, workspace.leader.id)


def test_deactivated_user_is_unauthenticated(client, workspace, make_user, headers_for):
    bob = make_user(name='Bob')
    headers = headers_for(bob)
    bob.is_active = False
    db.session.commit()

    resp = client.post(f'/api/teams/{workspace.team_id}/join-requests', headers=headers)

    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'authorization_required'
    assert JoinRequest.query.count() == 0
