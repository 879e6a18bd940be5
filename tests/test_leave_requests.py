import pytest

from models import db, LeaveRequest, Project
import membership

from helpers import notifications_for, membership_count


@pytest.fixture
def bob(workspace, make_user):
    bob = make_user(name='Bob')
    membership.add_member(workspace.team_id, bob.id)
    db.session.commit()
    return bob


def _submit(client, headers, team_id, reason):
    return client.post(
        f'/api/teams/{team_id}/leave-requests',
        json={'reason': reason},
        headers=headers
    )


def _resolve(client, headers, request_id, status):
    return client.patch(
        f'/api/teams/leave-requests/{request_id}',
        json={'status': status},
        headers=headers
    )


def test_reason_must_have_five_characters(client, workspace, bob, headers_for):
    headers = headers_for(bob)

    too_short = _submit(client, headers, workspace.team_id, 'busy')
    padded = _submit(client, headers, workspace.team_id, '  busy  ')
    ok = _submit(client, headers, workspace.team_id, 'moved')

    assert too_short.status_code == 400
    assert too_short.get_json()['message'] == 'Reason is required and must be at least 5 characters.'
    assert padded.status_code == 400
    assert ok.status_code == 201
    assert ok.get_json()['leave_request']['reason'] == 'moved'


def test_missing_reason_is_rejected(client, workspace, bob, headers_for):
    resp = client.post(
        f'/api/teams/{workspace.team_id}/leave-requests',
        json={'note': 'nothing'},
        headers=headers_for(bob)
    )

    assert resp.status_code == 400
    assert LeaveRequest.query.count() == 0


def test_submit_notifies_creator(client, workspace, bob, headers_for):
    _submit(client, headers_for(bob), workspace.team_id, 'New job elsewhere')

    notes = notifications_for(workspace.leader.id, 'leave_request')
    assert len(notes) == 1
    assert notes[0].data['reason'] == 'New job elsewhere'
    assert notes[0].data['user_id'] == bob.id


def test_duplicate_pending_leave_request(client, workspace, bob, headers_for):
    headers = headers_for(bob)

    _submit(client, headers, workspace.team_id, 'first reason')
    resp = _submit(client, headers, workspace.team_id, 'second reason')

    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'duplicate_pending'


def test_non_member_cannot_request_to_leave(client, workspace, make_user, headers_for):
    carol = make_user(name='Carol')

    resp = _submit(client, headers_for(carol), workspace.team_id, 'not even here')

    assert resp.status_code == 400


def test_creator_cannot_leave(client, workspace, headers_for):
    resp = _submit(client, headers_for(workspace.leader), workspace.team_id, 'stepping down')

    assert resp.status_code == 400


def test_accept_removes_only_that_membership(client, workspace, bob, make_user, headers_for):
    carol = make_user(name='Carol')
    membership.add_member(workspace.team_id, carol.id)

    # Bob 也在另一個團隊
    other_project = Project(title='Gemini', owner_id=carol.id)
    db.session.add(other_project)
    db.session.commit()
    other_team = membership.create_team(carol, 'Beta', other_project.id)
    membership.add_member(other_team.id, bob.id)
    db.session.commit()

    request_id = _submit(client, headers_for(bob), workspace.team_id, 'moving on').get_json()['leave_request']['id']
    resp = _resolve(client, headers_for(workspace.leader), request_id, 'accepted')

    assert resp.status_code == 200
    assert resp.get_json()['already_processed'] is False
    assert membership_count(workspace.team_id, bob.id) == 0
    assert membership_count(workspace.team_id, carol.id) == 1
    assert membership_count(workspace.team_id, workspace.leader.id) == 1
    assert membership_count(other_team.id, bob.id) == 1

    responses = notifications_for(bob.id, 'leave_request_response')
    assert len(responses) == 1
    assert responses[0].data == {'team_id': workspace.team_id, 'status': 'accepted'}


def test_decline_keeps_membership(client, workspace, bob, headers_for):
    request_id = _submit(client, headers_for(bob), workspace.team_id, 'moving on').get_json()['leave_request']['id']

    resp = _resolve(client, headers_for(workspace.leader), request_id, 'declined')

    assert resp.status_code == 200
    assert membership_count(workspace.team_id, bob.id) == 1
    assert notifications_for(bob.id, 'leave_request_response')[0].data['status'] == 'declined'


def test_second_resolution_is_a_noop(client, workspace, bob, headers_for):
    leader_headers = headers_for(workspace.leader)
    request_id = _submit(client, headers_for(bob), workspace.team_id, 'moving on').get_json()['leave_request']['id']

    _resolve(client, leader_headers, request_id, 'declined')
    second = _resolve(client, leader_headers, request_id, 'accepted')

    assert second.status_code == 200
    assert second.get_json()['already_processed'] is True
    assert second.get_json()['leave_request']['status'] == 'declined'
    assert membership_count(workspace.team_id, bob.id) == 1
    assert len(notifications_for(bob.id, 'leave_request_response')) == 1


def test_only_creator_can_resolve(client, workspace, bob, headers_for):
    request_id = _submit(client, headers_for(bob), workspace.team_id, 'moving on').get_json()['leave_request']['id']

    resp = _resolve(client, headers_for(bob), request_id, 'accepted')

    assert resp.status_code == 403
    assert membership_count(workspace.team_id, bob.id) == 1


def test_list_leave_requests(client, workspace, bob, headers_for):
    _submit(client, headers_for(bob), workspace.team_id, 'moving on')

    resp = client.get(
        f'/api/teams/{workspace.team_id}/leave-requests?status=pending',
        headers=headers_for(workspace.leader)
    )

    assert resp.status_code == 200
    requests = resp.get_json()['leave_requests']
    assert len(requests) == 1
    assert requests[0]['reason'] == 'moving on'
    assert requests[0]['user']['id'] == bob.id
