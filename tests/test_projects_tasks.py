from models import db, Task, Team, ProjectMember, ActivityLog, Subtask, TimeLog
from projects import add_project_member

from helpers import notifications_for


def _create_task(client, headers, project_id, **fields):
    return client.post('/api/tasks', json={'title': 'Write docs', 'project_id': project_id, **fields},
                       headers=headers)


def test_create_project_adds_owner_member(client, make_user, headers_for):
    alice = make_user(name='Alice')

    resp = client.post('/api/projects', json={'title': 'Apollo'}, headers=headers_for(alice))

    assert resp.status_code == 201
    project_id = resp.get_json()['project']['id']
    member = ProjectMember.query.filter_by(project_id=project_id, user_id=alice.id).one()
    assert member.role == 'owner'


def test_project_detail_requires_membership(client, workspace, make_user, headers_for):
    bob = make_user(name='Bob')

    owner = client.get(f'/api/projects/{workspace.project_id}', headers=headers_for(workspace.leader))
    outsider = client.get(f'/api/projects/{workspace.project_id}', headers=headers_for(bob))

    assert owner.status_code == 200
    assert owner.get_json()['project']['members'][0]['role'] == 'owner'
    assert outsider.status_code == 403


def test_only_owner_updates_project(client, workspace, make_user, headers_for):
    bob = make_user(name='Bob')
    add_project_member(workspace.project_id, bob.id)
    db.session.commit()

    denied = client.patch(f'/api/projects/{workspace.project_id}', json={'progress': 50},
                          headers=headers_for(bob))
    ok = client.patch(f'/api/projects/{workspace.project_id}', json={'progress': 50},
                      headers=headers_for(workspace.leader))

    assert denied.status_code == 403
    assert ok.status_code == 200
    assert ok.get_json()['project']['progress'] == 50


def test_delete_project_detaches_team(client, workspace, headers_for):
    resp = client.delete(f'/api/projects/{workspace.project_id}', headers=headers_for(workspace.leader))

    assert resp.status_code == 200
    assert db.session.get(Team, workspace.team_id).project_id is None
    assert ActivityLog.query.filter_by(project_id=workspace.project_id).count() == 0


def test_assignee_must_be_project_member(client, workspace, make_user, headers_for):
    bob = make_user(name='Bob')

    resp = _create_task(client, headers_for(workspace.leader), workspace.project_id, assignee_id=bob.id)

    assert resp.status_code == 400
    assert Task.query.count() == 0


def test_assigning_task_notifies_assignee(client, workspace, make_user, headers_for):
    bob = make_user(name='Bob')
    add_project_member(workspace.project_id, bob.id)
    db.session.commit()

    resp = _create_task(client, headers_for(workspace.leader), workspace.project_id, assignee_id=bob.id)

    assert resp.status_code == 201
    task = resp.get_json()['task']
    notes = notifications_for(bob.id, 'task_assigned')
    assert len(notes) == 1
    assert notes[0].data == {'task_id': task['id'], 'project_id': workspace.project_id}


def test_completing_task_notifies_creator(client, workspace, make_user, headers_for):
    bob = make_user(name='Bob')
    add_project_member(workspace.project_id, bob.id)
    db.session.commit()
    task_id = _create_task(
        client, headers_for(workspace.leader), workspace.project_id, assignee_id=bob.id
    ).get_json()['task']['id']

    resp = client.patch(f'/api/tasks/{task_id}', json={'status': 'completed'}, headers=headers_for(bob))

    assert resp.status_code == 200
    assert resp.get_json()['task']['completed_at'] is not None
    assert len(notifications_for(workspace.leader.id, 'task_completed')) == 1
    assert notifications_for(bob.id, 'task_completed') == []


def test_task_delete_permissions(client, workspace, make_user, headers_for):
    bob = make_user(name='Bob')
    add_project_member(workspace.project_id, bob.id)
    db.session.commit()
    task_id = _create_task(client, headers_for(workspace.leader), workspace.project_id).get_json()['task']['id']

    denied = client.delete(f'/api/tasks/{task_id}', headers=headers_for(bob))
    ok = client.delete(f'/api/tasks/{task_id}', headers=headers_for(workspace.leader))

    assert denied.status_code == 403
    assert ok.status_code == 200
    assert db.session.get(Task, task_id) is None


def test_comments(client, workspace, make_user, headers_for):
    bob = make_user(name='Bob')
    add_project_member(workspace.project_id, bob.id)
    db.session.commit()
    task_id = _create_task(client, headers_for(workspace.leader), workspace.project_id).get_json()['task']['id']

    posted = client.post(f'/api/tasks/{task_id}/comments', json={'content': 'Looks good'},
                         headers=headers_for(bob))
    listed = client.get(f'/api/tasks/{task_id}/comments', headers=headers_for(workspace.leader))

    assert posted.status_code == 201
    assert [c['content'] for c in listed.get_json()['comments']] == ['Looks good']
    assert len(notifications_for(workspace.leader.id, 'comment_added')) == 1


def test_my_tasks(client, workspace, make_user, headers_for):
    bob = make_user(name='Bob')
    add_project_member(workspace.project_id, bob.id)
    db.session.commit()
    _create_task(client, headers_for(workspace.leader), workspace.project_id, assignee_id=bob.id)
    _create_task(client, headers_for(workspace.leader), workspace.project_id, title='Unassigned')

    resp = client.get('/api/tasks', headers=headers_for(bob))

    assert resp.status_code == 200
    assert [t['title'] for t in resp.get_json()['tasks']] == ['Write docs']


def test_new_subtask_reopens_completed_task(client, workspace, headers_for):
    headers = headers_for(workspace.leader)
    task_id = _create_task(client, headers, workspace.project_id, status='completed').get_json()['task']['id']

    resp = client.post(f'/api/tasks/{task_id}/subtasks', json={'title': 'Proofread'}, headers=headers)

    assert resp.status_code == 201
    subtask = resp.get_json()['subtask']
    assert subtask['completed'] is False
    assert subtask['assignee_id'] == workspace.leader.id
    task = db.session.get(Task, task_id)
    assert task.status == 'in-progress'
    assert task.completed_at is None


def test_completing_all_subtasks_completes_task(client, workspace, headers_for):
    headers = headers_for(workspace.leader)
    task_id = _create_task(client, headers, workspace.project_id).get_json()['task']['id']
    first = client.post(f'/api/tasks/{task_id}/subtasks', json={'title': 'Outline'},
                        headers=headers).get_json()['subtask']['id']
    second = client.post(f'/api/tasks/{task_id}/subtasks', json={'title': 'Draft'},
                         headers=headers).get_json()['subtask']['id']

    partial = client.patch(f'/api/subtasks/{first}', json={'completed': True}, headers=headers)
    done = client.patch(f'/api/subtasks/{second}', json={'completed': True}, headers=headers)
    reopened = client.patch(f'/api/subtasks/{second}', json={'completed': False}, headers=headers)

    assert partial.get_json()['task_status'] == 'todo'
    assert done.get_json()['task_status'] == 'completed'
    assert reopened.get_json()['task_status'] == 'in-progress'

    listed = client.get(f'/api/tasks/{task_id}/subtasks', headers=headers)
    assert [s['title'] for s in listed.get_json()['subtasks']] == ['Outline', 'Draft']


def test_subtasks_require_project_membership(client, workspace, make_user, headers_for):
    bob = make_user(name='Bob')
    headers = headers_for(workspace.leader)
    task_id = _create_task(client, headers, workspace.project_id).get_json()['task']['id']
    subtask_id = client.post(f'/api/tasks/{task_id}/subtasks', json={'title': 'Outline'},
                             headers=headers).get_json()['subtask']['id']

    create = client.post(f'/api/tasks/{task_id}/subtasks', json={'title': 'Sneaky'}, headers=headers_for(bob))
    update = client.patch(f'/api/subtasks/{subtask_id}', json={'completed': True}, headers=headers_for(bob))
    missing = client.get('/api/tasks/999/subtasks', headers=headers)

    assert create.status_code == 403
    assert update.status_code == 403
    assert missing.status_code == 404
    assert Subtask.query.count() == 1
    assert db.session.get(Subtask, subtask_id).completed is False


def test_delete_subtask_keeps_time_logs(client, workspace, headers_for):
    headers = headers_for(workspace.leader)
    task_id = _create_task(client, headers, workspace.project_id).get_json()['task']['id']
    subtask_id = client.post(f'/api/tasks/{task_id}/subtasks', json={'title': 'Outline'},
                             headers=headers).get_json()['subtask']['id']
    client.post(f'/api/tasks/{task_id}/timelog',
                json={'hours': 1.5, 'date': '2026-10-01T09:00:00', 'subtask_id': subtask_id},
                headers=headers)

    resp = client.delete(f'/api/subtasks/{subtask_id}', headers=headers)

    assert resp.status_code == 200
    assert db.session.get(Subtask, subtask_id) is None
    log = TimeLog.query.one()
    assert log.subtask_id is None
    assert log.task_id == task_id


def test_time_logs(client, workspace, make_user, headers_for):
    bob = make_user(name='Bob')
    add_project_member(workspace.project_id, bob.id)
    db.session.commit()
    headers = headers_for(workspace.leader)
    task_id = _create_task(client, headers, workspace.project_id).get_json()['task']['id']

    mine = client.post(f'/api/tasks/{task_id}/timelog',
                       json={'hours': 2, 'date': '2026-10-01T09:00:00', 'description': 'First pass'},
                       headers=headers)
    client.post(f'/api/tasks/{task_id}/timelog', json={'hours': 3, 'date': '2026-10-02T09:00:00'},
                headers=headers_for(bob))
    zero = client.post(f'/api/tasks/{task_id}/timelog', json={'hours': 0, 'date': '2026-10-01T09:00:00'},
                       headers=headers)
    foreign_subtask = client.post(f'/api/tasks/{task_id}/timelog',
                                  json={'hours': 1, 'date': '2026-10-01T09:00:00', 'subtask_id': 999},
                                  headers=headers)

    assert mine.status_code == 201
    assert mine.get_json()['time_log']['hours'] == 2
    assert zero.status_code == 400
    assert foreign_subtask.status_code == 400

    listed = client.get('/api/timelogs', headers=headers).get_json()
    assert [log['description'] for log in listed['time_logs']] == ['First pass']
    assert listed['total_hours'] == 2
    assert TimeLog.query.count() == 2
