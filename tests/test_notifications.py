import pytest

from models import db, Notification
from notifications import create_notification


@pytest.fixture
def inbox(make_user):
    alice = make_user(name='Alice')
    bob = make_user(name='Bob')
    create_notification(alice.id, 'join_request', 'first')
    create_notification(alice.id, 'task_assigned', 'second')
    create_notification(alice.id, 'join_request', 'third')
    create_notification(bob.id, 'join_request', 'not yours')
    db.session.commit()
    return alice, bob


def test_list_newest_first(client, inbox, headers_for):
    alice, _ = inbox

    resp = client.get('/api/notifications', headers=headers_for(alice))

    assert resp.status_code == 200
    body = resp.get_json()
    assert [n['message'] for n in body['notifications']] == ['third', 'second', 'first']
    assert body['total'] == 3
    assert body['unread_count'] == 3


def test_filter_by_type(client, inbox, headers_for):
    alice, _ = inbox

    resp = client.get('/api/notifications?type=task_assigned', headers=headers_for(alice))

    assert [n['message'] for n in resp.get_json()['notifications']] == ['second']


def test_mark_read_and_unread_only(client, inbox, headers_for):
    alice, _ = inbox
    headers = headers_for(alice)
    first = Notification.query.filter_by(user_id=alice.id, message='first').one()

    resp = client.patch(f'/api/notifications/{first.id}/read', headers=headers)
    unread = client.get('/api/notifications?unread_only=true', headers=headers)

    assert resp.status_code == 200
    assert [n['message'] for n in unread.get_json()['notifications']] == ['third', 'second']
    assert unread.get_json()['unread_count'] == 2


def test_mark_all_read(client, inbox, headers_for):
    alice, bob = inbox

    resp = client.patch('/api/notifications/read-all', headers=headers_for(alice))

    assert resp.get_json()['modified_count'] == 3
    assert Notification.query.filter_by(user_id=bob.id, is_read=False).count() == 1


def test_cannot_delete_someone_elses_notification(client, inbox, headers_for):
    alice, bob = inbox
    bobs = Notification.query.filter_by(user_id=bob.id).one()

    resp = client.delete(f'/api/notifications/{bobs.id}', headers=headers_for(alice))

    assert resp.status_code == 404
    assert db.session.get(Notification, bobs.id) is not None


def test_delete_all(client, inbox, headers_for):
    alice, bob = inbox

    resp = client.delete('/api/notifications', headers=headers_for(alice))

    assert resp.get_json()['deleted_count'] == 3
    assert Notification.query.filter_by(user_id=alice.id).count() == 0
    assert Notification.query.filter_by(user_id=bob.id).count() == 1
