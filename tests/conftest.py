from types import SimpleNamespace

import pytest
from flask_jwt_extended import create_access_token

from app import create_app
from config import TestingConfig
from extensions import bcrypt
from models import db, User, Project
from projects import add_project_member
import membership


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    ctx = app.app_context()
    ctx.push()

    yield app

    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    created = []

    def _make_user(name=None, email=None, password='password123'):
        n = len(created) + 1
        user = User(
            name=name or f'User {n}',
            email=email or f'user{n}@example.com',
            password_hash=bcrypt.generate_password_hash(password).decode('utf-8')
        )
        db.session.add(user)
        db.session.commit()
        created.append(user)
        return user

    return _make_user


@pytest.fixture
def headers_for(app):
    def _headers_for(user):
        token = create_access_token(identity=str(user.id))
        return {'Authorization': f'Bearer {token}'}
    return _headers_for


@pytest.fixture
def workspace(make_user):
    """Alice 擁有專案 Apollo 和團隊 Alpha"""
    leader = make_user(name='Alice', email='alice@example.com')

    project = Project(title='Apollo', owner_id=leader.id)
    db.session.add(project)
    db.session.flush()
    add_project_member(project.id, leader.id, role='owner')
    db.session.commit()

    team = membership.create_team(leader, 'Alpha', project.id)

    return SimpleNamespace(leader=leader, project_id=project.id, team_id=team.id)
