"""Pytest configuration and fixtures."""

import pytest

from app import create_app
from config import TestingConfig
from models import db
from notifications import Broadcaster


class RecordingBroadcaster(Broadcaster):
    """Keeps every published event in memory."""

    def __init__(self):
        self.events = []

    def publish(self, event, payload):
        self.events.append((event, payload))

    def names(self):
        return [name for name, _ in self.events]

    def last(self, name):
        for event, payload in reversed(self.events):
            if event == name:
                return payload
        return None


class RecordingMailer:
    """Captures OTP emails instead of talking to SMTP."""

    def __init__(self):
        self.sent = []

    def send_otp_email(self, to_email, otp, expires_minutes):
        self.sent.append({'to': to_email, 'otp': otp, 'expires_minutes': expires_minutes})


class Api:
    """Small wrapper around the Flask test client for the common calls."""

    def __init__(self, client):
        self.client = client

    def signup(self, name, email=None, password='password123'):
        email = email or f'{name.lower()}@example.com'
        return self.client.post('/api/auth/signup', json={
            'name': name, 'email': email, 'password': password
        })

    def login(self, email, password='password123'):
        return self.client.post('/api/auth/login', json={'email': email, 'password': password})

    def create_project(self, user, name, collaborator_ids=None):
        body = {'name': name}
        if collaborator_ids is not None:
            body['collaboratorIds'] = collaborator_ids
        return self.client.post('/api/projects', json=body, headers=user['headers'])

    def create_issue(self, user, project_id, title, **extra):
        body = {'title': title, 'projectId': project_id}
        body.update(extra)
        return self.client.post('/api/issues', json=body, headers=user['headers'])


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def app(broadcaster, mailer):
    """Create a fresh app with an in-memory database."""
    app = create_app(TestingConfig, broadcaster=broadcaster, mailer=mailer)

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def api(client):
    return Api(client)


@pytest.fixture
def make_user(api):
    """Sign up and log in a user, returning id, email, token and auth headers."""

    def _make(name, email=None, password='password123'):
        email = email or f'{name.lower()}@example.com'
        response = api.signup(name, email, password)
        assert response.status_code == 201, response.get_json()

        response = api.login(email, password)
        assert response.status_code == 200, response.get_json()
        data = response.get_json()

        return {
            'id': data['user']['id'],
            'name': name,
            'email': email,
            'token': data['token'],
            'headers': {'Authorization': f"Bearer {data['token']}"}
        }

    return _make


@pytest.fixture
def alice(make_user):
    return make_user('Alice')


@pytest.fixture
def bob(make_user):
    return make_user('Bob')


@pytest.fixture
def carol(make_user):
    return make_user('Carol')
