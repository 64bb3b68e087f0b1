from __future__ import annotations

import pytest
from google.auth.credentials import AnonymousCredentials

import src.backend.firebase_app as firebase_app

_ENV_KEYS = (
    "GOOGLE_CLOUD_PROJECT",
    "GCLOUD_PROJECT",
    "PROJECT_ID",
    "FIRESTORE_EMULATOR_HOST",
    "FIREBASE_SERVICE_ACCOUNT_FILE",
)


class _FakeAdmin:
    def __init__(self):
        self.initialized = []
        self.clients = []

    def get_app(self, name):
        raise ValueError(f"no app named {name}")

    def initialize_app(self, credential=None, options=None, name="[DEFAULT]"):
        app = object()
        self.initialized.append((app, credential, options, name))
        return app

    def client(self, app=None, database_id=None):
        client = object()
        self.clients.append((app, database_id))
        return client


@pytest.fixture
def admin(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    fake = _FakeAdmin()
    monkeypatch.setattr(firebase_app.firebase_admin, "get_app", fake.get_app)
    monkeypatch.setattr(firebase_app.firebase_admin, "initialize_app", fake.initialize_app)
    monkeypatch.setattr(firebase_app.firestore, "client", fake.client)
    firebase_app.reset_firebase_state()
    yield fake
    firebase_app.reset_firebase_state()


def test_emulator_uses_anonymous_credentials_and_demo_project(admin, monkeypatch):
    monkeypatch.setenv("FIRESTORE_EMULATOR_HOST", "localhost:8080")
    firebase_app.get_firestore_client()
    [(_, credential, options, name)] = admin.initialized
    assert isinstance(credential, AnonymousCredentials)
    assert options == {"projectId": firebase_app.EMULATOR_PROJECT_ID}
    assert name == firebase_app.PRACTICE_APP_NAME


def test_explicit_project_wins_over_environment(admin, monkeypatch):
    monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "from-env")
    firebase_app.get_firestore_client("piano-prod")
    [(_, credential, options, _)] = admin.initialized
    assert credential is None
    assert options == {"projectId": "piano-prod"}


def test_clients_are_cached_per_database(admin, monkeypatch):
    monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "piano")
    first = firebase_app.get_firestore_client()
    again = firebase_app.get_firestore_client()
    regional = firebase_app.get_firestore_client(database_id="practice-eu")
    assert first is again
    assert regional is not first
    assert len(admin.initialized) == 1
    app = admin.initialized[0][0]
    assert admin.clients == [(app, None), (app, "practice-eu")]


def test_registered_app_is_reused(admin, monkeypatch):
    existing = object()
    monkeypatch.setattr(firebase_app.firebase_admin, "get_app", lambda name: existing)
    assert firebase_app.initialize_firebase_app() is existing
    assert admin.initialized == []
