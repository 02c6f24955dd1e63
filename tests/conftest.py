import uuid

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import DocumentStore
from main import create_app


class RecordingMailer:
    """Stands in for EmailSender and records every message instead of sending it"""

    def __init__(self, deliver=True):
        self.deliver = deliver
        self.sent = []

    def _record(self, kind, to, **data):
        self.sent.append({"kind": kind, "to": to, **data})
        return self.deliver

    def send_otp(self, to, name, otp, resend=False):
        return self._record("otp", to, name=name, otp=otp, resend=resend)

    def send_welcome(self, to, name):
        return self._record("welcome", to, name=name)

    def send_password_reset(self, to, name, token):
        return self._record("reset", to, name=name, token=token)

    def send_reset_confirmation(self, to, name):
        return self._record("reset_done", to, name=name)

    def of_kind(self, kind):
        return [message for message in self.sent if message["kind"] == kind]

    def last(self, kind):
        return self.of_kind(kind)[-1]


@pytest.fixture
def settings():
    return Settings(jwt_secret="test-secret", rate_limit_enabled=False)


@pytest.fixture
def store():
    client = mongomock.MongoClient()
    return DocumentStore(client[f"expenzo_test_{uuid.uuid4().hex}"])


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def app(settings, store, mailer):
    return create_app(settings, store, mailer)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def register_user(client, mailer, name="Ann Lee", email="ann@uni.edu", password="Abc123"):
    response = client.post("/api/auth/send-otp", json={"name": name, "email": email, "password": password})
    assert response.status_code == 200, response.json()
    otp = mailer.last("otp")["otp"]
    response = client.post("/api/auth/verify-otp", json={"email": email, "otp": otp})
    assert response.status_code == 201, response.json()
    return response.json()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def ann(client, mailer):
    return register_user(client, mailer)


@pytest.fixture
def bob(client, mailer):
    return register_user(client, mailer, name="Bob Stone", email="bob@uni.edu", password="Xyz789")


@pytest.fixture
def ann_headers(ann):
    return bearer(ann["token"])


@pytest.fixture
def bob_headers(bob):
    return bearer(bob["token"])
