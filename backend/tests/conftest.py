import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["ADMIN_CREATION_KEY"] = "test-admin-key"
os.environ.pop("MAIL_SERVER", None)

import asyncio
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from deeptech.core.database import Base, get_db
from deeptech.core.locks import KeyedLock
from deeptech.core.mail import Notifier, get_notifier
from deeptech.main import app
from deeptech.models.account import utcnow
from deeptech.modules.auth.lifecycle import AccountLifecycle, get_lifecycle

ADMIN_KEY = "test-admin-key"
PASSWORD = "Secret123!"


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []
        self.codes = {}
        self.reset_tokens = {}
        self.fail = False
        self.delay = 0

    async def deliver(self, recipient, subject, body):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("SMTP unavailable")
        self.sent.append((recipient, subject, body))

    async def send_verification(self, account, code):
        self.codes[account.email] = code
        await super().send_verification(account, code)

    async def send_password_reset(self, account, token):
        self.reset_tokens[account.email] = token
        await super().send_password_reset(account, token)

    def sent_to(self, email):
        return [m for m in self.sent if m[0] == email]


class FakeClock:
    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def lifecycle(db, notifier, clock):
    return AccountLifecycle(db, notifier, clock=clock, locks=KeyedLock())


@pytest.fixture
def client(db, notifier, lifecycle):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_lifecycle] = lambda: lifecycle
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_dtuser(client):
    def _make(email="a@x.com", full_name="Ada Lovelace"):
        resp = client.post("/auth/createDTuser", json={
            "fullName": full_name,
            "email": email,
            "phone": "08012345678",
            "domains": ["Text Annotation"],
            "consent": True,
        })
        assert resp.status_code == 201, resp.text
        return resp.json()["data"]["user"]
    return _make


@pytest.fixture
def active_dtuser(client, make_dtuser):
    """DTUser that has verified the email and set PASSWORD"""
    def _make(email="a@x.com"):
        user = make_dtuser(email)
        resp = client.get(f"/auth/verifyDTusermail/{user['id']}", params={"email": email})
        assert resp.status_code == 200, resp.text
        resp = client.post("/auth/setupPassword", json={
            "userId": user["id"],
            "email": email,
            "password": PASSWORD,
            "confirmPassword": PASSWORD,
        })
        assert resp.status_code == 200, resp.text
        return user
    return _make


@pytest.fixture
def login(client):
    def _login(email="a@x.com", password=PASSWORD, path="/auth/dtUserLogin"):
        return client.post(path, json={"email": email, "password": password})
    return _login


@pytest.fixture
def auth_header(login):
    def _header(email="a@x.com", password=PASSWORD, path="/auth/dtUserLogin"):
        resp = login(email, password, path)
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['token']}"}
    return _header
