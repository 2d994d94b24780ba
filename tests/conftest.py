import pytest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from fastapi.testclient import TestClient

from carelink.core.config import Settings
from carelink.core.security import UserRole, get_password_hash
from carelink.main import create_app
from carelink.models.doctor import Doctor
from carelink.models.user import User

TEST_PASSWORD = "TestPassword123"

# Monday
START = datetime(2025, 3, 3, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeRedis:
    """In-memory stand-in for the redis calls made by the rate limiter."""

    def __init__(self):
        self.data = {}

    def setex(self, key, time, value):
        self.data[key] = str(value)
        return True

    def get(self, key):
        return self.data.get(key)

    def incr(self, key):
        self.data[key] = str(int(self.data.get(key, 0)) + 1)
        return int(self.data[key])

    def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0

    def close(self):
        pass


@pytest.fixture(scope="session")
def password_hash():
    return get_password_hash(TEST_PASSWORD)


@pytest.fixture
def clock():
    return FakeClock(START)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        TESTING=True,
        TEST_DATABASE_URL=f"sqlite:///{tmp_path / 'test.db'}",
        SECRET_KEY="test-secret-key",
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def app(settings, clock):
    application = create_app(settings, clock=clock)
    application.state.redis = FakeRedis()
    application.state.database.create_all()
    yield application
    application.state.database.drop_all()
    application.state.database.dispose()


@pytest.fixture
def client(app):
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client


@pytest.fixture
def db(app):
    session = app.state.database.session()
    try:
        yield session
    finally:
        session.close()


class Factory:
    """Creates accounts straight in the database and hands back auth headers."""

    def __init__(self, app, password_hash):
        self.database = app.state.database
        self.tokens = app.state.tokens
        self.password_hash = password_hash
        self._count = 0

    def _user(self, role, email=None, name=None, verified=False):
        self._count += 1
        email = email or f"{role.value}{self._count}@example.com"
        session = self.database.session()
        try:
            user = User(
                email=email,
                name=name or f"{role.value.title()} {self._count}",
                password_hash=self.password_hash,
                role=role,
                verified=verified,
            )
            session.add(user)
            session.commit()
            session.refresh(user)
            return SimpleNamespace(
                id=user.id,
                email=user.email,
                name=user.name,
                role=user.role,
                doctor_id=None,
                headers=self.headers_for(user),
            )
        finally:
            session.close()

    def headers_for(self, user):
        return {"Authorization": f"Bearer {self.tokens.issue(user)}"}

    def patient(self, **kwargs):
        return self._user(UserRole.PATIENT, **kwargs)

    def admin(self, **kwargs):
        return self._user(UserRole.ADMIN, **kwargs)

    def doctor(self, working_days="Mon, Wed", verified=True, specialization="Psychiatry", **kwargs):
        account = self._user(UserRole.DOCTOR, verified=verified, **kwargs)
        session = self.database.session()
        try:
            doctor = Doctor(
                user_id=account.id,
                specialization=specialization,
                working_days=working_days,
            )
            session.add(doctor)
            session.commit()
            account.doctor_id = doctor.id
            return account
        finally:
            session.close()


@pytest.fixture
def factory(app, password_hash):
    return Factory(app, password_hash)
