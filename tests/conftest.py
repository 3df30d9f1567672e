import os
import tempfile
from collections.abc import Generator
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

os.environ["ENVIRONMENT"] = "development"
os.environ["JWT_SECRET"] = "test-access-secret-0123456789abcdef0123"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret-0123456789abcdef01"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["DATABASE_URL"] = "sqlite:///./test_school_portal.db"

import app.models  # noqa: F401
from app.api.deps import get_notifier
from app.core.clock import utcnow
from app.db.base_class import Base
from app.db.session import get_db
from app.main import app
from app.services.brute_force import BruteForceCounter


class RecordingNotifier:
    """Collects notifications in memory instead of enqueueing Celery tasks."""

    def __init__(self):
        self.sent: List[Tuple[str, Dict[str, Any]]] = []

    def _record(self, kind: str, **kwargs) -> None:
        self.sent.append((kind, kwargs))

    def of_kind(self, kind: str) -> List[Dict[str, Any]]:
        return [kwargs for sent_kind, kwargs in self.sent if sent_kind == kind]

    def email_verification(self, **kwargs) -> None:
        self._record("email_verification", **kwargs)

    def password_reset(self, **kwargs) -> None:
        self._record("password_reset", **kwargs)

    def password_changed(self, **kwargs) -> None:
        self._record("password_changed", **kwargs)

    def account_locked(self, **kwargs) -> None:
        self._record("account_locked", **kwargs)

    def account_unlocked(self, **kwargs) -> None:
        self._record("account_unlocked", **kwargs)


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or utcnow().replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_file.close()

    engine = create_engine(
        f"sqlite:///{db_file.name}",
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_file.name)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def brute_force() -> BruteForceCounter:
    return BruteForceCounter(max_per_window=20, window=timedelta(minutes=15))


@pytest.fixture()
def client(
    db_session: Session,
    notifier: RecordingNotifier,
    brute_force: BruteForceCounter,
) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.state.brute_force_counter = brute_force
    app.state.limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
