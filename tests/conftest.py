import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("YOUTUBE_API_KEY", "")

from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from database import init_db, make_engine
from ledger import AttendanceLedger, SettingsRepository
from live_gate import LiveStatusGate


class FakeClock:
    """Settable naive-UTC clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs):
        self.now += timedelta(seconds=seconds, **kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 5, 1, 10, 0, 0))


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    init_db(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def ledger(session_factory, clock):
    return AttendanceLedger(session_factory, clock=clock)


@pytest.fixture
def settings_repo(session_factory, clock):
    return SettingsRepository(session_factory, clock=clock)


@pytest.fixture
def gate(settings_repo, clock):
    return LiveStatusGate(settings_repo, clock=clock)


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    import main
    from database import engine
    from models import Base

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    main.presence.clear()

    with TestClient(main.app) as test_client:
        yield test_client
