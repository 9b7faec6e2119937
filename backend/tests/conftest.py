import json
import os
from datetime import date

os.environ.setdefault("DATABASE_URL", "sqlite:///./data/test.db")
os.environ["ENABLE_BACKGROUND_JOBS"] = "false"

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from therapy_booking.database import build_engine  # noqa: E402
from therapy_booking.models import Availability, Base, Psychologists  # noqa: E402
from therapy_booking.services.availability.config import BookingConfig  # noqa: E402


class FakeRedis:
    """Records pushed events instead of talking to Redis."""

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {}

    def rpush(self, key: str, value: str) -> int:
        self.lists.setdefault(key, []).append(value)
        return len(self.lists[key])

    def ping(self) -> bool:
        return True

    def events(self, event_type: str | None = None) -> list[dict]:
        events = [json.loads(raw) for raw in self.lists.get("events:p2p", [])]
        if event_type is None:
            return events
        return [e for e in events if e["type"] == event_type]


class FakeCalendarClient:
    """list_events() stand-in; outcome chosen per access token."""

    def __init__(self, events=None, error=None, refreshed=None) -> None:
        self.events = events or []
        self.error = error
        self.refreshed = refreshed
        self.by_token: dict[str, object] = {}
        self.calls: list[tuple] = []

    def list_events(self, credentials, time_min, time_max):
        self.calls.append((credentials, time_min, time_max))
        outcome = self.by_token.get(credentials.get("access_token"), self.error)
        if isinstance(outcome, Exception):
            raise outcome
        return list(self.events), self.refreshed or credentials


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def config() -> BookingConfig:
    return BookingConfig(system_event_markers=("LittleMinds", "Little Care", "Kuttikal"))


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch) -> FakeRedis:
    fake = FakeRedis()
    monkeypatch.setattr("therapy_booking.services.events.redis_client", fake)
    return fake


@pytest.fixture
def calendar_client() -> FakeCalendarClient:
    return FakeCalendarClient()


@pytest.fixture
def make_psychologist(db):
    def _make(credentials: dict | None = None, first_name: str = "Asha") -> Psychologists:
        obj = Psychologists(
            first_name=first_name,
            last_name="Menon",
            email=f"{first_name.lower()}@example.com",
            google_calendar_credentials=json.dumps(credentials) if credentials else None,
        )
        db.add(obj)
        db.commit()
        db.refresh(obj)
        return obj

    return _make


@pytest.fixture
def add_availability(db):
    def _add(psychologist_id: int, target_date: date, slots: list, is_available: bool = True) -> Availability:
        obj = Availability(
            psychologist_id=psychologist_id,
            date=target_date.isoformat(),
            time_slots=json.dumps(slots),
            is_available=int(is_available),
        )
        db.add(obj)
        db.commit()
        db.refresh(obj)
        return obj

    return _add


@pytest.fixture
def stored_slots(db):
    """Raw time_slots list of a stored availability row."""
    def _read(psychologist_id: int, target_date: date) -> list:
        db.expire_all()
        record = (
            db.query(Availability)
            .filter(
                Availability.psychologist_id == psychologist_id,
                Availability.date == target_date.isoformat(),
            )
            .one()
        )
        return json.loads(record.time_slots)

    return _read
