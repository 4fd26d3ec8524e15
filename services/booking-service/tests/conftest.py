import os

# settings are read at import time; keep tests off real brokers and in UTC
os.environ.pop("REDIS_URL", None)
os.environ.pop("RABBIT_URL", None)
os.environ["BOOKING_TIMEZONE"] = "UTC"

from datetime import date, datetime, timezone  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from booking_service import models  # noqa: E402,F401  (registers the table)
from booking_service.locks import SlotLocks  # noqa: E402
from booking_service.schemas import (  # noqa: E402
    CoachInfo,
    InitiateBookingRequest,
    ServiceMode,
    VenueInfo,
    WeeklyWindow,
)
from shared.database import create_all, get_engine, get_session  # noqa: E402

# 2030-06-04 is a Tuesday (day_of_week 2 with Sunday = 0)
BOOKING_DAY = date(2030, 6, 4)
NOW = datetime(2030, 6, 1, 9, 0, tzinfo=timezone.utc)


class FakeCatalog:
    def __init__(self) -> None:
        self.venues: dict[str, VenueInfo] = {}
        self.coaches: dict[str, CoachInfo] = {}

    def add_venue(self, venue_id: str, owner_id: str = "owner-1", price_per_hour: float = 800, **kw) -> VenueInfo:
        venue = VenueInfo(id=venue_id, owner_id=owner_id, price_per_hour=price_per_hour, **kw)
        self.venues[venue_id] = venue
        return venue

    def add_coach(
        self,
        coach_id: str,
        user_id: str = "coach-user-1",
        hourly_rate: float = 500,
        service_mode: ServiceMode = ServiceMode.FREELANCE,
        windows: list[WeeklyWindow] | None = None,
        **kw,
    ) -> CoachInfo:
        if windows is None:
            windows = [WeeklyWindow(day_of_week=d, start_time="06:00", end_time="22:00") for d in range(7)]
        coach = CoachInfo(
            id=coach_id,
            user_id=user_id,
            hourly_rate=hourly_rate,
            service_mode=service_mode,
            availability=windows,
            **kw,
        )
        self.coaches[coach_id] = coach
        return coach

    async def get_venue(self, venue_id: str):
        return self.venues.get(venue_id)

    async def get_coach(self, coach_id: str):
        return self.coaches.get(coach_id)

    async def list_venue_ids_for_owner(self, owner_id: str) -> list[str]:
        return [v.id for v in self.venues.values() if v.owner_id == owner_id]


def make_request(**overrides) -> InitiateBookingRequest:
    data = {
        "user_id": "player-1",
        "venue_id": "venue-1",
        "date": BOOKING_DAY,
        "start_time": "14:00",
        "end_time": "15:00",
        "sport": "badminton",
    }
    data.update(overrides)
    return InitiateBookingRequest(**data)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}", pooled=False)
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def catalog() -> FakeCatalog:
    fake = FakeCatalog()
    fake.add_venue("venue-1", owner_id="owner-1", price_per_hour=800, allow_external_coaches=True)
    fake.add_coach("coach-1", user_id="coach-user-1", hourly_rate=500)
    return fake


@pytest.fixture
def locks() -> SlotLocks:
    return SlotLocks()
