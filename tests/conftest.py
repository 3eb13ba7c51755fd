import os
from datetime import date, datetime
from types import SimpleNamespace
from typing import Generator

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_classfinder.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("EVENT_PUBLISHING_ENABLED", "false")

from classfinder.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from classfinder import occupancy  # noqa: E402
from classfinder.auth import create_access_token  # noqa: E402
from classfinder.database import Base, SessionLocal, engine  # noqa: E402
from classfinder.dependencies import get_now  # noqa: E402
from classfinder.models import Building, Classroom, RoleEnum, User  # noqa: E402
from classfinder.rate_limit import booking_attempts  # noqa: E402
from services.admin.app import app as admin_app  # noqa: E402
from services.bookings.app import app as bookings_app  # noqa: E402
from services.heatmap.app import app as heatmap_app  # noqa: E402
from services.manager.app import app as manager_app  # noqa: E402

# Monday 4 March 2030, 08:00 campus time.
NOW = datetime(2030, 3, 4, 8, 0)
TODAY = NOW.date()


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    occupancy.invalidate()
    booking_attempts.reset()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def seed(db_session) -> SimpleNamespace:
    """Two buildings, three rooms and one user per role."""

    main = Building(name="Gokongwei Hall", code="GK", floors=3)
    annex = Building(name="Andrew Hall", code="AH", floors=2)
    db_session.add_all([main, annex])
    db_session.flush()

    room = Classroom(building_id=main.id, room_number="GK301", floor=3, capacity=40, amenities=["projector"])
    neighbour = Classroom(building_id=main.id, room_number="GK302", floor=3, capacity=30, amenities=[])
    annex_room = Classroom(building_id=annex.id, room_number="AH201", floor=2, capacity=25, amenities=["whiteboard"])
    db_session.add_all([room, neighbour, annex_room])

    student = User(email="juan@dlsu.edu.ph", name="Juan Cruz", id_number="12012345")
    classmate = User(email="maria@dlsu.edu.ph", name="Maria Santos", id_number="12054321")
    manager = User(email="manager@dlsu.edu.ph", name="Room Manager", id_number="M-001", role=RoleEnum.MANAGER)
    admin = User(email="admin@dlsu.edu.ph", name="Admin", id_number="A-001", role=RoleEnum.ADMIN)
    manager.assigned_buildings = [main]
    db_session.add_all([student, classmate, manager, admin])
    db_session.commit()

    return SimpleNamespace(
        main=main,
        annex=annex,
        room=room,
        neighbour=neighbour,
        annex_room=annex_room,
        student=student,
        classmate=classmate,
        manager=manager,
        admin=admin,
    )


def auth_header(user: User) -> dict[str, str]:
    token = create_access_token({"sub": user.email, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


def _client(app) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_now] = lambda: NOW
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.pop(get_now, None)


@pytest.fixture()
def bookings_client() -> Generator[TestClient, None, None]:
    yield from _client(bookings_app)


@pytest.fixture()
def manager_client() -> Generator[TestClient, None, None]:
    yield from _client(manager_app)


@pytest.fixture()
def admin_client() -> Generator[TestClient, None, None]:
    yield from _client(admin_app)


@pytest.fixture()
def heatmap_client() -> Generator[TestClient, None, None]:
    yield from _client(heatmap_app)


def booking_payload(classroom_id: int, start: str, end: str, on: date = TODAY, **overrides) -> dict:
    payload = {
        "classroom_id": classroom_id,
        "booking_date": on.isoformat(),
        "start_time": start,
        "end_time": end,
        "purpose": "group_study",
        "estimated_attendees": 4,
    }
    payload.update(overrides)
    return payload
