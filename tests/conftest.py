from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from incidenthub.core.config import Settings
from incidenthub.core.database import Base, build_engine, build_sessionmaker, create_schema
from incidenthub.core.relay import EventPublisher
from incidenthub.core.websocket import FanoutHub
from incidenthub.main import create_app
from incidenthub.models import incident as _incident_model  # noqa: F401
from incidenthub.models.user import User
from incidenthub.schemas.incident import GeoJSONPoint, IncidentResponse, UserRef
from incidenthub.services.geo_store import IncidentStore
from incidenthub.services.volunteers import VolunteerCoordinator

SECRET = "test-secret"

# Connaught Place, New Delhi
DELHI = (77.2090, 28.6139)
MUMBAI = (72.8777, 19.0760)

USERS = {
    "alice": 1,
    "bob": 2,
    "carol": 3,
    "dave": 4,
}


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'incidents.db'}",
        SECRET_KEY=SECRET,
        REDIS_URL=None,
        MINIO_ENDPOINT=None,
        FANOUT_QUEUE_SIZE=10,
        FANOUT_SEND_TIMEOUT=1.0,
    )


@pytest.fixture
def seeded(settings):
    """Create the schema and the known users with a plain sync engine."""
    engine = create_engine(settings.DATABASE_URL.replace("sqlite+aiosqlite", "sqlite"))
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        for name, user_id in USERS.items():
            session.add(User(id=user_id, email=f"{name}@example.com", full_name=name.title()))
        for user_id in range(10, 20):
            session.add(User(id=user_id, email=f"helper{user_id}@example.com", full_name=f"Helper {user_id}"))
        session.commit()
    engine.dispose()
    return USERS


@pytest.fixture
async def store(settings, seeded):
    engine = build_engine(settings)
    await create_schema(engine)
    yield IncidentStore(build_sessionmaker(engine))
    await engine.dispose()


@pytest.fixture
def hub():
    return FanoutHub(queue_size=10, send_timeout=1.0)


@pytest.fixture
def coordinator(store, hub):
    return VolunteerCoordinator(store, EventPublisher(hub))


@pytest.fixture
def client(settings, seeded):
    with TestClient(create_app(settings)) as c:
        yield c


def bearer(user_id: int) -> dict:
    token = jwt.encode({"sub": str(user_id)}, SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


def report(category="Fire", description="Smoke from a building", address="Connaught Place",
           point=DELHI) -> dict:
    return {
        "category": category,
        "description": description,
        "address": address,
        "coordinates": [point[0], point[1]],
    }


def make_response(incident_id: int, status: str = "Pending") -> IncidentResponse:
    now = datetime.now(timezone.utc)
    return IncidentResponse(
        id=incident_id,
        category="Fire",
        description="test",
        address="somewhere",
        location=GeoJSONPoint(coordinates=list(DELHI)),
        status=status,
        reported_by=UserRef(id=1),
        volunteers=[],
        created_at=now,
        updated_at=now,
    )
