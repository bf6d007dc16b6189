import copy
import os

os.environ.setdefault("AI_MODE", "mock")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from viberoute import db as db_module
from viberoute.core.ai_client import AIClientError, CompletionResult, CompletionUsage
from viberoute.db import Base, get_db
from viberoute.limiter import limiter
from viberoute.main import app
from viberoute.models import Note
from viberoute.schemas import ResolvedPreferences

USER_ID = "11111111-1111-1111-1111-111111111111"
OTHER_USER_ID = "22222222-2222-2222-2222-222222222222"

# --- Test Database Setup ---

SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool  # Important for in-memory to share connection across threads/sessions if needed
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    # Background tasks open their own session via db.SessionLocal()
    db_module._engine = engine
    db_module._SessionLocal = TestingSessionLocal
    limiter.reset()
    yield
    Base.metadata.drop_all(bind=engine)
    db_module._engine = None
    db_module._SessionLocal = None


@pytest.fixture
def client():
    """Test client with DB override."""
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def db_session():
    """Direct database session for setup."""
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def other_user_id():
    return OTHER_USER_ID


@pytest.fixture
def note(db_session):
    n = Note(user_id=USER_ID, title="Tatra loop", note_text="Two days around the Tatras, twisty roads.")
    db_session.add(n)
    db_session.commit()
    db_session.refresh(n)
    return n


@pytest.fixture
def preferences():
    return ResolvedPreferences(terrain="paved", road_type="twisty", duration_h=10, distance_km=300)


@pytest.fixture
def auth_headers():
    return {"X-User-Id": USER_ID}


# --- Plans ---

SAMPLE_PLAN = {
    "title": "Tatra loop",
    "total_distance_km": 222,
    "total_duration_h": 6.5,
    "highlights": ["Zakopane", "Krynica spa"],
    "days": [
        {
            "day": 1,
            "segments": [
                {
                    "name": "Krakow to Zakopane",
                    "description": "Out of the city into the hills.",
                    "start": {"name": "Krakow", "lat": 50.0614, "lon": 19.9366},
                    "end": {"name": "Zakopane", "lat": 49.2992, "lon": 19.9496},
                    "distance_km": 105,
                    "duration_h": 2.5,
                },
                {
                    "name": "Zakopane to Nowy Targ",
                    "description": "Short hop north.",
                    "start": {"name": "Zakopane", "lat": 49.2992, "lon": 19.9496},
                    "end": {"name": "Nowy Targ", "lat": 49.4775, "lon": 20.0327},
                    "distance_km": 22,
                    "duration_h": 0.5,
                },
            ],
        },
        {
            "day": 2,
            "segments": [
                {
                    "name": "Nowy Targ to Krynica",
                    "description": "Twisty roads east.",
                    "start": {"name": "Nowy Targ", "lat": 49.4775, "lon": 20.0327},
                    "end": {"name": "Krynica", "lat": 49.4213, "lon": 20.9592},
                    "distance_km": 95,
                    "duration_h": 3.5,
                },
            ],
        },
    ],
}


@pytest.fixture
def sample_plan():
    return copy.deepcopy(SAMPLE_PLAN)


class CannedPlanClient:
    """Returns a fixed completion and records what it was asked."""

    def __init__(self, content, finish_reason="stop", usage=None):
        self.content = content
        self.finish_reason = finish_reason
        self.usage = usage or CompletionUsage(prompt_tokens=1000, completion_tokens=2000)
        self.requests = []

    @property
    def calls(self):
        return len(self.requests)

    def produce(self, request):
        self.requests.append(request)
        return CompletionResult(
            content=self.content,
            finish_reason=self.finish_reason,
            usage=self.usage,
            model="canned",
        )


class FailingPlanClient:
    def __init__(self):
        self.calls = 0

    def produce(self, request):
        self.calls += 1
        raise AIClientError("upstream timeout")


@pytest.fixture
def canned_client():
    """Factory for plan clients returning a fixed completion."""
    return CannedPlanClient


@pytest.fixture
def failing_client():
    return FailingPlanClient()
