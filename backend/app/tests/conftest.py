import os
os.environ["TESTING"] = "1"
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_labs.db")
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path

import uuid

sys.path.append(str(Path(__file__).resolve().parents[2]))

from app import pubsub
from app.main import app
from app.database import Base, engine, get_db

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

DRYWALL_SOP_ID = uuid.UUID("5b0c2f64-1d1e-4c59-9a43-3f1f6f0a0d01")
FLOORING_SOP_ID = uuid.UUID("5b0c2f64-1d1e-4c59-9a43-3f1f6f0a0d02")


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(autouse=True)
def clean_tables():
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture
def client():
    # the fake redis connection belongs to the previous client's event loop
    pubsub._redis = None
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def crew_headers(crew_member_id: uuid.UUID | None = None, role: str = "crew") -> dict[str, str]:
    """Headers identifying a crew member the way the upstream gateway does."""

    return {
        "X-Crew-Member-Id": str(crew_member_id or uuid.uuid4()),
        "X-Crew-Role": role,
    }


def admin_headers(crew_member_id: uuid.UUID | None = None) -> dict[str, str]:
    return crew_headers(crew_member_id, role="admin")
