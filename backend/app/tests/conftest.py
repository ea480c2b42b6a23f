import os
os.environ["TESTING"] = "1"
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import sys
from pathlib import Path

import uuid

sys.path.append(str(Path(__file__).resolve().parents[2]))

from app.main import app
from app.database import Base, get_db
from app import auth, models

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def session():
    """Isolated in-memory database for service-level tests."""
    mem_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=mem_engine)
    db = sessionmaker(autocommit=False, autoflush=False, bind=mem_engine)()
    try:
        yield db
    finally:
        db.close()
        mem_engine.dispose()


def create_user(role: models.Role = models.Role.TRAINER, *, name: str | None = None):
    """
    purpose: seed a user with a given role directly in the test database
    outputs: tuple(auth headers dict, user id str)
    """

    email = f"{role.name.lower()}-{uuid.uuid4()}@example.com"
    db = TestingSessionLocal()
    user = models.User(
        email=email,
        hashed_password="secret",
        name=name or email.split("@")[0],
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    user_id = str(user.id)
    db.close()
    token = auth.create_access_token({"sub": email})
    return {"Authorization": f"Bearer {token}"}, user_id


def create_equipment(
    status: models.EquipmentStatus = models.EquipmentStatus.FUNCTIONAL,
    *,
    name: str | None = None,
) -> str:
    db = TestingSessionLocal()
    equipment = models.Equipment(
        name=name or f"Projecteur {uuid.uuid4().hex[:6]}",
        type="Audiovisuel",
        status=status,
    )
    db.add(equipment)
    db.commit()
    equipment_id = str(equipment.id)
    db.close()
    return equipment_id


def equipment_status(equipment_id: str) -> models.EquipmentStatus:
    db = TestingSessionLocal()
    try:
        return db.get(models.Equipment, uuid.UUID(equipment_id)).status
    finally:
        db.close()
