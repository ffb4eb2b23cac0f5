# tests/conftest.py

import os
import uuid

os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient

from main import app
from sis_app.config import settings
from sis_app.database import SessionLocal, engine, get_db
from sis_app.models.all_models import Base, UserRole
from sis_app.schemas.auth import RequestContext
from sis_app.utils.auth import create_access_token

ORG_ID = uuid.uuid4()


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_context():
    return RequestContext(organization_id=ORG_ID, actor_id=uuid.uuid4(), role=UserRole.ADMIN)


@pytest.fixture
def teacher_context():
    return RequestContext(organization_id=ORG_ID, actor_id=uuid.uuid4(), role=UserRole.TEACHER)


@pytest.fixture
def mentor_context():
    return RequestContext(organization_id=ORG_ID, actor_id=uuid.uuid4(), role=UserRole.MENTOR)


def headers_for(context: RequestContext) -> dict:
    token = create_access_token(context.actor_id, context.organization_id, context.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin_context):
    return headers_for(admin_context)


@pytest.fixture
def teacher_headers(teacher_context):
    return headers_for(teacher_context)


@pytest.fixture
def mentor_headers(mentor_context):
    return headers_for(mentor_context)


@pytest.fixture
def block_conflicts():
    settings.BLOCK_ON_SCHEDULE_CONFLICTS = True
    yield
    settings.BLOCK_ON_SCHEDULE_CONFLICTS = False


@pytest.fixture
def passthrough_below_range():
    settings.TRANSMUTATION_BELOW_RANGE = "passthrough"
    yield
    settings.TRANSMUTATION_BELOW_RANGE = "fail"
