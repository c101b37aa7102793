import os

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import pytest
from beanie import init_beanie
from mongomock_motor import AsyncMongoMockClient

from session_attendance.db import DOCUMENT_MODELS
from session_attendance.services import attendance_store


@pytest.fixture
async def database():
    """Fresh in-memory MongoDB with the Beanie models registered."""
    client = AsyncMongoMockClient()
    db = client["attendance_test"]
    await init_beanie(database=db, document_models=DOCUMENT_MODELS)
    yield db


@pytest.fixture
def make_session(database):
    async def factory(
        batch_id="B1",
        instructor_id="I1",
        session_date="2024-03-01",
        session_title="Intro",
        **kwargs,
    ):
        kwargs.setdefault("marked_by", instructor_id)
        return await attendance_store.create_session(
            batch_id, instructor_id, session_date, session_title, **kwargs
        )

    return factory
