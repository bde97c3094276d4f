import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone

# Settings are read at import time; point them at SQLite before the app loads.
_scratch = tempfile.mkdtemp(prefix="campus-events-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_scratch}/unused.db"
os.environ["FILE_STORAGE_PATH"] = os.path.join(_scratch, "uploads")
os.environ["WORKER_ENABLED"] = "false"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.database import get_db
from app.main import app
from app.models import (
    Base,
    CertificateTemplate,
    Event,
    Registration,
    Survey,
    SurveyResponse,
)
from app.services import certificates
from app.services.attendance import issue_credential
from app.services.file_storage import FileStorageService

EVENT_START = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture()
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def storage(tmp_path, monkeypatch):
    """Certificate files go to a per-test directory."""
    storage = FileStorageService(str(tmp_path / "files"))
    monkeypatch.setattr(certificates, "file_storage", storage)
    return storage


@pytest.fixture()
def organizer_id():
    return uuid.uuid4()


@pytest.fixture()
def attendee_id():
    return uuid.uuid4()


@pytest.fixture()
def auth_headers():
    def _headers(user_id, role="participant"):
        return {"X-User-Id": str(user_id), "X-User-Role": role}
    return _headers


@pytest.fixture()
def in_session(session_factory):
    """Run a service call in its own session, as a request or worker would."""
    async def _call(func, *args, **kwargs):
        async with session_factory() as session:
            return await func(session, *args, **kwargs)
    return _call


@pytest.fixture()
def make_event(db, organizer_id):
    async def _make(start_at=EVENT_START, before=60, during=30, title="Intro to Robotics"):
        event = Event(
            title=title,
            venue="Main Hall",
            organizer_id=organizer_id,
            start_at=start_at,
            end_at=start_at + timedelta(hours=2),
            check_in_before_minutes=before,
            check_in_during_minutes=during,
        )
        db.add(event)
        await db.commit()
        return event
    return _make


@pytest.fixture()
def register(db):
    async def _register(event, user_id, status="active"):
        db.add(Registration(event_id=event.id, user_id=user_id, status=status))
        await db.commit()
    return _register


@pytest.fixture()
def make_credential(db, organizer_id):
    async def _make(event, **kwargs):
        return await issue_credential(db, created_by=organizer_id, event_id=event.id, **kwargs)
    return _make


@pytest.fixture()
def make_survey(db):
    async def _make(event, is_active=True, is_open=True, opens_at=None, closes_at=None):
        survey = Survey(
            event_id=event.id, title="Feedback", is_active=is_active,
            is_open=is_open, opens_at=opens_at, closes_at=closes_at,
        )
        db.add(survey)
        await db.commit()
        return survey
    return _make


@pytest.fixture()
def answer_survey(db):
    async def _answer(survey, user_id):
        db.add(SurveyResponse(survey_id=survey.id, user_id=user_id, answers={"rating": 5}))
        await db.commit()
    return _answer


@pytest.fixture()
def make_template(db):
    async def _make(event, prefix=None, is_active=True):
        template = CertificateTemplate(
            event_id=event.id,
            is_active=is_active,
            title="Certificate of Participation",
            cert_id_prefix=prefix,
            width=420,
            height=297,
        )
        db.add(template)
        await db.commit()
        return template
    return _make
