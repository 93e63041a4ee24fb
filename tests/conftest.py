"""
Shared fixtures: a throwaway SQLite database per test, a controllable clock,
recording message senders and a seeded patient/assignment pair.
"""
import os

os.environ["POSTGRES_DSN"] = "sqlite+aiosqlite://"
os.environ["ENV"] = "test"
os.environ["EVENT_BUS_PROVIDER"] = "noop"
os.environ["SMS_PROVIDER"] = "noop"
os.environ["EMAIL_PROVIDER"] = "noop"

import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from carelink.core.base import Base
from carelink.core.config import settings
from carelink.core.db import import_models
from carelink.core.security import Principal, ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT
from carelink.modules.assignments.models import SecondaryDoctorAssignment, CONSENT_PENDING, CONSENT_GRANTED
from carelink.modules.assignments.repository import AssignmentRepository
from carelink.modules.consent.delivery import ConsentCodeNotifier
from carelink.modules.consent.service import ConsentService
from carelink.modules.patients.repository import PatientRepository


# ============================================================================
# Infrastructure
# ============================================================================

class FakeClock:
    """Callable clock that only moves when a test says so."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSmsSender:
    def __init__(self, fail: bool = False):
        self.sent: list[tuple[str, str]] = []
        self.fail = fail

    async def send_sms(self, to: str, body: str) -> None:
        if self.fail:
            raise ConnectionError("sms gateway unavailable")
        self.sent.append((to, body))


class RecordingEmailSender:
    def __init__(self, fail: bool = False):
        self.sent: list[tuple[str, str, str]] = []
        self.fail = fail

    async def send_email(self, to: str, subject: str, body: str) -> None:
        if self.fail:
            raise ConnectionError("mail relay unavailable")
        self.sent.append((to, subject, body))


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite so every session gets its own connection."""
    import_models()
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'carelink.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def sms_sender():
    return RecordingSmsSender()


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def notifier(sms_sender, email_sender):
    return ConsentCodeNotifier(sms=sms_sender, email=email_sender)


@pytest.fixture
def failing_notifier():
    """Both channels raise on send."""
    return ConsentCodeNotifier(sms=RecordingSmsSender(fail=True), email=RecordingEmailSender(fail=True))


@pytest_asyncio.fixture
async def consent_service(session_factory, notifier, clock):
    """Factory returning a ConsentService bound to a fresh session, like one request each."""
    sessions = []

    def make() -> ConsentService:
        session = session_factory()
        sessions.append(session)
        return ConsentService(session, notifier=notifier, clock=clock)

    yield make
    for session in sessions:
        await session.close()


@pytest.fixture
def reload(session_factory):
    """Read a row back through a new session, bypassing any identity map."""

    async def _reload(model, pk):
        async with session_factory() as session:
            return await session.get(model, pk)

    return _reload


@pytest.fixture
def fetch_all(session_factory):
    """All rows of a model matching simple equality filters, oldest first."""

    async def _fetch(model, **filters):
        q = select(model).filter_by(**filters).order_by(model.created_at.asc())
        async with session_factory() as session:
            res = await session.execute(q)
            return list(res.scalars().all())

    return _fetch


# ============================================================================
# Parties
# ============================================================================

@pytest.fixture
def org_id():
    return uuid.UUID(settings.DEFAULT_ORG_ID)


@pytest.fixture
def primary_doctor_id():
    return uuid.uuid4()


@pytest.fixture
def secondary_doctor_id():
    return uuid.uuid4()


@pytest.fixture
def patient_user_id():
    return uuid.uuid4()


@pytest.fixture
def primary_doctor(org_id, primary_doctor_id):
    return Principal(user_id=primary_doctor_id, org_id=org_id, roles=[ROLE_DOCTOR], scopes=["*"])


@pytest.fixture
def secondary_doctor(org_id, secondary_doctor_id):
    return Principal(user_id=secondary_doctor_id, org_id=org_id, roles=[ROLE_DOCTOR], scopes=["*"])


@pytest.fixture
def patient_principal(org_id, patient_user_id):
    return Principal(user_id=patient_user_id, org_id=org_id, roles=[ROLE_PATIENT], scopes=["*"])


@pytest.fixture
def stranger(org_id):
    """A doctor with no relation to the seeded assignment."""
    return Principal(user_id=uuid.uuid4(), org_id=org_id, roles=[ROLE_DOCTOR], scopes=["*"])


@pytest.fixture
def admin(org_id):
    return Principal(user_id=uuid.uuid4(), org_id=org_id, roles=[ROLE_ADMIN], scopes=["*"])


# ============================================================================
# Seed data
# ============================================================================

@pytest_asyncio.fixture
async def patient(session_factory, org_id, primary_doctor_id, patient_user_id):
    """A patient reachable by both SMS and email."""
    async with session_factory() as session:
        obj = await PatientRepository(session).create(
            org_id,
            user_id=patient_user_id,
            legal_name="Amara Okafor",
            preferred_name="Amara",
            primary_phone="+15551234567",
            primary_email="amara.okafor@example.com",
            primary_doctor_id=primary_doctor_id,
        )
        await session.commit()
        return obj


@pytest_asyncio.fixture
async def make_assignment(session_factory, org_id, patient, primary_doctor_id, secondary_doctor_id, clock):
    """Insert an assignment directly; keyword overrides adjust any column."""

    async def _make(**overrides) -> SecondaryDoctorAssignment:
        requires_consent = overrides.pop("requires_consent", True)
        data = dict(
            patient_id=patient.id,
            primary_doctor_id=primary_doctor_id,
            secondary_doctor_id=secondary_doctor_id,
            assignment_reason="Second opinion on persistent arrhythmia",
            specialty_focus=["cardiology"],
            notes=None,
            requires_consent=requires_consent,
            consent_status=CONSENT_PENDING if requires_consent else CONSENT_GRANTED,
            access_granted=not requires_consent,
            access_granted_at=None if requires_consent else clock(),
            expires_at=clock() + timedelta(days=90),
            is_active=True,
            deactivated_at=None,
            created_by=primary_doctor_id,
        )
        data.update(overrides)
        async with session_factory() as session:
            obj = await AssignmentRepository(session).create(org_id, **data)
            await session.commit()
            return obj

    return _make


@pytest_asyncio.fixture
async def assignment(make_assignment):
    """An active assignment still waiting for consent."""
    return await make_assignment()
