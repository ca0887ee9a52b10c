import os
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import app.models  # noqa: F401
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.core.rate_limit import limiter
from app.main import app
from app.models.candidate import Candidate, CandidateRecommendation, CandidateSkill
from app.models.company import Company
from app.models.enums import ActorType, Availability, RemotePreference
from app.models.pricing_rule import FollowUpPricingRule
from app.models.shortlist import ShortlistRequest
from app.schemas.shortlist import CreateShortlistRequest, RankingItem
from app.services import payments, shortlists
from app.services.audit import Actor
from app.services.notification_service import NotificationGateway, get_notifier
from app.services.providers.base import (
    AuthorizationResult,
    CaptureResult,
    PaymentProvider,
    ReleaseResult,
)
from app.services.providers.registry import register_provider, unregister_provider

# Defaults to a throwaway SQLite file; point at PostgreSQL to exercise advisory locks
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


class FakePaymentProvider(PaymentProvider):
    """In-memory provider. Flip the fail_* flags to simulate provider errors."""

    def __init__(self, name: str = "stripe"):
        self.name = name
        self.fail_authorize = False
        self.fail_capture = False
        self.fail_release = False
        self.valid = True
        self.calls: list[tuple] = []
        self._counter = 0

    async def authorize(self, request):
        self.calls.append(("authorize", request.amount))
        if self.fail_authorize:
            return AuthorizationResult(success=False, error_message="Your card was declined.", error_code="card_declined")
        self._counter += 1
        reference = f"pi_fake_{self._counter}_{uuid.uuid4().hex[:8]}"
        return AuthorizationResult(
            success=True,
            provider_reference=reference,
            client_handle=f"{reference}_secret",
            status="requires_payment_method",
        )

    async def capture_full(self, reference, amount):
        self.calls.append(("capture_full", reference, amount))
        if self.fail_capture:
            return CaptureResult(success=False, error_message="Capture failed at provider")
        return CaptureResult(success=True, amount_captured=Decimal(amount), provider_reference=reference)

    async def capture_partial(self, reference, authorized_amount, final_amount):
        self.calls.append(("capture_partial", reference, final_amount))
        if self.fail_capture:
            return CaptureResult(success=False, error_message="Capture failed at provider")
        return CaptureResult(success=True, amount_captured=Decimal(final_amount), provider_reference=reference)

    async def release(self, reference):
        self.calls.append(("release", reference))
        if self.fail_release:
            return ReleaseResult(success=False, error_message="Release failed at provider")
        return ReleaseResult(success=True)

    async def is_authorization_valid(self, reference):
        self.calls.append(("is_authorization_valid", reference))
        return self.valid

    def called(self, action: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == action]


class RecordingNotifier(NotificationGateway):
    def __init__(self):
        self.sent: list[dict] = []
        self.broken = False

    def enqueue(self, shortlist_id, event, context=None, sent_by=None, is_resend=False):
        if self.broken:
            raise ConnectionError("broker unavailable")
        self.sent.append(
            {
                "shortlist_id": shortlist_id,
                "event": event,
                "context": context or {},
                "sent_by": sent_by,
                "is_resend": is_resend,
            }
        )

    def events(self) -> list:
        return [n["event"] for n in self.sent]


@pytest_asyncio.fixture()
async def db_engine(tmp_path):
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    engine = create_async_engine(url, echo=False)

    if engine.dialect.name == "sqlite":
        # Let SQLAlchemy own BEGIN so SAVEPOINTs work under pysqlite
        @event.listens_for(engine.sync_engine, "connect")
        def _do_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _do_begin(conn):
            conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture()
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture()
def provider():
    fake = FakePaymentProvider("stripe")
    register_provider(fake)
    yield fake
    unregister_provider("stripe")


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest_asyncio.fixture()
async def client(session_factory, provider, notifier):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    limiter.enabled = False
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    limiter.enabled = True


def create_access_token(data: dict, expires_minutes: int | None = None) -> str:
    """Sign a token the way the identity service does."""
    settings = get_settings()
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    )
    payload = {**data, "exp": expire, "type": "access"}
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def _bearer(claims: dict) -> dict:
    return {"Authorization": f"Bearer {create_access_token(claims)}"}


async def _create_company(db_session, name="Acme Corp", email="hiring@acme.test"):
    company = Company(name=name, email=email)
    db_session.add(company)
    await db_session.commit()
    headers = _bearer({"sub": str(uuid.uuid4()), "role": "company", "company_id": str(company.id)})
    return company, headers


@pytest_asyncio.fixture()
async def company_data(db_session):
    return await _create_company(db_session)


@pytest_asyncio.fixture()
async def other_company_data(db_session):
    return await _create_company(db_session, "Globex", "jobs@globex.test")


@pytest.fixture()
def admin_id():
    return uuid.uuid4()


@pytest.fixture()
def admin_headers(admin_id):
    return _bearer({"sub": str(admin_id), "role": "admin"})


@pytest_asyncio.fixture()
async def pricing_rules(db_session):
    for days, discount in [(7, "30"), (14, "20"), (30, "10")]:
        db_session.add(FollowUpPricingRule(days_threshold=days, discount_percent=Decimal(discount), is_active=True))
    await db_session.commit()


async def add_candidate(
    db_session,
    *,
    desired_role="Backend Engineer",
    skills=(("Python", 0.9), ("PostgreSQL", 0.8)),
    seniority=2,
    recommendations=0,
    created_at=None,
    **fields,
) -> Candidate:
    now = datetime.now(timezone.utc)
    candidate = Candidate(
        first_name=fields.pop("first_name", "Test"),
        last_name=fields.pop("last_name", "Candidate"),
        desired_role=desired_role,
        seniority_estimate=seniority,
        availability=fields.pop("availability", Availability.OPEN),
        remote_preference=fields.pop("remote_preference", RemotePreference.REMOTE),
        last_active_at=fields.pop("last_active_at", now - timedelta(hours=2)),
        created_at=created_at or now - timedelta(days=90),
        **fields,
    )
    db_session.add(candidate)
    await db_session.flush()
    for name, confidence in skills:
        db_session.add(CandidateSkill(candidate_id=candidate.id, skill_name=name, confidence_score=confidence))
    for i in range(recommendations):
        db_session.add(CandidateRecommendation(candidate_id=candidate.id, recommender_name=f"Referee {i}"))
    await db_session.commit()
    return candidate


@pytest_asyncio.fixture()
async def candidate_pool(db_session):
    """Three strong backend matches and one clear mismatch."""
    strong = [
        await add_candidate(db_session, first_name=f"Strong{i}", recommendations=i)
        for i in range(3)
    ]
    await add_candidate(
        db_session,
        first_name="Designer",
        desired_role="Product Designer",
        skills=(("Figma", 0.9),),
        seniority=0,
        availability=Availability.NOT_NOW,
        remote_preference=RemotePreference.ONSITE,
        last_active_at=datetime.now(timezone.utc) - timedelta(days=300),
    )
    return strong


# -- lifecycle helpers ------------------------------------------------------

ADMIN = Actor(id=uuid.uuid4(), type=ActorType.ADMIN)


def brief(**overrides) -> CreateShortlistRequest:
    data = {
        "role_title": "Backend Engineer",
        "tech_stack_required": ["Python", "PostgreSQL"],
        "seniority_required": 2,
        "is_remote": True,
    }
    data.update(overrides)
    return CreateShortlistRequest(**data)


async def submitted(db, company, **overrides) -> ShortlistRequest:
    result = await shortlists.create_request(db, company.id, brief(**overrides))
    assert result.success, result.message
    await db.commit()
    return result.data


async def priced(db, company, notifier, price="500", count=6) -> ShortlistRequest:
    shortlist = await submitted(db, company)
    processed = await shortlists.process(db, shortlist.id, ADMIN)
    assert processed.success
    await db.commit()
    rankings = [RankingItem(candidate_id=row.candidate_id, admin_approved=True) for row in processed.data]
    assert (await shortlists.update_rankings(db, shortlist.id, rankings, ADMIN)).success
    await db.commit()
    proposed = await shortlists.propose_scope(
        db, shortlist.id, Decimal(price), count, actor=ADMIN, notifier=notifier
    )
    assert proposed.success, proposed.message
    await db.commit()
    return shortlist


async def authorized(db, company, notifier, provider, **kwargs):
    shortlist = await priced(db, company, notifier, **kwargs)
    approved = await shortlists.approve_pricing(db, shortlist.id, company.id, True, notifier=notifier)
    assert approved.success, approved.message
    await db.commit()
    confirmed = await shortlists.confirm_payment(db, shortlist.id, company.id)
    assert confirmed.success
    await db.commit()
    return shortlist, confirmed.data


async def delivered(db, company, notifier, provider, **kwargs):
    shortlist, payment = await authorized(db, company, notifier, provider, **kwargs)
    result = await shortlists.deliver(db, shortlist.id, actor=ADMIN, notifier=notifier)
    assert result.success, result.message
    await db.commit()
    return shortlist, payment


async def reload(db, shortlist_id) -> ShortlistRequest:
    return (await shortlists.get_request(db, shortlist_id)).data


async def reload_payment(db, payment_id):
    return await payments.get_payment(db, payment_id)

