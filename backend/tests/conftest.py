"""Shared fixtures: in-memory SQLite, fake transports and content, a wired engine."""

import asyncio
from datetime import datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import leadengine.models  # noqa: F401  registers every table on Base.metadata
from leadengine.database import Base
from leadengine.errors import DeliveryError
from leadengine.models.lead import Lead, LeadSource, LeadStatus
from leadengine.services.content import ContentResult, EmailVariant, ResilientContent
from leadengine.services.conversion import ConversionService
from leadengine.services.dispatcher import ResponseDispatcher
from leadengine.services.engine import LeadEngine
from leadengine.services.intake import IntakeNormalizer, canonical_company
from leadengine.services.locks import LocalLeadLocks
from leadengine.services.scoring import ScoringConfig, ScoringEngine


class FakeTransport:
    def __init__(self, channel: str = "email"):
        self.channel = channel
        self.sent = []

    async def send(self, lead, subject: str, body: str) -> None:
        self.sent.append((lead.email, subject, body))


class FailingTransport:
    channel = "email"

    def __init__(self):
        self.calls = 0

    async def send(self, lead, subject: str, body: str) -> None:
        self.calls += 1
        raise DeliveryError("SMTP connection refused")


class FakeContentClient:
    """Stands in for the Anthropic client."""

    model = "fake-model"

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.calls = 0

    async def generate_outreach(self, request):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("model unavailable")
        variant = EmailVariant(
            subject=f"Following up for {request.lead['company']}",
            body=f"Hi {request.lead['first_name']}, thanks for reaching out.",
            personalization_points=["first_name", "company"],
        )
        return ContentResult(variants=[variant], model=self.model, confidence=0.9)

    async def summarize_score(self, lead: dict, score: int, factors: list[str]) -> str:
        if self.fail:
            raise RuntimeError("model unavailable")
        return f"Model summary for score {score}"


def sqlite_engine(url: str = "sqlite://", **kwargs):
    engine = create_engine(url, connect_args={"check_same_thread": False}, **kwargs)

    # pysqlite needs these to honor SAVEPOINT (begin_nested)
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_engine():
    engine = sqlite_engine(poolclass=StaticPool)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def make_lead(session):
    """Persist a lead directly, bypassing intake."""

    def _make(**overrides) -> Lead:
        fields = {
            "source": LeadSource.WEBSITE_FORM,
            "email": "jane@acme.com",
            "company": "Acme Corp",
            "first_name": "Jane",
            "last_name": "Doe",
            "title": "Director of Engineering",
            "received_at": datetime.utcnow(),
            "status": LeadStatus.NEW,
        }
        fields.update(overrides)
        fields.setdefault("company_key", canonical_company(fields["company"]))
        lead = Lead(**fields)
        session.add(lead)
        session.commit()
        return lead

    return _make


@pytest.fixture
def email_transport():
    return FakeTransport("email")


@pytest.fixture
def scheduler():
    return MagicMock()


@pytest.fixture
def crm():
    adapter = MagicMock()
    adapter.is_configured = False
    return adapter


@pytest.fixture
def lead_engine(session_factory, email_transport, scheduler, crm):
    content = ResilientContent(primary=FakeContentClient())
    return LeadEngine(
        session_factory=session_factory,
        locks=LocalLeadLocks(wait=1.0),
        normalizer=IntakeNormalizer(),
        scorer=ScoringEngine(config=ScoringConfig(), content=content, timeout=5.0),
        dispatcher=ResponseDispatcher(
            content=content, transports={"email": email_transport}, sla_seconds=30,
            max_attempts=3, backoff_seconds=30,
        ),
        conversion=ConversionService(seat_price=4000.0, default_ae_id="user_ae_001", crm=crm,
                                     slack_webhook_url=""),
        scheduler=scheduler,
        notify_hot_leads=False,
    )
