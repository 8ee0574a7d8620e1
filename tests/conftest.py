"""Shared test infrastructure for the Rank It Pro review drip test suite.

Provides:
- db_session: async SQLite in-memory session with all tables created
- sender_mock: mock NotificationSender capturing outbound messages
- make_company / make_technician / make_check_in: collaborator factories
- make_settings: factory for ReviewFollowUpSettings (UTC, weekends allowed)
- make_drip: factory for ReviewRequest + ReviewRequestStatus
"""

import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import Base first, then models to register all tables
from rankitpro.infra.database import Base

import rankitpro.domain.models  # noqa: F401

from rankitpro.domain.models import (
    CheckIn,
    Company,
    ReviewFollowUpSettings,
    ReviewRequest,
    ReviewRequestStatus,
    Technician,
)
from rankitpro.services.drip_settings_service import default_settings
from rankitpro.services.notification_sender import DeliveryResult

# Monday 2026-03-02 10:00 UTC, inside the default 10:00 send window
DAY0 = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Database session fixture
# ---------------------------------------------------------------------------

@pytest.fixture
async def db_session():
    """Async SQLite in-memory session with all tables created.

    Creates a fresh engine + tables for each test, yields a session,
    then rolls back and tears down.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


# ---------------------------------------------------------------------------
# Notification sender mock
# ---------------------------------------------------------------------------

@pytest.fixture
def sender_mock():
    """Mock NotificationSender that accepts every message.

    Captured (channel, recipient, subject, body) tuples land in ``.sent``.
    Override ``.send.side_effect`` to simulate failures.
    """
    mock = MagicMock()
    mock.sent = []

    async def _capture_send(channel, recipient, subject, body):
        mock.sent.append((channel, recipient, subject, body))
        return DeliveryResult(channel, recipient, True)

    mock.send = AsyncMock(side_effect=_capture_send)
    return mock


# ---------------------------------------------------------------------------
# Company / technician / check-in factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_company(db_session):
    async def _factory(name: str = "Acme Plumbing") -> Company:
        company = Company(id=str(uuid.uuid4()), name=name)
        db_session.add(company)
        await db_session.flush()
        return company

    return _factory


@pytest.fixture
def make_technician(db_session):
    async def _factory(company: Company, name: str = "Sam Rivera") -> Technician:
        tech = Technician(id=str(uuid.uuid4()), company_id=company.id, name=name)
        db_session.add(tech)
        await db_session.flush()
        return tech

    return _factory


@pytest.fixture
def make_check_in(db_session):
    """Factory that creates a completed CheckIn.

    Usage:
        check_in = await make_check_in(company, tech, job_type="Drain Cleaning")
    """
    async def _factory(
        company: Company,
        technician: Technician,
        job_type: str = "Water Heater Repair",
        city: str = "Denver",
        customer_name: str = "Jane Customer",
        customer_email: str | None = "jane@example.com",
        customer_phone: str | None = "+15551234567",
        invoice_amount: Decimal | None = Decimal("250.00"),
        positive_experience: bool | None = True,
        completed_at: datetime | None = DAY0,
    ) -> CheckIn:
        check_in = CheckIn(
            id=str(uuid.uuid4()),
            company_id=company.id,
            technician_id=technician.id,
            job_type=job_type,
            city=city,
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            invoice_amount=invoice_amount,
            positive_experience=positive_experience,
            completed_at=completed_at,
        )
        db_session.add(check_in)
        await db_session.flush()
        return check_in

    return _factory


# ---------------------------------------------------------------------------
# Drip settings factory
# ---------------------------------------------------------------------------

@pytest.fixture
def make_settings(db_session):
    """Factory that saves ReviewFollowUpSettings for a company.

    Defaults differ from the product defaults so day arithmetic in tests is
    not affected by calendar rules: UTC, weekends allowed.

    Usage:
        config = await make_settings(company, initial_delay=2, first_follow_up_delay=3)
    """
    async def _factory(company: Company, **overrides) -> ReviewFollowUpSettings:
        config = default_settings(company.id)
        config.id = str(uuid.uuid4())
        config.time_zone = "UTC"
        config.send_weekends = True
        for key, value in overrides.items():
            setattr(config, key, value)
        db_session.add(config)
        await db_session.flush()
        return config

    return _factory


# ---------------------------------------------------------------------------
# Drip factory
# ---------------------------------------------------------------------------

@pytest.fixture
def make_drip(db_session):
    """Factory that creates a ReviewRequest and its drip state.

    Usage:
        state = await make_drip(company, tech, anchor_at=DAY0)
    """
    async def _factory(
        company: Company,
        technician: Technician,
        customer_name: str = "Jane Customer",
        customer_email: str | None = "jane@example.com",
        customer_phone: str | None = None,
        anchor_at: datetime = DAY0,
        **state_fields,
    ) -> ReviewRequestStatus:
        request = ReviewRequest(
            id=str(uuid.uuid4()),
            company_id=company.id,
            technician_id=technician.id,
            customer_name=customer_name,
            email=customer_email,
            phone=customer_phone,
            method="email" if customer_email else "sms",
            job_type="Water Heater Repair",
            token=secrets.token_urlsafe(32),
            status="pending",
            created_at=anchor_at,
        )
        db_session.add(request)

        state = ReviewRequestStatus(
            id=str(uuid.uuid4()),
            review_request_id=request.id,
            company_id=company.id,
            technician_id=technician.id,
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            anchor_at=anchor_at,
            status=state_fields.pop("status", "pending"),
            created_at=anchor_at,
            **state_fields,
        )
        db_session.add(state)
        await db_session.commit()
        return state

    return _factory


@pytest.fixture
async def company_setup(make_company, make_technician, make_settings):
    """A company with one technician and default (test) drip settings."""
    company = await make_company()
    tech = await make_technician(company)
    config = await make_settings(company)
    return company, tech, config
