"""SQLAlchemy ORM models for the Rank It Pro review drip.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- JSON for structured data (no JSONB)
- DateTime for timestamps (no TIMESTAMPTZ)
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from rankitpro.infra.database import Base


# ---------------------------------------------------------------------------
# Company / Technician / Check-in (read-only collaborators of the drip)
# ---------------------------------------------------------------------------


class Company(Base):
    """Home-service business. Owns one drip configuration."""

    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=func.now())

    technicians = relationship("Technician", back_populates="company")
    follow_up_settings = relationship(
        "ReviewFollowUpSettings", back_populates="company", uselist=False
    )


class Technician(Base):
    """Field technician who performs service visits."""

    __tablename__ = "technicians"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=func.now())

    company = relationship("Company", back_populates="technicians")


class CheckIn(Base):
    """A logged service visit. Source of most review requests."""

    __tablename__ = "check_ins"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    technician_id = Column(String(36), ForeignKey("technicians.id"), nullable=False)
    job_type = Column(String(100), nullable=False)
    notes = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    customer_name = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(50), nullable=True)
    invoice_amount = Column(Numeric(10, 2), nullable=True)
    positive_experience = Column(Boolean, nullable=True)  # technician's read of the visit
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())


# ---------------------------------------------------------------------------
# Review requests
# ---------------------------------------------------------------------------


class ReviewRequest(Base):
    """Review request issued to a customer. One drip state per request."""

    __tablename__ = "review_requests"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    technician_id = Column(String(36), ForeignKey("technicians.id"), nullable=False)
    customer_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    method = Column(String(10), nullable=False)  # email, sms
    job_type = Column(String(100), nullable=True)
    custom_message = Column(Text, nullable=True)
    token = Column(String(64), unique=True, nullable=False, index=True)
    status = Column(String(20), default="pending")  # pending, sent, failed
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())

    drip_state = relationship("ReviewRequestStatus", back_populates="review_request", uselist=False)


class ReviewResponse(Base):
    """Customer feedback captured when a review is submitted."""

    __tablename__ = "review_responses"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    review_request_id = Column(String(36), ForeignKey("review_requests.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)  # 1-5 stars
    feedback = Column(Text, nullable=True)
    customer_name = Column(String(255), nullable=False)
    technician_id = Column(String(36), ForeignKey("technicians.id"), nullable=False)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False)
    public_display = Column(Boolean, default=False)
    responded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())


# ---------------------------------------------------------------------------
# Drip configuration and per-customer drip state
# ---------------------------------------------------------------------------


class ReviewFollowUpSettings(Base):
    """Company-wide drip policy: delays, templates, channels and targeting."""

    __tablename__ = "review_follow_up_settings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, unique=True)

    # Initial request (days after service completion)
    initial_delay = Column(Integer, nullable=False, default=2)
    initial_message = Column(Text, nullable=False)
    initial_subject = Column(String(255), nullable=False)

    # First follow-up (days after initial request)
    enable_first_follow_up = Column(Boolean, nullable=False, default=True)
    first_follow_up_delay = Column(Integer, nullable=False, default=3)
    first_follow_up_message = Column(Text, nullable=False)
    first_follow_up_subject = Column(String(255), nullable=False)

    # Second follow-up (days after first follow-up)
    enable_second_follow_up = Column(Boolean, nullable=False, default=True)
    second_follow_up_delay = Column(Integer, nullable=False, default=5)
    second_follow_up_message = Column(Text, nullable=False)
    second_follow_up_subject = Column(String(255), nullable=False)

    # Final follow-up (days after second follow-up)
    enable_final_follow_up = Column(Boolean, nullable=False, default=False)
    final_follow_up_delay = Column(Integer, nullable=False, default=7)
    final_follow_up_message = Column(Text, nullable=True)
    final_follow_up_subject = Column(String(255), nullable=True)

    # Channels and timing
    enable_email_requests = Column(Boolean, nullable=False, default=True)
    enable_sms_requests = Column(Boolean, nullable=False, default=False)
    preferred_send_time = Column(String(5), nullable=True, default="10:00")  # HH:MM, 24h
    send_weekends = Column(Boolean, nullable=False, default=False)
    time_zone = Column(String(64), nullable=False, default="America/New_York")

    # Presentation
    include_service_details = Column(Boolean, nullable=False, default=True)
    include_technician_photo = Column(Boolean, nullable=False, default=True)
    include_company_logo = Column(Boolean, nullable=False, default=True)
    enable_incentives = Column(Boolean, nullable=False, default=False)
    incentive_details = Column(Text, nullable=True)

    # Targeting
    target_positive_experiences_only = Column(Boolean, nullable=False, default=False)
    target_service_types = Column(JSON, default=list)
    target_minimum_invoice_amount = Column(Numeric(10, 2), nullable=False, default=0)

    # Smart timing
    enable_smart_timing = Column(Boolean, nullable=False, default=False)
    smart_timing_preferences = Column(JSON, default=dict)

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    company = relationship("Company", back_populates="follow_up_settings")


class ReviewRequestStatus(Base):
    """Progress of one customer's drip. Never deleted; kept for analytics."""

    __tablename__ = "review_request_statuses"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    review_request_id = Column(
        String(36), ForeignKey("review_requests.id"), nullable=False, unique=True, index=True
    )
    check_in_id = Column(String(36), ForeignKey("check_ins.id"), nullable=True)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    technician_id = Column(String(36), ForeignKey("technicians.id"), nullable=False)

    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(50), nullable=True)

    # Reference time for the initial delay (service completion or request creation)
    anchor_at = Column(DateTime, nullable=True)

    # Stage tracking
    initial_request_sent = Column(Boolean, nullable=False, default=False)
    initial_request_sent_at = Column(DateTime, nullable=True)
    first_follow_up_sent = Column(Boolean, nullable=False, default=False)
    first_follow_up_sent_at = Column(DateTime, nullable=True)
    second_follow_up_sent = Column(Boolean, nullable=False, default=False)
    second_follow_up_sent_at = Column(DateTime, nullable=True)
    final_follow_up_sent = Column(Boolean, nullable=False, default=False)
    final_follow_up_sent_at = Column(DateTime, nullable=True)

    # Response tracking
    link_clicked = Column(Boolean, nullable=False, default=False)
    link_clicked_at = Column(DateTime, nullable=True)
    review_submitted = Column(Boolean, nullable=False, default=False)
    review_submitted_at = Column(DateTime, nullable=True)

    status = Column(String(20), nullable=False, default="pending", index=True)
    unsubscribed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Dispatch claim (one dispatcher per row at a time) and retry backoff
    dispatch_token = Column(String(36), nullable=True)
    dispatch_claimed_at = Column(DateTime, nullable=True)
    failed_attempts = Column(Integer, nullable=False, default=0)
    last_failed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=func.now())

    review_request = relationship("ReviewRequest", back_populates="drip_state")
