"""Pydantic v2 schemas for API request/response validation."""

from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from rankitpro.domain.drip_templates import (
    DEFAULT_SMART_TIMING_PREFERENCES,
    EMAIL_TEMPLATES,
    SUBJECT_TEMPLATES,
)
from rankitpro.domain.enums import DripStage

S = DripStage


# ---------------------------------------------------------------------------
# Drip configuration
# ---------------------------------------------------------------------------


class SmartTimingPreferences(BaseModel):
    """Smart timing options. Days are 0 = Sunday .. 6 = Saturday."""

    prefer_weekdays: bool = True
    preferred_days: list[int] = Field(
        default_factory=lambda: list(DEFAULT_SMART_TIMING_PREFERENCES["preferred_days"])
    )
    avoid_holidays: bool = True
    avoid_late_night: bool = True
    optimize_by_open_rates: bool = True

    @field_validator("preferred_days")
    @classmethod
    def _days_in_range(cls, days: list[int]) -> list[int]:
        if any(d < 0 or d > 6 for d in days):
            raise ValueError("preferred_days must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(days))


class ReviewSettingsIn(BaseModel):
    """Complete, validated drip configuration for one company.

    Enable flags are independent: a later follow-up may be enabled while an
    earlier one is off. The drip then stops at the disabled stage.
    """

    initial_delay: int = Field(default=2, ge=0)
    initial_message: str = Field(default=EMAIL_TEMPLATES[S.INITIAL], min_length=10)
    initial_subject: str = Field(default=SUBJECT_TEMPLATES[S.INITIAL], min_length=3)

    enable_first_follow_up: bool = True
    first_follow_up_delay: int = Field(default=3, ge=0)
    first_follow_up_message: str = Field(default=EMAIL_TEMPLATES[S.FIRST_FOLLOW_UP], min_length=10)
    first_follow_up_subject: str = Field(default=SUBJECT_TEMPLATES[S.FIRST_FOLLOW_UP], min_length=3)

    enable_second_follow_up: bool = True
    second_follow_up_delay: int = Field(default=5, ge=0)
    second_follow_up_message: str = Field(default=EMAIL_TEMPLATES[S.SECOND_FOLLOW_UP], min_length=10)
    second_follow_up_subject: str = Field(default=SUBJECT_TEMPLATES[S.SECOND_FOLLOW_UP], min_length=3)

    enable_final_follow_up: bool = False
    final_follow_up_delay: int = Field(default=7, ge=0)
    final_follow_up_message: str | None = Field(default=EMAIL_TEMPLATES[S.FINAL_FOLLOW_UP], min_length=10)
    final_follow_up_subject: str | None = Field(default=SUBJECT_TEMPLATES[S.FINAL_FOLLOW_UP], min_length=3)

    enable_email_requests: bool = True
    enable_sms_requests: bool = False
    preferred_send_time: str | None = Field(default="10:00", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    send_weekends: bool = False
    time_zone: str = "America/New_York"

    include_service_details: bool = True
    include_technician_photo: bool = True
    include_company_logo: bool = True
    enable_incentives: bool = False
    incentive_details: str | None = None

    target_positive_experiences_only: bool = False
    target_service_types: list[str] = Field(default_factory=list)
    target_minimum_invoice_amount: Decimal = Field(default=Decimal("0"), ge=0)

    enable_smart_timing: bool = False
    smart_timing_preferences: SmartTimingPreferences = Field(default_factory=SmartTimingPreferences)

    is_active: bool = True

    @field_validator("time_zone")
    @classmethod
    def _known_time_zone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown time zone: {value}")
        return value

    @model_validator(mode="after")
    def _final_copy_when_enabled(self):
        if self.enable_final_follow_up and not (
            self.final_follow_up_message and self.final_follow_up_subject
        ):
            raise ValueError("Final follow-up needs a message and subject when enabled")
        return self


class ReviewSettingsUpdate(BaseModel):
    """Partial update; merged onto the current settings and re-validated."""

    model_config = ConfigDict(extra="forbid")

    initial_delay: int | None = None
    initial_message: str | None = None
    initial_subject: str | None = None
    enable_first_follow_up: bool | None = None
    first_follow_up_delay: int | None = None
    first_follow_up_message: str | None = None
    first_follow_up_subject: str | None = None
    enable_second_follow_up: bool | None = None
    second_follow_up_delay: int | None = None
    second_follow_up_message: str | None = None
    second_follow_up_subject: str | None = None
    enable_final_follow_up: bool | None = None
    final_follow_up_delay: int | None = None
    final_follow_up_message: str | None = None
    final_follow_up_subject: str | None = None
    enable_email_requests: bool | None = None
    enable_sms_requests: bool | None = None
    preferred_send_time: str | None = None
    send_weekends: bool | None = None
    time_zone: str | None = None
    include_service_details: bool | None = None
    include_technician_photo: bool | None = None
    include_company_logo: bool | None = None
    enable_incentives: bool | None = None
    incentive_details: str | None = None
    target_positive_experiences_only: bool | None = None
    target_service_types: list[str] | None = None
    target_minimum_invoice_amount: Decimal | None = None
    enable_smart_timing: bool | None = None
    smart_timing_preferences: SmartTimingPreferences | None = None
    is_active: bool | None = None


class ReviewSettingsResponse(ReviewSettingsIn):
    """Schema for drip configuration API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    company_id: str
    updated_at: datetime | None = None


# ---------------------------------------------------------------------------
# Drip events
# ---------------------------------------------------------------------------


class DripEventIn(BaseModel):
    """Click / unsubscribe body. ``occurred_at`` defaults to now."""

    occurred_at: datetime | None = None


class ReviewSubmissionIn(BaseModel):
    """Review submission body."""

    rating: int = Field(ge=1, le=5)
    feedback: str | None = Field(default=None, max_length=5000)
    occurred_at: datetime | None = None


class DripStateResponse(BaseModel):
    """Drip progress for one review request."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    review_request_id: str
    company_id: str
    customer_name: str
    status: str
    initial_request_sent: bool
    initial_request_sent_at: datetime | None = None
    first_follow_up_sent: bool
    first_follow_up_sent_at: datetime | None = None
    second_follow_up_sent: bool
    second_follow_up_sent_at: datetime | None = None
    final_follow_up_sent: bool
    final_follow_up_sent_at: datetime | None = None
    link_clicked: bool
    link_clicked_at: datetime | None = None
    review_submitted: bool
    review_submitted_at: datetime | None = None
    unsubscribed_at: datetime | None = None
    completed_at: datetime | None = None
    failed_attempts: int = 0
    next_stage: str | None = None
    next_due_at: datetime | None = None


# ---------------------------------------------------------------------------
# Drip statistics
# ---------------------------------------------------------------------------


class DripStatsResponse(BaseModel):
    """Aggregate drip outcomes for one company.

    Rates are fractions of sent requests. ``by_follow_up_step`` counts
    submitted reviews by the last stage sent before the review came in.
    """

    company_id: str
    total_requests: int
    sent_requests: int
    clicked_requests: int
    completed_requests: int
    unsubscribed_requests: int
    click_rate: float
    conversion_rate: float
    avg_hours_to_conversion: float
    by_follow_up_step: dict[str, int]
