"""Tests for per-company drip statistics."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from rankitpro.domain.enums import DripStage
from rankitpro.services.drip_settings_service import CompanyNotFoundError
from rankitpro.services.drip_stats import DripStatsService, converting_stage

DAY0 = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


_SENT_FLAGS = {
    "initial": "initial_request_sent",
    "first_follow_up": "first_follow_up_sent",
    "second_follow_up": "second_follow_up_sent",
    "final_follow_up": "final_follow_up_sent",
}


def _sent(*stages) -> SimpleNamespace:
    return SimpleNamespace(**{flag: stage in stages for stage, flag in _SENT_FLAGS.items()})


class TestConvertingStage:
    def test_last_sent_stage_wins(self):
        assert converting_stage(_sent("initial")) == DripStage.INITIAL
        assert converting_stage(_sent("initial", "first_follow_up")) == DripStage.FIRST_FOLLOW_UP
        assert (
            converting_stage(_sent("initial", "first_follow_up", "second_follow_up", "final_follow_up"))
            == DripStage.FINAL_FOLLOW_UP
        )

    def test_review_before_any_send_counts_as_initial(self):
        assert converting_stage(_sent()) == DripStage.INITIAL


class TestCompanyStats:
    @pytest.mark.asyncio
    async def test_empty_company(self, db_session, make_company):
        company = await make_company()

        stats = await DripStatsService(db_session).company_stats(company.id)

        assert stats.total_requests == 0
        assert stats.click_rate == 0.0
        assert stats.conversion_rate == 0.0
        assert stats.avg_hours_to_conversion == 0.0
        assert stats.by_follow_up_step == {
            "initial": 0, "first_follow_up": 0, "second_follow_up": 0, "final_follow_up": 0,
        }

    @pytest.mark.asyncio
    async def test_unknown_company_raises(self, db_session):
        with pytest.raises(CompanyNotFoundError):
            await DripStatsService(db_session).company_stats("missing-company")

    @pytest.mark.asyncio
    async def test_aggregates_company_drips(
        self, db_session, company_setup, make_company, make_technician, make_drip
    ):
        company, tech, _ = company_setup
        sent_at = DAY0 + timedelta(days=2)

        # Never sent
        await make_drip(company, tech, customer_name="Pending Pat")
        # Sent, no response
        await make_drip(
            company, tech, customer_name="Quiet Quinn",
            status="in_progress", initial_request_sent=True, initial_request_sent_at=sent_at,
        )
        # Clicked and reviewed 6 hours after the initial request
        await make_drip(
            company, tech, customer_name="Happy Hana",
            status="completed", initial_request_sent=True, initial_request_sent_at=sent_at,
            link_clicked=True, link_clicked_at=sent_at + timedelta(hours=1),
            review_submitted=True, review_submitted_at=sent_at + timedelta(hours=6),
            completed_at=sent_at + timedelta(hours=6),
        )
        # Reviewed after the first follow-up, 3 days 18 hours after the initial request
        await make_drip(
            company, tech, customer_name="Late Lee",
            status="completed", initial_request_sent=True, initial_request_sent_at=sent_at,
            first_follow_up_sent=True, first_follow_up_sent_at=sent_at + timedelta(days=3),
            link_clicked=True, link_clicked_at=sent_at + timedelta(days=3, hours=2),
            review_submitted=True, review_submitted_at=sent_at + timedelta(days=3, hours=18),
            completed_at=sent_at + timedelta(days=3, hours=18),
        )
        # Unsubscribed after the initial request
        await make_drip(
            company, tech, customer_name="Gone Gus",
            status="unsubscribed", initial_request_sent=True, initial_request_sent_at=sent_at,
            unsubscribed_at=sent_at + timedelta(hours=2),
        )
        # Another company's drip is not counted
        other = await make_company("Other Co")
        await make_drip(
            other, await make_technician(other),
            status="completed", initial_request_sent=True, initial_request_sent_at=sent_at,
            review_submitted=True, review_submitted_at=sent_at + timedelta(hours=1),
        )

        stats = await DripStatsService(db_session).company_stats(company.id)

        assert stats.total_requests == 5
        assert stats.sent_requests == 4
        assert stats.clicked_requests == 2
        assert stats.completed_requests == 2
        assert stats.unsubscribed_requests == 1
        assert stats.click_rate == 0.5
        assert stats.conversion_rate == 0.5
        assert stats.avg_hours_to_conversion == 48.0
        assert stats.by_follow_up_step["initial"] == 1
        assert stats.by_follow_up_step["first_follow_up"] == 1
        assert stats.by_follow_up_step["second_follow_up"] == 0
