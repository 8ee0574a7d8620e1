"""Tests for the stage dispatcher — claim, send, mark, and failure handling."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from rankitpro.domain.enums import Channel, DripStage
from rankitpro.domain.models import ReviewRequest
from rankitpro.services.drip_dispatcher import StageDispatcher, render_template, stage_copy
from rankitpro.services.drip_events import DripEventService
from rankitpro.services.notification_sender import DeliveryResult

S = DripStage

# Monday 2026-03-02 10:00 UTC, matches the conftest anchor
DAY0 = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
DAY2 = DAY0 + timedelta(days=2)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


class TestRendering:
    def test_placeholders_are_filled(self):
        text = render_template("Hi {{customerName}}, from {{ companyName }}", {
            "customerName": "Jane",
            "companyName": "Acme",
        })
        assert text == "Hi Jane, from Acme"

    def test_unknown_placeholders_are_kept(self):
        assert render_template("Hi {{nickname}}", {"customerName": "Jane"}) == "Hi {{nickname}}"

    def test_missing_final_copy_falls_back_to_default(self):
        config = SimpleNamespace(final_follow_up_message=None, final_follow_up_subject=None)
        message, subject = stage_copy(config, S.FINAL_FOLLOW_UP)
        assert "{{reviewLink}}" in message
        assert subject


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestDispatch:
    @pytest.mark.asyncio
    async def test_sends_email_and_marks_initial(self, db_session, company_setup, make_drip, sender_mock):
        company, tech, config = company_setup
        state = await make_drip(company, tech)

        result = await StageDispatcher(db_session, sender_mock).dispatch(state, config, S.INITIAL, DAY2)

        assert result.marked_sent is True
        assert len(sender_mock.sent) == 1
        channel, recipient, subject, body = sender_mock.sent[0]
        assert channel == Channel.EMAIL
        assert recipient == "jane@example.com"
        assert "Jane Customer" in body
        assert "/review/" in body
        assert "Acme Plumbing" in subject

        assert state.initial_request_sent is True
        assert state.initial_request_sent_at is not None
        assert state.status == "in_progress"
        assert state.dispatch_token is None

        request = await db_session.get(ReviewRequest, state.review_request_id)
        await db_session.refresh(request)
        assert request.status == "sent"
        assert request.sent_at is not None

    @pytest.mark.asyncio
    async def test_sends_sms_with_opt_out(self, db_session, company_setup, make_drip, sender_mock):
        company, tech, config = company_setup
        config.enable_sms_requests = True
        await db_session.commit()
        state = await make_drip(company, tech, customer_phone="+15551234567")

        result = await StageDispatcher(db_session, sender_mock).dispatch(state, config, S.INITIAL, DAY2)

        assert result.marked_sent is True
        channels = [sent[0] for sent in sender_mock.sent]
        assert channels == [Channel.EMAIL, Channel.SMS]
        sms_body = sender_mock.sent[1][3]
        assert sms_body.endswith("Reply STOP to opt out.")

    @pytest.mark.asyncio
    async def test_one_channel_accepted_is_enough(self, db_session, company_setup, make_drip, sender_mock):
        company, tech, config = company_setup
        config.enable_sms_requests = True
        await db_session.commit()
        state = await make_drip(company, tech, customer_phone="+15551234567")

        async def _email_fails(channel, recipient, subject, body):
            return DeliveryResult(channel, recipient, channel == Channel.SMS, None)

        sender_mock.send.side_effect = _email_fails
        result = await StageDispatcher(db_session, sender_mock).dispatch(state, config, S.INITIAL, DAY2)

        assert result.marked_sent is True
        assert state.initial_request_sent is True

    @pytest.mark.asyncio
    async def test_failed_delivery_leaves_stage_unsent(self, db_session, company_setup, make_drip, sender_mock):
        company, tech, config = company_setup
        state = await make_drip(company, tech)

        async def _fail(channel, recipient, subject, body):
            return DeliveryResult(channel, recipient, False, "provider down")

        sender_mock.send.side_effect = _fail
        result = await StageDispatcher(db_session, sender_mock).dispatch(state, config, S.INITIAL, DAY2)

        assert result.marked_sent is False
        assert state.initial_request_sent is False
        assert state.failed_attempts == 1
        assert state.last_failed_at is not None
        assert state.dispatch_token is None
        assert state.status == "pending"

    @pytest.mark.asyncio
    async def test_success_resets_failure_counters(self, db_session, company_setup, make_drip, sender_mock):
        company, tech, config = company_setup
        state = await make_drip(company, tech, failed_attempts=3, last_failed_at=DAY2 - timedelta(hours=7))

        await StageDispatcher(db_session, sender_mock).dispatch(state, config, S.INITIAL, DAY2)

        assert state.failed_attempts == 0
        assert state.last_failed_at is None

    @pytest.mark.asyncio
    async def test_no_channel_is_recorded_as_failure(self, db_session, company_setup, make_drip, sender_mock):
        company, tech, config = company_setup
        state = await make_drip(company, tech, customer_email=None, customer_phone="+15551234567")

        result = await StageDispatcher(db_session, sender_mock).dispatch(state, config, S.INITIAL, DAY2)

        assert result.skipped_reason == "no_channel"
        assert sender_mock.send.await_count == 0
        assert state.failed_attempts == 1

    @pytest.mark.asyncio
    async def test_none_stage_is_noop(self, db_session, company_setup, make_drip, sender_mock):
        company, tech, config = company_setup
        state = await make_drip(company, tech)

        result = await StageDispatcher(db_session, sender_mock).dispatch(state, config, None, DAY2)

        assert result.skipped_reason == "not_due"
        assert sender_mock.send.await_count == 0


# ---------------------------------------------------------------------------
# At-most-once marking
# ---------------------------------------------------------------------------


class TestCompareAndSet:
    @pytest.mark.asyncio
    async def test_second_dispatch_of_same_stage_sends_nothing(
        self, db_session, company_setup, make_drip, sender_mock
    ):
        company, tech, config = company_setup
        state = await make_drip(company, tech)
        dispatcher = StageDispatcher(db_session, sender_mock)

        first = await dispatcher.dispatch(state, config, S.INITIAL, DAY2)
        first_sent_at = state.initial_request_sent_at
        second = await dispatcher.dispatch(state, config, S.INITIAL, DAY2 + timedelta(minutes=5))

        assert first.marked_sent is True
        assert second.marked_sent is False
        assert second.skipped_reason == "claimed"
        assert len(sender_mock.sent) == 1
        assert state.initial_request_sent_at == first_sent_at

    @pytest.mark.asyncio
    async def test_concurrent_dispatch_sends_once(self, db_session, company_setup, make_drip, sender_mock):
        """A dispatch that starts while another holds the claim backs off without sending."""
        company, tech, config = company_setup
        state = await make_drip(company, tech)
        competing = []

        async def _send_and_race(channel, recipient, subject, body):
            sender_mock.sent.append((channel, recipient, subject, body))
            if not competing:
                competing.append(
                    await StageDispatcher(db_session, sender_mock).dispatch(state, config, S.INITIAL, DAY2)
                )
            return DeliveryResult(channel, recipient, True)

        sender_mock.send.side_effect = _send_and_race
        winner = await StageDispatcher(db_session, sender_mock).dispatch(state, config, S.INITIAL, DAY2)

        assert winner.marked_sent is True
        assert competing[0].marked_sent is False
        assert competing[0].skipped_reason == "claimed"
        assert len(sender_mock.sent) == 1

    @pytest.mark.asyncio
    async def test_stale_claim_is_taken_over(self, db_session, company_setup, make_drip, sender_mock):
        company, tech, config = company_setup
        state = await make_drip(
            company, tech,
            dispatch_token="crashed-worker",
            dispatch_claimed_at=DAY2 - timedelta(hours=2),
        )

        result = await StageDispatcher(db_session, sender_mock).dispatch(state, config, S.INITIAL, DAY2)

        assert result.marked_sent is True

    @pytest.mark.asyncio
    async def test_live_claim_blocks_dispatch(self, db_session, company_setup, make_drip, sender_mock):
        company, tech, config = company_setup
        state = await make_drip(
            company, tech,
            dispatch_token="other-worker",
            dispatch_claimed_at=DAY2 - timedelta(minutes=1),
        )

        result = await StageDispatcher(db_session, sender_mock).dispatch(state, config, S.INITIAL, DAY2)

        assert result.skipped_reason == "claimed"
        assert sender_mock.send.await_count == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_during_send_is_not_overwritten(
        self, db_session, company_setup, make_drip, sender_mock
    ):
        company, tech, config = company_setup
        state = await make_drip(company, tech)

        async def _send_then_unsubscribe(channel, recipient, subject, body):
            await DripEventService(db_session).record_unsubscribe(state.review_request_id, DAY2)
            return DeliveryResult(channel, recipient, True)

        sender_mock.send.side_effect = _send_then_unsubscribe
        result = await StageDispatcher(db_session, sender_mock).dispatch(state, config, S.INITIAL, DAY2)

        assert result.delivered is True
        assert result.marked_sent is False
        assert state.status == "unsubscribed"
        assert state.initial_request_sent is False
        assert state.dispatch_token is None
