"""Tests for the response dispatcher."""

from datetime import datetime, timedelta

from leadengine.models.auto_response import DELIVERY_FAILED, DELIVERY_SENT, AutoResponse
from leadengine.models.lead import LeadSource, LeadStatus
from leadengine.services.content import TEMPLATE_MODEL, ResilientContent
from leadengine.services.dispatcher import MIN_CONTENT_SECONDS, ResponseDispatcher

from conftest import FailingTransport, FakeContentClient, FakeTransport


def make_dispatcher(transports=None, primary=None, **kwargs) -> ResponseDispatcher:
    return ResponseDispatcher(
        content=ResilientContent(primary=primary or FakeContentClient()),
        transports=transports if transports is not None else {"email": FakeTransport("email")},
        sla_seconds=kwargs.pop("sla_seconds", 30),
        max_attempts=kwargs.pop("max_attempts", 3),
        backoff_seconds=kwargs.pop("backoff_seconds", 30),
        **kwargs,
    )


class TestDispatch:
    def test_first_response_within_sla(self, session, make_lead):
        transport = FakeTransport("email")
        lead = make_lead()
        result = make_dispatcher({"email": transport}).dispatch(session, lead)
        session.commit()

        assert result.sent
        assert result.sla_met
        assert result.transitioned
        assert not result.fallback_used
        assert result.attempt == 1
        assert result.channel == "email"
        assert transport.sent[0][0] == "jane@acme.com"

        assert lead.status == LeadStatus.AUTO_RESPONDED
        assert lead.auto_response_sent
        assert lead.auto_response_channel == "email"
        assert lead.auto_response_content == result.content.body
        assert lead.response_time_ms == result.latency_ms
        assert lead.dispatch_attempts == 1

        row = session.get(AutoResponse, result.auto_response_id)
        assert row.delivery_status == DELIVERY_SENT
        assert row.idempotency_key == f"{lead.id}:1"
        assert row.model == "fake-model"
        assert row.personalization["company"] == "Acme Corp"

    def test_content_failure_uses_template(self, session, make_lead):
        lead = make_lead(score=85, product_interest="PDM Professional")
        result = make_dispatcher(primary=FakeContentClient(fail=True)).dispatch(session, lead)
        assert result.sent
        assert result.fallback_used
        assert result.content.subject == "Re: PDM Professional for Acme Corp"
        assert lead.auto_responses[0].model == TEMPLATE_MODEL

    def test_content_timeout_uses_template(self, session, make_lead):
        lead = make_lead(received_at=datetime.utcnow() - timedelta(seconds=60))
        dispatcher = make_dispatcher(primary=FakeContentClient(delay=MIN_CONTENT_SECONDS + 1))
        result = dispatcher.dispatch(session, lead)
        assert result.sent
        assert result.fallback_used

    def test_late_response_still_sent(self, session, make_lead):
        lead = make_lead(received_at=datetime.utcnow() - timedelta(seconds=45))
        result = make_dispatcher().dispatch(session, lead)
        assert result.sent
        assert result.sla_met is False
        assert result.latency_ms >= 45000
        assert lead.auto_responses[0].sla_met is False

    def test_unqualified_lead_still_answered(self, session, make_lead):
        lead = make_lead(score=15, ai_qualified=False)
        assert make_dispatcher().dispatch(session, lead).sent

    def test_claimed_lead_keeps_status(self, session, make_lead):
        lead = make_lead(status=LeadStatus.SDR_REVIEW, assigned_sdr_id="user_sdr_001")
        result = make_dispatcher().dispatch(session, lead)
        assert result.sent
        assert not result.transitioned
        assert lead.status == LeadStatus.SDR_REVIEW
        assert lead.auto_response_sent

    def test_chat_lead_answered_on_chat(self, session, make_lead):
        chat = FakeTransport("chat")
        lead = make_lead(source=LeadSource.CHAT)
        result = make_dispatcher({"email": FakeTransport("email"), "chat": chat}).dispatch(session, lead)
        assert result.channel == "chat"
        assert len(chat.sent) == 1

    def test_chat_lead_without_chat_transport_gets_email(self, session, make_lead):
        lead = make_lead(source=LeadSource.CHAT)
        assert make_dispatcher().dispatch(session, lead).channel == "email"

    def test_phone_lead_answered_by_email(self, session, make_lead):
        lead = make_lead(source=LeadSource.PHONE)
        assert make_dispatcher().dispatch(session, lead).channel == "email"


class TestDeliveryFailure:
    def test_failure_recorded_and_flagged(self, session, make_lead):
        transport = FailingTransport()
        lead = make_lead()
        result = make_dispatcher({"email": transport}).dispatch(session, lead)
        session.commit()

        assert not result.sent
        assert result.error == "SMTP connection refused"
        assert result.retry_in == 30
        assert lead.needs_follow_up
        assert not lead.auto_response_sent
        assert lead.status == LeadStatus.NEW
        assert lead.response_time_ms is None
        assert lead.auto_responses[0].delivery_status == DELIVERY_FAILED

    def test_backoff_doubles_then_stops(self, session, make_lead):
        lead = make_lead()
        dispatcher = make_dispatcher({"email": FailingTransport()})
        delays = [dispatcher.dispatch(session, lead).retry_in for _ in range(3)]
        assert delays == [30, 60, None]
        assert [r.idempotency_key for r in lead.auto_responses] == [f"{lead.id}:{n}" for n in (1, 2, 3)]

    def test_retry_after_failure_succeeds(self, session, make_lead):
        lead = make_lead()
        make_dispatcher({"email": FailingTransport()}).dispatch(session, lead)
        result = make_dispatcher().dispatch(session, lead)
        assert result.sent
        assert result.attempt == 2
        assert not lead.needs_follow_up
        assert lead.status == LeadStatus.AUTO_RESPONDED


class TestIdempotency:
    def test_already_sent_is_not_resent(self, session, make_lead):
        transport = FakeTransport("email")
        lead = make_lead()
        dispatcher = make_dispatcher({"email": transport})
        first = dispatcher.dispatch(session, lead)
        again = dispatcher.dispatch(session, lead)
        assert again.reused
        assert again.auto_response_id == first.auto_response_id
        assert len(transport.sent) == 1
        assert lead.dispatch_attempts == 1

    def test_existing_key_returned_without_sending(self, session, make_lead):
        transport = FakeTransport("email")
        lead = make_lead()
        row = AutoResponse(
            lead_id=lead.id, attempt=1, idempotency_key=f"{lead.id}:1", subject="Earlier", body="Earlier body",
            channel="email", delivery_status=DELIVERY_SENT, latency_ms=1200, sla_met=True,
        )
        session.add(row)
        session.commit()

        result = make_dispatcher({"email": transport}).dispatch(session, lead)
        assert result.reused
        assert result.content.subject == "Earlier"
        assert transport.sent == []


class TestBudget:
    def test_content_budget_capped_by_timeout(self, make_lead):
        lead = make_lead()
        budget = make_dispatcher().content_budget(lead, lead.received_at)
        assert budget <= 10.0

    def test_content_budget_floor_after_sla(self, make_lead):
        lead = make_lead(received_at=datetime.utcnow() - timedelta(minutes=5))
        assert make_dispatcher().content_budget(lead, datetime.utcnow()) == MIN_CONTENT_SECONDS

    def test_retry_delay(self):
        dispatcher = make_dispatcher(max_attempts=4, backoff_seconds=10)
        assert [dispatcher.retry_delay(n) for n in (1, 2, 3, 4)] == [10, 20, 40, None]
