"""End-to-end tests for the lead engine against in-memory SQLite."""

import threading
import uuid
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from leadengine.config import settings
from leadengine.errors import (
    AlreadyConverted, ConversionError, DuplicateError, InvalidTransition, LeadNotFound, ResponseNotFound,
    ValidationError,
)
from leadengine.models.account import Account
from leadengine.models.audit import AuditLog
from leadengine.models.lead import Lead, LeadStatus
from leadengine.services.scoring import TIMED_OUT_FACTOR, ScoreResult

from conftest import FailingTransport, sqlite_engine

PAYLOAD = {
    "first_name": "Thomas",
    "last_name": "Mueller",
    "email": "tmueller@ironbridgesteel.com",
    "company": "Ironbridge Steel Structures",
    "title": "VP Operations",
    "employee_count": 500,
    "message": "Interested in PDM Professional for our multi-site team of 40 engineers. "
               "Need data management across 3 plants.",
    "product_interest": "PDM Professional",
}


def audit_actions(session_factory, lead_id) -> list[str]:
    session = session_factory()
    try:
        rows = session.execute(
            select(AuditLog).where(AuditLog.lead_id == lead_id).order_by(AuditLog.timestamp)
        ).scalars().all()
        return [row.action for row in rows]
    finally:
        session.close()


class TestPipeline:
    def test_intake_score_dispatch(self, lead_engine, session_factory, email_transport):
        lead = lead_engine.intake("website_form", dict(PAYLOAD))
        assert lead.status == LeadStatus.NEW
        assert lead.score is None

        score = lead_engine.score_lead(lead.id)
        assert score.qualified
        response = lead_engine.dispatch(lead.id)
        assert response.sent
        assert len(email_transport.sent) == 1

        stored = lead_engine.get(lead.id)
        assert stored.status == LeadStatus.AUTO_RESPONDED
        assert stored.score == score.score
        assert stored.ai_qualified
        assert len(stored.score_events) == 1
        assert stored.response_time_ms is not None
        assert audit_actions(session_factory, lead.id) == [
            "lead_created", "lead_scored", "response_sent", "status_changed",
        ]

    def test_duplicate_submission_merged(self, lead_engine, session_factory):
        lead = lead_engine.intake("website_form", dict(PAYLOAD))
        with pytest.raises(DuplicateError) as exc:
            lead_engine.intake("chat", {**PAYLOAD, "message": "Following up on my request"})
        assert exc.value.lead_id == lead.id
        stored = lead_engine.get(lead.id)
        assert stored.submission_count == 2
        assert "Following up on my request" in stored.message
        assert "lead_merged" in audit_actions(session_factory, lead.id)

    def test_invalid_payload_persists_nothing(self, lead_engine, session_factory):
        with pytest.raises(ValidationError):
            lead_engine.intake("website_form", {"email": "bad", "company": "Acme"})
        session = session_factory()
        assert session.query(Lead).count() == 0
        session.close()

    def test_unknown_lead(self, lead_engine):
        with pytest.raises(LeadNotFound):
            lead_engine.score_lead(uuid.uuid4())
        with pytest.raises(LeadNotFound):
            lead_engine.claim("not-a-uuid", "user_sdr_001")


class TestRetries:
    def test_scoring_timeout_schedules_rescore(self, lead_engine, scheduler):
        lead = lead_engine.intake("website_form", dict(PAYLOAD))
        lead_engine.scorer = MagicMock()
        lead_engine.scorer.score.return_value = ScoreResult(
            score=0, factors=[TIMED_OUT_FACTOR], summary="", qualified=False, provisional=True, timed_out=True,
        )
        lead_engine.score_lead(lead.id)

        scheduler.schedule_rescore.assert_called_once_with(lead.id, settings.retry_backoff_seconds)
        stored = lead_engine.get(lead.id)
        assert stored.score == 0
        assert stored.score_provisional

    def test_retry_rescore_skipped_once_scored(self, lead_engine):
        lead = lead_engine.intake("website_form", dict(PAYLOAD))
        lead_engine.score_lead(lead.id)
        assert lead_engine.score_lead(lead.id, reason="retry") is None
        assert len(lead_engine.get(lead.id).score_events) == 1

    def test_delivery_failure_schedules_retry(self, lead_engine, scheduler, session_factory):
        lead = lead_engine.intake("website_form", dict(PAYLOAD))
        lead_engine.dispatcher.transports = {"email": FailingTransport()}
        result = lead_engine.dispatch(lead.id)

        assert not result.sent
        scheduler.schedule_dispatch_retry.assert_called_once_with(lead.id, 30)
        stored = lead_engine.get(lead.id)
        assert stored.needs_follow_up
        assert stored.status == LeadStatus.NEW
        assert "response_failed" in audit_actions(session_factory, lead.id)

    def test_dispatch_without_scheduler(self, lead_engine):
        lead_engine.scheduler = None
        lead = lead_engine.intake("website_form", dict(PAYLOAD))
        lead_engine.dispatcher.transports = {"email": FailingTransport()}
        assert lead_engine.dispatch(lead.id).retry_in == 30

    def test_manual_respond_after_send_is_noop(self, lead_engine, email_transport):
        lead = lead_engine.intake("website_form", dict(PAYLOAD))
        first = lead_engine.dispatch(lead.id)
        again = lead_engine.dispatch(lead.id, reason="manual")
        assert again.reused
        assert again.auto_response_id == first.auto_response_id
        assert len(email_transport.sent) == 1


class TestWorkflow:
    def test_claim_qualify_convert(self, lead_engine, session_factory):
        lead = lead_engine.intake("website_form", dict(PAYLOAD))
        lead_engine.dispatch(lead.id)

        claimed = lead_engine.claim(lead.id, "user_sdr_001")
        assert claimed.from_status == LeadStatus.AUTO_RESPONDED
        assert claimed.to_status == LeadStatus.SDR_REVIEW

        qualified = lead_engine.qualify(lead.id, True, "Budget confirmed", ae_id="user_ae_002")
        assert qualified.lead.assigned_ae_id == "user_ae_002"

        result = lead_engine.convert(lead.id)
        assert result.created_account
        assert result.deal_name == "Ironbridge Steel Structures - PDM Professional"

        stored = lead_engine.get(lead.id)
        assert stored.status == LeadStatus.CONVERTED
        assert stored.converted_deal_id == result.deal_id
        actions = audit_actions(session_factory, lead.id)
        assert actions.count("status_changed") == 4
        assert "lead_converted" in actions

        with pytest.raises(AlreadyConverted) as exc:
            lead_engine.convert(lead.id)
        assert exc.value.result.deal_id == result.deal_id

    def test_convert_requires_qualified(self, lead_engine):
        lead = lead_engine.intake("website_form", dict(PAYLOAD))
        with pytest.raises(InvalidTransition):
            lead_engine.convert(lead.id)
        assert lead_engine.get(lead.id).status == LeadStatus.NEW

    def test_failed_conversion_rolls_back(self, lead_engine, session_factory, monkeypatch):
        lead = lead_engine.intake("website_form", dict(PAYLOAD))
        lead_engine.qualify(lead.id, True, "Budget confirmed")

        def boom(*args, **kwargs):
            raise RuntimeError("deal insert failed")

        monkeypatch.setattr("leadengine.services.conversion.mark_converted", boom)
        with pytest.raises(ConversionError):
            lead_engine.convert(lead.id)

        stored = lead_engine.get(lead.id)
        assert stored.status == LeadStatus.QUALIFIED
        assert stored.converted_account_id is None
        session = session_factory()
        assert session.query(Account).count() == 0
        session.close()
        assert "conversion_failed" in audit_actions(session_factory, lead.id)

    def test_rescore_terminal_lead_rejected(self, lead_engine):
        lead = lead_engine.intake("website_form", dict(PAYLOAD))
        lead_engine.qualify(lead.id, False, "Not a fit")
        with pytest.raises(InvalidTransition):
            lead_engine.rescore(lead.id)

    def test_qualify_after_conversion_rejected(self, lead_engine):
        lead = lead_engine.intake("website_form", dict(PAYLOAD))
        lead_engine.qualify(lead.id, True, "Budget confirmed")
        lead_engine.convert(lead.id)
        with pytest.raises(InvalidTransition):
            lead_engine.qualify(lead.id, False, "Changed my mind")
        assert lead_engine.get(lead.id).status == LeadStatus.CONVERTED

    def test_response_after_claim_keeps_status(self, lead_engine):
        lead = lead_engine.intake("website_form", dict(PAYLOAD))
        lead_engine.claim(lead.id, "user_sdr_001")
        result = lead_engine.dispatch(lead.id)
        assert result.sent
        assert not result.transitioned
        assert lead_engine.get(lead.id).status == LeadStatus.SDR_REVIEW


class ResubmittingTransport:
    """Sends, then has the lead submit the form again while the send is still in flight."""

    channel = "email"

    def __init__(self, engine, payload: dict):
        self.engine = engine
        self.payload = payload
        self.sent = []
        self.outcomes = []
        self.thread = None

    async def send(self, lead, subject: str, body: str) -> None:
        self.sent.append(lead.email)
        self.thread = threading.Thread(target=self._resubmit)
        self.thread.start()
        self.thread.join(timeout=0.2)

    def _resubmit(self):
        try:
            self.engine.intake("chat", self.payload)
        except Exception as e:
            self.outcomes.append(e)


class TestConcurrentSubmission:
    @pytest.fixture
    def file_sessions(self, tmp_path):
        engine = sqlite_engine(f"sqlite:///{tmp_path / 'leads.db'}")
        yield sessionmaker(bind=engine, expire_on_commit=False)
        engine.dispose()

    def test_duplicate_during_dispatch_waits_for_lead(self, lead_engine, file_sessions):
        lead_engine.session_factory = file_sessions
        lead = lead_engine.intake("website_form", dict(PAYLOAD))
        transport = ResubmittingTransport(lead_engine, {**PAYLOAD, "message": "Any update on pricing?"})
        lead_engine.dispatcher.transports = {"email": transport}

        result = lead_engine.dispatch(lead.id)
        transport.thread.join(timeout=5)

        assert result.sent
        assert len(transport.outcomes) == 1
        assert isinstance(transport.outcomes[0], DuplicateError)

        stored = lead_engine.get(lead.id)
        assert stored.status == LeadStatus.AUTO_RESPONDED
        assert stored.auto_response_sent
        assert stored.submission_count == 2
        assert "Any update on pricing?" in stored.message
        assert len(stored.auto_responses) == 1
        assert audit_actions(file_sessions, lead.id)[-1] == "lead_merged"

        again = lead_engine.dispatch(lead.id, reason="retry")
        assert again.reused
        assert len(transport.sent) == 1

    def test_duplicate_of_disqualified_lead_creates_new(self, lead_engine):
        lead = lead_engine.intake("website_form", dict(PAYLOAD))
        lead_engine.qualify(lead.id, False, "Not a fit")
        fresh = lead_engine.intake("website_form", dict(PAYLOAD))
        assert fresh.id != lead.id
        assert fresh.status == LeadStatus.NEW


class TestEngagement:
    def test_reply_implies_open(self, lead_engine, session_factory):
        lead = lead_engine.intake("website_form", dict(PAYLOAD))
        sent = lead_engine.dispatch(lead.id)

        row = lead_engine.record_engagement(sent.auto_response_id, replied=True)
        assert row.opened
        assert row.replied
        assert audit_actions(session_factory, lead.id)[-1] == "response_engagement"

    def test_repeat_signal_is_not_audited_again(self, lead_engine, session_factory):
        lead = lead_engine.intake("website_form", dict(PAYLOAD))
        sent = lead_engine.dispatch(lead.id)
        lead_engine.record_engagement(sent.auto_response_id, opened=True)
        lead_engine.record_engagement(sent.auto_response_id, opened=True)

        assert audit_actions(session_factory, lead.id).count("response_engagement") == 1
        stored = lead_engine.get(lead.id)
        assert stored.auto_responses[0].opened
        assert not stored.auto_responses[0].replied

    def test_unknown_response(self, lead_engine):
        with pytest.raises(ResponseNotFound):
            lead_engine.record_engagement(uuid.uuid4(), opened=True)
        with pytest.raises(ResponseNotFound):
            lead_engine.record_engagement("not-a-uuid", opened=True)
