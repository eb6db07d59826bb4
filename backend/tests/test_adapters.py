"""Tests for outbound adapters, Slack notifications and job scheduling."""

import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import aiosmtplib
import httpx
import pytest

from leadengine.adapters.chat import ChatWebhookTransport
from leadengine.adapters.company_intel import CompanyIntel, CompanyIntelClient
from leadengine.adapters.email import SmtpTransport
from leadengine.errors import DeliveryError, EnrichmentUnavailable
from leadengine.models.lead import LeadSource
from leadengine.services.notifications import (
    format_conversion_notification, format_hot_lead_notification, send_slack_notification,
)
from leadengine.services.scheduler import PIPELINE_QUEUE, RETRY_QUEUE, JobScheduler
from leadengine.utils import run_async

LEAD = SimpleNamespace(
    id=uuid.uuid4(), email="jane@acme.com", full_name="Jane Doe", company="Acme Corp", title="CTO",
    score=88, score_factors=["C-level / owner contact"], source=LeadSource.CHAT, region=None,
    source_detail="conv-123", assigned_ae_id=None,
)


def mock_http(monkeypatch, module: str, handler):
    """Route every httpx.AsyncClient built inside ``module`` through a MockTransport."""
    real_client = httpx.AsyncClient

    def factory(*args, **kwargs):
        return real_client(*args, transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(f"{module}.httpx.AsyncClient", factory)


class TestSmtpTransport:
    def test_build_message(self):
        msg = SmtpTransport(host="smtp.example.com").build_message("jane@acme.com", "Hi", "Body")
        assert msg["To"] == "jane@acme.com"
        assert msg["Subject"] == "Hi"

    def test_send(self):
        transport = SmtpTransport(host="smtp.example.com", port=587, user="u", password="p", use_tls=True)
        with patch("leadengine.adapters.email.aiosmtplib.send", new=AsyncMock()) as send:
            run_async(transport.send(LEAD, "Hi", "Body"))
        kwargs = send.call_args.kwargs
        assert kwargs["hostname"] == "smtp.example.com"
        assert kwargs["start_tls"] is True
        assert kwargs["use_tls"] is False

    def test_implicit_tls_on_465(self):
        transport = SmtpTransport(host="smtp.example.com", port=465, use_tls=True)
        with patch("leadengine.adapters.email.aiosmtplib.send", new=AsyncMock()) as send:
            run_async(transport.send(LEAD, "Hi", "Body"))
        assert send.call_args.kwargs["use_tls"] is True
        assert send.call_args.kwargs["start_tls"] is False

    def test_failure_is_delivery_error(self):
        transport = SmtpTransport(host="smtp.example.com")
        failing = AsyncMock(side_effect=aiosmtplib.SMTPConnectError("refused"))
        with patch("leadengine.adapters.email.aiosmtplib.send", new=failing):
            with pytest.raises(DeliveryError):
                run_async(transport.send(LEAD, "Hi", "Body"))

    def test_unconfigured(self):
        with pytest.raises(DeliveryError):
            run_async(SmtpTransport(host="").send(LEAD, "Hi", "Body"))


class TestChatWebhookTransport:
    def test_send(self, monkeypatch):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        mock_http(monkeypatch, "leadengine.adapters.chat", handler)
        run_async(ChatWebhookTransport("https://chat.example.com/reply").send(LEAD, "Chat reply", "Thanks Jane!"))
        assert seen[0].url == "https://chat.example.com/reply"
        assert b"conv-123" in seen[0].content

    def test_server_error(self, monkeypatch):
        mock_http(monkeypatch, "leadengine.adapters.chat", lambda request: httpx.Response(502))
        with pytest.raises(DeliveryError):
            run_async(ChatWebhookTransport("https://chat.example.com/reply").send(LEAD, "s", "b"))

    def test_unconfigured(self):
        with pytest.raises(DeliveryError):
            run_async(ChatWebhookTransport("").send(LEAD, "s", "b"))


class TestCompanyIntelClient:
    def test_lookup(self, monkeypatch):
        def handler(request):
            assert request.url.params["domain"] == "acme.com"
            return httpx.Response(200, json={
                "summary": "Industrial equipment maker",
                "techStack": ["SAP"],
                "employeeCount": "350",
            })

        mock_http(monkeypatch, "leadengine.adapters.company_intel", handler)
        intel = run_async(CompanyIntelClient("https://intel.example.com", "key").lookup("Acme", "acme.com"))
        assert intel.employee_count == 350
        assert intel.tech_stack == ["SAP"]

    def test_http_error(self, monkeypatch):
        mock_http(monkeypatch, "leadengine.adapters.company_intel", lambda request: httpx.Response(503))
        with pytest.raises(EnrichmentUnavailable):
            run_async(CompanyIntelClient("https://intel.example.com").lookup("Acme"))

    def test_unconfigured(self):
        client = CompanyIntelClient("")
        assert not client.is_configured
        with pytest.raises(EnrichmentUnavailable):
            run_async(client.lookup("Acme"))

    def test_snapshot_round_trip(self):
        intel = CompanyIntel(summary="x", employee_count=12)
        assert CompanyIntel.from_dict(intel.to_dict()) == intel


class TestNotifications:
    def test_skipped_without_webhook(self):
        assert run_async(send_slack_notification("", "hello")) is False

    def test_sent(self, monkeypatch):
        mock_http(monkeypatch, "leadengine.services.notifications", lambda request: httpx.Response(200))
        assert run_async(send_slack_notification("https://hooks.slack.com/x", "hello", blocks=[{}]))

    def test_failure_returns_false(self, monkeypatch):
        mock_http(monkeypatch, "leadengine.services.notifications", lambda request: httpx.Response(500))
        assert run_async(send_slack_notification("https://hooks.slack.com/x", "hello")) is False

    def test_hot_lead_format(self):
        text, blocks = format_hot_lead_notification(LEAD)
        assert text == "Hot lead: Jane Doe from Acme Corp (score 88)"
        assert "C-level / owner contact" in blocks[2]["text"]["text"]

    def test_conversion_format(self):
        result = SimpleNamespace(deal_name="Acme Corp - PDM", account_name="Acme Corp", created_account=True,
                                 deal_stage="discovery")
        text, blocks = format_conversion_notification(LEAD, result)
        assert text == "Lead converted: Acme Corp - PDM"
        assert blocks[1]["fields"][0]["text"] == "*Account:* Acme Corp (new)"


class TestJobScheduler:
    def test_enqueue_pipeline(self):
        with patch("leadengine.services.scheduler.Queue") as queue_cls:
            JobScheduler(connection=MagicMock()).enqueue_pipeline(LEAD.id)
        assert queue_cls.call_args[0][0] == PIPELINE_QUEUE
        args = queue_cls.return_value.enqueue.call_args[0]
        assert args == ("leadengine.workers.lead_pipeline.process_lead", str(LEAD.id))

    def test_schedule_dispatch_retry(self):
        with patch("leadengine.services.scheduler.Queue") as queue_cls:
            JobScheduler(connection=MagicMock()).schedule_dispatch_retry(LEAD.id, 60)
        assert queue_cls.call_args[0][0] == RETRY_QUEUE
        delay, func, lead_id = queue_cls.return_value.enqueue_in.call_args[0]
        assert delay.total_seconds() == 60
        assert func == "leadengine.workers.lead_pipeline.retry_dispatch"
        assert lead_id == str(LEAD.id)

    def test_schedule_rescore(self):
        with patch("leadengine.services.scheduler.Queue") as queue_cls:
            JobScheduler(connection=MagicMock()).schedule_rescore(LEAD.id, 30)
        func = queue_cls.return_value.enqueue_in.call_args[0][1]
        assert func == "leadengine.workers.lead_pipeline.rescore_lead"
