"""Response dispatcher - first response to a lead inside the speed-to-lead SLA.

Copy comes from Content Intelligence, bounded by whatever is left of the SLA
after reserving time for the send itself; the template fallback covers any
failure. The SLA is a target, not a cancellation: a late response is still
sent and recorded with ``sla_met=False``.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from leadengine.adapters.chat import ChatWebhookTransport
from leadengine.adapters.email import LogTransport, SmtpTransport
from leadengine.api.health import AUTO_RESPONSES, CONTENT_FALLBACKS, SLA_MISSES, SPEED_TO_LEAD
from leadengine.config import settings
from leadengine.errors import DeliveryError
from leadengine.models.auto_response import DELIVERY_FAILED, DELIVERY_SENT, AutoResponse
from leadengine.models.lead import Lead, LeadSource
from leadengine.services.content import EmailVariant, OutreachRequest, ResilientContent, lead_snapshot
from leadengine.services.lifecycle import mark_auto_responded
from leadengine.utils import elapsed_ms, run_async

logger = structlog.get_logger()

# Floor for the content budget once the SLA is already gone
MIN_CONTENT_SECONDS = 1.0


@dataclass
class DispatchResult:
    sent: bool
    latency_ms: int | None
    content: EmailVariant | None
    sla_met: bool | None
    fallback_used: bool
    auto_response_id: uuid.UUID | None
    attempt: int
    channel: str | None = None
    error: str | None = None
    retry_in: int | None = None  # seconds until the scheduled retry, if any
    transitioned: bool = False
    reused: bool = False  # an earlier attempt answered this call; nothing was sent


def build_transports() -> dict:
    if settings.delivery_backend == "log":
        return {"email": LogTransport("email"), "chat": LogTransport("chat")}
    transports = {"email": SmtpTransport()}
    if settings.chat_webhook_url:
        transports["chat"] = ChatWebhookTransport()
    return transports


class ResponseDispatcher:
    def __init__(self, content: ResilientContent | None = None, transports: dict | None = None,
                 sla_seconds: int | None = None, max_attempts: int | None = None,
                 backoff_seconds: int | None = None, clock=None):
        self.content = content or ResilientContent()
        self.transports = transports if transports is not None else build_transports()
        self.sla_seconds = sla_seconds if sla_seconds is not None else settings.sla_seconds
        self.max_attempts = max_attempts if max_attempts is not None else settings.dispatch_max_attempts
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.retry_backoff_seconds
        self.clock = clock or datetime.utcnow

    def channel_for(self, lead: Lead) -> str:
        if lead.source == LeadSource.CHAT and "chat" in self.transports:
            return "chat"
        return "email"

    def content_budget(self, lead: Lead, now: datetime) -> float:
        deadline = lead.received_at + timedelta(seconds=self.sla_seconds)
        remaining = (deadline - now).total_seconds() - settings.send_reserve_seconds
        return max(min(settings.content_timeout_seconds, remaining), MIN_CONTENT_SECONDS)

    def retry_delay(self, attempt: int) -> int | None:
        """Backoff before the next attempt, or None once attempts are exhausted."""
        if attempt >= self.max_attempts:
            return None
        return self.backoff_seconds * 2 ** (attempt - 1)

    def dispatch(self, session: Session, lead: Lead) -> DispatchResult:
        """Generate and send one response. Caller commits."""
        if lead.auto_response_sent:
            first = next((r for r in lead.auto_responses if r.is_sent), None)
            if first is not None:
                logger.info("dispatch_skipped_already_sent", lead_id=str(lead.id))
                return self._from_row(first, reused=True)

        attempt = (lead.dispatch_attempts or 0) + 1
        key = f"{lead.id}:{attempt}"
        existing = session.execute(
            select(AutoResponse).where(AutoResponse.idempotency_key == key)
        ).scalar_one_or_none()
        if existing:
            logger.info("dispatch_idempotent_hit", lead_id=str(lead.id), attempt=attempt)
            return self._from_row(existing, reused=True)

        started = self.clock()
        channel = self.channel_for(lead)
        snapshot = lead_snapshot(lead)
        request = OutreachRequest(lead=snapshot, channel=channel)
        generated = run_async(self.content.generate_outreach(request, timeout=self.content_budget(lead, started)))
        variant = generated.variants[0]
        if generated.fallback_used:
            CONTENT_FALLBACKS.inc()

        row = AutoResponse(
            id=uuid.uuid4(),
            attempt=attempt,
            idempotency_key=key,
            subject=variant.subject,
            body=variant.body,
            channel=channel,
            personalization={**snapshot, "points": variant.personalization_points},
            attempted_at=started,
            fallback_used=generated.fallback_used,
            confidence=generated.confidence,
            model=generated.model,
        )
        lead.dispatch_attempts = attempt

        try:
            run_async(self.transports[channel].send(lead, variant.subject, variant.body))
        except DeliveryError as e:
            row.delivery_status = DELIVERY_FAILED
            row.error = e.reason
            lead.auto_responses.append(row)
            lead.needs_follow_up = True
            retry_in = self.retry_delay(attempt)
            AUTO_RESPONSES.labels(channel=channel, outcome="failed").inc()
            logger.warning("auto_response_failed", lead_id=str(lead.id), attempt=attempt,
                           channel=channel, error=e.reason, retry_in=retry_in)
            return DispatchResult(
                sent=False, latency_ms=None, content=variant, sla_met=None,
                fallback_used=generated.fallback_used, auto_response_id=row.id,
                attempt=attempt, channel=channel, error=e.reason, retry_in=retry_in,
            )

        sent_at = self.clock()
        latency = elapsed_ms(lead.received_at, sent_at)
        sla_met = latency <= self.sla_seconds * 1000
        row.delivery_status = DELIVERY_SENT
        row.sent_at = sent_at
        row.latency_ms = latency
        row.sla_met = sla_met
        lead.auto_responses.append(row)

        if not lead.auto_response_sent:
            lead.auto_response_sent = True
            lead.auto_response_at = sent_at
            lead.auto_response_content = variant.body
            lead.auto_response_channel = channel
            lead.response_time_ms = latency
            SPEED_TO_LEAD.observe(latency / 1000)
            if not sla_met:
                SLA_MISSES.inc()
        lead.needs_follow_up = False
        transitioned = mark_auto_responded(lead)

        AUTO_RESPONSES.labels(channel=channel, outcome="sent").inc()
        logger.info("auto_response_sent", lead_id=str(lead.id), attempt=attempt, channel=channel,
                    latency_ms=latency, sla_met=sla_met, fallback_used=generated.fallback_used)
        return DispatchResult(
            sent=True, latency_ms=latency, content=variant, sla_met=sla_met,
            fallback_used=generated.fallback_used, auto_response_id=row.id,
            attempt=attempt, channel=channel, transitioned=transitioned,
        )

    def _from_row(self, row: AutoResponse, reused: bool = False) -> DispatchResult:
        return DispatchResult(
            sent=row.is_sent,
            latency_ms=row.latency_ms,
            content=EmailVariant(subject=row.subject, body=row.body,
                                 personalization_points=list((row.personalization or {}).get("points", []))),
            sla_met=row.sla_met,
            fallback_used=row.fallback_used,
            auto_response_id=row.id,
            attempt=row.attempt,
            channel=row.channel,
            error=row.error,
            reused=reused,
        )
