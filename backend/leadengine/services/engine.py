"""Lead engine - the single entry point for every lead mutation.

Each operation takes the lead's lock, re-reads the lead in a fresh session,
applies one component, writes the audit trail and commits. The version
column on Lead catches any writer that slipped past the lock; that surfaces
as ConcurrencyConflict.
"""

import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from leadengine.adapters.company_intel import CompanyIntelClient
from leadengine.api.health import (
    CONVERSIONS, ERRORS, LEADS_DUPLICATE, LEADS_INGESTED, LEADS_RATE_LIMITED, SCORING_DURATION, TRANSITIONS,
)
from leadengine.config import settings
from leadengine.database import SyncSession
from leadengine.errors import (
    ConcurrencyConflict, ConversionError, DuplicateError, InvalidTransition, LeadNotFound, RateLimitError,
    ResponseNotFound,
)
from leadengine.models.auto_response import AutoResponse
from leadengine.models.lead import Lead, LeadStatus
from leadengine.services import lifecycle
from leadengine.services.audit import create_audit_entry
from leadengine.services.content import build_content
from leadengine.services.conversion import ConversionResult, ConversionService
from leadengine.services.dispatcher import DispatchResult, ResponseDispatcher
from leadengine.services.intake import IntakeNormalizer
from leadengine.services.locks import build_locks
from leadengine.services.notifications import format_hot_lead_notification, send_slack_notification
from leadengine.services.scheduler import JobScheduler
from leadengine.services.scoring import ScoreResult, ScoringEngine, apply_score
from leadengine.services.throttle import IntakeRateLimiter
from leadengine.utils import run_async

logger = structlog.get_logger()


def _as_uuid(lead_id) -> uuid.UUID:
    if isinstance(lead_id, uuid.UUID):
        return lead_id
    try:
        return uuid.UUID(str(lead_id))
    except ValueError:
        raise LeadNotFound(lead_id)


@dataclass
class TransitionOutcome:
    lead: Lead
    from_status: LeadStatus
    to_status: LeadStatus


class LeadEngine:
    def __init__(self, session_factory=None, locks=None, normalizer: IntakeNormalizer | None = None,
                 scorer: ScoringEngine | None = None, dispatcher: ResponseDispatcher | None = None,
                 conversion: ConversionService | None = None, scheduler: JobScheduler | None = None,
                 clock=None, notify_hot_leads: bool = True):
        self.session_factory = session_factory or SyncSession
        self.locks = locks or build_locks()
        self.normalizer = normalizer or IntakeNormalizer()
        self.scorer = scorer or ScoringEngine()
        self.dispatcher = dispatcher or ResponseDispatcher()
        self.conversion = conversion or ConversionService()
        self.scheduler = scheduler
        self.clock = clock or datetime.utcnow
        self.notify_hot_leads = notify_hot_leads

    @contextmanager
    def _locked_lead(self, lead_id):
        lead_uuid = _as_uuid(lead_id)
        with self.locks.hold(f"lead:{lead_uuid}"):
            session = self.session_factory()
            try:
                lead = session.get(Lead, lead_uuid)
                if lead is None:
                    raise LeadNotFound(lead_id)
                yield session, lead
            except StaleDataError as e:
                session.rollback()
                ERRORS.labels(type="stale_write").inc()
                logger.warning("lead_stale_write", lead_id=str(lead_uuid), error=str(e))
                raise ConcurrencyConflict(f"Lead {lead_uuid} was modified concurrently") from e
            finally:
                session.close()

    def _schedule(self, action: str, lead_id, delay: int) -> None:
        if self.scheduler is None:
            logger.info("retry_not_scheduled_no_scheduler", action=action, lead_id=str(lead_id))
            return
        try:
            getattr(self.scheduler, action)(lead_id, delay)
        except Exception as e:
            # The lead is already committed; a lost retry leaves it flagged, not broken
            logger.error("failed_to_schedule_retry", action=action, lead_id=str(lead_id), error=str(e))
            ERRORS.labels(type="queue").inc()

    def _record_transition(self, session, lead: Lead, previous: LeadStatus, actor: str, step: str,
                           extra_data: dict | None = None) -> None:
        TRANSITIONS.labels(from_status=previous.value, to_status=lead.status.value).inc()
        create_audit_entry(
            session, lead.id, "status_changed", step=step, actor=actor,
            from_status=previous, to_status=lead.status, extra_data=extra_data,
        )

    # --- Intake ---

    def intake(self, channel: str, payload: dict, actor: str = "webhook") -> Lead:
        """Validate and persist an inbound lead. Raises DuplicateError when merged."""
        normalized = self.normalizer.normalize(channel, payload)
        now = self.clock()
        with self.locks.hold(f"intake:{normalized.email}:{normalized.company_key}"):
            try:
                self.normalizer.check_rate(normalized)
            except RateLimitError:
                LEADS_RATE_LIMITED.labels(source=normalized.source.value).inc()
                raise

            session = self.session_factory()
            try:
                existing = self.normalizer.find_duplicate(session, normalized, now)
                duplicate_id = existing.id if existing is not None else None
            finally:
                session.close()
            if duplicate_id is not None:
                # Merging writes the existing lead, so it goes through that lead's lock
                self._merge_duplicate(duplicate_id, normalized, actor)

            session = self.session_factory()
            try:
                lead = self.normalizer.create(session, normalized, now)
                create_audit_entry(
                    session, lead.id, "lead_created", step="intake", actor=actor, to_status=lead.status,
                    input_summary=f"Name: {lead.full_name or 'N/A'}, Email: {lead.email}, Company: {lead.company}",
                    extra_data={"source": lead.source.value, "source_detail": lead.source_detail},
                )
                session.commit()
            finally:
                session.close()
        LEADS_INGESTED.labels(source=lead.source.value).inc()
        return lead

    def _merge_duplicate(self, lead_id, normalized, actor: str) -> None:
        """Merge a repeat submission under the lead's lock. Returns only if the lead stopped matching."""
        with self._locked_lead(lead_id) as (session, lead):
            if lead.status == LeadStatus.DISQUALIFIED:
                logger.info("duplicate_target_disqualified", lead_id=str(lead.id))
                return
            try:
                self.normalizer.merge(session, lead, normalized)
            except DuplicateError:
                create_audit_entry(
                    session, lead.id, "lead_merged", step="intake", actor=actor,
                    input_summary=f"Email: {normalized.email}, Company: {normalized.company}",
                    reason_code="duplicate_submission",
                    extra_data={"source": normalized.source.value},
                )
                session.commit()
                LEADS_DUPLICATE.labels(source=normalized.source.value).inc()
                raise

    # --- Scoring ---

    def score_lead(self, lead_id, reason: str = "intake", actor: str = "worker") -> ScoreResult | None:
        with self._locked_lead(lead_id) as (session, lead):
            if reason == "rescore" and lead.is_terminal:
                raise InvalidTransition(lead.status.value, lead.status.value,
                                        f"Lead is {lead.status.value} (terminal); rescoring is disabled")
            if reason == "retry" and lead.score is not None and not lead.score_provisional:
                logger.info("rescore_retry_skipped", lead_id=str(lead.id), score=lead.score)
                return None
            was_qualified = lead.ai_qualified

            started = time.monotonic()
            result = self.scorer.score(lead)
            outcome = "timed_out" if result.timed_out else "provisional" if result.provisional else "ok"
            SCORING_DURATION.labels(outcome=outcome).observe(time.monotonic() - started)

            event = apply_score(lead, result, reason=reason, now=self.clock())
            create_audit_entry(
                session, lead.id, "lead_scored", step="score", actor=actor,
                model_used=result.summary_model,
                input_summary=f"Title: {lead.title or 'N/A'}, Company: {lead.company}, Source: {lead.source.value}",
                output_summary=f"Score: {result.score}, Qualified: {result.qualified}, Factors: {'; '.join(result.factors)}",
                reason_code=reason if event else "timed_out_not_applied",
                extra_data={"provisional": result.provisional, "timed_out": result.timed_out,
                            "previous_score": event.previous_score if event else lead.score},
            )
            session.commit()

            if self.notify_hot_leads and result.qualified and not was_qualified and settings.slack_webhook_url:
                text, blocks = format_hot_lead_notification(lead)
                run_async(send_slack_notification(settings.slack_webhook_url, text, blocks=blocks))

        if result.timed_out:
            self.defer_rescore(lead_id)
        return result

    def defer_rescore(self, lead_id) -> None:
        self._schedule("schedule_rescore", lead_id, settings.retry_backoff_seconds)

    def rescore(self, lead_id, actor: str = "user") -> ScoreResult:
        return self.score_lead(lead_id, reason="rescore", actor=actor)

    # --- Response dispatch ---

    def dispatch(self, lead_id, reason: str = "pipeline", actor: str = "worker") -> DispatchResult:
        with self._locked_lead(lead_id) as (session, lead):
            previous = lead.status
            result = self.dispatcher.dispatch(session, lead)
            if not result.reused:
                create_audit_entry(
                    session, lead.id, "response_sent" if result.sent else "response_failed",
                    step="dispatch", actor=actor,
                    model_used=lead.auto_responses[-1].model if lead.auto_responses else None,
                    output_summary=result.content.subject if result.content else None,
                    reason_code=reason,
                    extra_data={
                        "attempt": result.attempt,
                        "channel": result.channel,
                        "latency_ms": result.latency_ms,
                        "sla_met": result.sla_met,
                        "fallback_used": result.fallback_used,
                        "error": result.error,
                        "retry_in": result.retry_in,
                    },
                )
                if result.transitioned:
                    self._record_transition(session, lead, previous, actor, step="dispatch")
            session.commit()

        if result.retry_in is not None:
            self._schedule("schedule_dispatch_retry", lead_id, result.retry_in)
        return result

    def record_engagement(self, response_id, opened: bool = False, replied: bool = False,
                          actor: str = "tracking") -> AutoResponse:
        """Flag an auto-response as opened or replied. Flags only move to True; a reply implies an open."""
        try:
            response_uuid = uuid.UUID(str(response_id))
        except ValueError:
            raise ResponseNotFound(response_id)
        session = self.session_factory()
        try:
            row = session.get(AutoResponse, response_uuid)
            lead_id = row.lead_id if row is not None else None
        finally:
            session.close()
        if lead_id is None:
            raise ResponseNotFound(response_id)

        with self._locked_lead(lead_id) as (session, lead):
            row = session.get(AutoResponse, response_uuid)
            changed = []
            if (opened or replied) and not row.opened:
                row.opened = True
                changed.append("opened")
            if replied and not row.replied:
                row.replied = True
                changed.append("replied")
            if changed:
                create_audit_entry(
                    session, lead.id, "response_engagement", step="engagement", actor=actor,
                    reason_code=",".join(changed),
                    extra_data={"auto_response_id": str(row.id), "channel": row.channel},
                )
                session.commit()
            return row

    # --- Human workflow ---

    def claim(self, lead_id, sdr_id: str, actor: str = "user") -> TransitionOutcome:
        with self._locked_lead(lead_id) as (session, lead):
            previous = lifecycle.claim(lead, sdr_id)
            self._record_transition(session, lead, previous, actor, step="claim",
                                    extra_data={"sdr_id": lead.assigned_sdr_id})
            session.commit()
            return TransitionOutcome(lead=lead, from_status=previous, to_status=lead.status)

    def qualify(self, lead_id, qualified: bool, notes: str, ae_id: str | None = None,
                actor: str = "user") -> TransitionOutcome:
        with self._locked_lead(lead_id) as (session, lead):
            previous = lifecycle.qualify(lead, qualified, notes, ae_id=ae_id, now=self.clock())
            self._record_transition(session, lead, previous, actor, step="qualify",
                                    extra_data={"notes": lead.qualification_notes, "ae_id": lead.assigned_ae_id})
            session.commit()
            return TransitionOutcome(lead=lead, from_status=previous, to_status=lead.status)

    # --- Conversion ---

    def convert(self, lead_id, actor: str = "user") -> ConversionResult:
        with self._locked_lead(lead_id) as (session, lead):
            try:
                result = self.conversion.convert(session, lead, now=self.clock())
            except ConversionError as e:
                session.rollback()
                create_audit_entry(
                    session, lead.id, "conversion_failed", step="convert", actor=actor,
                    reason_code="conversion_rolled_back", output_summary=e.reason,
                )
                session.commit()
                CONVERSIONS.labels(outcome="failed").inc()
                raise
            create_audit_entry(
                session, lead.id, "lead_converted", step="convert", actor=actor,
                from_status=LeadStatus.QUALIFIED, to_status=LeadStatus.CONVERTED,
                output_summary=f"Account: {result.account_name}, Deal: {result.deal_name}",
                extra_data={"account_id": str(result.account_id), "deal_id": str(result.deal_id),
                            "created_account": result.created_account},
            )
            self._record_transition(session, lead, LeadStatus.QUALIFIED, actor, step="convert")
            session.commit()
            CONVERSIONS.labels(outcome="converted").inc()

        try:
            run_async(self.conversion.mirror(lead, result))
        except Exception as e:
            logger.error("conversion_mirror_failed", lead_id=str(lead.id), error=str(e))
            ERRORS.labels(type="crm_mirror").inc()
        return result

    # --- Reads ---

    def get(self, lead_id) -> Lead:
        session = self.session_factory()
        try:
            lead = session.execute(
                select(Lead)
                .where(Lead.id == _as_uuid(lead_id))
                .options(selectinload(Lead.auto_responses), selectinload(Lead.score_events))
            ).scalar_one_or_none()
            if lead is None:
                raise LeadNotFound(lead_id)
            return lead
        finally:
            session.close()


def build_engine(scheduler: JobScheduler | None = None) -> LeadEngine:
    """Engine wired from settings, shared by the API and the workers."""
    content = build_content()
    intel = CompanyIntelClient()
    return LeadEngine(
        normalizer=IntakeNormalizer(rate_limiter=IntakeRateLimiter()),
        scorer=ScoringEngine(intel_client=intel if intel.is_configured else None, content=content),
        dispatcher=ResponseDispatcher(content=content),
        conversion=ConversionService(),
        scheduler=scheduler or JobScheduler(),
    )
