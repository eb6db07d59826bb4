"""Lead lifecycle state machine.

    new -> auto_responded -> sdr_review -> {qualified, disqualified}
    qualified -> converted

``new`` and ``auto_responded`` may jump straight to sdr_review, qualified or
disqualified. ``disqualified`` and ``converted`` are terminal. Any pair not in
ALLOWED_TRANSITIONS raises InvalidTransition and leaves the lead untouched.
"""

from datetime import datetime

import structlog

from leadengine.errors import InvalidTransition, ValidationError
from leadengine.models.lead import Lead, LeadStatus

logger = structlog.get_logger()

S = LeadStatus

TERMINAL_STATES = frozenset({S.DISQUALIFIED, S.CONVERTED})
PRE_QUALIFICATION_STATES = frozenset({S.NEW, S.AUTO_RESPONDED, S.SDR_REVIEW})

ALLOWED_TRANSITIONS = frozenset(
    {(S.NEW, S.AUTO_RESPONDED)}
    | {(src, S.SDR_REVIEW) for src in PRE_QUALIFICATION_STATES}
    | {(src, S.QUALIFIED) for src in PRE_QUALIFICATION_STATES}
    | {(src, S.DISQUALIFIED) for src in PRE_QUALIFICATION_STATES}
    | {(S.QUALIFIED, S.CONVERTED)}
)


def can_transition(current: LeadStatus, target: LeadStatus) -> bool:
    return (LeadStatus(current), LeadStatus(target)) in ALLOWED_TRANSITIONS


def assert_transition(current: LeadStatus, target: LeadStatus) -> None:
    current, target = LeadStatus(current), LeadStatus(target)
    if (current, target) not in ALLOWED_TRANSITIONS:
        if current in TERMINAL_STATES:
            reason = f"Lead is {current.value} (terminal); cannot move to {target.value}"
        else:
            reason = f"Transition {current.value} -> {target.value} is not allowed"
        raise InvalidTransition(current.value, target.value, reason)


def allowed_actions(status: LeadStatus) -> list[str]:
    """Actions the dashboard may offer for a lead in ``status``."""
    status = LeadStatus(status)
    actions = []
    if can_transition(status, S.SDR_REVIEW):
        actions.append("claim")
    if can_transition(status, S.QUALIFIED):
        actions.extend(["qualify", "disqualify"])
    if can_transition(status, S.CONVERTED):
        actions.append("convert")
    if status not in TERMINAL_STATES:
        actions.append("rescore")
    return actions


def transition(lead: Lead, target: LeadStatus) -> LeadStatus:
    """Apply a guarded transition in memory. Returns the previous status."""
    previous = lead.status
    assert_transition(previous, target)
    lead.status = target
    logger.info("lead_status_changed", lead_id=str(lead.id), from_status=previous.value, to_status=target.value)
    return previous


def mark_auto_responded(lead: Lead) -> bool:
    """Advance new -> auto_responded. Returns False when a human got there first."""
    if lead.status != S.NEW:
        logger.info("auto_responded_transition_skipped", lead_id=str(lead.id), status=lead.status.value)
        return False
    transition(lead, S.AUTO_RESPONDED)
    return True


def claim(lead: Lead, sdr_id: str) -> LeadStatus:
    """SDR claims the lead for review. Re-claiming reassigns without error."""
    if not sdr_id or not sdr_id.strip():
        raise ValidationError("sdr_id is required to claim a lead", field="sdr_id")
    previous = transition(lead, S.SDR_REVIEW)
    lead.assigned_sdr_id = sdr_id.strip()
    return previous


def qualify(lead: Lead, qualified: bool, notes: str, ae_id: str | None = None,
            now: datetime | None = None) -> LeadStatus:
    """Human qualification verdict. Notes are mandatory."""
    target = S.QUALIFIED if qualified else S.DISQUALIFIED
    # Guard first so a terminal lead reports InvalidTransition, not a notes error
    assert_transition(lead.status, target)
    if not notes or not notes.strip():
        raise ValidationError("Qualification notes are required", field="notes")

    now = now or datetime.utcnow()
    previous = transition(lead, target)
    lead.qualification_notes = notes.strip()
    if qualified:
        lead.qualified_at = max(now, lead.received_at) if lead.received_at else now
        if ae_id:
            lead.assigned_ae_id = ae_id
    else:
        lead.disqualified_at = max(now, lead.received_at) if lead.received_at else now
    return previous


def mark_converted(lead: Lead, account_id, deal_id, now: datetime | None = None) -> LeadStatus:
    """qualified -> converted, writing the conversion links exactly once."""
    if lead.converted_account_id or lead.converted_deal_id:
        raise InvalidTransition(
            lead.status.value, S.CONVERTED.value, "Lead already carries conversion links",
        )
    previous = transition(lead, S.CONVERTED)
    now = now or datetime.utcnow()
    lead.converted_account_id = account_id
    lead.converted_deal_id = deal_id
    lead.converted_at = max(now, lead.qualified_at) if lead.qualified_at else now
    return previous
