"""Intake normalizer - raw channel payloads to canonical leads.

Each channel posts whatever its form/widget/parser produces. Field aliases are
resolved per channel first, then generic snake_case and camelCase keys.
"""

import re
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from email.utils import parseaddr
from urllib.parse import urlparse

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from leadengine.config import settings
from leadengine.errors import DuplicateError, ValidationError
from leadengine.models.lead import Lead, LeadSource, LeadStatus

logger = structlog.get_logger()

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
LEGAL_SUFFIXES = {"inc", "llc", "ltd", "corp", "corporation", "co", "company", "gmbh", "plc", "limited"}
MERGE_SEPARATOR = "\n\n---\n"
FREE_MAIL_DOMAINS = {
    "gmail.com", "googlemail.com", "yahoo.com", "hotmail.com", "outlook.com", "live.com",
    "aol.com", "icloud.com", "me.com", "proton.me", "protonmail.com", "gmx.com",
}

GENERIC_ALIASES = {
    "first_name": ("first_name", "firstName", "firstname", "given_name"),
    "last_name": ("last_name", "lastName", "lastname", "family_name", "surname"),
    "name": ("name", "full_name", "fullName", "contact_name"),
    "email": ("email", "email_address", "emailAddress"),
    "phone": ("phone", "phone_number", "phoneNumber", "mobile"),
    "title": ("title", "job_title", "jobTitle", "role"),
    "company": ("company", "company_name", "companyName", "organization", "organisation"),
    "industry": ("industry", "vertical"),
    "employee_count": ("employee_count", "employeeCount", "employees", "company_size", "companySize"),
    "website": ("website", "company_website", "url", "domain"),
    "message": ("message", "inquiry", "comments", "body", "notes"),
    "product_interest": ("product_interest", "productInterest", "product", "interest"),
    "region": ("region", "territory", "state"),
    "source_detail": ("source_detail", "sourceDetail", "page", "form_name", "campaign"),
}

CHANNEL_ALIASES = {
    LeadSource.CHAT: {
        "email": ("visitor_email", "visitorEmail"),
        "name": ("visitor_name", "visitorName"),
        "message": ("transcript", "first_message", "chat_message"),
        "source_detail": ("widget", "widget_name"),
    },
    LeadSource.EMAIL: {
        "message": ("text", "body_plain", "content"),
        "source_detail": ("to", "mailbox", "inbox"),
    },
    LeadSource.PHONE: {
        "name": ("caller_name", "callerName"),
        "phone": ("callback_number", "caller_number", "from_number"),
        "message": ("call_notes", "voicemail_transcript"),
    },
    LeadSource.EVENT: {
        "first_name": ("badge_first_name",),
        "last_name": ("badge_last_name",),
        "company": ("badge_company",),
        "title": ("badge_title",),
        "source_detail": ("event_name", "event", "booth"),
    },
    LeadSource.REFERRAL: {
        "source_detail": ("referred_by", "referrer", "referrer_company"),
    },
    LeadSource.PARTNER: {
        "source_detail": ("partner_name", "partner"),
    },
    LeadSource.SOCIAL: {
        "source_detail": ("handle", "network", "platform"),
        "message": ("post", "dm_text"),
    },
}


@dataclass
class NormalizedLead:
    source: LeadSource
    email: str
    company: str
    company_key: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    title: str | None = None
    industry: str | None = None
    employee_count: int | None = None
    website: str | None = None
    message: str | None = None
    product_interest: str | None = None
    region: str | None = None
    source_detail: str | None = None


def _clean(value) -> str | None:
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


def _pick(payload: dict, keys: tuple) -> str | None:
    for key in keys:
        if key in payload:
            value = _clean(payload[key])
            if value:
                return value
    return None


def canonical_company(company: str) -> str:
    """Case-folded company name without punctuation or legal suffixes."""
    words = re.sub(r"[^\w\s]", " ", company.casefold()).split()
    while words and words[-1] in LEGAL_SUFFIXES:
        words.pop()
    return " ".join(words) or company.casefold().strip()


def parse_employee_count(value) -> int | None:
    """Accepts 500, "500", "1,200", "200-500" (upper bound), "500+"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return max(int(value), 0)
    numbers = re.findall(r"\d+", str(value).replace(",", ""))
    if not numbers:
        return None
    return max(int(n) for n in numbers)


def domain_for_lead(lead) -> str | None:
    """Company domain from the website, else from a non-free-mail email address."""
    if lead.website:
        host = urlparse(lead.website if "//" in lead.website else f"//{lead.website}").hostname
        if host:
            return host.lower().removeprefix("www.")
    domain = lead.email.rsplit("@", 1)[-1].lower() if lead.email and "@" in lead.email else None
    if domain and domain not in FREE_MAIL_DOMAINS:
        return domain
    return None


def parse_channel(channel: str) -> LeadSource:
    key = (channel or "").strip().lower().replace("-", "_")
    if key == "website":
        key = LeadSource.WEBSITE_FORM.value
    try:
        return LeadSource(key)
    except ValueError:
        raise ValidationError(f"Unknown channel '{channel}'", field="channel")


class IntakeNormalizer:
    """Validates, rate-limits, dedupes and persists inbound leads."""

    def __init__(self, rate_limiter=None, dedupe_window_days: int | None = None):
        self.rate_limiter = rate_limiter
        self.dedupe_window = timedelta(
            days=dedupe_window_days if dedupe_window_days is not None else settings.dedupe_window_days
        )

    def normalize(self, channel: str, payload: dict) -> NormalizedLead:
        if not isinstance(payload, dict):
            raise ValidationError("Payload must be a JSON object")
        source = parse_channel(channel)

        aliases = {field: keys for field, keys in GENERIC_ALIASES.items()}
        for field, keys in CHANNEL_ALIASES.get(source, {}).items():
            aliases[field] = keys + aliases.get(field, ())

        fields = {field: _pick(payload, keys) for field, keys in aliases.items()}
        message = _pick_multiline(payload, aliases["message"])

        if source == LeadSource.EMAIL:
            # "From: Jane Doe <jane@acme.com>"
            if not fields["email"]:
                display, addr = parseaddr(str(payload.get("from", "")))
                fields["email"] = _clean(addr)
                fields["name"] = fields["name"] or _clean(display)
            subject = _clean(payload.get("subject"))
            if subject:
                message = f"{subject}\n\n{message}" if message else subject

        email = (fields["email"] or "").lower()
        if not email:
            raise ValidationError("Email is required", field="email")
        if not EMAIL_RE.match(email):
            raise ValidationError(f"Invalid email address '{email}'", field="email")
        company = fields["company"]
        if not company:
            raise ValidationError("Company is required", field="company")

        first_name, last_name = fields["first_name"], fields["last_name"]
        if not first_name and fields["name"]:
            parts = fields["name"].split(" ", 1)
            first_name = parts[0]
            last_name = last_name or (parts[1] if len(parts) > 1 else None)

        return NormalizedLead(
            source=source,
            email=email,
            company=company,
            company_key=canonical_company(company),
            first_name=first_name,
            last_name=last_name,
            phone=fields["phone"],
            title=fields["title"],
            industry=fields["industry"],
            employee_count=parse_employee_count(_pick_raw(payload, aliases["employee_count"])),
            website=fields["website"],
            message=message,
            product_interest=fields["product_interest"],
            region=fields["region"],
            source_detail=fields["source_detail"],
        )

    def find_duplicate(self, session: Session, normalized: NormalizedLead, now: datetime) -> Lead | None:
        cutoff = now - self.dedupe_window
        result = session.execute(
            select(Lead)
            .where(
                Lead.email == normalized.email,
                Lead.company_key == normalized.company_key,
                Lead.status != LeadStatus.DISQUALIFIED,
                Lead.received_at >= cutoff,
            )
            .order_by(Lead.received_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def ingest(self, session: Session, channel: str, payload: dict, now: datetime | None = None) -> Lead:
        return self.ingest_normalized(session, self.normalize(channel, payload), now)

    def ingest_normalized(self, session: Session, normalized: NormalizedLead, now: datetime | None = None) -> Lead:
        """Add a new lead, or merge into an existing one and raise DuplicateError. Caller commits."""
        self.check_rate(normalized)
        now = now or datetime.utcnow()
        existing = self.find_duplicate(session, normalized, now)
        if existing:
            self.merge(session, existing, normalized)
        return self.create(session, normalized, now)

    def check_rate(self, normalized: NormalizedLead) -> None:
        if self.rate_limiter:
            self.rate_limiter.hit(normalized.source.value, normalized.email)

    def merge(self, session: Session, existing: Lead, normalized: NormalizedLead) -> None:
        """Fold ``normalized`` into ``existing`` and raise DuplicateError."""
        merge_submission(existing, normalized)
        session.flush()
        logger.info("lead_merged", lead_id=str(existing.id), email=normalized.email,
                    submissions=existing.submission_count)
        raise DuplicateError(existing.id, existing.status.value)

    def create(self, session: Session, normalized: NormalizedLead, now: datetime) -> Lead:
        lead = Lead(received_at=now, status=LeadStatus.NEW, submission_count=1, **asdict(normalized))
        session.add(lead)
        session.flush()
        logger.info("lead_created", lead_id=str(lead.id), source=lead.source.value, company=lead.company)
        return lead


def merge_submission(lead: Lead, normalized: NormalizedLead) -> None:
    """Fold a repeat submission into the existing record."""
    if normalized.message and normalized.message not in (lead.message or ""):
        lead.message = f"{lead.message}{MERGE_SEPARATOR}{normalized.message}" if lead.message else normalized.message
    if normalized.source_detail:
        lead.source_detail = normalized.source_detail
    for field in ("first_name", "last_name", "phone", "title", "industry", "employee_count",
                  "website", "product_interest", "region"):
        if getattr(lead, field) in (None, "") and getattr(normalized, field) not in (None, ""):
            setattr(lead, field, getattr(normalized, field))
    lead.submission_count = (lead.submission_count or 1) + 1


def _pick_raw(payload: dict, keys: tuple):
    for key in keys:
        if payload.get(key) not in (None, ""):
            return payload[key]
    return None


def _pick_multiline(payload: dict, keys: tuple) -> str | None:
    """Like _pick but keeps line breaks in free-text messages."""
    for key in keys:
        value = payload.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None
