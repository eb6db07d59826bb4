"""Conversion service - qualified lead to Account + Deal, exactly once.

Account, Deal and the lead's conversion links are written inside one
SAVEPOINT. Either all of them land or none do and the lead stays qualified.
"""

import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from leadengine.adapters.crm import CRMAdapter
from leadengine.config import settings
from leadengine.errors import AlreadyConverted, ConversionError, InvalidTransition
from leadengine.models.account import Account, Deal
from leadengine.models.lead import Lead, LeadStatus
from leadengine.services.intake import canonical_company, domain_for_lead
from leadengine.services.lifecycle import assert_transition, mark_converted
from leadengine.services.notifications import format_conversion_notification, send_slack_notification
from leadengine.services.scoring import extract_seat_count

logger = structlog.get_logger()

DEAL_STAGE = "discovery"
DEAL_PROBABILITY = 10


@dataclass
class ConversionResult:
    lead_id: uuid.UUID
    account_id: uuid.UUID
    account_name: str
    deal_id: uuid.UUID
    deal_name: str
    deal_stage: str
    converted_at: datetime
    created_account: bool = False
    deal_value: float | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def deal_name_for(lead: Lead) -> str:
    return f"{lead.company} - {lead.product_interest or 'New Opportunity'}"


class ConversionService:
    def __init__(self, seat_price: float | None = None, default_ae_id: str | None = None,
                 close_days: int | None = None, crm: CRMAdapter | None = None,
                 slack_webhook_url: str | None = None):
        self.seat_price = seat_price if seat_price is not None else settings.seat_price_usd
        self.default_ae_id = default_ae_id or settings.default_ae_id
        self.close_days = close_days if close_days is not None else settings.deal_close_days
        self.crm = crm
        self.slack_webhook_url = slack_webhook_url if slack_webhook_url is not None else settings.slack_webhook_url

    def existing_result(self, session: Session, lead: Lead) -> ConversionResult:
        account = session.get(Account, lead.converted_account_id)
        deal = session.get(Deal, lead.converted_deal_id)
        return ConversionResult(
            lead_id=lead.id,
            account_id=lead.converted_account_id,
            account_name=account.name if account else lead.company,
            deal_id=lead.converted_deal_id,
            deal_name=deal.name if deal else deal_name_for(lead),
            deal_stage=deal.stage if deal else DEAL_STAGE,
            converted_at=lead.converted_at,
            deal_value=deal.value if deal else None,
        )

    def find_account(self, session: Session, lead: Lead) -> Account | None:
        """Existing account by company domain, then by canonical name."""
        domain = domain_for_lead(lead)
        if domain:
            account = session.execute(select(Account).where(Account.domain == domain)).scalar_one_or_none()
            if account:
                return account
        name_key = lead.company_key or canonical_company(lead.company)
        return session.execute(
            select(Account).where(Account.name_key == name_key).order_by(Account.created_at).limit(1)
        ).scalar_one_or_none()

    def _account_for(self, session: Session, lead: Lead) -> tuple[Account, bool]:
        account = self.find_account(session, lead)
        if account:
            if account.domain is None:
                account.domain = domain_for_lead(lead)
            return account, False
        account = Account(
            id=uuid.uuid4(),
            name=lead.company,
            name_key=lead.company_key or canonical_company(lead.company),
            domain=domain_for_lead(lead),
            industry=lead.industry or "Unknown",
            website=lead.website,
            employee_count=lead.employee_count,
            region=lead.region,
            summary=(f"Converted from inbound lead ({lead.source.value}). "
                     f"Contact: {lead.full_name or 'Unknown'} ({lead.email})"),
            health_score=50,
        )
        session.add(account)
        return account, True

    def _deal_for(self, lead: Lead, account: Account, now: datetime) -> Deal:
        text = " ".join(t for t in (lead.message, lead.product_interest) if t)
        seats = extract_seat_count(text)
        return Deal(
            id=uuid.uuid4(),
            name=deal_name_for(lead),
            account_id=account.id,
            source_lead_id=lead.id,
            stage=DEAL_STAGE,
            value=float(seats * self.seat_price) if seats else 0.0,
            seat_estimate=seats,
            probability=DEAL_PROBABILITY,
            close_date=now + timedelta(days=self.close_days),
            owner_id=lead.assigned_ae_id or self.default_ae_id,
            product_interest=lead.product_interest,
        )

    def convert(self, session: Session, lead: Lead, now: datetime | None = None) -> ConversionResult:
        """Create Account + Deal and link them to the lead. Caller commits."""
        if lead.status == LeadStatus.CONVERTED and lead.converted_account_id and lead.converted_deal_id:
            raise AlreadyConverted(self.existing_result(session, lead))
        assert_transition(lead.status, LeadStatus.CONVERTED)
        if lead.converted_account_id or lead.converted_deal_id:
            raise InvalidTransition(lead.status.value, LeadStatus.CONVERTED.value,
                                    "Lead already carries conversion links")

        now = now or datetime.utcnow()
        try:
            with session.begin_nested():
                account, created = self._account_for(session, lead)
                deal = self._deal_for(lead, account, now)
                session.add(deal)
                mark_converted(lead, account.id, deal.id, now)
                session.flush()
        except Exception as e:
            logger.error("lead_conversion_failed", lead_id=str(lead.id), error=str(e))
            raise ConversionError(f"Conversion rolled back: {e}") from e

        result = ConversionResult(
            lead_id=lead.id,
            account_id=account.id,
            account_name=account.name,
            deal_id=deal.id,
            deal_name=deal.name,
            deal_stage=deal.stage,
            converted_at=lead.converted_at,
            created_account=created,
            deal_value=deal.value,
        )
        logger.info("lead_converted", lead_id=str(lead.id), account_id=str(account.id),
                    deal_id=str(deal.id), created_account=created)
        return result

    async def mirror(self, lead: Lead, result: ConversionResult) -> None:
        """Best-effort copy to the CRM and Slack after the conversion is committed."""
        crm = self.crm or CRMAdapter()
        if crm.is_configured:
            contact = await crm.create_contact({
                "email": lead.email,
                "first_name": lead.first_name,
                "last_name": lead.last_name,
                "company": lead.company,
                "phone": lead.phone,
                "title": lead.title,
            })
            await crm.create_deal({
                "deal_name": result.deal_name,
                "company": result.account_name,
                "value": result.deal_value,
                "close_date": (result.converted_at + timedelta(days=self.close_days)).date().isoformat(),
                "summary": lead.ai_summary or "",
            }, contact_id=contact.get("id") if contact else None)
        if self.slack_webhook_url:
            text, blocks = format_conversion_notification(lead, result)
            await send_slack_notification(self.slack_webhook_url, text, blocks=blocks)
