"""Lead scoring engine.

Score is additive over weighted signal buckets:

- base points for any valid inbound inquiry
- title seniority (C-level/founder/owner, VP, Director/Head, Manager/Lead)
- company size bucket (submitted, or from company intel when missing)
- budget / urgency language
- multi-site, multi-seat and multi-product intent (capped as one bucket)
- provenance (referral, partner, event, ...)
- industry fit against the configured target industries
- a specific, stated pain point

Non-commercial signals (students, thesis work, hobby/personal use,
research-only) cap the score below the qualification threshold no matter
what else the lead says. Rules are pure functions of the lead and the intel
snapshot, so rescoring unchanged inputs yields the same score and factors.
"""

import asyncio
import re
import time
from dataclasses import dataclass, field, fields
from datetime import datetime

import structlog
import yaml

from leadengine.adapters.company_intel import CompanyIntel
from leadengine.config import settings
from leadengine.errors import EnrichmentUnavailable, ScoringTimeout
from leadengine.models.lead import Lead, LeadSource
from leadengine.models.score_event import ScoreEvent
from leadengine.services.content import ResilientContent, lead_snapshot
from leadengine.services.intake import domain_for_lead
from leadengine.utils import run_async

logger = structlog.get_logger()

TIMED_OUT_FACTOR = "scoring timed out"

VP_RE = re.compile(r"\b(vp|svp|evp|avp|vice[- ]president)\b", re.I)
C_LEVEL_RE = re.compile(r"\b(ceo|cto|cfo|coo|cio|cmo|chief|founder|co-founder|owner|president)\b", re.I)
DIRECTOR_RE = re.compile(r"\b(director|head)\b", re.I)
MANAGER_RE = re.compile(r"\b(manager|lead|supervisor|superintendent)\b", re.I)

NON_COMMERCIAL_RE = re.compile(
    r"\b(student|thesis|dissertation|coursework|homework|class project|school project|"
    r"personal project|personal use|hobby|hobbyist|research only|just comparing|"
    r"no (?:immediate )?purchase|not (?:planning|looking) to buy|for a report)\b",
    re.I,
)
BUDGET_RE = re.compile(
    r"\b(budget (?:is )?(?:approved|allocated|secured|in place)|approved budget|have (?:the )?budget|funded)\b",
    re.I,
)
URGENCY_RE = re.compile(
    r"\b(asap|urgent(?:ly)?|immediately|right away|this (?:week|month|quarter)|q[1-4]|deadline|by end of)\b",
    re.I,
)
MULTI_SITE_RE = re.compile(
    r"\b(multi[- ]?site|multiple (?:sites|plants|locations|offices|facilities)|"
    r"(?:\d+|two|three|four|five|several) (?:sites|plants|locations|offices|facilities))\b",
    re.I,
)
SEATS_RE = re.compile(r"(\d[\d,]*)\s*-?\s*(?:seats?|engineers|users|licen[cs]es|designers|workstations)\b", re.I)
MULTI_PRODUCT_RE = re.compile(r"\+|\bbundle\b|\band\b", re.I)
PAIN_POINT_RE = re.compile(
    r"\b(replac\w*|consolidat\w*|standardi[sz]\w*|migrat\w*|switch(?:ing)? from|alternatives? to|"
    r"data management|pain point|struggl\w*|bottleneck|inefficien\w*|too slow|licensing costs?)\b",
    re.I,
)

PROVENANCE_FACTORS = {
    LeadSource.REFERRAL: "Referral (trusted provenance)",
    LeadSource.PARTNER: "Partner referral",
    LeadSource.EVENT: "Event lead (high intent)",
    LeadSource.WEBSITE_FORM: "Website form inquiry",
    LeadSource.CHAT: "Live chat inquiry",
    LeadSource.EMAIL: "Email inquiry",
    LeadSource.PHONE: "Inbound phone call",
    LeadSource.SOCIAL: "Social inquiry",
}


def _default_seniority() -> dict:
    return {"c_level": 30, "vp": 30, "director": 24, "manager": 15, "other": 5}


def _default_size_buckets() -> list:
    return [[500, 20], [200, 16], [100, 12], [50, 8], [10, 4]]


def _default_provenance() -> dict:
    return {
        "referral": 10, "partner": 8, "event": 8, "website_form": 5,
        "chat": 4, "email": 4, "phone": 4, "social": 2,
    }


@dataclass
class ScoringConfig:
    base: int = 10
    seniority: dict = field(default_factory=_default_seniority)
    size_buckets: list = field(default_factory=_default_size_buckets)  # [min_employees, points], descending
    budget: int = 15
    urgency: int = 10
    multi_site: int = 15
    seats_large: int = 10
    seats_small: int = 5
    large_seat_count: int = 10
    multi_product: int = 8
    multi_intent_cap: int = 20
    provenance: dict = field(default_factory=_default_provenance)
    industry_fit: int = 8
    pain_point: int = 10
    qualification_threshold: int = field(default_factory=lambda: settings.qualification_threshold)
    non_commercial_ceiling: int = field(default_factory=lambda: settings.non_commercial_ceiling)
    target_industries: list = field(default_factory=lambda: list(settings.target_industries))


def load_scoring_config(path: str | None = None) -> ScoringConfig:
    """Defaults, overlaid with the YAML file at ``path`` (or settings.scoring_config_path)."""
    path = path or settings.scoring_config_path
    config = ScoringConfig()
    if not path:
        return config
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    known = {f.name for f in fields(ScoringConfig)}
    for key, value in (data.get("scoring", data)).items():
        if key in known:
            setattr(config, key, value)
        else:
            logger.warning("unknown_scoring_config_key", key=key, path=path)
    return config


@dataclass
class ScoreResult:
    score: int
    factors: list[str]
    summary: str
    qualified: bool
    provisional: bool = False
    disqualifying: bool = False
    timed_out: bool = False
    company_intel: dict | None = None
    summary_model: str | None = None


def extract_seat_count(text: str) -> int | None:
    counts = [int(m.group(1).replace(",", "")) for m in SEATS_RE.finditer(text or "")]
    return max(counts) if counts else None


def compute_rules(lead: Lead, config: ScoringConfig, intel: CompanyIntel | None = None) -> tuple[int, list[str], bool]:
    """Pure rule evaluation. Returns (score, factors, disqualifying)."""
    score = config.base
    factors: list[str] = []

    title = lead.title or ""
    if VP_RE.search(title):
        score += config.seniority["vp"]
        factors.append("VP-level contact")
    elif C_LEVEL_RE.search(title):
        score += config.seniority["c_level"]
        factors.append("C-level / owner contact")
    elif DIRECTOR_RE.search(title):
        score += config.seniority["director"]
        factors.append("Director-level contact")
    elif MANAGER_RE.search(title):
        score += config.seniority["manager"]
        factors.append("Manager-level contact")
    elif title:
        score += config.seniority["other"]

    employees = lead.employee_count
    enriched = False
    if not employees and intel and intel.employee_count:
        employees, enriched = intel.employee_count, True
    if employees:
        for minimum, points in config.size_buckets:
            if employees >= minimum:
                score += points
                break
        label = "Large company" if employees >= 500 else "Mid-size company" if employees >= 100 else "Small company"
        factors.append(f"{label} ({employees} employees{', enriched' if enriched else ''})")

    text = " ".join(t for t in (lead.message, lead.product_interest) if t)
    if BUDGET_RE.search(text):
        score += config.budget
        factors.append("Budget approved")
    elif URGENCY_RE.search(text):
        score += config.urgency
        factors.append("Urgent timeline")

    multi = 0
    if MULTI_SITE_RE.search(text):
        multi += config.multi_site
        factors.append("Multi-site footprint")
    seats = extract_seat_count(text)
    if seats and seats >= config.large_seat_count:
        multi += config.seats_large
        factors.append(f"{seats} seats requested")
    elif seats and seats >= 2:
        multi += config.seats_small
        factors.append(f"{seats} seats requested")
    if lead.product_interest and MULTI_PRODUCT_RE.search(lead.product_interest):
        multi += config.multi_product
        factors.append("Multi-product interest")
    score += min(multi, config.multi_intent_cap)

    if lead.source:
        source = LeadSource(lead.source)
        points = config.provenance.get(source.value, 0)
        if points:
            score += points
            factors.append(PROVENANCE_FACTORS[source])

    industry = (lead.industry or "").lower()
    if industry and any(t in industry or industry in t for t in config.target_industries):
        score += config.industry_fit
        factors.append(f"Target industry fit ({lead.industry})")

    if PAIN_POINT_RE.search(text):
        score += config.pain_point
        factors.append("Specific pain point")

    disqualifying = False
    haystack = " ".join(t for t in (title, lead.company, text) if t)
    match = NON_COMMERCIAL_RE.search(haystack)
    if match:
        disqualifying = True
        score = min(score, config.non_commercial_ceiling)
        factors.append(f"Non-commercial intent ({match.group(1).lower()})")

    return max(0, min(100, score)), factors, disqualifying


class ScoringEngine:
    """Bounded scoring: enrichment and rationale are optional, the rules always run."""

    def __init__(self, config: ScoringConfig | None = None, intel_client=None,
                 content: ResilientContent | None = None,
                 timeout: float | None = None, enrichment_timeout: float | None = None):
        self.config = config or load_scoring_config()
        self.intel_client = intel_client
        self.content = content or ResilientContent()
        self.timeout = timeout if timeout is not None else settings.scoring_timeout_seconds
        self.enrichment_timeout = (enrichment_timeout if enrichment_timeout is not None
                                   else settings.enrichment_timeout_seconds)

    async def _enrich(self, lead: Lead) -> CompanyIntel:
        try:
            return await asyncio.wait_for(
                self.intel_client.lookup(lead.company, domain_for_lead(lead)),
                timeout=self.enrichment_timeout,
            )
        except asyncio.TimeoutError as e:
            raise EnrichmentUnavailable(f"Company intel timed out after {self.enrichment_timeout}s") from e

    async def _score_async(self, lead: Lead) -> ScoreResult:
        started = time.monotonic()
        intel, provisional, intel_snapshot = None, False, None
        if self.intel_client is not None:
            try:
                intel = await self._enrich(lead)
                intel_snapshot = intel.to_dict()
            except EnrichmentUnavailable as e:
                if lead.company_intel:
                    intel = CompanyIntel.from_dict(lead.company_intel)
                    logger.info("enrichment_unavailable_using_snapshot", lead_id=str(lead.id), error=e.reason)
                else:
                    provisional = True
                    logger.info("enrichment_unavailable_rules_only", lead_id=str(lead.id), error=e.reason)

        score, factors, disqualifying = compute_rules(lead, self.config, intel)

        remaining = self.timeout - (time.monotonic() - started)
        summary, fallback_used = await self.content.summarize_score(
            lead_snapshot(lead), score, factors, timeout=remaining * 0.8,
        )
        summary_model = self.content.fallback.model if fallback_used else getattr(self.content.primary, "model", None)
        if provisional:
            summary = f"Provisional score (company intel unavailable). {summary}"

        return ScoreResult(
            score=score,
            factors=factors,
            summary=summary,
            qualified=score >= self.config.qualification_threshold and not disqualifying,
            provisional=provisional,
            disqualifying=disqualifying,
            company_intel=intel_snapshot,
            summary_model=summary_model,
        )

    def _run_bounded(self, lead: Lead) -> ScoreResult:
        try:
            return run_async(asyncio.wait_for(self._score_async(lead), timeout=self.timeout))
        except asyncio.TimeoutError as e:
            raise ScoringTimeout(f"Scoring exceeded {self.timeout}s") from e

    def score(self, lead: Lead) -> ScoreResult:
        try:
            result = self._run_bounded(lead)
        except ScoringTimeout as e:
            logger.warning("scoring_timed_out", lead_id=str(lead.id), error=e.reason)
            return ScoreResult(
                score=0,
                factors=[TIMED_OUT_FACTOR],
                summary="Scoring timed out; a retry has been scheduled.",
                qualified=False,
                provisional=True,
                timed_out=True,
            )
        logger.info("lead_scored", lead_id=str(lead.id), score=result.score,
                    qualified=result.qualified, provisional=result.provisional)
        return result


def apply_score(lead: Lead, result: ScoreResult, reason: str = "intake",
                now: datetime | None = None) -> ScoreEvent | None:
    """Write a result onto the lead and append score history.

    A timed-out provisional result never replaces an existing score.
    """
    if result.timed_out and lead.score is not None:
        logger.info("timed_out_score_not_applied", lead_id=str(lead.id), kept_score=lead.score)
        return None

    event = ScoreEvent(
        previous_score=lead.score,
        new_score=result.score,
        factors=list(result.factors),
        provisional=result.provisional,
        reason=reason,
        created_at=now or datetime.utcnow(),
    )
    lead.score = result.score
    lead.score_factors = list(result.factors)
    lead.ai_summary = result.summary
    lead.ai_qualified = result.qualified
    lead.score_provisional = result.provisional
    lead.scored_at = event.created_at
    if result.company_intel is not None:
        lead.company_intel = result.company_intel
    lead.score_events.append(event)
    return event
