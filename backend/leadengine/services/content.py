"""Content Intelligence capability - auto-response copy and scoring rationale.

Two implementations behind one contract: ``ClaudeContentClient`` calls the
Anthropic API, ``TemplateContent`` renders deterministic templates keyed by
score tier and channel. ``ResilientContent`` tries the first and falls back
to the second on any failure, timeout or open circuit.
"""

import asyncio
import json
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import anthropic
import structlog

from leadengine.config import settings
from leadengine.errors import ContentGenerationError
from leadengine.services.throttle import CircuitBreaker, CircuitOpenError

logger = structlog.get_logger()

# Check multiple paths: local dev path and Docker mount path
_PROMPTS_CANDIDATES = [
    Path(__file__).parent.parent.parent.parent / "prompts",  # Local dev
    Path("/prompts"),  # Docker mount
]
PROMPTS_DIR = next((p for p in _PROMPTS_CANDIDATES if p.exists()), _PROMPTS_CANDIDATES[0])

TEMPLATE_MODEL = "template_v1"


def load_prompt_template(template_id: str) -> str:
    """Load a prompt template by ID (filename without extension)."""
    path = PROMPTS_DIR / f"{template_id}.txt"
    if not path.exists():
        raise FileNotFoundError(f"Prompt template not found: {template_id} (searched {PROMPTS_DIR})")
    return path.read_text(encoding="utf-8")


@dataclass
class EmailVariant:
    subject: str
    body: str
    personalization_points: list[str] = field(default_factory=list)


@dataclass
class OutreachRequest:
    lead: dict
    channel: str = "email"
    sequence_type: str = "cold_intro"
    tone: str = "professional_casual"
    variants: int = 1


@dataclass
class ContentResult:
    variants: list[EmailVariant]
    model: str
    fallback_used: bool = False
    confidence: float | None = None
    error: str | None = None


def lead_snapshot(lead) -> dict:
    """Plain-dict view of a lead; stored with each response as its personalization context."""
    return {
        "first_name": lead.first_name,
        "last_name": lead.last_name,
        "title": lead.title,
        "company": lead.company,
        "industry": lead.industry,
        "employee_count": lead.employee_count,
        "source": lead.source.value if lead.source else None,
        "source_detail": lead.source_detail,
        "product_interest": lead.product_interest,
        "region": lead.region,
        "message": lead.message,
        "score": lead.score,
    }


def score_tier(score: int | None) -> str:
    if score is None:
        return "warm"
    if score >= 80:
        return "hot"
    if score >= 50:
        return "warm"
    return "cold"


def extract_json(content: str):
    """Pull the JSON payload out of a model reply (bare, fenced, or wrapped in prose)."""
    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)```", content)
    if fenced:
        content = fenced.group(1)
    content = content.strip()
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        pass
    if "{" in content:
        json_str = content[content.index("{"):content.rindex("}") + 1]
        return json.loads(json_str)
    raise ValueError("No JSON object in model output")


class ClaudeContentClient:
    """Anthropic-backed content generation."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, max_tokens: int = 1024):
        self.api_key = api_key if api_key is not None else settings.anthropic_api_key
        self.model = model or settings.content_model
        self.max_tokens = max_tokens

    async def _complete(self, prompt: str, system_prompt: str = "") -> str:
        if not self.api_key:
            raise ContentGenerationError("No Anthropic API key configured")

        client = anthropic.AsyncAnthropic(api_key=self.api_key)
        kwargs = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        start = time.time()
        try:
            response = await client.messages.create(**kwargs)
        except anthropic.APIError as e:
            raise ContentGenerationError(f"Anthropic API error: {e}") from e

        text = "".join(block.text for block in response.content if getattr(block, "type", None) == "text")
        logger.info("content_model_called", model=self.model,
                    input_tokens=response.usage.input_tokens,
                    output_tokens=response.usage.output_tokens,
                    duration=round(time.time() - start, 3))
        if not text:
            raise ContentGenerationError("Empty response from content model")
        return text

    async def generate_outreach(self, request: OutreachRequest) -> ContentResult:
        prompt = load_prompt_template("auto_response_v1").format(
            lead_json=json.dumps(request.lead, indent=2, default=str),
            sequence_type=request.sequence_type,
            tone=request.tone,
            channel=request.channel,
            variants=request.variants,
        )
        text = await self._complete(prompt)
        try:
            data = extract_json(text)
            raw_variants = data.get("variants", []) if isinstance(data, dict) else data
            variants = [
                EmailVariant(
                    subject=v["subject"],
                    body=v["body"],
                    personalization_points=list(v.get("personalization_points", [])),
                )
                for v in raw_variants
            ]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ContentGenerationError(f"Unparseable outreach response: {e}") from e
        if not variants:
            raise ContentGenerationError("Content model returned no variants")
        confidence = data.get("confidence") if isinstance(data, dict) else None
        return ContentResult(variants=variants[:request.variants], model=self.model, confidence=confidence)

    async def summarize_score(self, lead: dict, score: int, factors: list[str]) -> str:
        prompt = load_prompt_template("score_summary_v1").format(
            lead_json=json.dumps(lead, indent=2, default=str),
            score=score,
            threshold=settings.qualification_threshold,
            factors="; ".join(factors) or "none",
        )
        text = await self._complete(prompt)
        try:
            summary = extract_json(text)["summary"]
        except (ValueError, KeyError, TypeError) as e:
            raise ContentGenerationError(f"Unparseable summary response: {e}") from e
        return str(summary).strip()


class TemplateContent:
    """Deterministic fallback copy. Same lead and channel always yield the same text."""

    model = TEMPLATE_MODEL

    EMAIL_TEMPLATES = {
        "hot": (
            "Re: {interest} for {company}",
            "Hi {first_name},\n\n"
            "Thank you for reaching out about {interest}. Requests like yours from {company} "
            "go straight to a senior specialist, and I'd like to get you answers quickly.\n\n"
            "Could we set up a 15-minute call in the next day or two to walk through your requirements?\n\n"
            "Best regards,\n{sender}",
        ),
        "warm": (
            "Thanks for your interest in {interest}",
            "Hi {first_name},\n\n"
            "Thanks for getting in touch about {interest}. I'd be glad to share how teams like "
            "{company} are using it and answer any questions.\n\n"
            "Would a short call or a quick demo next week be useful?\n\n"
            "Best regards,\n{sender}",
        ),
        "cold": (
            "We received your inquiry",
            "Hi {first_name},\n\n"
            "Thanks for contacting us about {interest}. We've received your message and will "
            "follow up with resources that match what you described.\n\n"
            "If anything is time-sensitive, just reply to this email.\n\n"
            "Best regards,\n{sender}",
        ),
    }
    CHAT_TEMPLATES = {
        "hot": "Thanks {first_name}! A specialist is reviewing your {interest} request now. "
               "Can we book a 15-minute call to go over it?",
        "warm": "Thanks {first_name}! We've got your question about {interest}. "
                "Would a quick demo help?",
        "cold": "Thanks {first_name}! We've received your message and will follow up shortly.",
    }

    def _fields(self, lead: dict) -> dict:
        return {
            "first_name": lead.get("first_name") or "there",
            "company": lead.get("company") or "your team",
            "interest": lead.get("product_interest") or "our solutions",
            "sender": settings.sender_name,
        }

    def render(self, lead: dict, channel: str) -> EmailVariant:
        tier = score_tier(lead.get("score"))
        fields = self._fields(lead)
        points = [k for k in ("first_name", "company", "product_interest") if lead.get(k)]
        if channel == "chat":
            body = self.CHAT_TEMPLATES[tier].format(**fields)
            return EmailVariant(subject=f"Chat reply: {fields['interest']}", body=body, personalization_points=points)
        subject, body = self.EMAIL_TEMPLATES[tier]
        return EmailVariant(subject=subject.format(**fields), body=body.format(**fields), personalization_points=points)

    async def generate_outreach(self, request: OutreachRequest) -> ContentResult:
        variant = self.render(request.lead, request.channel)
        return ContentResult(variants=[variant] * max(request.variants, 1), model=self.model, confidence=0.5)

    async def summarize_score(self, lead: dict, score: int, factors: list[str]) -> str:
        verdict = "Meets" if score >= settings.qualification_threshold else "Below"
        detail = ", ".join(factors) if factors else "no strong signals"
        return f"{verdict} the qualification threshold with a score of {score}/100. Signals: {detail}."


class ResilientContent:
    """Uses the primary collaborator when healthy, the template otherwise."""

    def __init__(self, primary=None, fallback: TemplateContent | None = None,
                 breaker: CircuitBreaker | None = None):
        self.primary = primary
        self.fallback = fallback or TemplateContent()
        self.breaker = breaker

    async def _guarded(self, coro_factory, timeout: float):
        if self.primary is None:
            raise ContentGenerationError("No content collaborator configured")
        if self.breaker:
            try:
                self.breaker.check()
            except CircuitOpenError as e:
                raise ContentGenerationError(e.reason) from e
        try:
            result = await asyncio.wait_for(coro_factory(), timeout=max(timeout, 0.01))
        except asyncio.TimeoutError as e:
            if self.breaker:
                self.breaker.record_failure()
            raise ContentGenerationError(f"Content generation timed out after {timeout:.1f}s") from e
        except ContentGenerationError:
            if self.breaker:
                self.breaker.record_failure()
            raise
        except Exception as e:
            if self.breaker:
                self.breaker.record_failure()
            raise ContentGenerationError(f"Content collaborator failed: {e}") from e
        if self.breaker:
            self.breaker.record_success()
        return result

    async def generate_outreach(self, request: OutreachRequest, timeout: float) -> ContentResult:
        try:
            return await self._guarded(lambda: self.primary.generate_outreach(request), timeout)
        except ContentGenerationError as e:
            logger.warning("content_generation_fallback", error=e.reason, channel=request.channel)
            result = await self.fallback.generate_outreach(request)
            result.fallback_used = True
            result.error = e.reason
            return result

    async def summarize_score(self, lead: dict, score: int, factors: list[str], timeout: float) -> tuple[str, bool]:
        """Returns (summary, fallback_used)."""
        try:
            summary = await self._guarded(lambda: self.primary.summarize_score(lead, score, factors), timeout)
            return summary, False
        except ContentGenerationError as e:
            logger.info("score_summary_fallback", error=e.reason)
            return await self.fallback.summarize_score(lead, score, factors), True


def build_content() -> ResilientContent:
    primary = ClaudeContentClient() if settings.anthropic_api_key else None
    return ResilientContent(primary=primary, breaker=CircuitBreaker("content_intelligence"))
