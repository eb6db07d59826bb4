"""Company intel adapter - firmographic lookup by company name/domain."""

from dataclasses import asdict, dataclass, field

import httpx
import structlog

from leadengine.config import settings
from leadengine.errors import EnrichmentUnavailable

logger = structlog.get_logger()


@dataclass
class CompanyIntel:
    summary: str = ""
    tech_stack: list[str] = field(default_factory=list)
    recent_news: list[str] = field(default_factory=list)
    estimated_revenue: str | None = None
    employee_count: int | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "CompanyIntel":
        employees = data.get("employee_count", data.get("employeeCount"))
        return cls(
            summary=data.get("summary") or "",
            tech_stack=list(data.get("tech_stack", data.get("techStack")) or []),
            recent_news=list(data.get("recent_news", data.get("recentNews")) or []),
            estimated_revenue=data.get("estimated_revenue", data.get("estimatedRevenue")),
            employee_count=int(employees) if employees not in (None, "") else None,
        )


class CompanyIntelClient:
    """HTTP client for the company intel service. Any failure is EnrichmentUnavailable."""

    def __init__(self, base_url: str | None = None, api_key: str | None = None, timeout: float | None = None):
        self.base_url = (base_url if base_url is not None else settings.company_intel_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.company_intel_api_key
        self.timeout = timeout or settings.enrichment_timeout_seconds

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    async def lookup(self, company: str, domain: str | None = None) -> CompanyIntel:
        if not self.is_configured:
            raise EnrichmentUnavailable("Company intel service not configured")

        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        params = {"name": company}
        if domain:
            params["domain"] = domain
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(f"{self.base_url}/companies/lookup", params=params, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("company_intel_lookup_failed", company=company, error=str(e))
            raise EnrichmentUnavailable(f"Company intel lookup failed: {e}") from e

        try:
            return CompanyIntel.from_dict(data)
        except (TypeError, ValueError, AttributeError) as e:
            raise EnrichmentUnavailable(f"Malformed company intel response: {e}") from e
