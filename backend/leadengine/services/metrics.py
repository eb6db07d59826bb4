"""Rolling lead metrics for the dashboard.

Pure computation over a snapshot of leads. Status, source and region
breakdowns cover every lead; response times and rates cover the trailing
window. Leads missing the timestamp a metric needs are left out of that
metric.
"""

from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from leadengine.config import settings
from leadengine.models.lead import LeadStatus

RATE_WINDOW_DAYS = 30
REACHED_QUALIFIED = frozenset({LeadStatus.QUALIFIED, LeadStatus.CONVERTED})

# (upper bound in seconds, bucket name); last bucket is open-ended
SPEED_BUCKETS = [(5, "under_5s"), (15, "under_15s"), (30, "under_30s"), (60, "under_60s")]
OVERFLOW_BUCKET = "over_60s"


@dataclass
class LeadMetrics:
    total_leads: int = 0
    today_lead_count: int = 0
    week_lead_count: int = 0
    window_lead_count: int = 0
    avg_response_time_ms: int = 0
    auto_response_rate: float = 0.0
    qualification_rate: float = 0.0
    conversion_rate: float = 0.0
    sla_compliance_rate: float = 0.0
    sla_missed_count: int = 0
    average_score: float | None = None
    leads_by_status: dict = field(default_factory=dict)
    leads_by_source: dict = field(default_factory=dict)
    leads_by_region: dict = field(default_factory=dict)
    speed_to_lead_distribution: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


def rate(numerator: int, denominator: int) -> float:
    return round(numerator / denominator, 4) if denominator else 0.0


def _value(enum_or_str) -> str:
    return getattr(enum_or_str, "value", enum_or_str)


def speed_bucket(response_time_ms: int) -> str:
    seconds = response_time_ms / 1000
    for upper, name in SPEED_BUCKETS:
        if seconds < upper:
            return name
    return OVERFLOW_BUCKET


def compute_lead_metrics(leads, now: datetime | None = None, sla_seconds: int | None = None,
                         rate_window_days: int = RATE_WINDOW_DAYS) -> LeadMetrics:
    now = now or datetime.utcnow()
    sla_ms = (sla_seconds if sla_seconds is not None else settings.sla_seconds) * 1000

    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_start = today_start - timedelta(days=today_start.weekday())
    window_start = now - timedelta(days=rate_window_days)

    metrics = LeadMetrics(total_leads=len(leads))
    metrics.leads_by_status = dict(Counter(_value(l.status) for l in leads))
    metrics.leads_by_source = dict(Counter(_value(l.source) for l in leads))
    metrics.leads_by_region = dict(Counter(l.region or "unknown" for l in leads))

    scores = [l.score for l in leads if l.score is not None]
    if scores:
        metrics.average_score = round(sum(scores) / len(scores), 1)

    dated = [l for l in leads if l.received_at is not None]
    metrics.today_lead_count = sum(1 for l in dated if l.received_at >= today_start)
    metrics.week_lead_count = sum(1 for l in dated if l.received_at >= week_start)

    window = [l for l in dated if l.received_at >= window_start]
    metrics.window_lead_count = len(window)

    timed = [l.response_time_ms for l in window if l.response_time_ms is not None]
    if timed:
        metrics.avg_response_time_ms = round(sum(timed) / len(timed))
    met = sum(1 for ms in timed if ms <= sla_ms)
    metrics.sla_compliance_rate = rate(met, len(timed))
    metrics.sla_missed_count = len(timed) - met

    distribution = {name: 0 for _, name in SPEED_BUCKETS}
    distribution[OVERFLOW_BUCKET] = 0
    for ms in timed:
        distribution[speed_bucket(ms)] += 1
    metrics.speed_to_lead_distribution = distribution

    metrics.auto_response_rate = rate(sum(1 for l in window if l.auto_response_sent), len(window))

    progressed = [l for l in window if LeadStatus(l.status) != LeadStatus.NEW]
    reached = [l for l in window if LeadStatus(l.status) in REACHED_QUALIFIED]
    metrics.qualification_rate = rate(len(reached), len(progressed))
    metrics.conversion_rate = rate(sum(1 for l in reached if LeadStatus(l.status) == LeadStatus.CONVERTED),
                                   len(reached))
    return metrics
