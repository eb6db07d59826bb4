"""Tests for the lead scoring engine."""

import asyncio
from pathlib import Path

import pytest

from leadengine.adapters.company_intel import CompanyIntel
from leadengine.errors import EnrichmentUnavailable
from leadengine.models.lead import Lead, LeadSource
from leadengine.services.content import TEMPLATE_MODEL, ResilientContent
from leadengine.services.scoring import (
    TIMED_OUT_FACTOR, ScoreResult, ScoringConfig, ScoringEngine, apply_score, compute_rules, extract_seat_count,
    load_scoring_config,
)

from conftest import FakeContentClient

SAMPLES_DIR = Path(__file__).parent.parent.parent / "samples"


def build_lead(**overrides) -> Lead:
    fields = {
        "source": LeadSource.WEBSITE_FORM,
        "email": "tmueller@ironbridgesteel.com",
        "company": "Ironbridge Steel Structures",
        "company_key": "ironbridge steel structures",
        "first_name": "Thomas",
        "title": "VP Operations",
        "employee_count": 500,
        "message": "Interested in PDM Professional for our multi-site team of 40 engineers. "
                   "Need data management across 3 plants.",
    }
    fields.update(overrides)
    return Lead(**fields)


def student_lead() -> Lead:
    return build_lead(
        email="ezhang@stanford.edu",
        company="Stanford University",
        company_key="stanford university",
        title="Graduate Student",
        employee_count=None,
        message="Need SolidWorks for my thesis project on drone design.",
    )


class StaticIntel:
    def __init__(self, intel: CompanyIntel):
        self.intel = intel

    async def lookup(self, company, domain=None):
        return self.intel


class BrokenIntel:
    async def lookup(self, company, domain=None):
        raise EnrichmentUnavailable("Company intel lookup failed: 503")


class SlowIntel:
    async def lookup(self, company, domain=None):
        await asyncio.sleep(1.0)
        return CompanyIntel()


class TestComputeRules:
    def setup_method(self):
        self.config = ScoringConfig(qualification_threshold=60, non_commercial_ceiling=20)

    def test_senior_multi_site_lead_scores_high(self):
        score, factors, disqualifying = compute_rules(build_lead(), self.config)
        assert score == 95
        assert not disqualifying
        assert factors == [
            "VP-level contact",
            "Large company (500 employees)",
            "Multi-site footprint",
            "40 seats requested",
            "Website form inquiry",
            "Specific pain point",
        ]

    def test_student_capped_below_threshold(self):
        score, factors, disqualifying = compute_rules(student_lead(), self.config)
        assert score == 20
        assert disqualifying
        assert "Non-commercial intent (student)" in factors

    def test_non_commercial_cap_applies_to_strong_leads(self):
        lead = build_lead(message="Research only for a report. Multi-site, 40 engineers, budget approved.")
        score, _, disqualifying = compute_rules(lead, self.config)
        assert disqualifying
        assert score <= 20

    def test_seniority_tiers(self):
        cases = {
            "Vice President of Sales": "VP-level contact",
            "CTO": "C-level / owner contact",
            "Owner": "C-level / owner contact",
            "Head of Design": "Director-level contact",
            "CAD Manager": "Manager-level contact",
        }
        for title, factor in cases.items():
            _, factors, _ = compute_rules(build_lead(title=title, message=None), self.config)
            assert factors[0] == factor, title

    def test_budget_beats_urgency(self):
        lead = build_lead(message="Need pricing for 50-seat deployment. Have budget approved for Q1.")
        _, factors, _ = compute_rules(lead, self.config)
        assert "Budget approved" in factors
        assert "Urgent timeline" not in factors
        assert "50 seats requested" in factors

    def test_multi_intent_bucket_capped(self):
        config = ScoringConfig(multi_site=15, seats_large=10, multi_product=8, multi_intent_cap=20)
        with_all = build_lead(product_interest="SolidWorks + PDM")
        without_product = build_lead()
        score_all, _, _ = compute_rules(with_all, config)
        score_without, _, _ = compute_rules(without_product, config)
        assert score_all == score_without

    def test_provenance_points(self):
        referral, factors, _ = compute_rules(build_lead(source=LeadSource.REFERRAL, message=None), self.config)
        social, _, _ = compute_rules(build_lead(source=LeadSource.SOCIAL, message=None), self.config)
        assert referral > social
        assert "Referral (trusted provenance)" in factors

    def test_industry_fit(self):
        _, factors, _ = compute_rules(build_lead(industry="Aerospace"), self.config)
        assert "Target industry fit (Aerospace)" in factors

    def test_intel_fills_missing_employee_count(self):
        lead = build_lead(employee_count=None)
        score_without, _, _ = compute_rules(lead, self.config)
        score_with, factors, _ = compute_rules(lead, self.config, CompanyIntel(employee_count=250))
        assert score_with == score_without + 16
        assert "Mid-size company (250 employees, enriched)" in factors

    def test_submitted_count_wins_over_intel(self):
        _, factors, _ = compute_rules(build_lead(), self.config, CompanyIntel(employee_count=20))
        assert "Large company (500 employees)" in factors

    def test_score_bounded(self):
        config = ScoringConfig(base=90)
        score, _, _ = compute_rules(build_lead(), config)
        assert score == 100

    def test_extract_seat_count(self):
        assert extract_seat_count("team of 40 engineers") == 40
        assert extract_seat_count("expanding from 12 seats to 30 seats") == 30
        assert extract_seat_count("1,200 users") == 1200
        assert extract_seat_count("no numbers here") is None


class TestScoringEngine:
    def test_qualified_with_model_summary(self):
        engine = ScoringEngine(config=ScoringConfig(), content=ResilientContent(primary=FakeContentClient()))
        result = engine.score(build_lead())
        assert result.score == 95
        assert result.qualified
        assert not result.provisional
        assert result.summary == "Model summary for score 95"
        assert result.summary_model == "fake-model"

    def test_summary_falls_back_to_template(self):
        engine = ScoringEngine(config=ScoringConfig(),
                               content=ResilientContent(primary=FakeContentClient(fail=True)))
        result = engine.score(student_lead())
        assert not result.qualified
        assert result.summary.startswith("Below the qualification threshold with a score of 20/100")
        assert result.summary_model == TEMPLATE_MODEL

    def test_idempotent(self):
        engine = ScoringEngine(config=ScoringConfig(), content=ResilientContent())
        lead = build_lead()
        first, second = engine.score(lead), engine.score(lead)
        assert (first.score, first.factors) == (second.score, second.factors)

    def test_enrichment_snapshot_recorded(self):
        intel = CompanyIntel(summary="Steel fabricator", employee_count=800)
        engine = ScoringEngine(config=ScoringConfig(), intel_client=StaticIntel(intel), content=ResilientContent())
        result = engine.score(build_lead(employee_count=None))
        assert not result.provisional
        assert result.company_intel["employee_count"] == 800
        assert "Large company (800 employees, enriched)" in result.factors

    def test_enrichment_unavailable_is_provisional(self):
        engine = ScoringEngine(config=ScoringConfig(), intel_client=BrokenIntel(), content=ResilientContent())
        result = engine.score(build_lead())
        assert result.provisional
        assert result.score == 95
        assert result.summary.startswith("Provisional score")

    def test_enrichment_failure_reuses_snapshot(self):
        engine = ScoringEngine(config=ScoringConfig(), intel_client=BrokenIntel(), content=ResilientContent())
        lead = build_lead(employee_count=None, company_intel={"employee_count": 800, "summary": "cached"})
        result = engine.score(lead)
        assert not result.provisional
        assert "Large company (800 employees, enriched)" in result.factors

    def test_no_intel_client_is_rules_only(self):
        engine = ScoringEngine(config=ScoringConfig(), intel_client=None, content=ResilientContent())
        result = engine.score(build_lead())
        assert not result.provisional
        assert result.company_intel is None

    def test_timeout_degrades_to_provisional_zero(self):
        engine = ScoringEngine(config=ScoringConfig(), intel_client=SlowIntel(), content=ResilientContent(),
                               timeout=0.05, enrichment_timeout=5.0)
        result = engine.score(build_lead())
        assert result.timed_out
        assert result.provisional
        assert result.score == 0
        assert result.factors == [TIMED_OUT_FACTOR]
        assert not result.qualified


class TestApplyScore:
    def test_appends_history(self):
        lead = build_lead()
        result = ScoreResult(score=72, factors=["VP-level contact"], summary="ok", qualified=True)
        event = apply_score(lead, result)
        assert event.previous_score is None
        assert event.new_score == 72
        assert lead.score == 72
        assert lead.ai_qualified
        assert lead.score_events == [event]

        rescored = apply_score(lead, ScoreResult(score=40, factors=[], summary="", qualified=False),
                               reason="rescore")
        assert rescored.previous_score == 72
        assert rescored.reason == "rescore"
        assert len(lead.score_events) == 2

    def test_timed_out_result_keeps_existing_score(self):
        lead = build_lead(score=72, score_factors=["VP-level contact"])
        timed_out = ScoreResult(score=0, factors=[TIMED_OUT_FACTOR], summary="", qualified=False,
                                provisional=True, timed_out=True)
        assert apply_score(lead, timed_out) is None
        assert lead.score == 72
        assert lead.score_factors == ["VP-level contact"]

    def test_timed_out_result_applies_to_unscored_lead(self):
        lead = build_lead()
        timed_out = ScoreResult(score=0, factors=[TIMED_OUT_FACTOR], summary="", qualified=False,
                                provisional=True, timed_out=True)
        assert apply_score(lead, timed_out) is not None
        assert lead.score == 0
        assert lead.score_provisional


class TestScoringConfig:
    def test_sample_yaml_loads(self):
        config = load_scoring_config(str(SAMPLES_DIR / "scoring.yaml"))
        assert config.qualification_threshold == 60
        assert config.seniority["vp"] == 30
        assert "aerospace" in config.target_industries

    def test_yaml_overrides_and_ignores_unknown_keys(self, tmp_path):
        path = tmp_path / "scoring.yaml"
        path.write_text("scoring:\n  base: 0\n  qualification_threshold: 90\n  not_a_weight: 5\n")
        config = load_scoring_config(str(path))
        assert config.base == 0
        assert config.qualification_threshold == 90
        assert not hasattr(config, "not_a_weight")

    def test_threshold_from_config(self):
        engine = ScoringEngine(config=ScoringConfig(qualification_threshold=99), content=ResilientContent())
        assert not engine.score(build_lead()).qualified
