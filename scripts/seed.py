#!/usr/bin/env python3
"""Seed the database with demo leads pushed through the full lifecycle."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from pathlib import Path

import yaml
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from leadengine.adapters.email import LogTransport
from leadengine.config import settings
from leadengine.database import Base
from leadengine.errors import DuplicateError, LeadEngineError
from leadengine.models import Lead
from leadengine.services.conversion import ConversionService
from leadengine.services.dispatcher import ResponseDispatcher
from leadengine.services.engine import LeadEngine
from leadengine.services.intake import IntakeNormalizer
from leadengine.services.locks import LocalLeadLocks
from leadengine.services.scoring import ScoringEngine, load_scoring_config

SAMPLES_DIR = Path(__file__).parent.parent / "samples"


def run_workflow(engine: LeadEngine, lead: Lead, steps: list) -> None:
    for step in steps or []:
        if "claim" in step:
            engine.claim(lead.id, step["claim"], actor="seed")
        elif "qualify" in step:
            verdict = step["qualify"]
            engine.qualify(lead.id, verdict["qualified"], verdict["notes"],
                           ae_id=verdict.get("assigned_ae_id"), actor="seed")
        elif "convert" in step:
            result = engine.convert(lead.id, actor="seed")
            print(f"  converted -> {result.account_name} / {result.deal_name}")


def seed():
    db = create_engine(settings.database_url_sync)
    Base.metadata.create_all(db)
    Session = sessionmaker(bind=db, expire_on_commit=False)

    session = Session()
    existing = session.execute(select(Lead).limit(1)).scalar_one_or_none()
    session.close()
    if existing:
        print("Leads already present, skipping seed")
        return

    engine = LeadEngine(
        session_factory=Session,
        locks=LocalLeadLocks(),
        normalizer=IntakeNormalizer(),
        scorer=ScoringEngine(config=load_scoring_config(str(SAMPLES_DIR / "scoring.yaml"))),
        dispatcher=ResponseDispatcher(transports={"email": LogTransport("email"), "chat": LogTransport("chat")}),
        conversion=ConversionService(slack_webhook_url=""),
        scheduler=None,
        notify_hot_leads=False,
    )

    with open(SAMPLES_DIR / "leads.yaml") as f:
        entries = yaml.safe_load(f)["leads"]

    for entry in entries:
        try:
            lead = engine.intake(entry["channel"], entry["payload"], actor="seed")
        except DuplicateError as e:
            print(f"Skipped duplicate of {e.lead_id}")
            continue
        score = engine.score_lead(lead.id, reason="intake", actor="seed")
        response = engine.dispatch(lead.id, reason="pipeline", actor="seed")
        print(f"{lead.company}: score={score.score} qualified={score.qualified} "
              f"responded={response.sent} via {response.channel}")
        try:
            run_workflow(engine, lead, entry.get("workflow"))
        except LeadEngineError as e:
            print(f"  workflow stopped: {e.reason}")

    print(f"\nSeeded {len(entries)} leads")


if __name__ == "__main__":
    seed()
