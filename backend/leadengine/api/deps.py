"""Shared API dependencies."""

from leadengine.services.engine import LeadEngine, build_engine

_engine: LeadEngine | None = None


def get_engine() -> LeadEngine:
    """FastAPI dependency returning the process-wide lead engine."""
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine
