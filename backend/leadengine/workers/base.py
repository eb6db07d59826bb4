"""Base worker utilities for RQ tasks."""

import time
import uuid
from contextlib import contextmanager

import structlog

from leadengine.database import get_sync_session
from leadengine.services.audit import create_audit_entry
from leadengine.services.engine import LeadEngine, build_engine

logger = structlog.get_logger()

_engine: LeadEngine | None = None


def get_engine() -> LeadEngine:
    """One engine per worker process."""
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def record_task_failure(lead_id: str, task: str, error: Exception) -> None:
    """Audit an unexpected task failure. The task still re-raises so RQ marks the job failed."""
    session = get_sync_session()
    try:
        create_audit_entry(
            session, uuid.UUID(str(lead_id)), "error", step=task, actor="worker",
            reason_code="task_error", output_summary=str(error),
        )
        session.commit()
    except Exception as e:
        logger.error("failed_to_audit_task_failure", task=task, lead_id=lead_id, error=str(e))
    finally:
        session.close()


@contextmanager
def timed_task(task: str, lead_id: str):
    """Log task start/finish with duration."""
    start = time.time()
    logger.info("task_started", task=task, lead_id=lead_id)
    try:
        yield
    except Exception as e:
        logger.error("task_failed", task=task, lead_id=lead_id,
                     duration=round(time.time() - start, 3), error=str(e))
        raise
    logger.info("task_completed", task=task, lead_id=lead_id, duration=round(time.time() - start, 3))
