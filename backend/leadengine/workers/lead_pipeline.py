"""Lead pipeline worker tasks.

Pipeline after intake:
1. Score (company intel + rules + rationale summary), bounded
2. Auto-respond (content + send), SLA-timed

Scoring timeouts and delivery failures schedule their own retries on the
``retries`` queue; those land in ``rescore_lead`` and ``retry_dispatch``.
"""

import structlog

from leadengine.errors import LeadEngineError, LeadNotFound
from leadengine.workers.base import get_engine, record_task_failure, timed_task

logger = structlog.get_logger()


def process_lead(lead_id: str):
    """Main entry point: score then respond. Responds even when scoring degrades."""
    engine = get_engine()
    with timed_task("process_lead", lead_id):
        try:
            try:
                engine.score_lead(lead_id, reason="intake")
            except LeadNotFound:
                raise
            except LeadEngineError as e:
                # A missed score is retried later; the response still goes out now
                logger.warning("lead_pipeline_scoring_failed", lead_id=lead_id, error=str(e))
                engine.defer_rescore(lead_id)
            result = engine.dispatch(lead_id, reason="pipeline")
        except LeadNotFound:
            logger.warning("lead_pipeline_lead_missing", lead_id=lead_id)
            return
        except LeadEngineError:
            raise
        except Exception as e:
            record_task_failure(lead_id, "process_lead", e)
            raise
    logger.info("lead_pipeline_completed", lead_id=lead_id, sent=result.sent, latency_ms=result.latency_ms)


def rescore_lead(lead_id: str):
    """Retry a scoring run that timed out."""
    engine = get_engine()
    with timed_task("rescore_lead", lead_id):
        try:
            engine.score_lead(lead_id, reason="retry")
        except LeadNotFound:
            logger.warning("rescore_lead_missing", lead_id=lead_id)
        except LeadEngineError:
            raise
        except Exception as e:
            record_task_failure(lead_id, "rescore_lead", e)
            raise


def retry_dispatch(lead_id: str):
    """Retry a failed auto-response delivery. No-op once a response went out."""
    engine = get_engine()
    with timed_task("retry_dispatch", lead_id):
        try:
            engine.dispatch(lead_id, reason="retry")
        except LeadNotFound:
            logger.warning("retry_dispatch_lead_missing", lead_id=lead_id)
        except LeadEngineError:
            raise
        except Exception as e:
            record_task_failure(lead_id, "retry_dispatch", e)
            raise
