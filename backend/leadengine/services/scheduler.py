"""Background job scheduling on RQ queues."""

from datetime import timedelta

import structlog
from redis import Redis
from rq import Queue

from leadengine.config import settings

logger = structlog.get_logger()

PIPELINE_QUEUE = "leads"
RETRY_QUEUE = "retries"

_connection: Redis | None = None


def get_queue_connection() -> Redis:
    """RQ pickles job payloads, so its connection must not decode responses."""
    global _connection
    if _connection is None:
        _connection = Redis.from_url(settings.redis_url)
    return _connection


class JobScheduler:
    def __init__(self, connection: Redis | None = None):
        self.connection = connection

    def _queue(self, name: str) -> Queue:
        return Queue(name, connection=self.connection or get_queue_connection())

    def enqueue_pipeline(self, lead_id) -> None:
        """Score then auto-respond, right after intake."""
        self._queue(PIPELINE_QUEUE).enqueue(
            "leadengine.workers.lead_pipeline.process_lead",
            str(lead_id),
            job_timeout=120,
        )
        logger.info("lead_pipeline_enqueued", lead_id=str(lead_id))

    def schedule_rescore(self, lead_id, delay_seconds: int) -> None:
        self._queue(RETRY_QUEUE).enqueue_in(
            timedelta(seconds=delay_seconds),
            "leadengine.workers.lead_pipeline.rescore_lead",
            str(lead_id),
            job_timeout=60,
        )
        logger.info("rescore_scheduled", lead_id=str(lead_id), delay=delay_seconds)

    def schedule_dispatch_retry(self, lead_id, delay_seconds: int) -> None:
        self._queue(RETRY_QUEUE).enqueue_in(
            timedelta(seconds=delay_seconds),
            "leadengine.workers.lead_pipeline.retry_dispatch",
            str(lead_id),
            job_timeout=60,
        )
        logger.info("dispatch_retry_scheduled", lead_id=str(lead_id), delay=delay_seconds)
