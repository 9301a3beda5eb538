from __future__ import annotations

import os
import uuid

from brandguard.services.email_service import EmailService
from brandguard.services.notification_service import deliver_analysis_email

QUEUE_MODE = os.getenv("QUEUE_MODE", "inline").strip().lower()
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
QUEUE_NAME = os.getenv("QUEUE_NAME", "notifications")


def enqueue_analysis_email(analysis_id: str, email_service: EmailService | None = None) -> str | None:
    """Schedule the analysis-result email and return a job id.

    Modes:
    - inline (default): send from the API process before returning; ``None``
      when delivery failed
    - redis: push to an RQ queue drained by ``brandguard.worker``
    """
    if QUEUE_MODE == "redis":
        return _enqueue_redis(analysis_id)

    if not deliver_analysis_email(analysis_id, email_service):
        return None
    return str(uuid.uuid4())


def _enqueue_redis(analysis_id: str) -> str:
    from redis import Redis
    from rq import Queue

    connection = Redis.from_url(REDIS_URL)
    queue = Queue(QUEUE_NAME, connection=connection)
    job = queue.enqueue("brandguard.services.notification_service.deliver_analysis_email", analysis_id)
    return str(job.id)
