# inkpipe/celery_app.py

import logging

from celery import Celery
from celery.signals import task_failure

from inkpipe.config import settings

logger = logging.getLogger(__name__)

celery = Celery(
    "inkpipe",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery.conf.broker_connection_retry_on_startup = True

celery.conf.task_default_queue = "inkpipe"
celery.conf.task_routes = {
    "inkpipe.tasks.*": {"queue": "inkpipe"},
}


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, args=None, kwargs=None, **kw):
    """Log every task that gives up, with its arguments."""
    logger.error(
        f"Task {sender.name if sender else 'unknown'} [{task_id}] failed: {exception} "
        f"(args={args or []}, kwargs={kwargs or {}})"
    )
