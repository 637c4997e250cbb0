#!/usr/bin/env python3

from celery.schedules import crontab

from inkpipe.celery_app import celery
from inkpipe.config import settings
from inkpipe.utils.logging import configure_logging

# Ensure all tasks are registered before Celery starts
from inkpipe.tasks.process_file import process_file_task  # noqa: F401
from inkpipe.tasks.process_pending_uploads import process_pending_uploads_task  # noqa: F401

configure_logging(settings.log_level)

celery.conf.beat_schedule = {
    "process-pending-uploads": {
        "task": "inkpipe.tasks.process_pending_uploads.process_pending_uploads_task",
        "schedule": crontab(minute=f"*/{settings.process_pending_interval_minutes}"),
        "options": {"expires": 55},  # Ensure runs don't pile up
    },
}
