import logging

from inkpipe.celery_app import celery
from inkpipe.database import SessionLocal
from inkpipe.errors import TransientIOError
from inkpipe.tasks.process_pending_uploads import OUTCOME_TRANSIENT, process_file_record
from inkpipe.tasks.retry_config import ExtractionTaskWithRetry

logger = logging.getLogger(__name__)


@celery.task(base=ExtractionTaskWithRetry, bind=True, name="inkpipe.tasks.process_file.process_file_task")
def process_file_task(self, file_id: int):
    """Process one file right away instead of waiting for the next batch."""
    logger.info(f"[file {file_id}] Task {self.request.id} started")
    with SessionLocal() as db:
        # Requested explicitly, so a fresh "processing" claim is taken over too
        outcome = process_file_record(db, file_id, stale_seconds=0)

    if outcome == OUTCOME_TRANSIENT:
        raise self.retry(exc=TransientIOError(f"Transient failure processing file {file_id}"))
    return {"file_id": file_id, "outcome": outcome}
