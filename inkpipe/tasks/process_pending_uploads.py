"""
Background worker: drain the pending-upload backlog.

One run selects up to ``WORKER_BATCH_SIZE`` claimable records (oldest first)
and processes them one after another:

1. Re-read the row and claim it (``processing``, fresh ``updated_at``,
   cleared ``error``), committing before any extraction I/O.
2. Run the processing engine.
3. Write the outcome (``completed`` with text and tokens, or ``error``
   with the message) in a single commit.
4. Debit the owner's token budget. A failed debit is logged and never
   undoes ``completed``.

A ``TransientIOError`` leaves the row in ``processing`` so the next run
picks it up again. Nothing raised for one record stops the batch.
"""

import logging
from typing import Dict, Optional

from sqlalchemy.orm import Session

from inkpipe.celery_app import celery
from inkpipe.config import settings
from inkpipe.database import SessionLocal
from inkpipe.errors import TransientIOError
from inkpipe.models import FileRecord
from inkpipe.utils.file_status import mark_completed, mark_error, mark_processing
from inkpipe.utils.logging import log_file_event
from inkpipe.utils.processing_engine import ProcessingEngine
from inkpipe.utils.stale_claims import is_claimable, select_claimable_ids
from inkpipe.utils.usage import increment_token_usage

logger = logging.getLogger(__name__)

OUTCOME_COMPLETED = "completed"
OUTCOME_ERROR = "error"
OUTCOME_TRANSIENT = "transient"
OUTCOME_SKIPPED = "skipped"


def _debit_tokens(db: Session, record: FileRecord) -> None:
    if not record.tokens_used:
        return
    try:
        increment_token_usage(db, record.owner_id, record.tokens_used)
        log_file_event(db, record.id, "debit_tokens", "success", f"{record.tokens_used} tokens")
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"[file {record.id}] Failed to debit {record.tokens_used} tokens from {record.owner_id}: {e}")


def process_file_record(
    db: Session,
    file_id: int,
    processing_engine: Optional[ProcessingEngine] = None,
    stale_seconds: Optional[int] = None,
) -> str:
    """
    Claim, extract and finalise a single record.

    Returns one of ``completed``, ``error``, ``transient`` or ``skipped``
    (the row vanished or is no longer claimable).
    """
    processing_engine = processing_engine or ProcessingEngine()

    record = db.get(FileRecord, file_id)
    if record is None or not is_claimable(record, stale_seconds):
        logger.info(f"[file {file_id}] No longer claimable, skipping")
        return OUTCOME_SKIPPED

    mark_processing(record)
    log_file_event(db, record.id, "claim", "in_progress", f"Processing {record.original_name}")
    db.commit()

    try:
        result = processing_engine.extract(record)
    except TransientIOError as e:
        db.rollback()
        log_file_event(db, file_id, "extract", "failure", f"Transient error, will retry: {e.message}")
        db.commit()
        return OUTCOME_TRANSIENT
    except Exception as e:
        db.rollback()
        message = getattr(e, "message", None) or str(e) or e.__class__.__name__
        record = db.get(FileRecord, file_id)
        mark_error(record, message)
        log_file_event(db, file_id, "extract", "failure", message)
        db.commit()
        return OUTCOME_ERROR

    record = db.get(FileRecord, file_id)
    mark_completed(record, result.text, result.tokens_used)
    log_file_event(db, file_id, "extract", "success", f"{len(record.extracted_text)} chars, {record.tokens_used} tokens")
    db.commit()

    _debit_tokens(db, record)
    return OUTCOME_COMPLETED


def process_pending_uploads(
    db: Session,
    batch_size: Optional[int] = None,
    processing_engine: Optional[ProcessingEngine] = None,
) -> Dict[str, int]:
    """
    Run one worker batch.

    Returns:
        ``{"attempted": n, "succeeded": n, "errored": n}``
    """
    batch_size = batch_size or settings.worker_batch_size
    processing_engine = processing_engine or ProcessingEngine()

    report = {"attempted": 0, "succeeded": 0, "errored": 0}
    for file_id in select_claimable_ids(db, batch_size):
        try:
            outcome = process_file_record(db, file_id, processing_engine)
        except Exception as e:
            # Status write itself failed; the row stays claimable for the next run
            db.rollback()
            logger.exception(f"[file {file_id}] Unexpected error while processing: {e}")
            outcome = OUTCOME_ERROR

        if outcome == OUTCOME_SKIPPED:
            continue
        report["attempted"] += 1
        if outcome == OUTCOME_COMPLETED:
            report["succeeded"] += 1
        else:
            report["errored"] += 1

    if report["attempted"]:
        logger.info(
            f"Processed {report['attempted']} file(s): "
            f"{report['succeeded']} succeeded, {report['errored']} errored"
        )
    return report


@celery.task(name="inkpipe.tasks.process_pending_uploads.process_pending_uploads_task")
def process_pending_uploads_task(batch_size: Optional[int] = None):
    """
    Periodic entry point, scheduled by Celery Beat every
    ``PROCESS_PENDING_INTERVAL_MINUTES``.
    """
    try:
        with SessionLocal() as db:
            return process_pending_uploads(db, batch_size=batch_size)
    except Exception as e:
        logger.error(f"Error in process_pending_uploads task: {e}", exc_info=True)
        return {"error": str(e), "attempted": 0, "succeeded": 0, "errored": 0}
