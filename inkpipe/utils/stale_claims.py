"""
Claim selection for the background worker.

Rows in ``uploaded`` or ``pending`` are always eligible. Rows stuck in
``processing`` belong to a worker that crashed (or is still running) and are
re-claimed according to ``STALE_PROCESSING_SECONDS``:

- ``0`` (default): every run re-claims them, so a crash never strands a file
- ``> 0``: only once ``updated_at`` is older than the threshold
"""

import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from inkpipe.config import settings
from inkpipe.models import FileRecord
from inkpipe.utils.file_status import UNCLAIMED_STATUSES, FileStatus, utcnow

logger = logging.getLogger(__name__)


def get_stale_threshold() -> int:
    """Seconds a ``processing`` row must sit untouched before it is re-claimed."""
    return max(0, int(settings.stale_processing_seconds or 0))


def claimable_query(db: Session, stale_seconds: Optional[int] = None):
    """Query of every record the worker may claim, oldest first."""
    if stale_seconds is None:
        stale_seconds = get_stale_threshold()

    processing = FileRecord.status == FileStatus.PROCESSING.value
    if stale_seconds > 0:
        cutoff = utcnow() - timedelta(seconds=stale_seconds)
        processing = and_(processing, FileRecord.updated_at <= cutoff)

    return (
        db.query(FileRecord)
        .filter(or_(FileRecord.status.in_(UNCLAIMED_STATUSES), processing))
        .order_by(FileRecord.created_at.asc(), FileRecord.id.asc())
    )


def select_claimable_ids(db: Session, limit: int, stale_seconds: Optional[int] = None) -> List[int]:
    """
    Ids of up to *limit* claimable records, oldest ``created_at`` first.

    Only ids are returned; the worker re-reads each row right before
    claiming it so a concurrent run's write is never overwritten with stale
    in-memory state.
    """
    ids = [record.id for record in claimable_query(db, stale_seconds).limit(limit).all()]
    if ids:
        logger.info(f"Selected {len(ids)} claimable file(s): {ids}")
    return ids


def is_claimable(record: FileRecord, stale_seconds: Optional[int] = None) -> bool:
    """Same rule as :func:`claimable_query`, for a single freshly read row."""
    if record.status in UNCLAIMED_STATUSES:
        return True
    if record.status != FileStatus.PROCESSING.value:
        return False
    if stale_seconds is None:
        stale_seconds = get_stale_threshold()
    if stale_seconds <= 0 or record.updated_at is None:
        return True
    updated_at = record.updated_at
    if updated_at.tzinfo is None:
        # SQLite hands back naive datetimes; they are stored in UTC
        updated_at = updated_at.replace(tzinfo=utcnow().tzinfo)
    return updated_at <= utcnow() - timedelta(seconds=stale_seconds)
