"""
File status state machine.

Every status write for a FileRecord goes through the helpers below so the
record invariants hold after each commit:

- ``extracted_text`` is set if and only if ``status == "completed"``
- ``error`` is set if and only if ``status == "error"``
- ``updated_at`` is bumped on every transition
"""

import enum
from datetime import datetime, timezone
from typing import Dict, Optional

from inkpipe.models import FileRecord

EMPTY_EXTRACTION_PLACEHOLDER = "[Extraction completed, but no text was found]"


class FileStatus(str, enum.Enum):
    UPLOADED = "uploaded"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


# Not yet claimed by a worker
UNCLAIMED_STATUSES = (FileStatus.UPLOADED.value, FileStatus.PENDING.value)

# Eligible for the next worker run (at-least-once processing)
CLAIMABLE_STATUSES = UNCLAIMED_STATUSES + (FileStatus.PROCESSING.value,)

TERMINAL_STATUSES = (FileStatus.COMPLETED.value, FileStatus.ERROR.value)


class InvalidTransition(ValueError):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def mark_pending(record: FileRecord) -> FileRecord:
    """Handshake complete (or explicit re-queue): the file waits for a worker."""
    if record.status not in (FileStatus.UPLOADED.value, FileStatus.PENDING.value, FileStatus.ERROR.value):
        raise InvalidTransition(f"Cannot move file {record.id} from {record.status} to pending")
    record.status = FileStatus.PENDING.value
    record.extracted_text = None
    record.tokens_used = None
    record.error = None
    record.updated_at = utcnow()
    return record


def mark_processing(record: FileRecord) -> FileRecord:
    """Claim a record for extraction. Clears any error left by an earlier attempt."""
    if record.status not in CLAIMABLE_STATUSES:
        raise InvalidTransition(f"Cannot claim file {record.id} in status {record.status}")
    record.status = FileStatus.PROCESSING.value
    record.extracted_text = None
    record.tokens_used = None
    record.error = None
    record.updated_at = utcnow()
    return record


def mark_completed(record: FileRecord, text: Optional[str], tokens_used: int = 0) -> FileRecord:
    """Store the extraction result. Empty output still counts as a success."""
    if not text or not text.strip():
        text = EMPTY_EXTRACTION_PLACEHOLDER
    record.status = FileStatus.COMPLETED.value
    record.extracted_text = text
    record.tokens_used = max(0, int(tokens_used or 0))
    record.error = None
    record.updated_at = utcnow()
    return record


def mark_error(record: FileRecord, message: Optional[str]) -> FileRecord:
    record.status = FileStatus.ERROR.value
    record.extracted_text = None
    record.tokens_used = None
    record.error = message or "Unknown processing error"
    record.updated_at = utcnow()
    return record


def status_payload(record: FileRecord) -> Dict:
    """Polling view of a record: id and status, plus text or error once terminal."""
    payload = {"id": record.id, "status": record.status}
    if record.status == FileStatus.COMPLETED.value:
        payload["text"] = record.extracted_text
    elif record.status == FileStatus.ERROR.value:
        payload["error"] = record.error
    return payload
