"""
File status endpoints
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from inkpipe.api.common import file_summary, get_db, get_owned_file
from inkpipe.auth import get_current_user_id
from inkpipe.models import FileRecord
from inkpipe.utils.file_status import FileStatus, mark_pending, status_payload
from inkpipe.utils.logging import log_file_event

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/files/{file_id}/status")
def get_status(file_id: int, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """
    Polling endpoint. Read only.

    Example response::

        {"id": 42, "status": "completed", "text": "# Receipt ..."}
    """
    record = get_owned_file(db, file_id, user_id)
    return status_payload(record)


@router.get("/files")
def list_files(
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """The caller's most recent files, newest first."""
    records = (
        db.query(FileRecord)
        .filter(FileRecord.owner_id == user_id)
        .order_by(FileRecord.created_at.desc(), FileRecord.id.desc())
        .limit(limit)
        .all()
    )
    result = []
    for record in records:
        item = status_payload(record)
        item.update(
            {
                "originalName": record.original_name,
                "mediaType": record.media_type,
                "createdAt": record.created_at.isoformat() if record.created_at else None,
                "updatedAt": record.updated_at.isoformat() if record.updated_at else None,
            }
        )
        result.append(item)
    return result


@router.post("/files/{file_id}/retry")
def retry_file(file_id: int, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Put a failed file back in the queue for the next worker run."""
    record = get_owned_file(db, file_id, user_id)
    if record.status != FileStatus.ERROR.value:
        raise HTTPException(status_code=409, detail=f"File is {record.status}, only failed files can be retried")

    previous_error = record.error
    mark_pending(record)
    log_file_event(db, record.id, "requeue", "success", f"Previous error: {previous_error}")
    db.commit()
    return file_summary(record)


@router.post("/files/{file_id}/process", status_code=202)
def process_file_now(file_id: int, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Process a single file immediately on a Celery worker."""
    from inkpipe.tasks.process_file import process_file_task

    record = get_owned_file(db, file_id, user_id)
    if record.status == FileStatus.COMPLETED.value:
        raise HTTPException(status_code=409, detail="File has already been processed")

    if record.status == FileStatus.ERROR.value:
        mark_pending(record)
        log_file_event(db, record.id, "requeue", "success", "Re-queued for immediate processing")
        db.commit()

    task = process_file_task.delay(file_id)
    logger.info(f"[file {file_id}] Queued processing task {task.id}")
    return {"fileId": file_id, "taskId": task.id, "status": "queued"}
