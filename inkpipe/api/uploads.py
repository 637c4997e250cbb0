"""
Upload handshake endpoints.

Binary uploads never pass through this server:

1. ``POST /upload-url`` mints a presigned PUT URL and a storage key
2. the client PUTs the bytes straight to the object store
3. ``POST /upload-complete`` records the file as ``pending``

Text notes are small, so ``POST /upload-text`` stores them directly and
creates the record already ``completed``.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inkpipe.api.common import file_summary, get_db, get_store
from inkpipe.auth import get_current_user_id
from inkpipe.errors import Unauthorized
from inkpipe.models import FileRecord
from inkpipe.utils.file_status import FileStatus, mark_completed, mark_pending
from inkpipe.utils.filename_utils import build_storage_key, owner_prefix
from inkpipe.utils.logging import log_file_event
from inkpipe.utils.media_types import normalize_media_type, text_media_type_for
from inkpipe.utils.object_store import ObjectStoreClient
from inkpipe.utils.usage import ensure_quota

logger = logging.getLogger(__name__)

router = APIRouter()


class UploadUrlRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename: str = Field(min_length=1)
    content_type: str = Field(alias="contentType")


class UploadCompleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    storage_key: str = Field(alias="storageKey", min_length=1)
    public_url: Optional[str] = Field(default=None, alias="publicUrl")
    original_name: str = Field(alias="originalName", min_length=1)
    content_type: str = Field(alias="contentType")


class UploadTextRequest(BaseModel):
    name: str = Field(min_length=1)
    content: str = Field(min_length=1)


@router.post("/upload-url")
def create_upload_url(
    body: UploadUrlRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    store: ObjectStoreClient = Depends(get_store),
):
    """Step 1 of the handshake: where to PUT the bytes."""
    ensure_quota(db, user_id)
    db.commit()

    key = build_storage_key(user_id, body.filename)
    upload_url = store.create_upload_url(key, body.content_type)
    logger.info(f"Issued upload URL for {key}")
    return {
        "uploadUrl": upload_url,
        "storageKey": key,
        "publicUrl": store.public_url(key),
    }


def _check_owner(record: FileRecord, user_id: str) -> FileRecord:
    if record.owner_id != user_id:
        raise Unauthorized("Storage key belongs to another user")
    return record


@router.post("/upload-complete")
def record_upload_complete(
    body: UploadCompleteRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    store: ObjectStoreClient = Depends(get_store),
):
    """
    Step 3 of the handshake: the object is in the bucket, queue it.

    Safe to retry. A second call for the same key returns the row created by
    the first one unchanged.
    """
    if not body.storage_key.startswith(owner_prefix(user_id)):
        raise Unauthorized("Storage key is outside the caller's upload prefix")

    existing = db.query(FileRecord).filter(FileRecord.storage_key == body.storage_key).first()
    if existing is not None:
        _check_owner(existing, user_id)
        logger.info(f"[file {existing.id}] Upload already recorded for {body.storage_key}")
        return file_summary(existing)

    record = FileRecord(
        owner_id=user_id,
        storage_key=body.storage_key,
        public_url=body.public_url or store.public_url(body.storage_key),
        media_type=normalize_media_type(body.content_type),
        original_name=body.original_name,
        status=FileStatus.UPLOADED.value,
    )
    mark_pending(record)
    db.add(record)
    try:
        db.flush()
        log_file_event(db, record.id, "record_upload", "success", f"{record.original_name} ({record.media_type})")
        db.commit()
    except IntegrityError:
        # A concurrent retry inserted the same key first
        db.rollback()
        record = db.query(FileRecord).filter(FileRecord.storage_key == body.storage_key).one()
        _check_owner(record, user_id)
        return file_summary(record)

    db.refresh(record)
    return file_summary(record)


@router.post("/upload-text")
def upload_text(
    body: UploadTextRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    store: ObjectStoreClient = Depends(get_store),
):
    """Store a text note; it is searchable immediately, no worker involved."""
    if not body.content.strip():
        raise HTTPException(status_code=400, detail="Text content is empty")

    key = build_storage_key(user_id, body.name)
    media_type = text_media_type_for(body.name)
    store.put_bytes(key, body.content.encode("utf-8"), media_type)

    record = FileRecord(
        owner_id=user_id,
        storage_key=key,
        public_url=store.public_url(key),
        media_type=media_type,
        original_name=body.name,
    )
    mark_completed(record, body.content, tokens_used=0)
    db.add(record)
    db.flush()
    log_file_event(db, record.id, "upload_text", "success", f"{len(body.content)} chars")
    db.commit()
    db.refresh(record)

    return {
        "fileId": record.id,
        "status": record.status,
        "text": record.extracted_text,
    }
