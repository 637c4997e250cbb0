"""
Common utilities for API routes
"""
import logging

from fastapi import HTTPException
from sqlalchemy.orm import Session

from inkpipe.database import get_db  # noqa: F401  (re-exported for routers)
from inkpipe.errors import Unauthorized
from inkpipe.models import FileRecord
from inkpipe.utils.ai_provider import InferenceProvider, get_inference_provider
from inkpipe.utils.object_store import ObjectStoreClient, get_object_store
from inkpipe.utils.processing_engine import ProcessingEngine

logger = logging.getLogger(__name__)


def get_store() -> ObjectStoreClient:
    """Object store dependency for routes"""
    return get_object_store()


def get_provider() -> InferenceProvider:
    """Inference provider dependency for routes"""
    return get_inference_provider()


def get_processing_engine() -> ProcessingEngine:
    # Provider and store are resolved lazily, on the first file that needs them
    return ProcessingEngine()


def get_owned_file(db: Session, file_id: int, user_id: str) -> FileRecord:
    """
    Load a FileRecord the caller owns.

    Raises:
        HTTPException: 404 if no such record
        Unauthorized: the record belongs to someone else
    """
    record = db.get(FileRecord, file_id)
    if record is None:
        raise HTTPException(status_code=404, detail="File not found")
    if record.owner_id != user_id:
        logger.warning(f"[file {file_id}] Access denied for user {user_id}")
        raise Unauthorized()
    return record


def file_summary(record: FileRecord) -> dict:
    return {
        "fileId": record.id,
        "status": record.status,
    }
