"""
Cron-triggered worker run
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from inkpipe.api.common import get_db, get_processing_engine
from inkpipe.auth import verify_cron_secret
from inkpipe.tasks.process_pending_uploads import process_pending_uploads
from inkpipe.utils.processing_engine import ProcessingEngine

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/process-pending", dependencies=[Depends(verify_cron_secret)])
def process_pending(
    db: Session = Depends(get_db),
    processing_engine: ProcessingEngine = Depends(get_processing_engine),
):
    """Run one worker batch synchronously. For schedulers that can only call URLs."""
    report = process_pending_uploads(db, processing_engine=processing_engine)
    logger.info(f"process-pending: {report}")
    return report
