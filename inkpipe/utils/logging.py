import logging
from typing import Optional

from sqlalchemy.orm import Session

from inkpipe.models import ProcessingLog

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logger = logging.getLogger(__name__)

_configured = False


def configure_logging(level: str = "INFO") -> None:
    """Install a stream handler on the root logger (once)."""
    global _configured
    if _configured:
        logging.getLogger().setLevel(level.upper())
        return
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # boto3 and urllib3 are chatty at INFO
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    _configured = True


def log_file_event(
    db: Session,
    file_id: Optional[int],
    step_name: str,
    status: str,
    message: Optional[str] = None,
) -> None:
    """
    Record one processing step for a file.

    The ProcessingLog row is added to the caller's session so it commits
    together with the status change it describes. The same line is mirrored
    to the module logger.

    Args:
        db: The session that carries the status transition
        file_id: FileRecord id (None for events not tied to a file)
        step_name: e.g. "record_upload", "claim", "extract", "debit_tokens"
        status: "in_progress", "success" or "failure"
        message: Short human readable summary
    """
    line = f"[file {file_id}] {step_name}: {status}" + (f" - {message}" if message else "")
    if status == "failure":
        logger.warning(line)
    else:
        logger.info(line)

    db.add(
        ProcessingLog(
            file_id=file_id,
            step_name=step_name,
            status=status,
            message=message,
        )
    )
