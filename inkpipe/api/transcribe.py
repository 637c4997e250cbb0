"""
Synchronous transcription of an audio blob.

Unlike the upload pipeline, the transcript is returned in the response as a
chunked ``text/plain`` stream. All chunks are transcribed before the first
byte is sent, so a failed chunk still yields a proper 500.
"""

import logging
import os
import shutil
import tempfile
import urllib.parse

import requests
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from inkpipe.api.common import get_db, get_provider
from inkpipe.auth import get_current_user_id
from inkpipe.config import settings
from inkpipe.errors import InkpipeError
from inkpipe.utils.ai_provider import InferenceProvider
from inkpipe.utils.audio_chunking import iter_joined, transcribe_in_chunks
from inkpipe.utils.media_types import TRANSCRIBE_EXTENSIONS
from inkpipe.utils.usage import ensure_quota, increment_token_usage

logger = logging.getLogger(__name__)

router = APIRouter()

DOWNLOAD_TIMEOUT = 60
DOWNLOAD_CHUNK_SIZE = 1024 * 1024


class TranscribeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    blob_url: str = Field(alias="blobUrl", min_length=1)
    extension: str


def download_blob(url: str, target_path: str) -> str:
    """Stream *url* to *target_path*."""
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise HTTPException(status_code=400, detail="Only HTTP and HTTPS blob URLs are allowed")

    with requests.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT) as response:
        response.raise_for_status()
        with open(target_path, "wb") as f:
            for block in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                if block:
                    f.write(block)
    return target_path


@router.post("/transcribe")
def transcribe(
    body: TranscribeRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    provider: InferenceProvider = Depends(get_provider),
):
    extension = body.extension.lower().lstrip(".")
    if extension not in TRANSCRIBE_EXTENSIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type. Supported types: {', '.join(sorted(TRANSCRIBE_EXTENSIONS))}",
        )

    ensure_quota(db, user_id)

    os.makedirs(settings.workdir, exist_ok=True)
    tmp_dir = tempfile.mkdtemp(prefix="inkpipe-transcribe-", dir=settings.workdir)
    try:
        source = download_blob(body.blob_url, os.path.join(tmp_dir, f"source.{extension}"))
        results, tokens = transcribe_in_chunks(source, provider)
    except HTTPException:
        raise
    except requests.exceptions.RequestException as e:
        logger.error(f"Failed to download blob for transcription: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to download audio: {e}")
    except InkpipeError as e:
        logger.error(f"Transcription failed: {e.message}")
        raise HTTPException(status_code=500, detail=e.message)
    except Exception as e:
        logger.exception(f"Unexpected error during transcription: {e}")
        raise HTTPException(status_code=500, detail=f"Transcription failed: {e}")
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)

    if tokens:
        try:
            increment_token_usage(db, user_id, tokens)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to debit {tokens} transcription tokens from {user_id}: {e}")

    logger.info(f"Transcribed {len(results)} chunk(s) for {user_id} ({tokens} tokens)")
    return StreamingResponse(iter_joined([r.text or "" for r in results]), media_type="text/plain")
