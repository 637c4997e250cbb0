"""
Processing engine: turn one stored asset into text.

Routes on the record's media type:

    image/*          vision model reads the public URL
    audio/*          downloaded, then chunked transcription
    application/pdf  not supported yet (ExtractionFailure)
    text/*           legacy rows only; stored object passed through
    anything else    ExtractionFailure

The engine never touches the database. The worker owns every status write.
"""

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from typing import Optional

from inkpipe.config import settings
from inkpipe.errors import ExtractionFailure
from inkpipe.models import FileRecord
from inkpipe.utils.ai_provider import InferenceProvider, get_inference_provider, resolve_tokens
from inkpipe.utils.audio_chunking import transcribe_audio_file
from inkpipe.utils.filename_utils import extension_of
from inkpipe.utils.media_types import KIND_AUDIO, KIND_IMAGE, KIND_PDF, KIND_TEXT, media_kind, normalize_media_type
from inkpipe.utils.object_store import ObjectStoreClient, get_object_store

logger = logging.getLogger(__name__)

PDF_UNSUPPORTED_MESSAGE = "PDF processing is not supported yet. Upload the pages as images instead."


@dataclass
class ExtractionResult:
    text: str
    tokens_used: int = 0


class ProcessingEngine:
    """Extract text from stored assets using an inference provider."""

    def __init__(
        self,
        provider: Optional[InferenceProvider] = None,
        store: Optional[ObjectStoreClient] = None,
    ):
        self._provider = provider
        self._store = store

    @property
    def provider(self) -> InferenceProvider:
        if self._provider is None:
            self._provider = get_inference_provider()
        return self._provider

    @property
    def store(self) -> ObjectStoreClient:
        if self._store is None:
            self._store = get_object_store()
        return self._store

    def extract(self, record: FileRecord) -> ExtractionResult:
        """
        Extract text from *record*'s asset.

        Raises:
            ExtractionFailure: The asset cannot be turned into text.
            TransientIOError: A network dependency failed; worth retrying.
        """
        kind = media_kind(record.media_type)
        logger.info(f"[file {record.id}] Extracting {normalize_media_type(record.media_type)} as {kind}")

        if kind == KIND_IMAGE:
            return self._extract_image(record)
        if kind == KIND_AUDIO:
            return self._extract_audio(record)
        if kind == KIND_PDF:
            raise ExtractionFailure(PDF_UNSUPPORTED_MESSAGE)
        if kind == KIND_TEXT:
            return self._passthrough_text(record)
        raise ExtractionFailure(f"Unsupported media type: {record.media_type}")

    def _extract_image(self, record: FileRecord) -> ExtractionResult:
        result = self.provider.extract_image_text(record.public_url)
        return ExtractionResult(text=result.text, tokens_used=resolve_tokens(result))

    def _extract_audio(self, record: FileRecord) -> ExtractionResult:
        os.makedirs(settings.workdir, exist_ok=True)
        tmp_dir = tempfile.mkdtemp(prefix=f"inkpipe-file-{record.id}-", dir=settings.workdir)
        try:
            ext = extension_of(record.original_name or record.storage_key) or "bin"
            local_path = self.store.download_to(record.storage_key, os.path.join(tmp_dir, f"source.{ext}"))
            text, tokens = transcribe_audio_file(local_path, self.provider)
            return ExtractionResult(text=text, tokens_used=tokens)
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)

    def _passthrough_text(self, record: FileRecord) -> ExtractionResult:
        data = self.store.get_bytes(record.storage_key)
        return ExtractionResult(text=data.decode("utf-8", errors="replace"), tokens_used=0)
