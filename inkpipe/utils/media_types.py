"""
Canonical media-type lists for inkpipe uploads.

This module is the single source of truth consumed by:

  - inkpipe/utils/processing_engine.py  (extraction routing)
  - inkpipe/api/uploads.py              (text uploads)
  - inkpipe/api/transcribe.py           (accepted audio extensions)
  - inkpipe/outbox/captures.py          (client-side MIME guessing)
"""

import mimetypes

# ---------------------------------------------------------------------------
# Extraction strategies
# ---------------------------------------------------------------------------
KIND_IMAGE = "image"
KIND_AUDIO = "audio"
KIND_PDF = "pdf"
KIND_TEXT = "text"
KIND_OTHER = "other"

TEXT_MIME_TYPES: set[str] = {
    "text/plain",
    "text/markdown",
    "text/x-markdown",
}

# ---------------------------------------------------------------------------
# Extensions accepted by the transcription endpoint
# ---------------------------------------------------------------------------
TRANSCRIBE_EXTENSIONS: set[str] = {"mp3", "mp4", "mpeg", "mpga", "wav", "webm"}

# ---------------------------------------------------------------------------
# Extension -> MIME type, for clients that share files without a type
# ---------------------------------------------------------------------------
EXTENSION_MIME_TYPES: dict[str, str] = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "heic": "image/heic",
    "pdf": "application/pdf",
    "md": "text/markdown",
    "markdown": "text/markdown",
    "txt": "text/plain",
    "mp3": "audio/mpeg",
    "mpeg": "audio/mpeg",
    "mpga": "audio/mpeg",
    "m4a": "audio/mp4",
    "wav": "audio/wav",
    "webm": "audio/webm",
    "ogg": "audio/ogg",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

DEFAULT_MIME_TYPE = "application/octet-stream"


def normalize_media_type(media_type: str | None) -> str:
    """Lower-case and drop parameters: ``"Image/JPEG; q=1"`` -> ``"image/jpeg"``."""
    if not media_type:
        return DEFAULT_MIME_TYPE
    return media_type.split(";", 1)[0].strip().lower() or DEFAULT_MIME_TYPE


def media_kind(media_type: str | None) -> str:
    """Return which extraction strategy handles *media_type*."""
    mt = normalize_media_type(media_type)
    if mt.startswith("image/"):
        return KIND_IMAGE
    if mt.startswith("audio/"):
        return KIND_AUDIO
    if mt == "application/pdf":
        return KIND_PDF
    if mt.startswith("text/"):
        return KIND_TEXT
    return KIND_OTHER


def guess_media_type(filename: str | None) -> str:
    """Guess a MIME type from a filename, falling back to octet-stream."""
    if not filename:
        return DEFAULT_MIME_TYPE
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if ext in EXTENSION_MIME_TYPES:
        return EXTENSION_MIME_TYPES[ext]
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or DEFAULT_MIME_TYPE


def text_media_type_for(name: str | None) -> str:
    """Markdown for ``.md``/``.markdown`` names, plain text otherwise."""
    if name and name.lower().endswith((".md", ".markdown")):
        return "text/markdown"
    return "text/plain"
