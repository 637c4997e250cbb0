"""
Local previews shown while a capture waits to sync.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image, ImageOps

from inkpipe.outbox.captures import BinaryCapture, Capture, TextCapture

logger = logging.getLogger(__name__)

PREVIEW_TEXT = "text"
PREVIEW_IMAGE = "image"
PREVIEW_OTHER = "other"

THUMBNAIL_SIZE: Tuple[int, int] = (320, 320)


@dataclass
class Preview:
    preview_type: str
    preview_text: Optional[str] = None
    thumbnail_path: Optional[str] = None


def generate_text_preview(text: str, max_length: int = 150) -> str:
    """
    Snippet of *text* of at most *max_length* characters plus an ellipsis.

    Prefers to cut at the furthest paragraph or sentence end found in the
    second half of the window; otherwise cuts hard at *max_length*.
    """
    if not text or len(text) <= max_length:
        return text

    start = max_length // 2
    breaks = [text.find(marker, start) for marker in ("\n\n", ". ", "? ", "! ")]
    breaks = [b for b in breaks if b != -1 and b < max_length]
    cut = max(breaks) + 1 if breaks else max_length
    return text[:cut] + "..."


def make_thumbnail(src_path: str, dst_path: str, size: Tuple[int, int] = THUMBNAIL_SIZE) -> str:
    """Write a JPEG thumbnail of the image at *src_path*."""
    with Image.open(src_path) as img:
        img = ImageOps.exif_transpose(img).convert("RGB")
        img.thumbnail(size)
        img.save(dst_path, "JPEG", quality=80)
    return dst_path


def generate_preview(capture: Capture, local_id: str, previews_dir: str) -> Preview:
    if isinstance(capture, TextCapture):
        return Preview(preview_type=PREVIEW_TEXT, preview_text=generate_text_preview(capture.content))

    if isinstance(capture, BinaryCapture) and capture.resolved_mime_type.startswith("image/"):
        os.makedirs(previews_dir, exist_ok=True)
        thumbnail_path = os.path.join(previews_dir, f"{local_id}-thumb.jpg")
        try:
            make_thumbnail(capture.path, thumbnail_path)
            return Preview(preview_type=PREVIEW_IMAGE, thumbnail_path=thumbnail_path)
        except OSError as e:
            # Formats Pillow cannot decode (HEIC without a plugin): show the original
            logger.warning(f"Could not create thumbnail for {local_id}, copying original: {e}")
        try:
            shutil.copyfile(capture.path, thumbnail_path)
            return Preview(preview_type=PREVIEW_IMAGE, thumbnail_path=thumbnail_path)
        except OSError as e:
            logger.error(f"Error creating thumbnail for {local_id}: {e}")

    return Preview(preview_type=PREVIEW_OTHER, preview_text=capture.resolved_name or "File")
