"""
What a client can hand to the outbox.

A capture is either inline text (a note typed or shared as text) or a file
already on disk (photo, recording, document).
"""

import os
import random
import time
from dataclasses import dataclass
from typing import Optional, Union

from inkpipe.utils.media_types import guess_media_type, text_media_type_for


@dataclass(frozen=True)
class TextCapture:
    content: str
    name: Optional[str] = None

    @property
    def resolved_name(self) -> str:
        return self.name or f"note-{int(time.time() * 1000)}.md"

    @property
    def mime_type(self) -> str:
        return text_media_type_for(self.resolved_name)


@dataclass(frozen=True)
class BinaryCapture:
    path: str
    mime_type: Optional[str] = None
    name: Optional[str] = None

    @property
    def resolved_name(self) -> str:
        return self.name or os.path.basename(self.path)

    @property
    def resolved_mime_type(self) -> str:
        return self.mime_type or guess_media_type(self.resolved_name)


Capture = Union[TextCapture, BinaryCapture]


def new_local_id() -> str:
    """Client-side id, ``local-<epoch ms>-<random>``. Never sent to the server."""
    return f"local-{int(time.time() * 1000)}-{random.randint(0, 9999)}"  # noqa: S311
