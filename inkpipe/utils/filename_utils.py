import os
import re
import uuid
from datetime import datetime


def sanitize_filename(filename):
    """
    Make a client-supplied filename safe for use inside an object-store key.

    Path components are dropped and every character outside
    ``[A-Za-z0-9._-]`` is replaced with an underscore.

    Args:
        filename (str): The filename to sanitize

    Returns:
        str: A sanitized filename
    """
    # Strip any directory part (both separators, clients differ)
    name = os.path.basename((filename or "").replace("\\", "/"))

    sanitized = re.sub(r"[^a-zA-Z0-9._-]", "_", name)

    # Leading dots would hide the object in some listings
    sanitized = sanitized.lstrip(".")

    if not sanitized:
        sanitized = f"file_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

    return sanitized


def build_storage_key(owner_id: str, filename: str) -> str:
    """Key layout: uploads/<owner>/<uuid4>-<sanitized filename>."""
    return f"uploads/{owner_id}/{uuid.uuid4()}-{sanitize_filename(filename)}"


def owner_prefix(owner_id: str) -> str:
    return f"uploads/{owner_id}/"


def extension_of(filename: str) -> str:
    """Lower-case extension without the dot, or "" when there is none."""
    _, ext = os.path.splitext(filename or "")
    return ext.lstrip(".").lower()
