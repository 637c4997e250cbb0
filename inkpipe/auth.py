"""
Request authentication.

Clients send ``Authorization: Bearer <token>``. Tokens are opaque; only
their SHA-256 is stored (``api_tokens``), so a leaked database does not leak
usable credentials. With ``AUTH_ENABLED=false`` every request is owned by
``DEFAULT_USER_ID``.

The cron trigger uses a separate shared secret (``CRON_SECRET``).
"""

import hashlib
import hmac
import logging
import secrets
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from inkpipe.config import settings
from inkpipe.database import get_db
from inkpipe.errors import Unauthenticated
from inkpipe.models import ApiToken
from inkpipe.utils.file_status import utcnow

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_token(db: Session, user_id: str, label: Optional[str] = None) -> str:
    """Create a new API token for *user_id* and return it in clear text (shown once)."""
    token = secrets.token_urlsafe(32)
    db.add(ApiToken(user_id=user_id, token_hash=hash_token(token), label=label))
    db.commit()
    logger.info(f"Issued API token for user {user_id}" + (f" ({label})" if label else ""))
    return token


def revoke_token(db: Session, token: str) -> bool:
    row = db.query(ApiToken).filter(ApiToken.token_hash == hash_token(token)).first()
    if row is None or row.revoked_at is not None:
        return False
    row.revoked_at = utcnow()
    db.commit()
    return True


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


def verify_token(db: Session, token: str) -> Optional[str]:
    """Return the user id owning *token*, or None if unknown or revoked."""
    row = (
        db.query(ApiToken)
        .filter(ApiToken.token_hash == hash_token(token), ApiToken.revoked_at.is_(None))
        .first()
    )
    return row.user_id if row else None


def get_current_user_id(request: Request, db: Session = Depends(get_db)) -> str:
    """FastAPI dependency resolving the caller's user id."""
    if not settings.auth_enabled:
        return settings.default_user_id

    token = bearer_token(request)
    if not token:
        raise Unauthenticated()

    user_id = verify_token(db, token)
    if user_id is None:
        logger.warning(f"Rejected unknown or revoked token from {request.client.host if request.client else '?'}")
        raise Unauthenticated()
    return user_id


def verify_cron_secret(request: Request) -> None:
    """FastAPI dependency guarding the worker trigger."""
    token = bearer_token(request)
    if not settings.cron_secret or not token:
        raise Unauthenticated()
    if not hmac.compare_digest(token, settings.cron_secret):
        raise Unauthenticated()
