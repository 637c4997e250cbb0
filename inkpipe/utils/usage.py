"""
Per-user token budget.

Rows are created lazily with the free-tier allowance the first time a user
is seen. Callers commit.
"""

import logging

from sqlalchemy.orm import Session

from inkpipe.config import settings
from inkpipe.errors import QuotaExceeded
from inkpipe.models import UserUsage

logger = logging.getLogger(__name__)


def _get_or_create(db: Session, user_id: str) -> UserUsage:
    usage = db.query(UserUsage).filter(UserUsage.user_id == user_id).first()
    if usage is None:
        usage = UserUsage(user_id=user_id, token_usage=0, max_token_usage=settings.free_tier_tokens)
        db.add(usage)
        db.flush()
        logger.info(f"Created usage row for user {user_id} with {settings.free_tier_tokens} tokens")
    return usage


def check_token_usage(db: Session, user_id: str) -> int:
    """Remaining token budget for *user_id* (may be negative)."""
    usage = _get_or_create(db, user_id)
    return usage.max_token_usage - usage.token_usage


def increment_token_usage(db: Session, user_id: str, tokens: int) -> int:
    """Debit *tokens* from the user's budget and return what is left."""
    usage = _get_or_create(db, user_id)
    usage.token_usage = (usage.token_usage or 0) + max(0, int(tokens))
    remaining = usage.max_token_usage - usage.token_usage
    logger.info(f"Debited {tokens} tokens from {user_id}, {remaining} remaining")
    return remaining


def ensure_quota(db: Session, user_id: str) -> None:
    """
    Raise QuotaExceeded when the budget is used up.

    No-op unless ENABLE_USAGE_QUOTA is set.
    """
    if not settings.enable_usage_quota:
        return
    usage = _get_or_create(db, user_id)
    remaining = usage.max_token_usage - usage.token_usage
    if remaining <= 0:
        raise QuotaExceeded(remaining=remaining, limit=usage.max_token_usage)
