"""
Tests for inkpipe/utils/usage.py
"""

import pytest

from inkpipe.config import settings
from inkpipe.errors import QuotaExceeded
from inkpipe.models import UserUsage
from inkpipe.utils.usage import check_token_usage, ensure_quota, increment_token_usage


@pytest.mark.unit
class TestUsage:
    def test_new_user_gets_free_tier(self, db_session):
        assert check_token_usage(db_session, "alice") == settings.free_tier_tokens
        row = db_session.query(UserUsage).filter(UserUsage.user_id == "alice").one()
        assert row.token_usage == 0

    def test_increment(self, db_session):
        db_session.add(UserUsage(user_id="alice", token_usage=100, max_token_usage=1000))
        db_session.commit()

        assert increment_token_usage(db_session, "alice", 850) == 50
        assert check_token_usage(db_session, "alice") == 50

    def test_negative_debit_ignored(self, db_session):
        db_session.add(UserUsage(user_id="alice", token_usage=100, max_token_usage=1000))
        db_session.commit()
        assert increment_token_usage(db_session, "alice", -5) == 900

    def test_balance_may_go_negative(self, db_session):
        db_session.add(UserUsage(user_id="alice", token_usage=900, max_token_usage=1000))
        db_session.commit()
        assert increment_token_usage(db_session, "alice", 850) == -750


@pytest.mark.unit
class TestEnsureQuota:
    def test_disabled_never_raises(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "enable_usage_quota", False)
        db_session.add(UserUsage(user_id="alice", token_usage=5000, max_token_usage=10))
        db_session.commit()
        ensure_quota(db_session, "alice")

    def test_exhausted(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "enable_usage_quota", True)
        db_session.add(UserUsage(user_id="alice", token_usage=1200, max_token_usage=1000))
        db_session.commit()

        with pytest.raises(QuotaExceeded) as exc_info:
            ensure_quota(db_session, "alice")

        assert exc_info.value.remaining == -200
        assert exc_info.value.limit == 1000
        assert exc_info.value.status_code == 429

    def test_remaining_budget(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "enable_usage_quota", True)
        ensure_quota(db_session, "new-user")
