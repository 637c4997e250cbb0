"""
Tests for inkpipe/auth.py
"""

from unittest.mock import Mock

import pytest

from inkpipe.auth import bearer_token, hash_token, issue_token, revoke_token, verify_token
from inkpipe.models import ApiToken


def _request(authorization=None):
    request = Mock()
    request.headers = {"Authorization": authorization} if authorization is not None else {}
    return request


@pytest.mark.unit
class TestBearerToken:
    def test_parses_header(self):
        assert bearer_token(_request("Bearer abc")) == "abc"

    def test_scheme_case_insensitive(self):
        assert bearer_token(_request("bearer abc")) == "abc"

    @pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer   ", "Basic dXNlcjpwYXNz"])
    def test_missing_or_other_scheme(self, header):
        assert bearer_token(_request(header)) is None


@pytest.mark.unit
class TestTokens:
    def test_only_hash_stored(self, db_session):
        token = issue_token(db_session, "alice", label="phone")

        row = db_session.query(ApiToken).one()
        assert row.token_hash == hash_token(token)
        assert token not in row.token_hash
        assert row.label == "phone"

    def test_verify(self, db_session):
        token = issue_token(db_session, "alice")
        assert verify_token(db_session, token) == "alice"
        assert verify_token(db_session, token + "x") is None

    def test_revoke(self, db_session):
        token = issue_token(db_session, "alice")
        assert revoke_token(db_session, token) is True
        assert verify_token(db_session, token) is None
        assert revoke_token(db_session, token) is False

    def test_tokens_are_unique(self, db_session):
        assert issue_token(db_session, "alice") != issue_token(db_session, "alice")
