"""
Tests for inkpipe/outbox/client.py and inkpipe/outbox/sync.py
"""

import json
from unittest.mock import MagicMock

import pytest
import requests

from inkpipe.errors import (
    Conflict,
    InkpipeError,
    PollTimeout,
    QuotaExceeded,
    TransientIOError,
    Unauthenticated,
    Unauthorized,
)
from inkpipe.outbox import ApiClient, BinaryCapture, RetryPolicy, TextCapture, poll_for_result
from inkpipe.outbox.sync import sync_capture


def _response(status, body=None):
    response = requests.Response()
    response.status_code = status
    response._content = json.dumps(body).encode("utf-8") if body is not None else b""
    return response


@pytest.mark.unit
class TestRetryPolicy:
    def test_constant_interval(self):
        policy = RetryPolicy(interval=2.0)
        assert [policy.delay(i) for i in range(3)] == [2.0, 2.0, 2.0]

    def test_backoff_capped(self):
        policy = RetryPolicy(interval=1.0, backoff=2.0, max_interval=5.0)
        assert [policy.delay(i) for i in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


@pytest.mark.unit
class TestErrorMapping:
    @pytest.mark.parametrize(
        "status,error",
        [
            (401, Unauthenticated),
            (403, Unauthorized),
            (500, TransientIOError),
            (503, TransientIOError),
            (409, Conflict),
            (400, InkpipeError),
        ],
    )
    def test_status_codes(self, status, error):
        with pytest.raises(error):
            ApiClient._raise_for_status(_response(status, {"detail": "nope"}), "GET /x")

    def test_quota_carries_budget(self):
        body = {"detail": "Credits limit exceeded", "remaining": -20, "limit": 1000}
        with pytest.raises(QuotaExceeded) as exc_info:
            ApiClient._raise_for_status(_response(429, body), "POST /upload-url")
        assert exc_info.value.remaining == -20
        assert exc_info.value.limit == 1000
        assert exc_info.value.message == "Credits limit exceeded"

    def test_success_passes(self):
        ApiClient._raise_for_status(_response(200, {}), "GET /x")

    def test_connection_error_is_transient(self):
        session = MagicMock()
        session.request.side_effect = requests.exceptions.ConnectionError("offline")
        client = ApiClient("https://api.example.com/", "tok", session=session)
        with pytest.raises(TransientIOError):
            client.get_status(1)

    def test_requests_carry_bearer(self):
        session = MagicMock()
        session.request.return_value = _response(200, {"id": 1, "status": "pending"})
        client = ApiClient("https://api.example.com/", "tok", session=session)

        assert client.get_status(1) == {"id": 1, "status": "pending"}

        method, url = session.request.call_args.args
        assert (method, url) == ("GET", "https://api.example.com/files/1/status")
        assert session.request.call_args.kwargs["headers"] == {"Authorization": "Bearer tok"}

    def test_put_object_has_no_bearer(self, tmp_path):
        path = tmp_path / "a.jpg"
        path.write_bytes(b"jpeg")
        session = MagicMock()
        session.put.return_value = _response(200)
        client = ApiClient("https://api.example.com", "tok", session=session)

        client.put_object("https://bucket/signed", str(path), "image/jpeg")

        assert session.put.call_args.kwargs["headers"] == {"Content-Type": "image/jpeg"}


@pytest.mark.unit
class TestPollForResult:
    def test_returns_terminal_payload(self):
        client = MagicMock()
        client.get_status.side_effect = [
            {"id": 3, "status": "pending"},
            {"id": 3, "status": "processing"},
            {"id": 3, "status": "completed", "text": "done"},
        ]
        sleeps = []

        result = poll_for_result(client, 3, RetryPolicy(max_attempts=5, interval=2.0), sleep=sleeps.append)

        assert result == {"id": 3, "status": "completed", "text": "done"}
        assert sleeps == [2.0, 2.0]

    def test_error_is_terminal(self):
        client = MagicMock()
        client.get_status.return_value = {"id": 3, "status": "error", "error": "bad"}
        assert poll_for_result(client, 3, RetryPolicy(max_attempts=5), sleep=lambda s: None)["status"] == "error"

    def test_gives_up(self):
        client = MagicMock()
        client.get_status.return_value = {"id": 3, "status": "processing"}
        sleeps = []

        with pytest.raises(PollTimeout) as exc_info:
            poll_for_result(client, 3, RetryPolicy(max_attempts=4, interval=1.0), sleep=sleeps.append)

        assert exc_info.value.attempts == 4
        assert client.get_status.call_count == 4
        assert len(sleeps) == 3
        assert isinstance(exc_info.value, TransientIOError)

    def test_transient_poll_failures_tolerated(self):
        client = MagicMock()
        client.get_status.side_effect = [
            TransientIOError("502"),
            {"id": 3, "status": "completed", "text": "ok"},
        ]
        result = poll_for_result(client, 3, RetryPolicy(max_attempts=3), sleep=lambda s: None)
        assert result["text"] == "ok"

    def test_auth_failure_propagates(self):
        client = MagicMock()
        client.get_status.side_effect = Unauthenticated()
        with pytest.raises(Unauthenticated):
            poll_for_result(client, 3, RetryPolicy(max_attempts=3), sleep=lambda s: None)
        assert client.get_status.call_count == 1


@pytest.mark.unit
class TestSyncCapture:
    def test_text(self):
        client = MagicMock()
        client.upload_text.return_value = {"fileId": 9, "status": "completed", "text": "# Hi"}

        result = sync_capture(client, TextCapture(content="# Hi", name="hi.md"))

        assert result == {"id": 9, "status": "completed", "text": "# Hi"}
        client.upload_text.assert_called_once_with("hi.md", "# Hi")
        client.create_upload_url.assert_not_called()

    def test_binary_handshake(self, tmp_path):
        path = tmp_path / "memo.mp3"
        path.write_bytes(b"mp3")
        client = MagicMock()
        client.create_upload_url.return_value = {
            "uploadUrl": "https://bucket/signed",
            "storageKey": "uploads/user/k-memo.mp3",
            "publicUrl": "https://files.example.com/uploads/user/k-memo.mp3",
        }
        client.upload_complete.return_value = {"fileId": 4, "status": "pending"}
        client.get_status.return_value = {"id": 4, "status": "completed", "text": "hello"}

        result = sync_capture(client, BinaryCapture(path=str(path)), RetryPolicy(max_attempts=2), sleep=lambda s: None)

        assert result["text"] == "hello"
        client.create_upload_url.assert_called_once_with("memo.mp3", "audio/mpeg")
        client.put_object.assert_called_once_with("https://bucket/signed", str(path), "audio/mpeg")
        client.upload_complete.assert_called_once_with(
            "uploads/user/k-memo.mp3",
            "https://files.example.com/uploads/user/k-memo.mp3",
            "memo.mp3",
            "audio/mpeg",
        )
        client.get_status.assert_called_once_with(4)

    def test_unknown_capture(self):
        with pytest.raises(TypeError):
            sync_capture(MagicMock(), object())

    def test_upload_complete_reported_before_polling(self, tmp_path):
        path = tmp_path / "scan.jpg"
        path.write_bytes(b"jpeg")
        events = []
        client = MagicMock()
        client.create_upload_url.return_value = {"uploadUrl": "u", "storageKey": "k", "publicUrl": "p"}
        client.upload_complete.return_value = {"fileId": 5, "status": "pending"}
        client.get_status.side_effect = lambda file_id: events.append("poll") or {"id": file_id, "status": "completed"}

        sync_capture(
            client,
            BinaryCapture(path=str(path)),
            RetryPolicy(max_attempts=2),
            sleep=lambda s: None,
            on_uploaded=lambda file_id, status: events.append((file_id, status)),
        )

        assert events == [(5, "pending"), "poll"]

    def test_known_server_file_only_polled(self, tmp_path):
        path = tmp_path / "scan.jpg"
        path.write_bytes(b"jpeg")
        client = MagicMock()
        client.get_status.return_value = {"id": 5, "status": "completed", "text": "ok"}

        result = sync_capture(client, BinaryCapture(path=str(path)), server_file_id=5, sleep=lambda s: None)

        assert result["text"] == "ok"
        client.create_upload_url.assert_not_called()
        client.put_object.assert_not_called()
        client.upload_complete.assert_not_called()
        client.retry_file.assert_not_called()
        client.get_status.assert_called_once_with(5)

    def test_failed_server_file_requeued_then_polled(self):
        client = MagicMock()
        client.get_status.return_value = {"id": 5, "status": "completed", "text": "ok"}

        sync_capture(client, TextCapture(content="x"), server_file_id=5, requeue_failed=True, sleep=lambda s: None)

        client.retry_file.assert_called_once_with(5)
        client.upload_text.assert_not_called()
        client.get_status.assert_called_once_with(5)

    def test_requeue_conflict_still_polls(self):
        client = MagicMock()
        client.retry_file.side_effect = Conflict("POST /files/5/retry returned 409: File is not in error state")
        client.get_status.return_value = {"id": 5, "status": "processing"}

        with pytest.raises(PollTimeout):
            sync_capture(
                client,
                TextCapture(content="x"),
                RetryPolicy(max_attempts=1),
                server_file_id=5,
                requeue_failed=True,
                sleep=lambda s: None,
            )

        client.get_status.assert_called_once_with(5)


@pytest.mark.unit
class TestRetryFile:
    def test_posts_to_retry_route(self):
        session = MagicMock()
        session.request.return_value = _response(200, {"id": 5, "status": "pending"})
        client = ApiClient("https://api.example.com", "tok", session=session)

        assert client.retry_file(5) == {"id": 5, "status": "pending"}

        method, url = session.request.call_args.args
        assert (method, url) == ("POST", "https://api.example.com/files/5/retry")

    def test_not_in_error_is_conflict(self):
        session = MagicMock()
        session.request.return_value = _response(409, {"detail": "File is not in error state"})
        client = ApiClient("https://api.example.com", "tok", session=session)

        with pytest.raises(Conflict):
            client.retry_file(5)
