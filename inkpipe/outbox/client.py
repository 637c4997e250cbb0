"""
HTTP client the outbox uses to talk to the inkpipe API.

Every failure is raised as an :mod:`inkpipe.errors` exception so the drain
loop only has one vocabulary to deal with.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

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
from inkpipe.utils.file_status import is_terminal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How long to keep polling a file before giving up.

    Delay before attempt ``n`` (0-based) is
    ``min(interval * backoff ** n, max_interval)``.
    """

    max_attempts: int = 30
    interval: float = 2.0
    backoff: float = 1.0
    max_interval: float = 30.0

    def delay(self, attempt: int) -> float:
        return min(self.interval * (self.backoff**attempt), self.max_interval)


DEFAULT_RETRY_POLICY = RetryPolicy()


def _detail(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason or ""
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body)
    return str(body)


class ApiClient:
    """Bearer-authenticated client for one inkpipe server."""

    def __init__(self, base_url: str, auth_token: str, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._headers = {"Authorization": f"Bearer {auth_token}"}

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, headers=self._headers, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise TransientIOError(f"{method} {path} failed: {e}") from e
        self._raise_for_status(response, f"{method} {path}")
        return response.json()

    @staticmethod
    def _raise_for_status(response: requests.Response, what: str) -> None:
        status = response.status_code
        if status < 400:
            return
        detail = _detail(response)
        if status == 401:
            raise Unauthenticated(detail or "Unauthorized")
        if status == 403:
            raise Unauthorized(detail or "Forbidden")
        if status == 429:
            try:
                body = response.json()
            except ValueError:
                body = {}
            raise QuotaExceeded(body.get("remaining", 0), body.get("limit", 0), detail or None)
        if status == 409:
            raise Conflict(f"{what} returned {status}: {detail}")
        if status >= 500:
            raise TransientIOError(f"{what} returned {status}: {detail}")
        raise InkpipeError(f"{what} returned {status}: {detail}")

    def upload_text(self, name: str, content: str) -> Dict[str, Any]:
        return self._request("POST", "/upload-text", json={"name": name, "content": content})

    def create_upload_url(self, filename: str, content_type: str) -> Dict[str, Any]:
        return self._request("POST", "/upload-url", json={"filename": filename, "contentType": content_type})

    def put_object(self, upload_url: str, path: str, content_type: str) -> None:
        """PUT the file straight to the presigned object-store URL (no bearer token)."""
        try:
            with open(path, "rb") as f:
                response = self.session.put(
                    upload_url, data=f, headers={"Content-Type": content_type}, timeout=self.timeout
                )
        except requests.exceptions.RequestException as e:
            raise TransientIOError(f"Upload to object store failed: {e}") from e
        self._raise_for_status(response, "PUT object")

    def upload_complete(self, storage_key: str, public_url: str, original_name: str, content_type: str) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/upload-complete",
            json={
                "storageKey": storage_key,
                "publicUrl": public_url,
                "originalName": original_name,
                "contentType": content_type,
            },
        )

    def get_status(self, file_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/files/{file_id}/status")

    def retry_file(self, file_id: int) -> Dict[str, Any]:
        """Move a failed file back to ``pending`` on the server (409 unless it is in ``error``)."""
        return self._request("POST", f"/files/{file_id}/retry")


def poll_for_result(
    client: ApiClient,
    file_id: int,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """
    Poll ``/files/{id}/status`` until the file is ``completed`` or ``error``.

    A transient failure of one poll counts as an attempt and polling goes
    on. Auth and ownership errors propagate immediately.

    Raises:
        PollTimeout: No terminal status after ``policy.max_attempts`` polls.
    """
    for attempt in range(policy.max_attempts):
        try:
            payload = client.get_status(file_id)
            if is_terminal(payload.get("status")):
                return payload
            logger.debug(f"[file {file_id}] status {payload.get('status')} (attempt {attempt + 1})")
        except TransientIOError as e:
            logger.warning(f"[file {file_id}] status check {attempt + 1} failed: {e.message}")

        if attempt + 1 < policy.max_attempts:
            sleep(policy.delay(attempt))

    raise PollTimeout(file_id, policy.max_attempts)
