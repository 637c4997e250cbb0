"""
Upload one outbox entry to the server and wait for its text.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from inkpipe.errors import Conflict, InkpipeError
from inkpipe.outbox.captures import BinaryCapture, Capture, TextCapture
from inkpipe.outbox.client import DEFAULT_RETRY_POLICY, ApiClient, RetryPolicy, poll_for_result

logger = logging.getLogger(__name__)


def sync_capture(
    client: ApiClient,
    capture: Capture,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    sleep: Callable[[float], None] = time.sleep,
    server_file_id: Optional[int] = None,
    on_uploaded: Optional[Callable[[int, str], None]] = None,
    requeue_failed: bool = False,
) -> Dict[str, Any]:
    """
    Run the upload flow for *capture*.

    Text goes through ``/upload-text`` and is done immediately. Binaries do
    the presigned handshake and are then polled until terminal.

    When *server_file_id* is given the handshake already happened on an
    earlier attempt: nothing is uploaded again, the file is only polled
    (after a server-side re-queue when *requeue_failed* is set).
    *on_uploaded* receives the new file id and status as soon as
    ``/upload-complete`` accepts the upload, before polling starts.

    Returns the terminal status payload, ``{"id", "status", "text"|"error"}``.

    Raises:
        InkpipeError: Any network, auth or quota failure, or PollTimeout.
    """
    if server_file_id is not None:
        if requeue_failed:
            _requeue(client, server_file_id)
        return poll_for_result(client, server_file_id, policy, sleep=sleep)

    if isinstance(capture, TextCapture):
        response = client.upload_text(capture.resolved_name, capture.content)
        return {"id": response["fileId"], "status": response["status"], "text": response.get("text")}

    if not isinstance(capture, BinaryCapture):
        raise TypeError(f"Unknown capture type: {type(capture).__name__}")

    name = capture.resolved_name
    mime_type = capture.resolved_mime_type
    handshake = client.create_upload_url(name, mime_type)
    client.put_object(handshake["uploadUrl"], capture.path, mime_type)
    record = client.upload_complete(handshake["storageKey"], handshake["publicUrl"], name, mime_type)
    file_id = record["fileId"]
    logger.info(f"Uploaded {name} as file {file_id}, waiting for extraction")
    if on_uploaded is not None:
        on_uploaded(file_id, record.get("status"))
    return poll_for_result(client, file_id, policy, sleep=sleep)


def _requeue(client: ApiClient, file_id: int) -> None:
    try:
        client.retry_file(file_id)
        logger.info(f"[file {file_id}] Re-queued on the server")
    except Conflict:
        # Already left "error" (re-queued elsewhere); just poll
        logger.info(f"[file {file_id}] Not in error any more, polling")


class BackgroundSync:
    """Runs a drain loop on a daemon thread; at most one at a time.

    ``last_error`` holds the auth or quota error that stopped the last run,
    so the app can ask the user to sign in again or top up.
    """

    def __init__(self, drain_loop: Callable[[], Any]):
        self._drain_loop = drain_loop
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self.last_error: Optional[InkpipeError] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> threading.Thread:
        with self._lock:
            if self.running:
                logger.debug("Background sync already running")
                return self._thread
            self.last_error = None
            self._thread = threading.Thread(target=self._run, name="outbox-sync", daemon=True)
            self._thread.start()
            return self._thread

    def _run(self) -> None:
        try:
            self._drain_loop()
        except InkpipeError as e:
            self.last_error = e
            logger.error(f"Background sync stopped: {e.message}")
        except Exception as e:
            logger.exception(f"Error in background sync: {e}")
