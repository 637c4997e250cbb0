"""
Device-local outbox.

Captures are saved to disk the moment they are taken, with no network
access, and uploaded later by a drain loop. Layout under ``root_dir``::

    pending_uploads/<localId>/metadata.json
    pending_uploads/<localId>/content.txt        (text captures)
    pending_uploads/<localId>/<file name>        (binary captures)
    previews/<localId>-thumb.jpg
    sync_queue.json                              (JSON list of local ids)

The entry directory is written before its id is appended to the queue, so
a crash in between leaves an orphan directory, never a lost capture. The
queue file is always rewritten whole through a temp file and
``os.replace``.

Once ``/upload-complete`` accepts a binary its ``serverFileId`` is written
to the entry's metadata, and later attempts only poll that file. An entry
that failed waits ``entry_backoff.delay(attempts - 1)`` seconds after its
``lastAttempt`` before it is tried again.

Entries that finished syncing stay on disk for offline viewing until
:meth:`Outbox.remove` is called.
"""

import json
import logging
import os
import shutil
import tempfile
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from inkpipe.errors import (
    CorruptLocalState,
    InkpipeError,
    QuotaExceeded,
    TransientIOError,
    Unauthenticated,
    Unauthorized,
)
from inkpipe.outbox.captures import BinaryCapture, Capture, TextCapture, new_local_id
from inkpipe.outbox.client import DEFAULT_RETRY_POLICY, ApiClient, RetryPolicy
from inkpipe.outbox.preview import generate_preview
from inkpipe.outbox.sync import BackgroundSync, sync_capture
from inkpipe.utils.filename_utils import sanitize_filename

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
TEXT_CONTENT_FILE = "content.txt"
QUEUE_FILE = "sync_queue.json"

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"

# Wait before retrying an entry that failed: 30s, 1m, 2m, ... capped at 1h
DEFAULT_ENTRY_BACKOFF = RetryPolicy(interval=30.0, backoff=2.0, max_interval=3600.0)

# Nothing can sync until the user signs in again or tops up
STOPPING_ERRORS = (Unauthenticated, Unauthorized, QuotaExceeded)


def _write_json_atomic(path: str, data: Any) -> None:
    directory = os.path.dirname(path)
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class Outbox:
    """Offline-first upload queue rooted at *root_dir*."""

    def __init__(
        self,
        root_dir: str,
        base_url: Optional[str] = None,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        client_factory: Optional[Callable[[str], ApiClient]] = None,
        sleep: Callable[[float], None] = time.sleep,
        entry_backoff: RetryPolicy = DEFAULT_ENTRY_BACKOFF,
        clock: Callable[[], float] = time.time,
    ):
        self.root_dir = root_dir
        self.pending_dir = os.path.join(root_dir, "pending_uploads")
        self.previews_dir = os.path.join(root_dir, "previews")
        self.queue_path = os.path.join(root_dir, QUEUE_FILE)
        self.retry_policy = retry_policy
        self.entry_backoff = entry_backoff
        self._client_factory = client_factory or (lambda token: ApiClient(base_url, token))
        self._sleep = sleep
        self._clock = clock
        self._queue_lock = threading.Lock()
        self._sync_args = (None, 5.0)
        self._background = BackgroundSync(lambda: self.run_drain_loop(*self._sync_args))

        os.makedirs(self.pending_dir, exist_ok=True)
        os.makedirs(self.previews_dir, exist_ok=True)

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def entry_dir(self, local_id: str) -> str:
        return os.path.join(self.pending_dir, local_id)

    def enqueue(self, capture: Capture) -> str:
        """Save *capture* locally and queue it for upload. Returns the local id."""
        while True:
            local_id = new_local_id()
            entry_dir = self.entry_dir(local_id)
            try:
                os.makedirs(entry_dir)
                break
            except FileExistsError:
                continue

        if isinstance(capture, TextCapture):
            name = capture.resolved_name
            capture = TextCapture(content=capture.content, name=name)
            mime_type = capture.mime_type
            with open(os.path.join(entry_dir, TEXT_CONTENT_FILE), "w", encoding="utf-8") as f:
                f.write(capture.content)
        else:
            name = capture.resolved_name
            mime_type = capture.resolved_mime_type
            stored_name = sanitize_filename(name)
            if stored_name in (METADATA_FILE, TEXT_CONTENT_FILE):
                stored_name = f"file-{stored_name}"
            shutil.copyfile(capture.path, os.path.join(entry_dir, stored_name))

        preview = generate_preview(capture, local_id, self.previews_dir)
        metadata = {
            "name": name,
            "mimeType": mime_type,
            "status": STATUS_PENDING,
            "localId": local_id,
            "createdAt": self._now_iso(),
            "previewType": preview.preview_type,
            "textPreview": preview.preview_text,
            "thumbnailPath": preview.thumbnail_path,
        }
        self._write_metadata(local_id, metadata)

        with self._queue_lock:
            queue = self._read_queue()
            if local_id not in queue:
                queue.append(local_id)
                self._write_queue(queue)

        logger.info(f"Saved {name} locally as {local_id}")
        return local_id

    def get_entry(self, local_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self._read_metadata(local_id)
        except CorruptLocalState:
            return None

    def list_entries(self) -> List[Dict[str, Any]]:
        """Metadata of every local entry, newest first."""
        entries = []
        for local_id in os.listdir(self.pending_dir):
            entry = self.get_entry(local_id)
            if entry is not None:
                entries.append(entry)
        return sorted(entries, key=lambda e: e.get("createdAt") or "", reverse=True)

    def remove(self, local_id: str) -> bool:
        """Delete an entry and its preview, and drop it from the queue."""
        with self._queue_lock:
            queue = self._read_queue()
            if local_id in queue:
                queue.remove(local_id)
                self._write_queue(queue)

        entry_dir = self.entry_dir(local_id)
        existed = os.path.isdir(entry_dir)
        shutil.rmtree(entry_dir, ignore_errors=True)
        thumbnail = os.path.join(self.previews_dir, f"{local_id}-thumb.jpg")
        if os.path.exists(thumbnail):
            os.unlink(thumbnail)
        return existed

    def queue(self) -> List[str]:
        with self._queue_lock:
            return list(self._read_queue())

    # ------------------------------------------------------------------
    # Draining
    # ------------------------------------------------------------------

    def drain_one(self, auth_token: str) -> bool:
        """
        Sync the first queued entry that is not backing off.

        A transient failure (network, poll timeout) or a server-side
        ``error`` moves the entry to the tail. A request the server rejects
        outright drops it from the queue with status ``error``.

        Returns True while another queued entry is due now. Entries still
        inside their backoff window do not count, so a drain loop stops
        rather than spinning on them.

        Raises:
            Unauthenticated, Unauthorized, QuotaExceeded: The entry is left
                in place, unchanged, for when the user has acted.
        """
        now = self._clock()
        with self._queue_lock:
            local_id = next((item for item in self._read_queue() if self._is_due(item, now)), None)
        if local_id is None:
            return False

        try:
            metadata = self._read_metadata(local_id)
            capture = self._load_capture(local_id, metadata)
        except CorruptLocalState as e:
            logger.error(f"Dropping {local_id} from sync queue: {e.message}")
            self._mark_corrupt(local_id, e.message)
            return self._finish(local_id, requeue=False)

        server_file_id = metadata.get("serverFileId")
        requeue_failed = server_file_id is not None and metadata.get("status") == STATUS_ERROR

        def remember(file_id: int, status: Optional[str]) -> None:
            metadata.update({"serverFileId": file_id, "status": status or STATUS_PENDING})
            self._write_metadata(local_id, metadata)

        try:
            client = self._client_factory(auth_token)
            result = sync_capture(
                client,
                capture,
                self.retry_policy,
                sleep=self._sleep,
                server_file_id=server_file_id,
                on_uploaded=remember,
                requeue_failed=requeue_failed,
            )
        except STOPPING_ERRORS as e:
            logger.error(f"Sync stopped at {local_id}: {e.message}")
            raise
        except TransientIOError as e:
            logger.warning(f"Sync of {local_id} failed, will retry later: {e.message}")
            self._record_attempt(local_id, metadata, self._waiting_status(metadata), e.message)
            return self._finish(local_id, requeue=True)
        except InkpipeError as e:
            logger.error(f"Server rejected {local_id}, dropping it from the sync queue: {e.message}")
            self._record_attempt(local_id, metadata, STATUS_ERROR, e.message)
            return self._finish(local_id, requeue=False)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.warning(f"Sync of {local_id} failed, will retry later: {message}")
            self._record_attempt(local_id, metadata, self._waiting_status(metadata), message)
            return self._finish(local_id, requeue=True)

        if result.get("status") == STATUS_COMPLETED:
            metadata.update(
                {
                    "status": STATUS_COMPLETED,
                    "serverFileId": result.get("id"),
                    "text": result.get("text"),
                    "processedAt": self._now_iso(),
                    "error": None,
                }
            )
            self._write_metadata(local_id, metadata)
            logger.info(f"Synced {local_id} as file {result.get('id')}")
            return self._finish(local_id, requeue=False)

        metadata["serverFileId"] = result.get("id")
        self._record_attempt(local_id, metadata, STATUS_ERROR, result.get("error") or "Processing failed")
        return self._finish(local_id, requeue=True)

    def run_drain_loop(self, auth_token: str, interval: float = 5.0) -> int:
        """Drain until no queued entry is due. Returns the number of attempts.

        Auth and quota errors from :meth:`drain_one` end the loop and propagate.
        """
        attempts = 0
        while True:
            has_more = self.drain_one(auth_token)
            attempts += 1
            if not has_more:
                return attempts
            self._sleep(interval)

    def start_background_sync(self, auth_token: str, interval: float = 5.0):
        """Start the drain loop on a daemon thread unless one is already running."""
        if not self._background.running:
            self._sync_args = (auth_token, interval)
        return self._background.start()

    @property
    def sync_error(self) -> Optional[InkpipeError]:
        """The auth or quota error that stopped the last background sync, if any."""
        return self._background.last_error

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _now_iso(self) -> str:
        return datetime.fromtimestamp(self._clock(), timezone.utc).isoformat()

    def _is_due(self, local_id: str, now: float) -> bool:
        """Whether *local_id* may be attempted at *now*. Caller holds ``_queue_lock``."""
        try:
            metadata = self._read_metadata(local_id)
        except CorruptLocalState:
            # Picked up so the drain can drop it
            return True
        attempts = metadata.get("attempts") or 0
        last_attempt = metadata.get("lastAttempt")
        if not attempts or not last_attempt:
            return True
        try:
            last = datetime.fromisoformat(last_attempt).timestamp()
        except ValueError:
            return True
        return now >= last + self.entry_backoff.delay(attempts - 1)

    def _finish(self, local_id: str, requeue: bool) -> bool:
        with self._queue_lock:
            queue = [item for item in self._read_queue() if item != local_id]
            if requeue:
                queue.append(local_id)
            self._write_queue(queue)
            now = self._clock()
            return any(self._is_due(item, now) for item in queue)

    @staticmethod
    def _waiting_status(metadata: Dict[str, Any]) -> str:
        return STATUS_PROCESSING if metadata.get("serverFileId") is not None else STATUS_PENDING

    def _record_attempt(self, local_id: str, metadata: Dict[str, Any], status: str, message: str) -> None:
        metadata.update(
            {
                "status": status,
                "error": message,
                "lastAttempt": self._now_iso(),
                "attempts": (metadata.get("attempts") or 0) + 1,
            }
        )
        self._write_metadata(local_id, metadata)

    def _mark_corrupt(self, local_id: str, message: str) -> None:
        metadata_path = os.path.join(self.entry_dir(local_id), METADATA_FILE)
        if not os.path.exists(metadata_path):
            return
        try:
            metadata = self._read_metadata(local_id)
        except CorruptLocalState:
            return
        self._record_attempt(local_id, metadata, STATUS_ERROR, message)

    def _load_capture(self, local_id: str, metadata: Dict[str, Any]) -> Capture:
        entry_dir = self.entry_dir(local_id)
        text_path = os.path.join(entry_dir, TEXT_CONTENT_FILE)
        if os.path.exists(text_path):
            with open(text_path, encoding="utf-8") as f:
                return TextCapture(content=f.read(), name=metadata.get("name"))

        payloads = sorted(name for name in os.listdir(entry_dir) if name not in (METADATA_FILE, TEXT_CONTENT_FILE))
        if not payloads:
            raise CorruptLocalState(f"Payload of {local_id} is missing")
        return BinaryCapture(
            path=os.path.join(entry_dir, payloads[0]),
            mime_type=metadata.get("mimeType"),
            name=metadata.get("name"),
        )

    def _read_metadata(self, local_id: str) -> Dict[str, Any]:
        path = os.path.join(self.entry_dir(local_id), METADATA_FILE)
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError as e:
            raise CorruptLocalState(f"Entry {local_id} has no metadata") from e
        except (OSError, ValueError) as e:
            raise CorruptLocalState(f"Metadata of {local_id} is unreadable: {e}") from e

    def _write_metadata(self, local_id: str, metadata: Dict[str, Any]) -> None:
        _write_json_atomic(os.path.join(self.entry_dir(local_id), METADATA_FILE), metadata)

    def _read_queue(self) -> List[str]:
        """Current queue. Caller holds ``_queue_lock``."""
        if not os.path.exists(self.queue_path):
            return []
        try:
            with open(self.queue_path, encoding="utf-8") as f:
                queue = json.load(f)
            if isinstance(queue, list):
                return [str(item) for item in queue]
            logger.warning(f"{self.queue_path} does not hold a list, rebuilding")
        except (OSError, ValueError) as e:
            logger.warning(f"Error reading sync queue, rebuilding from entries: {e}")
        return self._rebuild_queue()

    def _rebuild_queue(self) -> List[str]:
        """Unsynced entries, oldest first."""
        entries = [e for e in self.list_entries() if e.get("status") != STATUS_COMPLETED]
        return [e["localId"] for e in reversed(entries) if e.get("localId")]

    def _write_queue(self, queue: List[str]) -> None:
        _write_json_atomic(self.queue_path, queue)
