"""Exception hierarchy for the ingestion pipeline.

Each class maps to one entry of the error taxonomy and carries the HTTP
status the API layer answers with when it escapes a request handler::

    InkpipeError
    +-- Unauthenticated      no or invalid identity (401)
    +-- Unauthorized         valid identity, wrong owner (403)
    +-- QuotaExceeded        token budget exhausted (429)
    +-- Conflict             request does not fit the record's status (409)
    +-- TransientIOError     network / object store / API hiccup (503)
    |   +-- PollTimeout      client gave up waiting for a terminal status
    +-- ExtractionFailure    terminal for the file, written to ``error``
    +-- CorruptLocalState    outbox entry lost its payload (client only)
"""


class InkpipeError(Exception):
    """Base exception for all pipeline errors."""

    status_code = 500

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        self.message = message
        super().__init__(message)


class Unauthenticated(InkpipeError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class Unauthorized(InkpipeError):
    status_code = 403

    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(message)


class QuotaExceeded(InkpipeError):
    """The caller's token budget is used up; the user has to top up."""

    status_code = 429

    def __init__(self, remaining: int, limit: int, message: str | None = None) -> None:
        self.remaining = remaining
        self.limit = limit
        super().__init__(message or "Credits limit exceeded. Top up your credits in settings.")


class TransientIOError(InkpipeError):
    status_code = 503


class Conflict(InkpipeError):
    status_code = 409


class ExtractionFailure(InkpipeError):
    status_code = 422


class CorruptLocalState(InkpipeError):
    pass


class PollTimeout(TransientIOError):
    """The file did not reach a terminal status within the polling budget."""

    def __init__(self, file_id, attempts: int) -> None:
        self.file_id = file_id
        self.attempts = attempts
        super().__init__(f"File {file_id} still processing after {attempts} status checks")
