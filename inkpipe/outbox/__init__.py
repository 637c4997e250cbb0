from inkpipe.outbox.captures import BinaryCapture, Capture, TextCapture
from inkpipe.outbox.client import ApiClient, RetryPolicy, poll_for_result
from inkpipe.outbox.store import Outbox

__all__ = [
    "ApiClient",
    "BinaryCapture",
    "Capture",
    "Outbox",
    "RetryPolicy",
    "TextCapture",
    "poll_for_result",
]
