#!/usr/bin/env python3
"""Retry policy for inkpipe Celery tasks.

Only :class:`~inkpipe.errors.TransientIOError` is retried: an object store
or inference API hiccup may clear up, an :class:`ExtractionFailure` never
will. Countdowns follow a fixed ladder with optional ±20 % jitter::

    from inkpipe.tasks.retry_config import ExtractionTaskWithRetry

    @celery.task(base=ExtractionTaskWithRetry, bind=True)
    def my_task(self, file_id):
        ...
"""

import logging
import random
from typing import Any

from celery import Task

from inkpipe.errors import TransientIOError

logger = logging.getLogger(__name__)

#: Per-retry countdowns in seconds (30 s, 2 min, 10 min).
DEFAULT_RETRY_DELAYS: list[int] = [30, 120, 600]


def compute_countdown(
    retries: int,
    base_delays: list[int] | None = None,
    jitter: bool = True,
) -> int:
    """Seconds to wait before retry number *retries* (0-based).

    Past the end of *base_delays* the last delay doubles per extra attempt.

    Examples::

        >>> compute_countdown(0, [30, 120, 600], jitter=False)
        30
        >>> compute_countdown(3, [30, 120, 600], jitter=False)
        1200
    """
    delays = base_delays if base_delays is not None else DEFAULT_RETRY_DELAYS

    if not delays:
        base = 30
    elif retries < len(delays):
        base = delays[retries]
    else:
        base = delays[-1] * (2 ** (retries - len(delays) + 1))

    if jitter:
        base = int(base * (1.0 + random.uniform(-0.2, 0.2)))  # noqa: S311

    return max(base, 1)


class BaseTaskWithRetry(Task):
    """Celery task base that retries transient failures with backoff.

    Subclasses tune ``max_retries``, ``retry_delays`` and ``retry_jitter``.
    """

    autoretry_for = (TransientIOError,)
    max_retries: int = 3
    retry_kwargs: dict = {"max_retries": 3}
    retry_delays: list[int] | None = None
    retry_jitter: bool = True

    def retry(
        self,
        args: Any = None,
        kwargs: Any = None,
        exc: BaseException | None = None,
        throw: bool = True,
        eta: Any = None,
        countdown: int | None = None,
        max_retries: int | None = None,
        **options: Any,
    ) -> Any:
        """Retry the task, filling in the backoff countdown when none is given."""
        if countdown is None and eta is None:
            countdown = compute_countdown(
                retries=self.request.retries,
                base_delays=self.retry_delays,
                jitter=self.retry_jitter,
            )
            logger.info(f"Retry {self.request.retries + 1} for task {self.name} in {countdown}s")

        return super().retry(
            args=args,
            kwargs=kwargs,
            exc=exc,
            throw=throw,
            eta=eta,
            countdown=countdown,
            max_retries=max_retries,
            **options,
        )


class ExtractionTaskWithRetry(BaseTaskWithRetry):
    """Longer waits so inference API rate-limit windows can clear.

    Default: 3 retries at 60 s, 300 s, 1200 s.
    """

    retry_delays: list[int] = [60, 300, 1200]
