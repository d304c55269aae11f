"""Job status poller - drives one job to a terminal state.

States:
    PENDING → IN_PROGRESS → COMPLETED | FAILED | TIMEOUT | CANCELLED

The loop sleeps ``interval`` seconds, issues one status call, and repeats.
It never has more than one request outstanding for a job.  Bounded by
``max_attempts`` and an optional wall-clock ``deadline``; when either runs
out the job ends as ``TIMEOUT``.  Setting the ``cancel`` event stops the
loop locally (the upstream job keeps running).

Progress is an estimate: it starts at 10, rises by 10 per non-terminal poll,
is capped at 95, and jumps to 100 only on ``COMPLETED``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from app.fal.client import FalQueueClient
from app.logging_config import bind_job_id
from app.models.job import (
    JOB_STATUS_CANCELLED,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_IN_PROGRESS,
    JOB_STATUS_PENDING,
    JOB_STATUS_TIMEOUT,
)

logger = logging.getLogger(__name__)

INITIAL_PROGRESS = 10
PROGRESS_STEP = 10
PROGRESS_CAP = 95
DEFAULT_FAILURE_MESSAGE = "Video generation failed."

_UPSTREAM_STATUS = {
    "IN_QUEUE": JOB_STATUS_PENDING,
    "PENDING": JOB_STATUS_PENDING,
    "IN_PROGRESS": JOB_STATUS_IN_PROGRESS,
    "COMPLETED": JOB_STATUS_COMPLETED,
    "FAILED": JOB_STATUS_FAILED,
    "ERROR": JOB_STATUS_FAILED,
}


@dataclass
class PollOutcome:
    """Terminal result of polling one job."""

    job_id: str
    status: str
    progress: int
    attempts: int
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == JOB_STATUS_COMPLETED


def map_upstream_status(raw: str | None) -> str:
    """Translate an upstream status string; unknown values count as in progress."""
    status = _UPSTREAM_STATUS.get((raw or "").upper())
    if status is None:
        logger.warning("Unknown upstream job status %r, treating as in progress", raw)
        return JOB_STATUS_IN_PROGRESS
    return status


class JobStatusPoller:
    def __init__(
        self,
        client: FalQueueClient,
        models: dict[str, str],
        *,
        interval: float = 2.0,
        max_attempts: int = 150,
        deadline: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.client = client
        self.models = models
        self.interval = interval
        self.max_attempts = max_attempts
        self.deadline = deadline or None
        self._sleep = sleep
        self._clock = clock

    async def poll(
        self,
        job_id: str,
        *,
        kind: str = "video",
        cancel: asyncio.Event | None = None,
        on_update: Callable[[str, int], None] | None = None,
    ) -> PollOutcome:
        """Poll ``job_id`` until it reaches a terminal state.

        ``on_update(status, progress)`` is called after every poll, including
        the terminal one.  Errors from the status endpoint propagate.
        """
        model = self.models[kind]
        progress = INITIAL_PROGRESS
        started = self._clock()

        def notify(status: str) -> None:
            if on_update is not None:
                on_update(status, progress)

        def cancelled() -> bool:
            return cancel is not None and cancel.is_set()

        with bind_job_id(job_id):
            for attempt in range(1, self.max_attempts + 1):
                if cancelled():
                    return self._cancelled(job_id, progress, attempt - 1, notify)
                await self._sleep(self.interval)
                if cancelled():
                    return self._cancelled(job_id, progress, attempt - 1, notify)

                body = await self.client.status(model, job_id)
                status = map_upstream_status(body.get("status"))
                logger.debug("Poll %d: %s", attempt, status)

                if status == JOB_STATUS_COMPLETED:
                    progress = 100
                    notify(status)
                    logger.info("Job completed after %d polls", attempt)
                    return PollOutcome(job_id, status, progress, attempt)

                if status == JOB_STATUS_FAILED:
                    message = body.get("error") or body.get("detail") or DEFAULT_FAILURE_MESSAGE
                    notify(status)
                    logger.warning("Job failed upstream: %s", message)
                    return PollOutcome(job_id, status, progress, attempt, str(message))

                progress = min(progress + PROGRESS_STEP, PROGRESS_CAP)
                notify(status)

                if self.deadline is not None and self._clock() - started >= self.deadline:
                    return self._timed_out(job_id, progress, attempt, notify)

            return self._timed_out(job_id, progress, self.max_attempts, notify)

    def _timed_out(self, job_id, progress, attempts, notify) -> PollOutcome:
        message = f"Job did not finish after {attempts} status checks"
        logger.warning(message)
        notify(JOB_STATUS_TIMEOUT)
        return PollOutcome(job_id, JOB_STATUS_TIMEOUT, progress, attempts, message)

    def _cancelled(self, job_id, progress, attempts, notify) -> PollOutcome:
        logger.info("Polling cancelled after %d status checks", attempts)
        notify(JOB_STATUS_CANCELLED)
        return PollOutcome(
            job_id, JOB_STATUS_CANCELLED, progress, attempts, "Polling was cancelled"
        )
