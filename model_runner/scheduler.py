"""Bounded-concurrency execution of a batch of jobs.

Admission state lives in one :class:`Admission` object per batch call. It is
only touched from the event loop: from :meth:`Admission.start` and from task
done-callbacks, which the loop runs one at a time. Executors never mutate it;
they just finish.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Iterable, Mapping
from uuid import uuid4

from model_runner.config import DEFAULT_CONCURRENCY, MAX_CONCURRENCY
from model_runner.models import Job, RunResult
from model_runner.validation import validate_jobs

logger = logging.getLogger(__name__)

# (job, batch_id, concurrency) -> result
Execute = Callable[[Job, str, int], Awaitable[RunResult]]


class BatchState(str, enum.Enum):
    validating = "validating"
    running = "running"
    draining = "draining"
    complete = "complete"


def effective_concurrency(requested: int | None) -> int:
    if requested is None:
        return DEFAULT_CONCURRENCY
    return min(max(1, requested), MAX_CONCURRENCY)


def new_batch_id() -> str:
    return uuid4().hex


class Admission:
    """Active count, backlog cursor and result slots for one batch."""

    def __init__(
        self,
        jobs: list[Job],
        concurrency: int,
        batch_id: str,
        execute: Execute,
    ) -> None:
        self.concurrency = concurrency
        self.batch_id = batch_id
        self.state = BatchState.validating
        self.active = 0
        self.peak_active = 0
        self._execute = execute
        self._backlog = deque(enumerate(jobs))
        self._slots: list[RunResult | None] = [None] * len(jobs)
        self._tasks: set[asyncio.Task[RunResult]] = set()
        self._failure: BaseException | None = None
        self._done = asyncio.get_running_loop().create_future()

    def start(self) -> None:
        self.state = BatchState.running
        self._admit()
        self._maybe_finish()

    async def wait(self) -> list[RunResult]:
        await self._done
        if self._failure is not None:
            raise self._failure
        results = list(self._slots)
        assert None not in results
        return results  # type: ignore[return-value]

    def _admit(self) -> None:
        if self.state not in (BatchState.running, BatchState.draining):
            return
        while self.active < self.concurrency and self._backlog:
            index, job = self._backlog.popleft()
            task = asyncio.create_task(self._execute(job, self.batch_id, self.concurrency))
            self._tasks.add(task)
            task.add_done_callback(lambda t, i=index: self._on_done(i, t))
            self.active += 1
            self.peak_active = max(self.peak_active, self.active)
        if not self._backlog and self.state is BatchState.running:
            self.state = BatchState.draining

    def _on_done(self, index: int, task: asyncio.Task[RunResult]) -> None:
        self._tasks.discard(task)
        self.active -= 1
        if task.cancelled():
            self._fail(asyncio.CancelledError(f"job {index} was cancelled"))
        elif task.exception() is not None:
            self._fail(task.exception())
        else:
            self._slots[index] = task.result()
        if self._failure is None:
            self._admit()
        else:
            # Stop admitting; let already running jobs finish.
            self._backlog.clear()
        self._maybe_finish()

    def _fail(self, exc: BaseException | None) -> None:
        if self._failure is None and exc is not None:
            logger.error("batch %s: executor raised", self.batch_id, exc_info=exc)
            self._failure = exc

    def _maybe_finish(self) -> None:
        if self._backlog or self.active or self._done.done():
            return
        self.state = BatchState.complete
        self._done.set_result(None)


async def run_batch(
    jobs: Iterable[Job | Mapping[str, Any]],
    execute: Execute,
    max_concurrency: int | None = None,
) -> list[RunResult]:
    """Run ``jobs`` at most ``clamp(max_concurrency, 1, 8)`` at a time.

    Every job is validated before anything starts, so one bad job rejects the
    batch with no process spawned. Results line up with ``jobs`` by position,
    whatever order they finish in.
    """
    validated = validate_jobs(jobs)
    concurrency = effective_concurrency(max_concurrency)
    batch_id = new_batch_id()
    logger.info(
        "batch %s: %d jobs, concurrency %d", batch_id, len(validated), concurrency
    )

    admission = Admission(validated, concurrency, batch_id, execute)
    admission.start()
    results = await admission.wait()
    logger.info("batch %s: complete (peak %d active)", batch_id, admission.peak_active)
    return results
