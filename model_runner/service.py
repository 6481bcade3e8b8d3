from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

from model_runner import catalog
from model_runner.models import Job, RunOptions, RunResult
from model_runner.runner import run_job
from model_runner.scheduler import run_batch
from model_runner.settings import Settings, get_settings
from model_runner.telemetry import TelemetrySink, build_sink
from model_runner.validation import validate_job

logger = logging.getLogger(__name__)


class ModelRunner:
    """The operations offered to front-ends: list, run one, run many."""

    def __init__(
        self,
        sink: TelemetrySink | None = None,
        *,
        command: Sequence[str] | None = None,
        list_command: Sequence[str] | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.sink = sink or build_sink(settings)
        self.command = list(command or settings.runtime_argv)
        self.list_command = list(list_command or settings.list_argv)

    async def list_models(self) -> list[str]:
        return await catalog.list_models(self.list_command)

    async def run_one(
        self,
        model: Any,
        prompt: Any,
        options: RunOptions | Mapping[str, Any] | None = None,
    ) -> RunResult:
        job = validate_job(model, prompt, options)
        logger.info("run model=%s prompt_length=%d", job.model, len(job.prompt))
        return await run_job(job, self.sink, command=self.command)

    async def run_many(
        self,
        jobs: Iterable[Job | Mapping[str, Any]],
        max_concurrency: int | None = None,
    ) -> list[RunResult]:
        return await run_batch(jobs, self._execute, max_concurrency)

    async def _execute(self, job: Job, batch_id: str, concurrency: int) -> RunResult:
        return await run_job(
            job,
            self.sink,
            command=self.command,
            batch_id=batch_id,
            concurrency=concurrency,
        )
