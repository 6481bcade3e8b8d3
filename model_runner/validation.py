"""Input validation run before any runtime process is spawned.

Failures raise :class:`pydantic.ValidationError`; its ``errors()`` name the
offending field and the violated constraint.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from model_runner.models import Job, RunOptions


def validate_job(
    model: Any,
    prompt: Any,
    options: RunOptions | Mapping[str, Any] | None = None,
) -> Job:
    return Job.model_validate({"model": model, "prompt": prompt, "options": options})


def validate_jobs(jobs: Iterable[Job | Mapping[str, Any]]) -> list[Job]:
    """Validate a whole batch; the first invalid job aborts it."""
    return [job if isinstance(job, Job) else Job.model_validate(job) for job in jobs]
