from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Query

from model_runner.catalog import ModelListError
from model_runner.models import Job, RunManyRequest, RunManyResponse, RunResult
from model_runner.service import ModelRunner

API_DESCRIPTION = """
Model Runner - run local generative models as bounded subprocess jobs.

## Running a Model

`POST /run` runs one model against one prompt:

```json
{"model": "llama3.2", "prompt": "Why is the sky blue?",
 "options": {"system": "Answer briefly.", "timeout_ms": 60000}}
```

`POST /run-many` runs a list of such jobs, at most `max_concurrency`
(default 3, capped at 8) at a time. Results come back in submission order.

## Results

- `exit_code` is the runtime's own exit status; `-1` means the process could
  not be started, failed, or was terminated after `timeout_ms`
  (default 120000).
- `error` is only present when the run did not complete normally.

Every attempt is recorded in the telemetry log, see `GET /telemetry`.
"""

app = FastAPI(
    title="Model Runner",
    version="0.1.0",
    description=API_DESCRIPTION,
)


@lru_cache
def get_runner() -> ModelRunner:
    return ModelRunner()


Runner = Annotated[ModelRunner, Depends(get_runner)]


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/models")
async def models(runner: Runner):
    try:
        names = await runner.list_models()
    except ModelListError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"models": names}


@app.post("/run", response_model=RunResult, response_model_exclude_none=True)
async def run(job: Job, runner: Runner) -> RunResult:
    return await runner.run_one(job.model, job.prompt, job.options)


@app.post("/run-many", response_model=RunManyResponse, response_model_exclude_none=True)
async def run_many(request: RunManyRequest, runner: Runner) -> RunManyResponse:
    results = await runner.run_many(request.jobs, request.max_concurrency)
    return RunManyResponse(results=results)


@app.get("/telemetry")
async def telemetry(runner: Runner, limit: Annotated[int, Query(ge=1, le=1000)] = 100):
    tail = getattr(runner.sink, "tail", None)
    if tail is None:
        raise HTTPException(status_code=404, detail="telemetry sink is write-only")
    records = await tail(limit)
    return {"records": [record.model_dump() for record in records]}
