from __future__ import annotations

from typing import Annotated

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    field_validator,
)

from model_runner.config import (
    DEFAULT_TIMEOUT_MS,
    FORBIDDEN_MODEL_CHARS,
    MAX_NUM_PREDICT,
    MAX_PROMPT_LENGTH,
    MAX_TEMPERATURE,
    MIN_TEMPERATURE,
)


class RunOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature: Annotated[
        StrictFloat, Field(ge=MIN_TEMPERATURE, le=MAX_TEMPERATURE)
    ] | None = None
    num_predict: Annotated[StrictInt, Field(ge=1, le=MAX_NUM_PREDICT)] | None = None
    system: StrictStr | None = None
    # 0 or missing falls back to DEFAULT_TIMEOUT_MS.
    timeout_ms: Annotated[StrictFloat, Field(ge=0)] | None = None


class Job(BaseModel):
    """One model invocation, validated on construction and immutable after."""

    model_config = ConfigDict(frozen=True)

    model: StrictStr
    prompt: Annotated[StrictStr, Field(max_length=MAX_PROMPT_LENGTH)]
    options: RunOptions | None = None

    @field_validator("model")
    @classmethod
    def _check_model(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("model name must be a non-empty string")
        if any(char in value for char in FORBIDDEN_MODEL_CHARS):
            raise ValueError("model name must not contain ';', '&' or '|'")
        return value

    @property
    def effective_prompt(self) -> str:
        if self.options and self.options.system:
            return f"{self.options.system}\n\n{self.prompt}"
        return self.prompt

    @property
    def timeout_sec(self) -> float:
        timeout_ms = (self.options.timeout_ms if self.options else None) or DEFAULT_TIMEOUT_MS
        return timeout_ms / 1000


class RunResult(BaseModel):
    stdout: str = ""
    stderr: str = ""
    exit_code: int
    error: str | None = None


class RunTelemetryRecord(BaseModel):
    timestamp: str
    model: str
    start: str
    end: str
    duration_ms: int
    exit_code: int
    output_chars: int
    timed_out: bool
    batch_id: str | None = None
    concurrency: int | None = None


class RunManyRequest(BaseModel):
    jobs: list[Job]
    max_concurrency: StrictInt | None = None


class RunManyResponse(BaseModel):
    results: list[RunResult]
