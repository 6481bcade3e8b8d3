from __future__ import annotations

from pathlib import Path

from model_runner.settings import Settings, get_settings

MAX_PROMPT_LENGTH = 100_000
MAX_NUM_PREDICT = 8192
MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0
DEFAULT_TIMEOUT_MS = 120_000
DEFAULT_CONCURRENCY = 3
MAX_CONCURRENCY = 8

# Grace period between SIGTERM and SIGKILL for a timed-out runtime.
TERMINATE_GRACE_SEC = 2.0
LIST_TIMEOUT_SEC = 30.0
# Upper bound on handing one record to the telemetry sink.
TELEMETRY_TIMEOUT_SEC = 1.0

FORBIDDEN_MODEL_CHARS = (";", "&", "|")


def telemetry_path(settings: Settings | None = None) -> Path:
    """JSONL file receiving one line per job attempt."""
    settings = settings or get_settings()
    root = Path(settings.telemetry_dir).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root / "runs.jsonl"
