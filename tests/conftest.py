import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from model_runner.service import ModelRunner  # noqa: E402
from model_runner.telemetry import MemoryTelemetrySink  # noqa: E402

FAKE_RUNTIME = Path(__file__).resolve().parent / "fake_runtime.py"


@pytest.fixture(autouse=True)
def tmp_telemetry_dir(tmp_path, monkeypatch):
    """Keep JSONL telemetry out of the working tree."""
    monkeypatch.setenv("TELEMETRY_DIR", str(tmp_path / "logs"))
    return tmp_path / "logs"


@pytest.fixture
def runtime_command():
    return [sys.executable, str(FAKE_RUNTIME)]


@pytest.fixture
def sink():
    return MemoryTelemetrySink()


@pytest.fixture
def runner(sink, runtime_command):
    return ModelRunner(
        sink,
        command=runtime_command,
        list_command=[*runtime_command, "--list"],
    )
