import json
import threading

import fakeredis
import pytest

from model_runner.models import RunTelemetryRecord
from model_runner.settings import Settings
from model_runner.telemetry import (
    JsonlTelemetrySink,
    MemoryTelemetrySink,
    RedisTelemetrySink,
    build_sink,
    reset_telemetry_redis,
)


def _record(model: str = "llama3.2", **overrides) -> RunTelemetryRecord:
    fields = {
        "timestamp": "2026-01-01T00:00:00+00:00",
        "model": model,
        "start": "2026-01-01T00:00:00+00:00",
        "end": "2026-01-01T00:00:01+00:00",
        "duration_ms": 1000,
        "exit_code": 0,
        "output_chars": 42,
        "timed_out": False,
    }
    fields.update(overrides)
    return RunTelemetryRecord(**fields)


@pytest.mark.asyncio
async def test_jsonl_sink_appends_one_line_per_record(tmp_path):
    sink = JsonlTelemetrySink(tmp_path / "nested" / "runs.jsonl")
    await sink.record(_record("a"))
    await sink.record(_record("b", batch_id="batch1", concurrency=3))

    lines = (tmp_path / "nested" / "runs.jsonl").read_text().splitlines()
    assert len(lines) == 2
    second = json.loads(lines[1])
    assert second["model"] == "b"
    assert second["batch_id"] == "batch1"
    assert second["concurrency"] == 3
    assert second["timed_out"] is False


@pytest.mark.asyncio
async def test_jsonl_sink_tail(tmp_path):
    sink = JsonlTelemetrySink(tmp_path / "runs.jsonl")
    assert await sink.tail() == []
    for i in range(5):
        await sink.record(_record(f"m{i}"))
    assert [r.model for r in await sink.tail(2)] == ["m3", "m4"]


@pytest.mark.asyncio
async def test_redis_sink_pushes_records():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    sink = RedisTelemetrySink(client)
    await sink.record(_record("a"))
    await sink.record(_record("b", timed_out=True, exit_code=-1))

    raw = await client.lrange("telemetry:runs", 0, -1)
    assert [json.loads(item)["model"] for item in raw] == ["a", "b"]
    tail = await sink.tail(1)
    assert tail[0].timed_out is True
    assert tail[0].exit_code == -1


@pytest.mark.asyncio
async def test_memory_sink_tail():
    sink = MemoryTelemetrySink()
    await sink.record(_record("a"))
    await sink.record(_record("b"))
    assert [r.model for r in await sink.tail(1)] == ["b"]


def test_build_sink_selects_backend(tmp_telemetry_dir):
    sink = build_sink(Settings(telemetry_backend="jsonl"))
    assert isinstance(sink, JsonlTelemetrySink)
    assert sink.path == tmp_telemetry_dir.resolve() / "runs.jsonl"

    assert isinstance(build_sink(Settings(telemetry_backend="memory")), MemoryTelemetrySink)

    reset_telemetry_redis()
    try:
        sink = build_sink(Settings(telemetry_backend="redis", use_fake_redis=True))
        assert isinstance(sink, RedisTelemetrySink)
        assert isinstance(sink.redis, fakeredis.FakeAsyncRedis)
    finally:
        reset_telemetry_redis()

    with pytest.raises(ValueError, match="unknown telemetry backend"):
        build_sink(Settings(telemetry_backend="kafka"))


@pytest.mark.asyncio
async def test_jsonl_sink_writes_off_the_event_loop(tmp_path, monkeypatch):
    writer_threads = []
    original = JsonlTelemetrySink._append

    def tracking(self, line):
        writer_threads.append(threading.get_ident())
        original(self, line)

    monkeypatch.setattr(JsonlTelemetrySink, "_append", tracking)
    sink = JsonlTelemetrySink(tmp_path / "runs.jsonl")
    await sink.record(_record("a"))

    assert writer_threads
    assert writer_threads[0] != threading.get_ident()
    assert [r.model for r in await sink.tail()] == ["a"]
