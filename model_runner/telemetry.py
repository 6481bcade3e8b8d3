from __future__ import annotations

import asyncio
from collections import deque
from pathlib import Path
from typing import Protocol

import redis.asyncio as redis

from model_runner import config
from model_runner.models import RunTelemetryRecord
from model_runner.settings import Settings, get_settings

try:
    import fakeredis
except ImportError:  # pragma: no cover - optional
    fakeredis = None

# One client per Redis URL ("fake" for fakeredis), shared by every sink.
_redis_clients: dict[str, redis.Redis] = {}


def telemetry_redis(settings: Settings | None = None) -> redis.Redis:
    settings = settings or get_settings()
    key = "fake" if settings.use_fake_redis else settings.redis_url
    client = _redis_clients.get(key)
    if client is not None:
        return client
    if settings.use_fake_redis:
        if fakeredis is None:
            raise RuntimeError("FAKE_REDIS is set but fakeredis is not installed")
        client = fakeredis.FakeAsyncRedis(decode_responses=True)
    else:
        client = redis.from_url(settings.redis_url, decode_responses=True)
    _redis_clients[key] = client
    return client


def reset_telemetry_redis() -> None:
    _redis_clients.clear()


class TelemetrySink(Protocol):
    async def record(self, record: RunTelemetryRecord) -> None: ...


class JsonlTelemetrySink:
    """Append-only JSON-lines file, one line per job attempt.

    File access runs in a worker thread, off the event loop.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    async def record(self, record: RunTelemetryRecord) -> None:
        await asyncio.to_thread(self._append, record.model_dump_json() + "\n")

    async def tail(self, limit: int = 100) -> list[RunTelemetryRecord]:
        lines = await asyncio.to_thread(self._read_last, limit)
        return [RunTelemetryRecord.model_validate_json(line) for line in lines]

    def _append(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line)

    def _read_last(self, limit: int) -> list[str]:
        if not self.path.exists():
            return []
        with self.path.open(encoding="utf-8") as handle:
            return list(deque((line for line in handle if line.strip()), maxlen=limit))


class RedisTelemetrySink:
    """Redis-backed telemetry with list + pubsub for live consumers."""

    def __init__(self, client: redis.Redis | None = None) -> None:
        self.redis = client or telemetry_redis()
        self.list_key = "telemetry:runs"
        self.channel_key = "telemetry:channel"

    async def record(self, record: RunTelemetryRecord) -> None:
        payload = record.model_dump_json()
        await self.redis.rpush(self.list_key, payload)  # type: ignore[misc]
        await self.redis.publish(self.channel_key, payload)  # type: ignore[misc]

    async def tail(self, limit: int = 100) -> list[RunTelemetryRecord]:
        raw = await self.redis.lrange(self.list_key, -limit, -1)  # type: ignore[misc]
        return [RunTelemetryRecord.model_validate_json(self._decode(item)) for item in raw]

    @staticmethod
    def _decode(value: str | bytes) -> str:
        if isinstance(value, bytes):
            return value.decode()
        return str(value)


class MemoryTelemetrySink:
    def __init__(self) -> None:
        self.records: list[RunTelemetryRecord] = []

    async def record(self, record: RunTelemetryRecord) -> None:
        self.records.append(record)

    async def tail(self, limit: int = 100) -> list[RunTelemetryRecord]:
        return self.records[-limit:] if limit else []


def build_sink(settings: Settings | None = None) -> TelemetrySink:
    settings = settings or get_settings()
    backend = settings.telemetry_backend.lower()
    if backend == "redis":
        return RedisTelemetrySink(telemetry_redis(settings))
    if backend == "memory":
        return MemoryTelemetrySink()
    if backend == "jsonl":
        return JsonlTelemetrySink(config.telemetry_path(settings))
    raise ValueError(f"unknown telemetry backend: {settings.telemetry_backend!r}")
