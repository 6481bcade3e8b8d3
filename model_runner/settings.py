from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class Settings:
    runtime_command: str = field(
        default_factory=lambda: os.getenv("RUNTIME_COMMAND", "ollama run")
    )
    list_command: str = field(
        default_factory=lambda: os.getenv("LIST_COMMAND", "ollama list")
    )
    telemetry_backend: str = field(
        default_factory=lambda: os.getenv("TELEMETRY_BACKEND", "jsonl")
    )
    telemetry_dir: str = field(default_factory=lambda: os.getenv("TELEMETRY_DIR", "logs"))
    redis_url: str = field(
        default_factory=lambda: os.getenv("REDIS_URL", "redis://localhost:6379/0")
    )
    use_fake_redis: bool = field(default_factory=lambda: _env_flag("FAKE_REDIS"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = field(default_factory=lambda: os.getenv("LOG_FORMAT", "text"))

    @property
    def runtime_argv(self) -> list[str]:
        return shlex.split(self.runtime_command)

    @property
    def list_argv(self) -> list[str]:
        return shlex.split(self.list_command)


def get_settings() -> Settings:
    return Settings()
