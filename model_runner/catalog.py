from __future__ import annotations

import asyncio
from typing import Sequence

from model_runner import config


class ModelListError(RuntimeError):
    pass


async def list_models(command: Sequence[str]) -> list[str]:
    """Names of locally available models, from the runtime's list table."""
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise ModelListError(f"failed to execute {command[0]}: {exc}") from exc

    try:
        out, err = await asyncio.wait_for(
            process.communicate(), timeout=config.LIST_TIMEOUT_SEC
        )
    except asyncio.TimeoutError as exc:
        process.kill()
        await process.wait()
        raise ModelListError("list failed: timed out") from exc

    if process.returncode != 0:
        raise ModelListError(f"list failed: {err.decode(errors='replace').strip()}")
    return parse_model_table(out.decode(errors="replace"))


def parse_model_table(text: str) -> list[str]:
    # First line is the NAME/ID/SIZE/MODIFIED header.
    lines = text.strip().splitlines()[1:]
    return [line.split()[0] for line in lines if line.strip()]
