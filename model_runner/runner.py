from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Sequence

from model_runner import config
from model_runner.models import Job, RunResult, RunTelemetryRecord
from model_runner.telemetry import TelemetrySink

logger = logging.getLogger(__name__)

TIMEOUT_ERROR = "Timeout exceeded"


async def run_job(
    job: Job,
    sink: TelemetrySink,
    *,
    command: Sequence[str],
    batch_id: str | None = None,
    concurrency: int | None = None,
) -> RunResult:
    """Run one job to a terminal result and emit exactly one telemetry record.

    ``command`` is the runtime argv prefix; the model name is appended as the
    only variable argument and the prompt goes in on stdin. Spawn failures,
    runtime errors and timeouts never raise: they come back as a result with
    ``exit_code == -1`` and ``error`` set. A non-zero exit is reported as is.
    """
    started_at = _now()
    started = time.monotonic()
    stdout: list[bytes] = []
    stderr: list[bytes] = []
    exit_code = -1
    error: str | None = None
    timed_out = False

    cmd = [*command, job.model]
    logger.debug("starting %s (timeout %.1fs)", cmd, job.timeout_sec)

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (OSError, ValueError) as exc:
        error = str(exc)
        logger.warning("failed to spawn runtime for %s: %s", job.model, error)
    else:
        try:
            await asyncio.wait_for(
                _communicate(process, job.effective_prompt, stdout, stderr),
                timeout=job.timeout_sec,
            )
            exit_code = process.returncode
        except asyncio.TimeoutError:
            timed_out = True
            error = TIMEOUT_ERROR
            logger.warning("model %s exceeded %.1fs, terminating", job.model, job.timeout_sec)
            await _terminate(process)
            await _collect_remaining(process, stdout, stderr)
        except OSError as exc:
            error = str(exc)
            logger.warning("runtime for %s failed: %s", job.model, error)
            await _terminate(process)
        finally:
            if process.returncode is None:
                _kill(process)

        # Death by a signal we did not send is abnormal, not an exit code.
        if error is None and exit_code < 0:
            error = f"Process terminated by signal {-exit_code}"
            exit_code = -1

    out_text = b"".join(stdout).decode(errors="replace")
    err_text = b"".join(stderr).decode(errors="replace")
    if timed_out:
        err_text += "\nProcess timed out"
    elif error is not None:
        err_text += f"\n{error}"

    await _emit(
        sink,
        RunTelemetryRecord(
            timestamp=started_at,
            model=job.model,
            start=started_at,
            end=_now(),
            duration_ms=round((time.monotonic() - started) * 1000),
            exit_code=exit_code,
            output_chars=len(out_text),
            timed_out=timed_out,
            batch_id=batch_id,
            concurrency=concurrency,
        ),
    )

    return RunResult(stdout=out_text, stderr=err_text, exit_code=exit_code, error=error)


async def _communicate(
    process: asyncio.subprocess.Process,
    prompt: str,
    stdout: list[bytes],
    stderr: list[bytes],
) -> None:
    assert process.stdin is not None
    assert process.stdout is not None
    assert process.stderr is not None
    await asyncio.gather(
        _feed(process.stdin, prompt),
        _drain(process.stdout, stdout),
        _drain(process.stderr, stderr),
    )
    await process.wait()


async def _feed(stdin: asyncio.StreamWriter, prompt: str) -> None:
    try:
        stdin.write((prompt + "\n").encode())
        await stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        # Runtime exited before reading the whole prompt; its exit status says why.
        logger.debug("runtime closed stdin early")
    finally:
        stdin.close()


async def _drain(stream: asyncio.StreamReader, chunks: list[bytes]) -> None:
    while True:
        chunk = await stream.read(65536)
        if not chunk:
            break
        chunks.append(chunk)


async def _collect_remaining(
    process: asyncio.subprocess.Process,
    stdout: list[bytes],
    stderr: list[bytes],
) -> None:
    """Pick up output still buffered when a timed-out process went away."""
    if process.returncode is None:
        return
    assert process.stdout is not None
    assert process.stderr is not None
    try:
        await asyncio.wait_for(
            asyncio.gather(_drain(process.stdout, stdout), _drain(process.stderr, stderr)),
            timeout=config.TERMINATE_GRACE_SEC,
        )
    except asyncio.TimeoutError:
        logger.debug("output pipes of pid %s still open after exit", process.pid)


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """SIGTERM, then SIGKILL after a grace period. Best effort only."""
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=config.TERMINATE_GRACE_SEC)
        return
    except asyncio.TimeoutError:
        logger.warning("pid %s ignored SIGTERM, killing", process.pid)
    _kill(process)
    try:
        await asyncio.wait_for(process.wait(), timeout=config.TERMINATE_GRACE_SEC)
    except asyncio.TimeoutError:
        logger.error("pid %s did not exit after SIGKILL", process.pid)


def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        pass


async def _emit(sink: TelemetrySink, record: RunTelemetryRecord) -> None:
    try:
        await asyncio.wait_for(sink.record(record), timeout=config.TELEMETRY_TIMEOUT_SEC)
    except asyncio.TimeoutError:
        logger.warning(
            "telemetry sink did not accept record for model %s within %.1fs",
            record.model,
            config.TELEMETRY_TIMEOUT_SEC,
        )
    except Exception:
        logger.warning("telemetry sink failed for model %s", record.model, exc_info=True)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
