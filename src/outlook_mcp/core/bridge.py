"""ProcessBridge: run the Outlook calendar script in a child interpreter.

Encapsulates the whole out-of-process contract:
- Building the interpreter command line (fixed preamble, ``-Action``, and the
  encoded ``-Name value`` parameter tokens)
- Spawning exactly one child process per call, with stdin closed
- Draining stdout and stderr concurrently until the child exits
- Classifying the exit status and stdout document into a ``BridgeResult``

Every call resolves to exactly one of ``BridgeOk`` or ``BridgeFailed``.
Spawn errors, non-zero exits, unparseable output, script-reported errors and
timeouts all become ``BridgeFailed`` with a human-readable message. The
bridge never retries and never inspects calendar fields.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from outlook_mcp.config import BridgeConfig
from outlook_mcp.core.params import encode_parameters
from outlook_mcp.core.telemetry import get_tracer

logger = logging.getLogger(__name__)

# Flags placed before -File: no profile scripts, no prompts.
_PREAMBLE_FLAGS = ("-NoProfile", "-NonInteractive")

TIMED_OUT_MESSAGE = "timed out"
PARSE_ERROR_PREFIX = "could not parse output"
_TOOL_ERROR_FALLBACK = "script reported failure without an error message"


@dataclass(frozen=True)
class OperationRequest:
    """A named script action plus its parameter mapping."""

    action: str
    parameters: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BridgeOk:
    """Successful call: *payload* is the parsed stdout document, unchanged."""

    payload: Any

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class BridgeFailed:
    """Failed call of any kind, carrying a non-empty message."""

    message: str

    @property
    def ok(self) -> bool:
        return False


BridgeResult = BridgeOk | BridgeFailed


def _decode(data: bytes | None) -> str:
    if not data:
        return ""
    # Windows PowerShell may prefix redirected UTF-8 output with a BOM.
    return data.decode("utf-8", errors="replace").lstrip("\ufeff")


def _error_text(value: Any) -> str | None:
    """Return the message carried by an ``error`` field, or None if empty."""
    # Falsy scalars (null, false, 0, "") mean no error; containers always count.
    if value is None or (isinstance(value, (bool, int, float)) and not value):
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, Mapping):
        message = value.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
        return json.dumps(value, sort_keys=True)
    return str(value)


def _parse_document(stdout: str) -> BridgeResult:
    """Interpret a zero-exit stdout buffer.

    Supports the ``{"ok": bool, "data": ..., "error": ...}`` envelope and,
    for scripts that do not emit it, the bare document where a non-empty
    ``error`` field marks failure.
    """
    try:
        document = json.loads(stdout.strip())
    except json.JSONDecodeError as exc:
        return BridgeFailed(f"{PARSE_ERROR_PREFIX}: {exc}")

    if not isinstance(document, (dict, list)):
        return BridgeFailed(
            f"{PARSE_ERROR_PREFIX}: expected a JSON object or array, "
            f"got {type(document).__name__}"
        )

    if isinstance(document, dict):
        envelope_ok = document.get("ok")
        if isinstance(envelope_ok, bool):
            if envelope_ok:
                return BridgeOk(document.get("data", {}))
            return BridgeFailed(_error_text(document.get("error")) or _TOOL_ERROR_FALLBACK)

        error = _error_text(document.get("error"))
        if error:
            return BridgeFailed(error)

    return BridgeOk(document)


def _classify_output(
    returncode: int, stdout: str, stderr: str, interpreter: str
) -> BridgeResult:
    """Map a finished child's exit status and output to a ``BridgeResult``.

    A non-zero exit always fails, even when stdout holds a valid document.
    """
    if returncode != 0:
        detail = stderr.strip()
        if not detail:
            detail = f"{interpreter} script failed with exit code {returncode}"
        return BridgeFailed(detail)
    return _parse_document(stdout)


async def _kill_process(proc: asyncio.subprocess.Process) -> None:
    """Forcibly terminate *proc* and reap it."""
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    await proc.wait()


class ProcessBridge:
    """Runs one script action per child process and classifies the outcome.

    Parameters
    ----------
    config:
        Interpreter, script location, execution policy and timeout. Defaults
        to :class:`BridgeConfig` with the installation-relative script path.
    """

    def __init__(self, config: BridgeConfig | None = None) -> None:
        self._config = config or BridgeConfig()

    @property
    def config(self) -> BridgeConfig:
        return self._config

    def build_command(
        self, action: str, parameters: Mapping[str, Any] | None = None
    ) -> list[str]:
        """Return the full argument vector for *action* with *parameters*.

        Raises
        ------
        ValueError
            If *action* is empty or a parameter name is malformed.
        TypeError
            If a parameter value is not a scalar.
        """
        if not isinstance(action, str) or not action.strip():
            raise ValueError("action must be a non-empty string")

        return [
            self._config.interpreter,
            *_PREAMBLE_FLAGS,
            "-ExecutionPolicy",
            self._config.execution_policy,
            "-File",
            str(self._config.script_path),
            "-Action",
            action.strip(),
            *encode_parameters(parameters),
        ]

    def check_environment(self) -> list[str]:
        """Return human-readable problems that would make every call fail."""
        problems: list[str] = []
        if shutil.which(self._config.interpreter) is None:
            problems.append(f"Interpreter {self._config.interpreter!r} not found on PATH")
        if not Path(self._config.script_path).is_file():
            problems.append(f"Calendar script not found: {self._config.script_path}")
        return problems

    async def run(self, request: OperationRequest) -> BridgeResult:
        """Execute an :class:`OperationRequest`."""
        return await self.execute(request.action, request.parameters)

    async def execute(
        self, action: str, parameters: Mapping[str, Any] | None = None
    ) -> BridgeResult:
        """Run *action* in a fresh child process and return its outcome.

        Never raises for process-level problems; those become
        ``BridgeFailed``. If the awaiting task is cancelled the child is
        killed before ``CancelledError`` propagates.
        """
        cmd = self.build_command(action, parameters)
        action = action.strip()
        tracer = get_tracer(__name__)
        with tracer.start_as_current_span("outlook_mcp.bridge.execute") as span:
            span.set_attribute("bridge.action", action)
            result = await self._run_process(cmd, action, span)
            span.set_attribute("bridge.outcome", "ok" if result.ok else "failed")
            return result

    async def _run_process(self, cmd: list[str], action: str, span: Any) -> BridgeResult:
        interpreter = cmd[0]
        timeout = self._config.timeout_seconds

        logger.debug("Invoking calendar script: %s ... -Action %s", interpreter, action)

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as exc:
            # ValueError: the OS rejects arguments with embedded NUL bytes.
            logger.warning("Could not start %s for action %s: %s", interpreter, action, exc)
            return BridgeFailed(f"failed to start {interpreter}: {exc}")

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(),
                timeout=timeout,
            )
        except TimeoutError:
            logger.warning("Calendar script action %s timed out after %ss", action, timeout)
            await _kill_process(proc)
            return BridgeFailed(TIMED_OUT_MESSAGE)
        except asyncio.CancelledError:
            logger.info("Calendar script action %s cancelled; killing child", action)
            await _kill_process(proc)
            raise

        stdout = _decode(stdout_bytes)
        stderr = _decode(stderr_bytes)
        returncode = proc.returncode or 0
        span.set_attribute("bridge.exit_code", returncode)

        if stderr and returncode == 0:
            logger.debug("Calendar script stderr: %s", stderr[:500])

        result = _classify_output(returncode, stdout, stderr, interpreter)
        if isinstance(result, BridgeFailed):
            logger.warning(
                "Calendar script action %s failed (exit code %d): %s",
                action,
                returncode,
                result.message,
            )
        return result
