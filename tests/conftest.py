"""Shared test fixtures for the outlook_mcp test suite."""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from outlook_mcp.config import BridgeConfig


def _make_process(
    stdout: bytes = b"",
    stderr: bytes = b"",
    returncode: int | None = 0,
) -> MagicMock:
    """Build a stand-in for ``asyncio.subprocess.Process``."""
    proc = MagicMock()
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.returncode = returncode
    proc.wait = AsyncMock(return_value=returncode)
    proc.kill = MagicMock()
    return proc


@pytest.fixture
def make_process() -> Callable[..., MagicMock]:
    """Factory fixture for fake child processes."""
    return _make_process


@pytest.fixture
def bridge_config(tmp_path: Path) -> BridgeConfig:
    """A bridge config pointing at a script path under tmp_path."""
    return BridgeConfig(
        interpreter="powershell.exe",
        script_path=tmp_path / "outlook-calendar.ps1",
        execution_policy="Bypass",
        timeout_seconds=5.0,
    )


@pytest.fixture
def fake_interpreter(tmp_path: Path) -> Callable[[str], Path]:
    """Write an executable Python script that stands in for PowerShell.

    The returned factory takes the script body; ``json`` and ``sys`` are
    already imported and ``ARGS`` holds the arguments after the program name.
    """

    def _factory(body: str) -> Path:
        path = tmp_path / "fake-pwsh"
        path.write_text(
            f"#!{sys.executable}\nimport json\nimport sys\nARGS = sys.argv[1:]\n{body}\n"
        )
        path.chmod(0o755)
        return path

    return _factory
