"""Tests for ProcessBridge command building and outcome classification."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from outlook_mcp.config import BridgeConfig, default_script_path
from outlook_mcp.core.bridge import (
    TIMED_OUT_MESSAGE,
    BridgeFailed,
    BridgeOk,
    OperationRequest,
    ProcessBridge,
    _classify_output,
    _parse_document,
)

pytestmark = pytest.mark.unit

# Long patch target as constant to keep lines within 100 chars
_EXEC = "outlook_mcp.core.bridge.asyncio.create_subprocess_exec"


# ---------------------------------------------------------------------------
# Command building
# ---------------------------------------------------------------------------


class TestBuildCommand:
    def test_preamble_action_and_parameters(self, bridge_config):
        bridge = ProcessBridge(bridge_config)
        cmd = bridge.build_command("get", {"EventId": "0000ABC"})
        assert cmd == [
            "powershell.exe",
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy",
            "Bypass",
            "-File",
            str(bridge_config.script_path),
            "-Action",
            "get",
            "-EventId",
            "0000ABC",
        ]

    def test_no_parameters_ends_after_action(self, bridge_config):
        cmd = ProcessBridge(bridge_config).build_command("list")
        assert cmd[-2:] == ["-Action", "list"]

    def test_uses_configured_interpreter_and_policy(self, tmp_path):
        config = BridgeConfig(
            interpreter="pwsh",
            script_path=tmp_path / "cal.ps1",
            execution_policy="RemoteSigned",
        )
        cmd = ProcessBridge(config).build_command("list")
        assert cmd[0] == "pwsh"
        assert cmd[cmd.index("-ExecutionPolicy") + 1] == "RemoteSigned"
        assert cmd[cmd.index("-File") + 1] == str(tmp_path / "cal.ps1")

    @pytest.mark.parametrize("action", ["", "   "])
    def test_blank_action_rejected(self, bridge_config, action):
        with pytest.raises(ValueError, match="action must be a non-empty string"):
            ProcessBridge(bridge_config).build_command(action)

    def test_default_config_uses_installation_relative_script(self):
        bridge = ProcessBridge()
        assert bridge.config.script_path == default_script_path()
        assert bridge.config.script_path.name == "outlook-calendar.ps1"
        assert bridge.config.script_path.parent.parent.name == "outlook_mcp"


# ---------------------------------------------------------------------------
# Output classification (pure)
# ---------------------------------------------------------------------------


class TestClassifyOutput:
    def test_nonzero_exit_uses_stderr(self):
        result = _classify_output(1, "", "  Outlook is not running\n", "powershell.exe")
        assert result == BridgeFailed("Outlook is not running")

    def test_nonzero_exit_with_empty_stderr_uses_fallback(self):
        result = _classify_output(1, "", "", "powershell.exe")
        assert isinstance(result, BridgeFailed)
        assert result.message == "powershell.exe script failed with exit code 1"

    @pytest.mark.parametrize("code", [1, 2, 255, -9])
    def test_nonzero_exit_fails_even_with_valid_stdout(self, code):
        result = _classify_output(code, '[{"subject": "x"}]', "", "pwsh")
        assert isinstance(result, BridgeFailed)
        assert result.message

    def test_zero_exit_array(self):
        document = [{"id": "1", "subject": "Standup"}]
        result = _classify_output(0, json.dumps(document), "", "pwsh")
        assert result == BridgeOk(document)

    def test_zero_exit_object_unchanged(self):
        document = {"id": "1", "nested": {"k": [1, 2, {"deep": None}]}}
        result = _classify_output(0, "\n  " + json.dumps(document) + "  \r\n", "", "pwsh")
        assert isinstance(result, BridgeOk)
        assert result.payload == document

    def test_stderr_ignored_on_zero_exit(self):
        result = _classify_output(0, "[]", "WARNING: something noisy", "pwsh")
        assert result == BridgeOk([])


class TestParseDocument:
    def test_error_field_is_failure(self):
        assert _parse_document('{"error":"mailbox not found"}') == BridgeFailed(
            "mailbox not found"
        )

    @pytest.mark.parametrize("value", ['""', "null", "false", "0", "0.0"])
    def test_empty_error_field_is_not_failure(self, value):
        result = _parse_document('{"id": "1", "error": ' + value + "}")
        assert isinstance(result, BridgeOk)

    @pytest.mark.parametrize(("value", "message"), [("1", "1"), ("[]", "[]"), ("true", "True")])
    def test_truthy_error_field_is_failure(self, value, message):
        result = _parse_document('{"id": "1", "error": ' + value + "}")
        assert result == BridgeFailed(message)

    def test_structured_error_uses_message(self):
        result = _parse_document('{"error": {"message": "access denied", "code": 5}}')
        assert result == BridgeFailed("access denied")

    def test_empty_output_is_parse_failure(self):
        result = _parse_document("")
        assert isinstance(result, BridgeFailed)
        assert result.message.startswith("could not parse output: ")

    def test_garbage_output_is_parse_failure(self):
        result = _parse_document("Exception calling GetNamespace")
        assert isinstance(result, BridgeFailed)
        assert result.message.startswith("could not parse output: ")

    @pytest.mark.parametrize("document", ["42", '"text"', "true", "null"])
    def test_scalar_document_is_parse_failure(self, document):
        result = _parse_document(document)
        assert isinstance(result, BridgeFailed)
        assert "expected a JSON object or array" in result.message

    def test_envelope_ok_returns_data(self):
        result = _parse_document('{"ok": true, "data": [{"id": "1"}]}')
        assert result == BridgeOk([{"id": "1"}])

    def test_envelope_ok_without_data(self):
        assert _parse_document('{"ok": true}') == BridgeOk({})

    def test_envelope_failure_returns_error(self):
        result = _parse_document('{"ok": false, "error": "event not found"}')
        assert result == BridgeFailed("event not found")

    def test_envelope_failure_without_error_has_fallback(self):
        result = _parse_document('{"ok": false}')
        assert isinstance(result, BridgeFailed)
        assert result.message

    def test_non_bool_ok_is_not_an_envelope(self):
        result = _parse_document('{"ok": "yes", "id": "1"}')
        assert result == BridgeOk({"ok": "yes", "id": "1"})


class TestResultVariants:
    def test_ok_flags(self):
        assert BridgeOk([]).ok is True
        assert BridgeFailed("x").ok is False

    def test_results_are_frozen(self):
        result = BridgeFailed("x")
        with pytest.raises(AttributeError):
            result.message = "y"  # type: ignore[misc]


# ---------------------------------------------------------------------------
# execute() with a mocked child process
# ---------------------------------------------------------------------------


async def test_execute_success(bridge_config, make_process):
    bridge = ProcessBridge(bridge_config)
    proc = make_process(stdout=b'[{"id": "1", "subject": "Standup"}]')

    with patch(_EXEC, return_value=proc) as mock_sub:
        result = await bridge.execute("list", {"StartDate": "2024-06-01T00:00:00"})

    assert result == BridgeOk([{"id": "1", "subject": "Standup"}])
    cmd = mock_sub.call_args[0]
    assert cmd[0] == "powershell.exe"
    assert cmd[-4:] == ("-Action", "list", "-StartDate", "2024-06-01T00:00:00")
    kwargs = mock_sub.call_args[1]
    assert kwargs["stdin"] == asyncio.subprocess.DEVNULL
    assert kwargs["stdout"] == asyncio.subprocess.PIPE
    assert kwargs["stderr"] == asyncio.subprocess.PIPE


async def test_execute_create_request_tokens(bridge_config, make_process):
    bridge = ProcessBridge(bridge_config)
    proc = make_process(stdout=b'{"id": "new"}')
    params = {
        "Subject": "Team Sync",
        "StartDate": "2024-06-01T09:00:00",
        "EndDate": "2024-06-01T10:00:00",
        "Body": None,
        "Location": "",
    }

    with patch(_EXEC, return_value=proc) as mock_sub:
        await bridge.execute("create", params)

    cmd = list(mock_sub.call_args[0])
    assert cmd[cmd.index("-Action") + 2 :] == [
        "-Subject",
        "Team Sync",
        "-StartDate",
        "2024-06-01T09:00:00",
        "-EndDate",
        "2024-06-01T10:00:00",
    ]


async def test_run_accepts_operation_request(bridge_config, make_process):
    proc = make_process(stdout=b'{"success": true, "message": "deleted"}')
    with patch(_EXEC, return_value=proc) as mock_sub:
        result = await ProcessBridge(bridge_config).run(
            OperationRequest(action="delete", parameters={"EventId": "abc"})
        )
    assert result == BridgeOk({"success": True, "message": "deleted"})
    assert mock_sub.call_args[0][-2:] == ("-EventId", "abc")


async def test_execute_tool_reported_error(bridge_config, make_process):
    proc = make_process(stdout=b'{"error":"mailbox not found"}')
    with patch(_EXEC, return_value=proc):
        result = await ProcessBridge(bridge_config).execute("list")
    assert result == BridgeFailed("mailbox not found")


async def test_execute_nonzero_exit_empty_stderr(bridge_config, make_process):
    proc = make_process(stdout=b"", stderr=b"", returncode=1)
    with patch(_EXEC, return_value=proc):
        result = await ProcessBridge(bridge_config).execute("list")
    assert isinstance(result, BridgeFailed)
    assert "exit code 1" in result.message


async def test_execute_decodes_bom_and_invalid_utf8(bridge_config, make_process):
    proc = make_process(stdout='\ufeff[{"subject": "Café"}]'.encode())
    with patch(_EXEC, return_value=proc):
        result = await ProcessBridge(bridge_config).execute("list")
    assert result == BridgeOk([{"subject": "Café"}])

    proc = make_process(stderr=b"bad \xff byte", returncode=2)
    with patch(_EXEC, return_value=proc):
        result = await ProcessBridge(bridge_config).execute("list")
    assert isinstance(result, BridgeFailed)
    assert result.message.startswith("bad ")


@pytest.mark.parametrize(
    "error",
    [
        FileNotFoundError(2, "No such file or directory"),
        PermissionError(13, "Permission denied"),
    ],
)
async def test_execute_spawn_failure(bridge_config, error):
    with patch(_EXEC, side_effect=error):
        result = await ProcessBridge(bridge_config).execute("list")
    assert isinstance(result, BridgeFailed)
    assert result.message.startswith("failed to start powershell.exe: ")


async def test_execute_nul_byte_in_argument_is_spawn_failure(bridge_config):
    with patch(_EXEC, side_effect=ValueError("embedded null byte")):
        result = await ProcessBridge(bridge_config).execute("search", {"Query": "a\x00b"})
    assert result == BridgeFailed("failed to start powershell.exe: embedded null byte")


async def test_execute_timeout_kills_child(tmp_path):
    config = BridgeConfig(script_path=tmp_path / "cal.ps1", timeout_seconds=0.05)

    async def _hang():
        await asyncio.sleep(3600)

    proc = MagicMock()
    proc.communicate = _hang
    proc.returncode = None
    proc.kill = MagicMock()
    proc.wait = AsyncMock(return_value=-9)

    with patch(_EXEC, return_value=proc):
        result = await ProcessBridge(config).execute("list")

    assert result == BridgeFailed(TIMED_OUT_MESSAGE)
    proc.kill.assert_called_once()
    proc.wait.assert_awaited_once()


async def test_execute_cancellation_kills_child(bridge_config):
    started = asyncio.Event()

    async def _hang():
        started.set()
        await asyncio.sleep(3600)

    proc = MagicMock()
    proc.communicate = _hang
    proc.returncode = None
    proc.kill = MagicMock()
    proc.wait = AsyncMock(return_value=-9)

    with patch(_EXEC, return_value=proc):
        task = asyncio.create_task(ProcessBridge(bridge_config).execute("list"))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    proc.kill.assert_called_once()


async def test_concurrent_calls_are_independent(bridge_config, make_process):
    procs = {
        "a": make_process(stdout=b'{"id": "a"}'),
        "b": make_process(stdout=b'{"error": "b failed"}'),
    }

    async def _spawn(*cmd, **kwargs):
        return procs[cmd[-1]]

    bridge = ProcessBridge(bridge_config)
    with patch(_EXEC, side_effect=_spawn) as mock_sub:
        first, second = await asyncio.gather(
            bridge.execute("get", {"EventId": "a"}),
            bridge.execute("get", {"EventId": "b"}),
        )

    assert first == BridgeOk({"id": "a"})
    assert second == BridgeFailed("b failed")
    assert mock_sub.call_count == 2


# ---------------------------------------------------------------------------
# check_environment()
# ---------------------------------------------------------------------------


def test_check_environment_reports_missing_pieces(tmp_path: Path):
    config = BridgeConfig(interpreter="definitely-not-pwsh", script_path=tmp_path / "x.ps1")
    with patch("outlook_mcp.core.bridge.shutil.which", return_value=None):
        problems = ProcessBridge(config).check_environment()
    assert len(problems) == 2
    assert "definitely-not-pwsh" in problems[0]
    assert "x.ps1" in problems[1]


def test_check_environment_clean(tmp_path: Path):
    script = tmp_path / "outlook-calendar.ps1"
    script.write_text("param($Action)\n")
    config = BridgeConfig(interpreter="pwsh", script_path=script)
    with patch("outlook_mcp.core.bridge.shutil.which", return_value="/usr/bin/pwsh"):
        assert ProcessBridge(config).check_environment() == []
