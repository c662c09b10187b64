"""Server configuration loading and validation.

Reads an optional ``outlook-mcp.toml``, resolves ``${VAR}`` references,
applies ``OUTLOOK_MCP_*`` environment overrides, and returns a validated
:class:`ServerConfig`. Every field has a default, so running without a
config file is supported.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_SERVER_NAME = "mcp-server-outlook"
DEFAULT_INTERPRETER = "powershell.exe"
DEFAULT_EXECUTION_POLICY = "Bypass"
DEFAULT_TIMEOUT_SECONDS = 60.0
SCRIPT_FILENAME = "outlook-calendar.ps1"
CONFIG_FILENAME = "outlook-mcp.toml"

# Environment variables consulted by load_config().
ENV_CONFIG_PATH = "OUTLOOK_MCP_CONFIG"
ENV_SCRIPT_PATH = "OUTLOOK_MCP_SCRIPT_PATH"
ENV_INTERPRETER = "OUTLOOK_MCP_INTERPRETER"
ENV_TIMEOUT = "OUTLOOK_MCP_TIMEOUT"
ENV_LOG_LEVEL = "OUTLOOK_MCP_LOG_LEVEL"

# Matches ${VAR_NAME}; names are alphanumeric plus underscore.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when server configuration is missing, malformed, or invalid."""


def default_script_path() -> Path:
    """Return the installation-relative location of the calendar script."""
    return Path(__file__).resolve().parent / "scripts" / SCRIPT_FILENAME


@dataclass
class LoggingConfig:
    """Logging configuration from [server.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class BridgeConfig:
    """Process bridge configuration from [bridge] section.

    ``timeout_seconds`` of ``None`` lets a script run until it exits on its
    own; a TOML value of ``0`` maps to ``None``.
    """

    interpreter: str = DEFAULT_INTERPRETER
    script_path: Path = field(default_factory=default_script_path)
    execution_policy: str = DEFAULT_EXECUTION_POLICY
    timeout_seconds: float | None = DEFAULT_TIMEOUT_SECONDS


@dataclass
class ServerConfig:
    """Parsed and validated server configuration."""

    name: str = DEFAULT_SERVER_NAME
    require_windows: bool = True
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    source: Path | None = None


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaf values are returned
    unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _parse_timeout(raw: Any, source: str) -> float | None:
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ConfigError(f"{source} must be a number of seconds, got {raw!r}")
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{source} must be a number of seconds, got {raw!r}") from exc
    if value < 0:
        raise ConfigError(f"{source} must be >= 0, got {value}")
    return value or None


def _require_str(section: dict[str, Any], key: str, default: str, source: str) -> str:
    raw = section.get(key, default)
    if not isinstance(raw, str) or not raw.strip():
        raise ConfigError(f"{source} must be a non-empty string")
    return raw.strip()


def _parse_logging(server_section: dict[str, Any]) -> LoggingConfig:
    """Parse the optional [server.logging] sub-section."""
    logging_section = server_section.get("logging", {})
    if not isinstance(logging_section, dict):
        raise ConfigError("server.logging must be a table")

    log_level = str(logging_section.get("level", "INFO")).upper()
    log_format = str(logging_section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid server.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )
    return LoggingConfig(
        level=log_level,
        format=log_format,
        log_root=logging_section.get("log_root"),
    )


def _parse_bridge(bridge_section: dict[str, Any], base_dir: Path | None) -> BridgeConfig:
    """Parse the optional [bridge] section.

    A relative ``script_path`` is resolved against the config file's
    directory.
    """
    interpreter = _require_str(
        bridge_section, "interpreter", DEFAULT_INTERPRETER, "bridge.interpreter"
    )
    execution_policy = _require_str(
        bridge_section,
        "execution_policy",
        DEFAULT_EXECUTION_POLICY,
        "bridge.execution_policy",
    )

    script_path = default_script_path()
    raw_script = bridge_section.get("script_path")
    if raw_script is not None:
        if not isinstance(raw_script, str) or not raw_script.strip():
            raise ConfigError("bridge.script_path must be a non-empty string")
        script_path = Path(raw_script.strip()).expanduser()
        if not script_path.is_absolute() and base_dir is not None:
            script_path = base_dir / script_path

    timeout = _parse_timeout(
        bridge_section.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS),
        "bridge.timeout_seconds",
    )

    return BridgeConfig(
        interpreter=interpreter,
        script_path=script_path,
        execution_policy=execution_policy,
        timeout_seconds=timeout,
    )


def _apply_env_overrides(config: ServerConfig) -> None:
    script = os.environ.get(ENV_SCRIPT_PATH)
    if script:
        config.bridge.script_path = Path(script).expanduser()

    interpreter = os.environ.get(ENV_INTERPRETER)
    if interpreter:
        config.bridge.interpreter = interpreter.strip()

    timeout = os.environ.get(ENV_TIMEOUT)
    if timeout:
        config.bridge.timeout_seconds = _parse_timeout(timeout, ENV_TIMEOUT)

    level = os.environ.get(ENV_LOG_LEVEL)
    if level:
        config.logging.level = level.strip().upper()


def _resolve_config_path(config_path: Path | None) -> Path | None:
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get(ENV_CONFIG_PATH)
    if env_path:
        return Path(env_path)
    cwd_default = Path.cwd() / CONFIG_FILENAME
    if cwd_default.exists():
        return cwd_default
    return None


def load_config(config_path: Path | None = None) -> ServerConfig:
    """Load and validate server configuration.

    Parameters
    ----------
    config_path:
        Explicit TOML file. When ``None``, ``$OUTLOOK_MCP_CONFIG`` is used,
        then ``./outlook-mcp.toml`` if present, else defaults only.

    Returns
    -------
    ServerConfig
        Fully parsed and validated configuration.

    Raises
    ------
    ConfigError
        If an explicitly named file is missing, contains invalid TOML, or
        holds invalid values.
    """
    toml_path = _resolve_config_path(config_path)

    data: dict[str, Any] = {}
    if toml_path is not None:
        if not toml_path.is_file():
            raise ConfigError(f"Config file not found: {toml_path}")
        try:
            data = tomllib.loads(toml_path.read_bytes().decode())
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc
        except UnicodeDecodeError as exc:
            raise ConfigError(f"Config file is not valid UTF-8: {toml_path}") from exc

    # --- Resolve env var references before any validation ---
    data = resolve_env_vars(data)

    server_section = data.get("server", {})
    if not isinstance(server_section, dict):
        raise ConfigError("[server] must be a table")

    name = _require_str(server_section, "name", DEFAULT_SERVER_NAME, "server.name")

    require_windows = server_section.get("require_windows", True)
    if not isinstance(require_windows, bool):
        raise ConfigError(
            f"server.require_windows must be a boolean, got {require_windows!r}"
        )

    bridge_section = data.get("bridge", {})
    if not isinstance(bridge_section, dict):
        raise ConfigError("[bridge] must be a table")

    base_dir = toml_path.resolve().parent if toml_path is not None else None
    config = ServerConfig(
        name=name,
        require_windows=require_windows,
        logging=_parse_logging(server_section),
        bridge=_parse_bridge(bridge_section, base_dir),
        source=toml_path,
    )
    _apply_env_overrides(config)
    return config
