from __future__ import annotations

import os
import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

CONFIG_ENV_VAR = "CLASSROOM_RUNNER_CONFIG"


def _default_config_path() -> Path:
    """Return bundled default config TOML path.

    Example:
        ```python
        path = _default_config_path()
        ```
    """
    return Path(__file__).with_name("default_policy.toml")


def _read_toml(path: Path) -> dict[str, Any]:
    """Read a config TOML file into a dictionary.

    Example:
        ```python
        raw = _read_toml(Path("/etc/classroom-runner.toml"))
        ```
    """
    if not path.exists():
        raise ValueError(f"Config file not found: {path}")
    return tomllib.loads(path.read_text(encoding="utf-8"))


def _table(raw: dict[str, Any], name: str) -> dict[str, Any]:
    """Return one named TOML table, or an empty table when absent.

    Example:
        ```python
        policy_raw = _table(raw, "policy")
        ```
    """
    value = raw.get(name, {})
    if not isinstance(value, dict):
        raise ValueError(f"'{name}' must be a TOML table")
    return value


def _list_of_str(value: Any, field_name: str) -> list[str]:
    """Validate and normalize a list-of-strings config field.

    Example:
        ```python
        origins = _list_of_str(["http://localhost:3000"], "cors_origins")
        ```
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{field_name}' must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"'{field_name}' must contain only strings")
        out.append(item)
    return out


_DEFAULTS_RAW = _read_toml(_default_config_path())
_POLICY_DEFAULTS = _table(_DEFAULTS_RAW, "policy")
_SERVER_DEFAULTS = _table(_DEFAULTS_RAW, "server")

DEFAULT_TIMEOUT_SECONDS = float(_POLICY_DEFAULTS.get("timeout_seconds", 3))
DEFAULT_MEMORY_LIMIT_MB = int(_POLICY_DEFAULTS.get("memory_limit_mb", 100))
DEFAULT_CPUS = float(_POLICY_DEFAULTS.get("cpus", 0.5))
DEFAULT_PIDS_LIMIT = int(_POLICY_DEFAULTS.get("pids_limit", 64))
DEFAULT_NETWORK_DISABLED = bool(_POLICY_DEFAULTS.get("network_disabled", True))
DEFAULT_MAX_OUTPUT_KB = int(_POLICY_DEFAULTS.get("max_output_kb", 1024))
DEFAULT_MAX_CONCURRENT = int(_POLICY_DEFAULTS.get("max_concurrent", 0))
DEFAULT_HOST = str(_SERVER_DEFAULTS.get("host", "0.0.0.0"))
DEFAULT_PORT = int(_SERVER_DEFAULTS.get("port", 4000))
DEFAULT_CORS_ORIGINS = _list_of_str(_SERVER_DEFAULTS.get("cors_origins", []), "cors_origins")


def default_scratch_root() -> str:
    return str(Path(tempfile.gettempdir()) / "classroom-runner")


def default_max_concurrent() -> int:
    """Return the admission limit used when none is configured.

    Example:
        ```python
        limit = default_max_concurrent()
        ```
    """
    return min(os.cpu_count() or 1, 4)


@dataclass(slots=True)
class SandboxPolicy:
    """Fixed per-process limits applied to every sandboxed run.

    Deadline and resource caps are process-wide; a request cannot change them.

    Example:
        ```python
        policy = SandboxPolicy(timeout_seconds=3, memory_limit_mb=100, cpus=0.5)
        ```
    """

    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    memory_limit_mb: int = DEFAULT_MEMORY_LIMIT_MB
    cpus: float = DEFAULT_CPUS
    pids_limit: int = DEFAULT_PIDS_LIMIT
    network_disabled: bool = DEFAULT_NETWORK_DISABLED
    max_output_kb: int = DEFAULT_MAX_OUTPUT_KB
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    admission_timeout_seconds: float | None = None
    scratch_root: str = field(default_factory=default_scratch_root)
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate limits after dataclass initialization.

        Example:
            ```python
            SandboxPolicy(timeout_seconds=0)  # raises ValueError
            ```
        """
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.memory_limit_mb <= 0:
            raise ValueError("memory_limit_mb must be positive")
        if self.cpus <= 0:
            raise ValueError("cpus must be positive")
        if self.pids_limit < 0:
            raise ValueError("pids_limit must not be negative")
        if self.max_output_kb <= 0:
            raise ValueError("max_output_kb must be positive")
        if self.max_concurrent < 0:
            raise ValueError("max_concurrent must not be negative")
        if self.max_concurrent == 0:
            self.max_concurrent = default_max_concurrent()
        if self.admission_timeout_seconds is None:
            self.admission_timeout_seconds = self.timeout_seconds + 2

    @property
    def max_output_bytes(self) -> int:
        return self.max_output_kb * 1024

    @classmethod
    def from_file(cls, config_path: str) -> "SandboxPolicy":
        """Create a policy from the `[policy]` table of a TOML file.

        Example:
            ```python
            policy = SandboxPolicy.from_file("/etc/classroom-runner.toml")
            ```
        """
        raw = _table(_read_toml(Path(config_path)), "policy")
        admission = raw.get("admission_timeout_seconds")
        return cls(
            timeout_seconds=float(raw.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
            memory_limit_mb=int(raw.get("memory_limit_mb", DEFAULT_MEMORY_LIMIT_MB)),
            cpus=float(raw.get("cpus", DEFAULT_CPUS)),
            pids_limit=int(raw.get("pids_limit", DEFAULT_PIDS_LIMIT)),
            network_disabled=bool(raw.get("network_disabled", DEFAULT_NETWORK_DISABLED)),
            max_output_kb=int(raw.get("max_output_kb", DEFAULT_MAX_OUTPUT_KB)),
            max_concurrent=int(raw.get("max_concurrent", DEFAULT_MAX_CONCURRENT)),
            admission_timeout_seconds=float(admission) if admission is not None else None,
            scratch_root=str(raw.get("scratch_root") or default_scratch_root()),
            config_path=config_path,
        )


@dataclass(slots=True)
class ServerSettings:
    """HTTP listener settings for `crn serve`.

    Example:
        ```python
        settings = ServerSettings(port=4000, cors_origins=["http://localhost:3000"])
        ```
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    cors_origins: list[str] = field(default_factory=lambda: DEFAULT_CORS_ORIGINS.copy())

    @classmethod
    def from_file(cls, config_path: str) -> "ServerSettings":
        """Create server settings from the `[server]` table of a TOML file.

        Example:
            ```python
            settings = ServerSettings.from_file("/etc/classroom-runner.toml")
            ```
        """
        raw = _table(_read_toml(Path(config_path)), "server")
        return cls(
            host=str(raw.get("host", DEFAULT_HOST)),
            port=int(raw.get("port", DEFAULT_PORT)),
            cors_origins=_list_of_str(raw.get("cors_origins", DEFAULT_CORS_ORIGINS), "cors_origins"),
        )


def resolve_config_path(config_file: str | None) -> str | None:
    return config_file or os.environ.get(CONFIG_ENV_VAR) or None


def resolve_policy(policy: SandboxPolicy | None, policy_file: str | None) -> SandboxPolicy:
    """Resolve the effective policy object for a run.

    Falls back to the file named by `CLASSROOM_RUNNER_CONFIG`, then defaults.

    Example:
        ```python
        policy = resolve_policy(None, "/etc/classroom-runner.toml")
        ```
    """
    if policy is not None and policy_file is not None:
        raise ValueError("Provide either 'policy' or 'policy_file', not both")
    if policy is not None:
        return policy
    path = resolve_config_path(policy_file)
    if path:
        return SandboxPolicy.from_file(path)
    return SandboxPolicy()


def resolve_server_settings(config_file: str | None) -> ServerSettings:
    """Resolve server settings from a config file, `CLASSROOM_RUNNER_CONFIG`, or defaults.

    Example:
        ```python
        settings = resolve_server_settings(None)
        ```
    """
    path = resolve_config_path(config_file)
    if path:
        return ServerSettings.from_file(path)
    return ServerSettings()
