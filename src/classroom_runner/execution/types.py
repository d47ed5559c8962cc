from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

TIMEOUT_MESSAGE = "⏰ Execution timed out (possible infinite loop)"
LAUNCH_FAILURE_MESSAGE = "Execution environment could not be started"
STORAGE_FAILURE_MESSAGE = "Could not prepare the code for execution"


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """One submission of source text in a given language.

    Example:
        ```python
        req = ExecutionRequest(source_text='print("hi")', language_id="python")
        ```
    """

    source_text: str
    language_id: str


@dataclass(frozen=True, slots=True)
class Workspace:
    """Scratch directory holding one execution's source file.

    Example:
        ```python
        ws = Workspace(directory=Path("/tmp/run_ab12"), file_path=Path("/tmp/run_ab12/Main.py"))
        ```
    """

    directory: Path
    file_path: Path

    @property
    def filename(self) -> str:
        return self.file_path.name


@dataclass(slots=True)
class SandboxProcess:
    """Live sandbox process plus the output captured from it so far.

    Owned by a single `CompletionArbiter`; never handed to callers.
    """

    process: asyncio.subprocess.Process
    container_name: str | None = None
    stdout: bytearray = field(default_factory=bytearray)
    stderr: bytearray = field(default_factory=bytearray)
    killed: bool = False
    truncated: bool = False

    @property
    def running(self) -> bool:
        return self.process.returncode is None


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    RUNTIME_ERROR = "runtime_error"
    TIMEOUT = "timeout"
    LAUNCH_FAILURE = "launch_failure"
    STORAGE_FAILURE = "storage_failure"


@dataclass(frozen=True, slots=True)
class ExecutionOutcome:
    """Terminal result of one execution request.

    `output` is the only string surfaced to callers; `detail` carries
    diagnostics for logs.

    Example:
        ```python
        out = ExecutionOutcome.success("hi\\n")
        ```
    """

    kind: OutcomeKind
    output: str
    exit_code: int | None = None
    detail: str | None = None
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @classmethod
    def success(cls, stdout: str, *, truncated: bool = False) -> "ExecutionOutcome":
        return cls(OutcomeKind.SUCCESS, stdout, exit_code=0, truncated=truncated)

    @classmethod
    def runtime_error(
        cls, stderr: str, exit_code: int, *, truncated: bool = False
    ) -> "ExecutionOutcome":
        """Build a runtime-error outcome, falling back to a generic message.

        Example:
            ```python
            out = ExecutionOutcome.runtime_error("", 1)  # "Process exited with status 1"
            ```
        """
        message = stderr or f"Process exited with status {exit_code}"
        return cls(OutcomeKind.RUNTIME_ERROR, message, exit_code=exit_code, truncated=truncated)

    @classmethod
    def timeout(cls, deadline_seconds: float) -> "ExecutionOutcome":
        return cls(
            OutcomeKind.TIMEOUT,
            TIMEOUT_MESSAGE,
            exit_code=124,
            detail=f"Execution timed out after {deadline_seconds:g}s",
        )

    @classmethod
    def launch_failure(cls, reason: str) -> "ExecutionOutcome":
        return cls(OutcomeKind.LAUNCH_FAILURE, LAUNCH_FAILURE_MESSAGE, exit_code=125, detail=reason)

    @classmethod
    def storage_failure(cls, reason: str) -> "ExecutionOutcome":
        return cls(OutcomeKind.STORAGE_FAILURE, STORAGE_FAILURE_MESSAGE, detail=reason)
