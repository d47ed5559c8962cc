from __future__ import annotations

import asyncio
import logging
import os
import signal
from typing import TYPE_CHECKING, Any, Callable

from ..policy import SandboxPolicy
from .errors import LaunchFailure
from .types import SandboxProcess, Workspace

if TYPE_CHECKING:
    from ..languages import LanguageProfile

logger = logging.getLogger(__name__)

_resource: Any
try:
    import resource as _resource_module  # POSIX only
    _resource = _resource_module
except ImportError:  # pragma: no cover - platform specific
    _resource = None


def _memory_limiter(memory_limit_mb: int) -> Callable[[], None] | None:
    """Return a preexec hook capping the child's address space.

    Example:
        ```python
        hook = _memory_limiter(100)
        ```
    """
    if _resource is None:
        return None
    mem_bytes = int(memory_limit_mb) * 1024 * 1024

    def apply_limit() -> None:
        _, current_hard = _resource.getrlimit(_resource.RLIMIT_AS)
        if current_hard in (-1, _resource.RLIM_INFINITY):
            target_hard = mem_bytes
        else:
            target_hard = min(mem_bytes, current_hard)
        _resource.setrlimit(_resource.RLIMIT_AS, (min(mem_bytes, target_hard), target_hard))

    return apply_limit


class LocalLauncher:
    """Run the language command directly on the host, in the workspace directory.

    No container isolation; intended for development machines and tests.
    The command runs in its own session so a kill reaches every child.

    Example:
        ```python
        launcher = LocalLauncher(SandboxPolicy(), apply_rlimits=True)
        ```
    """

    def __init__(self, policy: SandboxPolicy | None = None, *, apply_rlimits: bool = False) -> None:
        self._policy = policy or SandboxPolicy()
        self._apply_rlimits = apply_rlimits

    async def launch(self, workspace: Workspace, profile: LanguageProfile) -> SandboxProcess:
        """Spawn `sh -c <command>` for the workspace file.

        Example:
            ```python
            sandbox = await launcher.launch(ws, profile)
            ```
        """
        preexec = _memory_limiter(self._policy.memory_limit_mb) if self._apply_rlimits else None
        try:
            process = await asyncio.create_subprocess_exec(
                "sh",
                "-c",
                profile.build_run_command(workspace.filename),
                cwd=str(workspace.directory),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
                preexec_fn=preexec,
            )
        except OSError as exc:
            raise LaunchFailure(f"Failed to start local process: {exc}") from exc
        logger.debug("Started local sandbox for %s pid=%s", profile.id, process.pid)
        return SandboxProcess(process=process)

    async def terminate(self, sandbox: SandboxProcess) -> None:
        """SIGKILL the sandbox's whole process group.

        Example:
            ```python
            await launcher.terminate(sandbox)
            ```
        """
        sandbox.killed = True
        if not sandbox.running:
            return
        try:
            os.killpg(sandbox.process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            sandbox.process.kill()
