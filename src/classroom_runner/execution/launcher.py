from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from .types import SandboxProcess, Workspace

if TYPE_CHECKING:
    from ..languages import LanguageProfile


class SandboxLauncher(Protocol):
    async def launch(self, workspace: Workspace, profile: LanguageProfile) -> SandboxProcess:
        """Start one bounded sandbox process without waiting for it to finish.

        Raises `LaunchFailure` if the runtime itself cannot be started.

        Example:
            ```python
            sandbox = await launcher.launch(workspace, DEFAULT_REGISTRY.lookup("python"))
            ```
        """
        ...

    async def terminate(self, sandbox: SandboxProcess) -> None:
        """Forcefully kill a sandbox; must tolerate already-exited processes.

        Example:
            ```python
            await launcher.terminate(sandbox)
            ```
        """
        ...
