"""Race a sandbox's exit against its deadline and launch errors.

Three event sources can finish a run: the process exiting, the deadline
timer firing, and the runtime failing to start. All of them go through
`CompletionArbiter._resolve`, which accepts the first outcome and ignores
the rest. Every source is a callback or task on the same event loop, so the
check-and-set of `_outcome` cannot interleave.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .errors import LaunchFailure
from .launcher import SandboxLauncher
from .types import ExecutionOutcome, SandboxProcess, Workspace

if TYPE_CHECKING:
    from ..languages import LanguageProfile

logger = logging.getLogger(__name__)

# How long a killed sandbox gets to close its pipes before the watcher is dropped.
REAP_GRACE_SECONDS = 2.0
_READ_CHUNK = 4096


def _decode(data: bytearray) -> str:
    return bytes(data).decode("utf-8", errors="replace")


class CompletionArbiter:
    """Supervise one sandbox run and deliver exactly one outcome.

    Instances are single-use: one arbiter per execution request.

    Example:
        ```python
        arbiter = CompletionArbiter(launcher, deadline_seconds=3)
        outcome = await arbiter.run(workspace, profile)
        ```
    """

    def __init__(
        self,
        launcher: SandboxLauncher,
        *,
        deadline_seconds: float,
        max_output_bytes: int | None = None,
    ) -> None:
        self._launcher = launcher
        self._deadline_seconds = deadline_seconds
        self._max_output_bytes = max_output_bytes
        self._outcome: ExecutionOutcome | None = None
        self._future: asyncio.Future[ExecutionOutcome] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._sandbox: SandboxProcess | None = None
        self._reaper: asyncio.Task[None] | None = None

    @property
    def outcome(self) -> ExecutionOutcome | None:
        return self._outcome

    @property
    def resolved(self) -> bool:
        return self._outcome is not None

    async def run(self, workspace: Workspace, profile: LanguageProfile) -> ExecutionOutcome:
        """Launch the sandbox, arm the deadline, and wait for the first outcome.

        If the awaiting task is cancelled the sandbox is killed before the
        cancellation propagates.

        Example:
            ```python
            outcome = await CompletionArbiter(launcher, deadline_seconds=3).run(ws, profile)
            ```
        """
        if self._future is not None:
            raise RuntimeError("CompletionArbiter instances are single-use")
        loop = asyncio.get_running_loop()
        self._future = loop.create_future()
        self._timer = loop.call_later(self._deadline_seconds, self.on_deadline)
        watcher: asyncio.Task[None] | None = None
        try:
            try:
                sandbox = await self._launcher.launch(workspace, profile)
            except LaunchFailure as exc:
                self.on_launch_failure(str(exc))
            else:
                self._sandbox = sandbox
                if self.resolved:
                    # Deadline expired while the runtime was still starting.
                    self._kill()
                watcher = loop.create_task(self._watch(sandbox))
            return await self._future
        finally:
            if self._timer is not None:
                self._timer.cancel()
            await self._settle(watcher)

    def on_exit(self, returncode: int) -> None:
        """Resolve from the sandbox's exit status.

        Example:
            ```python
            arbiter.on_exit(0)
            ```
        """
        sandbox = self._sandbox
        stdout = _decode(sandbox.stdout) if sandbox is not None else ""
        stderr = _decode(sandbox.stderr) if sandbox is not None else ""
        truncated = sandbox.truncated if sandbox is not None else False
        if returncode == 0:
            outcome = ExecutionOutcome.success(stdout, truncated=truncated)
        else:
            outcome = ExecutionOutcome.runtime_error(stderr, returncode, truncated=truncated)
        self._resolve(outcome, "exit")

    def on_deadline(self) -> None:
        """Resolve as timed out and kill the sandbox, unless already resolved.

        Example:
            ```python
            arbiter.on_deadline()
            ```
        """
        if not self._resolve(ExecutionOutcome.timeout(self._deadline_seconds), "deadline"):
            return
        self._kill()

    def on_launch_failure(self, message: str) -> None:
        self._resolve(ExecutionOutcome.launch_failure(message), "launch failure")

    def _resolve(self, outcome: ExecutionOutcome, source: str) -> bool:
        if self._outcome is not None:
            logger.debug("Ignoring %s; already resolved as %s", source, self._outcome.kind.value)
            return False
        self._outcome = outcome
        if self._timer is not None:
            self._timer.cancel()
        if self._future is not None and not self._future.done():
            self._future.set_result(outcome)
        if outcome.detail:
            logger.info("Run resolved by %s as %s: %s", source, outcome.kind.value, outcome.detail)
        else:
            logger.info("Run resolved by %s as %s", source, outcome.kind.value)
        return True

    def _kill(self) -> None:
        if self._sandbox is None or self._reaper is not None:
            return
        self._sandbox.killed = True
        self._reaper = asyncio.get_running_loop().create_task(self._launcher.terminate(self._sandbox))

    async def _watch(self, sandbox: SandboxProcess) -> None:
        process = sandbox.process
        await asyncio.gather(
            self._drain(process.stdout, sandbox.stdout, sandbox),
            self._drain(process.stderr, sandbox.stderr, sandbox),
        )
        returncode = await process.wait()
        self.on_exit(returncode)

    async def _drain(
        self,
        stream: asyncio.StreamReader | None,
        buffer: bytearray,
        sandbox: SandboxProcess,
    ) -> None:
        if stream is None:
            return
        limit = self._max_output_bytes
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                return
            if limit is None:
                buffer.extend(chunk)
                continue
            room = limit - len(buffer)
            if len(chunk) > room:
                sandbox.truncated = True
            if room > 0:
                buffer.extend(chunk[:room])

    async def _settle(self, watcher: asyncio.Task[None] | None) -> None:
        if self._sandbox is not None and self._sandbox.running:
            self._kill()
        if self._reaper is not None:
            try:
                await self._reaper
            except OSError as exc:
                logger.error("Failed to terminate sandbox: %s", exc)
        if watcher is None:
            return
        try:
            await asyncio.wait_for(watcher, REAP_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Sandbox pipes still open %ss after resolution", REAP_GRACE_SECONDS)
