from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from .execution.arbiter import CompletionArbiter
from .execution.errors import CapacityError, EmptySourceError, StorageFailure
from .execution.launcher import SandboxLauncher
from .execution.types import ExecutionOutcome, ExecutionRequest
from .execution.workspace import WorkspacePreparer
from .languages import DEFAULT_REGISTRY, LanguageProfile, LanguageRegistry
from .policy import SandboxPolicy, resolve_policy

logger = logging.getLogger(__name__)


class CodeRunner:
    """Validate, stage, and supervise submissions against one launcher.

    Concurrent runs are admitted through a counting semaphore sized by
    `policy.max_concurrent`; callers beyond capacity wait up to
    `policy.admission_timeout_seconds` and then get `CapacityError`.

    Example:
        ```python
        runner = CodeRunner(DockerLauncher())
        outcome = await runner.run('print("hi")', "python")
        ```
    """

    def __init__(
        self,
        launcher: SandboxLauncher,
        *,
        policy: SandboxPolicy | None = None,
        registry: LanguageRegistry | None = None,
        preparer: WorkspacePreparer | None = None,
    ) -> None:
        self._launcher = launcher
        self._policy = policy or SandboxPolicy()
        self._registry = registry or DEFAULT_REGISTRY
        self._preparer = preparer or WorkspacePreparer(self._policy.scratch_root)
        self._slots: asyncio.Semaphore | None = None

    @property
    def policy(self) -> SandboxPolicy:
        return self._policy

    @property
    def registry(self) -> LanguageRegistry:
        return self._registry

    @property
    def preparer(self) -> WorkspacePreparer:
        return self._preparer

    def validate(self, code: str | None, language: str | None) -> LanguageProfile:
        """Return the language profile for a request or raise ValidationError.

        Example:
            ```python
            profile = runner.validate('print("hi")', "python")
            ```
        """
        profile = self._registry.lookup(language)
        if not code:
            raise EmptySourceError()
        return profile

    async def run(self, code: str, language: str) -> ExecutionOutcome:
        """Execute one submission and return its single terminal outcome.

        Raises `ValidationError` before anything is written or spawned, and
        `CapacityError` when no sandbox slot frees up in time.

        Example:
            ```python
            outcome = await runner.run("while True: pass", "python")
            outcome.output  # timeout message
            ```
        """
        profile = self.validate(code, language)
        request = ExecutionRequest(source_text=code, language_id=profile.id)
        async with self._admitted():
            try:
                workspace = self._preparer.prepare(request, profile)
            except StorageFailure as exc:
                return ExecutionOutcome.storage_failure(str(exc))
            try:
                arbiter = CompletionArbiter(
                    self._launcher,
                    deadline_seconds=self._policy.timeout_seconds,
                    max_output_bytes=self._policy.max_output_bytes,
                )
                return await arbiter.run(workspace, profile)
            finally:
                self._preparer.release(workspace)

    @asynccontextmanager
    async def _admitted(self) -> AsyncIterator[None]:
        if self._slots is None:
            self._slots = asyncio.Semaphore(self._policy.max_concurrent)
        try:
            async with asyncio.timeout(self._policy.admission_timeout_seconds):
                await self._slots.acquire()
        except TimeoutError:
            logger.warning("Rejected run: all %d sandbox slots busy", self._policy.max_concurrent)
            raise CapacityError(
                f"All {self._policy.max_concurrent} sandbox slots are busy; try again later"
            ) from None
        try:
            yield
        finally:
            self._slots.release()


def run_code(
    code: str,
    language: str,
    *,
    launcher: SandboxLauncher,
    policy: SandboxPolicy | None = None,
    policy_file: str | None = None,
    registry: LanguageRegistry | None = None,
) -> ExecutionOutcome:
    """Synchronously execute one submission with the given launcher.

    Example:
        ```python
        from classroom_runner import DockerLauncher, run_code
        outcome = run_code('print("hi")', "python", launcher=DockerLauncher())
        ```
    """
    resolved_policy = resolve_policy(policy, policy_file)
    runner = CodeRunner(launcher, policy=resolved_policy, registry=registry)
    return asyncio.run(runner.run(code, language))
